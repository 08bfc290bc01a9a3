from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from . import __version__
from .auth import SessionGuard, SessionStatus
from .config import ServiceConfig
from .drive import DriveStore
from .errors import (
  AuthError,
  NotFoundError,
  PayloadTooLargeError,
  PoslogError,
  StorageError,
  ValidationError,
)
from .models import LogCreate, LoginRequest, format_utc
from .query import MAX_BIGINT, parse_list_params, parse_scenario_params
from .retention import RetentionSweeper
from .status import get_status
from .storage import LogStorage, PostgresLogStorage

logger = logging.getLogger(__name__)

# Ingested timestamps further ahead than this are logged as suspicious.
FUTURE_TIMESTAMP_TOLERANCE = timedelta(minutes=5)


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------

def get_storage(request: Request) -> LogStorage:
  return request.app.state.storage


def get_guard(request: Request) -> SessionGuard:
  return request.app.state.guard


def get_drive(request: Request) -> DriveStore:
  return request.app.state.drive


def require_session(request: Request, guard: SessionGuard = Depends(get_guard)) -> SessionStatus:
  """Reject the request with 401 unless it carries a valid session or API key."""
  return guard.authorize(request)


# -----------------------------------------------------------------------------
# Error responses
# -----------------------------------------------------------------------------

def _error_body(code: str, message: str) -> Dict[str, Any]:
  return {"detail": {"code": code, "message": message}}


async def _poslog_error_handler(request: Request, exc: PoslogError) -> JSONResponse:
  if isinstance(exc, StorageError):
    logger.error(
      "Storage failure on %s %s: %s",
      request.method,
      request.url.path,
      exc.message,
      exc_info=exc,
    )
    return JSONResponse(
      status_code=exc.status_code,
      content=_error_body(exc.code, "Internal server error"),
    )

  body = _error_body(exc.code, exc.message)
  if isinstance(exc, AuthError):
    body["authenticated"] = False
    response = JSONResponse(status_code=exc.status_code, content=body)
    request.app.state.guard.revoke(response)
    return response
  return JSONResponse(status_code=exc.status_code, content=body)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  problems = []
  for err in exc.errors():
    location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
    problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
  return JSONResponse(
    status_code=status.HTTP_400_BAD_REQUEST,
    content=_error_body(ValidationError.code, "; ".join(problems) or "Invalid request"),
  )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
  logger.exception("Unhandled error on %s %s", request.method, request.url.path)
  return JSONResponse(
    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    content=_error_body("INTERNAL_ERROR", "Internal server error"),
  )


# -----------------------------------------------------------------------------
# Body size cap
# -----------------------------------------------------------------------------

class BodySizeLimitMiddleware:
  """
  Reject `/api/*` bodies above `max_bytes` with 413, drive uploads excepted.

  A declared `Content-Length` is checked up front. Bodies without one
  (chunked transfer) are buffered up to the cap and replayed to the app.
  """

  def __init__(self, app: ASGIApp, max_bytes: int) -> None:
    self.app = app
    self.max_bytes = max_bytes

  @staticmethod
  def _is_capped(path: str) -> bool:
    return path.startswith("/api/") and not path.startswith("/api/drive")

  async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
    exc = PayloadTooLargeError(f"Request body exceeds {self.max_bytes} bytes")
    response = JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message))
    await response(scope, receive, send)

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http" or not self._is_capped(scope["path"]):
      await self.app(scope, receive, send)
      return

    length = Headers(scope=scope).get("content-length")
    if length is not None:
      if length.isdigit() and int(length) > self.max_bytes:
        await self._reject(scope, receive, send)
        return
      await self.app(scope, receive, send)
      return

    buffered: List[Message] = []
    received = 0
    while True:
      message = await receive()
      buffered.append(message)
      if message["type"] != "http.request":
        break
      received += len(message.get("body", b""))
      if received > self.max_bytes:
        await self._reject(scope, receive, send)
        return
      if not message.get("more_body", False):
        break

    async def replay() -> Message:
      if buffered:
        return buffered.pop(0)
      return await receive()

    await self.app(scope, replay, send)


# -----------------------------------------------------------------------------
# Logs
# -----------------------------------------------------------------------------

logs_router = APIRouter(prefix="/api/logs", tags=["logs"])


@logs_router.post("", status_code=status.HTTP_201_CREATED)
def ingest_log(entry: LogCreate, storage: LogStorage = Depends(get_storage)) -> Dict[str, int]:
  """
  Ingest one log event.

  Deliberately unauthenticated so external systems can log without a session.
  """
  if entry.timestamp:
    horizon = datetime.now(timezone.utc) + FUTURE_TIMESTAMP_TOLERANCE
    if entry.timestamp > format_utc(horizon):
      logger.warning(
        "Log timestamp %s from label %s is in the future", entry.timestamp, entry.label
      )

  log_id = storage.insert(entry)
  return {"id": log_id}


@logs_router.get("")
def list_logs(
  request: Request,
  _session: SessionStatus = Depends(require_session),
  storage: LogStorage = Depends(get_storage),
) -> Dict[str, object]:
  """
  Filtered, paginated list ordered by event timestamp, newest first.

  Query parameters: level, label, source (comma-separated sets), start, end
  (inclusive ISO-8601 bounds), q (case-insensitive text in message or
  context), scenarioId, limit (1-500, default 200), offset, cursor/since_id
  (only ids greater than this). Any other parameter is rejected with 400.
  """
  log_filter, pagination = parse_list_params(request.query_params.multi_items())
  page = storage.list_logs(log_filter, pagination)

  body: Dict[str, object] = {
    "items": [record.model_dump() for record in page.items],
    "hasMore": page.has_more,
  }
  if page.next_cursor is not None:
    body["nextCursor"] = page.next_cursor
  return body


@logs_router.get("/scenarios")
def list_scenarios(
  request: Request,
  _session: SessionStatus = Depends(require_session),
  storage: LogStorage = Depends(get_storage),
) -> Dict[str, object]:
  limit = parse_scenario_params(request.query_params.multi_items())
  scenarios = storage.list_scenarios(limit)
  return {"scenarios": [s.model_dump(by_alias=True) for s in scenarios]}


@logs_router.delete("", status_code=status.HTTP_200_OK)
def delete_all_logs(
  _session: SessionStatus = Depends(require_session),
  storage: LogStorage = Depends(get_storage),
) -> Dict[str, int]:
  deleted = storage.delete_all()
  logger.info("Deleted all logs (%s record(s))", deleted)
  return {"deleted": deleted}


@logs_router.delete("/{log_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_log(
  log_id: int,
  _session: SessionStatus = Depends(require_session),
  storage: LogStorage = Depends(get_storage),
) -> Response:
  if log_id > MAX_BIGINT or not storage.delete_by_id(log_id):
    raise NotFoundError("Not found")
  return Response(status_code=status.HTTP_204_NO_CONTENT)


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/login")
def login(body: LoginRequest, response: Response, guard: SessionGuard = Depends(get_guard)) -> Dict[str, object]:
  if not guard.check_password(body.password):
    raise AuthError("Invalid password")

  issued = guard.issue()
  guard.set_cookie(response, issued)
  return issued.status.to_dict()


@auth_router.get("/status")
def auth_status(request: Request, response: Response, guard: SessionGuard = Depends(get_guard)) -> Dict[str, object]:
  session = guard.validate(guard.token_from_request(request))
  if not session.authenticated:
    guard.revoke(response)
  return session.to_dict()


@auth_router.post("/logout")
def logout(response: Response, guard: SessionGuard = Depends(get_guard)) -> Dict[str, object]:
  guard.revoke(response)
  return {"authenticated": False}


@auth_router.post("/refresh")
def refresh(request: Request, response: Response, guard: SessionGuard = Depends(get_guard)) -> Dict[str, object]:
  issued = guard.refresh(guard.token_from_request(request))
  guard.set_cookie(response, issued)
  return issued.status.to_dict()


# -----------------------------------------------------------------------------
# Drive
# -----------------------------------------------------------------------------

drive_router = APIRouter(
  prefix="/api/drive",
  tags=["drive"],
  dependencies=[Depends(require_session)],
)


@drive_router.get("")
def list_drive_files(drive: DriveStore = Depends(get_drive)) -> Dict[str, object]:
  return {"files": [f.to_dict() for f in drive.list_files()]}


@drive_router.get("/{filename}")
def download_drive_file(filename: str, drive: DriveStore = Depends(get_drive)) -> FileResponse:
  path = drive.open_path(filename)
  return FileResponse(path, filename=path.name)


@drive_router.post("")
def upload_drive_file(
  file: Optional[UploadFile] = File(None),
  drive: DriveStore = Depends(get_drive),
) -> Dict[str, object]:
  if file is None or not file.filename:
    raise ValidationError("No file uploaded")
  stored = drive.save(file.filename, file.file)
  return {"success": True, "file": stored.to_dict()}


@drive_router.delete("/{filename}")
def delete_drive_file(filename: str, drive: DriveStore = Depends(get_drive)) -> Dict[str, object]:
  drive.delete(filename)
  return {"success": True}


# -----------------------------------------------------------------------------
# Application factory
# -----------------------------------------------------------------------------

def _mount_client(app: FastAPI, dist: Path) -> None:
  """Serve the built web client, falling back to index.html for client-side routes."""
  root = dist.resolve()
  index = root / "index.html"

  @app.get("/{full_path:path}", include_in_schema=False)
  async def serve_client(full_path: str) -> Response:
    if full_path.startswith("api/"):
      raise NotFoundError("Not found")
    candidate = (root / full_path).resolve()
    if full_path and candidate.is_file() and root in candidate.parents:
      return FileResponse(candidate)
    if index.is_file():
      return FileResponse(index)
    raise NotFoundError("Not found")


def create_app(
  config: ServiceConfig,
  storage: Optional[LogStorage] = None,
  guard: Optional[SessionGuard] = None,
  drive: Optional[DriveStore] = None,
  enable_sweeper: bool = True,
) -> FastAPI:
  """
  Build the application around a single store instance.

  The store, session guard, drive and sweeper are created once here and handed
  to route handlers through `app.state`.
  """
  storage = storage or PostgresLogStorage(config.database_url)
  guard = guard or SessionGuard(config.auth)
  drive = drive or DriveStore(config.drive_dir, config.drive_max_bytes)
  sweeper = RetentionSweeper(storage, config.retention) if enable_sweeper else None

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    drive.ensure_root()
    if sweeper is not None:
      sweeper.start()
    try:
      yield
    finally:
      if sweeper is not None:
        await sweeper.stop()

  app = FastAPI(title="poslog", version=__version__, lifespan=lifespan)
  app.state.config = config
  app.state.storage = storage
  app.state.guard = guard
  app.state.drive = drive
  app.state.sweeper = sweeper

  app.add_middleware(BodySizeLimitMiddleware, max_bytes=config.max_body_bytes)
  app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
  )

  app.add_exception_handler(PoslogError, _poslog_error_handler)
  app.add_exception_handler(RequestValidationError, _request_validation_handler)
  app.add_exception_handler(Exception, _unhandled_error_handler)

  @app.get("/health")
  async def health() -> Dict[str, object]:
    return get_status(config)

  app.include_router(auth_router)
  app.include_router(logs_router)
  app.include_router(drive_router)

  if config.client_dist is not None and config.client_dist.is_dir():
    _mount_client(app, config.client_dist)

  return app
