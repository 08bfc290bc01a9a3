"""Stateless session guard for the log viewer.

A session is a signed HS256 token carrying `purpose="log-viewer"` and an
expiry. Nothing is stored server-side: a token is valid exactly when its
signature, purpose and expiry check out, so a leaked token stays usable until
it expires.
"""

from __future__ import annotations

import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import Request, Response
from jose import JWTError, jwt

from .config import AuthConfig
from .errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_PURPOSE = "log-viewer"
TOKEN_ALGORITHM = "HS256"
API_KEY_HEADER = "X-API-Key"


@dataclass(frozen=True)
class SessionStatus:
  authenticated: bool
  # Epoch milliseconds, only set for cookie sessions.
  expires_at: Optional[int] = None

  def to_dict(self) -> Dict[str, Any]:
    body: Dict[str, Any] = {"authenticated": self.authenticated}
    if self.expires_at is not None:
      body["expiresAt"] = self.expires_at
    return body


UNAUTHENTICATED = SessionStatus(authenticated=False)


@dataclass(frozen=True)
class IssuedToken:
  token: str
  expires_at: int

  @property
  def status(self) -> SessionStatus:
    return SessionStatus(authenticated=True, expires_at=self.expires_at)


def _same_secret(given: str, expected: str) -> bool:
  return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


class SessionGuard:
  """
  Issues, validates, refreshes and revokes the viewer session cookie.

  `clock` returns the current unix time and is only used when minting tokens;
  expiry is verified by the JWT library against the real clock.
  """

  def __init__(self, config: AuthConfig, clock: Callable[[], float] = time.time) -> None:
    self._config = config
    self._clock = clock

  @property
  def cookie_name(self) -> str:
    return self._config.cookie_name

  def check_password(self, password: str) -> bool:
    return _same_secret(password, self._config.password)

  def issue(self) -> IssuedToken:
    now = int(self._clock())
    expires = now + self._config.ttl_seconds
    token = jwt.encode(
      {"purpose": TOKEN_PURPOSE, "iat": now, "exp": expires},
      self._config.jwt_secret,
      algorithm=TOKEN_ALGORITHM,
    )
    return IssuedToken(token=token, expires_at=expires * 1000)

  def validate(self, token: Optional[str]) -> SessionStatus:
    if not token:
      return UNAUTHENTICATED
    try:
      payload = jwt.decode(token, self._config.jwt_secret, algorithms=[TOKEN_ALGORITHM])
    except JWTError as exc:
      logger.debug("Rejected session token: %s", exc)
      return UNAUTHENTICATED

    if payload.get("purpose") != TOKEN_PURPOSE:
      logger.debug("Rejected session token with purpose %r", payload.get("purpose"))
      return UNAUTHENTICATED

    exp = payload.get("exp")
    return SessionStatus(authenticated=True, expires_at=int(exp) * 1000 if exp else None)

  def token_from_request(self, request: Request) -> Optional[str]:
    return request.cookies.get(self._config.cookie_name)

  def has_valid_api_key(self, request: Request) -> bool:
    expected = self._config.api_key
    given = request.headers.get(API_KEY_HEADER)
    if not expected or not given:
      return False
    return _same_secret(given, expected)

  def authorize(self, request: Request) -> SessionStatus:
    """
    Gate for protected routes.

    Raises:
      AuthError: If neither a valid session cookie nor the API key is present.
    """
    if self.has_valid_api_key(request):
      return SessionStatus(authenticated=True)
    status = self.validate(self.token_from_request(request))
    if not status.authenticated:
      raise AuthError("Unauthorized")
    return status

  def refresh(self, token: Optional[str]) -> IssuedToken:
    """Re-issue a token, but only while the current one is still valid."""
    if not self.validate(token).authenticated:
      raise AuthError("Session expired")
    return self.issue()

  def set_cookie(self, response: Response, issued: IssuedToken) -> None:
    response.set_cookie(
      key=self._config.cookie_name,
      value=issued.token,
      max_age=self._config.ttl_seconds,
      path="/",
      httponly=True,
      samesite="lax",
      secure=self._config.secure_cookies,
    )

  def revoke(self, response: Response) -> None:
    response.delete_cookie(
      key=self._config.cookie_name,
      path="/",
      httponly=True,
      samesite="lax",
      secure=self._config.secure_cookies,
    )
