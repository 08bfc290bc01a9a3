from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, List

from .errors import NotFoundError, PayloadTooLargeError, ValidationError
from .models import format_utc

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_COPY_CHUNK_BYTES = 1024 * 1024


@dataclass(frozen=True)
class DriveFile:
  name: str
  size: int
  modified_at: str

  def to_dict(self) -> Dict[str, object]:
    return {"name": self.name, "size": self.size, "modifiedAt": self.modified_at}


def sanitize_filename(name: str) -> str:
  """Replace every character outside [A-Za-z0-9._-] with an underscore."""
  safe = _UNSAFE_CHARS.sub("_", Path(name).name)
  if safe in ("", ".", ".."):
    raise ValidationError("Invalid filename")
  return safe


class DriveStore:
  """
  Flat directory of user-uploaded files.

  Files are addressed by name only; any name resolving outside the root is
  rejected.
  """

  def __init__(self, root: Path, max_bytes: int) -> None:
    self.root = Path(root)
    self.max_bytes = max_bytes

  def ensure_root(self) -> None:
    self.root.mkdir(parents=True, exist_ok=True)

  def _describe(self, path: Path) -> DriveFile:
    stats = path.stat()
    modified = datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc)
    return DriveFile(
      name=path.name,
      size=stats.st_size,
      modified_at=format_utc(modified),
    )

  def resolve(self, name: str) -> Path:
    root = self.root.resolve()
    candidate = (root / name).resolve()
    if candidate.parent != root:
      raise ValidationError("Invalid filename")
    return candidate

  def list_files(self) -> List[DriveFile]:
    self.ensure_root()
    files = [
      self._describe(path)
      for path in self.root.iterdir()
      if path.is_file() and not path.name.startswith(".")
    ]
    files.sort(key=lambda f: f.modified_at, reverse=True)
    return files

  def open_path(self, name: str) -> Path:
    path = self.resolve(name)
    if not path.is_file():
      raise NotFoundError("File not found")
    return path

  def save(self, filename: str, stream: BinaryIO) -> DriveFile:
    """
    Copy an upload stream into the drive under its sanitized name.

    Raises:
      PayloadTooLargeError: If the stream exceeds max_bytes; nothing is kept.
    """
    self.ensure_root()
    target = self.resolve(sanitize_filename(filename))
    partial = target.with_name(f".{target.name}.part")
    written = 0
    try:
      with open(partial, "wb") as out:
        while True:
          chunk = stream.read(_COPY_CHUNK_BYTES)
          if not chunk:
            break
          written += len(chunk)
          if written > self.max_bytes:
            raise PayloadTooLargeError(f"File exceeds {self.max_bytes} bytes")
          out.write(chunk)
      shutil.move(str(partial), str(target))
    finally:
      if partial.exists():
        partial.unlink()

    logger.info("Stored drive file %s (%s bytes)", target.name, written)
    return self._describe(target)

  def delete(self, name: str) -> None:
    path = self.open_path(name)
    path.unlink()
    logger.info("Deleted drive file %s", path.name)
