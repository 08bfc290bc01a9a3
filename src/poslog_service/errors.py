"""Exception types shared by the store, the query translator and the API."""

from __future__ import annotations


class PoslogError(Exception):
  """Base exception for the log service."""

  code = "INTERNAL_ERROR"
  status_code = 500

  def __init__(self, message: str = "An error occurred") -> None:
    self.message = message
    super().__init__(self.message)


class ValidationError(PoslogError):
  """Malformed ingestion body, query parameter or scenario id."""

  code = "VALIDATION_ERROR"
  status_code = 400


class AuthError(PoslogError):
  """Missing, invalid, expired or wrong-purpose credential."""

  code = "UNAUTHORIZED"
  status_code = 401


class NotFoundError(PoslogError):
  """A record or drive file addressed by the request does not exist."""

  code = "NOT_FOUND"
  status_code = 404


class PayloadTooLargeError(PoslogError):
  code = "PAYLOAD_TOO_LARGE"
  status_code = 413


class StorageError(PoslogError):
  """The underlying database failed; details are logged, never returned."""

  code = "STORAGE_ERROR"
  status_code = 500


class ConfigError(PoslogError):
  """Required configuration is missing or invalid at startup."""
