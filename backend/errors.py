# backend/errors.py
from typing import Optional


class CalertError(Exception):
    """Base class for failures surfaced to the caller as an error envelope."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(CalertError):
    """Missing or invalid bearer credential, or no identity behind it."""


class PreconditionError(CalertError):
    """The user's settings do not allow the operation (disabled, nothing selected, no token)."""


class UpstreamError(CalertError):
    """The Google Calendar API answered with a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    @classmethod
    def from_response(cls, status: int, body: str) -> "UpstreamError":
        return cls(f"Google Calendar API error: {status} - {body}", status=status, body=body)


class TokenExpiredError(UpstreamError):
    def __init__(self, body: str = ""):
        super().__init__("Google access token expired. Please reconnect your Google account.", status=401, body=body)


class StorageError(CalertError):
    """A database call failed; the message is the driver's own."""
