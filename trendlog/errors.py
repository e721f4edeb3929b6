"""
T3000 Trendlog Store — error taxonomy.

Every error carries the HTTP status the API layer maps it to, so routes never
have to translate service exceptions one by one.
"""

from __future__ import annotations


class TrendlogError(Exception):
    """Base class for all service-level errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotFoundError(TrendlogError):
    """Queried entity or partition does not exist."""

    status_code = 404


class BadRequestError(TrendlogError):
    """Malformed batch or query parameters."""

    status_code = 400


class UnauthorizedError(TrendlogError):
    status_code = 401


class PermissionDeniedError(TrendlogError):
    status_code = 403


class StoreError(TrendlogError):
    """Underlying persistence failure; keeps the store's native error text."""

    status_code = 500

    @classmethod
    def wrap(cls, exc: Exception, context: str = "") -> "StoreError":
        text = str(getattr(exc, "orig", None) or exc)
        return cls(f"{context}: {text}" if context else text)


class PartialFailureError(TrendlogError):
    """A batch where only part of the points could be written."""

    status_code = 500

    def __init__(self, message: str, attempted: int = 0, written: int = 0):
        super().__init__(message)
        self.attempted = attempted
        self.written = written
