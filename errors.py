# errors.py

from typing import Any, Dict


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(AppError):
    """Missing or malformed arguments."""
    status_code = 400


class AuthorizationError(AppError):
    """Caller lacks identity (401) or the required role (403)."""
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class TransientStoreError(AppError):
    """A remote store or provider call failed."""
    status_code = 500
