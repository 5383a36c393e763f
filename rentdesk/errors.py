"""Error taxonomy shared by services and routers.

Services raise these; ``rentdesk.main`` maps each one to an HTTP status and a
``{"error": ..., "code": ...}`` body. Messages are shown to staff verbatim.
"""
from __future__ import annotations


class RentDeskError(Exception):
    code = 'error'
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RentDeskError, ValueError):
    code = 'validation_error'
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(RentDeskError, LookupError):
    code = 'not_found'
    status_code = 404


class PersistenceError(RentDeskError):
    code = 'persistence_error'
    status_code = 409


class AuthError(RentDeskError, PermissionError):
    code = 'auth_error'
    status_code = 401


class UploadError(RentDeskError):
    code = 'upload_error'
    status_code = 502
