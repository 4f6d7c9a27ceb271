"""Domain errors raised by the crud and service layers.

Every error carries the HTTP status it maps to, so routes can let them
propagate and the application-level handler renders the JSON body.
"""
from typing import Any, Dict, Optional


class FitTrackError(ValueError):
    status_code = 400

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, **self.extra}


class ValidationFailed(FitTrackError):
    status_code = 400


class AlreadyExists(FitTrackError):
    status_code = 400


class AuthenticationFailed(FitTrackError):
    status_code = 401


class PermissionDenied(FitTrackError):
    status_code = 403


class NotFound(FitTrackError):
    status_code = 404
