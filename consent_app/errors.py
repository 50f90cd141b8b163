# consent_app/errors.py
"""
Failures raised by the registry and its collaborators.

Each carries an HTTP status and a stable ``code`` so the API layer can render
them without inspecting messages. ``reason`` narrows a ``Forbidden`` down to
the policy outcome (revoked, expired, ...), which the UI needs to tell
"waiting for consent" apart from "access revoked".
"""
from typing import Optional


class ConsentError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self):
        return {"error": self.message, "code": self.code, "reason": self.reason}


class NotFound(ConsentError):
    status_code = 404
    code = "not_found"


class Unauthorized(ConsentError):
    """Bad credentials, or a caller acting on a record that is not theirs."""
    status_code = 403
    code = "unauthorized"

    def __init__(self, message: str, reason: Optional[str] = None, authenticated: bool = True):
        super().__init__(message, reason)
        if not authenticated:
            self.status_code = 401


class Forbidden(ConsentError):
    status_code = 403
    code = "forbidden"


class InvalidArgument(ConsentError):
    status_code = 400
    code = "invalid_argument"


class InvalidRole(ConsentError):
    status_code = 403
    code = "invalid_role"


class NoDocument(ConsentError):
    status_code = 404
    code = "no_document"


class Conflict(ConsentError):
    status_code = 409
    code = "conflict"
