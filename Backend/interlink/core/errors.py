"""
errors.py
~~~~~~~~~
Domain exceptions raised by the services layer.
Each carries the HTTP status the API layer reports it with.
"""


class InterlinkError(Exception):
    code = "internal_error"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(InterlinkError):
    code = "not_found"
    http_status = 404


class ValidationError(InterlinkError):
    code = "validation_error"
    http_status = 400


class InvalidTransitionError(InterlinkError):
    code = "invalid_transition"
    http_status = 409


class QuotaExceededError(InterlinkError):
    code = "quota_exceeded"
    http_status = 402


class AuthenticationError(InterlinkError):
    code = "unauthenticated"
    http_status = 401


class PermissionDeniedError(InterlinkError):
    code = "forbidden"
    http_status = 403


class UpstreamFailureError(InterlinkError):
    code = "upstream_failure"
    http_status = 502


class SignatureInvalidError(InterlinkError):
    code = "signature_invalid"
    http_status = 400


class StorageWriteError(InterlinkError):
    """Snapshot write failed. Transient: callers may continue without the blob."""
    code = "storage_write_failed"
    http_status = 503
