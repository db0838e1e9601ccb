from typing import Any, Dict, Optional


class RecordServiceError(Exception):
    """Base exception for the authorization record service.

    Every subclass carries a stable ``code`` that is written into failure replies.
    """
    code = "unexpected"
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_reply(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class DecodeError(RecordServiceError):
    """Raised when an inbound payload cannot be turned into a record input"""
    code = "decode_error"
    default_message = "Invalid input"


class InvalidQueryError(DecodeError):
    """Raised when the populated fields match no supported lookup"""
    default_message = "Unsupported combination of identity fields"


class NotFoundError(RecordServiceError):
    code = "not_found"
    default_message = "Authorization not found"


class ConflictError(RecordServiceError):
    """Raised when a create collides with a live record holding the same identity"""
    code = "conflict"
    default_message = "Authorization already exists"


class UnexpectedError(RecordServiceError):
    code = "unexpected"
    default_message = "Unexpected error"


class RequestTimeoutError(RecordServiceError):
    """Raised by the client when no reply arrives in time"""
    code = "timeout"
    default_message = "Request timed out"
