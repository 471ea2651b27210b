from typing import Any, Optional


class ShowtimesError(Exception):
    """Base for every error rendered as {code, message, details}."""

    status_code = 500
    code = "internal_error"
    default_message = "Internal error."

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details if details is not None else {}
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidInput(ShowtimesError):
    status_code = 400
    code = "invalid_input"
    default_message = "Invalid input."


class NotFound(ShowtimesError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class InvalidInterval(ShowtimesError):
    status_code = 422
    code = "invalid_interval"
    default_message = "The screening must end after it starts."


class MovieUnavailable(ShowtimesError):
    status_code = 400
    code = "movie_unavailable"
    default_message = "The movie does not exist or is not active."


class DurationTooShort(ShowtimesError):
    status_code = 422
    code = "duration_too_short"
    default_message = "The movie is longer than the screening slot."


class RoomOverlap(ShowtimesError):
    status_code = 409
    code = "room_overlap"
    default_message = "Another screening is scheduled in this room during this time."


class DuplicateTitle(ShowtimesError):
    status_code = 409
    code = "duplicate_title"
    default_message = "A movie with this title already exists."


class InvalidStateTransition(ShowtimesError):
    status_code = 409
    code = "invalid_state_transition"
    default_message = "This lifecycle transition is not allowed."


class StoreFailure(ShowtimesError):
    status_code = 500
    code = "internal_error"
    default_message = "The data store failed to complete the operation."


class ConcurrentModification(ShowtimesError):
    status_code = 409
    code = "concurrent_modification"
    default_message = "The resource kept changing while it was being updated; retry the request."
