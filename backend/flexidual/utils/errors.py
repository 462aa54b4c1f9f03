"""Domain error taxonomy.

Every error is a per-request failure: the application factory registers a
handler that renders them with the shared JSON envelope, none of them is
fatal to the process.
"""
from typing import Any, Dict, Optional


class FlexidualError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.payload)
        data.update({
            'error': True,
            'message': self.message,
            'status_code': self.status_code
        })
        return data


class ValidationError(FlexidualError):
    """Malformed or inconsistent input."""
    status_code = 400


class NotFound(FlexidualError):
    """Unknown session, room, class or user."""
    status_code = 404


class InvalidTransition(FlexidualError):
    """Illegal lifecycle mutation; carries the state it was rejected in."""

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        payload = {'current_status': current_status} if current_status else None
        super().__init__(message, payload)
        self.current_status = current_status


class ClockSkew(FlexidualError):
    """Negative interval detected. Always recovered by clamping."""

    def __init__(self, start, end):
        super().__init__(f"Interval ends before it starts ({start.isoformat()} > {end.isoformat()})")
        self.start = start
        self.end = end


class EnrollmentMismatch(FlexidualError):
    """Roster and campus/grade/group resolution disagree on a room."""

    status_code = 409

    def __init__(self, message: str, explicit_room: Optional[str] = None,
                 dynamic_room: Optional[str] = None):
        super().__init__(message, {
            'explicit_room': explicit_room,
            'dynamic_room': dynamic_room
        })


class DispatchFailure(FlexidualError):
    """Video or portal back-end unreachable. Callers retry with backoff."""
    status_code = 503


class RoomFull(DispatchFailure):
    """The video room reached its participant limit."""
    status_code = 409


class RoomNotFound(DispatchFailure):
    """The video back-end does not know the room."""
    status_code = 404


class Forbidden(FlexidualError):
    """Caller may not act on this class or session."""
    status_code = 403
