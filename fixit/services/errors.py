"""
Dispatch error taxonomy.
Every error carries a machine-readable kind and the HTTP status it maps to.
"""
from typing import Optional


class DispatchError(Exception):
    kind = "dispatch_error"
    status_code = 500

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if kind:
            self.kind = kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class NotFound(DispatchError):
    kind = "not_found"
    status_code = 404


class ValidationFailed(DispatchError):
    kind = "validation_failed"
    status_code = 400


class NoAvailableTechnician(DispatchError):
    kind = "no_available_technician"
    status_code = 409

    def __init__(self, message: str = "No available technicians"):
        super().__init__(message)


class InvalidTransition(DispatchError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move assignment from {current} to {requested}")
        self.current = current
        self.requested = requested


class AssignmentConflict(DispatchError):
    kind = "assignment_conflict"
    status_code = 409


class NotificationFailure(DispatchError):
    kind = "notification_failure"
    status_code = 502


class DependencyFailure(DispatchError):
    kind = "dependency_failure"
    status_code = 503
