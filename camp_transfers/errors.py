"""Typed errors returned to callers of the transfer orchestrator.

Every error carries a ``kind`` (one of validation, conflict, not_found,
dependency), a machine-readable ``code`` and the offending identifiers in
``details`` so the UI can render an actionable message.
"""

from __future__ import annotations

from typing import Any


class TransferError(Exception):
    """Base exception for the transfer orchestrator."""

    kind = "error"
    code = "transfer_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TransferError):
    """Missing or invalid input. Raised before any mutation."""

    kind = "validation"
    code = "validation_error"


class ConflictError(TransferError):
    """State changed underneath the caller; refresh and retry."""

    kind = "conflict"
    code = "conflict"


class NotFoundError(TransferError):
    kind = "not_found"
    code = "not_found"


class DependencyError(TransferError):
    """A collaborator store call failed; completed sub-steps were compensated."""

    kind = "dependency"
    code = "dependency_failure"


class ScheduleWindowViolation(ValidationError):
    code = "schedule_window_violation"


class IneligiblePerson(ValidationError):
    code = "ineligible_person"


class PersonAlreadyEnrolled(ValidationError):
    code = "person_already_enrolled"


class InvalidStateTransition(ConflictError):
    code = "invalid_state_transition"

    def __init__(self, request_id: str, current: str, attempted: str) -> None:
        super().__init__(
            f"Transfer request {request_id} cannot move from {current} to {attempted}",
            request_id=request_id,
            current_state=current,
            attempted_state=attempted,
        )


class AlreadyArrived(ConflictError):
    code = "already_arrived"

    def __init__(self, request_id: str, person_id: str) -> None:
        super().__init__(
            f"Arrival of {person_id} on request {request_id} is already confirmed",
            request_id=request_id,
            person_id=person_id,
        )


class BedUnavailable(ConflictError):
    code = "bed_unavailable"


class InsufficientCapacity(ConflictError):
    code = "insufficient_capacity"

    def __init__(self, request_id: str, unplaced: dict[str, list[str]]) -> None:
        super().__init__(
            f"Could not place {len(unplaced)} person(s) for request {request_id}",
            request_id=request_id,
            unplaced_person_ids=sorted(unplaced),
            reasons=unplaced,
        )
        self.unplaced = unplaced


class RequestNotFound(NotFoundError):
    code = "request_not_found"

    def __init__(self, request_id: str) -> None:
        super().__init__(
            f"Transfer request {request_id} not found", request_id=request_id
        )


class PersonNotFound(NotFoundError):
    code = "person_not_found"

    def __init__(self, person_id: str) -> None:
        super().__init__(f"Person {person_id} not found", person_id=person_id)


class BedNotFound(NotFoundError):
    code = "bed_not_found"

    def __init__(self, bed_id: str) -> None:
        super().__init__(f"Bed {bed_id} not found", bed_id=bed_id)


class CampNotFound(NotFoundError):
    code = "camp_not_found"

    def __init__(self, camp_id: str) -> None:
        super().__init__(f"Camp {camp_id} not found", camp_id=camp_id)


class AllocationNotFound(NotFoundError):
    code = "allocation_not_found"

    def __init__(self, request_id: str, person_id: str) -> None:
        super().__init__(
            f"No bed allocation for {person_id} on request {request_id}; "
            "run allocation first",
            request_id=request_id,
            person_id=person_id,
        )
