"""
Transfer request lifecycle.

    pending_allocation -> beds_allocated -> approved_for_dispatch
        -> technicians_dispatched -> partially_arrived -> completed

``beds_allocated`` may also be rejected back to ``allocation_rejected`` and
re-allocated, and every non-terminal state may be cancelled. Each operation
runs under the request lock plus the locks of every member person, so it
cannot interleave with allocation, dispatch, arrival or cancellation of the
same request or the same people. Operations that take or release beds also
hold the lock of the camp the beds belong to.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import date
from typing import Any

from camp_transfers.allocation import AllocationEngine
from camp_transfers.errors import (
    CampNotFound,
    IneligiblePerson,
    InvalidStateTransition,
    PersonAlreadyEnrolled,
    PersonNotFound,
    RequestNotFound,
    ValidationError,
)
from camp_transfers.locks import KeyedLocks, camp_key, person_key, request_key
from camp_transfers.models import (
    Camp,
    CampType,
    InductionStatus,
    Person,
    PersonStatus,
    TransferReason,
    TransferRequest,
    TransferStatus,
    TransferSubmission,
)
from camp_transfers.ports import (
    CampCatalog,
    ExitEligibility,
    PersonStore,
    SchedulePolicyStore,
    TransferRequestStore,
)
from camp_transfers.saga import UnitOfWork
from camp_transfers.schedule import normalize_time, resolve_window, validate_dispatch

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    TransferStatus.PENDING_ALLOCATION: frozenset(
        {TransferStatus.BEDS_ALLOCATED, TransferStatus.CANCELLED}
    ),
    TransferStatus.BEDS_ALLOCATED: frozenset(
        {
            TransferStatus.APPROVED_FOR_DISPATCH,
            TransferStatus.ALLOCATION_REJECTED,
            TransferStatus.CANCELLED,
        }
    ),
    TransferStatus.ALLOCATION_REJECTED: frozenset(
        {TransferStatus.BEDS_ALLOCATED, TransferStatus.CANCELLED}
    ),
    TransferStatus.APPROVED_FOR_DISPATCH: frozenset(
        {TransferStatus.TECHNICIANS_DISPATCHED, TransferStatus.CANCELLED}
    ),
    TransferStatus.TECHNICIANS_DISPATCHED: frozenset(
        {
            TransferStatus.PARTIALLY_ARRIVED,
            TransferStatus.COMPLETED,
            TransferStatus.CANCELLED,
        }
    ),
    TransferStatus.PARTIALLY_ARRIVED: frozenset(
        {
            TransferStatus.PARTIALLY_ARRIVED,
            TransferStatus.COMPLETED,
            TransferStatus.CANCELLED,
        }
    ),
    TransferStatus.COMPLETED: frozenset(),
    TransferStatus.CANCELLED: frozenset(),
}

ACTIVE_STATUSES = frozenset(s for s in TransferStatus if not s.is_terminal)

EXIT_STATUSES = frozenset({PersonStatus.TERMINATED, PersonStatus.ABSCONDED})


def can_transition(current: TransferStatus, target: TransferStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(request: TransferRequest, target: TransferStatus) -> None:
    if not can_transition(request.status, target):
        raise InvalidStateTransition(request.id, request.status.value, target.value)


def status_after_arrival(request: TransferRequest, person_id: str) -> TransferStatus:
    """Status once ``person_id`` has arrived: completed when nobody is left."""
    remaining = [pid for pid in request.outstanding_person_ids if pid != person_id]
    if remaining:
        return TransferStatus.PARTIALLY_ARRIVED
    return TransferStatus.COMPLETED


class TransferStateMachine:
    def __init__(
        self,
        requests: TransferRequestStore,
        persons: PersonStore,
        catalog: CampCatalog,
        policies: SchedulePolicyStore,
        exit_eligibility: ExitEligibility,
        engine: AllocationEngine,
        locks: KeyedLocks,
        today: Callable[[], date],
        slot_horizon_days: int | None = None,
    ) -> None:
        self.requests = requests
        self.persons = persons
        self.catalog = catalog
        self.policies = policies
        self.exit_eligibility = exit_eligibility
        self.engine = engine
        self.locks = locks
        self.today = today
        self.slot_horizon_days = slot_horizon_days

    async def get(self, request_id: str) -> TransferRequest:
        request = await self.requests.get(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    async def _camp(self, camp_id: str) -> Camp:
        camp = await self.catalog.get_camp(camp_id)
        if camp is None:
            raise CampNotFound(camp_id)
        return camp

    async def _persons(self, person_ids: list[str]) -> list[Person]:
        persons = []
        for person_id in person_ids:
            person = await self.persons.get(person_id)
            if person is None:
                raise PersonNotFound(person_id)
            persons.append(person)
        return persons

    async def _ensure_not_enrolled_elsewhere(
        self, person_ids: list[str], exclude_request_id: str | None = None
    ) -> None:
        conflicts: dict[str, str] = {}
        for person_id in person_ids:
            for other in await self.requests.list_by_person(person_id):
                if other.id != exclude_request_id and other.status in ACTIVE_STATUSES:
                    conflicts[person_id] = other.id
                    break
        if conflicts:
            raise PersonAlreadyEnrolled(
                f"{len(conflicts)} person(s) already belong to an active "
                "transfer request",
                person_ids=sorted(conflicts),
                conflicting_requests=conflicts,
            )

    async def _ineligibility(
        self, person: Person, source: Camp, reason: TransferReason
    ) -> str | None:
        if person.camp_id != source.id:
            return "not housed at the source camp"
        if person.induction_status == InductionStatus.PRE_INDUCTION:
            if person.bed_id is None:
                return "in pre-induction without a bed"
            if (
                source.camp_type == CampType.INDUCTION
                and person.induction_completion_date is None
            ):
                return "pre-induction not completed"
        if reason == TransferReason.EXIT_CASE:
            if person.status in EXIT_STATUSES:
                return None
            if await self.exit_eligibility.is_exit_eligible(person.id):
                return None
            return (
                "exit case requires terminated/absconded status "
                "or a resignation/termination record"
            )
        if person.status != PersonStatus.ACTIVE:
            return f"status is {person.status}"
        return None

    async def _ensure_eligible(
        self, persons: list[Person], source: Camp, reason: TransferReason
    ) -> None:
        """Raise ``IneligiblePerson`` listing every person who may not move."""
        problems: dict[str, str] = {}
        for person in persons:
            problem = await self._ineligibility(person, source, reason)
            if problem:
                problems[person.id] = problem
        if problems:
            raise IneligiblePerson(
                f"{len(problems)} person(s) are not eligible for a {reason} transfer",
                person_ids=sorted(problems),
                reasons=problems,
            )

    async def submit(self, submission: TransferSubmission) -> TransferRequest:
        if submission.source_camp_id == submission.target_camp_id:
            raise ValidationError(
                "Source and target camp must differ", camp_id=submission.source_camp_id
            )
        person_ids = submission.person_ids
        duplicates = sorted({pid for pid in person_ids if person_ids.count(pid) > 1})
        if duplicates:
            raise ValidationError("Person listed more than once", person_ids=duplicates)

        as_of = self.today()
        source = await self._camp(submission.source_camp_id)
        target = await self._camp(submission.target_camp_id)
        policies = await self.policies.list_active_policies()
        window = resolve_window(as_of, source.camp_type, target.camp_type, policies)
        validate_dispatch(
            window,
            as_of,
            submission.scheduled_dispatch_date,
            submission.scheduled_dispatch_time,
            horizon_days=self.slot_horizon_days,
        )

        async with self.locks.hold(*(person_key(pid) for pid in person_ids)):
            await self._ensure_not_enrolled_elsewhere(person_ids)
            persons = await self._persons(person_ids)
            await self._ensure_eligible(persons, source, submission.reason)

            request = TransferRequest(
                id=str(uuid.uuid4()),
                source_camp_id=source.id,
                target_camp_id=target.id,
                person_ids=list(person_ids),
                reason=submission.reason,
                scheduled_dispatch_date=submission.scheduled_dispatch_date,
                scheduled_dispatch_time=normalize_time(
                    submission.scheduled_dispatch_time
                ),
                requested_by=submission.requested_by,
                request_date=as_of,
                notes=submission.notes,
            )
            created = await self.requests.create(request)

        logger.info(
            "Transfer request %s submitted: %d person(s) %s -> %s",
            created.id,
            len(created.person_ids),
            created.source_camp_id,
            created.target_camp_id,
        )
        return created

    def _member_keys(self, request: TransferRequest, *extra: str) -> list[str]:
        return [
            request_key(request.id),
            *extra,
            *(person_key(pid) for pid in request.person_ids),
        ]

    async def _bed_keys(self, request_id: str) -> list[str]:
        """Request, member and target camp locks for operations that move holds."""
        request = await self.get(request_id)
        return self._member_keys(request, camp_key(request.target_camp_id))

    async def allocate_beds(
        self, request_id: str, actor_id: str | None = None
    ) -> TransferRequest:
        async with self.locks.hold(*await self._bed_keys(request_id)):
            request = await self.get(request_id)
            if (
                request.status == TransferStatus.BEDS_ALLOCATED
                and request.allocated_beds_data
            ):
                logger.debug("Request %s already allocated", request_id)
                return request
            ensure_transition(request, TransferStatus.BEDS_ALLOCATED)

            # People may have changed since submission
            await self._ensure_not_enrolled_elsewhere(
                request.person_ids, exclude_request_id=request.id
            )
            persons = await self._persons(request.person_ids)
            source = await self._camp(request.source_camp_id)
            await self._ensure_eligible(persons, source, request.reason)

            as_of = self.today()
            async with UnitOfWork("allocate_beds") as uow:
                placements = await self.engine.allocate(request, persons, as_of, uow)
                updated = await self.requests.update(
                    request.id,
                    {
                        "status": TransferStatus.BEDS_ALLOCATED,
                        "allocated_beds_data": placements,
                        "allocation_confirmed_by": actor_id,
                        "allocation_confirmed_date": as_of,
                        "rejection_reason": None,
                    },
                )

        logger.info("Request %s: %d bed(s) allocated", request_id, len(placements))
        return updated

    async def approve_dispatch(
        self, request_id: str, actor_id: str | None = None
    ) -> TransferRequest:
        async with self.locks.hold(request_key(request_id)):
            request = await self.get(request_id)
            ensure_transition(request, TransferStatus.APPROVED_FOR_DISPATCH)
            updated = await self.requests.update(
                request_id,
                {
                    "status": TransferStatus.APPROVED_FOR_DISPATCH,
                    "approved_by": actor_id,
                    "approved_date": self.today(),
                },
            )
        logger.info("Request %s approved for dispatch by %s", request_id, actor_id)
        return updated

    async def reject_allocation(
        self, request_id: str, actor_id: str | None, reason: str | None
    ) -> TransferRequest:
        if not reason or not reason.strip():
            raise ValidationError(
                "A rejection reason is required", request_id=request_id
            )

        async with self.locks.hold(*await self._bed_keys(request_id)):
            request = await self.get(request_id)
            ensure_transition(request, TransferStatus.ALLOCATION_REJECTED)
            async with UnitOfWork("reject_allocation") as uow:
                released = await self.engine.release(
                    request.id, request.allocated_beds_data, uow
                )
                updated = await self.requests.update(
                    request_id,
                    {
                        "status": TransferStatus.ALLOCATION_REJECTED,
                        "allocated_beds_data": {},
                        "rejection_reason": reason.strip(),
                        "rejected_by": actor_id,
                        "rejected_date": self.today(),
                    },
                )
        logger.info(
            "Request %s allocation rejected; released %d bed(s)",
            request_id,
            len(released),
        )
        return updated

    async def dispatch(
        self, request_id: str, actor_id: str | None = None
    ) -> TransferRequest:
        request = await self.get(request_id)
        async with self.locks.hold(*self._member_keys(request)):
            request = await self.get(request_id)
            ensure_transition(request, TransferStatus.TECHNICIANS_DISPATCHED)
            await self._ensure_not_enrolled_elsewhere(
                request.person_ids, exclude_request_id=request.id
            )
            persons = await self._persons(request.person_ids)

            async with UnitOfWork("dispatch") as uow:
                prior: dict[str, PersonStatus] = {}
                for person in persons:
                    await self.persons.update(
                        person.id, {"status": PersonStatus.PENDING_ARRIVAL}
                    )
                    prior[person.id] = person.status
                    uow.on_rollback(
                        f"person:{person.id}",
                        lambda person=person: self.persons.update(
                            person.id, {"status": person.status}
                        ),
                    )
                updated = await self.requests.update(
                    request_id,
                    {
                        "status": TransferStatus.TECHNICIANS_DISPATCHED,
                        "dispatched_by": actor_id,
                        "dispatch_date": self.today(),
                        "prior_person_statuses": prior,
                    },
                )
        logger.info(
            "Request %s dispatched: %d person(s) pending arrival",
            request_id,
            len(persons),
        )
        return updated

    async def cancel(
        self, request_id: str, actor_id: str | None = None, reason: str | None = None
    ) -> TransferRequest:
        async with self.locks.hold(*await self._bed_keys(request_id)):
            request = await self.get(request_id)
            ensure_transition(request, TransferStatus.CANCELLED)

            outstanding = request.outstanding_person_ids
            holds = {
                pid: allocation
                for pid, allocation in request.allocated_beds_data.items()
                if pid in outstanding
            }
            async with UnitOfWork("cancel") as uow:
                released = await self.engine.release(request.id, holds, uow)
                for person_id in outstanding:
                    await self._restore_dispatched(request, person_id, uow)
                fields: dict[str, Any] = {
                    "status": TransferStatus.CANCELLED,
                    "cancelled_by": actor_id,
                    "cancelled_date": self.today(),
                    "cancellation_reason": reason,
                }
                updated = await self.requests.update(request_id, fields)

        logger.info(
            "Request %s cancelled; released %d bed hold(s)", request_id, len(released)
        )
        return updated

    async def _restore_dispatched(
        self, request: TransferRequest, person_id: str, uow: UnitOfWork
    ) -> None:
        """Put a dispatched person who never arrived back to their prior status."""
        person = await self.persons.get(person_id)
        if person is None:
            raise PersonNotFound(person_id)
        prior = request.prior_person_statuses.get(person_id)
        if person.status != PersonStatus.PENDING_ARRIVAL or prior is None:
            return
        await self.persons.update(person_id, {"status": prior})
        uow.on_rollback(
            f"person:{person_id}",
            lambda: self.persons.update(
                person_id, {"status": PersonStatus.PENDING_ARRIVAL}
            ),
        )
