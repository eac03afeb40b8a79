"""
Arrival confirmation.

Confirming one person's arrival touches four records: the bed they leave,
the bed they take, the person, and the transfer request, then appends one
audit entry. All of it runs as a single compensating unit of work under the
request and person locks plus the locks of both camps. The audit entry is
written last so a failed step never needs to remove it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from camp_transfers.audit import AuditTrail
from camp_transfers.errors import (
    AlreadyArrived,
    AllocationNotFound,
    BedNotFound,
    BedUnavailable,
    CampNotFound,
    InvalidStateTransition,
    PersonNotFound,
    RequestNotFound,
    ValidationError,
)
from camp_transfers.locks import KeyedLocks, camp_key, person_key, request_key
from camp_transfers.models import (
    ArrivalDetails,
    Bed,
    BedAllocation,
    BedStatus,
    CampType,
    ExitProcessStatus,
    Person,
    PersonKind,
    PersonStatus,
    TransferLogEntry,
    TransferRequest,
    TransferStatus,
)
from camp_transfers.ports import (
    BedStore,
    CampCatalog,
    PersonStore,
    TransferRequestStore,
)
from camp_transfers.saga import UnitOfWork
from camp_transfers.state_machine import ensure_transition, status_after_arrival

logger = logging.getLogger(__name__)

ARRIVAL_STATES = frozenset(
    {TransferStatus.TECHNICIANS_DISPATCHED, TransferStatus.PARTIALLY_ARRIVED}
)

# Exit tracking only applies to technicians
EXIT_TRACKED_KINDS = frozenset({PersonKind.TECHNICIAN})


@dataclass(frozen=True)
class ArrivalResult:
    request: TransferRequest
    person: Person
    log_entry: TransferLogEntry


class ArrivalCoordinator:
    def __init__(
        self,
        requests: TransferRequestStore,
        persons: PersonStore,
        beds: BedStore,
        catalog: CampCatalog,
        audit: AuditTrail,
        locks: KeyedLocks,
    ) -> None:
        self.requests = requests
        self.persons = persons
        self.beds = beds
        self.catalog = catalog
        self.audit = audit
        self.locks = locks

    async def confirm(
        self, request_id: str, person_id: str, details: ArrivalDetails
    ) -> ArrivalResult:
        request = await self._request(request_id)
        # Both camps are locked: the freed bed must stay free until this commits
        keys = (
            request_key(request_id),
            person_key(person_id),
            camp_key(request.source_camp_id),
            camp_key(request.target_camp_id),
        )
        async with self.locks.hold(*keys):
            request = await self._request(request_id)
            if person_id not in request.person_ids:
                raise ValidationError(
                    f"Person {person_id} is not part of transfer request {request_id}",
                    request_id=request_id,
                    person_id=person_id,
                )
            if person_id in request.arrived_person_ids:
                raise AlreadyArrived(request_id, person_id)

            next_status = status_after_arrival(request, person_id)
            if request.status not in ARRIVAL_STATES:
                raise InvalidStateTransition(
                    request_id, request.status.value, next_status.value
                )
            ensure_transition(request, next_status)

            allocation = request.allocated_beds_data.get(person_id)
            if allocation is None:
                raise AllocationNotFound(request_id, person_id)

            person = await self.persons.get(person_id)
            if person is None:
                raise PersonNotFound(person_id)
            target_camp = await self.catalog.get_camp(request.target_camp_id)
            if target_camp is None:
                raise CampNotFound(request.target_camp_id)

            async with UnitOfWork("confirm_arrival") as uow:
                if person.bed_id and person.bed_id != allocation.bed_id:
                    await self._release_previous_bed(person, person.bed_id, uow)
                await self._occupy(request.id, person_id, allocation, uow)

                exit_started = (
                    target_camp.camp_type == CampType.EXIT
                    and person.kind in EXIT_TRACKED_KINDS
                )
                await self._update_person(
                    person, request, allocation, details, exit_started, uow
                )

                arrived = [*request.arrived_person_ids, person_id]
                updated_request = await self.requests.update(
                    request_id, {"status": next_status, "arrived_person_ids": arrived}
                )
                uow.on_rollback(
                    "request",
                    lambda: self.requests.update(
                        request_id,
                        {
                            "status": request.status,
                            "arrived_person_ids": request.arrived_person_ids,
                        },
                    ),
                )

                notes = "Arrival confirmed"
                if exit_started:
                    notes += " • Exit process started"
                entry = await self.audit.record_arrival(
                    request,
                    person,
                    to_bed_id=allocation.bed_id,
                    transfer_date=details.actual_arrival_date,
                    transfer_time=details.actual_arrival_time,
                    transferred_by=details.confirmed_by,
                    notes=notes,
                )

            updated_person = await self.persons.get(person_id)

        logger.info(
            "Arrival of %s confirmed on request %s (bed %s); request now %s",
            person_id,
            request_id,
            allocation.bed_id,
            updated_request.status,
        )
        return ArrivalResult(
            request=updated_request, person=updated_person or person, log_entry=entry
        )

    async def _request(self, request_id: str) -> TransferRequest:
        request = await self.requests.get(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    async def _release_previous_bed(
        self, person: Person, bed_id: str, uow: UnitOfWork
    ) -> None:
        bed = await self.beds.get(bed_id)
        if bed is None:
            raise BedNotFound(bed_id)

        if bed.status == BedStatus.OCCUPIED and bed.occupant_id == person.id:
            await self.beds.compare_and_set_status(
                bed_id, BedStatus.OCCUPIED, BedStatus.VACANT, None
            )
            uow.on_rollback(
                f"release:{bed_id}",
                lambda: self.beds.compare_and_set_status(
                    bed_id, BedStatus.VACANT, BedStatus.OCCUPIED, person.id
                ),
            )
        elif bed.temporary_occupant_id == person.id:
            released = await self._set_temporary_occupant(bed, None)
            uow.on_rollback(
                f"release:{bed_id}",
                lambda: self._set_temporary_occupant(released, person.id),
            )
        else:
            raise BedUnavailable(
                f"Bed {bed_id} does not list {person.id} as its occupant",
                bed_id=bed_id,
                person_id=person.id,
                occupant_id=bed.occupant_id,
            )

    async def _set_temporary_occupant(self, bed: Bed, occupant: str | None) -> Bed:
        return await self.beds.compare_and_set_status(
            bed.id,
            bed.status,
            bed.status,
            bed.occupant_id,
            expected_hold=bed.hold_request_id,
            hold_request_id=bed.hold_request_id,
            held_for=bed.held_for,
            temporary_occupant_id=occupant,
        )

    async def _occupy(
        self,
        request_id: str,
        person_id: str,
        allocation: BedAllocation,
        uow: UnitOfWork,
    ) -> None:
        bed_id = allocation.bed_id
        if allocation.is_temporary:
            # Leave hold stays in place; the arriving person is a temporary occupant
            await self.beds.compare_and_set_status(
                bed_id,
                BedStatus.RESERVED,
                BedStatus.RESERVED,
                None,
                expected_hold=request_id,
                temporary_occupant_id=person_id,
            )
            uow.on_rollback(
                f"occupy:{bed_id}",
                lambda: self.beds.compare_and_set_status(
                    bed_id,
                    BedStatus.RESERVED,
                    BedStatus.RESERVED,
                    None,
                    hold_request_id=request_id,
                    held_for=person_id,
                    temporary_occupant_id=None,
                ),
            )
        else:
            await self.beds.compare_and_set_status(
                bed_id,
                BedStatus.RESERVED,
                BedStatus.OCCUPIED,
                person_id,
                expected_hold=request_id,
            )
            uow.on_rollback(
                f"occupy:{bed_id}",
                lambda: self.beds.compare_and_set_status(
                    bed_id,
                    BedStatus.OCCUPIED,
                    BedStatus.RESERVED,
                    None,
                    hold_request_id=request_id,
                    held_for=person_id,
                ),
            )

    async def _update_person(
        self,
        person: Person,
        request: TransferRequest,
        allocation: BedAllocation,
        details: ArrivalDetails,
        exit_started: bool,
        uow: UnitOfWork,
    ) -> None:
        fields: dict[str, Any] = {
            "bed_id": allocation.bed_id,
            "camp_id": request.target_camp_id,
            "status": PersonStatus.ACTIVE,
            "actual_arrival_date": details.actual_arrival_date,
            "actual_arrival_time": details.actual_arrival_time,
            "last_transfer_date": details.actual_arrival_date,
            # Induction is camp specific and must be redone at the new camp
            "camp_induction_completed": False,
            "camp_induction_date": None,
            "camp_induction_time": None,
        }
        if exit_started:
            fields.update(
                exit_process_status=ExitProcessStatus.IN_PROCESS,
                exit_camp_id=request.target_camp_id,
                exit_start_date=details.actual_arrival_date,
            )

        previous = {name: getattr(person, name) for name in fields}
        await self.persons.update(person.id, fields)
        uow.on_rollback(
            f"person:{person.id}", lambda: self.persons.update(person.id, previous)
        )
