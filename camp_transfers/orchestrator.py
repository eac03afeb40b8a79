from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from zoneinfo import ZoneInfo

from camp_transfers.allocation import AllocationEngine, AllocationPreferences
from camp_transfers.arrival import ArrivalCoordinator, ArrivalResult
from camp_transfers.audit import AuditTrail
from camp_transfers.database import (
    Database,
    DisciplinaryRecordExitEligibility,
    InMemoryBedStore,
    InMemoryCampCatalog,
    InMemoryPersonStore,
    InMemorySchedulePolicyStore,
    InMemoryTransferLogStore,
    InMemoryTransferRequestStore,
    get_db,
)
from camp_transfers.errors import CampNotFound
from camp_transfers.locks import KeyedLocks
from camp_transfers.models import (
    ArrivalDetails,
    ExpectedArrival,
    ScheduleWindow,
    TransferLogEntry,
    TransferRequest,
    TransferStatus,
    TransferSubmission,
)
from camp_transfers.ports import (
    BedStore,
    CampCatalog,
    ExitEligibility,
    PersonStore,
    SchedulePolicyStore,
    TransferLogStore,
    TransferRequestStore,
)
from camp_transfers.schedule import resolve_window, upcoming_slots
from camp_transfers.settings import Settings, get_settings
from camp_transfers.state_machine import TransferStateMachine

logger = logging.getLogger(__name__)


def camp_clock(timezone: str) -> Callable[[], date]:
    zone = ZoneInfo(timezone)
    return lambda: datetime.now(zone).date()


class TransferOrchestrator:
    """Entry point for the administrative UI: one method per transfer operation."""

    def __init__(
        self,
        persons: PersonStore,
        beds: BedStore,
        catalog: CampCatalog,
        requests: TransferRequestStore,
        logs: TransferLogStore,
        policies: SchedulePolicyStore,
        exit_eligibility: ExitEligibility,
        today: Callable[[], date],
        preferences: AllocationPreferences | None = None,
        slot_horizon_days: int = 42,
    ) -> None:
        self.locks = KeyedLocks()
        self.today = today
        self.requests = requests
        self.catalog = catalog
        self.policies = policies
        self.persons = persons
        self.slot_horizon_days = slot_horizon_days
        self.engine = AllocationEngine(persons, beds, catalog, preferences)
        self.audit = AuditTrail(logs)
        self.state_machine = TransferStateMachine(
            requests,
            persons,
            catalog,
            policies,
            exit_eligibility,
            self.engine,
            self.locks,
            self._today,
            slot_horizon_days,
        )
        self.arrivals = ArrivalCoordinator(
            requests, persons, beds, catalog, self.audit, self.locks
        )

    def _today(self) -> date:
        # Late-bound so tests can swap the clock on a live orchestrator
        return self.today()

    @classmethod
    def from_database(
        cls, db: Database, settings: Settings | None = None
    ) -> TransferOrchestrator:
        settings = settings or get_settings()
        return cls(
            persons=InMemoryPersonStore(db),
            beds=InMemoryBedStore(db),
            catalog=InMemoryCampCatalog(db),
            requests=InMemoryTransferRequestStore(db),
            logs=InMemoryTransferLogStore(db),
            policies=InMemorySchedulePolicyStore(db),
            exit_eligibility=DisciplinaryRecordExitEligibility(db),
            today=camp_clock(settings.timezone),
            preferences=AllocationPreferences(lower_berth_age=settings.lower_berth_age),
            slot_horizon_days=settings.slot_horizon_days,
        )

    async def submit_transfer_request(
        self, submission: TransferSubmission
    ) -> TransferRequest:
        return await self.state_machine.submit(submission)

    async def get_request(self, request_id: str) -> TransferRequest:
        return await self.state_machine.get(request_id)

    async def allocate_beds(
        self, request_id: str, actor_id: str | None = None
    ) -> TransferRequest:
        return await self.state_machine.allocate_beds(request_id, actor_id)

    async def approve_dispatch(
        self, request_id: str, actor_id: str | None = None
    ) -> TransferRequest:
        return await self.state_machine.approve_dispatch(request_id, actor_id)

    async def reject_allocation(
        self, request_id: str, actor_id: str | None = None, reason: str | None = None
    ) -> TransferRequest:
        return await self.state_machine.reject_allocation(request_id, actor_id, reason)

    async def dispatch(
        self, request_id: str, actor_id: str | None = None
    ) -> TransferRequest:
        return await self.state_machine.dispatch(request_id, actor_id)

    async def confirm_arrival(
        self, request_id: str, person_id: str, details: ArrivalDetails
    ) -> ArrivalResult:
        return await self.arrivals.confirm(request_id, person_id, details)

    async def cancel_request(
        self, request_id: str, actor_id: str | None = None, reason: str | None = None
    ) -> TransferRequest:
        return await self.state_machine.cancel(request_id, actor_id, reason)

    async def expected_arrivals(self, target_camp_id: str) -> list[ExpectedArrival]:
        """Persons dispatched toward a camp whose arrival is not confirmed yet."""
        in_transit = await self.requests.list_by_status(
            [TransferStatus.TECHNICIANS_DISPATCHED, TransferStatus.PARTIALLY_ARRIVED]
        )
        arrivals = []
        in_transit.sort(key=lambda r: (r.scheduled_dispatch_date, r.id))
        for request in in_transit:
            if request.target_camp_id != target_camp_id:
                continue
            for person_id in request.outstanding_person_ids:
                person = await self.persons.get(person_id)
                arrivals.append(
                    ExpectedArrival(
                        transfer_request_id=request.id,
                        person_id=person_id,
                        full_name=person.full_name if person else person_id,
                        source_camp_id=request.source_camp_id,
                        scheduled_dispatch_date=request.scheduled_dispatch_date,
                        allocation=request.allocated_beds_data.get(person_id),
                    )
                )
        return arrivals

    async def transfer_history(self, person_id: str) -> list[TransferLogEntry]:
        return await self.audit.history_for_person(person_id)

    async def schedule_window(
        self, source_camp_id: str, target_camp_id: str
    ) -> tuple[ScheduleWindow, list[tuple[date, str]]]:
        source = await self.catalog.get_camp(source_camp_id)
        if source is None:
            raise CampNotFound(source_camp_id)
        target = await self.catalog.get_camp(target_camp_id)
        if target is None:
            raise CampNotFound(target_camp_id)
        as_of = self.today()
        policies = await self.policies.list_active_policies()
        window = resolve_window(as_of, source.camp_type, target.camp_type, policies)
        return window, upcoming_slots(window, as_of, self.slot_horizon_days)


_orchestrator: TransferOrchestrator | None = None


def get_orchestrator() -> TransferOrchestrator:
    """Get the global orchestrator bound to the global database."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TransferOrchestrator.from_database(get_db())
    return _orchestrator
