"""Collaborator interfaces consumed by the transfer orchestrator.

Implementations live outside the core; ``camp_transfers.database`` ships
in-memory ones. Store methods may raise arbitrary exceptions on transient
failure; the core turns those into ``DependencyError`` after compensating.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

from camp_transfers.models import (
    Bed,
    BedStatus,
    Camp,
    Floor,
    Person,
    Room,
    SchedulePolicy,
    TransferLogEntry,
    TransferRequest,
    TransferStatus,
)

UNCHANGED: Any = object()


class PersonStore(Protocol):
    async def get(self, person_id: str) -> Person | None: ...

    async def update(self, person_id: str, fields: dict[str, Any]) -> Person: ...


class BedStore(Protocol):
    async def get(self, bed_id: str) -> Bed | None: ...

    async def list_for_camp(self, camp_id: str) -> list[Bed]: ...

    async def compare_and_set_status(
        self,
        bed_id: str,
        expected: BedStatus,
        next_status: BedStatus,
        occupant_id: str | None,
        *,
        expected_hold: str | None = None,
        hold_request_id: str | None = None,
        held_for: str | None = None,
        temporary_occupant_id: Any = UNCHANGED,
    ) -> Bed:
        """Move a bed to ``next_status`` only if it is in ``expected`` and held by
        ``expected_hold``. Raises ``BedUnavailable`` otherwise."""
        ...


class CampCatalog(Protocol):
    async def get_camp(self, camp_id: str) -> Camp | None: ...

    async def list_rooms(self, camp_id: str) -> list[Room]: ...

    async def list_floors(self, camp_id: str) -> list[Floor]: ...


class TransferRequestStore(Protocol):
    async def create(self, request: TransferRequest) -> TransferRequest: ...

    async def get(self, request_id: str) -> TransferRequest | None: ...

    async def update(
        self, request_id: str, fields: dict[str, Any]
    ) -> TransferRequest: ...

    async def list_by_status(
        self, statuses: Iterable[TransferStatus]
    ) -> list[TransferRequest]: ...

    async def list_by_person(self, person_id: str) -> list[TransferRequest]: ...


class TransferLogStore(Protocol):
    async def append(self, entry: TransferLogEntry) -> None: ...

    async def list_for_person(self, person_id: str) -> list[TransferLogEntry]: ...

    async def list_for_request(self, request_id: str) -> list[TransferLogEntry]: ...


class SchedulePolicyStore(Protocol):
    async def list_active_policies(self) -> list[SchedulePolicy]: ...


class ExitEligibility(Protocol):
    async def is_exit_eligible(self, person_id: str) -> bool:
        """Whether a resignation or termination is on record for the person."""
        ...
