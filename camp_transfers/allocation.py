"""
Bed allocation for transfer requests.

Planning is a pure function over a snapshot of the target camp; claiming the
planned beds goes through the bed store's compare-and-set so two requests can
never hold the same bed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date

from camp_transfers.errors import BedNotFound, CampNotFound, InsufficientCapacity
from camp_transfers.models import (
    Bed,
    BedAllocation,
    BedStatus,
    CampType,
    Floor,
    GenderRestriction,
    OccupantType,
    Person,
    PersonKind,
    Room,
    TransferRequest,
)
from camp_transfers.ports import BedStore, CampCatalog, PersonStore
from camp_transfers.saga import UnitOfWork

logger = logging.getLogger(__name__)

SEQUENTIAL_CAMP_TYPES = frozenset(
    {CampType.INDUCTION, CampType.EXIT, CampType.PROJECT}
)

NATIONALITY_SCORE = 1000
TRADE_SCORE = 500
SHIFT_SCORE = 450
UTILIZATION_SCORE = 400
EMPTY_ROOM_SCORE = 100


@dataclass(frozen=True)
class AllocationPreferences:
    gender_segregation: bool = True
    nationality_grouping: bool = True
    age_based_berth: bool = True
    room_type_matching: bool = True
    lower_berth_age: int = 45


@dataclass(frozen=True)
class CandidateBed:
    bed: Bed
    room: Room
    floor: Floor | None
    is_temporary: bool

    @property
    def sort_key(self) -> tuple:
        floor_number = self.floor.floor_number if self.floor else ""
        return (
            _natural_key(floor_number),
            _natural_key(self.room.room_number),
            _natural_key(self.bed.bed_number),
            self.bed.id,
        )

    def describe(self) -> str:
        floor_number = self.floor.floor_number if self.floor else "?"
        return (
            f"Floor {floor_number}, Room {self.room.room_number}, "
            f"Bed {self.bed.bed_number}"
        )


@dataclass
class CampSnapshot:
    camp_type: CampType
    candidates: list[CandidateBed]
    occupants: dict[str, list[Person]] = field(default_factory=dict)


@dataclass
class AllocationPlan:
    placements: dict[str, BedAllocation] = field(default_factory=dict)
    unplaced: dict[str, list[str]] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.unplaced


def _natural_key(value: str) -> tuple:
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part.lower())
        for part in re.split(r"(\d+)", value)
        if part
    )


def _held_status(allocation: BedAllocation) -> BedStatus:
    """Status of the bed without this request's hold."""
    # Leave-hold beds stay reserved for their absent owner
    return BedStatus.RESERVED if allocation.is_temporary else BedStatus.VACANT


def _room_kind_conflict(
    room: Room, person: Person, existing_kind: PersonKind | None
) -> str | None:
    label = f"Room {room.room_number}"
    kind = person.kind
    if room.occupant_type == OccupantType.TECHNICIAN_ONLY:
        if kind != PersonKind.TECHNICIAN:
            return f"{label}: technician-only room (person is {kind})"
    elif room.occupant_type == OccupantType.EXTERNAL_ONLY:
        if kind != PersonKind.EXTERNAL:
            return f"{label}: external-only room (person is {kind})"
    elif room.occupant_type == OccupantType.MIXED:
        if existing_kind and existing_kind != kind:
            return f"{label}: mixed room already has {existing_kind} (person is {kind})"
    return None


def _gender_conflict(room: Room, person: Person) -> str | None:
    restriction = room.gender_restriction
    if restriction is None or restriction == GenderRestriction.MIXED:
        return None
    if (person.gender or "").lower() != restriction.value:
        gender = person.gender or "unknown"
        return f"Room {room.room_number}: {restriction} only room (person is {gender})"
    return None


def _needs_lower_berth(
    person: Person, as_of: date, prefs: AllocationPreferences, sequential: bool
) -> bool:
    if not (sequential or prefs.age_based_berth):
        return False
    age = person.age_on(as_of)
    return age is not None and age >= prefs.lower_berth_age


def _sorted_persons(
    persons: list[Person], as_of: date, sequential: bool, prefs: AllocationPreferences
) -> list[Person]:
    """Placement order. People who need a lower berth always go first."""
    order = {person.id: index for index, person in enumerate(persons)}

    def berth_rank(p: Person) -> int:
        return 0 if _needs_lower_berth(p, as_of, prefs, sequential) else 1

    if sequential:
        # First come, first served
        return sorted(
            persons,
            key=lambda p: (
                berth_rank(p),
                p.actual_arrival_date or p.expected_arrival_date or date.min,
                order[p.id],
            ),
        )
    if prefs.nationality_grouping:
        return sorted(
            persons,
            key=lambda p: (
                berth_rank(p),
                p.nationality or "",
                p.trade or "",
                order[p.id],
            ),
        )
    return sorted(persons, key=lambda p: (berth_rank(p), order[p.id]))


def _score(
    person: Person, room: Room, occupants: list[Person], prefs: AllocationPreferences
) -> int | None:
    """Score a room for a person; None when grouping rules forbid the room."""
    if not occupants:
        return EMPTY_ROOM_SCORE

    same_nationality = all(o.nationality == person.nationality for o in occupants)
    if prefs.nationality_grouping and not same_nationality:
        return None

    score = 0
    if same_nationality:
        score += NATIONALITY_SCORE
    if person.trade and all(o.trade == person.trade for o in occupants):
        score += TRADE_SCORE
    if all((o.shift or "day") == (person.shift or "day") for o in occupants):
        score += SHIFT_SCORE
    utilization = len(occupants) / max(room.capacity, 1)
    score += int(utilization * UTILIZATION_SCORE)
    return score


def plan_allocation(
    persons: list[Person],
    snapshot: CampSnapshot,
    as_of: date,
    prefs: AllocationPreferences | None = None,
) -> AllocationPlan:
    """Assign one candidate bed to each person, deterministically.

    Induction, exit and project camps fill beds in floor/room/bed order for
    persons in arrival order. Regular camps score every compatible bed and
    keep same-nationality rooms together.
    """
    prefs = prefs or AllocationPreferences()
    sequential = snapshot.camp_type in SEQUENTIAL_CAMP_TYPES
    candidates = sorted(snapshot.candidates, key=lambda c: c.sort_key)

    occupants = {
        room_id: list(people) for room_id, people in snapshot.occupants.items()
    }
    room_kinds: dict[str, PersonKind] = {
        room_id: people[0].kind for room_id, people in occupants.items() if people
    }

    plan = AllocationPlan()
    used: set[str] = set()

    for person in _sorted_persons(persons, as_of, sequential, prefs):
        age = person.age_on(as_of)
        reasons: list[str] = []
        best: CandidateBed | None = None
        best_score = -1
        checked = 0

        for candidate in candidates:
            if candidate.bed.id in used:
                continue
            checked += 1
            room = candidate.room

            if room.occupant_type == OccupantType.STAFF_ONLY:
                reasons.append(f"Room {room.room_number}: staff-only room")
                continue
            if sequential or prefs.room_type_matching:
                conflict = _room_kind_conflict(room, person, room_kinds.get(room.id))
                if conflict:
                    reasons.append(conflict)
                    continue
            if sequential or prefs.gender_segregation:
                conflict = _gender_conflict(room, person)
                if conflict:
                    reasons.append(conflict)
                    continue
            if (
                _needs_lower_berth(person, as_of, prefs, sequential)
                and not candidate.bed.is_lower_berth
            ):
                reasons.append(
                    f"{candidate.describe()}: upper berth "
                    f"(lower berth needed, age {age})"
                )
                continue

            if sequential:
                best = candidate
                break

            score = _score(person, room, occupants.get(room.id, []), prefs)
            if score is None:
                reasons.append(f"Room {room.room_number}: nationality mismatch")
                continue
            if score > best_score:
                best, best_score = candidate, score

        if best is None:
            if checked == 0:
                reasons.append(
                    f"No available beds left (all {len(candidates)} already used)"
                )
            plan.unplaced[person.id] = list(dict.fromkeys(reasons)) or [
                "No suitable bed found"
            ]
            continue

        used.add(best.bed.id)
        occupants.setdefault(best.room.id, []).append(person)
        room_kinds.setdefault(best.room.id, person.kind)
        plan.placements[person.id] = BedAllocation(
            bed_id=best.bed.id, room_id=best.room.id, is_temporary=best.is_temporary
        )

    return plan


class AllocationEngine:
    """Plans, claims and releases bed holds for transfer requests."""

    def __init__(
        self,
        persons: PersonStore,
        beds: BedStore,
        catalog: CampCatalog,
        preferences: AllocationPreferences | None = None,
    ) -> None:
        self.persons = persons
        self.beds = beds
        self.catalog = catalog
        self.preferences = preferences or AllocationPreferences()

    async def snapshot(self, camp_id: str) -> CampSnapshot:
        camp = await self.catalog.get_camp(camp_id)
        if camp is None:
            raise CampNotFound(camp_id)

        rooms = {room.id: room for room in await self.catalog.list_rooms(camp_id)}
        floors = {f.id: f for f in await self.catalog.list_floors(camp_id)}
        beds = await self.beds.list_for_camp(camp_id)

        candidates: list[CandidateBed] = []
        occupant_ids: dict[str, list[str]] = {}
        for bed in beds:
            room = rooms.get(bed.room_id)
            if room is None:
                logger.warning("Bed %s references unknown room %s", bed.id, bed.room_id)
                continue
            floor = floors.get(room.floor_id)
            if bed.status == BedStatus.VACANT and bed.hold_request_id is None:
                candidates.append(CandidateBed(bed, room, floor, False))
            elif bed.is_temporarily_assignable:
                candidates.append(CandidateBed(bed, room, floor, True))

            for person_id in (
                bed.occupant_id,
                bed.temporary_occupant_id,
                bed.held_for,
                bed.reserved_for,
            ):
                if person_id:
                    occupant_ids.setdefault(room.id, []).append(person_id)

        occupants: dict[str, list[Person]] = {}
        for room_id, person_ids in occupant_ids.items():
            for person_id in dict.fromkeys(person_ids):
                person = await self.persons.get(person_id)
                if person is not None:
                    occupants.setdefault(room_id, []).append(person)

        return CampSnapshot(
            camp_type=camp.camp_type, candidates=candidates, occupants=occupants
        )

    async def plan(
        self, request: TransferRequest, persons: list[Person], as_of: date
    ) -> AllocationPlan:
        snapshot = await self.snapshot(request.target_camp_id)
        plan = plan_allocation(persons, snapshot, as_of, self.preferences)
        if not plan.complete:
            logger.info(
                "Allocation for request %s left %d of %d person(s) unplaced",
                request.id,
                len(plan.unplaced),
                len(persons),
            )
            raise InsufficientCapacity(request.id, plan.unplaced)
        return plan

    async def allocate(
        self,
        request: TransferRequest,
        persons: list[Person],
        as_of: date,
        uow: UnitOfWork,
    ) -> dict[str, BedAllocation]:
        """Plan beds for every person and hold them for the request."""
        plan = await self.plan(request, persons, as_of)
        await self.claim(request.id, plan.placements, uow)
        return plan.placements

    async def claim(
        self, request_id: str, placements: dict[str, BedAllocation], uow: UnitOfWork
    ) -> None:
        """Hold every planned bed for the request, registering an undo per hold."""
        for person_id, allocation in placements.items():
            expected = _held_status(allocation)
            await self.beds.compare_and_set_status(
                allocation.bed_id,
                expected,
                BedStatus.RESERVED,
                None,
                expected_hold=None,
                hold_request_id=request_id,
                held_for=person_id,
            )
            uow.on_rollback(
                f"hold:{allocation.bed_id}",
                lambda allocation=allocation: self._release_hold(
                    request_id, allocation
                ),
            )

    async def release(
        self,
        request_id: str,
        allocations: dict[str, BedAllocation],
        uow: UnitOfWork | None = None,
    ) -> list[str]:
        """Release the holds this request still has. Safe to repeat."""
        released = []
        for person_id, allocation in allocations.items():
            bed = await self.beds.get(allocation.bed_id)
            if bed is None:
                raise BedNotFound(allocation.bed_id)
            if bed.hold_request_id != request_id:
                continue
            await self._release_hold(request_id, allocation)
            released.append(allocation.bed_id)
            if uow is not None:
                uow.on_rollback(
                    f"release:{allocation.bed_id}",
                    lambda pid=person_id, allocation=allocation: self._restore_hold(
                        request_id, pid, allocation
                    ),
                )
        return released

    async def _release_hold(self, request_id: str, allocation: BedAllocation) -> None:
        await self.beds.compare_and_set_status(
            allocation.bed_id,
            BedStatus.RESERVED,
            _held_status(allocation),
            None,
            expected_hold=request_id,
        )

    async def _restore_hold(
        self, request_id: str, person_id: str, allocation: BedAllocation
    ) -> None:
        await self.beds.compare_and_set_status(
            allocation.bed_id,
            _held_status(allocation),
            BedStatus.RESERVED,
            None,
            hold_request_id=request_id,
            held_for=person_id,
        )
