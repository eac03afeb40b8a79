from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, MutableMapping
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from camp_transfers.errors import (
    BedNotFound,
    BedUnavailable,
    PersonNotFound,
    RequestNotFound,
)
from camp_transfers.models import (
    Bed,
    BedStatus,
    Camp,
    DisciplinaryAction,
    Floor,
    Person,
    Room,
    SchedulePolicy,
    TransferLogEntry,
    TransferRequest,
    TransferStatus,
)
from camp_transfers.ports import UNCHANGED

K = TypeVar("K")
V = TypeVar("V", bound=BaseModel)

EXIT_ACTION_TYPES = frozenset({"resignation", "termination"})


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.

    Values are copied on the way in and out so callers cannot mutate stored
    records without going through a store.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}

    def put(self, key: K, value: V) -> None:
        self._store[key] = value.model_copy(deep=True)

    def get(self, key: K) -> V | None:
        value = self._store.get(key)
        return value.model_copy(deep=True) if value is not None else None

    def delete(self, key: K) -> None:
        self._store.pop(key, None)

    def all(self) -> list[V]:
        return [value.model_copy(deep=True) for value in self._store.values()]

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __iter__(self) -> Iterator[V]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._store)


class Database:
    """Container for all database instances."""

    def __init__(self) -> None:
        self.camps: InMemoryKeyValueDatabase[str, Camp] = InMemoryKeyValueDatabase()
        self.floors: InMemoryKeyValueDatabase[str, Floor] = InMemoryKeyValueDatabase()
        self.rooms: InMemoryKeyValueDatabase[str, Room] = InMemoryKeyValueDatabase()
        self.beds: InMemoryKeyValueDatabase[str, Bed] = InMemoryKeyValueDatabase()
        self.persons: InMemoryKeyValueDatabase[str, Person] = InMemoryKeyValueDatabase()
        self.transfer_requests: InMemoryKeyValueDatabase[str, TransferRequest] = (
            InMemoryKeyValueDatabase()
        )
        self.transfer_logs: InMemoryKeyValueDatabase[str, TransferLogEntry] = (
            InMemoryKeyValueDatabase()
        )
        self.schedule_policies: InMemoryKeyValueDatabase[str, SchedulePolicy] = (
            InMemoryKeyValueDatabase()
        )
        self.disciplinary_actions: InMemoryKeyValueDatabase[str, DisciplinaryAction] = (
            InMemoryKeyValueDatabase()
        )

    def collections(self) -> list[InMemoryKeyValueDatabase[Any, Any]]:
        return [
            self.camps,
            self.floors,
            self.rooms,
            self.beds,
            self.persons,
            self.transfer_requests,
            self.transfer_logs,
            self.schedule_policies,
            self.disciplinary_actions,
        ]

    def clear(self) -> None:
        for collection in self.collections():
            collection.clear()

    def rooms_for_camp(self, camp_id: str) -> list[Room]:
        """Get all rooms located in a camp."""
        return [room for room in self.rooms.all() if room.camp_id == camp_id]

    def beds_for_camp(self, camp_id: str) -> list[Bed]:
        """Get all beds located in a camp."""
        room_ids = {room.id for room in self.rooms_for_camp(camp_id)}
        return [bed for bed in self.beds.all() if bed.room_id in room_ids]


def _merge(model: V, fields: dict[str, Any]) -> V:
    return type(model).model_validate({**model.model_dump(), **fields})


class InMemoryPersonStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, person_id: str) -> Person | None:
        return self._db.persons.get(person_id)

    async def update(self, person_id: str, fields: dict[str, Any]) -> Person:
        person = self._db.persons.get(person_id)
        if person is None:
            raise PersonNotFound(person_id)
        updated = _merge(person, fields)
        self._db.persons.put(person_id, updated)
        return updated


class InMemoryBedStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, bed_id: str) -> Bed | None:
        return self._db.beds.get(bed_id)

    async def list_for_camp(self, camp_id: str) -> list[Bed]:
        return self._db.beds_for_camp(camp_id)

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
        # No awaits between read and write: atomic on the event loop.
        bed = self._db.beds.get(bed_id)
        if bed is None:
            raise BedNotFound(bed_id)
        if bed.status != expected or bed.hold_request_id != expected_hold:
            raise BedUnavailable(
                f"Bed {bed_id} is {bed.status} (hold={bed.hold_request_id}), "
                f"expected {expected} (hold={expected_hold})",
                bed_id=bed_id,
                current_status=bed.status.value,
                expected_status=expected.value,
            )
        if next_status == BedStatus.OCCUPIED and occupant_id is None:
            raise ValueError("occupied beds must have an occupant")
        if next_status == BedStatus.VACANT and (
            occupant_id is not None or hold_request_id is not None
        ):
            raise ValueError("vacant beds cannot have an occupant or hold")

        fields: dict[str, Any] = {
            "status": next_status,
            "occupant_id": occupant_id,
            "hold_request_id": hold_request_id,
            "held_for": held_for if hold_request_id is not None else None,
        }
        if temporary_occupant_id is not UNCHANGED:
            fields["temporary_occupant_id"] = temporary_occupant_id
        if next_status == BedStatus.VACANT:
            fields.update(
                reserved_for=None, temporary_release=False, temporary_occupant_id=None
            )
        updated = bed.model_copy(update=fields)
        self._db.beds.put(bed_id, updated)
        return updated


class InMemoryCampCatalog:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_camp(self, camp_id: str) -> Camp | None:
        return self._db.camps.get(camp_id)

    async def list_rooms(self, camp_id: str) -> list[Room]:
        return self._db.rooms_for_camp(camp_id)

    async def list_floors(self, camp_id: str) -> list[Floor]:
        return [floor for floor in self._db.floors.all() if floor.camp_id == camp_id]


class InMemoryTransferRequestStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, request: TransferRequest) -> TransferRequest:
        if request.id in self._db.transfer_requests:
            raise ValueError(f"Transfer request {request.id} already exists")
        self._db.transfer_requests.put(request.id, request)
        return request

    async def get(self, request_id: str) -> TransferRequest | None:
        return self._db.transfer_requests.get(request_id)

    async def update(self, request_id: str, fields: dict[str, Any]) -> TransferRequest:
        request = self._db.transfer_requests.get(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        updated = _merge(request, fields)
        self._db.transfer_requests.put(request_id, updated)
        return updated

    async def list_by_status(
        self, statuses: Iterable[TransferStatus]
    ) -> list[TransferRequest]:
        wanted = set(statuses)
        return [r for r in self._db.transfer_requests.all() if r.status in wanted]

    async def list_by_person(self, person_id: str) -> list[TransferRequest]:
        requests = self._db.transfer_requests.all()
        return [r for r in requests if person_id in r.person_ids]


class InMemoryTransferLogStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def append(self, entry: TransferLogEntry) -> None:
        if entry.id in self._db.transfer_logs:
            raise ValueError(f"Transfer log entry {entry.id} already written")
        self._db.transfer_logs.put(entry.id, entry)

    async def list_for_person(self, person_id: str) -> list[TransferLogEntry]:
        entries = [e for e in self._db.transfer_logs.all() if e.person_id == person_id]
        return sorted(entries, key=lambda e: e.recorded_at)

    async def list_for_request(self, request_id: str) -> list[TransferLogEntry]:
        entries = [
            e
            for e in self._db.transfer_logs.all()
            if e.transfer_request_id == request_id
        ]
        return sorted(entries, key=lambda e: e.recorded_at)


class InMemorySchedulePolicyStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def list_active_policies(self) -> list[SchedulePolicy]:
        policies = [p for p in self._db.schedule_policies.all() if p.is_active]
        return sorted(policies, key=lambda p: p.id)


class DisciplinaryRecordExitEligibility:
    """Exit eligibility backed by recorded disciplinary actions."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def is_exit_eligible(self, person_id: str) -> bool:
        return any(
            action.person_id == person_id
            and action.action_type.lower() in EXIT_ACTION_TYPES
            for action in self._db.disciplinary_actions.all()
        )


_db: Database | None = None


def get_db() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


DEFAULT_SAMPLE_DATA_PATH = Path(__file__).parent.parent / "sample_data.json"


def load_sample_data(db: Database | None = None, path: Path | None = None) -> None:
    """Load sample data from sample_data.json into the database."""
    if db is None:
        db = get_db()

    sample_data_path = path or DEFAULT_SAMPLE_DATA_PATH
    with open(sample_data_path) as f:
        data = json.load(f)

    loaders: list[tuple[str, type[BaseModel], InMemoryKeyValueDatabase[Any, Any]]] = [
        ("camps", Camp, db.camps),
        ("floors", Floor, db.floors),
        ("rooms", Room, db.rooms),
        ("beds", Bed, db.beds),
        ("persons", Person, db.persons),
        ("schedule_policies", SchedulePolicy, db.schedule_policies),
        ("disciplinary_actions", DisciplinaryAction, db.disciplinary_actions),
    ]
    for key, model, collection in loaders:
        for record_data in data.get(key, []):
            record = model(**record_data)
            collection.put(record.id, record)  # type: ignore[attr-defined]
