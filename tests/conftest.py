from datetime import date

import pytest

from camp_transfers.database import (
    Database,
    DisciplinaryRecordExitEligibility,
    InMemoryBedStore,
    InMemoryCampCatalog,
    InMemoryPersonStore,
    InMemorySchedulePolicyStore,
    InMemoryTransferLogStore,
    InMemoryTransferRequestStore,
)
from camp_transfers.models import (
    Bed,
    BedStatus,
    Camp,
    CampType,
    Floor,
    GenderRestriction,
    OccupantType,
    Person,
    PersonKind,
    Room,
    TransferSubmission,
)
from camp_transfers.orchestrator import TransferOrchestrator
from camp_transfers.settings import Settings

TODAY = date(2026, 10, 19)  # Monday
NEXT_TUESDAY = date(2026, 10, 20)


class World:
    """Builds camps, rooms, beds and people straight into a Database."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def camp(self, camp_id: str, camp_type: CampType = CampType.REGULAR) -> Camp:
        name = camp_id.replace("-", " ").title()
        camp = Camp(id=camp_id, name=name, camp_type=camp_type)
        self.db.camps.put(camp_id, camp)
        return camp

    def room(
        self,
        camp_id: str,
        room_number: str,
        beds: str = "AB",
        lower: str = "A",
        floor: str = "1",
        gender: GenderRestriction | None = GenderRestriction.MALE,
        occupant_type: OccupantType = OccupantType.MIXED,
    ) -> Room:
        floor_id = f"{camp_id}-floor-{floor}"
        if floor_id not in self.db.floors:
            self.db.floors.put(
                floor_id, Floor(id=floor_id, camp_id=camp_id, floor_number=floor)
            )
        room = Room(
            id=f"{camp_id}-{room_number}",
            camp_id=camp_id,
            floor_id=floor_id,
            room_number=room_number,
            capacity=len(beds),
            gender_restriction=gender,
            occupant_type=occupant_type,
        )
        self.db.rooms.put(room.id, room)
        for bed_number in beds:
            bed = Bed(
                id=f"{room.id}-{bed_number}",
                room_id=room.id,
                bed_number=bed_number,
                is_lower_berth=bed_number in lower,
            )
            self.db.beds.put(bed.id, bed)
        return room

    def person(
        self,
        person_id: str,
        camp_id: str,
        bed_id: str | None = None,
        kind: PersonKind = PersonKind.TECHNICIAN,
        **fields,
    ) -> Person:
        data = {
            "full_name": person_id.title(),
            "nationality": "Indian",
            "gender": "male",
            "date_of_birth": date(1990, 1, 1),
            **fields,
        }
        if kind == PersonKind.TECHNICIAN:
            data.setdefault("employee_id", f"E-{person_id}")
        else:
            data.setdefault("company_name", "Gulf Scaffolding LLC")
        person = Person(id=person_id, kind=kind, camp_id=camp_id, bed_id=bed_id, **data)
        self.db.persons.put(person_id, person)
        if bed_id is not None:
            bed = self.db.beds.get(bed_id)
            assert bed is not None, bed_id
            self.db.beds.put(
                bed_id,
                bed.model_copy(
                    update={"status": BedStatus.OCCUPIED, "occupant_id": person_id}
                ),
            )
        return person

    def bed(self, bed_id: str) -> Bed:
        bed = self.db.beds.get(bed_id)
        assert bed is not None
        return bed

    def get_person(self, person_id: str) -> Person:
        person = self.db.persons.get(person_id)
        assert person is not None
        return person


@pytest.fixture
def db() -> Database:
    return Database()


@pytest.fixture
def world(db: Database) -> World:
    return World(db)


@pytest.fixture
def camps(world: World) -> World:
    """
    Four camps:
    camp-ja (regular, source), camp-aq (regular, three male technician beds),
    camp-son (exit), camp-saj (induction).
    """
    world.camp("camp-ja", CampType.REGULAR)
    world.room(
        "camp-ja", "101", beds="ABCD", occupant_type=OccupantType.TECHNICIAN_ONLY
    )
    world.room("camp-ja", "102", beds="AB", occupant_type=OccupantType.EXTERNAL_ONLY)

    world.camp("camp-aq", CampType.REGULAR)
    world.room("camp-aq", "101", beds="ABC", occupant_type=OccupantType.TECHNICIAN_ONLY)

    world.camp("camp-son", CampType.EXIT)
    world.room("camp-son", "1", beds="AB", lower="AB")

    world.camp("camp-saj", CampType.INDUCTION)
    world.room("camp-saj", "1", beds="AB")
    return world


@pytest.fixture
def orchestrator(db: Database) -> TransferOrchestrator:
    orchestrator = TransferOrchestrator.from_database(db, Settings())
    orchestrator.today = lambda: TODAY
    return orchestrator


@pytest.fixture
def make_orchestrator(db: Database):
    """Build an orchestrator over ``db`` with some stores swapped out."""

    def build(**stores) -> TransferOrchestrator:
        defaults = {
            "persons": InMemoryPersonStore(db),
            "beds": InMemoryBedStore(db),
            "catalog": InMemoryCampCatalog(db),
            "requests": InMemoryTransferRequestStore(db),
            "logs": InMemoryTransferLogStore(db),
            "policies": InMemorySchedulePolicyStore(db),
            "exit_eligibility": DisciplinaryRecordExitEligibility(db),
        }
        return TransferOrchestrator(**{**defaults, **stores}, today=lambda: TODAY)

    return build


def submission(
    person_ids: list[str],
    source: str = "camp-ja",
    target: str = "camp-aq",
    reason: str = "project_transfer",
    day: date = NEXT_TUESDAY,
    time: str | None = "15:00",
) -> TransferSubmission:
    return TransferSubmission(
        source_camp_id=source,
        target_camp_id=target,
        person_ids=person_ids,
        reason=reason,
        scheduled_dispatch_date=day,
        scheduled_dispatch_time=time,
        requested_by="coordinator-1",
    )


@pytest.fixture
def make_submission():
    return submission
