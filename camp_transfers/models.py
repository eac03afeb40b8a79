"""
Domain models for camp personnel transfers.
"""

from datetime import date, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class CampType(StrEnum):
    INDUCTION = "induction_camp"
    REGULAR = "regular_camp"
    EXIT = "exit_camp"
    PROJECT = "project_camp"


class Camp(BaseModel):
    id: str
    name: str
    code: str | None = None
    camp_type: CampType


class Floor(BaseModel):
    id: str
    camp_id: str
    floor_number: str


class GenderRestriction(StrEnum):
    MALE = "male"
    FEMALE = "female"
    MIXED = "mixed"


class OccupantType(StrEnum):
    TECHNICIAN_ONLY = "technician_only"
    EXTERNAL_ONLY = "external_only"
    MIXED = "mixed"
    STAFF_ONLY = "staff_only"


class Room(BaseModel):
    id: str
    camp_id: str
    floor_id: str
    room_number: str
    capacity: int = 1
    gender_restriction: GenderRestriction | None = None
    occupant_type: OccupantType = OccupantType.MIXED


class BedStatus(StrEnum):
    VACANT = "vacant"
    RESERVED = "reserved"  # Held; not assignable elsewhere
    OCCUPIED = "occupied"


class Bed(BaseModel):
    id: str
    room_id: str
    bed_number: str
    is_lower_berth: bool = False
    status: BedStatus = BedStatus.VACANT
    occupant_id: str | None = None
    hold_request_id: str | None = None  # Transfer request holding the bed
    held_for: str | None = None  # Person the transfer hold is for
    reserved_for: str | None = None  # Absent owner of a leave hold
    temporary_release: bool = False  # Leave hold may be used temporarily
    temporary_occupant_id: str | None = None

    @property
    def is_temporarily_assignable(self) -> bool:
        return (
            self.status == BedStatus.RESERVED
            and self.temporary_release
            and self.reserved_for is not None
            and self.occupant_id is None
            and self.temporary_occupant_id is None
            and self.hold_request_id is None
        )


class PersonKind(StrEnum):
    TECHNICIAN = "technician"
    EXTERNAL = "external"


class PersonStatus(StrEnum):
    ACTIVE = "active"
    PENDING_ARRIVAL = "pending_arrival"
    ON_LEAVE = "on_leave"
    TERMINATED = "terminated"
    ABSCONDED = "absconded"
    EXITED_COUNTRY = "exited_country"


class InductionStatus(StrEnum):
    PRE_INDUCTION = "pre_induction"
    INDUCTED = "inducted"


class ExitProcessStatus(StrEnum):
    IN_PROCESS = "in_process"
    COMPLETED = "completed"


class Person(BaseModel):
    """A technician or an external worker; both share one capability set."""

    id: str
    kind: PersonKind
    full_name: str
    employee_id: str | None = None  # Technicians
    company_name: str | None = None  # External personnel
    nationality: str | None = None
    gender: str | None = None
    date_of_birth: date | None = None
    trade: str | None = None
    shift: str | None = None
    camp_id: str | None = None
    bed_id: str | None = None
    status: PersonStatus = PersonStatus.ACTIVE
    induction_status: InductionStatus | None = None
    induction_completion_date: date | None = None
    camp_induction_completed: bool = False
    camp_induction_date: date | None = None
    camp_induction_time: str | None = None
    expected_arrival_date: date | None = None
    actual_arrival_date: date | None = None
    actual_arrival_time: str | None = None
    last_transfer_date: date | None = None
    exit_process_status: ExitProcessStatus | None = None
    exit_camp_id: str | None = None
    exit_start_date: date | None = None

    @property
    def reference(self) -> str | None:
        """Employee number for technicians, company for external personnel."""
        if self.kind == PersonKind.TECHNICIAN:
            return self.employee_id
        return self.company_name

    @property
    def label(self) -> str:
        return f"{self.full_name} ({self.reference or self.id})"

    def age_on(self, as_of: date) -> int | None:
        if self.date_of_birth is None:
            return None
        dob = self.date_of_birth
        age = as_of.year - dob.year
        if (as_of.month, as_of.day) < (dob.month, dob.day):
            age -= 1
        return age


class TransferReason(StrEnum):
    ONBOARDING_TRANSFER = "onboarding_transfer"
    PROJECT_TRANSFER = "project_transfer"
    ROOMMATE_ISSUE = "roommate_issue"
    CAMP_ENVIRONMENT = "camp_environment"
    URGENT_REQUIREMENT = "urgent_requirement"
    CAMP_CLOSURE = "camp_closure"
    SKILL_REQUIREMENT = "skill_requirement"
    PERSONAL_REQUEST = "personal_request"
    DISCIPLINARY = "disciplinary"
    EXIT_CASE = "exit_case"
    OTHER = "other"


class TransferStatus(StrEnum):
    PENDING_ALLOCATION = "pending_allocation"
    BEDS_ALLOCATED = "beds_allocated"
    ALLOCATION_REJECTED = "allocation_rejected"
    APPROVED_FOR_DISPATCH = "approved_for_dispatch"
    TECHNICIANS_DISPATCHED = "technicians_dispatched"
    PARTIALLY_ARRIVED = "partially_arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.COMPLETED, TransferStatus.CANCELLED)


class BedAllocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    bed_id: str
    room_id: str
    is_temporary: bool = False


class TransferRequest(BaseModel):
    """A batch movement order for one or more persons between two camps."""

    id: str
    source_camp_id: str
    target_camp_id: str
    person_ids: list[str]
    reason: TransferReason
    scheduled_dispatch_date: date
    scheduled_dispatch_time: str | None = None
    status: TransferStatus = TransferStatus.PENDING_ALLOCATION
    allocated_beds_data: dict[str, BedAllocation] = {}
    arrived_person_ids: list[str] = []
    prior_person_statuses: dict[str, PersonStatus] = {}  # Restored on cancellation
    requested_by: str | None = None
    request_date: date | None = None
    notes: str | None = None
    allocation_confirmed_by: str | None = None
    allocation_confirmed_date: date | None = None
    approved_by: str | None = None
    approved_date: date | None = None
    dispatched_by: str | None = None
    dispatch_date: date | None = None
    rejection_reason: str | None = None
    rejected_by: str | None = None
    rejected_date: date | None = None
    cancelled_by: str | None = None
    cancelled_date: date | None = None
    cancellation_reason: str | None = None

    @property
    def outstanding_person_ids(self) -> list[str]:
        arrived = set(self.arrived_person_ids)
        return [pid for pid in self.person_ids if pid not in arrived]


class TransferLogEntry(BaseModel):
    """Immutable audit record of one completed person movement."""

    model_config = ConfigDict(frozen=True)

    id: str
    person_id: str
    person_kind: PersonKind
    from_camp_id: str | None
    to_camp_id: str
    from_bed_id: str | None
    to_bed_id: str
    transfer_date: date
    transfer_time: str | None = None
    transfer_request_id: str
    reason: TransferReason
    transferred_by: str | None = None
    notes: str | None = None
    recorded_at: datetime


class SchedulePolicy(BaseModel):
    id: str
    season_name: str
    start_date: str  # MM-DD or YYYY-MM-DD; only month-day is used
    end_date: str
    allowed_days: list[str]
    allowed_time_slots: list[str] = []
    is_active: bool = True

    @property
    def start_month_day(self) -> str:
        return self.start_date[-5:]

    @property
    def end_month_day(self) -> str:
        return self.end_date[-5:]


class FlexibleWindow(BaseModel):
    kind: Literal["flexible"] = "flexible"


class ConstrainedWindow(BaseModel):
    kind: Literal["constrained"] = "constrained"
    season_name: str
    allowed_days: list[str]
    allowed_time_slots: list[str]


ScheduleWindow = FlexibleWindow | ConstrainedWindow


class DisciplinaryAction(BaseModel):
    id: str
    person_id: str
    action_type: str


class TransferSubmission(BaseModel):
    """Payload for submitting a new transfer request."""

    source_camp_id: str
    target_camp_id: str
    person_ids: list[str] = Field(min_length=1)
    reason: TransferReason
    scheduled_dispatch_date: date
    scheduled_dispatch_time: str | None = None
    notes: str | None = None
    requested_by: str | None = None


class ActorAction(BaseModel):
    actor_id: str | None = None
    reason: str | None = None


class ArrivalDetails(BaseModel):
    actual_arrival_date: date
    actual_arrival_time: str | None = None
    confirmed_by: str | None = None


class ExpectedArrival(BaseModel):
    transfer_request_id: str
    person_id: str
    full_name: str
    source_camp_id: str
    scheduled_dispatch_date: date
    allocation: BedAllocation | None = None
