import logging
import uuid
from datetime import UTC, date, datetime

from camp_transfers.models import Person, TransferLogEntry, TransferRequest
from camp_transfers.ports import TransferLogStore

logger = logging.getLogger(__name__)


class AuditTrail:
    """Append-only record of completed person movements."""

    def __init__(self, store: TransferLogStore) -> None:
        self.store = store

    async def record_arrival(
        self,
        request: TransferRequest,
        person: Person,
        to_bed_id: str,
        transfer_date: date,
        transfer_time: str | None,
        transferred_by: str | None,
        notes: str | None = None,
    ) -> TransferLogEntry:
        entry = TransferLogEntry(
            id=str(uuid.uuid4()),
            person_id=person.id,
            person_kind=person.kind,
            from_camp_id=person.camp_id,
            to_camp_id=request.target_camp_id,
            from_bed_id=person.bed_id,
            to_bed_id=to_bed_id,
            transfer_date=transfer_date,
            transfer_time=transfer_time,
            transfer_request_id=request.id,
            reason=request.reason,
            transferred_by=transferred_by,
            notes=notes,
            recorded_at=datetime.now(UTC),
        )
        await self.store.append(entry)
        logger.info(
            "Logged transfer of %s from camp %s to %s (request %s)",
            person.id,
            entry.from_camp_id,
            entry.to_camp_id,
            request.id,
        )
        return entry

    async def history_for_person(self, person_id: str) -> list[TransferLogEntry]:
        return await self.store.list_for_person(person_id)

    async def entries_for_request(self, request_id: str) -> list[TransferLogEntry]:
        return await self.store.list_for_request(request_id)
