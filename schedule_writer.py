"""Schedule writer: persist desired container assignments as record upserts.

The desired state is one pill name and a list of alarm datetimes per
container. ``plan_schedule_writes`` diffs it against existing records and
decides create or update per alarm; ``ScheduleWriter`` sends the plan to the
REST store concurrently, and ``apply_schedule_writes`` applies it directly to
the database for the server-side save endpoint.

An alarm first claims an existing record holding exactly the same slot
(container, user, medication, date, time). Alarms left over then claim any
unclaimed record of the same (container, user, medication) and move it to the
new date and time. Each existing record is claimed at most once, so several
alarms never collapse onto one identity. Everything else is inserted and gets
its identity from the store.

Partially applied batches are not rolled back. Callers should reload and
reconcile after saving instead of trusting in-memory state.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

import crud
from database import CONTAINERS, PENDING_STATUS, Role
from logger_config import setup_logger
from reconciler import catalog_id, field_of
from store_client import Credentials, ScheduleStoreClient, StoreError

logger = setup_logger(__name__, 'writer.log')

CREATE = "create"
UPDATE = "update"

Slot = Tuple[int, int, int, str, str]


class ScheduleAuthorizationError(Exception):
    """The caller's role may not change medication schedules."""


class ScheduleSaveError(Exception):
    """At least one write in a batch failed.

    Carries the status and body of the first failing write in batch order.
    Writes that succeeded before or alongside it stay applied.
    """

    def __init__(self, status_code: Optional[int], body: str, failed: int, total: int):
        self.status_code = status_code
        self.body = body
        self.failed = failed
        self.total = total
        super().__init__(
            f"Failed to save schedule ({failed} of {total} writes failed): "
            f"status {status_code} - {body}"
        )


@dataclass
class ScheduleWrite:
    """One planned upsert. ``schedule_id`` is set only for updates."""
    action: str
    record: Dict[str, Any]
    schedule_id: Optional[int] = None

    def body(self) -> Dict[str, Any]:
        """JSON body for the store, camelCase keys."""
        return {
            "user": self.record["user"],
            "medication": self.record["medication"],
            "container": self.record["container"],
            "date": self.record["date"],
            "time": self.record["time"],
            "status": self.record["status"],
            "alertSent": self.record["alert_sent"],
        }


@dataclass
class SaveResult:
    created: int = 0
    updated: int = 0
    records: List[Any] = field(default_factory=list)


def _slot(record: Any) -> Optional[Slot]:
    try:
        return (
            int(field_of(record, 'container')),
            int(field_of(record, 'user')),
            int(field_of(record, 'medication')),
            str(field_of(record, 'date')),
            str(field_of(record, 'time')),
        )
    except (TypeError, ValueError):
        return None


def candidate_record(user: int, med_id: int, container: int, alarm: datetime) -> Dict[str, Any]:
    """Schedule record for one alarm, using the alarm's wall-clock date and time."""
    return {
        "user": user,
        "medication": med_id,
        "container": container,
        "date": alarm.date().isoformat(),
        "time": alarm.strftime("%H:%M"),
        "status": PENDING_STATUS,
        "alert_sent": False,
    }


def plan_schedule_writes(
    selected_pills: Mapping[int, Optional[str]],
    alarms: Mapping[int, Sequence[datetime]],
    medications: Iterable[Any],
    existing: Iterable[Any],
    user: int
) -> List[ScheduleWrite]:
    """Decide create-vs-update for every alarm of the desired state.

    Args:
        selected_pills: Container number -> pill name (or None)
        alarms: Container number -> alarm datetimes
        medications: Catalog entries (name -> medId resolution)
        existing: Existing schedule records in scope
        user: Owner of the records being written

    Returns:
        List[ScheduleWrite]: Writes in container, then alarm order
    """
    ids_by_name = {}
    for medication in medications:
        name = field_of(medication, 'name')
        med_id = catalog_id(medication)
        if name and med_id is not None and name not in ids_by_name:
            ids_by_name[name] = med_id

    by_slot: Dict[Slot, List[Any]] = {}
    by_triple: Dict[Tuple[int, int, int], List[Any]] = {}
    for record in existing:
        slot = _slot(record)
        if slot is not None and field_of(record, 'schedule_id') is not None:
            by_slot.setdefault(slot, []).append(record)
            by_triple.setdefault(slot[:3], []).append(record)

    desired = []
    for container in CONTAINERS:
        pill = selected_pills.get(container)
        container_alarms = alarms.get(container) or []
        if not pill or not container_alarms:
            continue

        med_id = ids_by_name.get(pill)
        if med_id is None:
            logger.info(f"Skipping container {container}: no medication named {pill!r}")
            continue

        seen = set()
        for alarm in container_alarms:
            record = candidate_record(user, med_id, container, alarm)
            slot = (container, user, med_id, record["date"], record["time"])
            if slot not in seen:
                seen.add(slot)
                desired.append((slot, record))

    # Exact slot first, then any unclaimed record of the same
    # (container, user, medication), which is moved to the new date and time.
    claimed = set()
    targets: List[Optional[Any]] = []
    for slot, _ in desired:
        match = next((r for r in by_slot.get(slot, []) if id(r) not in claimed), None)
        if match is not None:
            claimed.add(id(match))
        targets.append(match)

    for index, (slot, _) in enumerate(desired):
        if targets[index] is not None:
            continue
        match = next((r for r in by_triple.get(slot[:3], []) if id(r) not in claimed), None)
        if match is not None:
            claimed.add(id(match))
            targets[index] = match

    writes = []
    for (_, record), match in zip(desired, targets):
        if match is not None:
            writes.append(ScheduleWrite(UPDATE, record, int(field_of(match, 'schedule_id'))))
        else:
            writes.append(ScheduleWrite(CREATE, record))
    return writes


def _tally(writes: List[ScheduleWrite], records: List[Any]) -> SaveResult:
    return SaveResult(
        created=sum(1 for w in writes if w.action == CREATE),
        updated=sum(1 for w in writes if w.action == UPDATE),
        records=records,
    )


class ScheduleWriter:
    """Saves desired container state through the REST store."""

    def __init__(self, store: ScheduleStoreClient):
        self.store = store

    async def _dispatch(self, credentials: Credentials, write: ScheduleWrite):
        if write.action == UPDATE:
            return await self.store.update_schedule(credentials, write.schedule_id, write.body())
        return await self.store.create_schedule(credentials, write.body())

    async def save(
        self,
        credentials: Credentials,
        selected_pills: Mapping[int, Optional[str]],
        alarms: Mapping[int, Sequence[datetime]],
        medications: Optional[Iterable[Any]] = None,
        existing: Optional[Iterable[Any]] = None,
        user: Optional[int] = None
    ) -> SaveResult:
        """Persist the desired state.

        Args:
            credentials: Caller's credentials; must belong to an elder
            selected_pills: Container number -> pill name (or None)
            alarms: Container number -> alarm datetimes
            medications: Catalog; fetched from the store when omitted
            existing: Existing records; fetched for ``user`` when omitted
            user: Target user, defaults to the credentials' user

        Returns:
            SaveResult: Counts of created and updated records

        Raises:
            ScheduleAuthorizationError: Caller is not an elder; nothing written
            ScheduleSaveError: Any write failed
            StoreError: Loading the catalog or existing records failed
        """
        if credentials.role != Role.ELDER:
            raise ScheduleAuthorizationError("Only elders may save medication schedules")

        target_user = credentials.user_id if user is None else user
        if medications is None:
            medications = await self.store.list_medications(credentials)
        if existing is None:
            existing = await self.store.list_schedules(credentials, user=target_user)

        writes = plan_schedule_writes(selected_pills, alarms, medications, existing, target_user)
        logger.info(
            f"Saving schedule for user {target_user}: "
            f"{sum(w.action == CREATE for w in writes)} create(s), "
            f"{sum(w.action == UPDATE for w in writes)} update(s)"
        )

        results = await asyncio.gather(
            *(self._dispatch(credentials, w) for w in writes),
            return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            first = failures[0]
            if not isinstance(first, StoreError):
                raise first
            logger.error(f"{len(failures)} of {len(writes)} schedule writes failed; first: {first}")
            raise ScheduleSaveError(first.status_code, first.body, len(failures), len(writes)) from first

        return _tally(writes, list(results))


def apply_schedule_writes(db: Session, writes: List[ScheduleWrite]) -> SaveResult:
    """Apply a plan directly to the database, in order.

    Raises:
        LookupError: An update targets a record that no longer exists
    """
    records = []
    for write in writes:
        if write.action == UPDATE:
            record = crud.update_schedule(db, write.schedule_id, write.record)
            if record is None:
                raise LookupError(f"Schedule {write.schedule_id} not found")
        else:
            record = crud.create_schedule(db, write.record)
        records.append(record)
    return _tally(writes, records)
