"""Schedule reconciliation: flat schedule records to a three-container view.

For each dispenser container the most recent schedule date is the current
assignment. Every record on that date contributes an alarm, and the first of
them names the pill.

Records may be ORM rows, Pydantic models or plain dicts from the REST API
(camelCase or snake_case keys). Reconciliation never raises on bad data.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from database import CONTAINERS
from grouping import group_by
from logger_config import setup_logger

logger = setup_logger(__name__, 'reconciler.log')

DEFAULT_CONTAINER = 1

_ALIASES = {
    'alert_sent': 'alertSent',
    'schedule_id': 'scheduleId',
    'med_id': 'medId',
}


@dataclass
class ContainerView:
    """Display summary of one container."""
    pill: Optional[str] = None
    alarms: List[datetime] = field(default_factory=list)


def field_of(record: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a mapping or an object, accepting camelCase keys."""
    if isinstance(record, Mapping):
        if name in record:
            return record[name]
        return record.get(_ALIASES.get(name, name), default)
    return getattr(record, name, default)


def container_of(record: Any) -> int:
    """Container number of a record; missing or invalid values count as 1."""
    raw = field_of(record, 'container')
    try:
        container = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_CONTAINER
    return container if container in CONTAINERS else DEFAULT_CONTAINER


def _timestamp_key(record: Any) -> str:
    return f"{field_of(record, 'date') or ''}T{field_of(record, 'time') or ''}"


def alarm_datetime(record: Any) -> Optional[datetime]:
    """Combine a record's date and time into a naive local datetime."""
    try:
        return datetime.strptime(_timestamp_key(record), "%Y-%m-%dT%H:%M")
    except ValueError:
        logger.warning(
            f"Skipping alarm with unparseable date/time on schedule "
            f"{field_of(record, 'schedule_id')}: {_timestamp_key(record)!r}"
        )
        return None


def catalog_id(medication: Any) -> Optional[int]:
    """A catalog entry's medId as an int, or None when missing or malformed."""
    try:
        return int(field_of(medication, 'med_id'))
    except (TypeError, ValueError):
        return None


def medication_names(medications: Iterable[Any]) -> Dict[int, str]:
    """Build a medId -> name lookup from catalog entries.

    Entries without a usable medId or name are skipped.
    """
    names = {}
    for medication in medications:
        med_id = catalog_id(medication)
        name = field_of(medication, 'name')
        if med_id is not None and name:
            names[med_id] = name
    return names


def resolve_pill_name(raw: Any, names: Dict[int, str]) -> Optional[str]:
    """Medication name for a record's ``medication`` value.

    A value that is already a catalog name is kept. Unknown ids fall back to
    the raw value as a string.
    """
    if raw is None:
        return None
    if isinstance(raw, str) and raw in names.values():
        return raw
    try:
        return names.get(int(raw), str(raw))
    except (TypeError, ValueError):
        return str(raw)


def latest_set(records: List[Any]) -> List[Any]:
    """Records sharing the most recent date, newest first."""
    ordered = sorted(records, key=_timestamp_key, reverse=True)
    if not ordered:
        return []
    latest_date = field_of(ordered[0], 'date')
    return [r for r in ordered if field_of(r, 'date') == latest_date]


def reconcile_containers(
    records: Iterable[Any],
    medications: Iterable[Any] = (),
    user: Optional[int] = None
) -> Dict[int, ContainerView]:
    """Reduce schedule records to one view per container.

    Args:
        records: Schedule records, in any order
        medications: Catalog entries used to turn medIds into names
        user: When given, only this user's records are considered

    Returns:
        Dict[int, ContainerView]: Exactly keys 1, 2 and 3
    """
    if user is not None:
        records = [r for r in records if field_of(r, 'user') == user]

    names = medication_names(medications)
    by_container = group_by(records, container_of)

    views = {}
    for container in CONTAINERS:
        current = latest_set(by_container.get(container, []))
        if not current:
            views[container] = ContainerView()
            continue

        alarms = [alarm_datetime(r) for r in current]
        views[container] = ContainerView(
            pill=resolve_pill_name(field_of(current[0], 'medication'), names),
            alarms=[a for a in alarms if a is not None],
        )
    return views
