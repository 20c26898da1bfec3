"""CRUD operations for PillNow Schedule Service.

This module provides database operations for users, the medication catalog,
schedule records and caregiver connections.
Schedule identity is always assigned here, never taken from the caller.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from database import (
    CaregiverConnection, ConnectionStatus, Medication, PENDING_STATUS, Role,
    ScheduleRecord, User,
)
from logger_config import setup_logger

logger = setup_logger(__name__, 'crud.log')

USER_FIELDS = ('name', 'email', 'contact_number', 'role', 'age', 'is_active')
SCHEDULE_FIELDS = ('user', 'medication', 'container', 'date', 'time', 'status', 'alert_sent')


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------------------------------
# Users
# --------------------------------------------------------------------------

def create_user(db: Session, user_data: dict, password_hash: str) -> User:
    """Create a user account.

    Args:
        db: Database session
        user_data: Dictionary with name, email, contact_number, role, age
        password_hash: Already hashed password

    Returns:
        User: Created user
    """
    user = User(
        name=user_data['name'],
        email=user_data['email'].lower(),
        contact_number=user_data['contact_number'].strip(),
        password_hash=password_hash,
        role=user_data['role'],
        age=user_data.get('age'),
        is_active=True,
        created_at=_now(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered user {user.user_id} with role {user.role}")
    return user


def get_user(db: Session, user_id: int, active_only: bool = True) -> Optional[User]:
    query = db.query(User).filter(User.user_id == user_id)
    if active_only:
        query = query.filter(User.is_active.is_(True))
    return query.first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.lower(), User.is_active.is_(True)).first()


def find_existing_user(
    db: Session,
    email: str,
    contact_number: str,
    exclude_user_id: Optional[int] = None
) -> Optional[User]:
    """Return any other user already holding this email or contact number."""
    query = db.query(User).filter(
        or_(User.email == email.lower(), User.contact_number == contact_number.strip())
    )
    if exclude_user_id is not None:
        query = query.filter(User.user_id != exclude_user_id)
    return query.first()


def get_elder_by_contact(db: Session, contact_number: str) -> Optional[User]:
    return db.query(User).filter(
        User.contact_number == contact_number.strip(),
        User.role == Role.ELDER,
        User.is_active.is_(True),
    ).first()


def record_login(db: Session, user: User) -> User:
    user.last_login = _now()
    db.commit()
    db.refresh(user)
    return user


def list_users(
    db: Session,
    role: Optional[int] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 10
) -> Tuple[List[User], int]:
    """List active users, newest account first.

    Args:
        db: Database session
        role: Optional role filter
        search: Optional case-insensitive match on name, email or contact number
        skip: Number of users to skip (pagination)
        limit: Maximum number of users to return

    Returns:
        Tuple[List[User], int]: One page of users and the total match count
    """
    query = db.query(User).filter(User.is_active.is_(True))
    if role is not None:
        query = query.filter(User.role == role)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            User.name.ilike(pattern),
            User.email.ilike(pattern),
            User.contact_number.ilike(pattern),
        ))

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.user_id.desc()).offset(skip).limit(limit).all()
    return users, total


def update_user(db: Session, user_id: int, updates: dict) -> Optional[User]:
    """Update a user's profile, including deactivated accounts.

    The password cannot be changed here; None values and unknown keys are
    ignored.
    """
    user = get_user(db, user_id, active_only=False)
    if not user:
        return None

    for key, value in updates.items():
        if key in USER_FIELDS and value is not None:
            if key == 'email':
                value = value.lower()
            elif key == 'contact_number':
                value = value.strip()
            setattr(user, key, value)

    db.commit()
    db.refresh(user)
    logger.info(f"Updated user {user_id}: {sorted(k for k in updates if k in USER_FIELDS)}")
    return user


def deactivate_user(db: Session, user_id: int) -> Optional[User]:
    """Soft-delete a user. Deactivated users cannot log in or use their token."""
    user = get_user(db, user_id, active_only=False)
    if not user:
        return None

    user.is_active = False
    db.commit()
    db.refresh(user)
    logger.info(f"Deactivated user {user_id}")
    return user

# --------------------------------------------------------------------------
# Medication catalog
# --------------------------------------------------------------------------

def create_medication(db: Session, medication_data: dict) -> Medication:
    medication = Medication(created_at=_now(), **medication_data)
    db.add(medication)
    db.commit()
    db.refresh(medication)
    return medication


def list_medications(db: Session) -> List[Medication]:
    return db.query(Medication).order_by(Medication.name).all()


def get_medication(db: Session, med_id: int) -> Optional[Medication]:
    return db.query(Medication).filter(Medication.med_id == med_id).first()


def get_medication_by_name(db: Session, name: str) -> Optional[Medication]:
    return db.query(Medication).filter(Medication.name == name).first()


# --------------------------------------------------------------------------
# Schedule records
# --------------------------------------------------------------------------

def create_schedule(db: Session, schedule_data: dict) -> ScheduleRecord:
    """Insert a schedule record with a store-assigned ``schedule_id``.

    Args:
        db: Database session
        schedule_data: Dictionary with user, medication, container, date,
            time and optionally status, alert_sent. Any ``schedule_id`` key
            is ignored.

    Returns:
        ScheduleRecord: The persisted record
    """
    now = _now()
    record = ScheduleRecord(
        user=schedule_data['user'],
        medication=schedule_data['medication'],
        container=schedule_data['container'],
        date=schedule_data['date'],
        time=schedule_data['time'],
        status=schedule_data.get('status') or PENDING_STATUS,
        alert_sent=bool(schedule_data.get('alert_sent', False)),
        created_at=now,
        updated_at=now,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(
        f"Created schedule {record.schedule_id}: user={record.user} container={record.container} "
        f"medication={record.medication} at {record.date} {record.time}"
    )
    return record


def list_schedules(
    db: Session,
    user: Optional[int] = None,
    container: Optional[int] = None,
    status: Optional[str] = None,
    limit: Optional[int] = None
) -> List[ScheduleRecord]:
    """List schedule records, newest dose first.

    Args:
        db: Database session
        user: Optional owner filter
        container: Optional container filter (1-3)
        status: Optional exact status filter (e.g. "Pending")
        limit: Optional maximum number of results

    Returns:
        List[ScheduleRecord]: Matching records ordered by date, time, id descending
    """
    query = db.query(ScheduleRecord)
    if user is not None:
        query = query.filter(ScheduleRecord.user == user)
    if container is not None:
        query = query.filter(ScheduleRecord.container == container)
    if status:
        query = query.filter(ScheduleRecord.status == status)

    query = query.order_by(
        ScheduleRecord.date.desc(),
        ScheduleRecord.time.desc(),
        ScheduleRecord.schedule_id.desc(),
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def get_schedule(db: Session, schedule_id: int) -> Optional[ScheduleRecord]:
    return db.query(ScheduleRecord).filter(ScheduleRecord.schedule_id == schedule_id).first()


def update_schedule(db: Session, schedule_id: int, updates: dict) -> Optional[ScheduleRecord]:
    """Update an existing schedule record.

    Args:
        db: Database session
        schedule_id: Record identity
        updates: Fields to change; None values and unknown keys are ignored

    Returns:
        Optional[ScheduleRecord]: Updated record, None if not found
    """
    record = get_schedule(db, schedule_id)
    if not record:
        return None

    for key, value in updates.items():
        if key in SCHEDULE_FIELDS and value is not None:
            setattr(record, key, value)

    record.updated_at = _now()
    db.commit()
    db.refresh(record)
    logger.info(f"Updated schedule {schedule_id}: {sorted(k for k in updates if k in SCHEDULE_FIELDS)}")
    return record


def delete_schedule(db: Session, schedule_id: int) -> bool:
    """Delete a schedule record.

    Returns:
        bool: True if deleted, False if not found
    """
    record = get_schedule(db, schedule_id)
    if not record:
        return False

    db.delete(record)
    db.commit()
    logger.info(f"Deleted schedule {schedule_id}")
    return True


def _at_or_before(moment: datetime):
    date_str = moment.strftime("%Y-%m-%d")
    time_str = moment.strftime("%H:%M")
    return or_(
        ScheduleRecord.date < date_str,
        and_(ScheduleRecord.date == date_str, ScheduleRecord.time <= time_str),
    )


def _after(moment: datetime):
    date_str = moment.strftime("%Y-%m-%d")
    time_str = moment.strftime("%H:%M")
    return or_(
        ScheduleRecord.date > date_str,
        and_(ScheduleRecord.date == date_str, ScheduleRecord.time > time_str),
    )


def get_upcoming_schedules(
    db: Session,
    user: int,
    start: datetime,
    end: datetime
) -> List[ScheduleRecord]:
    """Pending records for a user due after ``start`` and at or before ``end``.

    ``start`` and ``end`` are naive device-local datetimes, matching the
    stored date and time strings.
    """
    return db.query(ScheduleRecord).filter(
        ScheduleRecord.user == user,
        ScheduleRecord.status == PENDING_STATUS,
        _after(start),
        _at_or_before(end),
    ).order_by(ScheduleRecord.date, ScheduleRecord.time, ScheduleRecord.schedule_id).all()


def get_due_unalerted_schedules(
    db: Session,
    now: datetime,
    user: Optional[int] = None
) -> List[ScheduleRecord]:
    """Pending records due at or before ``now`` that have not been alerted yet.

    Args:
        db: Database session
        now: Naive device-local datetime
        user: Optional owner filter

    Returns:
        List[ScheduleRecord]: Due records, oldest first
    """
    query = db.query(ScheduleRecord).filter(
        ScheduleRecord.status == PENDING_STATUS,
        ScheduleRecord.alert_sent.is_(False),
        _at_or_before(now),
    )
    if user is not None:
        query = query.filter(ScheduleRecord.user == user)
    return query.order_by(ScheduleRecord.date, ScheduleRecord.time).all()


def mark_alert_sent(db: Session, records: List[ScheduleRecord]) -> int:
    """Flag records as alerted in one commit. Returns the number flagged."""
    now = _now()
    for record in records:
        record.alert_sent = True
        record.updated_at = now
    db.commit()
    return len(records)


# --------------------------------------------------------------------------
# Caregiver connections
# --------------------------------------------------------------------------

def create_connection(db: Session, caregiver_id: int, elder: User) -> CaregiverConnection:
    """Connect a caregiver to an elder, reactivating a previous link if one exists."""
    now = _now()
    connection = db.query(CaregiverConnection).filter(
        CaregiverConnection.caregiver_id == caregiver_id,
        CaregiverConnection.elder_id == elder.user_id,
    ).first()

    if connection is None:
        connection = CaregiverConnection(caregiver_id=caregiver_id, elder_id=elder.user_id, notes="")
        db.add(connection)

    connection.elder_name = elder.name
    connection.elder_contact_number = elder.contact_number
    connection.elder_email = elder.email
    connection.elder_age = elder.age
    connection.connection_status = ConnectionStatus.ACTIVE.value
    connection.connected_at = now
    connection.last_interaction = now
    db.commit()
    db.refresh(connection)
    logger.info(f"Caregiver {caregiver_id} connected to elder {elder.user_id}")
    return connection


def list_connections(
    db: Session,
    caregiver_id: int,
    status: Optional[str] = ConnectionStatus.ACTIVE.value
) -> List[CaregiverConnection]:
    """List a caregiver's connections. ``status=None`` or "all" returns every link."""
    query = db.query(CaregiverConnection).filter(CaregiverConnection.caregiver_id == caregiver_id)
    if status and status != "all":
        query = query.filter(CaregiverConnection.connection_status == status)
    return query.order_by(CaregiverConnection.connected_at.desc()).all()


def get_connection(db: Session, connection_id: int, caregiver_id: int) -> Optional[CaregiverConnection]:
    return db.query(CaregiverConnection).filter(
        CaregiverConnection.id == connection_id,
        CaregiverConnection.caregiver_id == caregiver_id,
    ).first()


def get_active_connection(db: Session, caregiver_id: int, elder_id: int) -> Optional[CaregiverConnection]:
    return db.query(CaregiverConnection).filter(
        CaregiverConnection.caregiver_id == caregiver_id,
        CaregiverConnection.elder_id == elder_id,
        CaregiverConnection.connection_status == ConnectionStatus.ACTIVE.value,
    ).first()


def update_connection(
    db: Session,
    connection_id: int,
    caregiver_id: int,
    updates: dict
) -> Optional[CaregiverConnection]:
    connection = get_connection(db, connection_id, caregiver_id)
    if not connection:
        return None

    for key in ('notes', 'connection_status'):
        if updates.get(key) is not None:
            setattr(connection, key, updates[key])
    connection.last_interaction = _now()
    db.commit()
    db.refresh(connection)
    return connection


def delete_connection(db: Session, connection_id: int, caregiver_id: int) -> bool:
    connection = get_connection(db, connection_id, caregiver_id)
    if not connection:
        return False

    db.delete(connection)
    db.commit()
    logger.info(f"Caregiver {caregiver_id} removed connection {connection_id}")
    return True
