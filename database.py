"""Database module for PillNow Schedule Service.

This module defines SQLAlchemy models and database session management.
Schedule dates and times are stored as the ``YYYY-MM-DD`` / ``HH:MM`` strings
the devices exchange, in device-local time with no offset.
"""

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, sessionmaker
import enum

from config import settings

# SQLAlchemy Base
Base = declarative_base()


class Role(enum.IntEnum):
    """Numeric user roles carried in bearer tokens"""
    ADMIN = 1
    ELDER = 2
    CAREGIVER = 3


class ConnectionStatus(enum.Enum):
    """Status values for caregiver-elder connections"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


PENDING_STATUS = "Pending"
CONTAINERS = (1, 2, 3)


class User(Base):
    """Elder, caregiver or admin account."""

    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    contact_number = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(Integer, nullable=False, index=True, doc="1=admin, 2=elder, 3=caregiver")
    age = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<User(user_id={self.user_id}, email={self.email}, role={self.role})>"


class Medication(Base):
    """Medication catalog entry. Read-only reference data for schedules."""

    __tablename__ = "medications"

    med_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True, index=True)
    dosage = Column(String, default="")
    form = Column(String, default="")
    description = Column(String, default="")
    manufacturer = Column(String, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Medication(med_id={self.med_id}, name={self.name})>"


class ScheduleRecord(Base):
    """One planned dose: a medication in a container at a date and time.

    schedule_id is assigned by the store on insert.
    """

    __tablename__ = "medication_schedules"

    schedule_id = Column(Integer, primary_key=True, autoincrement=True, doc="Store-assigned identity")
    user = Column(Integer, nullable=False, index=True, doc="Owning elder's user id")
    medication = Column(Integer, nullable=False, doc="Medication medId")
    container = Column(Integer, nullable=False, doc="Dispenser slot 1, 2 or 3")
    date = Column(String(10), nullable=False, doc="YYYY-MM-DD, device-local")
    time = Column(String(5), nullable=False, doc="HH:MM, device-local")
    status = Column(String, default=PENDING_STATUS, nullable=False, index=True)
    alert_sent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_schedule_user_container', 'user', 'container'),
        Index('idx_schedule_user_date', 'user', 'date', 'time'),
    )

    def __repr__(self):
        return (
            f"<ScheduleRecord(schedule_id={self.schedule_id}, user={self.user}, "
            f"medication={self.medication}, container={self.container}, "
            f"at={self.date} {self.time}, status={self.status})>"
        )


class CaregiverConnection(Base):
    """Link between a caregiver and an elder they monitor."""

    __tablename__ = "caregiver_connections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    caregiver_id = Column(Integer, nullable=False, index=True)
    elder_id = Column(Integer, nullable=False, index=True)
    elder_name = Column(String, nullable=False)
    elder_contact_number = Column(String, nullable=False)
    elder_email = Column(String, nullable=False)
    elder_age = Column(Integer, nullable=True)
    connection_status = Column(String, default=ConnectionStatus.ACTIVE.value, nullable=False)
    connected_at = Column(DateTime(timezone=True), nullable=False)
    last_interaction = Column(DateTime(timezone=True), nullable=False)
    notes = Column(String(500), default="")

    __table_args__ = (
        UniqueConstraint('caregiver_id', 'elder_id', name='uq_caregiver_elder'),
        Index('idx_caregiver_status', 'caregiver_id', 'connection_status'),
        Index('idx_elder_status', 'elder_id', 'connection_status'),
    )


# Database Engine Setup
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {},
    echo=False  # Set to True for SQL debugging
)

# Session Factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database session dependency for FastAPI.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Create all tables
Base.metadata.create_all(bind=engine)
