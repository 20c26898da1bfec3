"""Pydantic schemas for PillNow Schedule Service.

This module defines request and response schemas for API validation.
Wire keys are camelCase (``scheduleId``, ``alertSent``, ``medId``) as the
mobile client sends them; Python attributes stay snake_case.

Schedule payloads are closed: unknown keys, containers outside 1..3 and
malformed dates or times are rejected instead of defaulted.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'
TIME_PATTERN = r'^([01]\d|2[0-3]):[0-5]\d$'


def _check_calendar_date(value: Optional[str]) -> Optional[str]:
    if value is not None:
        datetime.strptime(value, "%Y-%m-%d")
    return value


class WireModel(BaseModel):
    """Base for every payload: camelCase aliases, ORM-friendly."""

    class Config:
        """Pydantic configuration"""
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# --------------------------------------------------------------------------
# Schedule records
# --------------------------------------------------------------------------

class ScheduleRecordCreate(WireModel):
    """Schema for inserting a schedule record.

    Identity is assigned by the store, so ``scheduleId`` is not accepted.
    ``user`` defaults to the authenticated elder.
    """

    user: Optional[int] = Field(None, description="Owning elder's user id")
    medication: int = Field(..., ge=1, description="Medication medId")
    container: int = Field(..., ge=1, le=3, description="Dispenser slot 1, 2 or 3")
    date: str = Field(..., pattern=DATE_PATTERN, examples=["2024-06-01"])
    time: str = Field(..., pattern=TIME_PATTERN, examples=["08:00"])
    status: str = Field(default="Pending", min_length=1)
    alert_sent: bool = False

    @field_validator('date')
    @classmethod
    def date_is_calendar_day(cls, value):
        return _check_calendar_date(value)

    class Config:
        extra = "forbid"


class ScheduleRecordUpdate(WireModel):
    """Schema for updating a schedule record. Only provided fields change.

    ``scheduleId`` may be echoed back by clients but must match the path.
    """

    schedule_id: Optional[int] = None
    user: Optional[int] = None
    medication: Optional[int] = Field(None, ge=1)
    container: Optional[int] = Field(None, ge=1, le=3)
    date: Optional[str] = Field(None, pattern=DATE_PATTERN)
    time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    status: Optional[str] = Field(None, min_length=1)
    alert_sent: Optional[bool] = None

    @field_validator('date')
    @classmethod
    def date_is_calendar_day(cls, value):
        return _check_calendar_date(value)

    class Config:
        extra = "forbid"


class ScheduleRecordResponse(WireModel):
    """A persisted schedule record."""

    schedule_id: int
    user: int
    medication: int
    container: int
    date: str
    time: str
    status: str
    alert_sent: bool
    created_at: datetime
    updated_at: datetime


# --------------------------------------------------------------------------
# Medications
# --------------------------------------------------------------------------

class MedicationCreate(WireModel):
    name: str = Field(..., min_length=1, max_length=200)
    dosage: str = ""
    form: str = ""
    description: str = ""
    manufacturer: str = ""


class MedicationResponse(WireModel):
    med_id: int
    name: str
    dosage: str
    form: str
    description: str
    manufacturer: str


# --------------------------------------------------------------------------
# Users and auth
# --------------------------------------------------------------------------

class UserRegister(WireModel):
    name: str = Field(..., min_length=2)
    email: str = Field(..., pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    contact_number: str = Field(..., min_length=10)
    password: str = Field(..., min_length=6)
    role: int = Field(..., ge=1, le=3, description="1=admin, 2=elder, 3=caregiver")
    age: Optional[int] = Field(None, ge=0, le=150)


class LoginRequest(WireModel):
    email: str
    password: str = Field(..., min_length=1)


class UserResponse(WireModel):
    """Public profile; never includes the password hash."""

    user_id: int
    name: str
    email: str
    contact_number: str
    role: int
    age: Optional[int] = None
    is_active: bool


class UserUpdate(WireModel):
    """Admin profile update. Passwords cannot be changed through this schema."""

    name: Optional[str] = Field(None, min_length=2)
    email: Optional[str] = Field(None, pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    contact_number: Optional[str] = Field(None, min_length=10)
    role: Optional[int] = Field(None, ge=1, le=3)
    age: Optional[int] = Field(None, ge=0, le=150)
    is_active: Optional[bool] = None

    class Config:
        extra = "forbid"


class Pagination(WireModel):
    current_page: int
    total_pages: int
    total: int
    has_next: bool
    has_prev: bool


class UserListResponse(WireModel):
    users: List[UserResponse]
    pagination: Pagination


class UserActionResponse(WireModel):
    message: str
    user: UserResponse


class TokenResponse(WireModel):
    token: str
    user: UserResponse


class CurrentUserResponse(WireModel):
    user_id: int
    role: int
    message: str


# --------------------------------------------------------------------------
# Container views and saving
# --------------------------------------------------------------------------

class ContainerViewResponse(WireModel):
    """Display-ready summary of one container."""

    pill: Optional[str] = None
    alarms: List[datetime] = Field(default_factory=list)


class ScheduleDataResponse(WireModel):
    user_id: int
    schedules: List[ScheduleRecordResponse]
    container_schedules: Dict[int, ContainerViewResponse]


class SaveScheduleRequest(WireModel):
    """Desired per-container state.

    Example:
    ```json
    {
        "selectedPills": {"1": "Metformin", "2": null, "3": null},
        "alarms": {"1": ["2024-06-01T08:00:00"], "2": [], "3": []}
    }
    ```
    """

    selected_pills: Dict[int, Optional[str]] = Field(default_factory=dict)
    alarms: Dict[int, List[datetime]] = Field(default_factory=dict)

    @field_validator('selected_pills', 'alarms')
    @classmethod
    def containers_in_range(cls, value):
        for container in value:
            if container not in (1, 2, 3):
                raise ValueError(f"container must be 1, 2 or 3, got {container}")
        return value


class SaveScheduleResponse(WireModel):
    message: str
    created: int
    updated: int


# --------------------------------------------------------------------------
# Caregiver connections
# --------------------------------------------------------------------------

class ConnectElderRequest(WireModel):
    contact_number: str = Field(..., min_length=10)


class ConnectionUpdate(WireModel):
    notes: Optional[str] = Field(None, max_length=500)
    connection_status: Optional[str] = Field(None, pattern="^(active|inactive|pending)$")


class ConnectionResponse(WireModel):
    id: int
    elder_id: int
    elder_name: str
    elder_contact_number: str
    elder_email: str
    elder_age: Optional[int] = None
    connection_status: str
    connected_at: datetime
    last_interaction: datetime
    notes: str


class ElderSearchResponse(WireModel):
    elder: UserResponse
    already_connected: bool


# --------------------------------------------------------------------------
# Notifications
# --------------------------------------------------------------------------

class UpcomingDose(WireModel):
    schedule_id: int
    medication: int
    medication_name: str
    container: int
    scheduled_at: datetime
    alert_sent: bool


class NotificationResponse(WireModel):
    """A medication reminder derived from one schedule record."""

    id: int
    type: str = "medication"
    title: str
    message: str
    medication_name: str
    dosage: str
    container: int
    scheduled_at: datetime
    is_active: bool
    created_at: datetime
