"""FastAPI REST API server for PillNow Schedule Service.

This module provides HTTP endpoints for the mobile client: auth, the
medication catalog, schedule records, reconciled container views, caregiver
connections and dose notifications.

Dates and times travel as separate ``YYYY-MM-DD`` / ``HH:MM`` strings in
device-local time.
"""

import math
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

import crud
import schemas
import database
from auth import (
    can_view_user, create_access_token, get_current_user, hash_password,
    require_roles, verify_password,
)
from config import settings
from database import PENDING_STATUS, Role, User
from logger_config import setup_logger
from reconciler import medication_names, reconcile_containers, resolve_pill_name
from schedule_writer import apply_schedule_writes, plan_schedule_writes

logger = setup_logger(__name__, 'api.log')

app = FastAPI(
    title="PillNow Schedule API",
    description="Medication schedules for a three-container pill dispenser, for elders and caregivers",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

require_elder = require_roles(Role.ELDER)
require_admin = require_roles(Role.ADMIN)
require_caregiver = require_roles(Role.CAREGIVER)
require_admin_or_caregiver = require_roles(Role.ADMIN, Role.CAREGIVER)


def _ensure_can_view(db: Session, viewer: User, owner_id: int):
    if not can_view_user(db, viewer, owner_id):
        raise HTTPException(status_code=403, detail="Access denied. You can only view your own or connected elders' schedules.")


def _ensure_medication(db: Session, med_id: Optional[int]):
    if med_id is not None and not crud.get_medication(db, med_id):
        raise HTTPException(status_code=400, detail=f"Unknown medication {med_id}")


@app.get("/")
def root():
    """Root endpoint - service information"""
    return {
        "service": "PillNow Schedule API",
        "version": "1.0.0",
        "status": "healthy",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "schedules": "/medication_schedules",
            "monitor": "/monitor/schedule-data"
        }
    }


@app.get("/health")
def health_check():
    """Health check endpoint for monitoring"""
    return {
        "status": "healthy",
        "service": "pillnow_schedule_service",
        "database": settings.DATABASE_URL.split("://")[0]
    }


# --------------------------------------------------------------------------
# Auth
# --------------------------------------------------------------------------

@app.post("/auth/register", response_model=schemas.TokenResponse, status_code=201)
def register(payload: schemas.UserRegister, db: Session = Depends(database.get_db)):
    """Register an elder, caregiver or admin and return a bearer token."""
    if crud.find_existing_user(db, payload.email, payload.contact_number):
        raise HTTPException(status_code=400, detail="User with this email or contact number already exists")

    user = crud.create_user(db, payload.model_dump(exclude={'password'}), hash_password(payload.password))
    return {"token": create_access_token(user.user_id, user.role), "user": user}


@app.post("/auth/login", response_model=schemas.TokenResponse)
def login(payload: schemas.LoginRequest, db: Session = Depends(database.get_db)):
    """Exchange email and password for a bearer token."""
    user = crud.get_user_by_email(db, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    user = crud.record_login(db, user)
    logger.info(f"User {user.user_id} logged in")
    return {"token": create_access_token(user.user_id, user.role), "user": user}


@app.get("/auth/me", response_model=schemas.UserResponse)
def me(current: User = Depends(get_current_user)):
    return current


# --------------------------------------------------------------------------
# User management
# --------------------------------------------------------------------------

def _user_page(db: Session, page: int, limit: int, role: Optional[int], search: Optional[str]) -> dict:
    users, total = crud.list_users(db, role=role, search=search, skip=(page - 1) * limit, limit=limit)
    return {
        "users": users,
        "pagination": {
            "current_page": page,
            "total_pages": math.ceil(total / limit),
            "total": total,
            "has_next": (page - 1) * limit + len(users) < total,
            "has_prev": page > 1,
        },
    }


@app.get("/users", response_model=schemas.UserListResponse)
def list_users(
    role: Optional[int] = Query(None, ge=1, le=3, description="Filter by role"),
    search: Optional[str] = Query(None, description="Match name, email or contact number"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(database.get_db),
    current: User = Depends(require_admin)
):
    """List active users with pagination (admin only)."""
    return _user_page(db, page, limit, role, search)


@app.get("/users/role/elders", response_model=schemas.UserListResponse)
def list_elders(
    search: Optional[str] = Query(None, description="Match name, email or contact number"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(database.get_db),
    current: User = Depends(require_admin_or_caregiver)
):
    """List active elders with pagination."""
    return _user_page(db, page, limit, Role.ELDER, search)


@app.get("/users/phone/{contact_number}", response_model=schemas.UserResponse)
def get_elder_by_phone(
    contact_number: str,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_admin_or_caregiver)
):
    elder = crud.get_elder_by_contact(db, contact_number)
    if not elder:
        raise HTTPException(status_code=404, detail="No elder found with this contact number")
    return elder


@app.get("/users/{user_id}", response_model=schemas.UserResponse)
def get_user(
    user_id: int,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_admin_or_caregiver)
):
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.put("/users/{user_id}", response_model=schemas.UserActionResponse)
def update_user(
    user_id: int,
    updates: schemas.UserUpdate,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_admin)
):
    """Update a user's profile (admin only).

    Request body example:
    ```json
    {"name": "Rosa M. Elder", "age": 71, "isActive": true}
    ```
    """
    user = crud.get_user(db, user_id, active_only=False)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    update_dict = updates.model_dump(exclude_unset=True)
    if 'email' in update_dict or 'contact_number' in update_dict:
        other = crud.find_existing_user(
            db,
            update_dict.get('email') or user.email,
            update_dict.get('contact_number') or user.contact_number,
            exclude_user_id=user_id,
        )
        if other:
            raise HTTPException(status_code=400, detail="User with this email or contact number already exists")

    user = crud.update_user(db, user_id, update_dict)
    return {"message": "User updated successfully", "user": user}


@app.delete("/users/{user_id}", response_model=schemas.UserActionResponse)
def deactivate_user(
    user_id: int,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_admin)
):
    """Deactivate a user (admin only). The account and its records are kept."""
    user = crud.deactivate_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "User deactivated successfully", "user": user}


# --------------------------------------------------------------------------
# Medication catalog
# --------------------------------------------------------------------------

@app.get("/medications", response_model=List[schemas.MedicationResponse])
def list_medications(db: Session = Depends(database.get_db)):
    """List the medication catalog, ordered by name."""
    return crud.list_medications(db)


@app.get("/medications/{med_id}", response_model=schemas.MedicationResponse)
def get_medication(med_id: int, db: Session = Depends(database.get_db)):
    medication = crud.get_medication(db, med_id)
    if not medication:
        raise HTTPException(status_code=404, detail="Medication not found")
    return medication


@app.post("/medications", response_model=schemas.MedicationResponse, status_code=201)
def create_medication(
    payload: schemas.MedicationCreate,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_admin)
):
    """Add a catalog entry (admin only). Names are unique."""
    if crud.get_medication_by_name(db, payload.name):
        raise HTTPException(status_code=400, detail=f"Medication {payload.name!r} already exists")
    return crud.create_medication(db, payload.model_dump())


# --------------------------------------------------------------------------
# Schedule records
# --------------------------------------------------------------------------

@app.get("/medication_schedules", response_model=List[schemas.ScheduleRecordResponse])
def list_schedules(
    user: Optional[int] = Query(None, description="Owner's user id; defaults to the caller"),
    container: Optional[int] = Query(None, ge=1, le=3, description="Filter by container"),
    status: Optional[str] = Query(None, description="Filter by status, e.g. Pending"),
    db: Session = Depends(database.get_db),
    current: User = Depends(get_current_user)
):
    """List schedule records, newest dose first.

    Admins may omit ``user`` to list every record.
    """
    if user is None and current.role != Role.ADMIN:
        user = current.user_id
    if user is not None:
        _ensure_can_view(db, current, user)
    return crud.list_schedules(db, user=user, container=container, status=status)


@app.get("/medication_schedules/{schedule_id}", response_model=schemas.ScheduleRecordResponse)
def get_schedule(
    schedule_id: int,
    db: Session = Depends(database.get_db),
    current: User = Depends(get_current_user)
):
    record = crud.get_schedule(db, schedule_id)
    if not record:
        raise HTTPException(status_code=404, detail="Medication schedule not found")
    _ensure_can_view(db, current, record.user)
    return record


@app.post("/medication_schedules", response_model=schemas.ScheduleRecordResponse, status_code=201)
def create_schedule(
    payload: schemas.ScheduleRecordCreate,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_elder)
):
    """Insert a schedule record (elders only, for themselves).

    Request body example:
    ```json
    {"medication": 3, "container": 1, "date": "2024-06-01", "time": "08:00",
     "status": "Pending", "alertSent": false}
    ```

    The store assigns ``scheduleId``.
    """
    data = payload.model_dump()
    if data['user'] is None:
        data['user'] = current.user_id
    elif data['user'] != current.user_id:
        raise HTTPException(status_code=403, detail="Elders can only create their own schedules")

    _ensure_medication(db, data['medication'])
    return crud.create_schedule(db, data)


@app.put("/medication_schedules/{schedule_id}", response_model=schemas.ScheduleRecordResponse)
def update_schedule(
    schedule_id: int,
    updates: schemas.ScheduleRecordUpdate,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_elder)
):
    """Update one of the caller's schedule records. Only provided fields change."""
    record = crud.get_schedule(db, schedule_id)
    if not record or record.user != current.user_id:
        raise HTTPException(status_code=404, detail="Medication schedule not found")

    update_dict = updates.model_dump(exclude_unset=True)
    if update_dict.pop('schedule_id', schedule_id) != schedule_id:
        raise HTTPException(status_code=400, detail="scheduleId does not match the path")
    if update_dict.get('user', current.user_id) != current.user_id:
        raise HTTPException(status_code=403, detail="Schedules cannot be moved to another user")

    _ensure_medication(db, update_dict.get('medication'))
    return crud.update_schedule(db, schedule_id, update_dict)


@app.delete("/medication_schedules/{schedule_id}", status_code=200)
def delete_schedule(
    schedule_id: int,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_elder)
):
    """Delete one of the caller's schedule records."""
    record = crud.get_schedule(db, schedule_id)
    if not record or record.user != current.user_id:
        raise HTTPException(status_code=404, detail="Medication schedule not found")

    crud.delete_schedule(db, schedule_id)
    return {"message": "Medication schedule deleted successfully", "scheduleId": schedule_id}


# --------------------------------------------------------------------------
# Monitor: reconciled views and saving
# --------------------------------------------------------------------------

@app.get("/monitor/current-user", response_model=schemas.CurrentUserResponse)
def current_user(current: User = Depends(get_current_user)):
    """Validate that the caller is an elder."""
    if current.role != Role.ELDER:
        raise HTTPException(status_code=403, detail="Only Elders can access medication schedules")
    return {"user_id": current.user_id, "role": current.role, "message": "User validated successfully"}


@app.get("/monitor/schedule-data", response_model=schemas.ScheduleDataResponse)
def schedule_data(
    elder_id: Optional[int] = Query(None, alias="elderId", description="Elder to view (caregivers/admins)"),
    db: Session = Depends(database.get_db),
    current: User = Depends(get_current_user)
):
    """Reconciled per-container view for the caller or a connected elder.

    ``containerSchedules`` always has keys 1, 2 and 3, each
    ``{"pill": name-or-null, "alarms": [...]}``.
    """
    target = current.user_id if elder_id is None else elder_id
    _ensure_can_view(db, current, target)

    records = crud.list_schedules(db, user=target)
    views = reconcile_containers(records, crud.list_medications(db))
    return {
        "user_id": target,
        "schedules": records,
        "container_schedules": {c: asdict(view) for c, view in views.items()},
    }


@app.post("/monitor/save-schedule", response_model=schemas.SaveScheduleResponse)
def save_schedule(
    payload: schemas.SaveScheduleRequest,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_elder)
):
    """Persist desired container state for the calling elder.

    Alarms matching an existing record's exact slot update it. Remaining
    alarms move an unclaimed record of the same container and medication,
    and only the rest are inserted. Pills missing from the catalog are skipped.
    """
    writes = plan_schedule_writes(
        payload.selected_pills,
        payload.alarms,
        crud.list_medications(db),
        crud.list_schedules(db, user=current.user_id),
        current.user_id,
    )
    try:
        result = apply_schedule_writes(db, writes)
    except LookupError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"Saved schedule for user {current.user_id}: {result.created} created, {result.updated} updated")
    return {"message": "Schedule saved successfully", "created": result.created, "updated": result.updated}


# --------------------------------------------------------------------------
# Caregiver connections
# --------------------------------------------------------------------------

@app.post("/caregivers/connect-elder", response_model=schemas.ConnectionResponse, status_code=201)
def connect_elder(
    payload: schemas.ConnectElderRequest,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_caregiver)
):
    """Connect the calling caregiver to an elder by contact number."""
    elder = crud.get_elder_by_contact(db, payload.contact_number)
    if not elder:
        raise HTTPException(status_code=404, detail="No elder found with this contact number")
    if crud.get_active_connection(db, current.user_id, elder.user_id):
        raise HTTPException(status_code=400, detail="Already connected to this elder")
    return crud.create_connection(db, current.user_id, elder)


@app.get("/caregivers/connections", response_model=List[schemas.ConnectionResponse])
def list_connections(
    status: str = Query("active", pattern="^(active|inactive|pending|all)$"),
    db: Session = Depends(database.get_db),
    current: User = Depends(require_caregiver)
):
    return crud.list_connections(db, current.user_id, status)


@app.get("/caregivers/connections/{connection_id}", response_model=schemas.ConnectionResponse)
def get_connection(
    connection_id: int,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_caregiver)
):
    connection = crud.get_connection(db, connection_id, current.user_id)
    if not connection:
        raise HTTPException(status_code=404, detail="Connection not found")
    return connection


@app.put("/caregivers/connections/{connection_id}", response_model=schemas.ConnectionResponse)
def update_connection(
    connection_id: int,
    updates: schemas.ConnectionUpdate,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_caregiver)
):
    """Update notes or status of a connection."""
    connection = crud.update_connection(db, connection_id, current.user_id, updates.model_dump(exclude_unset=True))
    if not connection:
        raise HTTPException(status_code=404, detail="Connection not found")
    return connection


@app.delete("/caregivers/connections/{connection_id}", status_code=200)
def delete_connection(
    connection_id: int,
    db: Session = Depends(database.get_db),
    current: User = Depends(require_caregiver)
):
    if not crud.delete_connection(db, connection_id, current.user_id):
        raise HTTPException(status_code=404, detail="Connection not found")
    return {"message": "Connection removed successfully"}


@app.get("/caregivers/search-elders", response_model=schemas.ElderSearchResponse)
def search_elders(
    contact_number: str = Query(..., alias="contactNumber", min_length=10),
    db: Session = Depends(database.get_db),
    current: User = Depends(require_caregiver)
):
    """Look up an elder by contact number before connecting."""
    elder = crud.get_elder_by_contact(db, contact_number)
    if not elder:
        raise HTTPException(status_code=404, detail="No elder found with this contact number")
    connected = crud.get_active_connection(db, current.user_id, elder.user_id) is not None
    return {"elder": elder, "already_connected": connected}


# --------------------------------------------------------------------------
# Notifications
# --------------------------------------------------------------------------

def _doses(db: Session, records) -> List[dict]:
    names = medication_names(crud.list_medications(db))
    return [
        {
            "schedule_id": r.schedule_id,
            "medication": r.medication,
            "medication_name": resolve_pill_name(r.medication, names),
            "container": r.container,
            "scheduled_at": datetime.strptime(f"{r.date}T{r.time}", "%Y-%m-%dT%H:%M"),
            "alert_sent": r.alert_sent,
        }
        for r in records
    ]


@app.get("/notifications", response_model=List[schemas.NotificationResponse])
def list_notifications(
    user_id: Optional[int] = Query(None, alias="userId"),
    status: str = Query("active", pattern="^(active|inactive|all)$",
                        description="active: Pending doses, inactive: taken or missed, all"),
    db: Session = Depends(database.get_db),
    current: User = Depends(get_current_user)
):
    """Medication reminders for a user, one per schedule record, newest dose first."""
    target = current.user_id if user_id is None else user_id
    _ensure_can_view(db, current, target)

    records = crud.list_schedules(db, user=target, status=PENDING_STATUS if status == "active" else None)
    if status == "inactive":
        records = [r for r in records if r.status != PENDING_STATUS]

    catalog = {m.med_id: m for m in crud.list_medications(db)}
    notifications = []
    for r in records:
        medication = catalog.get(r.medication)
        name = medication.name if medication else str(r.medication)
        dosage = medication.dosage if medication and medication.dosage else "your dose"
        notifications.append({
            "id": r.schedule_id,
            "title": f"Medication Reminder: {name}",
            "message": f"Time to take {dosage} of {name}",
            "medication_name": name,
            "dosage": medication.dosage if medication else "",
            "container": r.container,
            "scheduled_at": datetime.strptime(f"{r.date}T{r.time}", "%Y-%m-%dT%H:%M"),
            "is_active": r.status == PENDING_STATUS,
            "created_at": r.created_at,
        })
    return notifications


@app.get("/notifications/upcoming", response_model=List[schemas.UpcomingDose])
def upcoming_doses(
    hours: int = Query(24, ge=1, le=24 * 14, description="Look-ahead window"),
    user_id: Optional[int] = Query(None, alias="userId"),
    db: Session = Depends(database.get_db),
    current: User = Depends(get_current_user)
):
    """Pending doses due within the next ``hours``, soonest first."""
    target = current.user_id if user_id is None else user_id
    _ensure_can_view(db, current, target)

    now = datetime.now()
    records = crud.get_upcoming_schedules(db, target, now, now + timedelta(hours=hours))
    return _doses(db, records)


@app.get("/notifications/due", response_model=List[schemas.UpcomingDose])
def due_doses(
    user_id: Optional[int] = Query(None, alias="userId"),
    db: Session = Depends(database.get_db),
    current: User = Depends(get_current_user)
):
    """Pending doses that are due and have not been alerted yet."""
    target = current.user_id if user_id is None else user_id
    _ensure_can_view(db, current, target)
    return _doses(db, crud.get_due_unalerted_schedules(db, datetime.now(), user=target))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info"
    )
