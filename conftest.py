"""Shared pytest fixtures: a throwaway SQLite database and API helpers."""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="pillnow-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import crud  # noqa: E402
import database  # noqa: E402
from database import Role  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_tables():
    """Recreate every table so each test starts from an empty store."""
    database.Base.metadata.drop_all(bind=database.engine)
    database.Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture
def db():
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from api_server import app
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def catalog(db):
    """Seed the medication catalog. Returns name -> medId."""
    names = {}
    for name, dosage in (("Metformin", "500mg"), ("Aspirin", "81mg"), ("Losartan", "50mg")):
        medication = crud.create_medication(db, {"name": name, "dosage": dosage, "form": "tablet"})
        names[name] = medication.med_id
    return names


def register(client, role, email, contact_number, name="Test User"):
    """Register through the API and return token, user id and auth headers."""
    response = client.post("/auth/register", json={
        "name": name,
        "email": email,
        "contactNumber": contact_number,
        "password": "secret123",
        "role": int(role),
        "age": 70 if role == Role.ELDER else 40,
    })
    assert response.status_code == 201, response.text
    data = response.json()
    return {
        "token": data["token"],
        "user_id": data["user"]["userId"],
        "role": int(role),
        "headers": {"Authorization": f"Bearer {data['token']}"},
    }


@pytest.fixture
def elder(client):
    return register(client, Role.ELDER, "elder@example.com", "5550000001", name="Rosa Elder")


@pytest.fixture
def caregiver(client):
    return register(client, Role.CAREGIVER, "carer@example.com", "5550000002", name="Sam Carer")


@pytest.fixture
def admin(client):
    return register(client, Role.ADMIN, "admin@example.com", "5550000003", name="Ada Admin")
