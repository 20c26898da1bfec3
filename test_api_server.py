"""Tests for the REST API."""

from datetime import datetime, timedelta

import crud
from conftest import register
from database import Role


def schedule_body(medication, container=1, date="2024-06-01", time="08:00", **extra):
    return {"medication": medication, "container": container, "date": date, "time": time, **extra}


def test_health_and_root(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").json()["service"] == "PillNow Schedule API"


# Auth ------------------------------------------------------------------------

def test_register_login_and_me(client, elder):
    response = client.post("/auth/login", json={"email": "elder@example.com", "password": "secret123"})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["role"] == Role.ELDER
    assert "passwordHash" not in body["user"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["userId"] == elder["user_id"]


def test_duplicate_registration_rejected(client, elder):
    response = client.post("/auth/register", json={
        "name": "Other", "email": "elder@example.com", "contactNumber": "5559999999",
        "password": "secret123", "role": 2,
    })
    assert response.status_code == 400


def test_bad_password_rejected(client, elder):
    response = client.post("/auth/login", json={"email": "elder@example.com", "password": "wrong"})
    assert response.status_code == 401


def test_missing_or_invalid_token(client):
    assert client.get("/medication_schedules").status_code == 401
    response = client.get("/medication_schedules", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_only_elders_may_create_schedules(client, caregiver, catalog):
    response = client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"]),
                           headers=caregiver["headers"])
    assert response.status_code == 403
    assert response.json()["detail"] == "Elder access required"


def test_current_user_requires_elder(client, elder, caregiver):
    ok = client.get("/monitor/current-user", headers=elder["headers"])
    assert ok.status_code == 200
    assert ok.json() == {"userId": elder["user_id"], "role": 2, "message": "User validated successfully"}

    denied = client.get("/monitor/current-user", headers=caregiver["headers"])
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Only Elders can access medication schedules"


# Medications -----------------------------------------------------------------

def test_medication_catalog(client, admin, elder):
    created = client.post("/medications", json={"name": "Atorvastatin", "dosage": "20mg"},
                          headers=admin["headers"])
    assert created.status_code == 201
    med_id = created.json()["medId"]

    assert client.get(f"/medications/{med_id}").json()["name"] == "Atorvastatin"
    assert [m["name"] for m in client.get("/medications").json()] == ["Atorvastatin"]

    duplicate = client.post("/medications", json={"name": "Atorvastatin"}, headers=admin["headers"])
    assert duplicate.status_code == 400
    forbidden = client.post("/medications", json={"name": "Other"}, headers=elder["headers"])
    assert forbidden.status_code == 403


# Schedule records ------------------------------------------------------------

def test_create_assigns_identity(client, elder, catalog):
    first = client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"]), headers=elder["headers"])
    second = client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"], time="20:00"),
                         headers=elder["headers"])
    assert first.status_code == 201
    body = first.json()
    assert body["user"] == elder["user_id"]
    assert body["status"] == "Pending"
    assert body["alertSent"] is False
    assert second.json()["scheduleId"] != body["scheduleId"]


def test_create_rejects_non_conforming_payloads(client, elder, catalog):
    med = catalog["Aspirin"]
    bad_payloads = [
        schedule_body(med, scheduleId=1),
        schedule_body(med, container=4),
        schedule_body(med, container=0),
        schedule_body(med, time="25:00"),
        schedule_body(med, time="8:00"),
        schedule_body(med, date="2024-02-30"),
        schedule_body(med, color="red"),
        {"medication": med, "date": "2024-06-01", "time": "08:00"},
    ]
    for payload in bad_payloads:
        response = client.post("/medication_schedules", json=payload, headers=elder["headers"])
        assert response.status_code == 422, payload


def test_create_rejects_unknown_medication_and_other_users(client, elder, catalog):
    unknown = client.post("/medication_schedules", json=schedule_body(999), headers=elder["headers"])
    assert unknown.status_code == 400

    other = client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"], user=elder["user_id"] + 100),
                        headers=elder["headers"])
    assert other.status_code == 403


def test_update_and_delete_own_records(client, elder, catalog):
    created = client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"]), headers=elder["headers"])
    schedule_id = created.json()["scheduleId"]

    updated = client.put(f"/medication_schedules/{schedule_id}",
                         json={"time": "09:15", "status": "Taken", "alertSent": True},
                         headers=elder["headers"])
    assert updated.status_code == 200
    assert updated.json()["time"] == "09:15"
    assert updated.json()["status"] == "Taken"

    mismatch = client.put(f"/medication_schedules/{schedule_id}", json={"scheduleId": schedule_id + 1},
                          headers=elder["headers"])
    assert mismatch.status_code == 400

    deleted = client.delete(f"/medication_schedules/{schedule_id}", headers=elder["headers"])
    assert deleted.status_code == 200
    assert client.get(f"/medication_schedules/{schedule_id}", headers=elder["headers"]).status_code == 404


def test_elder_cannot_touch_another_elders_records(client, elder, catalog):
    other = register(client, Role.ELDER, "other@example.com", "5550000009")
    created = client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"]), headers=other["headers"])
    schedule_id = created.json()["scheduleId"]

    assert client.put(f"/medication_schedules/{schedule_id}", json={"time": "10:00"},
                      headers=elder["headers"]).status_code == 404
    assert client.delete(f"/medication_schedules/{schedule_id}", headers=elder["headers"]).status_code == 404
    assert client.get(f"/medication_schedules/{schedule_id}", headers=elder["headers"]).status_code == 403


def test_list_filters(client, elder, catalog):
    for container, time in ((1, "08:00"), (2, "09:00"), (2, "21:00")):
        client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"], container=container, time=time),
                    headers=elder["headers"])

    everything = client.get("/medication_schedules", headers=elder["headers"]).json()
    assert [r["time"] for r in everything] == ["21:00", "09:00", "08:00"]

    container_two = client.get("/medication_schedules", params={"container": 2}, headers=elder["headers"]).json()
    assert {r["container"] for r in container_two} == {2}
    assert len(container_two) == 2


# Monitor ---------------------------------------------------------------------

def test_schedule_data_reconciles_latest_date(client, elder, catalog):
    headers = elder["headers"]
    client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"], date="2024-01-01"), headers=headers)
    client.post("/medication_schedules", json=schedule_body(catalog["Metformin"], date="2024-01-02"), headers=headers)
    client.post("/medication_schedules", json=schedule_body(catalog["Metformin"], date="2024-01-02", time="20:00"),
                headers=headers)

    data = client.get("/monitor/schedule-data", headers=headers).json()
    views = data["containerSchedules"]
    assert set(views) == {"1", "2", "3"}
    assert views["1"]["pill"] == "Metformin"
    assert sorted(views["1"]["alarms"]) == ["2024-01-02T08:00:00", "2024-01-02T20:00:00"]
    assert views["2"] == {"pill": None, "alarms": []}
    assert len(data["schedules"]) == 3


def test_save_schedule_endpoint_is_idempotent(client, elder, catalog):
    payload = {
        "selectedPills": {"1": "Metformin", "2": "Unknown Pill", "3": None},
        "alarms": {"1": ["2024-06-01T08:00:00"], "2": ["2024-06-01T09:00:00"], "3": []},
    }
    first = client.post("/monitor/save-schedule", json=payload, headers=elder["headers"])
    assert first.status_code == 200
    assert (first.json()["created"], first.json()["updated"]) == (1, 0)

    second = client.post("/monitor/save-schedule", json=payload, headers=elder["headers"])
    assert (second.json()["created"], second.json()["updated"]) == (0, 1)

    records = client.get("/medication_schedules", headers=elder["headers"]).json()
    assert len(records) == 1
    assert records[0]["container"] == 1


def test_save_schedule_moves_an_edited_alarm_time(client, elder, catalog):
    def save(time):
        payload = {"selectedPills": {"1": "Metformin"}, "alarms": {"1": [f"2024-06-01T{time}:00"]}}
        return client.post("/monitor/save-schedule", json=payload, headers=elder["headers"]).json()

    save("08:00")
    saved = client.get("/medication_schedules", headers=elder["headers"]).json()
    edited = save("09:00")
    assert (edited["created"], edited["updated"]) == (0, 1)

    records = client.get("/medication_schedules", headers=elder["headers"]).json()
    assert len(records) == 1
    assert records[0]["scheduleId"] == saved[0]["scheduleId"]
    assert records[0]["time"] == "09:00"

    data = client.get("/monitor/schedule-data", headers=elder["headers"]).json()
    assert data["containerSchedules"]["1"] == {"pill": "Metformin", "alarms": ["2024-06-01T09:00:00"]}


def test_save_schedule_rejects_bad_container(client, elder):
    payload = {"selectedPills": {"4": "Metformin"}, "alarms": {"4": ["2024-06-01T08:00:00"]}}
    response = client.post("/monitor/save-schedule", json=payload, headers=elder["headers"])
    assert response.status_code == 422


# Users -------------------------------------------------------------------------

def test_admin_lists_and_searches_users(client, admin, elder, caregiver):
    register(client, Role.ELDER, "bo@example.com", "5550000009", name="Bo Elder")

    everyone = client.get("/users", headers=admin["headers"]).json()
    assert everyone["pagination"]["total"] == 4
    assert "passwordHash" not in everyone["users"][0]

    page = client.get("/users", params={"role": 2, "limit": 1, "page": 2}, headers=admin["headers"]).json()
    assert len(page["users"]) == 1
    assert page["pagination"] == {"currentPage": 2, "totalPages": 2, "total": 2, "hasNext": False, "hasPrev": True}

    found = client.get("/users", params={"search": "rosa"}, headers=admin["headers"]).json()
    assert [u["userId"] for u in found["users"]] == [elder["user_id"]]

    assert client.get("/users", headers=caregiver["headers"]).status_code == 403


def test_caregiver_browses_elders(client, elder, caregiver):
    elders = client.get("/users/role/elders", headers=caregiver["headers"]).json()
    assert [u["userId"] for u in elders["users"]] == [elder["user_id"]]

    by_phone = client.get("/users/phone/5550000001", headers=caregiver["headers"])
    assert by_phone.json()["name"] == "Rosa Elder"
    assert client.get("/users/phone/5550000002", headers=caregiver["headers"]).status_code == 404

    assert client.get(f"/users/{elder['user_id']}", headers=caregiver["headers"]).json()["email"] == "elder@example.com"
    assert client.get("/users/role/elders", headers=elder["headers"]).status_code == 403


def test_admin_updates_user(client, admin, elder, caregiver):
    url = f"/users/{elder['user_id']}"
    response = client.put(url, json={"name": "Rosa M. Elder", "age": 71}, headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["user"]["name"] == "Rosa M. Elder"
    assert response.json()["user"]["age"] == 71

    taken = client.put(url, json={"email": "carer@example.com"}, headers=admin["headers"])
    assert taken.status_code == 400
    assert client.put(url, json={"password": "hunter22"}, headers=admin["headers"]).status_code == 422
    assert client.put("/users/9999", json={"age": 1}, headers=admin["headers"]).status_code == 404


def test_deactivated_user_is_locked_out(client, admin, elder):
    response = client.delete(f"/users/{elder['user_id']}", headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["user"]["isActive"] is False

    assert client.get("/auth/me", headers=elder["headers"]).status_code == 401
    login = client.post("/auth/login", json={"email": "elder@example.com", "password": "secret123"})
    assert login.status_code == 401
    assert client.get(f"/users/{elder['user_id']}", headers=admin["headers"]).status_code == 404
    assert client.get("/users", headers=admin["headers"]).json()["pagination"]["total"] == 1

    restored = client.put(f"/users/{elder['user_id']}", json={"isActive": True}, headers=admin["headers"])
    assert restored.json()["user"]["isActive"] is True


# Caregivers --------------------------------------------------------------------

def test_caregiver_connects_and_views_elder(client, elder, caregiver, catalog):
    client.post("/medication_schedules", json=schedule_body(catalog["Losartan"], container=3), headers=elder["headers"])
    params = {"elderId": elder["user_id"]}

    before = client.get("/monitor/schedule-data", params=params, headers=caregiver["headers"])
    assert before.status_code == 403

    search = client.get("/caregivers/search-elders", params={"contactNumber": "5550000001"},
                        headers=caregiver["headers"])
    assert search.json()["alreadyConnected"] is False

    connected = client.post("/caregivers/connect-elder", json={"contactNumber": "5550000001"},
                            headers=caregiver["headers"])
    assert connected.status_code == 201
    assert connected.json()["elderName"] == "Rosa Elder"

    again = client.post("/caregivers/connect-elder", json={"contactNumber": "5550000001"},
                        headers=caregiver["headers"])
    assert again.status_code == 400

    after = client.get("/monitor/schedule-data", params=params, headers=caregiver["headers"])
    assert after.status_code == 200
    assert after.json()["containerSchedules"]["3"]["pill"] == "Losartan"

    # Caregivers can view but not save.
    save = client.post("/monitor/save-schedule", json={"selectedPills": {}, "alarms": {}},
                       headers=caregiver["headers"])
    assert save.status_code == 403


def test_connection_management(client, elder, caregiver):
    connection = client.post("/caregivers/connect-elder", json={"contactNumber": "5550000001"},
                             headers=caregiver["headers"]).json()
    connection_id = connection["id"]

    listed = client.get("/caregivers/connections", headers=caregiver["headers"]).json()
    assert [c["elderId"] for c in listed] == [elder["user_id"]]

    updated = client.put(f"/caregivers/connections/{connection_id}",
                         json={"notes": "Prefers morning calls", "connectionStatus": "inactive"},
                         headers=caregiver["headers"])
    assert updated.json()["notes"] == "Prefers morning calls"
    assert client.get("/caregivers/connections", headers=caregiver["headers"]).json() == []
    assert len(client.get("/caregivers/connections", params={"status": "all"},
                          headers=caregiver["headers"]).json()) == 1

    assert client.delete(f"/caregivers/connections/{connection_id}", headers=caregiver["headers"]).status_code == 200
    assert client.get(f"/caregivers/connections/{connection_id}", headers=caregiver["headers"]).status_code == 404


def test_unknown_elder_contact(client, caregiver):
    response = client.post("/caregivers/connect-elder", json={"contactNumber": "0000000000"},
                           headers=caregiver["headers"])
    assert response.status_code == 404


# Notifications -----------------------------------------------------------------

def test_upcoming_and_due_doses(client, elder, catalog, db):
    soon = datetime.now() + timedelta(hours=1)
    past = datetime.now() - timedelta(hours=1)
    headers = elder["headers"]
    for moment in (soon, past):
        client.post("/medication_schedules", json=schedule_body(
            catalog["Aspirin"], container=2, date=moment.strftime("%Y-%m-%d"), time=moment.strftime("%H:%M")
        ), headers=headers)

    upcoming = client.get("/notifications/upcoming", params={"hours": 2}, headers=headers).json()
    assert len(upcoming) == 1
    assert upcoming[0]["medicationName"] == "Aspirin"
    assert upcoming[0]["container"] == 2

    due = client.get("/notifications/due", headers=headers).json()
    assert len(due) == 1
    assert due[0]["scheduledAt"].startswith(past.strftime("%Y-%m-%dT%H:%M"))

    crud.mark_alert_sent(db, crud.get_due_unalerted_schedules(db, datetime.now()))
    assert client.get("/notifications/due", headers=headers).json() == []


def test_notification_list(client, elder, caregiver, catalog):
    headers = elder["headers"]
    client.post("/medication_schedules", json=schedule_body(catalog["Metformin"], time="08:00"), headers=headers)
    client.post("/medication_schedules", json=schedule_body(catalog["Aspirin"], container=2, time="09:00",
                                                            status="Taken"), headers=headers)

    active = client.get("/notifications", headers=headers).json()
    assert len(active) == 1
    assert active[0]["title"] == "Medication Reminder: Metformin"
    assert active[0]["message"] == "Time to take 500mg of Metformin"
    assert active[0]["scheduledAt"] == "2024-06-01T08:00:00"
    assert active[0]["isActive"] is True

    inactive = client.get("/notifications", params={"status": "inactive"}, headers=headers).json()
    assert [n["medicationName"] for n in inactive] == ["Aspirin"]
    assert len(client.get("/notifications", params={"status": "all"}, headers=headers).json()) == 2

    params = {"userId": elder["user_id"]}
    assert client.get("/notifications", params=params, headers=caregiver["headers"]).status_code == 403
