import asyncio
import sqlite3
from contextlib import closing
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select

from medtrack.errors import (
    InsufficientStock, MissingRequiredField, PersistenceFailure, ReminderNotFound,
)
from medtrack.models import Medicine, Reminder
from medtrack.schemas import ReminderPatch
from medtrack.services import reminder_service, session_service
from medtrack.services.reminder_service import apply_patch

JAKARTA = ZoneInfo("Asia/Jakarta")


def _stock(client, headers, med_id):
    return client.get(f"/api/medicines/{med_id}", headers=headers).json()["data"]["stock"]


def test_creation_takes_stock_and_refuses_overdraw(client, make_patient, make_medicine):
    user_id, headers = make_patient()
    med_id = make_medicine("Paracetamol", 20)

    res = client.post(
        "/api/reminders",
        json={"medId": med_id, "time": "08:00", "quantity": 5, "beforeMeal": True},
        headers=headers,
    )
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["medicine"] == {"id": med_id, "name": "Paracetamol", "stock": 15}
    assert data["reminder"]["userId"] == user_id
    assert data["reminder"]["quantity"] == 5
    assert data["reminder"]["timesTaken"] == 0
    assert data["reminder"]["beforeMeal"] is True

    res = client.post(
        "/api/reminders", json={"medId": med_id, "time": "20:00", "quantity": 16}, headers=headers
    )
    assert res.status_code == 409
    assert res.json()["kind"] == "InsufficientStock"
    assert _stock(client, headers, med_id) == 15

    reminders = client.get("/api/reminders/me", headers=headers).json()["data"]
    assert len(reminders) == 1


def test_quantity_defaults_to_one(client, make_patient, make_medicine):
    _, headers = make_patient()
    med_id = make_medicine(stock=3)
    res = client.post("/api/reminders", json={"medId": med_id, "time": "08:00"}, headers=headers)
    assert res.status_code == 201
    assert res.json()["data"]["reminder"]["quantity"] == 1
    assert _stock(client, headers, med_id) == 2


def test_creation_validates_input(client, make_patient, make_medicine):
    _, headers = make_patient()
    med_id = make_medicine()

    res = client.post("/api/reminders", json={"medId": med_id}, headers=headers)
    assert res.status_code == 400
    assert res.json()["kind"] == "MissingRequiredField"

    res = client.post("/api/reminders", json={"medId": 9999, "time": "08:00"}, headers=headers)
    assert res.status_code == 404
    assert res.json()["kind"] == "MedicineNotFound"

    res = client.post(
        "/api/reminders", json={"medId": med_id, "time": "08:00", "quantity": 0}, headers=headers
    )
    assert res.status_code == 400
    assert res.json()["kind"] == "InvalidField"
    assert _stock(client, headers, med_id) == 20


def test_malformed_bodies_answer_with_error_kinds(client, make_patient, make_medicine):
    _, headers = make_patient()
    med_id = make_medicine()

    res = client.post("/api/reminders", json={"medId": "abc", "time": "08:00"}, headers=headers)
    assert res.status_code == 400
    body = res.json()
    assert body["status"] == "error"
    assert body["kind"] == "InvalidField"
    assert "medId" in body["message"]

    res = client.post("/api/reminders/user", headers=headers)
    assert res.status_code == 400
    assert res.json()["kind"] == "MissingRequiredField"

    res = client.post(
        "/api/reminders", json={"medId": med_id, "time": "0" * 21}, headers=headers
    )
    assert res.status_code == 400
    assert res.json()["kind"] == "InvalidField"
    assert _stock(client, headers, med_id) == 20


def test_patients_cannot_create_for_someone_else(client, make_patient, make_medicine, admin_headers):
    other_id, _ = make_patient()
    _, headers = make_patient()
    med_id = make_medicine()

    res = client.post(
        "/api/reminders", json={"medId": med_id, "time": "08:00", "userId": other_id}, headers=headers
    )
    assert res.status_code == 403

    res = client.post(
        "/api/reminders",
        json={"medId": med_id, "time": "08:00", "userId": other_id},
        headers=admin_headers,
    )
    assert res.status_code == 201
    assert res.json()["data"]["reminder"]["userId"] == other_id


def test_dose_logging_reset_and_patch(client, make_patient, make_medicine):
    _, headers = make_patient()
    med_id = make_medicine()
    other_med = make_medicine("Amoxicillin 500 mg", 10)
    reminder = client.post(
        "/api/reminders", json={"medId": med_id, "time": "08:00", "quantity": 2}, headers=headers
    ).json()["data"]["reminder"]
    rid = reminder["id"]

    res = client.patch(f"/api/reminders/{rid}/times-taken", json={"timesTaken": 1}, headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["timesTaken"] == 1
    assert res.json()["data"]["lastTakenAt"] is not None

    res = client.patch(f"/api/reminders/{rid}/times-taken", json={"timesTaken": -1}, headers=headers)
    assert res.status_code == 400

    res = client.patch(f"/api/reminders/{rid}/reset", headers=headers)
    assert res.status_code == 200
    assert res.json()["data"] == {"id": rid, "timesTaken": 0, "lastTakenAt": None}

    res = client.patch(
        f"/api/reminders/{rid}", json={"medId": other_med, "time": "09:30"}, headers=headers
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["medId"] == other_med
    assert data["medicineName"] == "Amoxicillin 500 mg"
    assert data["time"] == "09:30"
    # untouched fields keep their values
    assert data["quantity"] == 2
    assert data["timesTaken"] == 0
    # a changed medicine is taken as given, stock is not touched again
    assert _stock(client, headers, other_med) == 10

    res = client.patch(f"/api/reminders/{rid}", json={"quantity": None}, headers=headers)
    assert res.status_code == 400
    assert res.json()["kind"] == "MissingRequiredField"


def test_delete_keeps_stock_consumed(client, make_patient, make_medicine):
    _, headers = make_patient()
    med_id = make_medicine()
    rid = client.post(
        "/api/reminders", json={"medId": med_id, "time": "08:00", "quantity": 4}, headers=headers
    ).json()["data"]["reminder"]["id"]

    assert client.delete(f"/api/reminders/{rid}", headers=headers).status_code == 200
    assert _stock(client, headers, med_id) == 16

    res = client.delete(f"/api/reminders/{rid}", headers=headers)
    assert res.status_code == 404
    assert res.json()["kind"] == "ReminderNotFound"


def test_reminders_of_other_patients_are_invisible(client, make_patient, make_medicine, admin_headers):
    owner_id, owner = make_patient()
    _, stranger = make_patient()
    med_id = make_medicine()
    rid = client.post(
        "/api/reminders", json={"medId": med_id, "time": "08:00"}, headers=owner
    ).json()["data"]["reminder"]["id"]

    assert client.patch(f"/api/reminders/{rid}/reset", headers=stranger).status_code == 404
    assert client.delete(f"/api/reminders/{rid}", headers=stranger).status_code == 404
    assert client.post("/api/reminders/user", json={"id": owner_id}, headers=stranger).status_code == 403
    assert client.get(f"/api/reminders/history/{owner_id}", headers=stranger).status_code == 403

    res = client.post("/api/reminders/user", json={"id": owner_id}, headers=admin_headers)
    assert res.status_code == 200
    assert [r["id"] for r in res.json()["data"]] == [rid]


def test_admin_lists_every_reminder(client, make_patient, make_medicine, admin_headers):
    _, first = make_patient()
    _, second = make_patient()
    med_id = make_medicine()
    for headers in (first, second):
        client.post("/api/reminders", json={"medId": med_id, "time": "08:00"}, headers=headers)

    res = client.get("/api/reminders/users", headers=admin_headers)
    assert res.status_code == 200
    assert len(res.json()["data"]) == 2

    assert client.get("/api/reminders/users", headers=first).status_code == 403


def test_history_window(client, make_patient, make_medicine):
    user_id, headers = make_patient()
    med_id = make_medicine()
    client.post("/api/reminders", json={"medId": med_id, "time": "08:00"}, headers=headers)

    res = client.get(f"/api/reminders/history/{user_id}", headers=headers)
    assert res.status_code == 200
    assert len(res.json()["data"]) == 1
    assert res.json()["data"][0]["medicineName"] == "Paracetamol"

    res = client.get(f"/api/reminders/history/{user_id}?days=-1", headers=headers)
    assert res.status_code == 400
    assert res.json()["kind"] == "InvalidField"


async def _patient_and_medicine(sessions, stock=20):
    async with sessions() as db:
        user = await session_service.register_user(db, "Budi", "secret", "0811")
        medicine = Medicine(name="Paracetamol", stock=stock)
        db.add(medicine)
        await db.commit()
    return user.id, medicine.id


async def test_yesterdays_counter_is_reset_once(sessions):
    user_id, med_id = await _patient_and_medicine(sessions)
    async with sessions() as db:
        created = await reminder_service.create_reminder(db, user_id, med_id, 1, "08:00")
    rid = created.reminder.id

    yesterday = datetime(2026, 3, 9, 19, 0, tzinfo=JAKARTA)
    today = datetime(2026, 3, 10, 7, 0, tzinfo=JAKARTA)
    async with sessions() as db:
        await reminder_service.update_times_taken(db, rid, 2, last_taken_at=yesterday)

    async with sessions() as db:
        listed = await reminder_service.list_reminders_for_user(db, user_id, now=today, tz=JAKARTA)
    assert listed[0].times_taken == 0
    assert listed[0].last_taken_at is None

    async with sessions() as db:
        row = await db.get(Reminder, rid)
        assert row.times_taken == 0
        assert row.last_taken_at is None

    async with sessions() as db:
        again = await reminder_service.list_reminders_for_user(
            db, user_id, now=today + timedelta(hours=3), tz=JAKARTA
        )
    assert again[0].times_taken == 0


async def test_same_day_listing_keeps_counter(sessions):
    user_id, med_id = await _patient_and_medicine(sessions)
    async with sessions() as db:
        created = await reminder_service.create_reminder(db, user_id, med_id, 1, "08:00")
    rid = created.reminder.id

    morning = datetime(2026, 3, 10, 7, 0, tzinfo=JAKARTA)
    async with sessions() as db:
        await reminder_service.update_times_taken(db, rid, 2, last_taken_at=morning)

    for hour in (9, 22):
        async with sessions() as db:
            listed = await reminder_service.list_reminders_for_user(
                db, user_id, now=morning.replace(hour=hour), tz=JAKARTA
            )
        assert listed[0].times_taken == 2
        assert listed[0].last_taken_at == morning.astimezone(timezone.utc)


async def test_concurrent_creations_never_oversell(sessions):
    user_id, med_id = await _patient_and_medicine(sessions, stock=20)
    quantities = [3, 4, 5, 6, 7, 2, 8]

    async def attempt(quantity):
        async with sessions() as db:
            try:
                await reminder_service.create_reminder(db, user_id, med_id, quantity, "08:00")
            except (InsufficientStock, PersistenceFailure):
                return 0
            return quantity

    committed = await asyncio.gather(*(attempt(q) for q in quantities))

    async with sessions() as db:
        stock = (await db.get(Medicine, med_id)).stock
        rows = (await db.execute(select(Reminder.quantity))).scalars().all()

    assert stock >= 0
    assert stock == 20 - sum(committed)
    assert sum(rows) == sum(committed)


async def test_missing_reminder(sessions):
    async with sessions() as db:
        with pytest.raises(ReminderNotFound):
            await reminder_service.reset_reminder(db, 12345)


async def test_history_filters_by_window(sessions):
    user_id, med_id = await _patient_and_medicine(sessions)
    async with sessions() as db:
        await reminder_service.create_reminder(db, user_id, med_id, 1, "08:00")

    now = datetime.now(timezone.utc)
    async with sessions() as db:
        assert len(await reminder_service.get_history(db, user_id, 30, now=now)) == 1
    async with sessions() as db:
        later = now + timedelta(days=45)
        assert await reminder_service.get_history(db, user_id, 30, now=later) == []


async def test_history_includes_recently_taken_old_reminders(sessions):
    user_id, med_id = await _patient_and_medicine(sessions)
    async with sessions() as db:
        created = await reminder_service.create_reminder(db, user_id, med_id, 1, "08:00")

    now = datetime.now(timezone.utc)
    async with sessions() as db:
        await reminder_service.update_times_taken(
            db, created.reminder.id, 1, last_taken_at=now + timedelta(days=40)
        )

    # created 45 days before "later", but taken 5 days before it
    later = now + timedelta(days=45)
    async with sessions() as db:
        history = await reminder_service.get_history(db, user_id, 30, now=later)
    assert [r.id for r in history] == [created.reminder.id]
    async with sessions() as db:
        assert await reminder_service.get_history(db, user_id, 3, now=later) == []


async def test_reset_keeps_a_dose_logged_after_the_read(sessions, tmp_path, monkeypatch):
    user_id, med_id = await _patient_and_medicine(sessions)
    async with sessions() as db:
        created = await reminder_service.create_reminder(db, user_id, med_id, 1, "08:00")
    rid = created.reminder.id

    yesterday = datetime(2026, 3, 9, 19, 0, tzinfo=JAKARTA)
    today = datetime(2026, 3, 10, 7, 0, tzinfo=JAKARTA)
    async with sessions() as db:
        await reminder_service.update_times_taken(db, rid, 2, last_taken_at=yesterday)

    stamp = today.astimezone(timezone.utc)
    real_reconcile = reminder_service.reconcile_reminder

    def dose_logged_meanwhile(*args):
        state = real_reconcile(*args)
        # another client logs a dose between our read and our reset
        with closing(sqlite3.connect(tmp_path / "medtrack.db")) as conn:
            conn.execute(
                "UPDATE reminders SET times_taken = 3, last_taken_at = ? WHERE id = ?",
                (stamp.strftime("%Y-%m-%d %H:%M:%S.%f"), rid),
            )
            conn.commit()
        return state

    monkeypatch.setattr(reminder_service, "reconcile_reminder", dose_logged_meanwhile)
    async with sessions() as db:
        listed = await reminder_service.list_reminders_for_user(db, user_id, now=today, tz=JAKARTA)

    assert listed[0].times_taken == 3
    assert listed[0].last_taken_at == stamp
    async with sessions() as db:
        row = await db.get(Reminder, rid)
        assert row.times_taken == 3


def test_apply_patch_only_touches_supplied_fields():
    reminder = Reminder(user_id=1, med_id=2, quantity=3, times_taken=1, time="08:00", before_meal=False)
    patch = ReminderPatch.model_validate({"timesTaken": 0, "beforeMeal": True})

    assert sorted(apply_patch(reminder, patch)) == ["before_meal", "times_taken"]
    assert reminder.times_taken == 0
    assert reminder.before_meal is True
    assert (reminder.user_id, reminder.med_id, reminder.quantity, reminder.time) == (1, 2, 3, "08:00")

    with pytest.raises(MissingRequiredField):
        apply_patch(reminder, ReminderPatch.model_validate({"medId": None}))
