"""
Reminder lifecycle and medicine stock.

Stock is only ever taken with one conditional UPDATE
(`stock = stock - q WHERE stock >= q`) in the same transaction as the
reminder INSERT, so concurrent creations can never oversell a medicine and a
failed insert gives the stock back by rolling back.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.config import APP_TIMEZONE, DEFAULT_HISTORY_DAYS
from medtrack.db import unit_of_work
from medtrack.errors import (
    InsufficientStock, InvalidField, MedicineNotFound, MissingRequiredField, ReminderNotFound,
)
from medtrack.models import Medicine, Reminder
from medtrack.schemas import (
    DoseLog, MedicineSnapshot, ReminderCreated, ReminderOut, ReminderPatch,
)
from medtrack.services.reconcile import as_utc, reconcile_reminder, utcnow

logger = logging.getLogger(__name__)


def _out(reminder: Reminder, medicine_name: Optional[str] = "", medicine_image: Optional[str] = "") -> ReminderOut:
    return ReminderOut(
        id=reminder.id,
        user_id=reminder.user_id,
        med_id=reminder.med_id,
        quantity=reminder.quantity,
        times_taken=reminder.times_taken,
        time=reminder.time,
        before_meal=reminder.before_meal,
        last_taken_at=as_utc(reminder.last_taken_at),
        created_at=as_utc(reminder.created_at),
        medicine_name=medicine_name or "",
        medicine_image=medicine_image or "",
    )


def _joined_query():
    return (
        select(
            Reminder,
            func.coalesce(Medicine.name, "").label("medicine_name"),
            func.coalesce(Medicine.medicine_image, "").label("medicine_image"),
        )
        .outerjoin(Medicine, Reminder.med_id == Medicine.id)
    )


async def _load(db: AsyncSession, reminder_id: int, owner_id: Optional[int] = None) -> Reminder:
    reminder = await db.get(Reminder, reminder_id)
    # someone else's reminder is reported exactly like a missing one
    if reminder is None or (owner_id is not None and reminder.user_id != owner_id):
        raise ReminderNotFound()
    return reminder


async def create_reminder(
    db: AsyncSession,
    user_id: Optional[int],
    med_id: Optional[int],
    quantity: Optional[int],
    time: Optional[str],
    before_meal: Optional[bool] = None,
) -> ReminderCreated:
    if not med_id or not time or not user_id:
        raise MissingRequiredField("Missing fields: medId, time and userId are required.")
    quantity = 1 if quantity is None else quantity
    if quantity <= 0:
        raise InvalidField("Quantity must be a positive number.")

    async with unit_of_work(db):
        medicine = await db.get(Medicine, med_id)
        if medicine is None:
            raise MedicineNotFound()

        res = await db.execute(
            update(Medicine)
            .where(Medicine.id == med_id, Medicine.stock >= quantity)
            .values(stock=Medicine.stock - quantity)
            .returning(Medicine.id, Medicine.name, Medicine.stock)
        )
        row = res.first()
        if row is None:
            raise InsufficientStock(
                f"Not enough stock for {medicine.name}: {medicine.stock} left, {quantity} requested."
            )

        reminder = Reminder(
            user_id=user_id,
            med_id=med_id,
            quantity=quantity,
            time=time,
            before_meal=bool(before_meal),
        )
        db.add(reminder)
        await db.flush()
        await db.refresh(reminder)

    logger.info(
        "Created reminder id=%s for user id=%s, medicine id=%s stock now %s",
        reminder.id, user_id, med_id, row.stock,
    )
    return ReminderCreated(
        reminder=_out(reminder, row.name, medicine.medicine_image),
        medicine=MedicineSnapshot(id=row.id, name=row.name, stock=row.stock),
    )


async def list_reminders_for_user(
    db: AsyncSession, user_id: int, now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None
) -> List[ReminderOut]:
    """
    Every reminder of the user with its medicine name and picture. Counters
    left over from an earlier day are reset, written back, and returned reset.
    """
    now = now or utcnow()
    tz = tz or ZoneInfo(APP_TIMEZONE)

    async with unit_of_work(db):
        res = await db.execute(
            _joined_query().where(Reminder.user_id == user_id).order_by(Reminder.id)
        )
        rows = res.all()

        reset = 0
        for reminder, _, _ in rows:
            state = reconcile_reminder(reminder.times_taken, reminder.last_taken_at, now, tz)
            if not state.changed:
                continue
            # guarded by the stamp we looked at, so a dose logged meanwhile survives
            written = await db.execute(
                update(Reminder)
                .where(Reminder.id == reminder.id, Reminder.last_taken_at == reminder.last_taken_at)
                .values(times_taken=state.times_taken, last_taken_at=state.last_taken_at)
                .execution_options(synchronize_session=False)
            )
            reset += written.rowcount
            # return what the row holds now, whether or not the guard matched
            await db.refresh(reminder)

    if reset:
        logger.info("Reset daily counter of %d reminder(s) for user id=%s", reset, user_id)
    return [_out(reminder, name, image) for reminder, name, image in rows]


async def list_all_reminders(db: AsyncSession) -> List[ReminderOut]:
    async with unit_of_work(db):
        res = await db.execute(_joined_query().order_by(Reminder.id))
        rows = res.all()
    return [_out(reminder, name, image) for reminder, name, image in rows]


async def update_times_taken(
    db: AsyncSession,
    reminder_id: int,
    times_taken: Optional[int],
    last_taken_at: Optional[datetime] = None,
    owner_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> DoseLog:
    """Log doses: set the counter and stamp when (default: now)."""
    if times_taken is None:
        raise MissingRequiredField("timesTaken is required.")
    if times_taken < 0:
        raise InvalidField("timesTaken must not be negative.")

    async with unit_of_work(db):
        reminder = await _load(db, reminder_id, owner_id)
        reminder.times_taken = times_taken
        reminder.last_taken_at = as_utc(last_taken_at or now or utcnow())

    return DoseLog(id=reminder.id, times_taken=reminder.times_taken, last_taken_at=as_utc(reminder.last_taken_at))


async def reset_reminder(db: AsyncSession, reminder_id: int, owner_id: Optional[int] = None) -> DoseLog:
    async with unit_of_work(db):
        reminder = await _load(db, reminder_id, owner_id)
        reminder.times_taken = 0
        reminder.last_taken_at = None

    return DoseLog(id=reminder.id, times_taken=0, last_taken_at=None)


def apply_patch(reminder: Reminder, patch: ReminderPatch) -> List[str]:
    """Copy the explicitly supplied fields of `patch` onto `reminder`; returns their names."""
    changes = patch.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None:
            raise MissingRequiredField(f"Field {field} must not be empty.")
        setattr(reminder, field, value)
    return list(changes)


async def update_reminder(
    db: AsyncSession, reminder_id: int, patch: ReminderPatch, owner_id: Optional[int] = None
) -> ReminderOut:
    """
    Partial update. A changed medId is taken as given: neither the medicine
    nor its stock is checked again.
    """
    if patch.quantity is not None and patch.quantity <= 0:
        raise InvalidField("Quantity must be a positive number.")
    if patch.times_taken is not None and patch.times_taken < 0:
        raise InvalidField("timesTaken must not be negative.")

    async with unit_of_work(db):
        reminder = await _load(db, reminder_id, owner_id)
        apply_patch(reminder, patch)
        await db.flush()
        medicine = await db.get(Medicine, reminder.med_id)

    if medicine is None:
        return _out(reminder)
    return _out(reminder, medicine.name, medicine.medicine_image)


async def delete_reminder(db: AsyncSession, reminder_id: int, owner_id: Optional[int] = None) -> None:
    """Remove the reminder. The stock it consumed stays consumed."""
    async with unit_of_work(db):
        reminder = await _load(db, reminder_id, owner_id)
        await db.delete(reminder)
    logger.info("Deleted reminder id=%s", reminder_id)


async def get_history(
    db: AsyncSession, user_id: int, days: Optional[int] = None, now: Optional[datetime] = None
) -> List[ReminderOut]:
    """Reminders created or last taken within the past `days` days."""
    days = DEFAULT_HISTORY_DAYS if days is None else days
    if days < 0:
        raise InvalidField("days must not be negative.")
    since = (now or utcnow()) - timedelta(days=days)

    async with unit_of_work(db):
        res = await db.execute(
            _joined_query()
            .where(
                Reminder.user_id == user_id,
                or_(Reminder.created_at >= since, Reminder.last_taken_at >= since),
            )
            .order_by(Reminder.id)
        )
        rows = res.all()
    return [_out(reminder, name, image) for reminder, name, image in rows]
