from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.api.responses import send_success
from medtrack.db import get_db
from medtrack.schemas import (
    Principal, ReminderCreate, ReminderPatch, RemindersForUserRequest, TimesTakenUpdate,
)
from medtrack.services import reminder_service
from medtrack.services.auth_service import (
    ensure_self_or_admin, get_current_principal, is_admin, require_admin,
)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


def _owner(principal: Principal) -> Optional[int]:
    """Admins may touch any reminder; patients only their own."""
    return None if is_admin(principal) else principal.id


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_reminder(
    req: ReminderCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user_id = req.user_id or principal.id
    ensure_self_or_admin(principal, user_id)
    created = await reminder_service.create_reminder(
        db, user_id, req.med_id, req.quantity, req.time, req.before_meal
    )
    return send_success("Reminder created.", created, 201)


@router.post("/user")
async def get_reminders_by_user(
    req: RemindersForUserRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user_id = req.id or principal.id
    ensure_self_or_admin(principal, user_id)
    reminders = await reminder_service.list_reminders_for_user(db, user_id)
    return send_success("Reminders fetched.", reminders)


@router.get("/me")
async def get_my_reminders(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    reminders = await reminder_service.list_reminders_for_user(db, principal.id)
    return send_success("Reminders fetched.", reminders)


@router.get("/users", dependencies=[Depends(require_admin)])
async def get_all_reminders(db: AsyncSession = Depends(get_db)):
    reminders = await reminder_service.list_all_reminders(db)
    return send_success("Reminders retrieved.", reminders)


@router.get("/history/{user_id}")
async def get_medicine_history(
    user_id: int,
    days: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    ensure_self_or_admin(principal, user_id)
    history = await reminder_service.get_history(db, user_id, days)
    return send_success("Medicine history retrieved.", history)


@router.patch("/{reminder_id}/times-taken")
async def update_times_taken(
    reminder_id: int,
    req: TimesTakenUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    log = await reminder_service.update_times_taken(
        db, reminder_id, req.times_taken, req.last_taken_at, owner_id=_owner(principal)
    )
    return send_success("Reminder updated.", log)


@router.patch("/{reminder_id}/reset")
async def reset_reminder(
    reminder_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    log = await reminder_service.reset_reminder(db, reminder_id, owner_id=_owner(principal))
    return send_success("Reminder reset successfully.", log)


@router.patch("/{reminder_id}")
async def update_reminder(
    reminder_id: int,
    patch: ReminderPatch,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    if "user_id" in patch.model_fields_set:
        ensure_self_or_admin(principal, patch.user_id)
    reminder = await reminder_service.update_reminder(db, reminder_id, patch, owner_id=_owner(principal))
    return send_success("Reminder updated.", reminder)


@router.delete("/{reminder_id}")
async def delete_reminder(
    reminder_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    await reminder_service.delete_reminder(db, reminder_id, owner_id=_owner(principal))
    return send_success("Reminder deleted.")
