import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.config import ROLE_PATIENT
from medtrack.db import unit_of_work
from medtrack.errors import UserNotFound
from medtrack.models import Session, User
from medtrack.schemas import ActiveUser, UserPublic

logger = logging.getLogger(__name__)


def to_public(user: User) -> UserPublic:
    return UserPublic(id=user.id, name=user.name, no_hp=user.no_hp, roles_id=user.roles_id)


async def list_patients(db: AsyncSession) -> List[UserPublic]:
    async with unit_of_work(db):
        res = await db.execute(select(User).where(User.roles_id == ROLE_PATIENT).order_by(User.id))
        users = res.scalars().all()
    return [to_public(u) for u in users]


async def get_user(db: AsyncSession, user_id: int) -> UserPublic:
    async with unit_of_work(db):
        user = await db.get(User, user_id)
    if user is None:
        raise UserNotFound()
    return to_public(user)


async def delete_user(db: AsyncSession, user_id: int) -> None:
    """Remove a user; the database cascades to their session and reminders."""
    async with unit_of_work(db):
        user = await db.get(User, user_id)
        if user is None:
            raise UserNotFound()
        await db.delete(user)
    logger.info("Deleted user id=%s", user_id)


async def list_active_users(db: AsyncSession) -> List[ActiveUser]:
    async with unit_of_work(db):
        res = await db.execute(
            select(User, Session)
            .join(Session, Session.user_id == User.id)
            .where(Session.is_active.is_(True))
            .order_by(Session.login_at.desc())
        )
        rows = res.all()
    return [
        ActiveUser(id=u.id, name=u.name, no_hp=u.no_hp, login_at=s.login_at, is_active=s.is_active)
        for u, s in rows
    ]
