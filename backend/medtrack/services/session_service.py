"""
Session lifecycle: login, verification, token rotation and logout.

Each user owns at most one `sessions` row (unique `user_id`). Logging in
rewrites that row in a single upsert, so there is no window in which two
logins of the same user can both see themselves as the only active session.

    Created -> Active -> Refreshed -> Active
                      -> Expired (lazily, on the next read) -> Inactive
                      -> LoggedOut -> Inactive
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.config import ROLE_PATIENT
from medtrack.db import unit_of_work, dialect_name
from medtrack.errors import (
    DuplicateIdentity, InvalidCredentials, MissingRequiredField, SessionExpired,
    SessionNotFound, UnknownIdentity, UserNotFound,
)
from medtrack.models import Session, User
from medtrack.schemas import LoginResult, Principal, SessionStatus, UserPublic
from medtrack.services.auth_service import (
    decode_token, hash_password, session_ttl, sign_token, verify_password,
)
from medtrack.services.reconcile import as_utc, reconcile_session, seconds_until, utcnow
from medtrack.services.user_service import to_public

logger = logging.getLogger(__name__)


def _principal(user: User) -> Principal:
    return Principal(id=user.id, name=user.name, role=user.roles_id)


def _upsert(db: AsyncSession):
    if dialect_name(db) == "postgresql":
        return pg_insert
    return sqlite_insert


async def get_user_by_name(db: AsyncSession, name: str) -> Optional[User]:
    res = await db.execute(select(User).where(User.name == name))
    return res.scalar_one_or_none()


async def register_user(db: AsyncSession, name: str, password: str, no_hp: str) -> UserPublic:
    if not name or not password or not no_hp:
        raise MissingRequiredField("All fields are required.")

    async with unit_of_work(db):
        if await get_user_by_name(db, name):
            raise DuplicateIdentity("Patient name is already registered.")
        user = User(name=name, no_hp=no_hp, password=hash_password(password), roles_id=ROLE_PATIENT)
        db.add(user)
        await db.flush()

    logger.info("Registered patient id=%s", user.id)
    return to_public(user)


async def create_or_renew_session(
    db: AsyncSession, name: str, password: str, now: Optional[datetime] = None
) -> LoginResult:
    """Check the credentials and make a fresh token the user's only active session."""
    if not name or not password:
        raise MissingRequiredField("Patient name and password are required.")

    now = now or utcnow()
    async with unit_of_work(db):
        user = await get_user_by_name(db, name)
        if user is None:
            raise UnknownIdentity()
        if not verify_password(password, user.password):
            logger.info("Rejected login for user id=%s: bad password", user.id)
            raise InvalidCredentials()

        token = sign_token(user.id, user.roles_id, now=now)
        expires_at = now + session_ttl()

        insert = _upsert(db)
        stmt = insert(Session).values(
            token=token,
            user_id=user.id,
            is_active=True,
            login_at=now,
            logout_at=None,
            last_refresh_at=None,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Session.user_id],
            set_={
                "token": stmt.excluded.token,
                "is_active": True,
                "login_at": stmt.excluded.login_at,
                "logout_at": None,
                "last_refresh_at": None,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        await db.execute(stmt)

    logger.info("User id=%s logged in, session expires %s", user.id, expires_at.isoformat())
    return LoginResult(token=token, expires_at=expires_at, user=_principal(user))


async def _active_session(db: AsyncSession, token: str, user_id: int):
    res = await db.execute(
        select(Session, User)
        .join(User, Session.user_id == User.id)
        .where(
            Session.token == token,
            Session.is_active.is_(True),
            Session.user_id == user_id,
        )
    )
    row = res.first()
    if row is None:
        raise SessionNotFound()
    return row


async def _deactivate(db: AsyncSession, session_id: int, now: datetime) -> None:
    await db.execute(
        update(Session)
        .where(Session.id == session_id, Session.is_active.is_(True))
        .values(is_active=False, logout_at=now)
    )


async def verify_session(db: AsyncSession, token: str, now: Optional[datetime] = None) -> SessionStatus:
    """
    Resolve the caller behind `token`. A session found past its expiry is
    deactivated on the spot and reported as SessionExpired.
    """
    claims = decode_token(token, verify_exp=False)
    now = now or utcnow()

    async with unit_of_work(db):
        session, user = await _active_session(db, token, claims["id"])
        expired = reconcile_session(session.is_active, session.expires_at, now).changed
        if expired:
            await _deactivate(db, session.id, now)

    if expired:
        logger.info("Session id=%s of user id=%s expired", session.id, user.id)
        raise SessionExpired()

    return SessionStatus(
        user=_principal(user),
        expires_at=as_utc(session.expires_at),
        time_until_expiry=seconds_until(session.expires_at, now),
    )


async def refresh_session(db: AsyncSession, token: str, now: Optional[datetime] = None) -> LoginResult:
    """Rotate the token of the active session and push its expiry forward."""
    claims = decode_token(token, verify_exp=False)
    now = now or utcnow()
    new_token = None

    async with unit_of_work(db):
        session, user = await _active_session(db, token, claims["id"])
        expired = reconcile_session(session.is_active, session.expires_at, now).changed
        if expired:
            await _deactivate(db, session.id, now)
        else:
            new_token = sign_token(user.id, user.roles_id, now=now)
            # strictly later than the current expiry even within the same tick
            new_expiry = max(now + session_ttl(), as_utc(session.expires_at) + timedelta(microseconds=1))
            res = await db.execute(
                update(Session)
                .where(
                    Session.id == session.id,
                    Session.token == token,
                    Session.is_active.is_(True),
                )
                .values(token=new_token, expires_at=new_expiry, last_refresh_at=now)
            )
            if res.rowcount == 0:
                # another refresh or a logout won the race
                raise SessionNotFound()

    if expired:
        logger.info("Session id=%s of user id=%s expired", session.id, user.id)
        raise SessionExpired()

    logger.info("Refreshed session id=%s of user id=%s", session.id, user.id)
    return LoginResult(token=new_token, expires_at=new_expiry, user=_principal(user))


async def terminate_session(
    db: AsyncSession, user_id: int, token: str, now: Optional[datetime] = None
) -> bool:
    """
    Log out. Returns whether an active session was closed; closing a session
    that is already inactive (or never existed) is not an error.
    """
    if not user_id or not token:
        raise MissingRequiredField("Token or user id is missing.")

    now = now or utcnow()
    async with unit_of_work(db):
        res = await db.execute(
            update(Session)
            .where(
                Session.token == token,
                Session.user_id == user_id,
                Session.is_active.is_(True),
            )
            .values(is_active=False, logout_at=now)
        )

    closed = res.rowcount > 0
    logger.info("Logout for user id=%s (closed=%s)", user_id, closed)
    return closed


async def get_profile(db: AsyncSession, user_id: int) -> UserPublic:
    async with unit_of_work(db):
        user = await db.get(User, user_id)
    if user is None:
        raise UserNotFound("User not found.")
    return to_public(user)
