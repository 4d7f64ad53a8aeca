import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.config import JWT_SECRET, JWT_ALGORITHM, SESSION_DURATION_HOURS, ROLE_ADMIN
from medtrack.db import get_db
from medtrack.errors import InvalidToken, Forbidden
from medtrack.schemas import Principal

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password):
    if not isinstance(password, (str, bytes)):
        raise TypeError("Password must be a string or bytes.")
    return pwd_context.hash(password)


def verify_password(plain_password, password_hash) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(plain_password, password_hash)
    except (ValueError, TypeError):
        return False


def session_ttl() -> timedelta:
    return timedelta(hours=SESSION_DURATION_HOURS)


def sign_token(
    user_id: int, role: int, ttl: Optional[timedelta] = None, now: Optional[datetime] = None
) -> str:
    """
    Sign the identity claims. Every call carries a fresh `jti`, so two tokens
    issued in the same second for the same user still differ.
    """
    now = now or datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": now + (ttl or session_ttl()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: Optional[str], verify_exp: bool = True) -> dict:
    """
    Return `{"id", "role"}` claims, or raise InvalidToken on any defect.

    With `verify_exp=False` an expired but authentic token still decodes;
    session checks use that so the session row, not the token, decides expiry.
    """
    if not token:
        raise InvalidToken("Token not found.")
    try:
        payload = jwt.decode(
            token, JWT_SECRET, algorithms=[JWT_ALGORITHM], options={"verify_exp": verify_exp}
        )
    except JWTError:
        raise InvalidToken()

    sub = payload.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise InvalidToken()
    return {"id": user_id, "role": payload.get("role")}


async def get_bearer_token(token: Optional[str] = Depends(oauth2_scheme)) -> str:
    if not token:
        raise InvalidToken("Token not found.")
    return token


async def get_current_principal(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """
    Guard for every protected route: the token must verify AND still belong
    to the user's active, unexpired session.
    """
    from medtrack.services.session_service import verify_session

    status = await verify_session(db, token)
    return status.user


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != ROLE_ADMIN:
        raise Forbidden("Forbidden: only administrators may do this.")
    return principal


def is_admin(principal: Principal) -> bool:
    return principal.role == ROLE_ADMIN


def ensure_self_or_admin(principal: Principal, user_id: int) -> None:
    if not is_admin(principal) and principal.id != user_id:
        raise Forbidden()
