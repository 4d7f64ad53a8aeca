"""
Reconcile-on-read rules.

Stale state (yesterday's dose counter, a session past its expiry) is never
swept by a background job; whoever reads the row applies these pure
functions and persists whatever they say changed.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from medtrack.config import APP_TIMEZONE


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands timestamps back naive; they were written as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_date(value: datetime, tz: Optional[ZoneInfo] = None) -> date:
    return as_utc(value).astimezone(tz or ZoneInfo(APP_TIMEZONE)).date()


@dataclass(frozen=True)
class ReminderState:
    times_taken: int
    last_taken_at: Optional[datetime]
    changed: bool = False


def reconcile_reminder(
    times_taken: int,
    last_taken_at: Optional[datetime],
    now: datetime,
    tz: Optional[ZoneInfo] = None,
) -> ReminderState:
    """
    The counter only counts doses logged on the current local calendar day.
    A dose logged on any other day clears both the counter and the stamp, so
    a second call on the same day finds nothing left to do.
    """
    if last_taken_at is None:
        return ReminderState(times_taken, None)
    if local_date(last_taken_at, tz) == local_date(now, tz):
        return ReminderState(times_taken, last_taken_at)
    return ReminderState(0, None, changed=True)


def session_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    if expires_at is None:
        return True
    return as_utc(expires_at) <= as_utc(now)


def seconds_until(expires_at: datetime, now: datetime) -> int:
    return max(int((as_utc(expires_at) - as_utc(now)).total_seconds()), 0)


@dataclass(frozen=True)
class SessionState:
    is_active: bool
    changed: bool = False


def reconcile_session(is_active: bool, expires_at: Optional[datetime], now: datetime) -> SessionState:
    """An active session read past its expiry must be deactivated."""
    if is_active and session_expired(expires_at, now):
        return SessionState(False, changed=True)
    return SessionState(is_active)
