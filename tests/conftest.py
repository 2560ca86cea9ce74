from __future__ import annotations

import datetime
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from database import (  # noqa: E402
    Base,
    Shift,
    ShiftChoice,
    User,
    UserBase,
    VacationRequest,
    WeeklyDayOffPattern,
    WeeklyFullTimePattern,
    WeeklyLockedShiftPattern,
    upsert_shift_rule,
)
from roles import ROLE_OFFICER  # noqa: E402


class RosterBuilder:
    """Seeds users, patterns, vacations, choices and rules into the test stores."""

    def __init__(self, session, user_session) -> None:
        self.session = session
        self.user_session = user_session

    def officer(self, name: str, *, role: str = ROLE_OFFICER, active: bool = True) -> int:
        user = User(full_name=name, role=role, is_active=active, phone="")
        self.user_session.add(user)
        self.user_session.commit()
        return user.id

    def officers(self, count: int, prefix: str = "Officer") -> list:
        return [self.officer(f"{prefix} {idx:02d}") for idx in range(1, count + 1)]

    def day_off(self, user_id: int, day_of_week: int, *, active: bool = True) -> None:
        self.session.add(WeeklyDayOffPattern(user_id=user_id, day_of_week=day_of_week, is_active=active))
        self.session.commit()

    def full_time(self, user_id: int, day_of_week: int, *, active: bool = True) -> None:
        self.session.add(WeeklyFullTimePattern(user_id=user_id, day_of_week=day_of_week, is_active=active))
        self.session.commit()

    def locked(self, user_id: int, day_of_week: int, shift_type: str, *, active: bool = True) -> None:
        self.session.add(
            WeeklyLockedShiftPattern(user_id=user_id, day_of_week=day_of_week, shift_type=shift_type, is_active=active)
        )
        self.session.commit()

    def vacation(
        self,
        user_id: int,
        start: datetime.date,
        end: Optional[datetime.date] = None,
        *,
        status: str = "APPROVED",
    ) -> int:
        row = VacationRequest(user_id=user_id, start_date=start, end_date=end or start, status=status)
        self.session.add(row)
        self.session.commit()
        return row.id

    def choice(self, user_id: int, date_value: datetime.date, choice: str) -> None:
        self.session.add(ShiftChoice(user_id=user_id, date=date_value, choice=choice))
        self.session.commit()

    def rule(self, date_value: datetime.date, morning: int, afternoon: int) -> None:
        upsert_shift_rule(self.session, date_value, morning, afternoon)

    def shift(self, user_id: int, date_value: datetime.date, shift_type: str, *, locked: bool = False) -> None:
        self.session.add(Shift(user_id=user_id, date=date_value, type=shift_type, is_locked=locked))
        self.session.commit()


def _memory_engine():
    return create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def stores(monkeypatch):
    """Separate in-memory schedule and user databases wired into the database module."""
    schedule_engine = _memory_engine()
    user_engine = _memory_engine()
    Base.metadata.create_all(schedule_engine)
    UserBase.metadata.create_all(user_engine)
    Session = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)
    UserSession = sessionmaker(bind=user_engine, expire_on_commit=False, future=True)

    monkeypatch.setattr(db, "schedule_engine", schedule_engine)
    monkeypatch.setattr(db, "user_engine", user_engine)
    monkeypatch.setattr(db, "SessionLocal", Session)
    monkeypatch.setattr(db, "UserSessionLocal", UserSession)

    session = Session()
    user_session = UserSession()
    try:
        yield SimpleNamespace(
            Session=Session,
            UserSession=UserSession,
            session=session,
            user_session=user_session,
            roster=RosterBuilder(session, user_session),
        )
    finally:
        session.close()
        user_session.close()
        schedule_engine.dispose()
        user_engine.dispose()


class KeepOrder:
    """Random source whose shuffle leaves the list untouched."""

    def shuffle(self, items) -> None:
        return None


class ReverseOrder:
    def shuffle(self, items) -> None:
        items.reverse()


@pytest.fixture()
def keep_order():
    return KeepOrder()


@pytest.fixture()
def reverse_order():
    return ReverseOrder()
