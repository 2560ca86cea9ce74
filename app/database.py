from __future__ import annotations

import datetime
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from policy import (
    DEFAULT_AUTO_TIME,
    LOCKABLE_SHIFT_TYPES,
    SHIFT_TYPE_ORDER,
    SHIFT_VACATION,
    VACATION_APPROVED,
    VACATION_STATUSES,
    normalize_shift_type,
    parse_auto_time,
)
from roles import ROLE_OFFICER, defined_roles, normalize_role


DATA_DIR = Path(os.getenv("CHECKPOINT_DATA_DIR", Path(__file__).resolve().parent / "data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)
USER_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'users.db').as_posix()}"
SCHEDULE_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'schedule.db').as_posix()}"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class UserBase(DeclarativeBase):
    """Standalone metadata for the user directory living in users.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for pattern/vacation/rule/shift tables living in schedule.db."""

    pass


class User(UserBase):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(24), nullable=False, default=ROLE_OFFICER)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class WeeklyDayOffPattern(Base):
    __tablename__ = "weekly_day_off_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Sunday
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("user_id", "day_of_week", name="uq_day_off_user_day"),)


class WeeklyFullTimePattern(Base):
    __tablename__ = "weekly_full_time_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Sunday
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("user_id", "day_of_week", name="uq_full_time_user_day"),)


class WeeklyLockedShiftPattern(Base):
    __tablename__ = "weekly_locked_shift_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Sunday
    shift_type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("user_id", "day_of_week", "shift_type", name="uq_locked_user_day_type"),
    )


class VacationRequest(Base):
    __tablename__ = "vacation_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=VACATION_APPROVED)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ShiftChoice(Base):
    __tablename__ = "shift_choices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    choice: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_shift_choice_user_date"),)


class ShiftRule(Base):
    __tablename__ = "shift_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, unique=True)
    morning_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    afternoon_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_shift_user_date"),)


class ScheduleLog(Base):
    __tablename__ = "schedule_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, unique=True)
    is_auto: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AutoScheduleSetting(Base):
    __tablename__ = "auto_schedule_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    auto_time_24: Mapped[str] = mapped_column(String(5), nullable=False, default=DEFAULT_AUTO_TIME)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


PATTERN_MODELS = {
    "dayoff": WeeklyDayOffPattern,
    "fulltime": WeeklyFullTimePattern,
    "locked": WeeklyLockedShiftPattern,
}


user_engine = create_engine(
    USER_DATABASE_URL,
    echo=False,
    future=True,
)
schedule_engine = create_engine(
    SCHEDULE_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)
UserSessionLocal = sessionmaker(bind=user_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    UserBase.metadata.create_all(user_engine)
    Base.metadata.create_all(schedule_engine)


def _coerce_user_session(session):
    """Return (user_session, should_close) ensuring user data stays in its own database."""
    if session is None:
        return UserSessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is schedule_engine:
        return UserSessionLocal(), True
    return session, False


def _validate_day_of_week(day_of_week: Any) -> int:
    try:
        value = int(day_of_week)
    except (TypeError, ValueError):
        raise ValueError("day_of_week must be an integer between 0 and 6")
    if value < 0 or value > 6:
        raise ValueError("day_of_week must be an integer between 0 and 6")
    return value


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------


def list_users(user_session=None, only_active: bool = False) -> List[Dict[str, Any]]:
    user_session, close_session = _coerce_user_session(user_session)
    try:
        stmt = select(User).order_by(User.full_name, User.id)
        if only_active:
            stmt = stmt.where(User.is_active.is_(True))
        return [
            {
                "id": user.id,
                "full_name": user.full_name,
                "phone": user.phone,
                "role": user.role,
                "is_active": bool(user.is_active),
            }
            for user in user_session.scalars(stmt)
        ]
    finally:
        if close_session:
            user_session.close()


def list_active_officers(user_session=None) -> List[User]:
    """Active OFFICER users in load order (ascending id)."""
    user_session, close_session = _coerce_user_session(user_session)
    try:
        stmt = (
            select(User)
            .where(User.is_active.is_(True), User.role == ROLE_OFFICER)
            .order_by(User.id)
        )
        return list(user_session.scalars(stmt))
    finally:
        if close_session:
            user_session.close()


def get_user(user_session, user_id: int) -> Optional[User]:
    user_session, close_session = _coerce_user_session(user_session)
    try:
        return user_session.get(User, user_id)
    finally:
        if close_session:
            user_session.close()


def users_by_id(user_session, user_ids: Iterable[int]) -> Dict[int, User]:
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    user_session, close_session = _coerce_user_session(user_session)
    try:
        return {user.id: user for user in user_session.scalars(select(User).where(User.id.in_(ids)))}
    finally:
        if close_session:
            user_session.close()


def create_user(
    user_session,
    full_name: str,
    *,
    role: str = ROLE_OFFICER,
    phone: str = "",
    is_active: bool = True,
) -> User:
    name = (full_name or "").strip()
    if not name:
        raise ValueError("full_name is required")
    code = normalize_role(role)
    if code not in defined_roles():
        raise ValueError(f"Unknown role {role!r}")
    user = User(full_name=name, role=code, phone=(phone or "").strip(), is_active=bool(is_active))
    user_session.add(user)
    user_session.commit()
    user_session.refresh(user)
    return user


# ---------------------------------------------------------------------------
# Weekly patterns
# ---------------------------------------------------------------------------


def _pattern_model(kind: str):
    model = PATTERN_MODELS.get((kind or "").strip().lower())
    if model is None:
        raise ValueError(f"Unknown pattern kind {kind!r}")
    return model


def _pattern_to_dict(pattern) -> Dict[str, Any]:
    payload = {
        "id": pattern.id,
        "user_id": pattern.user_id,
        "day_of_week": pattern.day_of_week,
        "is_active": bool(pattern.is_active),
    }
    if isinstance(pattern, WeeklyLockedShiftPattern):
        payload["shift_type"] = pattern.shift_type
    return payload


def list_weekly_patterns(session, kind: str) -> List[Dict[str, Any]]:
    model = _pattern_model(kind)
    stmt = select(model).order_by(model.day_of_week, model.user_id)
    return [_pattern_to_dict(pattern) for pattern in session.scalars(stmt)]


def upsert_weekly_pattern(
    session,
    kind: str,
    user_id: int,
    day_of_week: int,
    *,
    shift_type: Optional[str] = None,
    is_active: bool = True,
) -> Dict[str, Any]:
    model = _pattern_model(kind)
    day = _validate_day_of_week(day_of_week)
    stmt = select(model).where(model.user_id == user_id, model.day_of_week == day)
    if model is WeeklyLockedShiftPattern:
        shift_type = normalize_shift_type(shift_type)
        if shift_type not in LOCKABLE_SHIFT_TYPES:
            raise ValueError("Invalid shift type")
        stmt = stmt.where(model.shift_type == shift_type)
    pattern = session.scalars(stmt).first()
    if pattern:
        pattern.is_active = bool(is_active)
    else:
        values: Dict[str, Any] = {"user_id": user_id, "day_of_week": day, "is_active": bool(is_active)}
        if model is WeeklyLockedShiftPattern:
            values["shift_type"] = shift_type
        pattern = model(**values)
        session.add(pattern)
    session.commit()
    session.refresh(pattern)
    return _pattern_to_dict(pattern)


def delete_weekly_pattern(
    session,
    kind: str,
    user_id: int,
    day_of_week: int,
    *,
    shift_type: Optional[str] = None,
) -> bool:
    model = _pattern_model(kind)
    day = _validate_day_of_week(day_of_week)
    stmt = delete(model).where(model.user_id == user_id, model.day_of_week == day)
    if model is WeeklyLockedShiftPattern:
        shift_type = normalize_shift_type(shift_type)
        if not shift_type:
            raise ValueError("shift_type is required for locked patterns")
        stmt = stmt.where(model.shift_type == shift_type)
    result = session.execute(stmt)
    session.commit()
    return bool(result.rowcount)


def pattern_user_ids(session, kind: str, day_of_week: int) -> Set[int]:
    """User ids with an active pattern of the given kind for a weekday."""
    model = _pattern_model(kind)
    stmt = select(model.user_id).where(model.day_of_week == day_of_week, model.is_active.is_(True))
    return set(session.scalars(stmt))


def locked_patterns_for_weekday(session, day_of_week: int) -> List[WeeklyLockedShiftPattern]:
    stmt = (
        select(WeeklyLockedShiftPattern)
        .where(
            WeeklyLockedShiftPattern.day_of_week == day_of_week,
            WeeklyLockedShiftPattern.is_active.is_(True),
        )
        .order_by(WeeklyLockedShiftPattern.id)
    )
    return list(session.scalars(stmt))


# ---------------------------------------------------------------------------
# Vacations
# ---------------------------------------------------------------------------


def _vacation_to_dict(row: VacationRequest, user: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "full_name": user.full_name if user else None,
        "phone": user.phone if user else None,
        "start_date": row.start_date.isoformat(),
        "end_date": row.end_date.isoformat(),
        "status": row.status,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def approved_vacation_user_ids(session, date_value: datetime.date) -> Set[int]:
    stmt = select(VacationRequest.user_id).where(
        VacationRequest.status == VACATION_APPROVED,
        VacationRequest.start_date <= date_value,
        VacationRequest.end_date >= date_value,
    )
    return set(session.scalars(stmt))


def create_vacation(
    session,
    user_id: int,
    start_date: datetime.date,
    end_date: datetime.date,
    *,
    status: str = VACATION_APPROVED,
) -> VacationRequest:
    status = (status or VACATION_APPROVED).strip().upper()
    if status not in VACATION_STATUSES:
        raise ValueError(f"Unknown vacation status {status!r}")
    if end_date < start_date:
        raise ValueError("end_date must not be before start_date")
    row = VacationRequest(user_id=user_id, start_date=start_date, end_date=end_date, status=status)
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def list_vacations(session, user_session=None) -> List[Dict[str, Any]]:
    rows = list(session.scalars(select(VacationRequest).order_by(VacationRequest.created_at.desc(), VacationRequest.id.desc())))
    users = users_by_id(user_session, [row.user_id for row in rows])
    return [_vacation_to_dict(row, users.get(row.user_id)) for row in rows]


def delete_vacation(session, vacation_id: int) -> None:
    """Delete a vacation request and the VACATION shifts it produced."""
    row = session.get(VacationRequest, vacation_id)
    if row is None:
        raise ValueError(f"Vacation {vacation_id} not found.")
    session.execute(
        delete(Shift).where(
            Shift.user_id == row.user_id,
            Shift.type == SHIFT_VACATION,
            Shift.date >= row.start_date,
            Shift.date <= row.end_date,
        )
    )
    session.delete(row)
    session.commit()


# ---------------------------------------------------------------------------
# Choices and rules
# ---------------------------------------------------------------------------


def get_choices_for_date(session, date_value: datetime.date) -> List[ShiftChoice]:
    stmt = select(ShiftChoice).where(ShiftChoice.date == date_value).order_by(ShiftChoice.id)
    return list(session.scalars(stmt))


def upsert_shift_choice(session, user_id: int, date_value: datetime.date, choice: str) -> ShiftChoice:
    row = session.scalars(
        select(ShiftChoice).where(ShiftChoice.user_id == user_id, ShiftChoice.date == date_value)
    ).first()
    if row:
        row.choice = choice
    else:
        row = ShiftChoice(user_id=user_id, date=date_value, choice=choice)
        session.add(row)
    session.commit()
    session.refresh(row)
    return row


def get_shift_rule(session, date_value: datetime.date) -> Optional[ShiftRule]:
    return session.scalars(select(ShiftRule).where(ShiftRule.date == date_value)).first()


def upsert_shift_rule(session, date_value: datetime.date, morning_limit: int, afternoon_limit: int) -> ShiftRule:
    rule = get_shift_rule(session, date_value)
    if rule:
        rule.morning_limit = morning_limit
        rule.afternoon_limit = afternoon_limit
    else:
        rule = ShiftRule(date=date_value, morning_limit=morning_limit, afternoon_limit=afternoon_limit)
        session.add(rule)
    session.commit()
    session.refresh(rule)
    return rule


def rule_to_dict(rule: ShiftRule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "date": rule.date.isoformat(),
        "morning_limit": rule.morning_limit,
        "afternoon_limit": rule.afternoon_limit,
    }


# ---------------------------------------------------------------------------
# Shifts
# ---------------------------------------------------------------------------


def _shift_to_dict(shift: Shift, user: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": shift.id,
        "user_id": shift.user_id,
        "full_name": user.full_name if user else None,
        "phone": user.phone if user else None,
        "date": shift.date.isoformat(),
        "type": shift.type,
        "is_locked": bool(shift.is_locked),
    }


def get_shifts_for_date(session, date_value: datetime.date, *, user_session=None) -> List[Dict[str, Any]]:
    shifts = list(session.scalars(select(Shift).where(Shift.date == date_value)))
    users = users_by_id(user_session, [shift.user_id for shift in shifts])
    shifts.sort(
        key=lambda shift: (
            SHIFT_TYPE_ORDER.get(shift.type, len(SHIFT_TYPE_ORDER)),
            users[shift.user_id].full_name if shift.user_id in users else "",
            shift.user_id,
        )
    )
    return [_shift_to_dict(shift, users.get(shift.user_id)) for shift in shifts]


def shift_count_for_date(session, date_value: datetime.date) -> int:
    return int(session.scalar(select(func.count(Shift.id)).where(Shift.date == date_value)) or 0)


def delete_shifts_for_date(session, date_value: datetime.date) -> int:
    result = session.execute(delete(Shift).where(Shift.date == date_value))
    session.commit()
    return int(result.rowcount or 0)


def get_officer_shift(session, user_id: int, date_value: datetime.date) -> Optional[Dict[str, Any]]:
    shift = session.scalars(select(Shift).where(Shift.user_id == user_id, Shift.date == date_value)).first()
    return _shift_to_dict(shift) if shift else None


def recent_officer_shifts(session, user_id: int, limit: int = 14) -> List[Dict[str, Any]]:
    stmt = select(Shift).where(Shift.user_id == user_id).order_by(Shift.date.desc()).limit(limit)
    return [_shift_to_dict(shift) for shift in session.scalars(stmt)]


def latest_shift(session) -> Optional[Shift]:
    return session.scalars(select(Shift).order_by(Shift.date.desc(), Shift.id.desc())).first()


# ---------------------------------------------------------------------------
# Schedule log and automatic run settings
# ---------------------------------------------------------------------------


def get_auto_setting(session) -> Optional[AutoScheduleSetting]:
    return session.scalars(select(AutoScheduleSetting).order_by(AutoScheduleSetting.id)).first()


def auto_time(session) -> str:
    setting = get_auto_setting(session)
    return setting.auto_time_24 if setting else DEFAULT_AUTO_TIME


def set_auto_time(session, value: str) -> AutoScheduleSetting:
    label = (value or DEFAULT_AUTO_TIME).strip()
    parse_auto_time(label)
    setting = get_auto_setting(session)
    if setting:
        setting.auto_time_24 = label
    else:
        setting = AutoScheduleSetting(auto_time_24=label)
        session.add(setting)
    session.commit()
    session.refresh(setting)
    return setting


def upsert_schedule_log(session, date_value: datetime.date, *, is_auto: bool) -> ScheduleLog:
    log = get_schedule_log(session, date_value)
    if log:
        log.is_auto = bool(is_auto)
        log.created_at = _utcnow()
    else:
        log = ScheduleLog(date=date_value, is_auto=bool(is_auto))
        session.add(log)
    session.commit()
    session.refresh(log)
    return log


def get_schedule_log(session, date_value: datetime.date) -> Optional[ScheduleLog]:
    return session.scalars(select(ScheduleLog).where(ScheduleLog.date == date_value)).first()


def latest_schedule_log(session) -> Optional[ScheduleLog]:
    return session.scalars(select(ScheduleLog).order_by(ScheduleLog.date.desc())).first()
