"""Officer shift-choice submission and the choice window."""

from __future__ import annotations

import datetime
from typing import Any, Dict

from database import (
    ShiftChoice,
    approved_vacation_user_ids,
    auto_time,
    get_choices_for_date,
    get_user,
    locked_patterns_for_weekday,
    pattern_user_ids,
    shift_count_for_date,
    upsert_shift_choice,
)
from generator.capacity import compute_rule
from policy import (
    CHOICE_TYPES,
    SHIFT_AFTERNOON,
    SHIFT_MORNING,
    is_past_cutoff,
    local_tomorrow,
    normalize_shift_type,
    weekday_index,
)
from roles import is_officer_role


class ChoiceRejected(ValueError):
    """Raised when an officer's shift choice cannot be accepted."""


def choice_window_status(session, target_date: datetime.date, now: datetime.datetime) -> Dict[str, Any]:
    count = shift_count_for_date(session, target_date)
    exists = count > 0
    choices_open = not exists
    reason = "schedule-generated" if exists else None
    if target_date == local_tomorrow(now) and is_past_cutoff(now, auto_time(session)):
        choices_open = False
        reason = "cutoff-passed"
    return {
        "date": target_date.isoformat(),
        "exists": exists,
        "count": count,
        "choices_open": choices_open,
        "reason": reason,
    }


def is_officer_blocked(session, user_id: int, target_date: datetime.date) -> bool:
    day_of_week = weekday_index(target_date)
    if user_id in pattern_user_ids(session, "dayoff", day_of_week):
        return True
    if user_id in pattern_user_ids(session, "fulltime", day_of_week):
        return True
    if any(pattern.user_id == user_id for pattern in locked_patterns_for_weekday(session, day_of_week)):
        return True
    return user_id in approved_vacation_user_ids(session, target_date)


def submit_shift_choice(
    session,
    user_id: int,
    target_date: datetime.date,
    choice: str,
    now: datetime.datetime,
    *,
    user_session=None,
) -> ShiftChoice:
    choice = normalize_shift_type(choice)
    if choice not in CHOICE_TYPES:
        raise ChoiceRejected("Invalid choice")
    user = get_user(user_session, user_id)
    if user is None or not user.is_active or not is_officer_role(user.role):
        raise ChoiceRejected("Only active officers can choose a shift")
    if shift_count_for_date(session, target_date):
        raise ChoiceRejected("Schedule already generated")
    if target_date == local_tomorrow(now) and is_past_cutoff(now, auto_time(session)):
        raise ChoiceRejected("Choices closed after auto time")
    if is_officer_blocked(session, user_id, target_date):
        raise ChoiceRejected("You are locked for this day")

    rule = compute_rule(session, target_date, user_session=user_session).rule
    others = [row for row in get_choices_for_date(session, target_date) if row.user_id != user_id]
    taken = sum(1 for row in others if row.choice == choice)
    if choice == SHIFT_MORNING and taken >= rule.morning_limit:
        raise ChoiceRejected("Morning quota full")
    if choice == SHIFT_AFTERNOON and taken >= rule.afternoon_limit:
        raise ChoiceRejected("Afternoon quota full")
    return upsert_shift_choice(session, user_id, target_date, choice)
