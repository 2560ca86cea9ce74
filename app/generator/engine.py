from __future__ import annotations

import datetime
import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import delete, insert

from database import (
    Shift,
    approved_vacation_user_ids,
    get_choices_for_date,
    list_active_officers,
    locked_patterns_for_weekday,
    pattern_user_ids,
)
from policy import (
    LOCKABLE_SHIFT_TYPES,
    SHIFT_AFTERNOON,
    SHIFT_DAYOFF,
    SHIFT_FULLTIME,
    SHIFT_MORNING,
    SHIFT_VACATION,
    weekday_index,
)

from .capacity import compute_rule

logger = logging.getLogger(__name__)

SOURCE_CHOICE = "choice"
SOURCE_RANDOM = "random"
SOURCE_OVERFLOW = "overflow"


@dataclass
class DayConstraints:
    """Everything known about one date before the capacity-fill phase."""

    vacation_ids: Set[int] = field(default_factory=set)
    locked_types: Dict[int, str] = field(default_factory=dict)
    day_off_ids: Set[int] = field(default_factory=set)
    full_time_ids: Set[int] = field(default_factory=set)
    morning_choices: Set[int] = field(default_factory=set)
    afternoon_choices: Set[int] = field(default_factory=set)


@dataclass(frozen=True)
class PriorityRule:
    name: str
    resolve: Callable[[DayConstraints, int], Optional[str]]
    locked: bool = False


# Evaluated in order; the first rule returning a shift type wins.
PRIORITY_RULES: Tuple[PriorityRule, ...] = (
    PriorityRule("vacation", lambda c, uid: SHIFT_VACATION if uid in c.vacation_ids else None),
    PriorityRule("locked", lambda c, uid: c.locked_types.get(uid), locked=True),
    PriorityRule("dayoff", lambda c, uid: SHIFT_DAYOFF if uid in c.day_off_ids else None),
    PriorityRule("fulltime", lambda c, uid: SHIFT_FULLTIME if uid in c.full_time_ids else None),
)


@dataclass
class Assignment:
    user_id: int
    shift_type: str
    is_locked: bool = False
    source: str = ""


@dataclass
class DayPlan:
    assignments: List[Assignment]
    available: int
    morning_count: int
    afternoon_count: int
    overflow: int = 0

    def counts(self) -> Dict[str, int]:
        return dict(Counter(item.shift_type for item in self.assignments))


def resolve_fixed_assignment(
    constraints: DayConstraints,
    officer_id: int,
    rules: Sequence[PriorityRule] = PRIORITY_RULES,
) -> Optional[Assignment]:
    """Return the assignment forced by the first matching priority rule, if any."""
    for rule in rules:
        shift_type = rule.resolve(constraints, officer_id)
        if shift_type:
            return Assignment(officer_id, shift_type, is_locked=rule.locked, source=rule.name)
    return None


def plan_day(
    officer_ids: Sequence[int],
    constraints: DayConstraints,
    morning_limit: int,
    afternoon_limit: int,
    rng: Any = None,
) -> DayPlan:
    """Assign exactly one shift type to every officer in ``officer_ids``.

    ``rng`` only needs a ``shuffle(list)`` method; ``random.Random`` is used when
    omitted. Officers left after the choice passes are shuffled, then fill
    mornings, then afternoons, and any remainder overflows into afternoons.
    """
    rng = rng or random.Random()
    placed: Dict[int, Assignment] = {}
    for officer_id in officer_ids:
        fixed = resolve_fixed_assignment(constraints, officer_id)
        if fixed:
            placed[officer_id] = fixed

    remaining = [officer_id for officer_id in officer_ids if officer_id not in placed]
    available = len(remaining)
    morning_count = sum(1 for item in placed.values() if item.is_locked and item.shift_type == SHIFT_MORNING)
    afternoon_count = sum(1 for item in placed.values() if item.is_locked and item.shift_type == SHIFT_AFTERNOON)

    for officer_id in remaining:
        if officer_id in constraints.morning_choices and morning_count < morning_limit:
            morning_count += 1
            placed[officer_id] = Assignment(officer_id, SHIFT_MORNING, source=SOURCE_CHOICE)
    for officer_id in remaining:
        if officer_id in placed:
            continue
        if officer_id in constraints.afternoon_choices and afternoon_count < afternoon_limit:
            afternoon_count += 1
            placed[officer_id] = Assignment(officer_id, SHIFT_AFTERNOON, source=SOURCE_CHOICE)

    unassigned = [officer_id for officer_id in remaining if officer_id not in placed]
    rng.shuffle(unassigned)
    overflow = 0
    for officer_id in unassigned:
        if morning_count < morning_limit:
            morning_count += 1
            placed[officer_id] = Assignment(officer_id, SHIFT_MORNING, source=SOURCE_RANDOM)
        elif afternoon_count < afternoon_limit:
            afternoon_count += 1
            placed[officer_id] = Assignment(officer_id, SHIFT_AFTERNOON, source=SOURCE_RANDOM)
        else:
            afternoon_count += 1
            overflow += 1
            placed[officer_id] = Assignment(officer_id, SHIFT_AFTERNOON, source=SOURCE_OVERFLOW)

    return DayPlan(
        assignments=[placed[officer_id] for officer_id in officer_ids],
        available=available,
        morning_count=morning_count,
        afternoon_count=afternoon_count,
        overflow=overflow,
    )


class ScheduleGenerator:
    """Build and persist the full roster for one date.

    Regeneration is a full replace: every Shift row for the date is deleted and
    recreated, so manual edits only survive when expressed as locked patterns
    or shift choices.
    """

    def __init__(self, session, *, user_session=None, rng: Any = None) -> None:
        self.session = session
        self.user_session = user_session
        self.random = rng or random.Random()

    def load_constraints(self, target_date: datetime.date, officer_ids: Iterable[int]) -> DayConstraints:
        eligible = set(officer_ids)
        day_of_week = weekday_index(target_date)
        locked_types: Dict[int, str] = {}
        for pattern in locked_patterns_for_weekday(self.session, day_of_week):
            if pattern.user_id not in eligible or pattern.user_id in locked_types:
                continue
            if pattern.shift_type not in LOCKABLE_SHIFT_TYPES:
                logger.warning(
                    "Ignoring locked pattern %s with unsupported shift type %r", pattern.id, pattern.shift_type
                )
                continue
            locked_types[pattern.user_id] = pattern.shift_type
        morning_choices: Set[int] = set()
        afternoon_choices: Set[int] = set()
        for choice in get_choices_for_date(self.session, target_date):
            if choice.user_id not in eligible:
                continue
            if choice.choice == SHIFT_MORNING:
                morning_choices.add(choice.user_id)
            elif choice.choice == SHIFT_AFTERNOON:
                afternoon_choices.add(choice.user_id)
        return DayConstraints(
            vacation_ids=approved_vacation_user_ids(self.session, target_date) & eligible,
            locked_types=locked_types,
            day_off_ids=pattern_user_ids(self.session, "dayoff", day_of_week) & eligible,
            full_time_ids=pattern_user_ids(self.session, "fulltime", day_of_week) & eligible,
            morning_choices=morning_choices,
            afternoon_choices=afternoon_choices,
        )

    def generate(self, target_date: datetime.date) -> Dict[str, Any]:
        resolution = compute_rule(self.session, target_date, user_session=self.user_session)
        rule = resolution.rule
        officer_ids = [officer.id for officer in list_active_officers(self.user_session)]
        constraints = self.load_constraints(target_date, officer_ids)
        plan = plan_day(officer_ids, constraints, rule.morning_limit, rule.afternoon_limit, self.random)
        created = self._replace_shifts(target_date, plan)
        if plan.overflow:
            logger.info("%s: %d officer(s) overflowed into AFTERNOON", target_date.isoformat(), plan.overflow)
        logger.info(
            "Generated %d shifts for %s (available=%d, morning=%d/%d, afternoon=%d/%d)",
            created,
            target_date.isoformat(),
            plan.available,
            plan.morning_count,
            rule.morning_limit,
            plan.afternoon_count,
            rule.afternoon_limit,
        )
        return {
            "date": target_date.isoformat(),
            "morning_limit": rule.morning_limit,
            "afternoon_limit": rule.afternoon_limit,
            "created": created,
            "available": plan.available,
            "is_default_rule": resolution.is_default,
            "counts": plan.counts(),
            "overflow": plan.overflow,
        }

    def _replace_shifts(self, target_date: datetime.date, plan: DayPlan) -> int:
        rows = [
            {
                "user_id": item.user_id,
                "date": target_date,
                "type": item.shift_type,
                "is_locked": item.is_locked,
            }
            for item in plan.assignments
        ]
        try:
            self.session.execute(delete(Shift).where(Shift.date == target_date))
            if rows:
                self.session.execute(insert(Shift), rows)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return len(rows)
