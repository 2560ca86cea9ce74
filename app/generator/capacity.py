from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Tuple

from database import ShiftRule, get_shift_rule, upsert_shift_rule
from policy import default_limits

from .availability import get_available_officers

logger = logging.getLogger(__name__)


@dataclass
class RuleResolution:
    rule: ShiftRule
    is_default: bool


def compute_rule(session, target_date: datetime.date, *, user_session=None) -> RuleResolution:
    """Return the capacity rule for ``target_date``, persisting a default when none exists."""
    rule = get_shift_rule(session, target_date)
    if rule:
        return RuleResolution(rule=rule, is_default=False)
    available = get_available_officers(session, target_date, user_session=user_session)
    morning_limit, afternoon_limit = default_limits(len(available))
    rule = upsert_shift_rule(session, target_date, morning_limit, afternoon_limit)
    logger.info(
        "Created default rule for %s: morning=%d afternoon=%d (available=%d)",
        target_date.isoformat(),
        morning_limit,
        afternoon_limit,
        len(available),
    )
    return RuleResolution(rule=rule, is_default=True)


def preview_rule(session, target_date: datetime.date, *, user_session=None) -> Tuple[int, int, bool]:
    """Return (morning_limit, afternoon_limit, is_manual) without writing anything."""
    rule = get_shift_rule(session, target_date)
    if rule:
        return rule.morning_limit, rule.afternoon_limit, True
    available = get_available_officers(session, target_date, user_session=user_session)
    morning_limit, afternoon_limit = default_limits(len(available))
    return morning_limit, afternoon_limit, False


def set_rule(session, target_date: datetime.date, morning_limit, afternoon_limit) -> ShiftRule:
    try:
        morning = int(morning_limit)
        afternoon = int(afternoon_limit)
    except (TypeError, ValueError):
        raise ValueError("morning_limit and afternoon_limit must be integers")
    if morning < 0 or afternoon < 0:
        raise ValueError("Limits must not be negative")
    return upsert_shift_rule(session, target_date, morning, afternoon)
