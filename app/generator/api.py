from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, Optional

from database import (
    UserSessionLocal,
    auto_time,
    get_schedule_log,
    latest_shift,
    latest_schedule_log,
    shift_count_for_date,
    upsert_schedule_log,
)
from policy import auto_cutoff, local_now, local_tomorrow
from validation import validate_day_schedule

from .engine import ScheduleGenerator

logger = logging.getLogger(__name__)


def generate_schedule_for_date(
    session_factory: Callable,
    target_date: datetime.date,
    *,
    is_auto: bool = False,
    rng: Any = None,
    user_session_factory: Callable = UserSessionLocal,
) -> Dict[str, Any]:
    """Generate the roster for ``target_date``, log the run and attach a validation report.

    Storage errors are not retried here; the caller decides whether to run again.
    """
    if target_date is None:
        raise ValueError("target_date is required.")
    with session_factory() as session, user_session_factory() as user_session:
        engine = ScheduleGenerator(session, user_session=user_session, rng=rng)
        summary = engine.generate(target_date)
        upsert_schedule_log(session, target_date, is_auto=is_auto)
        summary["is_auto"] = bool(is_auto)
        summary["validation"] = validate_day_schedule(session, target_date, user_session=user_session)
    issues = summary["validation"].get("issues") or []
    if issues:
        logger.warning("Schedule for %s has %d validation issue(s)", target_date.isoformat(), len(issues))
    return summary


def run_auto_schedule(
    session_factory: Callable,
    now: datetime.datetime,
    *,
    rng: Any = None,
    user_session_factory: Callable = UserSessionLocal,
) -> Dict[str, Any]:
    """Generate tomorrow's roster once today's automatic-generation time has passed.

    ``now`` is supplied by the caller; nothing here reads the clock.
    """
    with session_factory() as session:
        configured = auto_time(session)
        if local_now(now) < auto_cutoff(now, configured):
            return {"ran": False, "reason": "Before auto time"}
        target_date = local_tomorrow(now)
        if shift_count_for_date(session, target_date) or get_schedule_log(session, target_date):
            return {"ran": False, "reason": "Schedule exists", "date": target_date.isoformat()}
    logger.info("Auto time %s reached; generating schedule for %s", configured, target_date.isoformat())
    result = generate_schedule_for_date(
        session_factory,
        target_date,
        is_auto=True,
        rng=rng,
        user_session_factory=user_session_factory,
    )
    return {"ran": True, "result": result}


def last_schedule_summary(session) -> Dict[str, Optional[Any]]:
    """Describe the most recently generated date, falling back to the latest shift row."""
    log = latest_schedule_log(session)
    if log:
        return {
            "date": log.date.isoformat(),
            "is_auto": bool(log.is_auto),
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
    shift = latest_shift(session)
    if not shift:
        return {"date": None, "is_auto": None, "created_at": None}
    return {
        "date": shift.date.isoformat(),
        "is_auto": None,
        "created_at": shift.created_at.isoformat() if shift.created_at else None,
    }
