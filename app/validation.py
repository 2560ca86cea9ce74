from __future__ import annotations

import datetime
from collections import Counter
from typing import Any, Dict, List

from sqlalchemy import select

from database import (
    Shift,
    approved_vacation_user_ids,
    get_shift_rule,
    list_active_officers,
    locked_patterns_for_weekday,
)
from policy import SHIFT_AFTERNOON, SHIFT_MORNING, SHIFT_VACATION, weekday_index


def validate_day_schedule(session, target_date: datetime.date, *, user_session=None) -> Dict[str, Any]:
    """Return validation findings for the roster stored for ``target_date``."""
    shifts = list(session.scalars(select(Shift).where(Shift.date == target_date)))
    if not shifts:
        return {
            "date": target_date.isoformat(),
            "checks": [
                {
                    "label": "Schedule exists?",
                    "status": "fail",
                    "details": "No schedule exists for the requested date.",
                }
            ],
            "issues": [
                {
                    "type": "missing_schedule",
                    "severity": "error",
                    "message": "No schedule exists for the requested date.",
                }
            ],
            "warnings": [],
        }

    officer_ids = {officer.id for officer in list_active_officers(user_session)}
    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_coverage_issues(shifts, officer_ids))
    issues.extend(_vacation_issues(session, shifts, target_date))
    issues.extend(_locked_issues(session, shifts, target_date))
    warnings.extend(_quota_warnings(session, shifts, target_date))
    return {
        "date": target_date.isoformat(),
        "checks": _build_checklist(issues),
        "issues": issues,
        "warnings": warnings,
    }


def _coverage_issues(shifts: List[Shift], officer_ids: set) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    per_user = Counter(shift.user_id for shift in shifts)
    for user_id in sorted(officer_ids - set(per_user)):
        issues.append(
            {
                "type": "missing_officer",
                "severity": "error",
                "user_id": user_id,
                "message": f"Active officer {user_id} has no shift.",
            }
        )
    for user_id in sorted(set(per_user) - officer_ids):
        issues.append(
            {
                "type": "unknown_officer",
                "severity": "error",
                "user_id": user_id,
                "message": f"User {user_id} is not an active officer but has a shift.",
            }
        )
    for user_id, count in sorted(per_user.items()):
        if count > 1:
            issues.append(
                {
                    "type": "duplicate_shift",
                    "severity": "error",
                    "user_id": user_id,
                    "message": f"User {user_id} has {count} shifts on the same date.",
                }
            )
    return issues


def _vacation_issues(session, shifts: List[Shift], target_date: datetime.date) -> List[Dict[str, Any]]:
    on_vacation = approved_vacation_user_ids(session, target_date)
    return [
        {
            "type": "vacation_not_honoured",
            "severity": "error",
            "user_id": shift.user_id,
            "message": f"User {shift.user_id} has an approved vacation but is scheduled {shift.type}.",
        }
        for shift in shifts
        if shift.user_id in on_vacation and shift.type != SHIFT_VACATION
    ]


def _locked_issues(session, shifts: List[Shift], target_date: datetime.date) -> List[Dict[str, Any]]:
    locked: Dict[int, str] = {}
    for pattern in locked_patterns_for_weekday(session, weekday_index(target_date)):
        locked.setdefault(pattern.user_id, pattern.shift_type)
    issues: List[Dict[str, Any]] = []
    for shift in shifts:
        expected = locked.get(shift.user_id)
        if not expected or shift.type == SHIFT_VACATION:
            continue
        if shift.type != expected or not shift.is_locked:
            issues.append(
                {
                    "type": "locked_not_honoured",
                    "severity": "error",
                    "user_id": shift.user_id,
                    "message": f"User {shift.user_id} is locked to {expected} but scheduled {shift.type}.",
                }
            )
    return issues


def _quota_warnings(session, shifts: List[Shift], target_date: datetime.date) -> List[Dict[str, Any]]:
    rule = get_shift_rule(session, target_date)
    if not rule:
        return []
    counts = Counter(shift.type for shift in shifts)
    warnings: List[Dict[str, Any]] = []
    if counts[SHIFT_MORNING] > rule.morning_limit:
        warnings.append(
            {
                "type": "morning_over_limit",
                "severity": "warning",
                "message": f"{counts[SHIFT_MORNING]} morning shifts exceed the limit of {rule.morning_limit}.",
            }
        )
    if counts[SHIFT_AFTERNOON] > rule.afternoon_limit:
        warnings.append(
            {
                "type": "afternoon_overflow",
                "severity": "warning",
                "message": (
                    f"{counts[SHIFT_AFTERNOON] - rule.afternoon_limit} afternoon shift(s) above "
                    f"the limit of {rule.afternoon_limit}."
                ),
            }
        )
    return warnings


def _build_checklist(issues: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    def _status(types: set) -> str:
        return "fail" if any(issue["type"] in types for issue in issues) else "pass"

    return [
        {"label": "Schedule exists?", "status": "pass", "details": ""},
        {
            "label": "Every active officer scheduled once?",
            "status": _status({"missing_officer", "unknown_officer", "duplicate_shift"}),
            "details": "",
        },
        {"label": "Vacations honoured?", "status": _status({"vacation_not_honoured"}), "details": ""},
        {"label": "Locked shifts honoured?", "status": _status({"locked_not_honoured"}), "details": ""},
    ]
