from __future__ import annotations

import datetime
from typing import Any, Dict, List, Set

from database import approved_vacation_user_ids, list_active_officers, pattern_user_ids
from policy import weekday_index


def blocked_officer_ids(session, target_date: datetime.date) -> Set[int]:
    """Union of day-off, full-time and approved-vacation user ids for a date."""
    day_of_week = weekday_index(target_date)
    blocked: Set[int] = set()
    blocked.update(pattern_user_ids(session, "dayoff", day_of_week))
    blocked.update(pattern_user_ids(session, "fulltime", day_of_week))
    blocked.update(approved_vacation_user_ids(session, target_date))
    return blocked


def get_available_officers(session, target_date: datetime.date, *, user_session=None) -> List[Dict[str, Any]]:
    """Return active officers with no day-off, full-time or vacation exclusion on ``target_date``.

    Locked shift patterns do not exclude an officer here; they are quota-exempt
    placements handled by the assignment engine.
    """
    officers = list_active_officers(user_session)
    blocked = blocked_officer_ids(session, target_date)
    return [
        {"id": officer.id, "full_name": officer.full_name}
        for officer in officers
        if officer.id not in blocked
    ]
