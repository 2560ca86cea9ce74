from __future__ import annotations

import datetime
import random
import sys
from pathlib import Path
from unittest import mock

import pytest
from sqlalchemy import func, select

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import Shift, get_shift_rule  # noqa: E402
from generator.engine import ScheduleGenerator  # noqa: E402
from roles import ROLE_ADMIN  # noqa: E402

# 2025-12-31 is a Wednesday.
DAY = datetime.date(2025, 12, 31)
WEDNESDAY = 3


def _generate(stores, rng=None, day: datetime.date = DAY) -> dict:
    engine = ScheduleGenerator(stores.session, user_session=stores.user_session, rng=rng)
    return engine.generate(day)


def _shifts_by_user(session, day: datetime.date = DAY) -> dict:
    return {shift.user_id: shift for shift in session.scalars(select(Shift).where(Shift.date == day))}


def test_ten_officer_day_with_vacation_lock_and_choices(stores, keep_order) -> None:
    roster = stores.roster
    ids = roster.officers(10)
    on_leave, locked, early_a, early_b = ids[:4]
    roster.vacation(on_leave, DAY)
    roster.locked(locked, WEDNESDAY, "FULLTIME")
    roster.choice(early_a, DAY, "MORNING")
    roster.choice(early_b, DAY, "MORNING")
    roster.rule(DAY, 3, 3)

    summary = _generate(stores, keep_order)

    assert summary["created"] == 10
    assert summary["available"] == 8
    assert summary["is_default_rule"] is False
    assert (summary["morning_limit"], summary["afternoon_limit"]) == (3, 3)
    shifts = _shifts_by_user(stores.session)
    assert shifts[on_leave].type == "VACATION"
    assert shifts[on_leave].is_locked is False
    assert shifts[locked].type == "FULLTIME"
    assert shifts[locked].is_locked is True
    assert shifts[early_a].type == "MORNING"
    assert shifts[early_b].type == "MORNING"
    # One random slot completes the morning; everyone else lands in the afternoon.
    assert shifts[ids[4]].type == "MORNING"
    assert [shifts[uid].type for uid in ids[5:]] == ["AFTERNOON"] * 5
    assert summary["counts"] == {"VACATION": 1, "FULLTIME": 1, "MORNING": 3, "AFTERNOON": 5}
    assert summary["overflow"] == 2


def test_every_active_officer_gets_exactly_one_shift(stores) -> None:
    roster = stores.roster
    ids = roster.officers(7)
    retired = roster.officer("Retired Officer", active=False)
    admin = roster.officer("Desk Admin", role=ROLE_ADMIN)
    roster.day_off(retired, WEDNESDAY)
    roster.vacation(admin, DAY)
    roster.choice(retired, DAY, "MORNING")

    summary = _generate(stores, random.Random(11))

    shifts = _shifts_by_user(stores.session)
    assert sorted(shifts) == sorted(ids)
    assert summary["created"] == len(ids)
    total = stores.session.scalar(select(func.count(Shift.id)).where(Shift.date == DAY))
    assert total == len(ids)


def test_vacation_overrides_lock_and_choice(stores, keep_order) -> None:
    roster = stores.roster
    officer, other = roster.officers(2)
    roster.vacation(officer, DAY - datetime.timedelta(days=2), DAY + datetime.timedelta(days=2))
    roster.locked(officer, WEDNESDAY, "MORNING")
    roster.choice(officer, DAY, "AFTERNOON")
    roster.rule(DAY, 1, 1)

    summary = _generate(stores, keep_order)

    shifts = _shifts_by_user(stores.session)
    assert shifts[officer].type == "VACATION"
    assert shifts[officer].is_locked is False
    # The locked MORNING never applied, so the morning slot is still free.
    assert shifts[other].type == "MORNING"
    assert summary["overflow"] == 0


def test_day_off_wins_over_full_time(stores) -> None:
    roster = stores.roster
    (officer,) = roster.officers(1)
    roster.day_off(officer, WEDNESDAY)
    roster.full_time(officer, WEDNESDAY)

    _generate(stores)

    assert _shifts_by_user(stores.session)[officer].type == "DAYOFF"


def test_lock_wins_over_day_off(stores) -> None:
    roster = stores.roster
    (officer,) = roster.officers(1)
    roster.day_off(officer, WEDNESDAY)
    roster.locked(officer, WEDNESDAY, "AFTERNOON")

    _generate(stores)

    shift = _shifts_by_user(stores.session)[officer]
    assert (shift.type, shift.is_locked) == ("AFTERNOON", True)


def test_locked_morning_consumes_quota(stores, keep_order) -> None:
    roster = stores.roster
    locked, chooser, late = roster.officers(3)
    roster.locked(locked, WEDNESDAY, "MORNING")
    roster.choice(chooser, DAY, "MORNING")
    roster.rule(DAY, 1, 2)

    summary = _generate(stores, keep_order)

    shifts = _shifts_by_user(stores.session)
    assert shifts[locked].type == "MORNING"
    assert shifts[chooser].type == "AFTERNOON"
    assert shifts[late].type == "AFTERNOON"
    assert summary["counts"] == {"MORNING": 1, "AFTERNOON": 2}


def test_first_lock_wins_when_officer_has_several(stores) -> None:
    roster = stores.roster
    (officer,) = roster.officers(1)
    roster.locked(officer, WEDNESDAY, "AFTERNOON")
    roster.locked(officer, WEDNESDAY, "MORNING")

    _generate(stores)

    assert _shifts_by_user(stores.session)[officer].type == "AFTERNOON"


def test_unsupported_locked_type_is_ignored(stores, keep_order) -> None:
    roster = stores.roster
    (officer,) = roster.officers(1)
    roster.locked(officer, WEDNESDAY, "DAYOFF")
    roster.rule(DAY, 1, 0)

    _generate(stores, keep_order)

    shift = _shifts_by_user(stores.session)[officer]
    assert (shift.type, shift.is_locked) == ("MORNING", False)


def test_inactive_patterns_and_pending_vacations_do_not_apply(stores, keep_order) -> None:
    roster = stores.roster
    resting, waiting = roster.officers(2)
    roster.day_off(resting, WEDNESDAY, active=False)
    roster.vacation(waiting, DAY, status="PENDING")
    roster.rule(DAY, 1, 1)

    summary = _generate(stores, keep_order)

    assert summary["available"] == 2
    shifts = _shifts_by_user(stores.session)
    assert shifts[resting].type == "MORNING"
    assert shifts[waiting].type == "AFTERNOON"


def test_choices_beyond_quota_fall_back_to_random_fill(stores, keep_order) -> None:
    roster = stores.roster
    first, second, third = roster.officers(3)
    for officer in (first, second, third):
        roster.choice(officer, DAY, "MORNING")
    roster.rule(DAY, 1, 1)

    summary = _generate(stores, keep_order)

    shifts = _shifts_by_user(stores.session)
    assert shifts[first].type == "MORNING"
    assert shifts[second].type == "AFTERNOON"
    assert shifts[third].type == "AFTERNOON"
    assert summary["overflow"] == 1


def test_quotas_hold_when_supply_matches_capacity(stores) -> None:
    stores.roster.officers(12)
    for seed in range(5):
        summary = _generate(stores, random.Random(seed))
        assert (summary["morning_limit"], summary["afternoon_limit"]) == (8, 4)
        assert summary["counts"] == {"MORNING": 8, "AFTERNOON": 4}
        assert summary["overflow"] == 0


def test_regeneration_replaces_rows_and_keeps_fixed_assignments(stores) -> None:
    roster = stores.roster
    ids = roster.officers(6)
    roster.vacation(ids[0], DAY)
    roster.locked(ids[1], WEDNESDAY, "MORNING")
    roster.day_off(ids[2], WEDNESDAY)

    _generate(stores, random.Random(1))
    edited = stores.session.scalars(select(Shift).where(Shift.user_id == ids[5], Shift.date == DAY)).one()
    edited.type = "FULLTIME"
    stores.session.commit()

    _generate(stores, random.Random(2))

    shifts = _shifts_by_user(stores.session)
    assert len(shifts) == len(ids)
    assert shifts[ids[0]].type == "VACATION"
    assert (shifts[ids[1]].type, shifts[ids[1]].is_locked) == ("MORNING", True)
    assert shifts[ids[2]].type == "DAYOFF"
    assert shifts[ids[5]].type in {"MORNING", "AFTERNOON"}


def test_no_active_officers_creates_nothing(stores) -> None:
    stores.roster.officer("Inactive", active=False)

    summary = _generate(stores)

    assert summary["created"] == 0
    assert summary["available"] == 0
    assert summary["is_default_rule"] is True
    rule = get_shift_rule(stores.session, DAY)
    assert (rule.morning_limit, rule.afternoon_limit) == (0, 0)


def test_failed_insert_keeps_previous_roster(stores) -> None:
    ids = stores.roster.officers(4)
    _generate(stores, random.Random(3))
    before = {uid: shift.type for uid, shift in _shifts_by_user(stores.session).items()}

    with mock.patch("generator.engine.insert", side_effect=RuntimeError("disk full")):
        with pytest.raises(RuntimeError):
            _generate(stores, random.Random(4))

    stores.session.expire_all()
    after = {uid: shift.type for uid, shift in _shifts_by_user(stores.session).items()}
    assert sorted(after) == sorted(ids)
    assert after == before
