from __future__ import annotations

import datetime
import random
import sys
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import (  # noqa: E402
    Base,
    Shift,
    User,
    UserBase,
    VacationRequest,
    WeeklyLockedShiftPattern,
    upsert_shift_rule,
)
from generator.engine import ScheduleGenerator  # noqa: E402
from validation import validate_day_schedule  # noqa: E402


class ScheduleValidationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.schedule_engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(self.schedule_engine)
        self.user_engine = create_engine("sqlite:///:memory:", future=True)
        UserBase.metadata.create_all(self.user_engine)
        self.session = sessionmaker(bind=self.schedule_engine, expire_on_commit=False, future=True)()
        self.user_session = sessionmaker(bind=self.user_engine, expire_on_commit=False, future=True)()
        self.day = datetime.date(2025, 12, 31)

    def tearDown(self) -> None:
        self.session.close()
        self.user_session.close()
        self.schedule_engine.dispose()
        self.user_engine.dispose()

    def test_reports_missing_schedule(self) -> None:
        self._add_officer("Officer A")
        report = self._validate()

        self.assertEqual(report["issues"][0]["type"], "missing_schedule")
        self.assertEqual(report["checks"][0]["status"], "fail")

    def test_generated_schedule_passes(self) -> None:
        officers = [self._add_officer(f"Officer {idx}") for idx in range(6)]
        self.session.add(VacationRequest(user_id=officers[0], start_date=self.day, end_date=self.day, status="APPROVED"))
        self.session.add(WeeklyLockedShiftPattern(user_id=officers[1], day_of_week=3, shift_type="AFTERNOON"))
        self.session.commit()
        ScheduleGenerator(self.session, user_session=self.user_session, rng=random.Random(5)).generate(self.day)

        report = self._validate()

        self.assertEqual(report["issues"], [])
        self.assertEqual(report["warnings"], [])
        self.assertTrue(all(check["status"] == "pass" for check in report["checks"]))

    def test_flags_coverage_problems(self) -> None:
        present = self._add_officer("Present")
        missing = self._add_officer("Missing")
        self._add_shift(present, "MORNING")
        self._add_shift(4242, "AFTERNOON")

        report = self._validate()

        types = {(issue["type"], issue.get("user_id")) for issue in report["issues"]}
        self.assertIn(("missing_officer", missing), types)
        self.assertIn(("unknown_officer", 4242), types)
        coverage = next(check for check in report["checks"] if check["label"].startswith("Every active"))
        self.assertEqual(coverage["status"], "fail")

    def test_flags_vacation_and_lock_violations(self) -> None:
        away = self._add_officer("Away")
        locked = self._add_officer("Locked")
        self.session.add(VacationRequest(user_id=away, start_date=self.day, end_date=self.day, status="APPROVED"))
        self.session.add(WeeklyLockedShiftPattern(user_id=locked, day_of_week=3, shift_type="MORNING"))
        self.session.commit()
        self._add_shift(away, "MORNING")
        self._add_shift(locked, "MORNING", is_locked=False)

        report = self._validate()

        types = {issue["type"] for issue in report["issues"]}
        self.assertEqual(types, {"vacation_not_honoured", "locked_not_honoured"})

    def test_warns_about_overflow(self) -> None:
        first = self._add_officer("First")
        second = self._add_officer("Second")
        upsert_shift_rule(self.session, self.day, 0, 1)
        self._add_shift(first, "AFTERNOON")
        self._add_shift(second, "AFTERNOON")

        report = self._validate()

        self.assertEqual(report["issues"], [])
        self.assertEqual([warning["type"] for warning in report["warnings"]], ["afternoon_overflow"])

    def _validate(self) -> dict:
        return validate_day_schedule(self.session, self.day, user_session=self.user_session)

    def _add_officer(self, name: str) -> int:
        user = User(full_name=name, role="OFFICER", is_active=True, phone="")
        self.user_session.add(user)
        self.user_session.commit()
        return user.id

    def _add_shift(self, user_id: int, shift_type: str, *, is_locked: bool = False) -> None:
        self.session.add(Shift(user_id=user_id, date=self.day, type=shift_type, is_locked=is_locked))
        self.session.commit()


if __name__ == "__main__":
    unittest.main()
