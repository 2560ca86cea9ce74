from __future__ import annotations

import argparse
import datetime
import logging
import sys
import time
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import database  # noqa: E402
from database import init_database  # noqa: E402
from generator.api import generate_schedule_for_date, run_auto_schedule  # noqa: E402
from policy import schedule_zone  # noqa: E402

logger = logging.getLogger("checkpoint.auto_run")


def tick() -> dict:
    now = datetime.datetime.now(schedule_zone())
    result = run_auto_schedule(
        database.SessionLocal,
        now,
        user_session_factory=database.UserSessionLocal,
    )
    if result.get("ran"):
        summary = result.get("result") or {}
        logger.info(
            "Generated %s shifts for %s (available=%s)",
            summary.get("created"),
            summary.get("date"),
            summary.get("available"),
        )
    else:
        logger.debug("Skipped: %s", result.get("reason"))
    return result


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Trigger automatic schedule generation for tomorrow once the configured "
            "auto time has passed, or force generation for a given date."
        )
    )
    parser.add_argument("--date", help="ISO date (YYYY-MM-DD) to generate immediately, bypassing the auto time.")
    parser.add_argument(
        "--interval",
        type=int,
        default=0,
        help="Repeat every N seconds instead of running a single tick.",
    )
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_database()
    args = parse_args()
    if args.date:
        try:
            target = datetime.date.fromisoformat(args.date)
        except ValueError as exc:
            raise SystemExit(f"Invalid --date value: {exc}") from exc
        summary = generate_schedule_for_date(
            database.SessionLocal,
            target,
            user_session_factory=database.UserSessionLocal,
        )
        logger.info("Generated %s shifts for %s", summary.get("created"), summary.get("date"))
        return
    if args.interval <= 0:
        tick()
        return
    while True:
        try:
            tick()
        except Exception:  # noqa: BLE001
            logger.exception("Automatic run failed")
        time.sleep(args.interval)


if __name__ == "__main__":
    main()
