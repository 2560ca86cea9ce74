from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import database  # noqa: E402
from database import User, create_user, init_database  # noqa: E402
from roles import ROLE_OFFICER, defined_roles, normalize_role  # noqa: E402

logger = logging.getLogger("checkpoint.seed")

VALID_ROLES = set(defined_roles())

SAMPLE_OFFICERS: List[Dict[str, str]] = [
    {"name": "Amina Warsame", "phone": "250100000001"},
    {"name": "Bashir Nuur", "phone": "250100000002"},
    {"name": "Cawo Jaamac", "phone": "250100000003"},
    {"name": "Daud Ismail", "phone": "250100000004"},
    {"name": "Faadumo Cali", "phone": "250100000005"},
    {"name": "Guuleed Xasan", "phone": "250100000006"},
    {"name": "Hodan Yuusuf", "phone": "250100000007"},
    {"name": "Ibraahim Faarax", "phone": "250100000008"},
    {"name": "Khadra Muuse", "phone": "250100000009"},
    {"name": "Liibaan Aadan", "phone": "250100000010"},
    {"name": "Maryan Sheekh", "phone": "250100000011", "role": "ADMIN"},
]


def parse_roster_rows(rows: Iterable[Dict[str, str]]) -> List[Dict[str, str]]:
    """Normalize CSV-style rows (name, phone, role) and drop unusable entries."""
    entries: List[Dict[str, str]] = []
    for row in rows:
        name = (row.get("name") or row.get("full_name") or "").strip()
        if not name:
            continue
        role = normalize_role(row.get("role") or ROLE_OFFICER)
        if role not in VALID_ROLES:
            logger.warning("Skipping %s: undefined role %r", name, row.get("role"))
            continue
        phone = "".join(ch for ch in (row.get("phone") or "") if ch.isdigit())
        entries.append({"name": name, "phone": phone, "role": role})
    return entries


def seed_users(user_session, entries: Iterable[Dict[str, str]]) -> Tuple[int, int]:
    """Create or refresh users, matching on phone when present, else on name."""
    created = 0
    refreshed = 0
    for entry in entries:
        stmt = select(User)
        if entry.get("phone"):
            stmt = stmt.where(User.phone == entry["phone"])
        else:
            stmt = stmt.where(User.full_name == entry["name"])
        user = user_session.scalars(stmt).first()
        if user is None:
            create_user(
                user_session,
                entry["name"],
                role=entry.get("role", ROLE_OFFICER),
                phone=entry.get("phone", ""),
            )
            created += 1
        else:
            user.full_name = entry["name"]
            user.role = entry.get("role", ROLE_OFFICER)
            refreshed += 1
    user_session.commit()
    return created, refreshed


def load_csv(path: Path) -> List[Dict[str, str]]:
    with path.open(newline="", encoding="utf-8") as handle:
        return parse_roster_rows(csv.DictReader(handle))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the user directory with officers.")
    parser.add_argument("--csv", type=Path, help="CSV file with name, phone and role columns.")
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = parse_args()
    init_database()
    entries = load_csv(args.csv) if args.csv else parse_roster_rows(SAMPLE_OFFICERS)
    with database.UserSessionLocal() as user_session:
        created, refreshed = seed_users(user_session, entries)
    logger.info("Seed complete. Created %d users, refreshed %d.", created, refreshed)


if __name__ == "__main__":
    main()
