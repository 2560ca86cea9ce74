from __future__ import annotations

from typing import Dict, List


ROLE_OFFICER = "OFFICER"
ROLE_ADMIN = "ADMIN"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"

ROLE_LABELS: Dict[str, str] = {
    ROLE_OFFICER: "Immigration Officer",
    ROLE_ADMIN: "Administrator",
    ROLE_SUPER_ADMIN: "Super Administrator",
}

_ROLE_ALIASES: Dict[str, str] = {
    "officer": ROLE_OFFICER,
    "immigration officer": ROLE_OFFICER,
    "admin": ROLE_ADMIN,
    "administrator": ROLE_ADMIN,
    "super admin": ROLE_SUPER_ADMIN,
    "super-admin": ROLE_SUPER_ADMIN,
    "superadmin": ROLE_SUPER_ADMIN,
}


def normalize_role(role: str) -> str:
    """Return the canonical upper-case role code for a label or alias."""
    label = (role or "").strip()
    if not label:
        return ""
    alias = _ROLE_ALIASES.get(label.lower())
    if alias:
        return alias
    return label.upper().replace(" ", "_").replace("-", "_")


def is_officer_role(role: str) -> bool:
    return normalize_role(role) == ROLE_OFFICER


def defined_roles() -> List[str]:
    """Return a sorted list of roles explicitly supported by the app."""
    return sorted(ROLE_LABELS)
