from __future__ import annotations

import re

from vtuhub.errors import ValidationError

# Provider-side network ids
NETWORKS = {
    1: "MTN",
    2: "GLO",
    3: "9MOBILE",
    4: "AIRTEL",
}

_ALIASES = {
    "mtn": 1,
    "glo": 2,
    "globacom": 2,
    "9mobile": 3,
    "etisalat": 3,
    "airtel": 4,
}

PLAN_TYPES = ("sme", "corporate", "gifting")

_PLAN_TYPE_ALIASES = {
    "sme": "sme",
    "sme2": "sme",
    "corporate": "corporate",
    "corp": "corporate",
    "cg": "corporate",
    "gifting": "gifting",
    "gift": "gifting",
}

_PHONE_RE = re.compile(r"^0[789][01]\d{8}$")


def resolve_network(value) -> int:
    """Network id from an id, a numeric string, or a case-insensitive name."""
    if isinstance(value, int) and value in NETWORKS:
        return value
    raw = str(value or "").strip().lower()
    if raw.isdigit() and int(raw) in NETWORKS:
        return int(raw)
    if raw in _ALIASES:
        return _ALIASES[raw]
    raise ValidationError(f"Unknown network: {value}")


def network_name(network_id: int) -> str:
    return NETWORKS.get(int(network_id), str(network_id))


def network_slug(network_id: int) -> str:
    return network_name(network_id).lower()


def normalize_plan_type(value) -> str:
    raw = str(value or "").strip().lower().replace(" ", "")
    if raw in _PLAN_TYPE_ALIASES:
        return _PLAN_TYPE_ALIASES[raw]
    raise ValidationError(f"Unknown plan type: {value}")


def normalize_phone(value) -> str:
    raw = re.sub(r"[\s\-]", "", str(value or ""))
    if raw.startswith("+234"):
        raw = "0" + raw[4:]
    elif raw.startswith("234") and len(raw) == 13:
        raw = "0" + raw[3:]
    if not _PHONE_RE.match(raw):
        raise ValidationError("Invalid phone number")
    return raw
