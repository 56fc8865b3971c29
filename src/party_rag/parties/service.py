from typing import Optional

from .constants import PARTY_NAMES


def normalize_short_name(short_name: str) -> str:
    return short_name.strip().upper()


def party_exists(short_name: Optional[str]) -> bool:
    """Party codes are matched case-insensitively (``ap`` == ``AP``)."""
    if not short_name:
        return False
    return normalize_short_name(short_name) in PARTY_NAMES


def get_party_name(short_name: Optional[str]) -> Optional[str]:
    if not short_name:
        return None
    return PARTY_NAMES.get(normalize_short_name(short_name))
