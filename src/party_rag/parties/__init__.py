from .constants import PARTY_DATA, PARTY_NAMES
from .service import get_party_name, normalize_short_name, party_exists

__all__ = [
    "PARTY_DATA",
    "PARTY_NAMES",
    "get_party_name",
    "normalize_short_name",
    "party_exists",
]
