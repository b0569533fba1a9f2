"""Enumerations shared by the listing store, scoring and API layers.

Role hierarchy: user < advertiser < publisher < admin. Every role gate goes
through ``role_at_least`` instead of comparing strings.
"""

from __future__ import annotations

import re
from enum import Enum


class Role(str, Enum):
    USER = "user"
    ADVERTISER = "advertiser"
    PUBLISHER = "publisher"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return list(Role).index(self)


class ListingStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


ACTIVE_STATUSES = (ListingStatus.PENDING.value, ListingStatus.UNDER_REVIEW.value)
OWNER_EDITABLE_STATUSES = (ListingStatus.PENDING.value, ListingStatus.REJECTED.value)
ALL_STATUSES = tuple(s.value for s in ListingStatus)

# Roles a user may pick for themselves at signup.
SELF_SERVICE_ROLES = (Role.USER.value, Role.ADVERTISER.value)

CATEGORIES = (
    "Business / Finance",
    "Technology",
    "Health / Fitness",
    "Lifestyle",
    "Travel",
    "Food / Drink",
    "Education",
    "Fashion / Beauty",
    "Sports",
    "Entertainment",
    "Home / Garden",
    "Parenting / Family",
    "Automotive",
    "Real Estate",
    "News / Media",
    "Other",
)

GRAY_NICHES = (
    "Casino / Gambling",
    "CBD / Cannabis",
    "Adult",
    "Crypto / Forex",
    "Betting / Sportsbook",
    "Other",
)

BUSINESS_TYPES = ("blog", "news", "ecommerce", "corporate", "personal", "ngo", "other")
TRAFFIC_SOURCES = ("organic", "social", "direct", "referral", "paid", "email")

ANALYSIS_MANUAL = "manual"
ANALYSIS_AUTOMATIC = "automatic"


def parse_role(value) -> Role | None:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return None


def role_at_least(role, minimum) -> bool:
    """True when ``role`` sits at or above ``minimum`` in the hierarchy."""
    current = parse_role(role)
    required = parse_role(minimum)
    if current is None or required is None:
        return False
    return current.rank >= required.rank


def _slash_key(value: str) -> str:
    return re.sub(r"\s*/\s*", "/", value.strip()).lower()


_CATEGORY_KEYS = {_slash_key(c): c for c in CATEGORIES}
_NICHE_KEYS = {_slash_key(n): n for n in GRAY_NICHES}


def normalize_category(value) -> str | None:
    """Map ``Business/Finance`` and similar spellings onto the canonical label."""
    if not isinstance(value, str) or not value.strip():
        return None
    return _CATEGORY_KEYS.get(_slash_key(value))


def normalize_gray_niche(value) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return _NICHE_KEYS.get(_slash_key(value))
