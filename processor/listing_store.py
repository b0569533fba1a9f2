"""Publisher request persistence helpers and field-level invariants.

Everything here works on an open AsyncSession; transaction boundaries belong
to the lifecycle service.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from urllib.parse import urlsplit

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import PublisherRequest
from processor.catalog import (
    ACTIVE_STATUSES,
    BUSINESS_TYPES,
    TRAFFIC_SOURCES,
    normalize_category,
    normalize_gray_niche,
)
from processor.errors import NotFoundError, ValidationError
from processor.scoring import (
    DerivedAnalytics,
    ListingMetrics,
    price_range,
    total_audience,
    trust_level,
)

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_FIELDS = ("full_name", "email", "company_name", "website", "category")

# Fields an owner may change through Update. status, audit and ownership
# fields are deliberately absent.
MUTABLE_FIELDS = (
    "full_name", "email", "company_name", "phone", "address",
    "category", "gray_niches", "business_type", "primary_traffic_source", "content_languages",
    "audience_size", "domain_authority", "page_authority", "monthly_traffic_ahrefs", "top_traffic_country",
    "standard_post_price", "gray_niche_price",
    "dofollow_allowed", "nofollow_allowed",
    "post_sample_url", "content_guidelines", "additional_notes",
)

# Changing any of these invalidates the stored analysis.
METRIC_FIELDS = frozenset({
    "audience_size", "domain_authority", "page_authority",
    "monthly_traffic_ahrefs", "top_traffic_country", "category",
})

SUBMISSION_FIELDS = REQUIRED_FIELDS + tuple(f for f in MUTABLE_FIELDS if f not in REQUIRED_FIELDS)


def normalize_website(value) -> str | None:
    """Canonical http(s) URL (lower-case scheme/host, no trailing slash) or None."""
    if not isinstance(value, str):
        return None
    parts = urlsplit(value.strip())
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        return None
    host = parts.hostname.lower()
    if "." not in host and host != "localhost":
        return None
    netloc = host if parts.port is None else f"{host}:{parts.port}"
    path = parts.path.rstrip("/")
    url = f"{parts.scheme.lower()}://{netloc}{path}"
    if parts.query:
        url += f"?{parts.query}"
    return url


# ── Field cleaners: return the cleaned value or raise ValueError ──

def _text(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("expected text")
    return value.strip() or None


def _required_text(value):
    cleaned = _text(value)
    if cleaned is None:
        raise ValueError("required")
    return cleaned


def _email(value):
    cleaned = _required_text(value).lower()
    if not EMAIL_RE.match(cleaned):
        raise ValueError("invalid email")
    return cleaned


def _website(value):
    cleaned = normalize_website(value)
    if cleaned is None:
        raise ValueError("invalid url")
    return cleaned


def _category(value):
    cleaned = normalize_category(value)
    if cleaned is None:
        raise ValueError("unknown category")
    return cleaned


def _gray_niches(value):
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    cleaned: list[str] = []
    for item in value:
        niche = normalize_gray_niche(item)
        if niche is None:
            raise ValueError(f"unknown gray niche {item!r}")
        if niche not in cleaned:
            cleaned.append(niche)
    return cleaned


def _bounded_int(low: int, high: int | None = None):
    def _clean(value):
        if value is None or value == "":
            return 0
        if isinstance(value, bool):
            raise ValueError("expected number")
        number = float(value)
        if not math.isfinite(number):
            raise ValueError("expected finite number")
        number = int(number)
        if number < low or (high is not None and number > high):
            raise ValueError("out of range")
        return number
    return _clean


def _price(value):
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValueError("expected number")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("expected finite number")
    if number < 0:
        raise ValueError("negative price")
    return round(number, 2)


def _flag(value):
    if not isinstance(value, bool):
        raise ValueError("expected boolean")
    return value


def _choice(options):
    def _clean(value):
        if value is None:
            return options[-1] if "other" in options else options[0]
        cleaned = str(value).strip().lower()
        if cleaned not in options:
            raise ValueError("unknown option")
        return cleaned
    return _clean


def _string_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    return [str(v).strip() for v in value if str(v).strip()]


def check_social_media(value) -> dict:
    """Accept {platform: url | {"url": str, ...}} or raise ValueError."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("expected mapping")
    for platform, entry in value.items():
        if not isinstance(platform, str):
            raise ValueError("platform names must be strings")
        if entry is None or isinstance(entry, str):
            continue
        if not isinstance(entry, dict):
            raise ValueError(f"bad profile for {platform!r}")
        if not isinstance(entry.get("url"), (str, type(None))):
            raise ValueError(f"bad url for {platform!r}")
    return value


_CLEANERS = {
    "full_name": _required_text,
    "email": _email,
    "company_name": _required_text,
    "website": _website,
    "category": _category,
    "phone": _text,
    "address": _text,
    "gray_niches": _gray_niches,
    "business_type": _choice(BUSINESS_TYPES),
    "primary_traffic_source": _choice(TRAFFIC_SOURCES),
    "content_languages": _string_list,
    "audience_size": _bounded_int(0),
    "domain_authority": _bounded_int(0, 100),
    "page_authority": _bounded_int(0, 100),
    "monthly_traffic_ahrefs": _bounded_int(0),
    "top_traffic_country": lambda v: _text(v) or "",
    "standard_post_price": _price,
    "gray_niche_price": _price,
    "dofollow_allowed": _flag,
    "nofollow_allowed": _flag,
    "post_sample_url": _text,
    "content_guidelines": _text,
    "additional_notes": _text,
    "social_media": check_social_media,
}


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _clean_fields(data: dict, fields) -> tuple[dict, list[str]]:
    cleaned: dict = {}
    invalid: list[str] = []
    for name in fields:
        if name not in data:
            continue
        try:
            cleaned[name] = _CLEANERS[name](data[name])
        except (TypeError, ValueError, OverflowError):
            invalid.append(name)
    return cleaned, invalid


def validate_submission(payload: dict) -> dict:
    """Validate a new listing payload and return cleaned column values.

    Missing required fields are reported before malformed ones so the caller
    sees exactly which fields were absent.
    """
    missing = [f for f in REQUIRED_FIELDS if is_blank(payload.get(f))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

    cleaned, invalid = _clean_fields(payload, SUBMISSION_FIELDS + ("social_media",))
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)

    cleaned.setdefault("gray_niches", [])
    cleaned.setdefault("standard_post_price", 0.0)
    if not cleaned.get("gray_niche_price"):
        cleaned["gray_niche_price"] = cleaned["standard_post_price"]
    return cleaned


def clean_patch(patch: dict) -> dict:
    """Restrict an owner patch to MUTABLE_FIELDS and validate what is left."""
    ignored = sorted(set(patch) - set(MUTABLE_FIELDS) - {"social_media"})
    if ignored:
        logger.debug("Ignoring non-patchable fields: %s", ignored)
    cleaned, invalid = _clean_fields(patch, MUTABLE_FIELDS)
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)
    return cleaned


# ── Queries / writes ──

async def get_listing(
    session: AsyncSession, listing_id: int, refresh: bool = False,
) -> PublisherRequest | None:
    stmt = select(PublisherRequest).where(PublisherRequest.id == listing_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_owned_listing(
    session: AsyncSession, listing_id: int, owner_id: int, refresh: bool = False,
) -> PublisherRequest:
    """Listing owned by ``owner_id``. Someone else's listing is reported as missing."""
    listing = await get_listing(session, listing_id, refresh=refresh)
    if listing is None or listing.owner_user_id != owner_id:
        raise NotFoundError("Publisher request not found")
    return listing


async def find_active(
    session: AsyncSession, owner_id: int, website: str, exclude_id: int | None = None,
) -> PublisherRequest | None:
    stmt = select(PublisherRequest).where(
        PublisherRequest.owner_user_id == owner_id,
        PublisherRequest.website == website,
        PublisherRequest.status.in_(ACTIVE_STATUSES),
    )
    if exclude_id is not None:
        stmt = stmt.where(PublisherRequest.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def conditional_update(
    session: AsyncSession,
    listing_id: int,
    expected_statuses,
    values: dict,
    owner_id: int | None = None,
) -> bool:
    """UPDATE ... WHERE id = :id AND status IN (:expected). True if a row changed."""
    stmt = update(PublisherRequest).where(PublisherRequest.id == listing_id)
    if expected_statuses is not None:
        stmt = stmt.where(PublisherRequest.status.in_(tuple(expected_statuses)))
    if owner_id is not None:
        stmt = stmt.where(PublisherRequest.owner_user_id == owner_id)
    result = await session.execute(
        stmt.values(**values).execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def analysis_values(analysis: DerivedAnalytics, analyzed_at: datetime) -> dict:
    """Column values for a freshly computed website analysis."""
    return {
        "monthly_traffic": analysis.monthly_traffic,
        "estimated_audience": analysis.estimated_audience,
        "trust_score": analysis.trust_score,
        "analysis_domain_authority": analysis.domain_authority,
        "analysis_page_authority": analysis.page_authority,
        "analysis_top_country": analysis.top_traffic_country,
        "social_media": analysis.social_media,
        "has_analytics": analysis.has_analytics,
        "analysis_source": analysis.analysis_source,
        "analysis_errors": list(analysis.errors),
        "last_analyzed": analyzed_at,
    }


def metrics_from(data: dict, social_media: dict | None = None) -> ListingMetrics:
    return ListingMetrics(
        website=data.get("website") or "",
        category=data.get("category"),
        domain_authority=data.get("domain_authority") or 0,
        page_authority=data.get("page_authority") or 0,
        ahrefs_traffic=data.get("monthly_traffic_ahrefs") or 0,
        audience_size=data.get("audience_size") or 0,
        top_traffic_country=data.get("top_traffic_country") or "",
        social_media=social_media if social_media is not None else (data.get("social_media") or {}),
    )


def metrics_from_listing(
    listing: PublisherRequest, overrides: dict | None = None, social_media: dict | None = None,
) -> ListingMetrics:
    data = {
        "website": listing.website,
        "category": listing.category,
        "domain_authority": listing.domain_authority,
        "page_authority": listing.page_authority,
        "monthly_traffic_ahrefs": listing.monthly_traffic_ahrefs,
        "audience_size": listing.audience_size,
        "top_traffic_country": listing.top_traffic_country,
    }
    data.update(overrides or {})
    return metrics_from(data, social_media if social_media is not None else (listing.social_media or {}))


# ── Serialization ──

def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def website_analysis(listing: PublisherRequest) -> dict | None:
    if listing.last_analyzed is None:
        return None
    return {
        "monthly_traffic": listing.monthly_traffic or 0,
        "estimated_audience": listing.estimated_audience or 0,
        "trust_score": listing.trust_score or 0,
        "domain_authority": listing.analysis_domain_authority or 0,
        "page_authority": listing.analysis_page_authority or 0,
        "top_traffic_country": listing.analysis_top_country,
        "social_media": listing.social_media or {},
        "has_analytics": bool(listing.has_analytics),
        "last_analyzed": _iso(listing.last_analyzed),
        "analysis_source": listing.analysis_source,
        "errors": listing.analysis_errors or [],
    }


def listing_total_audience(listing: PublisherRequest) -> int:
    return total_audience(listing.monthly_traffic, listing.social_media, listing.audience_size)


def analytics_summary(listing: PublisherRequest) -> dict:
    return {
        "total_audience": listing_total_audience(listing),
        "trust_level": trust_level(listing.trust_score),
        "has_verified_data": bool(listing.has_analytics),
    }


def serialize_listing(listing: PublisherRequest) -> dict:
    return {
        "id": listing.id,
        "owner_user_id": listing.owner_user_id,
        "full_name": listing.full_name,
        "email": listing.email,
        "company_name": listing.company_name,
        "website": listing.website,
        "phone": listing.phone,
        "address": listing.address,
        "category": listing.category,
        "gray_niches": listing.gray_niches or [],
        "business_type": listing.business_type,
        "primary_traffic_source": listing.primary_traffic_source,
        "content_languages": listing.content_languages or [],
        "audience_size": listing.audience_size or 0,
        "domain_authority": listing.domain_authority or 0,
        "page_authority": listing.page_authority or 0,
        "monthly_traffic_ahrefs": listing.monthly_traffic_ahrefs or 0,
        "top_traffic_country": listing.top_traffic_country or "",
        "pricing": {
            "standard_post_price": listing.standard_post_price or 0.0,
            "gray_niche_price": listing.gray_niche_price or 0.0,
        },
        "price_range": price_range(listing.standard_post_price, listing.gray_niche_price),
        "link_details": {
            "dofollow_allowed": bool(listing.dofollow_allowed),
            "nofollow_allowed": bool(listing.nofollow_allowed),
        },
        "content_details": {
            "post_sample_url": listing.post_sample_url,
            "content_guidelines": listing.content_guidelines,
            "additional_notes": listing.additional_notes,
        },
        "website_analysis": website_analysis(listing),
        "total_audience": listing_total_audience(listing),
        "status": listing.status,
        "reviewed_by": listing.reviewed_by,
        "reviewed_at": _iso(listing.reviewed_at),
        "approved_by": listing.approved_by,
        "approval_date": _iso(listing.approval_date),
        "rejection_reason": listing.rejection_reason,
        "admin_notes": listing.admin_notes,
        "created_at": _iso(listing.created_at),
        "updated_at": _iso(listing.updated_at),
    }
