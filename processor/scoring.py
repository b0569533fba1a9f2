"""Website scoring -- trust score, traffic and audience estimates for a listing.

``score()`` is the deterministic engine: it only looks at what the publisher
declared (SEO metrics, audience size, social profiles). Strategies wrap it so
the lifecycle can swap in a live analytics backend without touching callers:

- DeclaredMetricsStrategy: ``score()`` as-is (analysis_source = "manual")
- RemoteAnalyticsStrategy: POSTs to ANALYTICS_API_URL, falls back to
  ``score()`` when the service fails (analysis_source = "automatic")

Trust score weights:
  domain authority 40% / page authority 20% / traffic 25% (log10, caps at 1M)
  / social presence 15% (verified profile = 2 points, caps at 4 points)
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, replace

import httpx

from processor.catalog import ANALYSIS_AUTOMATIC, ANALYSIS_MANUAL

logger = logging.getLogger(__name__)

ANALYTICS_API_URL = os.getenv("ANALYTICS_API_URL", "")
ANALYTICS_API_KEY = os.getenv("ANALYTICS_API_KEY", "")
ANALYTICS_TIMEOUT = float(os.getenv("ANALYTICS_TIMEOUT", "15"))

# ── Score weights ──
W_DOMAIN_AUTHORITY = 0.40
W_PAGE_AUTHORITY = 0.20
W_TRAFFIC = 0.25
W_SOCIAL = 0.15

# ── Normalization caps ──
TRAFFIC_CAP_LOG10 = 6.0  # 1,000,000 monthly visits
SOCIAL_CAP_POINTS = 4

SUBSCRIBER_PLATFORMS = {"youtube"}


@dataclass
class ListingMetrics:
    website: str
    category: str | None = None
    domain_authority: int = 0
    page_authority: int = 0
    ahrefs_traffic: int = 0
    audience_size: int = 0
    top_traffic_country: str = ""
    social_media: dict = field(default_factory=dict)


@dataclass
class DerivedAnalytics:
    monthly_traffic: int
    estimated_audience: int
    trust_score: int
    domain_authority: int
    page_authority: int
    top_traffic_country: str
    social_media: dict
    has_analytics: bool
    analysis_source: str = ANALYSIS_MANUAL
    errors: list[str] = field(default_factory=list)


def _as_int(value, default: int = 0) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError, OverflowError):
        return default


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def normalize_social_media(social_media: dict | None) -> dict:
    """Coerce ``{platform: url | {url, followers, ...}}`` into profile dicts.

    Blank entries are dropped. YouTube counts go under ``subscribers``.
    """
    profiles: dict[str, dict] = {}
    for platform, entry in (social_media or {}).items():
        key = str(platform).strip().lower()
        if not key:
            continue
        if isinstance(entry, str):
            entry = {"url": entry}
        if not isinstance(entry, dict):
            continue
        url = entry.get("url")
        if not isinstance(url, str) or not url.strip():
            continue
        url = url.strip()
        count = _as_int(entry.get("subscribers") if key in SUBSCRIBER_PLATFORMS else entry.get("followers"))
        if not count:
            count = _as_int(entry.get("followers") or entry.get("subscribers"))
        profile = {"url": url, "verified": bool(entry.get("verified", False))}
        profile["subscribers" if key in SUBSCRIBER_PLATFORMS else "followers"] = count
        profiles[key] = profile
    return profiles


def social_followers(social_media: dict | None) -> int:
    total = 0
    for profile in (social_media or {}).values():
        if isinstance(profile, dict):
            total += _as_int(profile.get("followers") or profile.get("subscribers"))
    return total


def total_audience(monthly_traffic, social_media, audience_size) -> int:
    """monthly traffic + social followers/subscribers + declared audience."""
    return _as_int(monthly_traffic) + social_followers(social_media) + _as_int(audience_size)


def compute_trust_score(
    domain_authority: int,
    page_authority: int,
    monthly_traffic: int,
    social_media: dict,
) -> int:
    da = _clamp(_as_int(domain_authority))
    pa = _clamp(_as_int(page_authority))
    traffic_ratio = min(1.0, math.log10(_as_int(monthly_traffic) + 1) / TRAFFIC_CAP_LOG10)
    points = sum(2 if p.get("verified") else 1 for p in (social_media or {}).values())
    social_ratio = min(1.0, points / SOCIAL_CAP_POINTS)
    raw = (
        da * W_DOMAIN_AUTHORITY
        + pa * W_PAGE_AUTHORITY
        + traffic_ratio * 100 * W_TRAFFIC
        + social_ratio * 100 * W_SOCIAL
    )
    return int(_clamp(round(raw)))


def score(metrics: ListingMetrics) -> DerivedAnalytics:
    """Deterministic analytics from declared metrics. No I/O."""
    social = normalize_social_media(metrics.social_media)
    ahrefs = _as_int(metrics.ahrefs_traffic)
    audience = _as_int(metrics.audience_size)
    monthly_traffic = ahrefs if ahrefs > 0 else audience
    da = int(_clamp(_as_int(metrics.domain_authority)))
    pa = int(_clamp(_as_int(metrics.page_authority)))
    return DerivedAnalytics(
        monthly_traffic=monthly_traffic,
        estimated_audience=total_audience(monthly_traffic, social, audience),
        trust_score=compute_trust_score(da, pa, monthly_traffic, social),
        domain_authority=da,
        page_authority=pa,
        top_traffic_country=(metrics.top_traffic_country or "").strip() or "Unknown",
        social_media=social,
        has_analytics=ahrefs > 0 or da > 0 or pa > 0,
        analysis_source=ANALYSIS_MANUAL,
    )


def trust_level(trust_score) -> str:
    value = _as_int(trust_score)
    if value >= 70:
        return "High"
    if value >= 40:
        return "Medium"
    return "Low"


def price_range(standard_post_price, gray_niche_price) -> str:
    """``$50`` when both prices match, else ``$50 - $80``."""
    standard = float(standard_post_price or 0)
    gray = float(gray_niche_price or 0) or standard

    def _fmt(value: float) -> str:
        return f"${int(value)}" if value.is_integer() else f"${value:.2f}"

    if standard == gray:
        return _fmt(standard)
    return f"{_fmt(standard)} - {_fmt(gray)}"


# ── Strategies ──

class ScoringStrategy:
    """Base class for pluggable analytics backends."""

    name = "base"

    async def analyze(self, metrics: ListingMetrics) -> DerivedAnalytics:
        raise NotImplementedError

    async def close(self):
        pass


class DeclaredMetricsStrategy(ScoringStrategy):
    name = "declared"

    async def analyze(self, metrics: ListingMetrics) -> DerivedAnalytics:
        return score(metrics)


class RemoteAnalyticsStrategy(ScoringStrategy):
    """Enrich declared metrics with a third-party traffic API.

    Expected response keys (all optional): monthly_traffic, trust_score,
    has_analytics, top_traffic_country, social_media.
    """

    name = "remote"

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url if api_url is not None else ANALYTICS_API_URL
        self.api_key = api_key if api_key is not None else ANALYTICS_API_KEY
        self._client = client or httpx.AsyncClient(timeout=timeout or ANALYTICS_TIMEOUT)

    async def analyze(self, metrics: ListingMetrics) -> DerivedAnalytics:
        baseline = score(metrics)
        if not self.api_url:
            logger.warning("ANALYTICS_API_URL not set - using declared metrics")
            return baseline

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {
            "website": metrics.website,
            "category": metrics.category,
            "social_media": baseline.social_media,
        }
        try:
            resp = await self._client.post(self.api_url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected JSON object, got {type(data).__name__}")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Remote analysis failed for %s: %s", metrics.website, exc)
            return replace(baseline, errors=[f"Remote analysis failed: {type(exc).__name__}"])

        remote_social = data.get("social_media")
        social = (
            normalize_social_media(remote_social) if isinstance(remote_social, dict) else {}
        ) or baseline.social_media
        traffic = _as_int(data.get("monthly_traffic")) or baseline.monthly_traffic
        trust = data.get("trust_score")
        trust = int(_clamp(_as_int(trust))) if trust is not None else compute_trust_score(
            baseline.domain_authority, baseline.page_authority, traffic, social,
        )
        return replace(
            baseline,
            monthly_traffic=traffic,
            estimated_audience=total_audience(traffic, social, metrics.audience_size),
            trust_score=trust,
            top_traffic_country=data.get("top_traffic_country") or baseline.top_traffic_country,
            social_media=social,
            has_analytics=bool(data.get("has_analytics", baseline.has_analytics)),
            analysis_source=ANALYSIS_AUTOMATIC,
        )

    async def close(self):
        await self._client.aclose()


def get_scoring_strategy(name: str | None = None) -> ScoringStrategy:
    """Return the strategy named by ``name`` or SCORING_STRATEGY (default: declared)."""
    name = (name or os.getenv("SCORING_STRATEGY", "declared")).strip().lower()
    if name == "declared":
        return DeclaredMetricsStrategy()
    elif name == "remote":
        return RemoteAnalyticsStrategy()
    else:
        raise ValueError(f"Unknown scoring strategy: {name}")
