"""Scoring engine and analytics strategy tests."""

import sys
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from processor.scoring import (
    DeclaredMetricsStrategy,
    ListingMetrics,
    RemoteAnalyticsStrategy,
    compute_trust_score,
    get_scoring_strategy,
    normalize_social_media,
    price_range,
    score,
    total_audience,
    trust_level,
)


def _metrics(**overrides):
    values = {"website": "https://example.com", "category": "Technology"}
    values.update(overrides)
    return ListingMetrics(**values)


# ── score() ──

def test_score_is_deterministic():
    m = _metrics(
        domain_authority=55, page_authority=40, ahrefs_traffic=12_000, audience_size=300,
        social_media={"twitter": {"url": "https://x.com/ex", "followers": 900, "verified": True}},
    )
    assert score(m) == score(m)


def test_monthly_traffic_prefers_ahrefs():
    result = score(_metrics(ahrefs_traffic=5000, audience_size=800))
    assert result.monthly_traffic == 5000


def test_monthly_traffic_falls_back_to_declared_audience():
    result = score(_metrics(ahrefs_traffic=0, audience_size=800))
    assert result.monthly_traffic == 800
    assert result.has_analytics is False


def test_estimated_audience_sums_traffic_social_and_declared():
    result = score(_metrics(
        ahrefs_traffic=1000,
        audience_size=200,
        social_media={
            "twitter": {"url": "https://x.com/ex", "followers": 300},
            "youtube": {"url": "https://youtube.com/@ex", "subscribers": 50},
        },
    ))
    assert result.estimated_audience == 1000 + 300 + 50 + 200


def test_empty_metrics_score_zero():
    result = score(_metrics())
    assert result.trust_score == 0
    assert result.monthly_traffic == 0
    assert result.top_traffic_country == "Unknown"
    assert result.analysis_source == "manual"


def test_maximum_metrics_score_hundred():
    social = {
        "twitter": {"url": "https://x.com/ex", "verified": True},
        "facebook": {"url": "https://fb.com/ex", "verified": True},
    }
    assert compute_trust_score(100, 100, 1_000_000, social) == 100


def test_trust_score_weights():
    # 50*0.4 + log10(10000)/6*25
    assert compute_trust_score(50, 0, 9_999, {}) == 37
    assert compute_trust_score(50, 30, 0, {}) == 26


def test_verified_social_profile_counts_double():
    unverified = {"twitter": {"url": "https://x.com/ex", "verified": False}}
    verified = {"twitter": {"url": "https://x.com/ex", "verified": True}}
    assert compute_trust_score(0, 0, 0, unverified) == 4
    assert compute_trust_score(0, 0, 0, verified) == 8


def test_out_of_range_inputs_are_clamped():
    result = score(_metrics(domain_authority=250, page_authority=-5, ahrefs_traffic=-10))
    assert result.domain_authority == 100
    assert result.page_authority == 0
    assert 0 <= result.trust_score <= 100


# ── helpers ──

def test_normalize_social_media_accepts_urls_and_drops_blanks():
    profiles = normalize_social_media({
        "Twitter": "https://x.com/ex",
        "youtube": {"url": "https://youtube.com/@ex", "followers": 12},
        "facebook": "",
        "linkedin": {"url": "  "},
    })
    assert set(profiles) == {"twitter", "youtube"}
    assert profiles["twitter"] == {"url": "https://x.com/ex", "verified": False, "followers": 0}
    assert profiles["youtube"]["subscribers"] == 12


def test_total_audience_tolerates_missing_values():
    assert total_audience(None, None, None) == 0
    assert total_audience(100, {"x": {"followers": 5}}, 10) == 115


def test_trust_level_bands():
    assert trust_level(85) == "High"
    assert trust_level(70) == "High"
    assert trust_level(40) == "Medium"
    assert trust_level(39) == "Low"
    assert trust_level(None) == "Low"


def test_price_range():
    assert price_range(50, 50) == "$50"
    assert price_range(50, None) == "$50"
    assert price_range(50, 80) == "$50 - $80"
    assert price_range(49.5, 80) == "$49.50 - $80"


# ── strategies ──

@pytest.mark.asyncio
async def test_declared_strategy_matches_score():
    m = _metrics(domain_authority=30, ahrefs_traffic=2000)
    assert await DeclaredMetricsStrategy().analyze(m) == score(m)


@pytest.mark.asyncio
async def test_remote_strategy_merges_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={
            "monthly_traffic": 40_000,
            "trust_score": 77,
            "top_traffic_country": "US",
            "has_analytics": True,
        })

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    strategy = RemoteAnalyticsStrategy(api_url="https://analytics.test/v1", api_key="k", client=client)
    result = await strategy.analyze(_metrics(domain_authority=20, audience_size=100))
    await strategy.close()

    assert seen["auth"] == "Bearer k"
    assert result.analysis_source == "automatic"
    assert result.monthly_traffic == 40_000
    assert result.trust_score == 77
    assert result.estimated_audience == 40_100
    assert result.top_traffic_country == "US"
    assert result.errors == []


@pytest.mark.asyncio
async def test_remote_strategy_falls_back_on_failure():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    strategy = RemoteAnalyticsStrategy(api_url="https://analytics.test/v1", client=client)
    m = _metrics(domain_authority=20, ahrefs_traffic=500)
    result = await strategy.analyze(m)
    await strategy.close()

    assert result.analysis_source == "manual"
    assert result.trust_score == score(m).trust_score
    assert result.errors == ["Remote analysis failed: HTTPStatusError"]


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"[]", b"null", b"\"ok\"", b"7"])
async def test_remote_strategy_falls_back_on_non_object_body(body):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=body)))
    strategy = RemoteAnalyticsStrategy(api_url="https://analytics.test/v1", client=client)
    m = _metrics(domain_authority=20, ahrefs_traffic=500)
    result = await strategy.analyze(m)
    await strategy.close()

    assert result.analysis_source == "manual"
    assert result.trust_score == score(m).trust_score
    assert result.errors == ["Remote analysis failed: ValueError"]


@pytest.mark.asyncio
async def test_remote_strategy_ignores_malformed_social_media():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"monthly_traffic": 3000, "social_media": ["https://x.com/ex"]})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    strategy = RemoteAnalyticsStrategy(api_url="https://analytics.test/v1", client=client)
    m = _metrics(social_media={"twitter": {"url": "https://x.com/ex", "followers": 40}})
    result = await strategy.analyze(m)
    await strategy.close()

    assert result.analysis_source == "automatic"
    assert result.monthly_traffic == 3000
    assert result.social_media == score(m).social_media


def test_normalize_social_media_skips_non_string_urls():
    assert normalize_social_media({"twitter": {"url": 123}, "facebook": "https://fb.com/ex"}) == {
        "facebook": {"url": "https://fb.com/ex", "verified": False, "followers": 0},
    }


@pytest.mark.asyncio
async def test_remote_strategy_without_url_uses_declared_metrics():
    strategy = RemoteAnalyticsStrategy(api_url="", client=httpx.AsyncClient())
    m = _metrics(domain_authority=20)
    assert await strategy.analyze(m) == score(m)
    await strategy.close()


def test_get_scoring_strategy(monkeypatch):
    monkeypatch.delenv("SCORING_STRATEGY", raising=False)
    assert isinstance(get_scoring_strategy(), DeclaredMetricsStrategy)
    monkeypatch.setenv("SCORING_STRATEGY", "remote")
    assert isinstance(get_scoring_strategy(), RemoteAnalyticsStrategy)
    with pytest.raises(ValueError):
        get_scoring_strategy("crystal-ball")
