"""Marketplace browse API -- approved publisher listings for advertisers."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_session
from processor import queries
from processor.listing_store import analytics_summary, serialize_listing

router = APIRouter(
    prefix="/api/listings",
    tags=["listings"],
    redirect_slashes=False,
    dependencies=[Depends(get_current_user)],
)


def _listing_card(listing) -> dict:
    return {**serialize_listing(listing), "analytics_summary": analytics_summary(listing)}


@router.get("")
async def browse(
    category: str | None = None,
    gray_niche: str | None = None,
    min_price: float | None = Query(default=None, ge=0),
    max_price: float | None = Query(default=None, ge=0),
    search: str | None = None,
    sort_by: str = "monthly_traffic",
    page: int = 1,
    limit: int = 20,
    session: AsyncSession = Depends(get_session),
):
    """Approved listings, filtered and paginated."""
    result = await queries.list_listings(
        session,
        category=category,
        gray_niche=gray_niche,
        min_price=min_price,
        max_price=max_price,
        search=search,
        sort_by=sort_by,
        page=page,
        limit=limit,
    )
    return result.to_dict(_listing_card)


@router.get("/high-performing")
async def high_performing(
    page: int = 1,
    limit: int = 20,
    session: AsyncSession = Depends(get_session),
):
    """Trust score >= 70 with at least 10k monthly visits."""
    result = await queries.high_performing(session, page=page, limit=limit)
    return result.to_dict(_listing_card)


@router.get("/by-category")
async def by_category(
    category: str = Query(...),
    gray_niche: str | None = None,
    session: AsyncSession = Depends(get_session),
):
    listings = await queries.find_by_category(session, category, gray_niche=gray_niche)
    return {"items": [_listing_card(l) for l in listings], "total": len(listings)}


@router.get("/price-range")
async def by_price_range(
    min_price: float = 0,
    max_price: float = Query(...),
    session: AsyncSession = Depends(get_session),
):
    listings = await queries.find_by_price_range(session, min_price, max_price)
    return {"items": [_listing_card(l) for l in listings], "total": len(listings)}
