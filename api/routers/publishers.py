"""Publisher request API -- owner side of the listing lifecycle."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_lifecycle, get_session
from database.models import User
from database.schemas import (
    PublisherRequestCreate,
    PublisherRequestPatch,
    PublisherSignupRequest,
    ReanalyzeRequest,
)
from processor import queries
from processor.identity import serialize_user
from processor.lifecycle import PublisherRequestService
from processor.listing_store import analytics_summary, serialize_listing

router = APIRouter(prefix="/api/publisher-requests", tags=["publisher-requests"], redirect_slashes=False)


@router.post("/create", status_code=201)
async def create_with_account(
    body: PublisherSignupRequest,
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
):
    """Public signup: account + first publisher request, all or nothing."""
    user, listing, token = await lifecycle.submit_with_account(body.model_dump(exclude_unset=True))
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": serialize_user(user),
        "publisher_request": serialize_listing(listing),
    }


@router.post("", status_code=201)
async def submit(
    body: PublisherRequestCreate,
    user: User = Depends(get_current_user),
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
):
    listing = await lifecycle.submit(user, body.model_dump(exclude_unset=True))
    return serialize_listing(listing)


@router.get("")
async def list_mine(
    user: User = Depends(get_current_user),
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
):
    """The caller's publisher requests, newest first, with an analytics summary each."""
    listings = await lifecycle.list_for_owner(user)
    return {
        "items": [
            {**serialize_listing(listing), "analytics_summary": analytics_summary(listing)}
            for listing in listings
        ],
        "total": len(listings),
    }


@router.get("/stats")
async def my_stats(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await queries.per_user_stats(session, user.id)


@router.get("/{listing_id}")
async def get_one(
    listing_id: int,
    user: User = Depends(get_current_user),
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
):
    listing = await lifecycle.get_for_owner(user, listing_id)
    return serialize_listing(listing)


@router.put("/{listing_id}")
async def update(
    listing_id: int,
    body: PublisherRequestPatch,
    user: User = Depends(get_current_user),
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
):
    """Edit while pending or rejected. Editing a rejected request resubmits it."""
    listing = await lifecycle.update(user, listing_id, body.model_dump(exclude_unset=True))
    return serialize_listing(listing)


@router.delete("/{listing_id}")
async def delete(
    listing_id: int,
    user: User = Depends(get_current_user),
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
):
    await lifecycle.delete(user, listing_id)
    return {"status": "ok", "deleted_id": listing_id}


@router.post("/{listing_id}/analyze")
async def reanalyze(
    listing_id: int,
    body: ReanalyzeRequest | None = None,
    user: User = Depends(get_current_user),
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
):
    """Recompute the website analysis, optionally with new social profiles."""
    social_media = body.social_media if body is not None else None
    listing = await lifecycle.reanalyze(user, listing_id, social_media=social_media)
    return serialize_listing(listing)
