"""Admin panel API -- publisher request review, user management, dashboard."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_identity, get_lifecycle, get_session, require_admin
from database.models import User
from database.schemas import (
    ApproveRequest,
    RejectRequest,
    RoleChangeRequest,
    StatusChangeRequest,
)
from processor import queries
from processor.identity import IdentityService, serialize_user
from processor.lifecycle import PublisherRequestService
from processor.listing_store import serialize_listing

router = APIRouter(prefix="/api/admin", tags=["admin"], redirect_slashes=False)

logger = logging.getLogger("pubmarket.admin")


@router.get("/dashboard-stats")
async def dashboard_stats(
    session: AsyncSession = Depends(get_session),
    _admin: User = Depends(require_admin),
):
    """Request counts by status, user counts by role, approved traffic total."""
    return await queries.dashboard_stats(session)


# ── Publisher requests ──


@router.get("/publisher-requests")
async def list_publisher_requests(
    status: str | None = "all",
    category: str | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    page: int = 1,
    limit: int = 20,
    session: AsyncSession = Depends(get_session),
    _admin: User = Depends(require_admin),
):
    """Every publisher request, searchable by company, website, email or name."""
    result = await queries.list_listings(
        session,
        status=status,
        category=category,
        search=search,
        sort_by=sort_by,
        page=page,
        limit=limit,
    )
    return result.to_dict(serialize_listing)


@router.get("/publisher-requests/{listing_id}")
async def get_publisher_request(
    listing_id: int,
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
    _admin: User = Depends(require_admin),
):
    return serialize_listing(await lifecycle.get_for_admin(listing_id))


@router.post("/publisher-requests/{listing_id}/approve")
async def approve_publisher_request(
    listing_id: int,
    body: ApproveRequest | None = None,
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
    admin: User = Depends(require_admin),
):
    """Approve a pending request and promote its owner to publisher."""
    notes = body.admin_notes if body is not None else None
    listing = await lifecycle.approve(admin, listing_id, admin_notes=notes)
    return serialize_listing(listing)


@router.post("/publisher-requests/{listing_id}/reject")
async def reject_publisher_request(
    listing_id: int,
    body: RejectRequest,
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
    admin: User = Depends(require_admin),
):
    listing = await lifecycle.reject(admin, listing_id, body.rejection_reason, admin_notes=body.admin_notes)
    return serialize_listing(listing)


@router.put("/publisher-requests/{listing_id}/status")
async def set_publisher_request_status(
    listing_id: int,
    body: StatusChangeRequest,
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
    admin: User = Depends(require_admin),
):
    """Overwrite the status from any state. Audited via reviewed_by/reviewed_at."""
    listing = await lifecycle.admin_set_status(
        admin, listing_id, body.status,
        rejection_reason=body.rejection_reason,
        admin_notes=body.admin_notes,
    )
    return serialize_listing(listing)


@router.delete("/publisher-requests/{listing_id}")
async def delete_publisher_request(
    listing_id: int,
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
    admin: User = Depends(require_admin),
):
    await lifecycle.admin_delete(admin, listing_id)
    return {"status": "ok", "deleted_id": listing_id}


@router.post("/reconcile-roles")
async def reconcile_roles(
    lifecycle: PublisherRequestService = Depends(get_lifecycle),
    admin: User = Depends(require_admin),
):
    """Promote owners of approved requests whose role was never lifted."""
    promoted = await lifecycle.reconcile_promotions()
    logger.info("Admin %s reconciled roles: %d promoted", admin.id, promoted)
    return {"status": "ok", "promoted": promoted}


# ── Users ──


@router.get("/users")
async def list_users(
    role: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
    session: AsyncSession = Depends(get_session),
    _admin: User = Depends(require_admin),
):
    result = await queries.list_users(session, role=role, search=search, page=page, limit=limit)
    return result.to_dict(serialize_user)


@router.put("/users/{user_id}/role")
async def change_user_role(
    user_id: int,
    body: RoleChangeRequest,
    identity: IdentityService = Depends(get_identity),
    admin: User = Depends(require_admin),
):
    user = await identity.set_role(admin, user_id, body.role)
    return serialize_user(user)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    identity: IdentityService = Depends(get_identity),
    admin: User = Depends(require_admin),
):
    """Delete a user together with every publisher request they own."""
    deleted = await identity.delete_user(admin, user_id)
    return {"status": "ok", "deleted_id": user_id, "deleted_requests": deleted}
