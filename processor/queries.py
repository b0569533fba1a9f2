"""Read-side queries -- marketplace browse, dashboards, per-owner stats.

All functions take an open AsyncSession and never write.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import PublisherRequest, User
from processor.catalog import (
    ALL_STATUSES,
    ListingStatus,
    Role,
    normalize_category,
    normalize_gray_niche,
    parse_role,
)
from processor.errors import ValidationError
from processor.listing_store import listing_total_audience

APPROVED = ListingStatus.APPROVED.value

MAX_PAGE_SIZE = 100

HIGH_TRUST_SCORE = 70
HIGH_MONTHLY_TRAFFIC = 10_000

SORT_COLUMNS = {
    "monthly_traffic": PublisherRequest.monthly_traffic,
    "trust_score": PublisherRequest.trust_score,
    "standard_post_price": PublisherRequest.standard_post_price,
    "domain_authority": PublisherRequest.analysis_domain_authority,
    "created_at": PublisherRequest.created_at,
}


@dataclass
class Page:
    items: list = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self, serialize=None) -> dict:
        items = [serialize(i) for i in self.items] if serialize else list(self.items)
        return {
            "items": items,
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "pages": self.pages,
        }


def _check_paging(page: int, limit: int):
    invalid = []
    if page < 1:
        invalid.append("page")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        invalid.append("limit")
    if invalid:
        raise ValidationError(f"Invalid fields: {', '.join(invalid)}", fields=invalid)


async def _paginate(session: AsyncSession, stmt, page: int, limit: int) -> Page:
    _check_paging(page, limit)
    total = (await session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    )).scalar() or 0
    result = await session.execute(stmt.offset((page - 1) * limit).limit(limit))
    return Page(items=list(result.scalars().all()), total=total, page=page, limit=limit)


def _gray_niche_clause(niche: str):
    canonical = normalize_gray_niche(niche)
    if canonical is None:
        raise ValidationError("Invalid fields: gray_niche", fields=["gray_niche"])
    # gray_niches is a JSON array of strings; match the quoted element
    return cast(PublisherRequest.gray_niches, String).like(f'%"{canonical}"%')


async def list_listings(
    session: AsyncSession,
    category: str | None = None,
    gray_niche: str | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    status: str | None = APPROVED,
    search: str | None = None,
    owner_id: int | None = None,
    min_trust: int | None = None,
    min_traffic: int | None = None,
    sort_by: str = "monthly_traffic",
    page: int = 1,
    limit: int = 20,
) -> Page:
    """Filtered, sorted, paginated listings. ``status`` None or "all" disables the status filter."""
    stmt = select(PublisherRequest)

    if status and status != "all":
        if status not in ALL_STATUSES:
            raise ValidationError("Invalid fields: status", fields=["status"])
        stmt = stmt.where(PublisherRequest.status == status)
    if category:
        canonical = normalize_category(category)
        if canonical is None:
            raise ValidationError("Invalid fields: category", fields=["category"])
        stmt = stmt.where(PublisherRequest.category == canonical)
    if gray_niche:
        stmt = stmt.where(_gray_niche_clause(gray_niche))
    if min_price is not None:
        stmt = stmt.where(PublisherRequest.standard_post_price >= min_price)
    if max_price is not None:
        stmt = stmt.where(PublisherRequest.standard_post_price <= max_price)
    if owner_id is not None:
        stmt = stmt.where(PublisherRequest.owner_user_id == owner_id)
    if min_trust is not None:
        stmt = stmt.where(func.coalesce(PublisherRequest.trust_score, 0) >= min_trust)
    if min_traffic is not None:
        stmt = stmt.where(func.coalesce(PublisherRequest.monthly_traffic, 0) >= min_traffic)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            PublisherRequest.company_name.ilike(pattern),
            PublisherRequest.website.ilike(pattern),
            PublisherRequest.email.ilike(pattern),
            PublisherRequest.full_name.ilike(pattern),
        ))

    column = SORT_COLUMNS.get(sort_by)
    if column is None:
        raise ValidationError("Invalid fields: sort_by", fields=["sort_by"])
    if sort_by != "created_at":
        # listings without an analysis block sort as zero
        column = func.coalesce(column, 0)
    stmt = stmt.order_by(column.desc(), PublisherRequest.id.desc())
    return await _paginate(session, stmt, page, limit)


async def high_performing(session: AsyncSession, page: int = 1, limit: int = 20) -> Page:
    """Approved listings with trust >= 70 and at least 10k monthly visits."""
    return await list_listings(
        session,
        status=APPROVED,
        min_trust=HIGH_TRUST_SCORE,
        min_traffic=HIGH_MONTHLY_TRAFFIC,
        sort_by="monthly_traffic",
        page=page,
        limit=limit,
    )


async def find_by_category(
    session: AsyncSession, category: str, gray_niche: str | None = None,
) -> list[PublisherRequest]:
    canonical = normalize_category(category)
    if canonical is None:
        raise ValidationError("Invalid fields: category", fields=["category"])
    stmt = select(PublisherRequest).where(
        PublisherRequest.category == canonical,
        PublisherRequest.status == APPROVED,
    )
    if gray_niche:
        stmt = stmt.where(_gray_niche_clause(gray_niche))
    stmt = stmt.order_by(func.coalesce(PublisherRequest.monthly_traffic, 0).desc(), PublisherRequest.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_by_price_range(
    session: AsyncSession, min_price: float, max_price: float,
) -> list[PublisherRequest]:
    if min_price is None or max_price is None or min_price < 0 or max_price < min_price:
        raise ValidationError("Invalid price range", fields=["min_price", "max_price"])
    result = await session.execute(
        select(PublisherRequest)
        .where(
            PublisherRequest.status == APPROVED,
            PublisherRequest.standard_post_price >= min_price,
            PublisherRequest.standard_post_price <= max_price,
        )
        .order_by(PublisherRequest.standard_post_price.asc(), PublisherRequest.id)
    )
    return list(result.scalars().all())


async def dashboard_stats(session: AsyncSession) -> dict:
    status_rows = await session.execute(
        select(PublisherRequest.status, func.count(PublisherRequest.id))
        .group_by(PublisherRequest.status)
    )
    by_status = {s: 0 for s in ALL_STATUSES}
    by_status.update({status: count for status, count in status_rows.all()})

    role_rows = await session.execute(select(User.role, func.count(User.id)).group_by(User.role))
    by_role = {r.value: 0 for r in Role}
    by_role.update({role: count for role, count in role_rows.all()})

    total_traffic = (await session.execute(
        select(func.coalesce(func.sum(func.coalesce(PublisherRequest.monthly_traffic, 0)), 0))
        .where(PublisherRequest.status == APPROVED)
    )).scalar() or 0

    return {
        "requests": {"total": sum(by_status.values()), **by_status},
        "users": {"total": sum(by_role.values()), **by_role},
        "total_traffic": int(total_traffic),
    }


async def per_user_stats(session: AsyncSession, user_id: int) -> dict:
    result = await session.execute(
        select(PublisherRequest).where(PublisherRequest.owner_user_id == user_id)
    )
    listings = result.scalars().all()

    by_status = {s: 0 for s in ALL_STATUSES}
    for listing in listings:
        by_status[listing.status] = by_status.get(listing.status, 0) + 1

    trust_scores = [listing.trust_score or 0 for listing in listings]
    return {
        "total": len(listings),
        **by_status,
        "total_audience": sum(listing_total_audience(listing) for listing in listings),
        "average_trust_score": round(sum(trust_scores) / len(trust_scores)) if trust_scores else 0,
        "analytics_enabled": sum(1 for listing in listings if listing.has_analytics),
    }


async def list_users(
    session: AsyncSession,
    role: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> Page:
    stmt = select(User)
    if role:
        parsed = parse_role(role)
        if parsed is None:
            raise ValidationError("Invalid fields: role", fields=["role"])
        stmt = stmt.where(User.role == parsed.value)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))
    stmt = stmt.order_by(User.created_at.desc(), User.id.desc())
    return await _paginate(session, stmt, page, limit)
