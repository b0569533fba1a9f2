"""Publisher request lifecycle -- submission, owner edits, admin review.

State machine::

    pending ──> under_review ──> approved
       │  └──────────────────────> approved
       └──> rejected ──(owner edit)──> pending

Owners may edit while pending/rejected and delete while not approved. Admins
can overwrite the status at any time (audited via reviewed_by/reviewed_at).

Every status-guarded write is a conditional UPDATE/DELETE whose WHERE clause
repeats the guard, so a concurrent change makes the write touch zero rows
instead of clobbering the newer state. Approval and the owner's promotion to
publisher commit in the same transaction.

Re-approval policy: approving an already-approved listing keeps the original
approved_by/approval_date, refreshes reviewed_by/reviewed_at, and the
promotion is a no-op.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, distinct, select
from sqlalchemy.exc import IntegrityError

from database import Database
from database.models import PublisherRequest, User, utcnow
from processor import listing_store as store
from processor.catalog import ALL_STATUSES, ListingStatus, OWNER_EDITABLE_STATUSES
from processor.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from processor.identity import PROMOTABLE_ROLES, insert_user, promote_to_publisher
from processor.scoring import DeclaredMetricsStrategy, ListingMetrics, ScoringStrategy

logger = logging.getLogger("pubmarket.lifecycle")

PENDING = ListingStatus.PENDING.value
APPROVED = ListingStatus.APPROVED.value
REJECTED = ListingStatus.REJECTED.value

_DUPLICATE_MESSAGE = "An active publisher request already exists for this website"


class PublisherRequestService:
    def __init__(
        self,
        database: Database,
        scoring: ScoringStrategy | None = None,
        credentials=None,
    ):
        self.database = database
        self.scoring = scoring or DeclaredMetricsStrategy()
        self.credentials = credentials

    # ── internals ──

    async def _analyze(self, metrics: ListingMetrics) -> dict:
        analysis = await self.scoring.analyze(metrics)
        return store.analysis_values(analysis, utcnow())

    async def _insert(self, session, owner_id: int, data: dict, analysis: dict) -> PublisherRequest:
        existing = await store.find_active(session, owner_id, data["website"])
        if existing is not None:
            raise ConflictError(_DUPLICATE_MESSAGE, existing_id=existing.id)
        columns = {k: v for k, v in data.items() if k != "social_media"}
        listing = PublisherRequest(owner_user_id=owner_id, status=PENDING, **columns, **analysis)
        session.add(listing)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError(_DUPLICATE_MESSAGE) from exc
        return listing

    async def _raise_for_failed_write(self, session, listing_id: int, verb: str, owner_id: int | None = None):
        """A guarded write touched no rows: report why from a fresh read."""
        current = await store.get_listing(session, listing_id, refresh=True)
        if current is None or (owner_id is not None and current.owner_user_id != owner_id):
            raise NotFoundError("Publisher request not found")
        raise InvalidStateError(
            f"Cannot {verb} a publisher request that is {current.status}",
            current_status=current.status,
        )

    # ── owner operations ──

    async def submit(self, user: User, payload: dict) -> PublisherRequest:
        data = store.validate_submission(payload)
        analysis = await self._analyze(store.metrics_from(data))
        async with self.database.transaction() as session:
            listing = await self._insert(session, user.id, data, analysis)
        logger.info("User %s submitted publisher request %s for %s", user.id, listing.id, listing.website)
        return listing

    async def submit_with_account(self, payload: dict) -> tuple[User, PublisherRequest, str]:
        """Create the account and its first listing in one transaction.

        Nothing is persisted unless both succeed.
        """
        if self.credentials is None:
            raise RuntimeError("Account creation needs a credential service")
        missing = [f for f in store.REQUIRED_FIELDS + ("password",) if store.is_blank(payload.get(f))]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)
        data = store.validate_submission(payload)
        analysis = await self._analyze(store.metrics_from(data))
        async with self.database.transaction() as session:
            user = await insert_user(
                session, self.credentials, data["full_name"], data["email"], payload["password"],
            )
            listing = await self._insert(session, user.id, data, analysis)
        token = self.credentials.issue_token(user.id, user.role)
        logger.info("Created user %s with publisher request %s", user.id, listing.id)
        return user, listing, token

    async def update(self, user: User, listing_id: int, patch: dict) -> PublisherRequest:
        changes = store.clean_patch(patch or {})
        async with self.database.session() as session:
            listing = await store.get_owned_listing(session, listing_id, user.id)
        previous_status = listing.status
        if previous_status not in OWNER_EDITABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot update a publisher request that is {previous_status}",
                current_status=previous_status,
            )

        values = dict(changes)
        if (
            "standard_post_price" in changes
            and "gray_niche_price" not in changes
            and listing.gray_niche_price == listing.standard_post_price
        ):
            values["gray_niche_price"] = changes["standard_post_price"]
        if store.METRIC_FIELDS & changes.keys():
            values.update(await self._analyze(store.metrics_from_listing(listing, overrides=changes)))
        if previous_status == REJECTED:
            values.update(
                status=PENDING,
                rejection_reason=None,
                admin_notes=None,
                reviewed_by=None,
                reviewed_at=None,
            )
        values["updated_at"] = utcnow()

        async with self.database.transaction() as session:
            if previous_status == REJECTED:
                existing = await store.find_active(session, user.id, listing.website, exclude_id=listing_id)
                if existing is not None:
                    raise ConflictError(_DUPLICATE_MESSAGE, existing_id=existing.id)
            try:
                written = await store.conditional_update(
                    session, listing_id, [previous_status], values, owner_id=user.id,
                )
            except IntegrityError as exc:
                raise ConflictError(_DUPLICATE_MESSAGE) from exc
            if not written:
                await self._raise_for_failed_write(session, listing_id, "update", owner_id=user.id)
            listing = await store.get_listing(session, listing_id, refresh=True)

        if previous_status == REJECTED:
            logger.info("Publisher request %s resubmitted after rejection", listing_id)
        return listing

    async def delete(self, user: User, listing_id: int):
        async with self.database.transaction() as session:
            result = await session.execute(
                delete(PublisherRequest)
                .where(
                    PublisherRequest.id == listing_id,
                    PublisherRequest.owner_user_id == user.id,
                    PublisherRequest.status != APPROVED,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self._raise_for_failed_write(session, listing_id, "delete", owner_id=user.id)
        logger.info("User %s deleted publisher request %s", user.id, listing_id)

    async def reanalyze(
        self, user: User, listing_id: int, social_media: dict | None = None,
    ) -> PublisherRequest:
        """Recompute the website analysis. Status is left untouched."""
        if social_media is not None:
            try:
                social_media = store.check_social_media(social_media)
            except ValueError as exc:
                raise ValidationError("Invalid fields: social_media", fields=["social_media"]) from exc
        async with self.database.session() as session:
            listing = await store.get_owned_listing(session, listing_id, user.id)
        values = await self._analyze(store.metrics_from_listing(listing, social_media=social_media))
        async with self.database.transaction() as session:
            written = await store.conditional_update(session, listing_id, None, values, owner_id=user.id)
            if not written:
                raise NotFoundError("Publisher request not found")
            listing = await store.get_listing(session, listing_id, refresh=True)
        logger.info(
            "Re-analyzed publisher request %s (trust=%s, traffic=%s)",
            listing_id, listing.trust_score, listing.monthly_traffic,
        )
        return listing

    async def get_for_owner(self, user: User, listing_id: int) -> PublisherRequest:
        async with self.database.session() as session:
            return await store.get_owned_listing(session, listing_id, user.id)

    async def list_for_owner(self, user: User) -> list[PublisherRequest]:
        async with self.database.session() as session:
            result = await session.execute(
                select(PublisherRequest)
                .where(PublisherRequest.owner_user_id == user.id)
                .order_by(PublisherRequest.created_at.desc(), PublisherRequest.id.desc())
            )
            return list(result.scalars().all())

    # ── admin operations ──

    async def _review(
        self,
        admin: User,
        listing_id: int,
        new_status,
        rejection_reason=None,
        admin_notes=None,
        required_status: str | None = None,
    ) -> PublisherRequest:
        status = str(new_status or "").strip().lower()
        if status not in ALL_STATUSES:
            raise ValidationError("Invalid status", fields=["status"])
        reason = rejection_reason.strip() if isinstance(rejection_reason, str) else ""
        if status == REJECTED and not reason:
            raise ValidationError("Rejection reason is required", fields=["rejection_reason"])
        notes = admin_notes.strip() if isinstance(admin_notes, str) else ""

        async with self.database.transaction() as session:
            listing = await store.get_listing(session, listing_id, refresh=True)
            if listing is None:
                raise NotFoundError("Publisher request not found")
            current = listing.status
            if required_status is not None and current != required_status:
                raise InvalidStateError(f"Request is not {required_status}", current_status=current)

            now = utcnow()
            values = {
                "status": status,
                "reviewed_by": admin.id,
                "reviewed_at": now,
                "rejection_reason": reason if status == REJECTED else None,
                "updated_at": now,
            }
            if notes:
                values["admin_notes"] = notes
            if status == APPROVED and current != APPROVED:
                values["approved_by"] = admin.id
                values["approval_date"] = now

            try:
                written = await store.conditional_update(session, listing_id, [current], values)
            except IntegrityError as exc:
                raise ConflictError(_DUPLICATE_MESSAGE) from exc
            if not written:
                await self._raise_for_failed_write(session, listing_id, "review")

            if status == APPROVED:
                await promote_to_publisher(session, listing.owner_user_id)
            listing = await store.get_listing(session, listing_id, refresh=True)

        logger.info(
            "Admin %s moved publisher request %s: %s -> %s", admin.id, listing_id, current, status,
        )
        return listing

    async def admin_set_status(
        self, admin: User, listing_id: int, new_status, rejection_reason=None, admin_notes=None,
    ) -> PublisherRequest:
        return await self._review(admin, listing_id, new_status, rejection_reason, admin_notes)

    async def approve(self, admin: User, listing_id: int, admin_notes=None) -> PublisherRequest:
        return await self._review(admin, listing_id, APPROVED, None, admin_notes, required_status=PENDING)

    async def reject(
        self, admin: User, listing_id: int, rejection_reason, admin_notes=None,
    ) -> PublisherRequest:
        return await self._review(
            admin, listing_id, REJECTED, rejection_reason, admin_notes, required_status=PENDING,
        )

    async def admin_delete(self, admin: User, listing_id: int):
        async with self.database.transaction() as session:
            result = await session.execute(
                delete(PublisherRequest)
                .where(PublisherRequest.id == listing_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError("Publisher request not found")
        logger.info("Admin %s deleted publisher request %s", admin.id, listing_id)

    async def get_for_admin(self, listing_id: int) -> PublisherRequest:
        async with self.database.session() as session:
            listing = await store.get_listing(session, listing_id)
        if listing is None:
            raise NotFoundError("Publisher request not found")
        return listing

    async def reconcile_promotions(self) -> int:
        """Promote owners of approved listings whose role lags behind.

        Repairs rows written before approval and promotion shared a transaction.
        """
        async with self.database.transaction() as session:
            result = await session.execute(
                select(distinct(PublisherRequest.owner_user_id))
                .join(User, User.id == PublisherRequest.owner_user_id)
                .where(PublisherRequest.status == APPROVED, User.role.in_(PROMOTABLE_ROLES))
            )
            promoted = 0
            for owner_id in result.scalars().all():
                if await promote_to_publisher(session, owner_id):
                    promoted += 1
        if promoted:
            logger.warning("Reconciled %d publisher promotions", promoted)
        return promoted
