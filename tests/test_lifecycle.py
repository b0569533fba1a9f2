"""Publisher request lifecycle: submission, owner edits, review, promotion."""

import sys
from pathlib import Path

import pytest
from sqlalchemy import func, select

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from database.models import PublisherRequest, User
from processor import listing_store
from processor.errors import (
    ConflictError,
    InfrastructureError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from processor.lifecycle import PublisherRequestService
from processor.scoring import DeclaredMetricsStrategy

from conftest import listing_payload


async def _role_of(identity, user_id):
    return (await identity.get_user(user_id)).role


# ── Submit ──

@pytest.mark.asyncio
async def test_submit_creates_pending_listing_with_analysis(lifecycle, owner):
    listing = await lifecycle.submit(owner, listing_payload(domain_authority=30, monthly_traffic_ahrefs=4000))
    assert listing.status == "pending"
    assert listing.owner_user_id == owner.id
    assert listing.gray_niche_price == 50.0
    assert listing.monthly_traffic == 4000
    assert listing.analysis_source == "manual"
    assert listing.last_analyzed is not None


@pytest.mark.asyncio
async def test_submit_missing_fields(lifecycle, owner):
    payload = listing_payload()
    del payload["website"], payload["category"]
    with pytest.raises(ValidationError) as exc:
        await lifecycle.submit(owner, payload)
    assert sorted(exc.value.fields) == ["category", "website"]


@pytest.mark.asyncio
async def test_duplicate_active_submission_conflicts_with_existing_id(lifecycle, owner):
    first = await lifecycle.submit(owner, listing_payload())
    with pytest.raises(ConflictError) as exc:
        await lifecycle.submit(owner, listing_payload(website="https://EXAMPLE.com/"))
    assert exc.value.existing_id == first.id


@pytest.mark.asyncio
async def test_resubmission_allowed_after_rejection(lifecycle, owner, admin):
    first = await lifecycle.submit(owner, listing_payload())
    await lifecycle.reject(admin, first.id, "low traffic")
    second = await lifecycle.submit(owner, listing_payload())
    assert second.id != first.id
    assert second.status == "pending"


@pytest.mark.asyncio
async def test_other_users_may_list_the_same_website(lifecycle, identity, owner):
    other = await identity.create_user("Sam", "sam@example.com", "secret123")
    await lifecycle.submit(owner, listing_payload())
    listing = await lifecycle.submit(other, listing_payload(email="sam@example.com"))
    assert listing.owner_user_id == other.id


# ── SubmitWithAccountCreation ──

@pytest.mark.asyncio
async def test_submit_with_account_creates_user_and_listing(lifecycle, credentials):
    user, listing, token = await lifecycle.submit_with_account(
        listing_payload(email="new@example.com", password="secret123"),
    )
    assert user.role == "user"
    assert listing.owner_user_id == user.id
    assert credentials.verify_token(token) == user.id


@pytest.mark.asyncio
async def test_submit_with_account_requires_password(lifecycle):
    with pytest.raises(ValidationError) as exc:
        await lifecycle.submit_with_account(listing_payload())
    assert exc.value.fields == ["password"]


@pytest.mark.asyncio
async def test_submit_with_account_rejects_taken_email(lifecycle, database, owner):
    with pytest.raises(ConflictError):
        await lifecycle.submit_with_account(listing_payload(password="secret123"))
    async with database.session() as session:
        count = (await session.execute(select(func.count(PublisherRequest.id)))).scalar()
    assert count == 0


@pytest.mark.asyncio
async def test_submit_with_account_leaves_no_orphan_user(database, credentials):
    class BrokenInsert(PublisherRequestService):
        async def _insert(self, session, owner_id, data, analysis):
            raise InfrastructureError("Database unavailable")

    service = BrokenInsert(database, credentials=credentials)
    with pytest.raises(InfrastructureError):
        await service.submit_with_account(listing_payload(email="ghost@example.com", password="secret123"))
    async with database.session() as session:
        users = (await session.execute(select(func.count(User.id)))).scalar()
    assert users == 0


# ── Update ──

@pytest.mark.asyncio
async def test_update_pending_listing(lifecycle, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    updated = await lifecycle.update(owner, listing.id, {
        "company_name": "Renamed Media",
        "status": "approved",
        "owner_user_id": 12345,
    })
    assert updated.company_name == "Renamed Media"
    assert updated.status == "pending"
    assert updated.owner_user_id == owner.id


@pytest.mark.asyncio
async def test_update_rescores_on_metric_change(lifecycle, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    assert listing.trust_score == 0
    updated = await lifecycle.update(owner, listing.id, {"domain_authority": 60})
    assert updated.trust_score == 24
    assert updated.analysis_domain_authority == 60


@pytest.mark.asyncio
async def test_update_keeps_gray_price_in_step_with_standard_price(lifecycle, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    updated = await lifecycle.update(owner, listing.id, {"standard_post_price": 90})
    assert updated.gray_niche_price == 90.0

    custom = await lifecycle.update(owner, listing.id, {"gray_niche_price": 150})
    again = await lifecycle.update(owner, custom.id, {"standard_post_price": 95})
    assert again.gray_niche_price == 150.0


@pytest.mark.asyncio
async def test_update_rejected_listing_resets_to_pending(lifecycle, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload())
    await lifecycle.reject(admin, listing.id, "thin content", admin_notes="needs work")

    updated = await lifecycle.update(owner, listing.id, {"content_guidelines": "Long-form only"})
    assert updated.status == "pending"
    assert updated.rejection_reason is None
    assert updated.admin_notes is None
    assert updated.reviewed_by is None
    assert updated.reviewed_at is None


@pytest.mark.asyncio
async def test_update_rejected_listing_conflicts_with_newer_active_one(lifecycle, owner, admin):
    first = await lifecycle.submit(owner, listing_payload())
    await lifecycle.reject(admin, first.id, "low traffic")
    second = await lifecycle.submit(owner, listing_payload())
    with pytest.raises(ConflictError) as exc:
        await lifecycle.update(owner, first.id, {"company_name": "Again"})
    assert exc.value.existing_id == second.id


@pytest.mark.asyncio
async def test_update_approved_listing_fails(lifecycle, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload())
    await lifecycle.approve(admin, listing.id)
    with pytest.raises(InvalidStateError) as exc:
        await lifecycle.update(owner, listing.id, {"company_name": "Sneaky"})
    assert exc.value.current_status == "approved"


@pytest.mark.asyncio
async def test_update_someone_elses_listing_is_not_found(lifecycle, identity, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    stranger = await identity.create_user("Eve", "eve@example.com", "secret123")
    with pytest.raises(NotFoundError):
        await lifecycle.update(stranger, listing.id, {"company_name": "Mine now"})
    with pytest.raises(NotFoundError):
        await lifecycle.update(owner, 9999, {"company_name": "Ghost"})


@pytest.mark.asyncio
async def test_update_rechecks_status_at_write_time(database, credentials, identity, owner, admin):
    """An approval landing between read and write makes the owner edit fail."""

    class ApproveMidway(DeclaredMetricsStrategy):
        listing_id = None

        async def analyze(self, metrics):
            if self.listing_id is not None:
                target, self.listing_id = self.listing_id, None
                await service.approve(admin, target)
            return await super().analyze(metrics)

    scoring = ApproveMidway()
    service = PublisherRequestService(database, scoring=scoring, credentials=credentials)
    listing = await service.submit(owner, listing_payload())

    scoring.listing_id = listing.id
    with pytest.raises(InvalidStateError) as exc:
        await service.update(owner, listing.id, {"domain_authority": 70})
    assert exc.value.current_status == "approved"

    fresh = await service.get_for_owner(owner, listing.id)
    assert fresh.domain_authority == 0


# ── Delete ──

@pytest.mark.asyncio
async def test_owner_deletes_pending_listing(lifecycle, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    await lifecycle.delete(owner, listing.id)
    with pytest.raises(NotFoundError):
        await lifecycle.get_for_owner(owner, listing.id)


@pytest.mark.asyncio
async def test_owner_cannot_delete_approved_listing(lifecycle, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload())
    await lifecycle.approve(admin, listing.id)
    with pytest.raises(InvalidStateError) as exc:
        await lifecycle.delete(owner, listing.id)
    assert exc.value.current_status == "approved"


@pytest.mark.asyncio
async def test_admin_deletes_any_listing(lifecycle, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload())
    await lifecycle.approve(admin, listing.id)
    await lifecycle.admin_delete(admin, listing.id)
    with pytest.raises(NotFoundError):
        await lifecycle.get_for_admin(listing.id)
    with pytest.raises(NotFoundError):
        await lifecycle.admin_delete(admin, listing.id)


# ── ReAnalyze ──

@pytest.mark.asyncio
async def test_reanalyze_keeps_status_and_refreshes_analysis(lifecycle, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload(domain_authority=40))
    await lifecycle.approve(admin, listing.id)

    refreshed = await lifecycle.reanalyze(owner, listing.id, social_media={
        "twitter": {"url": "https://x.com/example", "followers": 2500, "verified": True},
    })
    assert refreshed.status == "approved"
    assert refreshed.trust_score > listing.trust_score
    assert refreshed.social_media["twitter"]["followers"] == 2500
    assert refreshed.last_analyzed >= listing.last_analyzed
    assert listing_store.listing_total_audience(refreshed) == 2500


@pytest.mark.asyncio
async def test_reanalyze_rejects_non_mapping_social_media(lifecycle, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    with pytest.raises(ValidationError):
        await lifecycle.reanalyze(owner, listing.id, social_media=["https://x.com/example"])


@pytest.mark.asyncio
async def test_reanalyze_rejects_malformed_profiles(lifecycle, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    with pytest.raises(ValidationError) as exc:
        await lifecycle.reanalyze(owner, listing.id, social_media={"twitter": {"url": 123}})
    assert exc.value.fields == ["social_media"]


@pytest.mark.asyncio
async def test_malformed_social_media_is_a_validation_error(lifecycle, database, owner):
    bad = {"twitter": {"url": 123}}
    with pytest.raises(ValidationError) as exc:
        await lifecycle.submit(owner, listing_payload(social_media=bad))
    assert exc.value.fields == ["social_media"]

    with pytest.raises(ValidationError) as exc:
        await lifecycle.submit_with_account(listing_payload(
            email="new@example.com", password="secret123", social_media=bad,
        ))
    assert exc.value.fields == ["social_media"]
    async with database.session() as session:
        users = await session.scalar(select(func.count(User.id)).where(User.email == "new@example.com"))
    assert users == 0


@pytest.mark.asyncio
async def test_update_rejects_non_finite_price(lifecycle, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    with pytest.raises(ValidationError) as exc:
        await lifecycle.update(owner, listing.id, {"standard_post_price": float("nan")})
    assert exc.value.fields == ["standard_post_price"]


# ── Admin review ──

@pytest.mark.asyncio
async def test_approve_promotes_owner_in_same_call(lifecycle, identity, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload())
    approved = await lifecycle.approve(admin, listing.id, admin_notes="looks good")
    assert approved.status == "approved"
    assert approved.approved_by == admin.id
    assert approved.reviewed_by == admin.id
    assert approved.approval_date is not None
    assert approved.admin_notes == "looks good"
    assert await _role_of(identity, owner.id) == "publisher"


@pytest.mark.asyncio
@pytest.mark.parametrize("prior_role,expected", [
    ("user", "publisher"),
    ("advertiser", "publisher"),
    ("publisher", "publisher"),
    ("admin", "admin"),
])
async def test_approval_never_downgrades(lifecycle, identity, admin, prior_role, expected):
    user = await identity.create_user(
        "Owner", "owner@example.com", "secret123", role=prior_role, allow_any_role=True,
    )
    listing = await lifecycle.submit(user, listing_payload(email="owner@example.com"))
    await lifecycle.admin_set_status(admin, listing.id, "approved")
    assert await _role_of(identity, user.id) == expected


@pytest.mark.asyncio
async def test_reapproval_keeps_original_approval_audit(lifecycle, identity, owner, admin):
    second_admin = await identity.create_user(
        "Other Admin", "admin2@example.com", "secret123", role="admin", allow_any_role=True,
    )
    listing = await lifecycle.submit(owner, listing_payload())
    first = await lifecycle.admin_set_status(admin, listing.id, "approved")
    again = await lifecycle.admin_set_status(second_admin, listing.id, "approved")

    assert again.status == "approved"
    assert again.approved_by == admin.id
    assert again.approval_date == first.approval_date
    assert again.reviewed_by == second_admin.id
    assert again.reviewed_at >= first.reviewed_at
    assert await _role_of(identity, owner.id) == "publisher"


@pytest.mark.asyncio
async def test_approve_requires_pending(lifecycle, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload())
    await lifecycle.admin_set_status(admin, listing.id, "under_review")
    with pytest.raises(InvalidStateError) as exc:
        await lifecycle.approve(admin, listing.id)
    assert exc.value.current_status == "under_review"
    # the permissive path still works
    approved = await lifecycle.admin_set_status(admin, listing.id, "approved")
    assert approved.status == "approved"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["pending", "under_review", "approved", "rejected"])
async def test_reject_without_reason_always_fails(lifecycle, owner, admin, status):
    listing = await lifecycle.submit(owner, listing_payload())
    if status != "pending":
        await lifecycle.admin_set_status(admin, listing.id, status, rejection_reason="setup")
    with pytest.raises(ValidationError):
        await lifecycle.reject(admin, listing.id, None)
    with pytest.raises(ValidationError):
        await lifecycle.admin_set_status(admin, listing.id, "rejected", rejection_reason="  ")


@pytest.mark.asyncio
async def test_set_status_rejects_unknown_status(lifecycle, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload())
    with pytest.raises(ValidationError) as exc:
        await lifecycle.admin_set_status(admin, listing.id, "archived")
    assert exc.value.fields == ["status"]


@pytest.mark.asyncio
async def test_leaving_rejected_clears_reason(lifecycle, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload())
    rejected = await lifecycle.reject(admin, listing.id, "spammy")
    assert rejected.rejection_reason == "spammy"
    reopened = await lifecycle.admin_set_status(admin, listing.id, "under_review")
    assert reopened.status == "under_review"
    assert reopened.rejection_reason is None


@pytest.mark.asyncio
async def test_review_of_missing_listing(lifecycle, admin):
    with pytest.raises(NotFoundError):
        await lifecycle.approve(admin, 4242)


@pytest.mark.asyncio
async def test_reconcile_promotions_repairs_lagging_roles(lifecycle, database, identity, owner):
    listing = await lifecycle.submit(owner, listing_payload())
    # status written without the promotion, as a crash between the two would leave it
    async with database.transaction() as session:
        await listing_store.conditional_update(session, listing.id, ["pending"], {"status": "approved"})
    assert await _role_of(identity, owner.id) == "user"

    assert await lifecycle.reconcile_promotions() == 1
    assert await _role_of(identity, owner.id) == "publisher"
    assert await lifecycle.reconcile_promotions() == 0


# ── End-to-end ──

@pytest.mark.asyncio
async def test_reject_edit_approve_scenario(lifecycle, identity, owner, admin):
    listing = await lifecycle.submit(owner, listing_payload(
        website="https://example.com", category="Technology", standard_post_price=50,
    ))
    assert listing.status == "pending"

    rejected = await lifecycle.reject(admin, listing.id, "low traffic")
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "low traffic"

    edited = await lifecycle.update(owner, listing.id, {"domain_authority": 40})
    assert edited.status == "pending"
    assert edited.rejection_reason is None

    approved = await lifecycle.approve(admin, listing.id)
    assert approved.status == "approved"
    assert await _role_of(identity, owner.id) == "publisher"


@pytest.mark.asyncio
async def test_double_submission_scenario(lifecycle, owner):
    first = await lifecycle.submit(owner, listing_payload(website="https://example.com"))
    with pytest.raises(ConflictError) as exc:
        await lifecycle.submit(owner, listing_payload(website="https://example.com"))
    assert exc.value.existing_id == first.id
    assert exc.value.to_dict()["existing_id"] == first.id
