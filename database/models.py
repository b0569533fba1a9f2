"""PubMarket DB models -- users, publisher requests, reset tokens. (SQLite/PostgreSQL compatible)"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores DateTime without tzinfo)."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


_ACTIVE_WHERE = text("status IN ('pending', 'under_review')")


# ─────────────────────────────────────────────
# 1. Users (roles: user < advertiser < publisher < admin)
# ─────────────────────────────────────────────
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, default="user", nullable=False)  # user, advertiser, publisher, admin
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_users_role", "role"),
    )


# ─────────────────────────────────────────────
# 2. Password reset tokens
# ─────────────────────────────────────────────
class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String(128), unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_password_reset_user", "user_id"),
    )


# ─────────────────────────────────────────────
# 3. Publisher requests (listings)
#    status: pending -> under_review -> approved / rejected
#    The website analysis block is flattened into analysis_* / monthly_traffic columns.
#    last_analyzed IS NULL means no analysis block.
# ─────────────────────────────────────────────
class PublisherRequest(Base):
    __tablename__ = "publisher_requests"

    id = Column(Integer, primary_key=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # contact / company
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    company_name = Column(String, nullable=False)
    website = Column(String, nullable=False)  # normalised (scheme/host lower-case, no trailing slash)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)

    # classification
    category = Column(String, nullable=False)
    gray_niches = Column(JSON, default=list)  # ["Casino / Gambling", ...]
    business_type = Column(String, default="other")
    primary_traffic_source = Column(String, default="organic")
    content_languages = Column(JSON, default=list)

    # declared metrics
    audience_size = Column(Integer, default=0)
    domain_authority = Column(Integer, default=0)
    page_authority = Column(Integer, default=0)
    monthly_traffic_ahrefs = Column(Integer, default=0)
    top_traffic_country = Column(String, default="")

    # pricing (USD)
    standard_post_price = Column(Float, nullable=False, default=0.0)
    gray_niche_price = Column(Float, nullable=False, default=0.0)

    # link / content details
    dofollow_allowed = Column(Boolean, default=True)
    nofollow_allowed = Column(Boolean, default=True)
    post_sample_url = Column(String, nullable=True)
    content_guidelines = Column(Text, nullable=True)
    additional_notes = Column(Text, nullable=True)

    # derived analytics
    monthly_traffic = Column(Integer, nullable=True)
    estimated_audience = Column(Integer, nullable=True)
    trust_score = Column(Integer, nullable=True)  # 0-100
    analysis_domain_authority = Column(Integer, nullable=True)
    analysis_page_authority = Column(Integer, nullable=True)
    analysis_top_country = Column(String, nullable=True)
    social_media = Column(JSON, nullable=True)  # {platform: {url, followers|subscribers, verified}}
    has_analytics = Column(Boolean, default=False)
    analysis_source = Column(String, nullable=True)  # manual, automatic
    analysis_errors = Column(JSON, nullable=True)
    last_analyzed = Column(DateTime, nullable=True)

    # review workflow
    status = Column(String, nullable=False, default="pending")
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approval_date = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # at most one active request per (owner, website)
        Index(
            "uq_publisher_request_active",
            "owner_user_id", "website",
            unique=True,
            sqlite_where=_ACTIVE_WHERE,
            postgresql_where=_ACTIVE_WHERE,
        ),
        Index("ix_pubreq_owner_status", "owner_user_id", "status"),
        Index("ix_pubreq_category_status", "category", "status"),
        Index("ix_pubreq_price", "standard_post_price"),
        Index("ix_pubreq_traffic", "monthly_traffic"),
        Index("ix_pubreq_trust", "trust_score"),
        Index("ix_pubreq_website", "website"),
        Index("ix_pubreq_email", "email"),
    )
