"""Pydantic schemas -- API request bodies.

Request fields are optional at this layer: required-field and range checks live
in the core (processor.listing_store / processor.identity) so a missing field
comes back as a 400 naming every absent field instead of a 422.
Routers forward ``model_dump(exclude_unset=True)`` so an omitted field and an
explicit null stay distinguishable in patches.
"""

from pydantic import BaseModel, ConfigDict, Field


# ── Auth ──
class RegisterRequest(BaseModel):
    full_name: str | None = None
    email: str | None = None
    password: str | None = None
    role: str | None = None


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class ForgotPasswordRequest(BaseModel):
    email: str | None = None


class ResetPasswordRequest(BaseModel):
    token: str | None = None
    password: str | None = None


# ── Publisher requests ──
class PublisherRequestPatch(BaseModel):
    """Owner-editable fields. Anything else in the body is dropped."""

    model_config = ConfigDict(extra="ignore")

    full_name: str | None = None
    email: str | None = None
    company_name: str | None = None
    phone: str | None = None
    address: str | None = None
    category: str | None = None
    gray_niches: list[str] | None = None
    business_type: str | None = None
    primary_traffic_source: str | None = None
    content_languages: list[str] | None = None
    audience_size: int | None = Field(default=None, description="Declared monthly audience")
    domain_authority: int | None = Field(default=None, description="0-100")
    page_authority: int | None = Field(default=None, description="0-100")
    monthly_traffic_ahrefs: int | None = None
    top_traffic_country: str | None = None
    standard_post_price: float | None = Field(default=None, description="USD per sponsored post")
    gray_niche_price: float | None = Field(default=None, description="Defaults to standard_post_price")
    dofollow_allowed: bool | None = None
    nofollow_allowed: bool | None = None
    post_sample_url: str | None = None
    content_guidelines: str | None = None
    additional_notes: str | None = None


class PublisherRequestCreate(PublisherRequestPatch):
    website: str | None = None
    social_media: dict | None = None


class PublisherSignupRequest(PublisherRequestCreate):
    """Account creation and first listing in one body."""

    password: str | None = None


class ReanalyzeRequest(BaseModel):
    social_media: dict | None = None


# ── Admin ──
class StatusChangeRequest(BaseModel):
    status: str | None = None
    rejection_reason: str | None = None
    admin_notes: str | None = None


class ApproveRequest(BaseModel):
    admin_notes: str | None = None


class RejectRequest(BaseModel):
    rejection_reason: str | None = None
    admin_notes: str | None = None


class RoleChangeRequest(BaseModel):
    role: str | None = None
