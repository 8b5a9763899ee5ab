"""Pydantic models used to validate writes and shape read results.

Documents are stored with camelCase field names (`productTitle`,
`totalBudget`, ...); the models use snake_case attributes with camelCase
aliases, so payloads may use either form and `model_dump(by_alias=True)`
yields the stored layout.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, get_args

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    HttpUrl,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

Category = Literal[
    "Music", "Film", "Commercial", "Upcoming Projects", "Documentary", "Web Series", "Other"
]
Genre = Literal[
    "Pop", "Rock", "Classical", "Jazz", "Hip-Hop", "Electronic", "Folk", "Country", "R&B", "Indie", "Other"
]
ProductStatus = Literal["funding", "in-production", "completed", "cancelled"]
FundingStatus = Literal["active", "paused", "completed", "cancelled"]
PaymentMethod = Literal["UPI", "Card", "NetBanking", "Wallet", "Bank Transfer", "Cash"]
PaymentStatus = Literal["pending", "processing", "completed", "failed", "refunded", "cancelled"]
InvestmentStatus = Literal["active", "matured", "cancelled", "withdrawn", "suspended"]
KycStatus = Literal["pending", "submitted", "verified", "rejected"]
KycDocumentType = Literal["PAN", "Aadhaar", "Passport", "Driving License", "Other"]
RiskProfile = Literal["low", "medium", "high"]
InvestorType = Literal["individual", "corporate", "institutional"]

CATEGORIES: tuple[str, ...] = get_args(Category)
PRODUCT_STATUSES: tuple[str, ...] = get_args(ProductStatus)
PAYMENT_STATUSES: tuple[str, ...] = get_args(PaymentStatus)
INVESTMENT_STATUSES: tuple[str, ...] = get_args(InvestmentStatus)

YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be"}
PHONE_RE = re.compile(r"^[+]?[0-9]{10,15}$")

MEDIA_URL_FIELDS = (
    "cover_image", "album_art", "poster_image", "video_thumbnail",
    "video_file", "youtube_link", "demo_track", "full_track",
)

MAX_TAGS = 10


def _utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _parse_list(v: Any) -> Any:
    # multipart form fields arrive as JSON-encoded strings
    if isinstance(v, str):
        try:
            return json.loads(v) if v.strip() else []
        except json.JSONDecodeError as e:
            raise ValueError("must be a list or a JSON-encoded list") from e
    return v


def _youtube_host(url: HttpUrl) -> HttpUrl:
    if url.host not in YOUTUBE_HOSTS or url.path in (None, "", "/"):
        raise ValueError("must be a valid YouTube URL")
    return url


YoutubeUrl = Annotated[HttpUrl, AfterValidator(_youtube_host)]


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


# =========================================================
# PRODUCTS
# =========================================================

class ProductCreate(_Model):
    """Admin submission for a new investment product.

    Media fields hold URLs; when files are uploaded the returned URLs are
    merged in before validation, so the same checks apply to both.
    """
    product_title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    artist_name: str = Field(..., min_length=1, max_length=100)
    producer_name: str = Field("", max_length=100)
    label_name: str = Field("", max_length=100)
    category: Category
    genre: Genre = "Other"

    total_budget: float = Field(..., ge=1000, le=100_000_000)
    minimum_investment: float = Field(..., ge=100)
    funding_deadline: datetime | None = None
    funding_status: FundingStatus = "active"

    cover_image: HttpUrl | None = None
    album_art: HttpUrl | None = None
    poster_image: HttpUrl | None = None
    video_thumbnail: HttpUrl | None = None
    gallery_images: list[HttpUrl] = Field(default_factory=list, max_length=10)
    video_file: HttpUrl | None = None
    youtube_link: YoutubeUrl | None = None
    demo_track: HttpUrl | None = None
    full_track: HttpUrl | None = None

    expected_duration: str = Field("", max_length=50)
    product_status: ProductStatus = "funding"
    target_audience: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    is_featured: bool = False
    is_active: bool = True

    @field_validator(*MEDIA_URL_FIELDS, mode="before")
    @classmethod
    def _blank_url_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("gallery_images", mode="before")
    @classmethod
    def _gallery_list(cls, v: Any) -> Any:
        return _parse_list(v) if v is not None else []

    @field_serializer(*MEDIA_URL_FIELDS)
    def _url_str(self, v: HttpUrl | None) -> str | None:
        return str(v) if v is not None else None

    @field_serializer("gallery_images")
    def _gallery_str(self, v: list[HttpUrl]) -> list[str]:
        return [str(u) for u in v]

    @field_validator("target_audience", mode="before")
    @classmethod
    def _audience_list(cls, v: Any) -> Any:
        return _parse_list(v)

    @field_validator("target_audience")
    @classmethod
    def _audience_items(cls, v: list[str]) -> list[str]:
        out = [a.strip() for a in v if a and a.strip()]
        if any(len(a) > 50 for a in out):
            raise ValueError("target audience items cannot exceed 50 characters")
        return out

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_list(cls, v: Any) -> Any:
        return _parse_list(v)

    @field_validator("tags")
    @classmethod
    def _tags_normalize(cls, v: list[str]) -> list[str]:
        out = [t.strip().lower() for t in v if t and t.strip()][:MAX_TAGS]
        if any(len(t) > 30 for t in out):
            raise ValueError("tags cannot exceed 30 characters")
        return out

    @field_validator("funding_deadline")
    @classmethod
    def _deadline_in_future(cls, v: datetime | None) -> datetime | None:
        if v is not None and _utc(v) <= datetime.now(timezone.utc):
            raise ValueError("funding deadline must be in the future")
        return v

    @model_validator(mode="after")
    def _minimum_within_budget(self) -> "ProductCreate":
        if self.minimum_investment > self.total_budget:
            raise ValueError("minimum investment cannot exceed total budget")
        return self


class BulkUpdateFields(_Model):
    """Fields an admin may change across many products at once."""
    is_featured: bool | None = None
    is_active: bool | None = None
    product_status: ProductStatus | None = None
    category: Category | None = None

    @model_validator(mode="after")
    def _not_empty(self) -> "BulkUpdateFields":
        if not self.model_dump(exclude_none=True):
            raise ValueError("at least one field must be updated")
        return self


# =========================================================
# PLEDGES
# =========================================================

class Address(_Model):
    street: str | None = Field(None, max_length=200)
    city: str | None = Field(None, max_length=50)
    state: str | None = Field(None, max_length=50)
    pincode: str | None = Field(None, pattern=r"^[0-9]{6}$")
    country: str = Field("India", max_length=50)


class KycDocument(_Model):
    doc_type: KycDocumentType = Field(..., alias="type")
    document_number: str | None = None
    document_url: HttpUrl | None = None
    verification_status: Literal["pending", "verified", "rejected"] = "pending"

    @field_serializer("document_url")
    def _url_str(self, v: HttpUrl | None) -> str | None:
        return str(v) if v is not None else None


class CommunicationPreferences(_Model):
    email: bool = True
    sms: bool = True
    whatsapp: bool = False
    phone: bool = False


class PledgeCreate(_Model):
    """An investor's pledge against a product.

    Attributes:
        product_id: Hex id of the product; immutable once stored.
        investment_amount: 100..10,000,000 with at most 2 decimal places.
        payment_status: Stored as given here; the service layer forces
            new pledges to `pending`.
    """
    investor_name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str
    address: Address = Field(default_factory=Address)

    product_id: str
    investment_amount: float = Field(..., ge=100, le=10_000_000)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    transaction_id: str = Field("", max_length=100)
    payment_date: datetime | None = None
    payment_gateway: str | None = Field(None, max_length=50)
    gateway_transaction_id: str | None = Field(None, max_length=100)

    expected_returns: float = Field(0, ge=0, le=1000)
    investment_duration: str = Field("", max_length=50)
    maturity_date: datetime | None = None
    investment_status: InvestmentStatus = "active"

    kyc_status: KycStatus = "pending"
    kyc_documents: list[KycDocument] = Field(default_factory=list)
    risk_profile: RiskProfile = "medium"
    investor_type: InvestorType = "individual"
    communication_preferences: CommunicationPreferences = Field(
        default_factory=CommunicationPreferences
    )

    investment_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    notes: str = Field("", max_length=1000)
    referral_code: str | None = Field(None, max_length=20)

    @field_validator("email")
    @classmethod
    def _email_lower(cls, v: str) -> str:
        return v.lower()

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        if not PHONE_RE.match(v):
            raise ValueError("please provide a valid phone number")
        return v

    @field_validator("investment_amount")
    @classmethod
    def _two_decimals(cls, v: float) -> float:
        exponent = Decimal(str(v)).normalize().as_tuple().exponent
        if isinstance(exponent, int) and exponent < -2:
            raise ValueError("investment amount can have at most 2 decimal places")
        return v

    @field_validator("payment_date")
    @classmethod
    def _not_future(cls, v: datetime | None) -> datetime | None:
        if v is not None and _utc(v) > datetime.now(timezone.utc):
            raise ValueError("payment date cannot be in the future")
        return v

    @field_validator("maturity_date")
    @classmethod
    def _maturity_future(cls, v: datetime | None) -> datetime | None:
        if v is not None and _utc(v) <= datetime.now(timezone.utc):
            raise ValueError("maturity date must be in the future")
        return v


class KycUpdate(_Model):
    """KYC review outcome; `kyc_documents` replaces the stored list when given."""
    kyc_status: KycStatus
    kyc_documents: list[KycDocument] | None = None


# =========================================================
# READ MODELS
# =========================================================

class _ReadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ProductStats(_ReadModel):
    """Completed-pledge statistics for one product."""
    total_investors: int = Field(0, ge=0)
    total_amount: float = Field(0.0, ge=0)
    avg_investment: float = Field(0.0, ge=0)
    min_investment: float = Field(0.0, ge=0)
    max_investment: float = Field(0.0, ge=0)
    recent_pledges: list[dict[str, Any]] = Field(default_factory=list, max_length=5)


class ListStats(_ReadModel):
    """Per-product figures shown in list views and rankings."""
    total_investors: int = Field(0, ge=0)
    actual_funding: float = Field(0.0, ge=0)
    funding_percentage: float = Field(0.0, ge=0, le=100)


class Pagination(_ReadModel):
    current_page: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=0)
    total_items: int = Field(..., ge=0)
    has_next: bool
    has_prev: bool
    limit: int = Field(..., ge=1)
