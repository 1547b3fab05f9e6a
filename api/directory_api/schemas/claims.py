from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AfterValidator, BaseModel, BeforeValidator, EmailStr, Field, StringConstraints

ClaimStatus = Literal["pending", "under_review", "approved", "rejected"]
VerificationMethod = Literal["email", "phone", "manual"]

PHONE_PATTERN = r"^\+?[0-9][0-9\s().-]{8,18}[0-9]$"


def _normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _check_email_length(value: str) -> str:
    if not 5 <= len(value) <= 255:
        raise ValueError("Email must be between 5 and 255 characters")
    return value


BusinessEmail = Annotated[EmailStr, BeforeValidator(_normalize_email), AfterValidator(_check_email_length)]


class ClaimRequestCreate(BaseModel):
    agency_id: UUID
    business_email: BusinessEmail
    phone_number: Annotated[
        str,
        StringConstraints(strip_whitespace=True, min_length=10, max_length=20, pattern=PHONE_PATTERN),
    ]
    position_title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]
    verification_method: VerificationMethod
    additional_notes: Annotated[str, StringConstraints(strip_whitespace=True, max_length=1000)] | None = None


class ClaimRequestCreated(BaseModel):
    id: str
    agency_id: str
    user_id: str
    status: ClaimStatus
    email_domain_verified: bool
    created_at: datetime


class ClaimAgencyOut(BaseModel):
    id: str
    name: str
    slug: str
    logo_url: str | None = None
    website: str | None = None


class ClaimUserOut(BaseModel):
    id: str
    full_name: str | None = None
    email: str | None = None


class ClaimOut(BaseModel):
    id: str
    agency_id: str
    user_id: str
    business_email: str
    phone_number: str
    position_title: str
    verification_method: VerificationMethod
    additional_notes: str | None = None
    status: ClaimStatus
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    email_domain_verified: bool = False
    created_at: datetime
    updated_at: datetime | None = None
    agency: ClaimAgencyOut | None = None
    user: ClaimUserOut | None = None


class ClaimRejectRequest(BaseModel):
    rejection_reason: str = Field(max_length=2000)


class ClaimReviewResponse(BaseModel):
    data: ClaimOut
    message: str


class ClaimsPagination(BaseModel):
    total: int
    limit: int
    offset: int
    hasMore: bool
    page: int
    totalPages: int


class ClaimListResponse(BaseModel):
    data: list[ClaimOut]
    pagination: ClaimsPagination


class MyClaimsResponse(BaseModel):
    data: list[ClaimOut]
