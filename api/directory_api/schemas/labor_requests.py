from datetime import date, datetime
import re
from typing import Annotated, Any, Literal
from uuid import UUID

import phonenumbers
from phonenumbers import NumberParseException
from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

ExperienceLevel = Literal[
    "Helper",
    "Apprentice",
    "Journeyman",
    "Foreman",
    "General Foreman",
    "Superintendent",
    "Project Manager",
]
NotificationStatus = Literal["pending", "sent", "failed", "new", "viewed", "responded", "archived"]
InboxStatusUpdate = Literal["viewed", "responded", "archived"]

MAX_CRAFTS = 10
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _check_contact_email_length(value: str) -> str:
    if not 5 <= len(value) <= 100:
        raise ValueError("Email must be between 5 and 100 characters")
    return value


def _check_phone(value: str) -> str:
    try:
        parsed = phonenumbers.parse(value, "US")
    except NumberParseException as exc:
        raise ValueError("Invalid phone number") from exc
    if not phonenumbers.is_valid_number(parsed):
        raise ValueError("Invalid phone number")
    return value


def _one_year_from(today: date) -> date:
    try:
        return today.replace(year=today.year + 1)
    except ValueError:
        # Feb 29 rolls to Feb 28.
        return today.replace(year=today.year + 1, day=28)


ContactEmail = Annotated[EmailStr, BeforeValidator(_normalize_email), AfterValidator(_check_contact_email_length)]
ContactPhone = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=10, max_length=20),
    AfterValidator(_check_phone),
]
Rate = Annotated[float, Field(gt=0, le=1000)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CraftRequest(_CamelModel):
    trade_id: UUID
    region_id: UUID
    experience_level: ExperienceLevel
    worker_count: int = Field(ge=1, le=500)
    start_date: date
    duration_days: int = Field(ge=1, le=365)
    hours_per_week: int = Field(ge=1, le=168)
    notes: Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)] | None = None
    pay_rate_min: Rate | None = None
    pay_rate_max: Rate | None = None
    per_diem_rate: Rate | None = None

    @field_validator("start_date", mode="before")
    @classmethod
    def _require_iso_date(cls, value: Any) -> Any:
        if isinstance(value, str) and not _ISO_DATE_RE.match(value):
            raise ValueError("Start date must be in YYYY-MM-DD format")
        return value

    @field_validator("start_date")
    @classmethod
    def _check_start_window(cls, value: date) -> date:
        today = date.today()
        if value < today:
            raise ValueError("Start date cannot be in the past")
        if value > _one_year_from(today):
            raise ValueError("Start date cannot be more than 1 year in the future")
        return value

    @model_validator(mode="after")
    def _check_pay_range(self) -> "CraftRequest":
        if (self.pay_rate_min is None) != (self.pay_rate_max is None):
            raise ValueError("Both minimum and maximum pay rates must be provided together")
        if self.pay_rate_min is not None and self.pay_rate_max is not None and self.pay_rate_min > self.pay_rate_max:
            raise ValueError("Minimum pay rate must be less than or equal to maximum pay rate")
        return self


class LaborRequestCreate(_CamelModel):
    project_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=200)]
    company_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=200)]
    contact_email: ContactEmail
    contact_phone: ContactPhone
    additional_details: Annotated[str, StringConstraints(strip_whitespace=True, max_length=2000)] | None = None
    crafts: list[CraftRequest] = Field(min_length=1, max_length=MAX_CRAFTS)

    @model_validator(mode="after")
    def _check_unique_crafts(self) -> "LaborRequestCreate":
        seen: set[tuple[UUID, UUID]] = set()
        for craft in self.crafts:
            key = (craft.trade_id, craft.region_id)
            if key in seen:
                raise ValueError("Each craft must have a unique trade and region combination")
            seen.add(key)
        return self


class InboxStatusRequest(BaseModel):
    status: InboxStatusUpdate


class InboxStatusOut(BaseModel):
    id: str
    status: NotificationStatus
    viewed_at: datetime | None = None
    responded_at: datetime | None = None
