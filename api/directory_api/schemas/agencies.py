from datetime import date, datetime
import re
from typing import Annotated, Any, Literal
from urllib.parse import urlparse
from uuid import UUID

from pydantic import AfterValidator, BaseModel, BeforeValidator, EmailStr, Field, StringConstraints

TradeIds = Annotated[list[UUID], Field(min_length=1, max_length=10)]
RegionIds = Annotated[list[UUID], Field(min_length=1, max_length=50)]


class TradeOut(BaseModel):
    id: str
    name: str
    slug: str


class RegionOut(BaseModel):
    id: str
    name: str
    state_code: str


class AgencyTradesUpdate(BaseModel):
    trade_ids: TradeIds


class AgencyRegionsUpdate(BaseModel):
    region_ids: RegionIds


class AgencyTradesResponse(BaseModel):
    trades: list[TradeOut]


class AgencyRegionsResponse(BaseModel):
    regions: list[RegionOut]


class AgencyStatusUpdate(BaseModel):
    is_active: bool


class AgencyStatusOut(BaseModel):
    id: str
    name: str
    slug: str
    is_active: bool
    is_claimed: bool
    updated_at: datetime | None = None


EmployeeCount = Literal["1-10", "11-50", "51-100", "101-200", "201-500", "501-1000", "1001+"]
CompanySize = Literal["Small", "Medium", "Large", "Enterprise"]

MIN_FOUNDED_YEAR = 1800
_E164_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
_YEAR_RE = re.compile(r"^\d{4}$")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _check_website(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Website must start with http:// or https://")
    return value


def _check_phone(value: str) -> str:
    if not _E164_RE.match(value):
        raise ValueError("Phone must be in E.164 format (e.g., +12345678900)")
    return value


def _parse_founded_year(value: Any) -> Any:
    value = _blank_to_none(value)
    if isinstance(value, str):
        if not _YEAR_RE.match(value):
            raise ValueError("Must be a valid 4-digit year")
        return int(value)
    return value


def _check_founded_year(value: int) -> int:
    current_year = date.today().year
    if not MIN_FOUNDED_YEAR <= value <= current_year:
        raise ValueError(f"Year must be between {MIN_FOUNDED_YEAR} and {current_year}")
    return value


AgencyName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=200)]
Description = Annotated[Annotated[str, StringConstraints(max_length=5000)] | None, BeforeValidator(_blank_to_none)]
Headquarters = Annotated[Annotated[str, StringConstraints(max_length=200)] | None, BeforeValidator(_blank_to_none)]
Website = Annotated[Annotated[str, AfterValidator(_check_website)] | None, BeforeValidator(_blank_to_none)]
Phone = Annotated[Annotated[str, AfterValidator(_check_phone)] | None, BeforeValidator(_blank_to_none)]
ContactEmail = Annotated[EmailStr | None, BeforeValidator(_blank_to_none)]
FoundedYear = Annotated[Annotated[int, AfterValidator(_check_founded_year)] | None, BeforeValidator(_parse_founded_year)]
OptionalEmployeeCount = Annotated[EmployeeCount | None, BeforeValidator(_blank_to_none)]
OptionalCompanySize = Annotated[CompanySize | None, BeforeValidator(_blank_to_none)]


class AgencyProfileUpdate(BaseModel):
    """Owner-editable profile fields. Blank strings clear a field."""

    name: AgencyName
    description: Description = None
    website: Website = None
    phone: Phone = None
    email: ContactEmail = None
    founded_year: FoundedYear = None
    employee_count: OptionalEmployeeCount = None
    headquarters: Headquarters = None


class AgencyCreate(AgencyProfileUpdate):
    company_size: OptionalCompanySize = None
    offers_per_diem: bool = False
    is_union: bool = False
    verified: bool = False


class AgencyAdminUpdate(BaseModel):
    """Partial update; only fields present in the body are written."""

    name: AgencyName | None = None
    description: Description = None
    website: Website = None
    phone: Phone = None
    email: ContactEmail = None
    founded_year: FoundedYear = None
    employee_count: OptionalEmployeeCount = None
    headquarters: Headquarters = None
    company_size: OptionalCompanySize = None
    offers_per_diem: bool | None = None
    is_union: bool | None = None


class AgencyProfileOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    website: str | None = None
    phone: str | None = None
    email: str | None = None
    founded_year: int | None = None
    employee_count: str | None = None
    headquarters: str | None = None
    last_edited_at: datetime | None = None
    last_edited_by: str | None = None


class AgencyProfileResponse(BaseModel):
    data: AgencyProfileOut


class AgencyCreateResponse(BaseModel):
    data: dict[str, Any]
    message: str


class AgencyAdminUpdateResponse(BaseModel):
    agency: AgencyProfileOut
    message: str
