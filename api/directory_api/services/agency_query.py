from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator

from directory_api.services.sanitize import MAX_SEARCH_LENGTH, sanitize_search_input

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
MAX_TRADE_FILTERS = 10
MAX_STATE_FILTERS = 10
DEFAULT_ADMIN_LIMIT = 25

SearchTerm = Annotated[str, StringConstraints(strip_whitespace=True, max_length=MAX_SEARCH_LENGTH)]
TradeSlug = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
StateCode = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=2)]


def _scalar_params(params: Any, names: tuple[str, ...]) -> dict[str, Any]:
    # Blank values fall back to the field default.
    values: dict[str, Any] = {}
    for name in names:
        value = params.get(name)
        if value is not None and value != "":
            values[name] = value
    return values


def _sanitized(value: str | None) -> str | None:
    if not value:
        return None
    return sanitize_search_input(value) or None


class AgenciesQuery(BaseModel):
    """Public directory search parameters."""

    model_config = ConfigDict(extra="ignore")

    search: SearchTerm | None = None
    trades: list[TradeSlug] = Field(default_factory=list, max_length=MAX_TRADE_FILTERS)
    states: list[StateCode] = Field(default_factory=list, max_length=MAX_STATE_FILTERS)
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _merge_array_params(cls, data: Any) -> Any:
        # Accept both ``key=a&key=b`` and ``key[]=a``.
        if not hasattr(data, "getlist"):
            return data
        values = _scalar_params(data, ("search", "limit", "offset"))
        values["trades"] = [*data.getlist("trades"), *data.getlist("trades[]")]
        values["states"] = [*data.getlist("states"), *data.getlist("states[]")]
        return values

    @field_validator("search")
    @classmethod
    def _sanitize_search(cls, value: str | None) -> str | None:
        return _sanitized(value)

    @field_validator("states")
    @classmethod
    def _upper_states(cls, value: list[str]) -> list[str]:
        return [code.upper() for code in value]


class AdminAgenciesQuery(BaseModel):
    """Back-office agency list parameters."""

    model_config = ConfigDict(extra="ignore")

    search: SearchTerm | None = None
    status: Literal["active", "inactive", "all"] = "all"
    claimed: Literal["yes", "no", "all"] = "all"
    limit: int = Field(default=DEFAULT_ADMIN_LIMIT, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_params(cls, data: Any) -> Any:
        if not hasattr(data, "getlist"):
            return data
        return _scalar_params(data, ("search", "status", "claimed", "limit", "offset"))

    @field_validator("search")
    @classmethod
    def _sanitize_search(cls, value: str | None) -> str | None:
        return _sanitized(value)

    @property
    def is_active(self) -> bool | None:
        return None if self.status == "all" else self.status == "active"

    @property
    def is_claimed(self) -> bool | None:
        return None if self.claimed == "all" else self.claimed == "yes"
