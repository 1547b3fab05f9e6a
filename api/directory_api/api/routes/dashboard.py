import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, status as http_status

from directory_api.core.auth import Principal
from directory_api.core.errors import ApiError, ErrorCode, database_error, not_found, unavailable
from directory_api.core.security import get_human_principal
from directory_api.schemas.agencies import (
    AgencyProfileResponse,
    AgencyProfileUpdate,
    AgencyRegionsResponse,
    AgencyRegionsUpdate,
    AgencyTradesResponse,
    AgencyTradesUpdate,
)
from directory_api.schemas.labor_requests import InboxStatusOut, InboxStatusRequest, NotificationStatus
from directory_api.services.repository import (
    PostgresRepository,
    RepositoryConflictError,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)
from directory_api.services.sanitize import mask_email, mask_phone

router = APIRouter()
logger = logging.getLogger(__name__)


def _forbidden(message: str = "Forbidden: You do not own this agency") -> ApiError:
    return ApiError(http_status.HTTP_403_FORBIDDEN, ErrorCode.FORBIDDEN, message)


async def _load_owned_agency_by_slug(
    repository: PostgresRepository,
    slug: str,
    principal: Principal,
) -> dict[str, Any]:
    try:
        agency = await repository.get_agency_by_slug(slug, active_only=False)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Agency not found", ErrorCode.AGENCY_NOT_FOUND) from exc
    if agency.get("claimed_by") != principal.actor_id:
        raise _forbidden()
    return agency


async def _log_field_edit(
    repository: PostgresRepository,
    *,
    agency_id: str,
    principal: Principal,
    field_name: str,
    old_value: Any,
    new_value: Any,
) -> None:
    try:
        await repository.record_profile_edit(
            agency_id=agency_id,
            edited_by=principal.actor_id,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
        )
    except RepositoryError as exc:
        logger.error("profile edit audit failed agency_id=%s field=%s: %s", agency_id, field_name, exc)


async def _record_edit(
    repository: PostgresRepository,
    *,
    agency_id: str,
    principal: Principal,
    field_name: str,
    old_value: Any,
    new_value: Any,
) -> None:
    await _log_field_edit(
        repository,
        agency_id=agency_id,
        principal=principal,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
    )
    try:
        await repository.touch_agency_edit(agency_id=agency_id, edited_by=principal.actor_id)
    except RepositoryError as exc:
        logger.error("agency last_edited update failed agency_id=%s: %s", agency_id, exc)


def changed_profile_fields(current: dict[str, Any], updates: dict[str, Any]) -> list[tuple[str, Any, Any]]:
    """Fields whose value differs, treating ``None`` and ``""`` as the same empty value."""
    changes = []
    for field_name, new_value in updates.items():
        old_value = current.get(field_name)
        if (old_value if old_value is not None else "") != (new_value if new_value is not None else ""):
            changes.append((field_name, old_value, new_value))
    return changes


def _unique_ids(ids: list[Any], field: str) -> list[str]:
    normalized = [str(value) for value in ids]
    if len(set(normalized)) != len(normalized):
        raise ApiError(
            http_status.HTTP_400_BAD_REQUEST,
            ErrorCode.VALIDATION_ERROR,
            f"Duplicate {field} are not allowed",
        )
    return normalized


@router.put("/{slug}/trades", response_model=AgencyTradesResponse)
async def update_agency_trades(
    slug: str,
    payload: AgencyTradesUpdate,
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> AgencyTradesResponse:
    agency = await _load_owned_agency_by_slug(repository, slug, principal)
    trade_ids = _unique_ids(payload.trade_ids, "trade_ids")

    known = await repository.find_trade_ids(trade_ids)
    invalid = [trade_id for trade_id in trade_ids if trade_id not in known]
    if invalid:
        raise ApiError(
            http_status.HTTP_400_BAD_REQUEST,
            ErrorCode.VALIDATION_ERROR,
            "One or more trade IDs are invalid",
            {"invalid_trade_ids": invalid},
        )

    previous = await repository.list_agency_trades(agency["id"])
    try:
        await repository.replace_agency_trades(agency_id=agency["id"], trade_ids=trade_ids)
    except RepositoryError as exc:
        raise database_error("Failed to update agency trades") from exc

    trades = await repository.list_agency_trades(agency["id"])
    await _record_edit(
        repository,
        agency_id=agency["id"],
        principal=principal,
        field_name="trades",
        old_value=[trade["name"] for trade in previous],
        new_value=[trade["name"] for trade in trades],
    )
    return AgencyTradesResponse(trades=trades)


@router.put("/{slug}/regions", response_model=AgencyRegionsResponse)
async def update_agency_regions(
    slug: str,
    payload: AgencyRegionsUpdate,
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> AgencyRegionsResponse:
    agency = await _load_owned_agency_by_slug(repository, slug, principal)
    region_ids = _unique_ids(payload.region_ids, "region_ids")

    known = await repository.find_region_ids(region_ids)
    invalid = [region_id for region_id in region_ids if region_id not in known]
    if invalid:
        raise ApiError(
            http_status.HTTP_400_BAD_REQUEST,
            ErrorCode.VALIDATION_ERROR,
            "One or more region IDs are invalid",
            {"invalid_region_ids": invalid},
        )

    previous = await repository.list_agency_regions(agency["id"])
    try:
        await repository.replace_agency_regions(agency_id=agency["id"], region_ids=region_ids)
    except RepositoryError as exc:
        raise database_error("Failed to update agency regions") from exc

    regions = await repository.list_agency_regions(agency["id"])
    await _record_edit(
        repository,
        agency_id=agency["id"],
        principal=principal,
        field_name="regions",
        old_value=[region["name"] for region in previous],
        new_value=[region["name"] for region in regions],
    )
    return AgencyRegionsResponse(regions=regions)


@router.put("/{slug}/profile", response_model=AgencyProfileResponse)
async def update_agency_profile(
    slug: str,
    payload: AgencyProfileUpdate,
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> AgencyProfileResponse:
    agency = await _load_owned_agency_by_slug(repository, slug, principal)
    updates = payload.model_dump(mode="json")
    changes = changed_profile_fields(agency, updates)

    try:
        updated = await repository.update_agency_fields(
            agency_id=agency["id"],
            fields=updates,
            edited_by=principal.actor_id,
        )
    except RepositoryConflictError as exc:
        raise ApiError(
            http_status.HTTP_409_CONFLICT,
            ErrorCode.VALIDATION_ERROR,
            "An agency with this name already exists",
        ) from exc
    except RepositoryError as exc:
        logger.error("agency profile update failed agency_id=%s: %s", agency["id"], exc)
        raise database_error("Failed to update agency profile") from exc

    for field_name, old_value, new_value in changes:
        await _log_field_edit(
            repository,
            agency_id=agency["id"],
            principal=principal,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
        )
    return AgencyProfileResponse(data=updated)


async def _require_inbox_access(repository: PostgresRepository, agency_id: str, principal: Principal) -> None:
    try:
        agency = await repository.get_agency(agency_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Agency not found", ErrorCode.AGENCY_NOT_FOUND) from exc
    if principal.is_admin:
        return
    if agency.get("claimed_by") != principal.actor_id:
        raise _forbidden()


@router.get("/{agency_id}/labor-requests")
async def list_labor_request_inbox(
    agency_id: str,
    notification_status: NotificationStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=100),
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> dict[str, Any]:
    await _require_inbox_access(repository, agency_id, principal)

    notifications = await repository.list_agency_labor_requests(
        agency_id=agency_id,
        status=notification_status,
        search=search,
    )
    for notification in notifications:
        request = notification["labor_request"]
        request["contact_email"] = mask_email(request.get("contact_email"))
        request["contact_phone"] = mask_phone(request.get("contact_phone"))

    return {"success": True, "notifications": notifications, "total": len(notifications)}


@router.patch("/{agency_id}/labor-requests/{notification_id}", response_model=InboxStatusOut)
async def update_labor_request_status(
    agency_id: str,
    notification_id: str,
    payload: InboxStatusRequest,
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> InboxStatusOut:
    await _require_inbox_access(repository, agency_id, principal)
    try:
        row = await repository.update_notification_status(
            agency_id=agency_id,
            notification_id=notification_id,
            status=payload.status,
        )
    except RepositoryNotFoundError as exc:
        raise not_found("Labor request notification not found") from exc
    except RepositoryConflictError as exc:
        raise ApiError(http_status.HTTP_409_CONFLICT, ErrorCode.VALIDATION_ERROR, str(exc)) from exc
    return InboxStatusOut(**row)
