import logging
import math
import re
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status as http_status
from pydantic import ValidationError

from directory_api.core.auth import Principal
from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import ApiError, ErrorCode, database_error, invalid_params, not_found, unavailable
from directory_api.core.security import get_admin_principal
from directory_api.schemas.agencies import (
    AgencyAdminUpdate,
    AgencyAdminUpdateResponse,
    AgencyCreate,
    AgencyCreateResponse,
    AgencyStatusOut,
    AgencyStatusUpdate,
)
from directory_api.schemas.claims import (
    ClaimListResponse,
    ClaimRejectRequest,
    ClaimReviewResponse,
    ClaimsPagination,
)
from directory_api.services.agency_query import AdminAgenciesQuery
from directory_api.services.claims import (
    APPROVED_MESSAGE,
    REJECTED_MESSAGE,
    ClaimAlreadyProcessedError,
    ClaimNotFoundError,
    ClaimReviewService,
    ClaimWriteError,
)
from directory_api.services.email import ResendEmailClient, get_email_client
from directory_api.services.repository import (
    CLAIM_STATUSES,
    RepositoryConflictError,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_CLAIMS_PAGE_SIZE = 25
MAX_CLAIMS_PAGE_SIZE = 100
MIN_REJECTION_REASON_LENGTH = 20
MAX_SLUG_ATTEMPTS = 100
_SLUG_INVALID_RE = re.compile(r"[^a-z0-9]+")


def clamp_claims_pagination(page: str | None, limit: str | None) -> tuple[int, int]:
    """Lenient paging: non-numeric values fall back to defaults, out-of-range values are clamped."""
    try:
        parsed_page = int(page) if page else 1
    except ValueError:
        parsed_page = 1
    try:
        parsed_limit = int(limit) if limit else DEFAULT_CLAIMS_PAGE_SIZE
    except ValueError:
        parsed_limit = DEFAULT_CLAIMS_PAGE_SIZE
    return max(1, parsed_page), min(MAX_CLAIMS_PAGE_SIZE, max(1, parsed_limit))


def get_claim_review_service(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    email_client: ResendEmailClient = Depends(get_email_client),
) -> ClaimReviewService:
    return ClaimReviewService(repository, email_client, site_url=settings.site_url)


def _review_error_to_http(exc: Exception) -> ApiError:
    if isinstance(exc, ClaimNotFoundError):
        return not_found(str(exc))
    if isinstance(exc, ClaimAlreadyProcessedError):
        return ApiError(http_status.HTTP_409_CONFLICT, ErrorCode.VALIDATION_ERROR, str(exc))
    return database_error(str(exc))


@router.get("/claims", response_model=ClaimListResponse)
async def list_claims(
    claim_status: str = Query(default="all", alias="status"),
    search: str | None = Query(default=None),
    page: str | None = Query(default=None),
    limit: str | None = Query(default=None),
    _: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> ClaimListResponse:
    if claim_status != "all" and claim_status not in CLAIM_STATUSES:
        raise ApiError(
            http_status.HTTP_400_BAD_REQUEST,
            ErrorCode.VALIDATION_ERROR,
            f"Invalid status filter: {claim_status}",
        )
    current_page, page_size = clamp_claims_pagination(page, limit)
    offset = (current_page - 1) * page_size

    try:
        rows, total = await repository.list_claims(
            status=None if claim_status == "all" else claim_status,
            search=search,
            limit=page_size,
            offset=offset,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc

    return ClaimListResponse(
        data=rows,
        pagination=ClaimsPagination(
            total=total,
            limit=page_size,
            offset=offset,
            hasMore=offset + page_size < total,
            page=current_page,
            totalPages=math.ceil(total / page_size) if total else 0,
        ),
    )


@router.post("/claims/{claim_id}/approve", response_model=ClaimReviewResponse)
async def approve_claim(
    claim_id: str,
    principal: Principal = Depends(get_admin_principal),
    service: ClaimReviewService = Depends(get_claim_review_service),
) -> ClaimReviewResponse:
    try:
        claim = await service.approve(claim_id=claim_id, admin_id=principal.actor_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except (ClaimNotFoundError, ClaimAlreadyProcessedError, ClaimWriteError) as exc:
        raise _review_error_to_http(exc) from exc
    return ClaimReviewResponse(data=claim, message=APPROVED_MESSAGE)


@router.post("/claims/{claim_id}/reject", response_model=ClaimReviewResponse)
async def reject_claim(
    claim_id: str,
    payload: ClaimRejectRequest,
    principal: Principal = Depends(get_admin_principal),
    service: ClaimReviewService = Depends(get_claim_review_service),
) -> ClaimReviewResponse:
    reason = payload.rejection_reason.strip()
    if len(reason) < MIN_REJECTION_REASON_LENGTH:
        raise ApiError(
            http_status.HTTP_400_BAD_REQUEST,
            ErrorCode.VALIDATION_ERROR,
            f"Rejection reason must be at least {MIN_REJECTION_REASON_LENGTH} characters",
        )
    try:
        claim = await service.reject(claim_id=claim_id, admin_id=principal.actor_id, rejection_reason=reason)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except (ClaimNotFoundError, ClaimAlreadyProcessedError, ClaimWriteError) as exc:
        raise _review_error_to_http(exc) from exc
    return ClaimReviewResponse(data=claim, message=REJECTED_MESSAGE)


@router.patch("/agencies/{agency_id}/status", response_model=AgencyStatusOut)
async def update_agency_status(
    agency_id: str,
    payload: AgencyStatusUpdate,
    _: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> AgencyStatusOut:
    try:
        row = await repository.set_agency_active(agency_id=agency_id, is_active=payload.is_active)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Agency not found", ErrorCode.AGENCY_NOT_FOUND) from exc
    return AgencyStatusOut(**row)


def create_slug(name: str) -> str:
    return _SLUG_INVALID_RE.sub("-", name.strip().lower()).strip("-")


def pick_unique_slug(base_slug: str, taken: set[str]) -> str:
    if base_slug not in taken:
        return base_slug
    for suffix in range(2, MAX_SLUG_ATTEMPTS + 1):
        candidate = f"{base_slug}-{suffix}"
        if candidate not in taken:
            return candidate
    raise ValueError(f"Unable to generate unique slug after {MAX_SLUG_ATTEMPTS} attempts")


def _agency_conflict(message: str) -> ApiError:
    return ApiError(http_status.HTTP_409_CONFLICT, ErrorCode.VALIDATION_ERROR, message)


@router.get("/agencies")
async def list_agencies(
    request: Request,
    _: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> dict[str, Any]:
    try:
        query = AdminAgenciesQuery.model_validate(request.query_params)
    except ValidationError as exc:
        raise invalid_params(exc) from exc

    try:
        rows, total = await repository.list_admin_agencies(
            search=query.search,
            is_active=query.is_active,
            is_claimed=query.is_claimed,
            limit=query.limit,
            offset=query.offset,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryError as exc:
        logger.error("admin agency list failed: %s", exc)
        raise database_error("Failed to fetch agencies") from exc

    return {
        "data": rows,
        "pagination": {
            "total": total,
            "limit": query.limit,
            "offset": query.offset,
            "hasMore": query.offset + query.limit < total,
            "page": query.offset // query.limit + 1,
            "totalPages": math.ceil(total / query.limit),
        },
    }


@router.post("/agencies", response_model=AgencyCreateResponse, status_code=http_status.HTTP_201_CREATED)
async def create_agency(
    payload: AgencyCreate,
    _: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> AgencyCreateResponse:
    base_slug = create_slug(payload.name)
    if not base_slug:
        raise ApiError(
            http_status.HTTP_400_BAD_REQUEST,
            ErrorCode.VALIDATION_ERROR,
            "Unable to generate slug from agency name",
        )

    try:
        if await repository.agency_name_exists(payload.name):
            raise _agency_conflict("An agency with this name already exists")
        slug = pick_unique_slug(base_slug, await repository.find_taken_slugs(base_slug))
        created = await repository.create_agency({**payload.model_dump(mode="json"), "slug": slug})
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryConflictError as exc:
        raise _agency_conflict("An agency with this name or slug already exists") from exc
    except RepositoryError as exc:
        logger.error("agency creation failed name=%r: %s", payload.name, exc)
        raise database_error("Failed to create agency") from exc
    except ValueError as exc:
        raise _agency_conflict(str(exc)) from exc

    logger.info("agency created id=%s slug=%s", created["id"], slug)
    return AgencyCreateResponse(data=created, message="Agency created successfully")


@router.patch("/agencies/{agency_id}", response_model=AgencyAdminUpdateResponse)
async def update_agency(
    agency_id: str,
    payload: AgencyAdminUpdate,
    principal: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> AgencyAdminUpdateResponse:
    updates = payload.model_dump(mode="json", exclude_unset=True)
    if not updates:
        raise ApiError(http_status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, "No fields provided to update")
    for required in ("name", "offers_per_diem", "is_union"):
        if required in updates and updates[required] is None:
            raise ApiError(http_status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, f"{required} cannot be null")

    try:
        updated = await repository.update_agency_fields(
            agency_id=agency_id,
            fields=updates,
            edited_by=principal.actor_id,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Agency not found", ErrorCode.AGENCY_NOT_FOUND) from exc
    except RepositoryConflictError as exc:
        raise _agency_conflict("An agency with this name already exists") from exc
    except RepositoryError as exc:
        logger.error("agency update failed agency_id=%s: %s", agency_id, exc)
        raise database_error("Failed to update agency") from exc

    return AgencyAdminUpdateResponse(agency=updated, message="Agency updated successfully")
