import logging

from fastapi import APIRouter, Depends, status as http_status

from directory_api.core.auth import Principal
from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import ApiError, ErrorCode, database_error, not_found, unavailable
from directory_api.core.security import get_human_principal
from directory_api.schemas.claims import ClaimRequestCreate, ClaimRequestCreated, MyClaimsResponse
from directory_api.services.email import ResendEmailClient, get_email_client
from directory_api.services.email_domain import verify_email_domain
from directory_api.services.email_templates import claim_confirmation_email
from directory_api.services.repository import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _pending_claim_conflict() -> ApiError:
    return ApiError(
        http_status.HTTP_409_CONFLICT,
        ErrorCode.PENDING_CLAIM_EXISTS,
        "You already have a pending claim request for this agency",
    )


@router.post("/request", response_model=ClaimRequestCreated, status_code=http_status.HTTP_201_CREATED)
async def submit_claim_request(
    payload: ClaimRequestCreate,
    principal: Principal = Depends(get_human_principal),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    email_client: ResendEmailClient = Depends(get_email_client),
) -> ClaimRequestCreated:
    agency_id = str(payload.agency_id)
    try:
        agency = await repository.get_agency(agency_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Agency not found", ErrorCode.AGENCY_NOT_FOUND) from exc

    if agency.get("is_claimed"):
        raise ApiError(
            http_status.HTTP_409_CONFLICT,
            ErrorCode.AGENCY_ALREADY_CLAIMED,
            "This agency has already been claimed",
        )

    if await repository.has_open_claim(agency_id=agency_id, user_id=principal.actor_id):
        raise _pending_claim_conflict()

    email_domain_verified = verify_email_domain(payload.business_email, agency.get("website"))
    try:
        claim = await repository.create_claim(
            agency_id=agency_id,
            user_id=principal.actor_id,
            business_email=payload.business_email,
            phone_number=payload.phone_number,
            position_title=payload.position_title,
            verification_method=payload.verification_method,
            additional_notes=payload.additional_notes or None,
            email_domain_verified=email_domain_verified,
        )
    except RepositoryConflictError as exc:
        raise _pending_claim_conflict() from exc
    except RepositoryError as exc:
        logger.error("claim request insert failed agency_id=%s: %s", agency_id, exc)
        raise database_error("Failed to create claim request") from exc

    try:
        await repository.insert_claim_audit_log(claim_id=claim["id"], admin_id=None, action="submitted")
    except RepositoryError as exc:
        logger.error("claim audit log insert failed claim_id=%s action=submitted: %s", claim["id"], exc)

    recipient = principal.email or payload.business_email
    await email_client.send(
        claim_confirmation_email(
            recipient_email=recipient,
            recipient_name=None,
            agency_name=agency["name"],
            site_url=settings.site_url.rstrip("/"),
        )
    )
    return ClaimRequestCreated(**claim)


@router.get("/my-requests", response_model=MyClaimsResponse)
async def list_my_claims(
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MyClaimsResponse:
    try:
        rows = await repository.list_user_claims(principal.actor_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    return MyClaimsResponse(data=rows)
