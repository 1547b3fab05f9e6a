from datetime import datetime, timedelta, timezone
import logging
import re
import secrets
from typing import Any

from fastapi import APIRouter, Depends, Query, status as http_status

from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import ApiError, ErrorCode, database_error, not_found, unavailable
from directory_api.schemas.labor_requests import LaborRequestCreate
from directory_api.services.repository import (
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)
from directory_api.services.sanitize import mask_email, mask_phone

router = APIRouter()
logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"^[0-9a-f]{64}$", re.IGNORECASE)


def _summary_message(total_matches: int) -> str:
    if total_matches == 0:
        return "Labor request submitted. No agencies currently match your requirements; our team will follow up."
    noun = "agency" if total_matches == 1 else "agencies"
    return f"Labor request submitted successfully. {total_matches} matching {noun} will be notified."


@router.post("", status_code=http_status.HTTP_201_CREATED)
async def create_labor_request(
    payload: LaborRequestCreate,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> dict[str, Any]:
    confirmation_token = secrets.token_hex(32)
    expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.labor_request_token_ttl_hours)

    try:
        labor_request = await repository.create_labor_request(
            project_name=payload.project_name,
            company_name=payload.company_name,
            contact_email=payload.contact_email,
            contact_phone=payload.contact_phone,
            additional_details=payload.additional_details or None,
            confirmation_token=confirmation_token,
            confirmation_token_expires=expires_at,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryError as exc:
        logger.error("labor request insert failed: %s", exc)
        raise database_error("Failed to create labor request") from exc

    request_id = labor_request["id"]
    craft_rows = [
        {
            "trade_id": str(craft.trade_id),
            "region_id": str(craft.region_id),
            "experience_level": craft.experience_level,
            "worker_count": craft.worker_count,
            "start_date": craft.start_date,
            "duration_days": craft.duration_days,
            "hours_per_week": craft.hours_per_week,
            "notes": craft.notes or None,
            "pay_rate_min": craft.pay_rate_min,
            "pay_rate_max": craft.pay_rate_max,
            "per_diem_rate": craft.per_diem_rate,
        }
        for craft in payload.crafts
    ]
    try:
        crafts = await repository.create_labor_request_crafts(labor_request_id=request_id, crafts=craft_rows)
    except RepositoryError as exc:
        logger.error("labor request crafts insert failed request_id=%s: %s", request_id, exc)
        try:
            await repository.delete_labor_request(request_id)
        except RepositoryError as cleanup_exc:
            logger.error("cleanup of labor request failed request_id=%s: %s", request_id, cleanup_exc)
        raise database_error("Failed to create labor request crafts") from exc

    matches_by_craft: list[dict[str, Any]] = []
    notification_errors: list[dict[str, Any]] = []
    total_matches = 0
    for craft in crafts:
        try:
            agencies = await repository.match_agencies(trade_id=craft["trade_id"], region_id=craft["region_id"])
        except RepositoryError as exc:
            logger.error("agency matching failed craft_id=%s: %s", craft["id"], exc)
            continue

        matches_by_craft.append({"craftId": craft["id"], "matches": len(agencies)})
        total_matches += len(agencies)
        if not agencies:
            continue
        try:
            await repository.create_labor_request_notifications(
                labor_request_id=request_id,
                craft_id=craft["id"],
                agency_ids=[agency["id"] for agency in agencies],
            )
        except RepositoryError as exc:
            logger.error("notification insert failed craft_id=%s: %s", craft["id"], exc)
            notification_errors.append({"craftId": craft["id"], "error": str(exc)})

    body: dict[str, Any] = {
        "success": True,
        "requestId": request_id,
        "confirmationToken": labor_request.get("confirmation_token", confirmation_token),
        "totalMatches": total_matches,
        "matchesByCraft": matches_by_craft,
        "message": _summary_message(total_matches),
    }
    if notification_errors:
        body["notificationWarning"] = "Some agency notifications could not be queued"
        body["notificationErrors"] = notification_errors
    return body


@router.get("/success")
async def get_labor_request_confirmation(
    token: str = Query(min_length=1),
    repository=Depends(get_repository),
) -> dict[str, Any]:
    """Summary for the submission confirmation page, addressed by its one-time token."""
    if not _TOKEN_RE.match(token):
        raise ApiError(http_status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, "Invalid token format")

    try:
        labor_request = await repository.get_labor_request_by_token(token.lower())
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Invalid or expired token") from exc
    except RepositoryError as exc:
        logger.error("labor request confirmation lookup failed: %s", exc)
        raise database_error("Failed to load labor request") from exc

    expires_at = labor_request.get("confirmation_token_expires")
    if expires_at is None or expires_at <= datetime.now(timezone.utc):
        raise not_found("Invalid or expired token")

    crafts = labor_request["crafts"]
    return {
        "success": True,
        "request": {
            "id": labor_request["id"],
            "projectName": labor_request["project_name"],
            "companyName": labor_request["company_name"],
            "contactEmail": mask_email(labor_request["contact_email"]),
            "contactPhone": mask_phone(labor_request["contact_phone"]),
            "submittedAt": labor_request["created_at"],
            "craftCount": len(crafts),
        },
        "matches": {
            "total": sum(craft["matches"] for craft in crafts),
            "byCraft": [
                {"craftName": craft["craft_name"] or "Unknown Trade", "matches": craft["matches"]} for craft in crafts
            ],
        },
        "expiresAt": expires_at,
    }
