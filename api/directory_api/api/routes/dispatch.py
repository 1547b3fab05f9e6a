from fastapi import APIRouter, Depends, Query, status as http_status

from directory_api.core.auth import Principal
from directory_api.core.errors import ApiError, ErrorCode, not_found, unavailable
from directory_api.core.security import get_machine_principal
from directory_api.schemas.dispatch import (
    NotificationResultOut,
    NotificationResultRequest,
    PendingNotificationOut,
)
from directory_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()


def _require(principal: Principal, scope: str) -> None:
    try:
        principal.require_scopes({scope})
    except PermissionError as exc:
        raise ApiError(http_status.HTTP_403_FORBIDDEN, ErrorCode.FORBIDDEN, str(exc)) from exc


@router.get("/labor-request-notifications", response_model=list[PendingNotificationOut])
async def list_pending_notifications(
    limit: int = Query(default=25, ge=1, le=100),
    principal: Principal = Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> list[PendingNotificationOut]:
    _require(principal, "notifications:read")
    try:
        rows = await repository.list_pending_notifications(limit=limit)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    return [PendingNotificationOut(**row) for row in rows]


@router.post("/labor-request-notifications/{notification_id}/result", response_model=NotificationResultOut)
async def submit_notification_result(
    notification_id: str,
    payload: NotificationResultRequest,
    principal: Principal = Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> NotificationResultOut:
    _require(principal, "notifications:write")
    try:
        row = await repository.resolve_notification(
            notification_id=notification_id,
            status=payload.status,
            delivery_error=payload.delivery_error if payload.status == "failed" else None,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Notification not found") from exc
    except RepositoryConflictError as exc:
        raise ApiError(http_status.HTTP_409_CONFLICT, ErrorCode.VALIDATION_ERROR, str(exc)) from exc
    return NotificationResultOut(**row)
