from datetime import datetime, timezone
import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status as http_status

from directory_api.core.auth import Principal
from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import ApiError, ErrorCode, database_error, not_found, unavailable
from directory_api.core.security import get_human_principal
from directory_api.schemas.messages import (
    EDIT_WINDOW_SECONDS,
    ConversationCreate,
    ConversationCreatedResponse,
    ConversationFilter,
    ConversationListResponse,
    ConversationReadOut,
    ConversationThreadResponse,
    MessageCreate,
    MessageEdit,
    MessageOut,
    MessageResponse,
    UnreadCountOut,
)
from directory_api.services.email import ResendEmailClient, get_email_client
from directory_api.services.email_templates import new_message_email
from directory_api.services.repository import (
    PostgresRepository,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _bad_request(message: str) -> ApiError:
    return ApiError(http_status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, message)


def _forbidden(message: str) -> ApiError:
    return ApiError(http_status.HTTP_403_FORBIDDEN, ErrorCode.FORBIDDEN, message)


async def notify_message_recipients(
    repository: PostgresRepository,
    email_client: ResendEmailClient,
    *,
    conversation_id: str,
    sender_id: str,
    content: str,
    site_url: str,
) -> None:
    if not email_client.configured:
        logger.warning("message notification skipped conversation_id=%s: email not configured", conversation_id)
        return
    try:
        participants = await repository.list_conversation_participants(conversation_id)
    except RepositoryError as exc:
        logger.error("message notification lookup failed conversation_id=%s: %s", conversation_id, exc)
        return

    sender = next((item for item in participants if item["id"] == sender_id), None)
    sender_name = (sender or {}).get("full_name") or "A user"
    for participant in participants:
        if participant["id"] == sender_id or not participant.get("email"):
            continue
        await email_client.send(
            new_message_email(
                recipient_email=participant["email"],
                recipient_name=participant.get("full_name"),
                sender_name=sender_name,
                message_preview=content,
                conversation_id=conversation_id,
                site_url=site_url.rstrip("/"),
            )
        )


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    limit: int = Query(default=25, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    conversation_filter: ConversationFilter = Query(default="all", alias="filter"),
    search: str | None = Query(default=None, min_length=1, max_length=100),
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ConversationListResponse:
    try:
        rows, total = await repository.list_conversations(
            user_id=principal.actor_id,
            unread_only=conversation_filter == "unread",
            search=search,
            limit=limit,
            offset=offset,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    return ConversationListResponse(
        data=rows,
        pagination={"total": total, "limit": limit, "offset": offset, "has_more": offset + limit < total},
    )


@router.post(
    "/conversations",
    response_model=ConversationCreatedResponse,
    status_code=http_status.HTTP_201_CREATED,
)
async def create_conversation(
    payload: ConversationCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_human_principal),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    email_client: ResendEmailClient = Depends(get_email_client),
) -> ConversationCreatedResponse:
    if str(payload.recipient_id) == principal.actor_id:
        raise _bad_request("Cannot start a conversation with yourself")
    try:
        result = await repository.create_conversation(
            user_id=principal.actor_id,
            recipient_id=str(payload.recipient_id),
            context_type=payload.context_type,
            context_id=str(payload.context_id) if payload.context_id else None,
            initial_message=payload.initial_message,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Recipient not found") from exc
    except RepositoryValidationError as exc:
        raise _bad_request(str(exc)) from exc

    background_tasks.add_task(
        notify_message_recipients,
        repository,
        email_client,
        conversation_id=result["conversation"]["id"],
        sender_id=principal.actor_id,
        content=payload.initial_message,
        site_url=settings.site_url,
    )
    return ConversationCreatedResponse(data=result)


@router.get("/conversations/{conversation_id}", response_model=ConversationThreadResponse)
async def get_conversation(
    conversation_id: UUID,
    before: UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ConversationThreadResponse:
    try:
        conversation = await repository.get_conversation(
            conversation_id=str(conversation_id),
            user_id=principal.actor_id,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Conversation not found") from exc

    try:
        rows = await repository.list_messages(
            conversation_id=str(conversation_id),
            before=str(before) if before else None,
            limit=limit + 1,
        )
    except RepositoryValidationError as exc:
        raise _bad_request(str(exc)) from exc

    try:
        await repository.mark_conversation_read(conversation_id=str(conversation_id), user_id=principal.actor_id)
    except RepositoryError as exc:
        logger.warning("read marker update failed conversation_id=%s: %s", conversation_id, exc)

    return ConversationThreadResponse(
        data={
            "conversation": conversation,
            "messages": rows[:limit],
            "has_more": len(rows) > limit,
        }
    )


@router.put("/conversations/{conversation_id}/read", response_model=ConversationReadOut)
async def mark_conversation_read(
    conversation_id: UUID,
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ConversationReadOut:
    try:
        last_read_at = await repository.mark_conversation_read(
            conversation_id=str(conversation_id),
            user_id=principal.actor_id,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Conversation not found") from exc
    except RepositoryError as exc:
        raise database_error("Failed to mark conversation as read") from exc
    return ConversationReadOut(conversation_id=str(conversation_id), last_read_at=last_read_at)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=http_status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    payload: MessageCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_human_principal),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    email_client: ResendEmailClient = Depends(get_email_client),
) -> MessageResponse:
    try:
        allowed = await repository.is_participant(conversation_id=str(conversation_id), user_id=principal.actor_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    if not allowed:
        raise _forbidden("You are not a participant in this conversation")

    try:
        message = await repository.insert_message(
            conversation_id=str(conversation_id),
            sender_id=principal.actor_id,
            content=payload.content,
        )
    except RepositoryError as exc:
        raise database_error("Failed to send message") from exc

    background_tasks.add_task(
        notify_message_recipients,
        repository,
        email_client,
        conversation_id=str(conversation_id),
        sender_id=principal.actor_id,
        content=payload.content,
        site_url=settings.site_url,
    )
    return MessageResponse(data={"message": message})


@router.get("/unread-count", response_model=UnreadCountOut)
async def unread_count(
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> UnreadCountOut:
    try:
        counts = await repository.get_unread_counts(principal.actor_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    return UnreadCountOut(**counts)


@router.patch("/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: UUID,
    payload: MessageEdit,
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MessageResponse:
    message = await _load_message(repository, str(message_id))
    if message["sender_id"] != principal.actor_id:
        raise _forbidden("You can only edit your own messages")
    if message.get("deleted_at") is not None:
        raise _bad_request("Cannot edit a deleted message")
    age = datetime.now(timezone.utc) - message["created_at"]
    if age.total_seconds() > EDIT_WINDOW_SECONDS:
        raise _bad_request("Edit window expired. Messages can only be edited within 5 minutes of sending.")

    try:
        updated = await repository.edit_message(message_id=str(message_id), content=payload.content)
    except RepositoryNotFoundError as exc:
        raise not_found("Message not found") from exc
    return MessageResponse(data={"message": MessageOut(**updated)})


@router.delete("/{message_id}")
async def delete_message(
    message_id: UUID,
    principal: Principal = Depends(get_human_principal),
    repository=Depends(get_repository),
) -> dict:
    message = await _load_message(repository, str(message_id))
    if message["sender_id"] != principal.actor_id and not principal.is_admin:
        raise _forbidden("You can only delete your own messages")
    if message.get("deleted_at") is not None:
        raise _bad_request("Message has already been deleted")

    deleted = await repository.soft_delete_message(str(message_id))
    return {"data": {"id": deleted["id"], "deleted_at": deleted["deleted_at"]}}


async def _load_message(repository: PostgresRepository, message_id: str) -> dict:
    try:
        return await repository.get_message(message_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Message not found") from exc
