from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import AfterValidator, BaseModel, Field, StringConstraints, model_validator

from directory_api.services.sanitize import find_unsafe_message_content

ContextType = Literal["agency_inquiry", "general"]
ConversationFilter = Literal["all", "unread"]

MESSAGE_MAX_LENGTH = 10000
EDIT_WINDOW_SECONDS = 5 * 60


def _reject_unsafe_content(value: str) -> str:
    problem = find_unsafe_message_content(value)
    if problem:
        raise ValueError(problem)
    return value


MessageContent = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=MESSAGE_MAX_LENGTH),
    AfterValidator(_reject_unsafe_content),
]


class ConversationCreate(BaseModel):
    recipient_id: UUID
    context_type: ContextType
    context_id: UUID | None = None
    initial_message: MessageContent

    @model_validator(mode="after")
    def _require_agency_context(self) -> "ConversationCreate":
        if self.context_type == "agency_inquiry" and self.context_id is None:
            raise ValueError('Context ID is required when context type is "agency_inquiry"')
        return self


class MessageCreate(BaseModel):
    content: MessageContent


class MessageEdit(BaseModel):
    content: MessageContent


class ParticipantOut(BaseModel):
    id: str
    full_name: str | None = None
    email: str | None = None
    role: str | None = None
    last_read_at: datetime | None = None


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str | None = None
    created_at: datetime
    edited_at: datetime | None = None
    deleted_at: datetime | None = None
    sender_name: str | None = None


class ConversationSummaryOut(BaseModel):
    id: str
    context_type: ContextType
    context_id: str | None = None
    agency_name: str | None = None
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    unread_count: int = 0
    participants: list[ParticipantOut] = Field(default_factory=list)
    created_at: datetime | None = None


class ConversationsPagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class ConversationListResponse(BaseModel):
    data: list[ConversationSummaryOut]
    pagination: ConversationsPagination


class ConversationDetailOut(BaseModel):
    id: str
    context_type: ContextType
    context_id: str | None = None
    agency_name: str | None = None
    last_message_at: datetime | None = None
    created_at: datetime | None = None
    participants: list[ParticipantOut] = Field(default_factory=list)


class ConversationThreadOut(BaseModel):
    conversation: ConversationDetailOut
    messages: list[MessageOut]
    has_more: bool


class ConversationThreadResponse(BaseModel):
    data: ConversationThreadOut


class MessageEnvelope(BaseModel):
    message: MessageOut


class MessageResponse(BaseModel):
    data: MessageEnvelope


class ConversationCreatedOut(BaseModel):
    conversation: ConversationDetailOut
    message: MessageOut
    created: bool


class ConversationCreatedResponse(BaseModel):
    data: ConversationCreatedOut


class ConversationReadOut(BaseModel):
    conversation_id: str
    last_read_at: datetime


class UnreadCountOut(BaseModel):
    total_unread: int
    conversations_with_unread: int
