"""
Ticket Application DTOs
=======================

Data Transfer Objects for the ticket API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ========== Type Aliases for Literals ==========
TicketStatusStr = Literal["open", "pending", "resolved", "closed"]
PriorityStr = Literal["low", "medium", "high", "urgent"]
ChannelStr = Literal["web", "email", "chat", "api"]
MessageTypeStr = Literal["reply", "internal_note", "system"]
SortFieldStr = Literal["created_at", "updated_at", "number", "priority", "status"]

MAX_BULK_ITEMS = 100
MAX_MERGE_ITEMS = 10


def _clean_tags(v: List[str]) -> List[str]:
    return list(dict.fromkeys(tag.strip() for tag in v if tag and tag.strip()))


# ========== Request DTOs ==========

class TicketCreateDTO(BaseModel):
    """DTO for creating a ticket."""
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=50_000)
    priority: PriorityStr = Field(default="medium")
    channel: ChannelStr = Field(default="web")
    tags: List[str] = Field(default_factory=list)
    category_id: Optional[UUID] = None
    customer_id: Optional[UUID] = Field(
        None, description="Staff only: open the ticket on behalf of this customer"
    )

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)


class TicketUpdateDTO(BaseModel):
    """DTO for updating a ticket; only fields that are sent are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=50_000)
    status: Optional[TicketStatusStr] = None
    priority: Optional[PriorityStr] = None
    category_id: Optional[UUID] = None
    add_tags: List[str] = Field(default_factory=list)
    remove_tags: List[str] = Field(default_factory=list)

    @field_validator("add_tags", "remove_tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)


class TicketAssignDTO(BaseModel):
    assignee_id: Optional[UUID] = Field(None, description="Null unassigns the ticket")


class TicketCloseDTO(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class MessageCreateDTO(BaseModel):
    content: str = Field(..., min_length=1, max_length=50_000)
    message_type: MessageTypeStr = Field(default="reply")


class TicketListQuery(BaseModel):
    """Filters and pagination for ticket listing."""
    status: Optional[List[TicketStatusStr]] = None
    priority: Optional[PriorityStr] = None
    assignee_id: Optional[str] = Field(None, description="User id or 'unassigned'")
    customer_id: Optional[UUID] = None
    search: Optional[str] = Field(None, max_length=200)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: SortFieldStr = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("assignee_id")
    @classmethod
    def validate_assignee(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "unassigned":
            return v
        UUID(v)
        return v


class BulkUpdateDTO(BaseModel):
    """Fields applied to every ticket in ``ticket_ids``."""
    ticket_ids: List[UUID] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)
    status: Optional[TicketStatusStr] = None
    priority: Optional[PriorityStr] = None
    assignee_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    add_tags: List[str] = Field(default_factory=list)
    remove_tags: List[str] = Field(default_factory=list)

    @field_validator("add_tags", "remove_tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)


class BulkAssignDTO(BaseModel):
    ticket_ids: List[UUID] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)
    assignee_id: Optional[UUID] = None


class BulkDeleteDTO(BaseModel):
    ticket_ids: List[UUID] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)
    permanent: bool = Field(default=False, description="Erase instead of closing")


class MergeTicketsDTO(BaseModel):
    primary_ticket_id: UUID
    secondary_ticket_ids: List[UUID] = Field(..., min_length=1, max_length=MAX_MERGE_ITEMS)
    merge_comments: bool = Field(default=True, description="Copy messages into the primary")


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    number: int
    title: str
    description: str
    status: TicketStatusStr
    priority: PriorityStr
    channel: ChannelStr
    tags: List[str]
    category_id: Optional[UUID] = None
    customer_id: UUID
    assignee_id: Optional[UUID] = None
    sla_deadline: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    sla_breached: bool
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    merged_into_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class TicketListResponse(BaseModel):
    items: List[TicketResponse]
    total: int
    page: int
    limit: int


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_id: UUID
    actor_id: Optional[UUID] = None
    action: str
    details: dict
    created_at: datetime


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_id: UUID
    sender_id: UUID
    content: str
    message_type: MessageTypeStr
    merged_from_ticket_id: Optional[UUID] = None
    created_at: datetime


class TicketStatsResponse(BaseModel):
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    total: int


class BulkItemError(BaseModel):
    ticket_id: UUID
    error: str


class BulkOperationResult(BaseModel):
    success_count: int = 0
    failure_count: int = 0
    errors: List[BulkItemError] = Field(default_factory=list)


class MergeResult(BulkOperationResult):
    primary_ticket_id: UUID
    merged_ticket_ids: List[UUID] = Field(default_factory=list)
    messages_copied: int = 0
