"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA policy API.
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

PriorityStr = Literal["low", "medium", "high", "urgent"]


class SLAPolicyCreateDTO(BaseModel):
    """Create (or replace) the default policy for a priority."""
    name: str = Field(..., min_length=1, max_length=255)
    priority: PriorityStr
    first_response_time: int = Field(..., ge=1, description="Minutes to first response")
    resolution_time: int = Field(..., ge=1, description="Minutes to resolution")
    business_hours_only: bool = False


class SLAPolicyUpdateDTO(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    first_response_time: Optional[int] = Field(None, ge=1)
    resolution_time: Optional[int] = Field(None, ge=1)
    business_hours_only: Optional[bool] = None


class SLAPolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    name: str
    priority: PriorityStr
    first_response_time: int
    resolution_time: int
    business_hours_only: bool
    is_default: bool
    created_at: datetime
    updated_at: datetime
