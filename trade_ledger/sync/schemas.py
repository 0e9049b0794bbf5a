from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class WebhookBodySchema(BaseModel):
    type: str = Field(min_length=1, max_length=64)
    payload: dict[str, Any] = Field(default_factory=dict)

class WebhookResponseSchema(BaseModel):
    success: Literal[True] = Field(default=True)
    type: str
    applied: bool
    duplicate: bool = False

class ResyncResponseSchema(BaseModel):
    success: Literal[True] = Field(default=True)
    queued: int
    done: int = 0
    retried: int = 0
    failed: int = 0
    busy: int = 0
    mirror_user_id: Optional[UUID] = None
