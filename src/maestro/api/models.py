"""
Pydantic models for Maestro API requests and responses.
This module defines the request and response schemas used by the Maestro API.
"""

from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from maestro.core.schema import (
    AgentPlan,
    Attachment,
    ChatMode,
    Message,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionRequest(BaseModel):
    """Request to create a new session.  Unset fields fall back to the server settings."""

    provider: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    system_prompt: Optional[str] = None
    context_size: Optional[int] = Field(None, ge=1)
    max_iterations: Optional[int] = Field(None, ge=1)


class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str
    model: str
    provider: str
    tools: List[str] = Field(default_factory=list)


class MessageRequest(BaseModel):
    """Incoming user message."""

    content: str = Field(..., description="User message for Maestro")
    mode: Optional[ChatMode] = Field(None, description="ask, agent or plan (default from settings)")
    attachments: List[Attachment] = Field(default_factory=list)


class MessagesResponse(BaseModel):
    """The conversation so far."""

    session_id: str
    messages: List[Message]
    used_tokens: int = 0
    last_error: Optional[str] = None
    is_generating: bool = False


class PlanResponse(BaseModel):
    session_id: str
    plan: Optional[AgentPlan] = None
    state: str


class TaskPatch(BaseModel):
    """User edit of a task in a plan that awaits approval."""

    name: str
    description: str


class ActionResponse(BaseModel):
    ok: bool
