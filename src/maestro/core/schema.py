"""
Schema definitions for session <-> engine <-> provider data.

These data models serve as the contract between the chat session, the generation engine, the
planner and the orchestrator.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from maestro.common import (
    new_id,
    utc_now,
)


class Role(str, Enum):
    """Author of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallStatus(str, Enum):
    """Lifecycle of a single tool call."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class TaskStatus(str, Enum):
    """Lifecycle of a task inside a plan."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class PlanStatus(str, Enum):
    """Lifecycle of a plan."""

    PENDING = "pending"  # generated, waiting for approval
    APPROVED = "approved"
    RUNNING = "running"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ChatMode(str, Enum):
    """How a user message is handled by a session."""

    ASK = "ask"
    AGENT = "agent"
    PLAN = "plan"


class Tool(BaseModel):
    """A tool definition supplied by the tool service.  Read-only to the engine."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolCall(BaseModel):
    """A call the model asked for, tracked from request to outcome."""

    id: str = Field(default_factory=lambda: new_id("tc"))
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Any = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ToolCallStatus.SUCCESS, ToolCallStatus.ERROR)


class Attachment(BaseModel):
    """Media attached to a user message, as base64 text (optionally a data URL)."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    mime_type: str
    data: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def payload(self) -> str:
        """The base64 body with any ``data:...;base64,`` prefix removed."""
        return self.data.split(",")[-1]


class AgentTask(BaseModel):
    """One unit of work inside a plan, executed by an isolated sub-session."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    status: TaskStatus = TaskStatus.PENDING
    result: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class AgentPlan(BaseModel):
    """
    A decomposed request.

    ``parallel_groups`` run strictly in order; tasks inside one group run concurrently and are
    assumed to be independent of each other.
    """

    id: str = Field(default_factory=new_id)
    title: str = "Execution plan"
    parallel_groups: List[List[AgentTask]] = Field(default_factory=list, alias="parallelGroups")
    status: PlanStatus = PlanStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(populate_by_name=True)

    def iter_tasks(self) -> Iterator[AgentTask]:
        for group in self.parallel_groups:
            yield from group

    def find_task(self, task_id: str) -> Optional[AgentTask]:
        return next((task for task in self.iter_tasks() if task.id == task_id), None)


class Message(BaseModel):
    """One chat message.  Mutated in place only by the component producing it."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    role: Role
    content: str = ""
    thinking: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    attachments: Optional[List[Attachment]] = None
    created_at: datetime = Field(default_factory=utc_now)
    is_streaming: bool = False
    error: Optional[str] = None
    # Set on the bubble that shows a generated plan; such messages are never sent to a model
    is_plan: bool = False
    agent_plan: Optional[AgentPlan] = None
    # Raw tool calls as the provider sent them; replayed on the next round
    provider_tool_calls: Optional[List[Dict[str, Any]]] = Field(default=None, exclude=True)


class Usage(BaseModel):
    """Token accounting reported at the end of a generation round."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total(self) -> int:
        return self.prompt_tokens + self.completion_tokens


# ---------------------------------------------------------------------------
# Generation request
# ---------------------------------------------------------------------------
# Callbacks may be plain functions or coroutine functions.
MaybeAwaitable = Optional[Awaitable[None]]


@dataclass
class GenerationCallbacks:
    """
    The callback contract shared by every provider.

    Each tool call is reported as pending, running, then a terminal snapshot.  A round's usage is
    reported before the ``on_done`` that ends the generation.
    """

    on_token: Callable[[str, str], MaybeAwaitable] | None = None
    on_tool_call: Callable[[ToolCall], MaybeAwaitable] | None = None
    on_done: Callable[[str, str], MaybeAwaitable] | None = None
    on_error: Callable[[str], MaybeAwaitable] | None = None
    on_usage: Callable[[int], MaybeAwaitable] | None = None


class GenerationRequest(BaseModel):
    """Everything one ``generate()`` call needs."""

    provider: str = "ollama"
    base_url: str = "http://localhost:11434"
    api_key: Optional[str] = None
    model: str
    messages: List[Message] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    context_size: int = 8192
    tools: List[Tool] = Field(default_factory=list)
    max_iterations: int = Field(default=10, ge=1)
    callbacks: GenerationCallbacks = Field(default_factory=GenerationCallbacks)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ModelProfile(BaseModel):
    """Endpoint and model parameters shared by every request a session makes."""

    provider: str = "ollama"
    base_url: str = "http://localhost:11434"
    api_key: Optional[str] = None
    model: str = ""
    context_size: int = 8192
    system_prompt: Optional[str] = None
    max_iterations: int = Field(default=10, ge=1)

    @classmethod
    def from_settings(cls, settings: Any) -> "ModelProfile":
        return cls(
            provider=settings.PROVIDER,
            base_url=settings.OLLAMA_URL,
            api_key=settings.OLLAMA_API_KEY or None,
            model=settings.MODEL,
            context_size=settings.CONTEXT_SIZE,
            system_prompt=settings.SYSTEM_PROMPT or None,
            max_iterations=settings.MAX_ITERATIONS,
        )

    @property
    def is_configured(self) -> bool:
        """The local provider needs an endpoint and a model; remote ones only a model."""
        if self.provider == "ollama":
            return bool(self.base_url and self.model)
        return bool(self.model)

    def request(
        self,
        messages: List[Message],
        callbacks: GenerationCallbacks,
        tools: Optional[List[Tool]] = None,
        **overrides: Any,
    ) -> GenerationRequest:
        """Build a :class:`GenerationRequest` from this profile; *overrides* win."""
        fields: Dict[str, Any] = {
            "provider": self.provider,
            "base_url": self.base_url,
            "api_key": self.api_key,
            "model": self.model,
            "context_size": self.context_size,
            "system_prompt": self.system_prompt,
            "max_iterations": self.max_iterations,
        }
        fields.update(overrides)
        return GenerationRequest(
            messages=messages, tools=tools or [], callbacks=callbacks, **fields
        )
