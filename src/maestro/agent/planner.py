"""
Planner for Maestro.

Turns one free-text request into an :class:`~maestro.core.schema.AgentPlan`: an ordered list of
task groups.  Planning is a single tool-free generation with a fixed instruction prompt; the model
decides how to split the work and which steps may run side by side, the planner only parses and
validates the shape of its answer.  Nothing partial is ever accepted.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import (
    Callable,
    ClassVar,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
)

from maestro.core.cancel import CancelToken
from maestro.core.errors import PlanParseError
from maestro.core.schema import (
    AgentPlan,
    AgentTask,
    GenerationCallbacks,
    Message,
    ModelProfile,
    Role,
)
from maestro.llm.dispatcher import GenerationDispatcher

logger = logging.getLogger(__name__)

RAW_PREVIEW_CHARS = 500

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


# ---------------------------------------------------------------------------
# Pydantic models for response validation
# ---------------------------------------------------------------------------
class TaskDraft(BaseModel):
    """One task as the model wrote it."""

    name: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")


class PlanDraft(BaseModel):
    """Validates the planner response.  ``parallelGroups`` is mandatory."""

    title: Optional[str] = None
    parallel_groups: List[List[TaskDraft]] = Field(alias="parallelGroups")


def strip_code_fence(raw: str) -> str:
    """Remove one optional surrounding ```` ``` ```` / ```` ```json ```` fence."""
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", raw.strip())).strip()


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:3]:
        location = ".".join(str(item) for item in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


def parse_plan(raw: str) -> AgentPlan:
    """
    Parse planner output into a fresh pending plan.

    Every task gets a new id and ``pending`` status whatever the model returned.

    Raises
    ------
    PlanParseError
        If the text is not JSON, or ``parallelGroups`` is missing or not a list of lists.
    """
    try:
        draft = PlanDraft.model_validate_json(strip_code_fence(raw))
    except ValidationError as exc:
        raise PlanParseError(_describe(exc)) from exc

    groups = [
        [
            AgentTask(
                name=task.name or "Task",
                description=task.description or "",
                system_prompt=task.system_prompt or None,
            )
            for task in group
        ]
        for group in draft.parallel_groups
    ]
    return AgentPlan(title=draft.title or "Execution plan", parallel_groups=groups)


@dataclass
class PlanningResult:
    """Either a plan or an error message, never both."""

    plan: AgentPlan | None
    error: str | None


class PlanningEngine:
    """Runs the planning generation and parses its answer."""

    SYSTEM_PROMPT: ClassVar[
        str
    ] = """\
You are a planning assistant. Given a user request, decompose it into a precise execution plan.

Respond ONLY with a valid JSON object (no markdown fences, no explanation) matching this schema:

{
  "title": "<short human-readable title of the overall task>",
  "parallelGroups": [
    [
      {
        "name": "<short task name>",
        "description": "<detailed instructions for the sub-agent handling this task>",
        "systemPrompt": "<optional override system prompt for this sub-agent, or omit>"
      }
    ]
  ]
}

Rules:
- Tasks in the SAME group can run IN PARALLEL; place them together only when they are truly independent.
- Groups are executed SEQUENTIALLY in array order; use different groups when later tasks depend on earlier ones.
- Each task description must be self-contained: it is sent to a separate AI agent that only sees this description.
- Aim for 2-6 tasks total. Avoid over-decomposing simple requests.
- If the request can be handled in a single step, use one group with one task.
"""

    def __init__(
        self,
        profile: ModelProfile,
        dispatcher_factory: Callable[[], GenerationDispatcher],
    ) -> None:
        self._profile = profile
        self._dispatcher_factory = dispatcher_factory
        self._cancel: CancelToken | None = None
        self.is_planning = False

    def stop(self) -> None:
        if self._cancel is not None:
            self._cancel.cancel()

    async def generate_plan(
        self, user_text: str, cancel: CancelToken | None = None
    ) -> PlanningResult:
        """Ask the model to decompose *user_text* into a plan."""
        if cancel is not None and cancel.cancelled:
            return PlanningResult(plan=None, error="Cancelled")

        outcome: dict[str, str | None] = {"content": None, "error": None}

        def on_done(content: str, _thinking: str) -> None:
            outcome["content"] = content

        def on_error(message: str) -> None:
            outcome["error"] = message

        request = self._profile.request(
            messages=[Message(role=Role.USER, content=user_text)],
            callbacks=GenerationCallbacks(on_done=on_done, on_error=on_error),
            tools=[],
            system_prompt=self.SYSTEM_PROMPT,
            max_iterations=1,
        )

        self._cancel = cancel.child() if cancel is not None else CancelToken()
        self.is_planning = True
        try:
            await self._dispatcher_factory().generate(request, self._cancel)
        finally:
            self.is_planning = False
            self._cancel = None

        if outcome["error"] is not None:
            logger.warning("Planning generation failed: %s", outcome["error"])
            return PlanningResult(plan=None, error=outcome["error"])
        raw = outcome["content"]
        if raw is None:
            logger.info("Planning cancelled")
            return PlanningResult(plan=None, error="Cancelled")

        try:
            plan = parse_plan(raw)
        except PlanParseError as exc:
            logger.error("Failed to parse plan: %s", exc)
            return PlanningResult(
                plan=None,
                error=f"Failed to parse plan JSON: {exc}\n\nRaw: {raw[:RAW_PREVIEW_CHARS]}",
            )

        logger.info(
            "Plan '%s' generated: %d group(s), %d task(s)",
            plan.title,
            len(plan.parallel_groups),
            sum(len(group) for group in plan.parallel_groups),
        )
        return PlanningResult(plan=plan, error=None)
