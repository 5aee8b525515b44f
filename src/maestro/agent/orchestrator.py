"""
Executes an approved plan.

Groups run one after another; the tasks of a group run concurrently, each in its own dispatcher
with its own message history, and the next group starts only when every task of the current one
has settled.  A failing task is recorded on that task and does not affect its siblings.  Progress
is written back to the approval gate (and an optional callback) as it happens.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    List,
    Optional,
)

from maestro.agent.approval import ApprovalGate
from maestro.core.cancel import CancelToken
from maestro.core.schema import (
    AgentPlan,
    AgentTask,
    GenerationCallbacks,
    Message,
    ModelProfile,
    PlanStatus,
    Role,
    TaskStatus,
    Tool,
    ToolCall,
)
from maestro.llm.dispatcher import (
    LOCAL_PROVIDER,
    GenerationDispatcher,
)

logger = logging.getLogger(__name__)

SUMMARY_SEPARATOR = "\n\n---\n\n"

TaskUpdateCallback = Callable[[AgentPlan, AgentTask], Optional[Awaitable[None]]]


@dataclass
class TaskResult:
    """Final text of one successful task."""

    task: AgentTask
    content: str


@dataclass
class OrchestrationResult:
    task_results: List[TaskResult] = field(default_factory=list)
    summary: str = ""
    error: str | None = None


class TaskFailed(RuntimeError):
    """A task's generation reported an error."""


def build_summary(results: List[TaskResult]) -> str:
    """Concatenate task results in execution order.  No model call is involved."""
    return SUMMARY_SEPARATOR.join(f"**{r.task.name}**\n{r.content}" for r in results)


class OrchestrationEngine:
    """Runs the task groups of one plan at a time."""

    def __init__(
        self,
        profile: ModelProfile,
        dispatcher_factory: Callable[[], GenerationDispatcher],
        tools: List[Tool] | None = None,
        gate: ApprovalGate | None = None,
        on_task_update: TaskUpdateCallback | None = None,
        max_concurrent_tasks: int = 0,
    ) -> None:
        self._profile = profile
        self._dispatcher_factory = dispatcher_factory
        self.tools = list(tools or [])
        self._gate = gate
        self._on_task_update = on_task_update
        self._max_concurrent = max_concurrent_tasks
        self._cancel: CancelToken | None = None

    @property
    def is_orchestrating(self) -> bool:
        return self._cancel is not None

    def stop(self) -> None:
        """Cancel every running task and start no further group."""
        if self._cancel is not None:
            logger.info("Orchestration stop requested")
            self._cancel.cancel()

    def _limiter(self) -> asyncio.Semaphore | None:
        # Remote channel events carry no generation id, so remote tasks must take turns
        if self._profile.provider != LOCAL_PROVIDER:
            return asyncio.Semaphore(1)
        if self._max_concurrent > 0:
            return asyncio.Semaphore(self._max_concurrent)
        return None

    async def _update(self, plan: AgentPlan, task: AgentTask, **patch: Any) -> None:
        for name, value in patch.items():
            setattr(task, name, value)
        if self._gate is not None:
            self._gate.update_task(plan.id, task.id, **patch)
        if self._on_task_update is not None:
            result = self._on_task_update(plan, task)
            if inspect.isawaitable(result):
                await result

    async def _run_task(
        self,
        plan: AgentPlan,
        task: AgentTask,
        context_messages: List[Message],
        cancel: CancelToken,
        limiter: asyncio.Semaphore | None,
    ) -> TaskResult | None:
        """
        Run one task.  Returns ``None`` when it was cancelled.

        Raises
        ------
        TaskFailed
            When the task's generation reported an error.
        """
        if limiter is not None:
            async with limiter:
                return await self._run_task(plan, task, context_messages, cancel, None)
        if cancel.cancelled:
            await self._update(plan, task, status=TaskStatus.SKIPPED)
            return None

        await self._update(plan, task, status=TaskStatus.RUNNING)
        outcome: dict[str, str | None] = {"content": None, "error": None}

        async def on_token(content: str, _thinking: str) -> None:
            await self._update(plan, task, result=content)

        async def on_tool_call(call: ToolCall) -> None:
            calls = list(task.tool_calls)
            for index, known in enumerate(calls):
                if known.id == call.id:
                    calls[index] = call
                    break
            else:
                calls.append(call)
            await self._update(plan, task, tool_calls=calls)

        def on_done(content: str, _thinking: str) -> None:
            outcome["content"] = content

        def on_error(message: str) -> None:
            outcome["error"] = message

        request = self._profile.request(
            messages=[*context_messages, Message(role=Role.USER, content=task.description)],
            callbacks=GenerationCallbacks(
                on_token=on_token, on_tool_call=on_tool_call, on_done=on_done, on_error=on_error
            ),
            tools=self.tools,
            system_prompt=task.system_prompt or self._profile.system_prompt,
        )
        logger.info("Task '%s' (%s) started", task.name, task.id)
        await self._dispatcher_factory().generate(request, cancel)

        if outcome["error"] is not None:
            logger.warning("Task '%s' failed: %s", task.name, outcome["error"])
            await self._update(plan, task, status=TaskStatus.ERROR, error=outcome["error"])
            raise TaskFailed(outcome["error"])
        if outcome["content"] is None:
            logger.info("Task '%s' cancelled", task.name)
            await self._update(plan, task, status=TaskStatus.SKIPPED)
            return None

        content = outcome["content"]
        await self._update(plan, task, status=TaskStatus.SUCCESS, result=content)
        logger.info("Task '%s' finished", task.name)
        return TaskResult(task=task, content=content)

    async def execute(
        self, plan: AgentPlan, context_messages: List[Message]
    ) -> OrchestrationResult:
        """
        Execute all groups of *plan*.

        Cancellation via :meth:`stop` is not an error: the result keeps every task that settled
        before the stop and ``error`` stays ``None``.
        """
        cancel = CancelToken()
        self._cancel = cancel
        limiter = self._limiter()
        results: List[TaskResult] = []

        plan.status = PlanStatus.RUNNING
        if self._gate is not None:
            self._gate.mark_running(plan.id)
        logger.info("Executing plan '%s' (%d group(s))", plan.title, len(plan.parallel_groups))

        try:
            for index, group in enumerate(plan.parallel_groups):
                if cancel.cancelled:
                    for task in group:
                        await self._update(plan, task, status=TaskStatus.SKIPPED)
                    continue

                logger.debug("Starting group %d with %d task(s)", index, len(group))
                settled = await asyncio.gather(
                    *(
                        self._run_task(plan, task, context_messages, cancel.child(), limiter)
                        for task in group
                    ),
                    return_exceptions=True,
                )
                for task, outcome in zip(group, settled):
                    if isinstance(outcome, TaskResult):
                        results.append(outcome)
                    elif isinstance(outcome, BaseException) and not isinstance(outcome, TaskFailed):
                        logger.error("Task '%s' crashed: %r", task.name, outcome)
                        await self._update(
                            plan, task, status=TaskStatus.ERROR, error=str(outcome) or repr(outcome)
                        )

            plan.status = PlanStatus.COMPLETED
            if self._gate is not None:
                self._gate.mark_completed(plan.id)
            return OrchestrationResult(task_results=results, summary=build_summary(results))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Plan execution failed")
            return OrchestrationResult(task_results=results, summary="", error=str(exc))
        finally:
            self._cancel = None
