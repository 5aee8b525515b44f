"""
One conversation.

A :class:`ChatSession` owns everything a conversation needs: its message list, its dispatcher,
its approval gate, its planner and its orchestrator.  Nothing is shared between sessions.

Modes (:class:`~maestro.core.schema.ChatMode`):

* ``ask``   -- one generation, no tool loop (``max_iterations=1``);
* ``agent`` -- one generation with the tool loop;
* ``plan``  -- plan -> wait for approval -> execute -> summary.
"""

from __future__ import annotations

import logging
from typing import (
    Callable,
    List,
    Optional,
)

from maestro.agent.approval import ApprovalGate
from maestro.agent.orchestrator import (
    OrchestrationEngine,
    TaskUpdateCallback,
)
from maestro.agent.planner import PlanningEngine
from maestro.common import new_id
from maestro.core.schema import (
    Attachment,
    ChatMode,
    GenerationCallbacks,
    Message,
    ModelProfile,
    Role,
    Tool,
    ToolCall,
)
from maestro.llm.dispatcher import GenerationDispatcher

logger = logging.getLogger(__name__)

MessageListener = Callable[[Message], None]


class ChatSession:
    """State and operations of a single conversation."""

    def __init__(
        self,
        profile: ModelProfile,
        dispatcher_factory: Callable[[], GenerationDispatcher],
        tools: List[Tool] | None = None,
        max_concurrent_tasks: int = 0,
        on_message: MessageListener | None = None,
        on_task_update: TaskUpdateCallback | None = None,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or new_id()
        self.profile = profile
        self.messages: List[Message] = []
        self.tools: List[Tool] = list(tools or [])
        self.last_error: str | None = None
        self.used_tokens = 0
        self._on_message = on_message
        self._dispatcher = dispatcher_factory()
        self.gate = ApprovalGate()
        self.planner = PlanningEngine(profile, dispatcher_factory)
        self.orchestrator = OrchestrationEngine(
            profile,
            dispatcher_factory,
            tools=self.tools,
            gate=self.gate,
            on_task_update=on_task_update,
            max_concurrent_tasks=max_concurrent_tasks,
        )

    # ------------------------------------------------------------------
    # Message list helpers
    # ------------------------------------------------------------------
    @property
    def is_generating(self) -> bool:
        return (
            self._dispatcher.is_generating
            or self.planner.is_planning
            or self.orchestrator.is_orchestrating
        )

    def set_tools(self, tools: List[Tool]) -> None:
        self.tools = list(tools)
        self.orchestrator.tools = list(tools)

    def get_message(self, message_id: str) -> Optional[Message]:
        return next((m for m in self.messages if m.id == message_id), None)

    def _add(self, message: Message) -> Message:
        self.messages.append(message)
        self._notify(message)
        return message

    def _notify(self, message: Message) -> None:
        if self._on_message is not None:
            self._on_message(message)

    def _settled_history(self) -> List[Message]:
        return [m for m in self.messages if not m.is_streaming]

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    async def _run_generation(self, assistant: Message, history: List[Message], max_iterations: int) -> None:
        """Stream one turn into *assistant*, opening new bubbles around tool calls."""
        state = {"assistant": assistant, "tool_message": None, "after_tools": False}

        def current_bubble() -> Message:
            if state["after_tools"]:
                # The next round streams into a fresh assistant bubble
                state["after_tools"] = False
                state["tool_message"] = None
                state["assistant"] = self._add(Message(role=Role.ASSISTANT, is_streaming=True))
            return state["assistant"]

        def on_token(content: str, thinking: str) -> None:
            current = current_bubble()
            current.content = content
            current.thinking = thinking or None
            current.is_streaming = True
            self._notify(current)

        def on_tool_call(call: ToolCall) -> None:
            tool_message: Message | None = state["tool_message"]
            if tool_message is None:
                tool_message = self._add(Message(role=Role.TOOL, tool_calls=[]))
                state["tool_message"] = tool_message
            calls = list(tool_message.tool_calls or [])
            for index, known in enumerate(calls):
                if known.id == call.id:
                    calls[index] = call
                    break
            else:
                calls.append(call)
            tool_message.tool_calls = calls
            self._notify(tool_message)

            if call.is_terminal and not state["after_tools"]:
                previous: Message = state["assistant"]
                previous.is_streaming = False
                state["after_tools"] = True
                self._notify(previous)

        def on_done(content: str, thinking: str) -> None:
            current = current_bubble()
            current.content = content
            current.thinking = thinking or None
            current.is_streaming = False
            self._notify(current)

        def on_error(error: str) -> None:
            current = current_bubble()
            current.is_streaming = False
            current.error = error
            self.last_error = error
            self._notify(current)

        def on_usage(used: int) -> None:
            self.used_tokens = used

        request = self.profile.request(
            messages=history,
            callbacks=GenerationCallbacks(
                on_token=on_token,
                on_tool_call=on_tool_call,
                on_done=on_done,
                on_error=on_error,
                on_usage=on_usage,
            ),
            tools=self.tools,
            max_iterations=max_iterations,
        )
        try:
            await self._dispatcher.generate(request)
        finally:
            # A stopped generation leaves its bubble as-is, just no longer streaming
            current = state["assistant"]
            if current.is_streaming:
                current.is_streaming = False
                self._notify(current)

    async def _run_plan_mode(self, content: str, history: List[Message]) -> None:
        plan_message = self._add(
            Message(role=Role.ASSISTANT, content="Generating plan…", is_streaming=True, is_plan=True)
        )
        result = await self.planner.generate_plan(content)
        plan_message.is_streaming = False
        if result.plan is None:
            error = result.error or "Failed to generate plan."
            plan_message.content = error
            plan_message.error = error
            self.last_error = error
            self._notify(plan_message)
            return

        plan = result.plan
        plan_message.content = f"Plan: {plan.title}"
        plan_message.agent_plan = plan
        self._notify(plan_message)

        approved = await self.gate.wait_for_approval(plan)
        if not approved:
            self._add(Message(role=Role.ASSISTANT, content="Plan rejected."))
            return

        outcome = await self.orchestrator.execute(plan, history)
        self._add(
            Message(
                role=Role.ASSISTANT,
                content=outcome.summary or outcome.error or "Agent execution complete.",
                error=outcome.error,
            )
        )

    async def send(
        self,
        content: str,
        mode: ChatMode | str = ChatMode.AGENT,
        attachments: List[Attachment] | None = None,
    ) -> Message:
        """
        Add a user message and answer it according to *mode*.

        Returns the user message.  Failures are attached to the message that produced them; the
        session stays usable afterwards.
        """
        mode = ChatMode(mode)
        if not self.profile.is_configured:
            raise ValueError("Session is not configured: a model (and endpoint for ollama) is required.")

        self.last_error = None
        user_message = self._add(
            Message(role=Role.USER, content=content, attachments=attachments or None)
        )
        logger.info("Session %s: %s message", self.id, mode.value)

        if mode == ChatMode.PLAN:
            await self._run_plan_mode(content, self._settled_history())
            return user_message

        history = self._settled_history()
        assistant = self._add(Message(role=Role.ASSISTANT, is_streaming=True))
        max_iterations = 1 if mode == ChatMode.ASK else self.profile.max_iterations
        await self._run_generation(assistant, history, max_iterations)
        return user_message

    async def retry(self, user_message_id: str) -> None:
        """Drop everything after a user message and answer it again."""
        index = next(
            (i for i, m in enumerate(self.messages) if m.id == user_message_id), None
        )
        if index is None or self.messages[index].role != Role.USER:
            logger.debug("Retry ignored: %s is not a user message", user_message_id)
            return
        self.last_error = None
        del self.messages[index + 1 :]
        history = self._settled_history()
        assistant = self._add(Message(role=Role.ASSISTANT, is_streaming=True))
        await self._run_generation(assistant, history, self.profile.max_iterations)

    def approve_plan(self, plan_id: str) -> bool:
        return self.gate.approve(plan_id)

    def reject_plan(self, plan_id: str) -> bool:
        return self.gate.reject(plan_id)

    def stop(self) -> None:
        """Stop whatever this session is doing: chat generation, planning or plan execution."""
        self._dispatcher.stop()
        self.planner.stop()
        self.orchestrator.stop()
