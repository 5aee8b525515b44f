"""Tests for plan execution."""

import asyncio
from typing import (
    Dict,
    List,
)

from helpers import (
    FakeDispatcher,
    OllamaScript,
    fire,
)
from maestro.agent.approval import ApprovalGate
from maestro.agent.orchestrator import (
    OrchestrationEngine,
    build_summary,
)
from maestro.core.cancel import CancelToken
from maestro.core.schema import (
    AgentPlan,
    AgentTask,
    GenerationRequest,
    Message,
    ModelProfile,
    PlanStatus,
    Role,
    TaskStatus,
    ToolCall,
    ToolCallStatus,
)
from maestro.llm.channel import QueueChannel
from maestro.llm.dispatcher import GenerationDispatcher


def _plan(*groups: List[str], prompts: Dict[str, str] | None = None) -> AgentPlan:
    prompts = prompts or {}
    return AgentPlan(
        title="Test plan",
        parallel_groups=[
            [AgentTask(name=name, description=name, system_prompt=prompts.get(name)) for name in group]
            for group in groups
        ],
    )


class ScriptedTasks:
    """
    Plays every task generation.  Tasks named in *blocked* wait for their event; tasks named in
    *failing* report an error.
    """

    def __init__(self, blocked: tuple = (), failing: tuple = ()) -> None:
        self.log: List[tuple] = []
        self.release = {name: asyncio.Event() for name in blocked}
        self.failing = failing
        self.requests: List[GenerationRequest] = []

    def factory(self) -> FakeDispatcher:
        return FakeDispatcher(self.run)

    async def run(self, request: GenerationRequest, cancel: CancelToken) -> None:
        name = request.messages[-1].content
        self.requests.append(request)
        self.log.append(("start", name))
        if name in self.release:
            await cancel.guard(self.release[name].wait())
        self.log.append(("end", name))
        if name in self.failing:
            await fire(request.callbacks.on_error, f"{name} failed")
            return
        await fire(request.callbacks.on_token, f"result {name}", "")
        await fire(request.callbacks.on_done, f"result {name}", "")


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


async def test_groups_are_barriers(profile: ModelProfile) -> None:
    tasks = ScriptedTasks(blocked=("A", "B"))
    engine = OrchestrationEngine(profile, tasks.factory)
    plan = _plan(["A", "B"], ["C"])

    running = asyncio.create_task(engine.execute(plan, []))
    await _settle()
    assert tasks.log == [("start", "A"), ("start", "B")]
    assert engine.is_orchestrating

    tasks.release["A"].set()
    await _settle()
    assert ("start", "C") not in tasks.log

    tasks.release["B"].set()
    result = await running

    assert tasks.log.index(("start", "C")) > tasks.log.index(("end", "A"))
    assert tasks.log.index(("start", "C")) > tasks.log.index(("end", "B"))
    assert [r.task.name for r in result.task_results] == ["A", "B", "C"]
    assert result.error is None
    assert plan.status == PlanStatus.COMPLETED
    assert not engine.is_orchestrating


async def test_failed_task_does_not_affect_siblings(profile: ModelProfile) -> None:
    tasks = ScriptedTasks(failing=("B",))
    plan = _plan(["A", "B"], ["C"])

    result = await OrchestrationEngine(profile, tasks.factory).execute(plan, [])

    a, b = plan.parallel_groups[0]
    (c,) = plan.parallel_groups[1]
    assert (a.status, b.status, c.status) == (TaskStatus.SUCCESS, TaskStatus.ERROR, TaskStatus.SUCCESS)
    assert b.error == "B failed"
    assert result.error is None
    assert result.summary == "**A**\nresult A\n\n---\n\n**C**\nresult C"


async def test_cancel_mid_group_keeps_settled_results(profile: ModelProfile) -> None:
    tasks = ScriptedTasks(blocked=("B",))
    engine = OrchestrationEngine(profile, tasks.factory)
    plan = _plan(["A", "B"], ["C"])

    running = asyncio.create_task(engine.execute(plan, []))
    await _settle()
    engine.stop()
    result = await asyncio.wait_for(running, timeout=5)

    a, b = plan.parallel_groups[0]
    (c,) = plan.parallel_groups[1]
    assert [r.task.name for r in result.task_results] == ["A"]
    assert result.error is None
    assert a.status == TaskStatus.SUCCESS
    assert b.status == TaskStatus.SKIPPED
    assert c.status == TaskStatus.SKIPPED
    assert ("start", "C") not in tasks.log


async def test_tasks_get_isolated_history(profile: ModelProfile) -> None:
    tasks = ScriptedTasks()
    context = [Message(role=Role.USER, content="earlier question")]
    plan = _plan(["A", "B"], prompts={"B": "You are B."})

    await OrchestrationEngine(profile, tasks.factory).execute(plan, context)

    by_task = {r.messages[-1].content: r for r in tasks.requests}
    assert [m.content for m in by_task["A"].messages] == ["earlier question", "A"]
    assert [m.content for m in by_task["B"].messages] == ["earlier question", "B"]
    assert by_task["A"].messages is not by_task["B"].messages
    assert by_task["B"].system_prompt == "You are B."
    assert by_task["A"].system_prompt == profile.system_prompt


async def test_concurrency_cap(profile: ModelProfile) -> None:
    tasks = ScriptedTasks(blocked=("A", "B"))
    engine = OrchestrationEngine(profile, tasks.factory, max_concurrent_tasks=1)

    running = asyncio.create_task(engine.execute(_plan(["A", "B"]), []))
    await _settle()
    assert tasks.log == [("start", "A")]

    tasks.release["A"].set()
    tasks.release["B"].set()
    result = await running
    assert len(result.task_results) == 2


async def test_remote_tasks_in_one_group_keep_their_own_answers(profile: ModelProfile) -> None:
    """Tasks sharing one remote channel take turns, so each gets the reply to its own request."""

    channel = QueueChannel()
    remote = profile.model_copy(update={"provider": "openai"})
    engine = OrchestrationEngine(
        remote, lambda: GenerationDispatcher(client=OllamaScript().client(), channel=channel)
    )

    async def backend() -> None:
        answered = 0
        while answered < 2:
            await asyncio.sleep(0)
            chats = [payload for event, payload in channel.sent if event == "chat"]
            for payload in chats[answered:]:
                name = payload["messages"][-1]["content"]
                channel.push("token", {"content": f"answer for {name}"})
                channel.push("done", {"content": f"answer for {name}"})
                answered += 1

    serving = asyncio.create_task(backend())
    plan = _plan(["A", "B"])
    result = await asyncio.wait_for(engine.execute(plan, []), timeout=5)
    await asyncio.wait_for(serving, timeout=5)

    assert {r.task.name: r.content for r in result.task_results} == {
        "A": "answer for A",
        "B": "answer for B",
    }


async def test_progress_reaches_gate_and_callback(profile: ModelProfile) -> None:
    gate = ApprovalGate()
    plan = _plan(["A"])
    waiter = asyncio.create_task(gate.wait_for_approval(plan))
    await _settle()
    gate.approve(plan.id)
    await waiter

    updates: List[tuple] = []

    async def on_task_update(updated_plan: AgentPlan, task: AgentTask) -> None:
        updates.append((task.name, task.status))

    async def with_tool(request: GenerationRequest, cancel: CancelToken) -> None:
        call = ToolCall(id="tc-1", name="search", status=ToolCallStatus.RUNNING)
        await fire(request.callbacks.on_tool_call, call)
        await fire(request.callbacks.on_tool_call, call.model_copy(update={"status": ToolCallStatus.SUCCESS}))
        await fire(request.callbacks.on_done, "found it", "")

    engine = OrchestrationEngine(
        profile, lambda: FakeDispatcher(with_tool), gate=gate, on_task_update=on_task_update
    )
    await engine.execute(plan, [])

    (task,) = plan.parallel_groups[0]
    assert updates[0] == ("A", TaskStatus.RUNNING)
    assert updates[-1] == ("A", TaskStatus.SUCCESS)
    assert [c.status for c in task.tool_calls] == [ToolCallStatus.SUCCESS]
    assert gate.plan.status == PlanStatus.COMPLETED


def test_build_summary_empty() -> None:
    assert build_summary([]) == ""
