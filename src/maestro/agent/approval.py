"""
Human approval of generated plans.

The gate tracks at most one plan.  :meth:`ApprovalGate.wait_for_approval` parks the caller until
someone calls :meth:`~ApprovalGate.approve` or :meth:`~ApprovalGate.reject` with that plan's id.
Submitting another plan first resolves the earlier wait with ``False``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from maestro.core.schema import (
    AgentPlan,
    AgentTask,
    PlanStatus,
)

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalGate:
    """Single-slot approval state machine, one per session."""

    def __init__(self) -> None:
        self._plan: AgentPlan | None = None
        self._decision: asyncio.Future[bool] | None = None
        self.state = GateState.NONE

    @property
    def plan(self) -> AgentPlan | None:
        """The tracked plan: pending approval, or approved and executing."""
        return self._plan

    @property
    def pending_plan(self) -> AgentPlan | None:
        return self._plan if self.state == GateState.PENDING else None

    def _is_tracked(self, plan_id: str) -> bool:
        return self._plan is not None and self._plan.id == plan_id

    def _resolve(self, approved: bool) -> None:
        if self._decision is not None and not self._decision.done():
            self._decision.set_result(approved)
        self._decision = None

    async def wait_for_approval(self, plan: AgentPlan) -> bool:
        """
        Register *plan* as pending and wait for the decision.

        Returns ``True`` when approved, ``False`` when rejected or superseded by a later plan.
        """
        if self.state == GateState.PENDING and self._plan is not None:
            logger.info("Plan %s superseded by %s", self._plan.id, plan.id)
            self._plan.status = PlanStatus.REJECTED
            self._resolve(False)

        plan.status = PlanStatus.PENDING
        self._plan = plan
        self.state = GateState.PENDING
        decision: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._decision = decision
        return await decision

    def approve(self, plan_id: str) -> bool:
        """Approve the pending plan.  Returns ``False`` (and does nothing) for any other id."""
        if self.state != GateState.PENDING or not self._is_tracked(plan_id):
            logger.debug("Ignoring approval of untracked plan %s", plan_id)
            return False
        assert self._plan is not None
        self._plan.status = PlanStatus.APPROVED
        self.state = GateState.APPROVED
        self._resolve(True)
        logger.info("Plan %s approved", plan_id)
        return True

    def reject(self, plan_id: str) -> bool:
        """Reject the pending plan and stop tracking it."""
        if self.state != GateState.PENDING or not self._is_tracked(plan_id):
            logger.debug("Ignoring rejection of untracked plan %s", plan_id)
            return False
        assert self._plan is not None
        self._plan.status = PlanStatus.REJECTED
        self.state = GateState.REJECTED
        self._plan = None
        self._resolve(False)
        logger.info("Plan %s rejected", plan_id)
        return True

    def update_task(self, plan_id: str, task_id: str, **patch: Any) -> AgentTask | None:
        """Patch fields of one task of the tracked plan.  No-op for any other plan."""
        if not self._is_tracked(plan_id):
            return None
        assert self._plan is not None
        task = self._plan.find_task(task_id)
        if task is None:
            return None
        for field, value in patch.items():
            setattr(task, field, value)
        return task

    def edit_task(self, plan_id: str, task_id: str, name: str, description: str) -> AgentTask | None:
        """Let the user rewrite a task before approving the plan."""
        if self.state != GateState.PENDING:
            return None
        return self.update_task(plan_id, task_id, name=name, description=description)

    def mark_running(self, plan_id: str) -> None:
        if self._is_tracked(plan_id):
            assert self._plan is not None
            self._plan.status = PlanStatus.RUNNING

    def mark_completed(self, plan_id: str) -> None:
        if self._is_tracked(plan_id):
            assert self._plan is not None
            self._plan.status = PlanStatus.COMPLETED
