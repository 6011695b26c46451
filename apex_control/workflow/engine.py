from __future__ import annotations

"""LangGraph workflow run engine.

``WorkflowEngine`` executes the ordered steps of a ``WorkflowDefinition``.

Execution model
--------------

- Each ``advance_run`` call drives a LangGraph state machine over
  ``_RunState``, starting at the run's ``current_step_index``.
- Each ``execute`` iteration consumes exactly one step. Steps run back to
  back until one of three things happens:

  1. A step is gated: it is high risk and the actor lacks
     ``automation:high-risk``, or it is an ``approval`` step. The ``pause``
     node opens the approval(s) and the run waits in ``waiting-approval``.
     The gated step is not consumed.
  2. A step handler fails. The ``fail`` node marks the run ``failed`` and
     files an ``Exception`` work item. The failed step is not consumed.
  3. The cursor passes the last step. The ``finish`` node completes the run.

Resume
------

Approving the approval that gates a run consumes the gated step and
continues execution in the same call (``decide_approval``). Failed runs are
either re-attempted from the failed step or rejected, depending on
``WorkflowConfig.failed_run_policy``; ``restart_run`` starts a fresh run of
the same definition instead.

Every public operation holds the run's lock for its whole duration.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from langgraph.graph import END, StateGraph

from ..core.errors import InvalidState, NotFound
from ..core.models.domain import (
    Actor,
    ApprovalDecision,
    ApprovalRecord,
    Capability,
    FailedRunPolicy,
    Priority,
    RiskLevel,
    TimelineEntityType,
    TimelineEvent,
    TimelineEventType,
    WorkflowDefinition,
    WorkflowRun,
    WorkflowRunStatus,
    WorkflowStepType,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
)
from ..core.models.domain.models import DEFAULT_TENANT_ID, DEFAULT_WORKSPACE_ID
from ..graph.locks import run_key
from .approvals import ApprovalManager, EscalationReport, requests_for_step
from .handlers import StepContext
from .models import WorkflowDeps, _RunState

logger = logging.getLogger(__name__)

GATE_SECURITY = "security"
GATE_APPROVAL = "approval"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowEngine:
    """Advance workflow runs step by step with risk gating and failure recovery.

    The engine is orchestration only: gating decisions come from the
    ``AccessPolicy``, approvals are written by ``ApprovalManager`` and step
    side effects are delegated to the handlers in ``WorkflowDeps.handlers``.
    """

    def __init__(self, *, deps: WorkflowDeps) -> None:
        """
        Initialize the WorkflowEngine.

        Args:
            deps: Store, access policy, step handlers and configuration.

        Raises:
            ValueError: If a dispatchable step type has no handler.
        """
        deps.handlers.validate()
        self._deps = deps
        self._store = deps.store
        self._approvals = ApprovalManager(store=deps.store, access=deps.access, config=deps.config)
        self._graph = self._build_graph()

    @property
    def approvals(self) -> ApprovalManager:
        return self._approvals

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_RunState)
        g.add_node("start", self._node_start)
        g.add_node("execute", self._node_execute_next)
        g.add_node("pause", self._node_pause_for_approval)
        g.add_node("fail", self._node_fail)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        g.add_edge("start", "execute")

        g.add_conditional_edges(
            "execute",
            self._route_after_execute,
            {
                "pause": "pause",
                "fail": "fail",
                "finish": "finish",
                "continue": "execute",
            },
        )
        g.add_edge("pause", END)
        g.add_edge("fail", END)
        g.add_edge("finish", END)
        return g.compile()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start_run(
        self,
        definition_id: str,
        *,
        actor: Actor,
        inputs: Optional[Dict[str, Any]] = None,
        tenant_id: str = DEFAULT_TENANT_ID,
        workspace_id: str = DEFAULT_WORKSPACE_ID,
        linked_work_item_id: Optional[str] = None,
    ) -> WorkflowRun:
        """
        Create a run of an active definition and advance it as far as it goes.

        Raises:
            NotFound: The definition does not exist.
            InvalidState: The definition is inactive.
        """
        definition = await self._active_definition(definition_id)
        return await self._launch(
            definition,
            actor=actor,
            inputs=dict(inputs or {}),
            tenant_id=tenant_id,
            workspace_id=workspace_id,
            linked_work_item_id=linked_work_item_id,
        )

    async def advance_run(self, run_id: str, actor: Actor) -> WorkflowRun:
        """
        Continue a run from its current step.

        Completed and waiting runs are returned unchanged. A failed run is
        re-attempted from the failed step unless ``failed_run_policy`` is
        ``terminal``.

        Raises:
            NotFound: The run (or its definition) does not exist.
            InvalidState: The run is failed and the policy is ``terminal``.
        """
        async with self._store.locks.hold(run_key(run_id)):
            return await self._advance(run_id, actor)

    async def restart_run(self, run_id: str, actor: Actor) -> WorkflowRun:
        """
        Start a new run of a failed run's definition with the same inputs.

        Raises:
            NotFound: The run or its definition does not exist.
            InvalidState: The run is not failed or its definition is inactive.
        """
        source = await self._store.runs.get(run_id)
        if source is None:
            raise NotFound("WorkflowRun", run_id)
        if source.status != WorkflowRunStatus.failed:
            raise InvalidState(f"Only failed runs can be restarted; run {run_id} is {source.status.value}")
        definition = await self._active_definition(source.definition_id)
        return await self._launch(
            definition,
            actor=actor,
            inputs=dict(source.inputs),
            tenant_id=source.tenant_id,
            workspace_id=source.workspace_id,
            linked_work_item_id=source.linked_work_item_id,
            restarted_from_run_id=source.id,
        )

    async def decide_approval(
        self,
        approval_id: str,
        actor: Actor,
        decision: Union[ApprovalDecision, str],
        comment: Optional[str] = None,
    ) -> ApprovalRecord:
        """
        Decide an approval and resume its run when the gate opens.

        Approving the last outstanding approval of a ``waiting-approval`` run
        returns it to ``running``, consumes the gated step and continues
        execution before returning. A rejection leaves the run waiting.

        Raises:
            PermissionDenied: Missing ``approval:decide`` or not the assigned approver.
            NotFound: The approval does not exist.
            InvalidState: Already decided, unsupported decision or a rejection without comment.
        """
        approval = await self._approvals.load_for_decision(approval_id, actor)
        async with self._store.locks.hold(run_key(approval.work_item_id)):
            decided, satisfied = await self._approvals.decide(approval_id, actor, decision, comment)
            if satisfied:
                run = await self._store.runs.get(decided.work_item_id)
                if run is not None and run.status == WorkflowRunStatus.waiting_approval:
                    run.status = WorkflowRunStatus.running
                    run.current_step_index += 1
                    run.updated_at = _now()
                    await self._store.runs.save(run)
                    logger.info(f"Run {run.id} resumed at step {run.current_step_index} by {actor.id}")
                    await self._advance(run.id, actor)
        return decided

    async def escalate_expired_approvals(
        self,
        actor: Actor,
        fallback_approver_id: str,
        now: Optional[datetime] = None,
        dry_run: bool = False,
    ) -> EscalationReport:
        """Expire overdue approvals and re-request them from ``fallback_approver_id``."""
        return await self._approvals.escalate_expired(actor, fallback_approver_id, now=now, dry_run=dry_run)

    # ------------------------------------------------------------------
    # Internals (callers hold the run lock)
    # ------------------------------------------------------------------

    async def _active_definition(self, definition_id: str) -> WorkflowDefinition:
        definition = await self._store.definitions.get(definition_id)
        if definition is None:
            raise NotFound("WorkflowDefinition", definition_id)
        if not definition.active:
            raise InvalidState(f"Workflow definition {definition_id} is inactive")
        return definition

    async def _launch(
        self,
        definition: WorkflowDefinition,
        *,
        actor: Actor,
        inputs: Dict[str, Any],
        tenant_id: str,
        workspace_id: str,
        linked_work_item_id: Optional[str],
        restarted_from_run_id: Optional[str] = None,
    ) -> WorkflowRun:
        now = _now()
        run = WorkflowRun(
            id=self._store.create_id(),
            tenant_id=tenant_id,
            workspace_id=workspace_id,
            definition_id=definition.id,
            status=WorkflowRunStatus.running,
            current_step_index=0,
            inputs=inputs,
            linked_work_item_id=linked_work_item_id,
            restarted_from_run_id=restarted_from_run_id,
            created_at=now,
            updated_at=now,
        )
        async with self._store.locks.hold(run_key(run.id)):
            await self._store.runs.save(run)
            await self._emit_run_event(
                run,
                TimelineEventType.workflow_started,
                actor.id,
                {
                    "definition_id": definition.id,
                    "linked_work_item_id": linked_work_item_id,
                    "restarted_from_run_id": restarted_from_run_id,
                },
            )
            logger.info(f"Run {run.id} of {definition.id} started by {actor.id}")
            return await self._advance(run.id, actor)

    async def _advance(self, run_id: str, actor: Actor) -> WorkflowRun:
        run = await self._store.runs.get(run_id)
        if run is None:
            raise NotFound("WorkflowRun", run_id)

        if run.status in (WorkflowRunStatus.completed, WorkflowRunStatus.waiting_approval):
            return run

        if run.status == WorkflowRunStatus.failed:
            if self._deps.config.failed_run_policy == FailedRunPolicy.terminal:
                raise InvalidState(f"Run {run_id} has failed; start a new run instead")
            run.status = WorkflowRunStatus.running
            run.updated_at = _now()
            await self._store.runs.save(run)
            await self._emit_run_event(
                run,
                TimelineEventType.workflow_started,
                actor.id,
                {"definition_id": run.definition_id, "resumed_at_step_index": run.current_step_index},
            )
            logger.info(f"Run {run_id} resuming failed step {run.current_step_index}")

        definition = await self._store.definitions.get(run.definition_id)
        if definition is None:
            raise NotFound("WorkflowDefinition", run.definition_id)

        state: _RunState = {
            "run_id": run_id,
            "actor": actor,
            "definition": definition,
            "outcome": None,
            "gate_kind": None,
            "error": None,
        }
        # One super-step per executed step, plus the entry and terminal nodes.
        await self._graph.ainvoke(state, config={"recursion_limit": 2 * len(definition.steps) + 10})

        advanced = await self._store.runs.get(run_id)
        if advanced is None:
            raise NotFound("WorkflowRun", run_id)
        return advanced

    async def _load_run(self, state: _RunState) -> WorkflowRun:
        run = await self._store.runs.get(state["run_id"])
        if run is None:
            raise NotFound("WorkflowRun", state["run_id"])
        return run

    async def _emit_run_event(
        self,
        run: WorkflowRun,
        event_type: TimelineEventType,
        actor_id: str,
        payload: Dict[str, Any],
    ) -> None:
        await self._store.timeline.append(
            TimelineEvent(
                tenant_id=run.tenant_id,
                workspace_id=run.workspace_id,
                entity_type=TimelineEntityType.workflow,
                entity_id=run.id,
                event_type=event_type,
                actor=actor_id,
                work_item_id=run.linked_work_item_id,
                payload=payload,
            )
        )

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    async def _node_start(self, state: _RunState) -> _RunState:
        """Graph entry node. Moves a ``pending`` run to ``running``."""
        run = await self._load_run(state)
        if run.status == WorkflowRunStatus.pending:
            run.status = WorkflowRunStatus.running
            run.updated_at = _now()
            await self._store.runs.save(run)
        return state

    async def _node_execute_next(self, state: _RunState) -> _RunState:
        """Execute the step at the run's cursor.

        This node is responsible for:

        - detecting completion (cursor past the last step),
        - detecting gated steps (high risk without the capability, approval steps),
        - dispatching every other step to its handler and consuming it,
        - converting handler errors into a ``failed`` outcome.
        """
        run = await self._load_run(state)
        steps = state["definition"].steps
        idx = run.current_step_index
        if idx >= len(steps):
            state["outcome"] = "completed"
            return state

        step = steps[idx]
        actor = state["actor"]
        if step.risk_level == RiskLevel.high and not self._deps.access.can(
            actor.role, Capability.automation_high_risk
        ):
            state["outcome"] = "gate"
            state["gate_kind"] = GATE_SECURITY
            return state
        if step.type == WorkflowStepType.approval:
            state["outcome"] = "gate"
            state["gate_kind"] = GATE_APPROVAL
            return state

        handler = self._deps.handlers.get(step.type)
        try:
            result = await handler.execute(StepContext(run=run, step=step, actor=actor, store=self._store))
        except Exception as e:
            logger.warning(f"Run {run.id} step {step.id} ({step.type.value}) failed: {e}")
            state["outcome"] = "failed"
            state["error"] = {
                "step_id": step.id,
                "step_name": step.name,
                "message": str(e),
                "action_log_id": getattr(e, "action_log_id", None),
            }
            return state

        run.current_step_index = idx + 1
        run.updated_at = _now()
        await self._store.runs.save(run)
        await self._emit_run_event(
            run,
            TimelineEventType.workflow_step_executed,
            actor.id,
            {"step_id": step.id, "step_name": step.name, "step_index": idx, "output": result.output},
        )
        logger.debug(f"Run {run.id} executed step {idx} ({step.id})")
        return state

    async def _node_pause_for_approval(self, state: _RunState) -> _RunState:
        """Pause node.

        Opens the approval(s) for the gated step and moves the run to
        ``waiting-approval``. The graph transitions to END after this node;
        ``decide_approval`` resumes the run.
        """
        run = await self._load_run(state)
        step = state["definition"].steps[run.current_step_index]
        requests, chain_mode = requests_for_step(
            step,
            high_risk_gate=state["gate_kind"] == GATE_SECURITY,
            config=self._deps.config,
        )
        await self._approvals.request(run, step, requests, chain_mode, actor_id=state["actor"].id)

        run.status = WorkflowRunStatus.waiting_approval
        run.updated_at = _now()
        await self._store.runs.save(run)
        return state

    async def _node_fail(self, state: _RunState) -> _RunState:
        """Failure node.

        Marks the run ``failed`` and files an ``Exception`` work item carrying
        the failed step and error message. The cursor stays on the failed step.
        """
        run = await self._load_run(state)
        error = state["error"] or {}
        actor = state["actor"]

        run.status = WorkflowRunStatus.failed
        run.updated_at = _now()
        await self._store.runs.save(run)

        exception = WorkItem(
            id=self._store.create_id(),
            tenant_id=run.tenant_id,
            workspace_id=run.workspace_id,
            type=WorkItemType.exception,
            status=WorkItemStatus.submitted,
            priority=Priority.p1,
            title=f"Automation failure: {error.get('step_name')}",
            description=error.get("message"),
            requester_id=actor.id,
            assignment_group="exceptions",
            tags=["automation-failed"],
            workflow_run_id=run.id,
            step_id=error.get("step_id"),
        )
        await self._store.work_items.save(exception)
        await self._store.timeline.append(
            TimelineEvent(
                tenant_id=run.tenant_id,
                workspace_id=run.workspace_id,
                entity_type=TimelineEntityType.work_item,
                entity_id=exception.id,
                event_type=TimelineEventType.exception_created,
                actor=actor.id,
                work_item_id=run.linked_work_item_id,
                payload={
                    "workflow_run_id": run.id,
                    "step_id": error.get("step_id"),
                    "message": error.get("message"),
                    "action_log_id": error.get("action_log_id"),
                },
            )
        )
        logger.warning(f"Run {run.id} failed at step {run.current_step_index}; exception {exception.id} filed")
        return state

    async def _node_finish(self, state: _RunState) -> _RunState:
        """Finish node.

        Updates the run status and emits the run completion event.
        """
        run = await self._load_run(state)
        run.status = WorkflowRunStatus.completed
        run.updated_at = _now()
        await self._store.runs.save(run)
        await self._emit_run_event(run, TimelineEventType.workflow_completed, state["actor"].id, {})
        logger.info(f"Run {run.id} completed")
        return state

    def _route_after_execute(self, state: _RunState) -> str:
        """Route to pause/fail/finish/continue after executing a step."""
        outcome = state.get("outcome")
        if outcome == "gate":
            return "pause"
        if outcome == "failed":
            return "fail"
        if outcome == "completed":
            return "finish"
        return "continue"
