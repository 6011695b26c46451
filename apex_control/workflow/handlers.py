from __future__ import annotations

"""Step handler protocol, built-in handlers and registry.

A step handler is the concrete execution unit for one ``WorkflowStepType``.
The run engine resolves ``WorkflowStep.type`` through a
``StepHandlerRegistry`` and executes the handler with a ``StepContext``.

Handlers should:

- return structured outputs in ``StepResult.output`` (recorded on the
  ``workflow.step.executed`` event),
- raise ``ExecutionFailure`` when the step's side effect fails,
- avoid gating decisions themselves (risk and approval gating is enforced by
  the engine before a handler is invoked).

``approval`` steps never reach a handler: the engine turns them into approval
requests.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Protocol

from ..core.errors import ExecutionFailure
from ..core.models.domain import (
    ActionExecutionLog,
    ActionStatus,
    Actor,
    Priority,
    WorkflowRun,
    WorkflowStep,
    WorkflowStepType,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
)
from ..graph.store import GraphStore

logger = logging.getLogger(__name__)

# Step types the engine handles itself.
ENGINE_STEP_TYPES = frozenset({WorkflowStepType.approval})


@dataclass(frozen=True)
class StepContext:
    """Execution context passed to step handlers.

    Attributes
    ----------
    run:
        The ``WorkflowRun`` being advanced.
    step:
        The step at ``run.current_step_index``.
    actor:
        The caller driving the run.
    store:
        The graph store, for handlers that persist records.
    """

    run: WorkflowRun
    step: WorkflowStep
    actor: Actor
    store: GraphStore


@dataclass(frozen=True)
class StepResult:
    """Structured step execution result."""

    output: Dict[str, Any] = field(default_factory=dict)


# Integration hook for automation steps: receives the context and the
# dispatch input, returns the target system's output.
Dispatcher = Callable[[StepContext, Dict[str, Any]], Awaitable[Dict[str, Any]]]


class StepHandler(Protocol):
    """Protocol for step handler implementations."""

    step_type: WorkflowStepType

    async def execute(self, ctx: StepContext) -> StepResult: ...


class AutomationHandler:
    """
    Dispatch an automation step and record an ``ActionExecutionLog``.

    Config keys (all optional):

    - ``actionName``: defaults to the step name.
    - ``targetSystem``: defaults to ``internal``; selects a registered dispatcher.
    - ``idempotencyKey``: defaults to ``<run id>:<step id>``.
    - ``forceFailure``: when truthy the dispatch fails without calling out.
    """

    step_type = WorkflowStepType.automation

    def __init__(self, dispatchers: Optional[Mapping[str, Dispatcher]] = None) -> None:
        self._dispatchers: Dict[str, Dispatcher] = dict(dispatchers or {})

    def register_dispatcher(self, target_system: str, dispatcher: Dispatcher) -> None:
        self._dispatchers[target_system] = dispatcher

    async def execute(self, ctx: StepContext) -> StepResult:
        cfg = ctx.step.config
        action_name = str(cfg.get("actionName") or ctx.step.name)
        target_system = str(cfg.get("targetSystem") or "internal")
        idempotency_key = str(cfg.get("idempotencyKey") or f"{ctx.run.id}:{ctx.step.id}")

        status = ActionStatus.success
        output: Dict[str, Any] = {"ok": True}
        error: Optional[str] = None

        if cfg.get("forceFailure"):
            status = ActionStatus.failed
            output = {"error": "forced failure"}
            error = f"Automation action failed: {ctx.step.name}"
        else:
            dispatcher = self._dispatchers.get(target_system)
            if dispatcher is not None:
                try:
                    output = dict(await dispatcher(ctx, dict(cfg)))
                except Exception as e:
                    status = ActionStatus.failed
                    output = {"error": str(e)}
                    error = f"Automation action failed: {ctx.step.name}: {e}"

        log = ActionExecutionLog(
            id=ctx.store.create_id(),
            tenant_id=ctx.run.tenant_id,
            workspace_id=ctx.run.workspace_id,
            workflow_run_id=ctx.run.id,
            step_id=ctx.step.id,
            action_name=action_name,
            risk_level=ctx.step.risk_level,
            idempotency_key=idempotency_key,
            target_system=target_system,
            status=status,
            input=dict(cfg),
            output=output,
            correlation_id=ctx.store.create_id(),
        )
        await ctx.store.action_logs.append(log)
        logger.debug(f"Action {action_name} on {target_system} for run {ctx.run.id}: {status.value}")

        if error is not None:
            raise ExecutionFailure(ctx.step.id, error, action_log_id=log.id)
        return StepResult(output={"action_log_id": log.id, "action_name": action_name, "status": status.value})


class CreateWorkItemHandler:
    """Create a ``Task`` work item on behalf of the run."""

    step_type = WorkflowStepType.create_work_item

    async def execute(self, ctx: StepContext) -> StepResult:
        cfg = ctx.step.config
        work_item = WorkItem(
            id=ctx.store.create_id(),
            tenant_id=ctx.run.tenant_id,
            workspace_id=ctx.run.workspace_id,
            type=WorkItemType.task,
            status=WorkItemStatus.submitted,
            priority=Priority.p2,
            title=str(cfg.get("title") or f"Task from {ctx.step.name}"),
            requester_id=ctx.actor.id,
            assignment_group=str(cfg.get("assignmentGroup") or "it-ops"),
            tags=["workflow-generated"],
            workflow_run_id=ctx.run.id,
            step_id=ctx.step.id,
        )
        await ctx.store.work_items.save(work_item)
        return StepResult(output={"work_item_id": work_item.id})


class PassThroughHandler:
    """No-op handler for step types without a side effect of their own."""

    def __init__(self, step_type: WorkflowStepType) -> None:
        self.step_type = step_type

    async def execute(self, ctx: StepContext) -> StepResult:
        return StepResult()


class StepHandlerRegistry:
    """
    In-memory mapping of step types to handlers.

    Notes:
        - ``register`` overwrites any existing mapping for the step type.
        - ``get`` will raise ``KeyError`` if the step type is missing.
    """

    def __init__(self) -> None:
        self._handlers: Dict[WorkflowStepType, StepHandler] = {}

    def register(self, handler: StepHandler) -> None:
        self._handlers[handler.step_type] = handler

    def get(self, step_type: WorkflowStepType) -> StepHandler:
        return self._handlers[step_type]

    def has(self, step_type: WorkflowStepType) -> bool:
        return step_type in self._handlers

    def missing(self) -> Iterable[WorkflowStepType]:
        """Step types that need a handler but have none registered."""
        return [t for t in WorkflowStepType if t not in ENGINE_STEP_TYPES and t not in self._handlers]

    def validate(self) -> None:
        """
        Check that every dispatchable step type has a handler.

        Raises:
            ValueError: If any step type is left unhandled.
        """
        missing = list(self.missing())
        if missing:
            raise ValueError(f"no step handler registered for: {', '.join(t.value for t in missing)}")


def build_default_handlers(dispatchers: Optional[Mapping[str, Dispatcher]] = None) -> StepHandlerRegistry:
    """Build the default ``StepHandlerRegistry``.

    Automation and create-work-item steps get their built-in handlers; every
    other dispatchable type passes through.
    """
    reg = StepHandlerRegistry()
    reg.register(AutomationHandler(dispatchers))
    reg.register(CreateWorkItemHandler())
    for step_type in (
        WorkflowStepType.human_task,
        WorkflowStepType.condition,
        WorkflowStepType.wait,
        WorkflowStepType.notification,
        WorkflowStepType.update_object,
    ):
        reg.register(PassThroughHandler(step_type))
    return reg
