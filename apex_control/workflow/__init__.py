"""Workflow run engine.

- ``WorkflowEngine``: LangGraph state machine that advances runs.
- ``ApprovalManager``: approval requests, decisions, chains and escalation.
- ``StepHandlerRegistry``: dispatch of non-approval steps to handlers.
- ``build_evidence_package``: audit bundle for one run.
"""

from .approvals import ApprovalManager, ApprovalRequest, EscalationReport, requests_for_step, to_approval_type
from .engine import WorkflowEngine
from .evidence import build_evidence_package
from .handlers import (
    AutomationHandler,
    CreateWorkItemHandler,
    Dispatcher,
    PassThroughHandler,
    StepContext,
    StepHandler,
    StepHandlerRegistry,
    StepResult,
    build_default_handlers,
)
from .models import WorkflowDeps

__all__ = [
    "ApprovalManager",
    "ApprovalRequest",
    "AutomationHandler",
    "CreateWorkItemHandler",
    "Dispatcher",
    "EscalationReport",
    "PassThroughHandler",
    "StepContext",
    "StepHandler",
    "StepHandlerRegistry",
    "StepResult",
    "WorkflowDeps",
    "WorkflowEngine",
    "build_default_handlers",
    "build_evidence_package",
    "requests_for_step",
    "to_approval_type",
]
