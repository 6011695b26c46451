from __future__ import annotations

from typing import Any, List, Optional

import pytest

from apex_control.core.models.domain import (
    Actor,
    RiskLevel,
    UserRole,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowStepType,
)
from apex_control.graph import GraphStore, build_memory_store


@pytest.fixture
def store() -> GraphStore:
    return build_memory_store()


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=UserRole.it_admin)


@pytest.fixture
def agent() -> Actor:
    """Low-privilege operator: may run workflows and decide approvals, but not high-risk automation."""
    return Actor(id="agent-1", role=UserRole.it_agent)


@pytest.fixture
def end_user() -> Actor:
    return Actor(id="user-1", role=UserRole.end_user)


def make_step(
    step_id: str,
    step_type: WorkflowStepType = WorkflowStepType.automation,
    risk: RiskLevel = RiskLevel.low,
    **config: Any,
) -> WorkflowStep:
    return WorkflowStep(id=step_id, name=f"Step {step_id}", type=step_type, risk_level=risk, config=dict(config))


def make_definition(steps: List[WorkflowStep], *, definition_id: Optional[str] = None, **kw: Any) -> WorkflowDefinition:
    return WorkflowDefinition(id=definition_id or "wf-test", name="Test workflow", steps=steps, **kw)


@pytest.fixture(name="make_step")
def _make_step_fixture():
    return make_step


@pytest.fixture(name="make_definition")
def _make_definition_fixture():
    return make_definition
