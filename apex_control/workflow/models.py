from __future__ import annotations

"""Workflow dependency bundle and LangGraph state types.

The run engine is designed to be dependency-injected.

- ``WorkflowDeps`` collects the store, policy, handlers and configuration.
- ``_RunState`` is the state passed between LangGraph nodes during one
  ``advance_run`` call.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, TypedDict

from ..access import AccessPolicy
from ..core.config import WorkflowConfig
from ..core.models.domain import Actor, WorkflowDefinition
from ..graph.store import GraphStore
from .handlers import StepHandlerRegistry, build_default_handlers


@dataclass(frozen=True)
class WorkflowDeps:
    """Dependency bundle for ``WorkflowEngine``.

    This object is typically constructed by application wiring code
    (``build_control_plane``) and passed into the engine. It holds:

    - the graph store (and through it, the per-run locks),
    - the access policy used for high-risk gating and approval decisions,
    - the step handler registry used to dispatch steps,
    - run engine configuration.
    """

    store: GraphStore
    access: AccessPolicy = field(default_factory=AccessPolicy)
    handlers: StepHandlerRegistry = field(default_factory=build_default_handlers)
    config: WorkflowConfig = field(default_factory=WorkflowConfig)


class _RunState(TypedDict):
    """LangGraph state for a single ``advance_run`` pass.

    Keys:

    - ``run_id`` / ``actor`` / ``definition``: fixed inputs of the pass.
    - ``outcome``: set by ``execute`` to stop the loop; one of ``"gate"``,
      ``"failed"`` or ``"completed"``, ``None`` while steps keep running.
    - ``gate_kind``: ``"security"`` for high-risk gating, ``"approval"`` for
      approval steps.
    - ``error``: failure details for the ``fail`` node.
    """

    run_id: str
    actor: Actor
    definition: WorkflowDefinition
    outcome: Optional[str]
    gate_kind: Optional[str]
    error: Optional[Dict[str, Any]]
