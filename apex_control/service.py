"""High-level operation surface for the control plane.

``ControlPlaneService`` is what an API layer calls. It exposes the operations
of both engines behind one object and makes the mutating ones
idempotency-aware:

- A mutating call may pass ``idempotency_key``. The first successful call
  with a given ``(operation, key)`` pair executes normally and its result is
  remembered; later calls with the same pair return that result without
  executing again.
- Remembered results live in a bounded ``ReplayCache`` (oldest evicted
  first, optional TTL); a key whose result was dropped executes again.
- Failed calls are not remembered, so a retry with the same key executes.

Policy lives in the engines; this module only routes calls to them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from .access import AccessPolicy, mask_object_for_actor
from .core.models.domain import (
    Actor,
    ApprovalDecision,
    ApprovalRecord,
    Candidate,
    Capability,
    Entity,
    EvidencePackage,
    FieldRestriction,
    FieldValue,
    IngestResult,
    Relationship,
    RelationshipType,
    SourceSignal,
    UserRole,
    WorkflowRun,
)
from .core.models.domain.models import DEFAULT_TENANT_ID, DEFAULT_WORKSPACE_ID
from .graph.objects import ObjectService
from .graph.store import GraphStore
from .idempotency import ReplayCache
from .reconciliation import ReconciliationEngine
from .workflow import EscalationReport, WorkflowEngine, build_evidence_package

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ControlPlaneDeps:
    """Dependency bundle for ``ControlPlaneService``.

    Built by ``build_control_plane``; tests may assemble it directly to inject
    their own engines.
    """

    store: GraphStore
    access: AccessPolicy
    workflows: WorkflowEngine
    reconciliation: ReconciliationEngine
    objects: ObjectService


class ControlPlaneService:
    """Idempotency-aware facade over the workflow and reconciliation engines."""

    def __init__(self, *, deps: ControlPlaneDeps, replays: Optional[ReplayCache] = None) -> None:
        self._deps = deps
        self._replays = replays if replays is not None else ReplayCache.from_config()

    @property
    def store(self) -> GraphStore:
        return self._deps.store

    async def _once(self, operation: str, idempotency_key: Optional[str], call: Callable[[], Awaitable[T]]) -> T:
        if idempotency_key is None:
            return await call()
        slot = (operation, idempotency_key)
        async with self._deps.store.locks.hold(f"idempotency:{operation}:{idempotency_key}"):
            found, cached = self._replays.lookup(slot)
            if found:
                logger.debug(f"Replaying {operation} for idempotency key {idempotency_key}")
                return cached
            result = await call()
            self._replays.store(slot, result)
            return result

    # -- workflow ---------------------------------------------------------

    async def start_run(
        self,
        definition_id: str,
        *,
        actor: Actor,
        inputs: Optional[Dict[str, Any]] = None,
        tenant_id: str = DEFAULT_TENANT_ID,
        workspace_id: str = DEFAULT_WORKSPACE_ID,
        linked_work_item_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> WorkflowRun:
        return await self._once(
            "start_run",
            idempotency_key,
            lambda: self._deps.workflows.start_run(
                definition_id,
                actor=actor,
                inputs=inputs,
                tenant_id=tenant_id,
                workspace_id=workspace_id,
                linked_work_item_id=linked_work_item_id,
            ),
        )

    async def advance_run(self, run_id: str, actor: Actor, *, idempotency_key: Optional[str] = None) -> WorkflowRun:
        return await self._once("advance_run", idempotency_key, lambda: self._deps.workflows.advance_run(run_id, actor))

    async def restart_run(self, run_id: str, actor: Actor, *, idempotency_key: Optional[str] = None) -> WorkflowRun:
        return await self._once("restart_run", idempotency_key, lambda: self._deps.workflows.restart_run(run_id, actor))

    async def decide_approval(
        self,
        approval_id: str,
        actor: Actor,
        decision: Union[ApprovalDecision, str],
        comment: Optional[str] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> ApprovalRecord:
        return await self._once(
            "decide_approval",
            idempotency_key,
            lambda: self._deps.workflows.decide_approval(approval_id, actor, decision, comment),
        )

    async def escalate_expired_approvals(
        self,
        actor: Actor,
        fallback_approver_id: str,
        now: Optional[datetime] = None,
        dry_run: bool = False,
    ) -> EscalationReport:
        return await self._deps.workflows.escalate_expired_approvals(
            actor, fallback_approver_id, now=now, dry_run=dry_run
        )

    async def evidence_for_run(self, run_id: str) -> EvidencePackage:
        return await build_evidence_package(self._deps.store, run_id)

    # -- reconciliation ---------------------------------------------------

    async def ingest_signal(
        self,
        signal: SourceSignal,
        actor: Actor,
        *,
        idempotency_key: Optional[str] = None,
    ) -> IngestResult:
        return await self._once(
            "ingest_signal",
            idempotency_key,
            lambda: self._deps.reconciliation.ingest_signal(signal, actor.id),
        )

    async def find_candidates(self, signal: SourceSignal) -> List[Candidate]:
        return await self._deps.reconciliation.find_candidates(signal)

    # -- objects ----------------------------------------------------------

    async def update_fields(
        self,
        entity_id: str,
        fields: Dict[str, FieldValue],
        actor: Actor,
        restrictions: Iterable[FieldRestriction] = (),
        *,
        idempotency_key: Optional[str] = None,
    ) -> Entity:
        return await self._once(
            "update_fields",
            idempotency_key,
            lambda: self._deps.objects.update_fields(entity_id, fields, actor, restrictions),
        )

    async def override_field(
        self,
        entity_id: str,
        field: str,
        value: FieldValue,
        actor: Actor,
        reason: str,
        override_until: Optional[datetime] = None,
        restrictions: Iterable[FieldRestriction] = (),
        *,
        idempotency_key: Optional[str] = None,
    ) -> Entity:
        return await self._once(
            "override_field",
            idempotency_key,
            lambda: self._deps.objects.override_field(
                entity_id, field, value, actor, reason, override_until=override_until, restrictions=restrictions
            ),
        )

    async def link(
        self,
        from_id: str,
        to_id: str,
        relationship_type: RelationshipType,
        actor: Actor,
        *,
        idempotency_key: Optional[str] = None,
    ) -> Relationship:
        return await self._once(
            "link",
            idempotency_key,
            lambda: self._deps.objects.link(from_id, to_id, relationship_type, actor),
        )

    # -- access -----------------------------------------------------------

    def can(self, role: UserRole, capability: Capability) -> bool:
        return self._deps.access.can(role, capability)

    def mask_object_for_actor(self, entity: Entity, actor: Actor, restrictions: Iterable[FieldRestriction]) -> Entity:
        return mask_object_for_actor(entity, actor, restrictions)
