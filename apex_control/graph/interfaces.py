from __future__ import annotations

"""Repository interface contracts.

The engines depend on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- ``get`` returns ``None`` for unknown ids; it never raises.
- ``save`` is an upsert keyed by the record id.
- Returned records are detached copies: mutating them does not change the
  store until they are saved again.
- The timeline and action log repositories are append-only.
- Scans return records in insertion order so callers get deterministic
  results for the same store contents.
"""

from typing import List, Optional, Protocol

from ..core.models.domain import (
    ActionExecutionLog,
    ApprovalRecord,
    Entity,
    ObjectType,
    Relationship,
    SourceSignal,
    TimelineEvent,
    WorkflowDefinition,
    WorkflowRun,
    WorkItem,
)


class EntityRepository(Protocol):
    """Persist canonical entities."""

    async def get(self, entity_id: str) -> Optional[Entity]: ...

    async def save(self, entity: Entity) -> None: ...

    async def list_by_type(self, object_type: ObjectType) -> List[Entity]:
        """
        List every entity of one object type.

        Args:
            object_type: The type to filter by.

        Returns:
            Entities in insertion order.
        """
        ...

    async def count(self) -> int: ...


class RelationshipRepository(Protocol):
    """Persist directed edges between entities."""

    async def get(self, relationship_id: str) -> Optional[Relationship]: ...

    async def save(self, relationship: Relationship) -> None: ...

    async def list_for_object(self, object_id: str) -> List[Relationship]:
        """List relationships where ``object_id`` is either endpoint."""
        ...


class SignalRepository(Protocol):
    """Persist every signal received by reconciliation."""

    async def get(self, signal_id: str) -> Optional[SourceSignal]: ...

    async def save(self, signal: SourceSignal) -> None: ...


class WorkItemRepository(Protocol):
    """Persist work items, including tasks and exceptions raised by runs."""

    async def get(self, work_item_id: str) -> Optional[WorkItem]: ...

    async def save(self, work_item: WorkItem) -> None: ...

    async def list_for_run(self, run_id: str) -> List[WorkItem]:
        """List work items whose ``workflow_run_id`` is ``run_id``."""
        ...


class ApprovalRepository(Protocol):
    """Store approvals and their decisions."""

    async def get(self, approval_id: str) -> Optional[ApprovalRecord]: ...

    async def save(self, approval: ApprovalRecord) -> None: ...

    async def list_for_work_item(self, work_item_id: str) -> List[ApprovalRecord]:
        """
        List approvals gating one run.

        Args:
            work_item_id: The run id stored on the approval.

        Returns:
            All approvals for the run regardless of decision.
        """
        ...

    async def list_for_chain(self, chain_id: str) -> List[ApprovalRecord]:
        """List the links of an approval chain ordered by ``chain_order``."""
        ...

    async def list_pending(self) -> List[ApprovalRecord]: ...


class WorkflowDefinitionRepository(Protocol):
    """Store workflow definitions."""

    async def get(self, definition_id: str) -> Optional[WorkflowDefinition]: ...

    async def save(self, definition: WorkflowDefinition) -> None: ...

    async def list(self) -> List[WorkflowDefinition]: ...


class WorkflowRunRepository(Protocol):
    """Persist and query the lifecycle of workflow runs."""

    async def get(self, run_id: str) -> Optional[WorkflowRun]: ...

    async def save(self, run: WorkflowRun) -> None: ...


class ActionLogRepository(Protocol):
    """Append-only audit log of automation dispatches."""

    async def append(self, log: ActionExecutionLog) -> None: ...

    async def list_for_run(self, run_id: str) -> List[ActionExecutionLog]: ...


class TimelineRepository(Protocol):
    """Append-only store of timeline events."""

    async def append(self, event: TimelineEvent) -> TimelineEvent:
        """
        Append an event and return the stored record.

        Args:
            event: The event to persist.

        Returns:
            The persisted event.
        """
        ...

    async def list_for_entity(self, entity_id: str) -> List[TimelineEvent]: ...

    async def list_for_work_item(self, work_item_id: str) -> List[TimelineEvent]:
        """List events whose ``work_item_id`` is set to ``work_item_id``."""
        ...

    async def list(self) -> List[TimelineEvent]: ...
