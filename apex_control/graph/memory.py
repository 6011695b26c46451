from __future__ import annotations

"""In-memory repository implementations.

Volatile backend used by tests and local experiments. Records are deep
copied on the way in and on the way out, so callers only ever hold detached
copies and must ``save`` to publish a change (the same contract as the SQL
backend).
"""

from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from ..core.models.domain import (
    ActionExecutionLog,
    ApprovalDecision,
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
from .store import GraphStore

M = TypeVar("M", bound=BaseModel)


class _Collection(Generic[M]):
    """Insertion-ordered id -> record map holding private copies."""

    def __init__(self) -> None:
        self._rows: Dict[str, M] = {}

    def get(self, record_id: str) -> Optional[M]:
        row = self._rows.get(record_id)
        return row.model_copy(deep=True) if row is not None else None

    def put(self, record_id: str, record: M) -> None:
        self._rows[record_id] = record.model_copy(deep=True)

    def values(self) -> List[M]:
        return [row.model_copy(deep=True) for row in self._rows.values()]

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryEntityRepository:
    def __init__(self) -> None:
        self._rows: _Collection[Entity] = _Collection()

    async def get(self, entity_id: str) -> Optional[Entity]:
        return self._rows.get(entity_id)

    async def save(self, entity: Entity) -> None:
        self._rows.put(entity.id, entity)

    async def list_by_type(self, object_type: ObjectType) -> List[Entity]:
        return [e for e in self._rows.values() if e.type == object_type]

    async def count(self) -> int:
        return len(self._rows)


class InMemoryRelationshipRepository:
    def __init__(self) -> None:
        self._rows: _Collection[Relationship] = _Collection()

    async def get(self, relationship_id: str) -> Optional[Relationship]:
        return self._rows.get(relationship_id)

    async def save(self, relationship: Relationship) -> None:
        self._rows.put(relationship.id, relationship)

    async def list_for_object(self, object_id: str) -> List[Relationship]:
        return [r for r in self._rows.values() if object_id in (r.from_object_id, r.to_object_id)]


class InMemorySignalRepository:
    def __init__(self) -> None:
        self._rows: _Collection[SourceSignal] = _Collection()

    async def get(self, signal_id: str) -> Optional[SourceSignal]:
        return self._rows.get(signal_id)

    async def save(self, signal: SourceSignal) -> None:
        self._rows.put(signal.id, signal)


class InMemoryWorkItemRepository:
    def __init__(self) -> None:
        self._rows: _Collection[WorkItem] = _Collection()

    async def get(self, work_item_id: str) -> Optional[WorkItem]:
        return self._rows.get(work_item_id)

    async def save(self, work_item: WorkItem) -> None:
        self._rows.put(work_item.id, work_item)

    async def list_for_run(self, run_id: str) -> List[WorkItem]:
        return [w for w in self._rows.values() if w.workflow_run_id == run_id]


class InMemoryApprovalRepository:
    def __init__(self) -> None:
        self._rows: _Collection[ApprovalRecord] = _Collection()

    async def get(self, approval_id: str) -> Optional[ApprovalRecord]:
        return self._rows.get(approval_id)

    async def save(self, approval: ApprovalRecord) -> None:
        self._rows.put(approval.id, approval)

    async def list_for_work_item(self, work_item_id: str) -> List[ApprovalRecord]:
        return [a for a in self._rows.values() if a.work_item_id == work_item_id]

    async def list_for_chain(self, chain_id: str) -> List[ApprovalRecord]:
        links = [a for a in self._rows.values() if a.chain_id == chain_id]
        return sorted(links, key=lambda a: a.chain_order or 0)

    async def list_pending(self) -> List[ApprovalRecord]:
        return [a for a in self._rows.values() if a.decision == ApprovalDecision.pending]


class InMemoryWorkflowDefinitionRepository:
    def __init__(self) -> None:
        self._rows: _Collection[WorkflowDefinition] = _Collection()

    async def get(self, definition_id: str) -> Optional[WorkflowDefinition]:
        return self._rows.get(definition_id)

    async def save(self, definition: WorkflowDefinition) -> None:
        self._rows.put(definition.id, definition)

    async def list(self) -> List[WorkflowDefinition]:
        return self._rows.values()


class InMemoryWorkflowRunRepository:
    def __init__(self) -> None:
        self._rows: _Collection[WorkflowRun] = _Collection()

    async def get(self, run_id: str) -> Optional[WorkflowRun]:
        return self._rows.get(run_id)

    async def save(self, run: WorkflowRun) -> None:
        self._rows.put(run.id, run)


class InMemoryActionLogRepository:
    def __init__(self) -> None:
        self._rows: List[ActionExecutionLog] = []

    async def append(self, log: ActionExecutionLog) -> None:
        self._rows.append(log.model_copy(deep=True))

    async def list_for_run(self, run_id: str) -> List[ActionExecutionLog]:
        return [log.model_copy(deep=True) for log in self._rows if log.workflow_run_id == run_id]


class InMemoryTimelineRepository:
    def __init__(self) -> None:
        self._rows: List[TimelineEvent] = []

    async def append(self, event: TimelineEvent) -> TimelineEvent:
        self._rows.append(event.model_copy(deep=True))
        return event.model_copy(deep=True)

    async def list_for_entity(self, entity_id: str) -> List[TimelineEvent]:
        return [e.model_copy(deep=True) for e in self._rows if e.entity_id == entity_id]

    async def list_for_work_item(self, work_item_id: str) -> List[TimelineEvent]:
        return [e.model_copy(deep=True) for e in self._rows if e.work_item_id == work_item_id]

    async def list(self) -> List[TimelineEvent]:
        return [e.model_copy(deep=True) for e in self._rows]


def build_memory_store() -> GraphStore:
    """Build a ``GraphStore`` backed by process memory."""
    return GraphStore(
        entities=InMemoryEntityRepository(),
        relationships=InMemoryRelationshipRepository(),
        signals=InMemorySignalRepository(),
        work_items=InMemoryWorkItemRepository(),
        approvals=InMemoryApprovalRepository(),
        definitions=InMemoryWorkflowDefinitionRepository(),
        runs=InMemoryWorkflowRunRepository(),
        action_logs=InMemoryActionLogRepository(),
        timeline=InMemoryTimelineRepository(),
    )
