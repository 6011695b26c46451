from __future__ import annotations

"""Graph store dependency bundle.

``GraphStore`` collects the repositories the engines need. It is built by
application wiring code (``build_memory_store`` or ``build_sql_store``) and
injected into each engine; there is no process-wide store.
"""

from dataclasses import dataclass, field
from uuid import uuid4

from .interfaces import (
    ActionLogRepository,
    ApprovalRepository,
    EntityRepository,
    RelationshipRepository,
    SignalRepository,
    TimelineRepository,
    WorkflowDefinitionRepository,
    WorkflowRunRepository,
    WorkItemRepository,
)
from .locks import KeyedLocks


@dataclass(frozen=True)
class GraphStore:
    """Repositories plus id generation and per-key locks.

    Engines sharing one ``GraphStore`` also share its ``locks`` so that
    operations on the same run or entity serialize across engines.
    """

    entities: EntityRepository
    relationships: RelationshipRepository
    signals: SignalRepository
    work_items: WorkItemRepository
    approvals: ApprovalRepository
    definitions: WorkflowDefinitionRepository
    runs: WorkflowRunRepository
    action_logs: ActionLogRepository
    timeline: TimelineRepository

    locks: KeyedLocks = field(default_factory=KeyedLocks)

    def create_id(self) -> str:
        """Generate a new record id."""
        return str(uuid4())
