"""Graph store: the persistence boundary shared by both engines.

Responsibilities
----------------

- Provide async repository interfaces (Protocols) for entities, relationships,
  signals, work items, approvals, workflow definitions and runs, action logs
  and the timeline.
- Bundle them with id generation and per-key locks in ``GraphStore``.

Backends
--------

- ``build_memory_store`` for tests and local runs.
- ``apex_control.graph.sql.build_sql_store`` for SQLAlchemy async databases.
"""

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
from .memory import build_memory_store
from .objects import ObjectService
from .store import GraphStore

__all__ = [
    "ActionLogRepository",
    "ApprovalRepository",
    "EntityRepository",
    "GraphStore",
    "KeyedLocks",
    "ObjectService",
    "RelationshipRepository",
    "SignalRepository",
    "TimelineRepository",
    "WorkItemRepository",
    "WorkflowDefinitionRepository",
    "WorkflowRunRepository",
    "build_memory_store",
]
