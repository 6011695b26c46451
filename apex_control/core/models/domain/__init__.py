"""Domain models and enums for the control plane.

These types are shared between:

- the reconciliation engine (entities, signals, candidates, provenance),
- the workflow run engine (definitions, runs, approvals, action logs),
- the graph store backends,
- the access policy evaluator.

The models are explicit and serializable so they can be persisted as JSON
documents and emitted as audit payloads.
"""

from .enums import (
    ActionStatus,
    ApprovalChainMode,
    ApprovalDecision,
    ApprovalType,
    Capability,
    FailedRunPolicy,
    MaskStyle,
    ObjectType,
    Priority,
    RelationshipType,
    RiskLevel,
    TimelineEntityType,
    TimelineEventType,
    UserRole,
    WorkflowRunStatus,
    WorkflowStepType,
    WorkflowTriggerKind,
    WorkItemStatus,
    WorkItemType,
)
from .models import (
    ActionExecutionLog,
    Actor,
    ApprovalRecord,
    Candidate,
    Entity,
    EvidencePackage,
    FieldRestriction,
    FieldValue,
    IngestResult,
    ProvenanceEntry,
    Relationship,
    SourceSignal,
    TimelineEvent,
    UtcDatetime,
    WorkflowDefinition,
    WorkflowRun,
    WorkflowStep,
    WorkflowTrigger,
    WorkItem,
    as_utc,
)

__all__ = [
    "ActionStatus",
    "ApprovalChainMode",
    "ApprovalDecision",
    "ApprovalType",
    "Capability",
    "FailedRunPolicy",
    "MaskStyle",
    "ObjectType",
    "Priority",
    "RelationshipType",
    "RiskLevel",
    "TimelineEntityType",
    "TimelineEventType",
    "UserRole",
    "WorkflowRunStatus",
    "WorkflowStepType",
    "WorkflowTriggerKind",
    "WorkItemStatus",
    "WorkItemType",
    "ActionExecutionLog",
    "Actor",
    "ApprovalRecord",
    "Candidate",
    "Entity",
    "EvidencePackage",
    "FieldRestriction",
    "FieldValue",
    "IngestResult",
    "ProvenanceEntry",
    "Relationship",
    "SourceSignal",
    "TimelineEvent",
    "WorkflowDefinition",
    "WorkflowRun",
    "WorkflowStep",
    "WorkflowTrigger",
    "WorkItem",
    "UtcDatetime",
    "as_utc",
]
