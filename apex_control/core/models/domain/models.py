"""Domain models for control plane records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional
from uuid import uuid4

from pydantic import AfterValidator, Field, JsonValue

from ..base import BaseSchema
from .enums import (
    ActionStatus,
    ApprovalChainMode,
    ApprovalDecision,
    ApprovalType,
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

# Any JSON-shaped value: scalar, list or nested mapping.
FieldValue = JsonValue

DEFAULT_TENANT_ID = "tenant-demo"
DEFAULT_WORKSPACE_ID = "workspace-demo"


def _utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Pin ``value`` to UTC. Naive datetimes are read as UTC wall-clock time."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Stored timestamps are always aware UTC; naive input is normalized on validation.
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def _new_id() -> str:
    return str(uuid4())


class Actor(BaseSchema):
    """The caller of a core operation."""

    id: str
    role: UserRole


class ProvenanceEntry(BaseSchema):
    """
    One assertion of a field value by a source.

    Entries are appended per field, newest last, and never rewritten.
    """

    field: str
    source_id: str
    signal_id: str
    observed_at: UtcDatetime
    confidence: float = Field(ge=0.0, le=1.0)

    overridden_by: Optional[str] = None
    override_reason: Optional[str] = None
    override_until: Optional[UtcDatetime] = None


class Entity(BaseSchema):
    """
    A canonical object in the graph.

    ``fields`` is schema-less; ``provenance`` records, per field, every source
    that asserted a value for it.
    """

    id: str = Field(default_factory=_new_id)
    tenant_id: str = DEFAULT_TENANT_ID
    workspace_id: str = DEFAULT_WORKSPACE_ID

    type: ObjectType
    fields: Dict[str, FieldValue] = Field(default_factory=dict)
    provenance: Dict[str, List[ProvenanceEntry]] = Field(default_factory=dict)

    created_at: UtcDatetime = Field(default_factory=_utc_now)
    updated_at: UtcDatetime = Field(default_factory=_utc_now)


class Relationship(BaseSchema):
    """Directed edge between two entities. Duplicate edges are allowed."""

    id: str = Field(default_factory=_new_id)
    tenant_id: str = DEFAULT_TENANT_ID
    workspace_id: str = DEFAULT_WORKSPACE_ID

    type: RelationshipType
    from_object_id: str
    to_object_id: str

    created_at: UtcDatetime = Field(default_factory=_utc_now)
    created_by: str


class SourceSignal(BaseSchema):
    """A snapshot of entity attributes reported by one external source."""

    id: str = Field(default_factory=_new_id)
    tenant_id: str = DEFAULT_TENANT_ID
    workspace_id: str = DEFAULT_WORKSPACE_ID

    source_id: str
    object_type: ObjectType
    external_id: str
    snapshot: Dict[str, FieldValue] = Field(default_factory=dict)
    observed_at: UtcDatetime = Field(default_factory=_utc_now)
    confidence: float = Field(ge=0.0, le=1.0)


class Candidate(BaseSchema):
    """A scored match between a signal and an existing entity."""

    entity_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    match_reason: str
    conflicting_fields: List[str] = Field(default_factory=list)


class IngestResult(BaseSchema):
    entity: Entity
    candidates: List[Candidate] = Field(default_factory=list)
    created: bool


class WorkflowStep(BaseSchema):
    id: str
    name: str
    type: WorkflowStepType
    risk_level: RiskLevel = RiskLevel.low
    config: Dict[str, Any] = Field(default_factory=dict)


class WorkflowTrigger(BaseSchema):
    kind: WorkflowTriggerKind = WorkflowTriggerKind.manual
    value: str = ""


class WorkflowDefinition(BaseSchema):
    """
    An ordered list of steps.

    Definitions are immutable once a run references them, except for
    ``active``/``published_at``.
    """

    id: str = Field(default_factory=_new_id)
    name: str
    version: int = 1
    playbook: str = ""
    trigger: WorkflowTrigger = Field(default_factory=WorkflowTrigger)
    steps: List[WorkflowStep] = Field(default_factory=list)
    active: bool = True

    created_at: UtcDatetime = Field(default_factory=_utc_now)
    published_at: Optional[UtcDatetime] = None


class WorkflowRun(BaseSchema):
    """
    One executing instance of a workflow definition.

    ``current_step_index`` only moves forward and never exceeds the number of
    steps in the definition.
    """

    id: str = Field(default_factory=_new_id)
    tenant_id: str = DEFAULT_TENANT_ID
    workspace_id: str = DEFAULT_WORKSPACE_ID

    definition_id: str
    status: WorkflowRunStatus = WorkflowRunStatus.running
    current_step_index: int = Field(default=0, ge=0)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    linked_work_item_id: Optional[str] = None
    restarted_from_run_id: Optional[str] = None

    created_at: UtcDatetime = Field(default_factory=_utc_now)
    updated_at: UtcDatetime = Field(default_factory=_utc_now)


class ApprovalRecord(BaseSchema):
    """
    A request for a human decision that gates one run resumption.

    ``work_item_id`` holds the id of the suspended workflow run.
    """

    id: str = Field(default_factory=_new_id)
    tenant_id: str = DEFAULT_TENANT_ID
    workspace_id: str = DEFAULT_WORKSPACE_ID

    work_item_id: str
    step_id: Optional[str] = None
    type: ApprovalType = ApprovalType.it
    approver_id: str
    decision: ApprovalDecision = ApprovalDecision.pending
    comment: Optional[str] = None
    decided_by: Optional[str] = None
    expires_at: Optional[UtcDatetime] = None

    chain_id: Optional[str] = None
    chain_mode: Optional[ApprovalChainMode] = None
    chain_order: Optional[int] = None

    created_at: UtcDatetime = Field(default_factory=_utc_now)
    decided_at: Optional[UtcDatetime] = None


class WorkItem(BaseSchema):
    id: str = Field(default_factory=_new_id)
    tenant_id: str = DEFAULT_TENANT_ID
    workspace_id: str = DEFAULT_WORKSPACE_ID

    type: WorkItemType
    status: WorkItemStatus = WorkItemStatus.submitted
    priority: Priority = Priority.p2
    title: str
    description: Optional[str] = None
    requester_id: str
    assignment_group: Optional[str] = None
    linked_object_ids: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    workflow_run_id: Optional[str] = None
    step_id: Optional[str] = None

    created_at: UtcDatetime = Field(default_factory=_utc_now)
    updated_at: UtcDatetime = Field(default_factory=_utc_now)


class ActionExecutionLog(BaseSchema):
    """Audit record of one automation dispatch attempt."""

    id: str = Field(default_factory=_new_id)
    tenant_id: str = DEFAULT_TENANT_ID
    workspace_id: str = DEFAULT_WORKSPACE_ID

    workflow_run_id: str
    step_id: str
    action_name: str
    risk_level: RiskLevel
    idempotency_key: str
    target_system: str
    status: ActionStatus
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: str = Field(default_factory=_new_id)

    created_at: UtcDatetime = Field(default_factory=_utc_now)


class TimelineEvent(BaseSchema):
    """
    An immutable audit log entry keyed by ``(entity_type, entity_id)``.
    """

    id: str = Field(default_factory=_new_id)
    tenant_id: str = DEFAULT_TENANT_ID
    workspace_id: str = DEFAULT_WORKSPACE_ID

    entity_type: TimelineEntityType
    entity_id: str
    event_type: TimelineEventType
    actor: str
    source: Optional[str] = None
    reason: Optional[str] = None
    work_item_id: Optional[str] = None

    created_at: UtcDatetime = Field(default_factory=_utc_now)
    payload: Dict[str, Any] = Field(default_factory=dict)


class FieldRestriction(BaseSchema):
    """Per-field read/write role restriction for one object type."""

    id: str = Field(default_factory=_new_id)
    object_type: ObjectType
    field: str
    read_roles: List[UserRole] = Field(default_factory=list)
    write_roles: List[UserRole] = Field(default_factory=list)
    mask_style: MaskStyle = MaskStyle.redacted


class EvidencePackage(BaseSchema):
    """Everything recorded about one workflow run, bundled for audit."""

    id: str = Field(default_factory=_new_id)
    workflow_run_id: str
    generated_at: UtcDatetime = Field(default_factory=_utc_now)

    run: WorkflowRun
    timeline: List[TimelineEvent] = Field(default_factory=list)
    approvals: List[ApprovalRecord] = Field(default_factory=list)
    action_logs: List[ActionExecutionLog] = Field(default_factory=list)
    work_items: List[WorkItem] = Field(default_factory=list)
