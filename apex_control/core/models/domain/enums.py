"""Domain enums for control plane models."""

from __future__ import annotations

from enum import Enum


class ObjectType(str, Enum):
    """Types of canonical entities tracked in the graph."""

    person = "Person"
    identity = "Identity"
    device = "Device"
    accessory = "Accessory"
    location = "Location"
    work_item = "WorkItem"
    saas_application = "SaaSApplication"
    saas_account = "SaaSAccount"
    license = "License"
    contract = "Contract"
    cloud_container = "CloudContainer"
    cloud_resource = "CloudResource"
    software_title = "SoftwareTitle"
    software_installation = "SoftwareInstallation"
    custom_object = "CustomObject"


class RelationshipType(str, Enum):
    """Directed edge types between canonical entities."""

    assigned_to = "assigned_to"
    owned_by = "owned_by"
    located_in = "located_in"
    member_of = "member_of"
    has_identity = "has_identity"
    has_account = "has_account"
    consumes = "consumes"
    installed_on = "installed_on"
    contains = "contains"
    depends_on = "depends_on"
    linked_to = "linked_to"
    evidence_for = "evidence_for"


class RiskLevel(str, Enum):
    """
    Risk classification for workflow steps.

    Used by the workflow engine to decide whether a step may auto-execute.
    """

    low = "low"  # Read-only or safe operations.
    medium = "medium"  # State-modifying but reversible operations.
    high = "high"  # Irreversible operations (e.g. disabling an identity, wiping a device).


class WorkflowStepType(str, Enum):
    """Closed set of step kinds a workflow definition may contain."""

    human_task = "human-task"
    approval = "approval"
    automation = "automation"
    condition = "condition"
    wait = "wait"
    notification = "notification"
    update_object = "update-object"
    create_work_item = "create-work-item"


class WorkflowTriggerKind(str, Enum):
    event = "event"
    schedule = "schedule"
    manual = "manual"


class WorkflowRunStatus(str, Enum):
    """Lifecycle status of a workflow run."""

    pending = "pending"
    running = "running"
    waiting_approval = "waiting-approval"
    completed = "completed"
    failed = "failed"


class ApprovalType(str, Enum):
    manager = "manager"
    app_owner = "app-owner"
    security = "security"
    finance = "finance"
    it = "it"
    custom = "custom"


class ApprovalDecision(str, Enum):
    """Possible states of an approval request."""

    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    expired = "expired"


class ApprovalChainMode(str, Enum):
    """How the links of an approval chain combine."""

    all = "all"  # Every link must be approved.
    any = "any"  # The first approval satisfies the chain; other links expire.


class WorkItemType(str, Enum):
    request = "Request"
    incident = "Incident"
    change = "Change"
    task = "Task"
    approval = "Approval"
    exception = "Exception"


class WorkItemStatus(str, Enum):
    draft = "Draft"
    submitted = "Submitted"
    triaged = "Triaged"
    in_progress = "In Progress"
    waiting = "Waiting"
    blocked = "Blocked"
    completed = "Completed"
    canceled = "Canceled"


class Priority(str, Enum):
    p0 = "P0"
    p1 = "P1"
    p2 = "P2"
    p3 = "P3"
    p4 = "P4"


class ActionStatus(str, Enum):
    success = "success"
    failed = "failed"


class TimelineEntityType(str, Enum):
    object = "object"
    relationship = "relationship"
    work_item = "work-item"
    workflow = "workflow"
    approval = "approval"
    policy = "policy"


class TimelineEventType(str, Enum):
    """
    Types of events appended to the timeline.

    Every state-changing operation in the core appends exactly one of these.
    """

    object_created = "object.created"
    object_updated = "object.updated"
    relationship_created = "relationship.created"
    workflow_started = "workflow.started"
    workflow_step_executed = "workflow.step.executed"
    workflow_completed = "workflow.completed"
    approval_requested = "approval.requested"
    approval_decided = "approval.decided"
    exception_created = "exception.created"
    manual_override = "manual.override"


class UserRole(str, Enum):
    end_user = "end-user"
    it_agent = "it-agent"
    asset_manager = "asset-manager"
    it_admin = "it-admin"
    security_analyst = "security-analyst"
    finance = "finance"
    app_owner = "app-owner"
    auditor = "auditor"


class MaskStyle(str, Enum):
    hidden = "hidden"
    redacted = "redacted"


class FailedRunPolicy(str, Enum):
    """What ``advance_run`` does with a run that is already ``failed``."""

    resume_from_step = "resume_from_step"  # Re-attempt the failed step.
    terminal = "terminal"  # Refuse; callers start a new run instead.


class Capability(str, Enum):
    """Actions a role may be granted by the access policy."""

    object_view = "object:view"
    object_create = "object:create"
    object_update = "object:update"
    object_delete = "object:delete"
    workflow_run = "workflow:run"
    workflow_edit = "workflow:edit"
    approval_decide = "approval:decide"
    automation_high_risk = "automation:high-risk"
    audit_export = "audit:export"
