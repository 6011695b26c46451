"""Core models and schemas for the control plane."""

from __future__ import annotations

from .base import BaseSchema
from .domain import (
    ActionExecutionLog,
    Actor,
    ApprovalRecord,
    Candidate,
    Entity,
    EvidencePackage,
    FieldRestriction,
    IngestResult,
    ProvenanceEntry,
    Relationship,
    SourceSignal,
    TimelineEvent,
    WorkflowDefinition,
    WorkflowRun,
    WorkflowStep,
    WorkItem,
)

__all__ = [
    "BaseSchema",
    "ActionExecutionLog",
    "Actor",
    "ApprovalRecord",
    "Candidate",
    "Entity",
    "EvidencePackage",
    "FieldRestriction",
    "IngestResult",
    "ProvenanceEntry",
    "Relationship",
    "SourceSignal",
    "TimelineEvent",
    "WorkflowDefinition",
    "WorkflowRun",
    "WorkflowStep",
    "WorkItem",
]
