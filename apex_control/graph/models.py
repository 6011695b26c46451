from __future__ import annotations

"""Row classes for the durable graph store.

A row is a thin index over one pydantic record:

- ``document`` (JSON) holds ``model_dump(mode="json")`` of the whole record and
  is the only column read back; ``model_validate`` rebuilds the record from it.
- A handful of plain columns duplicate the attributes that repository queries
  filter on (type, run id, chain id, decision, entity id). They are rewritten
  from the record on every save and never read on their own.
- ``seq`` is an autoincrement key that every list query orders by, so scans
  come back in first-save order on any database. Signals and runs are only
  fetched by id and are keyed by it directly.

Adding a field to a domain model therefore needs no schema change unless a
query has to filter on it. All tables live under the ``apex_`` prefix.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class EntityRow(Base):
    """Row model for ``apex_entities``."""

    __tablename__ = "apex_entities"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(64), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)


class RelationshipRow(Base):
    """Row model for ``apex_relationships``."""

    __tablename__ = "apex_relationships"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    from_object_id: Mapped[str] = mapped_column(String(64), index=True)
    to_object_id: Mapped[str] = mapped_column(String(64), index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)


class SignalRow(Base):
    """Row model for ``apex_signals``."""

    __tablename__ = "apex_signals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_id: Mapped[str] = mapped_column(String(128))
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)


class WorkItemRow(Base):
    """Row model for ``apex_work_items``."""

    __tablename__ = "apex_work_items"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    workflow_run_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)


class ApprovalRow(Base):
    """Row model for ``apex_approvals``.

    ``work_item_id`` holds the id of the run the approval gates.
    """

    __tablename__ = "apex_approvals"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    work_item_id: Mapped[str] = mapped_column(String(64), index=True)
    chain_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    chain_order: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    decision: Mapped[str] = mapped_column(String(32), index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)


class WorkflowDefinitionRow(Base):
    """Row model for ``apex_workflow_definitions``."""

    __tablename__ = "apex_workflow_definitions"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)


class WorkflowRunRow(Base):
    """Row model for ``apex_workflow_runs``."""

    __tablename__ = "apex_workflow_runs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    definition_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(32))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)


class ActionLogRow(Base):
    """Row model for ``apex_action_logs`` (append-only)."""

    __tablename__ = "apex_action_logs"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True)
    workflow_run_id: Mapped[str] = mapped_column(String(64), index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)


class TimelineRow(Base):
    """Row model for ``apex_timeline`` (append-only)."""

    __tablename__ = "apex_timeline"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True)
    entity_id: Mapped[str] = mapped_column(String(64), index=True)
    work_item_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(64))
    document: Mapped[Dict[str, Any]] = mapped_column(JSON)
