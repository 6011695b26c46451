from __future__ import annotations

"""Durable graph store on SQLAlchemy async.

Every repository Protocol in ``apex_control.graph.interfaces`` has a ``Sql*``
counterpart here. Wiring a store by hand::

    engine = create_engine(url)
    await create_all(engine)
    store = build_sql_store(session_factory=create_sessionmaker(engine))

``apex_control.factory.open_store`` does the same from ``Settings``.

Transaction model
-----------------

One repository call is one ``AsyncSession`` and one commit, so a state
change and its timeline event land in two commits. The per-key locks on
``GraphStore`` keep other callers of the same run or entity from seeing the
gap; a crash between the two commits is not rolled back.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

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
from .models import (
    ActionLogRow,
    ApprovalRow,
    Base,
    EntityRow,
    RelationshipRow,
    SignalRow,
    TimelineRow,
    WorkflowDefinitionRow,
    WorkflowRunRow,
    WorkItemRow,
)
from .store import GraphStore


def create_engine(db_url: str) -> AsyncEngine:
    """Async engine for ``db_url``.

    Any ``postgres://`` or ``postgresql+<driver>://`` URL is pointed at asyncpg;
    everything else (SQLite through aiosqlite in tests) is used as given.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory whose records stay readable after commit."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create the ``apex_*`` tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _upsert(s: AsyncSession, row_cls: Type[Any], record_id: str, values: Dict[str, Any]) -> None:
    result = await s.execute(select(row_cls).where(row_cls.id == record_id))
    row = result.scalar_one_or_none()
    if row is None:
        s.add(row_cls(id=record_id, **values))
        return
    for key, value in values.items():
        setattr(row, key, value)


async def _first_document(s: AsyncSession, row_cls: Type[Any], record_id: str) -> Optional[Dict[str, Any]]:
    result = await s.execute(select(row_cls.document).where(row_cls.id == record_id))
    return result.scalar_one_or_none()


@dataclass(frozen=True)
class SqlEntityRepository:
    """SQL implementation of ``EntityRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, entity_id: str) -> Optional[Entity]:
        async with self.session_factory() as s:
            doc = await _first_document(s, EntityRow, entity_id)
            return Entity.model_validate(doc) if doc is not None else None

    async def save(self, entity: Entity) -> None:
        async with self.session_factory() as s:
            await _upsert(
                s,
                EntityRow,
                entity.id,
                {
                    "type": entity.type.value,
                    "updated_at": entity.updated_at,
                    "document": entity.model_dump(mode="json"),
                },
            )
            await s.commit()

    async def list_by_type(self, object_type: ObjectType) -> List[Entity]:
        async with self.session_factory() as s:
            stmt = select(EntityRow.document).where(EntityRow.type == object_type.value).order_by(EntityRow.seq)
            result = await s.execute(stmt)
            return [Entity.model_validate(doc) for doc in result.scalars().all()]

    async def count(self) -> int:
        async with self.session_factory() as s:
            result = await s.execute(select(func.count()).select_from(EntityRow))
            return int(result.scalar_one())


@dataclass(frozen=True)
class SqlRelationshipRepository:
    """SQL implementation of ``RelationshipRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, relationship_id: str) -> Optional[Relationship]:
        async with self.session_factory() as s:
            doc = await _first_document(s, RelationshipRow, relationship_id)
            return Relationship.model_validate(doc) if doc is not None else None

    async def save(self, relationship: Relationship) -> None:
        async with self.session_factory() as s:
            await _upsert(
                s,
                RelationshipRow,
                relationship.id,
                {
                    "from_object_id": relationship.from_object_id,
                    "to_object_id": relationship.to_object_id,
                    "document": relationship.model_dump(mode="json"),
                },
            )
            await s.commit()

    async def list_for_object(self, object_id: str) -> List[Relationship]:
        async with self.session_factory() as s:
            stmt = (
                select(RelationshipRow.document)
                .where((RelationshipRow.from_object_id == object_id) | (RelationshipRow.to_object_id == object_id))
                .order_by(RelationshipRow.seq)
            )
            result = await s.execute(stmt)
            return [Relationship.model_validate(doc) for doc in result.scalars().all()]


@dataclass(frozen=True)
class SqlSignalRepository:
    """SQL implementation of ``SignalRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, signal_id: str) -> Optional[SourceSignal]:
        async with self.session_factory() as s:
            doc = await _first_document(s, SignalRow, signal_id)
            return SourceSignal.model_validate(doc) if doc is not None else None

    async def save(self, signal: SourceSignal) -> None:
        async with self.session_factory() as s:
            await _upsert(
                s,
                SignalRow,
                signal.id,
                {"source_id": signal.source_id, "document": signal.model_dump(mode="json")},
            )
            await s.commit()


@dataclass(frozen=True)
class SqlWorkItemRepository:
    """SQL implementation of ``WorkItemRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, work_item_id: str) -> Optional[WorkItem]:
        async with self.session_factory() as s:
            doc = await _first_document(s, WorkItemRow, work_item_id)
            return WorkItem.model_validate(doc) if doc is not None else None

    async def save(self, work_item: WorkItem) -> None:
        async with self.session_factory() as s:
            await _upsert(
                s,
                WorkItemRow,
                work_item.id,
                {"workflow_run_id": work_item.workflow_run_id, "document": work_item.model_dump(mode="json")},
            )
            await s.commit()

    async def list_for_run(self, run_id: str) -> List[WorkItem]:
        async with self.session_factory() as s:
            stmt = select(WorkItemRow.document).where(WorkItemRow.workflow_run_id == run_id).order_by(WorkItemRow.seq)
            result = await s.execute(stmt)
            return [WorkItem.model_validate(doc) for doc in result.scalars().all()]


@dataclass(frozen=True)
class SqlApprovalRepository:
    """SQL implementation of ``ApprovalRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, approval_id: str) -> Optional[ApprovalRecord]:
        async with self.session_factory() as s:
            doc = await _first_document(s, ApprovalRow, approval_id)
            return ApprovalRecord.model_validate(doc) if doc is not None else None

    async def save(self, approval: ApprovalRecord) -> None:
        async with self.session_factory() as s:
            await _upsert(
                s,
                ApprovalRow,
                approval.id,
                {
                    "work_item_id": approval.work_item_id,
                    "chain_id": approval.chain_id,
                    "chain_order": approval.chain_order,
                    "decision": approval.decision.value,
                    "document": approval.model_dump(mode="json"),
                },
            )
            await s.commit()

    async def list_for_work_item(self, work_item_id: str) -> List[ApprovalRecord]:
        async with self.session_factory() as s:
            stmt = select(ApprovalRow.document).where(ApprovalRow.work_item_id == work_item_id).order_by(ApprovalRow.seq)
            result = await s.execute(stmt)
            return [ApprovalRecord.model_validate(doc) for doc in result.scalars().all()]

    async def list_for_chain(self, chain_id: str) -> List[ApprovalRecord]:
        async with self.session_factory() as s:
            stmt = (
                select(ApprovalRow.document)
                .where(ApprovalRow.chain_id == chain_id)
                .order_by(ApprovalRow.chain_order, ApprovalRow.seq)
            )
            result = await s.execute(stmt)
            return [ApprovalRecord.model_validate(doc) for doc in result.scalars().all()]

    async def list_pending(self) -> List[ApprovalRecord]:
        async with self.session_factory() as s:
            stmt = (
                select(ApprovalRow.document)
                .where(ApprovalRow.decision == ApprovalDecision.pending.value)
                .order_by(ApprovalRow.seq)
            )
            result = await s.execute(stmt)
            return [ApprovalRecord.model_validate(doc) for doc in result.scalars().all()]


@dataclass(frozen=True)
class SqlWorkflowDefinitionRepository:
    """SQL implementation of ``WorkflowDefinitionRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, definition_id: str) -> Optional[WorkflowDefinition]:
        async with self.session_factory() as s:
            doc = await _first_document(s, WorkflowDefinitionRow, definition_id)
            return WorkflowDefinition.model_validate(doc) if doc is not None else None

    async def save(self, definition: WorkflowDefinition) -> None:
        async with self.session_factory() as s:
            await _upsert(s, WorkflowDefinitionRow, definition.id, {"document": definition.model_dump(mode="json")})
            await s.commit()

    async def list(self) -> List[WorkflowDefinition]:
        async with self.session_factory() as s:
            result = await s.execute(select(WorkflowDefinitionRow.document).order_by(WorkflowDefinitionRow.seq))
            return [WorkflowDefinition.model_validate(doc) for doc in result.scalars().all()]


@dataclass(frozen=True)
class SqlWorkflowRunRepository:
    """SQL implementation of ``WorkflowRunRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, run_id: str) -> Optional[WorkflowRun]:
        async with self.session_factory() as s:
            doc = await _first_document(s, WorkflowRunRow, run_id)
            return WorkflowRun.model_validate(doc) if doc is not None else None

    async def save(self, run: WorkflowRun) -> None:
        async with self.session_factory() as s:
            await _upsert(
                s,
                WorkflowRunRow,
                run.id,
                {
                    "definition_id": run.definition_id,
                    "status": run.status.value,
                    "updated_at": run.updated_at,
                    "document": run.model_dump(mode="json"),
                },
            )
            await s.commit()


@dataclass(frozen=True)
class SqlActionLogRepository:
    """SQL implementation of ``ActionLogRepository`` (append-only)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, log: ActionExecutionLog) -> None:
        async with self.session_factory() as s:
            s.add(
                ActionLogRow(
                    id=log.id,
                    workflow_run_id=log.workflow_run_id,
                    document=log.model_dump(mode="json"),
                )
            )
            await s.commit()

    async def list_for_run(self, run_id: str) -> List[ActionExecutionLog]:
        async with self.session_factory() as s:
            stmt = select(ActionLogRow.document).where(ActionLogRow.workflow_run_id == run_id).order_by(ActionLogRow.seq)
            result = await s.execute(stmt)
            return [ActionExecutionLog.model_validate(doc) for doc in result.scalars().all()]


@dataclass(frozen=True)
class SqlTimelineRepository:
    """SQL implementation of ``TimelineRepository`` (append-only)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, event: TimelineEvent) -> TimelineEvent:
        async with self.session_factory() as s:
            s.add(
                TimelineRow(
                    id=event.id,
                    entity_id=event.entity_id,
                    work_item_id=event.work_item_id,
                    event_type=event.event_type.value,
                    document=event.model_dump(mode="json"),
                )
            )
            await s.commit()
        return event

    async def list_for_entity(self, entity_id: str) -> List[TimelineEvent]:
        async with self.session_factory() as s:
            stmt = select(TimelineRow.document).where(TimelineRow.entity_id == entity_id).order_by(TimelineRow.seq)
            result = await s.execute(stmt)
            return [TimelineEvent.model_validate(doc) for doc in result.scalars().all()]

    async def list_for_work_item(self, work_item_id: str) -> List[TimelineEvent]:
        async with self.session_factory() as s:
            stmt = select(TimelineRow.document).where(TimelineRow.work_item_id == work_item_id).order_by(TimelineRow.seq)
            result = await s.execute(stmt)
            return [TimelineEvent.model_validate(doc) for doc in result.scalars().all()]

    async def list(self) -> List[TimelineEvent]:
        async with self.session_factory() as s:
            result = await s.execute(select(TimelineRow.document).order_by(TimelineRow.seq))
            return [TimelineEvent.model_validate(doc) for doc in result.scalars().all()]


def build_sql_store(*, session_factory: async_sessionmaker[AsyncSession]) -> GraphStore:
    """Build a ``GraphStore`` from a session factory."""
    return GraphStore(
        entities=SqlEntityRepository(session_factory=session_factory),
        relationships=SqlRelationshipRepository(session_factory=session_factory),
        signals=SqlSignalRepository(session_factory=session_factory),
        work_items=SqlWorkItemRepository(session_factory=session_factory),
        approvals=SqlApprovalRepository(session_factory=session_factory),
        definitions=SqlWorkflowDefinitionRepository(session_factory=session_factory),
        runs=SqlWorkflowRunRepository(session_factory=session_factory),
        action_logs=SqlActionLogRepository(session_factory=session_factory),
        timeline=SqlTimelineRepository(session_factory=session_factory),
    )
