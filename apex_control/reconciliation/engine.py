from __future__ import annotations

"""Entity reconciliation engine.

``ReconciliationEngine`` decides, for each incoming ``SourceSignal``, whether
it describes an existing canonical entity (merge) or a new one (create).

Execution model
---------------

1. Persist the signal.
2. Score every entity of the signal's type (``scoring.find_candidates``).
3. If no candidate reaches ``merge_threshold`` create a new entity whose
   fields are the snapshot, with one provenance entry per field.
4. Otherwise merge into the top candidate: overwrite each snapshot field,
   append a provenance entry per field and emit ``object.updated`` for each
   field whose normalized value changed.

Steps 2-4 run under the object type's lock so concurrent signals of one type
cannot both create the same entity; the merge additionally holds the matched
entity's lock so it serializes with direct object mutations.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from ..core.config import ReconciliationConfig
from ..core.errors import NotFound
from ..core.models.domain import (
    Candidate,
    Entity,
    IngestResult,
    ProvenanceEntry,
    SourceSignal,
    TimelineEntityType,
    TimelineEvent,
    TimelineEventType,
)
from ..graph.locks import entity_key, object_type_key
from ..graph.store import GraphStore
from . import scoring

logger = logging.getLogger(__name__)


def _provenance_for(signal: SourceSignal, field: str) -> ProvenanceEntry:
    return ProvenanceEntry(
        field=field,
        source_id=signal.source_id,
        signal_id=signal.id,
        observed_at=signal.observed_at,
        confidence=signal.confidence,
    )


def _append_provenance(history: List[ProvenanceEntry], entry: ProvenanceEntry) -> None:
    """Insert ``entry`` keeping ``history`` in ``observed_at`` order; ties go last."""
    pos = len(history)
    while pos > 0 and history[pos - 1].observed_at > entry.observed_at:
        pos -= 1
    history.insert(pos, entry)


class ReconciliationEngine:
    """Score signals against canonical entities and apply merge/create."""

    def __init__(self, *, store: GraphStore, config: Optional[ReconciliationConfig] = None) -> None:
        """
        Initialize the ReconciliationEngine.

        Args:
            store: The graph store holding entities, signals and the timeline.
            config: Scoring constants; defaults to the canonical thresholds.
        """
        self._store = store
        self._cfg = config or ReconciliationConfig()

    @property
    def config(self) -> ReconciliationConfig:
        return self._cfg

    async def find_candidates(self, signal: SourceSignal) -> List[Candidate]:
        """Read-only preview of the ranked candidates for ``signal``."""
        entities = await self._store.entities.list_by_type(signal.object_type)
        return scoring.find_candidates(entities, signal, self._cfg)

    async def ingest_signal(self, signal: SourceSignal, actor_id: str) -> IngestResult:
        """
        Persist a signal and merge it into, or create, a canonical entity.

        Args:
            signal: The incoming signal.
            actor_id: Recorded as the actor on emitted timeline events.

        Returns:
            The resulting entity, the ranked candidates and whether it was created.

        Raises:
            NotFound: The top candidate disappeared before the merge was written.
        """
        await self._store.signals.save(signal)

        async with self._store.locks.hold(object_type_key(signal.object_type.value)):
            candidates = await self.find_candidates(signal)

            if not scoring.should_merge(candidates, self._cfg):
                entity = await self._create(signal, actor_id)
                logger.info(
                    f"Signal {signal.id} from {signal.source_id} created {signal.object_type.value} {entity.id} "
                    f"({len(candidates)} candidate(s) below threshold)"
                )
                return IngestResult(entity=entity, candidates=candidates, created=True)

            top = candidates[0]
            async with self._store.locks.hold(entity_key(top.entity_id)):
                entity = await self._merge(signal, top.entity_id, actor_id)
            logger.info(
                f"Signal {signal.id} from {signal.source_id} merged into {entity.id} (confidence={top.confidence})"
            )
            return IngestResult(entity=entity, candidates=candidates, created=False)

    async def _create(self, signal: SourceSignal, actor_id: str) -> Entity:
        now = datetime.now(timezone.utc)
        entity = Entity(
            id=self._store.create_id(),
            tenant_id=signal.tenant_id,
            workspace_id=signal.workspace_id,
            type=signal.object_type,
            fields=dict(signal.snapshot),
            provenance={field: [_provenance_for(signal, field)] for field in signal.snapshot},
            created_at=now,
            updated_at=now,
        )
        await self._store.entities.save(entity)
        await self._store.timeline.append(
            TimelineEvent(
                tenant_id=entity.tenant_id,
                workspace_id=entity.workspace_id,
                entity_type=TimelineEntityType.object,
                entity_id=entity.id,
                event_type=TimelineEventType.object_created,
                actor=actor_id,
                source=signal.source_id,
                payload={"signal_id": signal.id, "object_type": entity.type.value},
            )
        )
        return entity

    async def _merge(self, signal: SourceSignal, entity_id: str, actor_id: str) -> Entity:
        entity = await self._store.entities.get(entity_id)
        if entity is None:
            raise NotFound("Candidate entity", entity_id)

        changes = []
        for field, value in signal.snapshot.items():
            previous = entity.fields.get(field)
            entity.fields[field] = value
            _append_provenance(entity.provenance.setdefault(field, []), _provenance_for(signal, field))
            if scoring.normalize(previous) != scoring.normalize(value):
                changes.append({"field": field, "previous": previous, "next": value})

        entity.updated_at = datetime.now(timezone.utc)
        await self._store.entities.save(entity)

        for change in changes:
            await self._store.timeline.append(
                TimelineEvent(
                    tenant_id=entity.tenant_id,
                    workspace_id=entity.workspace_id,
                    entity_type=TimelineEntityType.object,
                    entity_id=entity.id,
                    event_type=TimelineEventType.object_updated,
                    actor=actor_id,
                    source=signal.source_id,
                    reason="reconciliation",
                    payload=change,
                )
            )
        logger.debug(f"Merged signal {signal.id} into {entity.id}: {len(changes)} changed field(s)")
        return entity
