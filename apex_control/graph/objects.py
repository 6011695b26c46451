"""Direct mutations of canonical entities.

``ObjectService`` covers the writes that do not come from reconciliation:
patching fields, manually overriding a field with an expiry, and linking two
entities. Each write checks the access policy first and appends exactly one
timeline event.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from ..access import AccessPolicy, can_write_field
from ..core.errors import InvalidState, NotFound, PermissionDenied
from ..core.models.domain import (
    Actor,
    Capability,
    Entity,
    FieldRestriction,
    FieldValue,
    ProvenanceEntry,
    Relationship,
    RelationshipType,
    TimelineEntityType,
    TimelineEvent,
    TimelineEventType,
    as_utc,
)
from .locks import entity_key
from .store import GraphStore

logger = logging.getLogger(__name__)

MANUAL_OVERRIDE_SOURCE = "manual-override"


class ObjectService:
    """Field patches, manual overrides and relationships for graph entities."""

    def __init__(self, *, store: GraphStore, access: AccessPolicy) -> None:
        self._store = store
        self._access = access

    def _require_update(self, actor: Actor) -> None:
        if not self._access.can(actor.role, Capability.object_update):
            raise PermissionDenied(actor.id, "object:update is required")

    async def _load(self, entity_id: str) -> Entity:
        entity = await self._store.entities.get(entity_id)
        if entity is None:
            raise NotFound("Entity", entity_id)
        return entity

    async def update_fields(
        self,
        entity_id: str,
        fields: Dict[str, FieldValue],
        actor: Actor,
        restrictions: Iterable[FieldRestriction] = (),
    ) -> Entity:
        """
        Patch entity fields.

        Args:
            entity_id: The entity to patch.
            fields: New values keyed by field name.
            actor: The caller; needs ``object:update`` and write access to every field.
            restrictions: Field restrictions to enforce.

        Returns:
            The updated entity.

        Raises:
            PermissionDenied: The actor may not update the object or one of the fields.
            NotFound: The entity does not exist.
        """
        self._require_update(actor)
        restrictions = list(restrictions)
        async with self._store.locks.hold(entity_key(entity_id)):
            entity = await self._load(entity_id)
            for name in fields:
                if not can_write_field(entity.type, name, actor, restrictions):
                    raise PermissionDenied(actor.id, f"field '{name}' is not writable for role {actor.role.value}")

            before = {name: entity.fields.get(name) for name in fields}
            entity.fields.update(fields)
            entity.updated_at = datetime.now(timezone.utc)
            await self._store.entities.save(entity)
            await self._store.timeline.append(
                TimelineEvent(
                    tenant_id=entity.tenant_id,
                    workspace_id=entity.workspace_id,
                    entity_type=TimelineEntityType.object,
                    entity_id=entity.id,
                    event_type=TimelineEventType.object_updated,
                    actor=actor.id,
                    payload={"before": before, "after": dict(fields)},
                )
            )
        logger.debug(f"Entity {entity_id} updated by {actor.id}: {sorted(fields)}")
        return entity

    async def override_field(
        self,
        entity_id: str,
        field: str,
        value: FieldValue,
        actor: Actor,
        reason: str,
        override_until: Optional[datetime] = None,
        restrictions: Iterable[FieldRestriction] = (),
    ) -> Entity:
        """
        Pin a field to a manually chosen value.

        The override is recorded as a provenance entry from the
        ``manual-override`` source with confidence 1.

        Raises:
            PermissionDenied: The actor may not write the field.
            InvalidState: ``override_until`` is not in the future.
            NotFound: The entity does not exist.
        """
        self._require_update(actor)
        now = datetime.now(timezone.utc)
        if override_until is not None:
            override_until = as_utc(override_until)
            if override_until <= now:
                raise InvalidState("override_until must be in the future")

        async with self._store.locks.hold(entity_key(entity_id)):
            entity = await self._load(entity_id)
            if not can_write_field(entity.type, field, actor, restrictions):
                raise PermissionDenied(actor.id, f"field '{field}' is not writable for role {actor.role.value}")

            previous = entity.fields.get(field)
            entity.fields[field] = value
            entity.provenance.setdefault(field, []).append(
                ProvenanceEntry(
                    field=field,
                    source_id=MANUAL_OVERRIDE_SOURCE,
                    signal_id=f"override:{self._store.create_id()}",
                    observed_at=now,
                    confidence=1.0,
                    overridden_by=actor.id,
                    override_reason=reason,
                    override_until=override_until,
                )
            )
            entity.updated_at = now
            await self._store.entities.save(entity)
            await self._store.timeline.append(
                TimelineEvent(
                    tenant_id=entity.tenant_id,
                    workspace_id=entity.workspace_id,
                    entity_type=TimelineEntityType.object,
                    entity_id=entity.id,
                    event_type=TimelineEventType.manual_override,
                    actor=actor.id,
                    reason=reason,
                    payload={
                        "field": field,
                        "previous": previous,
                        "next": value,
                        "override_until": override_until.isoformat() if override_until else None,
                    },
                )
            )
        logger.info(f"Field '{field}' of entity {entity_id} overridden by {actor.id}")
        return entity

    async def link(
        self,
        from_id: str,
        to_id: str,
        relationship_type: RelationshipType,
        actor: Actor,
    ) -> Relationship:
        """Create a directed relationship between two existing entities."""
        self._require_update(actor)
        source = await self._load(from_id)
        await self._load(to_id)

        relationship = Relationship(
            id=self._store.create_id(),
            tenant_id=source.tenant_id,
            workspace_id=source.workspace_id,
            type=relationship_type,
            from_object_id=from_id,
            to_object_id=to_id,
            created_by=actor.id,
        )
        await self._store.relationships.save(relationship)
        await self._store.timeline.append(
            TimelineEvent(
                tenant_id=relationship.tenant_id,
                workspace_id=relationship.workspace_id,
                entity_type=TimelineEntityType.relationship,
                entity_id=relationship.id,
                event_type=TimelineEventType.relationship_created,
                actor=actor.id,
                payload={"from": from_id, "to": to_id, "type": relationship_type.value},
            )
        )
        return relationship
