"""Field-level read masking and write checks."""

from __future__ import annotations

from typing import Iterable, List

from ..core.models.domain import Actor, Entity, FieldRestriction, MaskStyle, ObjectType

REDACTED = "[REDACTED]"


def _restrictions_for(object_type: ObjectType, restrictions: Iterable[FieldRestriction]) -> List[FieldRestriction]:
    return [r for r in restrictions if r.object_type == object_type]


def mask_object_for_actor(entity: Entity, actor: Actor, restrictions: Iterable[FieldRestriction]) -> Entity:
    """
    Return a copy of ``entity`` with unreadable fields masked.

    A restriction applies when it targets the entity's type and the actor's
    role is not among its ``read_roles``. ``hidden`` replaces the value with
    ``None``; ``redacted`` replaces it with ``"[REDACTED]"``. Fields absent
    from the entity stay absent. The input entity is never modified.
    """
    masked = entity.model_copy(deep=True)
    for restriction in _restrictions_for(entity.type, restrictions):
        if restriction.field not in masked.fields:
            continue
        if actor.role in restriction.read_roles:
            continue
        masked.fields[restriction.field] = None if restriction.mask_style == MaskStyle.hidden else REDACTED
    return masked


def can_write_field(
    object_type: ObjectType,
    field: str,
    actor: Actor,
    restrictions: Iterable[FieldRestriction],
) -> bool:
    """True unless a restriction on ``(object_type, field)`` excludes the actor's role from writing."""
    for restriction in _restrictions_for(object_type, restrictions):
        if restriction.field == field and actor.role not in restriction.write_roles:
            return False
    return True
