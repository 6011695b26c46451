"""Matching keys per object type.

Each rule has two tiers. ``high`` keys are strong identifiers (serial
numbers, worker ids, emails); ``fallback`` keys are weak corroborating
attributes (names, hostnames, status).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from ..core.models.domain import ObjectType


@dataclass(frozen=True)
class KeyRule:
    high: Tuple[str, ...]
    fallback: Tuple[str, ...]


DEFAULT_RULE = KeyRule(high=("id",), fallback=("name",))

RULES: Dict[ObjectType, KeyRule] = {
    ObjectType.person: KeyRule(
        high=("worker_id", "email", "emails"),
        fallback=("legal_name", "start_date", "manager"),
    ),
    ObjectType.identity: KeyRule(high=("provider", "username", "email"), fallback=("status",)),
    ObjectType.device: KeyRule(high=("serial_number", "asset_tag"), fallback=("hostname", "enrollment_id")),
    ObjectType.saas_account: KeyRule(high=("app", "email", "identity_id"), fallback=("status",)),
    ObjectType.cloud_resource: KeyRule(
        high=("provider", "provider_resource_id", "resource_id"),
        fallback=("name", "region"),
    ),
}


def rule_for(object_type: ObjectType) -> KeyRule:
    """Return the key rule for ``object_type``; unlisted types use ``DEFAULT_RULE``."""
    return RULES.get(object_type, DEFAULT_RULE)
