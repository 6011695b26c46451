"""Candidate scoring for reconciliation.

Everything here is pure: given the same entities (in the same order) and the
same signal, ``find_candidates`` returns the same ranked list.

Scoring
-------

For each tier of the type's ``KeyRule`` the signal's populated key values are
compared with the entity's::

    overlap = |signal values found among entity values| / max(|signal values|, |entity values|)

and combined as ``min(1, high_weight * high + fallback_weight * fallback)``.
The score is rounded to ``score_precision`` decimals so float noise cannot
push a value that should sit exactly on the merge threshold below it.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional, Sequence

from ..core.config import ReconciliationConfig
from ..core.models.domain import Candidate, Entity, SourceSignal
from .rules import KeyRule, rule_for


def normalize(value: Any) -> str:
    """Canonical comparison form: string, trimmed, lower-cased. ``None`` becomes ``""``."""
    return str(value if value is not None else "").strip().lower()


def pick(record: Mapping[str, Any], keys: Iterable[str]) -> List[str]:
    """Normalized values of ``keys`` in ``record``, skipping unpopulated ones."""
    values = [normalize(record.get(key)) for key in keys]
    return [v for v in values if v]


def overlap(left: Sequence[str], right: Sequence[str]) -> float:
    if not left or not right:
        return 0.0
    right_set = set(right)
    matches = sum(1 for item in left if item in right_set)
    return matches / max(len(left), len(right))


def score(
    signal_values: Mapping[str, Any],
    entity_values: Mapping[str, Any],
    rule: KeyRule,
    config: ReconciliationConfig,
) -> float:
    high = overlap(pick(signal_values, rule.high), pick(entity_values, rule.high))
    fallback = overlap(pick(signal_values, rule.fallback), pick(entity_values, rule.fallback))
    raw = min(1.0, config.high_weight * high + config.fallback_weight * fallback)
    return round(raw, config.score_precision)


def conflicting_fields(snapshot: Mapping[str, Any], fields: Mapping[str, Any]) -> List[str]:
    """Snapshot keys present on the entity whose normalized values differ."""
    return [key for key, value in snapshot.items() if key in fields and normalize(fields[key]) != normalize(value)]


def find_candidates(
    entities: Iterable[Entity],
    signal: SourceSignal,
    config: Optional[ReconciliationConfig] = None,
) -> List[Candidate]:
    """
    Rank the entities that plausibly describe the same object as ``signal``.

    Args:
        entities: Existing entities; only those of ``signal.object_type`` are scored.
        signal: The incoming signal.
        config: Scoring constants; defaults to ``ReconciliationConfig()``.

    Returns:
        Candidates scoring at least ``candidate_floor``, best first. Ties keep
        the iteration order of ``entities``.
    """
    cfg = config or ReconciliationConfig()
    rule = rule_for(signal.object_type)

    candidates: List[Candidate] = []
    for entity in entities:
        if entity.type != signal.object_type:
            continue
        confidence = score(signal.snapshot, entity.fields, rule, cfg)
        if confidence < cfg.candidate_floor:
            continue
        candidates.append(
            Candidate(
                entity_id=entity.id,
                confidence=confidence,
                match_reason=f"Matched {signal.object_type.value} using reconciliation keys",
                conflicting_fields=conflicting_fields(signal.snapshot, entity.fields),
            )
        )

    # sorted() is stable
    return sorted(candidates, key=lambda c: c.confidence, reverse=True)


def should_merge(candidates: Sequence[Candidate], config: Optional[ReconciliationConfig] = None) -> bool:
    """True when the top candidate reaches the merge threshold."""
    cfg = config or ReconciliationConfig()
    return bool(candidates) and candidates[0].confidence >= cfg.merge_threshold
