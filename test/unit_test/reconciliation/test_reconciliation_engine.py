from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from apex_control.core.config import ReconciliationConfig
from apex_control.core.errors import NotFound
from apex_control.core.models.domain import Entity, ObjectType, SourceSignal, TimelineEventType
from apex_control.graph import GraphStore
from apex_control.reconciliation import ReconciliationEngine

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _signal(source_id: str = "mdm", observed_at: datetime = T0, confidence: float = 0.9, **snapshot) -> SourceSignal:
    return SourceSignal(
        source_id=source_id,
        object_type=ObjectType.device,
        external_id=str(snapshot.get("serial_number", "ext")),
        snapshot=snapshot,
        observed_at=observed_at,
        confidence=confidence,
    )


@pytest.fixture
async def seeded(store: GraphStore) -> GraphStore:
    await store.entities.save(
        Entity(id="dev-1", type=ObjectType.device, fields={"serial_number": "SN-001", "asset_tag": "LAP-001"})
    )
    await store.entities.save(
        Entity(id="dev-2", type=ObjectType.device, fields={"serial_number": "SN-999", "asset_tag": "LAP-999"})
    )
    return store


class TestIngestSignal:
    @pytest.mark.asyncio
    async def test_matching_device_is_merged(self, seeded: GraphStore) -> None:
        """A signal carrying both high keys of an existing device merges into it."""
        engine = ReconciliationEngine(store=seeded)
        signal = _signal(serial_number="SN-001", asset_tag="LAP-001", hostname="mbp-01")

        result = await engine.ingest_signal(signal, "system")

        assert result.created is False
        assert result.entity.id == "dev-1"
        assert result.entity.fields["hostname"] == "mbp-01"
        assert await seeded.entities.count() == 2
        assert [c.entity_id for c in result.candidates] == ["dev-1"]

        stored = await seeded.entities.get("dev-1")
        assert stored is not None and stored.fields["hostname"] == "mbp-01"
        assert stored.provenance["hostname"][0].signal_id == signal.id
        assert stored.provenance["hostname"][0].confidence == 0.9

    @pytest.mark.asyncio
    async def test_raw_signal_is_persisted(self, seeded: GraphStore) -> None:
        engine = ReconciliationEngine(store=seeded)
        signal = _signal(serial_number="SN-001", asset_tag="LAP-001")
        await engine.ingest_signal(signal, "system")
        assert await seeded.signals.get(signal.id) == signal

    @pytest.mark.asyncio
    async def test_unmatched_signal_creates_entity(self, seeded: GraphStore) -> None:
        engine = ReconciliationEngine(store=seeded)
        signal = _signal(source_id="cmdb", confidence=0.6, serial_number="SN-123", hostname="new-host")

        result = await engine.ingest_signal(signal, "system")

        assert result.created is True
        assert result.candidates == []
        assert result.entity.fields == {"serial_number": "SN-123", "hostname": "new-host"}
        assert set(result.entity.provenance) == {"serial_number", "hostname"}
        assert all(p[0].source_id == "cmdb" and p[0].confidence == 0.6 for p in result.entity.provenance.values())
        assert await seeded.entities.count() == 3

        events = await seeded.timeline.list_for_entity(result.entity.id)
        assert [e.event_type for e in events] == [TimelineEventType.object_created]
        assert events[0].actor == "system"
        assert events[0].source == "cmdb"
        assert events[0].payload == {"signal_id": signal.id, "object_type": "Device"}

    @pytest.mark.asyncio
    async def test_weak_match_creates_and_reports_candidate(self, seeded: GraphStore) -> None:
        """Only one of two high keys matches: 0.4 is a candidate but below the merge threshold."""
        engine = ReconciliationEngine(store=seeded)
        result = await engine.ingest_signal(_signal(serial_number="SN-001"), "system")

        assert result.created is True
        assert [(c.entity_id, c.confidence) for c in result.candidates] == [("dev-1", pytest.approx(0.4))]

    @pytest.mark.asyncio
    async def test_merge_emits_update_only_for_changed_fields(self, seeded: GraphStore) -> None:
        engine = ReconciliationEngine(store=seeded)
        await engine.ingest_signal(_signal(serial_number="sn-001 ", asset_tag="LAP-001", hostname="mbp-01"), "sync")

        events = await seeded.timeline.list_for_entity("dev-1")
        assert [e.event_type for e in events] == [TimelineEventType.object_updated]
        assert events[0].payload == {"field": "hostname", "previous": None, "next": "mbp-01"}
        assert events[0].reason == "reconciliation"

    @pytest.mark.asyncio
    async def test_merge_bumps_updated_at(self, seeded: GraphStore) -> None:
        before = await seeded.entities.get("dev-1")
        engine = ReconciliationEngine(store=seeded)
        result = await engine.ingest_signal(_signal(serial_number="SN-001", asset_tag="LAP-001"), "sync")
        assert before is not None
        assert result.entity.updated_at >= before.updated_at


class TestProvenance:
    @pytest.mark.asyncio
    async def test_provenance_is_append_only_and_ordered(self, store: GraphStore) -> None:
        """N ingests touching a field leave N provenance entries in observed_at order."""
        engine = ReconciliationEngine(store=store)
        keys = {"serial_number": "SN-7", "asset_tag": "TAG-7"}
        times = [T0 + timedelta(hours=2), T0, T0 + timedelta(hours=5), T0 + timedelta(hours=1)]

        entity_id: Optional[str] = None
        for i, observed_at in enumerate(times):
            result = await engine.ingest_signal(
                _signal(source_id=f"src-{i}", observed_at=observed_at, hostname=f"host-{i}", **keys), "sync"
            )
            entity_id = entity_id or result.entity.id
            assert result.entity.id == entity_id

        entity = await store.entities.get(entity_id)
        assert entity is not None
        history = entity.provenance["hostname"]
        assert len(history) == len(times)
        assert [p.observed_at for p in history] == sorted(times)
        assert sorted(p.source_id for p in history) == ["src-0", "src-1", "src-2", "src-3"]
        # The last applied signal wins the value.
        assert entity.fields["hostname"] == "host-3"

    @pytest.mark.asyncio
    async def test_earlier_entries_are_not_rewritten(self, store: GraphStore) -> None:
        engine = ReconciliationEngine(store=store)
        first = await engine.ingest_signal(_signal(serial_number="SN-8", asset_tag="T8", hostname="a"), "sync")
        original = first.entity.provenance["hostname"][0]

        await engine.ingest_signal(_signal(serial_number="SN-8", asset_tag="T8", hostname="b", confidence=0.3), "sync")

        entity = await store.entities.get(first.entity.id)
        assert entity is not None
        assert entity.provenance["hostname"][0] == original
        assert entity.provenance["hostname"][1].confidence == 0.3

    @pytest.mark.asyncio
    async def test_naive_observed_at_merges_after_aware_history(self, store: GraphStore) -> None:
        """Naive timestamps are read as UTC and order against aware provenance."""
        engine = ReconciliationEngine(store=store)
        keys = {"serial_number": "SN-1", "asset_tag": "A-1"}
        first = await engine.ingest_signal(_signal(observed_at=T0, hostname="aware", **keys), "sync")

        naive_later = datetime(2030, 1, 1)
        naive_earlier = datetime(2020, 1, 1)
        later = await engine.ingest_signal(_signal(source_id="cmdb", observed_at=naive_later, hostname="n1", **keys), "sync")
        await engine.ingest_signal(_signal(source_id="hris", observed_at=naive_earlier, hostname="n0", **keys), "sync")

        assert later.created is False
        entity = await store.entities.get(first.entity.id)
        assert entity is not None
        history = entity.provenance["hostname"]
        assert [p.source_id for p in history] == ["hris", "mdm", "cmdb"]
        assert all(p.observed_at.tzinfo == timezone.utc for p in history)
        assert history[-1].observed_at == naive_later.replace(tzinfo=timezone.utc)

    def test_models_store_timestamps_as_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        signal = _signal(observed_at=datetime(2026, 3, 1, 14, 0, tzinfo=plus_two), serial_number="SN-1")
        assert signal.observed_at == T0
        assert signal.observed_at.tzinfo == timezone.utc

        entity = Entity(type=ObjectType.device)
        entity.updated_at = datetime(2026, 3, 1, 12, 0)
        assert entity.updated_at == T0


class TestMergeThreshold:
    @pytest.mark.asyncio
    async def test_score_exactly_at_threshold_merges(self, seeded: GraphStore) -> None:
        cfg = ReconciliationConfig(high_weight=0.75, fallback_weight=0.0)
        result = await ReconciliationEngine(store=seeded, config=cfg).ingest_signal(
            _signal(serial_number="SN-001", asset_tag="LAP-001"), "sync"
        )
        assert result.candidates[0].confidence == 0.75
        assert result.created is False

    @pytest.mark.asyncio
    async def test_score_just_below_threshold_creates(self, seeded: GraphStore) -> None:
        cfg = ReconciliationConfig(high_weight=0.7499, fallback_weight=0.0)
        result = await ReconciliationEngine(store=seeded, config=cfg).ingest_signal(
            _signal(serial_number="SN-001", asset_tag="LAP-001"), "sync"
        )
        assert result.candidates[0].confidence == 0.7499
        assert result.created is True


class _VanishingEntities:
    """Entity repository whose ``get`` loses every record after scoring."""

    def __init__(self, inner) -> None:
        self._inner = inner

    async def get(self, entity_id: str):
        return None

    async def save(self, entity) -> None:
        await self._inner.save(entity)

    async def list_by_type(self, object_type):
        return await self._inner.list_by_type(object_type)

    async def count(self) -> int:
        return await self._inner.count()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_vanished_candidate_raises_not_found(self, seeded: GraphStore) -> None:
        broken = dataclasses.replace(seeded, entities=_VanishingEntities(seeded.entities))
        engine = ReconciliationEngine(store=broken)
        with pytest.raises(NotFound):
            await engine.ingest_signal(_signal(serial_number="SN-001", asset_tag="LAP-001"), "sync")

    @pytest.mark.asyncio
    async def test_concurrent_signals_for_new_object_create_once(self, store: GraphStore) -> None:
        engine = ReconciliationEngine(store=store)
        signals = [
            _signal(source_id=f"src-{i}", serial_number="SN-NEW", asset_tag="TAG-NEW", hostname=f"h{i}")
            for i in range(5)
        ]

        results = await asyncio.gather(*(engine.ingest_signal(s, "sync") for s in signals))

        assert [r.created for r in results].count(True) == 1
        assert await store.entities.count() == 1
        entity = await store.entities.get(results[0].entity.id)
        assert entity is not None
        assert len(entity.provenance["hostname"]) == 5

    @pytest.mark.asyncio
    async def test_find_candidates_has_no_side_effects(self, seeded: GraphStore) -> None:
        engine = ReconciliationEngine(store=seeded)
        signal = _signal(serial_number="SN-001", asset_tag="LAP-001")
        await engine.find_candidates(signal)
        assert await seeded.signals.get(signal.id) is None
        assert await seeded.timeline.list() == []
