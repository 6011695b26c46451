from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from apex_control.core.config import WorkflowConfig
from apex_control.core.errors import InvalidState, NotFound, PermissionDenied
from apex_control.core.models.domain import (
    Actor,
    ApprovalChainMode,
    ApprovalDecision,
    ApprovalType,
    RiskLevel,
    TimelineEventType,
    UserRole,
    WorkflowRunStatus,
    WorkflowStepType,
)
from apex_control.graph import GraphStore
from apex_control.workflow import WorkflowDeps, WorkflowEngine, requests_for_step, to_approval_type
from apex_control.workflow.approvals import SUPERSEDED_COMMENT, TIMED_OUT_COMMENT

APPROVAL = WorkflowStepType.approval


def _engine(store: GraphStore, **config) -> WorkflowEngine:
    return WorkflowEngine(deps=WorkflowDeps(store=store, config=WorkflowConfig(**config)))


def _as(actor_id: str, role: UserRole = UserRole.it_agent) -> Actor:
    return Actor(id=actor_id, role=role)


class TestRequestsForStep:
    def test_high_risk_gate_requests_security(self, make_step) -> None:
        step = make_step("s", risk=RiskLevel.high, approvalType="manager")
        requests, mode = requests_for_step(step, high_risk_gate=True, config=WorkflowConfig())
        assert [(r.type, r.approver_id) for r in requests] == [(ApprovalType.security, "security-approver")]
        assert mode is None

    def test_high_risk_gate_honours_configured_approver(self, make_step) -> None:
        step = make_step("s", risk=RiskLevel.high, approverId="soc-1")
        requests, _ = requests_for_step(step, high_risk_gate=True, config=WorkflowConfig(high_risk_approver_id="x"))
        assert requests[0].approver_id == "soc-1"

    def test_single_approval(self, make_step) -> None:
        requests, mode = requests_for_step(
            make_step("s", APPROVAL, approvalType="manager"), high_risk_gate=False, config=WorkflowConfig()
        )
        assert [(r.type, r.approver_id) for r in requests] == [(ApprovalType.manager, "manager-approver")]
        assert mode is None

    def test_unrecognized_type_defaults_to_it(self, make_step) -> None:
        requests, _ = requests_for_step(make_step("s", APPROVAL, approvalType="cfo"), high_risk_gate=False, config=WorkflowConfig())
        assert requests[0].type == ApprovalType.it
        assert to_approval_type(None) == ApprovalType.it
        assert to_approval_type("app-owner") == ApprovalType.app_owner

    def test_chain(self, make_step) -> None:
        step = make_step(
            "s",
            APPROVAL,
            approvers=[{"type": "manager", "approverId": "m-1"}, {"type": "finance"}],
            chainMode="any",
        )
        requests, mode = requests_for_step(step, high_risk_gate=False, config=WorkflowConfig())
        assert [(r.type, r.approver_id) for r in requests] == [
            (ApprovalType.manager, "m-1"),
            (ApprovalType.finance, "finance-approver"),
        ]
        assert mode == ApprovalChainMode.any

    def test_single_entry_approvers_list_is_not_a_chain(self, make_step) -> None:
        step = make_step("s", APPROVAL, approvers=[{"type": "security", "approverId": "sec-1"}])
        requests, mode = requests_for_step(step, high_risk_gate=False, config=WorkflowConfig())
        assert [(r.type, r.approver_id) for r in requests] == [(ApprovalType.security, "sec-1")]
        assert mode is None


@pytest.fixture
async def waiting(store: GraphStore, agent: Actor, make_step, make_definition):
    """A run suspended on a single manager approval, followed by one automation step."""
    await store.definitions.save(
        make_definition([make_step("approve", APPROVAL, approvalType="manager"), make_step("provision")])
    )
    engine = _engine(store)
    run = await engine.start_run("wf-test", actor=agent)
    (approval,) = await store.approvals.list_for_work_item(run.id)
    return engine, run, approval


class TestDecideApproval:
    @pytest.mark.asyncio
    async def test_request_is_recorded(self, store: GraphStore, waiting) -> None:
        _, run, approval = waiting
        assert run.status == WorkflowRunStatus.waiting_approval
        assert approval.decision == ApprovalDecision.pending
        assert approval.type == ApprovalType.manager
        assert approval.approver_id == "manager-approver"
        assert approval.step_id == "approve"

        events = await store.timeline.list_for_entity(approval.id)
        assert [e.event_type for e in events] == [TimelineEventType.approval_requested]
        assert events[0].reason == "Step approve"

    @pytest.mark.asyncio
    async def test_capability_is_required(self, waiting, end_user: Actor) -> None:
        engine, _, approval = waiting
        with pytest.raises(PermissionDenied):
            await engine.decide_approval(approval.id, end_user, "approved")

    @pytest.mark.asyncio
    async def test_only_assigned_approver_or_override_role(self, store: GraphStore, waiting, agent: Actor) -> None:
        engine, run, approval = waiting
        with pytest.raises(PermissionDenied):
            await engine.decide_approval(approval.id, agent, "approved")

        decided = await engine.decide_approval(approval.id, _as("manager-approver"), "approved")
        assert decided.decided_by == "manager-approver"
        resumed = await store.runs.get(run.id)
        assert resumed is not None and resumed.status == WorkflowRunStatus.completed

    @pytest.mark.asyncio
    async def test_missing_approval(self, waiting, admin: Actor) -> None:
        engine, _, _ = waiting
        with pytest.raises(NotFound):
            await engine.decide_approval("nope", admin, "approved")

    @pytest.mark.asyncio
    async def test_decision_is_recorded_with_event(self, store: GraphStore, waiting, admin: Actor) -> None:
        engine, run, approval = waiting
        decided = await engine.decide_approval(approval.id, admin, ApprovalDecision.approved, "ok")

        assert decided.decision == ApprovalDecision.approved
        assert decided.comment == "ok"
        assert decided.decided_at is not None
        events = await store.timeline.list_for_entity(approval.id)
        assert [e.event_type for e in events] == [
            TimelineEventType.approval_requested,
            TimelineEventType.approval_decided,
        ]
        assert events[1].payload == {"decision": "approved", "comment": "ok", "run_id": run.id}

    @pytest.mark.asyncio
    async def test_rejection_requires_comment(self, waiting, admin: Actor) -> None:
        engine, _, approval = waiting
        with pytest.raises(InvalidState):
            await engine.decide_approval(approval.id, admin, "rejected")
        with pytest.raises(InvalidState):
            await engine.decide_approval(approval.id, admin, "rejected", "   ")

    @pytest.mark.asyncio
    async def test_rejection_leaves_run_waiting(self, store: GraphStore, waiting, admin: Actor) -> None:
        engine, run, approval = waiting
        decided = await engine.decide_approval(approval.id, admin, "rejected", "Not justified")

        assert decided.decision == ApprovalDecision.rejected
        after = await store.runs.get(run.id)
        assert after is not None
        assert after.status == WorkflowRunStatus.waiting_approval
        assert after.current_step_index == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("decision", ["expired", "pending", "maybe"])
    async def test_unsupported_decisions(self, waiting, admin: Actor, decision: str) -> None:
        engine, _, approval = waiting
        with pytest.raises(InvalidState):
            await engine.decide_approval(approval.id, admin, decision, "c")

    @pytest.mark.asyncio
    async def test_decisions_are_final(self, waiting, admin: Actor) -> None:
        engine, _, approval = waiting
        await engine.decide_approval(approval.id, admin, "rejected", "no")
        with pytest.raises(InvalidState):
            await engine.decide_approval(approval.id, admin, "approved")

    @pytest.mark.asyncio
    async def test_concurrent_approvals_resume_once(self, store: GraphStore, waiting, admin: Actor) -> None:
        engine, run, approval = waiting
        other_admin = _as("admin-2", UserRole.it_admin)

        results = await asyncio.gather(
            engine.decide_approval(approval.id, admin, "approved"),
            engine.decide_approval(approval.id, other_admin, "approved"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, InvalidState) for r in results) == 1
        after = await store.runs.get(run.id)
        assert after is not None
        assert after.status == WorkflowRunStatus.completed
        assert after.current_step_index == 2
        executed = [e for e in await store.timeline.list_for_entity(run.id) if e.event_type == TimelineEventType.workflow_step_executed]
        assert [e.payload["step_id"] for e in executed] == ["provision"]


async def _chain_run(store: GraphStore, actor: Actor, make_step, make_definition, mode: str):
    await store.definitions.save(
        make_definition(
            [
                make_step(
                    "approve",
                    APPROVAL,
                    approvers=[
                        {"type": "manager", "approverId": "mgr"},
                        {"type": "app-owner", "approverId": "owner"},
                    ],
                    chainMode=mode,
                ),
                make_step("provision"),
            ]
        )
    )
    engine = _engine(store)
    run = await engine.start_run("wf-test", actor=actor)
    links = await store.approvals.list_for_work_item(run.id)
    return engine, run, links


class TestApprovalChains:
    @pytest.mark.asyncio
    async def test_chain_links_share_chain_id_in_order(self, store, agent, make_step, make_definition) -> None:
        _, run, links = await _chain_run(store, agent, make_step, make_definition, "all")
        assert len(links) == 2
        assert links[0].chain_id is not None and links[0].chain_id == links[1].chain_id
        assert [link.chain_order for link in links] == [0, 1]
        assert [link.approver_id for link in links] == ["mgr", "owner"]
        assert all(link.chain_mode == ApprovalChainMode.all for link in links)
        assert run.status == WorkflowRunStatus.waiting_approval

    @pytest.mark.asyncio
    async def test_all_mode_waits_for_every_link(self, store, agent, make_step, make_definition) -> None:
        engine, run, links = await _chain_run(store, agent, make_step, make_definition, "all")

        await engine.decide_approval(links[0].id, _as("mgr"), "approved")
        mid = await store.runs.get(run.id)
        assert mid is not None and mid.status == WorkflowRunStatus.waiting_approval

        await engine.decide_approval(links[1].id, _as("owner"), "approved")
        done = await store.runs.get(run.id)
        assert done is not None and done.status == WorkflowRunStatus.completed

    @pytest.mark.asyncio
    async def test_all_mode_rejection_blocks(self, store, agent, make_step, make_definition) -> None:
        engine, run, links = await _chain_run(store, agent, make_step, make_definition, "all")
        await engine.decide_approval(links[0].id, _as("mgr"), "rejected", "no budget")
        await engine.decide_approval(links[1].id, _as("owner"), "approved")
        after = await store.runs.get(run.id)
        assert after is not None and after.status == WorkflowRunStatus.waiting_approval

    @pytest.mark.asyncio
    async def test_any_mode_first_approval_wins(self, store, agent, make_step, make_definition) -> None:
        engine, run, links = await _chain_run(store, agent, make_step, make_definition, "any")

        await engine.decide_approval(links[1].id, _as("owner"), "approved")

        after = await store.runs.get(run.id)
        assert after is not None and after.status == WorkflowRunStatus.completed
        superseded = await store.approvals.get(links[0].id)
        assert superseded is not None
        assert superseded.decision == ApprovalDecision.expired
        assert superseded.comment == SUPERSEDED_COMMENT
        with pytest.raises(InvalidState):
            await engine.decide_approval(links[0].id, _as("mgr"), "approved")


@pytest.fixture
async def expiring(store: GraphStore, agent: Actor, make_step, make_definition):
    await store.definitions.save(
        make_definition([make_step("approve", APPROVAL, approvalType="finance"), make_step("provision")])
    )
    engine = _engine(store, approval_ttl_seconds=60, escalation_ttl_seconds=3600)
    run = await engine.start_run("wf-test", actor=agent)
    (approval,) = await store.approvals.list_for_work_item(run.id)
    return engine, run, approval


class TestEscalation:
    @pytest.mark.asyncio
    async def test_ttl_sets_expiry(self, expiring) -> None:
        _, _, approval = expiring
        assert approval.expires_at is not None
        assert approval.expires_at - approval.created_at == timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_nothing_is_due_before_expiry(self, expiring, admin: Actor) -> None:
        engine, _, approval = expiring
        report = await engine.escalate_expired_approvals(admin, "fallback", now=approval.created_at)
        assert report.expired_approval_ids == []
        assert report.escalated_approval_ids == []

    @pytest.mark.asyncio
    async def test_dry_run_reports_without_writing(self, store: GraphStore, expiring, admin: Actor) -> None:
        engine, _, approval = expiring
        later = approval.created_at + timedelta(minutes=5)

        report = await engine.escalate_expired_approvals(admin, "fallback", now=later, dry_run=True)

        assert report.dry_run is True
        assert report.expired_approval_ids == [approval.id]
        assert report.escalated_approval_ids == []
        unchanged = await store.approvals.get(approval.id)
        assert unchanged is not None and unchanged.decision == ApprovalDecision.pending

    @pytest.mark.asyncio
    async def test_escalation_expires_and_reassigns(self, store: GraphStore, expiring, admin: Actor) -> None:
        engine, run, approval = expiring
        later = approval.created_at + timedelta(minutes=5)

        report = await engine.escalate_expired_approvals(admin, "fallback", now=later)

        assert report.expired_approval_ids == [approval.id]
        (replacement_id,) = report.escalated_approval_ids
        expired = await store.approvals.get(approval.id)
        assert expired is not None
        assert expired.decision == ApprovalDecision.expired
        assert expired.comment == TIMED_OUT_COMMENT

        replacement = await store.approvals.get(replacement_id)
        assert replacement is not None
        assert replacement.decision == ApprovalDecision.pending
        assert replacement.approver_id == "fallback"
        assert replacement.type == ApprovalType.finance
        assert replacement.work_item_id == run.id
        assert replacement.expires_at == later + timedelta(hours=1)

        requested = await store.timeline.list_for_entity(replacement_id)
        assert [e.event_type for e in requested] == [TimelineEventType.approval_requested]
        assert requested[0].payload["previous_approval_id"] == approval.id

        # The fallback approver can now resume the run.
        await engine.decide_approval(replacement_id, _as("fallback"), "approved")
        done = await store.runs.get(run.id)
        assert done is not None and done.status == WorkflowRunStatus.completed

    @pytest.mark.asyncio
    async def test_naive_reference_time_is_read_as_utc(self, expiring, admin: Actor) -> None:
        engine, _, approval = expiring
        naive_later = (approval.created_at + timedelta(minutes=5)).replace(tzinfo=None)

        report = await engine.escalate_expired_approvals(admin, "fallback", now=naive_later, dry_run=True)

        assert report.expired_approval_ids == [approval.id]

    @pytest.mark.asyncio
    async def test_expired_approval_cannot_be_decided(self, expiring, admin: Actor) -> None:
        engine, _, approval = expiring
        await engine.escalate_expired_approvals(admin, "fallback", now=approval.created_at + timedelta(minutes=5))
        with pytest.raises(InvalidState):
            await engine.decide_approval(approval.id, admin, "approved")

    @pytest.mark.asyncio
    async def test_escalation_requires_capability(self, expiring, end_user: Actor) -> None:
        engine, _, _ = expiring
        with pytest.raises(PermissionDenied):
            await engine.escalate_expired_approvals(end_user, "fallback", now=datetime.now(timezone.utc))

    @pytest.mark.asyncio
    async def test_escalated_link_keeps_all_mode_chain(self, store, agent, admin, make_step, make_definition) -> None:
        await store.definitions.save(
            make_definition(
                [
                    make_step(
                        "approve",
                        APPROVAL,
                        approvers=[{"approverId": "mgr"}, {"approverId": "owner"}],
                        chainMode="all",
                    )
                ]
            )
        )
        engine = _engine(store, approval_ttl_seconds=60)
        run = await engine.start_run("wf-test", actor=agent)
        first, second = await store.approvals.list_for_work_item(run.id)

        await engine.decide_approval(first.id, _as("mgr"), "approved")
        report = await engine.escalate_expired_approvals(admin, "deputy", now=second.created_at + timedelta(minutes=2))
        (replacement_id,) = report.escalated_approval_ids
        replacement = await store.approvals.get(replacement_id)
        assert replacement is not None
        assert replacement.chain_id == second.chain_id and replacement.chain_order == 1

        await engine.decide_approval(replacement_id, _as("deputy"), "approved")
        done = await store.runs.get(run.id)
        assert done is not None and done.status == WorkflowRunStatus.completed
