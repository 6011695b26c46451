from __future__ import annotations

"""Approval requests, decisions, chains and expiry.

``ApprovalManager`` owns every write to ``ApprovalRecord``s. It does not move
runs: the run engine asks it to open approvals when a step is gated, and
after a decision it tells the engine whether the gate is now satisfied.

Approval chains
---------------

An approval step whose config lists several ``approvers`` opens one record
per approver sharing a ``chain_id``:

- ``all``: the gate opens once every link is approved.
- ``any``: the first approval opens the gate and the remaining pending links
  are marked ``expired``.

Expiry
------

When ``WorkflowConfig.approval_ttl_seconds`` is set, new approvals carry an
``expires_at``. Nothing expires on its own: callers invoke
``escalate_expired`` to expire overdue approvals and re-request them from a
fallback approver.

Callers hold the owning run's lock around every method except
``escalate_expired``, which takes the run locks itself.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple, Union

from pydantic import Field

from ..access import AccessPolicy
from ..core.config import WorkflowConfig
from ..core.errors import InvalidState, NotFound, PermissionDenied
from ..core.models.base import BaseSchema
from ..core.models.domain import (
    Actor,
    ApprovalChainMode,
    ApprovalDecision,
    ApprovalRecord,
    ApprovalType,
    Capability,
    TimelineEntityType,
    TimelineEvent,
    TimelineEventType,
    WorkflowRun,
    WorkflowStep,
    as_utc,
)
from ..graph.locks import run_key
from ..graph.store import GraphStore

logger = logging.getLogger(__name__)

SUPERSEDED_COMMENT = "Superseded by any-of approval chain decision"
TIMED_OUT_COMMENT = "Timed out and escalated"


def to_approval_type(raw: Any) -> ApprovalType:
    """Parse a step's ``approvalType``; anything unrecognized becomes ``it``."""
    try:
        return ApprovalType(str(raw if raw is not None else ApprovalType.it.value))
    except ValueError:
        return ApprovalType.it


def to_chain_mode(raw: Any) -> ApprovalChainMode:
    try:
        return ApprovalChainMode(str(raw if raw is not None else ApprovalChainMode.all.value))
    except ValueError:
        return ApprovalChainMode.all


@dataclass(frozen=True)
class ApprovalRequest:
    """One approval to open: who decides and in which capacity."""

    type: ApprovalType
    approver_id: str


def requests_for_step(
    step: WorkflowStep,
    *,
    high_risk_gate: bool,
    config: WorkflowConfig,
) -> Tuple[List[ApprovalRequest], Optional[ApprovalChainMode]]:
    """
    Work out which approvals a gated step needs.

    Args:
        step: The step being gated.
        high_risk_gate: True when the step is gated for being high risk
            rather than for being an approval step.
        config: Run engine configuration (default security approver).

    Returns:
        The approvals to open and, for a chain, its mode (``None`` otherwise).
    """
    cfg = step.config
    if high_risk_gate:
        approver_id = str(cfg.get("approverId") or config.high_risk_approver_id)
        return [ApprovalRequest(type=ApprovalType.security, approver_id=approver_id)], None

    approvers = cfg.get("approvers")
    if isinstance(approvers, list) and len(approvers) > 1:
        requests = []
        for entry in approvers:
            raw_type = entry.get("type", cfg.get("approvalType"))
            approval_type = to_approval_type(raw_type)
            approver_id = str(entry.get("approverId") or f"{raw_type or 'it'}-approver")
            requests.append(ApprovalRequest(type=approval_type, approver_id=approver_id))
        return requests, to_chain_mode(cfg.get("chainMode"))

    if isinstance(approvers, list) and approvers:
        entry = approvers[0]
        raw_type = entry.get("type", cfg.get("approvalType"))
        approver_id = entry.get("approverId")
    else:
        raw_type = cfg.get("approvalType")
        approver_id = cfg.get("approverId")
    approval_type = to_approval_type(raw_type)
    return [ApprovalRequest(type=approval_type, approver_id=str(approver_id or f"{raw_type or 'it'}-approver"))], None


class EscalationReport(BaseSchema):
    """Outcome of one ``escalate_expired`` sweep."""

    dry_run: bool
    expired_approval_ids: List[str] = Field(default_factory=list)
    escalated_approval_ids: List[str] = Field(default_factory=list)


class ApprovalManager:
    """Open, decide and escalate approvals."""

    def __init__(self, *, store: GraphStore, access: AccessPolicy, config: WorkflowConfig) -> None:
        self._store = store
        self._access = access
        self._cfg = config

    def _expiry_from(self, now: datetime) -> Optional[datetime]:
        if self._cfg.approval_ttl_seconds is None:
            return None
        return now + timedelta(seconds=self._cfg.approval_ttl_seconds)

    async def _emit(self, approval: ApprovalRecord, event_type: TimelineEventType, actor_id: str, **kw: Any) -> None:
        await self._store.timeline.append(
            TimelineEvent(
                tenant_id=approval.tenant_id,
                workspace_id=approval.workspace_id,
                entity_type=TimelineEntityType.approval,
                entity_id=approval.id,
                event_type=event_type,
                actor=actor_id,
                **kw,
            )
        )

    async def request(
        self,
        run: WorkflowRun,
        step: WorkflowStep,
        requests: List[ApprovalRequest],
        chain_mode: Optional[ApprovalChainMode],
        *,
        actor_id: str,
    ) -> List[ApprovalRecord]:
        """
        Open pending approvals for a gated step.

        Each record gets one ``approval.requested`` event. A non-``None``
        ``chain_mode`` links the records into one chain in request order.
        """
        now = datetime.now(timezone.utc)
        chain_id = self._store.create_id() if chain_mode is not None else None
        opened = []
        for order, req in enumerate(requests):
            approval = ApprovalRecord(
                id=self._store.create_id(),
                tenant_id=run.tenant_id,
                workspace_id=run.workspace_id,
                work_item_id=run.id,
                step_id=step.id,
                type=req.type,
                approver_id=req.approver_id,
                expires_at=self._expiry_from(now),
                chain_id=chain_id,
                chain_mode=chain_mode,
                chain_order=order if chain_id is not None else None,
                created_at=now,
            )
            await self._store.approvals.save(approval)
            await self._emit(
                approval,
                TimelineEventType.approval_requested,
                actor_id,
                reason=step.name,
                work_item_id=run.linked_work_item_id,
                payload={"run_id": run.id, "type": approval.type.value, "approver_id": approval.approver_id},
            )
            opened.append(approval)
        logger.info(
            f"Run {run.id} waiting on {len(opened)} approval(s) for step {step.id}: "
            f"{[a.approver_id for a in opened]}"
        )
        return opened

    async def load_for_decision(self, approval_id: str, actor: Actor) -> ApprovalRecord:
        """Capability check and lookup; run before taking the run lock."""
        if not self._access.can(actor.role, Capability.approval_decide):
            raise PermissionDenied(actor.id, "approval:decide is required")
        approval = await self._store.approvals.get(approval_id)
        if approval is None:
            raise NotFound("Approval", approval_id)
        return approval

    async def decide(
        self,
        approval_id: str,
        actor: Actor,
        decision: Union[ApprovalDecision, str],
        comment: Optional[str] = None,
    ) -> Tuple[ApprovalRecord, bool]:
        """
        Record a decision.

        Returns:
            The decided approval and whether its gate is now satisfied (always
            False for rejections).

        Raises:
            PermissionDenied: Missing ``approval:decide`` or not the assigned approver.
            NotFound: The approval does not exist.
            InvalidState: Already decided, unsupported decision or a rejection without comment.
        """
        approval = await self.load_for_decision(approval_id, actor)
        if not self._access.can_act_as_approver(actor, approval.approver_id):
            raise PermissionDenied(actor.id, f"not the assigned approver of {approval.id}")
        if approval.decision != ApprovalDecision.pending:
            raise InvalidState(f"Approval {approval.id} is already {approval.decision.value}")
        try:
            decided = ApprovalDecision(decision)
        except ValueError:
            raise InvalidState(f"Unsupported approval decision: {decision!r}") from None
        if decided not in (ApprovalDecision.approved, ApprovalDecision.rejected):
            raise InvalidState(f"Unsupported approval decision: {decided.value}")
        if decided == ApprovalDecision.rejected and not (comment or "").strip():
            raise InvalidState("Rejected decisions require a comment")

        approval.decision = decided
        approval.decided_at = datetime.now(timezone.utc)
        approval.decided_by = actor.id
        approval.comment = comment
        await self._store.approvals.save(approval)
        await self._emit(
            approval,
            TimelineEventType.approval_decided,
            actor.id,
            payload={"decision": decided.value, "comment": comment, "run_id": approval.work_item_id},
        )
        logger.info(f"Approval {approval.id} {decided.value} by {actor.id}")

        if decided != ApprovalDecision.approved:
            return approval, False
        return approval, await self._chain_satisfied(approval, actor.id)

    async def _chain_satisfied(self, approval: ApprovalRecord, actor_id: str) -> bool:
        if approval.chain_id is None:
            return True

        links = await self._store.approvals.list_for_chain(approval.chain_id)
        mode = approval.chain_mode or ApprovalChainMode.all
        if mode == ApprovalChainMode.all:
            # Expired links were replaced by an escalated link at the same position.
            live = [link for link in links if link.decision != ApprovalDecision.expired]
            return all(link.decision == ApprovalDecision.approved for link in live)

        if not any(link.decision == ApprovalDecision.approved for link in links):
            return False
        now = datetime.now(timezone.utc)
        for link in links:
            if link.id == approval.id or link.decision != ApprovalDecision.pending:
                continue
            link.decision = ApprovalDecision.expired
            link.decided_at = now
            link.comment = SUPERSEDED_COMMENT
            await self._store.approvals.save(link)
            await self._emit(
                link,
                TimelineEventType.approval_decided,
                actor_id,
                payload={"decision": link.decision.value, "comment": link.comment, "run_id": link.work_item_id},
            )
        return True

    async def escalate_expired(
        self,
        actor: Actor,
        fallback_approver_id: str,
        now: Optional[datetime] = None,
        dry_run: bool = False,
    ) -> EscalationReport:
        """
        Expire overdue pending approvals and re-request them from a fallback approver.

        The replacement keeps the original run, type and chain placement and
        gets a fresh expiry of ``escalation_ttl_seconds``.

        Args:
            actor: The caller; needs ``approval:decide``.
            fallback_approver_id: Approver of the replacement approvals.
            now: Reference time; defaults to the current UTC time. Naive values are read as UTC.
            dry_run: Report what would be escalated without writing anything.
        """
        if not self._access.can(actor.role, Capability.approval_decide):
            raise PermissionDenied(actor.id, "approval:decide is required")
        now = as_utc(now) if now is not None else datetime.now(timezone.utc)

        overdue = [a for a in await self._store.approvals.list_pending() if a.expires_at and a.expires_at <= now]
        report = EscalationReport(dry_run=dry_run)
        for candidate in overdue:
            if dry_run:
                report.expired_approval_ids.append(candidate.id)
                continue
            async with self._store.locks.hold(run_key(candidate.work_item_id)):
                # Re-read under the lock: a decision may have landed meanwhile.
                approval = await self._store.approvals.get(candidate.id)
                if approval is None or approval.decision != ApprovalDecision.pending:
                    continue
                replacement = await self._escalate_one(approval, actor.id, fallback_approver_id, now)
            report.expired_approval_ids.append(approval.id)
            report.escalated_approval_ids.append(replacement.id)

        if report.expired_approval_ids:
            logger.info(
                f"Approval escalation ({'dry-run' if dry_run else 'live'}): "
                f"{len(report.expired_approval_ids)} expired, {len(report.escalated_approval_ids)} escalated"
            )
        return report

    async def _escalate_one(
        self,
        approval: ApprovalRecord,
        actor_id: str,
        fallback_approver_id: str,
        now: datetime,
    ) -> ApprovalRecord:
        approval.decision = ApprovalDecision.expired
        approval.decided_at = now
        approval.comment = TIMED_OUT_COMMENT
        await self._store.approvals.save(approval)
        await self._emit(
            approval,
            TimelineEventType.approval_decided,
            actor_id,
            payload={"decision": approval.decision.value, "comment": approval.comment, "run_id": approval.work_item_id},
        )

        replacement = ApprovalRecord(
            id=self._store.create_id(),
            tenant_id=approval.tenant_id,
            workspace_id=approval.workspace_id,
            work_item_id=approval.work_item_id,
            step_id=approval.step_id,
            type=approval.type,
            approver_id=fallback_approver_id,
            comment=f"Escalated from {approval.id}",
            expires_at=now + timedelta(seconds=self._cfg.escalation_ttl_seconds),
            chain_id=approval.chain_id,
            chain_mode=approval.chain_mode,
            chain_order=approval.chain_order,
            created_at=now,
        )
        await self._store.approvals.save(replacement)
        await self._emit(
            replacement,
            TimelineEventType.approval_requested,
            actor_id,
            reason="Escalated after approval timeout",
            payload={
                "previous_approval_id": approval.id,
                "run_id": approval.work_item_id,
                "type": approval.type.value,
            },
        )
        return replacement
