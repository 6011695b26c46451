"""Baseline workflow definitions.

These are the playbooks a fresh control plane ships with: joiner and leaver
(JML), device return and SaaS access requests. ``seed_definitions`` saves
them into a store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from .core.models.domain import (
    RiskLevel,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowStepType,
    WorkflowTrigger,
    WorkflowTriggerKind,
)
from .graph.store import GraphStore

JOINER_ID = "wf-jml-joiner-v1"
LEAVER_ID = "wf-jml-leaver-v1"
DEVICE_RETURN_ID = "wf-device-return-v1"
SAAS_ACCESS_ID = "wf-saas-access-v1"


def baseline_definitions() -> List[WorkflowDefinition]:
    """Build fresh copies of the baseline definitions."""
    now = datetime.now(timezone.utc)
    return [
        WorkflowDefinition(
            id=JOINER_ID,
            name="JML Joiner - Baseline",
            playbook="JML",
            trigger=WorkflowTrigger(kind=WorkflowTriggerKind.event, value="hris.hire"),
            steps=[
                WorkflowStep(
                    id="create-identity",
                    name="Create identity",
                    type=WorkflowStepType.automation,
                    risk_level=RiskLevel.medium,
                    config={"actionName": "create_identity", "targetSystem": "idp"},
                ),
                WorkflowStep(
                    id="assign-groups",
                    name="Assign baseline groups",
                    type=WorkflowStepType.automation,
                    risk_level=RiskLevel.medium,
                    config={"actionName": "assign_groups", "targetSystem": "idp"},
                ),
                WorkflowStep(
                    id="device-assign",
                    name="Assign or procure device",
                    type=WorkflowStepType.create_work_item,
                    config={"title": "Assign or procure device"},
                ),
                WorkflowStep(
                    id="welcome-notify",
                    name="Send welcome checklist",
                    type=WorkflowStepType.notification,
                    config={"channel": "portal"},
                ),
            ],
            created_at=now,
            published_at=now,
        ),
        WorkflowDefinition(
            id=LEAVER_ID,
            name="JML Leaver - Secure Offboarding",
            playbook="JML",
            trigger=WorkflowTrigger(kind=WorkflowTriggerKind.event, value="hris.termination"),
            steps=[
                WorkflowStep(
                    id="disable-identity",
                    name="Disable identity and sessions",
                    type=WorkflowStepType.automation,
                    risk_level=RiskLevel.high,
                    config={"actionName": "disable_identity", "targetSystem": "idp"},
                ),
                WorkflowStep(
                    id="reclaim-saas",
                    name="Reclaim SaaS access",
                    type=WorkflowStepType.automation,
                    risk_level=RiskLevel.medium,
                    config={"actionName": "deprovision_saas", "targetSystem": "saas"},
                ),
                WorkflowStep(
                    id="recover-device",
                    name="Start device recovery",
                    type=WorkflowStepType.create_work_item,
                    config={"title": "Recover offboarding device"},
                ),
                WorkflowStep(
                    id="manager-approval",
                    name="Finalize offboarding",
                    type=WorkflowStepType.approval,
                    risk_level=RiskLevel.medium,
                    config={"approvalType": "manager"},
                ),
            ],
            created_at=now,
            published_at=now,
        ),
        WorkflowDefinition(
            id=DEVICE_RETURN_ID,
            name="Device Lifecycle - Return",
            playbook="Device Lifecycle",
            trigger=WorkflowTrigger(kind=WorkflowTriggerKind.manual, value="device.return"),
            steps=[
                WorkflowStep(
                    id="create-return-kit",
                    name="Create return kit",
                    type=WorkflowStepType.automation,
                    config={"actionName": "create_shipping_label", "targetSystem": "shipping"},
                ),
                WorkflowStep(
                    id="notify-user",
                    name="Notify user",
                    type=WorkflowStepType.notification,
                    config={"channel": "email"},
                ),
                WorkflowStep(
                    id="wipe-device",
                    name="Wipe and lock device",
                    type=WorkflowStepType.automation,
                    risk_level=RiskLevel.high,
                    config={"actionName": "wipe_lock_device", "targetSystem": "mdm"},
                ),
            ],
            created_at=now,
            published_at=now,
        ),
        WorkflowDefinition(
            id=SAAS_ACCESS_ID,
            name="SaaS Access - Request",
            playbook="SaaS Governance",
            trigger=WorkflowTrigger(kind=WorkflowTriggerKind.manual, value="catalog.saas_access"),
            steps=[
                WorkflowStep(
                    id="approve-request",
                    name="Manager approval",
                    type=WorkflowStepType.approval,
                    risk_level=RiskLevel.medium,
                    config={"approvalType": "manager"},
                ),
                WorkflowStep(
                    id="provision-account",
                    name="Provision SaaS account",
                    type=WorkflowStepType.automation,
                    risk_level=RiskLevel.medium,
                    config={"actionName": "provision_saas_account", "targetSystem": "saas"},
                ),
            ],
            created_at=now,
            published_at=now,
        ),
    ]


async def seed_definitions(store: GraphStore) -> List[WorkflowDefinition]:
    """Save the baseline definitions into ``store`` and return them."""
    definitions = baseline_definitions()
    for definition in definitions:
        await store.definitions.save(definition)
    return definitions
