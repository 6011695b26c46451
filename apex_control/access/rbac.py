from __future__ import annotations

"""Role to capability mapping.

``AccessPolicy`` is the authority the engines consult before acting on
behalf of an actor:

- the workflow engine checks ``automation:high-risk`` to decide whether a
  high-risk step may run without a security approval,
- approval decisions require ``approval:decide``,
- object mutations require ``object:update``.

The policy is pure: no state beyond its configuration and no side effects.
"""

from typing import Dict, FrozenSet, Mapping, Optional

from ..core.config import AccessPolicyConfig
from ..core.models.domain import Actor, Capability, UserRole

_C = Capability

DEFAULT_ROLE_CAPABILITIES: Mapping[UserRole, FrozenSet[Capability]] = {
    UserRole.end_user: frozenset({_C.object_view, _C.workflow_run}),
    UserRole.it_agent: frozenset(
        {_C.object_view, _C.object_create, _C.object_update, _C.workflow_run, _C.approval_decide}
    ),
    UserRole.asset_manager: frozenset(
        {_C.object_view, _C.object_create, _C.object_update, _C.workflow_run, _C.approval_decide}
    ),
    UserRole.it_admin: frozenset(Capability),
    UserRole.security_analyst: frozenset(
        {
            _C.object_view,
            _C.object_update,
            _C.workflow_run,
            _C.approval_decide,
            _C.automation_high_risk,
            _C.audit_export,
        }
    ),
    UserRole.finance: frozenset({_C.object_view, _C.approval_decide, _C.audit_export}),
    UserRole.app_owner: frozenset({_C.object_view, _C.approval_decide}),
    UserRole.auditor: frozenset({_C.object_view, _C.audit_export}),
}


def can(role: UserRole, capability: Capability) -> bool:
    """Check a capability against the built-in role matrix."""
    return capability in DEFAULT_ROLE_CAPABILITIES.get(role, frozenset())


class AccessPolicy:
    """Role matrix with per-role overrides.

    Roles listed in ``AccessPolicyConfig.role_capabilities`` replace their
    default capability set; every other role keeps the built-in one.
    """

    def __init__(self, config: Optional[AccessPolicyConfig] = None) -> None:
        self._cfg = config or AccessPolicyConfig()
        matrix: Dict[UserRole, FrozenSet[Capability]] = dict(DEFAULT_ROLE_CAPABILITIES)
        for role, caps in self._cfg.role_capabilities.items():
            matrix[role] = frozenset(caps)
        self._matrix = matrix

    @property
    def config(self) -> AccessPolicyConfig:
        """Return the underlying configuration object."""
        return self._cfg

    def capabilities_for(self, role: UserRole) -> FrozenSet[Capability]:
        return self._matrix.get(role, frozenset())

    def can(self, role: UserRole, capability: Capability) -> bool:
        """
        Decide whether a role holds a capability.

        Args:
            role: The role to check.
            capability: The capability being exercised.

        Returns:
            True when the role's capability set contains ``capability``.
        """
        return capability in self.capabilities_for(role)

    def can_act_as_approver(self, actor: Actor, approver_id: str) -> bool:
        """True if ``actor`` is the assigned approver or holds an override role."""
        return actor.id == approver_id or actor.role in self._cfg.approver_override_roles
