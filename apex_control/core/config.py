"""
Control plane settings.

``Settings`` reads every ``APEX_*`` variable from the process environment or a
local ``.env`` file through pydantic-settings.

Engine-facing configuration is grouped into small domain models
(``ReconciliationConfig``, ``WorkflowConfig``, ``AccessPolicyConfig``) so the
engines can be constructed in tests without touching the environment.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.base import BaseSchema
from .models.domain.enums import Capability, FailedRunPolicy, UserRole

# =====================================================================
# Engine Configuration Models
# =====================================================================


class ReconciliationConfig(BaseSchema):
    """
    Scoring constants for signal-to-entity matching.

    The defaults are the canonical matching rules; changing them changes which
    signals merge.
    """

    merge_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    candidate_floor: float = Field(default=0.4, ge=0.0, le=1.0)
    high_weight: float = Field(default=0.8, ge=0.0, le=1.0)
    fallback_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    score_precision: int = Field(default=6, ge=1, le=12)


class WorkflowConfig(BaseSchema):
    """
    Run engine behaviour for the open lifecycle questions.

    - ``failed_run_policy``: whether ``advance_run`` may re-attempt the failed step.
    - ``approval_ttl_seconds``: when set, approvals carry ``expires_at`` and can be
      swept by ``escalate_expired_approvals``.
    """

    failed_run_policy: FailedRunPolicy = FailedRunPolicy.resume_from_step
    approval_ttl_seconds: Optional[float] = Field(default=None, gt=0.0)
    escalation_ttl_seconds: float = Field(default=86400.0, gt=0.0)
    high_risk_approver_id: str = "security-approver"


class AccessPolicyConfig(BaseSchema):
    """
    Role configuration for the access policy evaluator.

    ``role_capabilities`` overrides the built-in matrix per role; roles absent
    from the mapping keep their default capabilities.
    """

    role_capabilities: Dict[UserRole, Set[Capability]] = Field(default_factory=dict)
    approver_override_roles: Set[UserRole] = Field(
        default_factory=lambda: {UserRole.it_admin, UserRole.security_analyst, UserRole.finance}
    )


class IdempotencyConfig(BaseSchema):
    """
    Bounds of the service-level replay cache.

    ``max_size`` of 0 keeps every result; otherwise the oldest entry is evicted
    first. ``ttl_seconds`` drops a result once it is older than that.
    """

    max_size: int = Field(default=10_000, ge=0)
    ttl_seconds: Optional[float] = Field(default=3600.0, gt=0.0)


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Environment-backed settings for one control plane process.

    Field names are the Python attributes; the ``APEX_*`` aliases are the
    environment variable names. The grouped properties at the bottom hand each
    engine its own config model.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # Logging Configuration
    # =====================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="APEX_LOG_LEVEL",
    )
    log_format: str = Field(
        default="detailed",
        description="Log line format (simple, detailed, json)",
        alias="APEX_LOG_FORMAT",
    )
    log_file_dir: str = Field(default="logs", description="Directory for the log file", alias="APEX_LOG_FILE_DIR")
    enable_file_logging: bool = Field(
        default=False,
        description="Also write DEBUG logs to <log_file_dir>/apex_control.log",
        alias="APEX_ENABLE_FILE_LOGGING",
    )

    # =====================================================================
    # Database Configuration
    # =====================================================================
    database_url: Optional[str] = Field(
        default=None,
        description="Async SQLAlchemy URL for the durable graph store; unset keeps the volatile store",
        alias="APEX_DATABASE_URL",
    )

    # =====================================================================
    # Reconciliation Configuration
    # =====================================================================
    merge_threshold: float = Field(default=0.75, alias="APEX_MERGE_THRESHOLD")
    candidate_floor: float = Field(default=0.4, alias="APEX_CANDIDATE_FLOOR")
    high_weight: float = Field(default=0.8, alias="APEX_HIGH_WEIGHT")
    fallback_weight: float = Field(default=0.2, alias="APEX_FALLBACK_WEIGHT")

    # =====================================================================
    # Workflow Configuration
    # =====================================================================
    failed_run_policy: FailedRunPolicy = Field(
        default=FailedRunPolicy.resume_from_step,
        alias="APEX_FAILED_RUN_POLICY",
    )
    approval_ttl_seconds: Optional[float] = Field(default=None, alias="APEX_APPROVAL_TTL_SECONDS")
    escalation_ttl_seconds: float = Field(default=86400.0, alias="APEX_ESCALATION_TTL_SECONDS")
    high_risk_approver_id: str = Field(default="security-approver", alias="APEX_HIGH_RISK_APPROVER_ID")

    # =====================================================================
    # Access Configuration
    # =====================================================================
    approver_override_roles: List[UserRole] = Field(
        default_factory=lambda: [UserRole.it_admin, UserRole.security_analyst, UserRole.finance],
        alias="APEX_APPROVER_OVERRIDE_ROLES",
    )

    # =====================================================================
    # Idempotency Configuration
    # =====================================================================
    idempotency_cache_size: int = Field(default=10_000, alias="APEX_IDEMPOTENCY_CACHE_SIZE")
    idempotency_ttl_seconds: Optional[float] = Field(default=3600.0, alias="APEX_IDEMPOTENCY_TTL_SECONDS")

    # =====================================================================
    # Per-engine views
    # =====================================================================

    @property
    def reconciliation(self) -> ReconciliationConfig:
        """Scoring constants for ``ReconciliationEngine``."""
        return ReconciliationConfig(
            merge_threshold=self.merge_threshold,
            candidate_floor=self.candidate_floor,
            high_weight=self.high_weight,
            fallback_weight=self.fallback_weight,
        )

    @property
    def workflow(self) -> WorkflowConfig:
        """Run lifecycle settings for ``WorkflowEngine``."""
        return WorkflowConfig(
            failed_run_policy=self.failed_run_policy,
            approval_ttl_seconds=self.approval_ttl_seconds,
            escalation_ttl_seconds=self.escalation_ttl_seconds,
            high_risk_approver_id=self.high_risk_approver_id,
        )

    @property
    def access(self) -> AccessPolicyConfig:
        """Role settings for ``AccessPolicy``."""
        return AccessPolicyConfig(approver_override_roles=set(self.approver_override_roles))

    @property
    def idempotency(self) -> IdempotencyConfig:
        """Replay cache bounds for ``ControlPlaneService``."""
        return IdempotencyConfig(max_size=self.idempotency_cache_size, ttl_seconds=self.idempotency_ttl_seconds)


settings = Settings()
