from __future__ import annotations

import json
import logging
import sys

import pytest
from pydantic import ValidationError

from apex_control.core import get_logger, setup_logging
from apex_control.core.config import ReconciliationConfig, Settings, WorkflowConfig
from apex_control.core.errors import ExecutionFailure, InvalidState, NotFound, PermissionDenied, ControlPlaneError
from apex_control.core.logging_config import DETAILED_FORMAT, SIMPLE_FORMAT, JsonFormatter, _formatter_for
from apex_control.core.models.domain import Actor, FailedRunPolicy, UserRole, WorkflowRun, WorkflowRunStatus


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings()
        assert s.merge_threshold == 0.75
        assert s.candidate_floor == 0.4
        assert s.failed_run_policy == FailedRunPolicy.resume_from_step
        assert s.approval_ttl_seconds is None

    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APEX_FAILED_RUN_POLICY", "terminal")
        monkeypatch.setenv("APEX_APPROVAL_TTL_SECONDS", "60")
        monkeypatch.setenv("APEX_HIGH_RISK_APPROVER_ID", "soc-lead")
        monkeypatch.setenv("APEX_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        monkeypatch.setenv("APEX_ESCALATION_TTL_SECONDS", "3600")
        monkeypatch.setenv("APEX_HIGH_WEIGHT", "0.6")

        s = Settings()

        assert s.database_url == "sqlite+aiosqlite:///:memory:"
        wf = s.workflow
        assert wf.failed_run_policy == FailedRunPolicy.terminal
        assert wf.approval_ttl_seconds == 60
        assert wf.high_risk_approver_id == "soc-lead"
        assert wf.escalation_ttl_seconds == 3600
        assert s.reconciliation.high_weight == 0.6
        assert s.reconciliation.fallback_weight == 0.2

    def test_grouped_views(self) -> None:
        s = Settings(APEX_MERGE_THRESHOLD=0.9)
        assert s.reconciliation.merge_threshold == 0.9
        assert UserRole.it_admin in s.access.approver_override_roles

    def test_idempotency_view(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APEX_IDEMPOTENCY_CACHE_SIZE", "25")
        s = Settings()
        assert s.idempotency.max_size == 25
        assert s.idempotency.ttl_seconds == 3600.0

    def test_engine_configs_validate_ranges(self) -> None:
        with pytest.raises(ValidationError):
            ReconciliationConfig(merge_threshold=1.5)
        with pytest.raises(ValidationError):
            WorkflowConfig(approval_ttl_seconds=0)


class TestErrors:
    def test_hierarchy(self) -> None:
        for err in (NotFound("Run", "r1"), InvalidState("x"), PermissionDenied("a", "no"), ExecutionFailure("s", "boom")):
            assert isinstance(err, ControlPlaneError)

    def test_messages_carry_context(self) -> None:
        nf = NotFound("WorkflowRun", "r1")
        assert nf.kind == "WorkflowRun" and nf.record_id == "r1"
        assert "r1" in str(nf)

        denied = PermissionDenied("user-1", "approval:decide is required")
        assert denied.actor_id == "user-1"
        assert "approval:decide" in str(denied)

        failure = ExecutionFailure("step-1", "boom", action_log_id="log-1")
        assert failure.step_id == "step-1" and failure.action_log_id == "log-1"


class TestDomainModels:
    def test_extra_fields_are_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Actor(id="a", role=UserRole.it_admin, unexpected=True)

    def test_assignment_is_validated(self) -> None:
        run = WorkflowRun(definition_id="wf")
        with pytest.raises(ValidationError):
            run.current_step_index = -1
        run.status = "completed"
        assert run.status == WorkflowRunStatus.completed


class TestLogging:
    def test_format_selection(self) -> None:
        assert isinstance(_formatter_for("json"), JsonFormatter)
        assert _formatter_for("simple")._fmt == SIMPLE_FORMAT
        assert _formatter_for("detailed")._fmt == DETAILED_FORMAT
        assert _formatter_for("anything-else")._fmt == DETAILED_FORMAT

    def test_json_lines_escape_message_text(self) -> None:
        record = logging.LogRecord(
            "apex_control.service", logging.INFO, "service.py", 42, 'say "hi"\n\\ %s', ("there",), None
        )
        line = JsonFormatter().format(record)

        assert "\n" not in line
        entry = json.loads(line)
        assert entry["msg"] == 'say "hi"\n\\ there'
        assert entry["logger"] == "apex_control.service"
        assert entry["level"] == "INFO"
        assert entry["where"] == "service.py:42"

    def test_json_lines_carry_exceptions(self) -> None:
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, "x.py", 1, "failed", (), sys.exc_info())
        entry = json.loads(JsonFormatter().format(record))
        assert entry["exc_type"] == "ValueError"
        assert "bad" in entry["exc"]

    def test_setup_logging_installs_single_console_handler(self) -> None:
        setup_logging(log_level="warning", log_format="simple", enable_file=False)
        setup_logging(log_level="warning", log_format="simple", enable_file=False)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].level == logging.WARNING
        assert logging.getLogger("apex_control.workflow").level == logging.DEBUG
        assert logging.getLogger("sqlalchemy").level == logging.WARNING

    def test_file_logging_follows_settings(self, tmp_path) -> None:
        settings = Settings(
            APEX_LOG_LEVEL="ERROR",
            APEX_LOG_FORMAT="json",
            APEX_ENABLE_FILE_LOGGING=True,
            APEX_LOG_FILE_DIR=str(tmp_path / "logs"),
        )
        setup_logging(settings)
        try:
            get_logger("apex_control.workflow.engine").debug("run r-1 paused")
            root = logging.getLogger()
            assert [h.level for h in root.handlers] == [logging.ERROR, logging.DEBUG]
            for handler in root.handlers:
                handler.flush()
            lines = (tmp_path / "logs" / "apex_control.log").read_text().splitlines()
            assert {"msg": "run r-1 paused"}.items() <= json.loads(lines[-1]).items()
        finally:
            setup_logging(log_level="warning", log_format="simple", enable_file=False)

    def test_get_logger(self) -> None:
        assert get_logger("apex_control.test").name == "apex_control.test"
