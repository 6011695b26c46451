"""Error types for the control plane core.

Defines the small hierarchy of exceptions the engines raise:

- ``NotFound``: a referenced definition, run, approval, entity or candidate is missing.
- ``InvalidState``: the operation does not apply to the record's current state.
- ``PermissionDenied``: the actor lacks a required capability.
- ``ExecutionFailure``: a workflow step's side effect failed. The workflow
  engine always recovers it into a failed run and an exception work item; it
  never reaches callers of the engine.
"""

from __future__ import annotations

from typing import Optional


class ControlPlaneError(Exception):
    """Base error for all control plane exceptions."""


class NotFound(ControlPlaneError):
    """Raised when a referenced record does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found: '{record_id}'")
        self.kind = kind
        self.record_id = record_id


class InvalidState(ControlPlaneError):
    """Raised when a record is not in a state the operation accepts."""


class PermissionDenied(ControlPlaneError):
    """Raised when an actor is not permitted to perform an operation."""

    def __init__(self, actor_id: str, message: str) -> None:
        super().__init__(f"Permission denied for '{actor_id}': {message}")
        self.actor_id = actor_id


class ExecutionFailure(ControlPlaneError):
    """Raised by step handlers when a step's side effect fails."""

    def __init__(self, step_id: str, message: str, *, action_log_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.action_log_id = action_log_id
