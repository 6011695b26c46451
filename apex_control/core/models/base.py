"""Shared pydantic base for every persisted or exchanged control plane record."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Strict base model.

    Unknown keys are rejected, so a stale JSON document or a misspelled
    signal field fails loudly instead of being dropped. Engines mutate runs,
    approvals and entities in place, and every assignment is validated again.
    Fields may be populated by name or by alias.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        validate_assignment=True,
    )
