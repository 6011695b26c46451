"""Apex control plane.

This package is the core of an IT operations control plane: it keeps a
canonical graph of IT objects (people, identities, devices, SaaS accounts,
...) reconciled from many noisy sources, and drives operational workflows
over that graph under risk-based approval gates.

Core subpackages
----------------

- ``apex_control.reconciliation``:

  - Per-type matching keys and deterministic candidate scoring.
  - Merge-or-create ingestion of source signals with field provenance.

- ``apex_control.workflow``:

  - A LangGraph-based run engine with approval pause/resume.
  - High-risk gating, approval chains, escalation and failure isolation.
  - Evidence packages for audit.

- ``apex_control.access``:

  - Role to capability checks and field-level masking.

- ``apex_control.graph``:

  - Repository interfaces plus in-memory and SQLAlchemy backends.
  - Per-key locks that serialize operations on one run or entity.

Entry points
------------

- ``apex_control.factory.build_control_plane`` wires a
  ``ControlPlaneService`` for application code and tests.
- ``apex_control.playbooks.seed_definitions`` loads the baseline workflows.
"""
