from __future__ import annotations

"""Convenience factories for wiring the control plane.

``build_control_plane`` assembles a ``ControlPlaneService`` from a store, the
grouped configuration and optional automation dispatchers. ``open_store``
chooses the graph store backend from ``Settings.database_url``.

Tests usually call ``build_control_plane()`` with no arguments and get a
fresh volatile store with the default configuration.
"""

import logging
from typing import Mapping, Optional

from .access import AccessPolicy
from .core.config import AccessPolicyConfig, IdempotencyConfig, ReconciliationConfig, Settings, WorkflowConfig
from .graph import GraphStore, ObjectService, build_memory_store
from .graph.sql import build_sql_store, create_all, create_engine, create_sessionmaker
from .idempotency import ReplayCache
from .reconciliation import ReconciliationEngine
from .service import ControlPlaneDeps, ControlPlaneService
from .workflow import Dispatcher, WorkflowDeps, WorkflowEngine, build_default_handlers

logger = logging.getLogger(__name__)


def build_workflow_engine(
    *,
    store: GraphStore,
    access: AccessPolicy,
    config: Optional[WorkflowConfig] = None,
    dispatchers: Optional[Mapping[str, Dispatcher]] = None,
) -> WorkflowEngine:
    """Construct a ``WorkflowEngine`` with the default step handlers."""
    deps = WorkflowDeps(
        store=store,
        access=access,
        handlers=build_default_handlers(dispatchers),
        config=config or WorkflowConfig(),
    )
    return WorkflowEngine(deps=deps)


def build_control_plane(
    *,
    store: Optional[GraphStore] = None,
    reconciliation_config: Optional[ReconciliationConfig] = None,
    workflow_config: Optional[WorkflowConfig] = None,
    access_config: Optional[AccessPolicyConfig] = None,
    idempotency_config: Optional[IdempotencyConfig] = None,
    dispatchers: Optional[Mapping[str, Dispatcher]] = None,
) -> ControlPlaneService:
    """Build a ``ControlPlaneService`` over ``store`` (a new volatile store if omitted)."""
    store = store or build_memory_store()
    access = AccessPolicy(access_config)
    deps = ControlPlaneDeps(
        store=store,
        access=access,
        workflows=build_workflow_engine(store=store, access=access, config=workflow_config, dispatchers=dispatchers),
        reconciliation=ReconciliationEngine(store=store, config=reconciliation_config),
        objects=ObjectService(store=store, access=access),
    )
    return ControlPlaneService(deps=deps, replays=ReplayCache.from_config(idempotency_config))


async def open_store(settings: Settings) -> GraphStore:
    """
    Open the graph store configured by ``settings``.

    With ``database_url`` set the SQL backend is used and its tables are
    created if missing; otherwise a volatile in-memory store is returned.
    """
    if not settings.database_url:
        logger.info("No database URL configured, using the in-memory graph store")
        return build_memory_store()
    engine = create_engine(settings.database_url)
    await create_all(engine)
    logger.info(f"Opened SQL graph store on {engine.url.drivername}")
    return build_sql_store(session_factory=create_sessionmaker(engine))


async def build_control_plane_from_settings(
    settings: Settings,
    *,
    dispatchers: Optional[Mapping[str, Dispatcher]] = None,
) -> ControlPlaneService:
    """Build a ``ControlPlaneService`` entirely from environment-backed settings."""
    store = await open_store(settings)
    return build_control_plane(
        store=store,
        reconciliation_config=settings.reconciliation,
        workflow_config=settings.workflow,
        access_config=settings.access,
        idempotency_config=settings.idempotency,
        dispatchers=dispatchers,
    )
