"""Evidence packages for workflow runs."""

from __future__ import annotations

from ..core.errors import NotFound
from ..core.models.domain import EvidencePackage
from ..graph.store import GraphStore


async def build_evidence_package(store: GraphStore, run_id: str) -> EvidencePackage:
    """
    Bundle everything recorded about one run.

    The timeline holds the run's own events plus the events of its approvals
    and work items, in the order they were appended.

    Raises:
        NotFound: The run does not exist.
    """
    run = await store.runs.get(run_id)
    if run is None:
        raise NotFound("WorkflowRun", run_id)

    approvals = await store.approvals.list_for_work_item(run_id)
    work_items = await store.work_items.list_for_run(run_id)
    action_logs = await store.action_logs.list_for_run(run_id)

    related = {run_id}
    related.update(a.id for a in approvals)
    related.update(w.id for w in work_items)
    timeline = [event for event in await store.timeline.list() if event.entity_id in related]

    return EvidencePackage(
        id=store.create_id(),
        workflow_run_id=run_id,
        run=run,
        timeline=timeline,
        approvals=approvals,
        action_logs=action_logs,
        work_items=work_items,
    )
