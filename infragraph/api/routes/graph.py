"""Graph routes - Published entity graph and on-demand aggregation runs."""

import time
import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from infragraph.api.deps import get_aggregator
from infragraph.core.errors import Cancelled, RunInProgress
from infragraph.core.logging import get_logger
from infragraph.schemas.api import GraphResponse, RunTriggerRequest, RunTriggerResponse
from infragraph.services.aggregator import Aggregator

router = APIRouter(prefix="/graph", tags=["graph"])
log = get_logger("graph_routes")


@router.get("", response_model=GraphResponse)
def get_graph(
    kind: Optional[Literal["network_node", "facility", "cable_link"]] = Query(
        None, description="Only return nodes of this kind"
    ),
    include_unresolved: bool = Query(True, description="Include nodes without coordinates"),
    aggregator: Aggregator = Depends(get_aggregator),
):
    """
    Get the latest published entity graph.

    Edges are limited to those whose endpoints both survive the filters.
    Returns 503 until the first aggregation run has completed.
    """
    start = time.perf_counter()
    request_id = str(uuid.uuid4())

    graph = aggregator.snapshot()
    if graph is None:
        raise HTTPException(status_code=503, detail="No graph published yet")

    nodes = graph.nodes if include_unresolved else graph.resolved_nodes()
    if kind is not None:
        nodes = {cid: node for cid, node in nodes.items() if node.kind == kind}
    edges = [e for e in graph.edges if e.source in nodes and e.target in nodes]

    latency_ms = int((time.perf_counter() - start) * 1000)

    return GraphResponse(
        request_id=request_id,
        api_latency_ms=latency_ms,
        run_id=graph.run_id,
        generated_at=graph.generated_at,
        providers=graph.providers,
        failed_providers=graph.failed_providers,
        stale_providers=graph.stale_providers,
        partial=graph.partial,
        node_count=len(nodes),
        edge_count=len(edges),
        nodes=nodes,
        edges=edges,
    )


@router.post("/run", response_model=RunTriggerResponse)
async def trigger_run(
    payload: Optional[RunTriggerRequest] = Body(None),
    aggregator: Aggregator = Depends(get_aggregator),
):
    """
    Run one aggregation pass and publish the result.

    Provider failures do not fail the request; they are listed in
    ``failed_providers``. Unknown provider names return 400, and a run that is
    already in flight returns 409.
    """
    providers = payload.providers if payload else None
    log.info(f"Aggregation triggered via API | providers={providers or 'all'}")

    try:
        graph = await aggregator.run(include=providers)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Cancelled as exc:
        raise HTTPException(status_code=409, detail=f"Aggregation cancelled: {exc}") from exc
    except RunInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return RunTriggerResponse(
        success=not graph.partial,
        run_id=graph.run_id,
        providers=graph.providers,
        failed_providers=graph.failed_providers,
        stale_providers=graph.stale_providers,
        node_count=len(graph.nodes),
        edge_count=len(graph.edges),
    )
