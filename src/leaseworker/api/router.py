"""REST API router."""

from fastapi import APIRouter, Depends, HTTPException

from leaseworker import __version__
from leaseworker.api.deps import get_repository, get_runtime, verify_api_key
from leaseworker.api.schemas import (
    EnqueueRequest,
    EnqueueResponse,
    HealthResponse,
    ReclaimResponse,
    RequeueRequest,
    RequeueResponse,
    StatsResponse,
    WorkItemResponse,
)
from leaseworker.bootstrap import Runtime
from leaseworker.db import WorkItemRepository
from leaseworker.engine import LeaseManager
from leaseworker.instance import generate_worker_id
from leaseworker.observability import metrics

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])


# ============================================================================
# Health & stats
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(repo: WorkItemRepository = Depends(get_repository)):
    """Item counts by status plus this process's metrics snapshot."""
    counts = await repo.count_by_status()
    return StatsResponse(
        counts={status.value: count for status, count in counts.items()},
        metrics=metrics.snapshot(),
    )


# ============================================================================
# Items
# ============================================================================


@router.post("/items", response_model=EnqueueResponse, status_code=201)
async def enqueue_items(
    request: EnqueueRequest,
    repo: WorkItemRepository = Depends(get_repository),
):
    """Insert one pending item per payload."""
    items = await repo.enqueue(request.payloads)
    return EnqueueResponse(ids=[item.id for item in items])


@router.post("/items/requeue", response_model=RequeueResponse)
async def requeue_items(
    request: RequeueRequest,
    repo: WorkItemRepository = Depends(get_repository),
):
    """Return failed items to pending."""
    requeued = await repo.requeue_failed(request.ids)
    return RequeueResponse(requeued=requeued)


@router.get("/items/{item_id}", response_model=WorkItemResponse)
async def get_item(
    item_id: int,
    repo: WorkItemRepository = Depends(get_repository),
):
    """Get a work item by id."""
    item = await repo.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Work item not found: {item_id}")
    return WorkItemResponse.from_model(item)


# ============================================================================
# Leases
# ============================================================================


@router.post("/leases/reclaim", response_model=ReclaimResponse)
async def reclaim_leases(runtime: Runtime = Depends(get_runtime)):
    """Clear stale leases now instead of waiting for the next claim."""
    manager = LeaseManager(
        runtime.repository,
        generate_worker_id(prefix="leaseworker-api"),
        runtime.lease_ttl,
    )
    reclaimed = await manager.reclaim_stale()
    return ReclaimResponse(reclaimed=reclaimed)
