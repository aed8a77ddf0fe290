from fastapi import APIRouter, Request

from promptrelay.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.get("/usage/{tenant_id}")
async def get_usage(tenant_id: str, request: Request):
    """Cumulative spend and request counters for one workspace."""
    workspace = request.app.state.workspaces.resolve(tenant_id)
    limiter = request.app.state.limiter
    return await limiter.get_counters(tenant_id, workspace.active_spending_limit)


@router.get("/fetchers")
async def list_fetchers(request: Request):
    return {"fetchers": request.app.state.fetcher_registry.describe()}


@router.post("/tenants/reload")
async def reload_tenants(request: Request):
    """Hot-reload workspace YAML without restarting."""
    workspaces = request.app.state.workspaces
    workspaces.reload()
    tenants = workspaces.list_tenants()
    logger.info("tenants_reloaded_via_api", count=len(tenants))
    return {"status": "reloaded", "tenants": tenants}


@router.get("/jobs")
async def job_queue_status(request: Request, limit: int = 20):
    """Queue depth plus the most recent dead-lettered entries."""
    queue = request.app.state.job_queue
    return {"depth": await queue.depth(), "dead": await queue.dead_letter_records(limit)}
