from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    provider_registry = request.app.state.provider_registry
    limiter = request.app.state.limiter
    output_store = request.app.state.output_store
    provider_status = await provider_registry.health_check_all()
    redis_ok = await limiter.health_check()
    db_ok = await output_store.health_check()
    all_ok = any(provider_status.values()) and redis_ok and db_ok
    return {
        "status": "ok" if all_ok else "degraded",
        "providers": provider_status,
        "redis": redis_ok,
        "database": db_ok,
    }


@router.get("/ready")
async def ready():
    return {"status": "ready"}
