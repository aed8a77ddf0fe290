from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from promptrelay.api.internal import health, usage
from promptrelay.api.v1 import jobs, outputs
from promptrelay.core.components import build_components
from promptrelay.core.config import get_settings
from promptrelay.core.exceptions import PromptRelayError, promptrelay_exception_handler
from promptrelay.core.logging import configure_logging, get_logger
from promptrelay.middleware.request_id import RequestIdMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=not settings.is_development)

    logger.info("startup", env=settings.app_env)

    components = build_components(settings)
    await components.output_store.create_schema()

    # Store on app state for dependency injection
    app.state.settings = settings
    app.state.provider_registry = components.provider_registry
    app.state.fetcher_registry = components.fetcher_registry
    app.state.workspaces = components.workspaces
    app.state.limiter = components.limiter
    app.state.output_store = components.output_store
    app.state.job_queue = components.job_queue
    app.state.orchestrator = components.orchestrator

    yield

    await components.close()
    logger.info("shutdown")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="PromptRelay",
        description="Template-driven LLM generation with cost-aware fallback routing",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:3001"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(PromptRelayError, promptrelay_exception_handler)

    app.include_router(jobs.router, prefix="/v1")
    app.include_router(outputs.router, prefix="/v1")

    app.include_router(health.router)
    app.include_router(usage.router, prefix="/internal")

    return app


app = create_app()
