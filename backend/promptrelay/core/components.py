from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine

from promptrelay.context.builtin import build_fetcher_registry
from promptrelay.context.enrichment import ContextEnricher
from promptrelay.context.registry import FetcherRegistry
from promptrelay.core.config import Settings
from promptrelay.core.logging import get_logger
from promptrelay.jobs.orchestrator import JobOrchestrator
from promptrelay.jobs.queue import JobQueue
from promptrelay.observability.audit_log import AuditLogger
from promptrelay.prompting.renderer import PromptLibrary
from promptrelay.providers.registry import ProviderRegistry
from promptrelay.routing.cost import CostEstimator
from promptrelay.routing.engine import RoutingEngine
from promptrelay.routing.policy import WorkspaceDirectory
from promptrelay.storage.db import create_db_engine
from promptrelay.storage.output_store import OutputStore
from promptrelay.storage.spending_limiter import SpendingLimiter

logger = get_logger(__name__)


@dataclass
class Components:
    """Every long-lived collaborator, built once per process and injected."""

    settings: Settings
    db_engine: AsyncEngine
    redis: Redis
    provider_registry: ProviderRegistry
    cost_estimator: CostEstimator
    fetcher_registry: FetcherRegistry
    workspaces: WorkspaceDirectory
    prompts: PromptLibrary
    limiter: SpendingLimiter
    output_store: OutputStore
    job_queue: JobQueue
    routing_engine: RoutingEngine
    audit_logger: AuditLogger
    orchestrator: JobOrchestrator

    async def close(self) -> None:
        await self.redis.aclose()
        await self.db_engine.dispose()


def build_components(settings: Settings) -> Components:
    db_engine = create_db_engine(settings.database_url)
    redis = Redis.from_url(settings.redis_url, decode_responses=True)

    provider_registry = ProviderRegistry.from_settings(settings)
    cost_estimator = CostEstimator.from_yaml(settings.models_config_path)
    fetcher_registry = build_fetcher_registry(settings, engine=db_engine, redis=redis)
    workspaces = WorkspaceDirectory(settings.tenants_dir)
    prompts = PromptLibrary.from_dir(settings.prompts_dir)
    limiter = SpendingLimiter(redis)
    output_store = OutputStore(db_engine)
    audit_logger = AuditLogger(settings.audit_log_path)

    routing_engine = RoutingEngine(
        provider_registry,
        cost_estimator,
        limiter=limiter,
        temperature=settings.default_temperature,
    )
    orchestrator = JobOrchestrator(
        workspaces=workspaces,
        limiter=limiter,
        enricher=ContextEnricher(fetcher_registry),
        prompts=prompts,
        engine=routing_engine,
        estimator=cost_estimator,
        store=output_store,
        audit=audit_logger,
        chars_per_token=settings.chars_per_token,
    )

    logger.info(
        "components_ready",
        providers=provider_registry.available_providers(),
        fetchers=fetcher_registry.keys(),
        tenants=workspaces.list_tenants(),
        prompts=prompts.names(),
    )
    return Components(
        settings=settings,
        db_engine=db_engine,
        redis=redis,
        provider_registry=provider_registry,
        cost_estimator=cost_estimator,
        fetcher_registry=fetcher_registry,
        workspaces=workspaces,
        prompts=prompts,
        limiter=limiter,
        output_store=output_store,
        job_queue=JobQueue(redis),
        routing_engine=routing_engine,
        audit_logger=audit_logger,
        orchestrator=orchestrator,
    )
