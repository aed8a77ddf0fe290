from pathlib import Path
from typing import Optional

import yaml
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine

from promptrelay.context.fetchers.database import DatabaseQueryFetcher
from promptrelay.context.fetchers.github_info import GitHubInfoFetcher
from promptrelay.context.fetchers.http import HttpFetcher
from promptrelay.context.registry import FetcherRegistry
from promptrelay.core.config import Settings
from promptrelay.core.logging import get_logger

logger = get_logger(__name__)


def build_fetcher_registry(
    settings: Settings,
    engine: Optional[AsyncEngine] = None,
    redis: Optional[Redis] = None,
) -> FetcherRegistry:
    """Registry with the built-in fetchers plus any database queries declared in YAML."""
    registry = FetcherRegistry()
    registry.register("http", HttpFetcher(redis=redis))
    registry.register("github_info", GitHubInfoFetcher(token=settings.github_token))

    path = Path(settings.fetchers_config_path)
    if engine is None or not path.exists():
        return registry

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    for entry in data.get("database_queries", []):
        try:
            registry.register(
                entry["key"],
                DatabaseQueryFetcher(
                    engine,
                    query=entry["query"],
                    result_key=entry.get("result_key", entry["key"]),
                    params=entry.get("params", []),
                    required=entry.get("required", []),
                    row_limit=int(entry.get("row_limit", 50)),
                ),
            )
        except (KeyError, ValueError) as e:
            logger.error("database_fetcher_config_invalid", entry=entry.get("key"), error=str(e))

    return registry
