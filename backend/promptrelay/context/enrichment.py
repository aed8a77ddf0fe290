from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from promptrelay.context.registry import FetcherRegistry
from promptrelay.core.exceptions import FetcherNotFound
from promptrelay.core.logging import get_logger
from promptrelay.models.request import FetcherInvocation

logger = get_logger(__name__)


@dataclass
class EnrichmentResult:
    context: Dict[str, Any]
    errors: Dict[str, str] = field(default_factory=dict)
    successful_keys: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class ContextEnricher:
    """
    Runs requested fetchers against a base context.

    Invocations run strictly in caller order; each result map is merged at
    top level, so a later fetcher overwrites keys set earlier. A missing or
    failing fetcher is logged and skipped. ``enrich`` never raises.
    """

    def __init__(self, registry: FetcherRegistry):
        self.registry = registry

    async def enrich(
        self,
        base_context: Mapping[str, Any],
        invocations: Sequence[FetcherInvocation],
    ) -> EnrichmentResult:
        result = EnrichmentResult(context=dict(base_context or {}))

        for invocation in invocations or []:
            key = invocation.key
            try:
                descriptor = self.registry.require(key)
                logger.info("fetch_started", key=key, params=sorted(invocation.params))
                data = await descriptor.fetch(dict(invocation.params))
            except FetcherNotFound as e:
                result.errors[key] = e.message
                logger.warning("fetcher_not_registered", key=key)
                continue
            except Exception as e:
                result.errors[key] = str(e) or type(e).__name__
                logger.error("fetch_failed", key=key, error=str(e), error_type=type(e).__name__)
                continue

            result.context.update(data)
            result.successful_keys.append(key)
            logger.info("fetch_succeeded", key=key, keys=sorted(data))

        logger.info(
            "context_enriched",
            original_keys=sorted(base_context or {}),
            enriched_keys=sorted(result.context),
            fetch_errors=sorted(result.errors),
        )
        return result
