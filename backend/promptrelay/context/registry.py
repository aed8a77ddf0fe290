from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from promptrelay.context.fetchers.base import Fetcher
from promptrelay.core.exceptions import FetcherNotFound, FetchFailure
from promptrelay.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetcherDescriptor:
    key: str
    fetcher: Fetcher

    @property
    def required_params(self) -> List[str]:
        return list(self.fetcher.required_params)

    @property
    def allowed_params(self) -> List[str]:
        allowed = list(self.fetcher.allowed_params)
        for name in self.fetcher.required_params:
            if allowed and name not in allowed:
                allowed.append(name)
        return allowed

    def validate(self, params: Dict[str, Any]) -> None:
        allowed = self.allowed_params
        if allowed:
            invalid = sorted(set(params) - set(allowed))
            if invalid:
                raise FetchFailure(
                    self.key,
                    f"Invalid parameters: {', '.join(invalid)}. Allowed: {', '.join(allowed)}",
                )
        missing = [p for p in self.required_params if params.get(p) in (None, "")]
        if missing:
            raise FetchFailure(self.key, f"Missing required parameters: {', '.join(missing)}")

    async def fetch(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate(params)
        result = await self.fetcher.fetch(params)
        if not isinstance(result, dict):
            raise FetchFailure(
                self.key, f"Fetcher returned {type(result).__name__}, expected a mapping"
            )
        return result

    def metadata(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "fetcher": type(self.fetcher).__name__,
            "description": self.fetcher.description,
            "required_params": self.required_params,
            "allowed_params": self.allowed_params,
        }


class FetcherRegistry:
    """Maps a symbolic key to exactly one fetcher. Constructed and injected, never global."""

    def __init__(self):
        self._fetchers: Dict[str, FetcherDescriptor] = {}

    def register(self, key: str, fetcher: Fetcher, replace: bool = False) -> FetcherDescriptor:
        if not key or not isinstance(key, str):
            raise ValueError("Fetcher key must be a non-empty string")
        if not isinstance(fetcher, Fetcher):
            raise ValueError("Fetcher must implement Fetcher.fetch")
        if key in self._fetchers and not replace:
            raise ValueError(f"Fetcher already registered for key: {key}")

        descriptor = FetcherDescriptor(key=key, fetcher=fetcher)
        self._fetchers[key] = descriptor
        logger.info("fetcher_registered", key=key, fetcher=type(fetcher).__name__)
        return descriptor

    def unregister(self, key: str) -> Optional[FetcherDescriptor]:
        removed = self._fetchers.pop(key, None)
        if removed:
            logger.info("fetcher_unregistered", key=key)
        return removed

    def get(self, key: str) -> Optional[FetcherDescriptor]:
        return self._fetchers.get(key)

    def require(self, key: str) -> FetcherDescriptor:
        descriptor = self._fetchers.get(key)
        if descriptor is None:
            raise FetcherNotFound(key)
        return descriptor

    def is_registered(self, key: str) -> bool:
        return key in self._fetchers

    def keys(self) -> List[str]:
        return list(self._fetchers.keys())

    def describe(self) -> List[Dict[str, Any]]:
        return [d.metadata() for d in self._fetchers.values()]
