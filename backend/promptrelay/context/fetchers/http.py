import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import orjson
from redis.asyncio import Redis

from promptrelay.context.fetchers.base import Fetcher
from promptrelay.core.exceptions import FetchFailure
from promptrelay.core.logging import get_logger

logger = get_logger(__name__)

MAX_BODY_CHARS = 20_000
CACHE_PREFIX = "pr:fetch:http"
DEFAULT_CACHE_TTL_SECONDS = 300
DEFAULT_MAX_RETRIES = 3


class HttpFetcher(Fetcher):
    """
    Calls an external HTTP API and exposes the response under ``result_key``.

    Transport errors and 5xx responses are retried with exponential backoff
    (1s, 2s, 4s ...) up to ``max_retries`` attempts in total. When a
    ``cache_key`` is given and Redis is available, a successful response is
    cached for ``cache_ttl`` seconds and served from the cache until then.
    """

    description = "Fetches data from an external HTTP API with retries and response caching"
    required_params = ("url",)
    allowed_params = (
        "url",
        "method",
        "headers",
        "params",
        "json",
        "timeout",
        "result_key",
        "cache_key",
        "cache_ttl",
        "max_retries",
    )

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        redis: Optional[Redis] = None,
        default_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._redis = redis
        self.default_timeout = default_timeout
        self._sleep = sleep

    async def fetch(self, params: Dict[str, Any]) -> Dict[str, Any]:
        result_key = params.get("result_key") or "http_response"
        cache_key = params.get("cache_key")

        if cache_key:
            cached = await self._cached(cache_key)
            if cached is not None:
                logger.info("http_fetch_cache_hit", cache_key=cache_key, url=params["url"])
                return {result_key: {**cached, "cached": True}}

        response = await self._request_with_retries(params, result_key)
        data = {"status": response.status_code, "body": self._body(response)}

        if cache_key:
            ttl = int(params.get("cache_ttl", DEFAULT_CACHE_TTL_SECONDS))
            await self._store(cache_key, data, ttl)

        return {result_key: {**data, "cached": False}}

    async def _request_with_retries(self, params: Dict[str, Any], result_key: str) -> httpx.Response:
        url = params["url"]
        method = str(params.get("method", "GET")).upper()
        max_retries = max(int(params.get("max_retries", DEFAULT_MAX_RETRIES)), 1)

        for attempt in range(max_retries):
            try:
                response = await self._client.request(
                    method,
                    url,
                    headers=params.get("headers"),
                    params=params.get("params"),
                    json=params.get("json"),
                    timeout=params.get("timeout", self.default_timeout),
                )
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status < 500 or attempt == max_retries - 1:
                    raise FetchFailure(result_key, f"HTTP {status} from {url}")
                error = f"HTTP {status}"
            except httpx.HTTPError as e:
                if attempt == max_retries - 1:
                    raise FetchFailure(result_key, f"Request to {url} failed: {e}")
                error = str(e)

            delay = 2 ** attempt
            logger.warning("http_fetch_retry", url=url, attempt=attempt + 1, delay_seconds=delay, error=error)
            await self._sleep(delay)

        raise FetchFailure(result_key, f"Request to {url} failed")

    async def _cached(self, cache_key: str) -> Optional[Dict[str, Any]]:
        if self._redis is None:
            return None
        raw = await self._redis.get(f"{CACHE_PREFIX}:{cache_key}")
        return orjson.loads(raw) if raw is not None else None

    async def _store(self, cache_key: str, data: Dict[str, Any], ttl: int) -> None:
        if self._redis is None or ttl <= 0:
            return
        await self._redis.set(f"{CACHE_PREFIX}:{cache_key}", orjson.dumps(data), ex=ttl)

    @staticmethod
    def _body(response: httpx.Response) -> Any:
        if "json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError:
                pass
        return response.text[:MAX_BODY_CHARS]

    async def aclose(self) -> None:
        await self._client.aclose()
