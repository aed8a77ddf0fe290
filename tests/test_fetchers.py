"""
Tests for the built-in HTTP, GitHub and database fetchers.
"""
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import text

from promptrelay.context.builtin import build_fetcher_registry
from promptrelay.context.fetchers.database import DatabaseQueryFetcher
from promptrelay.context.fetchers.github_info import GitHubInfoFetcher
from promptrelay.context.fetchers.http import HttpFetcher
from promptrelay.core.config import Settings
from promptrelay.core.exceptions import FetchFailure


def client_for(handler, **kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)


class TestHttpFetcher:
    def make_fetcher(self, handler, **kwargs) -> HttpFetcher:
        kwargs.setdefault("sleep", AsyncMock())
        return HttpFetcher(client=client_for(handler), **kwargs)

    async def test_json_body(self):
        def handler(request):
            assert request.url.params["q"] == "shoes"
            return httpx.Response(200, json={"items": [1, 2]})

        fetcher = self.make_fetcher(handler)
        result = await fetcher.fetch(
            {"url": "https://api.example.com/search", "params": {"q": "shoes"}, "result_key": "search"}
        )

        assert result == {"search": {"status": 200, "body": {"items": [1, 2]}, "cached": False}}

    async def test_text_body_default_key(self):
        fetcher = self.make_fetcher(lambda r: httpx.Response(200, text="plain"))
        result = await fetcher.fetch({"url": "https://example.com"})
        assert result == {"http_response": {"status": 200, "body": "plain", "cached": False}}

    async def test_server_error_retried_then_raises(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        sleep = AsyncMock()
        fetcher = self.make_fetcher(handler, sleep=sleep)
        with pytest.raises(FetchFailure, match="HTTP 503"):
            await fetcher.fetch({"url": "https://example.com"})

        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    async def test_recovers_after_transient_failure(self):
        responses = iter([httpx.Response(502), httpx.Response(200, json={"ok": True})])
        sleep = AsyncMock()
        fetcher = self.make_fetcher(lambda r: next(responses), sleep=sleep)

        result = await fetcher.fetch({"url": "https://example.com", "max_retries": 2})

        assert result["http_response"]["body"] == {"ok": True}
        sleep.assert_awaited_once_with(1)

    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(FetchFailure, match="HTTP 404"):
            await self.make_fetcher(handler).fetch({"url": "https://example.com"})
        assert len(calls) == 1

    async def test_transport_error_raises_fetch_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        fetcher = self.make_fetcher(handler)
        with pytest.raises(FetchFailure, match="failed"):
            await fetcher.fetch({"url": "https://example.com", "max_retries": 1})

    async def test_cached_response_served_from_redis(self, redis):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"stars": 42})

        fetcher = self.make_fetcher(handler, redis=redis)
        params = {"url": "https://api.example.com/repo", "cache_key": "repo", "cache_ttl": 60}

        first = await fetcher.fetch(params)
        second = await fetcher.fetch(params)

        assert len(calls) == 1
        assert first["http_response"]["cached"] is False
        assert second["http_response"] == {"status": 200, "body": {"stars": 42}, "cached": True}
        assert 0 < await redis.ttl("pr:fetch:http:repo") <= 60

    async def test_failures_are_not_cached(self, redis):
        fetcher = self.make_fetcher(lambda r: httpx.Response(500), redis=redis)
        with pytest.raises(FetchFailure):
            await fetcher.fetch({"url": "https://example.com", "cache_key": "k", "max_retries": 1})
        assert await redis.get("pr:fetch:http:k") is None

    async def test_without_cache_key_always_requests(self, redis):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="fresh")

        fetcher = self.make_fetcher(handler, redis=redis)
        await fetcher.fetch({"url": "https://example.com"})
        await fetcher.fetch({"url": "https://example.com"})

        assert len(calls) == 2
        assert await redis.keys("pr:fetch:*") == []


class TestGitHubInfoFetcher:
    def handler(self, request):
        if request.url.path == "/users/octocat":
            return httpx.Response(200, json={"name": "The Octocat", "public_repos": 8, "followers": 10})
        if request.url.path == "/users/octocat/repos":
            return httpx.Response(
                200,
                json=[
                    {"name": "hello-world", "language": "Ruby", "stargazers_count": 5},
                    {"name": "spoon-knife", "language": None, "stargazers_count": 3},
                ],
            )
        return httpx.Response(404)

    async def test_profile_and_repositories(self):
        fetcher = GitHubInfoFetcher(
            token="t0k", client=client_for(self.handler, base_url="https://api.github.com")
        )
        result = await fetcher.fetch({"username": "octocat", "repo_limit": 1})

        github = result["github"]
        assert github["username"] == "octocat"
        assert github["profile"]["name"] == "The Octocat"
        assert [r["name"] for r in github["repositories"]] == ["hello-world"]

    async def test_unknown_user(self):
        fetcher = GitHubInfoFetcher(client=client_for(self.handler, base_url="https://api.github.com"))
        with pytest.raises(FetchFailure, match="404"):
            await fetcher.fetch({"username": "ghost"})


class TestDatabaseQueryFetcher:
    async def seed(self, engine):
        async with engine.begin() as conn:
            await conn.execute(text("create table orders (id integer, customer_id integer, total real)"))
            await conn.execute(
                text("insert into orders values (1, 7, 10.0), (2, 7, 20.0), (3, 8, 5.0)")
            )

    async def test_rows_under_result_key(self, db_engine):
        await self.seed(db_engine)
        fetcher = DatabaseQueryFetcher(
            db_engine,
            query="select id, total from orders where customer_id = :customer_id order by id",
            result_key="recent_orders",
            params=["customer_id"],
            required=["customer_id"],
        )

        result = await fetcher.fetch({"customer_id": 7})

        assert result == {"recent_orders": [{"id": 1, "total": 10.0}, {"id": 2, "total": 20.0}]}

    async def test_row_limit(self, db_engine):
        await self.seed(db_engine)
        fetcher = DatabaseQueryFetcher(
            db_engine, query="select id from orders order by id", result_key="ids", row_limit=2
        )
        assert await fetcher.fetch({}) == {"ids": [{"id": 1}, {"id": 2}]}


class TestBuiltinRegistry:
    def test_builtin_keys_without_database(self, tmp_path):
        settings = Settings(fetchers_config_path=str(tmp_path / "missing.yaml"))
        registry = build_fetcher_registry(settings)
        assert registry.keys() == ["http", "github_info"]

    async def test_database_queries_from_yaml(self, tmp_path, db_engine):
        config = tmp_path / "fetchers.yaml"
        config.write_text(
            "database_queries:\n"
            "  - key: recent_orders\n"
            "    query: select * from orders where customer_id = :customer_id\n"
            "    params: [customer_id]\n"
            "    required: [customer_id]\n"
            "  - key: broken\n"
        )
        settings = Settings(fetchers_config_path=str(config))

        registry = build_fetcher_registry(settings, engine=db_engine)

        assert registry.keys() == ["http", "github_info", "recent_orders"]
        assert registry.get("recent_orders").required_params == ["customer_id"]
