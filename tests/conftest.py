"""
Shared fixtures: scripted model client, in-memory Redis, SQLite output store.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

import fakeredis.aioredis
import pytest

from promptrelay.context.fetchers.base import Fetcher
from promptrelay.models.request import ChatMessage, OutputFormat
from promptrelay.models.routing import Completion
from promptrelay.storage.db import create_db_engine
from promptrelay.storage.output_store import OutputStore
from promptrelay.storage.spending_limiter import SpendingLimiter

FIXED_NOW = datetime(2026, 3, 10, 12, 30, 15, tzinfo=timezone.utc)

Outcome = Union[Completion, Exception, str]


class ScriptedModelClient:
    """ModelClient double: per-model queue of outcomes, records every call."""

    def __init__(self, script: Optional[Dict[str, List[Outcome]]] = None):
        self.script = {model: list(outcomes) for model, outcomes in (script or {}).items()}
        self.calls: List[dict] = []

    async def complete(
        self,
        model: str,
        messages: List[ChatMessage],
        max_tokens: int,
        temperature: Optional[float] = None,
        format: OutputFormat = OutputFormat.TEXT,
    ) -> Completion:
        self.calls.append(
            {
                "model": model,
                "prompt": messages[-1].content,
                "max_tokens": max_tokens,
                "format": format,
            }
        )
        outcomes = self.script.get(model) or [f"response from {model}"]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return Completion(raw_text=outcome)
        return outcome

    @property
    def models_called(self) -> List[str]:
        return [c["model"] for c in self.calls]


class StaticFetcher(Fetcher):
    description = "Returns a fixed mapping"

    def __init__(self, data: dict):
        self.data = data
        self.calls: List[dict] = []

    async def fetch(self, params):
        self.calls.append(params)
        return dict(self.data)


class ExplodingFetcher(Fetcher):
    description = "Always fails"

    def __init__(self, error: Exception = None):
        self.error = error or RuntimeError("upstream unavailable")

    async def fetch(self, params):
        raise self.error


@pytest.fixture
def redis():
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def limiter(redis):
    return SpendingLimiter(redis, now=lambda: FIXED_NOW)


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'outputs.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
async def output_store(db_engine):
    store = OutputStore(db_engine)
    await store.create_schema()
    return store
