from __future__ import annotations

import random
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional

import orjson
from pydantic import ValidationError
from redis.asyncio import Redis

from promptrelay.core.logging import get_logger
from promptrelay.models.request import GenerationRequest

logger = get_logger(__name__)

READY_KEY = "pr:jobs:ready"
DELAYED_KEY = "pr:jobs:delayed"
DEAD_KEY = "pr:jobs:dead"


def backoff_seconds(
    attempt: int,
    base: float = 5.0,
    maximum: float = 300.0,
    rand: Callable[[float, float], float] = random.uniform,
) -> float:
    """Exponential backoff with multiplicative jitter, capped at ``maximum``."""
    return min(base * (2 ** attempt) * rand(0.5, 1.5), maximum)


@dataclass
class JobEnvelope:
    job_id: str
    request: GenerationRequest
    attempt: int = 0
    last_error: Optional[str] = None

    def dumps(self) -> bytes:
        return orjson.dumps(
            {
                "job_id": self.job_id,
                "attempt": self.attempt,
                "request": self.request.model_dump(mode="json"),
                "last_error": self.last_error,
            }
        )

    @classmethod
    def loads(cls, raw) -> "JobEnvelope":
        return cls.from_dict(orjson.loads(raw))

    @classmethod
    def from_dict(cls, data: dict) -> "JobEnvelope":
        return cls(
            job_id=data["job_id"],
            request=GenerationRequest.model_validate(data["request"]),
            attempt=int(data.get("attempt", 0)),
            last_error=data.get("last_error"),
        )


class JobQueue:
    """
    Redis-backed request queue.

    Ready jobs sit in a list, retries wait in a sorted set scored by due time,
    and jobs that run out of retries land in a dead-letter list.
    """

    def __init__(self, redis: Redis, clock: Callable[[], float] = time.time):
        self._redis = redis
        self._clock = clock

    async def enqueue(self, request: GenerationRequest) -> str:
        job_id = request.job_id or uuid.uuid4().hex
        request = request.model_copy(update={"job_id": job_id})
        await self._redis.rpush(READY_KEY, JobEnvelope(job_id=job_id, request=request).dumps())
        logger.info("job_enqueued", job_id=job_id, tenant_id=request.tenant_id, model=request.model)
        return job_id

    async def dequeue(self) -> Optional[JobEnvelope]:
        """Pop the next decodable job; undecodable payloads are dead-lettered as-is."""
        while True:
            raw = await self._redis.lpop(READY_KEY)
            if raw is None:
                return None
            try:
                return JobEnvelope.loads(raw)
            except (ValidationError, KeyError, TypeError, ValueError) as e:
                await self._dead_letter_raw(raw, f"{type(e).__name__}: {e}")

    async def _dead_letter_raw(self, raw, error: str) -> None:
        payload = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
        try:
            job_id = orjson.loads(raw).get("job_id")
        except (orjson.JSONDecodeError, AttributeError):
            job_id = None
        await self._redis.rpush(
            DEAD_KEY, orjson.dumps({"job_id": job_id, "last_error": error, "payload": payload})
        )
        logger.error("job_undecodable", job_id=job_id, error=error)

    async def retry_later(self, envelope: JobEnvelope, delay_seconds: float) -> None:
        due = self._clock() + delay_seconds
        await self._redis.zadd(DELAYED_KEY, {envelope.dumps(): due})
        logger.info(
            "job_retry_scheduled",
            job_id=envelope.job_id,
            attempt=envelope.attempt,
            delay_seconds=round(delay_seconds, 3),
        )

    async def promote_due(self) -> int:
        """Move delayed jobs whose due time has passed onto the ready list."""
        now = self._clock()
        due = await self._redis.zrangebyscore(DELAYED_KEY, "-inf", now)
        promoted = 0
        for raw in due:
            # Only the caller that removes the member gets to promote it
            if await self._redis.zrem(DELAYED_KEY, raw):
                await self._redis.rpush(READY_KEY, raw)
                promoted += 1
        if promoted:
            logger.info("jobs_promoted", count=promoted)
        return promoted

    async def dead_letter(self, envelope: JobEnvelope) -> None:
        await self._redis.rpush(DEAD_KEY, envelope.dumps())
        logger.error(
            "job_dead_lettered",
            job_id=envelope.job_id,
            attempt=envelope.attempt,
            last_error=envelope.last_error,
        )

    async def dead_letters(self, limit: int = 100) -> List[JobEnvelope]:
        """Dead-lettered envelopes, skipping entries that never decoded."""
        return [
            JobEnvelope.from_dict(record)
            for record in await self.dead_letter_records(limit)
            if "request" in record
        ]

    async def dead_letter_records(self, limit: int = 100) -> List[dict]:
        return [orjson.loads(raw) for raw in await self._redis.lrange(DEAD_KEY, 0, limit - 1)]

    async def depth(self) -> dict:
        return {
            "ready": await self._redis.llen(READY_KEY),
            "delayed": await self._redis.zcard(DELAYED_KEY),
            "dead": await self._redis.llen(DEAD_KEY),
        }
