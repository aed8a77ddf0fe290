from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from redis.asyncio import Redis

from promptrelay.core.exceptions import RateLimitExceeded, SpendingLimitExceeded
from promptrelay.core.logging import get_logger
from promptrelay.models.policy import SpendingLimit, Workspace

logger = get_logger(__name__)

KEY_PREFIX = "pr"
RATE_WINDOW_TTL_SECONDS = 120
HOUR_TTL_SECONDS = 3660
WEEK_TTL_SECONDS = 8 * 24 * 3600
MONTH_TTL_SECONDS = 32 * 24 * 3600


@dataclass
class Admission:
    warn: bool = False
    reasons: List[str] = field(default_factory=list)
    requests_this_window: int = 0


class SpendingLimiter:
    """
    Per-workspace rate and spend counters in Redis.

    Keys are window-scoped (minute, hour, UTC day, ISO week, month) and expire
    after rollover, so counters reset without a sweeper. Every mutation is a
    Redis INCR/INCRBYFLOAT; nothing is read-modified-written in Python.
    """

    def __init__(self, redis: Redis, now: Optional[Callable[[], datetime]] = None):
        self._redis = redis
        self._now = now or (lambda: datetime.now(timezone.utc))

    # ── keys ────────────────────────────────────────────────────────────

    def _minute_key(self, tenant_id: str) -> str:
        return f"{KEY_PREFIX}:rate:{tenant_id}:{self._now().strftime('%Y%m%d%H%M')}"

    def _hour_key(self, tenant_id: str) -> str:
        return f"{KEY_PREFIX}:rate:{tenant_id}:hour:{self._now().strftime('%Y%m%d%H')}"

    def _requests_key(self, tenant_id: str) -> str:
        return f"{KEY_PREFIX}:requests:{tenant_id}:day:{self._now().strftime('%Y%m%d')}"

    def _spend_keys(self, tenant_id: str) -> Dict[str, str]:
        now = self._now()
        iso = now.isocalendar()
        return {
            "daily": f"{KEY_PREFIX}:spend:{tenant_id}:day:{now.strftime('%Y%m%d')}",
            "weekly": f"{KEY_PREFIX}:spend:{tenant_id}:week:{iso[0]}W{iso[1]:02d}",
            "monthly": f"{KEY_PREFIX}:spend:{tenant_id}:month:{now.strftime('%Y%m')}",
        }

    def _seconds_until_midnight_utc(self) -> int:
        now = self._now()
        midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return int((midnight - now).total_seconds()) + 60

    # ── admission ───────────────────────────────────────────────────────

    async def record_attempt(self, tenant_id: str) -> Dict[str, int]:
        """Count one attempted request in every rate window."""
        minute_key = self._minute_key(tenant_id)
        hour_key = self._hour_key(tenant_id)
        day_key = self._requests_key(tenant_id)
        pipe = self._redis.pipeline(transaction=True)
        pipe.incr(minute_key)
        pipe.expire(minute_key, RATE_WINDOW_TTL_SECONDS)
        pipe.incr(hour_key)
        pipe.expire(hour_key, HOUR_TTL_SECONDS)
        pipe.incr(day_key)
        pipe.expire(day_key, self._seconds_until_midnight_utc())
        minute_count, _, hour_count, _, day_count, _ = await pipe.execute()
        return {"minute": int(minute_count), "hour": int(hour_count), "day": int(day_count)}

    async def check_admission(self, workspace: Workspace) -> Admission:
        """
        Gate a request before any cost is incurred.

        The attempt is recorded first and unconditionally, and the
        post-increment counts decide admission, so concurrent requests for
        one workspace cannot slip past the rate limit together and rejected
        attempts still count against every window.
        """
        tenant_id = workspace.tenant_id
        counts = await self.record_attempt(tenant_id)
        admission = Admission(requests_this_window=counts["minute"])

        limit = workspace.active_spending_limit
        if limit is None:
            return admission

        if limit.rate_limit_enabled:
            for window, cap in limit.rate_windows.items():
                if cap is None or counts[window] <= cap:
                    continue
                if limit.block_on_rate_limit:
                    logger.warning(
                        "rate_limit_blocked",
                        tenant_id=tenant_id,
                        window=window,
                        count=counts[window],
                        limit=cap,
                    )
                    raise RateLimitExceeded(tenant_id, counts[window], cap, window=window)
                admission.warn = True
                admission.reasons.append(f"rate limit {cap}/{window} exceeded ({counts[window]})")

        if limit.has_spend_cap:
            breached = await self._exhausted_limit(tenant_id, limit)
            if breached is not None:
                cap, spent = breached
                if limit.block_on_exceed:
                    logger.warning("spending_limit_blocked", tenant_id=tenant_id, limit=cap, spent=spent)
                    raise SpendingLimitExceeded(tenant_id, 0.0, cap, spent=spent)
                admission.warn = True
                admission.reasons.append(f"spending limit {cap:.2f} reached ({spent:.2f} spent)")

        if admission.warn:
            logger.warning("admission_warning", tenant_id=tenant_id, reasons=admission.reasons)
        return admission

    # ── spend ───────────────────────────────────────────────────────────

    async def get_spend(self, tenant_id: str) -> Dict[str, float]:
        keys = self._spend_keys(tenant_id)
        values = await self._redis.mget(*keys.values())
        return {name: float(v or 0.0) for name, v in zip(keys.keys(), values)}

    @staticmethod
    def _limits(limit: SpendingLimit) -> Dict[str, Optional[float]]:
        return {
            "daily": limit.daily_limit,
            "weekly": limit.weekly_limit,
            "monthly": limit.monthly_limit,
        }

    async def _exhausted_limit(
        self, tenant_id: str, limit: SpendingLimit
    ) -> Optional[Tuple[float, float]]:
        """First (cap, spent) pair whose window is already used up."""
        spend = await self.get_spend(tenant_id)
        for window, cap in self._limits(limit).items():
            if cap is not None and spend[window] >= cap:
                return cap, spend[window]
        return None

    async def would_exceed(self, tenant_id: str, limit: SpendingLimit, cost: float) -> Optional[float]:
        """Return the first cap that ``cost`` would push spend over, if any."""
        if not limit.enabled or not limit.has_spend_cap:
            return None
        spend = await self.get_spend(tenant_id)
        for window, cap in self._limits(limit).items():
            if cap is not None and spend[window] + cost > cap:
                return cap
        return None

    async def record_spend(self, tenant_id: str, amount_usd: float) -> None:
        if amount_usd <= 0:
            return

        keys = self._spend_keys(tenant_id)
        pipe = self._redis.pipeline(transaction=True)
        pipe.incrbyfloat(keys["daily"], amount_usd)
        pipe.expire(keys["daily"], self._seconds_until_midnight_utc())
        pipe.incrbyfloat(keys["weekly"], amount_usd)
        pipe.expire(keys["weekly"], WEEK_TTL_SECONDS)
        pipe.incrbyfloat(keys["monthly"], amount_usd)
        pipe.expire(keys["monthly"], MONTH_TTL_SECONDS)
        await pipe.execute()

    async def get_counters(self, tenant_id: str, limit: Optional[SpendingLimit] = None) -> dict:
        """Current-window counters, for dashboards and the spend notifier."""
        spend = await self.get_spend(tenant_id)
        minute_val, hour_val, day_val = await self._redis.mget(
            self._minute_key(tenant_id), self._hour_key(tenant_id), self._requests_key(tenant_id)
        )
        counters = {
            "tenant_id": tenant_id,
            "spend_usd": spend,
            "requests_this_minute": int(minute_val or 0),
            "requests_this_hour": int(hour_val or 0),
            "requests_today": int(day_val or 0),
            "date_key": self._now().strftime("%Y%m%d"),
        }
        if limit is not None:
            counters["remaining_usd"] = {
                window: (max(cap - spend[window], 0.0) if cap is not None else None)
                for window, cap in self._limits(limit).items()
            }
            counters["exceeded"] = any(
                cap is not None and spend[window] >= cap
                for window, cap in self._limits(limit).items()
            )
        return counters

    async def health_check(self) -> bool:
        try:
            pong = await self._redis.ping()
            return bool(pong)
        except Exception:
            return False
