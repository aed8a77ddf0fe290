from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

DEFAULT_FAILURE_CONDITIONS = [
    "timeout",
    "rate_limit",
    "server_error",
    "connection_error",
    "cost_threshold",
    "spending_limit",
]

# Fallback chains filled in when a policy names a primary model but no fallbacks
DEFAULT_FALLBACKS = {
    "gpt-4": ["gpt-3.5-turbo"],
    "gpt-4-turbo": ["gpt-3.5-turbo"],
    "gpt-4o": ["gpt-3.5-turbo"],
    "claude-3-opus": ["claude-3-sonnet", "claude-3-haiku"],
    "claude-3-sonnet": ["claude-3-haiku"],
}


def default_fallbacks_for(model: str) -> List[str]:
    return list(DEFAULT_FALLBACKS.get(model, []))


class RoutingPolicy(BaseModel):
    name: str = "default"
    primary_model: str
    fallback_models: Optional[List[str]] = None   # None = defaults for the primary model
    cost_threshold_warning: Optional[float] = None
    cost_threshold_block: Optional[float] = None
    retry_delay_seconds: float = 0.0
    retry_attempts: Optional[int] = None      # None = bounded only by the model list
    failure_conditions: List[str] = Field(default_factory=lambda: list(DEFAULT_FAILURE_CONDITIONS))
    enabled: bool = True

    @model_validator(mode="after")
    def _check_thresholds(self) -> "RoutingPolicy":
        warn, block = self.cost_threshold_warning, self.cost_threshold_block
        if warn is not None and warn < 0:
            raise ValueError("cost_threshold_warning must be non-negative")
        if block is not None and block < 0:
            raise ValueError("cost_threshold_block must be non-negative")
        if warn is not None and block is not None and block < warn:
            raise ValueError("cost_threshold_block must be >= cost_threshold_warning")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be non-negative")
        if self.fallback_models is None:
            self.fallback_models = default_fallbacks_for(self.primary_model)
        return self

    @property
    def ordered_models(self) -> List[str]:
        return [self.primary_model] + [m for m in self.fallback_models if m]

    @classmethod
    def direct(cls, model: str) -> "RoutingPolicy":
        """Single-model policy with no thresholds, used when a workspace has none."""
        return cls(name="direct", primary_model=model, fallback_models=[], failure_conditions=[])


class SpendingLimit(BaseModel):
    enabled: bool = True
    daily_limit: Optional[float] = None
    weekly_limit: Optional[float] = None
    monthly_limit: Optional[float] = None
    block_on_exceed: bool = True
    rate_limit_enabled: bool = False
    rate_limit_per_minute: int = 60
    rate_limit_per_hour: Optional[int] = None
    rate_limit_per_day: Optional[int] = None
    block_on_rate_limit: bool = True

    @model_validator(mode="after")
    def _check_limits(self) -> "SpendingLimit":
        for name in ("daily_limit", "weekly_limit", "monthly_limit"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be greater than 0")
        for name in ("rate_limit_per_minute", "rate_limit_per_hour", "rate_limit_per_day"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be greater than 0")
        return self

    @property
    def rate_windows(self) -> Dict[str, Optional[int]]:
        return {
            "minute": self.rate_limit_per_minute,
            "hour": self.rate_limit_per_hour,
            "day": self.rate_limit_per_day,
        }

    @property
    def has_spend_cap(self) -> bool:
        return any(v is not None for v in (self.daily_limit, self.weekly_limit, self.monthly_limit))


class Workspace(BaseModel):
    tenant_id: str
    name: str = ""
    routing_policy: Optional[RoutingPolicy] = None
    spending_limit: Optional[SpendingLimit] = None

    @property
    def active_policy(self) -> Optional[RoutingPolicy]:
        if self.routing_policy and self.routing_policy.enabled:
            return self.routing_policy
        return None

    @property
    def active_spending_limit(self) -> Optional[SpendingLimit]:
        if self.spending_limit and self.spending_limit.enabled:
            return self.spending_limit
        return None
