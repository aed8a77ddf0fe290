from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, PrivateAttr, computed_field

FALLBACK_MODEL = "fallback"


class CostAction(str, Enum):
    PROCEED = "proceed"
    WARN = "warn"
    BLOCK = "block"


class ErrorClass(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    CONNECTION_ERROR = "connection_error"
    AUTH_ERROR = "auth_error"
    BAD_REQUEST = "bad_request"
    COST_THRESHOLD = "cost_threshold"
    SPENDING_LIMIT = "spending_limit"
    UNKNOWN_ERROR = "unknown_error"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class Completion(BaseModel):
    """What a ModelClient returns for one successful call."""

    raw_text: str
    usage: Optional[Usage] = None
    cost_usd: Optional[float] = None   # authoritative cost, when the provider reports one


class RoutingAttempt(BaseModel):
    model: str
    estimated_cost: float = 0.0
    cost_action: CostAction = CostAction.PROCEED
    success: bool = False
    error_class: Optional[ErrorClass] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    response_length: int = 0
    latency_ms: int = 0


class RoutingDecision(BaseModel):
    policy_used: bool = False
    policy_name: Optional[str] = None
    requested_model: str
    attempts: List[RoutingAttempt] = Field(default_factory=list)
    final_model: Optional[str] = None
    cost_warning: bool = False
    warnings: List[str] = Field(default_factory=list)

    _finalized: bool = PrivateAttr(default=False)

    @computed_field
    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    @property
    def fallback_used(self) -> bool:
        return self.final_model == FALLBACK_MODEL

    def record(self, attempt: RoutingAttempt) -> None:
        if self._finalized:
            raise RuntimeError("routing decision already finalized")
        self.attempts.append(attempt)

    def finalize(self, model: str) -> None:
        if self._finalized:
            raise RuntimeError("final_model is set exactly once")
        self.final_model = model
        self._finalized = True

    def warn(self, message: str) -> None:
        self.cost_warning = True
        self.warnings.append(message)


class RoutingResult(BaseModel):
    raw_response: str
    decision: RoutingDecision
    usage: Optional[Usage] = None
    estimated_cost: float = 0.0
    reported_cost: Optional[float] = None
