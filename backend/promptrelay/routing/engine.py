import asyncio
import json
import time
from typing import Awaitable, Callable, Optional, Union

from promptrelay.core.exceptions import (
    CostThresholdExceeded,
    ProviderError,
    SpendingLimitExceeded,
)
from promptrelay.core.logging import get_logger
from promptrelay.models.policy import RoutingPolicy, SpendingLimit
from promptrelay.models.request import ChatMessage, OutputFormat
from promptrelay.models.routing import (
    FALLBACK_MODEL,
    CostAction,
    ErrorClass,
    RoutingAttempt,
    RoutingDecision,
    RoutingResult,
)
from promptrelay.providers.base import ModelClient
from promptrelay.routing.cost import CostEstimator
from promptrelay.storage.spending_limiter import SpendingLimiter

logger = get_logger(__name__)

AttemptError = Union[ProviderError, CostThresholdExceeded, SpendingLimitExceeded]


def classify_cost(policy: RoutingPolicy, estimated_cost: float) -> CostAction:
    block = policy.cost_threshold_block
    warn = policy.cost_threshold_warning
    if block is not None and estimated_cost >= block:
        return CostAction.BLOCK
    if warn is not None and estimated_cost >= warn:
        return CostAction.WARN
    return CostAction.PROCEED


def classify_error(error: Exception) -> ErrorClass:
    if isinstance(error, CostThresholdExceeded):
        return ErrorClass.COST_THRESHOLD
    if isinstance(error, SpendingLimitExceeded):
        return ErrorClass.SPENDING_LIMIT
    if not isinstance(error, ProviderError):
        return ErrorClass.UNKNOWN_ERROR

    status = error.original_status
    message = str(error).lower()
    if status == 408 or "timeout" in message or "timed out" in message:
        return ErrorClass.TIMEOUT
    if status == 429 or "rate limit" in message:
        return ErrorClass.RATE_LIMIT
    if status in (401, 403) or "authentication" in message or "unauthorized" in message:
        return ErrorClass.AUTH_ERROR
    if status >= 500:
        return ErrorClass.SERVER_ERROR
    if 400 <= status < 500:
        return ErrorClass.BAD_REQUEST
    if "connection" in message or "connect" in message:
        return ErrorClass.CONNECTION_ERROR
    return ErrorClass.UNKNOWN_ERROR


def should_fall_back(policy: RoutingPolicy, error_class: ErrorClass, attempt_number: int) -> bool:
    """Whether the next model in the policy should be tried after a failed attempt."""
    if policy.retry_attempts is not None and attempt_number >= policy.retry_attempts:
        return False
    return error_class.value in policy.failure_conditions


def fallback_response(prompt: str, format: OutputFormat, last_error: Optional[Exception]) -> str:
    """Deterministic placeholder returned when every model failed."""
    excerpt = prompt[:50]
    error = f"{type(last_error).__name__}: {last_error}" if last_error else "no model attempted"
    format = OutputFormat(format)
    if format == OutputFormat.JSON:
        return json.dumps(
            {
                "response": f"Fallback response for: {excerpt}...",
                "error": "API unavailable",
                "last_error": error,
            }
        )
    if format == OutputFormat.MARKDOWN:
        return (
            "# Fallback Response\n\n"
            f"API temporarily unavailable for prompt: {excerpt}...\n\n"
            f"_Last error: {error}_"
        )
    if format == OutputFormat.HTML:
        return (
            "<p>API temporarily unavailable for prompt: "
            f"{excerpt}...</p><p><em>Last error: {error}</em></p>"
        )
    return f"Fallback response for: {excerpt}... (last error: {error})"


class RoutingEngine:
    """
    Tries a policy's models in order with cost-based admission and
    failure-based fallback.

    Attempts are strictly sequential. The engine never raises for a
    classified attempt failure; when every model fails it returns a
    fallback response and a decision whose final model is ``fallback``.
    """

    def __init__(
        self,
        client: ModelClient,
        estimator: CostEstimator,
        limiter: Optional[SpendingLimiter] = None,
        temperature: Optional[float] = 0.7,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.estimator = estimator
        self.limiter = limiter
        self.temperature = temperature
        self._sleep = sleep

    async def route_and_execute(
        self,
        policy: RoutingPolicy,
        prompt: str,
        format: OutputFormat,
        input_tokens: int,
        max_output_tokens: int,
        tenant_id: str,
        spending_limit: Optional[SpendingLimit] = None,
        requested_model: Optional[str] = None,
        policy_used: bool = True,
    ) -> RoutingResult:
        models = policy.ordered_models
        messages = [ChatMessage(role="user", content=prompt)]
        decision = RoutingDecision(
            policy_used=policy_used,
            policy_name=policy.name if policy_used else None,
            requested_model=requested_model or policy.primary_model,
        )
        last_error: Optional[AttemptError] = None

        for index, model in enumerate(models):
            attempt_number = index + 1
            estimated = self.estimator.estimate(model, input_tokens, max_output_tokens)
            attempt = RoutingAttempt(
                model=model,
                estimated_cost=estimated,
                cost_action=classify_cost(policy, estimated),
            )
            started = time.monotonic()

            try:
                await self._admit(policy, attempt, decision, tenant_id, spending_limit)
                completion = await self.client.complete(
                    model,
                    messages,
                    max_tokens=max_output_tokens,
                    temperature=self.temperature,
                    format=format,
                )
            except (ProviderError, CostThresholdExceeded, SpendingLimitExceeded) as e:
                last_error = e
                attempt.error_class = classify_error(e)
                attempt.error_type = type(e).__name__
                attempt.error_message = e.message
                attempt.latency_ms = int((time.monotonic() - started) * 1000)
                decision.record(attempt)
                logger.warning(
                    "routing_attempt_failed",
                    tenant_id=tenant_id,
                    model=model,
                    attempt=attempt_number,
                    error_class=attempt.error_class.value,
                    error=e.message,
                )

                if not should_fall_back(policy, attempt.error_class, attempt_number):
                    if index < len(models) - 1:
                        logger.info(
                            "routing_fallback_stopped",
                            tenant_id=tenant_id,
                            error_class=attempt.error_class.value,
                            attempt=attempt_number,
                        )
                    break
                if index < len(models) - 1 and policy.retry_delay_seconds > 0:
                    await self._sleep(policy.retry_delay_seconds)
                continue

            attempt.success = True
            attempt.response_length = len(completion.raw_text)
            attempt.latency_ms = int((time.monotonic() - started) * 1000)
            decision.record(attempt)
            decision.finalize(model)
            logger.info(
                "routing_attempt_succeeded",
                tenant_id=tenant_id,
                model=model,
                attempt=attempt_number,
                estimated_cost=estimated,
                fallback=index > 0,
            )
            return RoutingResult(
                raw_response=completion.raw_text,
                decision=decision,
                usage=completion.usage,
                estimated_cost=estimated,
                reported_cost=completion.cost_usd,
            )

        decision.finalize(FALLBACK_MODEL)
        logger.error(
            "routing_exhausted",
            tenant_id=tenant_id,
            models_tried=[a.model for a in decision.attempts],
            last_error=str(last_error) if last_error else None,
        )
        return RoutingResult(
            raw_response=fallback_response(prompt, format, last_error),
            decision=decision,
        )

    async def _admit(
        self,
        policy: RoutingPolicy,
        attempt: RoutingAttempt,
        decision: RoutingDecision,
        tenant_id: str,
        spending_limit: Optional[SpendingLimit],
    ) -> None:
        """Cost-threshold and spending-limit gate for one model attempt."""
        if attempt.cost_action == CostAction.BLOCK:
            raise CostThresholdExceeded(attempt.model, attempt.estimated_cost, policy.cost_threshold_block)
        if attempt.cost_action == CostAction.WARN:
            decision.warn(
                f"{attempt.model}: estimated cost {attempt.estimated_cost:.6f} "
                f">= warning threshold {policy.cost_threshold_warning:.6f}"
            )

        if spending_limit is None or self.limiter is None:
            return
        cap = await self.limiter.would_exceed(tenant_id, spending_limit, attempt.estimated_cost)
        if cap is None:
            return
        if spending_limit.block_on_exceed:
            raise SpendingLimitExceeded(tenant_id, attempt.estimated_cost, cap)
        decision.warn(f"{attempt.model}: spending limit {cap:.2f} would be exceeded")
