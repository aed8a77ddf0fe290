from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class PromptRelayError(Exception):
    """Base exception for all PromptRelay errors."""
    status_code: int = 500
    error_code: str = "internal_error"
    # Whether the outer job retry should re-enqueue the request.
    retryable: bool = True

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidRequest(PromptRelayError):
    status_code = 400
    error_code = "invalid_request"
    retryable = False


class FetchFailure(PromptRelayError):
    status_code = 502
    error_code = "fetch_failure"

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(message)


class FetcherNotFound(FetchFailure):
    status_code = 404
    error_code = "fetcher_not_found"

    def __init__(self, key: str):
        super().__init__(key, f"No fetcher registered for key: {key}")


class CostThresholdExceeded(PromptRelayError):
    status_code = 402
    error_code = "cost_threshold_exceeded"

    def __init__(self, model: str, estimated_cost: float, threshold: float):
        self.model = model
        self.estimated_cost = estimated_cost
        self.threshold = threshold
        super().__init__(
            f"Estimated cost {estimated_cost:.6f} for '{model}' meets block threshold {threshold:.6f}"
        )


class SpendingLimitExceeded(PromptRelayError):
    status_code = 402
    error_code = "spending_limit_exceeded"
    retryable = False

    def __init__(
        self,
        tenant_id: str,
        estimated_cost: float,
        limit: float,
        spent: Optional[float] = None,
    ):
        self.tenant_id = tenant_id
        self.estimated_cost = estimated_cost
        self.limit = limit
        self.spent = spent
        if spent is not None:
            message = (
                f"Spending limit {limit:.2f} for workspace '{tenant_id}' "
                f"already reached (spent {spent:.6f})"
            )
        else:
            message = (
                f"Spending limit {limit:.2f} for workspace '{tenant_id}' "
                f"would be exceeded by a request costing {estimated_cost:.6f}"
            )
        super().__init__(message)


class RateLimitExceeded(PromptRelayError):
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(self, tenant_id: str, count: int, limit: int, window: str = "minute"):
        self.tenant_id = tenant_id
        self.count = count
        self.limit = limit
        self.window = window
        super().__init__(
            f"Workspace '{tenant_id}' made {count} requests this {window} (limit {limit})"
        )


class ProviderError(PromptRelayError):
    status_code = 502
    error_code = "provider_error"

    def __init__(self, message: str, provider: str, original_status: int = 0):
        self.provider = provider
        self.original_status = original_status
        super().__init__(message)


class OrchestrationFailure(PromptRelayError):
    error_code = "orchestration_failure"


class OutputNotFound(PromptRelayError):
    status_code = 404
    error_code = "output_not_found"
    retryable = False

    def __init__(self, output_id: str):
        self.output_id = output_id
        super().__init__(f"Output '{output_id}' not found")


async def promptrelay_exception_handler(
    request: Request, exc: PromptRelayError
) -> JSONResponse:
    content = {
        "error": {
            "code": exc.error_code,
            "message": exc.message,
            "type": type(exc).__name__,
        }
    }
    return JSONResponse(status_code=exc.status_code, content=content)
