import json
import time
import uuid
from typing import Any, Optional

from promptrelay.context.enrichment import ContextEnricher
from promptrelay.core.exceptions import OrchestrationFailure, PromptRelayError
from promptrelay.core.logging import get_logger
from promptrelay.models.output import Output, OutputStatus
from promptrelay.models.policy import RoutingPolicy
from promptrelay.models.request import GenerationRequest, OutputFormat
from promptrelay.models.routing import RoutingResult
from promptrelay.observability.audit_log import AuditLogger
from promptrelay.prompting.renderer import PromptLibrary, render_template
from promptrelay.routing.cost import CostEstimator, estimate_tokens, max_output_tokens
from promptrelay.routing.engine import RoutingEngine
from promptrelay.routing.policy import WorkspaceDirectory
from promptrelay.storage.output_store import OutputStore
from promptrelay.storage.spending_limiter import SpendingLimiter

logger = get_logger(__name__)


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
    return text.strip()


def parse_response(raw: str, format: OutputFormat) -> Any:
    """Format-dependent parsed form of a model response."""
    if OutputFormat(format) != OutputFormat.JSON:
        return raw
    try:
        return json.loads(_strip_fences(raw))
    except (json.JSONDecodeError, IndexError):
        return {"response": raw, "format_error": "Invalid JSON response"}


class JobOrchestrator:
    """
    Executes one GenerationRequest end to end.

    admission -> enrichment -> render -> token budget -> routing -> persist
    -> cost settlement -> telemetry. Anything unexpected propagates so the
    job worker can retry the whole pipeline from the top.
    """

    def __init__(
        self,
        workspaces: WorkspaceDirectory,
        limiter: SpendingLimiter,
        enricher: ContextEnricher,
        prompts: PromptLibrary,
        engine: RoutingEngine,
        estimator: CostEstimator,
        store: OutputStore,
        audit: Optional[AuditLogger] = None,
        chars_per_token: int = 4,
    ):
        self.workspaces = workspaces
        self.limiter = limiter
        self.enricher = enricher
        self.prompts = prompts
        self.engine = engine
        self.estimator = estimator
        self.store = store
        self.audit = audit
        self.chars_per_token = chars_per_token

    async def execute(self, request: GenerationRequest) -> Output:
        started = time.monotonic()
        log = logger.bind(tenant_id=request.tenant_id, job_id=request.job_id, model=request.model)

        try:
            # 1. Admission, before any fetcher or model call
            workspace = self.workspaces.resolve(request.tenant_id)
            admission = await self.limiter.check_admission(workspace)

            # 2. Enrichment (never raises)
            enrichment = await self.enricher.enrich(request.context, request.fetchers)

            # 3. Render
            prompt = render_template(self.prompts.resolve(request.template), enrichment.context)

            # 4. Token budget
            input_tokens = estimate_tokens(prompt, self.chars_per_token)
            max_tokens = max_output_tokens(request.format)

            # 5. Route
            policy = workspace.active_policy
            result = await self.engine.route_and_execute(
                policy or RoutingPolicy.direct(request.model),
                prompt,
                request.format,
                input_tokens,
                max_tokens,
                tenant_id=request.tenant_id,
                spending_limit=workspace.active_spending_limit,
                requested_model=request.model,
                policy_used=policy is not None,
            )
            decision = result.decision
            decision.warnings.extend(admission.reasons)
            decision.warnings.extend(f"fetcher {k}: {v}" for k, v in enrichment.errors.items())

            # 6. Persist
            last_failure = decision.attempts[-1] if decision.fallback_used and decision.attempts else None
            output = await self.store.persist(
                Output(
                    id=str(uuid.uuid4()),
                    job_id=request.job_id,
                    tenant_id=request.tenant_id,
                    user_id=request.user_id,
                    agent_id=request.agent_id,
                    source_output_id=request.source_output_id,
                    template_name=request.template,
                    model_name=request.model,
                    format=request.format,
                    prompt=prompt,
                    context=enrichment.context,
                    raw_response=result.raw_response,
                    parsed_output=parse_response(result.raw_response, request.format),
                    status=OutputStatus.COMPLETED,
                    error=last_failure.error_message if last_failure else None,
                    routing_decision=decision,
                    estimated_cost=result.estimated_cost,
                    input_tokens=input_tokens,
                    output_tokens=estimate_tokens(result.raw_response, self.chars_per_token),
                    cost_warning=decision.cost_warning,
                )
            )

            # 7. Settle cost against what the provider reported
            output = await self._settle_cost(output, result)

        except PromptRelayError as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            log.warning("job_rejected", error_code=e.error_code, error=e.message, duration_ms=duration_ms)
            await self._audit_failure(request, e.error_code, e.message, duration_ms)
            raise
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            log.error("job_failed", error=str(e), error_type=type(e).__name__, duration_ms=duration_ms)
            await self._audit_failure(request, "orchestration_failure", str(e), duration_ms)
            raise OrchestrationFailure(f"{type(e).__name__}: {e}") from e

        # 8. Telemetry
        duration_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "job_completed",
            output_id=output.id,
            final_model=output.final_model,
            fallback_used=decision.fallback_used,
            attempts=decision.total_attempts,
            input_tokens=output.input_tokens,
            output_tokens=output.output_tokens,
            estimated_cost=output.estimated_cost,
            actual_cost=output.actual_cost,
            cost_warning=output.cost_warning,
            duration_ms=duration_ms,
        )
        if self.audit is not None:
            await self.audit.log(self.audit.build_record(output, duration_ms, decision.warnings))
        return output

    async def _settle_cost(self, output: Output, result: RoutingResult) -> Output:
        """Record spend and replace the estimate with provider-confirmed figures."""
        if result.decision.fallback_used:
            return output

        usage = result.usage
        actual = result.reported_cost
        if actual is None and usage is not None:
            actual = self.estimator.estimate(
                result.decision.final_model, usage.prompt_tokens, usage.completion_tokens
            )

        await self.limiter.record_spend(
            output.tenant_id, actual if actual is not None else output.estimated_cost
        )
        if actual is None:
            return output
        return await self.store.correct_cost(
            output.id,
            actual,
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
        )

    async def _audit_failure(
        self, request: GenerationRequest, error_code: str, message: str, duration_ms: int
    ) -> None:
        if self.audit is None:
            return
        await self.audit.log(self.audit.build_failure_record(request, error_code, message, duration_ms))
