"""
Append-only job telemetry log.

One JSONL line per executed or failed request: who asked, which models were
tried and why, which one answered, what it cost and how long it took. Lines
are never rewritten.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from promptrelay.core.logging import get_logger
from promptrelay.models.output import Output
from promptrelay.models.request import GenerationRequest

logger = get_logger(__name__)


class AuditLogger:
    """
    Append-only JSONL audit logger.
    Each line is a complete, self-contained job record.
    Writes are serialized with an asyncio lock.
    """

    def __init__(self, log_path: str = "logs/audit.jsonl"):
        self._path = Path(log_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        logger.info("audit_logger_ready", path=str(self._path))

    async def log(self, record: dict) -> None:
        """Append a single audit record. Never raises."""
        try:
            line = json.dumps(record, default=str) + "\n"
            async with self._lock:
                with open(self._path, "a", encoding="utf-8") as f:
                    f.write(line)
        except Exception as e:
            logger.error("audit_log_write_failed", error=str(e))

    def build_record(self, output: Output, duration_ms: int, warnings: Optional[list] = None) -> dict:
        decision = output.routing_decision
        return {
            # Identity
            "output_id": output.id,
            "job_id": output.job_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "tenant_id": output.tenant_id,
            "user_id": output.user_id or "unknown",
            "agent_id": output.agent_id,
            "source_output_id": output.source_output_id,

            # Request
            "template": output.template_name,
            "requested_model": output.model_name,
            "format": output.format.value,
            "status": output.status.value,

            # Routing
            "policy_used": decision.policy_used if decision else False,
            "policy_name": decision.policy_name if decision else None,
            "final_model": output.final_model,
            "fallback_used": decision.fallback_used if decision else False,
            "total_attempts": decision.total_attempts if decision else 0,
            "attempts": [
                {
                    "model": a.model,
                    "success": a.success,
                    "estimated_cost": a.estimated_cost,
                    "error_class": a.error_class.value if a.error_class else None,
                }
                for a in (decision.attempts if decision else [])
            ],

            # Performance + cost
            "duration_ms": duration_ms,
            "input_tokens": output.input_tokens,
            "output_tokens": output.output_tokens,
            "estimated_cost_usd": output.estimated_cost,
            "actual_cost_usd": output.actual_cost,
            "cost_warning": output.cost_warning,
            "warnings": warnings or [],

            "error": output.error,
        }

    def build_failure_record(
        self,
        request: GenerationRequest,
        error_code: str,
        error_message: str,
        duration_ms: int = 0,
    ) -> dict:
        """Minimal record for a request that failed before an Output existed."""
        return {
            "output_id": None,
            "job_id": request.job_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "tenant_id": request.tenant_id,
            "user_id": request.user_id or "unknown",
            "agent_id": request.agent_id,
            "source_output_id": request.source_output_id,
            "template": request.template,
            "requested_model": request.model,
            "format": request.format.value,
            "status": "failed",
            "policy_used": False,
            "policy_name": None,
            "final_model": None,
            "fallback_used": False,
            "total_attempts": 0,
            "attempts": [],
            "duration_ms": duration_ms,
            "input_tokens": 0,
            "output_tokens": 0,
            "estimated_cost_usd": 0.0,
            "actual_cost_usd": None,
            "cost_warning": False,
            "warnings": [],
            "error": f"{error_code}: {error_message}",
        }
