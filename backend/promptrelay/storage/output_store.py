from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncEngine

from promptrelay.core.exceptions import InvalidRequest, OutputNotFound
from promptrelay.core.logging import get_logger
from promptrelay.models.output import Feedback, Output, OutputStatus
from promptrelay.models.request import GenerationRequest

logger = get_logger(__name__)

metadata = MetaData()

llm_outputs = Table(
    "llm_outputs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("job_id", String(64), index=True),
    Column("tenant_id", String(128), nullable=False, index=True),
    Column("user_id", String(128)),
    Column("agent_id", String(128)),
    Column("source_output_id", String(36)),
    Column("template_name", Text, nullable=False),
    Column("model_name", String(128), nullable=False),
    Column("format", String(16), nullable=False),
    Column("prompt", Text, nullable=False, default=""),
    Column("context", JSON),
    Column("raw_response", Text),
    Column("parsed_output", JSON),
    Column("status", String(16), nullable=False),
    Column("error", Text),
    Column("routing_decision", JSON),
    Column("estimated_cost", Float, nullable=False, default=0.0),
    Column("actual_cost", Float),
    Column("input_tokens", Integer, nullable=False, default=0),
    Column("output_tokens", Integer, nullable=False, default=0),
    Column("cost_warning", Boolean, nullable=False, default=False),
    Column("feedback", String(16), nullable=False, default=Feedback.NONE.value),
    Column("feedback_comment", Text),
    Column("feedback_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutputStore:
    """
    Durable Output records in ``llm_outputs``.

    Completed rows are never deleted or rewritten; only the cost-correction
    and feedback columns change after creation. Re-run and regenerate build a
    new GenerationRequest instead of touching the source row.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def persist(self, output: Output) -> Output:
        now = _utcnow()
        if not output.id:
            output.id = str(uuid.uuid4())
        output.created_at = output.created_at or now
        output.updated_at = now

        row = output.model_dump(mode="json")
        row["created_at"] = output.created_at
        row["updated_at"] = output.updated_at
        row["feedback_at"] = output.feedback_at

        async with self._engine.begin() as conn:
            await conn.execute(llm_outputs.insert().values(**row))

        logger.info(
            "output_persisted",
            output_id=output.id,
            tenant_id=output.tenant_id,
            status=output.status.value,
            final_model=output.final_model,
        )
        return output

    async def persist_failure(
        self,
        request: GenerationRequest,
        error: str,
        job_id: Optional[str] = None,
    ) -> Output:
        """Record a request whose job was dead-lettered."""
        output = Output(
            id=str(uuid.uuid4()),
            job_id=job_id or request.job_id,
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            agent_id=request.agent_id,
            source_output_id=request.source_output_id,
            template_name=request.template,
            model_name=request.model,
            format=request.format,
            context=request.context,
            status=OutputStatus.FAILED,
            error=error,
        )
        return await self.persist(output)

    async def get(self, output_id: str) -> Output:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(select(llm_outputs).where(llm_outputs.c.id == output_id))
            ).mappings().first()
        if row is None:
            raise OutputNotFound(output_id)
        return self._to_output(row)

    async def list_recent(self, tenant_id: str, limit: int = 20) -> List[Output]:
        query = (
            select(llm_outputs)
            .where(llm_outputs.c.tenant_id == tenant_id)
            .order_by(llm_outputs.c.created_at.desc())
            .limit(limit)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(query)).mappings().all()
        return [self._to_output(row) for row in rows]

    async def correct_cost(
        self,
        output_id: str,
        actual_cost: float,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
    ) -> Output:
        """Overwrite cost and token counts with provider-confirmed values.

        Applying the same correction twice leaves the row unchanged.
        """
        values: Dict[str, Any] = {"actual_cost": round(actual_cost, 6), "updated_at": _utcnow()}
        if input_tokens is not None:
            values["input_tokens"] = input_tokens
        if output_tokens is not None:
            values["output_tokens"] = output_tokens

        async with self._engine.begin() as conn:
            result = await conn.execute(
                update(llm_outputs).where(llm_outputs.c.id == output_id).values(**values)
            )
        if result.rowcount == 0:
            raise OutputNotFound(output_id)

        logger.info("output_cost_corrected", output_id=output_id, actual_cost=values["actual_cost"])
        return await self.get(output_id)

    async def set_feedback(
        self,
        output_id: str,
        feedback: Feedback,
        comment: Optional[str] = None,
    ) -> Output:
        now = _utcnow()
        async with self._engine.begin() as conn:
            result = await conn.execute(
                update(llm_outputs)
                .where(llm_outputs.c.id == output_id)
                .values(
                    feedback=Feedback(feedback).value,
                    feedback_comment=comment,
                    feedback_at=now,
                    updated_at=now,
                )
            )
        if result.rowcount == 0:
            raise OutputNotFound(output_id)

        logger.info("output_feedback_recorded", output_id=output_id, feedback=Feedback(feedback).value)
        return await self.get(output_id)

    async def replay(
        self,
        output_id: str,
        model: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> GenerationRequest:
        """Build a new request from a stored Output.

        With no overrides this is a re-run; a model or context override makes
        it a regenerate. The source Output is not modified either way.
        """
        if model is not None and not model.strip():
            raise InvalidRequest("Replay model override must not be blank")
        source = await self.get(output_id)
        return GenerationRequest(
            template=source.template_name,
            model=model or source.model_name,
            context=context if context is not None else dict(source.context),
            format=source.format,
            tenant_id=source.tenant_id,
            user_id=source.user_id,
            agent_id=source.agent_id,
            source_output_id=source.id,
        )

    @staticmethod
    def _to_output(row) -> Output:
        data = dict(row)
        data["context"] = data.get("context") or {}
        return Output.model_validate(data)

    async def health_check(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(select(1))
            return True
        except Exception:
            return False
