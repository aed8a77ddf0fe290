import asyncio
import random
import signal
from typing import Callable, Optional

from promptrelay.core.components import build_components
from promptrelay.core.config import get_settings
from promptrelay.core.logging import configure_logging, get_logger
from promptrelay.jobs.orchestrator import JobOrchestrator
from promptrelay.jobs.queue import JobEnvelope, JobQueue, backoff_seconds
from promptrelay.storage.output_store import OutputStore

logger = get_logger(__name__)


class JobWorker:
    """
    Drains the job queue and owns the outer retry layer.

    A failed execution is re-enqueued with exponential backoff and jitter
    until the retry budget is spent or the error is not retryable; then the
    job is dead-lettered and a failed Output is recorded for it.
    """

    def __init__(
        self,
        queue: JobQueue,
        orchestrator: JobOrchestrator,
        store: OutputStore,
        max_retries: int = 5,
        retry_base_seconds: float = 5.0,
        retry_max_seconds: float = 300.0,
        poll_seconds: float = 1.0,
        rand: Callable[[float, float], float] = random.uniform,
    ):
        self.queue = queue
        self.orchestrator = orchestrator
        self.store = store
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.poll_seconds = poll_seconds
        self._rand = rand

    async def run_once(self) -> bool:
        """Process at most one job. Returns False when the queue was empty."""
        await self.queue.promote_due()
        envelope = await self.queue.dequeue()
        if envelope is None:
            return False

        logger.info("job_started", job_id=envelope.job_id, attempt=envelope.attempt)
        try:
            output = await self.orchestrator.execute(envelope.request)
        except Exception as e:
            await self._handle_failure(envelope, e)
            return True

        logger.info(
            "job_succeeded",
            job_id=envelope.job_id,
            output_id=output.id,
            final_model=output.final_model,
            attempt=envelope.attempt,
        )
        return True

    async def _handle_failure(self, envelope: JobEnvelope, error: Exception) -> None:
        envelope.last_error = f"{type(error).__name__}: {error}"
        retryable = getattr(error, "retryable", True)

        if not retryable or envelope.attempt >= self.max_retries:
            logger.error(
                "job_failed_permanently",
                job_id=envelope.job_id,
                attempt=envelope.attempt,
                retryable=retryable,
                error=envelope.last_error,
            )
            await self.queue.dead_letter(envelope)
            await self.store.persist_failure(envelope.request, envelope.last_error, job_id=envelope.job_id)
            return

        delay = backoff_seconds(
            envelope.attempt,
            base=self.retry_base_seconds,
            maximum=self.retry_max_seconds,
            rand=self._rand,
        )
        envelope.attempt += 1
        logger.warning(
            "job_failed_will_retry",
            job_id=envelope.job_id,
            attempt=envelope.attempt,
            delay_seconds=round(delay, 3),
            error=envelope.last_error,
        )
        await self.queue.retry_later(envelope, delay)

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        logger.info("worker_started", max_retries=self.max_retries)
        while not stop.is_set():
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.error("worker_iteration_failed", error=str(e), error_type=type(e).__name__)
                processed = False
            if not processed:
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.poll_seconds)
                except asyncio.TimeoutError:
                    pass
        logger.info("worker_stopped")


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=not settings.is_development)
    components = build_components(settings)
    await components.output_store.create_schema()

    worker = JobWorker(
        components.job_queue,
        components.orchestrator,
        components.output_store,
        max_retries=settings.job_max_retries,
        retry_base_seconds=settings.job_retry_base_seconds,
        retry_max_seconds=settings.job_retry_max_seconds,
        poll_seconds=settings.worker_poll_seconds,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await worker.run_forever(stop)
    finally:
        await components.close()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
