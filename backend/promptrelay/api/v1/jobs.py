from fastapi import APIRouter, Depends, Request

from promptrelay.jobs.orchestrator import JobOrchestrator
from promptrelay.jobs.queue import JobQueue
from promptrelay.models.output import Output
from promptrelay.models.request import GenerationRequest

router = APIRouter()


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


@router.post("/jobs", status_code=202)
async def enqueue_job(body: GenerationRequest, queue: JobQueue = Depends(get_job_queue)):
    job_id = await queue.enqueue(body)
    return {"job_id": job_id, "status": "queued"}


@router.post("/jobs/execute", response_model=Output)
async def execute_job(
    body: GenerationRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.execute(body)
