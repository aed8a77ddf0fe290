from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from promptrelay.jobs.queue import JobQueue
from promptrelay.models.output import Feedback, Output
from promptrelay.storage.output_store import OutputStore

router = APIRouter()


class RegenerateBody(BaseModel):
    model: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class FeedbackBody(BaseModel):
    feedback: Feedback
    comment: Optional[str] = None


def get_output_store(request: Request) -> OutputStore:
    return request.app.state.output_store


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


@router.get("/outputs", response_model=List[Output])
async def list_outputs(
    tenant_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    store: OutputStore = Depends(get_output_store),
):
    return await store.list_recent(tenant_id, limit=limit)


@router.get("/outputs/{output_id}", response_model=Output)
async def get_output(output_id: str, store: OutputStore = Depends(get_output_store)):
    return await store.get(output_id)


@router.post("/outputs/{output_id}/rerun", status_code=202)
async def rerun_output(
    output_id: str,
    store: OutputStore = Depends(get_output_store),
    queue: JobQueue = Depends(get_job_queue),
):
    replayed = await store.replay(output_id)
    job_id = await queue.enqueue(replayed)
    return {"job_id": job_id, "status": "queued", "source_output_id": output_id}


@router.post("/outputs/{output_id}/regenerate", status_code=202)
async def regenerate_output(
    output_id: str,
    body: RegenerateBody,
    store: OutputStore = Depends(get_output_store),
    queue: JobQueue = Depends(get_job_queue),
):
    replayed = await store.replay(output_id, model=body.model, context=body.context)
    job_id = await queue.enqueue(replayed)
    return {
        "job_id": job_id,
        "status": "queued",
        "source_output_id": output_id,
        "model": replayed.model,
    }


@router.post("/outputs/{output_id}/feedback", response_model=Output)
async def set_feedback(
    output_id: str,
    body: FeedbackBody,
    store: OutputStore = Depends(get_output_store),
):
    return await store.set_feedback(output_id, body.feedback, body.comment)
