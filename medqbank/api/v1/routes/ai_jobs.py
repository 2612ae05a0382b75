# medqbank/api/v1/routes/ai_jobs.py
import asyncio
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from medqbank.core.config import settings
from medqbank.core.database import db_helper
from medqbank.core.exceptions import AuthorizationError, BadRequestError, NotFoundError
from medqbank.core.schemas.validation import AiJobPreview, AiJobResponse
from medqbank.core.utils import file_response, require_maintainer_or_admin
from medqbank.models.system import AiValidationJob, JobStatus
from medqbank.models.user import User
from medqbank.repositories.job_repository import JobRepository
from medqbank.services.ai_validation import ai_output_file_name, process_ai_validation_job, request_stop
from medqbank.services.billing_service import as_utc
from medqbank.services.workbook import XLSX_MIME, check_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ai-validation"])


async def _get_job(session: AsyncSession, job_id: int, user: User) -> AiValidationJob:
    job = await JobRepository(session).get(job_id)
    if job is None:
        raise NotFoundError("Job not found")
    if job.user_id != user.id and not user.is_admin:
        raise AuthorizationError("You can only access your own jobs")
    return job


@router.post("/validation/ai", response_model=AiJobResponse, status_code=status.HTTP_201_CREATED)
async def create_ai_job(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    instructions: Optional[str] = Form(None),
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Создаёт задачу ИИ-проверки и запускает её в фоне"""
    data = await file.read()
    filename = file.filename or "upload.xlsx"
    check_upload(filename, file.content_type, len(data))

    ai = settings.ai
    job = await JobRepository(session).create(
        user_id=user.id,
        file_name=filename,
        original_file_name=filename,
        file_size=len(data),
        status=JobStatus.QUEUED.value,
        message="En attente",
        instructions=instructions,
        config={
            "aiModel": ai.AZURE_OPENAI_DEPLOYMENT,
            "maxRetries": ai.AI_MAX_ATTEMPTS,
            "batchSize": ai.AI_BATCH_SIZE,
            "concurrency": ai.AI_CONCURRENCY,
            "qualityThreshold": 0.8,
        },
    )
    background_tasks.add_task(process_ai_validation_job, job.id, data, filename, instructions)
    logger.info(f"🚀 AI validation job {job.id} queued by user {user.id} ({filename})")
    return job


@router.get("/ai-jobs", response_model=List[AiJobResponse])
async def list_ai_jobs(
    admin: bool = False,
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1),
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Свои задачи; при admin=true все задачи (только для админов)"""
    if admin and not user.is_admin:
        raise AuthorizationError("Admin access required")
    return await JobRepository(session).list(
        user_id=None if admin else user.id,
        status=status_filter,
        limit=min(limit, 100),
    )


@router.get("/ai-jobs/{job_id}", response_model=AiJobResponse)
async def get_ai_job(
    job_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    return await _get_job(session, job_id, user)


@router.delete("/ai-jobs/{job_id}")
async def delete_ai_job(
    job_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    job = await _get_job(session, job_id, user)
    if job.status == JobStatus.PROCESSING.value:
        raise BadRequestError("Cannot delete a job while it is processing. Stop it first")
    await JobRepository(session).delete(job)
    logger.info(f"AI job {job_id} deleted by user {user.id}")
    return {"success": True}


@router.post("/ai-jobs/{job_id}/stop", response_model=AiJobResponse)
async def stop_ai_job(
    job_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Останавливает задачу: из очереди сразу, в работе между батчами"""
    job = await _get_job(session, job_id, user)
    if job.is_terminal:
        raise BadRequestError("Job already finished")
    request_stop(job.id)
    if job.status == JobStatus.QUEUED.value:
        job = await JobRepository(session).update(
            job.id,
            status=JobStatus.FAILED.value,
            message="Arrêté par l'utilisateur",
            completed_at=datetime.now(timezone.utc),
        )
    return job


@router.get("/ai-jobs/{job_id}/download")
async def download_ai_job(
    job_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    job = await _get_job(session, job_id, user)
    if job.status != JobStatus.COMPLETED.value or not job.output_file:
        raise BadRequestError("Job is not completed yet")
    return file_response(job.output_file, ai_output_file_name(job.original_file_name), XLSX_MIME)


def _eta_seconds(job: AiValidationJob) -> Optional[int]:
    started = as_utc(job.started_at)
    if job.is_terminal or started is None or not job.processed_items:
        return None
    elapsed = (datetime.now(timezone.utc) - started).total_seconds()
    if elapsed <= 0:
        return None
    rate = job.processed_items / elapsed
    remaining = max(0, job.total_items - job.processed_items)
    return int(remaining / rate)


@router.get("/ai-jobs/{job_id}/preview", response_model=AiJobPreview)
async def preview_ai_job(
    job_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    job = await _get_job(session, job_id, user)
    config = job.config or {}
    return AiJobPreview(
        job=AiJobResponse.model_validate(job),
        summary=config.get("stats") or {
            "total": job.total_items,
            "fixed": job.fixed_count,
            "processed": job.processed_items,
        },
        eta_seconds=_eta_seconds(job),
        sample=config.get("sample") or [],
    )


async def _job_events(job_id: int):
    """Один писатель: перечитывает job каждую секунду, шлёт при изменении updated_at"""
    last_stamp = None
    while True:
        async with db_helper.session_factory() as session:
            job = await JobRepository(session).get(job_id)
        if job is None:
            yield 'event: deleted\ndata: {}\n\n'
            break
        if job.updated_at != last_stamp:
            last_stamp = job.updated_at
            yield f"data: {AiJobResponse.model_validate(job).model_dump_json()}\n\n"
        if job.is_terminal:
            break
        await asyncio.sleep(settings.imports.SSE_POLL_INTERVAL)


@router.get("/ai-jobs/{job_id}/events")
async def ai_job_events(
    job_id: int,
    user: User = Depends(require_maintainer_or_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    await _get_job(session, job_id, user)
    return StreamingResponse(
        _job_events(job_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
