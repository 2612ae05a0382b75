# medqbank/api/v1/routes/questions.py
import asyncio
import json
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from medqbank.core.config import settings
from medqbank.core.database import db_helper
from medqbank.core.exceptions import BadRequestError, NotFoundError
from medqbank.core.schemas.validation import CsvImportResponse, ImportStartResponse
from medqbank.core.utils import require_admin
from medqbank.models.user import User
from medqbank.services.import_service import (
    ImportSession, import_csv_for_lecture, import_registry, run_bulk_import,
)
from medqbank.services.workbook import check_upload, file_extension

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/questions", tags=["questions-import"])


@router.post("/import", response_model=CsvImportResponse)
async def import_csv(
    file: UploadFile = File(...),
    lectureId: int = Form(...),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Импорт QROC из CSV в конкретный курс"""
    data = await file.read()
    if file_extension(file.filename or "") != ".csv":
        raise BadRequestError("Please upload a CSV file")
    check_upload(file.filename or "import.csv", file.content_type, len(data))
    text = data.decode("utf-8-sig", errors="replace")
    return await import_csv_for_lecture(session, lectureId, text)


@router.post("/bulk-import-progress", response_model=ImportStartResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_bulk_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    admin: User = Depends(require_admin),
):
    """Запускает импорт в фоне, прогресс по importId"""
    data = await file.read()
    filename = file.filename or "import.xlsx"
    check_upload(filename, file.content_type, len(data))

    state = import_registry.create()
    background_tasks.add_task(run_bulk_import, state, data, filename)
    logger.info(f"🚀 Bulk import {state.id} started by user {admin.id} ({filename}, {len(data)} bytes)")
    return ImportStartResponse(importId=state.id)


def _get_state(import_id: str) -> ImportSession:
    state = import_registry.get(import_id)
    if state is None:
        raise NotFoundError("Import session not found")
    return state


async def _progress_events(state: ImportSession):
    while True:
        yield f"data: {json.dumps(state.to_dict(), ensure_ascii=False)}\n\n"
        if state.progress >= 100 or state.finished_at is not None:
            break
        await asyncio.sleep(settings.imports.SSE_POLL_INTERVAL)


@router.get("/bulk-import-progress")
async def bulk_import_progress(
    request: Request,
    importId: str = Query(...),
    admin: User = Depends(require_admin),
):
    """JSON или SSE (Accept: text/event-stream)"""
    state = _get_state(importId)
    if "text/event-stream" in request.headers.get("accept", ""):
        return StreamingResponse(
            _progress_events(state),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )
    return state.to_dict()


@router.delete("/bulk-import-progress")
async def cancel_bulk_import(
    importId: str = Query(...),
    admin: User = Depends(require_admin),
):
    _get_state(importId)
    import_registry.cancel(importId)
    return {"success": True, "importId": importId}
