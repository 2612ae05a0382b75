# medqbank/api/v1/routes/validation.py
from dataclasses import asdict
from typing import Literal
from fastapi import APIRouter, Depends, File, UploadFile, Query
import logging

from medqbank.core.config import settings
from medqbank.core.exceptions import BadRequestError, NotFoundError
from medqbank.core.schemas.validation import ExportRequest, ValidationResponse
from medqbank.core.utils import file_response, require_admin
from medqbank.models.user import User
from medqbank.services.reports import (
    bad_file_name, build_bad_workbook, build_good_workbook, build_text_report,
    good_file_name, report_file_name,
)
from medqbank.services.row_classifier import BadRow, GoodRow, classify_workbook
from medqbank.services.headers import canonical_sheet, infer_sheet_type
from medqbank.services.validation_store import StoredValidation, validation_store
from medqbank.services.workbook import ALLOWED_EXTENSIONS, XLSX_MIME, check_upload, read_workbook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/validation", tags=["validation"])


@router.post("", response_model=ValidationResponse)
async def validate_file(
    file: UploadFile = File(...),
    admin: User = Depends(require_admin),
):
    """Классическая проверка файла: строки делятся на good / bad"""
    data = await file.read()
    filename = file.filename or "upload.xlsx"
    check_upload(filename, file.content_type, len(data))

    result = classify_workbook(read_workbook(data, filename))
    report = build_text_report(filename, result)
    stored = StoredValidation(
        file_name=filename,
        good_file=build_good_workbook(result.good) if result.good else None,
        bad_file=build_bad_workbook(result.bad) if result.bad else None,
        report=report,
        summary={"good": result.good_count, "bad": result.bad_count, "total": result.total_count},
    )
    session_id = validation_store.store(stored)
    logger.info(
        f"✅ Validation of {filename} by user {admin.id}: "
        f"{result.good_count} good, {result.bad_count} bad (session {session_id})"
    )

    return ValidationResponse(
        good=[g.to_dict() for g in result.good],
        bad=[b.to_dict() for b in result.bad],
        goodCount=result.good_count,
        badCount=result.bad_count,
        totalCount=result.total_count,
        sessionId=session_id,
        fileName=filename,
        sheets=[asdict(s) for s in result.sheets],
    )


def _stored(session_id: str) -> StoredValidation:
    stored = validation_store.get(session_id)
    if stored is None:
        raise NotFoundError("Validation session not found or expired")
    return stored


@router.get("")
async def validation_info(admin: User = Depends(require_admin)):
    """Возможности эндпоинта проверки"""
    return {
        "message": "Classic validation endpoint",
        "supportedFormats": [ext.lstrip(".") for ext in ALLOWED_EXTENSIONS],
        "maxFileSize": f"{settings.imports.MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
        "features": ["Data validation", "Format correction", "Duplicate detection", "Structure validation"],
    }


@router.get("/sessions/{session_id}")
async def validation_session(
    session_id: str,
    admin: User = Depends(require_admin),
):
    """Сводка сохранённой проверки"""
    stored = _stored(session_id)
    return {
        "sessionId": session_id,
        "fileName": stored.file_name,
        **stored.summary,
        "hasGoodFile": stored.good_file is not None,
        "hasErrorFile": stored.bad_file is not None,
    }


@router.get("/download")
async def download_validation_file(
    type: Literal["good", "error", "report"] = Query(...),
    session: str = Query(...),
    admin: User = Depends(require_admin),
):
    stored = _stored(session)
    if type == "report":
        return file_response(stored.report.encode("utf-8"), report_file_name(stored.file_name), "text/plain; charset=utf-8")
    content = stored.good_file if type == "good" else stored.bad_file
    if content is None:
        raise BadRequestError("No data to export")
    name = good_file_name(stored.file_name) if type == "good" else bad_file_name(stored.file_name)
    return file_response(content, name, XLSX_MIME)


@router.get("/export")
async def export_from_session(
    mode: Literal["good", "bad"] = Query(...),
    sessionId: str = Query(...),
    admin: User = Depends(require_admin),
):
    stored = _stored(sessionId)
    content = stored.good_file if mode == "good" else stored.bad_file
    if content is None:
        raise BadRequestError("No data to export")
    name = good_file_name(stored.file_name) if mode == "good" else bad_file_name(stored.file_name)
    return file_response(content, name, XLSX_MIME)


@router.post("/export")
async def export_from_payload(
    payload: ExportRequest,
    admin: User = Depends(require_admin),
):
    """Экспорт из строк, присланных клиентом (после ручных правок)"""
    if payload.sessionId and not payload.good and not payload.bad:
        return await export_from_session(payload.mode, payload.sessionId, admin)

    filename = payload.fileName or "validation"
    if payload.mode == "good":
        rows = [
            GoodRow(
                sheet=r.sheet,
                sheet_type=canonical_sheet(r.sheet) or infer_sheet_type(r.data.keys()),
                row=r.row,
                data=r.data,
            )
            for r in payload.good
        ]
        return file_response(build_good_workbook(rows), good_file_name(filename), XLSX_MIME)

    rows = [BadRow(sheet=r.sheet, row=r.row, reason=r.reason, original=r.original) for r in payload.bad]
    return file_response(build_bad_workbook(rows), bad_file_name(filename), XLSX_MIME)
