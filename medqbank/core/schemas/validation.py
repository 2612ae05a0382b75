# medqbank/core/schemas/validation.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional, Literal
from datetime import datetime


class GoodRowSchema(BaseModel):
    sheet: str
    row: int
    data: Dict[str, str]


class BadRowSchema(BaseModel):
    sheet: str
    row: int
    reason: str
    original: Dict[str, str] = {}


class SheetSummarySchema(BaseModel):
    name: str
    sheet_type: str
    total: int
    good: int
    bad: int


class ValidationResponse(BaseModel):
    """Ключи в camelCase: этот формат ждёт фронтенд"""
    good: List[GoodRowSchema]
    bad: List[BadRowSchema]
    goodCount: int
    badCount: int
    totalCount: int
    sessionId: str
    fileName: str
    sheets: List[SheetSummarySchema] = []


class ExportRequest(BaseModel):
    mode: Literal["good", "bad"]
    fileName: Optional[str] = "validation"
    sessionId: Optional[str] = None
    good: List[GoodRowSchema] = []
    bad: List[BadRowSchema] = []


class ImportStartResponse(BaseModel):
    importId: str


class CsvImportResponse(BaseModel):
    success: bool
    total: int
    imported: int
    failed: int
    errors: List[str] = []


class AiJobResponse(BaseModel):
    id: int
    user_id: int
    file_name: str
    original_file_name: str
    file_size: int
    status: str
    progress: float
    message: Optional[str] = None
    error_message: Optional[str] = None
    processed_items: int
    total_items: int
    current_batch: int
    total_batches: int
    fixed_count: int
    successful_analyses: int
    failed_analyses: int
    instructions: Optional[str] = None
    config: Optional[dict] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AiJobPreview(BaseModel):
    job: AiJobResponse
    summary: Dict[str, int] = Field(default_factory=dict)
    eta_seconds: Optional[int] = None
    sample: List[Dict[str, str]] = []
