# medqbank/services/workbook.py
"""Чтение и запись таблиц (xlsx через openpyxl, csv через stdlib)."""
import csv
import io
import logging
import os
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from medqbank.core.config import settings
from medqbank.core.exceptions import BadRequestError
from medqbank.services.headers import canonicalize_header

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".xlsx", ".xls", ".csv")
ALLOWED_MIME_TYPES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
    "text/csv",
    "application/csv",
)
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass
class RowData:
    line: int  # номер строки в файле (заголовок = 1)
    values: Dict[str, str]

    def get(self, key: str) -> str:
        return self.values.get(key, "")


@dataclass
class SheetData:
    name: str
    headers: List[str]
    raw_headers: List[str] = field(default_factory=list)
    rows: List[RowData] = field(default_factory=list)


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def base_name(filename: str) -> str:
    return os.path.splitext(os.path.basename(filename or "file"))[0] or "file"


def check_upload(filename: str, content_type: Optional[str], size: int) -> None:
    """Проверка типа и размера загружаемого файла"""
    ext = file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS and (content_type or "") not in ALLOWED_MIME_TYPES:
        raise BadRequestError("Invalid file type. Please upload an Excel (.xlsx, .xls) or CSV file")
    if size <= 0:
        raise BadRequestError("Uploaded file is empty")
    if size > settings.imports.MAX_UPLOAD_BYTES:
        limit_mb = settings.imports.MAX_UPLOAD_BYTES // (1024 * 1024)
        raise BadRequestError(f"File too large. Maximum size is {limit_mb}MB")


def cell_to_str(value: object) -> str:
    """Значение ячейки -> строка ('12.0' -> '12', даты в ISO)"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _build_sheet(name: str, matrix: Sequence[Sequence[object]]) -> SheetData:
    header_idx = next(
        (i for i, row in enumerate(matrix) if any(cell_to_str(c) for c in row)),
        None,
    )
    if header_idx is None:
        return SheetData(name=name, headers=[])

    raw_headers = [cell_to_str(c) for c in matrix[header_idx]]
    headers = [canonicalize_header(h) for h in raw_headers]
    sheet = SheetData(name=name, headers=[h for h in headers if h], raw_headers=raw_headers)

    for offset, row in enumerate(matrix[header_idx + 1:], start=header_idx + 2):
        cells = [cell_to_str(c) for c in row]
        if not any(cells):
            continue
        values: Dict[str, str] = {}
        for key, cell in zip(headers, cells):
            if not key:
                continue
            # При двух колонках с одним каноническим именем побеждает первая непустая
            if cell and not values.get(key):
                values[key] = cell
            else:
                values.setdefault(key, cell)
        sheet.rows.append(RowData(line=offset, values=values))
    return sheet


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("CSV is not UTF-8, decoding as cp1252")
        return data.decode("cp1252", errors="replace")


def _read_csv(data: bytes, filename: str) -> List[SheetData]:
    text = _decode_text(data)
    sample = text[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t")
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","
    matrix = list(csv.reader(io.StringIO(text), delimiter=delimiter))
    return [_build_sheet(base_name(filename), matrix)]


def _read_xlsx(data: bytes) -> List[SheetData]:
    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        logger.warning(f"Cannot open workbook: {e}")
        raise BadRequestError("Unable to read the spreadsheet. Is it a valid .xlsx file?")
    try:
        return [
            _build_sheet(ws.title, [list(r) for r in ws.iter_rows(values_only=True)])
            for ws in wb.worksheets
        ]
    finally:
        wb.close()


def read_workbook(data: bytes, filename: str) -> List[SheetData]:
    """Разбор файла в список листов с каноническими заголовками"""
    ext = file_extension(filename)
    if ext == ".csv":
        return _read_csv(data, filename)
    if ext == ".xls" and not data.startswith(b"PK"):
        raise BadRequestError("Legacy .xls files are not supported, please save the file as .xlsx")
    return _read_xlsx(data)


def write_workbook(sheets: Dict[str, Tuple[Sequence[str], Sequence[Sequence[object]]]]) -> bytes:
    """{лист: (заголовки, строки)} -> байты xlsx"""
    wb = Workbook()
    wb.remove(wb.active)
    for title, (headers, rows) in sheets.items():
        ws = wb.create_sheet(title=title[:31])
        ws.append(list(headers))
        for row in rows:
            ws.append(["" if v is None else v for v in row])
    if not wb.worksheets:
        wb.create_sheet("Sheet1")
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
