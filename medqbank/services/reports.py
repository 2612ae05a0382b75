# medqbank/services/reports.py
"""Экспорт хороших/плохих строк и текстовый отчёт проверки."""
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from medqbank.core.exceptions import BadRequestError
from medqbank.services.headers import ERROR_HEADERS, IMPORT_HEADERS, SHEET_TYPES, is_case_sheet
from medqbank.services.row_classifier import BadRow, ClassificationResult, GoodRow
from medqbank.services.workbook import base_name, write_workbook


def good_file_name(filename: str) -> str:
    return f"{base_name(filename)}-valide.xlsx"


def bad_file_name(filename: str) -> str:
    return f"{base_name(filename)}-erreurs.xlsx"


def report_file_name(filename: str) -> str:
    return f"validation_report_{base_name(filename)}.txt"


def build_good_workbook(good: Iterable[GoodRow]) -> bytes:
    """Файл, готовый к импорту: один лист на тип вопроса"""
    buckets: Dict[str, List[List[str]]] = {t: [] for t in SHEET_TYPES}
    for item in good:
        data = dict(item.data)
        if is_case_sheet(item.sheet_type) and not data.get("texte de la question"):
            data["texte de la question"] = data.get("texte du cas", "")
        buckets.setdefault(item.sheet_type, []).append([data.get(h, "") for h in IMPORT_HEADERS])

    sheets = {name: (IMPORT_HEADERS, rows) for name, rows in buckets.items() if rows}
    if not sheets:
        raise BadRequestError("No data to export")
    return write_workbook(sheets)


def build_bad_workbook(bad: Iterable[BadRow]) -> bytes:
    rows = []
    for item in bad:
        original = item.original or {}
        rows.append(
            [item.sheet, item.row, item.reason]
            + [original.get(h, "") for h in ERROR_HEADERS[3:]]
        )
    if not rows:
        raise BadRequestError("No data to export")
    return write_workbook({"Erreurs": (ERROR_HEADERS, rows)})


def build_text_report(file_name: str, result: ClassificationResult) -> str:
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    lines = [
        "Classic Validation Report",
        "=" * 25,
        f"File: {file_name}",
        f"Generated: {now}",
        "",
        f"Total rows: {result.total_count}",
        f"Valid rows: {result.good_count}",
        f"Rows with errors: {result.bad_count}",
        "",
        "Per-sheet summary:",
    ]
    for s in result.sheets:
        lines.append(f"  - {s.name} ({s.sheet_type}): {s.total} rows, {s.good} valid, {s.bad} errors")

    if result.bad:
        # "Duplicate in file: matches row 4" -> "Duplicate in file"
        histogram = Counter(
            part.split(":")[0].strip()
            for row in result.bad
            for part in row.reason.split(";")
        )
        lines += ["", "Errors by reason:"]
        for reason, count in histogram.most_common():
            lines.append(f"  - {reason}: {count}")

    lines += [
        "",
        "Notes:",
        "  - Row numbers refer to spreadsheet lines (header = line 1).",
        "  - Required: matiere, cours, texte de la question (texte du cas for clinical cases).",
        "  - MCQ rows need options, answer letters A-E and an explanation.",
        "  - QROC rows need an answer and an explanation.",
        "  - Duplicates are detected per sheet; the first occurrence is kept.",
    ]
    return "\n".join(lines) + "\n"
