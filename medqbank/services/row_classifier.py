# medqbank/services/row_classifier.py
"""
Классическая (без ИИ) проверка файла вопросов.

Каждая строка попадает либо в good (структурированные данные),
либо в bad (причина + исходная строка).
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from medqbank.services.headers import (
    IMPORT_HEADERS,
    OPTION_LETTERS,
    infer_sheet_type,
    is_case_sheet,
    is_mcq_sheet,
)
from medqbank.services.workbook import RowData, SheetData

DEDUP_FIELDS = [
    "matiere", "cours", "question n", "cas n", "texte du cas",
    "texte de la question", "reponse",
    *[f"option {x}" for x in OPTION_LETTERS],
]
DEDUP_DELIMITER = "||"

_CAS_ANSWER_RE = re.compile(r"(\d+)\s*[-:.)]?\s*([A-Ea-e](?:[\s,;/]*[A-Ea-e])*)")


@dataclass
class GoodRow:
    sheet: str
    sheet_type: str
    row: int
    data: Dict[str, str]

    def to_dict(self) -> dict:
        return {"sheet": self.sheet, "row": self.row, "data": self.data}


@dataclass
class BadRow:
    sheet: str
    row: int
    reason: str
    original: Dict[str, str]

    def to_dict(self) -> dict:
        return {"sheet": self.sheet, "row": self.row, "reason": self.reason, "original": self.original}


@dataclass
class SheetSummary:
    name: str
    sheet_type: str
    total: int = 0
    good: int = 0
    bad: int = 0


@dataclass
class ClassificationResult:
    good: List[GoodRow] = field(default_factory=list)
    bad: List[BadRow] = field(default_factory=list)
    sheets: List[SheetSummary] = field(default_factory=list)

    @property
    def good_count(self) -> int:
        return len(self.good)

    @property
    def bad_count(self) -> int:
        return len(self.bad)

    @property
    def total_count(self) -> int:
        return self.good_count + self.bad_count


def parse_answer_letters(raw: Optional[str]) -> List[str]:
    """'A, C' / 'a;c' / 'AC' / '(B)' -> ['A', 'C']"""
    letters: List[str] = []
    for token in re.split(r"[;,\s/]+", (raw or "").strip()):
        token = token.strip("()[].:-").upper()
        if not token or not re.fullmatch(r"[A-E]+", token):
            continue
        for letter in token:
            if letter not in letters:
                letters.append(letter)
    return letters


def normalize_cas_response(raw: Optional[str], question_number: Optional[str]) -> str:
    """
    В кейсах ответы иногда даны на весь кейс: '1AB, 2E'.
    Для вопроса 2 возвращает 'E'. Без нумерации строка не меняется.
    """
    text = (raw or "").strip()
    matches = _CAS_ANSWER_RE.findall(text)
    if not matches or not question_number:
        return text
    wanted = str(question_number).strip()
    for number, letters in matches:
        if number == wanted:
            return ", ".join(parse_answer_letters(letters))
    return text


def dedup_key(data: Dict[str, str]) -> str:
    return DEDUP_DELIMITER.join((data.get(f) or "").strip() for f in DEDUP_FIELDS)


def _row_data(row: RowData, sheet_type: str) -> Dict[str, str]:
    data = {h: (row.get(h) or "").strip() for h in IMPORT_HEADERS}
    # Лишние колонки не теряем (ai_status и т.п.)
    for key, value in row.values.items():
        if key not in data:
            data[key] = (value or "").strip()
    if is_case_sheet(sheet_type) and not data["texte de la question"] and data["texte du cas"]:
        data["texte de la question"] = data["texte du cas"]
    return data


def check_row(data: Dict[str, str], sheet_type: str) -> List[str]:
    """Список причин отказа (пустой = строка корректна)"""
    reasons: List[str] = []
    missing = [f for f in ("matiere", "cours") if not data.get(f)]
    if not data.get("texte de la question"):
        missing.append("texte du cas" if is_case_sheet(sheet_type) else "texte de la question")
    if missing:
        reasons.append(f"Missing required: {', '.join(missing)}")

    if is_mcq_sheet(sheet_type):
        present = [x.upper() for x in OPTION_LETTERS if data.get(f"option {x}")]
        if not present:
            reasons.append("MCQ missing options")
        answer = data.get("reponse", "")
        if sheet_type == "cas_qcm":
            answer = normalize_cas_response(answer, data.get("question n"))
        letters = parse_answer_letters(answer)
        if not letters:
            reasons.append("MCQ missing correct answer (A-E)")
        elif present:
            dangling = [x for x in letters if x not in present]
            if dangling:
                reasons.append(f"MCQ answer refers to empty option: {', '.join(dangling)}")
        has_explanation = bool(data.get("explication")) or any(
            data.get(f"explication {x}") for x in OPTION_LETTERS
        )
        if not has_explanation:
            reasons.append("MCQ missing explanation")
    else:
        if not data.get("reponse"):
            reasons.append("QROC missing answer")
        if not (data.get("explication") or data.get("rappel")):
            reasons.append("QROC missing explanation")
    return reasons


def classify_sheet(sheet: SheetData, result: ClassificationResult) -> None:
    sheet_type = infer_sheet_type(sheet.headers, sheet.name)
    summary = SheetSummary(name=sheet.name, sheet_type=sheet_type)
    seen: Dict[str, int] = {}

    for row in sheet.rows:
        summary.total += 1
        data = _row_data(row, sheet_type)
        reasons = check_row(data, sheet_type)
        if not reasons:
            key = dedup_key(data)
            if key in seen:
                reasons.append(f"Duplicate in file: matches row {seen[key]}")
            else:
                seen[key] = row.line

        if reasons:
            summary.bad += 1
            result.bad.append(BadRow(sheet=sheet.name, row=row.line, reason="; ".join(reasons), original=data))
        else:
            summary.good += 1
            result.good.append(GoodRow(sheet=sheet.name, sheet_type=sheet_type, row=row.line, data=data))

    result.sheets.append(summary)


def classify_workbook(sheets: List[SheetData]) -> ClassificationResult:
    result = ClassificationResult()
    for sheet in sheets:
        if not sheet.headers:
            continue
        classify_sheet(sheet, result)
    return result
