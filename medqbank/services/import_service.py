# medqbank/services/import_service.py
"""
Массовый импорт вопросов из Excel с прогрессом и импорт CSV в один курс.
"""
import csv
import io
import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from medqbank.core.config import settings
from medqbank.core.database import db_helper
from medqbank.core.exceptions import BadRequestError, NotFoundError
from medqbank.models.content import Lecture, Niveau, Question, QuestionType, Semester, Specialty
from medqbank.repositories.content_repository import ContentRepository
from medqbank.services.headers import (
    IMPORT_HEADERS, OPTION_LETTERS, SHEET_TYPES, canonical_sheet, canonicalize_header,
)
from medqbank.services.row_classifier import normalize_cas_response, parse_answer_letters
from medqbank.services.workbook import SheetData, read_workbook

logger = logging.getLogger(__name__)

SHEET_QUESTION_TYPES = {
    "qcm": QuestionType.MCQ.value,
    "qroc": QuestionType.QROC.value,
    "cas_qcm": QuestionType.CLINIC_MCQ.value,
    "cas_qroc": QuestionType.CLINIC_CROQ.value,
}

IMAGE_URL_RE = re.compile(r"https?://\S+?\.(?:png|jpe?g|gif|webp|svg|bmp)(?:\?\S*)?", re.IGNORECASE)
CSV_REQUIRED_HEADERS = ["matiere", "cours", "question n", "source", "texte de la question", "reponse"]
MAX_QUESTION_LENGTH = 1000
MAX_ANSWER_LENGTH = 500

MEDIA_EXTENSIONS = {
    "image": (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp"),
    "video": (".mp4", ".webm", ".mov"),
    "audio": (".mp3", ".wav", ".ogg"),
}


class ImportCancelled(Exception):
    pass


@dataclass
class ImportStats:
    total: int = 0
    imported: int = 0
    failed: int = 0
    duplicates: int = 0
    created_specialties: int = 0
    created_lectures: int = 0
    created_cases: int = 0
    questions_with_images: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class ImportSession:
    id: str
    progress: float = 0
    phase: str = "validating"
    message: str = "Preparing import..."
    logs: List[str] = field(default_factory=list)
    stats: ImportStats = field(default_factory=ImportStats)
    cancelled: bool = False
    created_at: float = field(default_factory=time.monotonic)
    last_updated: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    def update(self, progress: Optional[float] = None, phase: Optional[str] = None, message: Optional[str] = None) -> None:
        if progress is not None:
            self.progress = round(min(100.0, max(0.0, progress)), 1)
        if phase:
            self.phase = phase
        if message:
            self.message = message
            self.logs.append(message)
            self.logs = self.logs[-200:]
        self.last_updated = time.monotonic()

    def to_dict(self) -> Dict[str, Any]:
        s = self.stats
        return {
            "id": self.id,
            "progress": self.progress,
            "phase": self.phase,
            "message": self.message,
            "logs": self.logs[-50:],
            "cancelled": self.cancelled,
            "stats": {
                "total": s.total,
                "imported": s.imported,
                "failed": s.failed,
                "duplicates": s.duplicates,
                "createdSpecialties": s.created_specialties,
                "createdLectures": s.created_lectures,
                "createdCases": s.created_cases,
                "questionsWithImages": s.questions_with_images,
                "errors": s.errors[-100:],
            },
        }


class ImportRegistry:
    """Сессии импорта в памяти процесса"""

    def __init__(self):
        self._sessions: Dict[str, ImportSession] = {}

    def create(self) -> ImportSession:
        self.cleanup()
        import_id = f"import_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
        session = ImportSession(id=import_id)
        self._sessions[import_id] = session
        return session

    def get(self, import_id: str) -> Optional[ImportSession]:
        return self._sessions.get(import_id)

    def cancel(self, import_id: str) -> bool:
        session = self._sessions.get(import_id)
        if session is None:
            return False
        session.cancelled = True
        session.update(message="Import cancelled by user")
        return True

    def cleanup(self) -> int:
        """Удаляет завершённые сессии старше TTL"""
        ttl = settings.imports.IMPORT_SESSION_TTL_SECONDS
        now = time.monotonic()
        expired = [
            k for k, s in self._sessions.items()
            if s.finished_at is not None and now - s.finished_at > ttl
        ]
        for key in expired:
            del self._sessions[key]
        return len(expired)


import_registry = ImportRegistry()


# ---------------------------------------------------------------------------
# Нормализация значений
# ---------------------------------------------------------------------------

def normalize_niveau(raw: str) -> str:
    """'pcem 1' -> 'PCEM1', 'Dcem-2' -> 'DCEM2', иначе верхний регистр"""
    value = re.sub(r"\s+", " ", (raw or "").strip()).upper()
    match = re.match(r"^(PCEM|DCEM)\s*[-_ ]?\s*(\d)$", value)
    return f"{match.group(1)}{match.group(2)}" if match else value


def parse_semester(raw: str) -> Optional[int]:
    """'S1' / 'semestre 2' / '2' -> номер"""
    match = re.search(r"(\d+)", raw or "")
    if not match:
        return None
    order = int(match.group(1))
    return order if order > 0 else None


def parse_int(raw: str) -> Optional[int]:
    match = re.search(r"\d+", raw or "")
    return int(match.group(0)) if match else None


def guess_media_type(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    path = url.split("?")[0].lower()
    for media_type, extensions in MEDIA_EXTENSIONS.items():
        if path.endswith(extensions):
            return media_type
    return "image"


def extract_image(text: str) -> Tuple[str, Optional[str]]:
    """Вырезает URL картинки из текста вопроса"""
    match = IMAGE_URL_RE.search(text or "")
    if not match:
        return text, None
    cleaned = (text[:match.start()] + text[match.end():]).strip()
    return re.sub(r"\s{2,}", " ", cleaned), match.group(0)


def combine_explanations(data: Dict[str, str]) -> Optional[str]:
    base = data.get("explication", "").strip()
    per_option = [
        f"({x.upper()}) {data[f'explication {x}'].strip()}"
        for x in OPTION_LETTERS if data.get(f"explication {x}", "").strip()
    ]
    if per_option:
        block = "Explications:\n" + "\n".join(per_option)
        return f"{base}\n\n{block}" if base else block
    return base or None


def build_question(data: Dict[str, str], sheet_type: str, lecture_id: int) -> Question:
    """Строка листа -> Question (без сохранения). ValueError, если строка некорректна."""
    text, image_url = extract_image(data.get("texte de la question", ""))
    if sheet_type in ("cas_qcm", "cas_qroc") and not text:
        text = data.get("texte du cas", "")
    if not text.strip():
        raise ValueError("Missing question text")
    image_url = image_url or data.get("image") or None

    question = Question(
        lecture_id=lecture_id,
        type=SHEET_QUESTION_TYPES[sheet_type],
        text=text.strip(),
        course_reminder=data.get("rappel") or None,
        number=parse_int(data.get("question n", "")),
        session=data.get("source") or None,
        media_url=image_url,
        media_type=guess_media_type(image_url),
    )

    if sheet_type in ("qcm", "cas_qcm"):
        options = [
            {"id": str(i), "text": data[f"option {x}"].strip(),
             **({"explanation": data[f"explication {x}"].strip()} if data.get(f"explication {x}") else {})}
            for i, x in enumerate(OPTION_LETTERS) if data.get(f"option {x}", "").strip()
        ]
        if not options:
            raise ValueError("MCQ missing options")
        answer = data.get("reponse", "")
        if sheet_type == "cas_qcm":
            answer = normalize_cas_response(answer, data.get("question n"))
        letters = parse_answer_letters(answer)
        if not letters:
            raise ValueError("MCQ missing correct answers")
        question.options = options
        question.correct_answers = [str(ord(x) - 65) for x in letters]
        question.explanation = combine_explanations(data)
    else:
        answer = data.get("reponse", "").strip()
        if not answer:
            raise ValueError("QROC missing answer")
        question.options = None
        question.correct_answers = [answer]
        question.explanation = data.get("explication") or None

    if sheet_type in ("cas_qcm", "cas_qroc"):
        question.case_number = parse_int(data.get("cas n", ""))
        question.case_text = data.get("texte du cas") or None
        question.case_question_number = question.number
    return question


# ---------------------------------------------------------------------------
# Массовый импорт
# ---------------------------------------------------------------------------

class BulkImporter:
    def __init__(self, session: AsyncSession, import_session: ImportSession):
        self.session = session
        self.repo = ContentRepository(session)
        self.state = import_session
        self._niveaux: Dict[str, Niveau] = {}
        self._semesters: Dict[Tuple[int, int], Semester] = {}
        self._specialties: Dict[str, Specialty] = {}
        self._lectures: Dict[Tuple[int, str], Lecture] = {}
        self._cases: set = set()

    async def _niveau(self, raw: str) -> Optional[Niveau]:
        name = normalize_niveau(raw)
        if not name:
            return None
        if name not in self._niveaux:
            niveau = await self.repo.get_niveau_by_name(name)
            if niveau is None:
                niveau = await self.repo.create_niveau(name)
                self.state.update(message=f"Created niveau {name}")
            self._niveaux[name] = niveau
        return self._niveaux[name]

    async def _semester(self, niveau: Optional[Niveau], raw: str) -> Optional[Semester]:
        order = parse_semester(raw)
        if niveau is None or order is None:
            return None
        key = (niveau.id, order)
        if key not in self._semesters:
            semester = await self.repo.get_semester(niveau.id, order)
            if semester is None:
                semester = await self.repo.create_semester(niveau, order)
            self._semesters[key] = semester
        return self._semesters[key]

    async def _specialty(self, name: str, niveau: Optional[Niveau], semester: Optional[Semester]) -> Specialty:
        key = name.lower()
        specialty = self._specialties.get(key) or await self.repo.get_specialty_by_name(name)
        if specialty is None:
            specialty = await self.repo.create_specialty(
                name,
                niveau_id=niveau.id if niveau else None,
                semester_id=semester.id if semester else None,
            )
            self.state.stats.created_specialties += 1
            self.state.update(message=f"Created specialty {name}")
        else:
            # Дозаполняем связи, если их не было
            if niveau and specialty.niveau_id is None:
                specialty.niveau_id = niveau.id
            if semester and specialty.semester_id is None:
                specialty.semester_id = semester.id
        self._specialties[key] = specialty
        return specialty

    async def _lecture(self, specialty: Specialty, title: str) -> Lecture:
        key = (specialty.id, title.lower())
        lecture = self._lectures.get(key) or await self.repo.get_lecture_by_title(specialty.id, title)
        if lecture is None:
            lecture = await self.repo.create_lecture(specialty.id, title)
            self.state.stats.created_lectures += 1
            self.state.update(message=f"Created lecture {title}")
        self._lectures[key] = lecture
        return lecture

    async def import_row(self, data: Dict[str, str], sheet_type: str) -> None:
        matiere, cours = data.get("matiere", "").strip(), data.get("cours", "").strip()
        if not matiere or not cours:
            raise ValueError("Missing specialty or lecture information")

        # Сначала проверяем саму строку, чтобы не создавать пустые матьеры и курсы
        question = build_question(data, sheet_type, lecture_id=0)

        niveau = await self._niveau(data.get("niveau", ""))
        semester = await self._semester(niveau, data.get("semestre", ""))
        specialty = await self._specialty(matiere, niveau, semester)
        lecture = await self._lecture(specialty, cours)

        question.lecture_id = lecture.id
        if await self.repo.find_duplicate_question(question):
            self.state.stats.duplicates += 1
            raise ValueError("Duplicate in database — identical question already exists")

        if question.case_number is not None:
            case_key = (lecture.id, question.case_number)
            if case_key not in self._cases:
                self._cases.add(case_key)
                self.state.stats.created_cases += 1
        if question.media_url:
            self.state.stats.questions_with_images += 1

        self.session.add(question)
        await self.session.flush()


def _recognized_sheets(sheets: List[SheetData]) -> List[Tuple[str, SheetData]]:
    by_type = {}
    for sheet in sheets:
        sheet_type = canonical_sheet(sheet.name)
        if sheet_type and sheet_type not in by_type:
            by_type[sheet_type] = sheet
    return [(t, by_type[t]) for t in SHEET_TYPES if t in by_type]


async def run_bulk_import(
    import_session: ImportSession,
    data: bytes,
    filename: str,
    session_factory: Optional[Callable[[], Any]] = None,
) -> None:
    """Фоновая задача импорта; состояние пишется в import_session"""
    state = import_session
    factory = session_factory or db_helper.session_factory
    try:
        state.update(progress=5, phase="validating", message=f"Reading {filename}")
        sheets = _recognized_sheets(read_workbook(data, filename))
        if not sheets:
            raise BadRequestError("No recognized sheets (expected qcm, qroc, cas_qcm, cas_qroc)")

        rows = [(t, s.name, r) for t, s in sheets for r in s.rows]
        state.stats.total = len(rows)
        state.update(progress=25, phase="importing", message=f"Importing {len(rows)} rows")

        async with factory() as session:
            importer = BulkImporter(session, state)
            for i, (sheet_type, sheet_name, row) in enumerate(rows):
                if state.cancelled:
                    raise ImportCancelled()
                payload = {h: row.get(h).strip() for h in IMPORT_HEADERS}
                try:
                    await importer.import_row(payload, sheet_type)
                    state.stats.imported += 1
                except ValueError as e:
                    state.stats.failed += 1
                    state.stats.errors.append(f"Row {row.line} in {sheet_name}: {e}")
                state.update(progress=25 + (i + 1) / len(rows) * 60)
            await session.commit()

        s = state.stats
        state.update(
            progress=100,
            phase="complete",
            message=f"Import complete: {s.imported} imported, {s.failed} failed",
        )
        logger.info(f"✅ Bulk import {state.id}: {s.imported}/{s.total} imported")
    except ImportCancelled:
        state.update(phase="complete", message="Import cancelled, nothing was saved")
        logger.info(f"Bulk import {state.id} cancelled")
    except BadRequestError as e:
        state.stats.errors.append(e.detail)
        state.update(progress=100, phase="complete", message=f"Import failed: {e.detail}")
    except Exception as e:
        logger.exception(f"❌ Bulk import {state.id} failed: {e}")
        state.stats.errors.append(str(e))
        state.update(progress=100, phase="complete", message=f"Import failed: {e}")
    finally:
        state.finished_at = time.monotonic()


# ---------------------------------------------------------------------------
# CSV импорт в один курс
# ---------------------------------------------------------------------------

def parse_csv_rows(text: str) -> Tuple[List[str], List[Dict[str, str]]]:
    """CSV с кавычками -> (канонические заголовки, строки)"""
    reader = csv.reader(io.StringIO(text.lstrip("﻿")))
    try:
        raw_headers = next(reader)
    except StopIteration:
        raise BadRequestError("CSV file is empty")
    headers = [canonicalize_header(h) for h in raw_headers]
    rows = []
    for cells in reader:
        if not any(c.strip() for c in cells):
            continue
        rows.append({h: (cells[i].strip() if i < len(cells) else "") for i, h in enumerate(headers) if h})
    return headers, rows


async def import_csv_for_lecture(session: AsyncSession, lecture_id: int, text: str) -> Dict[str, Any]:
    repo = ContentRepository(session)
    lecture = await repo.get_lecture(lecture_id)
    if lecture is None:
        raise NotFoundError("Lecture not found")

    headers, rows = parse_csv_rows(text)
    missing = [h for h in CSV_REQUIRED_HEADERS if h not in headers]
    if missing:
        raise BadRequestError(f"Missing required headers: {', '.join(missing)}")

    errors: List[str] = []
    imported = 0
    seen: Dict[str, int] = {}

    for index, row in enumerate(rows):
        line = index + 2
        key = "||".join(row.get(h, "") for h in CSV_REQUIRED_HEADERS)
        if key in seen:
            errors.append(f"Row {line}: Duplicate in file — identical to row {seen[key]}")
            continue
        seen[key] = line

        text_value = row.get("texte de la question", "")
        answer = row.get("reponse", "")
        if not text_value:
            errors.append(f"Row {line}: Missing question text")
            continue
        if not answer:
            errors.append(f"Row {line}: Missing answer")
            continue
        if len(text_value) > MAX_QUESTION_LENGTH:
            errors.append(f"Row {line}: Question text exceeds {MAX_QUESTION_LENGTH} characters")
            continue
        if len(answer) > MAX_ANSWER_LENGTH:
            errors.append(f"Row {line}: Answer exceeds {MAX_ANSWER_LENGTH} characters")
            continue

        question = Question(
            lecture_id=lecture.id,
            type=QuestionType.QROC.value,
            text=text_value,
            correct_answers=[answer],
            number=parse_int(row.get("question n", "")),
            session=row.get("source") or None,
            course_reminder=row.get("rappel") or None,
            explanation=row.get("explication") or None,
        )
        if await repo.find_duplicate_question(question):
            errors.append(f"Row {line}: Duplicate in database — identical question already exists")
            continue
        session.add(question)
        await session.flush()
        imported += 1

    await session.commit()
    logger.info(f"CSV import into lecture {lecture_id}: {imported}/{len(rows)} imported")
    return {
        "success": True,
        "total": len(rows),
        "imported": imported,
        "failed": len(rows) - imported,
        "errors": errors,
    }
