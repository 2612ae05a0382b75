# medqbank/services/ai_validation.py
"""
Фоновая ИИ-проверка файла вопросов.

Конвейер: подготовка строк (локальные исправления) -> батчи QCM в Azure OpenAI
-> батчи QROC -> контроль объяснений по вариантам -> итоговый xlsx.
Состояние пишется в ai_validation_jobs, фронтенд читает его через SSE.
"""
import asyncio
import html
import json as json_lib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from medqbank.core.config import settings
from medqbank.core.database import db_helper
from medqbank.core.exceptions import BadRequestError
from medqbank.models.system import JobStatus
from medqbank.repositories.job_repository import JobRepository
from medqbank.services.ai_client import AiNetworkError, AiRequestTooLarge, AzureOpenAIClient
from medqbank.services.headers import (
    IMPORT_HEADERS, OPTION_LETTERS, SHEET_TYPES, infer_sheet_type, is_case_sheet,
    is_mcq_sheet, strip_accents,
)
from medqbank.services.row_classifier import normalize_cas_response, parse_answer_letters
from medqbank.services.workbook import SheetData, base_name, read_workbook, write_workbook

logger = logging.getLogger(__name__)

AI_COLUMNS = ["ai_status", "ai_reason"]
OUTPUT_HEADERS = IMPORT_HEADERS + AI_COLUMNS
ERRORS_SHEET_HEADERS = ["sheet", "row", "ai_status", "ai_reason", "matiere", "cours", "question n", "texte de la question"]

STATUS_UNFIXED = "unfixed"
STATUS_FIXED = "fixed"
STATUS_ERROR = "error"

QUESTION_TEXT_LIMIT = 500
OPTION_TEXT_LIMIT = 140

INTERROGATIVES = (
    "quel", "quelle", "quels", "quelles", "qu'", "que ", "quoi", "comment",
    "pourquoi", "combien", "ou ", "lequel", "laquelle", "lesquels", "lesquelles",
    "est-ce", "parmi",
)

CONNECTOR_ALTERNATIVES = ["Car", "En effet,", "Puisque", "Du fait que", "Étant donné que"]

# job_id запрошенных остановок (процесс-локально)
_stop_requests: Set[int] = set()


class JobStopped(Exception):
    """Задача остановлена пользователем или удалена"""


def request_stop(job_id: int) -> None:
    _stop_requests.add(job_id)


def is_stop_requested(job_id: int) -> bool:
    return job_id in _stop_requests


# ---------------------------------------------------------------------------
# Локальные исправления
# ---------------------------------------------------------------------------

def strip_html(text: str) -> str:
    text = re.sub(r"<br\s*/?>", "\n", text or "", flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    return html.unescape(text)


def repair_text(text: str) -> str:
    """HTML, типографские кавычки, пробелы"""
    text = strip_html(text)
    text = (text.replace("’", "'").replace("‘", "'")
            .replace("“", '"').replace("”", '"').replace(" ", " "))
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    return text.strip()


def ensure_question_mark(text: str) -> str:
    if not text or text.rstrip().endswith(("?", ":", ".", "…")):
        return text
    lowered = strip_accents(text.lower())
    if lowered.startswith(INTERROGATIVES):
        return text.rstrip() + " ?"
    return text


def normalize_source(source: str) -> str:
    """'  session   principale 2019. ' -> 'Session principale 2019'"""
    source = re.sub(r"\s+", " ", repair_text(source)).strip(" .;,-")
    return source[:1].upper() + source[1:] if source else ""


def sanitize_matiere(name: str) -> str:
    """'01- cardiologie ' -> 'Cardiologie'"""
    name = re.sub(r"^\s*\d+\s*[-.)]\s*", "", repair_text(name))
    name = re.sub(r"\s+", " ", name).strip()
    return name[:1].upper() + name[1:] if name else ""


def clean_qroc_answer(answer: str) -> str:
    answer = repair_text(answer)
    return re.sub(r"^\s*r[ée]ponses?\s*[:\-]\s*", "", answer, flags=re.IGNORECASE).strip()


def vary_connectors(explanations: Dict[str, str]) -> Dict[str, str]:
    """Повторяющийся связующий оборот в начале объяснений заменяется синонимами"""
    seen: Dict[str, int] = {}
    result = {}
    for letter, text in explanations.items():
        match = re.match(r"^(car|en effet,?|puisque|parce que)\s+", text, flags=re.IGNORECASE)
        if not match:
            result[letter] = text
            continue
        connector = match.group(1).lower().rstrip(",")
        count = seen.get(connector, 0)
        seen[connector] = count + 1
        if count == 0:
            result[letter] = text
        else:
            alternative = CONNECTOR_ALTERNATIVES[count % len(CONNECTOR_ALTERNATIVES)]
            result[letter] = f"{alternative} {text[match.end():]}"
    return result


@dataclass
class WorkRow:
    sheet_type: str
    sheet_name: str
    line: int
    data: Dict[str, str]
    status: str = STATUS_UNFIXED
    reason: str = ""

    @property
    def id(self) -> str:
        return f"{self.sheet_type}:{self.line}"

    def present_letters(self) -> List[str]:
        return [x.upper() for x in OPTION_LETTERS if self.data.get(f"option {x}")]

    def missing_explanations(self) -> List[str]:
        return [x for x in self.present_letters() if not self.data.get(f"explication {x.lower()}")]


def prepare_rows(sheets: List[SheetData]) -> List[WorkRow]:
    rows: List[WorkRow] = []
    for sheet in sheets:
        if not sheet.headers:
            continue
        sheet_type = infer_sheet_type(sheet.headers, sheet.name)
        for raw in sheet.rows:
            data = {h: repair_text(raw.get(h)) for h in IMPORT_HEADERS}
            data["matiere"] = sanitize_matiere(data["matiere"])
            data["source"] = normalize_source(data["source"])
            data["texte de la question"] = ensure_question_mark(data["texte de la question"])
            if is_case_sheet(sheet_type) and not data["texte de la question"]:
                data["texte de la question"] = data["texte du cas"]
            if sheet_type == "cas_qcm":
                data["reponse"] = normalize_cas_response(data["reponse"], data["question n"])
            if is_mcq_sheet(sheet_type):
                letters = parse_answer_letters(data["reponse"])
                if letters:
                    data["reponse"] = ", ".join(letters)
            else:
                data["reponse"] = clean_qroc_answer(data["reponse"])
            rows.append(WorkRow(sheet_type=sheet_type, sheet_name=sheet.name, line=raw.line, data=data))
    fill_niveau(rows)
    return rows


def fill_niveau(rows: List[WorkRow]) -> None:
    """Пустой niveau: сначала по паре matiere|cours, затем от предыдущей строки листа"""
    by_course: Dict[str, str] = {}
    for row in rows:
        key = f"{row.data['matiere'].lower()}|{row.data['cours'].lower()}"
        if row.data["niveau"] and key not in by_course:
            by_course[key] = row.data["niveau"]

    previous: Dict[str, str] = {}
    for row in rows:
        if not row.data["niveau"]:
            key = f"{row.data['matiere'].lower()}|{row.data['cours'].lower()}"
            row.data["niveau"] = by_course.get(key) or previous.get(row.sheet_name, "")
        if row.data["niveau"]:
            previous[row.sheet_name] = row.data["niveau"]


# ---------------------------------------------------------------------------
# Промпты
# ---------------------------------------------------------------------------

def _style_line(style: str) -> str:
    if style == "prof":
        return "Rédige comme un professeur de médecine: précis, concis, vocabulaire académique."
    return "Rédige pour un étudiant en médecine: clair, pédagogique, phrases courtes."


def build_mcq_prompt(rows: List[WorkRow], instructions: Optional[str], style: str, permissive: bool = False) -> List[Dict[str, str]]:
    items = []
    for row in rows:
        item: Dict[str, Any] = {
            "id": row.id,
            "questionText": row.data["texte de la question"][:QUESTION_TEXT_LIMIT],
            "options": {x.upper(): row.data[f"option {x}"][:OPTION_TEXT_LIMIT]
                        for x in OPTION_LETTERS if row.data[f"option {x}"]},
            "currentAnswer": row.data["reponse"],
        }
        if row.data["texte du cas"] and row.data["texte du cas"] != row.data["texte de la question"]:
            item["caseText"] = row.data["texte du cas"][:QUESTION_TEXT_LIMIT]
        items.append(item)

    system = (
        "Tu es un expert en pédagogie médicale qui corrige des QCM.\n"
        f"{_style_line(style)}\n"
        "Pour chaque question: corrige l'orthographe de l'énoncé et des options sans changer le sens, "
        "vérifie la ou les bonnes réponses, et écris une explication pour CHAQUE option présente "
        "(pourquoi elle est vraie ou fausse).\n"
        "Réponds UNIQUEMENT en JSON: {\"results\": [{\"id\": str, \"status\": \"ok\"|\"error\", "
        "\"fixedQuestionText\": str, \"fixedOptions\": {\"A\": str, ...}, \"correctAnswers\": [\"A\", ...], "
        "\"optionExplanations\": {\"A\": str, ...}, \"globalExplanation\": str, \"error\": str}]}"
    )
    if permissive:
        system += "\nSi tu as un doute, propose quand même la meilleure explication possible pour chaque option."
    if instructions:
        system += f"\nConsignes supplémentaires: {instructions}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": json_lib.dumps({"questions": items}, ensure_ascii=False)},
    ]


def build_qroc_prompt(rows: List[WorkRow], instructions: Optional[str], style: str) -> List[Dict[str, str]]:
    items = [
        {
            "id": row.id,
            "questionText": row.data["texte de la question"][:QUESTION_TEXT_LIMIT],
            "answer": row.data["reponse"][:QUESTION_TEXT_LIMIT],
            **({"caseText": row.data["texte du cas"][:QUESTION_TEXT_LIMIT]} if row.data["texte du cas"] else {}),
        }
        for row in rows
    ]
    system = (
        "Tu es un expert en pédagogie médicale qui corrige des QROC (questions à réponse courte).\n"
        f"{_style_line(style)}\n"
        "Pour chaque question, écris une explication courte de la réponse attendue.\n"
        "Réponds UNIQUEMENT en JSON: {\"results\": [{\"id\": str, \"status\": \"ok\"|\"error\", "
        "\"fixedQuestionText\": str, \"fixedAnswer\": str, \"explanation\": str, \"error\": str}]}"
    )
    if instructions:
        system += f"\nConsignes supplémentaires: {instructions}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": json_lib.dumps({"questions": items}, ensure_ascii=False)},
    ]


def _letter_map(value: Any) -> Dict[str, str]:
    """{'A': ..} или [..] -> {'A': ..}"""
    if isinstance(value, dict):
        return {str(k).strip().upper()[:1]: str(v or "").strip() for k, v in value.items()}
    if isinstance(value, list):
        return {chr(65 + i): str(v or "").strip() for i, v in enumerate(value[:5])}
    return {}


def _answer_letters(value: Any) -> List[str]:
    """[0, 2] / ['A', 'C'] / 'A, C' -> ['A', 'C']"""
    if isinstance(value, str):
        return parse_answer_letters(value)
    letters: List[str] = []
    for item in value or []:
        if isinstance(item, int) and 0 <= item < 5:
            letter = chr(65 + item)
        else:
            parsed = parse_answer_letters(str(item))
            letter = parsed[0] if parsed else ""
        if letter and letter not in letters:
            letters.append(letter)
    return letters


def apply_mcq_result(row: WorkRow, result: Dict[str, Any]) -> bool:
    """Применяет ответ модели к строке. True, если строка исправлена."""
    if result.get("status") == "error" and not result.get("optionExplanations"):
        row.reason = f"IA: {result.get('error') or 'erreur non précisée'}"
        return False

    changed = False
    fixed_text = str(result.get("fixedQuestionText") or "").strip()
    if fixed_text and fixed_text != row.data["texte de la question"]:
        row.data["texte de la question"] = ensure_question_mark(fixed_text)
        changed = True

    present = row.present_letters()
    for letter, text in _letter_map(result.get("fixedOptions")).items():
        if letter in present and text and text != row.data[f"option {letter.lower()}"]:
            row.data[f"option {letter.lower()}"] = text
            changed = True

    letters = [x for x in _answer_letters(result.get("correctAnswers")) if x in present]
    if letters:
        answer = ", ".join(letters)
        if answer != row.data["reponse"]:
            row.data["reponse"] = answer
            changed = True

    explanations = {
        k: v for k, v in _letter_map(result.get("optionExplanations")).items() if k in present and v
    }
    for letter, text in vary_connectors(explanations).items():
        if text != row.data[f"explication {letter.lower()}"]:
            row.data[f"explication {letter.lower()}"] = text
            changed = True

    global_explanation = str(result.get("globalExplanation") or "").strip()
    if global_explanation and global_explanation != row.data["rappel"]:
        row.data["rappel"] = global_explanation
        changed = True

    if row.missing_explanations():
        row.reason = "Explications incomplètes"
        return False
    row.status = STATUS_FIXED
    row.reason = "Corrigé par IA" if changed else "Déjà correct"
    return True


def apply_qroc_result(row: WorkRow, result: Dict[str, Any]) -> bool:
    explanation = str(result.get("explanation") or "").strip()
    if not explanation:
        row.reason = f"IA: {result.get('error') or 'explication absente'}"
        return False
    fixed_text = str(result.get("fixedQuestionText") or "").strip()
    if fixed_text:
        row.data["texte de la question"] = ensure_question_mark(fixed_text)
    fixed_answer = str(result.get("fixedAnswer") or "").strip()
    if fixed_answer:
        row.data["reponse"] = fixed_answer
    row.data["rappel"] = explanation
    row.status = STATUS_FIXED
    row.reason = "Corrigé par IA"
    return True


def enforce_option_explanations(rows: List[WorkRow]) -> None:
    for row in rows:
        if not is_mcq_sheet(row.sheet_type):
            continue
        missing = row.missing_explanations()
        if missing:
            row.status = STATUS_ERROR
            row.reason = f"Explication par option manquante: {', '.join(missing)}"


def build_output_workbook(rows: List[WorkRow]) -> bytes:
    sheets: Dict[str, tuple] = {}
    for sheet_type in SHEET_TYPES:
        typed = [r for r in rows if r.sheet_type == sheet_type]
        if typed:
            sheets[sheet_type] = (
                OUTPUT_HEADERS,
                [[r.data.get(h, "") for h in IMPORT_HEADERS] + [r.status, r.reason] for r in typed],
            )
    errors = [r for r in rows if r.status != STATUS_FIXED]
    if errors:
        sheets["Erreurs"] = (
            ERRORS_SHEET_HEADERS,
            [[r.sheet_name, r.line, r.status, r.reason or "Non corrigé", r.data["matiere"],
              r.data["cours"], r.data["question n"], r.data["texte de la question"]] for r in errors],
        )
    if not sheets:
        raise BadRequestError("No questions found in the file")
    return write_workbook(sheets)


def ai_output_file_name(original_file_name: str) -> str:
    return f"{base_name(original_file_name)}-ai-fixed.xlsx"


# ---------------------------------------------------------------------------
# Процессор
# ---------------------------------------------------------------------------

def _chunks(items: List[WorkRow], size: int) -> List[List[WorkRow]]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


class AiValidationProcessor:
    def __init__(
        self,
        job_id: int,
        client: AzureOpenAIClient,
        instructions: Optional[str] = None,
        session_factory: Optional[Callable[[], Any]] = None,
    ):
        self.job_id = job_id
        self.client = client
        self.instructions = instructions
        self.session_factory = session_factory or db_helper.session_factory
        self.config = settings.ai
        self.logs: List[str] = []
        self.rows: List[WorkRow] = []
        self.total_batches = 0
        self.done_batches = 0
        self.successful = 0
        self.failed = 0
        self._semaphore = asyncio.Semaphore(max(1, self.config.AI_CONCURRENCY))
        self._lock = asyncio.Lock()

    def log(self, message: str) -> None:
        logger.info(f"[ai-job {self.job_id}] {message}")
        self.logs.append(f"{datetime.now(timezone.utc).strftime('%H:%M:%S')} {message}")

    async def _update(self, **fields) -> None:
        async with self.session_factory() as session:
            job = await JobRepository(session).update(self.job_id, **fields)
        if job is None:
            raise JobStopped("Job deleted")

    def _check_stop(self) -> None:
        if is_stop_requested(self.job_id):
            raise JobStopped("Arrêté par l'utilisateur")

    async def _batch_done(self) -> None:
        async with self._lock:
            self.done_batches += 1
            processed = sum(1 for r in self.rows if r.status == STATUS_FIXED)
            progress = 30 + 69 * self.done_batches / max(1, self.total_batches)
            await self._update(
                progress=round(min(progress, 99), 1),
                current_batch=self.done_batches,
                processed_items=processed,
                successful_analyses=self.successful,
                failed_analyses=self.failed,
                message=f"Lot {self.done_batches}/{self.total_batches}",
            )

    async def _call(self, messages: List[Dict[str, str]]) -> Dict[str, Dict[str, Any]]:
        async with self._semaphore:
            # Флаг остановки проверяется перед каждым запросом, уже после очереди семафора
            self._check_stop()
            data = await self.client.chat_json(messages)
        results = data.get("results", []) if isinstance(data, dict) else []
        return {str(r.get("id")): r for r in results if isinstance(r, dict)}

    async def _run_mcq_batch(self, batch: List[WorkRow], permissive: bool = False) -> None:
        style = self.config.AI_EXPLANATION_STYLE
        try:
            results = await self._call(build_mcq_prompt(batch, self.instructions, style, permissive))
        except (AiNetworkError, AiRequestTooLarge) as e:
            if len(batch) > 1:
                mid = len(batch) // 2
                self.log(f"⚠️ {type(e).__name__} on batch of {len(batch)}, splitting")
                await self._run_mcq_batch(batch[:mid], permissive)
                await self._run_mcq_batch(batch[mid:], permissive)
                return
            self.failed += 1
            batch[0].reason = f"IA indisponible: {e.detail}"
            return
        except ValueError as e:
            # Невалидный JSON: повтор по одной строке
            if len(batch) > 1:
                self.log(f"⚠️ Invalid JSON for batch of {len(batch)}, retrying one by one")
                for row in batch:
                    await self._run_mcq_batch([row], permissive)
                return
            self.failed += 1
            batch[0].reason = f"Réponse IA illisible: {e}"
            return

        for row in batch:
            result = results.get(row.id)
            if result is None:
                self.failed += 1
                row.reason = "Aucune réponse IA pour cette question"
                continue
            self.successful += 1
            apply_mcq_result(row, result)

    async def _run_qroc_batch(self, batch: List[WorkRow]) -> None:
        try:
            results = await self._call(build_qroc_prompt(batch, self.instructions, self.config.AI_EXPLANATION_STYLE))
        except (AiNetworkError, AiRequestTooLarge) as e:
            if len(batch) > 1:
                mid = len(batch) // 2
                await self._run_qroc_batch(batch[:mid])
                await self._run_qroc_batch(batch[mid:])
                return
            self.failed += 1
            batch[0].reason = f"IA indisponible: {e.detail}"
            return
        except ValueError as e:
            self.failed += len(batch)
            for row in batch:
                row.reason = f"Réponse IA illisible: {e}"
            return

        for row in batch:
            result = results.get(row.id)
            if result is None:
                self.failed += 1
                row.reason = "Aucune réponse IA pour cette question"
                continue
            self.successful += 1
            apply_qroc_result(row, result)

    async def _gather(self, batches: List[List[WorkRow]], runner: Callable[..., Awaitable[None]], **kwargs) -> None:
        async def run(batch):
            await runner(batch, **kwargs)
            await self._batch_done()
        tasks = [asyncio.create_task(run(b)) for b in batches]
        try:
            await asyncio.gather(*tasks)
        finally:
            # JobStopped или ошибка в одном батче отменяет остальные
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_ai(self) -> None:
        mcq = [r for r in self.rows if is_mcq_sheet(r.sheet_type)]
        qroc = [r for r in self.rows if not is_mcq_sheet(r.sheet_type)]
        mcq_size = 1 if self.config.AI_SINGLE_MODE else self.config.AI_BATCH_SIZE
        mcq_batches = _chunks(mcq, mcq_size)
        qroc_batches = _chunks(qroc, self.config.AI_QROC_BATCH_SIZE)
        self.total_batches = len(mcq_batches) + len(qroc_batches)
        await self._update(total_batches=self.total_batches, message="Analyse IA en cours")
        self.log(f"🚀 {len(mcq)} QCM in {len(mcq_batches)} batches, {len(qroc)} QROC in {len(qroc_batches)} batches")

        await self._gather(mcq_batches, self._run_mcq_batch)

        # Второй проход для оставшихся QCM мелкими батчами
        leftovers = [r for r in mcq if r.status != STATUS_FIXED]
        if leftovers:
            retry_batches = _chunks(leftovers, self.config.AI_RETRY_BATCH_SIZE)
            self.total_batches += len(retry_batches)
            self.log(f"🔁 Retrying {len(leftovers)} unfixed QCM in {len(retry_batches)} batches")
            await self._gather(retry_batches, self._run_mcq_batch, permissive=True)

        await self._gather(qroc_batches, self._run_qroc_batch)

    async def run(self, data: bytes, filename: str) -> None:
        # Остановка, пришедшая пока задача стояла в очереди
        self._check_stop()
        await self._update(
            status=JobStatus.PROCESSING.value,
            started_at=datetime.now(timezone.utc),
            progress=5,
            message="Lecture du fichier",
        )
        sheets = read_workbook(data, filename)
        self.rows = prepare_rows(sheets)
        if not self.rows:
            raise BadRequestError("No questions found in the file")
        self.log(f"📄 {len(self.rows)} rows prepared")
        await self._update(total_items=len(self.rows), progress=30, message="Fichier préparé")
        self._check_stop()

        ai_enabled = self.client.is_configured
        if ai_enabled:
            await self._run_ai()
        else:
            self.log("Azure OpenAI not configured, local fixes only")

        enforce_option_explanations(self.rows)
        output = build_output_workbook(self.rows)

        fixed = sum(1 for r in self.rows if r.status == STATUS_FIXED)
        stats = {
            "total": len(self.rows),
            "fixed": fixed,
            "errors": sum(1 for r in self.rows if r.status == STATUS_ERROR),
            "unfixed": sum(1 for r in self.rows if r.status == STATUS_UNFIXED),
        }
        sample = [dict(r.data, ai_status=r.status, ai_reason=r.reason) for r in self.rows if r.status == STATUS_FIXED][:10]
        message = (
            "Terminé — corrections IA appliquées" if ai_enabled
            else "Terminé (sans IA) — Azure OpenAI non configuré, corrections locales uniquement"
        )
        self.log(f"✅ {message}: {fixed}/{len(self.rows)} fixed")
        await self._update(
            status=JobStatus.COMPLETED.value,
            progress=100,
            message=message,
            output_file=output,
            processed_items=len(self.rows),
            fixed_count=fixed,
            successful_analyses=self.successful,
            failed_analyses=self.failed,
            completed_at=datetime.now(timezone.utc),
            config=self._config_snapshot(stats=stats, sample=sample),
        )

    def _config_snapshot(self, **extra) -> Dict[str, Any]:
        return {
            "aiModel": self.config.AZURE_OPENAI_DEPLOYMENT,
            "batchSize": self.config.AI_BATCH_SIZE,
            "concurrency": self.config.AI_CONCURRENCY,
            "singleMode": self.config.AI_SINGLE_MODE,
            "logs": self.logs[-200:],
            **extra,
        }


async def process_ai_validation_job(
    job_id: int,
    data: bytes,
    filename: str,
    instructions: Optional[str] = None,
    client: Optional[AzureOpenAIClient] = None,
    session_factory: Optional[Callable[[], Any]] = None,
) -> None:
    """Точка входа фоновой задачи: любые ошибки переводят job в failed"""
    processor = AiValidationProcessor(job_id, client or AzureOpenAIClient(), instructions, session_factory)
    try:
        await processor.run(data, filename)
    except JobStopped as e:
        processor.log(f"⏹ {e}")
        if str(e) != "Job deleted":
            await _mark_failed(processor, "Arrêté par l'utilisateur", str(e))
    except Exception as e:
        logger.exception(f"❌ AI job {job_id} failed: {e}")
        processor.log(f"❌ {e}")
        await _mark_failed(processor, "Échec du traitement IA", getattr(e, "detail", None) or str(e))
    finally:
        _stop_requests.discard(job_id)


async def _mark_failed(processor: AiValidationProcessor, message: str, error: str) -> None:
    try:
        await processor._update(
            status=JobStatus.FAILED.value,
            message=message,
            error_message=error,
            completed_at=datetime.now(timezone.utc),
            config=processor._config_snapshot(),
        )
    except JobStopped:
        logger.info(f"AI job {processor.job_id} was deleted before it could be marked failed")
