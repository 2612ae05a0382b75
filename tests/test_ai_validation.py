"""Tests for the AI correction pipeline, the Azure OpenAI client and the job API."""

import asyncio
import io
import json

import httpx
import pytest
from openpyxl import load_workbook

from conftest import QCM_HEADERS, QROC_HEADERS, auth_headers, make_xlsx, qcm_row, qroc_row, run, upload
from medqbank.core.config import AIConfig, settings
from medqbank.core.database import db_helper
from medqbank.core.exceptions import ExternalServiceError
from medqbank.models.system import JobStatus
from medqbank.repositories.job_repository import JobRepository
from medqbank.services.ai_client import AiNetworkError, AzureOpenAIClient, extract_json
from medqbank.services.ai_validation import (
    STATUS_ERROR,
    STATUS_FIXED,
    WorkRow,
    ai_output_file_name,
    apply_mcq_result,
    apply_qroc_result,
    enforce_option_explanations,
    ensure_question_mark,
    is_stop_requested,
    normalize_source,
    prepare_rows,
    process_ai_validation_job,
    request_stop,
    sanitize_matiere,
    vary_connectors,
)
from medqbank.services.headers import IMPORT_HEADERS
from medqbank.services.workbook import read_workbook


def _row(sheet_type="qcm", line=2, **values) -> WorkRow:
    data = {h: "" for h in IMPORT_HEADERS}
    data.update({k.replace("_", " "): v for k, v in values.items()})
    return WorkRow(sheet_type=sheet_type, sheet_name=sheet_type.upper(), line=line, data=data)


def _mcq_row() -> WorkRow:
    return _row(
        texte_de_la_question="Quel muscle est inspiratoire ?", reponse="A",
        option_a="Diaphragme", option_b="Grand droit", option_c="Transverse",
    )


def _bank() -> bytes:
    return make_xlsx({
        "QCM": (QCM_HEADERS, [qcm_row()]),
        "QROC": (QROC_HEADERS, [qroc_row()]),
    })


# ---------------------------------------------------------------------------
# Локальные исправления и применение ответов модели
# ---------------------------------------------------------------------------

def test_text_helpers():
    assert ensure_question_mark("Quel est le rôle du surfactant") == "Quel est le rôle du surfactant ?"
    assert ensure_question_mark("Citez deux causes :") == "Citez deux causes :"
    assert ensure_question_mark("Le diaphragme est innervé par le nerf phrénique") == \
        "Le diaphragme est innervé par le nerf phrénique"
    assert normalize_source("  session   principale 2019. ") == "Session principale 2019"
    assert sanitize_matiere("01- cardiologie ") == "Cardiologie"


def test_vary_connectors_rewrites_repeated_openings():
    result = vary_connectors({"A": "Car il est vrai.", "B": "Car il est faux.", "C": "Faux."})
    assert result == {"A": "Car il est vrai.", "B": "En effet, il est faux.", "C": "Faux."}


def test_prepare_rows_applies_local_fixes():
    content = make_xlsx({
        "QCM": (QCM_HEADERS, [
            qcm_row(text="quel est le rôle du surfactant", answer="a;c", matiere="01- physiologie"),
            qcm_row(number=2, matiere="01- physiologie", niveau=""),
        ]),
        "QROC": (QROC_HEADERS, [qroc_row(answer="Réponse : <b>Insuline</b>")]),
    })
    rows = prepare_rows(read_workbook(content, "banque.xlsx"))
    assert [r.id for r in rows] == ["qcm:2", "qcm:3", "qroc:2"]
    first, second, qroc = rows
    assert first.data["texte de la question"] == "quel est le rôle du surfactant ?"
    assert first.data["reponse"] == "A, C"
    assert first.data["matiere"] == "Physiologie"
    assert second.data["niveau"] == "PCEM1"
    assert qroc.data["reponse"] == "Insuline"


def test_apply_mcq_result_fills_explanations():
    row = _mcq_row()
    fixed = apply_mcq_result(row, {
        "status": "ok",
        "fixedQuestionText": "Quel muscle est le principal inspirateur",
        "correctAnswers": [0],
        "optionExplanations": {"A": "Car il assure l'inspiration.", "B": "Car il est expirateur.", "C": "Expirateur."},
        "globalExplanation": "Le diaphragme est le muscle inspiratoire principal.",
    })
    assert fixed is True
    assert row.status == STATUS_FIXED
    assert row.reason == "Corrigé par IA"
    assert row.data["texte de la question"] == "Quel muscle est le principal inspirateur ?"
    assert row.data["reponse"] == "A"
    assert row.data["explication b"] == "En effet, il est expirateur."
    assert row.data["rappel"] == "Le diaphragme est le muscle inspiratoire principal."


def test_apply_mcq_result_rejects_incomplete_answers():
    row = _mcq_row()
    assert apply_mcq_result(row, {"optionExplanations": {"A": "Vrai.", "B": "Faux."}}) is False
    assert row.reason == "Explications incomplètes"

    row = _mcq_row()
    assert apply_mcq_result(row, {"status": "error", "error": "question ambiguë"}) is False
    assert row.reason == "IA: question ambiguë"
    assert row.status != STATUS_FIXED


def test_apply_mcq_result_ignores_absent_options():
    row = _mcq_row()
    apply_mcq_result(row, {
        "correctAnswers": ["A", "E"],
        "optionExplanations": {"A": "Vrai.", "B": "Faux.", "C": "Faux.", "E": "Option absente."},
    })
    assert row.data["reponse"] == "A"
    assert row.data["explication e"] == ""


def test_apply_qroc_result():
    row = _row("qroc", texte_de_la_question="Citez l'hormone hypoglycémiante.", reponse="insuline")
    assert apply_qroc_result(row, {"fixedAnswer": "Insuline", "explanation": "Sécrétée par les cellules bêta."})
    assert row.data["reponse"] == "Insuline"
    assert row.data["rappel"] == "Sécrétée par les cellules bêta."

    row = _row("qroc", texte_de_la_question="Citez une hormone.", reponse="Glucagon")
    assert apply_qroc_result(row, {"error": "hors sujet"}) is False
    assert row.reason == "IA: hors sujet"


def test_enforce_option_explanations():
    mcq, qroc = _mcq_row(), _row("qroc", reponse="Insuline")
    mcq.data["explication a"] = "Vrai."
    enforce_option_explanations([mcq, qroc])
    assert mcq.status == STATUS_ERROR
    assert mcq.reason == "Explication par option manquante: B, C"
    assert qroc.status != STATUS_ERROR


def test_ai_output_file_name():
    assert ai_output_file_name("Banque PCEM1.xlsx") == "Banque PCEM1-ai-fixed.xlsx"


# ---------------------------------------------------------------------------
# Клиент Azure OpenAI
# ---------------------------------------------------------------------------

def test_extract_json_strategies():
    assert extract_json('```json\n{"results": []}\n```') == {"results": []}
    assert extract_json('Voici: {"a": [1, 2,], } merci') == {"a": [1, 2]}
    with pytest.raises(ValueError):
        extract_json("pas de json ici")


def _azure_client(handler) -> AzureOpenAIClient:
    config = AIConfig(
        AZURE_OPENAI_API_KEY="azure-key",
        AZURE_OPENAI_ENDPOINT="https://medqbank.openai.azure.com/",
        AZURE_OPENAI_DEPLOYMENT="gpt-4o",
        AI_BACKOFF_SECONDS=0,
    )
    return AzureOpenAIClient(config, transport=httpx.MockTransport(handler))


def test_client_posts_json_mode_request():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["key"] = request.headers["api-key"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "choices": [{"message": {"content": '{"results": [{"id": "qcm:2"}]}'}, "finish_reason": "stop"}],
        })

    client = _azure_client(handler)
    assert client.is_configured
    data = run(client.chat_json([{"role": "user", "content": "Corrige"}]))

    assert data == {"results": [{"id": "qcm:2"}]}
    assert captured["url"].startswith("https://medqbank.openai.azure.com/openai/deployments/gpt-4o/chat/completions")
    assert captured["key"] == "azure-key"
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert captured["body"]["messages"][0]["role"] == "system"


def test_client_authentication_failure_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": "unauthorized"})

    with pytest.raises(ExternalServiceError) as exc:
        run(_azure_client(handler).chat_json([{"role": "user", "content": "json"}]))
    assert "401" in exc.value.detail
    assert len(calls) == 1


def test_client_retries_server_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(AiNetworkError):
        run(_azure_client(handler).chat_json([{"role": "user", "content": "json"}]))
    assert len(calls) == 3


def test_unconfigured_client():
    client = AzureOpenAIClient(AIConfig())
    assert client.is_configured is False
    with pytest.raises(ExternalServiceError):
        run(client.chat_completion([{"role": "user", "content": "json"}]))


# ---------------------------------------------------------------------------
# Процессор с подменённой моделью
# ---------------------------------------------------------------------------

class StubModel:
    """Отвечает корректными исправлениями на каждую присланную строку"""

    is_configured = True

    def __init__(self, fail_batches: bool = False):
        self.calls = []
        self.fail_batches = fail_batches

    async def chat_json(self, messages):
        questions = json.loads(messages[-1]["content"])["questions"]
        self.calls.append([q["id"] for q in questions])
        if self.fail_batches and len(questions) > 1:
            raise ValueError("Unable to parse model JSON")
        results = []
        for q in questions:
            if "options" in q:
                results.append({
                    "id": q["id"], "status": "ok",
                    "fixedQuestionText": q["questionText"],
                    "correctAnswers": ["A"],
                    "optionExplanations": {k: f"Option {k} expliquée." for k in q["options"]},
                    "globalExplanation": "Rappel de physiologie.",
                })
            else:
                results.append({"id": q["id"], "explanation": "Sécrétée par les cellules bêta."})
        return {"results": results}


class BrokenModel:
    is_configured = True

    async def chat_json(self, messages):
        raise ExternalServiceError("Azure OpenAI authentication failed (401): check AZURE_OPENAI_API_KEY")


async def _create_job(user_id: int, status: str = JobStatus.QUEUED.value) -> int:
    async with db_helper.session_factory() as session:
        job = await JobRepository(session).create(
            user_id=user_id, file_name="banque.xlsx", original_file_name="banque.xlsx",
            file_size=100, status=status,
        )
        return job.id


async def _get_job(job_id: int):
    async with db_helper.session_factory() as session:
        return await JobRepository(session).get(job_id)


def test_processor_applies_model_corrections(maintainer):
    job_id = run(_create_job(maintainer["id"]))
    model = StubModel()
    run(process_ai_validation_job(job_id, _bank(), "banque.xlsx", client=model))

    job = run(_get_job(job_id))
    assert job.status == JobStatus.COMPLETED.value
    assert job.message == "Terminé — corrections IA appliquées"
    assert job.progress == 100
    assert job.total_batches == 2
    assert job.fixed_count == 2
    assert job.successful_analyses == 2
    assert job.config["stats"] == {"total": 2, "fixed": 2, "errors": 0, "unfixed": 0}
    assert model.calls == [["qcm:2"], ["qroc:2"]]

    wb = load_workbook(io.BytesIO(job.output_file))
    assert wb.sheetnames == ["qcm", "qroc"]
    headers = [c.value for c in wb["qcm"][1]]
    values = dict(zip(headers, [c.value for c in wb["qcm"][2]]))
    assert values["explication a"] == "Option A expliquée."
    assert values["ai_status"] == "fixed"


def test_processor_retries_unparseable_batches_row_by_row(maintainer):
    content = make_xlsx({"QCM": (QCM_HEADERS, [qcm_row(), qcm_row(number=2, text="Quel muscle est expiratoire ?")])})
    job_id = run(_create_job(maintainer["id"]))
    model = StubModel(fail_batches=True)
    run(process_ai_validation_job(job_id, content, "qcm.xlsx", client=model))

    assert model.calls == [["qcm:2", "qcm:3"], ["qcm:2"], ["qcm:3"]]
    job = run(_get_job(job_id))
    assert job.status == JobStatus.COMPLETED.value
    assert job.fixed_count == 2


def test_processor_marks_job_failed_on_service_error(maintainer):
    job_id = run(_create_job(maintainer["id"]))
    run(process_ai_validation_job(job_id, _bank(), "banque.xlsx", client=BrokenModel()))

    job = run(_get_job(job_id))
    assert job.status == JobStatus.FAILED.value
    assert job.message == "Échec du traitement IA"
    assert "401" in job.error_message
    assert job.output_file is None


class SlowStoppingModel(StubModel):
    """Модель с задержкой: пользователь жмёт «стоп», пока идёт первый запрос"""

    def __init__(self, job_id: int):
        super().__init__()
        self.job_id = job_id

    async def chat_json(self, messages):
        await asyncio.sleep(0.05)
        result = await super().chat_json(messages)
        request_stop(self.job_id)
        return result


def test_stop_while_processing_skips_remaining_batches(maintainer, monkeypatch):
    monkeypatch.setattr(settings.ai, "AI_BATCH_SIZE", 1)
    content = make_xlsx({"QCM": (QCM_HEADERS, [qcm_row(number=n) for n in range(1, 6)])})
    job_id = run(_create_job(maintainer["id"]))
    model = SlowStoppingModel(job_id)
    run(process_ai_validation_job(job_id, content, "qcm.xlsx", client=model))

    assert model.calls == [["qcm:2"]]
    job = run(_get_job(job_id))
    assert job.status == JobStatus.FAILED.value
    assert job.message == "Arrêté par l'utilisateur"
    assert job.output_file is None
    assert is_stop_requested(job_id) is False


def test_processor_rejects_empty_workbook(maintainer):
    job_id = run(_create_job(maintainer["id"]))
    content = make_xlsx({"QCM": (QCM_HEADERS, [])})
    run(process_ai_validation_job(job_id, content, "vide.xlsx", client=StubModel()))
    job = run(_get_job(job_id))
    assert job.status == JobStatus.FAILED.value
    assert job.error_message == "No questions found in the file"


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

def _submit(client, user, content=None, name="banque.xlsx", instructions=None):
    data = {"instructions": instructions} if instructions else None
    return client.post("/api/v1/validation/ai", files=upload(name, content or _bank()), data=data, headers=user["headers"])


def test_job_without_azure_uses_local_fixes_only(client, maintainer):
    r = _submit(client, maintainer, instructions="Style concis")
    assert r.status_code == 201
    created = r.json()
    assert created["status"] == "queued"
    assert created["message"] == "En attente"
    assert created["instructions"] == "Style concis"
    assert created["config"]["qualityThreshold"] == 0.8

    job_id = created["id"]
    job = client.get(f"/api/v1/ai-jobs/{job_id}", headers=maintainer["headers"]).json()
    assert job["status"] == "completed"
    assert job["progress"] == 100
    assert job["message"].startswith("Terminé (sans IA)")

    preview = client.get(f"/api/v1/ai-jobs/{job_id}/preview", headers=maintainer["headers"]).json()
    assert preview["summary"] == {"total": 2, "fixed": 0, "errors": 1, "unfixed": 1}
    assert preview["sample"] == []
    assert preview["eta_seconds"] is None

    r = client.get(f"/api/v1/ai-jobs/{job_id}/download", headers=maintainer["headers"])
    assert r.status_code == 200
    assert "banque-ai-fixed.xlsx" in r.headers["content-disposition"]
    wb = load_workbook(io.BytesIO(r.content))
    assert wb.sheetnames == ["qcm", "qroc", "Erreurs"]
    reasons = [row[3] for row in wb["Erreurs"].iter_rows(min_row=2, values_only=True)]
    assert reasons == ["Explication par option manquante: A, B, C, D", "Non corrigé"]


def test_job_events_stream_ends_on_terminal_status(client, maintainer):
    job_id = _submit(client, maintainer).json()["id"]
    r = client.get(f"/api/v1/ai-jobs/{job_id}/events", headers=maintainer["headers"])
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = [json.loads(line[len("data: "):]) for line in r.text.splitlines() if line.startswith("data: ")]
    assert events[-1]["status"] == "completed"


def test_job_access_rules(client, maintainer, admin, student, make_user):
    r = _submit(client, student)
    assert r.status_code == 403
    assert r.json()["error"] == "Maintainer or admin access required"

    job_id = _submit(client, maintainer).json()["id"]
    other_id = make_user("other@medqbank.tn", role="maintainer")
    other = auth_headers(other_id)

    r = client.get(f"/api/v1/ai-jobs/{job_id}", headers=other)
    assert r.status_code == 403
    assert r.json()["error"] == "You can only access your own jobs"
    assert client.get("/api/v1/ai-jobs", headers=other).json() == []
    assert client.get("/api/v1/ai-jobs", params={"admin": "true"}, headers=other).status_code == 403

    assert client.get(f"/api/v1/ai-jobs/{job_id}", headers=admin["headers"]).status_code == 200
    all_jobs = client.get("/api/v1/ai-jobs", params={"admin": "true"}, headers=admin["headers"]).json()
    assert [j["id"] for j in all_jobs] == [job_id]
    assert client.get("/api/v1/ai-jobs/999", headers=admin["headers"]).status_code == 404


def test_list_filters_by_status(client, maintainer):
    completed = _submit(client, maintainer).json()["id"]
    queued = run(_create_job(maintainer["id"]))
    r = client.get("/api/v1/ai-jobs", params={"status": "queued"}, headers=maintainer["headers"])
    assert [j["id"] for j in r.json()] == [queued]
    r = client.get("/api/v1/ai-jobs", headers=maintainer["headers"])
    assert {j["id"] for j in r.json()} == {completed, queued}


def test_stop_queued_job_wins_over_worker(client, maintainer):
    job_id = run(_create_job(maintainer["id"]))
    r = client.post(f"/api/v1/ai-jobs/{job_id}/stop", headers=maintainer["headers"])
    assert r.status_code == 200
    assert r.json()["status"] == "failed"
    assert r.json()["message"] == "Arrêté par l'utilisateur"

    # Воркер, стартовавший после остановки, не должен перезапустить задачу
    run(process_ai_validation_job(job_id, _bank(), "banque.xlsx", client=StubModel()))
    job = run(_get_job(job_id))
    assert job.status == JobStatus.FAILED.value
    assert job.output_file is None
    assert not is_stop_requested(job_id)

    r = client.post(f"/api/v1/ai-jobs/{job_id}/stop", headers=maintainer["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Job already finished"


def test_processing_job_cannot_be_deleted(client, maintainer):
    job_id = run(_create_job(maintainer["id"], JobStatus.PROCESSING.value))
    r = client.delete(f"/api/v1/ai-jobs/{job_id}", headers=maintainer["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Cannot delete a job while it is processing. Stop it first"
    r = client.get(f"/api/v1/ai-jobs/{job_id}/download", headers=maintainer["headers"])
    assert r.status_code == 400
    assert r.json()["error"] == "Job is not completed yet"

    assert client.post(f"/api/v1/ai-jobs/{job_id}/stop", headers=maintainer["headers"]).status_code == 200
    run(process_ai_validation_job(job_id, _bank(), "banque.xlsx", client=StubModel()))
    assert run(_get_job(job_id)).status == JobStatus.FAILED.value

    r = client.delete(f"/api/v1/ai-jobs/{job_id}", headers=maintainer["headers"])
    assert r.json() == {"success": True}
    assert client.get(f"/api/v1/ai-jobs/{job_id}", headers=maintainer["headers"]).status_code == 404
