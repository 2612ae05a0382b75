"""Tests for /validation endpoints: classic check, downloads and exports."""

import io

from openpyxl import load_workbook

from conftest import QCM_HEADERS, QROC_HEADERS, make_xlsx, qcm_row, qroc_row, upload


def _bank() -> bytes:
    return make_xlsx({
        "QCM": (QCM_HEADERS, [qcm_row(), qcm_row(number=2, answer="")]),
        "QROC": (QROC_HEADERS, [qroc_row(), qroc_row(number=2, explanation="")]),
    })


def test_validation_requires_admin(client, student):
    r = client.post("/api/v1/validation", files=upload("bank.xlsx", _bank()), headers=student["headers"])
    assert r.status_code == 403
    assert r.json()["error"] == "Admin access required"


def test_validation_requires_authentication(client):
    r = client.post("/api/v1/validation", files=upload("bank.xlsx", _bank()))
    assert r.status_code == 401
    assert "error" in r.json()


def test_validation_info_lists_capabilities(client, admin, student):
    assert client.get("/api/v1/validation", headers=student["headers"]).status_code == 403
    r = client.get("/api/v1/validation", headers=admin["headers"])
    assert r.status_code == 200
    info = r.json()
    assert info["supportedFormats"] == ["xlsx", "xls", "csv"]
    assert info["maxFileSize"] == "50MB"
    assert "Duplicate detection" in info["features"]


def test_validate_file_splits_good_and_bad(client, admin):
    r = client.post("/api/v1/validation", files=upload("bank.xlsx", _bank()), headers=admin["headers"])
    assert r.status_code == 200
    body = r.json()
    assert (body["goodCount"], body["badCount"], body["totalCount"]) == (2, 2, 4)
    assert body["fileName"] == "bank.xlsx"
    assert body["sessionId"]

    bad = {(b["sheet"], b["row"]): b["reason"] for b in body["bad"]}
    assert bad == {
        ("QCM", 3): "MCQ missing correct answer (A-E)",
        ("QROC", 3): "QROC missing explanation",
    }
    assert body["good"][0]["data"]["texte de la question"] == "Quel est le principal muscle inspiratoire ?"
    assert {s["name"]: s["sheet_type"] for s in body["sheets"]} == {"QCM": "qcm", "QROC": "qroc"}


def test_invalid_upload_type(client, admin):
    r = client.post(
        "/api/v1/validation",
        files=upload("notes.pdf", b"%PDF-1.4", "application/pdf"),
        headers=admin["headers"],
    )
    assert r.status_code == 400
    assert r.json()["error"].startswith("Invalid file type")
    assert r.json()["type"] == "BadRequestError"


def test_download_generated_files(client, admin):
    session_id = client.post(
        "/api/v1/validation", files=upload("Banque PCEM1.xlsx", _bank()), headers=admin["headers"]
    ).json()["sessionId"]

    info = client.get(f"/api/v1/validation/sessions/{session_id}", headers=admin["headers"]).json()
    assert info["good"] == 2 and info["bad"] == 2
    assert info["hasGoodFile"] and info["hasErrorFile"]

    good = client.get(
        "/api/v1/validation/download", params={"type": "good", "session": session_id}, headers=admin["headers"]
    )
    assert good.status_code == 200
    assert "Banque%20PCEM1-valide.xlsx" in good.headers["content-disposition"]
    assert load_workbook(io.BytesIO(good.content)).sheetnames == ["qcm", "qroc"]

    errors = client.get(
        "/api/v1/validation/download", params={"type": "error", "session": session_id}, headers=admin["headers"]
    )
    assert errors.status_code == 200
    assert load_workbook(io.BytesIO(errors.content))["Erreurs"].max_row == 3

    report = client.get(
        "/api/v1/validation/download", params={"type": "report", "session": session_id}, headers=admin["headers"]
    )
    assert report.status_code == 200
    assert report.headers["content-type"].startswith("text/plain")
    assert "Total rows: 4" in report.text


def test_unknown_session_is_404(client, admin):
    r = client.get(
        "/api/v1/validation/download", params={"type": "good", "session": "missing"}, headers=admin["headers"]
    )
    assert r.status_code == 404
    assert r.json()["error"] == "Validation session not found or expired"
    assert client.get("/api/v1/validation/sessions/missing", headers=admin["headers"]).status_code == 404


def test_export_without_good_rows(client, admin):
    data = make_xlsx({"QCM": (QCM_HEADERS, [qcm_row(answer="")])})
    session_id = client.post(
        "/api/v1/validation", files=upload("bank.xlsx", data), headers=admin["headers"]
    ).json()["sessionId"]
    r = client.get(
        "/api/v1/validation/export", params={"mode": "good", "sessionId": session_id}, headers=admin["headers"]
    )
    assert r.status_code == 400
    assert r.json()["error"] == "No data to export"


def test_export_from_edited_rows(client, admin):
    payload = {
        "mode": "good",
        "fileName": "corrige.xlsx",
        "good": [{
            "sheet": "QROC",
            "row": 2,
            "data": {"matiere": "Biochimie", "cours": "Glycolyse", "texte de la question": "Enzyme ?",
                     "reponse": "PFK-1", "explication": "Régulée par l'ATP"},
        }],
    }
    r = client.post("/api/v1/validation/export", json=payload, headers=admin["headers"])
    assert r.status_code == 200
    assert "corrige-valide.xlsx" in r.headers["content-disposition"]
    wb = load_workbook(io.BytesIO(r.content))
    assert wb.sheetnames == ["qroc"]

    payload = {"mode": "bad", "bad": [{"sheet": "QCM", "row": 5, "reason": "MCQ missing options", "original": {}}]}
    r = client.post("/api/v1/validation/export", json=payload, headers=admin["headers"])
    assert r.status_code == 200
    assert "validation-erreurs.xlsx" in r.headers["content-disposition"]
