"""Tests for per-student question state (notes, attempts, scores) and lecture progress."""

from conftest import QCM_HEADERS, auth_headers, make_xlsx, qcm_row, upload
from medqbank.services.progress_service import sanitize_image_urls


def _lecture_with_questions(client, admin, count: int = 3):
    rows = [qcm_row(number=n, text=f"Question numéro {n} ?") for n in range(1, count + 1)]
    client.post("/api/v1/questions/bulk-import-progress",
                files=upload("b.xlsx", make_xlsx({"QCM": (QCM_HEADERS, rows)})), headers=admin["headers"])
    lecture = client.get("/api/v1/lectures", headers=admin["headers"]).json()[0]
    questions = client.get(f"/api/v1/lectures/{lecture['id']}/questions", headers=admin["headers"]).json()
    return lecture["id"], [q["id"] for q in questions]


def test_sanitize_image_urls():
    inline = "data:image/png;base64," + "A" * 100
    huge = "data:image/png;base64," + "A" * 200_000
    urls = ["https://cdn.example.org/a.png", "javascript:alert(1)", 42, inline, huge, "/uploads/b.png", "ftp://x/y"]
    assert sanitize_image_urls(urls) == ["https://cdn.example.org/a.png", inline, "/uploads/b.png"]
    assert len(sanitize_image_urls([f"/img/{i}.png" for i in range(10)])) == 6


def test_question_state_is_saved_per_user(client, admin, student, make_user):
    _, (question_id, *_) = _lecture_with_questions(client, admin, count=1)
    url = f"/api/v1/user-question-state/{question_id}"

    r = client.get(url, headers=student["headers"])
    assert r.status_code == 200
    assert r.json() is None

    r = client.put(url, json={
        "notes": "Penser au surfactant",
        "highlights": [{"start": 0, "end": 12, "color": "yellow"}],
        "notes_image_urls": ["https://cdn.example.org/schema.png", "javascript:alert(1)"],
        "last_score": 50,
        "increment_attempts": True,
    }, headers=student["headers"])
    assert r.status_code == 200
    state = r.json()
    assert (state["attempts"], state["last_score"]) == (1, 50)
    assert state["notes_image_urls"] == ["https://cdn.example.org/schema.png"]

    # Без last_score результат сохраняется, попытки растут только по флагу
    r = client.put(url, json={"notes": "Relu", "increment_attempts": True}, headers=student["headers"])
    assert (r.json()["attempts"], r.json()["last_score"], r.json()["notes"]) == (2, 50, "Relu")
    r = client.put(url, json={"notes": "Relu encore"}, headers=student["headers"])
    assert r.json()["attempts"] == 2
    assert r.json()["highlights"] is None

    other = make_user("autre@medqbank.tn")
    assert client.get(url, headers=auth_headers(other)).json() is None

    assert client.get("/api/v1/user-question-state/999", headers=student["headers"]).status_code == 404
    assert client.put("/api/v1/user-question-state/999", json={}, headers=student["headers"]).status_code == 404
    r = client.put(url, json={"last_score": 120}, headers=student["headers"])
    assert r.status_code == 422


def test_lecture_progress(client, admin, student):
    lecture_id, question_ids = _lecture_with_questions(client, admin, count=4)
    url = f"/api/v1/lectures/{lecture_id}/progress"

    assert client.get(url, headers=student["headers"]).json() == {
        "lecture_id": lecture_id, "total_questions": 4, "attempted": 0,
        "average_score": None, "progress_percent": 0.0,
    }

    for question_id, score in zip(question_ids, (100, 50)):
        client.put(f"/api/v1/user-question-state/{question_id}",
                   json={"last_score": score, "increment_attempts": True}, headers=student["headers"])
    # Заметка без попытки в прогресс не входит
    client.put(f"/api/v1/user-question-state/{question_ids[2]}", json={"notes": "À revoir"},
               headers=student["headers"])

    progress = client.get(url, headers=student["headers"]).json()
    assert (progress["attempted"], progress["average_score"], progress["progress_percent"]) == (2, 75.0, 50.0)
    assert client.get("/api/v1/lectures/999/progress", headers=student["headers"]).status_code == 404
