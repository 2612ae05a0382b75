"""Общие фикстуры: временная SQLite база, пользователи всех ролей, токены."""

import asyncio
import io
import os
import tempfile
from pathlib import Path

_DB_DIR = tempfile.mkdtemp(prefix="medqbank-tests-")

# Настройки должны быть в окружении до первого импорта medqbank
os.environ.update({
    "DB__DB_HOST": "localhost",
    "DB__DB_NAME": "medqbank_test",
    "DB__DB_USER": "test",
    "DB__DB_PASSWORD": "test",
    "DB__DB_URL": f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'test.db'}",
    "SECURITY__JWT_SECRET_KEY": "test-secret-key-for-medqbank",
    "SECURITY__AUTH_MIN_DELAY": "0",
    "SECURITY__AUTH_FAILURE_DELAY": "0",
    "SECURITY__RATE_LIMIT_ENABLED": "false",
    "IMPORTS__SSE_POLL_INTERVAL": "0.01",
    "AI__AZURE_OPENAI_API_KEY": "",
    "AI__AZURE_OPENAI_ENDPOINT": "",
    "AI__AZURE_OPENAI_DEPLOYMENT": "",
})

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from main import app
from medqbank.core.database import db_helper
from medqbank.core.security import create_access_token, get_password_hash
from medqbank.models import Base
from medqbank.models.content import Niveau, Semester
from medqbank.models.user import User
from medqbank.services.auth_service import rate_limiter

PASSWORD = "Sup3rSecretPass"


async def _reset_schema():
    async with db_helper.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


def run(coro):
    """Выполнить корутину в отдельном цикле (вне TestClient)"""
    return asyncio.run(coro)


@pytest.fixture(autouse=True)
def fresh_db():
    run(_reset_schema())
    rate_limiter.attempts.clear()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    # Без with: lifespan (админка, проверка БД) в тестах не нужен
    return TestClient(app)


async def _create_niveau(name: str, order: int, semesters: int = 2) -> int:
    async with db_helper.session_factory() as session:
        niveau = Niveau(name=name, order=order)
        session.add(niveau)
        await session.flush()
        for i in range(1, semesters + 1):
            session.add(Semester(name=f"{name} - S{i}", order=i, niveau_id=niveau.id))
        await session.commit()
        return niveau.id


async def _create_user(email: str, role: str, niveau_id=None, status: str = "active") -> int:
    async with db_helper.session_factory() as session:
        user = User(
            email=email,
            password_hash=get_password_hash(PASSWORD),
            name=email.split("@")[0],
            role=role,
            status=status,
            niveau_id=niveau_id,
        )
        session.add(user)
        await session.commit()
        return user.id


@pytest.fixture
def niveaux():
    """{'PCEM1': id, 'PCEM2': id}"""
    return {
        "PCEM1": run(_create_niveau("PCEM1", 1)),
        "PCEM2": run(_create_niveau("PCEM2", 2)),
    }


def auth_headers(user_id: int) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id)})}"}


@pytest.fixture
def make_user():
    def factory(email: str, role: str = "student", niveau_id=None, status: str = "active") -> int:
        return run(_create_user(email, role, niveau_id, status))
    return factory


@pytest.fixture
def admin(make_user):
    user_id = make_user("admin@medqbank.tn", role="admin")
    return {"id": user_id, "headers": auth_headers(user_id)}


@pytest.fixture
def maintainer(make_user):
    user_id = make_user("maintainer@medqbank.tn", role="maintainer")
    return {"id": user_id, "headers": auth_headers(user_id)}


@pytest.fixture
def student(make_user, niveaux):
    user_id = make_user("student@medqbank.tn", role="student", niveau_id=niveaux["PCEM1"])
    return {"id": user_id, "headers": auth_headers(user_id)}


# ---------------------------------------------------------------------------
# Таблицы в памяти
# ---------------------------------------------------------------------------

QCM_HEADERS = [
    "Matière", "Cours", "Question n°", "Source", "Texte de la question", "Réponse",
    "Option A", "Option B", "Option C", "Option D", "Option E", "Explication",
    "Niveau", "Semestre",
]
QROC_HEADERS = [
    "Matière", "Cours", "Question n°", "Source", "Texte de la question", "Réponse",
    "Rappel", "Explication", "Niveau", "Semestre",
]


def qcm_row(number=1, text="Quel est le principal muscle inspiratoire ?", answer="A",
            explanation="Le diaphragme assure 70% de la ventilation.", matiere="Physiologie",
            cours="Respiration", niveau="PCEM1", semestre="S1"):
    return [matiere, cours, number, "Session principale 2023", text, answer,
            "Diaphragme", "Intercostaux internes", "Abdominaux", "Sterno-cléido-mastoïdien", "",
            explanation, niveau, semestre]


def qroc_row(number=1, text="Citez l'hormone hypoglycémiante.", answer="Insuline",
             rappel="", explanation="Sécrétée par les cellules bêta.", matiere="Physiologie",
             cours="Pancréas endocrine", niveau="PCEM1", semestre="S1"):
    return [matiere, cours, number, "Session 2022", text, answer, rappel, explanation, niveau, semestre]


def make_xlsx(sheets: dict) -> bytes:
    """{'qcm': (headers, rows)} -> байты xlsx"""
    wb = Workbook()
    wb.remove(wb.active)
    for title, (headers, rows) in sheets.items():
        ws = wb.create_sheet(title)
        ws.append(headers)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def upload(name: str, content: bytes, mime: str = XLSX_MIME) -> dict:
    return {"file": (name, content, mime)}
