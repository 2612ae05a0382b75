# medqbank/services/headers.py
"""
Канонизация заголовков и имён листов Excel.

Преподаватели присылают файлы с самыми разными написаниями колонок
("Texte de la question", "texte question", "Option-A", "Réponse(s)" ...).
Всё приводится к каноническим именам из IMPORT_HEADERS.
"""
import re
import unicodedata
from typing import Iterable, List, Optional

OPTION_LETTERS = ("a", "b", "c", "d", "e")

IMPORT_HEADERS = [
    "matiere", "cours", "question n", "cas n", "source",
    "texte du cas", "texte de la question", "reponse",
    *[f"option {x}" for x in OPTION_LETTERS],
    "rappel", "explication",
    *[f"explication {x}" for x in OPTION_LETTERS],
    "image", "niveau", "semestre",
]

ERROR_HEADERS = [
    "sheet", "row", "reason",
    "matiere", "cours", "question n", "cas n", "texte du cas",
    "texte de la question", "reponse",
    *[f"option {x}" for x in OPTION_LETTERS],
    "rappel", "explication", "image",
]

SHEET_TYPES = ("qcm", "qroc", "cas_qcm", "cas_qroc")

HEADER_ALIASES = {
    "matiere": "matiere",
    "matieres": "matiere",
    "specialite": "matiere",
    "module": "matiere",
    "cours": "cours",
    "lecture": "cours",
    "chapitre": "cours",
    "question n": "question n",
    "question no": "question n",
    "question num": "question n",
    "question numero": "question n",
    "n question": "question n",
    "num question": "question n",
    "cas n": "cas n",
    "cas no": "cas n",
    "cas num": "cas n",
    "numero cas": "cas n",
    "source": "source",
    "session": "source",
    "texte du cas": "texte du cas",
    "texte cas": "texte du cas",
    "enonce du cas": "texte du cas",
    "texte de la question": "texte de la question",
    "texte de question": "texte de la question",
    "texte question": "texte de la question",
    "question": "texte de la question",
    "enonce": "texte de la question",
    "reponse": "reponse",
    "reponses": "reponse",
    "reponse s": "reponse",
    "bonne reponse": "reponse",
    "bonnes reponses": "reponse",
    "rappel": "rappel",
    "rappel du cours": "rappel",
    "rappel cours": "rappel",
    "course reminder": "rappel",
    "explication": "explication",
    "explications": "explication",
    "explication de la reponse": "explication",
    "explanation": "explication",
    "correction": "explication",
    "image": "image",
    "image url": "image",
    "media": "image",
    "media url": "image",
    "illustration": "image",
    "illustration url": "image",
    "niveau": "niveau",
    "level": "niveau",
    "semestre": "semestre",
    "semester": "semestre",
}

SHEET_ALIASES = {
    "qcm": "qcm",
    "questions qcm": "qcm",
    "qroc": "qroc",
    "croq": "qroc",
    "questions qroc": "qroc",
    "questions croq": "qroc",
    "cas qcm": "cas_qcm",
    "cas clinique qcm": "cas_qcm",
    "cas clinic qcm": "cas_qcm",
    "cas qroc": "cas_qroc",
    "cas croq": "cas_qroc",
    "cas clinique qroc": "cas_qroc",
    "cas clinic qroc": "cas_qroc",
    "cas clinic croq": "cas_qroc",
    "cas clinique croq": "cas_qroc",
}


def strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")


def normalize_header(header: object) -> str:
    """'Texte de la Question (*)' -> 'texte de la question'"""
    text = strip_accents(str(header or "")).lower()
    text = re.sub(r"[^a-z0-9]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _letter_suffix(tokens: List[str]) -> Optional[str]:
    """Буква варианта, только если это последнее слово: "à retenir" даёт токен "a" в середине"""
    if tokens and tokens[-1] in OPTION_LETTERS:
        return tokens[-1]
    return None


def canonicalize_header(header: object) -> str:
    """Каноническое имя колонки: сначала точные алиасы, затем ключевые слова."""
    norm = normalize_header(header)
    if not norm:
        return ""
    if norm in HEADER_ALIASES:
        return HEADER_ALIASES[norm]
    # "option_a", "option-a", "explication a" уже нормализованы в "option a"
    for canonical in IMPORT_HEADERS:
        if norm == canonical:
            return canonical

    tokens = norm.split()
    letter = _letter_suffix(tokens[1:])

    # Порядок важен: более специфичные правила раньше
    if "explication" in tokens or "explications" in tokens or "explanation" in tokens:
        return f"explication {letter}" if letter else "explication"
    if ("option" in tokens or "proposition" in tokens or "choix" in tokens) and letter:
        return f"option {letter}"
    if "texte" in tokens and "cas" in tokens:
        return "texte du cas"
    if "texte" in tokens and "question" in tokens:
        return "texte de la question"
    if "rappel" in tokens:
        return "rappel"
    if tokens[0] in ("reponse", "reponses"):
        return "reponse"
    if "cas" in tokens and ({"n", "no", "num", "numero"} & set(tokens)):
        return "cas n"
    if "question" in tokens and ({"n", "no", "num", "numero"} & set(tokens)):
        return "question n"
    if "image" in tokens or "media" in tokens or "illustration" in tokens:
        return "image"
    return norm


def canonical_sheet(name: object) -> Optional[str]:
    """Имя листа -> qcm | qroc | cas_qcm | cas_qroc (или None)."""
    norm = normalize_header(name)
    if norm in SHEET_ALIASES:
        return SHEET_ALIASES[norm]
    compact = norm.replace(" ", "_")
    return compact if compact in SHEET_TYPES else None


def infer_sheet_type(headers: Iterable[str], name_hint: object = None) -> str:
    """
    Тип листа по колонкам, когда имя листа неизвестно (CSV, "Feuil1").
    Есть варианты ответа -> QCM, есть текст кейса -> клинический кейс.
    """
    by_name = canonical_sheet(name_hint) if name_hint is not None else None
    if by_name:
        return by_name
    cols = set(headers)
    has_options = any(f"option {x}" in cols for x in OPTION_LETTERS)
    is_case = "texte du cas" in cols or "cas n" in cols
    if has_options:
        return "cas_qcm" if is_case else "qcm"
    return "cas_qroc" if is_case else "qroc"


def is_mcq_sheet(sheet_type: str) -> bool:
    return sheet_type in ("qcm", "cas_qcm")


def is_case_sheet(sheet_type: str) -> bool:
    return sheet_type in ("cas_qcm", "cas_qroc")
