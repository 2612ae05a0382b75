# medqbank/services/validation_store.py
import secrets
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from medqbank.core.config import settings


@dataclass
class StoredValidation:
    file_name: str
    good_file: Optional[bytes]
    bad_file: Optional[bytes]
    report: str
    summary: dict = field(default_factory=dict)
    created_at: float = field(default_factory=time.monotonic)


class ValidationStore:
    """Файлы результатов проверки в памяти процесса, живут ttl секунд"""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds or settings.imports.VALIDATION_TTL_SECONDS
        self._items: Dict[str, StoredValidation] = {}

    def purge(self) -> int:
        deadline = time.monotonic() - self.ttl_seconds
        expired = [k for k, v in self._items.items() if v.created_at < deadline]
        for key in expired:
            del self._items[key]
        return len(expired)

    def store(self, item: StoredValidation) -> str:
        self.purge()
        session_id = secrets.token_urlsafe(16)
        self._items[session_id] = item
        return session_id

    def get(self, session_id: str) -> Optional[StoredValidation]:
        self.purge()
        return self._items.get(session_id)

    def delete(self, session_id: str) -> None:
        self._items.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._items)


validation_store = ValidationStore()
