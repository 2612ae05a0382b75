# medqbank/services/ai_client.py
import asyncio
import json as json_lib
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from medqbank.core.config import AIConfig, settings
from medqbank.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

JSON_SYSTEM_MESSAGE = "Return a strict JSON object only. No markdown, no comments, no text outside the JSON."


class AiNetworkError(ExternalServiceError):
    """Сеть/таймаут/5xx после всех попыток: батч можно уменьшить и повторить"""


class AiRequestTooLarge(ExternalServiceError):
    """413 от Azure: батч слишком большой"""


@dataclass
class ChatResult:
    content: str
    finish_reason: Optional[str] = None


def _clamp(value: Optional[float], low: float, high: float) -> Optional[float]:
    if value is None:
        return None
    return max(low, min(high, value))


def extract_json(raw_text: str) -> Any:
    """
    Достаёт JSON из ответа модели: убирает ``` блоки, ищет внешние скобки
    и пробует несколько стратегий восстановления.
    """
    cleaned = re.sub(r'^```(?:json)?\s*', '', (raw_text or "").strip(), flags=re.MULTILINE)
    cleaned = re.sub(r'```\s*$', '', cleaned, flags=re.MULTILINE).strip()

    start_idx = cleaned.find('{')
    end_idx = cleaned.rfind('}')
    if start_idx == -1 or end_idx == -1 or start_idx >= end_idx:
        logger.error(f"❌ JSON boundaries not found. First 300 chars:\n{cleaned[:300]}")
        raise ValueError("No JSON object in model answer")

    json_candidate = cleaned[start_idx:end_idx + 1]
    strategies = [
        ("original", json_candidate),
        ("fix_trailing_commas", re.sub(r',\s*([}\]])', r'\1', json_candidate)),
        ("fix_single_quotes", json_candidate.replace("'", '"')),
        ("fix_raw_newlines", json_candidate.replace("\r", " ").replace("\n", " ")),
    ]
    last_error: Optional[Exception] = None
    for strategy_name, candidate in strategies:
        try:
            parsed = json_lib.loads(candidate)
            if strategy_name != "original":
                logger.info(f"✅ JSON parsed with strategy: {strategy_name}")
            return parsed
        except json_lib.JSONDecodeError as e:
            logger.debug(f"Strategy {strategy_name} failed: {str(e)[:100]}")
            last_error = e
    raise ValueError(f"Unable to parse model JSON: {last_error}")


class AzureOpenAIClient:
    def __init__(self, config: Optional[AIConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or settings.ai
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        c = self.config
        return bool(c.AZURE_OPENAI_API_KEY and c.AZURE_OPENAI_API_KEY.get_secret_value()
                    and c.AZURE_OPENAI_ENDPOINT and c.AZURE_OPENAI_DEPLOYMENT)

    @property
    def url(self) -> str:
        endpoint = (self.config.AZURE_OPENAI_ENDPOINT or "").rstrip("/")
        return (
            f"{endpoint}/openai/deployments/{self.config.AZURE_OPENAI_DEPLOYMENT}"
            f"/chat/completions?api-version={self.config.AZURE_OPENAI_API_VERSION}"
        )

    def _body(self, messages: List[Dict[str, str]], max_tokens: int, json_mode: bool) -> Dict[str, Any]:
        if not any("json" in (m.get("content") or "").lower() for m in messages):
            messages = [{"role": "system", "content": JSON_SYSTEM_MESSAGE}, *messages]
        body: Dict[str, Any] = {"messages": messages, "max_completion_tokens": max_tokens}
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        optional = {
            "temperature": _clamp(self.config.AI_TEMPERATURE, 0, 1.2),
            "presence_penalty": _clamp(self.config.AI_PRESENCE_PENALTY, -2, 2),
            "frequency_penalty": _clamp(self.config.AI_FREQUENCY_PENALTY, -2, 2),
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return body

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST с повторами при сетевых ошибках, 5xx и 429"""
        headers = {"api-key": self.config.AZURE_OPENAI_API_KEY.get_secret_value()}
        attempts = max(1, self.config.AI_MAX_ATTEMPTS)
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=self.config.AI_TIMEOUT, transport=self._transport) as client:
                    response = await client.post(self.url, json=body, headers=headers)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"Azure OpenAI network error (attempt {attempt}/{attempts}): {last_error}")
                if attempt < attempts:
                    await asyncio.sleep(self.config.AI_BACKOFF_SECONDS * attempt)
                continue

            status = response.status_code
            if status == 200:
                return response.json()
            if status == 401:
                raise ExternalServiceError("Azure OpenAI authentication failed (401): check AZURE_OPENAI_API_KEY")
            if status == 404:
                raise ExternalServiceError(
                    f"Azure OpenAI deployment '{self.config.AZURE_OPENAI_DEPLOYMENT}' not found (404)"
                )
            if status == 413:
                raise AiRequestTooLarge("Azure OpenAI request too large (413)")
            if status == 429 or status >= 500:
                last_error = f"HTTP {status}"
                retry_after = response.headers.get("retry-after")
                delay = self.config.AI_BACKOFF_SECONDS * attempt
                if retry_after and retry_after.isdigit():
                    delay = min(float(retry_after), 10.0)
                logger.warning(f"Azure OpenAI {status} (attempt {attempt}/{attempts}), retrying in {delay}s")
                if attempt < attempts:
                    await asyncio.sleep(delay)
                continue
            raise ExternalServiceError(f"Azure OpenAI error {status}: {response.text[:300]}")

        raise AiNetworkError(f"Azure OpenAI unreachable after {attempts} attempts ({last_error})")

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
    ) -> ChatResult:
        """Один вызов chat/completions с JSON-ответом"""
        if not self.is_configured:
            raise ExternalServiceError("Azure OpenAI is not configured")
        if system_prompt:
            messages = [{"role": "system", "content": system_prompt}, *messages]

        tokens = max_tokens or self.config.AI_MAX_TOKENS
        data = await self._post(self._body(messages, tokens, json_mode=True))
        result = self._parse(data)

        if result.finish_reason == "length" and tokens < self.config.AI_LENGTH_RETRY_TOKENS:
            logger.info(f"Answer truncated at {tokens} tokens, retrying with {self.config.AI_LENGTH_RETRY_TOKENS}")
            data = await self._post(self._body(messages, self.config.AI_LENGTH_RETRY_TOKENS, json_mode=True))
            result = self._parse(data)

        if not result.content.strip():
            logger.info("Empty content with response_format, retrying in plain mode")
            data = await self._post(self._body(messages, tokens, json_mode=False))
            result = self._parse(data)

        return result

    async def chat_json(self, messages: List[Dict[str, str]], **kwargs) -> Any:
        result = await self.chat_completion(messages, **kwargs)
        return extract_json(result.content)

    @staticmethod
    def _parse(data: Dict[str, Any]) -> ChatResult:
        choices = data.get("choices") or [{}]
        choice = choices[0]
        content = (choice.get("message") or {}).get("content") or ""
        return ChatResult(content=content, finish_reason=choice.get("finish_reason"))


def get_ai_client() -> AzureOpenAIClient:
    return AzureOpenAIClient()
