"""
AI Client Service
Interchangeable grading providers behind one `grade(prompt) -> text` call.

Each provider owns a pool of API keys. A rate-limit or service-unavailable
reply rotates to the next key and retries, up to 2 x pool size calls; any
other failure is raised at once.
"""

import asyncio
import enum
import json
import logging

import httpx
from pydantic import ValidationError as PydanticValidationError

from exam_engine.core.config import key_pool, settings
from exam_engine.core.errors import GradingParseError, ProviderExhausted
from exam_engine.schemas.grading import GradingResult

logger = logging.getLogger(__name__)


class ProviderKind(str, enum.Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    GROQ = "groq"


class ProviderHTTPError(Exception):
    def __init__(self, provider: str, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"{provider} error {status_code}: {message}")


def key_index(attempt: int, pool_size: int) -> int:
    """Key used for the given 0-based call number."""
    return attempt % pool_size


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return response.text[:200]


class GradingProvider:
    kind: ProviderKind
    retryable_statuses = frozenset({429, 503})

    def __init__(
        self,
        model: str,
        api_keys: list[str],
        *,
        retry_delay: float | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self.api_keys = list(api_keys)
        self.retry_delay = settings.AI_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.timeout = settings.AI_REQUEST_TIMEOUT_SECONDS if timeout is None else timeout
        self._transport = transport

    async def grade(self, prompt: str) -> str:
        if not self.api_keys:
            raise ProviderExhausted(f"{self.kind.value}: no API keys configured")

        pool_size = len(self.api_keys)
        max_calls = 2 * pool_size

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(max_calls):
                api_key = self.api_keys[key_index(attempt, pool_size)]
                try:
                    return await self._request(client, api_key, prompt)
                except ProviderHTTPError as e:
                    if e.status_code not in self.retryable_statuses:
                        raise
                    logger.warning(
                        f"{self.kind.value} grading call {attempt + 1}/{max_calls} failed: {e}; "
                        f"rotating key"
                    )
                    if attempt + 1 < max_calls and self.retry_delay:
                        await asyncio.sleep(self.retry_delay)

        raise ProviderExhausted(f"{self.kind.value}: all keys exhausted after {max_calls} calls")

    async def _request(self, client: httpx.AsyncClient, api_key: str, prompt: str) -> str:
        raise NotImplementedError


class GeminiProvider(GradingProvider):
    kind = ProviderKind.GEMINI
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    async def _request(self, client: httpx.AsyncClient, api_key: str, prompt: str) -> str:
        response = await client.post(
            f"{self.base_url}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": api_key},
            json={"contents": [{"parts": [{"text": prompt}]}]},
        )
        if response.status_code >= 400:
            raise ProviderHTTPError("Gemini", response.status_code, _error_message(response))

        data = response.json()
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise GradingParseError("Gemini returned no candidates")
        return "".join(part.get("text", "") for part in parts)


class ChatCompletionsProvider(GradingProvider):
    """OpenAI-compatible chat/completions endpoint."""

    base_url: str

    async def _request(self, client: httpx.AsyncClient, api_key: str, prompt: str) -> str:
        response = await client.post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": "You are an expert examiner."},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.3,
            },
        )
        if response.status_code >= 400:
            raise ProviderHTTPError(self.kind.value, response.status_code, _error_message(response))

        data = response.json()
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise GradingParseError(f"{self.kind.value} returned no choices")


class OpenAIProvider(ChatCompletionsProvider):
    kind = ProviderKind.OPENAI
    base_url = "https://api.openai.com/v1"
    retryable_statuses = frozenset({429, 500, 503})


class GroqProvider(ChatCompletionsProvider):
    kind = ProviderKind.GROQ
    base_url = "https://api.groq.com/openai/v1"


_PROVIDERS = {
    ProviderKind.GEMINI: (GeminiProvider, "GEMINI_API_KEY"),
    ProviderKind.OPENAI: (OpenAIProvider, "OPENAI_API_KEY"),
    ProviderKind.GROQ: (GroqProvider, "GROQ_API_KEY"),
}


def get_provider(
    kind: ProviderKind | str | None = None,
    model: str | None = None,
) -> GradingProvider:
    """Build the configured provider with its key pool from settings."""
    kind = ProviderKind(kind or settings.AI_GRADING_PROVIDER)
    provider_cls, keys_setting = _PROVIDERS[kind]
    return provider_cls(
        model=model or settings.AI_GRADING_MODEL,
        api_keys=key_pool(getattr(settings, keys_setting)),
    )


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_grading_response(text: str | None) -> GradingResult:
    """Parse `{score, feedback, improvements}`, tolerating a markdown code fence."""
    if not text or not text.strip():
        raise GradingParseError("AI returned empty response")
    try:
        payload = json.loads(_strip_code_fence(text))
        return GradingResult.model_validate(payload)
    except (ValueError, PydanticValidationError) as e:
        logger.error(f"Could not parse grading response: {text[:200]!r}")
        raise GradingParseError(f"Failed to parse AI response: {e}")


def get_default_provider() -> GradingProvider:
    """FastAPI dependency: the provider configured in settings."""
    return get_provider()
