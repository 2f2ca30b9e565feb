# backend/consultation_ai/services/ai_gateway.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from consultation_ai.core.config import Settings
from consultation_ai.core.errors import UpstreamError

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS = "/chat/completions"
AUDIO_TRANSCRIPTIONS = "/audio/transcriptions"

AsyncClient = Union[AsyncOpenAI, AsyncAzureOpenAI]


def _get_client(settings: Settings) -> AsyncClient:
    # Retries are owned by the gateway, not the SDK
    if settings.AZURE_OPENAI_ENDPOINT:
        return AsyncAzureOpenAI(
            api_version=settings.AZURE_OPENAI_API_VERSION,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            api_key=settings.AZURE_OPENAI_API_KEY,
            max_retries=0,
        )
    return AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        max_retries=0,
    )


def message_content(response: Dict[str, Any]) -> str:
    """Text of the first choice of a chat completion response."""
    return response["choices"][0]["message"]["content"] or ""


class AIGateway:
    """Uniform call wrapper over the inference service.

    Every call is independent: up to ``max_attempts`` tries on any API failure
    (non-2xx status or transport error), waiting ``backoff_seconds * attempt``
    between tries. The last failure is raised as :class:`UpstreamError`.
    """

    def __init__(
        self,
        client: AsyncClient,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "AIGateway":
        return cls(
            _get_client(settings),
            max_attempts=settings.AI_MAX_ATTEMPTS,
            backoff_seconds=settings.AI_RETRY_BACKOFF_SECONDS,
        )

    async def call(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._dispatch(endpoint, payload)
                return response.model_dump()
            except openai.APIError as e:
                logger.warning("AI call %s attempt %d failed: %s", endpoint, attempt, e)
                if attempt == self.max_attempts:
                    status_code, body = _describe(e)
                    raise UpstreamError(status_code, body) from e
                await self._sleep(self.backoff_seconds * attempt)
        raise UpstreamError(None, "No attempts configured")

    async def _dispatch(self, endpoint: str, payload: Dict[str, Any]):
        if endpoint == CHAT_COMPLETIONS:
            return await self._client.chat.completions.create(**payload)
        if endpoint == AUDIO_TRANSCRIPTIONS:
            return await self._client.audio.transcriptions.create(**payload)
        raise ValueError(f"Unsupported AI endpoint: {endpoint}")

    async def close(self) -> None:
        await self._client.close()


def _describe(error: openai.APIError) -> Tuple[Optional[int], Any]:
    if isinstance(error, openai.APIStatusError):
        body = error.body if error.body is not None else error.response.text
        return error.status_code, body
    return None, error.message
