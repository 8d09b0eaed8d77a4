"""OpenAI-compatible LLM adapter.

Works against https://api.openai.com/v1 or any endpoint exposing the same
``/chat/completions`` contract.
"""

from __future__ import annotations

import logging
import time

import httpx

from changelog_api.config import Settings, get_settings
from changelog_api.llm.base import LLMAdapter
from changelog_api.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)


class OpenAIAdapter(LLMAdapter):
    """OpenAI chat completions adapter."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.base_url = base_url or settings.openai_base_url
        self._default_model = model or settings.openai_model
        self.timeout = timeout or settings.openai_timeout_seconds

        if not self.api_key:
            raise ValueError("OpenAI API key not configured")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return self._default_model

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        response_format: dict[str, str] | None = None,
    ) -> LLMResponse:
        """Send chat completion request to the OpenAI API."""
        model = model or self.default_model

        payload = self._build_request(
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format=response_format,
        )

        start_time = time.perf_counter()

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"OpenAI returned {e.response.status_code}: {e.response.text[:200]}")
            return LLMResponse(
                content=None,
                model=model,
                usage={},
                finish_reason="error",
                raw_response={"error": str(e), "status_code": e.response.status_code},
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"OpenAI request failed: {e}")
            return LLMResponse(
                content=None,
                model=model,
                usage={},
                finish_reason="error",
                raw_response={"error": str(e)},
            )

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        logger.debug(f"OpenAI {model} responded in {latency_ms}ms")

        # Parse response
        choices = data.get("choices") if isinstance(data, dict) else None
        choice = choices[0] if isinstance(choices, list) and choices else None
        if not isinstance(choice, dict):
            logger.warning(f"OpenAI returned an unexpected payload: {str(data)[:200]}")
            return LLMResponse(
                content=None,
                model=model,
                usage={},
                finish_reason="error",
                raw_response={"error": "unexpected response payload"},
            )
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
        usage = data.get("usage")

        return LLMResponse(
            content=message.get("content"),
            model=data.get("model", model),
            usage=usage if isinstance(usage, dict) else {},
            finish_reason=choice.get("finish_reason"),
            raw_response=data,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
