import asyncio
import json

import httpx
import pytest

from changelog_api.config import Settings
from changelog_api.llm.openai import OpenAIAdapter
from changelog_api.schemas import LLMMessage


MESSAGES = [
    LLMMessage(role="system", content="You analyze commits."),
    LLMMessage(role="user", content="a1b2c3d: feat: add export"),
]


def _adapter(handler) -> OpenAIAdapter:
    settings = Settings(_env_file=None, openai_api_key="test-key", openai_model="gpt-test")
    return OpenAIAdapter(
        base_url="https://llm.test/v1",
        settings=settings,
        transport=httpx.MockTransport(handler),
    )


def _complete(adapter: OpenAIAdapter, **kwargs):
    async def _run():
        try:
            return await adapter.chat_completion(MESSAGES, **kwargs)
        finally:
            await adapter.close()

    return asyncio.run(_run())


def test_chat_completion_parses_response():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "model": "gpt-test-2025",
                "choices": [{"message": {"role": "assistant", "content": "[]"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3},
            },
        )

    response = _complete(_adapter(handler), temperature=0.3, max_tokens=500)

    assert response.content == "[]"
    assert response.model == "gpt-test-2025"
    assert response.prompt_tokens == 12
    assert response.completion_tokens == 3
    assert not response.failed

    request = requests[0]
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer test-key"
    body = json.loads(request.content)
    assert body["model"] == "gpt-test"
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 500
    assert [m["role"] for m in body["messages"]] == ["system", "user"]


def test_http_error_returns_error_response():
    response = _complete(_adapter(lambda request: httpx.Response(500, text="boom")))
    assert response.failed
    assert response.content is None
    assert response.raw_response["status_code"] == 500


def test_transport_error_returns_error_response():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    response = _complete(_adapter(handler))
    assert response.failed
    assert "status_code" not in response.raw_response


def test_length_finish_reason_is_kept():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "[{"}, "finish_reason": "length"}]})

    response = _complete(_adapter(handler))
    assert response.finish_reason == "length"
    assert response.model == "gpt-test"


@pytest.mark.parametrize("payload", [["not", "a", "dict"], "text", {"choices": []}, {"choices": ["x"]}])
def test_unexpected_payload_returns_error_response(payload):
    response = _complete(_adapter(lambda request: httpx.Response(200, json=payload)))
    assert response.failed
    assert response.content is None


def test_missing_api_key():
    with pytest.raises(ValueError):
        OpenAIAdapter(settings=Settings(_env_file=None, openai_api_key=""))
