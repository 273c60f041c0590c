import json

import httpx
import pytest

from core.llm_interface import ProviderError, ProviderService, clean_model_response
from core.retry import RetryPolicy

NO_RETRY = RetryPolicy(retries=0, base_delay=0.0, max_jitter=0.0)


def _service(handler, api_base="http://local/v1"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProviderService(api_base=api_base, api_key="k", client=client)


def _reply(content, status=200):
    return httpx.Response(
        status,
        json={
            "choices": [{"message": {"content": content}}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7},
        },
    )


def test_clean_model_response_strips_reasoning():
    assert clean_model_response("<think>plan</think>Answer") == "Answer"
    assert clean_model_response("<reasoning>\nx\n</reasoning>\n Text ") == "\n Text "
    assert clean_model_response(None) == ""


@pytest.mark.asyncio
async def test_call_returns_stripped_text_and_sends_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["payload"] = json.loads(request.content)
        return _reply("<think>hmm</think>  The answer.  ")

    service = _service(handler)
    text = await service.call("sys", "user", temperature=0.4, model="m1", stage="planner")
    assert text == "The answer."
    assert seen["url"] == "http://local/v1/chat/completions"
    assert seen["auth"] == "Bearer k"
    payload = seen["payload"]
    assert payload["model"] == "m1"
    assert payload["temperature"] == 0.4
    assert payload["stream"] is False
    assert "max_tokens" in payload
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]
    assert service.request_count == 1
    await service.aclose()


@pytest.mark.asyncio
async def test_prefill_is_prepended_verbatim():
    payloads = []

    def handler(request):
        payloads.append(json.loads(request.content))
        return _reply(" 1: Dock\n\nText.")

    service = _service(handler)
    text = await service.call("s", "u", temperature=0.3, prefill="# Chapter")
    assert text == "# Chapter 1: Dock\n\nText."
    assert payloads[0]["messages"][-1] == {"role": "assistant", "content": "# Chapter"}


@pytest.mark.asyncio
async def test_openai_base_uses_completion_token_param():
    payloads = []

    def handler(request):
        payloads.append(json.loads(request.content))
        return _reply("ok")

    service = _service(handler, api_base="https://api.openai.com/v1")
    await service.call("s", "u", temperature=0.1, max_tokens=50)
    assert payloads[0]["max_completion_tokens"] == 50


@pytest.mark.asyncio
async def test_error_response_becomes_provider_error():
    def handler(request):
        return httpx.Response(
            400, json={"error": {"type": "invalid_request_error", "message": "bad prompt"}}
        )

    service = _service(handler)
    with pytest.raises(ProviderError) as excinfo:
        await service.call("s", "u", temperature=0.1, retry_policy=NO_RETRY)
    assert excinfo.value.status_code == 400
    assert excinfo.value.error_type == "invalid_request_error"
    assert excinfo.value.message == "bad prompt"


@pytest.mark.asyncio
async def test_transient_status_is_retried():
    responses = [httpx.Response(503, text="busy"), _reply("done")]

    def handler(request):
        return responses.pop(0)

    service = _service(handler)
    policy = RetryPolicy(retries=2, base_delay=0.0, max_jitter=0.0)
    assert await service.call("s", "u", temperature=0.1, retry_policy=policy) == "done"
    assert service.request_count == 2


@pytest.mark.asyncio
async def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    service = _service(handler)
    with pytest.raises(ProviderError) as excinfo:
        await service.call("s", "u", temperature=0.1, retry_policy=NO_RETRY)
    assert excinfo.value.status_code is None
    assert excinfo.value.error_type == "ConnectError"


@pytest.mark.asyncio
async def test_missing_choices_returns_empty_text():
    service = _service(lambda request: httpx.Response(200, json={"usage": None}))
    assert await service.call("s", "u", temperature=0.1) == ""


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"text": "<html>gateway timeout</html>"},
        {"json": ["not", "an", "object"]},
    ],
)
async def test_malformed_success_body_becomes_provider_error(body):
    service = _service(lambda request: httpx.Response(200, **body))
    with pytest.raises(ProviderError) as excinfo:
        await service.call("s", "u", temperature=0.1, retry_policy=NO_RETRY)
    assert excinfo.value.status_code == 200
    assert excinfo.value.error_type == "invalid_response"


@pytest.mark.asyncio
async def test_malformed_choice_entries_return_empty_text():
    service = _service(
        lambda request: httpx.Response(200, json={"choices": ["oops"], "usage": None})
    )
    assert await service.call("s", "u", temperature=0.1) == ""
