# core/llm_interface.py
"""
Handles all direct interactions with the text-generation provider: the
provider contract, the OpenAI-compatible chat-completions client, error
conversion and response clean-up. Retries are delegated to a
:class:`core.retry.RetryPolicy`.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.

Copyright 2025 Dennis Lewis
"""

# Standard library imports
import json
import re

# Type hints
from typing import Any, Protocol

# Third-party imports
import httpx
import structlog

# Local imports
from config import settings
from core.retry import RetryPolicy

logger = structlog.get_logger(__name__)

_THINK_TAGS = ("think", "thinking", "reasoning", "analysis", "no_think")


class ProviderError(Exception):
    """A provider call that failed with an HTTP or transport error."""

    def __init__(
        self,
        status_code: int | None,
        error_type: str | None,
        message: str,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.message = message

    def __str__(self) -> str:
        return f"[{self.status_code or '-'}:{self.error_type or 'unknown'}] {self.message}"


class TextProvider(Protocol):
    """Anything that can turn a system/user prompt pair into text."""

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int | None = None,
        prefill: str | None = None,
        model: str | None = None,
        retry_policy: RetryPolicy | None = None,
        stage: str = "",
    ) -> str: ...


# Token parameter handling
def _completion_token_param(api_base: str) -> str:
    """Return the token count parameter expected by the provider."""
    if "api.openai.com" in api_base or "api.anthropic.com" in api_base:
        return "max_completion_tokens"
    return "max_tokens"


def _error_from_response(response: httpx.Response) -> ProviderError:
    error_type = None
    message = response.text[:500]
    try:
        body = response.json()
    except json.JSONDecodeError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            error_type = error.get("type") or error.get("code")
            message = error.get("message") or message
        elif isinstance(error, str):
            message = error
    return ProviderError(response.status_code, error_type, message)


def clean_model_response(text: str) -> str:
    """Strip reasoning blocks some models emit before their answer."""
    if not isinstance(text, str):
        logger.warning(
            "clean_model_response received non-string input", input_type=type(text).__name__
        )
        return ""
    cleaned = text
    for tag in _THINK_TAGS:
        cleaned = re.sub(
            rf"<\s*{tag}\s*>.*?<\s*/\s*{tag}\s*>",
            "",
            cleaned,
            flags=re.DOTALL | re.IGNORECASE,
        )
        cleaned = re.sub(rf"<\s*/?\s*{tag}\s*/?\s*>", "", cleaned, flags=re.IGNORECASE)
    return cleaned


class ProviderService:
    """Chat-completions client implementing :class:`TextProvider`."""

    def __init__(
        self,
        timeout: float = settings.HTTPX_TIMEOUT,
        api_base: str = settings.OPENAI_API_BASE,
        api_key: str = settings.OPENAI_API_KEY,
        client: httpx.AsyncClient | None = None,
    ):
        # Use a single async client for all requests to reuse connections
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._api_base = api_base.rstrip("/")
        self._api_key = api_key
        self.request_count = 0
        self.default_policy = RetryPolicy(
            retries=settings.LLM_RETRY_ATTEMPTS,
            base_delay=settings.LLM_RETRY_DELAY_SECONDS,
            max_jitter=settings.LLM_RETRY_JITTER_SECONDS,
        )
        logger.info("ProviderService initialized", api_base=self._api_base)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _max_tokens_for(self, model_name: str) -> int:
        if model_name == settings.SMALL_MODEL:
            return settings.SMALL_MODEL_MAX_TOKENS
        return settings.LARGE_MODEL_MAX_TOKENS

    def _log_llm_usage(
        self, model_name: str, stage: str, usage_data: dict[str, int] | None
    ) -> None:
        """Helper to log token usage if available in the response."""
        if usage_data and isinstance(usage_data, dict):
            logger.info(
                "Provider usage",
                model=model_name,
                stage=stage,
                prompt_tokens=usage_data.get("prompt_tokens", "N/A"),
                completion_tokens=usage_data.get("completion_tokens", "N/A"),
                total_tokens=usage_data.get("total_tokens", "N/A"),
            )
        else:
            logger.debug("Provider response missing usage data", model=model_name)

    async def _post_non_streaming(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> tuple[str, dict[str, int] | None]:
        """Send a regular chat completion request."""
        self.request_count += 1
        response = await self._client.post(
            f"{self._api_base}/chat/completions",
            json=payload,
            headers=headers,
        )
        if response.status_code >= 400:
            raise _error_from_response(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                response.status_code, "invalid_response", f"Response is not JSON: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError(
                response.status_code,
                "invalid_response",
                f"Expected a JSON object, got {type(data).__name__}",
            )
        raw_text = ""
        choices = data.get("choices")
        if choices and isinstance(choices, list):
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            if isinstance(message, dict) and message.get("content"):
                raw_text = message["content"]
        else:
            logger.error(
                "Invalid response structure: missing choices",
                model=payload["model"],
            )
        return raw_text, data.get("usage")

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int | None = None,
        prefill: str | None = None,
        model: str | None = None,
        retry_policy: RetryPolicy | None = None,
        stage: str = "",
    ) -> str:
        model_name = model or settings.LARGE_MODEL
        messages: list[dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        if prefill:
            messages.append({"role": "assistant", "content": prefill})

        payload: dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "temperature": temperature,
            _completion_token_param(self._api_base): max_tokens
            or self._max_tokens_for(model_name),
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        logger.debug(
            "Calling provider",
            model=model_name,
            stage=stage,
            temperature=temperature,
            prefill=bool(prefill),
        )

        policy = retry_policy or self.default_policy
        try:
            text, usage = await policy.run(
                lambda: self._post_non_streaming(payload, headers), stage=stage
            )
        except httpx.HTTPError as exc:
            raise ProviderError(None, type(exc).__name__, str(exc)) from exc

        self._log_llm_usage(model_name, stage, usage)
        text = clean_model_response(text)
        # The prefill is part of the answer; keep the continuation verbatim.
        if prefill:
            return prefill + text
        return text.strip()
