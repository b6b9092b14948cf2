from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from typing import Any
from urllib import error, request

from selfheal.llm.prompts import SYSTEM_PROMPT, build_user_prompt

DEFAULT_TIMEOUT_SECONDS = 30.0


class ReasoningClient(ABC):
    """Provider-neutral interface to the element-choosing reasoning service.

    ``choose_candidate`` returns the raw model reply; parsing and validation
    happen in :mod:`selfheal.llm.parser` so every provider is held to the same
    contract.
    """

    provider_name = "unknown"

    def __init__(self, api_key: str, model: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def choose_candidate(self, payload: dict[str, Any]) -> str:
        return self._complete(SYSTEM_PROMPT, build_user_prompt(payload))

    @abstractmethod
    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        raise NotImplementedError


class OpenAIReasoningClient(ReasoningClient):
    provider_name = "openai"
    endpoint = "https://api.openai.com/v1/chat/completions"

    def __init__(self, api_key: str, model: str | None = None, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        super().__init__(api_key, model or os.getenv("OPENAI_MODEL", "gpt-4o-mini"), timeout)

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = _post_json(
            self.endpoint,
            {
                "model": self.model,
                "temperature": 0,
                "response_format": {"type": "json_object"},
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            },
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        return response["choices"][0]["message"]["content"]


class AnthropicReasoningClient(ReasoningClient):
    provider_name = "anthropic"
    endpoint = "https://api.anthropic.com/v1/messages"

    def __init__(self, api_key: str, model: str | None = None, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        super().__init__(api_key, model or os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest"), timeout)

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = _post_json(
            self.endpoint,
            {
                "model": self.model,
                "max_tokens": 256,
                "temperature": 0,
                "system": system_prompt,
                "messages": [{"role": "user", "content": user_prompt}],
            },
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        blocks = [block.get("text", "") for block in response.get("content", []) if block.get("type") == "text"]
        return "".join(blocks)


class GeminiReasoningClient(ReasoningClient):
    provider_name = "gemini"
    endpoint_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(self, api_key: str, model: str | None = None, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        super().__init__(api_key, model or os.getenv("GEMINI_MODEL", "gemini-2.5-flash"), timeout)

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = _post_json(
            self.endpoint_template.format(model=self.model),
            {
                "system_instruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                "generationConfig": {
                    "temperature": 0,
                    "responseMimeType": "application/json",
                },
            },
            headers={
                "x-goog-api-key": self.api_key,
                "x-goog-api-client": "selfheal/0.1.0",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        candidates = response.get("candidates", [])
        if not candidates:
            raise RuntimeError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        content = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
        if not content:
            raise RuntimeError("Gemini returned an empty response")
        return content


PROVIDERS: dict[str, tuple[type[ReasoningClient], str]] = {
    "openai": (OpenAIReasoningClient, "OPENAI_API_KEY"),
    "anthropic": (AnthropicReasoningClient, "ANTHROPIC_API_KEY"),
    "gemini": (GeminiReasoningClient, "GEMINI_API_KEY"),
}


def create_reasoning_client() -> ReasoningClient:
    provider = os.getenv("LLM_PROVIDER", "openai").lower()
    if provider not in PROVIDERS:
        raise RuntimeError(f"Unsupported LLM provider: {provider}")
    client_class, key_name = PROVIDERS[provider]
    api_key = os.getenv(key_name)
    if not api_key:
        raise RuntimeError(f"{key_name} is required when LLM_PROVIDER={provider}")
    return client_class(api_key)


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float) -> dict[str, Any]:
    encoded = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"Reasoning request failed with status {exc.code}: {detail}") from exc
    except error.URLError as exc:
        raise RuntimeError(f"Reasoning request could not be completed: {exc.reason}") from exc
    return json.loads(raw)
