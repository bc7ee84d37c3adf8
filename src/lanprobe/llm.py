"""
Structured-output LLM backends for device classification.

Every provider asks its API to answer in a caller-supplied JSON schema and
hands back the raw JSON text. Parsing and validation stay with the caller,
so a provider that ignores the schema still goes through the same checks.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

logger = logging.getLogger("lanprobe.llm")

Schema = dict[str, Any]


class LLMError(RuntimeError):
    """Raised when a provider call fails or returns an unusable answer."""


class LLMProvider(ABC):
    """
    Base class for a schema-constrained completion backend.

    Subclasses describe how to shape the HTTP request for their API and
    where the answer sits in the response body; the transport, timeouts
    and error mapping live here.
    """

    name = "base"
    DEFAULT_MODEL = ""
    ENV_KEYS: tuple[str, ...] = ()
    TIMEOUT = 120.0

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None):
        self.model = model or self.DEFAULT_MODEL
        self.api_key = api_key or next(
            (os.getenv(key) for key in self.ENV_KEYS if os.getenv(key)), None
        )
        if self.ENV_KEYS and not self.api_key:
            raise ValueError(f"{self.name} API key required ({self.ENV_KEYS[0]})")

    def get_model_name(self) -> str:
        return self.model

    async def structured(
        self,
        prompt: str,
        schema: Schema,
        system: Optional[str] = None,
        schema_name: str = "result",
        temperature: float = 0.1,
        max_tokens: int = 1500,
    ) -> str:
        """
        Ask the model for a JSON answer matching schema.

        Returns:
            The JSON text of the answer

        Raises:
            LLMError: Transport failure, non-200 status or a response
                body without an answer
        """
        url, headers, payload = self.build_request(
            prompt, schema, system, schema_name, temperature, max_tokens
        )
        try:
            async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise LLMError(f"{self.name} request failed: {e!r}") from e

        if response.status_code != 200:
            raise LLMError(f"{self.name} error {response.status_code}: {response.text[:500]}")

        try:
            text = self.extract_answer(response.json())
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LLMError(f"{self.name} returned an unexpected body: {e!r}") from e

        logger.debug(f"{self.name}/{self.model} answered with {len(text)} chars")
        return text

    @abstractmethod
    def build_request(
        self,
        prompt: str,
        schema: Schema,
        system: Optional[str],
        schema_name: str,
        temperature: float,
        max_tokens: int,
    ) -> tuple[str, dict, dict]:
        """Return (url, headers, json payload) for one completion."""

    @abstractmethod
    def extract_answer(self, data: dict) -> str:
        """Pull the JSON answer text out of a decoded response body."""


def to_gemini_schema(schema: Schema) -> Schema:
    """
    Rewrite a JSON schema into the OpenAPI subset Gemini accepts.

    Type names become upper case and keywords Gemini rejects are dropped.
    """
    converted: Schema = {}
    for key, value in schema.items():
        if key in ("additionalProperties", "title", "$schema"):
            continue
        if key == "type":
            converted[key] = value.upper()
        elif key == "properties":
            converted[key] = {name: to_gemini_schema(sub) for name, sub in value.items()}
        elif key == "items":
            converted[key] = to_gemini_schema(value)
        else:
            converted[key] = value
    return converted


class GeminiProvider(LLMProvider):
    """Google Gemini with responseSchema constrained output."""

    name = "Gemini"
    DEFAULT_MODEL = "gemini-2.5-flash"
    ENV_KEYS = ("GEMINI_API_KEY", "API_KEY")
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    def build_request(self, prompt, schema, system, schema_name, temperature, max_tokens):
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "responseMimeType": "application/json",
                "responseSchema": to_gemini_schema(schema),
            },
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        url = f"{self.BASE_URL}/{self.model}:generateContent"
        return url, {"x-goog-api-key": self.api_key}, payload

    def extract_answer(self, data):
        parts = data["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts)


class AnthropicProvider(LLMProvider):
    """
    Anthropic Messages API.

    There is no JSON mode, so the schema is offered as the input schema of
    a single tool the model is forced to call; the tool arguments are the
    answer.
    """

    name = "Anthropic"
    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    ENV_KEYS = ("ANTHROPIC_API_KEY",)

    def build_request(self, prompt, schema, system, schema_name, temperature, max_tokens):
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
            "tools": [{
                "name": schema_name,
                "description": "Record the answer.",
                "input_schema": schema,
            }],
            "tool_choice": {"type": "tool", "name": schema_name},
        }
        if system:
            payload["system"] = system

        headers = {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"}
        return "https://api.anthropic.com/v1/messages", headers, payload

    def extract_answer(self, data):
        for block in data["content"]:
            if block.get("type") == "tool_use":
                return json.dumps(block["input"])
        raise ValueError("no tool_use block in response")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions with a json_schema response format."""

    name = "OpenAI"
    DEFAULT_MODEL = "gpt-4o"
    ENV_KEYS = ("OPENAI_API_KEY",)

    def build_request(self, prompt, schema, system, schema_name, temperature, max_tokens):
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema},
            },
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        return "https://api.openai.com/v1/chat/completions", headers, payload

    def extract_answer(self, data):
        return data["choices"][0]["message"]["content"]


class OllamaProvider(LLMProvider):
    """Local Ollama server; the schema goes in the format field."""

    name = "Ollama"
    DEFAULT_MODEL = "llama3.1:8b"
    TIMEOUT = 300.0

    def __init__(self, model: Optional[str] = None, base_url: Optional[str] = None):
        super().__init__(model=model)
        self.base_url = (base_url or os.getenv("OLLAMA_HOST", "http://localhost:11434")).rstrip("/")

    def build_request(self, prompt, schema, system, schema_name, temperature, max_tokens):
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": schema,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if system:
            payload["system"] = system
        return f"{self.base_url}/api/generate", {}, payload

    def extract_answer(self, data):
        return data["response"]


PROVIDERS: dict[str, type[LLMProvider]] = {
    "gemini": GeminiProvider,
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "ollama": OllamaProvider,
}


def get_provider(
    provider: str = "ollama",
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
) -> LLMProvider:
    """
    Build a provider by name.

    Raises:
        ValueError: Unknown provider name or missing API key
    """
    try:
        provider_class = PROVIDERS[provider]
    except KeyError:
        raise ValueError(f"Unknown provider: {provider}. Options: {', '.join(PROVIDERS)}") from None

    if provider_class is OllamaProvider:
        return OllamaProvider(model=model, base_url=base_url)
    return provider_class(model=model, api_key=api_key)
