"""LLM gateway: one capability interface over Gemini and OpenAI-compatible APIs.

Callers hand over a prompt, a system prompt and optionally a JSON schema,
and get back a ``GatewayResult``: either ``ok`` with a value or a failure
tagged with an ``ErrorKind``. Provider exceptions never leak past this
module.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from loguru import logger

from .config import ProviderConfig
from .errors import ErrorKind, GatewayError
from .utils.text import parse_json_response

T = TypeVar("T")


@dataclass(frozen=True)
class GatewayResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: T) -> "GatewayResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str = "") -> "GatewayResult[T]":
        return cls(ok=False, error=kind, message=message)

    def unwrap(self) -> T:
        if not self.ok:
            raise GatewayError(self.error or ErrorKind.TRANSPORT, self.message)
        return self.value


class LLMGateway(ABC):
    """Capability interface consumed by the agents."""

    @abstractmethod
    def generate_text(
        self, prompt: str, system_prompt: str, task: str = "chapter"
    ) -> GatewayResult[str]:
        ...

    @abstractmethod
    def generate_structured(
        self,
        prompt: str,
        system_prompt: str,
        schema: dict,
        task: str = "outline",
    ) -> GatewayResult[Any]:
        ...


def normalize_outline_payload(payload: Any) -> GatewayResult[list]:
    """Find the chapter array inside whatever shape the model returned.

    Accepted: a bare array, ``{"chapters": [...]}``, ``{"outline": [...]}``,
    or any single-key object wrapping an array.
    """
    if isinstance(payload, list):
        return GatewayResult.success(payload)
    if isinstance(payload, dict):
        for key in ("chapters", "outline"):
            if isinstance(payload.get(key), list):
                return GatewayResult.success(payload[key])
        if len(payload) == 1:
            (value,) = payload.values()
            if isinstance(value, list):
                return GatewayResult.success(value)
        return GatewayResult.failure(
            ErrorKind.UNEXPECTED_SHAPE,
            f"Expected an array of chapters, got object with keys {sorted(payload)}",
        )
    return GatewayResult.failure(
        ErrorKind.UNEXPECTED_SHAPE,
        f"Expected an array of chapters, got {type(payload).__name__}",
    )


def _object_schema(schema: dict) -> dict:
    """Strict json_schema mode wants an object at the top level."""
    if schema.get("type") == "array":
        return {
            "type": "object",
            "properties": {"items": schema},
            "required": ["items"],
            "additionalProperties": False,
        }
    return schema


class ProviderGateway(LLMGateway):
    """Gateway backed by google-genai or the openai SDK (OpenAI or a local server)."""

    def __init__(self, config: ProviderConfig):
        self.config = config
        self._client = None

    def generate_text(
        self, prompt: str, system_prompt: str, task: str = "chapter"
    ) -> GatewayResult[str]:
        return self._complete(prompt, system_prompt, task, schema=None)

    def generate_structured(
        self,
        prompt: str,
        system_prompt: str,
        schema: dict,
        task: str = "outline",
    ) -> GatewayResult[Any]:
        raw = self._complete(prompt, system_prompt, task, schema=schema)
        if not raw.ok:
            return raw
        try:
            return GatewayResult.success(parse_json_response(raw.value))
        except ValueError as e:
            logger.warning(f"[{self.config.provider}] {task}: response was not JSON")
            return GatewayResult.failure(ErrorKind.INVALID_JSON, str(e))

    def _complete(
        self, prompt: str, system_prompt: str, task: str, schema: Optional[dict]
    ) -> GatewayResult[str]:
        model = self.config.model_for(task)
        start = time.time()
        try:
            if self.config.provider == "gemini":
                text = self._call_gemini(system_prompt, prompt, task, schema)
            else:
                text = self._call_openai(system_prompt, prompt, task, schema)
        except GatewayError as e:
            return GatewayResult.failure(e.kind, e.message)
        except Exception as e:
            logger.error(f"[{self.config.provider}] {task} call to {model} failed: {e}")
            return GatewayResult.failure(ErrorKind.TRANSPORT, str(e))

        elapsed = time.time() - start
        logger.debug(
            f"[{self.config.provider}] {task} via {model}: "
            f"{len(text or '')} chars in {elapsed:.2f}s"
        )
        if not text or not text.strip():
            return GatewayResult.failure(
                ErrorKind.EMPTY_RESPONSE, f"{model} returned no text"
            )
        return GatewayResult.success(text)

    def _call_gemini(
        self, system: str, prompt: str, task: str, schema: Optional[dict]
    ) -> str:
        from google import genai
        from google.genai import types

        if not self.config.api_key:
            raise GatewayError(ErrorKind.CONFIGURATION, "Gemini API key is not set")
        if self._client is None:
            self._client = genai.Client(api_key=self.config.api_key)

        options = dict(
            system_instruction=system,
            temperature=self.config.temperature_for(task),
            max_output_tokens=self.config.max_output_tokens,
        )
        if task == "chapter":
            options["top_p"] = self.config.top_p
        if schema is not None:
            options["response_mime_type"] = "application/json"
            options["response_schema"] = schema

        response = self._client.models.generate_content(
            model=self.config.model_for(task),
            contents=prompt,
            config=types.GenerateContentConfig(**options),
        )
        return response.text

    def _call_openai(
        self, system: str, prompt: str, task: str, schema: Optional[dict]
    ) -> str:
        from openai import OpenAI

        if self.config.provider == "openai" and not self.config.api_key:
            raise GatewayError(ErrorKind.CONFIGURATION, "OpenAI API key is not set")
        if self._client is None:
            self._client = OpenAI(
                api_key=self.config.api_key or "not-needed",
                base_url=self.config.base_url,
            )

        params: dict[str, Any] = {
            "model": self.config.model_for(task),
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.config.temperature_for(task),
            "max_tokens": self.config.max_output_tokens,
        }
        if task == "chapter":
            params["top_p"] = self.config.top_p
        if schema is not None:
            if self.config.provider == "openai":
                params["response_format"] = {"type": "json_object"}
            else:
                params["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {
                        "name": f"{task}_response",
                        "strict": True,
                        "schema": _object_schema(schema),
                    },
                }

        response = self._client.chat.completions.create(**params)
        return response.choices[0].message.content
