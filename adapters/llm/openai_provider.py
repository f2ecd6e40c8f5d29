from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from adapters.llm.base import ModelGateway
from sqlgrep.errors.exceptions import (
    ConfigurationError,
    EmptyRequestError,
    UpstreamError,
)

log = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-3.5-turbo"


class OpenAIProvider(ModelGateway):
    """Chat-completions gateway on the official OpenAI SDK (any compatible endpoint)."""

    PROVIDER_ID = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
        temperature: float = 0.0,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or "").strip() or None
        self.model = model or DEFAULT_MODEL
        self.timeout = float(timeout)
        self.temperature = temperature
        self._client: Optional[OpenAI] = None
        # last call usage/metadata for tracing
        self._last_usage: Dict[str, Any] = {}

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            # retries belong to the pipeline, not the SDK
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def get_last_usage(self) -> Dict[str, Any]:
        """Return metadata of the last call (tokens, duration)."""
        return dict(self._last_usage)

    def _create_chat_completion(self, **kwargs):
        """OpenAI SDK seam for stable unit testing."""
        return self.client.chat.completions.create(**kwargs)

    def complete(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        if not self.api_key:
            raise ConfigurationError(
                message="No model API key configured. Set SQLGREP_API_KEY or OPENAI_API_KEY."
            )
        if not messages:
            raise EmptyRequestError(message="No messages to send to the model.")

        t0 = time.perf_counter()
        try:
            completion = self._create_chat_completion(
                model=self.model,
                messages=list(messages),
                temperature=self.temperature,
            )
        except openai.APIStatusError as e:
            raise UpstreamError(
                message=f"Model endpoint returned HTTP {e.status_code}.",
                status=e.status_code,
                body=_response_text(e),
            ) from e
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            raise UpstreamError(message=f"Model endpoint unreachable: {e}") from e

        raw = completion.model_dump() if hasattr(completion, "model_dump") else completion
        if not isinstance(raw, dict):
            raise UpstreamError(message="Model endpoint returned an unexpected payload.")

        usage = raw.get("usage") or {}
        self._last_usage = {
            "prompt_tokens": usage.get("prompt_tokens", 0),
            "completion_tokens": usage.get("completion_tokens", 0),
            "duration_ms": round((time.perf_counter() - t0) * 1000.0, 1),
        }
        log.debug("Model call completed", extra={"model": self.model, **self._last_usage})
        return raw


def _response_text(e: "openai.APIStatusError") -> str:
    try:
        return e.response.text
    except Exception:
        return str(e)
