"""Cloud providers used when local inference fails."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence
from urllib.parse import quote

import httpx

from edgeinfer.config import FallbackConfig
from edgeinfer.protocols.bedrock import BedrockInvokeResponse, BedrockTextGenerationConfig
from edgeinfer.protocols.openai import ChatCompletionResponse, ChatMessage

LOGGER = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
OPENAI_MODEL_MAP = {
    "quantum-1.7b": "gpt-4o-mini",
    "quantum-3b": "gpt-4o",
    "quantum-code-3b": "gpt-4o",
    "quantum-8b": "gpt-4-turbo",
}

DEFAULT_BEDROCK_REGION = "us-east-1"
DEFAULT_BEDROCK_MODEL = "anthropic.claude-3-sonnet-20240229-v1:0"
BEDROCK_DEFAULTS = {"max_token_count": 256, "temperature": 0.7, "top_p": 0.9}


def map_model_to_openai(model_id: str) -> str:
    return OPENAI_MODEL_MAP.get(model_id, DEFAULT_OPENAI_MODEL)


class CloudFallback:
    """Call the configured provider's HTTP API with the provider key."""

    def __init__(
        self,
        config: FallbackConfig,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def provider(self) -> str:
        return self.config.provider

    def openai_model(self, model_id: str) -> str:
        return self.config.model or map_model_to_openai(model_id)

    @property
    def bedrock_model(self) -> str:
        return self.config.model or DEFAULT_BEDROCK_MODEL

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.config.api_key}", "Content-Type": "application/json"}
        headers.update(extra)
        return headers

    async def openai_chat(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        **options: Any,
    ) -> ChatCompletionResponse:
        """POST ``/chat/completions``; ``None`` options are left out of the body."""

        payload: dict[str, Any] = {
            "model": self.openai_model(model_id),
            "messages": [message.model_dump() for message in messages],
        }
        payload.update({key: value for key, value in options.items() if value is not None})
        base_url = (self.config.base_url or OPENAI_BASE_URL).rstrip("/")
        response = await self._http.post(f"{base_url}/chat/completions", json=payload, headers=self._headers())
        response.raise_for_status()
        return ChatCompletionResponse.model_validate(response.json())

    async def bedrock_invoke(
        self,
        input_text: str,
        generation_config: Optional[BedrockTextGenerationConfig] = None,
    ) -> BedrockInvokeResponse:
        region = self.config.region or DEFAULT_BEDROCK_REGION
        endpoint = (
            f"https://bedrock-runtime.{region}.amazonaws.com/model/{quote(self.bedrock_model, safe=':.-')}/invoke"
        )
        settings = generation_config.model_dump() if generation_config else {}
        for key, default in BEDROCK_DEFAULTS.items():
            if settings.get(key) is None:
                settings[key] = default
        payload = {
            "inputText": input_text,
            "textGenerationConfig": BedrockTextGenerationConfig(**settings).to_wire(),
        }
        response = await self._http.post(
            endpoint,
            json=payload,
            headers=self._headers(**{"X-Amz-Target": "AmazonBedrockRuntime.InvokeModel"}),
        )
        response.raise_for_status()
        return BedrockInvokeResponse.model_validate(response.json())

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = [
    "CloudFallback",
    "DEFAULT_BEDROCK_MODEL",
    "DEFAULT_BEDROCK_REGION",
    "OPENAI_MODEL_MAP",
    "map_model_to_openai",
]
