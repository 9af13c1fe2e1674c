"""Drive local generation through OpenAI- or Bedrock-shaped requests."""

from __future__ import annotations

import logging
import math
import secrets
import string
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Union

from edgeinfer.errors import FallbackError
from edgeinfer.events import EventChannel
from edgeinfer.observability import emit_fallback_event, log_event
from edgeinfer.protocols.bedrock import (
    BedrockInvokeRequest,
    BedrockInvokeResponse,
    BedrockResult,
    BedrockTextGenerationConfig,
)
from edgeinfer.protocols.fallback import CloudFallback
from edgeinfer.protocols.openai import (
    ChatChoice,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    ChatUsage,
)
from edgeinfer.rag.models import RAGResponse

LOGGER = logging.getLogger(__name__)

# The runtime exposes no token counts; four characters per token is the estimate.
CHARS_PER_TOKEN = 4

_ROLE_LABELS = {"system": "System", "user": "User", "assistant": "Assistant"}
_ID_ALPHABET = string.ascii_lowercase + string.digits
_PROVIDER_LABELS = {"openai": "OpenAI", "bedrock": "Bedrock"}

Generate = Callable[..., Awaitable[str]]
RAGQuery = Callable[..., Awaitable[RAGResponse]]


def messages_to_prompt(messages: Sequence[ChatMessage]) -> str:
    """Serialise chat messages as labelled blocks, in order."""

    return "\n\n".join(f"{_ROLE_LABELS.get(message.role, 'Assistant')}: {message.content}" for message in messages)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def completion_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"chat-{int(time.time() * 1000)}-{suffix}"


def build_chat_response(
    model_id: str,
    content: str,
    *,
    prompt_tokens: int,
    completion_tokens: Optional[int] = None,
) -> ChatCompletionResponse:
    if completion_tokens is None:
        completion_tokens = estimate_tokens(content)
    return ChatCompletionResponse(
        id=completion_id(),
        created=int(time.time()),
        model=model_id,
        choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=content), finish_reason="stop")],
        usage=ChatUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


def _last_user_message(messages: Sequence[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return messages[-1].content


class ProtocolTranslator:
    """Translate wire requests into ``generate`` calls with optional cloud fallback."""

    def __init__(
        self,
        *,
        generate: Generate,
        events: EventChannel,
        fallback: Optional[CloudFallback] = None,
        rag_query: Optional[RAGQuery] = None,
    ) -> None:
        self._generate = generate
        self._events = events
        self._fallback = fallback
        self._rag_query = rag_query

    @property
    def fallback(self) -> Optional[CloudFallback]:
        return self._fallback

    async def chat_completion(
        self,
        model_id: str,
        request: Union[ChatCompletionRequest, Mapping[str, Any]],
        *,
        knowledge_base_id: Optional[str] = None,
    ) -> ChatCompletionResponse:
        if not isinstance(request, ChatCompletionRequest):
            request = ChatCompletionRequest.model_validate(request)

        prompt = messages_to_prompt(request.messages)
        options = {"max_tokens": request.max_tokens, "temperature": request.temperature, "top_p": request.top_p}
        try:
            if knowledge_base_id is not None and self._rag_query is not None:
                question = _last_user_message(request.messages)
                result = await self._rag_query(knowledge_base_id, question, model_id, **options)
                answer = result.generated_response
            else:
                answer = await self._generate(model_id, prompt, **options)
        except Exception as error:
            if self._fallback is None:
                raise
            return await self._chat_fallback(self._fallback, model_id, request, error)

        return build_chat_response(model_id, answer, prompt_tokens=estimate_tokens(prompt))

    async def bedrock_invoke(
        self,
        model_id: str,
        request: Union[BedrockInvokeRequest, Mapping[str, Any]],
    ) -> BedrockInvokeResponse:
        if not isinstance(request, BedrockInvokeRequest):
            request = BedrockInvokeRequest.model_validate(request)

        config = request.text_generation_config or BedrockTextGenerationConfig()
        try:
            answer = await self._generate(
                model_id,
                request.input_text,
                max_tokens=config.max_token_count,
                temperature=config.temperature,
                top_p=config.top_p,
            )
        except Exception as error:
            if self._fallback is None:
                raise
            return await self._bedrock_fallback(self._fallback, model_id, request, error)

        return BedrockInvokeResponse(
            results=[BedrockResult(output_text=answer, token_count=estimate_tokens(answer))],
            input_text_token_count=estimate_tokens(request.input_text),
        )

    async def _chat_fallback(
        self,
        fallback: CloudFallback,
        model_id: str,
        request: ChatCompletionRequest,
        local_error: Exception,
    ) -> ChatCompletionResponse:
        self._log_trigger(model_id, "chat", local_error)
        started = time.perf_counter()
        try:
            if fallback.provider == "openai":
                mapped = fallback.openai_model(model_id)
                response = await fallback.openai_chat(
                    model_id,
                    request.messages,
                    temperature=request.temperature,
                    max_tokens=request.max_tokens,
                    top_p=request.top_p,
                    frequency_penalty=request.frequency_penalty,
                    presence_penalty=request.presence_penalty,
                    stop=request.stop,
                )
            else:
                mapped = fallback.bedrock_model
                input_text = request.messages[-1].content
                result = await fallback.bedrock_invoke(
                    input_text,
                    BedrockTextGenerationConfig(
                        max_token_count=request.max_tokens,
                        temperature=request.temperature,
                        top_p=request.top_p,
                    ),
                )
                response = build_chat_response(
                    model_id,
                    result.output_text,
                    prompt_tokens=estimate_tokens(input_text),
                    completion_tokens=result.results[0].token_count if result.results else 0,
                )
        except Exception as error:
            raise self._fallback_failed(model_id, "chat", error, started) from error

        self._fallback_succeeded(model_id, mapped, "chat", started)
        return response

    async def _bedrock_fallback(
        self,
        fallback: CloudFallback,
        model_id: str,
        request: BedrockInvokeRequest,
        local_error: Exception,
    ) -> BedrockInvokeResponse:
        self._log_trigger(model_id, "bedrock", local_error)
        started = time.perf_counter()
        config = request.text_generation_config
        try:
            if fallback.provider == "bedrock":
                mapped = fallback.bedrock_model
                response = await fallback.bedrock_invoke(request.input_text, config)
            else:
                mapped = fallback.openai_model(model_id)
                chat = await fallback.openai_chat(
                    model_id,
                    [ChatMessage(role="user", content=request.input_text)],
                    temperature=config.temperature if config else None,
                    max_tokens=config.max_token_count if config else None,
                    top_p=config.top_p if config else None,
                )
                output = chat.content
                token_count = chat.usage.completion_tokens if chat.usage else estimate_tokens(output)
                response = BedrockInvokeResponse(
                    results=[BedrockResult(output_text=output, token_count=token_count)],
                    input_text_token_count=estimate_tokens(request.input_text),
                )
        except Exception as error:
            raise self._fallback_failed(model_id, "bedrock", error, started) from error

        self._fallback_succeeded(model_id, mapped, "bedrock", started)
        return response

    def _log_trigger(self, model_id: str, protocol: str, error: Exception) -> None:
        log_event(
            LOGGER,
            "fallback.trigger",
            level="warning",
            exc=error,
            model_id=model_id,
            protocol=protocol,
            provider=self._fallback.provider if self._fallback else None,
        )

    def _fallback_succeeded(self, model_id: str, mapped: str, protocol: str, started: float) -> None:
        provider = self._fallback.provider if self._fallback else ""
        self._events.emit(
            "fallback_success",
            {"provider": provider, "original_model": model_id, "mapped_model": mapped},
        )
        emit_fallback_event(
            provider=provider,
            model=mapped,
            protocol=protocol,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _fallback_failed(self, model_id: str, protocol: str, error: Exception, started: float) -> FallbackError:
        provider = self._fallback.provider if self._fallback else ""
        message = f"{_PROVIDER_LABELS.get(provider, provider)} fallback failed: {error}"
        failure = FallbackError(message)
        self._events.progress("error", 0, message)
        self._events.emit("fallback_error", {"provider": provider, "error": str(error)})
        self._events.error(failure.stage, failure, provider=provider, model_id=model_id)
        emit_fallback_event(
            provider=provider,
            model=model_id,
            protocol=protocol,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            error=error,
        )
        return failure


__all__ = [
    "CHARS_PER_TOKEN",
    "ProtocolTranslator",
    "build_chat_response",
    "completion_id",
    "estimate_tokens",
    "messages_to_prompt",
]
