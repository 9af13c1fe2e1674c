"""Wire-protocol adapters: OpenAI chat, Bedrock invoke and cloud fallback."""

from edgeinfer.protocols.bedrock import (
    BedrockInvokeRequest,
    BedrockInvokeResponse,
    BedrockResult,
    BedrockTextGenerationConfig,
)
from edgeinfer.protocols.compat import OpenAICompatibleClient
from edgeinfer.protocols.fallback import CloudFallback, map_model_to_openai
from edgeinfer.protocols.openai import (
    ChatChoice,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    ChatUsage,
)
from edgeinfer.protocols.translator import ProtocolTranslator, estimate_tokens, messages_to_prompt

__all__ = [
    "BedrockInvokeRequest",
    "BedrockInvokeResponse",
    "BedrockResult",
    "BedrockTextGenerationConfig",
    "ChatChoice",
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "ChatUsage",
    "CloudFallback",
    "OpenAICompatibleClient",
    "ProtocolTranslator",
    "estimate_tokens",
    "map_model_to_openai",
    "messages_to_prompt",
]
