"""Drop-in object mirroring the ``openai`` client's chat-completions surface."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from edgeinfer.protocols.openai import ChatCompletionRequest, ChatCompletionResponse

if TYPE_CHECKING:  # pragma: no cover - client imports this module
    from edgeinfer.client import EdgeClient


class ChatCompletions:
    def __init__(self, client: "EdgeClient") -> None:
        self._client = client

    async def create(
        self,
        *,
        model: str,
        messages: list[Any],
        knowledge_base_id: Optional[str] = None,
        **options: Any,
    ) -> ChatCompletionResponse:
        """Same keyword arguments as ``client.chat.completions.create``."""

        request = ChatCompletionRequest(messages=messages, **options)
        return await self._client.chat_completion(model, request, knowledge_base_id=knowledge_base_id)


class Chat:
    def __init__(self, client: "EdgeClient") -> None:
        self.completions = ChatCompletions(client)


class OpenAICompatibleClient:
    """``client.chat.completions.create(...)`` backed by an :class:`EdgeClient`."""

    def __init__(self, client: "EdgeClient") -> None:
        self.client = client
        self.chat = Chat(client)

    async def close(self) -> None:
        await self.client.destroy()

    async def __aenter__(self) -> "OpenAICompatibleClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


__all__ = ["Chat", "ChatCompletions", "OpenAICompatibleClient"]
