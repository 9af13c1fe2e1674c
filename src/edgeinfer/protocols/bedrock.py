"""Bedrock ``InvokeModel`` text-generation wire shapes (camelCase on the wire)."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class BedrockTextGenerationConfig(_CamelModel):
    max_token_count: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop_sequences: Optional[List[str]] = None


class BedrockInvokeRequest(_CamelModel):
    input_text: str
    text_generation_config: Optional[BedrockTextGenerationConfig] = None


class BedrockResult(_CamelModel):
    output_text: str
    token_count: int = 0


class BedrockInvokeResponse(_CamelModel):
    results: List[BedrockResult]
    input_text_token_count: Optional[int] = None

    @property
    def output_text(self) -> str:
        return self.results[0].output_text if self.results else ""


__all__ = [
    "BedrockInvokeRequest",
    "BedrockInvokeResponse",
    "BedrockResult",
    "BedrockTextGenerationConfig",
]
