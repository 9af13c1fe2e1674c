"""Context budgeting and prompt assembly shared by the retrieval tiers."""
from __future__ import annotations

from typing import Iterable, Tuple

# Rough token estimate for budgeting; not tied to any tokenizer.
CHARS_PER_TOKEN = 3
RESERVED_PROMPT_TOKENS = 200
CONTEXT_SEPARATOR = "\n\n---\n\n"
ELLIPSIS = "..."

LOCAL_PROMPT_TEMPLATE = (
    "You are a helpful assistant. Answer based ONLY on the following context:\n\n"
    "{context}\n\nQuestion: {query}\n\nAnswer:"
)


def max_context_chars(context_window: int) -> int:
    return max(0, (context_window - RESERVED_PROMPT_TOKENS) * CHARS_PER_TOKEN)


def estimate_tokens(text: str) -> float:
    return len(text) / CHARS_PER_TOKEN


def format_source(document_name: str, content: str) -> str:
    return f"[Source: {document_name}]\n{content}"


def truncate_context(context: str, max_chars: int) -> Tuple[str, bool]:
    """Cut ``context`` so the result, ellipsis included, fits ``max_chars``."""

    if len(context) <= max_chars:
        return context, False
    if max_chars <= len(ELLIPSIS):
        return context[:max_chars], True
    return context[: max_chars - len(ELLIPSIS)] + ELLIPSIS, True


def assemble_context(parts: Iterable[str], max_chars: int) -> Tuple[str, int, bool]:
    """Join ranked parts greedily, stopping at the first one that overflows.

    Returns the context, how many parts were used and whether any were left
    out.
    """

    selected: list[str] = []
    length = 0
    truncated = False
    for part in parts:
        added = len(part) + (len(CONTEXT_SEPARATOR) if selected else 0)
        if length + added > max_chars:
            truncated = True
            break
        selected.append(part)
        length += added
    return CONTEXT_SEPARATOR.join(selected), len(selected), truncated


def build_local_prompt(context: str, query: str) -> str:
    return LOCAL_PROMPT_TEMPLATE.format(context=context, query=query)


def apply_context_to_template(template: str, original_context: str, context: str, query: str) -> str:
    """Swap the server context inside ``template`` for the budgeted one."""

    if template and original_context and original_context in template:
        return template.replace(original_context, context, 1)
    if template and not original_context:
        return template
    return build_local_prompt(context, query)


__all__ = [
    "CHARS_PER_TOKEN",
    "CONTEXT_SEPARATOR",
    "RESERVED_PROMPT_TOKENS",
    "apply_context_to_template",
    "assemble_context",
    "build_local_prompt",
    "estimate_tokens",
    "format_source",
    "max_context_chars",
    "truncate_context",
]
