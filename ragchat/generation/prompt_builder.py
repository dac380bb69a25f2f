"""Assemble the single text prompt sent to the LLM."""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from ragchat.generation.prompts import (
    CONTEXT_BLOCK_TEMPLATE,
    CONTEXT_FOOTER,
    CONTEXT_HEADER,
    HISTORY_HEADER,
    HISTORY_LINE_TEMPLATE,
    HISTORY_WINDOW,
    QUESTION_HEADER,
    RESPONSE_HEADER,
    SYSTEM_INSTRUCTION,
)
from ragchat.retrieval.retriever import ContextEntry


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item[name]
    return getattr(item, name)


def construct_prompt(
    query: str,
    context: Sequence[ContextEntry] | None = None,
    history: Sequence[Mapping[str, str]] | None = None,
) -> str:
    """
    Build the prompt: system instruction, recent history, retrieved context,
    then the literal question.  Empty sections are omitted.

    `history` items need `role` and `content`; only the last HISTORY_WINDOW
    entries are rendered, oldest first.  Context blocks are numbered by each
    entry's rank (`order`).
    """
    parts = [SYSTEM_INSTRUCTION]

    if history:
        parts.append(HISTORY_HEADER)
        for msg in list(history)[-HISTORY_WINDOW:]:
            role = "User" if msg["role"] == "user" else "Assistant"
            parts.append(HISTORY_LINE_TEMPLATE.format(role=role, content=msg["content"]))
        parts.append("\n")

    if context:
        parts.append(CONTEXT_HEADER)
        for entry in context:
            parts.append(
                CONTEXT_BLOCK_TEMPLATE.format(
                    order=_field(entry, "order"),
                    title=_field(entry, "title"),
                    content=_field(entry, "content"),
                )
            )
        parts.append(CONTEXT_FOOTER)

    parts.append(QUESTION_HEADER)
    parts.append(query)
    parts.append(RESPONSE_HEADER)
    return "".join(parts)
