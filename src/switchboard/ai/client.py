"""
Completion Client Protocol

Provider clients (OpenAI, Anthropic, local models) live outside the core.
Anything with async `ask` and `complete` methods can be injected into the
decision maker, the aggregator, or a RequestContext.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call generation options."""

    temperature: float | None = None
    max_tokens: int | None = None
    system: str | None = None
    stop: tuple[str, ...] = ()
    timeout_ms: float | None = None


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class Completion:
    """Result of a chat completion."""

    text: str
    usage: dict[str, int] = field(default_factory=dict)
    model: str | None = None


@runtime_checkable
class CompletionClient(Protocol):
    """
    AI completion capability.

    Implementations must be safe to call concurrently; the engine fans out
    relevance scoring and branch handlers against one shared client.
    """

    async def ask(self, prompt: str, options: CompletionOptions | None = None) -> str:
        ...

    async def complete(
        self, messages: list[ChatMessage], options: CompletionOptions | None = None
    ) -> Completion:
        ...
