"""Completion capability protocol injected into the delegation core."""

from switchboard.ai.client import (
    ChatMessage,
    Completion,
    CompletionClient,
    CompletionOptions,
)

__all__ = [
    "ChatMessage",
    "Completion",
    "CompletionClient",
    "CompletionOptions",
]
