"""Test helpers: fake completion client and handler builders."""

from __future__ import annotations

import asyncio

from switchboard.ai.client import ChatMessage, Completion, CompletionOptions
from switchboard.delegation import HandlerDescriptor, RequestContext, Response


class FakeCompletionClient:
    """
    Scripted completion client.

    `rules` maps a substring to a reply; the first substring found in the
    prompt wins, otherwise `default` is returned. Setting `error` makes every
    call raise it.
    """

    def __init__(
        self,
        rules: dict[str, str] | None = None,
        default: str = "",
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.rules = list((rules or {}).items())
        self.default = default
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []
        self.options: list[CompletionOptions | None] = []

    async def ask(self, prompt: str, options: CompletionOptions | None = None) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        for key, reply in self.rules:
            if key in prompt:
                return reply
        return self.default

    async def complete(
        self, messages: list[ChatMessage], options: CompletionOptions | None = None
    ) -> Completion:
        text = await self.ask(messages[-1].content if messages else "", options)
        return Completion(text=text, model="fake")


def answering(text: str, confidence: float | None = None, **kwargs):
    """Handler that always answers `text`."""

    async def handler(query: str, context: RequestContext) -> Response:
        return Response.of_answer(text, confidence=confidence, **kwargs)

    return handler


def failing(message: str = "boom"):
    async def handler(query: str, context: RequestContext) -> Response:
        raise RuntimeError(message)

    return handler


def sleeping(seconds: float, text: str = "late", confidence: float | None = None):
    async def handler(query: str, context: RequestContext) -> Response:
        await asyncio.sleep(seconds)
        return Response.of_answer(text, confidence=confidence)

    return handler


def descriptor(handler_id: str, capabilities=(), name: str | None = None, description=None):
    return HandlerDescriptor(
        id=handler_id,
        name=name or handler_id.title(),
        description=description or f"Serves {handler_id}",
        capabilities=tuple(capabilities),
    )
