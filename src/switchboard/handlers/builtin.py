"""Built-in handlers used by the CLI, the API server and examples."""

from __future__ import annotations

import re

from switchboard.ai.client import CompletionOptions
from switchboard.delegation.models import HandlerDescriptor, RequestContext, Response
from switchboard.delegation.registry import HandlerRegistry
from switchboard.handlers.base import safe_handler


@safe_handler
async def hello_handler(query: str, context: RequestContext) -> Response:
    lowered = query.lower()
    words = set(re.findall(r"[a-z]+", lowered))

    if words & {"hello", "hi", "hey"}:
        return Response.of_answer(
            "Hello! I route your questions to the handler best suited to answer them.",
            confidence=1.0,
        )
    if "who are you" in lowered or "what are you" in lowered:
        return Response.of_answer(
            "I am Switchboard, a router that sends each query to specialist handlers "
            "and merges their answers.",
            confidence=0.95,
        )
    if "help" in lowered:
        return Response.of_answer(
            "Ask a question and it will be routed to the handler whose capabilities "
            "match it best. Run `switchboard handlers` to see what is available.",
            confidence=0.9,
        )
    return Response.of_answer(
        "I'm the greeting handler. Try saying hello, or ask a specialist question.",
        confidence=0.7,
    )


@safe_handler
async def echo_handler(query: str, context: RequestContext) -> Response:
    return Response.of_answer(
        query,
        confidence=1.0,
        metadata={"chain": list(context.delegation_chain)},
    )


ASSISTANT_PROMPT = """You are a helpful general assistant answering on behalf of a query router.
Answer the question concisely. Say so when you are unsure.

Question: {query}"""


@safe_handler
async def assistant_handler(query: str, context: RequestContext) -> Response:
    if context.ai is None:
        return Response.of_error(
            "AI_NOT_CONFIGURED",
            "No completion capability is configured for the assistant handler",
            recoverable=True,
        )
    try:
        answer = await context.ai.ask(
            ASSISTANT_PROMPT.format(query=query),
            CompletionOptions(temperature=0.7, max_tokens=1000),
        )
    except Exception as exc:
        return Response.of_error(
            "AI_GENERATION_FAILED",
            f"Failed to generate an answer: {exc}",
            recoverable=True,
        )
    return Response.of_answer(answer, confidence=0.75)


BUILTIN_HANDLERS = (
    (
        HandlerDescriptor(
            id="hello",
            name="Hello",
            description="Friendly greeting and introduction to the router",
            capabilities=("general.greeting", "general.help"),
            team="platform",
        ),
        hello_handler,
    ),
    (
        HandlerDescriptor(
            id="echo",
            name="Echo",
            description="Repeats the query back for debugging delegation chains",
            capabilities=("debug.echo",),
            team="platform",
        ),
        echo_handler,
    ),
    (
        HandlerDescriptor(
            id="assistant",
            name="Assistant",
            description="General question answering backed by the completion capability",
            capabilities=("general.assistant", "ai.qa"),
            team="platform",
        ),
        assistant_handler,
    ),
)


def register_builtin_handlers(registry: HandlerRegistry) -> HandlerRegistry:
    """Register every built-in handler; returns the registry for chaining."""
    for descriptor, handler in BUILTIN_HANDLERS:
        registry.register(descriptor, handler)
    return registry
