"""safe_handler - Wrap a handler so it always returns a Response."""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any

from switchboard.delegation.models import ErrorCode, RequestContext, Response


def safe_handler(
    func: Callable[[str, RequestContext], Awaitable[Any]],
) -> Callable[[str, RequestContext], Awaitable[Response]]:
    """
    Decorate a handler implementation.

    Raised exceptions become UNEXPECTED_ERROR responses and return values that
    are not a Response become INVALID_RESPONSE, so the implementation can focus
    on its own logic.
    """

    @functools.wraps(func)
    async def wrapper(query: str, context: RequestContext) -> Response:
        handler_id = context.delegation_chain[-1] if context.delegation_chain else None
        try:
            result = await func(query, context)
        except Exception as exc:
            return Response.of_error(
                ErrorCode.UNEXPECTED_ERROR,
                str(exc) or "An unexpected error occurred",
                recoverable=False,
                handler_id=handler_id,
                suggestion="This is an internal handler error; retry or contact the handler owner",
                details={"error_type": type(exc).__name__},
            )

        if not isinstance(result, Response):
            return Response.of_error(
                ErrorCode.INVALID_RESPONSE,
                "Handler must return a Response with an answer, delegation or error",
                recoverable=False,
                handler_id=handler_id,
                details={"received_type": type(result).__name__},
            )
        return result

    return wrapper
