"""
Delegation Executor — Invokes Handlers and Follows Delegation Chains

Each top-level call walks:

    Invoking -> (Delegating -> Invoking)* -> Answered | Errored

Guards checked before every hop, in order: unknown handler, loop in the
delegation chain, maximum depth, elapsed deadline, open circuit breaker. The
deadline is absolute for the whole chain; each hop receives only what is left
of it.

Usage:
    from switchboard.delegation.executor import DelegationExecutor

    executor = DelegationExecutor(registry)
    response = await executor.execute("deploy status", "deployments", RequestContext())
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Any

from switchboard.delegation.circuit_breaker import CircuitBreakerRegistry
from switchboard.delegation.models import (
    Delegation,
    ErrorCode,
    EventSink,
    Handler,
    RequestContext,
    Response,
)
from switchboard.delegation.registry import HandlerRegistry
from switchboard.logger import get_logger

logger = get_logger(__name__)

MAX_DELEGATION_DEPTH = 10


class HandlerTimeout(Exception):
    """Raised internally when a handler exceeds its remaining budget."""


class DelegationExecutor:
    """
    Executes a handler and any delegations it requests.

    Handlers are opaque async functions; every fault they raise is turned
    into an Error response here. A timed-out handler task is cancelled but
    not awaited, so a handler that ignores cancellation keeps running in the
    background while the caller already has its answer.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        max_depth: int = MAX_DELEGATION_DEPTH,
        event_sink: EventSink | None = None,
        circuit_breakers: CircuitBreakerRegistry | None = None,
    ) -> None:
        if max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {max_depth}")
        self.registry = registry
        self.max_depth = max_depth
        self.event_sink = event_sink
        self.circuit_breakers = (
            circuit_breakers if circuit_breakers is not None else CircuitBreakerRegistry()
        )

    async def execute(
        self,
        query: str,
        handler_id: str,
        context: RequestContext | None = None,
    ) -> Response:
        """Execute `handler_id` for `query`, following delegations."""
        context = context or RequestContext()
        if context.original_query is None:
            context = context.derive(original_query=query)

        start = time.monotonic()
        deadline = None
        if context.deadline_ms is not None:
            deadline = start + context.deadline_ms / 1000.0

        logger.info(
            "delegation_started",
            handler_id=handler_id,
            query_length=len(query),
            deadline_ms=context.deadline_ms,
            chain=list(context.delegation_chain),
        )

        response = await self._execute_hop(query, handler_id, context, deadline, start)

        logger.info(
            "delegation_completed",
            handler_id=handler_id,
            execution_time_ms=_elapsed_ms(start),
            chain=response.metadata.get("delegation_chain"),
            response_type=_response_type(response),
        )
        return response

    async def _execute_hop(
        self,
        query: str,
        handler_id: str,
        context: RequestContext,
        deadline: float | None,
        start: float,
    ) -> Response:
        chain = context.delegation_chain

        handler = self.registry.lookup(handler_id)
        if handler is None:
            return self._fail(
                ErrorCode.HANDLER_NOT_FOUND,
                f"Handler '{handler_id}' not found",
                chain,
                handler_id=handler_id,
                recoverable=False,
                details={"available_handlers": self.registry.list_ids()},
            )

        if handler_id in chain:
            path = " -> ".join((*chain, handler_id))
            logger.warning("delegation_loop_detected", handler_id=handler_id, chain=list(chain))
            return self._fail(
                ErrorCode.DELEGATION_LOOP_DETECTED,
                f"Delegation loop detected: {path}",
                chain,
                handler_id=handler_id,
                recoverable=False,
            )

        if len(chain) >= self.max_depth:
            logger.warning(
                "max_delegation_depth_exceeded",
                handler_id=handler_id,
                depth=len(chain),
                max_depth=self.max_depth,
            )
            return self._fail(
                ErrorCode.MAX_DELEGATION_DEPTH_EXCEEDED,
                f"Maximum delegation depth of {self.max_depth} exceeded",
                chain,
                handler_id=handler_id,
                recoverable=False,
            )

        hop_start = time.monotonic()
        remaining = None
        if deadline is not None:
            remaining = deadline - hop_start
            if remaining <= 0:
                logger.warning("timeout_exceeded", handler_id=handler_id, chain=list(chain))
                self._emit("hop.timeout", {"handler_id": handler_id, "before_invoke": True})
                return self._fail(
                    ErrorCode.TIMEOUT_EXCEEDED,
                    "Request timeout exceeded before execution",
                    chain,
                    handler_id=handler_id,
                    recoverable=True,
                )

        breaker = self.circuit_breakers.get(handler_id)
        if breaker is not None and not breaker.allow_request():
            retry_after_ms = round(breaker.retry_after_ms, 2)
            logger.warning(
                "circuit_open", handler_id=handler_id, retry_after_ms=retry_after_ms
            )
            self._emit(
                "hop.rejected",
                {
                    "handler_id": handler_id,
                    "reason": "circuit_open",
                    "retry_after_ms": retry_after_ms,
                },
            )
            return self._fail(
                ErrorCode.CIRCUIT_BREAKER_OPEN,
                f"Circuit breaker for handler '{handler_id}' is open",
                chain,
                handler_id=handler_id,
                recoverable=True,
                suggestion="The handler has been failing; retry after the recovery window",
                details={"retry_after_ms": retry_after_ms},
            )

        hop_chain = (*chain, handler_id)
        hop_context = context.derive(
            delegation_chain=hop_chain,
            deadline_ms=remaining * 1000.0 if remaining is not None else None,
        )

        try:
            response = await self._invoke(handler, query, hop_context, remaining)
        except asyncio.CancelledError:
            if breaker is not None:
                breaker.release()
            raise
        except HandlerTimeout:
            if breaker is not None:
                breaker.record_failure()
            logger.warning(
                "handler_timeout", handler_id=handler_id, budget_ms=round(remaining * 1000.0, 2)
            )
            self._emit("hop.timeout", {"handler_id": handler_id, "before_invoke": False})
            return self._fail(
                ErrorCode.LIBRARIAN_TIMEOUT,
                f"Handler '{handler_id}' timed out after {remaining * 1000.0:.0f}ms",
                hop_chain,
                handler_id=handler_id,
                recoverable=True,
            )
        except Exception as exc:
            if breaker is not None:
                breaker.record_failure()
            logger.error(
                "handler_failed",
                handler_id=handler_id,
                chain=list(hop_chain),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return self._fail(
                ErrorCode.EXECUTION_ERROR,
                str(exc) or type(exc).__name__,
                hop_chain,
                handler_id=handler_id,
                recoverable=True,
                details={"error_type": type(exc).__name__},
            )

        if not isinstance(response, Response):
            if breaker is not None:
                breaker.record_failure()
            return self._fail(
                ErrorCode.INVALID_RESPONSE,
                f"Handler '{handler_id}' returned {type(response).__name__}, not a Response",
                hop_chain,
                handler_id=handler_id,
                recoverable=False,
            )

        if breaker is not None:
            breaker.record_success()

        self._emit(
            "hop.executed",
            {
                "handler_id": handler_id,
                "chain": list(hop_chain),
                "elapsed_ms": _elapsed_ms(hop_start),
                "response_type": _response_type(response),
            },
        )

        delegation = response.delegation
        if delegation is None:
            return response.with_metadata(
                delegation_chain=list(hop_chain),
                execution_time_ms=_elapsed_ms(start),
            )

        return await self._follow(query, handler_id, delegation, hop_context, deadline, start)

    async def _follow(
        self,
        query: str,
        handler_id: str,
        delegation: Delegation,
        hop_context: RequestContext,
        deadline: float | None,
        start: float,
    ) -> Response:
        target = delegation.target
        allowed = hop_context.allowed_delegates
        if allowed is not None and target not in allowed:
            return self._fail(
                ErrorCode.DELEGATION_NOT_ALLOWED,
                f"Handler '{handler_id}' may not delegate to '{target}'",
                hop_context.delegation_chain,
                handler_id=handler_id,
                recoverable=False,
                details={"allowed_delegates": list(allowed)},
            )

        requested_ms = delegation.overrides.get("deadline_ms")
        if requested_ms is not None and not _is_budget(requested_ms):
            logger.warning(
                "invalid_deadline_override", handler_id=handler_id, deadline_ms=repr(requested_ms)
            )
            return self._fail(
                ErrorCode.INVALID_RESPONSE,
                f"Handler '{handler_id}' requested an invalid deadline_ms override: "
                f"{requested_ms!r}",
                hop_context.delegation_chain,
                handler_id=handler_id,
                recoverable=False,
            )

        next_context, deadline = _apply_overrides(hop_context, delegation, deadline)

        logger.info(
            "delegating",
            from_handler=handler_id,
            to_handler=target,
            chain=list(hop_context.delegation_chain),
            reason=delegation.stated_reason,
            query_rewritten=delegation.query is not None,
        )

        result = await self._execute_hop(
            delegation.query or query, target, next_context, deadline, start
        )

        reasons = list(result.metadata.get("delegation_reasons", []))
        if delegation.stated_reason:
            reasons.insert(0, delegation.stated_reason)
        return result.with_metadata(
            delegated=True,
            delegation_reasons=reasons,
            execution_time_ms=_elapsed_ms(start),
        )

    @staticmethod
    async def _invoke(
        handler: Handler,
        query: str,
        context: RequestContext,
        remaining: float | None,
    ) -> Any:
        if remaining is None:
            return await handler(query, context)

        task = asyncio.ensure_future(_call(handler, query, context))
        try:
            done, _ = await asyncio.wait({task}, timeout=remaining)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(_discard_outcome)
        raise HandlerTimeout()

    def _fail(
        self,
        code: ErrorCode,
        message: str,
        chain: tuple[str, ...],
        **kwargs: Any,
    ) -> Response:
        return Response.of_error(code, message, metadata={"delegation_chain": list(chain)}, **kwargs)

    def _emit(self, event: str, fields: dict[str, Any]) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink(event, fields)
        except Exception as exc:
            logger.warning("event_sink_failed", event_name=event, error=str(exc))


async def _call(handler: Handler, query: str, context: RequestContext) -> Any:
    return await handler(query, context)


def _discard_outcome(task: asyncio.Future) -> None:
    # Retrieve the abandoned task's outcome so asyncio does not report it.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("abandoned_handler_failed", error=str(exc))


def _is_budget(value: Any) -> bool:
    """A finite, non-negative number of milliseconds (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


def _apply_overrides(
    context: RequestContext, delegation: Delegation, deadline: float | None
) -> tuple[RequestContext, float | None]:
    """Merge delegation overrides into metadata; a deadline may only shrink."""
    overrides = dict(delegation.overrides)
    requested_ms = overrides.pop("deadline_ms", None)
    if requested_ms is not None:
        requested = time.monotonic() + float(requested_ms) / 1000.0
        deadline = requested if deadline is None else min(deadline, requested)
    if overrides:
        context = context.with_metadata(**overrides)
    return context, deadline


def _elapsed_ms(since: float) -> float:
    return round((time.monotonic() - since) * 1000.0, 2)


def _response_type(response: Response) -> str:
    if response.answer is not None:
        return "answer"
    if response.delegation is not None:
        return "delegate"
    return "error"
