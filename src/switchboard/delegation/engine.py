"""Delegation Engine - Routes a query to handlers and returns one response."""

from __future__ import annotations

import asyncio
import dataclasses
import time
from typing import TYPE_CHECKING, Any

from switchboard.ai.client import CompletionClient
from switchboard.delegation.aggregator import (
    AggregationStrategy,
    BestConfidenceAggregator,
    create_aggregator,
)
from switchboard.delegation.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from switchboard.delegation.decision import (
    AIDecisionMaker,
    DecisionMaker,
    HeuristicDecisionMaker,
)
from switchboard.delegation.executor import MAX_DELEGATION_DEPTH, DelegationExecutor
from switchboard.delegation.models import (
    BranchResult,
    DelegationDecision,
    ErrorCode,
    EventSink,
    RequestContext,
    Response,
)
from switchboard.delegation.registry import HandlerRegistry
from switchboard.logger import get_logger

if TYPE_CHECKING:
    from switchboard.config import Settings

logger = get_logger(__name__)


class DelegationEngine:
    """
    Composition root for query routing.

    Workflow:
    1. Reject the query when no handlers are registered
    2. Decide candidates (heuristic or AI-assisted)
    3. Execute the top candidate, or fan out to several concurrently
    4. Aggregate fan-out responses
    5. Attach delegation metadata to successful responses

    `route` and `route_direct` always resolve to a Response.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        *,
        ai: CompletionClient | None = None,
        decision_maker: DecisionMaker | None = None,
        aggregation: str | AggregationStrategy = "best-confidence",
        enable_parallel_routing: bool = False,
        max_parallel_queries: int = 3,
        max_delegation_depth: int = MAX_DELEGATION_DEPTH,
        default_timeout_ms: float | None = None,
        event_sink: EventSink | None = None,
        circuit_breakers: CircuitBreakerRegistry | None = None,
    ) -> None:
        if max_parallel_queries < 1:
            raise ValueError(f"max_parallel_queries must be >= 1, got {max_parallel_queries}")
        self.registry = registry
        self.ai = ai
        self.decision_maker = decision_maker or AIDecisionMaker(ai)
        self.aggregator = (
            aggregation
            if isinstance(aggregation, AggregationStrategy)
            else create_aggregator(aggregation, ai=ai, event_sink=event_sink)
        )
        self.enable_parallel_routing = enable_parallel_routing
        self.max_parallel_queries = max_parallel_queries
        self.default_timeout_ms = default_timeout_ms
        self.event_sink = event_sink
        self.executor = DelegationExecutor(
            registry, max_delegation_depth, event_sink, circuit_breakers
        )
        self._heuristic = HeuristicDecisionMaker()

    @classmethod
    def from_settings(
        cls,
        registry: HandlerRegistry,
        settings: Settings | None = None,
        ai: CompletionClient | None = None,
        event_sink: EventSink | None = None,
    ) -> DelegationEngine:
        if settings is None:
            from switchboard.config import Settings

            settings = Settings()
        breakers = CircuitBreakerRegistry(
            CircuitBreakerConfig(
                failure_threshold=settings.circuit_failure_threshold,
                recovery_timeout_ms=settings.circuit_recovery_timeout_ms,
            ),
            enabled=settings.enable_circuit_breaker,
        )
        return cls(
            registry,
            ai=ai,
            aggregation=settings.aggregation_strategy,
            enable_parallel_routing=settings.enable_parallel_routing,
            max_parallel_queries=settings.max_parallel_queries,
            max_delegation_depth=settings.max_delegation_depth,
            default_timeout_ms=settings.default_timeout_ms,
            event_sink=event_sink,
            circuit_breakers=breakers,
        )

    async def route(self, query: str, context: RequestContext | None = None) -> Response:
        """Pick handler(s) for `query` and return one merged response."""
        context = self._prepare(query, context)
        try:
            return await self._route(query, context)
        except Exception as exc:
            logger.exception("route_failed", error=str(exc))
            return _internal_error(exc)

    async def route_direct(
        self, query: str, handler_id: str, context: RequestContext | None = None
    ) -> Response:
        """Send `query` to `handler_id`, skipping the decision step."""
        context = self._prepare(query, context)
        try:
            return await self.executor.execute(query, handler_id, context)
        except Exception as exc:
            logger.exception("route_direct_failed", handler_id=handler_id, error=str(exc))
            return _internal_error(exc)

    async def suggest(
        self, query: str, context: RequestContext | None = None
    ) -> DelegationDecision:
        """The routing decision for `query`, without executing anything."""
        context = self._prepare(query, context)
        return await self._decide(query, context)

    def _prepare(self, query: str, context: RequestContext | None) -> RequestContext:
        context = context or RequestContext()
        overrides: dict[str, Any] = {}
        if context.original_query is None:
            overrides["original_query"] = query
        if context.deadline_ms is None and self.default_timeout_ms is not None:
            overrides["deadline_ms"] = self.default_timeout_ms
        if context.ai is None and self.ai is not None:
            overrides["ai"] = self.ai
        return context.derive(**overrides) if overrides else context

    async def _route(self, query: str, context: RequestContext) -> Response:
        start = time.monotonic()

        if len(self.registry) == 0:
            return Response.of_error(
                ErrorCode.NO_HANDLERS,
                "No handlers available to answer queries",
                recoverable=False,
                suggestion="Register at least one handler before routing",
            )

        decision = await self._decide(query, context)
        self._emit("decision.made", decision.to_dict())
        logger.info(
            "query_routed",
            strategy=decision.strategy,
            candidates=list(decision.candidates),
            confidence=decision.confidence,
            fallback=decision.fallback,
        )

        if not decision.candidates:
            return Response.of_error(
                ErrorCode.NO_MATCH,
                "No suitable handler found for the query",
                recoverable=True,
                suggestion=decision.reasoning,
                details={"strategy": decision.strategy},
            )

        exec_context = _shrink_deadline(context, start)
        if self.enable_parallel_routing:
            targets = list(decision.candidates[: self.max_parallel_queries])
        else:
            targets = [decision.candidates[0]]

        if len(targets) == 1:
            response = await self.executor.execute(query, targets[0], exec_context)
        else:
            results = await asyncio.gather(
                *(self._run_branch(query, handler_id, exec_context) for handler_id in targets)
            )
            logger.info(
                "fan_out_completed",
                queried=targets,
                successful=sum(1 for r in results if not r.response.is_error),
            )
            response = await self._aggregate(
                list(results), query, decision, _shrink_deadline(context, start)
            )

        if response.is_error:
            return response
        return response.with_metadata(
            delegation={
                "strategy": decision.strategy,
                "candidates": list(decision.candidates),
                "reasoning": decision.reasoning,
                "confidence": decision.confidence,
                "queried_handlers": targets,
                "parallel": len(targets) > 1,
                "fallback": decision.fallback,
            }
        )

    async def _decide(self, query: str, context: RequestContext) -> DelegationDecision:
        try:
            if context.deadline_ms is None:
                return await self.decision_maker.decide(query, self.registry, context)
            return await asyncio.wait_for(
                self.decision_maker.decide(query, self.registry, context),
                timeout=max(0.0, context.deadline_ms) / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.warning("decision_timed_out", deadline_ms=context.deadline_ms)
            reason = "Decision timed out"
        except Exception as exc:
            logger.warning("decision_failed", error=f"{type(exc).__name__}: {exc}")
            reason = f"Decision failed ({type(exc).__name__})"

        decision = self._heuristic.decide_now(query, self.registry)
        return dataclasses.replace(
            decision,
            strategy="heuristic-fallback",
            fallback=True,
            reasoning=f"{reason}; {decision.reasoning}",
        )

    async def _run_branch(
        self, query: str, handler_id: str, context: RequestContext
    ) -> BranchResult:
        branch_context = context.with_metadata(candidate=handler_id)
        try:
            response = await self.executor.execute(query, handler_id, branch_context)
        except Exception as exc:
            logger.error("branch_failed", handler_id=handler_id, error=str(exc))
            response = Response.of_error(
                ErrorCode.EXECUTION_ERROR,
                str(exc) or type(exc).__name__,
                recoverable=True,
                handler_id=handler_id,
            )
        return BranchResult(handler_id, response)

    async def _aggregate(
        self,
        results: list[BranchResult],
        query: str,
        decision: DelegationDecision,
        context: RequestContext,
    ) -> Response:
        original_query = context.original_query or query
        aggregate = self.aggregator.aggregate(
            results, original_query, decision.analysis, ai=context.ai
        )
        if context.deadline_ms is None:
            return await aggregate

        try:
            return await asyncio.wait_for(aggregate, timeout=max(0.0, context.deadline_ms) / 1000.0)
        except asyncio.TimeoutError:
            logger.warning("aggregation_timed_out", strategy=self.aggregator.name)
            response = BestConfidenceAggregator(self.event_sink).select(results)
            if response.is_error:
                return response
            aggregation = dict(response.metadata.get("aggregation", {}))
            aggregation.update(
                {"fallback_from": self.aggregator.name, "fallback_reason": "timed out"}
            )
            return response.with_metadata(aggregation=aggregation)

    def _emit(self, event: str, fields: dict[str, Any]) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink(event, fields)
        except Exception as exc:
            logger.warning("event_sink_failed", event_name=event, error=str(exc))


def _shrink_deadline(context: RequestContext, start: float) -> RequestContext:
    if context.deadline_ms is None:
        return context
    elapsed_ms = (time.monotonic() - start) * 1000.0
    return context.derive(deadline_ms=max(0.0, context.deadline_ms - elapsed_ms))


def _internal_error(exc: Exception) -> Response:
    return Response.of_error(
        ErrorCode.INTERNAL_ERROR,
        f"Internal routing error: {type(exc).__name__}: {exc}",
        recoverable=True,
    )
