"""Response aggregation strategies for parallel fan-out."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from switchboard.ai.client import CompletionClient, CompletionOptions
from switchboard.delegation.models import (
    BranchResult,
    ErrorCode,
    EventSink,
    Response,
    Source,
)
from switchboard.logger import get_logger

logger = get_logger(__name__)


class AggregationStrategy(ABC):
    """Base class for merging fan-out responses into one."""

    name: str

    def __init__(self, event_sink: EventSink | None = None) -> None:
        self.event_sink = event_sink

    @abstractmethod
    async def aggregate(
        self,
        results: Sequence[BranchResult],
        original_query: str,
        analysis: Mapping[str, Any] | None = None,
        ai: CompletionClient | None = None,
    ) -> Response:
        """Merge branch results.

        Args:
            results: One BranchResult per queried candidate, in candidate order
            original_query: The query as the caller sent it
            analysis: Optional decision analysis (intent, capabilities)
            ai: Completion capability from the request context, if any

        Returns:
            A single Response; never raises
        """
        ...

    def _emit(self, fields: dict[str, Any]) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink("aggregation.performed", {"strategy": self.name, **fields})
        except Exception as exc:
            logger.warning("event_sink_failed", event_name="aggregation.performed", error=str(exc))


def _successes(results: Sequence[BranchResult]) -> list[BranchResult]:
    return [r for r in results if r.response.answer is not None]


def all_failed(results: Sequence[BranchResult]) -> Response:
    """ALL_DELEGATES_FAILED with the per-branch errors as details."""
    errors = {}
    for result in results:
        error = result.response.error
        if error is not None:
            errors[result.handler_id] = {"code": error.code, "message": error.message}
        else:
            errors[result.handler_id] = {"code": "NO_ANSWER", "message": "No answer returned"}
    return Response.of_error(
        ErrorCode.ALL_DELEGATES_FAILED,
        f"All {len(results)} delegate(s) failed to answer",
        recoverable=True,
        details={"errors": errors},
    )


def merge_sources(results: Sequence[BranchResult]) -> tuple[Source, ...]:
    """Union of sources, deduplicated by (name, url), first occurrence kept."""
    seen: set[tuple[str, str | None]] = set()
    merged: list[Source] = []
    for result in results:
        answer = result.response.answer
        if answer is None:
            continue
        for source in answer.sources:
            if source.key in seen:
                continue
            seen.add(source.key)
            merged.append(source)
    return tuple(merged)


def _max_confidence(results: Sequence[BranchResult]) -> float | None:
    declared = [
        r.response.answer.confidence
        for r in results
        if r.response.answer is not None and r.response.answer.confidence is not None
    ]
    return max(declared) if declared else None


def _confidences(results: Sequence[BranchResult]) -> dict[str, float | None]:
    return {r.handler_id: r.response.confidence for r in results}


class BestConfidenceAggregator(AggregationStrategy):
    """Highest declared confidence wins; ties go to the earlier candidate."""

    name = "best-confidence"

    async def aggregate(
        self,
        results: Sequence[BranchResult],
        original_query: str,
        analysis: Mapping[str, Any] | None = None,
        ai: CompletionClient | None = None,
    ) -> Response:
        return self.select(results)

    def select(self, results: Sequence[BranchResult]) -> Response:
        successes = _successes(results)
        if not successes:
            self._emit({"total": len(results), "successful": 0})
            return all_failed(results)

        best = successes[0]
        for result in successes[1:]:
            if (result.response.confidence or 0.0) > (best.response.confidence or 0.0):
                best = result

        logger.info(
            "aggregated_best_confidence",
            selected_handler=best.handler_id,
            confidence=best.response.confidence,
            total=len(results),
            successful=len(successes),
        )
        self._emit(
            {"total": len(results), "successful": len(successes), "selected": best.handler_id}
        )
        return best.response.with_metadata(
            aggregation={
                "strategy": self.name,
                "total_responses": len(results),
                "successful_responses": len(successes),
                "selected_handler": best.handler_id,
                "confidences": _confidences(successes),
            }
        )


class CombineAnswersAggregator(AggregationStrategy):
    """Concatenate every successful answer with attribution."""

    name = "combine-answers"

    def __init__(
        self, handler_names: Mapping[str, str] | None = None, event_sink: EventSink | None = None
    ) -> None:
        super().__init__(event_sink)
        self.handler_names = dict(handler_names or {})

    async def aggregate(
        self,
        results: Sequence[BranchResult],
        original_query: str,
        analysis: Mapping[str, Any] | None = None,
        ai: CompletionClient | None = None,
    ) -> Response:
        successes = _successes(results)
        if not successes:
            self._emit({"total": len(results), "successful": 0})
            return all_failed(results)

        parts = []
        for result in successes:
            label = self.handler_names.get(result.handler_id, result.handler_id)
            parts.append(f"**{label}**: {result.response.answer.text}")

        partial = len(successes) < len(results) or any(
            r.response.answer.partial for r in successes
        )

        self._emit({"total": len(results), "successful": len(successes), "partial": partial})
        return Response.of_answer(
            "\n\n".join(parts),
            sources=merge_sources(successes),
            confidence=_max_confidence(successes),
            partial=partial,
            metadata={
                "aggregation": {
                    "strategy": self.name,
                    "total_responses": len(results),
                    "successful_responses": len(successes),
                    "contributing_handlers": [r.handler_id for r in successes],
                    "confidences": _confidences(successes),
                }
            },
        )


AI_AGGREGATION_PROMPT = """You combine answers from several specialist handlers into one response.

Original question: {query}
{intent_line}
Answers:

{answers}

Write one unified answer that:
1. Keeps the most relevant information from every answer
2. Resolves contradictions, preferring higher-confidence answers
3. Mentions which handler provided which information when it matters

Combined answer:"""


class AIAggregator(AggregationStrategy):
    """Synthesize one answer through the completion capability."""

    name = "ai-powered"

    def __init__(
        self,
        ai: CompletionClient | None = None,
        preserve_attribution: bool = True,
        include_confidence: bool = True,
        event_sink: EventSink | None = None,
    ) -> None:
        super().__init__(event_sink)
        self.ai = ai
        self.preserve_attribution = preserve_attribution
        self.include_confidence = include_confidence
        self._fallback = BestConfidenceAggregator(event_sink)

    async def aggregate(
        self,
        results: Sequence[BranchResult],
        original_query: str,
        analysis: Mapping[str, Any] | None = None,
        ai: CompletionClient | None = None,
    ) -> Response:
        ai = self.ai or ai
        successes = _successes(results)
        if len(successes) <= 1 or ai is None:
            if ai is None and len(successes) > 1:
                logger.warning("ai_aggregation_unavailable", fallback=self._fallback.name)
            return self._fallback.select(results)

        prompt = self._build_prompt(successes, original_query, analysis)
        try:
            text = await ai.ask(prompt, CompletionOptions(temperature=0.3, max_tokens=1000))
        except Exception as exc:
            logger.warning("ai_aggregation_failed", error=f"{type(exc).__name__}: {exc}")
            return self._fall_back(results, f"{type(exc).__name__}: {exc}")

        if not text or not text.strip():
            logger.warning("ai_aggregation_empty")
            return self._fall_back(results, "empty synthesis")

        partial = len(successes) < len(results) or any(
            r.response.answer.partial for r in successes
        )
        self._emit({"total": len(results), "successful": len(successes), "partial": partial})
        return Response.of_answer(
            text.strip(),
            sources=merge_sources(successes),
            confidence=_max_confidence(successes),
            partial=partial,
            metadata={
                "aggregation": {
                    "strategy": self.name,
                    "total_responses": len(results),
                    "successful_responses": len(successes),
                    "contributing_handlers": [r.handler_id for r in successes],
                    "confidences": _confidences(successes),
                }
            },
        )

    def _fall_back(self, results: Sequence[BranchResult], reason: str) -> Response:
        response = self._fallback.select(results)
        if response.is_error:
            return response
        aggregation = dict(response.metadata.get("aggregation", {}))
        aggregation.update({"fallback_from": self.name, "fallback_reason": reason})
        return response.with_metadata(aggregation=aggregation)

    def _build_prompt(
        self,
        successes: Sequence[BranchResult],
        original_query: str,
        analysis: Mapping[str, Any] | None,
    ) -> str:
        blocks = []
        for result in successes:
            answer = result.response.answer
            header = result.handler_id if self.preserve_attribution else "answer"
            if self.include_confidence and answer.confidence is not None:
                header = f"{header} (confidence: {answer.confidence:.2f})"
            blocks.append(f"[{header}]: {answer.text}")

        intent = (analysis or {}).get("intent")
        intent_line = f"Detected intent: {intent}\n" if intent else ""
        return AI_AGGREGATION_PROMPT.format(
            query=original_query, intent_line=intent_line, answers="\n\n".join(blocks)
        )


STRATEGIES: dict[str, type[AggregationStrategy]] = {
    "best-confidence": BestConfidenceAggregator,
    "combine-answers": CombineAnswersAggregator,
    "ai-powered": AIAggregator,
}


def create_aggregator(
    name: str,
    ai: CompletionClient | None = None,
    handler_names: Mapping[str, str] | None = None,
    event_sink: EventSink | None = None,
) -> AggregationStrategy:
    """Build a strategy from its STRATEGIES name."""
    if name not in STRATEGIES:
        raise ValueError(f"Unknown aggregation strategy {name!r}; choose from {sorted(STRATEGIES)}")
    if name == "ai-powered":
        return AIAggregator(ai, event_sink=event_sink)
    if name == "combine-answers":
        return CombineAnswersAggregator(handler_names, event_sink=event_sink)
    return BestConfidenceAggregator(event_sink)
