"""
Query Decision Maker — Heuristic and AI-Assisted Candidate Selection

Heuristic scoring:
    +10 if the query contains the handler name
    +5  per capability path segment found in the query
    +1  per description word (len > 3) found in the query

AI-assisted scoring (when a completion capability is available):
    total = relevance * 0.7 + capability_overlap * 0.3     (both 0-100)

The AI strategy never fails the call: unparseable output or a faulting
capability falls back to the heuristic decision, tagged as a fallback.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import re
from abc import ABC, abstractmethod
from typing import Any

from switchboard.ai.client import CompletionClient, CompletionOptions
from switchboard.delegation.models import (
    DelegationDecision,
    HandlerDescriptor,
    RequestContext,
)
from switchboard.delegation.registry import HandlerRegistry, capability_matches
from switchboard.logger import get_logger

logger = get_logger(__name__)

MAX_CANDIDATES = 3

# Heuristic weights
NAME_MATCH_SCORE = 10
CAPABILITY_SEGMENT_SCORE = 5
DESCRIPTION_WORD_SCORE = 1
MIN_DESCRIPTION_WORD_LENGTH = 4
# Heuristic score that maps to full confidence
HEURISTIC_CONFIDENCE_SCALE = 20.0

# AI scoring weights (must sum to 1.0)
RELEVANCE_WEIGHT = 0.7
OVERLAP_WEIGHT = 0.3
AI_SELECTION_THRESHOLD = 40.0

INTENT_PROMPT = """You route user queries to specialist handlers.

Analyze the query below and reply with a JSON object only:
{{"intent": "<one sentence describing what the user wants>",
  "capabilities": ["<dot.separated.capability>", ...]}}

Query: {query}"""

RELEVANCE_PROMPT = """Rate how well this handler can answer the query.

Query: {query}
Query intent: {intent}
Required capabilities: {capabilities}

Handler: {name}
Description: {description}
Handler capabilities: {handler_capabilities}

Reply with a single integer from 0 (irrelevant) to 100 (perfect match)."""


class DecisionMaker(ABC):
    """Base class for candidate selection strategies."""

    name: str

    @abstractmethod
    async def decide(
        self, query: str, registry: HandlerRegistry, context: RequestContext
    ) -> DelegationDecision:
        """Choose ordered candidates for `query`. Must never raise."""
        ...


class HeuristicDecisionMaker(DecisionMaker):
    """Keyword and capability scoring. Always available."""

    name = "heuristic"

    @staticmethod
    def score(query: str, descriptor: HandlerDescriptor) -> int:
        query_lower = query.lower()
        score = 0

        if descriptor.name.lower() in query_lower:
            score += NAME_MATCH_SCORE

        for capability in descriptor.capabilities:
            for segment in capability.lower().split("."):
                if segment and segment in query_lower:
                    score += CAPABILITY_SEGMENT_SCORE

        for word in descriptor.description.lower().split():
            if len(word) >= MIN_DESCRIPTION_WORD_LENGTH and word in query_lower:
                score += DESCRIPTION_WORD_SCORE

        return score

    def decide_now(self, query: str, registry: HandlerRegistry) -> DelegationDecision:
        """Synchronous decision; the heuristic never suspends."""
        scored = []
        for descriptor in registry.descriptors():
            score = self.score(query, descriptor)
            if score > 0:
                scored.append((descriptor.id, score))

        # sort() is stable, so equal scores keep registration order
        scored.sort(key=lambda item: item[1], reverse=True)
        top = scored[:MAX_CANDIDATES]

        if not top:
            return DelegationDecision(
                candidates=(),
                confidence=0.0,
                reasoning="No handler matched the query keywords or capabilities",
                strategy=self.name,
            )

        best_score = top[0][1]
        return DelegationDecision(
            candidates=tuple(handler_id for handler_id, _ in top),
            confidence=min(1.0, best_score / HEURISTIC_CONFIDENCE_SCALE),
            reasoning=(
                f"Matched based on keywords and capabilities "
                f"(top score {best_score}: {', '.join(f'{i}={s}' for i, s in top)})"
            ),
            strategy=self.name,
            top_score=float(best_score),
        )

    async def decide(
        self, query: str, registry: HandlerRegistry, context: RequestContext
    ) -> DelegationDecision:
        return self.decide_now(query, registry)


class AIDecisionMaker(DecisionMaker):
    """
    Intent analysis and relevance scoring through a completion capability.

    The capability is taken from the constructor, else from the request
    context. Without one, the heuristic decides (not tagged as fallback).
    """

    name = "ai-powered"

    def __init__(
        self,
        ai: CompletionClient | None = None,
        fallback: HeuristicDecisionMaker | None = None,
    ) -> None:
        self.ai = ai
        self.fallback = fallback or HeuristicDecisionMaker()

    async def decide(
        self, query: str, registry: HandlerRegistry, context: RequestContext
    ) -> DelegationDecision:
        ai = self.ai or context.ai
        if ai is None:
            return self.fallback.decide_now(query, registry)

        descriptors = registry.descriptors()
        if not descriptors:
            return DelegationDecision(
                candidates=(), confidence=0.0, reasoning="No handlers registered",
                strategy=self.name,
            )

        try:
            raw = await ai.ask(
                INTENT_PROMPT.format(query=query),
                CompletionOptions(temperature=0.3, max_tokens=500),
            )
            analysis = parse_intent(raw)
            if analysis is None:
                logger.warning("ai_intent_unparseable", response_length=len(raw or ""))
                return self._fall_back(query, registry, "AI intent analysis was not valid JSON")

            intent, required = analysis
            relevance = await asyncio.gather(
                *(self._score_relevance(ai, query, intent, required, d) for d in descriptors)
            )
        except Exception as exc:
            logger.warning("ai_analysis_failed", error=f"{type(exc).__name__}: {exc}")
            return self._fall_back(query, registry, f"AI analysis failed ({type(exc).__name__})")

        return self._make_decision(descriptors, intent, required, relevance)

    def _fall_back(
        self, query: str, registry: HandlerRegistry, reason: str
    ) -> DelegationDecision:
        decision = self.fallback.decide_now(query, registry)
        return dataclasses.replace(
            decision,
            strategy="heuristic-fallback",
            fallback=True,
            reasoning=f"{reason}; {decision.reasoning}",
        )

    @staticmethod
    async def _score_relevance(
        ai: CompletionClient,
        query: str,
        intent: str,
        required: list[str],
        descriptor: HandlerDescriptor,
    ) -> float:
        prompt = RELEVANCE_PROMPT.format(
            query=query,
            intent=intent,
            capabilities=", ".join(required) or "none",
            name=descriptor.name,
            description=descriptor.description,
            handler_capabilities=", ".join(descriptor.capabilities) or "none",
        )
        raw = await ai.ask(prompt, CompletionOptions(temperature=0.2, max_tokens=100))
        return parse_score(raw)

    def _make_decision(
        self,
        descriptors: list[HandlerDescriptor],
        intent: str,
        required: list[str],
        relevance: list[float],
    ) -> DelegationDecision:
        scored: list[dict[str, Any]] = []
        for descriptor, relevance_score in zip(descriptors, relevance):
            overlap = capability_overlap(required, descriptor.capabilities)
            scored.append(
                {
                    "descriptor": descriptor,
                    "relevance": relevance_score,
                    "overlap": overlap,
                    "total": relevance_score * RELEVANCE_WEIGHT + overlap * OVERLAP_WEIGHT,
                }
            )

        scored.sort(key=lambda item: item["total"], reverse=True)
        selected = [item for item in scored if item["total"] >= AI_SELECTION_THRESHOLD]
        if not selected:
            selected = scored[:1]
        top = selected[:MAX_CANDIDATES]
        best = top[0]

        analysis = {
            "intent": intent,
            "capabilities": list(required),
            "scores": {item["descriptor"].id: round(item["total"], 2) for item in scored},
        }
        return DelegationDecision(
            candidates=tuple(item["descriptor"].id for item in top),
            confidence=min(1.0, best["total"] / 100.0),
            reasoning=(
                f'AI routing based on intent "{intent}": selected {best["descriptor"].name} '
                f'(relevance {best["relevance"]:.0f}, capability overlap {best["overlap"]:.0f})'
            ),
            strategy=self.name,
            top_score=best["total"],
            analysis=analysis,
        )


def capability_overlap(required: list[str], capabilities: tuple[str, ...]) -> float:
    """Percentage (0-100) of required tags matched by any handler capability."""
    if not required:
        return 0.0
    matched = sum(
        1 for tag in required if any(capability_matches(tag, cap) for cap in capabilities)
    )
    return 100.0 * matched / len(required)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """
    Parse a JSON object from model output.

    Tries the whole text first, then the first balanced top-level {...}
    substring. Returns None when neither yields an object.
    """
    if not text:
        return None
    stripped = text.strip()
    try:
        value = json.loads(stripped)
        if isinstance(value, dict):
            return value
    except json.JSONDecodeError:
        pass

    candidate = _first_object_substring(stripped)
    if candidate is None:
        return None
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _first_object_substring(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_intent(text: str) -> tuple[str, list[str]] | None:
    """(intent, capabilities) from model output, or None if malformed."""
    data = extract_json_object(text)
    if data is None:
        return None
    intent = data.get("intent")
    capabilities = data.get("capabilities", [])
    if not isinstance(intent, str) or not intent.strip():
        return None
    if not isinstance(capabilities, list) or not all(isinstance(c, str) for c in capabilities):
        return None
    return intent.strip(), [c.strip() for c in capabilities if c.strip()]


_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def parse_score(text: str) -> float:
    """First number in `text`, clamped to [0, 100]; 0 when there is none."""
    match = _NUMBER.search(text or "")
    if not match:
        return 0.0
    return max(0.0, min(100.0, float(match.group())))
