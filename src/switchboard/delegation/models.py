"""
Delegation Data Models

Core dataclasses shared by the registry, decision maker, executor,
aggregator and engine.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

from switchboard.ai.client import CompletionClient


class ErrorCode(StrEnum):
    """Machine-readable error codes carried by Error responses."""

    HANDLER_NOT_FOUND = "HANDLER_NOT_FOUND"
    DELEGATION_LOOP_DETECTED = "DELEGATION_LOOP_DETECTED"
    MAX_DELEGATION_DEPTH_EXCEEDED = "MAX_DELEGATION_DEPTH_EXCEEDED"
    DELEGATION_NOT_ALLOWED = "DELEGATION_NOT_ALLOWED"
    LIBRARIAN_TIMEOUT = "LIBRARIAN_TIMEOUT"
    TIMEOUT_EXCEEDED = "TIMEOUT_EXCEEDED"
    CIRCUIT_BREAKER_OPEN = "CIRCUIT_BREAKER_OPEN"
    NO_MATCH = "NO_MATCH"
    NO_HANDLERS = "NO_HANDLERS"
    ALL_DELEGATES_FAILED = "ALL_DELEGATES_FAILED"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def _check_unit_interval(name: str, value: Optional[float]) -> None:
    if value is not None and not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0.0, 1.0], got {value}")


@dataclass(frozen=True)
class HandlerDescriptor:
    """Static description of a registered handler."""

    id: str
    name: str
    description: str
    capabilities: Tuple[str, ...] = ()
    team: Optional[str] = None
    parent: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HandlerDescriptor":
        capabilities = data.get("capabilities", ())
        if isinstance(capabilities, list):
            capabilities = tuple(capabilities)
        return cls(
            id=data.get("id"),
            name=data.get("name"),
            description=data.get("description"),
            capabilities=capabilities,
            team=data.get("team"),
            parent=data.get("parent"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "capabilities": list(self.capabilities),
            "team": self.team,
            "parent": self.parent,
        }


@dataclass(frozen=True)
class Identity:
    """Caller identity resolved by the auth layer before routing."""

    id: str
    email: Optional[str] = None
    teams: Tuple[str, ...] = ()
    roles: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Source:
    """Source attribution for an answer. Identity is (name, url)."""

    name: str
    url: Optional[str] = None
    type: Optional[str] = None
    relevance: Optional[float] = None

    def __post_init__(self) -> None:
        _check_unit_interval("relevance", self.relevance)

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.name, self.url)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.url is not None:
            data["url"] = self.url
        if self.type is not None:
            data["type"] = self.type
        if self.relevance is not None:
            data["relevance"] = self.relevance
        return data


@dataclass(frozen=True)
class Answer:
    text: str
    sources: Tuple[Source, ...] = ()
    confidence: Optional[float] = None
    partial: bool = False

    def __post_init__(self) -> None:
        _check_unit_interval("confidence", self.confidence)


@dataclass(frozen=True)
class Delegation:
    """Request to forward the (possibly rewritten) query to another handler."""

    target: str
    query: Optional[str] = None
    overrides: Mapping[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def stated_reason(self) -> Optional[str]:
        if self.reason is not None:
            return self.reason
        reason = self.overrides.get("reason")
        return str(reason) if reason is not None else None


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str
    recoverable: Optional[bool] = None
    handler_id: Optional[str] = None
    suggestion: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)


Body = Union[Answer, Delegation, ErrorInfo]


@dataclass(frozen=True)
class Response:
    """
    Handler/engine response.

    Exactly one primary mode is active: the body is an Answer, a Delegation
    or an ErrorInfo. Metadata may accompany any mode.
    """

    body: Body
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.body, (Answer, Delegation, ErrorInfo)):
            raise TypeError(
                f"Response body must be Answer, Delegation or ErrorInfo, "
                f"got {type(self.body).__name__}"
            )

    @classmethod
    def of_answer(
        cls,
        text: str,
        sources: Tuple[Source, ...] = (),
        confidence: Optional[float] = None,
        partial: bool = False,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> "Response":
        return cls(
            Answer(text, tuple(sources), confidence, partial), dict(metadata or {})
        )

    @classmethod
    def delegate(
        cls,
        target: str,
        query: Optional[str] = None,
        reason: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "Response":
        return cls(Delegation(target, query, dict(overrides or {}), reason))

    @classmethod
    def of_error(
        cls,
        code: str,
        message: str,
        recoverable: Optional[bool] = None,
        handler_id: Optional[str] = None,
        suggestion: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> "Response":
        info = ErrorInfo(
            code=str(code),
            message=message,
            recoverable=recoverable,
            handler_id=handler_id,
            suggestion=suggestion,
            details=dict(details or {}),
        )
        return cls(info, dict(metadata or {}))

    @property
    def answer(self) -> Optional[Answer]:
        return self.body if isinstance(self.body, Answer) else None

    @property
    def delegation(self) -> Optional[Delegation]:
        return self.body if isinstance(self.body, Delegation) else None

    @property
    def error(self) -> Optional[ErrorInfo]:
        return self.body if isinstance(self.body, ErrorInfo) else None

    @property
    def is_error(self) -> bool:
        return isinstance(self.body, ErrorInfo)

    @property
    def confidence(self) -> Optional[float]:
        return self.body.confidence if isinstance(self.body, Answer) else None

    def with_metadata(self, **extra: Any) -> "Response":
        """Return a copy with `extra` merged over the existing metadata."""
        return dataclasses.replace(self, metadata={**self.metadata, **extra})

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape: the active mode under its own key, plus metadata."""
        data: Dict[str, Any] = {}
        body = self.body
        if isinstance(body, Answer):
            data["answer"] = body.text
            if body.sources:
                data["sources"] = [s.to_dict() for s in body.sources]
            if body.confidence is not None:
                data["confidence"] = body.confidence
            if body.partial:
                data["partial"] = True
        elif isinstance(body, Delegation):
            data["delegate"] = {"to": body.target}
            if body.query is not None:
                data["delegate"]["query"] = body.query
            if body.overrides:
                data["delegate"]["context"] = dict(body.overrides)
            if body.reason is not None:
                data["delegate"]["reason"] = body.reason
        else:
            error: Dict[str, Any] = {"code": body.code, "message": body.message}
            for key in ("recoverable", "handler_id", "suggestion"):
                value = getattr(body, key)
                if value is not None:
                    error[key] = value
            if body.details:
                error["details"] = dict(body.details)
            data["error"] = error
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass(frozen=True)
class RequestContext:
    """
    Per-call context handed to handlers.

    Never mutated: every hop and fan-out branch derives its own copy.
    `deadline_ms` is the remaining budget in milliseconds.
    """

    identity: Optional[Identity] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    deadline_ms: Optional[float] = None
    delegation_chain: Tuple[str, ...] = ()
    original_query: Optional[str] = None
    ai: Optional[CompletionClient] = None
    allowed_delegates: Optional[Tuple[str, ...]] = None

    def derive(self, **overrides: Any) -> "RequestContext":
        """New context from this one plus `overrides`."""
        if "delegation_chain" in overrides:
            overrides["delegation_chain"] = tuple(overrides["delegation_chain"])
        if overrides.get("allowed_delegates") is not None:
            overrides["allowed_delegates"] = tuple(overrides["allowed_delegates"])
        if "metadata" in overrides:
            overrides["metadata"] = dict(overrides["metadata"])
        return dataclasses.replace(self, **overrides)

    def with_metadata(self, **extra: Any) -> "RequestContext":
        return self.derive(metadata={**self.metadata, **extra})


Handler = Callable[[str, RequestContext], Awaitable[Response]]

# Observability hook: (event_name, fields) -> None
EventSink = Callable[[str, Dict[str, Any]], None]


@dataclass(frozen=True)
class DelegationDecision:
    """Ordered candidates chosen for a query."""

    candidates: Tuple[str, ...]
    confidence: float
    reasoning: str
    strategy: str = "heuristic"
    fallback: bool = False
    top_score: float = 0.0
    analysis: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_unit_interval("confidence", self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidates": list(self.candidates),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "strategy": self.strategy,
            "fallback": self.fallback,
            "top_score": self.top_score,
            "analysis": dict(self.analysis),
        }


@dataclass(frozen=True)
class BranchResult:
    """Response from one fan-out branch, keyed by the candidate queried."""

    handler_id: str
    response: Response
