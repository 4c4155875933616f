"""
Delegation & Routing Core

Routes a natural-language query to registered handlers, follows
handler-to-handler delegation with loop, depth and deadline guards, and merges
fan-out responses into one.

Core Components:
- models: Response tagged union, RequestContext, descriptors, decisions
- registry: In-memory handler registry with capability search
- decision: Heuristic and AI-assisted candidate selection
- executor: Chain-walking executor with deadline budgeting
- circuit_breaker: Per-handler circuit breakers used by the executor
- aggregator: best-confidence / combine-answers / ai-powered merge strategies
- engine: Composition root exposing route() and route_direct()
"""

from .models import (
    Answer,
    BranchResult,
    Delegation,
    DelegationDecision,
    ErrorCode,
    ErrorInfo,
    EventSink,
    Handler,
    HandlerDescriptor,
    Identity,
    RequestContext,
    Response,
    Source,
)
from .exceptions import DuplicateIdError, RegistryError, ValidationError
from .registry import HandlerRegistry
from .decision import AIDecisionMaker, DecisionMaker, HeuristicDecisionMaker
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from .executor import MAX_DELEGATION_DEPTH, DelegationExecutor
from .aggregator import (
    STRATEGIES,
    AggregationStrategy,
    AIAggregator,
    BestConfidenceAggregator,
    CombineAnswersAggregator,
    create_aggregator,
)
from .engine import DelegationEngine

__all__ = [
    # Models
    "Answer",
    "BranchResult",
    "Delegation",
    "DelegationDecision",
    "ErrorCode",
    "ErrorInfo",
    "EventSink",
    "Handler",
    "HandlerDescriptor",
    "Identity",
    "RequestContext",
    "Response",
    "Source",
    # Registry
    "DuplicateIdError",
    "HandlerRegistry",
    "RegistryError",
    "ValidationError",
    # Decision
    "AIDecisionMaker",
    "DecisionMaker",
    "HeuristicDecisionMaker",
    # Circuit breakers
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Executor
    "MAX_DELEGATION_DEPTH",
    "DelegationExecutor",
    # Aggregation
    "STRATEGIES",
    "AggregationStrategy",
    "AIAggregator",
    "BestConfidenceAggregator",
    "CombineAnswersAggregator",
    "create_aggregator",
    # Engine
    "DelegationEngine",
]
