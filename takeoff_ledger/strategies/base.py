"""
Strategy framework.

A strategy proposes one answer for one topic from the evidence and
assumptions available in the ledger. Strategies never write to the ledger
themselves; the inference stage materializes their results.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..ledger import Alternative, Assumption, Evidence, EvidenceType
from ..policy import Policy


# =============================================================================
# Context and result
# =============================================================================


@dataclass
class StrategyContext:
    """What a strategy may look at."""

    topic: str
    policy: Policy
    available_evidence: list[Evidence] = field(default_factory=list)
    available_assumptions: list[Assumption] = field(default_factory=list)
    document_id: Optional[str] = None
    page_number: Optional[int] = None


@dataclass
class StrategyResult:
    """Explicit outcome of a strategy; ``error`` is set when ``success`` is False."""

    success: bool
    value: Any = None
    confidence: float = 0.0
    alternatives: list[Alternative] = field(default_factory=list)
    explanation: str = ""
    used_evidence: list[str] = field(default_factory=list)
    used_assumptions: list[str] = field(default_factory=list)
    error: Optional[str] = None


def materialize_confidence(
    strategy_confidence: float,
    backing_confidence: float,
    reliability: float,
) -> float:
    """
    Confidence recorded on an inference.

    The strategy's own certainty scaled by a 70/30 blend of the backing
    source confidence and the policy reliability of the strategy's source.
    """
    blended = 0.7 * backing_confidence + 0.3 * reliability
    return round(min(max(strategy_confidence * blended, 0.0), 1.0), 4)


# =============================================================================
# Base Strategy
# =============================================================================


class BaseStrategy(ABC):
    """
    Abstract base class for inference strategies.

    Subclasses set ``name``, ``topic``, ``method`` and ``source_type`` and
    implement ``can_handle`` and ``execute``. ``required_flag`` names a
    feature flag that must be on for the strategy to run.
    """

    name: str = "BaseStrategy"
    topic: str = ""
    method: str = ""
    source_type: str = "assumed_default"
    priority: int = 100
    required_flag: Optional[str] = None

    @abstractmethod
    def can_handle(self, context: StrategyContext) -> bool:
        pass

    @abstractmethod
    async def execute(self, context: StrategyContext) -> StrategyResult:
        pass

    def get_priority(self) -> int:
        return self.priority

    def get_source_reliability(self, context: StrategyContext) -> float:
        return context.policy.priors.source_reliability.get(self.source_type, 0.5)

    def get_tiebreaker_priority(self, context: StrategyContext) -> int:
        tiebreakers = context.policy.tiebreakers
        if self.source_type in tiebreakers:
            return tiebreakers.index(self.source_type)
        return len(tiebreakers)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def find_evidence_by_type(
        evidence: list[Evidence],
        evidence_type: EvidenceType,
        predicate: Optional[Callable[[Evidence], bool]] = None,
    ) -> list[Evidence]:
        matches = [e for e in evidence if e.type == evidence_type]
        if predicate is not None:
            matches = [e for e in matches if predicate(e)]
        return matches

    @staticmethod
    def find_assumptions_by_key(assumptions: list[Assumption], key: str) -> list[Assumption]:
        return [a for a in assumptions if a.key == key]

    @classmethod
    def get_best_assumption(cls, assumptions: list[Assumption], key: str) -> Optional[Assumption]:
        """Highest-confidence assumption for ``key``; the first wins ties."""
        matches = cls.find_assumptions_by_key(assumptions, key)
        if not matches:
            return None
        return max(matches, key=lambda a: a.confidence)

    def success(
        self,
        value: Any,
        confidence: float,
        explanation: str,
        used_evidence: Optional[list[str]] = None,
        used_assumptions: Optional[list[str]] = None,
        alternatives: Optional[list[Alternative]] = None,
    ) -> StrategyResult:
        return StrategyResult(
            success=True,
            value=value,
            confidence=min(max(confidence, 0.0), 1.0),
            alternatives=alternatives or [],
            explanation=explanation,
            used_evidence=used_evidence or [],
            used_assumptions=used_assumptions or [],
        )

    def failure(self, error: str, used_evidence: Optional[list[str]] = None) -> StrategyResult:
        return StrategyResult(success=False, error=error, used_evidence=used_evidence or [])

    def __repr__(self) -> str:
        return f"<{type(self).__name__} topic={self.topic!r} source={self.source_type!r}>"
