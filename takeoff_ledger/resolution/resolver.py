"""
Policy-driven conflict resolution.

Given every inference for one topic, pick the one to decide on or explain
why no pick is safe. The resolver is pure: it reads the policy and the
inferences' backing evidence and returns a ``Resolution``; the stage is
what writes decisions and flags to the ledger.

Rules, in order:
1. Rank by confidence, then backing-source reliability, then tiebreaker
   position, then insertion order.
2. Top below ``acceptInference``: LOW_CONFIDENCE flag, no decision.
3. A lone candidate, or a lead of at least ``conflictGap``: decide.
4. A lead under ``conflictGap`` but at least ``conflictGap * maxAmbiguity``:
   among the near-tied acceptable candidates, the first tiebreaker source
   backing exactly one of them decides.
5. Anything else: CONFLICT flag for manual review, no decision.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..ledger import (
    ASSUMED_DEFAULT_SOURCE,
    Decision,
    Evidence,
    Flag,
    FlagSeverity,
    FlagType,
    Inference,
    PolicyUsed,
    source_type_for_extractor,
)
from ..policy import Policy

logger = logging.getLogger(__name__)

EvidenceLookup = Callable[[str], Optional[Evidence]]


class ResolutionOutcome(str, Enum):
    AUTO_RESOLVED = "auto_resolved"
    TIEBREAK_RESOLVED = "tiebreak_resolved"
    MANUAL_REVIEW = "manual_review"
    LOW_CONFIDENCE = "low_confidence"


@dataclass
class Candidate:
    inference: Inference
    source_type: str
    source_types: frozenset[str]
    reliability: float
    tiebreaker_index: int
    order: int

    @property
    def confidence(self) -> float:
        return self.inference.confidence


@dataclass
class Resolution:
    topic: str
    outcome: ResolutionOutcome
    candidates: list[Candidate]
    selected: Optional[Candidate] = None
    applied_rules: list[str] = field(default_factory=list)
    justification: str = ""
    gap: Optional[float] = None

    @property
    def is_decided(self) -> bool:
        return self.selected is not None

    @property
    def competitors(self) -> list[Candidate]:
        return [c for c in self.candidates if c is not self.selected]

    def to_decision(self, policy: Policy, stage: str) -> Decision:
        if self.selected is None:
            raise ValueError(f"Topic {self.topic} was not resolved to a decision")
        return Decision(
            topic=self.topic,
            selected_value=self.selected.inference.value,
            selected_inference_id=self.selected.inference.id,
            competing_inferences=[c.inference.id for c in self.competitors],
            justification=self.justification,
            policy_used=PolicyUsed(
                thresholds=policy.thresholds.model_dump(by_alias=True),
                tiebreakers=list(policy.tiebreakers),
                applied_rules=list(self.applied_rules),
            ),
            stage=stage,
        )

    def to_flag(self, decision_id: Optional[str] = None) -> Optional[Flag]:
        """
        Flag describing this resolution, if one is warranted.

        Decided topics with competitors get a resolved, low-severity
        CONFLICT flag pointing at the decision.
        """
        inferences = [c.inference for c in self.candidates]
        refs = dict(
            topic=self.topic,
            inference_ids=[i.id for i in inferences],
            evidence_ids=list(dict.fromkeys(e for i in inferences for e in i.used_evidence)),
            assumption_ids=list(dict.fromkeys(a for i in inferences for a in i.used_assumptions)),
        )

        if self.outcome == ResolutionOutcome.LOW_CONFIDENCE:
            return Flag(
                type=FlagType.LOW_CONFIDENCE,
                severity=FlagSeverity.HIGH,
                message=self.justification,
                **refs,
            )
        if self.outcome == ResolutionOutcome.MANUAL_REVIEW:
            return Flag(
                type=FlagType.CONFLICT,
                severity=FlagSeverity.MEDIUM,
                message=self.justification,
                **refs,
            )
        if self.competitors and decision_id is not None:
            return Flag(
                type=FlagType.CONFLICT,
                severity=FlagSeverity.LOW,
                message=f"{len(self.candidates)} inferences competed for {self.topic}; resolved by policy",
                decision_id=decision_id,
                resolved=True,
                **refs,
            )
        return None


class ConflictResolver:
    """Applies one policy's thresholds and tiebreakers to competing inferences."""

    def __init__(self, policy: Policy):
        self.policy = policy

    def _reliability(self, source_type: str) -> float:
        return self.policy.priors.source_reliability.get(source_type, 0.5)

    def _tiebreaker_index(self, source_type: str) -> int:
        tiebreakers = self.policy.tiebreakers
        return tiebreakers.index(source_type) if source_type in tiebreakers else len(tiebreakers)

    def _candidate(self, inference: Inference, order: int, lookup: EvidenceLookup) -> Candidate:
        source_types = set()
        for evidence_id in inference.used_evidence:
            evidence = lookup(evidence_id)
            source = source_type_for_extractor(evidence.source.extractor_name) if evidence else None
            if source:
                source_types.add(source)
        if not source_types:
            source_types.add(ASSUMED_DEFAULT_SOURCE)

        primary = min(
            source_types,
            key=lambda s: (self._tiebreaker_index(s), -self._reliability(s), s),
        )
        return Candidate(
            inference=inference,
            source_type=primary,
            source_types=frozenset(source_types),
            reliability=self._reliability(primary),
            tiebreaker_index=self._tiebreaker_index(primary),
            order=order,
        )

    def rank(self, inferences: list[Inference], lookup: EvidenceLookup) -> list[Candidate]:
        candidates = [self._candidate(inf, i, lookup) for i, inf in enumerate(inferences)]
        return sorted(
            candidates,
            key=lambda c: (-c.confidence, -c.reliability, c.tiebreaker_index, c.order),
        )

    def resolve(
        self,
        topic: str,
        inferences: list[Inference],
        lookup: EvidenceLookup = lambda _id: None,
    ) -> Resolution:
        if not inferences:
            raise ValueError(f"No inferences to resolve for topic {topic}")

        thresholds = self.policy.thresholds
        accept = thresholds.accept_inference
        conflict_gap = thresholds.conflict_gap

        ranked = self.rank(inferences, lookup)
        top = ranked[0]

        if top.confidence < accept:
            return Resolution(
                topic=topic,
                outcome=ResolutionOutcome.LOW_CONFIDENCE,
                candidates=ranked,
                justification=(
                    f"Best inference for {topic} has confidence {top.confidence:.2f}, "
                    f"below acceptInference {accept:.2f}"
                ),
            )

        if len(ranked) == 1:
            return self._decide(
                topic, ranked, top, ["confidence_threshold", "single_inference"],
                f"only inference, confidence {top.confidence:.2f} >= {accept:.2f}",
            )

        second = ranked[1]
        gap = round(top.confidence - second.confidence, 6)

        if gap >= conflict_gap:
            return self._decide(
                topic, ranked, top, ["confidence_threshold", "confidence_gap"],
                f"confidence {top.confidence:.2f} leads by {gap:.2f} >= conflictGap {conflict_gap:.2f}",
                gap=gap,
            )

        noise_floor = round(conflict_gap * thresholds.max_ambiguity, 6)
        if gap >= noise_floor:
            group = [
                c for c in ranked
                if round(top.confidence - c.confidence, 6) < conflict_gap and c.confidence >= accept
            ]
            winner, source = self._apply_tiebreakers(group)
            if winner is not None:
                return self._decide(
                    topic, ranked, winner, ["confidence_threshold", f"tiebreaker:{source}"],
                    f"near tie (gap {gap:.2f}) broken by {source} evidence",
                    gap=gap,
                )

        return Resolution(
            topic=topic,
            outcome=ResolutionOutcome.MANUAL_REVIEW,
            candidates=ranked,
            gap=gap,
            justification=(
                f"{len(ranked)} competing inferences for {topic} are within "
                f"{gap:.2f} (conflictGap {conflict_gap:.2f}) and no tiebreaker applies"
            ),
        )

    def _apply_tiebreakers(
        self, group: list[Candidate]
    ) -> tuple[Optional[Candidate], Optional[str]]:
        for source in self.policy.tiebreakers:
            backers = [c for c in group if source in c.source_types]
            if len(backers) == 1:
                return backers[0], source
            if backers:
                # The highest-priority source backs several candidates
                return None, None
        return None, None

    def _decide(
        self,
        topic: str,
        ranked: list[Candidate],
        selected: Candidate,
        rules: list[str],
        reason: str,
        gap: Optional[float] = None,
    ) -> Resolution:
        inference = selected.inference
        outcome = (
            ResolutionOutcome.TIEBREAK_RESOLVED
            if any(rule.startswith("tiebreaker:") for rule in rules)
            else ResolutionOutcome.AUTO_RESOLVED
        )
        return Resolution(
            topic=topic,
            outcome=outcome,
            candidates=ranked,
            selected=selected,
            applied_rules=rules,
            gap=gap,
            justification=(
                f"Selected {inference.value!r} from {inference.method} "
                f"({selected.source_type}): {reason}"
            ),
        )
