"""
Multi-strategy inference stage.

Runs every registered strategy that can handle the current evidence and
records one Inference per successful strategy, so a topic can end up with
several competing answers for ConflictResolution to weigh. Topics no
strategy covers may still get a low-confidence pattern inference when the
right evidence and assumptions co-occur.
"""

import logging
from statistics import mean
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from ..ledger import (
    Assumption,
    Evidence,
    EvidenceType,
    Flag,
    FlagSeverity,
    FlagType,
    Inference,
    LedgerError,
)
from ..pipeline.context import PipelineContext
from ..pipeline.stage import Stage, StageCancelledError, StageTimeoutError
from ..strategies import (
    BaseStrategy,
    StrategyContext,
    StrategyResult,
    default_strategies,
    materialize_confidence,
)
from ..strategies.parsing import evidence_text, symbol_type

logger = logging.getLogger(__name__)

PATTERN_METHOD = "fromEvidencePatterns"
OPENING_SYMBOLS = ("opening_symbol", "door_symbol", "window_symbol")
# Stage data key: names of strategies already flagged as failed in this run
FAILED_STRATEGIES_KEY = "failed_strategies"


class MultiStrategyInferenceOutput(BaseModel):
    inferences: list[Inference]
    topics: list[str] = Field(default_factory=list)
    strategies_run: int = 0
    strategy_failures: int = 0


class MultiStrategyInferenceStage(Stage[Any, MultiStrategyInferenceOutput]):
    """Produce competing inferences per topic from registered strategies."""

    name = "MultiStrategyInference"

    def __init__(
        self,
        strategies: Optional[list[BaseStrategy]] = None,
        enable_patterns: bool = True,
    ):
        self._strategies: list[BaseStrategy] = (
            list(strategies) if strategies is not None else default_strategies()
        )
        self.enable_patterns = enable_patterns

    def add_strategy(self, strategy: BaseStrategy) -> None:
        self._strategies.append(strategy)

    def get_strategies(self) -> list[BaseStrategy]:
        return sorted(self._strategies, key=lambda s: s.get_priority())

    async def execute(
        self, input: Any, context: PipelineContext
    ) -> MultiStrategyInferenceOutput:
        ledger = context.ledger
        before = len(ledger.inferences)
        evidence = ledger.evidence
        assumptions = ledger.get_active_assumptions()
        document = context.get_stage_data("document") or {}

        # Methods already recorded by an earlier attempt of this stage
        recorded = {(i.topic, i.method) for i in ledger.inferences}
        failed: list[str] = context.get_stage_data(FAILED_STRATEGIES_KEY, [])
        context.set_stage_data(FAILED_STRATEGIES_KEY, failed)

        runs = 0
        failures = 0
        for strategy in self.get_strategies():
            if strategy.required_flag and not context.is_feature_enabled(strategy.required_flag):
                logger.debug(f"Skipping {strategy.name}: {strategy.required_flag} disabled")
                continue
            if (strategy.topic, strategy.method) in recorded or strategy.name in failed:
                continue
            context.check_cancelled()

            strategy_context = StrategyContext(
                topic=strategy.topic,
                policy=context.policy,
                available_evidence=evidence,
                available_assumptions=assumptions,
                document_id=document.get("id"),
            )
            try:
                if not strategy.can_handle(strategy_context):
                    continue
                runs += 1
                result = await strategy.execute(strategy_context)
            except (StageTimeoutError, StageCancelledError):
                raise
            except Exception as e:
                failures += 1
                failed.append(strategy.name)
                logger.warning(f"Strategy {strategy.name} failed: {e}")
                self._flag(
                    context,
                    FlagType.POLICY_VIOLATION,
                    f"Strategy {strategy.name} failed: {e}",
                    strategy.topic,
                )
                continue

            if not result.success:
                failures += 1
                failed.append(strategy.name)
                logger.info(f"Strategy {strategy.name} produced no answer: {result.error}")
                self._flag(
                    context,
                    FlagType.MISSING_INFO,
                    f"Strategy {strategy.name} produced no answer: {result.error}",
                    strategy.topic,
                    evidence_ids=[e for e in result.used_evidence if ledger.get_evidence(e)],
                )
                continue

            try:
                ledger.add_inference(self._materialize(strategy, result, context))
            except (LedgerError, ValidationError) as e:
                failures += 1
                failed.append(strategy.name)
                logger.warning(f"Strategy {strategy.name} returned an unrecordable result: {e}")
                self._flag(
                    context,
                    FlagType.POLICY_VIOLATION,
                    f"Strategy {strategy.name} returned an unrecordable result: {e}",
                    strategy.topic,
                )

        if self.enable_patterns:
            covered = {s.topic for s in self._strategies}
            for inference in self._pattern_inferences(evidence, assumptions, context.stage):
                if inference.topic in covered or (inference.topic, PATTERN_METHOD) in recorded:
                    continue
                ledger.add_inference(inference)

        added = ledger.inferences[before:]
        topics = list(dict.fromkeys(i.topic for i in added))
        logger.info(
            f"Recorded {len(added)} inference(s) over {len(topics)} topic(s) "
            f"from {runs} strategy run(s), {failures} failure(s)"
        )
        return MultiStrategyInferenceOutput(
            inferences=added,
            topics=topics,
            strategies_run=runs,
            strategy_failures=failures,
        )

    def _materialize(
        self, strategy: BaseStrategy, result: StrategyResult, context: PipelineContext
    ) -> Inference:
        ledger = context.ledger
        reliability = context.get_source_reliability(strategy.source_type)

        used_evidence = [ledger.get_evidence(e) for e in result.used_evidence]
        used_assumptions = [ledger.get_assumption(a) for a in result.used_assumptions]
        if any(e is not None for e in used_evidence):
            backing = max(e.source.confidence for e in used_evidence if e is not None)
        elif any(a is not None for a in used_assumptions):
            backing = mean(a.confidence for a in used_assumptions if a is not None)
        else:
            backing = reliability

        # Missing ids are left in place so the append reports them
        return Inference(
            topic=strategy.topic,
            value=result.value,
            confidence=materialize_confidence(result.confidence, backing, reliability),
            method=strategy.method,
            used_evidence=result.used_evidence,
            used_assumptions=result.used_assumptions,
            explanation=result.explanation,
            alternatives=result.alternatives,
            stage=context.stage or self.name,
        )

    @staticmethod
    def _flag(
        context: PipelineContext,
        flag_type: FlagType,
        message: str,
        topic: str,
        evidence_ids: Optional[list[str]] = None,
    ) -> None:
        context.ledger.add_flag(
            Flag(
                type=flag_type,
                severity=FlagSeverity.MEDIUM,
                message=message,
                topic=topic,
                evidence_ids=evidence_ids or [],
            )
        )

    @staticmethod
    def _pattern_inferences(
        evidence: list[Evidence],
        assumptions: list[Assumption],
        stage: str,
    ) -> list[Inference]:
        def best(key: str) -> Optional[Assumption]:
            matches = [a for a in assumptions if a.key == key]
            return max(matches, key=lambda a: a.confidence) if matches else None

        stage = stage or MultiStrategyInferenceStage.name
        inferences = []

        walls = [e for e in evidence if symbol_type(e) == "wall_symbol"]
        wall_type = best("wall_type")
        if walls and wall_type is not None:
            inferences.append(Inference(
                topic="wall_type_pattern",
                value={"wall_count": len(walls), "wall_type": wall_type.value},
                confidence=0.7,
                method=PATTERN_METHOD,
                used_evidence=[e.id for e in walls],
                used_assumptions=[wall_type.id],
                explanation=f"{len(walls)} wall symbol(s) with wall type {wall_type.value}",
                stage=stage,
            ))

        openings = [e for e in evidence if symbol_type(e) in OPENING_SYMBOLS]
        bearing = best("header_bearing_length")
        if openings and bearing is not None:
            inferences.append(Inference(
                topic="header_requirements",
                value={"opening_count": len(openings), "bearing_length": bearing.value},
                confidence=0.6,
                method=PATTERN_METHOD,
                used_evidence=[e.id for e in openings],
                used_assumptions=[bearing.id],
                explanation=f"{len(openings)} opening(s) need headers with {bearing.value}in bearing",
                stage=stage,
            ))

        sheathing_notes = [
            e for e in evidence
            if e.type == EvidenceType.TEXT and "sheathing" in evidence_text(e).lower()
        ]
        edge = best("sheathing_edge_spacing")
        field_spacing = best("sheathing_field_spacing")
        if sheathing_notes and edge is not None and field_spacing is not None:
            inferences.append(Inference(
                topic="sheathing_nailing",
                value={"edge_spacing": edge.value, "field_spacing": field_spacing.value},
                confidence=0.65,
                method=PATTERN_METHOD,
                used_evidence=[e.id for e in sheathing_notes],
                used_assumptions=[edge.id, field_spacing.id],
                explanation=(
                    f"Sheathing noted; nailing {edge.value}in edge / {field_spacing.value}in field"
                ),
                stage=stage,
            ))

        return inferences
