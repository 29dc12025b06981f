"""
Conflict resolution stage.

Applies the run's policy to every topic with inferences: decided topics
get a Decision, the rest get a CONFLICT or LOW_CONFIDENCE flag for manual
review. A topic that cannot be processed is flagged as a critical policy
violation and the remaining topics still run.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from ..ledger import Decision, Flag, FlagSeverity, FlagType
from ..pipeline.context import PipelineContext
from ..pipeline.stage import Stage
from ..resolution import ConflictResolver, ResolutionOutcome

logger = logging.getLogger(__name__)

_REVIEW_FLAGS = (FlagType.CONFLICT, FlagType.LOW_CONFIDENCE)


class ConflictResolutionOutput(BaseModel):
    decisions: list[Decision]
    flags: list[Flag]
    resolution_summary: dict[str, int] = Field(default_factory=dict)


class ConflictResolutionStage(Stage[Any, ConflictResolutionOutput]):
    """Turn competing inferences into decisions under the run's policy."""

    name = "ConflictResolution"

    async def execute(self, input: Any, context: PipelineContext) -> ConflictResolutionOutput:
        ledger = context.ledger
        resolver = ConflictResolver(context.policy)
        decisions_before = len(ledger.decisions)
        flags_before = len(ledger.flags)

        summary = {outcome.value: 0 for outcome in ResolutionOutcome}
        summary["policy_violations"] = 0

        for topic in ledger.get_topics():
            if self._already_handled(context, topic):
                continue
            try:
                resolution = resolver.resolve(
                    topic, ledger.get_inferences_by_topic(topic), ledger.get_evidence
                )
                decision_id = None
                if resolution.is_decided:
                    decision = ledger.add_decision(
                        resolution.to_decision(context.policy, context.stage or self.name)
                    )
                    decision_id = decision.id
                    if context.tracer is not None and context.is_feature_enabled("enableAuditTrail"):
                        context.tracer.log_decision(
                            context.trace_id,
                            topic,
                            decision.selected_value,
                            resolution.applied_rules,
                            len(decision.competing_inferences),
                        )
                    context.record_trace_event(
                        "decision_made",
                        {"topic": topic, "decisionId": decision.id, "rules": resolution.applied_rules},
                    )
                flag = resolution.to_flag(decision_id)
                if flag is not None:
                    ledger.add_flag(flag)
                summary[resolution.outcome.value] += 1
                logger.debug(f"Topic {topic}: {resolution.outcome.value}")
            except Exception as e:
                logger.error(f"Failed to resolve topic {topic}: {e}")
                summary["policy_violations"] += 1
                ledger.add_flag(
                    Flag(
                        type=FlagType.POLICY_VIOLATION,
                        severity=FlagSeverity.CRITICAL,
                        message=f"Failed to resolve topic {topic}: {e}",
                        topic=topic,
                    )
                )

        logger.info(f"Conflict resolution summary: {summary}")
        return ConflictResolutionOutput(
            decisions=ledger.decisions[decisions_before:],
            flags=ledger.flags[flags_before:],
            resolution_summary=summary,
        )

    @staticmethod
    def _already_handled(context: PipelineContext, topic: str) -> bool:
        """True when an earlier attempt already decided or flagged ``topic``."""
        ledger = context.ledger
        if ledger.get_decisions_by_topic(topic):
            return True
        return any(
            f.type in _REVIEW_FLAGS and not f.resolved for f in ledger.get_flags_by_topic(topic)
        )
