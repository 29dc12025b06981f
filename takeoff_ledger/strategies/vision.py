"""Strategies over vision-model findings."""

from collections import Counter

from ..ledger import EvidenceType, ImageContent
from .base import BaseStrategy, StrategyContext, StrategyResult


class VisionWallTypeStrategy(BaseStrategy):
    """Wall type from walls detected by the vision model."""

    name = "VisionWallTypeStrategy"
    topic = "wall_type"
    method = "fromVisionLLM"
    source_type = "vision_llm"
    priority = 50
    required_flag = "enableVisionStrategies"

    @staticmethod
    def _wall_types(context: StrategyContext) -> list[tuple[str, str]]:
        found = []
        for evidence in context.available_evidence:
            if evidence.type != EvidenceType.IMAGE or not isinstance(evidence.content, ImageContent):
                continue
            for element in evidence.content.detected_elements:
                if element.get("type") == "wall" and element.get("wallType"):
                    found.append((evidence.id, str(element["wallType"])))
        return found

    def can_handle(self, context: StrategyContext) -> bool:
        return bool(self._wall_types(context))

    async def execute(self, context: StrategyContext) -> StrategyResult:
        found = self._wall_types(context)
        if not found:
            return self.failure("Vision findings contain no typed walls")

        counts = Counter(wall_type for _, wall_type in found)
        winner, votes = counts.most_common(1)[0]
        return self.success(
            value=winner,
            confidence=votes / len(found),
            explanation=f"{votes} of {len(found)} detected wall(s) are {winner}",
            used_evidence=list(dict.fromkeys(eid for eid, wt in found if wt == winner)),
        )
