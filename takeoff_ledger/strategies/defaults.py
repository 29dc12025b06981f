"""Strategies that fall back on seeded assumptions."""

from .base import BaseStrategy, StrategyContext, StrategyResult


class StudSpacingDefaultStrategy(BaseStrategy):
    """Stud spacing from the code-default assumption when nothing better exists."""

    name = "StudSpacingDefaultStrategy"
    topic = "stud_spacing"
    method = "fromCodeDefault"
    source_type = "assumed_default"
    priority = 90

    def can_handle(self, context: StrategyContext) -> bool:
        return self.get_best_assumption(context.available_assumptions, "stud_spacing_default") is not None

    async def execute(self, context: StrategyContext) -> StrategyResult:
        assumption = self.get_best_assumption(context.available_assumptions, "stud_spacing_default")
        if assumption is None:
            return self.failure("No stud_spacing_default assumption")

        return self.success(
            value=assumption.value,
            confidence=1.0,
            explanation=f"Code default stud spacing ({assumption.source or assumption.basis.value})",
            used_assumptions=[assumption.id],
        )
