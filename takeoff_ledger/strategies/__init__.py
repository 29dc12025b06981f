"""Inference strategies and the default registry."""

from .base import BaseStrategy, StrategyContext, StrategyResult, materialize_confidence
from .defaults import StudSpacingDefaultStrategy
from .joist_schedule import JoistScheduleStrategy, JoistSpeciesScheduleStrategy
from .notes import JoistSpeciesNoteStrategy, StudSpacingNoteStrategy
from .vision import VisionWallTypeStrategy


def default_strategies() -> list[BaseStrategy]:
    """Fresh instances of every built-in strategy, in priority order."""
    strategies: list[BaseStrategy] = [
        JoistScheduleStrategy(),
        JoistSpeciesScheduleStrategy(),
        JoistSpeciesNoteStrategy(),
        StudSpacingNoteStrategy(),
        StudSpacingDefaultStrategy(),
        VisionWallTypeStrategy(),
    ]
    return sorted(strategies, key=lambda s: s.get_priority())


__all__ = [
    "BaseStrategy",
    "JoistScheduleStrategy",
    "JoistSpeciesNoteStrategy",
    "JoistSpeciesScheduleStrategy",
    "StrategyContext",
    "StrategyResult",
    "StudSpacingDefaultStrategy",
    "StudSpacingNoteStrategy",
    "VisionWallTypeStrategy",
    "default_strategies",
    "materialize_confidence",
]
