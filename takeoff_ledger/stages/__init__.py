"""The four pipeline stages, in execution order."""

from .assumption_seeding import (
    CODE_DEFAULTS,
    REGIONAL_DEFAULTS,
    AssumptionSeedingOutput,
    AssumptionSeedingStage,
)
from .conflict_resolution import ConflictResolutionOutput, ConflictResolutionStage
from .evidence_collection import (
    EvidenceCollectionInput,
    EvidenceCollectionOutput,
    EvidenceCollectionStage,
)
from .multi_strategy_inference import (
    MultiStrategyInferenceOutput,
    MultiStrategyInferenceStage,
)

__all__ = [
    "CODE_DEFAULTS",
    "REGIONAL_DEFAULTS",
    "AssumptionSeedingOutput",
    "AssumptionSeedingStage",
    "ConflictResolutionOutput",
    "ConflictResolutionStage",
    "EvidenceCollectionInput",
    "EvidenceCollectionOutput",
    "EvidenceCollectionStage",
    "MultiStrategyInferenceOutput",
    "MultiStrategyInferenceStage",
]
