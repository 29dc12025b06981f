"""Provenance ledger: entity schemas, the append-only store and recording helpers."""

from .errors import (
    LedgerCorruptionError,
    LedgerError,
    LedgerValidationError,
    ReferentialIntegrityError,
)
from .ledger import InferenceLedger, IntegrityReport
from .recorder import (
    LedgerRecorder,
    RecorderContext,
    append_decision,
    append_evidence,
    append_flag,
    append_inference,
    create_context,
)
from .schemas import (
    ASSUMED_DEFAULT_SOURCE,
    EXTRACTOR_SOURCE_TYPES,
    Alternative,
    Assumption,
    AssumptionBasis,
    Decision,
    DimensionContent,
    Evidence,
    EvidenceContent,
    EvidenceSource,
    EvidenceType,
    Flag,
    FlagSeverity,
    FlagType,
    Inference,
    LedgerMetadata,
    LedgerSnapshot,
    LedgerSummary,
    ImageContent,
    PolicyUsed,
    ScheduleContent,
    SymbolContent,
    TableContent,
    TextContent,
    generate_id,
    source_type_for_extractor,
    utc_now,
)

__all__ = [
    "ASSUMED_DEFAULT_SOURCE",
    "EXTRACTOR_SOURCE_TYPES",
    "Alternative",
    "Assumption",
    "AssumptionBasis",
    "Decision",
    "DimensionContent",
    "Evidence",
    "EvidenceContent",
    "EvidenceSource",
    "EvidenceType",
    "Flag",
    "FlagSeverity",
    "FlagType",
    "Inference",
    "InferenceLedger",
    "IntegrityReport",
    "LedgerCorruptionError",
    "LedgerError",
    "LedgerMetadata",
    "LedgerRecorder",
    "LedgerSnapshot",
    "LedgerSummary",
    "LedgerValidationError",
    "ImageContent",
    "PolicyUsed",
    "ScheduleContent",
    "SymbolContent",
    "TableContent",
    "TextContent",
    "RecorderContext",
    "ReferentialIntegrityError",
    "append_decision",
    "append_evidence",
    "append_flag",
    "append_inference",
    "create_context",
    "generate_id",
    "source_type_for_extractor",
    "utc_now",
]
