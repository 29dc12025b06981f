"""
Pydantic schemas for ledger entities.

Field names are snake_case in Python and camelCase on the wire
(``documentId``, ``usedEvidence``, ...) so stored snapshots stay readable by
every consumer of the ledger. Entities are frozen: once appended they are
never edited in place. The one sanctioned change, assumption supersession,
swaps in a copy with ``expires_at`` stamped.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    """Generate a short unique id such as ``ev_1a2b3c4d5e6f``."""
    return f"{prefix}_{uuid4().hex[:12]}"


class EvidenceType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    TABLE = "table"
    SYMBOL = "symbol"
    DIMENSION = "dimension"
    SCHEDULE = "schedule"


class AssumptionBasis(str, Enum):
    CODE_DEFAULT = "code_default"
    USER_OVERRIDE = "user_override"
    DOCUMENT_DERIVED = "document_derived"
    REGIONAL_DEFAULT = "regional_default"


class FlagType(str, Enum):
    CONFLICT = "CONFLICT"
    MISSING_INFO = "MISSING_INFO"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    POLICY_VIOLATION = "POLICY_VIOLATION"


class FlagSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Extractor name -> policy source type used for reliability priors and tiebreakers
EXTRACTOR_SOURCE_TYPES: dict[str, str] = {
    "table_parser": "schedule_table",
    "schedule_parser": "schedule_table",
    "pdf_text_extractor": "explicit_note",
    "symbol_recognition": "plan_symbol",
    "dimension_extractor": "plan_symbol",
    "vision_llm": "vision_llm",
}

ASSUMED_DEFAULT_SOURCE = "assumed_default"


def source_type_for_extractor(extractor_name: str) -> Optional[str]:
    return EXTRACTOR_SOURCE_TYPES.get(extractor_name)


class LedgerModel(BaseModel):
    """Base for ledger records: camelCase aliases, unknown keys rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class LedgerEntity(LedgerModel):
    """Base for the five appendable entities."""

    model_config = ConfigDict(frozen=True, revalidate_instances="always")


# ============================================================================
# Evidence
# ============================================================================


class BoundingBox(LedgerModel):
    x: float
    y: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)


class EvidenceSource(LedgerModel):
    model_config = ConfigDict(frozen=True)

    document_id: str = Field(..., min_length=1)
    page_number: int = Field(..., ge=1)
    bounding_box: Optional[BoundingBox] = None
    extractor_name: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0, le=1)


class TextContent(LedgerModel):
    kind: Literal["text"] = "text"
    text: str
    section: Optional[str] = None


class TableContent(LedgerModel):
    kind: Literal["table"] = "table"
    table_id: Optional[str] = None
    schedule_type: Optional[str] = None
    headers: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)


class ScheduleContent(LedgerModel):
    kind: Literal["schedule"] = "schedule"
    schedule_type: str
    entries: list[dict[str, Any]] = Field(default_factory=list)


class SymbolContent(LedgerModel):
    kind: Literal["symbol"] = "symbol"
    symbol_type: str
    label: Optional[str] = None
    properties: dict[str, Any] = Field(default_factory=dict)


class DimensionContent(LedgerModel):
    kind: Literal["dimension"] = "dimension"
    value: float
    units: str = "ft"
    dimension_type: Optional[str] = None
    label: Optional[str] = None


class ImageContent(LedgerModel):
    kind: Literal["image"] = "image"
    description: str = ""
    detected_elements: list[dict[str, Any]] = Field(default_factory=list)


EvidenceContent = Annotated[
    Union[
        TextContent,
        TableContent,
        ScheduleContent,
        SymbolContent,
        DimensionContent,
        ImageContent,
    ],
    Field(discriminator="kind"),
]


class Evidence(LedgerEntity):
    """A typed, sourced, confidence-scored fact extracted from a document."""

    id: str = Field(default_factory=lambda: generate_id("ev"), min_length=1)
    type: EvidenceType
    source: EvidenceSource
    content: EvidenceContent
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    version: str = "1.0"

    @model_validator(mode="before")
    @classmethod
    def _tag_content(cls, data: Any) -> Any:
        # Content may arrive untagged; its kind is implied by the evidence type
        if isinstance(data, dict):
            content = data.get("content")
            evidence_type = data.get("type")
            if isinstance(content, dict) and "kind" not in content and evidence_type:
                kind = getattr(evidence_type, "value", evidence_type)
                data = {**data, "content": {**content, "kind": kind}}
        return data

    @model_validator(mode="after")
    def _content_matches_type(self) -> "Evidence":
        if self.content.kind != self.type.value:
            raise ValueError(
                f"content kind '{self.content.kind}' does not match evidence type '{self.type.value}'"
            )
        return self

    @property
    def source_type(self) -> Optional[str]:
        return source_type_for_extractor(self.source.extractor_name)


# ============================================================================
# Assumption
# ============================================================================


class Assumption(LedgerEntity):
    """A default or derived value used to fill gaps; supersedable."""

    id: str = Field(default_factory=lambda: generate_id("asm"), min_length=1)
    key: str = Field(..., min_length=1)
    value: Any
    basis: AssumptionBasis
    source: Optional[str] = None
    confidence: float = Field(..., ge=0, le=1)
    supersedes: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utc_now())


# ============================================================================
# Inference
# ============================================================================


class Alternative(LedgerModel):
    model_config = ConfigDict(frozen=True)

    value: Any
    confidence: float = Field(..., ge=0, le=1)
    reason: str = ""


class Inference(LedgerEntity):
    """A candidate answer to a topic backed by evidence and assumptions."""

    id: str = Field(default_factory=lambda: generate_id("inf"), min_length=1)
    topic: str = Field(..., min_length=1)
    value: Any
    confidence: float = Field(..., ge=0, le=1)
    method: str = Field(..., min_length=1)
    used_evidence: list[str] = Field(default_factory=list)
    used_assumptions: list[str] = Field(default_factory=list)
    explanation: str = ""
    alternatives: list[Alternative] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    stage: str = Field(..., min_length=1)


# ============================================================================
# Decision
# ============================================================================


class PolicyUsed(LedgerModel):
    """Snapshot of the policy parameters a decision was made under."""

    model_config = ConfigDict(frozen=True)

    thresholds: dict[str, float]
    tiebreakers: list[str] = Field(default_factory=list)
    applied_rules: list[str] = Field(default_factory=list)


class Decision(LedgerEntity):
    """The policy-selected answer to a topic."""

    id: str = Field(default_factory=lambda: generate_id("dec"), min_length=1)
    topic: str = Field(..., min_length=1)
    selected_value: Any
    selected_inference_id: str = Field(..., min_length=1)
    competing_inferences: list[str] = Field(default_factory=list)
    justification: str = Field(..., min_length=1)
    policy_used: PolicyUsed
    timestamp: datetime = Field(default_factory=utc_now)
    stage: str = Field(..., min_length=1)


# ============================================================================
# Flag
# ============================================================================


class Flag(LedgerEntity):
    """A recorded issue needing attention."""

    id: str = Field(default_factory=lambda: generate_id("flag"), min_length=1)
    type: FlagType
    severity: FlagSeverity
    message: str = Field(..., min_length=1)
    topic: Optional[str] = None
    evidence_ids: list[str] = Field(default_factory=list)
    assumption_ids: list[str] = Field(default_factory=list)
    inference_ids: list[str] = Field(default_factory=list)
    decision_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    resolved: bool = False


# ============================================================================
# Ledger container
# ============================================================================


class LedgerMetadata(LedgerModel):
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    total_stages: int = Field(default=0, ge=0)
    success_stages: int = Field(default=0, ge=0)


class LedgerSnapshot(LedgerModel):
    """Flat, JSON-compatible record of a ledger in append order."""

    id: str = Field(..., min_length=1)
    run_id: str = Field(..., min_length=1)
    policy_id: str = Field(..., min_length=1)
    evidence: list[dict[str, Any]] = Field(default_factory=list)
    assumptions: list[dict[str, Any]] = Field(default_factory=list)
    inferences: list[dict[str, Any]] = Field(default_factory=list)
    decisions: list[dict[str, Any]] = Field(default_factory=list)
    flags: list[dict[str, Any]] = Field(default_factory=list)
    metadata: LedgerMetadata = Field(default_factory=LedgerMetadata)


class LedgerSummary(LedgerModel):
    ledger_id: str
    run_id: str
    policy_id: str
    evidence_count: int
    assumption_count: int
    active_assumption_count: int
    inference_count: int
    decision_count: int
    flag_count: int
    unresolved_flag_count: int
    average_confidence: float
    total_stages: int
    success_stages: int
    completed: bool
