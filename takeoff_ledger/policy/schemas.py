"""
Policy schema.

A policy is a versioned, immutable record of the thresholds, source
reliability priors and tiebreaker ordering used to resolve competing
inferences, plus extraction and pricing limits handed to collaborators.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PolicyModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class Thresholds(PolicyModel):
    accept_inference: float = Field(..., ge=0, le=1)
    conflict_gap: float = Field(..., ge=0, le=1)
    max_ambiguity: float = Field(..., ge=0, le=1)


class Priors(PolicyModel):
    source_reliability: dict[str, Annotated[float, Field(ge=0, le=1)]] = Field(
        ..., description="Source type -> reliability weight"
    )


class ExtractionConfig(PolicyModel):
    max_vision_tokens: int = Field(..., ge=1)
    max_pages: int = Field(..., ge=1)
    enable_geometry: bool = True


class PricingConfig(PolicyModel):
    min_accept: float = Field(..., ge=0, le=1)
    max_concurrent: int = Field(..., ge=1)
    retries: int = Field(..., ge=0)
    timeout_ms: int = Field(..., ge=1)
    jitter_ms: int = Field(..., ge=0)
    max_quote_age_days: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    fx_rate: float = Field(..., gt=0)
    price_as_of: date = Field(default_factory=date.today)
    vendor_prefs: list[str] = Field(default_factory=list)


class Policy(PolicyModel):
    """Versioned resolution policy, fixed for the lifetime of a run."""

    id: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    thresholds: Thresholds
    priors: Priors
    tiebreakers: list[str] = Field(default_factory=list)
    extraction: ExtractionConfig
    pricing: PricingConfig


@dataclass
class PolicyValidationReport:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors)}
