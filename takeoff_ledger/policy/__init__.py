"""Versioned resolution policies and the resolver that serves them."""

from .loader import load_default_policy, load_policy, policy_from_settings
from .resolver import (
    DEFAULT_POLICY_ID,
    PolicyResolver,
    build_default_policy,
    merge_overrides,
    validate_policy,
)
from .schemas import (
    ExtractionConfig,
    Policy,
    PolicyValidationReport,
    PricingConfig,
    Priors,
    Thresholds,
)

__all__ = [
    "DEFAULT_POLICY_ID",
    "ExtractionConfig",
    "Policy",
    "PolicyResolver",
    "PolicyValidationReport",
    "PricingConfig",
    "Priors",
    "Thresholds",
    "build_default_policy",
    "load_default_policy",
    "load_policy",
    "merge_overrides",
    "policy_from_settings",
    "validate_policy",
]
