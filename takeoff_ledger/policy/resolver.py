"""
Policy resolution.

``PolicyResolver`` is constructed once per process and passed to every run.
It always holds a default policy and never fails a lookup: unknown ids and
invalid overrides resolve to the default with a logged warning.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from .schemas import (
    ExtractionConfig,
    Policy,
    PolicyValidationReport,
    PricingConfig,
    Priors,
    Thresholds,
)

logger = logging.getLogger(__name__)


DEFAULT_POLICY_ID = "default"

# Older run records reference these ids; they map onto the default policy
LEGACY_POLICY_IDS = frozenset({"legacy_compat_v0"})

MIN_ACCEPT_INFERENCE = 0.5
MIN_CONFLICT_GAP = 0.1
MAX_AMBIGUITY = 0.5
RELIABILITY_SUM_RANGE = (2.0, 5.0)


def build_default_policy(today: Optional[date] = None) -> Policy:
    """The always-available default policy."""
    return Policy(
        id=DEFAULT_POLICY_ID,
        version="1.0.0",
        thresholds=Thresholds(
            accept_inference=0.7,
            conflict_gap=0.15,
            max_ambiguity=0.3,
        ),
        priors=Priors(
            source_reliability={
                "schedule_table": 0.9,
                "explicit_note": 0.85,
                "plan_symbol": 0.8,
                "vision_llm": 0.75,
                "assumed_default": 0.6,
            }
        ),
        tiebreakers=["schedule_table", "explicit_note", "plan_symbol", "vision_llm"],
        extraction=ExtractionConfig(
            max_vision_tokens=100000,
            max_pages=50,
            enable_geometry=True,
        ),
        pricing=PricingConfig(
            min_accept=0.8,
            max_concurrent=5,
            retries=3,
            timeout_ms=30000,
            jitter_ms=1000,
            max_quote_age_days=7,
            currency="USD",
            fx_rate=1.0,
            price_as_of=today or date.today(),
            vendor_prefs=[],
        ),
    )


def _normalize_keys(overrides: dict[str, Any]) -> dict[str, Any]:
    """Accept camelCase or snake_case keys for policy fields and sections."""
    normalized: dict[str, Any] = {}
    for key, value in overrides.items():
        if isinstance(value, dict):
            # Section keys are field names; anything nested deeper (the
            # reliability map) is data and keeps its keys
            value = {to_snake(k): v for k, v in value.items()}
        normalized[to_snake(key)] = value
    return normalized


def merge_overrides(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """
    Merge ``overrides`` onto ``base``.

    Objects merge key by key; lists and scalars replace the base value.
    """
    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_overrides(current, value)
        else:
            merged[key] = value
    return merged


def check_policy_rules(policy: Policy) -> list[str]:
    """Domain rules beyond the schema shape."""
    errors: list[str] = []
    thresholds = policy.thresholds

    if thresholds.accept_inference < MIN_ACCEPT_INFERENCE:
        errors.append(
            f"acceptInference must be at least {MIN_ACCEPT_INFERENCE} "
            f"(got {thresholds.accept_inference})"
        )
    if thresholds.conflict_gap < MIN_CONFLICT_GAP:
        errors.append(
            f"conflictGap must be at least {MIN_CONFLICT_GAP} (got {thresholds.conflict_gap})"
        )
    if thresholds.max_ambiguity > MAX_AMBIGUITY:
        errors.append(
            f"maxAmbiguity must be at most {MAX_AMBIGUITY} (got {thresholds.max_ambiguity})"
        )

    reliability = policy.priors.source_reliability
    total = sum(reliability.values())
    low, high = RELIABILITY_SUM_RANGE
    if not low <= total <= high:
        errors.append(
            f"sum of sourceReliability must be within [{low}, {high}] (got {total:.2f})"
        )

    for source in policy.tiebreakers:
        if source not in reliability:
            errors.append(f"tiebreaker '{source}' has no sourceReliability entry")

    return errors


def validate_policy(policy: Union[Policy, dict[str, Any]]) -> PolicyValidationReport:
    """Validate shape and domain rules, reporting every problem found."""
    if not isinstance(policy, Policy):
        try:
            policy = Policy.model_validate(policy)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            return PolicyValidationReport(is_valid=False, errors=errors)

    errors = check_policy_rules(policy)
    return PolicyValidationReport(is_valid=not errors, errors=errors)


class PolicyResolver:
    """
    Holds the default policy and any registered project policies.

    Example:
        resolver = PolicyResolver()
        resolver.load_project_policy("proj_42", {"thresholds": {"acceptInference": 0.8}})
        policy = resolver.get_policy("proj_42")
    """

    def __init__(self, default_policy: Optional[Policy] = None):
        self._default = default_policy or build_default_policy()
        self._policies: dict[str, Policy] = {}

    @property
    def default_policy(self) -> Policy:
        return self._default

    def get_policy(self, policy_id: Optional[str] = None) -> Policy:
        """Exact match if registered, otherwise the default policy."""
        if not policy_id or policy_id == self._default.id or policy_id in LEGACY_POLICY_IDS:
            return self._default

        policy = self._policies.get(policy_id)
        if policy is None:
            logger.warning(f"Policy '{policy_id}' not found, using default policy")
            return self._default
        return policy

    def has_policy(self, policy_id: str) -> bool:
        return policy_id == self._default.id or policy_id in self._policies

    def available_policy_ids(self) -> list[str]:
        return [self._default.id, *self._policies.keys()]

    def register_policy(self, policy: Policy) -> Policy:
        """Register a fully-formed policy; invalid policies are rejected."""
        report = validate_policy(policy)
        if not report.is_valid:
            raise ValueError(f"Invalid policy '{policy.id}': {'; '.join(report.errors)}")
        self._policies[policy.id] = policy
        return policy

    def merge(
        self,
        base: Policy,
        overrides: dict[str, Any],
        policy_id: Optional[str] = None,
    ) -> Policy:
        """
        Merge partial ``overrides`` onto ``base`` and validate the result.

        Returns the unmodified default policy when the merge is invalid.
        """
        normalized = _normalize_keys(overrides)
        if policy_id is not None:
            normalized.setdefault("id", policy_id)

        merged = merge_overrides(base.model_dump(), normalized)
        report = validate_policy(merged)
        if not report.is_valid:
            logger.warning(
                f"Invalid policy overrides for '{merged.get('id')}', using default policy: "
                f"{'; '.join(report.errors)}"
            )
            return self._default
        return Policy.model_validate(merged)

    def load_project_policy(self, project_id: str, overrides: dict[str, Any]) -> Policy:
        policy = self.merge(self._default, overrides, policy_id=project_id)
        if policy is not self._default:
            self._policies[project_id] = policy
            logger.info(f"Loaded policy for project {project_id} (id={policy.id})")
        return policy

    def create_custom_policy(self, overrides: dict[str, Any]) -> Policy:
        return self.merge(self._default, overrides, policy_id=f"{self._default.id}_custom")

    def validate_policy(self, policy: Union[Policy, dict[str, Any]]) -> PolicyValidationReport:
        return validate_policy(policy)

    def load_policies_file(self, path: Union[str, Path]) -> list[str]:
        """
        Load project policies from a JSON object of ``{projectId: overrides}``.

        Returns the project ids whose overrides were accepted.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Policy file {path} must contain a JSON object")

        loaded = []
        for project_id, overrides in data.items():
            policy = self.load_project_policy(project_id, overrides)
            if policy is not self._default:
                loaded.append(project_id)
        return loaded

    def clear_cache(self) -> None:
        self._policies.clear()
