"""Helpers that turn run configuration into a concrete policy."""

import logging
from typing import Any, Optional

from .resolver import PolicyResolver
from .schemas import Policy

logger = logging.getLogger(__name__)

# Application settings keys that map onto pricing fields
_PRICING_SETTINGS = ("currency", "maxConcurrent", "retries", "timeoutMs")


def load_policy(
    resolver: PolicyResolver,
    policy_id: Optional[str] = None,
    project_overrides: Optional[dict[str, Any]] = None,
    scenario_id: Optional[str] = None,
) -> Policy:
    """
    Resolve ``policy_id`` and apply any project overrides on top of it.

    An override without its own id becomes ``<baseId>_<scenarioId>`` (or
    ``<baseId>_custom`` with no scenario).
    """
    base = resolver.get_policy(policy_id)
    if not project_overrides:
        return base

    derived_id = f"{base.id}_{scenario_id or 'custom'}"
    return resolver.merge(base, project_overrides, policy_id=derived_id)


def load_default_policy(resolver: PolicyResolver) -> Policy:
    return resolver.default_policy


def policy_from_settings(settings: dict[str, Any]) -> dict[str, Any]:
    """Extract pricing overrides from an application settings mapping."""
    pricing = {key: settings[key] for key in _PRICING_SETTINGS if key in settings}
    return {"pricing": pricing} if pricing else {}
