"""
Feature flags for gradual rollout of pipeline behaviour.

Flags live on an explicit ``FeatureFlags`` service that is constructed once
per process and injected into pipelines. Per-run overrides produce a copy
so that one run never changes what another run observes.

Process-wide values come from ``FEATURE_<NAME>`` environment variables,
e.g. ``FEATURE_USE_NEW_LEDGER=false``.
"""

import logging
from typing import Mapping, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class FeatureFlagSettings(BaseSettings):
    """Flag values from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FEATURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    use_new_ledger: bool = True
    enable_audit_trail: bool = True
    use_conflict_resolver: bool = True
    enable_vision_strategies: bool = False

    def as_flags(self) -> dict[str, bool]:
        return {to_camel(name): value for name, value in self.model_dump().items()}


DEFAULT_FEATURE_FLAGS: dict[str, bool] = {
    to_camel(name): field.default for name, field in FeatureFlagSettings.model_fields.items()
}


def load_flag_settings() -> FeatureFlagSettings:
    """
    Read flag settings, keeping the default for any unparseable value.

    A bad value is logged and ignored rather than failing process start.
    """
    try:
        return FeatureFlagSettings()
    except ValidationError as e:
        defaults = {}
        for error in e.errors():
            name = str(error["loc"][0])
            logger.warning(
                f"Ignoring FEATURE_{name.upper()}={error.get('input')!r}: {error['msg']}"
            )
            defaults[name] = FeatureFlagSettings.model_fields[name].default
        # Init values take precedence over environment values
        return FeatureFlagSettings(**defaults)


class FeatureFlags:
    """Name to boolean map with defaults; unknown flags read as disabled."""

    def __init__(self, overrides: Optional[Mapping[str, bool]] = None):
        self._flags: dict[str, bool] = dict(DEFAULT_FEATURE_FLAGS)
        if overrides:
            self._flags.update({k: bool(v) for k, v in overrides.items()})

    def is_enabled(self, flag: str) -> bool:
        return self._flags.get(flag, False)

    def set_flag(self, flag: str, enabled: bool) -> None:
        self._flags[flag] = bool(enabled)

    def get_all_flags(self) -> dict[str, bool]:
        return dict(self._flags)

    def reset_to_defaults(self) -> None:
        self._flags = dict(DEFAULT_FEATURE_FLAGS)

    def with_overrides(self, overrides: Optional[Mapping[str, bool]]) -> "FeatureFlags":
        """Return an independent copy with ``overrides`` applied."""
        flags = FeatureFlags(self._flags)
        if overrides:
            for name, enabled in overrides.items():
                flags.set_flag(name, enabled)
        return flags

    def load_from_environment(self) -> None:
        """Apply ``FEATURE_*`` environment values for every known flag."""
        self._flags.update(load_flag_settings().as_flags())

    @classmethod
    def from_environment(cls) -> "FeatureFlags":
        flags = cls()
        flags.load_from_environment()
        return flags
