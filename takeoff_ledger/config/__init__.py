"""Configuration module for the takeoff ledger."""

from .feature_flags import DEFAULT_FEATURE_FLAGS, FeatureFlags, FeatureFlagSettings
from .settings import Settings, get_settings

__all__ = [
    "DEFAULT_FEATURE_FLAGS",
    "FeatureFlagSettings",
    "FeatureFlags",
    "Settings",
    "get_settings",
]
