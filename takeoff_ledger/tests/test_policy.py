"""Tests for policy resolution."""

import json
from datetime import date

import pytest

from takeoff_ledger.policy import (
    DEFAULT_POLICY_ID,
    PolicyResolver,
    build_default_policy,
    load_default_policy,
    load_policy,
    merge_overrides,
    policy_from_settings,
    validate_policy,
)


class TestDefaultPolicy:
    """Tests for the built-in default policy."""

    def test_default_values(self):
        """Test default thresholds and priors."""
        policy = build_default_policy(today=date(2024, 1, 15))
        assert policy.id == DEFAULT_POLICY_ID
        assert policy.thresholds.accept_inference == 0.7
        assert policy.thresholds.conflict_gap == 0.15
        assert policy.thresholds.max_ambiguity == 0.3
        assert policy.priors.source_reliability["schedule_table"] == 0.9
        assert policy.tiebreakers[0] == "schedule_table"
        assert policy.pricing.price_as_of == date(2024, 1, 15)
        assert validate_policy(policy).is_valid

    def test_camel_case_dump(self):
        """Test policies serialize with camelCase keys."""
        data = build_default_policy().model_dump(mode="json", by_alias=True)
        assert "acceptInference" in data["thresholds"]
        assert "sourceReliability" in data["priors"]
        assert "priceAsOf" in data["pricing"]


class TestResolver:
    """Tests for PolicyResolver lookups and merges."""

    def test_unknown_falls_back_to_default(self):
        """Test unknown ids resolve to the default policy."""
        resolver = PolicyResolver()
        assert resolver.get_policy("does_not_exist") is resolver.default_policy
        assert resolver.get_policy(None) is resolver.default_policy
        assert not resolver.has_policy("does_not_exist")

    def test_legacy_id_maps_to_default(self):
        """Test legacy ids map onto the default policy."""
        resolver = PolicyResolver()
        assert resolver.get_policy("legacy_compat_v0") is resolver.default_policy

    def test_load_project_policy(self):
        """Test camelCase project overrides merge onto the default."""
        resolver = PolicyResolver()
        policy = resolver.load_project_policy(
            "proj_42",
            {
                "thresholds": {"acceptInference": 0.8},
                "tiebreakers": ["explicit_note", "schedule_table"],
            },
        )

        assert policy.id == "proj_42"
        assert policy.thresholds.accept_inference == 0.8
        assert policy.thresholds.conflict_gap == 0.15
        assert policy.tiebreakers == ["explicit_note", "schedule_table"]
        assert resolver.get_policy("proj_42") == policy
        assert resolver.available_policy_ids() == ["default", "proj_42"]

    def test_reliability_keys_preserved(self):
        """Test nested reliability keys merge without renaming."""
        resolver = PolicyResolver()
        policy = resolver.create_custom_policy(
            {"priors": {"sourceReliability": {"vision_llm": 0.5}}}
        )
        reliability = policy.priors.source_reliability
        assert policy.id == "default_custom"
        assert reliability["vision_llm"] == 0.5
        assert reliability["schedule_table"] == 0.9

    def test_invalid_override_returns_default(self):
        """Test rule violations fall back to the unmodified default."""
        resolver = PolicyResolver()
        policy = resolver.load_project_policy(
            "proj_bad", {"thresholds": {"acceptInference": 0.3}}
        )
        assert policy is resolver.default_policy
        assert not resolver.has_policy("proj_bad")

    def test_schema_violation_returns_default(self):
        """Test malformed overrides fall back to the default."""
        resolver = PolicyResolver()
        policy = resolver.create_custom_policy({"thresholds": {"conflictGap": "wide"}})
        assert policy is resolver.default_policy

    def test_register_policy_rejects_invalid(self):
        """Test registering an invalid policy raises."""
        resolver = PolicyResolver()
        bad = build_default_policy().model_copy(
            update={"id": "bad", "tiebreakers": ["carrier_pigeon"]}
        )
        with pytest.raises(ValueError, match="carrier_pigeon"):
            resolver.register_policy(bad)

    def test_load_policies_file(self, tmp_path):
        """Test loading project policies from a JSON file."""
        path = tmp_path / "policies.json"
        path.write_text(json.dumps({
            "commercial": {"thresholds": {"conflictGap": 0.2}},
            "broken": {"thresholds": {"maxAmbiguity": 0.9}},
        }))

        resolver = PolicyResolver()
        assert resolver.load_policies_file(path) == ["commercial"]
        assert resolver.get_policy("commercial").thresholds.conflict_gap == 0.2

        resolver.clear_cache()
        assert resolver.available_policy_ids() == ["default"]


class TestValidation:
    """Tests for policy validation rules."""

    def test_reports_every_rule(self):
        """Test all violated rules are reported together."""
        data = build_default_policy().model_dump()
        data["thresholds"] = {"accept_inference": 0.4, "conflict_gap": 0.05, "max_ambiguity": 0.6}
        data["priors"] = {"source_reliability": {"schedule_table": 0.5}}

        report = validate_policy(data)
        assert not report.is_valid
        assert len(report.errors) == 7

    def test_schema_errors(self):
        """Test shape errors carry their location."""
        report = validate_policy({"id": "x"})
        assert not report.is_valid
        assert any(e.startswith("version") for e in report.errors)


class TestMerge:
    """Tests for override merging helpers."""

    def test_dicts_merge_lists_replace(self):
        """Test merge semantics."""
        base = {"a": {"x": 1, "y": 2}, "tags": [1, 2], "n": 1}
        merged = merge_overrides(base, {"a": {"y": 3}, "tags": [9]})
        assert merged == {"a": {"x": 1, "y": 3}, "tags": [9], "n": 1}
        assert base["a"]["y"] == 2


class TestLoader:
    """Tests for run-level policy loading."""

    def test_load_policy_without_overrides(self):
        """Test no overrides returns the resolved policy as-is."""
        resolver = PolicyResolver()
        assert load_policy(resolver, "default") is resolver.default_policy
        assert load_default_policy(resolver) is resolver.default_policy

    def test_derived_id_uses_scenario(self):
        """Test overrides produce a derived policy id."""
        resolver = PolicyResolver()
        policy = load_policy(
            resolver, "default", {"thresholds": {"acceptInference": 0.75}}, scenario_id="what_if"
        )
        assert policy.id == "default_what_if"
        assert policy.thresholds.accept_inference == 0.75

        custom = load_policy(resolver, None, {"pricing": {"currency": "CAD"}})
        assert custom.id == "default_custom"
        assert custom.pricing.currency == "CAD"

    def test_policy_from_settings(self):
        """Test pricing keys are picked from settings."""
        overrides = policy_from_settings({"currency": "EUR", "retries": 5, "theme": "dark"})
        assert overrides == {"pricing": {"currency": "EUR", "retries": 5}}
        assert policy_from_settings({"theme": "dark"}) == {}
