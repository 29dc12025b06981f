"""Tests for the four pipeline stages and the assembled pipeline."""

import asyncio

import pytest

from takeoff_ledger.extraction import ExtractionError, StaticExtractionClient
from takeoff_ledger.ledger import AssumptionBasis, FlagSeverity, FlagType, InferenceLedger
from takeoff_ledger.pipeline import PipelineConfig, PipelineContext
from takeoff_ledger.pipeline.factory import (
    create_document_type_pipeline,
    create_pipeline,
    create_test_pipeline,
    validate_config,
)
from takeoff_ledger.policy import build_default_policy
from takeoff_ledger.stages import (
    CODE_DEFAULTS,
    REGIONAL_DEFAULTS,
    AssumptionSeedingStage,
    ConflictResolutionStage,
    EvidenceCollectionStage,
    MultiStrategyInferenceStage,
)
from takeoff_ledger.strategies import BaseStrategy


def fast_config(**kwargs) -> PipelineConfig:
    values = {"max_retries": 2, "timeout_ms": 5000, "backoff_base_ms": 0, "backoff_max_ms": 0}
    values.update(kwargs)
    return PipelineConfig(**values)


def make_context(**kwargs) -> PipelineContext:
    return PipelineContext(
        ledger=InferenceLedger(policy_id="default"),
        policy=build_default_policy(),
        **kwargs,
    )


def collect(findings, document, context=None):
    context = context or make_context()
    stage = EvidenceCollectionStage(StaticExtractionClient({document["id"]: findings}))
    output = asyncio.run(stage.execute({"document": document}, context))
    return output, context


class TestEvidenceCollection:
    """Tests for EvidenceCollectionStage."""

    def test_collects_all_sub_tasks(self, findings, document):
        """Test every enabled sub-task is appended, vision off by default."""
        output, context = collect(findings, document)

        assert output.document_id == "doc_1"
        assert output.total_evidence == 6
        assert output.by_extractor == {
            "pdf_text_extractor": 2,
            "table_parser": 1,
            "symbol_recognition": 2,
            "dimension_extractor": 1,
        }
        assert output.failed_sub_tasks == []
        assert context.get_stage_data("document")["id"] == "doc_1"

        schedule = [e for e in context.ledger.evidence if e.type.value == "schedule"][0]
        assert schedule.source_type == "schedule_table"
        assert schedule.metadata["documentType"] == "structural"

    def test_vision_when_enabled(self, findings, document):
        """Test vision findings are collected with the flag on."""
        from takeoff_ledger.config import FeatureFlags

        context = make_context(feature_flags=FeatureFlags({"enableVisionStrategies": True}))
        output, _ = collect(findings, document, context)
        assert output.by_extractor["vision_llm"] == 1

    def test_sub_task_failure_is_isolated(self, findings, document):
        """Test one failing extractor does not lose the others."""
        findings["tables"] = ExtractionError("table service down", status_code=503)
        output, _ = collect(findings, document)

        assert output.failed_sub_tasks == ["tables"]
        assert output.total_evidence == 5

    def test_invalid_findings_skipped(self, document):
        """Test malformed findings are dropped individually."""
        findings = {
            "text": [
                {"pageNumber": 0, "confidence": 0.9, "content": {"text": "bad page"}},
                "not an object",
                {"pageNumber": 1, "confidence": 0.9, "content": {"text": "ok"}},
            ]
        }
        output, _ = collect(findings, document)
        assert output.total_evidence == 1

    def test_retry_does_not_duplicate(self, findings, document):
        """Test a second attempt skips extractors already collected."""
        output, context = collect(findings, document)
        again, _ = collect(findings, document, context)
        assert again.total_evidence == output.total_evidence
        assert again.by_extractor == {}

    def test_input_validation(self):
        """Test documents are required."""
        stage = EvidenceCollectionStage(StaticExtractionClient())
        assert not stage.validate_input({"project_documents": []})
        assert not stage.validate_input("doc_1")
        assert stage.validate_input({"document": {"id": "d", "name": "n", "uri": "u"}})


class TestAssumptionSeeding:
    """Tests for AssumptionSeedingStage."""

    def test_seeds_defaults_and_document_facts(self, findings, document):
        """Test code, regional and document-derived assumptions."""
        _, context = collect(findings, document)
        output = asyncio.run(AssumptionSeedingStage().execute(None, context))

        assert output.failed_passes == []
        assert output.by_basis["code_default"] == len(CODE_DEFAULTS)
        assert output.by_basis["regional_default"] == len(REGIONAL_DEFAULTS)
        assert output.by_basis["document_derived"] == 5

        ledger = context.ledger
        assert ledger.get_current_assumption("seismic_category").value == "D"
        assert ledger.get_current_assumption("building_code").value == "IRC 2021"
        assert ledger.get_current_assumption("joist_grade").value == "No.2"
        assert ledger.get_current_assumption("wall_type").value == "exterior_2x6"
        assert ledger.get_current_assumption("stud_spacing_default").source == "IRC R602.3(5)"

    def test_code_default_live_load(self):
        """Test live load is seeded from the residential code default."""
        context = make_context()
        asyncio.run(AssumptionSeedingStage().execute(None, context))

        live_load = context.ledger.get_current_assumption("live_load")
        assert live_load.value == 40
        assert live_load.confidence == 0.95
        assert live_load.basis == AssumptionBasis.CODE_DEFAULT
        assert live_load.source == "IRC R301.5"

    def test_user_override_supersedes(self):
        """Test user overrides supersede the current assumption."""
        context = make_context(stage_data={"user_overrides": {"stud_spacing_default": 24}})
        asyncio.run(AssumptionSeedingStage().execute(None, context))

        ledger = context.ledger
        current = ledger.get_current_assumption("stud_spacing_default")
        assert current.value == 24
        assert current.basis == AssumptionBasis.USER_OVERRIDE
        assert current.confidence == 1.0

        prior = ledger.get_assumption(current.supersedes)
        assert prior.basis == AssumptionBasis.CODE_DEFAULT
        assert prior.expires_at is not None

    def test_reseeding_is_idempotent(self):
        """Test a retried attempt adds nothing new."""
        context = make_context(stage_data={"user_overrides": {"live_load": 50}})
        stage = AssumptionSeedingStage()
        asyncio.run(stage.execute(None, context))
        count = len(context.ledger.assumptions)

        output = asyncio.run(stage.execute(None, context))
        assert output.assumptions == []
        assert len(context.ledger.assumptions) == count


class ExplodingStrategy(BaseStrategy):
    name = "ExplodingStrategy"
    topic = "roof_pitch"
    method = "fromNowhere"

    def can_handle(self, context):
        return True

    async def execute(self, context):
        raise RuntimeError("boom")


class EmptyStrategy(BaseStrategy):
    name = "EmptyStrategy"
    topic = "roof_pitch"
    method = "fromNothing"

    def can_handle(self, context):
        return True

    async def execute(self, context):
        return self.failure("nothing to read")


class GhostEvidenceStrategy(BaseStrategy):
    name = "GhostEvidenceStrategy"
    topic = "roof_pitch"
    method = "fromGhosts"

    def can_handle(self, context):
        return True

    async def execute(self, context):
        return self.success("6:12", 0.9, "made up", used_evidence=["ev_ghost"])


def seeded_context(findings, document):
    _, context = collect(findings, document)
    asyncio.run(AssumptionSeedingStage().execute(None, context))
    context.log_stage_entry("MultiStrategyInference")
    return context


class TestMultiStrategyInference:
    """Tests for MultiStrategyInferenceStage."""

    def test_default_strategies(self, findings, document):
        """Test competing inferences and materialized confidences."""
        context = seeded_context(findings, document)
        output = asyncio.run(MultiStrategyInferenceStage().execute(None, context))

        ledger = context.ledger
        assert output.strategy_failures == 0
        assert output.topics == [
            "joist_schedule",
            "joist_species",
            "stud_spacing",
            "wall_type_pattern",
            "header_requirements",
            "sheathing_nailing",
        ]

        species = {i.method: i for i in ledger.get_inferences_by_topic("joist_species")}
        assert species["fromScheduleSpecies"].confidence == pytest.approx(0.935)
        assert species["fromGeneralNotes"].confidence == pytest.approx(0.885)

        spacing = {i.method: i for i in ledger.get_inferences_by_topic("stud_spacing")}
        assert spacing["fromWallNotes"].value == 16
        assert spacing["fromCodeDefault"].confidence == pytest.approx(0.81)
        assert spacing["fromCodeDefault"].used_assumptions

        schedule = ledger.get_inferences_by_topic("joist_schedule")[0]
        entries = schedule.value["entries"]
        assert entries[1]["grade"] == "No.2"
        assert schedule.used_assumptions

    def test_vision_strategy_gated(self, findings, document):
        """Test flag-gated strategies only run with their flag."""
        from takeoff_ledger.config import FeatureFlags

        context = seeded_context(findings, document)
        asyncio.run(MultiStrategyInferenceStage().execute(None, context))
        assert context.ledger.get_inferences_by_topic("wall_type") == []

        flags = FeatureFlags({"enableVisionStrategies": True})
        _, vision_context = collect(findings, document, make_context(feature_flags=flags))
        asyncio.run(MultiStrategyInferenceStage().execute(None, vision_context))
        wall = vision_context.ledger.get_inferences_by_topic("wall_type")[0]
        assert wall.value == "exterior_2x6"
        assert wall.method == "fromVisionLLM"

    def test_strategy_failures_flagged(self):
        """Test raised, empty and unrecordable results each add a flag."""
        context = make_context()
        stage = MultiStrategyInferenceStage(
            [ExplodingStrategy(), EmptyStrategy(), GhostEvidenceStrategy()],
            enable_patterns=False,
        )
        output = asyncio.run(stage.execute(None, context))

        assert output.inferences == []
        assert output.strategy_failures == 3
        types = [f.type for f in context.ledger.flags]
        assert types == [
            FlagType.POLICY_VIOLATION,
            FlagType.MISSING_INFO,
            FlagType.POLICY_VIOLATION,
        ]
        assert all(f.severity == FlagSeverity.MEDIUM for f in context.ledger.flags)
        assert all(f.topic == "roof_pitch" for f in context.ledger.flags)

    def test_retry_does_not_reflag_failures(self):
        """Test a retried attempt leaves failed strategies alone."""
        context = make_context()
        stage = MultiStrategyInferenceStage(
            [ExplodingStrategy(), EmptyStrategy(), GhostEvidenceStrategy()],
            enable_patterns=False,
        )
        asyncio.run(stage.execute(None, context))

        output = asyncio.run(stage.execute(None, context))
        assert output.strategies_run == 0
        assert output.strategy_failures == 0
        assert len(context.ledger.flags) == 3

    def test_schedule_with_annotated_spacing(self, findings, document):
        """Test schedule cells written like 16" o.c. still yield a joist schedule."""
        findings["tables"][0]["content"]["entries"][0]["spacing"] = '16" o.c.'
        context = seeded_context(findings, document)
        output = asyncio.run(MultiStrategyInferenceStage().execute(None, context))

        assert output.strategy_failures == 0
        assert "joist_schedule" in output.topics
        schedule = context.ledger.get_inferences_by_topic("joist_schedule")[0]
        assert schedule.value["entries"][0]["spacing"] == 16.0

    def test_retry_skips_recorded_methods(self, findings, document):
        """Test a second attempt does not duplicate inferences."""
        context = seeded_context(findings, document)
        stage = MultiStrategyInferenceStage()
        asyncio.run(stage.execute(None, context))
        count = len(context.ledger.inferences)

        output = asyncio.run(stage.execute(None, context))
        assert output.inferences == []
        assert len(context.ledger.inferences) == count

    def test_strategies_sorted_by_priority(self):
        """Test registry order follows priority."""
        stage = MultiStrategyInferenceStage()
        stage.add_strategy(EmptyStrategy())
        priorities = [s.get_priority() for s in stage.get_strategies()]
        assert priorities == sorted(priorities)


class TestConflictResolutionStage:
    """Tests for ConflictResolutionStage."""

    def test_resolves_topics(self, findings, document):
        """Test decisions and flags per topic."""
        context = seeded_context(findings, document)
        asyncio.run(MultiStrategyInferenceStage().execute(None, context))
        context.log_stage_entry("ConflictResolution")
        output = asyncio.run(ConflictResolutionStage().execute(None, context))

        assert output.resolution_summary == {
            "auto_resolved": 2,
            "tiebreak_resolved": 2,
            "manual_review": 0,
            "low_confidence": 2,
            "policy_violations": 0,
        }

        ledger = context.ledger
        species = ledger.get_decisions_by_topic("joist_species")[0]
        assert species.selected_value == "SPF"
        assert ledger.get_inference(species.selected_inference_id).method == "fromScheduleSpecies"
        assert species.policy_used.applied_rules == ["confidence_threshold", "tiebreaker:schedule_table"]
        assert species.policy_used.thresholds["acceptInference"] == 0.7

        spacing = ledger.get_decisions_by_topic("stud_spacing")[0]
        assert ledger.get_inference(spacing.selected_inference_id).method == "fromWallNotes"

        low = ledger.get_flags_by_topic("header_requirements")[0]
        assert low.type == FlagType.LOW_CONFIDENCE
        assert low.severity == FlagSeverity.HIGH

        resolved_conflict = ledger.get_flags_by_topic("joist_species")[0]
        assert resolved_conflict.type == FlagType.CONFLICT
        assert resolved_conflict.resolved
        assert resolved_conflict.decision_id == species.id

        assert ledger.validate_integrity().is_valid

    def test_rerun_skips_handled_topics(self, findings, document):
        """Test a retried attempt adds no second decision."""
        context = seeded_context(findings, document)
        asyncio.run(MultiStrategyInferenceStage().execute(None, context))
        stage = ConflictResolutionStage()
        asyncio.run(stage.execute(None, context))
        decisions = len(context.ledger.decisions)

        output = asyncio.run(stage.execute(None, context))
        assert output.decisions == []
        assert len(context.ledger.decisions) == decisions


class TestAssembledPipeline:
    """End-to-end runs through the factory."""

    def test_full_run(self, services, document):
        """Test the four-stage pipeline on a structural document."""
        pipeline = create_pipeline(services, fast_config())
        assert [s["name"] for s in pipeline.get_stages()] == [
            "EvidenceCollection",
            "AssumptionSeeding",
            "MultiStrategyInference",
            "ConflictResolution",
        ]

        result = asyncio.run(pipeline.execute({"document": document}))

        assert result.success
        summary = result.ledger.get_summary()
        assert summary.evidence_count == 6
        assert summary.decision_count == 4
        assert summary.flag_count == 4
        assert summary.unresolved_flag_count == 2
        assert summary.total_stages == 4
        assert summary.success_stages == 4
        assert summary.completed
        assert result.ledger.validate_integrity().is_valid
        assert result.output.resolution_summary["tiebreak_resolved"] == 2

    def test_extraction_outage_degrades(self, services, document):
        """Test a run with no extraction data still seeds and decides from defaults."""
        services.extraction_client = StaticExtractionClient()
        result = asyncio.run(create_pipeline(services, fast_config()).execute({"document": document}))

        assert result.success
        decision = result.ledger.get_decisions_by_topic("stud_spacing")[0]
        assert decision.selected_value == 16

    def test_invalid_input_recorded(self, services):
        """Test a bad document fails the first stage and the run still completes."""
        result = asyncio.run(create_pipeline(services, fast_config()).execute({"nope": 1}))

        assert not result.success
        assert result.errors[0].stage == "EvidenceCollection"
        assert result.errors[0].kind == "validation"
        violations = [f for f in result.ledger.flags if f.type == FlagType.POLICY_VIOLATION]
        assert violations[0].topic == "EvidenceCollection"
        assert result.ledger.is_completed

    def test_conflict_resolver_flag(self, services):
        """Test useConflictResolver off drops the last stage."""
        pipeline = create_pipeline(
            services, fast_config(feature_flags={"useConflictResolver": False})
        )
        assert len(pipeline.get_stages()) == 3

    def test_test_pipeline(self, services, document):
        """Test the smoke-test pipeline."""
        pipeline = create_test_pipeline(services)
        config = pipeline.get_config()
        assert config.policy_id == "test"
        assert config.max_retries == 1
        result = asyncio.run(pipeline.execute({"document": document}))
        assert result.success
        assert result.ledger.inferences == []

    def test_document_type_pipeline(self, services, document):
        """Test document-type pipelines restrict topics."""
        pipeline = create_document_type_pipeline("architectural", services, fast_config())
        result = asyncio.run(pipeline.execute({"document": document}))
        topics = result.ledger.get_topics()
        assert topics == ["stud_spacing"]

        other = create_document_type_pipeline("civil", services, fast_config())
        assert len(other.get_stages()) == 2

    def test_validate_config(self):
        """Test operational limits."""
        assert validate_config(PipelineConfig()) == []
        errors = validate_config(PipelineConfig(max_retries=20, timeout_ms=1000, backoff_max_ms=10))
        assert len(errors) == 3
