"""Tests for the provenance ledger."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from takeoff_ledger.ledger import (
    Assumption,
    AssumptionBasis,
    Evidence,
    EvidenceType,
    FlagSeverity,
    FlagType,
    InferenceLedger,
    LedgerValidationError,
    ReferentialIntegrityError,
    utc_now,
)


def make_evidence(ledger, text="Floor joists: 2x10 SPF No.2", confidence=0.9, **kwargs):
    return ledger.add_evidence({
        "type": "text",
        "source": {
            "documentId": "doc_1",
            "pageNumber": 2,
            "extractorName": "pdf_text_extractor",
            "confidence": confidence,
        },
        "content": {"text": text},
        **kwargs,
    })


def make_inference(ledger, topic="joist_species", value="SPF", evidence_ids=(), **kwargs):
    data = {
        "topic": topic,
        "value": value,
        "confidence": 0.8,
        "method": "fromGeneralNotes",
        "usedEvidence": list(evidence_ids),
        "stage": "MultiStrategyInference",
    }
    data.update(kwargs)
    return ledger.add_inference(data)


def make_decision(ledger, inference, **kwargs):
    data = {
        "topic": inference.topic,
        "selectedValue": inference.value,
        "selectedInferenceId": inference.id,
        "justification": "Only candidate",
        "policyUsed": {"thresholds": {"acceptInference": 0.7}},
        "stage": "ConflictResolution",
    }
    data.update(kwargs)
    return ledger.add_decision(data)


class TestEvidence:
    """Tests for evidence appends."""

    def test_add_evidence_generates_id(self):
        """Test evidence gets a prefixed id and tagged content."""
        ledger = InferenceLedger(policy_id="default")
        evidence = make_evidence(ledger)

        assert evidence.id.startswith("ev_")
        assert evidence.type == EvidenceType.TEXT
        assert evidence.content.kind == "text"
        assert evidence.source_type == "explicit_note"
        assert ledger.get_evidence(evidence.id) == evidence

    def test_invalid_confidence_rejected(self):
        """Test out-of-range confidence leaves the ledger unchanged."""
        ledger = InferenceLedger(policy_id="default")
        with pytest.raises(LedgerValidationError, match="Invalid evidence"):
            make_evidence(ledger, confidence=1.5)
        assert ledger.evidence == []

    def test_content_must_match_type(self):
        """Test content kind must agree with evidence type."""
        ledger = InferenceLedger(policy_id="default")
        with pytest.raises(LedgerValidationError):
            ledger.add_evidence({
                "type": "schedule",
                "source": {
                    "documentId": "doc_1",
                    "pageNumber": 1,
                    "extractorName": "table_parser",
                    "confidence": 0.9,
                },
                "content": {"kind": "text", "text": "not a schedule"},
            })

    def test_duplicate_id_rejected(self):
        """Test an id can only be appended once."""
        ledger = InferenceLedger(policy_id="default")
        make_evidence(ledger, id="ev_fixed")
        with pytest.raises(LedgerValidationError, match="duplicate id 'ev_fixed'"):
            make_evidence(ledger, id="ev_fixed")
        assert len(ledger.evidence) == 1

    def test_records_are_frozen(self):
        """Test stored records cannot be mutated."""
        ledger = InferenceLedger(policy_id="default")
        evidence = make_evidence(ledger)
        with pytest.raises(ValidationError):
            evidence.metadata = {"changed": True}

    def test_accepts_model_instances(self):
        """Test an already-built Evidence can be appended."""
        ledger = InferenceLedger(policy_id="default")
        evidence = Evidence(
            type=EvidenceType.DIMENSION,
            source={
                "document_id": "doc_1",
                "page_number": 1,
                "extractor_name": "dimension_extractor",
                "confidence": 0.8,
            },
            content={"value": 12.5},
        )
        stored = ledger.add_evidence(evidence)
        assert stored.content.units == "ft"
        assert stored.source_type == "plan_symbol"


class TestReferences:
    """Tests for referential integrity on append."""

    def test_inference_with_missing_evidence(self):
        """Test inference referencing unknown evidence is rejected."""
        ledger = InferenceLedger(policy_id="default")
        with pytest.raises(ReferentialIntegrityError) as exc_info:
            make_inference(ledger, evidence_ids=["ev_missing"])

        assert "missing evidence: [ev_missing]" in str(exc_info.value)
        assert exc_info.value.missing == {"evidence": ["ev_missing"]}
        assert ledger.inferences == []

    def test_decision_requires_known_inferences(self):
        """Test decision referencing unknown competing inference is rejected."""
        ledger = InferenceLedger(policy_id="default")
        inference = make_inference(ledger)
        with pytest.raises(ReferentialIntegrityError, match="missing inferences"):
            make_decision(ledger, inference, competingInferences=["inf_ghost"])
        assert ledger.decisions == []

    def test_flag_references(self):
        """Test flag references are resolved against every collection."""
        ledger = InferenceLedger(policy_id="default")
        evidence = make_evidence(ledger)
        inference = make_inference(ledger, evidence_ids=[evidence.id])
        decision = make_decision(ledger, inference)

        flag = ledger.add_flag({
            "type": "CONFLICT",
            "severity": "low",
            "message": "Resolved by gap",
            "topic": "joist_species",
            "evidenceIds": [evidence.id],
            "inferenceIds": [inference.id],
            "decisionId": decision.id,
        })
        assert flag.type == FlagType.CONFLICT
        assert flag.severity == FlagSeverity.LOW

        with pytest.raises(ReferentialIntegrityError):
            ledger.add_flag({
                "type": "CONFLICT",
                "severity": "low",
                "message": "Dangling",
                "decisionId": "dec_missing",
            })


class TestAssumptions:
    """Tests for assumption supersession and lookup."""

    def test_supersession_expires_prior(self):
        """Test superseding expires the prior assumption."""
        ledger = InferenceLedger(policy_id="default")
        first = ledger.add_assumption({
            "key": "stud_spacing_default",
            "value": 16,
            "basis": "code_default",
            "confidence": 0.9,
        })
        second = ledger.add_assumption({
            "key": "stud_spacing_default",
            "value": 24,
            "basis": AssumptionBasis.USER_OVERRIDE,
            "confidence": 1.0,
            "supersedes": first.id,
        })

        prior = ledger.get_assumption(first.id)
        assert prior.expires_at is not None
        assert not prior.is_active(utc_now() + timedelta(seconds=1))
        assert ledger.get_current_assumption("stud_spacing_default") == second

    def test_already_expired_prior_keeps_expiry(self):
        """Test superseding an expired assumption leaves its expiry alone."""
        ledger = InferenceLedger(policy_id="default")
        expired_at = utc_now() - timedelta(days=1)
        first = ledger.add_assumption({
            "key": "k",
            "value": 1,
            "basis": "code_default",
            "confidence": 0.5,
            "expiresAt": expired_at,
        })
        ledger.add_assumption({
            "key": "k",
            "value": 2,
            "basis": "code_default",
            "confidence": 0.5,
            "supersedes": first.id,
        })
        assert ledger.get_assumption(first.id).expires_at == expired_at

    def test_unknown_supersedes_tolerated(self):
        """Test a dangling supersedes id still appends."""
        ledger = InferenceLedger(policy_id="default")
        record = ledger.add_assumption({
            "key": "k",
            "value": 1,
            "basis": "code_default",
            "confidence": 0.5,
            "supersedes": "asm_unknown",
        })
        assert ledger.get_assumption(record.id) is not None

    def test_current_assumption_ties_go_to_first(self):
        """Test equal confidence returns the earliest appended."""
        ledger = InferenceLedger(policy_id="default")
        first = ledger.add_assumption(Assumption(
            key="k", value="a", basis=AssumptionBasis.CODE_DEFAULT, confidence=0.8
        ))
        ledger.add_assumption(Assumption(
            key="k", value="b", basis=AssumptionBasis.REGIONAL_DEFAULT, confidence=0.8
        ))
        assert ledger.get_current_assumption("k") == first
        assert ledger.get_current_assumption("missing") is None

    def test_current_assumption_prefers_higher_confidence(self):
        """Test the more confident of two active assumptions is current."""
        ledger = InferenceLedger(policy_id="default")
        ledger.add_assumption(Assumption(
            key="default_species", value="DF-L", basis=AssumptionBasis.REGIONAL_DEFAULT, confidence=0.6
        ))
        confident = ledger.add_assumption(Assumption(
            key="default_species", value="SPF", basis=AssumptionBasis.DOCUMENT_DERIVED, confidence=0.9
        ))
        assert ledger.get_current_assumption("default_species") == confident

    def test_active_assumptions_exclude_superseded(self):
        """Test superseded assumptions drop out of the active set."""
        ledger = InferenceLedger(policy_id="default")
        first = ledger.add_assumption({
            "key": "live_load", "value": 40, "basis": "code_default", "confidence": 0.95,
        })
        other = ledger.add_assumption({
            "key": "dead_load", "value": 10, "basis": "code_default", "confidence": 0.95,
        })
        override = ledger.add_assumption({
            "key": "live_load", "value": 50, "basis": "user_override", "confidence": 1.0,
            "supersedes": first.id,
        })

        later = utc_now() + timedelta(seconds=1)
        assert ledger.get_active_assumptions(later) == [other, override]
        assert len(ledger.assumptions) == 3


class TestAudit:
    """Tests for summary, integrity and replay."""

    def test_summary_counts(self):
        """Test summary counts and averaged confidence."""
        ledger = InferenceLedger(policy_id="default")
        evidence = make_evidence(ledger, confidence=0.9)
        inference = make_inference(ledger, evidence_ids=[evidence.id], confidence=0.7)
        make_decision(ledger, inference)
        ledger.add_flag({"type": "MISSING_INFO", "severity": "medium", "message": "x"})

        summary = ledger.get_summary()
        assert summary.evidence_count == 1
        assert summary.inference_count == 1
        assert summary.decision_count == 1
        assert summary.flag_count == 1
        assert summary.unresolved_flag_count == 1
        assert summary.average_confidence == pytest.approx(0.8667, abs=1e-4)
        assert not summary.completed

    def test_empty_summary(self):
        """Test summary of an empty ledger."""
        summary = InferenceLedger(policy_id="default").get_summary()
        assert summary.average_confidence == 0.0
        assert summary.evidence_count == 0

    def test_validate_integrity_clean(self):
        """Test a ledger built through appends is consistent."""
        ledger = InferenceLedger(policy_id="default")
        evidence = make_evidence(ledger)
        inference = make_inference(ledger, evidence_ids=[evidence.id])
        make_decision(ledger, inference)

        report = ledger.validate_integrity()
        assert report.is_valid
        assert report.to_dict() == {"isValid": True, "errors": []}

    def test_validate_integrity_reports_all(self):
        """Test tampered internals are all reported."""
        ledger = InferenceLedger(policy_id="default")
        evidence = make_evidence(ledger)
        inference = make_inference(ledger, evidence_ids=[evidence.id])
        make_decision(ledger, inference)

        del ledger._evidence[evidence.id]
        ledger.update_stage_progress(total_stages=1, success_stages=2)

        report = ledger.validate_integrity()
        assert not report.is_valid
        assert len(report.errors) == 2
        assert any("missing evidence" in e for e in report.errors)
        assert any("successStages" in e for e in report.errors)

    def test_snapshot_replay(self):
        """Test replaying a snapshot rebuilds the same ledger."""
        ledger = InferenceLedger(policy_id="residential")
        evidence = make_evidence(ledger)
        first = ledger.add_assumption({
            "key": "k", "value": 1, "basis": "code_default", "confidence": 0.5,
        })
        ledger.add_assumption({
            "key": "k", "value": 2, "basis": "user_override", "confidence": 1.0,
            "supersedes": first.id,
        })
        inference = make_inference(ledger, evidence_ids=[evidence.id])
        make_decision(ledger, inference)
        ledger.mark_completed()

        data = ledger.to_dict()
        assert data["policyId"] == "residential"
        assert data["evidence"][0]["source"]["documentId"] == "doc_1"

        restored = InferenceLedger.replay(data)
        assert restored.id == ledger.id
        assert restored.run_id == ledger.run_id
        assert restored.to_dict() == data
        assert restored.is_completed
        assert restored.validate_integrity().is_valid

    def test_replay_rejects_dangling_reference(self):
        """Test replay fails like an append would."""
        ledger = InferenceLedger(policy_id="default")
        evidence = make_evidence(ledger)
        make_inference(ledger, evidence_ids=[evidence.id])
        data = ledger.to_dict()
        data["evidence"] = []

        with pytest.raises(ReferentialIntegrityError):
            InferenceLedger.replay(data)

    def test_topics_in_first_seen_order(self):
        """Test topics keep first-seen order."""
        ledger = InferenceLedger(policy_id="default")
        make_inference(ledger, topic="stud_spacing", value=16)
        make_inference(ledger, topic="joist_species")
        make_inference(ledger, topic="stud_spacing", value=24)
        assert ledger.get_topics() == ["stud_spacing", "joist_species"]
        assert len(ledger.get_inferences_by_topic("stud_spacing")) == 2
