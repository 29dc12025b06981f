"""
Append-only provenance ledger.

One ``InferenceLedger`` is created per pipeline run and owned by that run's
context. Every append validates the entity and resolves its references
before anything is stored, so a failed append leaves the ledger unchanged.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from statistics import mean
from typing import Any, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .errors import LedgerValidationError, ReferentialIntegrityError
from .schemas import (
    Assumption,
    Decision,
    Evidence,
    Flag,
    Inference,
    LedgerMetadata,
    LedgerSnapshot,
    LedgerSummary,
    generate_id,
    utc_now,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

EntityInput = Union[BaseModel, dict[str, Any]]


def _describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "<root>"
    return f"{location}: {first['msg']}"


def _validate(model: Type[M], data: EntityInput, kind: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise LedgerValidationError(kind, _describe_validation_error(e)) from e


@dataclass
class IntegrityReport:
    """Outcome of a full ledger audit."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors)}


class InferenceLedger:
    """
    Store of Evidence, Assumption, Inference, Decision and Flag records.

    Records are kept in insertion-ordered dicts keyed by id, which gives O(1)
    point lookup and preserves append order for snapshots and replay.
    """

    def __init__(
        self,
        policy_id: str,
        run_id: Optional[str] = None,
        ledger_id: Optional[str] = None,
        metadata: Optional[LedgerMetadata] = None,
    ):
        self.id = ledger_id or generate_id("ledger")
        self.run_id = run_id or generate_id("run")
        self.policy_id = policy_id
        self.metadata = metadata or LedgerMetadata()

        self._evidence: dict[str, Evidence] = {}
        self._assumptions: dict[str, Assumption] = {}
        self._inferences: dict[str, Inference] = {}
        self._decisions: dict[str, Decision] = {}
        self._flags: dict[str, Flag] = {}

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def add_evidence(self, evidence: EntityInput) -> Evidence:
        record = _validate(Evidence, evidence, "evidence")
        self._ensure_new_id(self._evidence, record.id, "evidence")
        self._evidence[record.id] = record
        return record

    def add_assumption(self, assumption: EntityInput) -> Assumption:
        """
        Append an assumption, expiring the one it supersedes.

        An unknown ``supersedes`` id is tolerated: the new assumption is still
        appended and nothing else changes.
        """
        record = _validate(Assumption, assumption, "assumption")
        self._ensure_new_id(self._assumptions, record.id, "assumption")

        if record.supersedes:
            prior = self._assumptions.get(record.supersedes)
            if prior is None:
                logger.warning(
                    f"Assumption {record.id} supersedes unknown assumption {record.supersedes}"
                )
            else:
                now = utc_now()
                # An already-expired record keeps its original expiry
                if prior.is_active(now):
                    self._assumptions[prior.id] = prior.model_copy(
                        update={"expires_at": now}
                    )
                if prior.key != record.key:
                    logger.warning(
                        f"Assumption {record.id} ({record.key}) supersedes "
                        f"{prior.id} with a different key ({prior.key})"
                    )

        self._assumptions[record.id] = record
        return record

    def add_inference(self, inference: EntityInput) -> Inference:
        record = _validate(Inference, inference, "inference")
        self._ensure_new_id(self._inferences, record.id, "inference")
        self._check_references(
            "inference",
            evidence=record.used_evidence,
            assumptions=record.used_assumptions,
        )
        self._inferences[record.id] = record
        return record

    def add_decision(self, decision: EntityInput) -> Decision:
        record = _validate(Decision, decision, "decision")
        self._ensure_new_id(self._decisions, record.id, "decision")
        self._check_references(
            "decision",
            inferences=[record.selected_inference_id, *record.competing_inferences],
        )
        self._decisions[record.id] = record
        return record

    def add_flag(self, flag: EntityInput) -> Flag:
        record = _validate(Flag, flag, "flag")
        self._ensure_new_id(self._flags, record.id, "flag")
        self._check_references(
            "flag",
            evidence=record.evidence_ids,
            assumptions=record.assumption_ids,
            inferences=record.inference_ids,
            decisions=[record.decision_id] if record.decision_id else [],
        )
        self._flags[record.id] = record
        return record

    def _ensure_new_id(self, index: dict[str, Any], entity_id: str, kind: str) -> None:
        if entity_id in index:
            raise LedgerValidationError(kind, f"duplicate id '{entity_id}'")

    def _missing_references(
        self,
        evidence: list[str] = (),
        assumptions: list[str] = (),
        inferences: list[str] = (),
        decisions: list[str] = (),
    ) -> dict[str, list[str]]:
        missing: dict[str, list[str]] = {}
        for label, ids, index in (
            ("evidence", evidence, self._evidence),
            ("assumptions", assumptions, self._assumptions),
            ("inferences", inferences, self._inferences),
            ("decisions", decisions, self._decisions),
        ):
            absent = [i for i in dict.fromkeys(ids) if i not in index]
            if absent:
                missing[label] = absent
        return missing

    def _check_references(self, kind: str, **references: list[str]) -> None:
        missing = self._missing_references(**references)
        if missing:
            raise ReferentialIntegrityError(kind, missing)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def evidence(self) -> list[Evidence]:
        return list(self._evidence.values())

    @property
    def assumptions(self) -> list[Assumption]:
        return list(self._assumptions.values())

    @property
    def inferences(self) -> list[Inference]:
        return list(self._inferences.values())

    @property
    def decisions(self) -> list[Decision]:
        return list(self._decisions.values())

    @property
    def flags(self) -> list[Flag]:
        return list(self._flags.values())

    def get_evidence(self, evidence_id: str) -> Optional[Evidence]:
        return self._evidence.get(evidence_id)

    def get_assumption(self, assumption_id: str) -> Optional[Assumption]:
        return self._assumptions.get(assumption_id)

    def get_inference(self, inference_id: str) -> Optional[Inference]:
        return self._inferences.get(inference_id)

    def get_decision(self, decision_id: str) -> Optional[Decision]:
        return self._decisions.get(decision_id)

    def get_flag(self, flag_id: str) -> Optional[Flag]:
        return self._flags.get(flag_id)

    def get_inferences_by_topic(self, topic: str) -> list[Inference]:
        return [i for i in self._inferences.values() if i.topic == topic]

    def get_decisions_by_topic(self, topic: str) -> list[Decision]:
        return [d for d in self._decisions.values() if d.topic == topic]

    def get_flags_by_topic(self, topic: str) -> list[Flag]:
        return [f for f in self._flags.values() if f.topic == topic]

    def get_assumptions_by_key(self, key: str) -> list[Assumption]:
        return [a for a in self._assumptions.values() if a.key == key]

    def get_active_assumptions(self, now: Optional[datetime] = None) -> list[Assumption]:
        now = now or utc_now()
        return [a for a in self._assumptions.values() if a.is_active(now)]

    def get_current_assumption(
        self, key: str, now: Optional[datetime] = None
    ) -> Optional[Assumption]:
        """
        Highest-confidence active assumption for ``key``.

        Ties go to the assumption appended first.
        """
        active = [a for a in self.get_active_assumptions(now) if a.key == key]
        if not active:
            return None
        # max() keeps the first of equal elements
        return max(active, key=lambda a: a.confidence)

    def get_topics(self) -> list[str]:
        return list(dict.fromkeys(i.topic for i in self._inferences.values()))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def update_stage_progress(self, total_stages: int, success_stages: int) -> None:
        self.metadata.total_stages = total_stages
        self.metadata.success_stages = success_stages

    def mark_completed(self) -> None:
        self.metadata.completed_at = utc_now()

    @property
    def is_completed(self) -> bool:
        return self.metadata.completed_at is not None

    # ------------------------------------------------------------------
    # Summary and audit
    # ------------------------------------------------------------------

    def get_summary(self) -> LedgerSummary:
        confidences = (
            [e.source.confidence for e in self._evidence.values()]
            + [a.confidence for a in self._assumptions.values()]
            + [i.confidence for i in self._inferences.values()]
            + [1.0 for _ in self._decisions]
        )
        return LedgerSummary(
            ledger_id=self.id,
            run_id=self.run_id,
            policy_id=self.policy_id,
            evidence_count=len(self._evidence),
            assumption_count=len(self._assumptions),
            active_assumption_count=len(self.get_active_assumptions()),
            inference_count=len(self._inferences),
            decision_count=len(self._decisions),
            flag_count=len(self._flags),
            unresolved_flag_count=sum(1 for f in self._flags.values() if not f.resolved),
            average_confidence=round(mean(confidences), 4) if confidences else 0.0,
            total_stages=self.metadata.total_stages,
            success_stages=self.metadata.success_stages,
            completed=self.is_completed,
        )

    def validate_integrity(self) -> IntegrityReport:
        """
        Re-derive every record and reference and report all violations.

        Unlike the append-time checks this never stops at the first problem.
        """
        errors: list[str] = []

        for kind, model, index in (
            ("evidence", Evidence, self._evidence),
            ("assumption", Assumption, self._assumptions),
            ("inference", Inference, self._inferences),
            ("decision", Decision, self._decisions),
            ("flag", Flag, self._flags),
        ):
            for key, record in index.items():
                if record.id != key:
                    errors.append(f"{kind} {key}: indexed under a different id ({record.id})")
                try:
                    model.model_validate(record.model_dump())
                except ValidationError as e:
                    errors.append(f"{kind} {key}: {_describe_validation_error(e)}")

        for inference in self._inferences.values():
            missing = self._missing_references(
                evidence=inference.used_evidence,
                assumptions=inference.used_assumptions,
            )
            errors.extend(self._format_missing("inference", inference.id, missing))

        for decision in self._decisions.values():
            missing = self._missing_references(
                inferences=[decision.selected_inference_id, *decision.competing_inferences],
            )
            errors.extend(self._format_missing("decision", decision.id, missing))
            selected = self._inferences.get(decision.selected_inference_id)
            if selected is not None and selected.topic != decision.topic:
                errors.append(
                    f"decision {decision.id}: topic '{decision.topic}' does not match "
                    f"selected inference topic '{selected.topic}'"
                )

        for flag in self._flags.values():
            missing = self._missing_references(
                evidence=flag.evidence_ids,
                assumptions=flag.assumption_ids,
                inferences=flag.inference_ids,
                decisions=[flag.decision_id] if flag.decision_id else [],
            )
            errors.extend(self._format_missing("flag", flag.id, missing))

        for assumption in self._assumptions.values():
            prior = self._assumptions.get(assumption.supersedes or "")
            if prior is not None and prior.expires_at is None:
                errors.append(
                    f"assumption {prior.id}: superseded by {assumption.id} but never expired"
                )

        if self.metadata.success_stages > self.metadata.total_stages:
            errors.append(
                f"metadata: successStages ({self.metadata.success_stages}) exceeds "
                f"totalStages ({self.metadata.total_stages})"
            )
        completed_at = self.metadata.completed_at
        if completed_at is not None and completed_at < self.metadata.created_at:
            errors.append("metadata: completedAt precedes createdAt")

        return IntegrityReport(is_valid=not errors, errors=errors)

    @staticmethod
    def _format_missing(kind: str, entity_id: str, missing: dict[str, list[str]]) -> list[str]:
        return [
            f"{kind} {entity_id}: missing {label}: [{', '.join(ids)}]"
            for label, ids in missing.items()
        ]

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_snapshot(self) -> LedgerSnapshot:
        def dump(records):
            return [r.model_dump(mode="json", by_alias=True) for r in records]

        return LedgerSnapshot(
            id=self.id,
            run_id=self.run_id,
            policy_id=self.policy_id,
            evidence=dump(self._evidence.values()),
            assumptions=dump(self._assumptions.values()),
            inferences=dump(self._inferences.values()),
            decisions=dump(self._decisions.values()),
            flags=dump(self._flags.values()),
            metadata=self.metadata.model_copy(),
        )

    def to_dict(self) -> dict[str, Any]:
        return self.to_snapshot().model_dump(mode="json", by_alias=True)

    @classmethod
    def replay(cls, data: Union[LedgerSnapshot, dict[str, Any]]) -> "InferenceLedger":
        """
        Rebuild a ledger by re-appending every stored record in order.

        Raises the same validation and referential errors an append would.
        """
        snapshot = LedgerSnapshot.model_validate(data)
        ledger = cls(
            policy_id=snapshot.policy_id,
            run_id=snapshot.run_id,
            ledger_id=snapshot.id,
            metadata=snapshot.metadata.model_copy(),
        )
        for record in snapshot.evidence:
            ledger.add_evidence(record)
        for record in snapshot.assumptions:
            ledger.add_assumption(record)
        for record in snapshot.inferences:
            ledger.add_inference(record)
        for record in snapshot.decisions:
            ledger.add_decision(record)
        for record in snapshot.flags:
            ledger.add_flag(record)
        return ledger
