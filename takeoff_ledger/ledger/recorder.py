"""
Opt-in recording helpers for collaborators outside the pipeline.

Extraction, enrichment and pricing code can record into a run's ledger
through a ``RecorderContext``. When no context exists (the ledger is not
enabled for that caller) every helper returns ``None`` and records nothing.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .ledger import InferenceLedger
from .schemas import Decision, Evidence, Flag, Inference, generate_id

logger = logging.getLogger(__name__)


class LedgerRecorder:
    """Facade over ``InferenceLedger`` that assigns prefixed ids."""

    def __init__(
        self,
        policy_id: str,
        run_id: Optional[str] = None,
        doc_id: Optional[str] = None,
        ledger: Optional[InferenceLedger] = None,
    ):
        self.ledger = ledger or InferenceLedger(policy_id=policy_id, run_id=run_id)
        self.doc_id = doc_id

    @property
    def run_id(self) -> str:
        return self.ledger.run_id

    def append_evidence(self, fields: dict[str, Any]) -> str:
        record = self.ledger.add_evidence({**fields, "id": fields.get("id") or generate_id("ev")})
        return record.id

    def append_assumption(self, fields: dict[str, Any]) -> str:
        record = self.ledger.add_assumption({**fields, "id": fields.get("id") or generate_id("asm")})
        return record.id

    def append_inference(self, fields: dict[str, Any]) -> str:
        record = self.ledger.add_inference({**fields, "id": fields.get("id") or generate_id("inf")})
        return record.id

    def append_decision(self, fields: dict[str, Any]) -> str:
        record = self.ledger.add_decision({**fields, "id": fields.get("id") or generate_id("dec")})
        return record.id

    def append_flag(self, fields: dict[str, Any]) -> str:
        # New flags always start unresolved
        record = self.ledger.add_flag(
            {**fields, "id": fields.get("id") or generate_id("flag"), "resolved": False}
        )
        return record.id

    def evidence(self) -> list[Evidence]:
        return self.ledger.evidence

    def inferences(self) -> list[Inference]:
        return self.ledger.inferences

    def decisions(self) -> list[Decision]:
        return self.ledger.decisions

    def flags(self) -> list[Flag]:
        return self.ledger.flags


@dataclass
class RecorderContext:
    policy: Any
    recorder: Optional[LedgerRecorder]
    scenario_id: str = "default"
    doc_id: Optional[str] = None


def create_context(
    policy: Any,
    recorder: Optional[LedgerRecorder],
    flags: Any = None,
    scenario_id: str = "default",
    doc_id: Optional[str] = None,
) -> Optional[RecorderContext]:
    """
    Build a recording context, or ``None`` when recording is disabled.

    ``flags`` is a ``FeatureFlags`` service; the ``useNewLedger`` flag
    switches recording off for every helper below.
    """
    if recorder is None:
        return None
    if flags is not None and not flags.is_enabled("useNewLedger"):
        logger.debug("useNewLedger disabled; ledger recording skipped")
        return None
    return RecorderContext(
        policy=policy,
        recorder=recorder,
        scenario_id=scenario_id,
        doc_id=doc_id or recorder.doc_id,
    )


def append_evidence(ctx: Optional[RecorderContext], fields: dict[str, Any]) -> Optional[str]:
    if ctx is None or ctx.recorder is None:
        return None
    return ctx.recorder.append_evidence(fields)


def append_inference(ctx: Optional[RecorderContext], fields: dict[str, Any]) -> Optional[str]:
    if ctx is None or ctx.recorder is None:
        return None
    return ctx.recorder.append_inference(fields)


def append_decision(ctx: Optional[RecorderContext], fields: dict[str, Any]) -> Optional[str]:
    if ctx is None or ctx.recorder is None:
        return None
    return ctx.recorder.append_decision(fields)


def append_flag(ctx: Optional[RecorderContext], fields: dict[str, Any]) -> Optional[str]:
    if ctx is None or ctx.recorder is None:
        return None
    return ctx.recorder.append_flag(fields)
