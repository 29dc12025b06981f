"""
Assumption seeding stage.

Seeds the ledger with the values later stages fall back on when drawings
are silent: building-code defaults, regional lumber defaults, facts read
from already-collected evidence, and finally any user overrides, which
supersede whatever was current for their key.
"""

import logging
import re
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..ledger import Assumption, AssumptionBasis, EvidenceType
from ..pipeline.context import PipelineContext
from ..pipeline.stage import Stage
from ..strategies.parsing import (
    evidence_text,
    iter_schedule_rows,
    normalize_grade,
    normalize_species,
    row_value,
    symbol_type,
)

logger = logging.getLogger(__name__)


# key, value, confidence, code section
CODE_DEFAULTS: list[tuple[str, Any, float, str]] = [
    ("live_load", 40, 0.95, "IRC R301.5"),
    ("dead_load", 10, 0.95, "IRC R301.5"),
    ("stud_spacing_default", 16, 0.9, "IRC R602.3(5)"),
    ("corner_stud_count", 3, 0.9, "IRC R602.3"),
    ("t_intersection_stud_count", 2, 0.9, "IRC R602.3"),
    ("header_bearing_length", 3.5, 0.9, "IRC R602.7"),
    ("sheathing_edge_spacing", 6, 0.85, "IRC R602.3(1)"),
    ("sheathing_field_spacing", 12, 0.85, "IRC R602.3(1)"),
]

REGIONAL_DEFAULTS: list[tuple[str, Any, float]] = [
    ("default_species", "SPF", 0.8),
    ("default_grade", "No.2", 0.8),
    ("default_treatment", "none", 0.8),
    ("joist_hanger_type", "joist_hanger", 0.75),
]

SEISMIC_PATTERN = re.compile(r"seismic\s+(?:design\s+)?category\s*[:=]?\s*([A-F])\b", re.IGNORECASE)
WIND_PATTERN = re.compile(r"wind\s+(?:risk\s+)?category\s*[:=]?\s*(IV|I{1,3}|[1-4])\b", re.IGNORECASE)
CODE_PATTERN = re.compile(r"\b(IRC|IBC)\b(?:\s*(20\d{2}))?")

USER_OVERRIDE_CONFIDENCE = 1.0


class AssumptionSeedingOutput(BaseModel):
    assumptions: list[Assumption]
    by_basis: dict[str, int] = Field(default_factory=dict)
    failed_passes: list[str] = Field(default_factory=list)


class AssumptionSeedingStage(Stage[Any, AssumptionSeedingOutput]):
    """Append code, regional, document-derived and user-override assumptions."""

    name = "AssumptionSeeding"

    async def execute(self, input: Any, context: PipelineContext) -> AssumptionSeedingOutput:
        before = len(context.ledger.assumptions)
        failed: list[str] = []

        for pass_name, seed in (
            ("code_defaults", self._seed_code_defaults),
            ("regional_defaults", self._seed_regional_defaults),
            ("document_derived", self._seed_document_derived),
            ("user_overrides", self._seed_user_overrides),
        ):
            try:
                count = seed(context)
                logger.debug(f"Assumption pass {pass_name} added {count} assumption(s)")
            except Exception as e:
                logger.warning(f"Assumption pass {pass_name} failed: {e}")
                failed.append(pass_name)

        added = context.ledger.assumptions[before:]
        by_basis: dict[str, int] = {}
        for assumption in added:
            by_basis[assumption.basis.value] = by_basis.get(assumption.basis.value, 0) + 1

        logger.info(f"Seeded {len(added)} assumption(s): {by_basis}")
        return AssumptionSeedingOutput(assumptions=added, by_basis=by_basis, failed_passes=failed)

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------

    @staticmethod
    def _already_seeded(context: PipelineContext, key: str, basis: AssumptionBasis, value: Any) -> bool:
        return any(
            a.basis == basis and a.value == value for a in context.ledger.get_assumptions_by_key(key)
        )

    def _add(
        self,
        context: PipelineContext,
        key: str,
        value: Any,
        basis: AssumptionBasis,
        confidence: float,
        source: Optional[str] = None,
        supersedes: Optional[str] = None,
    ) -> int:
        # Retried attempts must not seed the same fact twice
        if basis != AssumptionBasis.USER_OVERRIDE and self._already_seeded(context, key, basis, value):
            return 0
        context.ledger.add_assumption(
            Assumption(
                key=key,
                value=value,
                basis=basis,
                confidence=confidence,
                source=source,
                supersedes=supersedes,
            )
        )
        return 1

    def _seed_code_defaults(self, context: PipelineContext) -> int:
        return sum(
            self._add(context, key, value, AssumptionBasis.CODE_DEFAULT, confidence, section)
            for key, value, confidence, section in CODE_DEFAULTS
        )

    def _seed_regional_defaults(self, context: PipelineContext) -> int:
        return sum(
            self._add(context, key, value, AssumptionBasis.REGIONAL_DEFAULT, confidence, "regional")
            for key, value, confidence in REGIONAL_DEFAULTS
        )

    def _seed_document_derived(self, context: PipelineContext) -> int:
        evidence = context.ledger.evidence
        derived: list[tuple[str, Any, float, str]] = []

        for item in evidence:
            if item.type != EvidenceType.TEXT:
                continue
            text = evidence_text(item)
            source = f"evidence:{item.id}"
            seismic = SEISMIC_PATTERN.search(text)
            if seismic:
                derived.append(("seismic_category", seismic.group(1).upper(), 0.8, source))
            wind = WIND_PATTERN.search(text)
            if wind:
                derived.append(("wind_category", wind.group(1).upper(), 0.8, source))
            match = CODE_PATTERN.search(text)
            if match:
                code = match.group(1) if not match.group(2) else f"{match.group(1)} {match.group(2)}"
                derived.append(("building_code", code, 0.9, source))

        for item, row in iter_schedule_rows(evidence, "joist_schedule"):
            source = f"evidence:{item.id}"
            species = row_value(row, "species")
            grade = row_value(row, "grade")
            if species is not None:
                derived.append(("joist_species", normalize_species(str(species)), 0.9, source))
            if grade is not None:
                derived.append(("joist_grade", normalize_grade(str(grade)), 0.9, source))

        for item in evidence:
            if item.type != EvidenceType.SYMBOL or symbol_type(item) != "wall_symbol":
                continue
            source = f"evidence:{item.id}"
            properties = item.content.properties
            wall_type = row_value(properties, "wallType", "wall_type")
            thickness = row_value(properties, "thickness", "wallThickness", "wall_thickness")
            if wall_type is not None:
                derived.append(("wall_type", wall_type, 0.85, source))
            if thickness is not None:
                derived.append(("wall_thickness", thickness, 0.85, source))

        return sum(
            self._add(context, key, value, AssumptionBasis.DOCUMENT_DERIVED, confidence, source)
            for key, value, confidence, source in derived
        )

    def _seed_user_overrides(self, context: PipelineContext) -> int:
        overrides: dict[str, Any] = context.get_stage_data("user_overrides") or {}
        added = 0
        for key, value in overrides.items():
            current = context.ledger.get_current_assumption(key)
            if (
                current is not None
                and current.basis == AssumptionBasis.USER_OVERRIDE
                and current.value == value
            ):
                continue
            added += self._add(
                context,
                key,
                value,
                AssumptionBasis.USER_OVERRIDE,
                USER_OVERRIDE_CONFIDENCE,
                source="user",
                supersedes=current.id if current else None,
            )
        return added
