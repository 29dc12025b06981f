"""Strategies that read the joist schedule table."""

from collections import Counter
from typing import Any, Optional

from ..ledger import Alternative, Evidence
from .base import BaseStrategy, StrategyContext, StrategyResult
from .parsing import (
    iter_schedule_rows,
    normalize_grade,
    normalize_species,
    parse_number,
    row_value,
)

JOIST_SCHEDULE = "joist_schedule"


def parse_joist_row(row: dict[str, Any]) -> dict[str, Any]:
    """Normalize one schedule row; missing or unreadable fields come back as None."""
    species = row_value(row, "species")
    grade = row_value(row, "grade")
    spacing = row_value(row, "spacing", "spacingIn", "spacing_in")
    span = row_value(row, "span", "spanFt", "span_ft", "maxSpan")
    return {
        "mark": row_value(row, "mark", "id"),
        "size": row_value(row, "joistSize", "joist_size", "size"),
        "spacing": parse_number(spacing) if spacing is not None else None,
        "span": parse_number(span) if span is not None else None,
        "species": normalize_species(str(species)) if species is not None else None,
        "grade": normalize_grade(str(grade)) if grade is not None else None,
    }


class JoistScheduleStrategy(BaseStrategy):
    """
    Joist sizes, spacing and spans straight from the joist schedule.

    Missing species or grade are filled from the regional default
    assumptions; every filled field lowers the strategy's confidence.
    """

    name = "JoistScheduleStrategy"
    topic = JOIST_SCHEDULE
    method = "fromScheduleTable"
    source_type = "schedule_table"
    priority = 10

    def can_handle(self, context: StrategyContext) -> bool:
        return any(True for _ in iter_schedule_rows(context.available_evidence, JOIST_SCHEDULE))

    async def execute(self, context: StrategyContext) -> StrategyResult:
        rows = list(iter_schedule_rows(context.available_evidence, JOIST_SCHEDULE))
        if not rows:
            return self.failure("No joist schedule rows found")

        used_evidence: list[str] = []
        used_assumptions: list[str] = []
        entries = []
        filled = 0
        incomplete = 0

        defaults = {
            "species": self.get_best_assumption(context.available_assumptions, "default_species"),
            "grade": self.get_best_assumption(context.available_assumptions, "default_grade"),
        }

        for evidence, row in rows:
            entry = parse_joist_row(row)
            if entry["size"] is None or entry["spacing"] is None:
                incomplete += 1
                continue
            for field_name, assumption in defaults.items():
                if entry[field_name] is None and assumption is not None:
                    entry[field_name] = assumption.value
                    filled += 1
                    if assumption.id not in used_assumptions:
                        used_assumptions.append(assumption.id)
            entries.append(entry)
            if evidence.id not in used_evidence:
                used_evidence.append(evidence.id)

        if not entries:
            return self.failure(
                f"{incomplete} joist schedule row(s) lack size or spacing",
                used_evidence=[e.id for e, _ in rows],
            )

        total = len(entries) + incomplete
        confidence = (len(entries) / total) * (0.95 ** filled)
        explanation = f"Read {len(entries)} of {total} joist schedule row(s)"
        if filled:
            explanation += f"; filled {filled} field(s) from regional defaults"

        return self.success(
            value={"entries": entries},
            confidence=confidence,
            explanation=explanation,
            used_evidence=used_evidence,
            used_assumptions=used_assumptions,
        )


class JoistSpeciesScheduleStrategy(BaseStrategy):
    """Species named in the joist schedule; the majority species wins."""

    name = "JoistSpeciesScheduleStrategy"
    topic = "joist_species"
    method = "fromScheduleSpecies"
    source_type = "schedule_table"
    priority = 20

    @staticmethod
    def _species_rows(context: StrategyContext) -> list[tuple[Evidence, str]]:
        found = []
        for evidence, row in iter_schedule_rows(context.available_evidence, JOIST_SCHEDULE):
            species: Optional[Any] = row_value(row, "species")
            if species is not None:
                found.append((evidence, normalize_species(str(species))))
        return found

    def can_handle(self, context: StrategyContext) -> bool:
        return bool(self._species_rows(context))

    async def execute(self, context: StrategyContext) -> StrategyResult:
        found = self._species_rows(context)
        if not found:
            return self.failure("Joist schedule names no species")

        counts = Counter(species for _, species in found)
        (winner, votes), *others = counts.most_common()
        share = votes / len(found)

        alternatives = [
            Alternative(
                value=species,
                confidence=round(count / len(found), 4),
                reason=f"{count} schedule row(s) list {species}",
            )
            for species, count in others
        ]

        return self.success(
            value=winner,
            confidence=share,
            explanation=f"{votes} of {len(found)} joist schedule row(s) specify {winner}",
            used_evidence=list(dict.fromkeys(e.id for e, species in found if species == winner)),
            alternatives=alternatives,
        )
