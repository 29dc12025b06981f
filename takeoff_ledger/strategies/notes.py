"""Strategies that read general and framing notes."""

from abc import abstractmethod
from collections import Counter

from ..ledger import Alternative, EvidenceType
from .base import BaseStrategy, StrategyContext, StrategyResult
from .parsing import evidence_text, find_species, find_stud_spacings

_FRAMING_WORDS = ("joist", "framing", "lumber", "floor")


def _mentions_framing(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in _FRAMING_WORDS)


class _NoteStrategy(BaseStrategy):
    """Shared voting logic for note-derived answers."""

    source_type = "explicit_note"

    @abstractmethod
    def _matches(self, context: StrategyContext) -> list[tuple[str, object]]:
        pass

    def can_handle(self, context: StrategyContext) -> bool:
        return bool(self._matches(context))

    async def execute(self, context: StrategyContext) -> StrategyResult:
        matches = self._matches(context)
        if not matches:
            return self.failure(f"No notes mention {self.topic}")

        counts = Counter(value for _, value in matches)
        (winner, votes), *others = counts.most_common()
        # Notes that disagree with each other are weaker evidence
        confidence = 1.0 if not others else 0.6 * votes / len(matches)

        return self.success(
            value=winner,
            confidence=confidence,
            explanation=f"{votes} note(s) state {winner} for {self.topic}",
            used_evidence=list(dict.fromkeys(eid for eid, value in matches if value == winner)),
            alternatives=[
                Alternative(
                    value=value,
                    confidence=round(count / len(matches), 4),
                    reason=f"{count} note(s) state {value}",
                )
                for value, count in others
            ],
        )


class JoistSpeciesNoteStrategy(_NoteStrategy):
    name = "JoistSpeciesNoteStrategy"
    topic = "joist_species"
    method = "fromGeneralNotes"
    priority = 30

    def _matches(self, context):
        matches = []
        for evidence in self.find_evidence_by_type(context.available_evidence, EvidenceType.TEXT):
            text = evidence_text(evidence)
            if not _mentions_framing(text):
                continue
            matches.extend((evidence.id, species) for species in find_species(text))
        return matches


class StudSpacingNoteStrategy(_NoteStrategy):
    name = "StudSpacingNoteStrategy"
    topic = "stud_spacing"
    method = "fromWallNotes"
    priority = 30

    def _matches(self, context):
        matches = []
        for evidence in self.find_evidence_by_type(context.available_evidence, EvidenceType.TEXT):
            matches.extend(
                (evidence.id, spacing) for spacing in find_stud_spacings(evidence_text(evidence))
            )
        return matches
