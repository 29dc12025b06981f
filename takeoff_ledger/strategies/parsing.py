"""Helpers for reading schedule rows and drawing notes."""

import re
from typing import Any, Iterator, Optional

from ..ledger import (
    Evidence,
    EvidenceType,
    ScheduleContent,
    SymbolContent,
    TableContent,
    TextContent,
)

SPECIES_PATTERN = re.compile(
    r"\b(S-?P-?F|DF-?L|DOUGLAS[\s-]FIR(?:[\s-]LARCH)?|HEM[\s-]FIR|H-?F|SYP|"
    r"SOUTHERN\s+(?:YELLOW\s+)?PINE)\b",
    re.IGNORECASE,
)

GRADE_PATTERN = re.compile(r"\b(SELECT\s+STRUCTURAL|SS|NO\.?\s*[123]|STUD)\b", re.IGNORECASE)

NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")

NUMBERED_GRADE_PATTERN = re.compile(r"^NO\.?\s*(\d)$")

STUD_SPACING_PATTERN = re.compile(
    r"\bstuds?\b[^.;\n]{0,40}?\b(\d{1,2})\s*(?:\"|''|in\.?|inch(?:es)?)?\s*o\.?\s*c\.?",
    re.IGNORECASE,
)


def normalize_species(raw: str) -> str:
    token = re.sub(r"[\s-]+", " ", raw.strip().upper())
    compact = token.replace(" ", "")
    if compact in ("SPF",):
        return "SPF"
    if compact in ("DFL", "DOUGLASFIR", "DOUGLASFIRLARCH"):
        return "DF-L"
    if compact in ("HEMFIR", "HF"):
        return "HEM-FIR"
    if compact in ("SYP", "SOUTHERNPINE", "SOUTHERNYELLOWPINE"):
        return "SYP"
    return token


def normalize_grade(raw: str) -> str:
    token = raw.strip().upper()
    numbered = NUMBERED_GRADE_PATTERN.match(token)
    if numbered:
        return f"No.{numbered.group(1)}"
    token = re.sub(r"\s+", "", token)
    if token in ("SS", "SELECTSTRUCTURAL"):
        return "Select Structural"
    return raw.strip().title()


def parse_number(raw: Any) -> Optional[float]:
    """Leading number of a cell such as ``16" o.c.`` or ``14'-0"``; None if there is none."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    match = NUMBER_PATTERN.search(str(raw))
    return float(match.group()) if match else None


def find_species(text: str) -> list[str]:
    """Canonical species mentioned in ``text``, in order, without repeats."""
    return list(dict.fromkeys(normalize_species(m.group(1)) for m in SPECIES_PATTERN.finditer(text)))


def find_stud_spacings(text: str) -> list[int]:
    return list(dict.fromkeys(int(m.group(1)) for m in STUD_SPACING_PATTERN.finditer(text)))


def row_value(row: dict[str, Any], *names: str) -> Optional[Any]:
    """First non-empty value among ``names`` (snake_case or camelCase keys)."""
    for name in names:
        value = row.get(name)
        if value not in (None, ""):
            return value
    return None


def schedule_rows(evidence: Evidence, schedule_type: str) -> list[dict[str, Any]]:
    """Rows of a table or schedule evidence item if it is the given schedule."""
    content = evidence.content
    if isinstance(content, TableContent) and content.schedule_type == schedule_type:
        return content.rows
    if isinstance(content, ScheduleContent) and content.schedule_type == schedule_type:
        return content.entries
    return []


def iter_schedule_rows(
    evidence: list[Evidence], schedule_type: str
) -> Iterator[tuple[Evidence, dict[str, Any]]]:
    for item in evidence:
        if item.type not in (EvidenceType.TABLE, EvidenceType.SCHEDULE):
            continue
        for row in schedule_rows(item, schedule_type):
            yield item, row


def evidence_text(evidence: Evidence) -> str:
    return evidence.content.text if isinstance(evidence.content, TextContent) else ""


def symbol_type(evidence: Evidence) -> Optional[str]:
    return evidence.content.symbol_type if isinstance(evidence.content, SymbolContent) else None
