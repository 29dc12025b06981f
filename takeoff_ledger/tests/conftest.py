"""Shared fixtures: a small structural drawing set and in-memory services."""

import pytest

from takeoff_ledger.config import FeatureFlags
from takeoff_ledger.config.settings import Settings
from takeoff_ledger.extraction import StaticExtractionClient
from takeoff_ledger.policy import PolicyResolver
from takeoff_ledger.services import PipelineServices
from takeoff_ledger.storage import InMemoryKeyValueStore, LedgerStore


DOCUMENT = {
    "id": "doc_1",
    "name": "S-101 Framing Plan",
    "uri": "gs://plans/s-101.pdf",
    "type": "structural",
}


def structural_findings() -> dict:
    """Extraction findings for DOCUMENT, keyed by extraction kind."""
    return {
        "text": [
            {
                "pageNumber": 1,
                "confidence": 0.9,
                "content": {
                    "text": (
                        "General notes: floor joists shall be SPF No.2 framing lumber. "
                        "Seismic design category D. Designed per IRC 2021."
                    ),
                    "section": "general_notes",
                },
            },
            {
                "pageNumber": 2,
                "confidence": 0.9,
                "content": {"text": "Exterior walls: 2x6 studs at 16\" o.c. with 7/16 OSB sheathing."},
            },
        ],
        "tables": [
            {
                "pageNumber": 3,
                "confidence": 0.95,
                "evidenceType": "schedule",
                "content": {
                    "scheduleType": "joist_schedule",
                    "entries": [
                        {"mark": "J1", "joistSize": "2x10", "spacing": 16, "span": 14,
                         "species": "SPF", "grade": "No.2"},
                        {"mark": "J2", "joistSize": "2x12", "spacing": 16, "span": 18,
                         "species": "SPF"},
                    ],
                },
            },
        ],
        "symbols": [
            {
                "pageNumber": 1,
                "confidence": 0.85,
                "content": {"symbolType": "wall_symbol", "properties": {"wallType": "exterior_2x6"}},
            },
            {
                "pageNumber": 1,
                "confidence": 0.8,
                "content": {"symbolType": "door_symbol", "label": "D1"},
            },
        ],
        "dimensions": [
            {"pageNumber": 1, "confidence": 0.8, "content": {"value": 14.0, "dimensionType": "span"}},
        ],
        "vision": [
            {
                "pageNumber": 1,
                "confidence": 0.7,
                "content": {
                    "description": "Framing plan",
                    "detectedElements": [{"type": "wall", "wallType": "exterior_2x6"}],
                },
            },
        ],
    }


@pytest.fixture
def document() -> dict:
    return dict(DOCUMENT)


@pytest.fixture
def findings() -> dict:
    return structural_findings()


@pytest.fixture
def settings() -> Settings:
    return Settings(LEDGER_STORE_BACKEND="memory", PIPELINE_BACKOFF_BASE_MS=0)


@pytest.fixture
def services(findings) -> PipelineServices:
    return PipelineServices(
        policy_resolver=PolicyResolver(),
        feature_flags=FeatureFlags(),
        extraction_client=StaticExtractionClient({DOCUMENT["id"]: findings}),
        ledger_store=LedgerStore(InMemoryKeyValueStore()),
    )
