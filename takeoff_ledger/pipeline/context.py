"""
Per-run pipeline context.

Bundles the run's ledger and policy with trace metadata, the feature flags
in effect for the run and a transient key/value store for data that stages
hand to each other. Only the run's own context ever writes to its ledger.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from ..config.feature_flags import FeatureFlags
from ..ledger import InferenceLedger, generate_id, utc_now
from ..observability.tracing import PipelineTracer
from ..policy import Policy, PricingConfig
from .stage import CancellationToken

logger = logging.getLogger(__name__)

# Stage data keys copied into child contexts besides the shared_* prefix
INHERITED_STAGE_DATA_KEYS = ("document", "project_info")
SHARED_PREFIX = "shared_"


@dataclass
class ContextMetadata:
    trace_id: str
    scenario_id: Optional[str] = None
    user_id: Optional[str] = None
    start_time: datetime = field(default_factory=utc_now)
    total_stages: int = 0
    success_stages: int = 0


class PipelineContext:
    """Everything a stage may read or write during one run."""

    def __init__(
        self,
        ledger: InferenceLedger,
        policy: Policy,
        stage: str = "",
        stage_data: Optional[dict[str, Any]] = None,
        trace_id: Optional[str] = None,
        scenario_id: Optional[str] = None,
        user_id: Optional[str] = None,
        feature_flags: Optional[FeatureFlags] = None,
        cancellation: Optional[CancellationToken] = None,
        tracer: Optional[PipelineTracer] = None,
    ):
        self.ledger = ledger
        self.policy = policy
        self.stage = stage
        self.stage_data: dict[str, Any] = dict(stage_data or {})
        self.metadata = ContextMetadata(
            trace_id=trace_id or generate_id("trace"),
            scenario_id=scenario_id,
            user_id=user_id,
        )
        self.feature_flags = feature_flags or FeatureFlags()
        self.cancellation = cancellation or CancellationToken()
        self.tracer = tracer
        self.audit_trail: list[dict[str, Any]] = []

    @property
    def trace_id(self) -> str:
        return self.metadata.trace_id

    # ------------------------------------------------------------------
    # Stage data
    # ------------------------------------------------------------------

    def set_stage_data(self, key: str, value: Any) -> None:
        self.stage_data[key] = value

    def get_stage_data(self, key: str, default: Any = None) -> Any:
        return self.stage_data.get(key, default)

    def create_child_context(self, stage: str) -> "PipelineContext":
        """
        Context for sub-work of this run.

        Shares the ledger, policy, flags and trace id. Only ``shared_*``
        keys plus the document and project info are copied into its data.
        """
        inherited = {
            key: value
            for key, value in self.stage_data.items()
            if key.startswith(SHARED_PREFIX) or key in INHERITED_STAGE_DATA_KEYS
        }
        child = PipelineContext(
            ledger=self.ledger,
            policy=self.policy,
            stage=stage,
            stage_data=inherited,
            feature_flags=self.feature_flags,
            cancellation=self.cancellation,
            tracer=self.tracer,
        )
        child.metadata = replace(self.metadata)
        child.audit_trail = self.audit_trail
        return child

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def log_stage_entry(self, stage: str) -> None:
        self.stage = stage
        logger.info(f"[{self.trace_id}] Entering stage: {stage}")

    def log_stage_exit(self, stage: str, success: bool, duration_ms: float) -> None:
        self.metadata.total_stages += 1
        if success:
            self.metadata.success_stages += 1
        self.ledger.update_stage_progress(
            self.metadata.total_stages, self.metadata.success_stages
        )
        status = "succeeded" if success else "failed"
        logger.info(f"[TIMING] [{self.trace_id}] Stage {stage} {status} in {duration_ms:.0f}ms")

    def update_stage_progress(self, total_stages: int, success_stages: int) -> None:
        self.metadata.total_stages = total_stages
        self.metadata.success_stages = success_stages
        self.ledger.update_stage_progress(total_stages, success_stages)

    def get_stage_progress(self) -> dict[str, int]:
        return {
            "totalStages": self.metadata.total_stages,
            "successStages": self.metadata.success_stages,
        }

    # ------------------------------------------------------------------
    # Policy and flags
    # ------------------------------------------------------------------

    def is_feature_enabled(self, flag: str) -> bool:
        return self.feature_flags.is_enabled(flag)

    def get_threshold(self, name: str) -> float:
        """Threshold by field name (``accept_inference``) or wire name (``acceptInference``)."""
        thresholds = self.policy.thresholds.model_dump()
        thresholds.update(self.policy.thresholds.model_dump(by_alias=True))
        if name not in thresholds:
            raise KeyError(f"Unknown threshold: {name}")
        return thresholds[name]

    def get_source_reliability(self, source_type: str) -> float:
        return self.policy.priors.source_reliability.get(source_type, 0.5)

    def get_tiebreaker_priority(self, source_type: str) -> int:
        """Index in the tiebreaker list; unlisted sources rank last."""
        tiebreakers = self.policy.tiebreakers
        if source_type in tiebreakers:
            return tiebreakers.index(source_type)
        return len(tiebreakers)

    def is_extraction_enabled(self, feature: str) -> bool:
        if feature == "geometry":
            return self.policy.extraction.enable_geometry
        if feature == "vision":
            return self.is_feature_enabled("enableVisionStrategies")
        return False

    def get_pricing_config(self) -> PricingConfig:
        return self.policy.pricing

    # ------------------------------------------------------------------
    # Tracing
    # ------------------------------------------------------------------

    def check_cancelled(self) -> None:
        self.cancellation.raise_if_cancelled()

    def create_trace_event(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "type": event_type,
            "timestamp": utc_now().isoformat(),
            "traceId": self.trace_id,
            "stage": self.stage,
            "data": data,
        }

    def record_trace_event(self, event_type: str, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Append a trace event to the audit trail when it is enabled."""
        if not self.is_feature_enabled("enableAuditTrail"):
            return None
        event = self.create_trace_event(event_type, data)
        self.audit_trail.append(event)
        return event

    def get_context_summary(self) -> dict[str, Any]:
        return {
            "traceId": self.trace_id,
            "scenarioId": self.metadata.scenario_id,
            "userId": self.metadata.user_id,
            "stage": self.stage,
            "policyId": self.policy.id,
            "policyVersion": self.policy.version,
            "ledgerId": self.ledger.id,
            "runId": self.ledger.run_id,
            "startTime": self.metadata.start_time.isoformat(),
            "totalStages": self.metadata.total_stages,
            "successStages": self.metadata.success_stages,
            "stageDataKeys": sorted(self.stage_data),
            "featureFlags": self.feature_flags.get_all_flags(),
            "ledgerSummary": self.ledger.get_summary().model_dump(by_alias=True),
        }
