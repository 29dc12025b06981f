"""
Pipeline executor.

Runs an ordered list of stages against one input. Each stage gets up to
``max_retries`` attempts with exponential backoff, each attempt bounded by
a deadline. A stage that exhausts its attempts is recorded as a
POLICY_VIOLATION flag and the run moves on with the last good output, so a
partial failure never loses what earlier stages put in the ledger.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from ..config.feature_flags import FeatureFlags
from ..ledger import Flag, FlagSeverity, FlagType, InferenceLedger
from ..observability.tracing import PipelineTracer
from ..policy import PolicyResolver, load_policy
from .context import PipelineContext
from .stage import (
    CancellationToken,
    FailureKind,
    Stage,
    StageCancelledError,
    StageResult,
    StageTimeoutError,
)

logger = logging.getLogger(__name__)


class PipelineConfig(BaseModel):
    """Per-pipeline execution settings."""

    policy_id: str = Field(default="default")
    policy_overrides: dict[str, Any] = Field(default_factory=dict)
    scenario_id: Optional[str] = None
    user_id: Optional[str] = None
    feature_flags: dict[str, bool] = Field(
        default_factory=dict, description="Per-run feature flag overrides"
    )
    assumption_overrides: dict[str, Any] = Field(
        default_factory=dict, description="User-supplied assumption values by key"
    )
    max_retries: int = Field(default=3, ge=1)
    timeout_ms: int = Field(default=300000, ge=1, description="Per-attempt deadline")
    backoff_base_ms: int = Field(default=1000, ge=0)
    backoff_max_ms: int = Field(default=10000, ge=0)


@dataclass
class StageError:
    stage: str
    error: str
    kind: str
    attempts: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "error": self.error,
            "kind": self.kind,
            "attempts": self.attempts,
        }


@dataclass
class PipelineResult:
    """Terminal result of a run; always returned, never raised."""

    output: Any
    ledger: InferenceLedger
    success: bool
    errors: list[StageError] = field(default_factory=list)
    execution_time_ms: float = 0.0
    context: Optional[PipelineContext] = None


def backoff_delay_ms(attempt: int, base_ms: int = 1000, max_ms: int = 10000) -> int:
    """Delay after a failed ``attempt`` (1-based): ``min(base * 2^(attempt-1), max)``."""
    return min(base_ms * 2 ** (attempt - 1), max_ms)


class Pipeline:
    """
    Ordered stages plus the services a run needs.

    Example:
        pipeline = Pipeline(PipelineConfig(policy_id="proj_42"))
        pipeline.add_stage(EvidenceCollectionStage(client))
        result = await pipeline.execute({"document": {...}})
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        policy_resolver: Optional[PolicyResolver] = None,
        feature_flags: Optional[FeatureFlags] = None,
        tracer: Optional[PipelineTracer] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        self._config = config or PipelineConfig()
        self._policy_resolver = policy_resolver or PolicyResolver()
        self._feature_flags = feature_flags or FeatureFlags()
        self._tracer = tracer
        self._on_progress = on_progress
        self._stages: list[Stage] = []

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def add_stage(self, stage: Stage) -> "Pipeline":
        self._stages.append(stage)
        return self

    def get_stages(self) -> list[dict[str, Any]]:
        return [{"name": stage.name, "index": i} for i, stage in enumerate(self._stages)]

    def clear_stages(self) -> None:
        self._stages = []

    def clone(self) -> "Pipeline":
        """Same services and stages, independent config and stage list."""
        cloned = Pipeline(
            config=self._config.model_copy(deep=True),
            policy_resolver=self._policy_resolver,
            feature_flags=self._feature_flags,
            tracer=self._tracer,
            on_progress=self._on_progress,
        )
        cloned._stages = list(self._stages)
        return cloned

    def get_config(self) -> PipelineConfig:
        return self._config.model_copy(deep=True)

    def update_config(self, **updates: Any) -> PipelineConfig:
        self._config = PipelineConfig.model_validate(
            {**self._config.model_dump(), **updates}
        )
        return self.get_config()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def create_context(self) -> PipelineContext:
        config = self._config
        policy = load_policy(
            self._policy_resolver,
            config.policy_id,
            config.policy_overrides,
            config.scenario_id,
        )
        context = PipelineContext(
            ledger=InferenceLedger(policy_id=policy.id),
            policy=policy,
            scenario_id=config.scenario_id,
            user_id=config.user_id,
            feature_flags=self._feature_flags.with_overrides(config.feature_flags),
            tracer=self._tracer,
        )
        if config.assumption_overrides:
            context.set_stage_data("user_overrides", dict(config.assumption_overrides))
        return context

    async def execute(self, input: Any) -> PipelineResult:
        """
        Run every stage in order and return the terminal result.

        Stage failures are recorded in the ledger and ``errors``; nothing
        raised inside a stage escapes this method.
        """
        start = time.perf_counter()
        context = self.create_context()
        errors: list[StageError] = []
        current = input
        total = len(self._stages)

        logger.info(
            f"[{context.trace_id}] Starting pipeline with {total} stage(s) "
            f"(policy={context.policy.id}, run={context.ledger.run_id})"
        )

        for index, stage in enumerate(self._stages):
            stage_start = time.perf_counter()
            context.log_stage_entry(stage.name)
            context.record_trace_event("stage_entered", {"index": index})

            result, attempts = await self._run_stage(stage, current, context)

            duration_ms = (time.perf_counter() - stage_start) * 1000
            context.log_stage_exit(stage.name, result.ok, duration_ms)

            if result.ok:
                current = result.value
                context.record_trace_event(
                    "stage_succeeded", {"attempts": attempts, "durationMs": duration_ms}
                )
            else:
                errors.append(
                    StageError(
                        stage=stage.name,
                        error=result.error or "unknown error",
                        kind=(result.kind or FailureKind.EXECUTION).value,
                        attempts=attempts,
                    )
                )
                self._record_stage_failure(context, stage, result, attempts)

            if self._tracer is not None and context.is_feature_enabled("enableAuditTrail"):
                self._tracer.log_stage_transition(
                    context.trace_id, stage.name, result.ok, duration_ms, result.error
                )
                if not result.ok:
                    self._tracer.log_error(
                        RuntimeError(result.error or "unknown error"),
                        {"trace_id": context.trace_id, "stage": stage.name, "attempts": attempts},
                    )
            self._report_progress(index + 1, total)

        context.ledger.mark_completed()
        execution_time_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"[TIMING] [{context.trace_id}] Pipeline finished in {execution_time_ms:.0f}ms "
            f"with {len(errors)} error(s)"
        )

        return PipelineResult(
            output=current,
            ledger=context.ledger,
            success=not errors,
            errors=errors,
            execution_time_ms=execution_time_ms,
            context=context,
        )

    def execute_sync(self, input: Any) -> PipelineResult:
        """Synchronous wrapper for :meth:`execute`."""
        return asyncio.run(self.execute(input))

    async def _run_stage(
        self, stage: Stage, input: Any, context: PipelineContext
    ) -> tuple[StageResult, int]:
        """Validate input, then attempt the stage until it succeeds or retries run out."""
        try:
            input_ok = stage.validate_input(input)
        except Exception as e:
            input_ok = False
            logger.warning(f"Input validation for stage {stage.name} raised: {e}")
        if not input_ok:
            return (
                StageResult.failure(
                    f"Input validation failed for stage {stage.name}", FailureKind.VALIDATION
                ),
                0,
            )

        config = self._config
        result = StageResult.failure(f"Stage {stage.name} was not attempted")
        for attempt in range(1, config.max_retries + 1):
            result = await self._attempt(stage, input, context)

            if result.ok:
                try:
                    output_ok = stage.validate_output(result.value)
                except Exception as e:
                    output_ok = False
                    logger.warning(f"Output validation for stage {stage.name} raised: {e}")
                if not output_ok:
                    return (
                        StageResult.failure(
                            f"Output validation failed for stage {stage.name}",
                            FailureKind.VALIDATION,
                        ),
                        attempt,
                    )
                return result, attempt

            if attempt < config.max_retries:
                delay_ms = backoff_delay_ms(
                    attempt, config.backoff_base_ms, config.backoff_max_ms
                )
                logger.warning(
                    f"Stage {stage.name} attempt {attempt}/{config.max_retries} failed: "
                    f"{result.error}. Retrying in {delay_ms}ms..."
                )
                context.record_trace_event(
                    "stage_retry",
                    {"attempt": attempt, "error": result.error, "delayMs": delay_ms},
                )
                await asyncio.sleep(delay_ms / 1000)

        logger.error(
            f"Stage {stage.name} failed after {config.max_retries} attempt(s): {result.error}"
        )
        return result, config.max_retries

    async def _attempt(self, stage: Stage, input: Any, context: PipelineContext) -> StageResult:
        timeout_s = self._config.timeout_ms / 1000
        token = CancellationToken(timeout_s=timeout_s)
        context.cancellation = token

        try:
            outcome = await asyncio.wait_for(stage.execute(input, context), timeout=timeout_s)
        except asyncio.TimeoutError:
            token.cancel("timeout")
            return StageResult.failure(
                f"Stage {stage.name} timed out after {self._config.timeout_ms}ms",
                FailureKind.TIMEOUT,
            )
        except StageTimeoutError as e:
            return StageResult.failure(str(e), FailureKind.TIMEOUT)
        except StageCancelledError as e:
            return StageResult.failure(str(e), FailureKind.CANCELLED)
        except Exception as e:
            logger.debug(f"Stage {stage.name} raised", exc_info=True)
            return StageResult.failure(str(e) or type(e).__name__, FailureKind.EXECUTION)

        if isinstance(outcome, StageResult):
            return outcome
        return StageResult.success(outcome)

    def _record_stage_failure(
        self,
        context: PipelineContext,
        stage: Stage,
        result: StageResult,
        attempts: int,
    ) -> None:
        context.ledger.add_flag(
            Flag(
                type=FlagType.POLICY_VIOLATION,
                severity=FlagSeverity.HIGH,
                message=f"Stage {stage.name} failed after {attempts} attempt(s): {result.error}",
                topic=stage.name,
            )
        )
        context.record_trace_event(
            "stage_failed",
            {"error": result.error, "kind": result.kind.value if result.kind else None},
        )

    def _report_progress(self, completed: int, total: int) -> None:
        if self._on_progress is None or total == 0:
            return
        try:
            self._on_progress(round(completed / total * 100, 1))
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
