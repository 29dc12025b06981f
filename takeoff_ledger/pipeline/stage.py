"""
Stage contract, explicit stage results and cooperative cancellation.

A stage returns its output (or a ``StageResult``); the executor converts
raised exceptions into failed results so the retry loop only ever branches
on ``StageResult.ok``.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

if TYPE_CHECKING:
    from .context import PipelineContext


# =============================================================================
# Type Variables
# =============================================================================

TInput = TypeVar("TInput")
TOutput = TypeVar("TOutput")


# =============================================================================
# Results and errors
# =============================================================================


class FailureKind(str, Enum):
    EXECUTION = "execution"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StageResult:
    """Either ``ok`` with a ``value`` or failed with an ``error`` and ``kind``."""

    ok: bool
    value: Any = None
    error: Optional[str] = None
    kind: Optional[FailureKind] = None

    @classmethod
    def success(cls, value: Any) -> "StageResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, kind: FailureKind = FailureKind.EXECUTION) -> "StageResult":
        return cls(ok=False, error=error, kind=kind)


class StageTimeoutError(Exception):
    """A stage attempt ran past its deadline."""


class StageCancelledError(Exception):
    """A stage attempt observed a cancelled token."""


class StageValidationError(Exception):
    """A stage rejected its input or produced invalid output."""


class CancellationToken:
    """
    Cooperative cancellation with an optional deadline.

    Stages call ``raise_if_cancelled()`` around I/O so an attempt the
    executor has given up on stops at its next suspension point.
    """

    def __init__(self, timeout_s: Optional[float] = None):
        self._deadline = time.monotonic() + timeout_s if timeout_s is not None else None
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    @property
    def is_cancelled(self) -> bool:
        return self._reason is not None or self.is_expired

    @property
    def is_expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def reason(self) -> Optional[str]:
        if self._reason is not None:
            return self._reason
        return "timeout" if self.is_expired else None

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.is_expired or self._reason == "timeout":
            raise StageTimeoutError("Stage attempt exceeded its deadline")
        if self._reason is not None:
            raise StageCancelledError(f"Stage attempt cancelled: {self._reason}")


# =============================================================================
# Base Stage
# =============================================================================


class Stage(ABC, Generic[TInput, TOutput]):
    """
    Abstract base class for pipeline stages.

    Subclasses implement ``execute`` and may override ``validate_input`` /
    ``validate_output``. Both validators default to accepting everything.
    """

    name: str = "Stage"

    @abstractmethod
    async def execute(self, input: TInput, context: "PipelineContext") -> TOutput:
        """Run the stage against the previous stage's output."""
        pass

    def validate_input(self, input: Any) -> bool:
        return True

    def validate_output(self, output: Any) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"
