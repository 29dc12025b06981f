"""
LangSmith tracing for pipeline runs.

Stage transitions, decisions and stage failures are sent as LangSmith runs
tagged with the pipeline trace id, so one run's records can be filtered
together. Nothing is sent unless ``LANGCHAIN_API_KEY`` is set.
"""

import asyncio
import logging
import os
from contextlib import contextmanager
from functools import lru_cache, wraps
from typing import Any, Callable, Iterator, Optional, TypeVar

from langsmith import Client
from langsmith.run_trees import RunTree

from ..config.settings import Settings, get_settings


logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def configure_langsmith(settings: Optional[Settings] = None) -> Optional[Client]:
    """Export LangSmith env vars and return a client, or None when unconfigured."""
    settings = settings or get_settings()
    if not settings.is_langsmith_configured():
        return None

    os.environ.update({
        "LANGCHAIN_TRACING_V2": str(settings.langchain_tracing_v2).lower(),
        "LANGCHAIN_PROJECT": settings.langchain_project,
        "LANGCHAIN_API_KEY": settings.langchain_api_key,
    })
    return Client()


class PipelineTracer:
    """
    Sends pipeline events to LangSmith.

    The client is created on first use. With no API key every method
    returns without doing anything, and a LangSmith failure is logged
    instead of raised.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._project = self._settings.langchain_project
        self._client: Optional[Client] = None
        self._resolved = False

    @property
    def client(self) -> Optional[Client]:
        if not self._resolved:
            self._resolved = True
            try:
                self._client = configure_langsmith(self._settings)
            except Exception as e:
                logger.warning(f"LangSmith tracing disabled: {e}")
        return self._client

    @property
    def is_enabled(self) -> bool:
        return self.client is not None

    def _record(
        self,
        name: str,
        trace_id: Optional[str],
        inputs: dict[str, Any],
        outputs: dict[str, Any],
        error: Optional[str] = None,
    ) -> None:
        if not self.is_enabled:
            return
        try:
            self.client.create_run(
                name=name,
                run_type="chain",
                project_name=self._project,
                inputs=inputs,
                outputs=outputs,
                error=error,
                tags=[f"trace:{trace_id}"] if trace_id else None,
            )
        except Exception as e:
            logger.warning(f"LangSmith run {name} not recorded: {e}")

    @contextmanager
    def span(self, name: str, run_type: str = "chain", **metadata) -> Iterator[Optional[RunTree]]:
        """
        Wrap a block in a LangSmith run; yields None when tracing is off.

        The run is posted whether the block succeeds or raises. Failing to
        post is logged and never replaces the block's own outcome.
        """
        if not self.is_enabled:
            yield None
            return

        try:
            run = RunTree(name=name, run_type=run_type, extra=metadata, project_name=self._project)
        except Exception as e:
            logger.warning(f"LangSmith span {name} not started: {e}")
            run = None
        if run is None:
            yield None
            return

        error = None
        try:
            yield run
        except Exception as e:
            error = str(e)
            raise
        finally:
            try:
                run.end(error=error)
                run.post()
            except Exception as e:
                logger.warning(f"LangSmith span {name} not recorded: {e}")

    def log_stage_transition(
        self,
        trace_id: str,
        stage: str,
        success: bool,
        duration_ms: float,
        error: Optional[str] = None,
    ) -> None:
        self._record(
            f"stage_{stage}",
            trace_id,
            inputs={"stage": stage},
            outputs={"success": success, "duration_ms": duration_ms, "error": error},
        )

    def log_decision(
        self,
        trace_id: str,
        topic: str,
        selected_value: Any,
        applied_rules: list[str],
        num_competitors: int,
    ) -> None:
        self._record(
            "conflict_resolution",
            trace_id,
            inputs={"topic": topic, "num_competitors": num_competitors},
            outputs={"selected_value": selected_value, "applied_rules": applied_rules},
        )

    def log_error(self, error: Exception, context: dict[str, Any]) -> None:
        """
        Record a failure with whatever context the caller has.

        Args:
            error: The exception, or a stand-in carrying the stage's error text
            context: Trace id, stage name and similar identifiers
        """
        self._record(
            "error",
            context.get("trace_id"),
            inputs=context,
            outputs={"error_type": type(error).__name__},
            error=str(error),
        )


@lru_cache()
def get_tracer() -> PipelineTracer:
    return PipelineTracer()


def traced(name: Optional[str] = None, run_type: str = "chain"):
    """
    Trace each call of the decorated function as a span.

    Example:
        @traced("load_ledger")
        async def load_ledger(self, doc_id, run_id): ...
    """
    def decorator(func: F) -> F:
        span_name = name or func.__name__

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with get_tracer().span(span_name, run_type=run_type):
                    return await func(*args, **kwargs)
            return async_wrapper  # type: ignore

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with get_tracer().span(span_name, run_type=run_type):
                return func(*args, **kwargs)
        return sync_wrapper  # type: ignore

    return decorator
