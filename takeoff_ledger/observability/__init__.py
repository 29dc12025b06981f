"""Observability: LangSmith tracing for pipeline runs."""

from .tracing import PipelineTracer, configure_langsmith, get_tracer, traced

__all__ = ["PipelineTracer", "configure_langsmith", "get_tracer", "traced"]
