"""
Process-wide services.

Built once at process start (CLI invocation, API lifespan) and passed to
every pipeline, so runs share the policy resolver and feature flags by
reference instead of through module globals.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config.feature_flags import FeatureFlags
from .config.settings import Settings, get_settings
from .extraction import ExtractionClient, HttpExtractionClient, StaticExtractionClient
from .observability.tracing import PipelineTracer
from .policy import PolicyResolver
from .storage import KeyValueStore, LedgerStore, create_store

logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    policy_resolver: PolicyResolver
    feature_flags: FeatureFlags
    extraction_client: ExtractionClient
    ledger_store: LedgerStore
    tracer: Optional[PipelineTracer] = None


def build_services(
    settings: Optional[Settings] = None,
    extraction_client: Optional[ExtractionClient] = None,
    store: Optional[KeyValueStore] = None,
) -> PipelineServices:
    """Construct services from settings, allowing any piece to be supplied."""
    settings = settings or get_settings()

    resolver = PolicyResolver()
    if settings.policy_file:
        loaded = resolver.load_policies_file(settings.policy_file)
        logger.info(f"Loaded {len(loaded)} project policy(ies) from {settings.policy_file}")

    if extraction_client is None:
        if settings.is_extraction_service_configured():
            extraction_client = HttpExtractionClient(
                base_url=settings.extraction_service_url,
                api_key=settings.extraction_api_key,
                timeout=settings.extraction_timeout_s,
            )
        else:
            extraction_client = StaticExtractionClient()

    return PipelineServices(
        policy_resolver=resolver,
        feature_flags=FeatureFlags.from_environment(),
        extraction_client=extraction_client,
        ledger_store=LedgerStore(store or create_store(settings)),
        tracer=PipelineTracer(settings),
    )
