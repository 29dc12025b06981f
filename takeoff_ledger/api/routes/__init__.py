"""API route modules."""

from .health import router as health_router
from .ledgers import router as ledgers_router
from .policies import router as policies_router
from .runs import router as runs_router

__all__ = ["health_router", "ledgers_router", "policies_router", "runs_router"]
