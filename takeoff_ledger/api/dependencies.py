"""Request-scoped access to process services."""

from fastapi import HTTPException, Request

from ..services import PipelineServices


def get_services(request: Request) -> PipelineServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services
