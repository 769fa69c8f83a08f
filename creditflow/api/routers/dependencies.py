"""Request-scoped access to the process pipeline."""

from fastapi import Request

from ...core.pipeline import Pipeline
from ..shared.exceptions import ServiceUnavailableError


def get_pipeline(request: Request) -> Pipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise ServiceUnavailableError("Pipeline not initialized")
    return pipeline
