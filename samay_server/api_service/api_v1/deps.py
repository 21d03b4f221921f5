from fastapi import Request

from samay_server.api_service.services.tag_resolver import TagResolver
from samay_server.processing_service.runner import JobRunner


def get_tag_resolver(request: Request) -> TagResolver:
    """The resolver built at startup, shared by every ingest request."""
    return request.app.state.tag_resolver


def get_job_runner(request: Request) -> JobRunner:
    return request.app.state.job_runner
