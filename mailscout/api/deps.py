from __future__ import annotations

from fastapi import Request

from mailscout.services.orchestrator import ChatOrchestrator
from mailscout.services.rate_limiter import SlidingWindowRateLimiter


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.rate_limiter


def client_id(request: Request) -> str:
    """Identify the caller by remote host."""
    if request.client is not None and request.client.host:
        return request.client.host
    return "anonymous"


async def enforce_rate_limit(request: Request) -> None:
    await get_rate_limiter(request).check(client_id(request))
