"""API key and actor header dependencies."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request


@dataclass
class ActorContext:
    """Caller-established identity and provenance for one HTTP request."""
    actor_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


async def require_api_key(
    x_aft_api_key: str = Header(..., alias="X-AFT-Api-Key"),
) -> str:
    """FastAPI dependency that validates the service API key from header."""
    from aft_engine.common.config import get_settings

    settings = get_settings()
    if x_aft_api_key != settings.api_key:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_aft_api_key


async def require_actor(
    request: Request,
    x_aft_actor_id: str = Header(..., alias="X-AFT-Actor-Id"),
    _: str = Header(..., alias="X-AFT-Api-Key"),
) -> ActorContext:
    """Resolve the acting principal established by the upstream gateway.

    The actor header is only trusted together with a valid API key; role
    resolution happens inside the orchestrator.
    """
    await require_api_key(_)
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else (
        request.client.host if request.client else None
    )
    return ActorContext(
        actor_id=x_aft_actor_id,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )
