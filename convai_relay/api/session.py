"""Signed URL issuance endpoints"""

import logging
from typing import Optional

from cryptography.fernet import InvalidToken
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from convai_relay.database import get_db
from convai_relay.exceptions import UpstreamAuthError, UpstreamError
from convai_relay.models.widget_config import WidgetConfig
from convai_relay.schemas.session import RateLimitedResponse, SignedUrlResponse
from convai_relay.services import elevenlabs
from convai_relay.services.encryption import decrypt_api_key
from convai_relay.services.rate_limiter import FixedWindowRateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)
router = APIRouter(tags=["session"])

SIGNED_URL_REQUESTS_TOTAL = Counter(
    "signed_url_requests_total",
    "Signed URL issuance attempts by outcome",
    ["outcome"],
)


def client_key(request: Request) -> str:
    """Rate-limit key: first X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


async def _rate_limit(request: Request, limiter: FixedWindowRateLimiter) -> Optional[JSONResponse]:
    """429 response when the caller's window is exhausted, else None."""
    result = await limiter.check(client_key(request))
    if not result.exceeded:
        return None

    SIGNED_URL_REQUESTS_TOTAL.labels(outcome="rate_limited").inc()
    body = RateLimitedResponse(
        message="Too many requests, please try again later.",
        reset_time=int(result.reset_at),
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body.model_dump(by_alias=True),
        headers={"Retry-After": str(result.retry_after_seconds(limiter.now_ms()))},
    )


async def _fetch_signed_url(api_key: str, agent_id: str) -> SignedUrlResponse:
    try:
        signed_url = await elevenlabs.get_signed_url(api_key, agent_id)
    except UpstreamAuthError:
        SIGNED_URL_REQUESTS_TOTAL.labels(outcome="unauthorized").inc()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    except UpstreamError as e:
        SIGNED_URL_REQUESTS_TOTAL.labels(outcome="upstream_error").inc()
        logger.error(f"Signed URL issuance failed for agent_id={agent_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get signed URL",
        )

    SIGNED_URL_REQUESTS_TOTAL.labels(outcome="issued").inc()
    return SignedUrlResponse(signed_url=signed_url)


@router.get(
    "/get-signed-url",
    response_model=SignedUrlResponse,
    responses={429: {"model": RateLimitedResponse}},
)
async def issue_signed_url(
    request: Request,
    agent_id: Optional[str] = Query(None, alias="agentId"),
    authorization: Optional[str] = Header(None),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """
    Exchange the caller's provider API key for a signed conversation URL.

    - 401 when the bearer key is missing or rejected by the provider
    - 429 with ``resetTime`` and ``Retry-After`` when the client's window is exhausted
    - 500 when the provider cannot be reached
    """
    api_key = _bearer_token(authorization)
    if api_key is None:
        SIGNED_URL_REQUESTS_TOTAL.labels(outcome="unauthorized").inc()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    limited = await _rate_limit(request, limiter)
    if limited is not None:
        return limited

    if not agent_id:
        SIGNED_URL_REQUESTS_TOTAL.labels(outcome="bad_request").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="agentId is required")

    return await _fetch_signed_url(api_key, agent_id)


@router.get(
    "/widget-configs/{config_id}/signed-url",
    response_model=SignedUrlResponse,
    responses={429: {"model": RateLimitedResponse}},
)
async def issue_widget_signed_url(
    config_id: int,
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    db: AsyncSession = Depends(get_db),
):
    """
    Signed URL for an embedded widget, using the provider key stored with its config.

    The embedding page only knows the config id, so the provider key never
    reaches the browser. Same rate limit as ``/get-signed-url``; 404 for an
    unknown or inactive widget.
    """
    limited = await _rate_limit(request, limiter)
    if limited is not None:
        return limited

    result = await db.execute(
        select(WidgetConfig).where(WidgetConfig.id == config_id, WidgetConfig.active.is_(True))
    )
    config = result.scalar_one_or_none()
    if config is None:
        SIGNED_URL_REQUESTS_TOTAL.labels(outcome="not_found").inc()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Widget config not found")

    try:
        api_key = decrypt_api_key(config.api_key_encrypted)
    except InvalidToken:
        SIGNED_URL_REQUESTS_TOTAL.labels(outcome="key_unreadable").inc()
        logger.error(f"Stored API key for widget config {config_id} cannot be decrypted")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get signed URL",
        )

    return await _fetch_signed_url(api_key, config.agent_id)
