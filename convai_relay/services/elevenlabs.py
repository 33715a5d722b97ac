"""ElevenLabs Conversational AI HTTP client - signed URL issuance"""

import httpx
import logging
from typing import Optional

from convai_relay.config import get_settings
from convai_relay.exceptions import UpstreamAuthError, UpstreamError

logger = logging.getLogger(__name__)

SIGNED_URL_PATH = "/v1/convai/conversation/get_signed_url"

# Module-level shared httpx client with connection pooling.
# The API key is passed per-request, so a single client serves every caller.
_shared_client: Optional[httpx.AsyncClient] = None


def _get_shared_client() -> httpx.AsyncClient:
    global _shared_client
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(
            base_url=get_settings().ELEVENLABS_API_BASE,
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=120,
            ),
            timeout=httpx.Timeout(connect=5.0, read=15.0, write=10.0, pool=5.0),
        )
    return _shared_client


async def close_shared_client() -> None:
    """Close the shared httpx client (call on app shutdown)."""
    global _shared_client
    if _shared_client is not None and not _shared_client.is_closed:
        await _shared_client.aclose()
        _shared_client = None


async def get_signed_url(api_key: str, agent_id: str) -> str:
    """
    Ask the provider for a time-limited conversation socket URL.

    Args:
        api_key: Provider API key supplied by the widget
        agent_id: Provider agent to converse with

    Returns:
        The signed ``wss://`` URL

    Raises:
        UpstreamAuthError: The provider rejected the API key
        UpstreamError: Transport failure or unexpected provider response
    """
    client = _get_shared_client()
    try:
        response = await client.get(
            SIGNED_URL_PATH,
            params={"agent_id": agent_id},
            headers={"xi-api-key": api_key},
        )
    except httpx.HTTPError as e:
        logger.error(f"Signed URL request failed: {e}")
        raise UpstreamError("Failed to reach conversational AI provider") from e

    if response.status_code in (401, 403):
        logger.warning("Provider rejected API key for agent_id=%s (status=%s)", agent_id, response.status_code)
        raise UpstreamAuthError("Invalid API key")

    if response.status_code != 200:
        logger.error(
            "Provider signed URL error: status=%s body=%s",
            response.status_code,
            response.text[:500],
        )
        raise UpstreamError(f"Provider returned status {response.status_code}")

    try:
        signed_url = response.json().get("signed_url")
    except ValueError as e:
        raise UpstreamError("Provider returned invalid JSON") from e

    if not signed_url:
        raise UpstreamError("Provider response did not include a signed URL")
    return signed_url
