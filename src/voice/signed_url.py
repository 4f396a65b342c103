"""
Signed URL bootstrap for the ElevenLabs conversation WebSocket.

Every call fetches a fresh URL: the signed URL is single-use and
short-lived, so nothing is cached and nothing is retried.
"""

import logging
from typing import Optional

import httpx

from .errors import UpstreamAuthError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


DEFAULT_API_BASE_URL = "https://api.elevenlabs.io"
SIGNED_URL_PATH = "/v1/convai/conversation/get_signed_url"


async def fetch_agent_endpoint(
    agent_id: str,
    api_key: str,
    *,
    base_url: str = DEFAULT_API_BASE_URL,
    timeout: float = 10.0,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Request a signed conversation URL for an agent.

    Args:
        agent_id: ElevenLabs agent ID
        api_key: ElevenLabs API key, sent as the ``xi-api-key`` header
        base_url: ElevenLabs REST API base URL
        timeout: Request timeout in seconds
        client: Optional client to reuse (the caller keeps ownership)

    Returns:
        The signed ``wss://`` URL to open the conversation on

    Raises:
        UpstreamAuthError: ElevenLabs answered with a non-success status
        UpstreamUnavailableError: The request failed or the body had no URL
    """
    if not agent_id or not api_key:
        raise ValueError("agent_id and api_key are required")

    url = f"{base_url.rstrip('/')}{SIGNED_URL_PATH}"
    params = {"agent_id": agent_id}
    headers = {"xi-api-key": api_key}

    try:
        if client is not None:
            response = await client.get(url, params=params, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned_client:
                response = await owned_client.get(url, params=params, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"[ElevenLabs] Signed URL request failed: {e}")
        raise UpstreamUnavailableError(f"Signed URL request failed: {e}") from e

    if not response.is_success:
        logger.error(
            f"[ElevenLabs] Failed to get signed URL: {response.status_code} {response.reason_phrase}"
        )
        raise UpstreamAuthError(response.status_code, response.reason_phrase)

    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamUnavailableError("Signed URL response is not JSON") from e

    signed_url = data.get("signed_url") if isinstance(data, dict) else None
    if not isinstance(signed_url, str) or not signed_url:
        raise UpstreamUnavailableError("Signed URL response has no signed_url")

    logger.info("[ElevenLabs] Signed URL obtained")
    return signed_url
