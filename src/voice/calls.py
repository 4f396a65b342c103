"""Outbound call placement through the Twilio REST API."""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from ..utils.config import Settings, get_settings
from .errors import CallPlacementError
from .session import FIRST_MESSAGE_PARAMETER, PROMPT_PARAMETER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str
    connect_url: str


def get_twilio_config(settings: Optional[Settings] = None) -> TwilioConfig:
    """
    Read the Twilio settings needed to place calls.

    Raises:
        ValueError: A required Twilio setting is missing
    """
    settings = settings or get_settings()
    missing = settings.missing_twilio_credentials()
    if missing:
        raise ValueError(f"Twilio is not configured, missing: {', '.join(missing)}")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_phone_number,
        connect_url=settings.connect_url,
    )


def build_twilio_client(cfg: TwilioConfig) -> Client:
    return Client(cfg.account_sid, cfg.auth_token)


def build_connect_url(connect_url: str, prompt: Optional[str], initial_script: Optional[str]) -> str:
    """Attach the call's prompt and opening line to the TwiML webhook URL."""
    params = {
        PROMPT_PARAMETER: prompt or "",
        FIRST_MESSAGE_PARAMETER: initial_script or "",
    }
    return f"{connect_url}?{urlencode(params)}"


def place_call(
    client: Client,
    cfg: TwilioConfig,
    to: str,
    prompt: Optional[str] = None,
    initial_script: Optional[str] = None,
) -> str:
    """
    Place an outbound call that will be bridged to the agent once answered.

    Args:
        client: Twilio REST client
        cfg: Twilio configuration
        to: Destination number in E.164 format
        prompt: Agent system prompt for this call
        initial_script: First message the agent says

    Returns:
        The Twilio Call SID

    Raises:
        CallPlacementError: Twilio rejected the call or could not be reached
    """
    try:
        call = client.calls.create(
            url=build_connect_url(cfg.connect_url, prompt, initial_script),
            to=to,
            from_=cfg.from_number,
        )
    except TwilioRestException as e:
        logger.error(f"Call initiation failed: {e.msg}")
        raise CallPlacementError(f"Failed to initiate call: {e.msg}") from e
    except (TwilioException, OSError) as e:
        # requests' transport errors subclass OSError
        logger.error(f"Call initiation failed: {e}")
        raise CallPlacementError(f"Failed to initiate call: {e}") from e

    logger.info(f"Call initiated: {call.sid}")
    return str(call.sid)
