"""
Internal event model shared by the two connection adapters and the bridge.

Each adapter decodes its provider's wire frames into one of these events,
so the bridge never touches raw Twilio or ElevenLabs JSON.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class ConnectionState(str, Enum):
    """Lifecycle of one duplex connection."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class TwilioEventType(str, Enum):
    """Twilio Media Stream event types."""
    # Inbound
    START = "start"
    MEDIA = "media"
    STOP = "stop"

    # Outbound
    CLEAR = "clear"


class AgentEventType(str, Enum):
    """ElevenLabs Conversational AI message types."""
    # Client -> agent
    CONVERSATION_INITIATION_CLIENT_DATA = "conversation_initiation_client_data"
    PONG = "pong"

    # Agent -> client
    CONVERSATION_INITIATION_METADATA = "conversation_initiation_metadata"
    AUDIO = "audio"
    INTERRUPTION = "interruption"
    PING = "ping"


# =============================================================================
# Call-side events
# =============================================================================


@dataclass(frozen=True)
class SessionStarted:
    """The media stream started; the call leg is now known."""
    call_leg_id: str
    custom_parameters: dict = field(default_factory=dict)


@dataclass(frozen=True)
class InboundAudio:
    """Decoded caller audio."""
    audio: bytes


@dataclass(frozen=True)
class SessionStopped:
    """The media stream ended."""


# =============================================================================
# Agent-side events
# =============================================================================


@dataclass(frozen=True)
class OutboundAudio:
    """Base64-encoded agent audio destined for the caller."""
    payload: str


@dataclass(frozen=True)
class Interrupt:
    """The caller barged in; queued agent audio must be discarded."""


CallEvent = Union[SessionStarted, InboundAudio, SessionStopped]
AgentEvent = Union[OutboundAudio, Interrupt]
