"""
Voice relay module for AI-agent phone calls.

This module bridges real-time call audio using:
- Twilio Media Streams for telephony
- ElevenLabs Conversational AI for speech-to-speech processing
"""

from .bridge import RelayBridge, RelayPhase
from .elevenlabs_agent import ElevenLabsAgentClient
from .session import SessionState
from .signed_url import fetch_agent_endpoint
from .twilio_stream import TwilioStreamAdapter

__all__ = [
    "RelayBridge",
    "RelayPhase",
    "ElevenLabsAgentClient",
    "SessionState",
    "TwilioStreamAdapter",
    "fetch_agent_endpoint",
]
