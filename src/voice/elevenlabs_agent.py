"""
ElevenLabs Conversational AI WebSocket client.

Opens the conversation on a signed URL, sends the initiation handshake
built from the call's custom parameters, answers keepalive pings and
translates agent messages into bridge events.
"""

import asyncio
import base64
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .errors import MalformedFrameError, RelayConnectionError
from .events import AgentEvent, AgentEventType, ConnectionState, Interrupt, OutboundAudio
from .session import SessionState

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


def build_initiation_message(session: SessionState) -> dict[str, Any]:
    """
    Build the ``conversation_initiation_client_data`` handshake.

    The prompt and first message come from the call's custom parameters;
    whichever is missing is left out so the agent's own default applies.
    """
    agent: dict[str, Any] = {}
    if session.prompt is not None:
        agent["prompt"] = {"prompt": session.prompt}
    if session.first_message is not None:
        agent["first_message"] = session.first_message

    return {
        "type": AgentEventType.CONVERSATION_INITIATION_CLIENT_DATA.value,
        "conversation_config_override": {
            "agent": agent,
        },
    }


def parse_agent_frame(raw: Union[str, bytes]) -> dict[str, Any]:
    """Parse a raw agent message, raising MalformedFrameError if it is not a JSON object."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedFrameError("Message is not a JSON object")
    return data


def extract_audio_payload(data: dict[str, Any]) -> Optional[str]:
    """Get the base64 audio from either ``audio.chunk`` or ``audio_event.audio_base_64``."""
    audio = data.get("audio")
    if isinstance(audio, dict) and audio.get("chunk"):
        return audio["chunk"]

    audio_event = data.get("audio_event")
    if isinstance(audio_event, dict) and audio_event.get("audio_base_64"):
        return audio_event["audio_base_64"]

    return None


class ElevenLabsAgentClient:
    """
    Client for one ElevenLabs conversation.

    The client can only be built from a started session: the handshake
    needs the custom parameters Twilio reports in its ``start`` event.
    """

    def __init__(self, session: SessionState, connector: Optional[Connector] = None):
        """
        Initialize the client.

        Args:
            session: Session state of the call being bridged
            connector: Coroutine function opening the WebSocket
                       (defaults to ``websockets.connect``)
        """
        self.session = session
        self._connector = connector
        self._ws: Optional[Any] = None
        self.state = ConnectionState.IDLE
        self.conversation_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN and self._ws is not None

    async def open(self, endpoint: str) -> None:
        """
        Connect to the signed URL and send the initiation handshake.

        Args:
            endpoint: Signed conversation URL

        Raises:
            RelayConnectionError: The connection or the handshake failed
        """
        if self.state != ConnectionState.IDLE:
            raise RelayConnectionError(f"Cannot open agent connection in state {self.state.value}")

        self.state = ConnectionState.CONNECTING
        connect = self._connector or websockets.connect
        try:
            self._ws = await connect(endpoint, max_size=None)
        except (OSError, InvalidURI, InvalidHandshake, asyncio.TimeoutError) as e:
            self.state = ConnectionState.CLOSED
            logger.error(f"[ElevenLabs] Failed to connect: {e}")
            raise RelayConnectionError(f"Failed to connect to agent: {e}") from e

        if self.state != ConnectionState.CONNECTING:
            # close() ran while the connection was being established
            await self._ws.close()
            self._ws = None
            raise RelayConnectionError("Agent connection closed during connect")

        logger.info("[ElevenLabs] Connected to Conversational AI")

        initial_config = build_initiation_message(self.session)
        agent_override = initial_config["conversation_config_override"]["agent"]
        logger.info(f"[ElevenLabs] Sending initial config - Prompt: {agent_override.get('prompt', {}).get('prompt')}")
        logger.info(f"[ElevenLabs] Sending initial config - First Message: {agent_override.get('first_message')}")

        try:
            await self._ws.send(json.dumps(initial_config))
        except ConnectionClosed as e:
            self.state = ConnectionState.CLOSED
            self._ws = None
            raise RelayConnectionError(f"Agent closed during handshake: {e}") from e

        self.state = ConnectionState.OPEN

    # =========================================================================
    # Inbound
    # =========================================================================

    async def handle_frame(self, raw: Union[str, bytes]) -> Optional[AgentEvent]:
        """
        Handle one agent message.

        Pings are answered here, on this connection, before returning.
        Malformed messages are logged and dropped.

        Returns:
            The bridge event for this message, or None if there is nothing to route
        """
        try:
            data = parse_agent_frame(raw)
        except MalformedFrameError as e:
            logger.warning(f"[ElevenLabs] Dropping malformed message: {e.detail}")
            return None

        message_type = data.get("type")

        if message_type == AgentEventType.CONVERSATION_INITIATION_METADATA:
            metadata = data.get("conversation_initiation_metadata_event") or {}
            if isinstance(metadata, dict):
                self.conversation_id = metadata.get("conversation_id")
            logger.info(f"[ElevenLabs] Received initiation metadata (conversation {self.conversation_id})")
            return None

        if message_type == AgentEventType.AUDIO:
            payload = extract_audio_payload(data)
            if payload is None:
                logger.warning("[ElevenLabs] Audio message without payload")
                return None
            return OutboundAudio(payload=payload)

        if message_type == AgentEventType.INTERRUPTION:
            logger.info("[ElevenLabs] Interruption")
            return Interrupt()

        if message_type == AgentEventType.PING:
            await self._answer_ping(data)
            return None

        logger.debug(f"[ElevenLabs] Unhandled message type: {message_type}")
        return None

    async def _answer_ping(self, data: dict[str, Any]) -> None:
        ping_event = data.get("ping_event")
        event_id = ping_event.get("event_id") if isinstance(ping_event, dict) else None
        if event_id is None:
            logger.warning("[ElevenLabs] Ping without event_id")
            return

        await self._send({"type": AgentEventType.PONG.value, "event_id": event_id})

    async def events(self) -> AsyncIterator[AgentEvent]:
        """
        Yield bridge events until the agent connection closes.

        A close or transport error ends iteration and marks the client closed.
        """
        if self._ws is None:
            raise RelayConnectionError("Agent connection is not open")

        try:
            async for message in self._ws:
                event = await self.handle_frame(message)
                if event is not None:
                    yield event
        except ConnectionClosed as e:
            logger.info(f"[ElevenLabs] Connection closed: {e}")
        except OSError as e:
            logger.error(f"[ElevenLabs] WebSocket error: {e}")
        finally:
            if self.state != ConnectionState.CLOSING:
                self.state = ConnectionState.CLOSED
            logger.info("[ElevenLabs] Disconnected")

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send_audio(self, audio: bytes) -> bool:
        """
        Send caller audio as a user audio chunk.

        Returns:
            False if the chunk was dropped because the connection is not open
        """
        if not self.is_open:
            logger.debug(f"[ElevenLabs] Not open ({self.state.value}), dropping audio chunk")
            return False

        return await self._send({"user_audio_chunk": base64.b64encode(audio).decode("ascii")})

    async def _send(self, message: dict[str, Any]) -> bool:
        if not self.is_open:
            logger.warning(f"[ElevenLabs] Not open ({self.state.value}), dropping message")
            return False

        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            logger.error(f"[ElevenLabs] Send failed, connection closed: {e}")
            self.state = ConnectionState.CLOSED
            return False
        return True

    async def close(self) -> None:
        """Close the conversation. Safe to call when idle or already closed."""
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return

        self.state = ConnectionState.CLOSING
        ws, self._ws = self._ws, None
        try:
            if ws is not None:
                await ws.close()
        finally:
            self.state = ConnectionState.CLOSED
