"""
Tests for the ElevenLabs Conversational AI client.

Verifies that ElevenLabsAgentClient:
- Sends the initiation handshake before anything else
- Translates audio and interruption messages
- Answers pings with a matching pong
- Drops audio while not open and closes idempotently
"""

import base64
import json

import pytest
from websockets.exceptions import ConnectionClosedError, InvalidURI

from conftest import FakeAgentConnection, make_connector
from src.voice.elevenlabs_agent import (
    ElevenLabsAgentClient,
    build_initiation_message,
    extract_audio_payload,
)
from src.voice.errors import RelayConnectionError
from src.voice.events import ConnectionState, Interrupt, OutboundAudio
from src.voice.session import SessionState

ENDPOINT = "wss://api.elevenlabs.io/v1/convai/conversation?agent_id=a&conversation_signature=s"


# ============================================================================
# Test: Handshake
# ============================================================================


class TestInitiationMessage:
    """Test the conversation_initiation_client_data message."""

    def test_carries_prompt_and_first_message(self, session):
        """Test the override block is built from the custom parameters."""
        message = build_initiation_message(session)

        assert message == {
            "type": "conversation_initiation_client_data",
            "conversation_config_override": {
                "agent": {
                    "prompt": {"prompt": "You are a helpful assistant."},
                    "first_message": "Hi, this is Ava.",
                },
            },
        }

    def test_missing_parameters_are_omitted(self):
        """Test absent or empty parameters do not override agent defaults."""
        message = build_initiation_message(
            SessionState(call_leg_id="MZ1", init_params={"prompt": ""})
        )

        assert message["conversation_config_override"]["agent"] == {}


class TestOpen:
    """Test opening the agent connection."""

    @pytest.mark.asyncio
    async def test_open_sends_handshake_first(self, session, agent_connection):
        """Test the handshake is the first frame and the client ends up open."""
        urls = []
        client = ElevenLabsAgentClient(session, connector=make_connector(agent_connection, urls))

        assert client.state == ConnectionState.IDLE
        await client.open(ENDPOINT)

        assert urls == [ENDPOINT]
        assert client.state == ConnectionState.OPEN
        assert agent_connection.sent[0]["type"] == "conversation_initiation_client_data"
        assert len(agent_connection.sent) == 1

    @pytest.mark.asyncio
    async def test_connect_failure_raises_connection_error(self, session):
        """Test connect failures surface as RelayConnectionError and close the client."""

        async def failing_connect(url, **kwargs):
            raise OSError("connection refused")

        client = ElevenLabsAgentClient(session, connector=failing_connect)

        with pytest.raises(RelayConnectionError):
            await client.open(ENDPOINT)
        assert client.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_invalid_uri_raises_connection_error(self, session):
        """Test a bad signed URL surfaces as RelayConnectionError."""

        async def bad_uri(url, **kwargs):
            raise InvalidURI(url, "not a websocket URI")

        client = ElevenLabsAgentClient(session, connector=bad_uri)

        with pytest.raises(RelayConnectionError):
            await client.open("https://not-ws")

    @pytest.mark.asyncio
    async def test_open_twice_is_rejected(self, agent_client):
        """Test a client opens exactly one connection."""
        await agent_client.open(ENDPOINT)

        with pytest.raises(RelayConnectionError):
            await agent_client.open(ENDPOINT)


# ============================================================================
# Test: Inbound messages
# ============================================================================


class TestHandleFrame:
    """Test dispatch of agent messages."""

    @pytest.mark.asyncio
    async def test_audio_chunk_path(self, agent_client):
        """Test audio under audio.chunk becomes OutboundAudio."""
        event = await agent_client.handle_frame(json.dumps({"type": "audio", "audio": {"chunk": "AAAA"}}))

        assert event == OutboundAudio(payload="AAAA")

    @pytest.mark.asyncio
    async def test_audio_event_path(self, agent_client):
        """Test audio under audio_event.audio_base_64 becomes OutboundAudio."""
        frame = {"type": "audio", "audio_event": {"audio_base_64": "BBBB", "event_id": 3}}
        event = await agent_client.handle_frame(json.dumps(frame))

        assert event == OutboundAudio(payload="BBBB")

    @pytest.mark.asyncio
    async def test_audio_without_payload_is_dropped(self, agent_client):
        """Test audio messages with neither path yield nothing."""
        assert await agent_client.handle_frame(json.dumps({"type": "audio"})) is None

    @pytest.mark.asyncio
    async def test_interruption(self, agent_client):
        """Test interruption becomes Interrupt."""
        frame = {"type": "interruption", "interruption_event": {"event_id": 7}}

        assert await agent_client.handle_frame(json.dumps(frame)) == Interrupt()

    @pytest.mark.asyncio
    async def test_metadata_records_conversation_id(self, agent_client):
        """Test initiation metadata is informational only."""
        frame = {
            "type": "conversation_initiation_metadata",
            "conversation_initiation_metadata_event": {"conversation_id": "conv_123"},
        }

        assert await agent_client.handle_frame(json.dumps(frame)) is None
        assert agent_client.conversation_id == "conv_123"

    @pytest.mark.asyncio
    async def test_ping_answered_with_pong(self, agent_client, agent_connection):
        """Test a ping produces exactly one pong echoing its event_id."""
        await agent_client.open(ENDPOINT)
        agent_connection.sent.clear()

        frame = {"type": "ping", "ping_event": {"event_id": "x1", "ping_ms": 50}}
        event = await agent_client.handle_frame(json.dumps(frame))

        assert event is None
        assert agent_connection.sent == [{"type": "pong", "event_id": "x1"}]

    @pytest.mark.asyncio
    async def test_ping_without_event_id(self, agent_client, agent_connection):
        """Test a ping with no event_id is not answered."""
        await agent_client.open(ENDPOINT)
        agent_connection.sent.clear()

        await agent_client.handle_frame(json.dumps({"type": "ping", "ping_event": {}}))

        assert agent_connection.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message_type", ["user_transcript", "agent_response", "vad_score", "brand_new"])
    async def test_other_types_are_ignored(self, agent_client, message_type):
        """Test unrecognized types are logged and ignored."""
        assert await agent_client.handle_frame(json.dumps({"type": message_type})) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["{not json", "42", b"\x00\x01"])
    async def test_malformed_messages_are_dropped(self, agent_client, raw):
        """Test malformed messages never raise."""
        assert await agent_client.handle_frame(raw) is None
        assert agent_client.state == ConnectionState.IDLE

    def test_extract_audio_payload_prefers_chunk(self):
        """Test audio.chunk wins when both paths are present."""
        data = {"audio": {"chunk": "A"}, "audio_event": {"audio_base_64": "B"}}

        assert extract_audio_payload(data) == "A"


class TestEvents:
    """Test iterating events from the connection."""

    @pytest.mark.asyncio
    async def test_events_translate_and_answer_pings(self, session):
        """Test audio and interruptions are yielded in order and pings answered inline."""
        connection = FakeAgentConnection([
            json.dumps({"type": "conversation_initiation_metadata"}),
            json.dumps({"type": "audio", "audio": {"chunk": "A"}}),
            json.dumps({"type": "ping", "ping_event": {"event_id": 1}}),
            json.dumps({"type": "interruption"}),
            json.dumps({"type": "audio", "audio_event": {"audio_base_64": "B"}}),
        ])
        client = ElevenLabsAgentClient(session, connector=make_connector(connection))
        await client.open(ENDPOINT)

        events = []
        async for event in client.events():
            events.append(event)
            if len(events) == 3:
                await client.close()

        assert events == [OutboundAudio("A"), Interrupt(), OutboundAudio("B")]
        assert {"type": "pong", "event_id": 1} in connection.sent
        assert client.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_transport_error_closes_client(self, agent_client, agent_connection):
        """Test a transport error ends iteration and marks the client closed."""
        await agent_client.open(ENDPOINT)
        agent_connection.feed(json.dumps({"type": "audio", "audio": {"chunk": "A"}}))
        agent_connection.feed(ConnectionClosedError(None, None))

        events = [event async for event in agent_client.events()]

        assert events == [OutboundAudio("A")]
        assert agent_client.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_events_before_open_raises(self, agent_client):
        """Test iterating an unopened client is an error."""
        with pytest.raises(RelayConnectionError):
            async for _ in agent_client.events():
                pass


# ============================================================================
# Test: Outbound audio and close
# ============================================================================


class TestOutbound:
    """Test user audio and closing."""

    @pytest.mark.asyncio
    async def test_send_audio_reencodes_base64(self, agent_client, agent_connection):
        """Test raw caller audio is sent as a base64 user_audio_chunk."""
        await agent_client.open(ENDPOINT)
        raw = b"\xff\xfe\x00\x10"

        assert await agent_client.send_audio(raw)

        assert agent_connection.sent[-1] == {"user_audio_chunk": base64.b64encode(raw).decode()}

    @pytest.mark.asyncio
    async def test_send_audio_before_open_is_dropped(self, agent_client, agent_connection):
        """Test audio is dropped rather than queued while not open."""
        assert not await agent_client.send_audio(b"\x00")

        assert agent_connection.sent == []

    @pytest.mark.asyncio
    async def test_send_order_preserved(self, agent_client, agent_connection):
        """Test chunks A, B, C are sent in that order."""
        await agent_client.open(ENDPOINT)
        for chunk in (b"A", b"B", b"C"):
            await agent_client.send_audio(chunk)

        sent = [base64.b64decode(m["user_audio_chunk"]) for m in agent_connection.sent[1:]]
        assert sent == [b"A", b"B", b"C"]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, agent_client, agent_connection):
        """Test close can be called repeatedly."""
        await agent_client.open(ENDPOINT)
        await agent_client.close()
        await agent_client.close()

        assert agent_client.state == ConnectionState.CLOSED
        assert agent_connection.closed

    @pytest.mark.asyncio
    async def test_close_when_never_opened(self, agent_client):
        """Test closing an idle client is safe."""
        await agent_client.close()

        assert agent_client.state == ConnectionState.CLOSED
        assert not await agent_client.send_audio(b"\x00")
