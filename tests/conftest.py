"""
Shared fixtures and fakes for the relay tests.

Settings are read from the environment when ``src.voice.app`` is imported,
so the required variables are set here before any test module imports it.
"""

import asyncio
import json
import os

import pytest
from fastapi import WebSocketDisconnect

os.environ["ELEVENLABS_API_KEY"] = "test-api-key"
os.environ["ELEVENLABS_AGENT_ID"] = "test-agent-id"
os.environ["PUBLIC_BASE_URL"] = "https://relay.example.com"
for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"):
    os.environ.pop(name, None)

from src.voice.elevenlabs_agent import ElevenLabsAgentClient  # noqa: E402
from src.voice.session import SessionState  # noqa: E402

STREAM_SID = "MZ0123456789abcdef"

_CLOSE = object()


# ============================================================================
# Frame builders
# ============================================================================


def start_frame(stream_sid: str = STREAM_SID, **custom_parameters) -> str:
    return json.dumps({
        "event": "start",
        "streamSid": stream_sid,
        "start": {
            "streamSid": stream_sid,
            "callSid": "CA0123456789abcdef",
            "customParameters": custom_parameters,
        },
    })


def media_frame(payload: str) -> str:
    return json.dumps({
        "event": "media",
        "streamSid": STREAM_SID,
        "media": {"track": "inbound", "chunk": "1", "timestamp": "5", "payload": payload},
    })


def stop_frame() -> str:
    return json.dumps({"event": "stop", "streamSid": STREAM_SID})


def agent_audio_frame(chunk: str) -> str:
    return json.dumps({"type": "audio", "audio": {"chunk": chunk}})


# ============================================================================
# Fakes
# ============================================================================


class FakeTwilioWebSocket:
    """Stands in for an accepted FastAPI WebSocket carrying a Twilio Media Stream."""

    def __init__(self, frames=()):
        self.sent: list[dict] = []
        self.closed = False
        self._frames = list(frames)
        self._queue = None

    @property
    def queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
            for frame in self._frames:
                self._queue.put_nowait(frame)
        return self._queue

    def feed(self, frame: str) -> None:
        self.queue.put_nowait(frame)

    def disconnect(self) -> None:
        self.queue.put_nowait(_CLOSE)

    async def receive_text(self) -> str:
        item = await self.queue.get()
        if item is _CLOSE:
            raise WebSocketDisconnect(code=1000)
        return item

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.closed = True


class FakeAgentConnection:
    """Stands in for a ``websockets`` client connection to ElevenLabs."""

    def __init__(self, frames=()):
        self.sent: list[dict] = []
        self.closed = False
        self._frames = list(frames)
        self._queue = None

    @property
    def queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
            for frame in self._frames:
                self._queue.put_nowait(frame)
        return self._queue

    def feed(self, frame) -> None:
        """Queue a raw message, or an exception to raise from the iterator."""
        self.queue.put_nowait(frame)

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


def make_connector(connection: FakeAgentConnection, calls: list = None):
    """Build a connector that hands out the given fake connection."""

    async def connect(url, **kwargs):
        if calls is not None:
            calls.append(url)
        return connection

    return connect


async def wait_until(predicate, steps: int = 200) -> None:
    """Yield to the event loop until predicate() holds."""
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def session():
    return SessionState(
        call_leg_id=STREAM_SID,
        init_params={"prompt": "You are a helpful assistant.", "initialScript": "Hi, this is Ava."},
    )


@pytest.fixture
def agent_connection():
    return FakeAgentConnection()


@pytest.fixture
def agent_client(session, agent_connection):
    return ElevenLabsAgentClient(session, connector=make_connector(agent_connection))
