"""
Relay Bridge: Coordinates audio flow between Twilio and ElevenLabs.

This module handles:
- Deferred agent setup (signed URL + handshake) once Twilio reports ``start``
- Bidirectional audio forwarding (Twilio <-> ElevenLabs)
- Barge-in handling (agent interruption clears Twilio playback)
- Teardown of both connections when the call ends

One RelayBridge exists per media stream connection and owns everything
that call touches; nothing is shared between calls.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..utils.config import Settings
from .elevenlabs_agent import ElevenLabsAgentClient
from .errors import RelayConnectionError, UpstreamAuthError, UpstreamUnavailableError
from .events import (
    AgentEvent,
    CallEvent,
    InboundAudio,
    Interrupt,
    OutboundAudio,
    SessionStarted,
    SessionStopped,
)
from .session import SessionState
from .signed_url import fetch_agent_endpoint
from .twilio_stream import TwilioStreamAdapter

logger = logging.getLogger(__name__)

EndpointFetcher = Callable[[], Awaitable[str]]
AgentFactory = Callable[[SessionState], ElevenLabsAgentClient]


class RelayPhase(str, Enum):
    """Phases of one relayed call."""
    AWAITING_START = "awaiting_start"
    BRIDGING = "bridging"
    TERMINATED = "terminated"


class RelayBridge:
    """
    Bridges audio between a Twilio Media Stream and an ElevenLabs agent.

    The agent connection cannot exist before the Twilio ``start`` event,
    since its handshake is built from the call's custom parameters. Until
    then the bridge is ``awaiting_start`` and caller audio is dropped.
    """

    def __init__(
        self,
        call: TwilioStreamAdapter,
        endpoint_fetcher: EndpointFetcher,
        agent_factory: AgentFactory = ElevenLabsAgentClient,
    ):
        """
        Initialize the relay bridge.

        Args:
            call: Adapter for the accepted Twilio media stream
            endpoint_fetcher: Coroutine function returning a fresh signed agent URL
            agent_factory: Builds the agent client for a started session
        """
        self.call = call
        self.agent: Optional[ElevenLabsAgentClient] = None
        self.session: Optional[SessionState] = None
        self.phase = RelayPhase.AWAITING_START

        self._fetch_endpoint = endpoint_fetcher
        self._agent_factory = agent_factory
        self._agent_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, call: TwilioStreamAdapter, settings: Settings) -> "RelayBridge":
        """Build a bridge that fetches signed URLs with the configured credentials."""

        async def fetch() -> str:
            return await fetch_agent_endpoint(
                settings.elevenlabs_agent_id,
                settings.elevenlabs_api_key,
                base_url=settings.elevenlabs_api_base_url,
                timeout=settings.signed_url_timeout_seconds,
            )

        return cls(call, endpoint_fetcher=fetch)

    @property
    def call_leg_id(self) -> Optional[str]:
        return self.session.call_leg_id if self.session else None

    @property
    def _label(self) -> str:
        return f"[Relay {self.call_leg_id or 'pending'}]"

    async def run(self) -> None:
        """Relay the call until Twilio stops the stream or disconnects."""
        try:
            async for event in self.call.events():
                await self.handle_call_event(event)
                if self.phase == RelayPhase.TERMINATED:
                    break
        except Exception as e:
            logger.error(f"{self._label} Relay error: {e}")
            raise
        finally:
            await self.shutdown()

    # =========================================================================
    # Twilio -> ElevenLabs
    # =========================================================================

    async def handle_call_event(self, event: CallEvent) -> None:
        """Route one event decoded from the Twilio side."""
        if self.phase == RelayPhase.TERMINATED:
            logger.debug(f"{self._label} Call event after termination ignored: {event!r}")
            return

        if isinstance(event, SessionStarted):
            self._start_session(event)

        elif isinstance(event, InboundAudio):
            if self.agent is None:
                logger.debug(f"{self._label} Audio before stream start, dropping")
                return
            await self.agent.send_audio(event.audio)

        elif isinstance(event, SessionStopped):
            logger.info(f"{self._label} Stream {self.call_leg_id} ended")
            await self.shutdown()

    def _start_session(self, event: SessionStarted) -> None:
        if self.phase != RelayPhase.AWAITING_START:
            logger.warning(f"{self._label} Stream already started, ignoring start")
            return

        self.session = SessionState(
            call_leg_id=event.call_leg_id,
            init_params=event.custom_parameters,
        )
        self.agent = self._agent_factory(self.session)
        self.phase = RelayPhase.BRIDGING

        # Setup runs beside the Twilio loop so media frames keep being read
        self._agent_task = asyncio.create_task(self._run_agent(self.agent))

    async def _run_agent(self, agent: ElevenLabsAgentClient) -> None:
        try:
            endpoint = await self._fetch_endpoint()
            await agent.open(endpoint)
        except (UpstreamAuthError, UpstreamUnavailableError, RelayConnectionError) as e:
            logger.error(f"{self._label} ElevenLabs setup failed, call continues without agent: {e.detail}")
            return

        async for event in agent.events():
            await self.handle_agent_event(event)

        if self.phase == RelayPhase.BRIDGING:
            logger.warning(f"{self._label} ElevenLabs connection ended while call is still up")

    # =========================================================================
    # ElevenLabs -> Twilio
    # =========================================================================

    async def handle_agent_event(self, event: AgentEvent) -> None:
        """Route one event decoded from the ElevenLabs side."""
        if self.phase != RelayPhase.BRIDGING or self.session is None:
            logger.info(f"{self._label} Agent event with no call leg, dropping {type(event).__name__}")
            return

        if isinstance(event, OutboundAudio):
            await self.call.send_media(self.session.call_leg_id, event.payload)

        elif isinstance(event, Interrupt):
            await self.call.send_clear(self.session.call_leg_id)

    # =========================================================================
    # Teardown
    # =========================================================================

    async def shutdown(self) -> None:
        """Close both connections and release the session. Safe to call more than once."""
        if self.phase == RelayPhase.TERMINATED:
            return

        label = self._label
        self.phase = RelayPhase.TERMINATED

        if self.agent is not None:
            await self.agent.close()

        task = self._agent_task
        if task is not None and task is not asyncio.current_task():
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"{label} ElevenLabs task error: {e}")

        await self.call.close()

        self.session = None
        self.agent = None
        self._agent_task = None
        logger.info(f"{label} Relay terminated")
