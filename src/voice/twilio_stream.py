"""
Twilio Media Stream adapter.

Decodes the JSON frames Twilio sends over the media stream WebSocket into
bridge events, and encodes the ``media`` and ``clear`` frames sent back.
"""

import base64
import binascii
import json
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import WebSocket, WebSocketDisconnect  # type: ignore[import-untyped]

from .errors import MalformedFrameError
from .events import (
    CallEvent,
    ConnectionState,
    InboundAudio,
    SessionStarted,
    SessionStopped,
    TwilioEventType,
)

logger = logging.getLogger(__name__)


def parse_twilio_frame(text: str) -> dict[str, Any]:
    """Parse a raw Twilio frame, raising MalformedFrameError if it is not a JSON object."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedFrameError("Frame is not a JSON object")
    return data


class TwilioStreamAdapter:
    """
    Owns the Twilio side of one call.

    The WebSocket is expected to be accepted already, so the adapter starts
    in the ``open`` state.
    """

    def __init__(self, websocket: WebSocket):
        self._ws = websocket
        self.state = ConnectionState.OPEN
        self._started = False
        self._stopped = False

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def stopped(self) -> bool:
        """True once a ``stop`` frame was seen; later frames are not processed."""
        return self._stopped

    # =========================================================================
    # Inbound
    # =========================================================================

    def decode(self, text: str) -> Optional[CallEvent]:
        """
        Decode one inbound frame.

        Malformed frames are logged and dropped; they never close the stream.

        Returns:
            The bridge event for this frame, or None if it carries nothing to route
        """
        if self._stopped:
            logger.debug("[Twilio] Frame received after stop, ignoring")
            return None

        try:
            data = parse_twilio_frame(text)
            return self._dispatch(data)
        except MalformedFrameError as e:
            logger.warning(f"[Twilio] Dropping malformed frame: {e.detail}")
            return None

    def _dispatch(self, data: dict[str, Any]) -> Optional[CallEvent]:
        event = data.get("event")
        logger.debug(f"[Twilio] Received event: {event}")

        if event == TwilioEventType.START:
            return self._on_start(data)
        if event == TwilioEventType.MEDIA:
            return self._on_media(data)
        if event == TwilioEventType.STOP:
            self._stopped = True
            logger.info("[Twilio] Stream stopped")
            return SessionStopped()

        logger.debug(f"[Twilio] Unhandled event: {event}")
        return None

    def _on_start(self, data: dict[str, Any]) -> Optional[SessionStarted]:
        if self._started:
            logger.warning("[Twilio] Duplicate start event ignored")
            return None

        start = data.get("start")
        if not isinstance(start, dict):
            raise MalformedFrameError("start frame has no start block")

        stream_sid = start.get("streamSid") or data.get("streamSid")
        if not isinstance(stream_sid, str) or not stream_sid:
            raise MalformedFrameError("start frame has no streamSid")

        custom_parameters = start.get("customParameters") or {}
        if not isinstance(custom_parameters, dict):
            raise MalformedFrameError("customParameters is not a mapping")

        self._started = True
        logger.info(f"[Twilio] Stream started - StreamSid: {stream_sid}")
        logger.info(f"[Twilio] Custom Parameters: {custom_parameters}")
        return SessionStarted(
            call_leg_id=stream_sid,
            custom_parameters={str(k): str(v) for k, v in custom_parameters.items()},
        )

    def _on_media(self, data: dict[str, Any]) -> InboundAudio:
        media = data.get("media")
        payload = media.get("payload") if isinstance(media, dict) else None
        if not isinstance(payload, str):
            raise MalformedFrameError("media frame has no payload")
        try:
            audio = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedFrameError(f"media payload is not base64: {e}") from e
        return InboundAudio(audio=audio)

    async def events(self) -> AsyncIterator[CallEvent]:
        """
        Yield bridge events until the stream stops or the socket goes away.

        A disconnect ends iteration and marks the adapter closed.
        """
        while self.is_open and not self._stopped:
            try:
                message = await self._ws.receive_text()
            except WebSocketDisconnect:
                logger.info("[Twilio] Disconnected")
                self.state = ConnectionState.CLOSED
                return
            except RuntimeError as e:
                # Starlette raises RuntimeError when receiving on a closed socket
                logger.info(f"[Twilio] WebSocket closed: {e}")
                self.state = ConnectionState.CLOSED
                return

            event = self.decode(message)
            if event is not None:
                yield event

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send_media(self, call_leg_id: Optional[str], payload: str) -> bool:
        """Send agent audio to the caller. Returns False if it was dropped."""
        return await self._send(
            call_leg_id,
            {
                "event": TwilioEventType.MEDIA.value,
                "streamSid": call_leg_id,
                "media": {"payload": payload},
            },
        )

    async def send_clear(self, call_leg_id: Optional[str]) -> bool:
        """Tell Twilio to drop any audio queued for playback."""
        sent = await self._send(
            call_leg_id,
            {"event": TwilioEventType.CLEAR.value, "streamSid": call_leg_id},
        )
        if sent:
            logger.debug("[Twilio] Cleared playback buffer")
        return sent

    async def _send(self, call_leg_id: Optional[str], message: dict[str, Any]) -> bool:
        if not self.is_open:
            logger.warning(f"[Twilio] Not open ({self.state.value}), dropping {message['event']} frame")
            return False
        if not call_leg_id:
            logger.warning(f"[Twilio] No StreamSid yet, dropping {message['event']} frame")
            return False

        try:
            await self._ws.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.error(f"[Twilio] Failed to send {message['event']} frame: {e}")
            self.state = ConnectionState.CLOSED
            return False
        return True

    async def close(self) -> None:
        """Close the media stream socket. Safe to call more than once."""
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return

        self.state = ConnectionState.CLOSING
        try:
            await self._ws.close()
        except (WebSocketDisconnect, RuntimeError) as e:
            # Already closed by the peer
            logger.debug(f"[Twilio] Close on finished socket: {e}")
        finally:
            self.state = ConnectionState.CLOSED
