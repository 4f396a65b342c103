"""TwiML returned to Twilio when a placed call is answered."""

from typing import Mapping, Optional

from twilio.twiml.voice_response import Connect, VoiceResponse


def media_stream_url_for(host: str) -> str:
    """Media stream URL on the host Twilio used to reach this server."""
    return f"wss://{host}/media-stream"


def build_connect_twiml(
    stream_url: str,
    parameters: Mapping[str, Optional[str]],
    *,
    say_text: Optional[str] = None,
) -> str:
    """
    Build TwiML that bridges the call to our media stream endpoint.

    Args:
        stream_url: WebSocket URL of the media stream endpoint
        parameters: Custom parameters echoed back in the stream's ``start`` event
        say_text: Optional message spoken while the bridge is set up

    Returns:
        The TwiML document as a string
    """
    response = VoiceResponse()
    if say_text:
        response.say(say_text)

    connect = Connect()
    stream = connect.stream(url=stream_url)
    for name, value in parameters.items():
        if value is not None:
            stream.parameter(name=name, value=value)
    response.append(connect)

    return str(response)
