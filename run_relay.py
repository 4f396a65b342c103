#!/usr/bin/env python3
"""
Run script for the Twilio <-> ElevenLabs relay.

Usage:
    python run_relay.py

Make sure to:
1. Copy .env.example to .env and fill in your API keys
2. Start ngrok: ngrok http 5050
3. Update PUBLIC_BASE_URL in .env with the ngrok URL
4. POST {"to": "+1...", "prompt": "...", "initialScript": "..."} to /make-call
"""

import logging
import os
import sys

# Configure logging VERY early, before any other imports that might use it
# This suppresses noisy debug output from third-party libraries
logging.getLogger("websockets").setLevel(logging.WARNING)
logging.getLogger("websockets.client").setLevel(logging.WARNING)
logging.getLogger("websockets.server").setLevel(logging.WARNING)
logging.getLogger("python_multipart").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

# Add src to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def main():
    """Run the relay server."""
    import uvicorn
    from src.utils.config import get_settings

    settings = get_settings()

    print("=" * 60)
    print("Twilio ElevenLabs Relay")
    print("=" * 60)
    print(f"Server: http://{settings.host}:{settings.port}")
    print(f"Public URL: {settings.public_base_url}")
    print(f"ElevenLabs Agent: {settings.elevenlabs_agent_id}")
    print("=" * 60)
    print()
    print("Endpoints:")
    print(f"  - Health: http://{settings.host}:{settings.port}/health")
    print(f"  - Make Call: POST {settings.public_base_url}/make-call")
    print(f"  - TwiML: {settings.connect_url}")
    print(f"  - Media Stream: WS /media-stream")
    print()
    print(f"Ensure ngrok is running: ngrok http {settings.port}")
    print("Update PUBLIC_BASE_URL in .env with the ngrok URL after starting ngrok")
    print()

    # "info" keeps uvicorn from logging every websocket frame
    uvicorn.run(
        "src.voice.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
