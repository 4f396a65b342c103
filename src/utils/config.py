"""
Configuration management using pydantic-settings.

Loads settings from environment variables and .env files.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ElevenLabs Configuration
    elevenlabs_api_key: str = Field(
        ...,
        description="ElevenLabs API key used to request signed conversation URLs",
    )
    elevenlabs_agent_id: str = Field(
        ...,
        description="ElevenLabs Conversational AI agent ID",
    )
    elevenlabs_api_base_url: str = Field(
        default="https://api.elevenlabs.io",
        description="Base URL of the ElevenLabs REST API",
    )
    signed_url_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for the signed URL request",
    )

    # Twilio Configuration
    twilio_account_sid: Optional[str] = Field(
        default=None,
        description="Twilio Account SID",
    )
    twilio_auth_token: Optional[str] = Field(
        default=None,
        description="Twilio Auth Token",
    )
    twilio_phone_number: Optional[str] = Field(
        default=None,
        description="Twilio number outbound calls are placed from",
    )

    # Public URL (ngrok or similar) that Twilio can reach
    public_base_url: str = Field(
        default="http://localhost:5050",
        description="Public HTTP URL for Twilio webhooks",
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=5050, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Call Configuration
    connecting_message: str = Field(
        default="Connecting to AI assistant...",
        description="Spoken to the callee before the media stream is bridged",
    )

    @property
    def connect_url(self) -> str:
        """Get the TwiML webhook URL Twilio fetches when a placed call is answered."""
        return f"{self.public_base_url.rstrip('/')}/connect"

    def missing_twilio_credentials(self) -> list[str]:
        """List the Twilio settings required for call placement that are unset."""
        required = {
            "TWILIO_ACCOUNT_SID": self.twilio_account_sid,
            "TWILIO_AUTH_TOKEN": self.twilio_auth_token,
            "TWILIO_PHONE_NUMBER": self.twilio_phone_number,
        }
        return [name for name, value in required.items() if not value]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-reading environment on every call.
    """
    return Settings()
