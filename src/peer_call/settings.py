"""Application settings management using Pydantic."""

import json
from typing import Optional, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.schemas import IceServer

DEFAULT_ICE_SERVERS = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:global.stun.twilio.com:3478"},
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Service
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Signaling relay
    relay_url: str = Field(
        default="ws://localhost:8080/relay",
        alias="RELAY_URL",
        description="WebSocket URL of the signaling relay",
    )

    user_id: Optional[str] = Field(
        default=None,
        alias="USER_ID",
        description="Name other users ring this service by with call:start",
    )

    signaling_connect_timeout: float = Field(
        default=10.0,
        alias="SIGNALING_CONNECT_TIMEOUT",
        description="Seconds to wait for the relay before reporting it unreachable",
    )

    relay_reconnect_delay: float = Field(
        default=1.0,
        alias="RELAY_RECONNECT_DELAY",
        description="Initial reconnect backoff in seconds (doubled per attempt)",
    )

    relay_reconnect_max_delay: float = Field(
        default=30.0,
        alias="RELAY_RECONNECT_MAX_DELAY",
        description="Upper bound for the reconnect backoff in seconds",
    )

    # ICE configuration
    ice_servers: List[IceServer] = Field(
        default_factory=lambda: [IceServer(**entry) for entry in DEFAULT_ICE_SERVERS],
        alias="ICE_SERVERS",
        description="Ordered ICE server list as JSON: [{urls, username?, credential?}]",
    )

    turn_credentials_url: Optional[str] = Field(
        default=None,
        alias="TURN_CREDENTIALS_URL",
        description="Optional endpoint returning ICE servers with TURN credentials",
    )

    # Call behaviour
    prefer_video: bool = Field(
        default=True,
        alias="PREFER_VIDEO",
        description="Try to open the camera when a call starts",
    )

    negotiation_timeout: float = Field(
        default=45.0,
        alias="NEGOTIATION_TIMEOUT",
        description="Seconds a call may wait for a peer before failing (0 disables)",
    )

    # Capture devices (aiortc MediaPlayer sources)
    camera_device: str = Field(default="/dev/video0", alias="CAMERA_DEVICE")
    camera_format: Optional[str] = Field(default="v4l2", alias="CAMERA_FORMAT")
    microphone_device: str = Field(default="default", alias="MICROPHONE_DEVICE")
    microphone_format: Optional[str] = Field(default="pulse", alias="MICROPHONE_FORMAT")
    display_device: str = Field(default=":0.0", alias="DISPLAY_DEVICE")
    display_format: Optional[str] = Field(default="x11grab", alias="DISPLAY_FORMAT")

    video_size: str = Field(
        default="640x480",
        alias="VIDEO_SIZE",
        description="Capture resolution passed to ffmpeg as video_size",
    )

    video_framerate: int = Field(
        default=30,
        alias="VIDEO_FRAMERATE",
        description="Capture frame rate passed to ffmpeg as framerate",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown LOG_LEVEL {v}")
        return level

    @field_validator("relay_url")
    @classmethod
    def validate_relay_url(cls, v: str) -> str:
        """Validate relay URL scheme."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("RELAY_URL must start with ws:// or wss://")
        return v.rstrip("/")

    @field_validator("ice_servers", mode="before")
    @classmethod
    def parse_ice_servers(cls, v):
        """Accept the ICE server list as a JSON string."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"ICE_SERVERS must be a JSON list: {e}")
        return v

    @field_validator("ice_servers")
    @classmethod
    def validate_ice_servers(cls, v: List[IceServer]) -> List[IceServer]:
        """Require at least one STUN entry."""
        if not any(url.startswith("stun:") for server in v for url in server.url_list):
            raise ValueError("ICE_SERVERS must contain at least one stun: entry")
        return v

    @field_validator("camera_format", "microphone_format", "display_format", "turn_credentials_url", "user_id", mode="before")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty strings as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("negotiation_timeout", "signaling_connect_timeout")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Timeouts cannot be negative."""
        if v < 0:
            raise ValueError("timeouts must be >= 0")
        return v


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()
