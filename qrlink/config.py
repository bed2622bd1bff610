"""Central configuration for the qrlink scanner service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class CameraSettings(BaseModel):
    """Frame source configuration."""
    device_index: int = Field(0, description="OpenCV camera index")
    resolution_width: int = Field(640, description="Capture width (pixels)")
    resolution_height: int = Field(480, description="Capture height (pixels)")
    fps: int = Field(15, description="Frames offered to the analyzer per second")
    rotation_degrees: int = Field(0, description="Clockwise rotation applied before decoding")
    jpeg_quality: int = Field(80, description="Preview JPEG quality (0-100)")

    @field_validator("rotation_degrees")
    @classmethod
    def _check_rotation(cls, value: int) -> int:
        if value % 90 != 0:
            raise ValueError("rotation_degrees must be a multiple of 90")
        return value % 360


class JoinSettings(BaseModel):
    """Wi-Fi join configuration."""
    strategy: Literal["auto", "ephemeral", "legacy"] = Field(
        "auto", description="Force a join strategy or probe the platform"
    )
    interface: str = Field("wlan0", description="Wireless interface used for joins")
    timeout_seconds: float = Field(20.0, description="Upper bound for one join attempt")
    poll_interval_seconds: float = Field(0.5, description="Link state polling interval")
    confirm_link: bool = Field(False, description="Legacy strategy waits for wpa_state=COMPLETED")
    nmcli_path: str = Field("nmcli", description="NetworkManager CLI executable")
    wpa_cli_path: str = Field("wpa_cli", description="wpa_supplicant CLI executable")

    @field_validator("timeout_seconds")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if not 1.0 <= value <= 120.0:
            raise ValueError("timeout_seconds must be between 1 and 120")
        return value


class DispatchSettings(BaseModel):
    """Action dispatch tuning."""
    text_repeat_seconds: float = Field(
        3.0, description="Suppress an identical text message repeated within this window (0 disables)"
    )


class NotificationSettings(BaseModel):
    """User notification channels."""
    ui_queue_size: int = Field(16, description="Max buffered UI events per subscriber")
    webhook_url: Optional[str] = Field(None, description="Optional URL receiving every user message")
    webhook_timeout: float = Field(5.0, description="Webhook request timeout (seconds)")


class Settings(BaseSettings):
    """Environment-driven settings for the scanner service."""

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")
    autostart_session: bool = Field(True, description="Start scanning when the app starts")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera settings")
    join: JoinSettings = Field(default_factory=JoinSettings, description="Wi-Fi join settings")
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings, description="Dispatch settings")
    notifications: NotificationSettings = Field(
        default_factory=NotificationSettings, description="Notification settings"
    )

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
