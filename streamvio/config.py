"""
Configuration management for StreamVio
"""

import shutil
import yaml
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class TranscodingConfig(BaseModel):
    enabled: bool = True
    ffmpeg_path: str = "auto"
    ffprobe_path: str = "auto"
    output_directory: str = "./data/transcoded"
    max_concurrent_jobs: int = Field(default=2, ge=1)
    max_bitrate: int = Field(default=8000, gt=0)  # kbps, applies to every video rendition
    segment_duration: int = Field(default=2, gt=0)  # HLS segment length in seconds
    hls_max_height: int = 1080
    default_profile: str = "standard"
    thumbnail_offset: float = 10.0
    thumbnail_width: int = 320
    storyboard_count: int = Field(default=10, ge=1)
    storyboard_width: int = 160
    probe_timeout: float = 30.0
    callback_timeout: float = 10.0
    # Signal the encoder process when a running job is cancelled
    terminate_on_cancel: bool = False


class HardwareConfig(BaseModel):
    # "auto", "none" or an explicit backend: nvenc, qsv, vaapi, videotoolbox
    acceleration: str = "auto"
    fallback_to_software: bool = True
    nvenc_preset: str = "p4"
    qsv_preset: str = "medium"
    vaapi_device: str = "/dev/dri/renderD128"
    detect_timeout: float = 10.0


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///./data/streamvio.db"
    echo: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "simple"  # "simple" or "detailed"
    file: Optional[str] = None


class StreamVioConfig(BaseSettings):
    """Root configuration. YAML values win over STREAMVIO_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STREAMVIO_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    transcoding: TranscodingConfig = Field(default_factory=TranscodingConfig)
    hardware: HardwareConfig = Field(default_factory=HardwareConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def resolve_binary(configured: str, name: str) -> str:
    """Resolve an "auto" tool path via PATH lookup, falling back to the bare name."""
    if configured and configured != "auto":
        return configured
    return shutil.which(name) or name


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "streamvio.yaml",
        Path.cwd() / "streamvio.yml",
        Path.cwd() / "config" / "streamvio.yaml",
        Path.home() / ".config" / "streamvio" / "streamvio.yaml",
        Path("/etc/streamvio/streamvio.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[str] = None) -> StreamVioConfig:
    """Load configuration from YAML file or use defaults."""
    config_file = Path(config_path) if config_path else find_config_file()

    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
        return StreamVioConfig(**yaml_data)

    return StreamVioConfig()


# Global config instance
_config: Optional[StreamVioConfig] = None


def get_config() -> StreamVioConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[StreamVioConfig]) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
