"""Environment-driven configuration for the edge-inference client."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.slyos.world"
DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_HOME = "~/.edgeinfer"
_VALID_DEVICES = {"cpu", "cuda", "mps", "auto"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default
    if parsed <= 0:
        LOGGER.warning("Non-positive value for %s: %s; using default %s", name, value, default)
        return default
    return parsed


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default
    if parsed <= 0:
        LOGGER.warning("Non-positive value for %s: %s; using default %s", name, value, default)
        return default
    return parsed


def _device_from_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    normalised = value.strip().lower()
    if normalised not in _VALID_DEVICES:
        LOGGER.warning("Unsupported device for %s: %s; using default %s", name, value, default)
        return default
    return normalised


@dataclass(slots=True)
class Settings:
    """Tunable knobs shared by every component of one client instance."""

    api_url: str = DEFAULT_API_URL
    http_timeout: float = 30.0
    probe_timeout: float = 5.0
    register_timeout: float = 10.0
    telemetry_batch_size: int = 10
    telemetry_flush_interval: float = 60.0
    telemetry_buffer_limit: int = 100
    home: Path = Path(DEFAULT_HOME).expanduser()
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    device: str = "cpu"
    probe_latency: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_url=(os.getenv("EDGEINFER_API_URL") or DEFAULT_API_URL).rstrip("/"),
            http_timeout=_float_from_env("EDGEINFER_HTTP_TIMEOUT", 30.0),
            probe_timeout=_float_from_env("EDGEINFER_PROBE_TIMEOUT", 5.0),
            register_timeout=_float_from_env("EDGEINFER_REGISTER_TIMEOUT", 10.0),
            telemetry_batch_size=_int_from_env("EDGEINFER_TELEMETRY_BATCH_SIZE", 10),
            telemetry_flush_interval=_float_from_env("EDGEINFER_TELEMETRY_FLUSH_INTERVAL", 60.0),
            telemetry_buffer_limit=_int_from_env("EDGEINFER_TELEMETRY_BUFFER_LIMIT", 100),
            home=Path(os.getenv("EDGEINFER_HOME", DEFAULT_HOME)).expanduser(),
            embedding_model=os.getenv("EDGEINFER_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            device=_device_from_env("EDGEINFER_DEVICE", "cpu"),
            probe_latency=_env_flag("EDGEINFER_PROBE_LATENCY", True),
        )

    @property
    def device_id_path(self) -> Path:
        return self.home / "device-id"


@dataclass(frozen=True, slots=True)
class FallbackConfig:
    """Cloud provider used when local inference fails."""

    provider: Literal["openai", "bedrock"]
    api_key: str
    model: Optional[str] = None
    region: Optional[str] = None
    base_url: Optional[str] = None

    def __post_init__(self) -> None:
        if self.provider not in {"openai", "bedrock"}:
            raise ValueError(f"Unsupported fallback provider: {self.provider!r}")


__all__ = ["FallbackConfig", "Settings"]
