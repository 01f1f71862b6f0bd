"""
Configuration settings for the sector simulation.

Values are read from environment variables once at import time.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger("sector_control.config")


def _get_bool(env_var: str, default: bool = False) -> bool:
    """Parse an environment variable into a boolean with a default."""
    value = os.getenv(env_var)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_optional_int(env_var: str) -> Optional[int]:
    value = os.getenv(env_var)
    return int(value) if value else None


@dataclass
class Settings:
    """Simulation configuration loaded from environment variables."""

    log_level: str = os.getenv("SECTOR_LOG_LEVEL", "INFO")

    # Clock
    default_time_scale: float = float(os.getenv("SECTOR_TIME_SCALE", "2.0"))
    frame_interval: float = float(os.getenv("SECTOR_FRAME_INTERVAL", str(1 / 60)))

    # Pilot readbacks (wall-clock seconds, not scaled by the time multiplier)
    readback_delay_min: float = float(os.getenv("SECTOR_READBACK_DELAY_MIN", "1.5"))
    readback_delay_max: float = float(os.getenv("SECTOR_READBACK_DELAY_MAX", "2.5"))

    # Session bookkeeping
    incident_cooldown: float = float(os.getenv("SECTOR_INCIDENT_COOLDOWN", "5.0"))
    session_end_delay: float = float(os.getenv("SECTOR_SESSION_END_DELAY", "4.0"))

    # Apply the zero floor to the wrong-altitude penalty as well
    floor_exit_penalties: bool = _get_bool("SECTOR_FLOOR_EXIT_PENALTIES", False)

    seed: Optional[int] = _get_optional_int("SECTOR_SEED")


settings = Settings()


def configure_logging(level: Optional[str] = None):
    """
    Configure root logging for command-line and embedded use.

    Args:
        level: Log level name (defaults to settings.log_level)
    """
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    logger.debug("Logging configured at %s", (level or settings.log_level).upper())


__all__ = ["settings", "Settings", "configure_logging"]
