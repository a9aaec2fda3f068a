# core/config.py
"""
Process configuration, read once at startup.

Values come from the environment, after loading `.env` from the project
root (same convention as the rest of the app: env vars always win over
the file).
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parent.parent

# GEMINI_API_KEY_1 .. GEMINI_API_KEY_5
MAX_KEY_SLOTS = 5
KEY_ENV_PREFIX = "GEMINI_API_KEY_"

ANONYMOUS_HORDE_KEY = "0000000000"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # (label, secret) pairs in slot order, absent slots omitted
    gemini_keys: List[Tuple[str, str]] = field(default_factory=list)
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout: float = 30.0

    key_rotation_delay: float = 0.5
    low_key_threshold: int = 2
    diagnostic_probe: bool = True

    notify_webhook_url: Optional[str] = None
    notify_recipient: Optional[str] = None

    horde_api_key: str = ANONYMOUS_HORDE_KEY
    horde_base_url: str = "https://stablehorde.net/api"

    log_level: str = "INFO"


def read_gemini_keys() -> List[Tuple[str, str]]:
    """Collect the configured key slots, skipping empty ones."""
    keys = []
    for i in range(1, MAX_KEY_SLOTS + 1):
        label = f"{KEY_ENV_PREFIX}{i}"
        secret = os.getenv(label)
        if secret and secret.strip():
            keys.append((label, secret.strip()))
    return keys


def load_settings(env_file: Optional[Path] = None) -> Settings:
    load_dotenv(env_file or ROOT_DIR / ".env")

    return Settings(
        gemini_keys=read_gemini_keys(),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        gemini_base_url=os.getenv(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
        ).rstrip("/"),
        gemini_timeout=_env_float("GEMINI_TIMEOUT", 30.0),
        key_rotation_delay=_env_float("KEY_ROTATION_DELAY", 0.5),
        low_key_threshold=_env_int("LOW_KEY_THRESHOLD", 2),
        diagnostic_probe=_env_flag("DIAGNOSTIC_PROBE", True),
        notify_webhook_url=os.getenv("NOTIFY_WEBHOOK_URL") or None,
        notify_recipient=os.getenv("NOTIFY_RECIPIENT") or None,
        horde_api_key=os.getenv("HORDE_API_KEY") or ANONYMOUS_HORDE_KEY,
        horde_base_url=os.getenv("HORDE_BASE_URL", "https://stablehorde.net/api").rstrip("/"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
