"""
Configuration — Environment-Driven Settings

THIS MODULE DEFINES NO COMMANDS.

Settings are read from the process environment. The entry point calls
`load_dotenv()` first, so a local `.env` file works the same way.
Invalid numeric values fall back to their defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from utils.durations import DEFAULT_PUNISHMENT_SECONDS

DEFAULT_GROUP = "default"
TOXIC_GROUP = "toxic"
ALLOW_DAMAGE_PERMISSION = "toxicbot.allowdamage"
TOXIC_TIME_PERMISSION = "toxicbot.toxictime"

DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


def _get_int(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class Settings:
    token: Optional[str] = None
    owner_id: Optional[int] = None
    guild_id: Optional[int] = None
    command_prefix: str = "~"
    log_level: str = "INFO"
    data_dir: Path = Path("data")
    punishments_document: str = "toxic_punishments"
    audit_document: str = "toxic_log"
    default_duration: int = DEFAULT_PUNISHMENT_SECONDS
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    toxic_role: str = "Toxic"
    verified_role: str = "Verified"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        default_duration = _get_int(env, "TOXICBOT_DEFAULT_DURATION")
        if default_duration is None or default_duration <= 0:
            default_duration = DEFAULT_PUNISHMENT_SECONDS
        return cls(
            token=env.get("DISCORD_TOKEN") or None,
            owner_id=_get_int(env, "TOXICBOT_OWNER_ID"),
            guild_id=_get_int(env, "TOXICBOT_GUILD_ID"),
            command_prefix=env.get("TOXICBOT_COMMAND_PREFIX") or "~",
            log_level=(env.get("TOXICBOT_LOG_LEVEL") or "INFO").upper(),
            data_dir=Path(env.get("TOXICBOT_DATA_DIR") or "data"),
            punishments_document=env.get("TOXICBOT_PUNISHMENTS_DOCUMENT") or "toxic_punishments",
            audit_document=env.get("TOXICBOT_AUDIT_DOCUMENT") or "toxic_log",
            default_duration=default_duration,
            sweep_interval=_get_float(env, "TOXICBOT_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL_SECONDS),
            toxic_role=env.get("TOXICBOT_TOXIC_ROLE") or "Toxic",
            verified_role=env.get("TOXICBOT_VERIFIED_ROLE") or "Verified",
        )
