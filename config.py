import os
from dataclasses import dataclass

import tomli
import tomli_w

CONFIG_PATH = "config.toml"

DEFAULT_CONFIG = {
    "bot": {
        "discord_token": "YOUR_DISCORD_TOKEN",
        "debug_mode": False,
        "presence": "for embeds",
        "marker_emoji": "🫧",
    },
    "database": {
        "path": "sanitizer.db",
        "replica_path": "",
        "cache_capacity": 1000,
    },
    "sanitizer": {
        "lookup_timeout_seconds": 2.0,
        "poll_interval_seconds": 0.5,
        "embed_timeout_seconds": 8.0,
        "error_notice_seconds": 10.0,
    },
    "structure": {
        "logging_dir": "logs",
        "max_log_lines": 5000,
    },
}


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class BotConfig:
    discord_token: str
    debug_mode: bool
    presence: str
    marker_emoji: str
    database_path: str
    replica_path: str
    cache_capacity: int
    lookup_timeout: float
    poll_interval: float
    embed_timeout: float
    error_notice_lifetime: float
    logging_dir: str
    max_log_lines: int


def write_default_config(path: str = CONFIG_PATH):
    with open(path, "wb") as f:
        tomli_w.dump(DEFAULT_CONFIG, f)


def _section(raw: dict, name: str) -> dict:
    merged = dict(DEFAULT_CONFIG[name])
    merged.update(raw.get(name, {}) or {})
    return merged


def parse_config(raw: dict) -> BotConfig:
    bot = _section(raw, "bot")
    database = _section(raw, "database")
    sanitizer = _section(raw, "sanitizer")
    structure = _section(raw, "structure")

    # env token wins so the file can be committed without secrets
    token = os.getenv("DISCORD_TOKEN") or bot["discord_token"]

    try:
        capacity = int(database["cache_capacity"])
        if capacity <= 0:
            raise ValueError("cache_capacity must be > 0")

        return BotConfig(
            discord_token=str(token),
            debug_mode=bool(bot["debug_mode"]),
            presence=str(bot["presence"]),
            marker_emoji=str(bot["marker_emoji"]),
            database_path=str(database["path"]),
            replica_path=str(database["replica_path"] or ""),
            cache_capacity=capacity,
            lookup_timeout=float(sanitizer["lookup_timeout_seconds"]),
            poll_interval=float(sanitizer["poll_interval_seconds"]),
            embed_timeout=float(sanitizer["embed_timeout_seconds"]),
            error_notice_lifetime=float(sanitizer["error_notice_seconds"]),
            logging_dir=str(structure["logging_dir"]),
            max_log_lines=int(structure["max_log_lines"]),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in config: {e}") from e


def load_config(path: str = CONFIG_PATH) -> BotConfig:
    try:
        with open(path, "rb") as f:
            raw = tomli.load(f)
    except (OSError, tomli.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load {path}: {e}") from e
    return parse_config(raw)
