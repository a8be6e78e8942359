import os
from dataclasses import dataclass

DEFAULT_AGENTS_DIR = "/root/.openclaw/agents"


def _env_str(key: "str", fallback: "str") -> "str":
    value = os.environ.get(key, "").strip()
    return value or fallback


def _env_int(key: "str", fallback: "int") -> "int":
    value = os.environ.get(key, "").strip()
    if not value:
        return fallback
    try:
        return int(value)
    except ValueError:
        return fallback


@dataclass
class Config:
    # root holding one directory per agent, each with a
    # sessions/ directory of .jsonl logs
    agents_dir: "str" = DEFAULT_AGENTS_DIR
    # listen_address: format ":9186" or
    # "0.0.0.0:9186"
    listen_address: "str" = ":9186"
    # collection interval in seconds
    scrape_interval: "int" = 60
    # upper bound for a single scan in seconds
    scan_timeout: "float" = 30.0
    log_level: "str" = "info"
    # "console" or "json"
    log_format: "str" = "console"

    # reported alongside token usage, 0 means no limit
    token_usage_limit: "int" = 0
    token_usage_hours: "int" = 24

    @classmethod
    def from_env(cls) -> "Config":
        hours = _env_int("TOKEN_USAGE_HOURS_DEFAULT", 24)
        return cls(
            agents_dir=_env_str("OPENCLAW_AGENTS_DIR", DEFAULT_AGENTS_DIR),
            token_usage_limit=_env_int("TOKEN_USAGE_LIMIT", 0),
            token_usage_hours=hours if hours > 0 else 24,
        )
