import json
from datetime import datetime, timezone
from typing import Any


def iso(ts: "datetime") -> "str":
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def message_line(
    ts: "datetime | str",
    provider: "str | None" = "anthropic",
    model: "str | None" = "claude-sonnet-4",
    input: "int" = 0,
    output: "int" = 0,
    cache_read: "int" = 0,
    cache_write: "int" = 0,
    cost: "float | None" = None,
    total_tokens: "int | None" = None,
    stop_reason: "str | None" = None,
    with_usage: "bool" = True,
) -> "str":
    message: "dict[str, Any]" = {}
    if provider is not None:
        message["provider"] = provider
    if model is not None:
        message["model"] = model
    if stop_reason is not None:
        message["stopReason"] = stop_reason
    if with_usage:
        usage: "dict[str, Any]" = {
            "input": input,
            "output": output,
            "cacheRead": cache_read,
            "cacheWrite": cache_write,
            "totalTokens": (
                total_tokens
                if total_tokens is not None
                else input + output + cache_read + cache_write
            ),
        }
        if cost is not None:
            usage["cost"] = {"total": cost}
        message["usage"] = usage
    return json.dumps(
        {
            "type": "message",
            "timestamp": ts if isinstance(ts, str) else iso(ts),
            "message": message,
        }
    )


def error_line(ts: "datetime", error: "str", **extra: "Any") -> "str":
    return json.dumps({"type": "error", "timestamp": iso(ts), "error": error, **extra})
