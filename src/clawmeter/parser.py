import json
import math
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from clawmeter.errors import (
    DecodeError,
    FileUnreadable,
    ScanCancelled,
    TimestampUnparsable,
)
from clawmeter.models import RecordKind, Usage, UsageRecord
from clawmeter.normalize import normalize_model, normalize_provider

# upper bound for a single line, so one runaway record can't
# exhaust memory
MAX_LINE_BYTES = 2 * 1024 * 1024

_DRAIN_CHUNK = 64 * 1024


@dataclass(slots=True)
class ScanStats:
    """
    ScanStats counts what happened to the lines of one or more files.
    """

    files: "int" = 0
    files_skipped: "int" = 0
    lines: "int" = 0
    records: "int" = 0
    decode_errors: "int" = 0
    timestamp_errors: "int" = 0
    too_long: "int" = 0

    def add(self, other: "ScanStats") -> "None":
        self.files += other.files
        self.files_skipped += other.files_skipped
        self.lines += other.lines
        self.records += other.records
        self.decode_errors += other.decode_errors
        self.timestamp_errors += other.timestamp_errors
        self.too_long += other.too_long


def parse_timestamp(value: "str | None") -> "datetime | None":
    """
    parses a timezone-qualified ISO 8601 / RFC 3339 timestamp into an
    aware UTC datetime. Naive or malformed values yield None.
    """
    if value is None or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    try:
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        # e.g. 9999-12-31T23:59:59-01:00 falls past year 9999 in UTC
        return None


def _opt_str(container: "dict[str, Any]", key: "str") -> "str | None":
    value = container.get(key)
    if value is None or isinstance(value, str):
        return value
    raise DecodeError(f"{key}: expected string, got {type(value).__name__}")


def _count(container: "dict[str, Any]", key: "str") -> "int":
    value = container.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{key}: expected integer, got {type(value).__name__}")
    return value


def _decode_cost(usage: "dict[str, Any]") -> "float":
    cost = usage.get("cost")
    if cost is None:
        return 0.0
    if not isinstance(cost, dict):
        raise DecodeError("cost: expected object")
    total = cost.get("total")
    if total is None:
        return 0.0
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        raise DecodeError("cost.total: expected number")
    try:
        value = float(total)
    except OverflowError as e:
        raise DecodeError("cost.total: out of range") from e
    if not math.isfinite(value):
        raise DecodeError("cost.total: expected a finite number")
    return max(0.0, value)


def _decode_usage(usage: "Any") -> "Usage | None":
    if usage is None:
        return None
    if not isinstance(usage, dict):
        raise DecodeError("usage: expected object")
    return Usage(
        input=max(0, _count(usage, "input")),
        output=max(0, _count(usage, "output")),
        cache_read=max(0, _count(usage, "cacheRead")),
        cache_write=max(0, _count(usage, "cacheWrite")),
        cost=_decode_cost(usage),
        total_tokens=_count(usage, "totalTokens"),
    )


def decode_record(obj: "Any") -> "UsageRecord":
    """
    turns one decoded JSON value into a UsageRecord.

    Raises DecodeError when the value doesn't have the expected shape
    and TimestampUnparsable when the timestamp is missing, naive or
    malformed.
    """
    if not isinstance(obj, dict):
        raise DecodeError("record is not a JSON object")

    kind = RecordKind.from_raw(_opt_str(obj, "type"))
    raw_ts = _opt_str(obj, "timestamp")

    message = obj.get("message")
    if message is not None and not isinstance(message, dict):
        raise DecodeError("message: expected object")

    provider = normalize_provider(None)
    model = normalize_model(None, None)
    stop_reason = None
    usage = None
    if message is not None:
        provider = normalize_provider(_opt_str(message, "provider"))
        model = normalize_model(provider, _opt_str(message, "model"))
        stop_reason = _opt_str(message, "stopReason")
        usage = _decode_usage(message.get("usage"))

    ts = parse_timestamp(raw_ts)
    if ts is None:
        raise TimestampUnparsable(f"unparsable timestamp: {raw_ts!r}")

    return UsageRecord(
        kind=kind,
        timestamp=ts,
        provider=provider,
        model=model,
        stop_reason=stop_reason,
        usage=usage,
        has_message=message is not None,
        raw=obj,
    )


def decode_line(line: "bytes | str") -> "UsageRecord":
    try:
        obj = json.loads(line)
    except (ValueError, RecursionError) as e:
        # RecursionError: nesting deeper than the decoder can follow
        raise DecodeError(str(e)) from e
    return decode_record(obj)


def _drain_line(f: "Any") -> "None":
    """
    consumes the remainder of an overlong line.
    """
    while True:
        chunk = f.readline(_DRAIN_CHUNK)
        if not chunk or chunk.endswith(b"\n"):
            return


def scan_log_file(
    path: "str | os.PathLike[str]",
    on_record: "Callable[[UsageRecord], None]",
    max_line_bytes: "int" = MAX_LINE_BYTES,
    deadline: "float | None" = None,
) -> "ScanStats":
    """
    streams a JSONL session log line by line and hands each decoded
    record to on_record.

    Blank lines are ignored, lines that fail to decode or exceed
    max_line_bytes are counted and skipped. Only failing to open or
    read the file raises (FileUnreadable). deadline is a
    time.monotonic() value; passing it raises ScanCancelled.
    """
    stats = ScanStats(files=1)
    try:
        with open(Path(path), "rb") as f:
            while True:
                if deadline is not None and time.monotonic() > deadline:
                    raise ScanCancelled(f"deadline exceeded while reading {path}")

                line = f.readline(max_line_bytes + 1)
                if not line:
                    break

                if len(line) > max_line_bytes and not line.endswith(b"\n"):
                    stats.lines += 1
                    stats.too_long += 1
                    _drain_line(f)
                    continue

                if not line.strip():
                    continue

                stats.lines += 1
                try:
                    record = decode_line(line)
                except TimestampUnparsable:
                    stats.timestamp_errors += 1
                    continue
                except DecodeError:
                    stats.decode_errors += 1
                    continue

                stats.records += 1
                on_record(record)
    except OSError as e:
        raise FileUnreadable(f"cannot read {path}: {e}") from e

    return stats
