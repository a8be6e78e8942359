from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from clawmeter.normalize import model_key, round_half_away


def format_timestamp(ts: "datetime") -> "str":
    """
    renders an instant as RFC 3339 in UTC with second precision,
    e.g. 2024-05-01T12:00:00Z. All emitted timestamps share this
    shape so they also sort lexicographically.
    """
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class RecordKind(str, Enum):
    MESSAGE = "message"
    ERROR = "error"
    OTHER = "other"

    @classmethod
    def from_raw(cls, value: "str | None") -> "RecordKind":
        if value == cls.MESSAGE.value:
            return cls.MESSAGE
        if value == cls.ERROR.value:
            return cls.ERROR
        return cls.OTHER


@dataclass(frozen=True, slots=True)
class Usage:
    """
    Usage is the token and cost payload attached to a message
    record. Counters are clamped to zero when decoded.
    """

    input: "int" = 0
    output: "int" = 0
    cache_read: "int" = 0
    cache_write: "int" = 0
    cost: "float" = 0.0
    # kept raw (may be negative) since only the token-usage summary reads it
    total_tokens: "int" = 0


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """
    UsageRecord is one decoded line of a session log.
    """

    kind: "RecordKind"
    timestamp: "datetime"
    # normalized: lowercase, "unknown" when blank
    provider: "str"
    # normalized: provider prefix stripped, "unknown" when blank
    model: "str"
    stop_reason: "str | None" = None
    usage: "Usage | None" = None
    # False when the line had no "message" object at all
    has_message: "bool" = False
    # the decoded JSON object, used for the rate-limit text scan
    raw: "dict[str, Any]" = field(default_factory=dict, compare=False, repr=False)

    @property
    def model_key(self) -> "str":
        return model_key(self.provider, self.model)


@dataclass(slots=True)
class ModelAggregate:
    """
    ModelAggregate accumulates usage for one model key within one
    window. Cost is summed unrounded and only rounded on output.
    """

    input: "int" = 0
    output: "int" = 0
    cache_read: "int" = 0
    cache_write: "int" = 0
    cost: "float" = 0.0
    calls: "int" = 0

    def add(self, usage: "Usage") -> "None":
        self.input += usage.input
        self.output += usage.output
        self.cache_read += usage.cache_read
        self.cache_write += usage.cache_write
        self.cost += usage.cost
        self.calls += 1

    def merge(self, other: "ModelAggregate") -> "None":
        self.input += other.input
        self.output += other.output
        self.cache_read += other.cache_read
        self.cache_write += other.cache_write
        self.cost += other.cost
        self.calls += other.calls

    def to_dict(self) -> "dict[str, Any]":
        return {
            "input": self.input,
            "output": self.output,
            "cacheRead": self.cache_read,
            "cacheWrite": self.cache_write,
            "cost": round_half_away(self.cost, 6),
            "calls": self.calls,
        }


@dataclass(frozen=True, slots=True)
class CallSample:
    """
    CallSample is one short-window call kept in the recency buffer.
    """

    timestamp: "datetime"
    model_key: "str"
    output: "int"
    cost: "float"
    input: "int"
    cache_read: "int"
    cache_write: "int"


@dataclass(frozen=True, slots=True)
class RecentCall:
    sample: "CallSample"
    # e.g. "12m ago"
    ago: "str"

    def to_dict(self) -> "dict[str, Any]":
        s = self.sample
        return {
            "timestamp": format_timestamp(s.timestamp),
            "model": s.model_key,
            "input": s.input,
            "output": s.output,
            "cacheRead": s.cache_read,
            "cacheWrite": s.cache_write,
            "cost": round_half_away(s.cost, 6),
            "ago": self.ago,
        }


@dataclass(slots=True)
class WindowResult:
    """
    WindowResult is the outcome of folding records into one window.
    window_start, window_reset_in and the call lists are only
    populated for the short window.
    """

    per_model: "dict[str, ModelAggregate]" = field(default_factory=dict)
    window_start: "datetime | None" = None
    # milliseconds, None when the window holds no records
    window_reset_in: "int | None" = None
    recent_calls: "list[RecentCall]" = field(default_factory=list)
    # the whole recency buffer, newest first
    samples: "list[CallSample]" = field(default_factory=list)

    @property
    def total_calls(self) -> "int":
        return sum(agg.calls for agg in self.per_model.values())

    def per_model_dict(self) -> "dict[str, Any]":
        return {key: agg.to_dict() for key, agg in sorted(self.per_model.items())}


@dataclass(frozen=True, slots=True)
class BurnRate:
    tokens_per_minute: "float" = 0.0
    cost_per_minute: "float" = 0.0

    def to_dict(self) -> "dict[str, Any]":
        return {
            "tokensPerMinute": self.tokens_per_minute,
            "costPerMinute": self.cost_per_minute,
        }


@dataclass(frozen=True, slots=True)
class RateLimitEvent:
    """
    RateLimitEvent is a log record that looks like the upstream
    provider throttled or rejected a request. provider and model are
    empty when the record had no message payload.
    """

    timestamp: "datetime"
    detail: "str"
    provider: "str" = ""
    model: "str" = ""

    def to_dict(self) -> "dict[str, Any]":
        out: "dict[str, Any]" = {
            "timestamp": format_timestamp(self.timestamp),
            "detail": self.detail,
        }
        if self.provider:
            out["provider"] = self.provider
        if self.model:
            out["model"] = self.model
        return out


@dataclass(slots=True)
class UsageWindowsReport:
    short: "WindowResult" = field(default_factory=WindowResult)
    long: "WindowResult" = field(default_factory=WindowResult)
    burn_rate: "BurnRate" = field(default_factory=BurnRate)

    @classmethod
    def empty(cls) -> "UsageWindowsReport":
        return cls()

    def to_dict(self) -> "dict[str, Any]":
        return {
            "fiveHour": {
                "perModel": self.short.per_model_dict(),
                "windowStart": (
                    format_timestamp(self.short.window_start)
                    if self.short.window_start is not None
                    else None
                ),
                "windowResetIn": self.short.window_reset_in,
                "recentCalls": [c.to_dict() for c in self.short.recent_calls],
            },
            "weekly": {
                "perModel": self.long.per_model_dict(),
            },
            "burnRate": self.burn_rate.to_dict(),
        }


@dataclass(slots=True)
class RateLimitReport:
    window: "str" = "5h"
    events: "list[RateLimitEvent]" = field(default_factory=list)

    def to_dict(self) -> "dict[str, Any]":
        return {
            "window": self.window,
            "events": [e.to_dict() for e in self.events],
        }


@dataclass(frozen=True, slots=True)
class ModelTokenUsage:
    provider: "str"
    model: "str"
    used_tokens: "int"

    def to_dict(self) -> "dict[str, Any]":
        return {
            "provider": self.provider,
            "model": self.model,
            "usedTokens": self.used_tokens,
        }


@dataclass(slots=True)
class TokenUsageReport:
    """
    TokenUsageReport sums totalTokens over a trailing number of hours,
    with a per provider/model breakdown sorted by usage.
    """

    period: "str"
    used_tokens: "int" = 0
    limit_tokens: "int" = 0
    file_count: "int" = 0
    breakdown: "list[ModelTokenUsage]" = field(default_factory=list)
    source_detail: "str" = "openclaw-sessions-jsonl"

    def to_dict(self) -> "dict[str, Any]":
        return {
            "usedTokens": self.used_tokens,
            "limitTokens": self.limit_tokens,
            "period": self.period,
            "sourceDetail": self.source_detail,
            "fileCount": self.file_count,
            "breakdown": [b.to_dict() for b in self.breakdown],
        }
