import json
from datetime import datetime, timedelta

from clawmeter.models import RateLimitEvent, RecordKind, UsageRecord

RATE_LIMIT_WINDOW = timedelta(hours=5)
MAX_EVENTS = 50
DETAIL_LIMIT = 240

# deliberately loose: a false positive is shown to a human operator,
# a false negative is a throttling incident nobody sees
RATE_LIMIT_HINTS = ("rate", "overloaded", "429", "limit")


def serialize_record(record: "UsageRecord") -> "str":
    return json.dumps(record.raw, separators=(",", ":"), ensure_ascii=False)


def is_rate_limit_candidate(record: "UsageRecord") -> "bool":
    """
    error records, and messages that stopped with stopReason
    "rate_limit" (any casing), are worth a closer look.
    """
    if record.kind is RecordKind.ERROR:
        return True
    return (
        record.kind is RecordKind.MESSAGE
        and record.stop_reason is not None
        and record.stop_reason.lower() == "rate_limit"
    )


def window_label(window: "timedelta") -> "str":
    """
    e.g. 5h, 90m, 45s.
    """
    seconds = int(window.total_seconds())
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


class RateLimitDetector:
    """
    RateLimitDetector flags records that look like the provider
    throttled or rejected a request within the lookback window and
    keeps the most recent ones.
    """

    def __init__(
        self,
        now: "datetime",
        window: "timedelta" = RATE_LIMIT_WINDOW,
        max_events: "int" = MAX_EVENTS,
    ) -> "None":
        self.now = now
        self.window = window
        self.max_events = max_events
        self._events: "list[RateLimitEvent]" = []

    def add(self, record: "UsageRecord") -> "bool":
        if self.now - record.timestamp > self.window:
            return False
        if not is_rate_limit_candidate(record):
            return False

        blob = serialize_record(record)
        text = blob.lower()
        if not any(hint in text for hint in RATE_LIMIT_HINTS):
            return False

        provider = record.provider if record.has_message else ""
        model = record.model if record.has_message else ""
        self._events.append(
            RateLimitEvent(
                timestamp=record.timestamp,
                detail=blob[:DETAIL_LIMIT],
                provider=provider,
                model=model,
            )
        )
        return True

    def merge(self, other: "RateLimitDetector") -> "None":
        self._events.extend(other._events)

    def events(self) -> "list[RateLimitEvent]":
        """
        returns events newest first, capped at max_events.
        """
        ordered = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return ordered[: self.max_events]
