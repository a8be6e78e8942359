import math
from datetime import datetime, timedelta

from clawmeter.models import (
    CallSample,
    ModelAggregate,
    RecentCall,
    RecordKind,
    UsageRecord,
    WindowResult,
)

SHORT_WINDOW = timedelta(hours=5)
LONG_WINDOW = timedelta(days=7)
RECENT_CALLS_LIMIT = 20

_MILLISECOND = timedelta(milliseconds=1)


def counts_toward_usage(record: "UsageRecord") -> "bool":
    return record.kind is RecordKind.MESSAGE and record.usage is not None


def in_window(record: "UsageRecord", now: "datetime", duration: "timedelta") -> "bool":
    """
    closed on the old edge: a record exactly `duration` old is in.
    Records stamped after now are in as well.
    """
    return now - record.timestamp <= duration


def ago_label(ts: "datetime", now: "datetime") -> "str":
    minutes = (now - ts).total_seconds() / 60
    return f"{max(0, math.floor(minutes + 0.5))}m ago"


class WindowAccumulator:
    """
    WindowAccumulator folds usage records into per-model totals for a
    single window. With keep_calls set it also buffers every in-window
    call so recency-based views can be derived after the scan.
    """

    def __init__(
        self,
        now: "datetime",
        duration: "timedelta",
        keep_calls: "bool" = False,
    ) -> "None":
        self.now = now
        self.duration = duration
        self.keep_calls = keep_calls
        self._per_model: "dict[str, ModelAggregate]" = {}
        self._calls: "list[CallSample]" = []

    def add(self, record: "UsageRecord") -> "bool":
        """
        folds the record in if it is a usage-bearing message inside the
        window. Returns whether it was counted.
        """
        if not counts_toward_usage(record):
            return False
        if not in_window(record, self.now, self.duration):
            return False

        usage = record.usage
        key = record.model_key
        agg = self._per_model.get(key)
        if agg is None:
            agg = ModelAggregate()
            self._per_model[key] = agg
        agg.add(usage)

        if self.keep_calls:
            self._calls.append(
                CallSample(
                    timestamp=record.timestamp,
                    model_key=key,
                    output=usage.output,
                    cost=usage.cost,
                    input=usage.input,
                    cache_read=usage.cache_read,
                    cache_write=usage.cache_write,
                )
            )
        return True

    def merge(self, other: "WindowAccumulator") -> "None":
        """
        merges another accumulator for the same window, e.g. one that
        scanned a different set of files. Order doesn't matter.
        """
        for key, other_agg in other._per_model.items():
            agg = self._per_model.get(key)
            if agg is None:
                agg = ModelAggregate()
                self._per_model[key] = agg
            agg.merge(other_agg)
        self._calls.extend(other._calls)

    def result(self, recent_limit: "int" = RECENT_CALLS_LIMIT) -> "WindowResult":
        result = WindowResult(per_model=dict(self._per_model))
        if not self.keep_calls:
            return result

        samples = sorted(self._calls, key=lambda c: c.timestamp, reverse=True)
        result.samples = samples
        if not samples:
            return result

        oldest = samples[-1].timestamp
        result.window_start = oldest
        reset_in = (oldest + self.duration - self.now) // _MILLISECOND
        result.window_reset_in = max(0, reset_in)
        result.recent_calls = [
            RecentCall(sample=s, ago=ago_label(s.timestamp, self.now))
            for s in samples[:recent_limit]
        ]
        return result


class WindowAggregator:
    """
    WindowAggregator feeds one record stream into the short ("active")
    and long ("historical") windows. A record can land in both.
    """

    def __init__(
        self,
        now: "datetime",
        short_window: "timedelta" = SHORT_WINDOW,
        long_window: "timedelta" = LONG_WINDOW,
    ) -> "None":
        if short_window > long_window:
            raise ValueError("short window must not be longer than long window")
        self.short = WindowAccumulator(now, short_window, keep_calls=True)
        self.long = WindowAccumulator(now, long_window)

    def add(self, record: "UsageRecord") -> "None":
        self.short.add(record)
        self.long.add(record)

    def merge(self, other: "WindowAggregator") -> "None":
        self.short.merge(other.short)
        self.long.merge(other.long)

    def results(
        self, recent_limit: "int" = RECENT_CALLS_LIMIT
    ) -> "tuple[WindowResult, WindowResult]":
        return self.short.result(recent_limit), self.long.result()
