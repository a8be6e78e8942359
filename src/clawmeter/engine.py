import os
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Sequence, TypeVar

import structlog

from clawmeter.burn_rate import estimate_burn_rate
from clawmeter.discovery import list_session_logs
from clawmeter.errors import FileUnreadable, RootUnreadable, ScanCancelled, ScanError
from clawmeter.metrics import MetricsUpdater
from clawmeter.models import (
    RateLimitReport,
    TokenUsageReport,
    UsageRecord,
    UsageWindowsReport,
)
from clawmeter.parser import ScanStats, scan_log_file
from clawmeter.rate_limits import RATE_LIMIT_WINDOW, RateLimitDetector, window_label
from clawmeter.token_usage import MAX_HOURS, TokenUsageCounter
from clawmeter.windows import LONG_WINDOW, SHORT_WINDOW, WindowAggregator

logger = structlog.get_logger()

T = TypeVar("T")

SCAN_USAGE_WINDOWS = "usage_windows"
SCAN_RATE_LIMITS = "rate_limits"
SCAN_TOKEN_USAGE = "token_usage"


def _as_utc(now: "datetime | None") -> "datetime":
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _check_deadline(deadline: "float | None") -> "None":
    if deadline is not None and time.monotonic() > deadline:
        raise ScanCancelled("scan deadline exceeded")


def scan_files(
    paths: "Sequence[Path]",
    on_record: "Callable[[UsageRecord], None]",
    deadline: "float | None" = None,
    on_file_start: "Callable[[], None] | None" = None,
    on_file_end: "Callable[[bool], None] | None" = None,
) -> "ScanStats":
    """
    feeds every record of every file to on_record, one file after the
    other. Unreadable files are counted and skipped. on_file_end is told
    whether the file was read to the end.
    """
    stats = ScanStats()
    for path in paths:
        _check_deadline(deadline)
        if on_file_start is not None:
            on_file_start()
        try:
            stats.add(scan_log_file(path, on_record, deadline=deadline))
        except FileUnreadable as e:
            stats.files += 1
            stats.files_skipped += 1
            logger.debug("session_log_skipped", path=str(path), error=str(e))
            if on_file_end is not None:
                on_file_end(False)
            continue
        if on_file_end is not None:
            on_file_end(True)
    return stats


class UsageEngine:
    """
    UsageEngine answers usage questions by re-scanning the agents'
    session logs from scratch on every call. It keeps no state between
    calls, so concurrent calls are independent.

    The plain methods raise RootUnreadable when the agents root can't
    be listed and ScanCancelled when the deadline passes; the safe_*
    variants log those and return an empty report instead.
    """

    def __init__(
        self,
        agents_dir: "str | os.PathLike[str]",
        metrics: "MetricsUpdater | None" = None,
        token_usage_limit: "int" = 0,
        short_window: "timedelta" = SHORT_WINDOW,
        long_window: "timedelta" = LONG_WINDOW,
        rate_limit_window: "timedelta" = RATE_LIMIT_WINDOW,
    ) -> "None":
        if short_window > long_window:
            raise ValueError("short window must not be longer than long window")
        self.agents_dir = Path(agents_dir)
        self._metrics = metrics
        self.token_usage_limit = token_usage_limit
        self.short_window = short_window
        self.long_window = long_window
        self.rate_limit_window = rate_limit_window

    def _run(self, scan: "str", fn: "Callable[[], tuple[T, ScanStats]]") -> "T":
        started = time.monotonic()
        try:
            result, stats = fn()
        except RootUnreadable:
            if self._metrics is not None:
                self._metrics.inc_scan_error(scan, "root")
            raise
        except ScanCancelled:
            if self._metrics is not None:
                self._metrics.inc_scan_error(scan, "cancelled")
            raise

        duration = time.monotonic() - started
        logger.debug(
            "scan_finished",
            scan=scan,
            files=stats.files,
            files_skipped=stats.files_skipped,
            records=stats.records,
            decode_errors=stats.decode_errors,
            timestamp_errors=stats.timestamp_errors,
            too_long=stats.too_long,
            duration=round(duration, 4),
        )
        if self._metrics is not None:
            self._metrics.observe_scan_duration(scan, duration)
            self._metrics.record_stats(stats)
            self._metrics.set_last_scan_success(scan, time.time())
        return result

    def usage_windows(
        self,
        now: "datetime | None" = None,
        deadline: "float | None" = None,
    ) -> "UsageWindowsReport":
        """
        per-model totals for the short and long windows, the most
        recent short-window calls and the trailing burn rate.
        """
        now = _as_utc(now)

        def scan() -> "tuple[UsageWindowsReport, ScanStats]":
            paths = list_session_logs(self.agents_dir, now - self.long_window)
            aggregator = WindowAggregator(now, self.short_window, self.long_window)
            stats = scan_files(paths, aggregator.add, deadline=deadline)
            short, long = aggregator.results()
            report = UsageWindowsReport(
                short=short,
                long=long,
                burn_rate=estimate_burn_rate(short.samples, now),
            )
            return report, stats

        return self._run(SCAN_USAGE_WINDOWS, scan)

    def rate_limit_events(
        self,
        now: "datetime | None" = None,
        window: "timedelta | None" = None,
        deadline: "float | None" = None,
    ) -> "RateLimitReport":
        """
        suspected rate-limit events within the lookback window, newest
        first.
        """
        now = _as_utc(now)
        window = window if window is not None else self.rate_limit_window

        def scan() -> "tuple[RateLimitReport, ScanStats]":
            paths = list_session_logs(self.agents_dir, now - window)
            detector = RateLimitDetector(now, window)
            stats = scan_files(paths, detector.add, deadline=deadline)
            return RateLimitReport(window_label(window), detector.events()), stats

        return self._run(SCAN_RATE_LIMITS, scan)

    def token_usage(
        self,
        now: "datetime | None" = None,
        hours: "int" = 24,
        deadline: "float | None" = None,
    ) -> "TokenUsageReport":
        """
        total reported tokens over the last `hours` hours (capped at a
        week). Every session file is read regardless of its age.
        """
        now = _as_utc(now)
        counter = TokenUsageCounter(now, hours)

        def scan() -> "tuple[TokenUsageReport, ScanStats]":
            paths = list_session_logs(self.agents_dir)
            stats = scan_files(
                paths,
                counter.add,
                deadline=deadline,
                on_file_start=counter.start_file,
                on_file_end=counter.end_file,
            )
            return counter.report(self.token_usage_limit), stats

        return self._run(SCAN_TOKEN_USAGE, scan)

    def safe_usage_windows(
        self,
        now: "datetime | None" = None,
        deadline: "float | None" = None,
    ) -> "tuple[UsageWindowsReport, ScanError | None]":
        """
        like usage_windows but never fails: on error an empty report is
        returned together with the error.
        """
        try:
            return self.usage_windows(now, deadline), None
        except ScanError as e:
            self._log_failure(SCAN_USAGE_WINDOWS, e)
            return UsageWindowsReport.empty(), e

    def safe_rate_limit_events(
        self,
        now: "datetime | None" = None,
        window: "timedelta | None" = None,
        deadline: "float | None" = None,
    ) -> "tuple[RateLimitReport, ScanError | None]":
        window = window if window is not None else self.rate_limit_window
        try:
            return self.rate_limit_events(now, window, deadline), None
        except ScanError as e:
            self._log_failure(SCAN_RATE_LIMITS, e)
            return RateLimitReport(window_label(window)), e

    def safe_token_usage(
        self,
        now: "datetime | None" = None,
        hours: "int" = 24,
        deadline: "float | None" = None,
    ) -> "tuple[TokenUsageReport, ScanError | None]":
        try:
            return self.token_usage(now, hours, deadline), None
        except ScanError as e:
            self._log_failure(SCAN_TOKEN_USAGE, e)
            report = TokenUsageReport(
                period=f"{min(hours, MAX_HOURS)}h",
                limit_tokens=self.token_usage_limit,
            )
            report.source_detail += ":error"
            return report, e

    def _log_failure(self, scan: "str", error: "ScanError") -> "None":
        if isinstance(error, ScanCancelled):
            logger.warning("scan_cancelled", scan=scan, error=str(error))
        else:
            logger.error("scan_failed", scan=scan, error=str(error))
