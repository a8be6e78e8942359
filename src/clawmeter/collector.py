import asyncio
import time
from datetime import datetime, timezone

import structlog

from clawmeter.engine import SCAN_RATE_LIMITS, SCAN_USAGE_WINDOWS, UsageEngine
from clawmeter.errors import RootUnreadable, ScanCancelled
from clawmeter.metrics import MetricsUpdater

logger = structlog.get_logger()


class Collector:
    """
    Collector periodically re-scans the session logs and publishes the
    resulting usage windows and rate-limit counts as gauges. Scans run
    in a worker thread with a deadline; a scan that fails or runs out
    of time leaves the previously published values in place.
    """

    def __init__(
        self,
        engine: "UsageEngine",
        metrics_updater: "MetricsUpdater",
        scrape_interval_seconds: "int" = 60,
        scan_timeout_seconds: "float" = 30.0,
    ) -> "None":
        self._engine = engine
        self._metrics = metrics_updater
        self._interval = scrape_interval_seconds
        self._scan_timeout = scan_timeout_seconds
        self._stop_event: "asyncio.Event" = asyncio.Event()

    def stop(self) -> "None":
        """
        signals the collector loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def run(self) -> "None":
        """
        runs the main collection loop. Runs until stop() is called.
        """
        while not self._stop_event.is_set():
            logger.info("collection_cycle_start")
            await self.collect_once()
            logger.info("collection_cycle_end")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    async def collect_once(self, now: "datetime | None" = None) -> "None":
        now = now or datetime.now(timezone.utc)
        await self._collect_usage_windows(now)
        await self._collect_rate_limits(now)

    async def _collect_usage_windows(self, now: "datetime") -> "None":
        deadline = time.monotonic() + self._scan_timeout
        try:
            report = await asyncio.to_thread(
                self._engine.usage_windows, now, deadline
            )
        except RootUnreadable as e:
            logger.error("scan_root_unreadable", scan=SCAN_USAGE_WINDOWS, error=str(e))
            return
        except ScanCancelled:
            logger.warning("scan_cancelled", scan=SCAN_USAGE_WINDOWS)
            return

        self._metrics.update_windows(report)
        logger.debug(
            "usage_windows_scanned",
            models=len(report.short.per_model),
            short_calls=report.short.total_calls,
            long_calls=report.long.total_calls,
        )

    async def _collect_rate_limits(self, now: "datetime") -> "None":
        deadline = time.monotonic() + self._scan_timeout
        try:
            report = await asyncio.to_thread(
                self._engine.rate_limit_events, now, None, deadline
            )
        except RootUnreadable as e:
            logger.error("scan_root_unreadable", scan=SCAN_RATE_LIMITS, error=str(e))
            return
        except ScanCancelled:
            logger.warning("scan_cancelled", scan=SCAN_RATE_LIMITS)
            return

        self._metrics.update_rate_limits(report)
        if report.events:
            logger.info(
                "rate_limit_events_found",
                count=len(report.events),
                latest=report.events[0].to_dict()["timestamp"],
            )
