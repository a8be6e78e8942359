from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from clawmeter.models import RateLimitReport, UsageWindowsReport, WindowResult
from clawmeter.parser import ScanStats

# labels for the window gauges
SHORT_WINDOW_LABEL = "5h"
LONG_WINDOW_LABEL = "7d"


def create_window_metrics(
    registry: "CollectorRegistry" = REGISTRY,
) -> "dict[str, Gauge]":
    """
    creates the gauges that mirror the latest usage-windows scan.
     - window_tokens: tokens per window and model, split by kind
     (input/output/cache_read/cache_write).
     - window_cost_usd: cost per window and model.
     - window_calls: calls per window and model.
     - window_reset_seconds: seconds until the oldest short-window
     call ages out.
     - burn_tokens_per_minute / burn_cost_per_minute: trailing
     burn rate.
     - rate_limit_events: number of suspected rate-limit events in
     the lookback window.
    """
    return {
        "window_tokens": Gauge(
            "clawmeter_window_tokens",
            "Tokens used within the window",
            ["window", "model", "kind"],
            registry=registry,
        ),
        "window_cost_usd": Gauge(
            "clawmeter_window_cost_usd",
            "Cost in USD within the window",
            ["window", "model"],
            registry=registry,
        ),
        "window_calls": Gauge(
            "clawmeter_window_calls",
            "Model calls within the window",
            ["window", "model"],
            registry=registry,
        ),
        "window_reset_seconds": Gauge(
            "clawmeter_window_reset_seconds",
            "Seconds until the oldest call leaves the short window",
            registry=registry,
        ),
        "burn_tokens_per_minute": Gauge(
            "clawmeter_burn_tokens_per_minute",
            "Output tokens per minute over the trailing burn window",
            registry=registry,
        ),
        "burn_cost_per_minute": Gauge(
            "clawmeter_burn_cost_per_minute",
            "Cost in USD per minute over the trailing burn window",
            registry=registry,
        ),
        "rate_limit_events": Gauge(
            "clawmeter_rate_limit_events",
            "Suspected rate-limit events within the lookback window",
            registry=registry,
        ),
    }


class MetricsUpdater:
    """
    applies scan outcomes and report data to Prometheus metrics.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._window_metrics: "dict[str, Gauge]" = create_window_metrics(registry)
        self._scan_duration: "Histogram" = Histogram(
            "clawmeter_scan_duration_seconds",
            "Duration of session log scans",
            ["scan"],
            registry=registry,
        )
        self._scan_errors: "Counter" = Counter(
            "clawmeter_scan_errors_total",
            "Total number of failed scans by scan and stage",
            ["scan", "stage"],
            registry=registry,
        )
        self._lines_skipped: "Counter" = Counter(
            "clawmeter_lines_skipped_total",
            "Session log lines skipped while scanning",
            ["reason"],
            registry=registry,
        )
        self._files_skipped: "Counter" = Counter(
            "clawmeter_files_skipped_total",
            "Session log files that could not be read",
            registry=registry,
        )
        self._last_scan_success: "Gauge" = Gauge(
            "clawmeter_last_scan_success_timestamp_seconds",
            "Unix timestamp of the last successful scan",
            ["scan"],
            registry=registry,
        )

    def observe_scan_duration(self, scan: "str", duration_seconds: "float") -> "None":
        self._scan_duration.labels(scan=scan).observe(duration_seconds)

    def inc_scan_error(self, scan: "str", stage: "str") -> "None":
        self._scan_errors.labels(scan=scan, stage=stage).inc()

    def set_last_scan_success(self, scan: "str", timestamp: "float") -> "None":
        self._last_scan_success.labels(scan=scan).set(timestamp)

    def record_stats(self, stats: "ScanStats") -> "None":
        """
        adds the skipped line and file counts of a finished scan.
        """
        if stats.decode_errors:
            self._lines_skipped.labels(reason="decode").inc(stats.decode_errors)
        if stats.timestamp_errors:
            self._lines_skipped.labels(reason="timestamp").inc(stats.timestamp_errors)
        if stats.too_long:
            self._lines_skipped.labels(reason="too_long").inc(stats.too_long)
        if stats.files_skipped:
            self._files_skipped.inc(stats.files_skipped)

    def _set_window(self, window: "str", result: "WindowResult") -> "None":
        m = self._window_metrics
        for key, agg in result.per_model.items():
            tokens = m["window_tokens"]
            tokens.labels(window=window, model=key, kind="input").set(agg.input)
            tokens.labels(window=window, model=key, kind="output").set(agg.output)
            tokens.labels(window=window, model=key, kind="cache_read").set(
                agg.cache_read
            )
            tokens.labels(window=window, model=key, kind="cache_write").set(
                agg.cache_write
            )
            m["window_cost_usd"].labels(window=window, model=key).set(agg.cost)
            m["window_calls"].labels(window=window, model=key).set(agg.calls)

    def update_windows(self, report: "UsageWindowsReport") -> "None":
        """
        replaces the window gauges with the report's values. Label sets
        from earlier scans are dropped so models that aged out of a
        window disappear.
        """
        m = self._window_metrics
        m["window_tokens"].clear()
        m["window_cost_usd"].clear()
        m["window_calls"].clear()

        self._set_window(SHORT_WINDOW_LABEL, report.short)
        self._set_window(LONG_WINDOW_LABEL, report.long)

        reset_ms = report.short.window_reset_in or 0
        m["window_reset_seconds"].set(reset_ms / 1000)
        m["burn_tokens_per_minute"].set(report.burn_rate.tokens_per_minute)
        m["burn_cost_per_minute"].set(report.burn_rate.cost_per_minute)

    def update_rate_limits(self, report: "RateLimitReport") -> "None":
        self._window_metrics["rate_limit_events"].set(len(report.events))
