import argparse
import asyncio
import json
import signal
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from prometheus_client import start_http_server

from clawmeter.cli import parse_args, parse_listen_address
from clawmeter.collector import Collector
from clawmeter.config import Config
from clawmeter.engine import UsageEngine
from clawmeter.logging import setup_logging
from clawmeter.metrics import MetricsUpdater
from clawmeter.models import format_timestamp

logger = structlog.get_logger()

SOURCE = "openclaw"


def wrap_payload(
    payload: "dict[str, Any]",
    now: "datetime",
    error: "str | None" = None,
) -> "dict[str, Any]":
    """
    adds the source/updatedAt envelope the dashboard expects.
    """
    out: "dict[str, Any]" = {"source": SOURCE, "updatedAt": format_timestamp(now)}
    out.update(payload)
    if error is not None:
        out["error"] = error
    return out


def run_command(
    config: "Config",
    args: "argparse.Namespace",
    now: "datetime | None" = None,
) -> "dict[str, Any]":
    """
    runs one of the one-shot commands and returns its JSON payload.
    Scan failures produce an empty payload carrying an error field.
    """
    now = now or datetime.now(timezone.utc)
    engine = UsageEngine(config.agents_dir, token_usage_limit=config.token_usage_limit)

    if args.command == "windows":
        report, err = engine.safe_usage_windows(now)
    elif args.command == "rate-limits":
        report, err = engine.safe_rate_limit_events(
            now, timedelta(hours=args.window_hours)
        )
    elif args.command == "token-usage":
        report, err = engine.safe_token_usage(now, config.token_usage_hours)
    else:
        raise ValueError(f"unknown command: {args.command}")

    return wrap_payload(report.to_dict(), now, "scan failed" if err else None)


def serve(config: "Config") -> "None":
    metrics_updater = MetricsUpdater()
    engine = UsageEngine(
        config.agents_dir,
        metrics=metrics_updater,
        token_usage_limit=config.token_usage_limit,
    )

    host, port = parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info(
        "metrics_server_started",
        host=host,
        port=port,
        agents_dir=config.agents_dir,
    )

    collector = Collector(
        engine, metrics_updater, config.scrape_interval, config.scan_timeout
    )

    async def _run() -> "None":
        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, signal the collector
        # to stop gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, collector.stop)

        try:
            await collector.run()
        finally:
            logger.info("shutdown_complete")

    asyncio.run(_run())


def main(argv: "list[str] | None" = None) -> "None":
    config, args = parse_args(argv)
    setup_logging(config.log_level, config.log_format)

    if args.command == "serve":
        serve(config)
        return

    print(json.dumps(run_command(config, args), indent=2))


if __name__ == "__main__":
    main()
