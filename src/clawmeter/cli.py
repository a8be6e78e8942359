import argparse

from clawmeter.config import Config
from clawmeter.logging import LOG_FORMATS


def _positive_int(value: "str") -> "int":
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value!r}")
    return parsed


def parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    Raises ValueError for anything else.
    """
    if ":" not in addr:
        raise ValueError(f"expected [host]:port, got {addr!r}")

    host, port_str = addr.rsplit(":", 1)
    port = int(port_str)
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range: {port}")
    return (host or "0.0.0.0", port)


def _listen_address(value: "str") -> "str":
    try:
        parse_listen_address(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid listen address: {value!r} (expected [host]:port)"
        ) from None
    return value


def build_parser() -> "argparse.ArgumentParser":
    parser = argparse.ArgumentParser(
        prog="clawmeter",
        description="Usage accounting for OpenClaw agent session logs",
    )
    parser.add_argument(
        "--agents.dir",
        dest="agents_dir",
        default=None,
        help="Agents root directory (default: $OPENCLAW_AGENTS_DIR or "
        "/root/.openclaw/agents)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=list(LOG_FORMATS),
        help="Log output format (default: console)",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser(
        "windows",
        help="Print 5h/7d usage windows and burn rate as JSON",
    )

    rate_limits = commands.add_parser(
        "rate-limits",
        help="Print suspected rate-limit events as JSON",
    )
    rate_limits.add_argument(
        "--window",
        dest="window_hours",
        type=_positive_int,
        default=5,
        help="Lookback window in hours (default: 5)",
    )

    token_usage = commands.add_parser(
        "token-usage",
        help="Print total tokens used over the last hours as JSON",
    )
    token_usage.add_argument(
        "--hours",
        dest="hours",
        type=_positive_int,
        default=None,
        help="Hours to look back, at most 168 "
        "(default: $TOKEN_USAGE_HOURS_DEFAULT or 24)",
    )

    serve = commands.add_parser(
        "serve",
        help="Export usage windows as Prometheus metrics",
    )
    serve.add_argument(
        "--web.listen-address",
        dest="listen_address",
        type=_listen_address,
        default=":9186",
        help="Address to listen on (default: :9186)",
    )
    serve.add_argument(
        "--scrape.interval",
        dest="scrape_interval",
        type=_positive_int,
        default=60,
        help="Scan interval in seconds (default: 60)",
    )
    serve.add_argument(
        "--scan.timeout",
        dest="scan_timeout",
        type=float,
        default=30.0,
        help="Maximum duration of a single scan in seconds (default: 30)",
    )
    return parser


def parse_args(
    argv: "list[str] | None" = None,
) -> "tuple[Config, argparse.Namespace]":
    """
    builds the Config from the environment, then applies command line
    overrides. The parsed namespace carries the command and its
    command-specific options.
    """
    args = build_parser().parse_args(argv)
    config = Config.from_env()
    if args.agents_dir:
        config.agents_dir = args.agents_dir
    config.log_level = args.log_level
    config.log_format = args.log_format

    if args.command == "serve":
        config.listen_address = args.listen_address
        config.scrape_interval = args.scrape_interval
        config.scan_timeout = args.scan_timeout
    if args.command == "token-usage" and args.hours is not None:
        config.token_usage_hours = args.hours
    return config, args
