import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
from prometheus_client import CollectorRegistry


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def now() -> "datetime":
    """
    current time truncated to the second. Tests write real files, so
    "now" has to stay close to their modification time.
    """
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture()
def ago(now: "datetime") -> "Callable[..., datetime]":
    def _ago(**kwargs: "float") -> "datetime":
        return now - timedelta(**kwargs)

    return _ago


@pytest.fixture()
def agents_dir(tmp_path: "Path") -> "Path":
    root = tmp_path / "agents"
    root.mkdir()
    return root


@pytest.fixture()
def write_session(agents_dir: "Path") -> "Callable[..., Path]":
    """
    writes lines to <agents>/<agent>/sessions/<name>.jsonl and returns
    the file path.
    """

    def _write(
        lines: "list[str]",
        agent: "str" = "main",
        name: "str" = "session",
        mtime: "datetime | None" = None,
    ) -> "Path":
        sessions = agents_dir / agent / "sessions"
        sessions.mkdir(parents=True, exist_ok=True)
        path = sessions / f"{name}.jsonl"
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        if mtime is not None:
            stamp = mtime.timestamp()
            os.utime(path, (stamp, stamp))
        return path

    return _write
