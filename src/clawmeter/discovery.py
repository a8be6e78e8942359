import os
from datetime import datetime
from pathlib import Path

import structlog

from clawmeter.errors import RootUnreadable

logger = structlog.get_logger()

SESSIONS_SUBDIR = "sessions"
LOG_EXTENSION = ".jsonl"


def list_session_logs(
    root: "str | os.PathLike[str]",
    modified_since: "datetime | None" = None,
) -> "list[Path]":
    """
    lists <root>/<agent>/sessions/*.jsonl, keeping only files modified
    at or after modified_since (all files when it is None).

    Anything below the root that can't be read is skipped; only a root
    that can't be listed raises RootUnreadable.
    """
    root_path = Path(root)
    try:
        agents = sorted(os.scandir(root_path), key=lambda e: e.name)
    except OSError as e:
        raise RootUnreadable(root_path, e) from e

    cutoff = modified_since.timestamp() if modified_since is not None else None
    paths: "list[Path]" = []

    for agent in agents:
        try:
            if not agent.is_dir():
                continue
        except OSError:
            continue

        sessions_dir = root_path / agent.name / SESSIONS_SUBDIR
        try:
            entries = sorted(os.scandir(sessions_dir), key=lambda e: e.name)
        except OSError:
            logger.debug("sessions_dir_skipped", path=str(sessions_dir))
            continue

        for entry in entries:
            if not entry.name.endswith(LOG_EXTENSION):
                continue
            try:
                if entry.is_dir():
                    continue
                mtime = entry.stat().st_mtime
            except OSError:
                continue

            if cutoff is not None and mtime < cutoff:
                continue

            paths.append(sessions_dir / entry.name)

    return paths
