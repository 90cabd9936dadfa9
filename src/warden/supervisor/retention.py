"""Child log retention.

The server writes one log file per run into ``$DATA_DIR/logs``; nothing
else ever removes them.  :func:`prune_logs` deletes the ones whose last
modification is older than the configured age.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable

from warden.output import debug, info, warning

SECONDS_PER_DAY = 86400


def prune_logs(
    log_dir: Path,
    max_age_days: int,
    now: Callable[[], float] = time.time,
) -> int:
    """Delete ``*.log*`` files in *log_dir* older than *max_age_days*.

    A file that vanishes or cannot be removed is skipped with a warning.

    Returns:
        The number of files deleted.  ``0`` when retention is disabled
        (``max_age_days <= 0``) or the directory does not exist.
    """
    if max_age_days <= 0 or not log_dir.is_dir():
        return 0

    cutoff = now() - max_age_days * SECONDS_PER_DAY
    deleted = 0
    for path in sorted(log_dir.iterdir()):
        if not path.is_file() or ".log" not in path.name:
            continue
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                deleted += 1
                debug(f"Deleted old log {path.name}")
        except OSError as exc:
            warning(f"Could not delete {path}: {exc}")

    if deleted:
        info(f"Log retention: deleted {deleted} file(s) older than {max_age_days} days")
    return deleted
