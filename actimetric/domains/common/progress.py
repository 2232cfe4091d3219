# actimetric/domains/common/progress.py
from __future__ import annotations
import logging
import os
import sys
import time
from contextlib import contextmanager
from typing import Optional

from tqdm import tqdm

logger = logging.getLogger("etl.ingest")


def _should_show_tqdm() -> bool:
    """Determine if tqdm should be shown.

    - ETL_TQDM=1 forces display
    - ETL_TQDM=0 disables
    - CI environment disables
    - Otherwise show only when stderr is a TTY
    """
    if os.getenv("ETL_TQDM") == "1":
        return True
    if os.getenv("ETL_TQDM") == "0":
        return False
    if os.getenv("CI"):
        return False
    try:
        return bool(hasattr(sys.stderr, "isatty") and sys.stderr.isatty())
    except ValueError:
        # closed stream
        return False


class Timer:
    def __init__(self, label: str = "task"):
        self.label = label
        self.start = 0.0
        self.elapsed = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        logger.info(">>> %s ...", self.label)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = time.perf_counter() - self.start
        status = "OK" if exc is None else "ERROR"
        logger.info("[%s] %s: %.2fs", status, self.label, self.elapsed)


@contextmanager
def progress_bar(total: Optional[int], desc: str = "", unit: str = "files"):
    """Context manager yielding a tqdm bar (hidden when not interactive)."""
    disable = not _should_show_tqdm()
    with tqdm(total=total, desc=desc, unit=unit, disable=disable, leave=False) as bar:
        yield bar
