"""Atomic-write helpers for series and report outputs.

Writers go through a temporary file in the target directory followed by
``Path.replace`` so a crashed run never leaves a half-written CSV behind.
An existing target is copied to ``<stem>_prev<suffix>`` first.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional
import json
import logging
import shutil
import tempfile

logger = logging.getLogger("etl.ingest")


def _compute_backup_path(p: Path, backup_name: Optional[str]) -> Path:
    """Backup path for ``p``.

    - None -> ``<stem>_prev<suffix>``
    - a name with a suffix -> used as the exact filename
    - otherwise -> ``<stem>_<backup_name><suffix>``
    """
    if backup_name is None:
        return p.with_name(p.stem + "_prev" + p.suffix)
    bn = str(backup_name)
    if Path(bn).suffix:
        return p.with_name(bn)
    return p.with_name(p.stem + "_" + bn + p.suffix)


def atomic_write_text(
    text: str,
    path: Path,
    *,
    backup: bool = False,
    backup_name: Optional[str] = None,
    dry_run: bool = False,
) -> Path:
    """Atomically write ``text`` to ``path``; returns the path."""
    p = Path(path)
    if dry_run:
        logger.info("DRY RUN: would write %s (%d bytes)", p, len(text))
        return p

    p.parent.mkdir(parents=True, exist_ok=True)
    if backup and p.exists():
        shutil.copy2(p, _compute_backup_path(p, backup_name))

    tmp = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", delete=False, dir=str(p.parent), prefix=p.name + ".tmp.", encoding="utf-8", newline=""
        ) as tf:
            tmp = Path(tf.name)
            tf.write(text)
        tmp.replace(p)
    except BaseException:
        if tmp is not None:
            tmp.unlink(missing_ok=True)
        raise
    return p


def write_json(obj: Mapping[str, Any], path: Path, *, dry_run: bool = False) -> Path:
    text = json.dumps(obj, indent=2, sort_keys=True, default=str) + "\n"
    return atomic_write_text(text, path, dry_run=dry_run)
