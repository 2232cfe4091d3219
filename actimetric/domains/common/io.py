"""Delimited-text readers for epoch exports.

Reads a plain CSV/TSV, or the first delimited member of a ZIP (ZipCrypto
via zipfile, AES via pyzipper), into a DataFrame of raw strings. Values are
kept as text so the timestamp parser and metric coercion see exactly what
the device wrote.
"""
from __future__ import annotations

import fnmatch
import io
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional, Sequence, Tuple
import logging

import pandas as pd
import pyzipper

from actimetric.domains.epoch.models import RawRow
from actimetric.domains.epoch.schema_detect import locate_header_row
from actimetric.domains.errors import InputReadError

logger = logging.getLogger("etl.ingest")

TEXT_SUFFIXES = (".csv", ".tsv", ".txt")
DEFAULT_PATTERNS = ("*.csv", "*.tsv", "*.txt", "*.zip")
DELIMITERS = (",", ";", "\t", "|")


def _open_zip_any(zip_path: Path, password: Optional[str]):
    """Open a ZIP with AES (pyzipper) or ZipCrypto (zipfile) support."""
    zp = Path(zip_path)
    try:
        zf = pyzipper.AESZipFile(zp, mode="r")
        if password:
            zf.pwd = password.encode("utf-8")
        _ = zf.namelist()
        return zf
    except Exception as e_py:
        try:
            zf2 = zipfile.ZipFile(zp, mode="r")
            _ = zf2.namelist()
            return zf2
        except Exception as e_zip:
            raise InputReadError(f"Failed to open ZIP '{zp}': {e_py!r} / {e_zip!r}")


def _read_zip_text(path: Path, password: Optional[str], encoding: str) -> str:
    zf = _open_zip_any(path, password)
    names = sorted(n for n in zf.namelist() if not n.endswith("/"))
    target = next((n for n in names if PurePosixPath(n).suffix.lower() in TEXT_SUFFIXES), None)
    if target is None:
        zf.close()
        raise InputReadError(f"No delimited member in {path} (members: {names})")
    try:
        try:
            with zf.open(target, "r") as fh:
                data = fh.read()
        except TypeError:
            with zf.open(target, "r", pwd=(password.encode("utf-8") if password else None)) as fh:
                data = fh.read()
    except RuntimeError as e:
        # wrong or missing password
        raise InputReadError(f"Cannot read {path}: {e}") from e
    finally:
        zf.close()
    logger.debug("zip member %s selected from %s", target, path)
    return data.decode(encoding, errors="replace")


def read_text(path: str | Path, *, password: Optional[str] = None, encoding: str = "utf-8") -> str:
    p = Path(path)
    try:
        if p.suffix.lower() == ".zip":
            return _read_zip_text(p, password, encoding)
        return p.read_text(encoding=encoding, errors="replace")
    except OSError as e:
        raise InputReadError(f"Cannot read {p}: {e}") from e


def sniff_delimiter(line: str) -> str:
    """Most frequent candidate delimiter on the header line (comma on a tie)."""
    counts = [(line.count(d), -i, d) for i, d in enumerate(DELIMITERS)]
    n, _, best = max(counts)
    return best if n else ","


def read_tabular_text(text: str, metric_name: str) -> Tuple[pd.DataFrame, int]:
    """Parse delimited text into an all-string DataFrame.

    Returns ``(df, header_row)`` where ``header_row`` is the 0-based line of
    the header (non-zero when the export carries a preamble).
    """
    lines = text.splitlines()
    if not any(ln.strip() for ln in lines):
        raise InputReadError("file is empty")
    header_row = locate_header_row(lines, metric_name)
    sep = sniff_delimiter(lines[header_row])
    try:
        df = pd.read_csv(
            io.StringIO("\n".join(lines[header_row:])),
            sep=sep,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise InputReadError(f"cannot parse delimited text: {e}") from e
    df.columns = [str(c).strip().lstrip("﻿") for c in df.columns]
    return df, header_row


def read_epoch_table(
    path: str | Path,
    metric_name: str,
    *,
    password: Optional[str] = None,
    encoding: str = "utf-8",
) -> Tuple[pd.DataFrame, int]:
    text = read_text(path, password=password, encoding=encoding)
    df, header_row = read_tabular_text(text, metric_name)
    logger.debug("read %s rows=%d cols=%d header_row=%d", path, len(df), df.shape[1], header_row)
    return df, header_row


def iter_raw_rows(df: pd.DataFrame) -> Iterator[RawRow]:
    cols = list(df.columns)
    for i, vals in enumerate(df.itertuples(index=False, name=None)):
        yield RawRow(i, dict(zip(cols, vals)))


def discover_inputs(root: str | Path, patterns: Sequence[str] = DEFAULT_PATTERNS) -> List[Path]:
    """List input files under ``root`` (a file is returned as-is), sorted."""
    r = Path(root)
    if r.is_file():
        return [r]
    if not r.exists():
        return []
    pats = [p.lower() for p in patterns]
    found = [
        p for p in r.rglob("*")
        if p.is_file() and any(fnmatch.fnmatch(p.name.lower(), pat) for pat in pats)
    ]
    return sorted(found)
