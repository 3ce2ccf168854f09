"""
Utility functions and helpers for the recovery unpacker.

Small routines shared by the extraction engine and the front-ends.
Keeping them here avoids circular imports between the engine and the
GUI/CLI modules.
"""

from __future__ import annotations

import os

_UNITS = ("KB", "MB", "GB", "TB", "PB", "EB")


def human_size(num: int) -> str:
    """Format a byte count for progress output.

    Bytes are printed as an integer; larger values use binary units
    with up to three decimals, trailing zeros trimmed (``1.5 KB``,
    ``12 MB``).
    """
    if num < 1024:
        return f"{num} B"
    size = float(num)
    unit = _UNITS[0]
    for unit in _UNITS:
        size /= 1024
        if size < 1024:
            break
    text = f"{size:.3f}".rstrip("0").rstrip(".")
    return f"{text} {unit}"


def parse_size(s: str) -> int:
    """Parse ``16M``/``256K``/``1G`` style sizes; plain numbers are bytes."""
    s = (s or "0").strip().lower()
    if s in ("0", "", "none"):
        return 0
    mul = 1
    if s.endswith("k"):
        mul = 1024; s = s[:-1]
    elif s.endswith("m"):
        mul = 1024*1024; s = s[:-1]
    elif s.endswith("g"):
        mul = 1024*1024*1024; s = s[:-1]
    return int(float(s) * mul)


def ensure_dir(p: str):
    if p:
        os.makedirs(long_path(p), exist_ok=True)


def long_path(p: str) -> str:
    # Windows long path prefix
    if os.name == "nt":
        ap = os.path.abspath(p)
        if not ap.startswith("\\\\?\\"):
            ap = "\\\\?\\" + ap
        return ap
    return p
