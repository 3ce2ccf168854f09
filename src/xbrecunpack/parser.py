"""
Manifest parser for recovery images.

The meta-archive of a recovery image carries ``manifest.csv``, a loose
comma-separated list of instructions. Each useful row looks like::

    <unused>,<variant>,<action>,<base path>,<file path>,<copy destination>

``file`` rows consume the next member of the content archives and
``copy`` rows duplicate a file that an earlier ``file`` row produced.
Anything else (headers, comments, short rows, other actions) is
skipped rather than treated as an error, so one odd line never sinks
the whole recovery.
"""

from __future__ import annotations

import enum
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

ALL_VARIANTS = "_All"
MIN_FIELDS = 6


class Action(enum.Enum):
    FILE = "file"
    COPY = "copy"


@dataclass(frozen=True)
class ManifestEntry:
    """One accepted manifest row.

    Attributes
    ----------
    variant: str
        Build variant the row belongs to. Rows without one are filed
        under ``_All``.
    action: Action
        ``Action.FILE`` or ``Action.COPY``.
    base_path: str
        Installation base path. Kept for reference only.
    file_path: str
        Path of the extracted file, relative to the variant folder. For
        copies this is the source.
    copy_dest_path: str
        Destination of a copy, relative to the variant folder.
    """
    variant: str
    action: Action
    base_path: str
    file_path: str
    copy_dest_path: str


@dataclass(frozen=True)
class Manifest:
    entries: Tuple[ManifestEntry, ...]
    variants: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def file_count(self) -> int:
        return sum(1 for e in self.entries if e.action is Action.FILE)

    @property
    def copy_count(self) -> int:
        return sum(1 for e in self.entries if e.action is Action.COPY)

    def variant_counts(self) -> Dict[str, int]:
        """Number of entries per variant, in first-seen variant order."""
        counts: Dict[str, int] = OrderedDict((v, 0) for v in self.variants)
        for entry in self.entries:
            counts[entry.variant] += 1
        return counts


def parse_line(line: str) -> Optional[ManifestEntry]:
    """Turn one manifest line into an entry, or ``None`` if it is not one."""
    if not line:
        return None
    parts = line.split(",")
    if len(parts) < MIN_FIELDS:
        return None
    try:
        action = Action(parts[2])
    except ValueError:
        return None
    return ManifestEntry(
        variant=parts[1] or ALL_VARIANTS,
        action=action,
        base_path=parts[3],
        file_path=parts[4],
        copy_dest_path=parts[5],
    )


def parse_manifest(text: str) -> Manifest:
    """Parse the full text of ``manifest.csv``.

    Lines may end in ``\\n`` or ``\\r\\n``. Entry order and first-seen
    variant order are preserved.
    """
    entries: List[ManifestEntry] = []
    variants: List[str] = []
    for line in text.replace("\r\n", "\n").split("\n"):
        entry = parse_line(line)
        if entry is None:
            continue
        entries.append(entry)
        if entry.variant not in variants:
            variants.append(entry.variant)
    return Manifest(entries=tuple(entries), variants=tuple(variants))


def decode_manifest(data: bytes) -> Manifest:
    # single-byte text; every byte maps to exactly one character
    return parse_manifest(data.decode("latin-1"))


def split_relative(path: str) -> List[str]:
    """Split a manifest path on either separator, dropping empty and ``.`` parts."""
    return [p for p in path.replace("\\", "/").split("/") if p not in ("", ".")]


def same_path(a: str, b: str) -> bool:
    return [p.lower() for p in split_relative(a)] == [p.lower() for p in split_relative(b)]


def format_summary(manifest: Manifest) -> Sequence[str]:
    lines = [
        "Recovery contents:",
        f"{len(manifest)} files",
        f"{len(manifest.variants)} variants:",
    ]
    for variant, count in manifest.variant_counts().items():
        lines.append(f"  - {variant} ({count} files)")
    return lines
