"""
Recovery image reader and extraction engine.

:class:`RemoteRecovery` ties the pieces together:

1. :meth:`RemoteRecovery.read` scans the image for cabinet headers,
   opens the second one (the meta-archive) and parses its
   ``manifest.csv``. The meta-archive is then dropped from the header
   list; what remains are the content archives.
2. :meth:`RemoteRecovery.extract` walks the manifest in order. Each
   ``file`` row takes the next member of the content archives and each
   ``copy`` row duplicates a file written earlier in the same pass.

Nothing is rolled back on failure: files written before an error stay
on disk, and a file being written when the error hit is left partial.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union

from .cabfile import CabFile
from .chain import ArchiveChain
from .errors import (
    ArchiveError,
    CabFormatError,
    ManifestError,
    MetaArchiveError,
    MissingArchiveError,
    RecoveryError,
    SignatureNotFoundError,
    UnsafePathError,
)
from .parser import Action, Manifest, ManifestEntry, decode_manifest, format_summary, same_path, split_relative
from .rawio import ByteSource, open_source
from .scanner import SCAN_CHUNK, HeaderScanner
from .utils import ensure_dir, human_size, long_path

logger = logging.getLogger(__name__)

META_ARCHIVE_INDEX = 1
MANIFEST_NAME = "manifest.csv"
COPY_CHUNK = 32 * 1024


@dataclass
class ExtractResult:
    """Outcome of one manifest entry.

    ``size``, ``archive_index`` and ``archive_name`` are only set for
    ``file`` entries; copies consume no archive member.
    """
    index: int
    total: int
    entry: ManifestEntry
    variant_path: str
    out_path: str
    size: Optional[int] = None
    archive_index: Optional[int] = None
    archive_name: Optional[str] = None
    mismatch: bool = False
    note: str = ""

    @property
    def action(self) -> Action:
        return self.entry.action

    def describe(self) -> str:
        if self.action is Action.COPY:
            return f"({self.index}/{self.total}) {self.variant_path} (copy)"
        return f"({self.index}/{self.total}) {self.variant_path} ({human_size(self.size or 0)})"


def _safe_parts(path: str, what: str) -> List[str]:
    parts = split_relative(path)
    if ".." in parts or (parts and (parts[0].endswith(":") or os.path.isabs(path))):
        raise UnsafePathError(f"{what} escapes the output folder: {path!r}")
    return parts


class RemoteRecovery:
    """A recovery executable and the payload embedded in it."""

    def __init__(
        self,
        source: Union[str, os.PathLike, bytes, ByteSource],
        chunk: int = SCAN_CHUNK,
        progress_cb=None,
    ) -> None:
        """Create a reader.

        Parameters
        ----------
        source: str, path-like, bytes or ByteSource
            The recovery executable. Paths are opened (and later closed)
            by this object; a :class:`ByteSource` passed in stays owned
            by the caller.
        chunk: int, optional
            Scan window size, see :class:`HeaderScanner`.
        progress_cb: callable, optional
            ``progress_cb(offset, total)`` during the header scan.
        """
        self._owns_source = not isinstance(source, ByteSource)
        self.source = open_source(source)
        self.scanner = HeaderScanner(chunk=chunk, progress_cb=progress_cb)
        self.header_offsets: Tuple[int, ...] = ()
        self.content_offsets: Tuple[int, ...] = ()
        self.manifest: Optional[Manifest] = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        if self._owns_source:
            self.source.close()

    @property
    def meta_offset(self) -> Optional[int]:
        if len(self.header_offsets) > META_ARCHIVE_INDEX:
            return self.header_offsets[META_ARCHIVE_INDEX]
        return None

    def read(self) -> Manifest:
        """Scan the image and load the manifest.

        Raises
        ------
        SignatureNotFoundError
            Fewer than two cabinet headers were found.
        MetaArchiveError
            The meta-archive could not be parsed.
        ManifestError
            ``manifest.csv`` is missing or unreadable.
        """
        self.manifest = None
        logger.info("Scanning recovery image (%d bytes)...", self.source.length)
        offsets = self.scanner.find_headers(self.source)
        if len(offsets) <= META_ARCHIVE_INDEX:
            raise SignatureNotFoundError(
                f"couldn't find required CAB files inside recovery (found {len(offsets)})",
                len(offsets),
            )
        self.header_offsets = tuple(offsets)
        self.content_offsets = tuple(offsets[:META_ARCHIVE_INDEX] + offsets[META_ARCHIVE_INDEX + 1:])

        manifest = self._load_manifest(offsets[META_ARCHIVE_INDEX])
        for line in format_summary(manifest):
            logger.info(line)
        self.manifest = manifest
        return manifest

    def _load_manifest(self, offset: int) -> Manifest:
        with CabFile(self.source, offset) as meta:
            try:
                meta.read()
            except CabFormatError as e:
                raise MetaArchiveError(f"failed to read meta-cab at 0x{offset:X}: {e}") from e
            entry = meta.get_entry(MANIFEST_NAME, case_insensitive=True)
            if entry is None:
                raise ManifestError(f"failed to find {MANIFEST_NAME} inside meta-cab")
            try:
                with meta.open_file(entry) as fh:
                    data = fh.read()
            except CabFormatError as e:
                raise ManifestError(f"failed to read {MANIFEST_NAME}: {e}") from e
        if len(data) != entry.size:
            raise ManifestError(f"{MANIFEST_NAME} is truncated ({len(data)} of {entry.size} bytes)")
        return decode_manifest(data)

    def extract(self, dest_dir: str, list_only: bool = False) -> Iterator[ExtractResult]:
        """Process every manifest entry, in order.

        Returns a generator yielding one :class:`ExtractResult` per
        entry. With ``list_only`` the results are produced without
        touching the file system. Errors raised while iterating end the
        pass; earlier output is kept.
        """
        if self.manifest is None:
            raise RecoveryError("no manifest loaded; call read() first")
        if not self.content_offsets:
            raise MissingArchiveError("no content archives to extract from", 0)
        if not self.manifest.entries:
            raise ManifestError(f"{MANIFEST_NAME} lists no entries")
        return self._extract_iter(os.fspath(dest_dir), list_only)

    def _extract_iter(self, dest_dir: str, list_only: bool) -> Iterator[ExtractResult]:
        entries = self.manifest.entries
        total = len(entries)
        with ArchiveChain(self.source, self.content_offsets) as chain:
            for index, entry in enumerate(entries, 1):
                if entry.action is Action.FILE:
                    yield self._extract_file(chain, entry, index, total, dest_dir, list_only)
                else:
                    yield self._copy_file(entry, index, total, dest_dir, list_only)

    def _extract_file(self, chain: ArchiveChain, entry: ManifestEntry, index: int, total: int,
                      dest_dir: str, list_only: bool) -> ExtractResult:
        variant = _safe_parts(entry.variant, "variant")
        rel = _safe_parts(entry.file_path, "file path")
        archive, item = chain.take()

        res = ExtractResult(
            index=index,
            total=total,
            entry=entry,
            variant_path="/".join(variant + rel),
            out_path=os.path.join(dest_dir, *variant, *rel),
            size=item.size,
            archive_index=chain.archive_index,
            archive_name=item.name,
        )
        if not same_path(item.name, entry.file_path):
            res.mismatch = True
            res.note = f"cab entry is {item.name}"
            logger.warning("Mismatch between manifest entry %s and cab entry %s", entry.file_path, item.name)

        if list_only:
            return res

        ensure_dir(os.path.dirname(res.out_path))
        remaining = item.size
        with archive.open_file(item) as src, open(long_path(res.out_path), "wb") as dst:
            while remaining > 0:
                block = src.read(min(COPY_CHUNK, remaining))
                if not block:
                    raise ArchiveError(f"{item.name}: data ends {remaining} bytes early")
                dst.write(block)
                remaining -= len(block)
        return res

    def _copy_file(self, entry: ManifestEntry, index: int, total: int,
                   dest_dir: str, list_only: bool) -> ExtractResult:
        variant = _safe_parts(entry.variant, "variant")
        src_rel = _safe_parts(entry.file_path, "file path")
        dst_rel = _safe_parts(entry.copy_dest_path, "copy destination")

        res = ExtractResult(
            index=index,
            total=total,
            entry=entry,
            variant_path="/".join(variant + dst_rel),
            out_path=os.path.join(dest_dir, *variant, *dst_rel),
        )
        if list_only:
            return res

        src_path = os.path.join(dest_dir, *variant, *src_rel)
        ensure_dir(os.path.dirname(res.out_path))
        if os.path.lexists(long_path(res.out_path)):
            os.remove(long_path(res.out_path))
        shutil.copyfile(long_path(src_path), long_path(res.out_path))
        return res
