"""
Sequential cursor over the content archives of a recovery image.

The payload of a recovery image is split across several cabinets. The
manifest does not say where one ends and the next begins; it simply
lists files in order, so the archives behave like one long list of
members. :class:`ArchiveChain` presents them that way and owns the
single cabinet that is open at any time.
"""

from __future__ import annotations

import logging
from typing import Iterator, Optional, Sequence, Tuple

from .cabfile import CabEntry, CabFile
from .errors import ArchiveError, CabFormatError, MissingArchiveError
from .rawio import ByteSource

logger = logging.getLogger(__name__)


class ArchiveChain:
    """Iterate the members of consecutive archives as one sequence.

    Use as a context manager: entering opens the first archive, leaving
    closes whichever archive is open. Iteration yields
    ``(archive, entry)`` pairs; :meth:`take` does the same but raises
    :class:`MissingArchiveError` when the chain runs out.
    """

    def __init__(self, source: ByteSource, offsets: Sequence[int]) -> None:
        self.source = source
        self.offsets = tuple(offsets)
        self.archive_index = -1
        self.archive: Optional[CabFile] = None
        self.cursor = 0

    def __enter__(self) -> "ArchiveChain":
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()

    def __iter__(self) -> Iterator[Tuple[CabFile, CabEntry]]:
        return self

    def __next__(self) -> Tuple[CabFile, CabEntry]:
        if self.archive is None:
            if self.archive_index >= 0:
                raise StopIteration
            self.open()
        while self.cursor >= len(self.archive.entries):
            if self.archive_index + 1 >= len(self.offsets):
                raise StopIteration
            self._open_at(self.archive_index + 1)
        entry = self.archive.entries[self.cursor]
        self.cursor += 1
        return self.archive, entry

    def open(self) -> CabFile:
        if not self.offsets:
            raise MissingArchiveError("no content archives to read", 0)
        return self._open_at(0)

    def take(self) -> Tuple[CabFile, CabEntry]:
        """Return the next member, switching archives when needed."""
        try:
            return next(self)
        except StopIteration:
            raise MissingArchiveError(
                "couldn't find next cab file: manifest lists more files than the archives hold",
                self.archive_index + 1,
            ) from None

    def _open_at(self, index: int) -> CabFile:
        self.close()
        offset = self.offsets[index]
        cab = CabFile(self.source, offset)
        try:
            cab.read()
        except CabFormatError as e:
            raise ArchiveError(f"failed to read CAB at offset 0x{offset:X}: {e}") from e
        logger.debug("Opened content archive %d at 0x%X (%d entries)", index, offset, len(cab))
        self.archive_index = index
        self.archive = cab
        self.cursor = 0
        return cab

    def close(self):
        if self.archive is not None:
            self.archive.close()
            self.archive = None
