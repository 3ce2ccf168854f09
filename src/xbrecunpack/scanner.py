"""
Embedded archive scanner.

Recovery executables are a PE stub followed by several cabinet files
stored back to back, with nothing in the stub pointing at them. This
module finds them the blunt way: it walks the image looking for the
8-byte ``MSCF`` header (the signature plus its zero reserved field)
and, on every hit, jumps over the archive using the size recorded in
its header.

Only headers whose reserved field is zero are recognised, since the
whole 8-byte value is compared at once. Cabinets with a non-zero
reserved field are not found.
"""

from __future__ import annotations

import logging
import struct
from typing import Callable, List, Optional

from .rawio import ByteSource
from .signatures import CAB, ArchiveSignature

logger = logging.getLogger(__name__)

SCAN_CHUNK = 16 * 1024 * 1024


class HeaderScanner:
    """Locate archive headers inside an unstructured byte source."""

    def __init__(
        self,
        signature: ArchiveSignature = CAB,
        chunk: int = SCAN_CHUNK,
        progress_cb: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        """Create a scanner.

        Parameters
        ----------
        signature: ArchiveSignature, optional
            Header to search for. Defaults to the cabinet header.
        chunk: int, optional
            Size of the window read from the source per step. Matches
            are identical for any window size; this only trades memory
            for the number of reads.
        progress_cb: callable, optional
            Called as ``progress_cb(offset, total)`` after each window.
        """
        self.signature = signature
        self.chunk = max(4096, chunk)
        self.progress_cb = progress_cb or (lambda a, b: None)

    def find_headers(self, source: ByteSource) -> List[int]:
        """Return the offsets of every archive header, in ascending order.

        A hit records its offset and resumes the search at the end of
        the archive as declared by its size field. Without a hit the
        search moves on by one byte, which is what ``bytes.find`` over
        an overlapping window does for us.
        """
        sig = self.signature
        width = len(sig.header)
        total = source.length
        offsets: List[int] = []
        pos = 0
        while pos + width <= total:
            window = source.read_at(pos, self.chunk)
            if len(window) < width:
                break
            idx = window.find(sig.header)
            if idx < 0:
                if pos + len(window) >= total:
                    break
                # keep width-1 bytes so a header straddling windows is seen
                pos += len(window) - (width - 1)
                self.progress_cb(pos, total)
                continue

            hit = pos + idx
            offsets.append(hit)
            raw = source.read_at(hit + sig.size_offset, sig.size_len)
            if len(raw) < sig.size_len:
                logger.debug("Header at 0x%X has a truncated size field", hit)
                break
            size = struct.unpack(sig.size_format, raw)[0]
            logger.debug("Found %s header at 0x%X (%d bytes)", sig.name, hit, size)
            pos = hit + max(size, sig.consumed)
            self.progress_cb(min(pos, total), total)

        self.progress_cb(total, total)
        return offsets
