"""
Minimal Microsoft cabinet (CAB) reader.

Reads a cabinet that starts at an arbitrary offset of a
:class:`~xbrecunpack.rawio.ByteSource`, which is how the archives sit
inside a recovery executable. All offsets stored in the cabinet are
relative to its own ``MSCF`` header.

Layout::

    CFHEADER   36 bytes, optional reserve area, optional prev/next names
    CFFOLDER   one per folder: first data block, block count, compression
    CFFILE     one per member: size, offset in folder, folder, name
    CFDATA     compressed blocks, at most 32 KiB uncompressed each

Stored and MSZIP folders are supported. MSZIP blocks are ``CK``
followed by a raw deflate stream whose window is primed with the
previous 32 KiB of the folder's output. Block checksums are not
verified.
"""

from __future__ import annotations

import io
import struct
import zlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .errors import CabFormatError, UnsupportedCompressionError
from .rawio import ByteSource

CAB_MAGIC = b"MSCF"

_CFHEADER = struct.Struct("<4sIIIIIBBHHHHH")
_CFRESERVE = struct.Struct("<HBB")
_CFFOLDER = struct.Struct("<IHH")
_CFFILE = struct.Struct("<IIHHHH")
_CFDATA = struct.Struct("<IHH")

FLAG_PREV_CABINET = 0x0001
FLAG_NEXT_CABINET = 0x0002
FLAG_RESERVE_PRESENT = 0x0004

IFOLD_CONTINUED_FROM_PREV = 0xFFFD
IFOLD_CONTINUED_TO_NEXT = 0xFFFE
IFOLD_CONTINUED_PREV_AND_NEXT = 0xFFFF

ATTR_NAME_IS_UTF = 0x80

COMP_NONE = 0
COMP_MSZIP = 1
COMP_QUANTUM = 2
COMP_LZX = 3
_COMP_NAMES = {COMP_NONE: "none", COMP_MSZIP: "MSZIP", COMP_QUANTUM: "Quantum", COMP_LZX: "LZX"}

MSZIP_WINDOW = 32 * 1024
_MAX_NAME = 256


@dataclass(frozen=True)
class CabFolder:
    data_offset: int      # relative to the cabinet header
    block_count: int
    compression: int

    @property
    def method(self) -> int:
        return self.compression & 0x000F


@dataclass(frozen=True)
class CabEntry:
    name: str
    size: int
    folder_index: int
    folder_offset: int
    date: int
    time: int
    attribs: int

    @property
    def continued(self) -> bool:
        return self.folder_index >= IFOLD_CONTINUED_FROM_PREV


class _FolderReader:
    """Sequential decompressor over the data blocks of one folder."""

    def __init__(self, cab: "CabFile", folder: CabFolder):
        self.cab = cab
        self.folder = folder
        self.offset = 0  # uncompressed bytes handed out so far
        self._pos = cab.offset + folder.data_offset
        self._left = folder.block_count
        self._history = b""
        self._buf = b""
        self._buf_pos = 0
        if folder.method not in (COMP_NONE, COMP_MSZIP):
            name = _COMP_NAMES.get(folder.method, str(folder.method))
            raise UnsupportedCompressionError(f"unsupported CAB compression: {name}", folder.method)

    def _next_block(self) -> bytes:
        if self._left <= 0:
            return b""
        hdr = self.cab.source.read_at(self._pos, _CFDATA.size)
        if len(hdr) < _CFDATA.size:
            raise CabFormatError(f"truncated CFDATA header at 0x{self._pos:X}")
        _csum, cb_data, cb_uncomp = _CFDATA.unpack(hdr)
        self._pos += _CFDATA.size + self.cab.data_reserve
        data = self.cab.source.read_at(self._pos, cb_data)
        if len(data) < cb_data:
            raise CabFormatError(f"truncated CFDATA block at 0x{self._pos:X}")
        self._pos += cb_data
        self._left -= 1
        if cb_uncomp == 0:
            raise CabFormatError("data block continues in another cabinet")

        if self.folder.method == COMP_NONE:
            out = data
        else:
            if data[:2] != b"CK":
                raise CabFormatError(f"bad MSZIP block signature at 0x{self._pos - cb_data:X}")
            if self._history:
                d = zlib.decompressobj(-15, zdict=self._history)
            else:
                d = zlib.decompressobj(-15)
            try:
                out = d.decompress(data[2:]) + d.flush()
            except zlib.error as e:
                raise CabFormatError(f"MSZIP block failed to inflate: {e}") from e
            self._history = (self._history + out)[-MSZIP_WINDOW:]

        if len(out) != cb_uncomp:
            raise CabFormatError(
                f"data block size mismatch: expected {cb_uncomp}, got {len(out)}"
            )
        return out

    def read(self, size: int) -> bytes:
        out = bytearray()
        while len(out) < size:
            if self._buf_pos >= len(self._buf):
                self._buf = self._next_block()
                self._buf_pos = 0
                if not self._buf:
                    break
            take = min(size - len(out), len(self._buf) - self._buf_pos)
            out += self._buf[self._buf_pos:self._buf_pos + take]
            self._buf_pos += take
        self.offset += len(out)
        return bytes(out)

    def skip(self, count: int) -> None:
        while count > 0:
            got = self.read(min(count, MSZIP_WINDOW))
            if not got:
                raise CabFormatError("folder data ends before the requested member")
            count -= len(got)


class CabEntryStream(io.RawIOBase):
    """Read-only stream over one member, ``size`` bytes long."""

    def __init__(self, reader: _FolderReader, size: int):
        super().__init__()
        self._reader = reader
        self._remaining = size

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._remaining <= 0:
            return 0
        data = self._reader.read(min(len(b), self._remaining))
        n = len(data)
        b[:n] = data
        self._remaining -= n
        return n


class CabFile:
    """A cabinet embedded at ``offset`` inside ``source``."""

    def __init__(self, source: ByteSource, offset: int = 0) -> None:
        self.source = source
        self.offset = offset
        self.size = 0
        self.flags = 0
        self.set_id = 0
        self.cabinet_index = 0
        self.header_reserve = b""
        self.folder_reserve = 0
        self.data_reserve = 0
        self.prev_cabinet: Optional[Tuple[str, str]] = None
        self.next_cabinet: Optional[Tuple[str, str]] = None
        self.folders: List[CabFolder] = []
        self.entries: List[CabEntry] = []
        self._by_name: Dict[str, CabEntry] = {}
        self._reader: Optional[_FolderReader] = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __len__(self) -> int:
        return len(self.entries)

    def _read_exact(self, pos: int, size: int, what: str) -> bytes:
        data = self.source.read_at(pos, size)
        if len(data) < size:
            raise CabFormatError(f"truncated {what} at 0x{pos:X}")
        return data

    def _read_cstring(self, pos: int) -> Tuple[bytes, int]:
        raw = self.source.read_at(pos, _MAX_NAME + 1)
        end = raw.find(b"\x00")
        if end < 0:
            raise CabFormatError(f"unterminated string at 0x{pos:X}")
        return raw[:end], pos + end + 1

    def read(self) -> "CabFile":
        """Parse the header, folder and file tables.

        Raises
        ------
        CabFormatError
            If the signature is wrong or a table is cut short.
        """
        (magic, _r1, self.size, _r2, coff_files, _r3, _minor, _major,
         n_folders, n_files, self.flags, self.set_id, self.cabinet_index) = _CFHEADER.unpack(
            self._read_exact(self.offset, _CFHEADER.size, "CFHEADER"))
        if magic != CAB_MAGIC:
            raise CabFormatError(f"no CAB signature at 0x{self.offset:X}")

        pos = self.offset + _CFHEADER.size
        if self.flags & FLAG_RESERVE_PRESENT:
            cb_header, self.folder_reserve, self.data_reserve = _CFRESERVE.unpack(
                self._read_exact(pos, _CFRESERVE.size, "reserve sizes"))
            pos += _CFRESERVE.size
            self.header_reserve = self._read_exact(pos, cb_header, "header reserve") if cb_header else b""
            pos += cb_header
        if self.flags & FLAG_PREV_CABINET:
            cab, pos = self._read_cstring(pos)
            disk, pos = self._read_cstring(pos)
            self.prev_cabinet = (cab.decode("latin-1"), disk.decode("latin-1"))
        if self.flags & FLAG_NEXT_CABINET:
            cab, pos = self._read_cstring(pos)
            disk, pos = self._read_cstring(pos)
            self.next_cabinet = (cab.decode("latin-1"), disk.decode("latin-1"))

        self.folders = []
        for _ in range(n_folders):
            data_offset, blocks, comp = _CFFOLDER.unpack(self._read_exact(pos, _CFFOLDER.size, "CFFOLDER"))
            self.folders.append(CabFolder(data_offset, blocks, comp))
            pos += _CFFOLDER.size + self.folder_reserve

        self.entries = []
        self._by_name = {}
        pos = self.offset + coff_files
        for _ in range(n_files):
            size, folder_offset, folder, date, time, attribs = _CFFILE.unpack(
                self._read_exact(pos, _CFFILE.size, "CFFILE"))
            raw_name, pos = self._read_cstring(pos + _CFFILE.size)
            encoding = "utf-8" if attribs & ATTR_NAME_IS_UTF else "latin-1"
            name = raw_name.decode(encoding, errors="replace")
            entry = CabEntry(name, size, folder, folder_offset, date, time, attribs)
            self.entries.append(entry)
            self._by_name.setdefault(name.lower(), entry)
        return self

    def get_entry(self, name: str, case_insensitive: bool = True) -> Optional[CabEntry]:
        if case_insensitive:
            return self._by_name.get(name.lower())
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def open_file(self, entry: CabEntry) -> CabEntryStream:
        """Open a decompressing stream over ``entry``.

        Members are usually read in storage order, so the folder
        decompressor is kept and reused while the requested member lies
        at or after its current position.
        """
        if entry.continued:
            raise CabFormatError(f"{entry.name} spans another cabinet")
        if entry.folder_index >= len(self.folders):
            raise CabFormatError(f"{entry.name} refers to missing folder {entry.folder_index}")
        folder = self.folders[entry.folder_index]
        reader = self._reader
        if reader is None or reader.folder is not folder or reader.offset > entry.folder_offset:
            reader = _FolderReader(self, folder)
            self._reader = reader
        reader.skip(entry.folder_offset - reader.offset)
        return CabEntryStream(reader, entry.size)

    def close(self):
        self._reader = None
