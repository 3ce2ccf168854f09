import os
from typing import Optional, Union


class ByteSource:
    """Random-access, read-only view over the bytes of a recovery image.

    The scanner and the CAB reader only ever call :meth:`read_at`, so a
    file on disk and a buffer held in memory are interchangeable.
    """

    @property
    def length(self) -> int:
        raise NotImplementedError()

    def read_at(self, offset: int, size: int) -> bytes:
        """Return up to ``size`` bytes starting at ``offset``.

        Fewer bytes are returned at the end of the source; an offset at
        or past the end yields ``b""``.
        """
        raise NotImplementedError()

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FileSource(ByteSource):
    def __init__(self, path: str):
        self.path = path
        self.fd = None  # type: Optional[int]
        self._fin = None
        flags = os.O_RDONLY
        if hasattr(os, 'O_BINARY'):
            flags |= os.O_BINARY  # type: ignore
        try:
            self.fd = os.open(self.path, flags)
        except OSError as e:
            raise OSError(e.errno, f"Failed to open recovery image: {self.path}: {e.strerror}") from e
        if not hasattr(os, 'pread'):
            self._fin = os.fdopen(os.dup(self.fd), 'rb')
        self._length = os.fstat(self.fd).st_size

    @property
    def length(self) -> int:
        return self._length

    def read_at(self, offset: int, size: int) -> bytes:
        if self.fd is None:
            raise ValueError("read from closed source")
        if size <= 0 or offset >= self._length:
            return b""
        if self._fin is None:
            try:
                return os.pread(self.fd, size, offset)
            except OSError as e:
                raise OSError(e.errno, f"pread failed at 0x{offset:x}: {e.strerror}") from e
        self._fin.seek(offset)
        return self._fin.read(size)

    def close(self):
        if self._fin is not None:
            self._fin.close()
            self._fin = None
        if getattr(self, 'fd', None) is not None:
            os.close(self.fd)
            self.fd = None

    def __del__(self):
        try:
            self.close()
        except OSError:
            pass


class MemorySource(ByteSource):
    def __init__(self, data: Union[bytes, bytearray, memoryview]):
        self._data = bytes(data)

    @property
    def length(self) -> int:
        return len(self._data)

    def read_at(self, offset: int, size: int) -> bytes:
        if size <= 0 or offset < 0:
            return b""
        return self._data[offset:offset + size]


def open_source(src: Union[str, os.PathLike, bytes, bytearray, memoryview, ByteSource]) -> ByteSource:
    """Wrap a path, a byte buffer or an existing source as a :class:`ByteSource`."""
    if isinstance(src, ByteSource):
        return src
    if isinstance(src, (bytes, bytearray, memoryview)):
        return MemorySource(src)
    return FileSource(os.fspath(src))
