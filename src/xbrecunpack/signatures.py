import struct
from dataclasses import dataclass


@dataclass(frozen=True)
class ArchiveSignature:
    name: str
    header: bytes                  # compared whole, i.e. as one little-endian integer
    size_offset: int               # total archive size, relative to the header
    size_format: str = "<I"

    @property
    def size_len(self) -> int:
        return struct.calcsize(self.size_format)

    @property
    def consumed(self) -> int:
        # bytes already read once the size field has been decoded
        return self.size_offset + self.size_len


# Microsoft cabinet: "MSCF" followed by the zero reserved1 field, then cbCabinet.
CAB = ArchiveSignature(
    name="cab",
    header=b"MSCF\x00\x00\x00\x00",
    size_offset=8,
)
