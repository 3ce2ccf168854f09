"""
Exception hierarchy for the recovery unpacker.

Everything raised on purpose by this package derives from
:class:`RecoveryError` so front-ends can report a failed pass with a
single ``except`` clause. File system errors are not wrapped; they
surface as the ``OSError`` the operating system produced.
"""


class RecoveryError(Exception):
    """Base exception for all recovery-related errors."""
    pass


class SignatureNotFoundError(RecoveryError):
    """Raised when the image does not contain enough CAB signatures."""

    def __init__(self, message: str, found: int = 0):
        super().__init__(message)
        self.found = found


class ArchiveError(RecoveryError):
    """Raised when an embedded archive cannot be opened or read."""
    pass


class CabFormatError(ArchiveError):
    """Raised when CAB structures or data blocks are malformed."""
    pass


class UnsupportedCompressionError(CabFormatError):
    """Raised for folder compression methods the reader cannot decode."""

    def __init__(self, message: str, method: int = None):
        super().__init__(message)
        self.method = method


class MetaArchiveError(RecoveryError):
    """Raised when the meta-archive holding the manifest is unreadable."""
    pass


class ManifestError(RecoveryError):
    """Raised when manifest.csv is missing, unreadable or empty."""
    pass


class MissingArchiveError(RecoveryError):
    """Raised when extraction needs a continuation archive that does not exist."""

    def __init__(self, message: str, archive_index: int = None):
        super().__init__(message)
        self.archive_index = archive_index


class UnsafePathError(RecoveryError):
    """Raised when a manifest path would land outside the output tree."""
    pass
