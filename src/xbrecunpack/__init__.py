"""
XbRecUnpack core package.

This package bundles together the scanning, manifest parsing, CAB
reading and extraction components of the recovery unpacker. To avoid
eager importing of heavy dependencies (such as PySide6) the modules
are import-light. When adding new top-level exports be careful not to
import GUI frameworks here.
"""

# Re-export common classes for convenience
from .cabfile import CabEntry, CabFile
from .errors import RecoveryError
from .parser import Action, Manifest, ManifestEntry, parse_manifest
from .rawio import ByteSource, FileSource, MemorySource, open_source
from .recovery import ExtractResult, RemoteRecovery
from .scanner import HeaderScanner

__all__ = [
    'Action',
    'ByteSource',
    'CabEntry',
    'CabFile',
    'ExtractResult',
    'FileSource',
    'HeaderScanner',
    'Manifest',
    'ManifestEntry',
    'MemorySource',
    'RecoveryError',
    'RemoteRecovery',
    'open_source',
    'parse_manifest',
]
