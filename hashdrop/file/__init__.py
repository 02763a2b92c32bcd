"""
File Module - Naming and Validation

Maps client file names to safe storage names and checks local files before
they are sent.
"""

from .naming import derive_storage_name, sanitize_name, storage_path
from .validation import SourceFileError, validate_source

__all__ = [
    'derive_storage_name',
    'sanitize_name',
    'storage_path',
    'SourceFileError',
    'validate_source',
]
