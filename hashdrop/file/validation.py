"""
Pre-flight checks for files about to be sent.
"""

import os
from pathlib import Path


class SourceFileError(ValueError):
    """The local file cannot be sent."""


def validate_source(path: Path, max_file_size: int) -> int:
    """
    Check that a file can be sent without opening a connection.

    Returns:
        The file size in bytes

    Raises:
        SourceFileError: describing the first failed check
    """
    path = Path(path)

    if not path.exists():
        raise SourceFileError(f"File not found: {path}")
    if not path.is_file():
        raise SourceFileError(f"Not a regular file: {path}")
    if not os.access(path, os.R_OK):
        raise SourceFileError(f"File is not readable: {path}")

    size = path.stat().st_size
    if size == 0:
        raise SourceFileError(f"File is empty: {path}")
    if size > max_file_size:
        raise SourceFileError(
            f"File is too large: {size:,} bytes (limit {max_file_size:,})"
        )

    return size
