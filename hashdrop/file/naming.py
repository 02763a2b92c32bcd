"""
Storage Name Derivation

Design Decision: Naming Strategy
================================

Options Considered:
1. Keep the client's name, reject anything suspicious
   - Readable, but rejects legitimate uploads

2. Content-addressed names (digest as file name)
   - Collision-free, but the original name is lost

3. Sanitize the client's name and add a timestamp
   - Readable and confined to the upload directory
   - Collides when the same name arrives twice within one second

Decision: Sanitize + timestamp
- Every character outside [A-Za-z0-9._-] becomes '_', which removes path
  separators, so the result is always a single path component
- A yyyyMMdd_HHmmss stamp goes before the final extension
- Two uploads of the same name in the same second share one stored name and
  the later one overwrites the earlier

Example:
```
notes.txt          -> notes_20240115_103045.txt
../../etc/passwd   -> .._._20240115_103045._etc_passwd
.bashrc            -> .bashrc_20240115_103045
my report.pdf      -> my_report_20240115_103045.pdf
```
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Optional

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]')

TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'

# Most filesystems cap a single name at 255 bytes
MAX_NAME_LENGTH = 255

EMPTY_NAME = 'unnamed'


def sanitize_name(file_name: str) -> str:
    """Replace every character outside [A-Za-z0-9._-] with '_'."""
    return _UNSAFE_CHARS.sub('_', file_name) or EMPTY_NAME


def derive_storage_name(file_name: str, now: Optional[datetime] = None) -> str:
    """
    Map an untrusted file name to a safe storage name.

    Args:
        file_name: Name as sent by the client
        now: Timestamp to embed (default: current local time)

    Returns:
        A single path component containing only [A-Za-z0-9._-]
    """
    safe = sanitize_name(file_name)
    stamp = '_' + (now or datetime.now()).strftime(TIMESTAMP_FORMAT)

    dot = safe.rfind('.')
    if dot > 0:
        stem, ext = safe[:dot], safe[dot:]
    else:
        stem, ext = safe, ''

    # Trim the extension only if it alone would not fit
    budget = MAX_NAME_LENGTH - len(stamp)
    ext = ext[:budget - 1]
    stem = stem[:budget - len(ext)]

    return f"{stem}{stamp}{ext}"


def storage_path(upload_dir: Path, file_name: str,
                 now: Optional[datetime] = None) -> Path:
    """
    Resolve the destination path for a client file name.

    Raises:
        ValueError: if the derived path would leave upload_dir
    """
    root = Path(upload_dir).resolve()
    path = root / derive_storage_name(file_name, now)
    if path.parent != root:
        raise ValueError(f"Derived path escapes upload directory: {path}")
    return path
