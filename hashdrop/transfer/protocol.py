"""
File Transfer Protocol

Design Decision: Wire Format
============================

Options Considered:
1. JSON header with a length prefix
   - Self-describing, easy to extend
   - Variable shape, needs a schema check on every field

2. Fixed-order binary header
   - Exact, no parsing ambiguity
   - Adding a field means a new protocol

3. HTTP multipart upload
   - Standard tooling
   - Heavy, and the body has no declared length up front

Decision: Fixed-order binary header followed by raw bytes
- One exchange per connection, no message types needed
- The declared size is the only body delimiter, no end marker
- Text fields use a 2-byte length prefix (same layout as Java's writeUTF)

Exchange:
```
Sender -> Receiver
+-------------+-----------+---------------+-------------+-----------------+
| name len 2B | name utf8 | file size 8B  | sum len 2B  | sum hex (64)    |
+-------------+-----------+---------------+-------------+-----------------+
| file content, exactly <file size> bytes                                 |
+-------------------------------------------------------------------------+

Receiver -> Sender
+-------------+-----------------------------------------------+
| len 2B      | "SUCCESS" | "FILE_TOO_LARGE" | ... (utf8)     |
+-------------+-----------------------------------------------+
```
All integers are big-endian; the file size is signed.
"""

import asyncio
import struct
import logging
from enum import Enum
from typing import Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Length prefix for text fields
TEXT_LENGTH_FORMAT = '>H'
TEXT_LENGTH_SIZE = struct.calcsize(TEXT_LENGTH_FORMAT)
MAX_TEXT_BYTES = 0xFFFF

# Declared file size
FILE_SIZE_FORMAT = '>q'
FILE_SIZE_SIZE = struct.calcsize(FILE_SIZE_FORMAT)

CHECKSUM_HEX_LENGTH = 64

# Separator between a status code and its free-text detail
DETAIL_SEPARATOR = ': '

# Draining unread input before close
LINGER_TIMEOUT = 2.0
DISCARD_CHUNK = 64 * 1024


class ProtocolError(Exception):
    """A message on the stream could not be framed or decoded."""


class ConnectionClosedError(ProtocolError):
    """The stream ended before a complete field was read."""


class TransferStatus(Enum):
    """Terminal outcome codes, sent back as the response message."""
    SUCCESS = "SUCCESS"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INCOMPLETE_TRANSFER = "INCOMPLETE_TRANSFER"
    CHECKSUM_MISMATCH = "CHECKSUM_MISMATCH"
    WRITE_ERROR = "WRITE_ERROR"
    REJECTED = "REJECTED"


# Statuses whose response carries "<CODE>: <detail>"
DETAILED_STATUSES = frozenset({TransferStatus.WRITE_ERROR, TransferStatus.REJECTED})


@dataclass(frozen=True)
class TransferOutcome:
    """
    Result of one connection attempt.

    Produced exactly once per connection and sent to the sender as the
    response message. ``detail`` is only meaningful for WRITE_ERROR and
    REJECTED.
    """
    status: TransferStatus
    detail: str = ''

    @property
    def succeeded(self) -> bool:
        return self.status is TransferStatus.SUCCESS

    @classmethod
    def success(cls) -> 'TransferOutcome':
        return cls(TransferStatus.SUCCESS)

    @classmethod
    def file_too_large(cls) -> 'TransferOutcome':
        return cls(TransferStatus.FILE_TOO_LARGE)

    @classmethod
    def incomplete(cls) -> 'TransferOutcome':
        return cls(TransferStatus.INCOMPLETE_TRANSFER)

    @classmethod
    def checksum_mismatch(cls) -> 'TransferOutcome':
        return cls(TransferStatus.CHECKSUM_MISMATCH)

    @classmethod
    def write_error(cls, detail: str) -> 'TransferOutcome':
        return cls(TransferStatus.WRITE_ERROR, detail)

    @classmethod
    def rejected(cls, reason: str) -> 'TransferOutcome':
        return cls(TransferStatus.REJECTED, reason)

    def to_message(self) -> str:
        """Render the response text for this outcome."""
        if self.status in DETAILED_STATUSES:
            return f"{self.status.value}{DETAIL_SEPARATOR}{self.detail}"
        return self.status.value

    @classmethod
    def from_message(cls, message: str) -> 'TransferOutcome':
        """
        Parse a response text.

        Raises:
            ProtocolError: if the text is not one of the known responses
        """
        for status in TransferStatus:
            if status in DETAILED_STATUSES:
                prefix = status.value + DETAIL_SEPARATOR
                if message.startswith(prefix):
                    return cls(status, message[len(prefix):])
            elif message == status.value:
                return cls(status)
        raise ProtocolError(f"Unrecognized response: {message!r}")


def encode_text(text: str) -> bytes:
    """Encode a length-prefixed UTF-8 text field."""
    data = text.encode('utf-8')
    if len(data) > MAX_TEXT_BYTES:
        raise ProtocolError(f"Text field too long: {len(data)} bytes")
    return struct.pack(TEXT_LENGTH_FORMAT, len(data)) + data


async def _read_exactly(reader: asyncio.StreamReader, n: int) -> bytes:
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as e:
        raise ConnectionClosedError(
            f"Stream closed after {len(e.partial)} of {n} bytes"
        ) from e


async def read_text(reader: asyncio.StreamReader) -> str:
    """Read a length-prefixed UTF-8 text field."""
    length_bytes = await _read_exactly(reader, TEXT_LENGTH_SIZE)
    length = struct.unpack(TEXT_LENGTH_FORMAT, length_bytes)[0]
    data = await _read_exactly(reader, length) if length > 0 else b''
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Text field is not valid UTF-8: {e}") from e


@dataclass(frozen=True)
class TransferHeader:
    """
    Metadata sent before the file content.

    The file name is untrusted client input. The codec only frames it;
    sanitizing is left to the receiver.
    """
    file_name: str
    file_size: int
    checksum: str

    def to_bytes(self) -> bytes:
        """Serialize header to bytes."""
        return (
            encode_text(self.file_name) +
            struct.pack(FILE_SIZE_FORMAT, self.file_size) +
            encode_text(self.checksum)
        )

    @classmethod
    async def from_reader(cls, reader: asyncio.StreamReader) -> 'TransferHeader':
        """
        Read a header from a stream.

        Raises:
            ConnectionClosedError: if the stream ends mid-header
            ProtocolError: if a field cannot be decoded
        """
        file_name = await read_text(reader)
        size_bytes = await _read_exactly(reader, FILE_SIZE_SIZE)
        file_size = struct.unpack(FILE_SIZE_FORMAT, size_bytes)[0]
        checksum = await read_text(reader)
        return cls(file_name=file_name, file_size=file_size, checksum=checksum)


async def send_response(writer: asyncio.StreamWriter, outcome: TransferOutcome):
    """Write the single response message for a connection."""
    writer.write(encode_text(outcome.to_message()))
    await writer.drain()


async def read_response(reader: asyncio.StreamReader) -> TransferOutcome:
    """
    Read and parse the receiver's response.

    Raises:
        ConnectionClosedError: if the receiver closed without answering
        ProtocolError: if the response is not recognized
    """
    message = await read_text(reader)
    return TransferOutcome.from_message(message)


async def close_writer(writer: asyncio.StreamWriter, peer: Optional[object] = None):
    """Close a stream writer, ignoring errors from an already broken socket."""
    try:
        writer.close()
        await writer.wait_closed()
    except (ConnectionError, OSError) as e:
        logger.debug(f"Error closing connection {peer}: {e}")


async def lingering_close(reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                          peer: Optional[object] = None,
                          timeout: float = LINGER_TIMEOUT):
    """
    Half-close, discard what the peer is still sending, then close.

    Closing with unread input makes the kernel answer with RST, which can
    destroy a response the peer has not read yet. Discarding stops at EOF or
    after ``timeout`` seconds, whichever comes first.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    try:
        if writer.can_write_eof():
            writer.write_eof()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            data = await asyncio.wait_for(reader.read(DISCARD_CHUNK), timeout=remaining)
            if not data:
                break
    except (ConnectionError, OSError, asyncio.TimeoutError) as e:
        logger.debug(f"Linger on {peer} ended: {type(e).__name__}")
    finally:
        await close_writer(writer, peer)
