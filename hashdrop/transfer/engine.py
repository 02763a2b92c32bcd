"""
Hashing Transfer Engine

Design Decision: Buffering Strategy
===================================

Options Considered:
1. Read the whole body into memory, then hash and write
   - Simple
   - Memory grows with file size

2. Stream through a temp file, hash afterwards
   - Bounded memory
   - Every byte is read from disk a second time

3. Stream through a fixed buffer, hash while copying
   - Bounded memory, single pass on the receive side
   - Length must be tracked by hand

Decision: Fixed 8KB buffer, incremental SHA-256
- Each read is capped to min(buffer_size, remaining) so the engine never
  consumes bytes past the declared size
- The digest is updated with exactly the bytes written
- The outcome is returned as a value, never raised

The sender cannot know the digest without reading the file first, so the send
side makes two passes: compute_file_digest() for the header, then send_file()
for the body. send_file() hashes again while sending so the caller can detect
a source that changed between the passes.
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Optional, Callable, Tuple

import aiofiles

from .protocol import TransferHeader, TransferOutcome

logger = logging.getLogger(__name__)

BUFFER_SIZE = 8192

# Progress callback type: (bytes_done, bytes_total)
ProgressCallback = Callable[[int, int], None]


async def _read_chunk(reader: asyncio.StreamReader, size: int,
                      timeout: Optional[float]) -> bytes:
    """
    Read up to ``size`` bytes.

    Returns b'' when the peer closed, reset, or went silent past the timeout.
    """
    try:
        return await asyncio.wait_for(reader.read(size), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Read timed out after {timeout}s")
        return b''
    except ConnectionError as e:
        logger.warning(f"Connection lost while reading: {e}")
        return b''


async def receive_file(reader: asyncio.StreamReader, destination: Path,
                       header: TransferHeader,
                       buffer_size: int = BUFFER_SIZE,
                       read_timeout: Optional[float] = None,
                       progress_callback: Optional[ProgressCallback] = None
                       ) -> TransferOutcome:
    """
    Copy exactly ``header.file_size`` bytes from the stream into a file.

    The destination is created (or truncated) before the first read. The
    caller owns deleting it when the outcome is not SUCCESS.

    Args:
        reader: Stream positioned at the first body byte
        destination: File to create
        header: Declared size and expected digest
        buffer_size: Largest single read
        read_timeout: Per-read timeout in seconds, None to wait forever
        progress_callback: Called with (bytes_received, file_size)

    Returns:
        SUCCESS, INCOMPLETE_TRANSFER, CHECKSUM_MISMATCH or WRITE_ERROR
    """
    digest = hashlib.sha256()
    remaining = header.file_size
    received = 0

    try:
        async with aiofiles.open(destination, 'wb') as f:
            while remaining > 0:
                chunk = await _read_chunk(
                    reader, min(buffer_size, remaining), read_timeout
                )
                if not chunk:
                    logger.warning(
                        f"Stream ended after {received:,} of "
                        f"{header.file_size:,} bytes"
                    )
                    return TransferOutcome.incomplete()

                await f.write(chunk)
                digest.update(chunk)
                remaining -= len(chunk)
                received += len(chunk)

                if progress_callback:
                    progress_callback(received, header.file_size)
    except OSError as e:
        logger.error(f"Failed writing {destination}: {e}")
        return TransferOutcome.write_error(str(e))

    actual = digest.hexdigest()
    if actual != header.checksum.lower():
        logger.warning(
            f"Checksum mismatch for {destination.name}: "
            f"expected {header.checksum[:16]}..., got {actual[:16]}..."
        )
        return TransferOutcome.checksum_mismatch()

    return TransferOutcome.success()


async def compute_file_digest(path: Path, buffer_size: int = BUFFER_SIZE) -> str:
    """Compute the SHA-256 hex digest of a file, reading in fixed chunks."""
    digest = hashlib.sha256()
    async with aiofiles.open(path, 'rb') as f:
        while True:
            chunk = await f.read(buffer_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


async def send_file(writer: asyncio.StreamWriter, path: Path, file_size: int,
                    buffer_size: int = BUFFER_SIZE,
                    write_timeout: Optional[float] = None,
                    progress_callback: Optional[ProgressCallback] = None
                    ) -> Tuple[int, str]:
    """
    Stream up to ``file_size`` bytes of a file onto the connection.

    Each chunk is drained before the next is read. Never sends more than the
    declared size, even if the file grew.

    Returns:
        (bytes_sent, hex digest of the bytes sent). bytes_sent is less than
        file_size only if the file shrank.

    Raises:
        asyncio.TimeoutError: if a drain exceeds write_timeout
        ConnectionError: if the receiver closed the connection
    """
    digest = hashlib.sha256()
    remaining = file_size
    sent = 0

    async with aiofiles.open(path, 'rb') as f:
        while remaining > 0:
            chunk = await f.read(min(buffer_size, remaining))
            if not chunk:
                logger.warning(
                    f"{path.name} ended after {sent:,} of {file_size:,} bytes"
                )
                break

            writer.write(chunk)
            await asyncio.wait_for(writer.drain(), timeout=write_timeout)
            digest.update(chunk)
            remaining -= len(chunk)
            sent += len(chunk)

            if progress_callback:
                progress_callback(sent, file_size)

    return sent, digest.hexdigest()
