"""
File Sender

Design Decision: Send Strategy
==============================

Options Considered:
1. Hash while sending, put the digest in a trailer
   - One pass over the file
   - The receiver cannot know the expected digest until the end, and the
     header is no longer the whole contract

2. Read the file into memory, hash, then send
   - One disk read
   - Memory grows with file size

3. Two passes: hash the file, then stream it
   - Header carries the digest up front
   - Costs one extra sequential read of the file

Decision: Two passes
- Pass one computes the SHA-256 for the header
- Pass two streams the bytes and hashes them again, so a file that changed
  in between is caught locally instead of silently mismatching

Send Flow:
1. Validate locally (exists, regular, readable, non-empty, within limit)
2. Compute digest
3. Connect (fresh connection per file, never reused)
4. Send header, then exactly file_size bytes
5. Read the single response and map it to a SendResult
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Iterable

from .engine import BUFFER_SIZE, ProgressCallback, compute_file_digest, send_file
from .protocol import (
    ConnectionClosedError, ProtocolError, TransferHeader, TransferOutcome,
    TransferStatus, close_writer, read_response
)
from ..file.validation import SourceFileError, validate_source

logger = logging.getLogger(__name__)


# User-facing text per response code
OUTCOME_MESSAGES = {
    TransferStatus.SUCCESS: "File transferred successfully",
    TransferStatus.FILE_TOO_LARGE: "Server refused the file: it exceeds the size limit",
    TransferStatus.INCOMPLETE_TRANSFER: "Server received an incomplete file",
    TransferStatus.CHECKSUM_MISMATCH: "Checksum mismatch: the file was corrupted in transit",
    TransferStatus.WRITE_ERROR: "Server could not store the file",
    TransferStatus.REJECTED: "Server rejected the connection",
}


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


@dataclass
class SendResult:
    """Result of sending one file."""
    file_path: Path
    outcome: Optional[TransferOutcome] = None
    error: Optional[str] = None
    file_size: int = 0
    checksum: str = ''
    bytes_sent: int = 0
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome is not None and self.outcome.succeeded

    @property
    def speed_bytes_per_sec(self) -> float:
        if self.elapsed_seconds == 0:
            return 0
        return self.bytes_sent / self.elapsed_seconds

    def describe(self) -> str:
        """Human-readable summary of what happened."""
        if self.outcome is None:
            return self.error or "Transfer failed"
        message = OUTCOME_MESSAGES[self.outcome.status]
        if self.outcome.detail:
            message = f"{message}: {self.outcome.detail}"
        return message


class FileSender:
    """
    Sends files to a receiver, one connection per file.

    Transfers run strictly one after another; nothing is retried.

    ``timeout`` bounds each step (connect, each drain, the wait for the
    response) rather than the whole exchange, so large files on slow links
    are not cut off.
    """

    def __init__(self, host: str = '127.0.0.1', port: int = 9000,
                 max_file_size: int = 100 * 1024 * 1024,
                 buffer_size: int = BUFFER_SIZE,
                 timeout: float = 30.0):
        self.host = host
        self.port = port
        self.max_file_size = max_file_size
        self.buffer_size = buffer_size
        self.timeout = timeout

        # Statistics
        self.files_sent = 0
        self.files_failed = 0
        self.total_bytes = 0

    @classmethod
    def from_config(cls, config) -> 'FileSender':
        """Build a sender from a Config."""
        return cls(
            host=config.server_host,
            port=config.port,
            max_file_size=config.max_file_size,
            buffer_size=config.buffer_size,
            timeout=config.client_timeout,
        )

    async def send(self, path: Path,
                   progress_callback: Optional[ProgressCallback] = None) -> SendResult:
        """
        Send one file.

        Args:
            path: Local file to send
            progress_callback: Called with (bytes_sent, file_size)

        Returns:
            SendResult; check ``succeeded`` and ``describe()``
        """
        path = Path(path)
        result = SendResult(file_path=path)
        start = time.monotonic()

        try:
            await self._send(path, result, progress_callback)
        finally:
            result.elapsed_seconds = time.monotonic() - start

        if result.succeeded:
            self.files_sent += 1
            self.total_bytes += result.bytes_sent
            logger.info(
                f"Sent {path.name} ({result.bytes_sent:,} bytes "
                f"in {result.elapsed_seconds:.2f}s)"
            )
        else:
            self.files_failed += 1
            logger.warning(f"Sending {path.name} failed: {result.describe()}")

        return result

    async def send_many(self, paths: Iterable[Path],
                        progress_callback: Optional[ProgressCallback] = None
                        ) -> List[SendResult]:
        """Send several files sequentially, one connection each."""
        results = []
        for path in paths:
            results.append(await self.send(path, progress_callback))
        return results

    async def _send(self, path: Path, result: SendResult,
                    progress_callback: Optional[ProgressCallback]):
        try:
            result.file_size = validate_source(path, self.max_file_size)
        except SourceFileError as e:
            result.error = str(e)
            return

        try:
            result.checksum = await compute_file_digest(path, self.buffer_size)
        except OSError as e:
            result.error = f"Could not read {path}: {e}"
            return

        header = TransferHeader(
            file_name=path.name,
            file_size=result.file_size,
            checksum=result.checksum,
        )

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            result.error = f"Could not connect to {self.host}:{self.port}: {_describe(e)}"
            return

        try:
            await self._exchange(reader, writer, path, header, result, progress_callback)
        finally:
            await close_writer(writer, (self.host, self.port))

    async def _exchange(self, reader: asyncio.StreamReader,
                        writer: asyncio.StreamWriter, path: Path,
                        header: TransferHeader, result: SendResult,
                        progress_callback: Optional[ProgressCallback]):
        # Response is read while the body goes out: FILE_TOO_LARGE and REJECTED
        # can arrive early, followed by a hang-up.
        sending = asyncio.ensure_future(
            self._stream(writer, path, header, result, progress_callback)
        )
        response = asyncio.ensure_future(read_response(reader))

        try:
            await asyncio.wait({sending, response}, return_when=asyncio.FIRST_COMPLETED)

            send_error: Optional[BaseException] = None
            if not sending.done():
                logger.debug(
                    f"{self.host}:{self.port} answered after {result.bytes_sent:,} "
                    f"of {header.file_size:,} bytes"
                )
                sending.cancel()
            elif sending.exception() is None:
                sent, digest = sending.result()
                result.bytes_sent = sent
                if sent < header.file_size:
                    # Closing now gives the receiver a short stream
                    result.error = f"{path.name} shrank while being sent"
                    return
                if digest != header.checksum:
                    logger.warning(f"{path.name} changed while being sent")
            else:
                send_error = sending.exception()
                if isinstance(send_error, (ConnectionError, asyncio.TimeoutError)):
                    # A response may still be buffered
                    logger.debug(
                        f"Send to {self.host}:{self.port} interrupted: {_describe(send_error)}"
                    )
                elif isinstance(send_error, OSError):
                    result.error = f"Could not read {path}: {send_error}"
                    return
                else:
                    raise send_error

            await self._read_outcome(response, result, send_error)
        finally:
            for task in (sending, response):
                task.cancel()
            await asyncio.gather(sending, response, return_exceptions=True)

    async def _stream(self, writer: asyncio.StreamWriter, path: Path,
                      header: TransferHeader, result: SendResult,
                      progress_callback: Optional[ProgressCallback]):
        """Write the header and the body; returns (bytes_sent, digest)."""
        def on_progress(sent: int, total: int):
            result.bytes_sent = sent
            if progress_callback:
                progress_callback(sent, total)

        writer.write(header.to_bytes())
        await asyncio.wait_for(writer.drain(), timeout=self.timeout)

        return await send_file(
            writer, path, header.file_size,
            buffer_size=self.buffer_size,
            write_timeout=self.timeout,
            progress_callback=on_progress,
        )

    async def _read_outcome(self, response: asyncio.Future, result: SendResult,
                            send_error: Optional[BaseException]):
        try:
            result.outcome = await asyncio.wait_for(response, timeout=self.timeout)
        except ConnectionClosedError:
            if send_error is not None:
                result.error = f"Connection lost while sending: {_describe(send_error)}"
            else:
                result.error = "Server closed the connection without a response"
        except ProtocolError as e:
            result.error = f"Unexpected server response: {e}"
        except asyncio.TimeoutError:
            result.error = "Timed out waiting for the server response"
        except ConnectionError as e:
            result.error = f"Connection lost waiting for response: {_describe(e)}"

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            'files_sent': self.files_sent,
            'files_failed': self.files_failed,
            'total_bytes': self.total_bytes,
        }
