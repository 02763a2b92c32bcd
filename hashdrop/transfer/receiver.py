"""
File Receiver

Accepts connections, admits up to a fixed number at a time, and runs one
ConnectionWorker per admitted connection.

Connection lifecycle:
```
            accept
              |
        [admission] --full--> REJECTED: <reason> --> close
              |
      AWAITING_HEADER --closed/garbled--> (REJECTED or nothing) --> CLOSED
              |
         VALIDATING --too large--> FILE_TOO_LARGE --> CLOSED
              |
         RECEIVING --> VERIFYING --> RESPONDING --> CLOSED
```
A non-SUCCESS outcome deletes the partial file before the response is sent,
and the admission slot is released only after the worker has closed the
connection.
"""

import asyncio
import logging
import time
from collections import Counter
from enum import Enum
from pathlib import Path
from typing import Optional, Set, Tuple

import aiofiles.os

from .admission import AdmissionController
from .engine import BUFFER_SIZE, receive_file
from .protocol import (
    ConnectionClosedError, ProtocolError, TransferHeader, TransferOutcome,
    lingering_close, send_response
)
from ..file.naming import storage_path

logger = logging.getLogger(__name__)

# Bound on writing the response to a peer that stopped reading
RESPONSE_TIMEOUT = 10.0


class WorkerState(Enum):
    """Connection worker states."""
    AWAITING_HEADER = "awaiting_header"
    VALIDATING = "validating"
    RECEIVING = "receiving"
    VERIFYING = "verifying"
    RESPONDING = "responding"
    CLOSED = "closed"


class ConnectionWorker:
    """
    Runs the full request/response exchange for one connection.

    Owns the connection and the destination file for its whole lifetime.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 upload_dir: Path, max_file_size: int,
                 buffer_size: int = BUFFER_SIZE,
                 read_timeout: Optional[float] = None):
        self.reader = reader
        self.writer = writer
        self.upload_dir = Path(upload_dir)
        self.max_file_size = max_file_size
        self.buffer_size = buffer_size
        self.read_timeout = read_timeout

        self.state = WorkerState.AWAITING_HEADER
        self.header: Optional[TransferHeader] = None
        self.destination: Optional[Path] = None
        self.bytes_received = 0

    @property
    def peer(self) -> Tuple[str, int]:
        """Get remote peer address."""
        return self.writer.get_extra_info('peername')

    async def run(self) -> Optional[TransferOutcome]:
        """
        Handle the connection to completion.

        Returns:
            The outcome sent to the peer, or None if the peer vanished before
            a complete header arrived
        """
        start = time.monotonic()
        outcome: Optional[TransferOutcome] = None

        try:
            try:
                outcome = await self._process()
            except Exception as e:
                logger.exception(f"Unexpected error handling {self.peer}")
                outcome = TransferOutcome.write_error(str(e) or type(e).__name__)
            finally:
                if outcome is None or not outcome.succeeded:
                    await self._discard_partial()

            if outcome is not None:
                await self._respond(outcome)
        finally:
            self.state = WorkerState.CLOSED
            await lingering_close(self.reader, self.writer, self.peer)

        self._log_outcome(outcome, time.monotonic() - start)
        return outcome

    async def _process(self) -> Optional[TransferOutcome]:
        self.state = WorkerState.AWAITING_HEADER
        try:
            header = await asyncio.wait_for(
                TransferHeader.from_reader(self.reader),
                timeout=self.read_timeout
            )
        except ConnectionClosedError as e:
            logger.warning(f"{self.peer} closed before sending a full header: {e}")
            return None
        except ConnectionError as e:
            logger.warning(f"{self.peer} dropped during header exchange: {e}")
            return None
        except asyncio.TimeoutError:
            return TransferOutcome.rejected("timed out waiting for header")
        except ProtocolError as e:
            return TransferOutcome.rejected(f"malformed header: {e}")

        self.header = header
        self.state = WorkerState.VALIDATING

        if header.file_size < 0:
            return TransferOutcome.rejected(f"invalid file size {header.file_size}")
        if header.file_size > self.max_file_size:
            logger.info(
                f"{self.peer} offered {header.file_size:,} bytes, "
                f"limit is {self.max_file_size:,}"
            )
            return TransferOutcome.file_too_large()

        self.destination = storage_path(self.upload_dir, header.file_name)
        self.state = WorkerState.RECEIVING
        logger.debug(
            f"Receiving {header.file_name!r} ({header.file_size:,} bytes) "
            f"from {self.peer} into {self.destination.name}"
        )

        return await receive_file(
            self.reader,
            self.destination,
            header,
            buffer_size=self.buffer_size,
            read_timeout=self.read_timeout,
            progress_callback=self._on_progress,
        )

    def _on_progress(self, received: int, total: int):
        self.bytes_received = received
        if received == total:
            self.state = WorkerState.VERIFYING

    async def _discard_partial(self):
        """Delete the destination file if this worker created one."""
        if self.destination is None or not self.destination.exists():
            return
        try:
            await aiofiles.os.remove(self.destination)
            logger.info(f"Removed partial file {self.destination.name}")
        except OSError as e:
            logger.error(f"Could not remove partial file {self.destination}: {e}")

    async def _respond(self, outcome: TransferOutcome):
        """Send the response; a peer that already went away is not an error."""
        self.state = WorkerState.RESPONDING
        try:
            await asyncio.wait_for(
                send_response(self.writer, outcome),
                timeout=RESPONSE_TIMEOUT
            )
        except (ConnectionError, OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Could not deliver {outcome.status.value} to {self.peer}: {e}")

    def _log_outcome(self, outcome: Optional[TransferOutcome], elapsed: float):
        if outcome is None:
            logger.info(f"Connection from {self.peer} closed without a header")
            return

        name = self.destination.name if self.destination else '-'
        message = (
            f"{outcome.to_message()} from {self.peer}: {name} "
            f"({self.bytes_received:,} bytes in {elapsed:.2f}s)"
        )
        if outcome.succeeded:
            logger.info(message)
        else:
            logger.warning(message)


class TransferServer:
    """
    TCP server receiving one file per connection.

    The accept loop runs inside asyncio and never waits on a transfer: every
    admitted connection gets its own task.
    """

    def __init__(self, upload_dir: Path, host: str = '0.0.0.0', port: int = 9000,
                 max_file_size: int = 100 * 1024 * 1024,
                 max_concurrent_clients: int = 5,
                 buffer_size: int = BUFFER_SIZE,
                 read_timeout: Optional[float] = 300.0):
        self.upload_dir = Path(upload_dir)
        self.host = host
        self.port = port
        self.max_file_size = max_file_size
        self.buffer_size = buffer_size
        self.read_timeout = read_timeout

        self.admission = AdmissionController(max_concurrent_clients)
        self.server: Optional[asyncio.AbstractServer] = None
        self._workers: Set[asyncio.Task] = set()
        self._running = False

        # Statistics
        self.files_received = 0
        self.bytes_received = 0
        self.outcomes: Counter = Counter()

    @classmethod
    def from_config(cls, config) -> 'TransferServer':
        """Build a server from a Config."""
        return cls(
            upload_dir=config.upload_dir,
            host=config.host,
            port=config.port,
            max_file_size=config.max_file_size,
            max_concurrent_clients=config.max_concurrent_clients,
            buffer_size=config.buffer_size,
            read_timeout=config.read_timeout,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_connections(self) -> int:
        return self.admission.active

    @property
    def bound_port(self) -> int:
        """Port actually listened on (differs from ``port`` when it is 0)."""
        if self.server is None or not self.server.sockets:
            return self.port
        return self.server.sockets[0].getsockname()[1]

    async def start(self):
        """Start the transfer server."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port
        )
        self._running = True

        addr = self.server.sockets[0].getsockname()
        logger.info(
            f"Transfer server listening on {addr} "
            f"(max {self.admission.capacity} clients, upload dir {self.upload_dir})"
        )

    async def stop(self):
        """Stop accepting connections and wait for in-flight transfers."""
        self._running = False
        if self.server is None:
            return

        self.server.close()
        if self._workers:
            logger.info(f"Waiting for {len(self._workers)} transfer(s) to finish")
            await asyncio.gather(*self._workers, return_exceptions=True)
        await self.server.wait_closed()
        logger.info("Transfer server stopped")

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        peer = writer.get_extra_info('peername')

        if not self._running:
            await self._reject(reader, writer, peer, "server is shutting down")
            return

        if not self.admission.try_acquire():
            await self._reject(
                reader, writer, peer,
                f"server busy ({self.admission.capacity} active transfers)"
            )
            return

        logger.debug(
            f"Admitted {peer} ({self.admission.active}/{self.admission.capacity} active)"
        )
        task = asyncio.current_task()
        self._workers.add(task)
        try:
            worker = ConnectionWorker(
                reader, writer,
                upload_dir=self.upload_dir,
                max_file_size=self.max_file_size,
                buffer_size=self.buffer_size,
                read_timeout=self.read_timeout,
            )
            outcome = await worker.run()
            self._record(outcome, worker)
        finally:
            self._workers.discard(task)
            self.admission.release()

    async def _reject(self, reader: asyncio.StreamReader,
                      writer: asyncio.StreamWriter, peer, reason: str):
        """Answer REJECTED without decoding anything the peer sent."""
        logger.warning(f"Rejected {peer}: {reason}")
        self.outcomes['REJECTED'] += 1
        try:
            await asyncio.wait_for(
                send_response(writer, TransferOutcome.rejected(reason)),
                timeout=RESPONSE_TIMEOUT
            )
        except (ConnectionError, OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Could not deliver rejection to {peer}: {e}")
        finally:
            await lingering_close(reader, writer, peer)

    def _record(self, outcome: Optional[TransferOutcome], worker: ConnectionWorker):
        if outcome is None:
            self.outcomes['NO_HEADER'] += 1
            return
        self.outcomes[outcome.status.value] += 1
        if outcome.succeeded:
            self.files_received += 1
            self.bytes_received += worker.bytes_received

    def get_stats(self) -> dict:
        """Get receiver statistics."""
        return {
            'files_received': self.files_received,
            'bytes_received': self.bytes_received,
            'outcomes': dict(self.outcomes),
            'admission': self.admission.get_stats(),
            'port': self.bound_port,
        }
