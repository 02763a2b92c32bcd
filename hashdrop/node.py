"""
Receiver Node - Main Controller

Owns the process-level pieces around the transfer server:
- Upload directory bootstrap
- Server start/stop
- Shutdown on SIGINT/SIGTERM, letting in-flight transfers finish
"""

import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Optional

from .config import Config
from .transfer import TransferServer

logger = logging.getLogger(__name__)


class ReceiverNode:
    """
    A complete receiving endpoint.

    Typical use:
        node = ReceiverNode(config)
        await node.run()      # until SIGINT/SIGTERM or request_stop()
    """

    def __init__(self, config: Config = None):
        self.config = config or Config()

        # Create upload directory
        self.upload_dir = Path(self.config.upload_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

        self.server = TransferServer.from_config(self.config)

        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        return self.server.bound_port

    async def start(self):
        """Start accepting transfers."""
        if self._running:
            return

        self._stop_event = asyncio.Event()
        await self.server.start()
        self._running = True

        logger.info("Receiver node started")
        logger.info(f"  Port: {self.port}")
        logger.info(f"  Upload Dir: {self.upload_dir.resolve()}")
        logger.info(f"  Max File Size: {self.config.max_file_size:,} bytes")
        logger.info(f"  Max Clients: {self.config.max_concurrent_clients}")

    async def stop(self):
        """Stop accepting and wait for in-flight transfers."""
        if not self._running:
            return

        logger.info("Stopping receiver node...")
        self._running = False
        await self.server.stop()
        logger.info("Receiver node stopped")

    def request_stop(self):
        """Ask run() to return. Safe to call from a signal handler."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self):
        """
        Run until a shutdown is requested.

        The stop flag is checked every ``accept_poll_interval`` seconds.
        """
        await self.start()
        self._install_signal_handlers()

        try:
            while not self._stop_event.is_set():
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.config.accept_poll_interval
                    )
        finally:
            self._remove_signal_handlers()
            await self.stop()

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_stop)

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)

    def get_stats(self) -> dict:
        """Get complete node statistics."""
        return {
            'running': self._running,
            'upload_dir': str(self.upload_dir),
            'server': self.server.get_stats(),
        }


async def run_node(config: Config = None):
    """
    Run a receiver node (convenience function).

    Starts the node and runs until interrupted.
    """
    node = ReceiverNode(config)
    await node.run()
    return node
