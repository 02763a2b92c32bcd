"""
Transfer Module - File Send/Receive

Handles the TCP exchange that moves one file per connection.
"""

from .protocol import (
    TransferHeader,
    TransferOutcome,
    TransferStatus,
    ProtocolError,
    ConnectionClosedError,
)
from .admission import AdmissionController
from .receiver import ConnectionWorker, TransferServer, WorkerState
from .sender import FileSender, SendResult

__all__ = [
    'TransferHeader',
    'TransferOutcome',
    'TransferStatus',
    'ProtocolError',
    'ConnectionClosedError',
    'AdmissionController',
    'ConnectionWorker',
    'TransferServer',
    'WorkerState',
    'FileSender',
    'SendResult',
]
