"""Tests for the client session: local checks and response handling."""

import asyncio
import socket

import pytest

from hashdrop.transfer import FileSender, TransferOutcome, TransferStatus
from hashdrop.transfer.protocol import TransferHeader, encode_text
from hashdrop.transfer.sender import SendResult


def free_port() -> int:
    with socket.socket() as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


# ---------------------------------------------------------------------------
# Local validation (no connection is opened)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_file_fails_locally(tmp_path):
    result = await FileSender(port=free_port()).send(tmp_path / "nope.txt")

    assert not result.succeeded
    assert result.outcome is None
    assert result.error.startswith("File not found")


@pytest.mark.asyncio
async def test_empty_file_fails_locally(tmp_path):
    path = tmp_path / "empty.txt"
    path.touch()

    result = await FileSender(port=free_port()).send(path)

    assert result.error.startswith("File is empty")


@pytest.mark.asyncio
async def test_directory_fails_locally(tmp_path):
    result = await FileSender(port=free_port()).send(tmp_path)

    assert result.error.startswith("Not a regular file")


@pytest.mark.asyncio
async def test_file_over_local_limit_fails_locally(tmp_path):
    path = tmp_path / "big.bin"
    path.write_bytes(b"x" * 11)

    result = await FileSender(port=free_port(), max_file_size=10).send(path)

    assert result.error.startswith("File is too large")
    assert result.bytes_sent == 0


# ---------------------------------------------------------------------------
# Network failures and responses
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connection_refused(tmp_path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"hello")
    port = free_port()

    sender = FileSender(host='127.0.0.1', port=port, timeout=2.0)
    result = await sender.send(path)

    assert result.error.startswith(f"Could not connect to 127.0.0.1:{port}")
    assert sender.get_stats()['files_failed'] == 1


async def fake_receiver(response: str):
    """A receiver that reads the whole upload and answers ``response``."""

    async def handle(reader, writer):
        header = await TransferHeader.from_reader(reader)
        await reader.readexactly(header.file_size)
        writer.write(encode_text(response))
        await writer.drain()
        writer.close()

    return await asyncio.start_server(handle, '127.0.0.1', 0)


@pytest.mark.asyncio
async def test_unrecognized_response_is_generic_failure(tmp_path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"hello")
    server = await fake_receiver("HELLO")
    port = server.sockets[0].getsockname()[1]

    try:
        result = await FileSender(host='127.0.0.1', port=port, timeout=2.0).send(path)
    finally:
        server.close()
        await server.wait_closed()

    assert not result.succeeded
    assert result.outcome is None
    assert result.error.startswith("Unexpected server response")


@pytest.mark.asyncio
async def test_write_error_detail_reaches_caller(tmp_path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"hello")
    server = await fake_receiver("WRITE_ERROR: disk full")
    port = server.sockets[0].getsockname()[1]

    try:
        result = await FileSender(host='127.0.0.1', port=port, timeout=2.0).send(path)
    finally:
        server.close()
        await server.wait_closed()

    assert result.outcome == TransferOutcome.write_error("disk full")
    assert result.describe() == "Server could not store the file: disk full"
    assert result.bytes_sent == 5


@pytest.mark.asyncio
async def test_receiver_closing_without_response(tmp_path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"hello")

    async def handle(reader, writer):
        header = await TransferHeader.from_reader(reader)
        await reader.readexactly(header.file_size)
        writer.close()

    server = await asyncio.start_server(handle, '127.0.0.1', 0)
    port = server.sockets[0].getsockname()[1]
    try:
        result = await FileSender(host='127.0.0.1', port=port, timeout=2.0).send(path)
    finally:
        server.close()
        await server.wait_closed()

    assert result.error == "Server closed the connection without a response"


# ---------------------------------------------------------------------------
# Result descriptions
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("outcome, text", [
    (TransferOutcome.success(), "File transferred successfully"),
    (TransferOutcome.file_too_large(), "Server refused the file: it exceeds the size limit"),
    (TransferOutcome.incomplete(), "Server received an incomplete file"),
    (TransferOutcome.checksum_mismatch(), "Checksum mismatch: the file was corrupted in transit"),
    (TransferOutcome.rejected("server busy"), "Server rejected the connection: server busy"),
])
def test_describe_maps_every_status(tmp_path, outcome, text):
    result = SendResult(file_path=tmp_path / "x", outcome=outcome)
    assert result.describe() == text
    assert result.succeeded is (outcome.status is TransferStatus.SUCCESS)
