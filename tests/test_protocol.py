"""Tests for the wire codec (header framing and response messages)."""

import asyncio
import struct

import pytest

from hashdrop.transfer.protocol import (
    ConnectionClosedError,
    ProtocolError,
    TransferHeader,
    TransferOutcome,
    TransferStatus,
    encode_text,
    read_response,
)

CHECKSUM = "ab" * 32


def make_reader(data: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


# ---------------------------------------------------------------------------
# Header encoding
# ---------------------------------------------------------------------------

def test_header_byte_layout():
    """Name and checksum carry a 2-byte length; size is 8-byte signed big-endian."""
    header = TransferHeader(file_name="notes.txt", file_size=12, checksum=CHECKSUM)

    expected = (
        b"\x00\x09notes.txt"
        + b"\x00\x00\x00\x00\x00\x00\x00\x0c"
        + b"\x00\x40" + CHECKSUM.encode("ascii")
    )
    assert header.to_bytes() == expected


def test_text_length_counts_utf8_bytes():
    encoded = encode_text("résumé.pdf")
    length = struct.unpack(">H", encoded[:2])[0]
    assert length == len("résumé.pdf".encode("utf-8")) == 12


def test_text_field_too_long():
    with pytest.raises(ProtocolError):
        encode_text("x" * 70000)


# ---------------------------------------------------------------------------
# Header decoding
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_header_decodes_and_leaves_body_unread():
    header = TransferHeader(file_name="résumé.pdf", file_size=5, checksum=CHECKSUM)
    reader = make_reader(header.to_bytes() + b"hello")

    decoded = await TransferHeader.from_reader(reader)

    assert decoded == header
    assert await reader.read() == b"hello"


@pytest.mark.asyncio
async def test_header_size_is_not_validated_by_codec():
    header = TransferHeader(file_name="a", file_size=-1, checksum="")
    decoded = await TransferHeader.from_reader(make_reader(header.to_bytes()))
    assert decoded.file_size == -1


@pytest.mark.asyncio
async def test_truncated_header_raises_connection_closed():
    data = TransferHeader("notes.txt", 12, CHECKSUM).to_bytes()

    with pytest.raises(ConnectionClosedError):
        await TransferHeader.from_reader(make_reader(data[:15]))


@pytest.mark.asyncio
async def test_empty_stream_raises_connection_closed():
    with pytest.raises(ConnectionClosedError):
        await TransferHeader.from_reader(make_reader(b""))


@pytest.mark.asyncio
async def test_invalid_utf8_name_is_protocol_error():
    data = b"\x00\x02\xff\xfe" + struct.pack(">q", 1) + encode_text(CHECKSUM)

    with pytest.raises(ProtocolError) as exc_info:
        await TransferHeader.from_reader(make_reader(data))
    assert not isinstance(exc_info.value, ConnectionClosedError)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

def test_plain_outcome_messages():
    assert TransferOutcome.success().to_message() == "SUCCESS"
    assert TransferOutcome.file_too_large().to_message() == "FILE_TOO_LARGE"
    assert TransferOutcome.incomplete().to_message() == "INCOMPLETE_TRANSFER"
    assert TransferOutcome.checksum_mismatch().to_message() == "CHECKSUM_MISMATCH"


def test_detailed_outcome_messages():
    assert TransferOutcome.write_error("disk full").to_message() == "WRITE_ERROR: disk full"
    assert TransferOutcome.rejected("busy").to_message() == "REJECTED: busy"


def test_parse_detailed_response_keeps_detail():
    outcome = TransferOutcome.from_message("WRITE_ERROR: [Errno 28] No space left: x")
    assert outcome.status is TransferStatus.WRITE_ERROR
    assert outcome.detail == "[Errno 28] No space left: x"


@pytest.mark.parametrize("message", ["HELLO", "", "SUCCESS: extra", "REJECTED"])
def test_unrecognized_response(message):
    with pytest.raises(ProtocolError):
        TransferOutcome.from_message(message)


@pytest.mark.asyncio
async def test_read_response_from_stream():
    reader = make_reader(encode_text("CHECKSUM_MISMATCH"))
    outcome = await read_response(reader)
    assert outcome == TransferOutcome.checksum_mismatch()
    assert not outcome.succeeded
