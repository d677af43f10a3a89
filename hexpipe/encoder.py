"""Block-wise hexadecimal encoding of file content into channel batches.

Each Block of ``block_size`` bytes becomes one lowercase hex record followed by
``\\n``. Records for one read buffer are joined and written in a single call;
bytes that do not fill a Block are carried into the next read and, at end of
file, written as one shorter record.
"""

from __future__ import annotations

import binascii
import logging
from typing import BinaryIO

from hexpipe.channel import ChannelEndpoint
from hexpipe.errors import FileOpenError, FileReadError
from hexpipe.schema import DEFAULT_BLOCK_SIZE, DEFAULT_READ_BUFFER_SIZE, EncodeResult

RECORD_DELIMITER = b"\n"

logger = logging.getLogger(__name__)


def encode_blocks(data: bytes, block_size: int) -> tuple[bytes, bytes]:
    """Split ``data`` into full blocks and encode them.

    Returns the batch of newline-terminated records and the leftover bytes
    that did not fill a block.
    """
    full = len(data) - len(data) % block_size
    if not full:
        return b"", data

    hexed = binascii.hexlify(memoryview(data)[:full])
    width = block_size * 2
    records = [hexed[i : i + width] for i in range(0, len(hexed), width)]
    records.append(b"")
    return RECORD_DELIMITER.join(records), data[full:]


def encode_record(data: bytes) -> bytes:
    """Encode ``data`` as a single record regardless of its length."""
    return binascii.hexlify(data) + RECORD_DELIMITER


class HexEncoder:
    """Stateless configuration for turning files into hex record batches.

    Leftover bytes live only inside a single :meth:`encode_stream` call, so one
    encoder can be shared by every worker.
    """

    def __init__(
        self,
        block_size: int = DEFAULT_BLOCK_SIZE,
        read_buffer_size: int = DEFAULT_READ_BUFFER_SIZE,
    ):
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        if read_buffer_size <= 0:
            raise ValueError("read_buffer_size must be positive")
        self.block_size = block_size
        self.read_buffer_size = read_buffer_size

    def encode_stream(
        self, source: BinaryIO, channel: ChannelEndpoint, name: str = "<stream>"
    ) -> EncodeResult:
        """Consume ``source`` to EOF, writing one batch per read.

        A failing read raises FileReadError with the counters gathered so far;
        batches already written are not taken back. Channel errors propagate.
        """
        result = EncodeResult()
        leftover = b""

        while True:
            try:
                buf = source.read(self.read_buffer_size)
            except OSError as exc:
                result.truncated = True
                raise FileReadError(name, exc, result) from exc
            if not buf:
                break

            result.bytes_read += len(buf)
            data = leftover + buf if leftover else buf
            batch, leftover = encode_blocks(data, self.block_size)
            if batch:
                channel.write(batch)
                result.batches += 1
                result.records += (len(data) - len(leftover)) // self.block_size

        if leftover:
            channel.write(encode_record(leftover))
            result.batches += 1
            result.records += 1

        return result

    def encode_file(self, path: str, channel: ChannelEndpoint) -> EncodeResult:
        """Open ``path`` and stream it to ``channel`` as one uninterrupted unit.

        The channel's writer lane is held from the first read to the last
        write, so concurrent workers never interleave records of two files.
        """
        try:
            source = open(path, "rb")
        except OSError as exc:
            raise FileOpenError(path, exc) from exc

        with source, channel.exclusive():
            result = self.encode_stream(source, channel, name=path)

        logger.debug(
            "Encoded %s: %d bytes, %d records in %d batch(es)",
            path,
            result.bytes_read,
            result.records,
            result.batches,
        )
        return result
