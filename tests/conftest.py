from __future__ import annotations

import time

import pytest

from hexpipe.channel import ChannelEndpoint


class RecordingChannel(ChannelEndpoint):
    """In-memory endpoint that keeps every write call."""

    def __init__(self, name: str = "recording", fail_after: int | None = None):
        super().__init__(name)
        self.chunks: list[bytes] = []
        self.fail_after = fail_after
        self.released = False

    def _allocate(self) -> None:
        pass

    def _connect(self) -> None:
        pass

    def _write_all(self, data: bytes) -> None:
        if self.fail_after is not None and len(self.chunks) >= self.fail_after:
            raise BrokenPipeError(32, "Broken pipe")
        # Yield so concurrent workers get a chance to race.
        time.sleep(0)
        self.chunks.append(bytes(data))

    def _release(self) -> None:
        self.released = True

    @property
    def output(self) -> bytes:
        return b"".join(self.chunks)


@pytest.fixture
def channel() -> RecordingChannel:
    endpoint = RecordingChannel()
    endpoint.create()
    endpoint.accept_connection()
    return endpoint


@pytest.fixture
def file_tree(tmp_path):
    """A small tree with nested directories and files of assorted sizes."""
    root = tmp_path / "root"
    (root / "nested" / "deeper").mkdir(parents=True)
    files = {
        root / "a.bin": bytes(range(10)),
        root / "empty.bin": b"",
        root / "nested" / "b.bin": b"\xff" * 70,
        root / "nested" / "deeper" / "c.bin": b"hello world",
    }
    for path, content in files.items():
        path.write_bytes(content)
    return root, files
