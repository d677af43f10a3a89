"""Single-reader, single-writer streaming endpoint feeding the consumer.

An endpoint moves through ``CREATED -> AWAITING_CONNECTION -> CONNECTED ->
CLOSED``. Exactly one endpoint exists per run and every write goes through it.
Workers that share it must hold :meth:`ChannelEndpoint.exclusive` for the whole
of one file's output so records from different files never interleave.
"""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import stat
import sys
import tempfile
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from hexpipe.errors import ChannelConnectError, ChannelWriteError

# Windows named pipe buffer sizes
PIPE_OUT_BUFFER_SIZE = 1024 * 1024
PIPE_IN_BUFFER_SIZE = 1024 * 1024

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    """Lifecycle states of a channel endpoint."""

    CREATED = "created"
    AWAITING_CONNECTION = "awaiting_connection"
    CONNECTED = "connected"
    CLOSED = "closed"


class ChannelEndpoint:
    """Base endpoint handling state transitions and write serialization.

    Subclasses implement ``_allocate``, ``_connect``, ``_write_all`` and
    ``_release`` for their OS primitive.
    """

    def __init__(self, name: str):
        self.name = name
        self.state = ChannelState.CREATED
        self.bytes_written = 0
        self.writes = 0
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()

    def __enter__(self) -> ChannelEndpoint:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def create(self) -> None:
        """Allocate the OS-level channel object."""
        with self._state_lock:
            if self.state is not ChannelState.CREATED:
                raise ChannelConnectError(
                    f"Cannot create channel {self.name} in state {self.state.value}"
                )
            try:
                self._allocate()
            except OSError as exc:
                raise ChannelConnectError(
                    f"Unable to create channel {self.name}: {exc}"
                ) from exc
            self.state = ChannelState.AWAITING_CONNECTION

    def accept_connection(self) -> None:
        """Block until a single consumer attaches."""
        if self.state is not ChannelState.AWAITING_CONNECTION:
            raise ChannelConnectError(
                f"Cannot connect channel {self.name} in state {self.state.value}"
            )

        logger.info("Waiting for connection on: %s", self.name)
        try:
            self._connect()
        except OSError as exc:
            raise ChannelConnectError(
                f"Consumer failed to connect to {self.name}: {exc}"
            ) from exc

        with self._state_lock:
            if self.state is ChannelState.CLOSED:
                raise ChannelConnectError(f"Channel {self.name} closed while waiting")
            self.state = ChannelState.CONNECTED
        logger.info("Connected.")

    @contextlib.contextmanager
    def exclusive(self) -> Iterator[ChannelEndpoint]:
        """Hold the writer lane for the duration of one file's output."""
        with self._write_lock:
            yield self

    def write(self, data: bytes) -> None:
        """Write ``data`` in one blocking logical call."""
        if self.state is not ChannelState.CONNECTED:
            raise ChannelWriteError(
                f"Cannot write to channel {self.name} in state {self.state.value}"
            )
        if not data:
            return
        try:
            self._write_all(data)
        except OSError as exc:
            raise ChannelWriteError(f"Write to {self.name} failed: {exc}") from exc
        self.bytes_written += len(data)
        self.writes += 1

    def close(self) -> None:
        """Release the OS handle; calling it again is a no-op."""
        with self._state_lock:
            if self.state is ChannelState.CLOSED:
                return
            previous = self.state
            self.state = ChannelState.CLOSED

        if previous is ChannelState.CREATED:
            return
        try:
            self._release()
        except OSError as exc:
            logger.warning("Error while closing channel %s: %s", self.name, exc)
        logger.debug(
            "Closed channel %s after %d write(s), %d byte(s)",
            self.name,
            self.writes,
            self.bytes_written,
        )

    def _allocate(self) -> None:
        raise NotImplementedError

    def _connect(self) -> None:
        raise NotImplementedError

    def _write_all(self, data: bytes) -> None:
        raise NotImplementedError

    def _release(self) -> None:
        raise NotImplementedError


class FifoChannel(ChannelEndpoint):
    """POSIX named pipe (FIFO) endpoint, outbound only."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        super().__init__(str(self.path))
        self._fd: int | None = None
        self._created_node = False

    def _allocate(self) -> None:
        try:
            os.mkfifo(self.path, 0o600)
            self._created_node = True
        except FileExistsError:
            if not stat.S_ISFIFO(self.path.stat().st_mode):
                raise FileExistsError(
                    errno.EEXIST, "Path exists and is not a FIFO", str(self.path)
                ) from None
            logger.debug("Reusing existing FIFO at %s", self.path)

    def _connect(self) -> None:
        # Opening the write end blocks until a reader opens the other end.
        self._fd = os.open(self.path, os.O_WRONLY)

    def _write_all(self, data: bytes) -> None:
        if self._fd is None:
            raise OSError(errno.EBADF, "FIFO is not open")
        view = memoryview(data)
        while view:
            written = os.write(self._fd, view)
            view = view[written:]

    def _release(self) -> None:
        try:
            if self._fd is not None:
                os.close(self._fd)
                self._fd = None
        finally:
            if self._created_node:
                self._created_node = False
                with contextlib.suppress(FileNotFoundError):
                    self.path.unlink()


class Win32PipeChannel(ChannelEndpoint):
    """Windows named pipe endpoint (``\\\\.\\pipe\\<name>``) built on pywin32."""

    def __init__(self, name: str):
        super().__init__(pipe_path_for(name, platform="win32"))
        self._handle: Any = None

    def _allocate(self) -> None:
        import pywintypes
        import win32pipe

        try:
            self._handle = win32pipe.CreateNamedPipe(
                self.name,
                win32pipe.PIPE_ACCESS_OUTBOUND,
                win32pipe.PIPE_TYPE_BYTE | win32pipe.PIPE_WAIT,
                1,
                PIPE_OUT_BUFFER_SIZE,
                PIPE_IN_BUFFER_SIZE,
                0,
                None,
            )
        except pywintypes.error as exc:
            raise OSError(exc.winerror, exc.strerror) from exc

    def _connect(self) -> None:
        import pywintypes
        import win32pipe

        try:
            win32pipe.ConnectNamedPipe(self._handle, None)
        except pywintypes.error as exc:
            raise OSError(exc.winerror, exc.strerror) from exc

    def _write_all(self, data: bytes) -> None:
        import pywintypes
        import win32file

        offset = 0
        try:
            while offset < len(data):
                chunk = data if offset == 0 else data[offset:]
                _, written = win32file.WriteFile(self._handle, chunk)
                offset += written
        except pywintypes.error as exc:
            raise OSError(exc.winerror, exc.strerror) from exc

    def _release(self) -> None:
        import pywintypes
        import win32file

        if self._handle is None:
            return
        try:
            win32file.CloseHandle(self._handle)
        except pywintypes.error as exc:
            raise OSError(exc.winerror, exc.strerror) from exc
        finally:
            self._handle = None


def pipe_path_for(name: str, platform: str = sys.platform) -> str:
    """Return the OS path for a pipe called ``name``."""
    if platform == "win32":
        if name.startswith("\\\\.\\pipe\\"):
            return name
        return f"\\\\.\\pipe\\{name}"
    if os.sep in name:
        return name
    # Bare names live in the temp directory, mirroring the Windows pipe namespace.
    return os.path.join(tempfile.gettempdir(), name)


def open_channel(name: str, platform: str = sys.platform) -> ChannelEndpoint:
    """Build the endpoint appropriate for ``platform``; it is not yet created."""
    if platform == "win32":
        return Win32PipeChannel(name)
    return FifoChannel(pipe_path_for(name, platform))
