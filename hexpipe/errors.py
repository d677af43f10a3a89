"""Exception taxonomy for the hex pipe.

Per-file errors (:class:`FileOpenError`, :class:`FileReadError`) are contained
by the worker that raised them. Channel errors end the run.
:class:`ProgressPersistError` is reported and retried on the next save.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hexpipe.schema import EncodeResult


class HexPipeError(Exception):
    """Base class for every error raised by the pipeline."""


class EnumerationError(HexPipeError):
    """The scan root cannot be walked at all."""


class FileOpenError(HexPipeError):
    """A work item could not be opened for reading."""

    def __init__(self, path: str, cause: OSError) -> None:
        super().__init__(f"Unable to open {path}: {cause}")
        self.path = path
        self.cause = cause


class FileReadError(HexPipeError):
    """A read failed partway through a file."""

    def __init__(self, path: str, cause: OSError, partial: EncodeResult) -> None:
        super().__init__(
            f"Read failed for {path} after {partial.bytes_read} bytes: {cause}"
        )
        self.path = path
        self.cause = cause
        self.partial = partial


class ChannelConnectError(HexPipeError):
    """No consumer could be attached to the channel."""


class ChannelWriteError(HexPipeError):
    """The channel rejected a write; it is treated as broken."""


class ProgressPersistError(HexPipeError):
    """Completion records could not be appended to the progress store."""
