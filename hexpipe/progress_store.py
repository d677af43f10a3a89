"""Append-only log of files that have been fully pushed through the pipe.

Each line holds one path. Paths are stored as their raw file-system bytes,
so names that are not valid UTF-8 on POSIX survive a round trip. A path that
would break the line format (it contains ``\\n`` or ``\\r``, starts with
``%``, or cannot be encoded at all) is written as ``%`` followed by its
percent-encoded form. Absolute paths never start with ``%``, so logs holding
only ordinary paths stay plain text.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import quote, unquote

from hexpipe.errors import ProgressPersistError
from hexpipe.schema import DEFAULT_PROGRESS_FILE

QUOTED_PREFIX = "%"
QUOTE_SAFE = "/\\:"

logger = logging.getLogger(__name__)


def _needs_quoting(path: str) -> bool:
    return "\n" in path or "\r" in path or path.startswith(QUOTED_PREFIX)


def encode_entry(path: str) -> bytes:
    """Return the log line (without terminator) for ``path``."""
    if not _needs_quoting(path):
        try:
            return path.encode("utf-8", "surrogateescape")
        except UnicodeEncodeError:
            # Lone surrogates outside the surrogateescape range.
            pass
    quoted = quote(path, safe=QUOTE_SAFE, errors="surrogatepass")
    return (QUOTED_PREFIX + quoted).encode("ascii")


def decode_entry(line: bytes) -> str:
    """Inverse of :func:`encode_entry`."""
    text = line.decode("utf-8", "surrogateescape")
    if text.startswith(QUOTED_PREFIX):
        return unquote(text[len(QUOTED_PREFIX) :], errors="surrogatepass")
    return text


class ProgressStore:
    """Durable record of completed work items, one path per line.

    The file is read once at startup and only ever appended to afterwards.
    """

    def __init__(self, path: Path = DEFAULT_PROGRESS_FILE):
        self.path = Path(path)
        self._write_lock = threading.Lock()

    def load(self) -> set[str]:
        """Return the resume set; a missing file means no prior progress."""
        if not self.path.exists():
            logger.info("No progress log at %s; starting fresh", self.path)
            return set()

        logger.info("Loading progress history from %s", self.path)
        processed: set[str] = set()
        with self.path.open("rb") as handle:
            for line in handle:
                line = line.rstrip(b"\r\n")
                if line:
                    processed.add(decode_entry(line))

        logger.info("Resuming: %d files already processed", len(processed))
        return processed

    def count(self) -> int:
        """Number of distinct paths recorded; reads the whole log."""
        return len(self.load())

    def append(self, records: Iterable[str]) -> int:
        """Durably append ``records`` and return how many were written.

        Raises ProgressPersistError when the write or fsync fails. Lines that
        reached the file before the failure stay there.
        """
        entries = list(records)
        if not entries:
            return 0

        payload = b"".join(encode_entry(entry) + b"\n" for entry in entries)
        with self._write_lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("ab") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
            except OSError as exc:
                raise ProgressPersistError(
                    f"Failed to append {len(entries)} record(s) to {self.path}: {exc}"
                ) from exc

        logger.debug("Appended %d record(s) to %s", len(entries), self.path)
        return len(entries)
