from __future__ import annotations

import logging
import queue
import threading
import time

from hexpipe.errors import ProgressPersistError
from hexpipe.progress_store import ProgressStore
from hexpipe.schema import DEFAULT_SAVE_INTERVAL_SECONDS

# Constants
MAX_PENDING_NOTIFICATIONS = 10_000
POLL_TIMEOUT_SECONDS = 1.0

logger = logging.getLogger(__name__)


class ProgressSaver:
    """Batches completion notifications and flushes them to the progress store."""

    def __init__(
        self,
        store: ProgressStore,
        interval_seconds: float = DEFAULT_SAVE_INTERVAL_SECONDS,
        max_pending: int = MAX_PENDING_NOTIFICATIONS,
        poll_timeout: float = POLL_TIMEOUT_SECONDS,
    ):
        """Initializes the ProgressSaver."""
        self.store = store
        self.interval_seconds = interval_seconds
        self.poll_timeout = poll_timeout
        self._notifications: queue.Queue[str] = queue.Queue(maxsize=max_pending)
        self._buffer: list[str] = []
        self._buffer_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._saved = 0
        self._unsaved = 0
        self._last_save = time.monotonic()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def pending(self) -> int:
        """Records accepted but not yet persisted."""
        with self._buffer_lock:
            return len(self._buffer) + self._notifications.qsize()

    @property
    def saved(self) -> int:
        return self._saved

    @property
    def unsaved(self) -> int:
        """Records the final save at :meth:`stop` failed to persist."""
        return self._unsaved

    def start(self) -> None:
        """Starts the background saver thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Progress saver is already running.")
            return

        logger.info(
            "Starting progress saver (auto-save every %.0f seconds).",
            self.interval_seconds,
        )
        self._stop_event.clear()
        self._last_save = time.monotonic()
        self._thread = threading.Thread(
            target=self._run, name="ProgressSaver", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stops the saver thread after draining and flushing every notification."""
        if self._thread is None or not self._thread.is_alive():
            logger.info("Progress saver is not running.")
            self._drain()
            self._final_flush()
            return

        logger.info("Stopping progress saver.")
        self._stop_event.set()
        self._thread.join()
        self._thread = None

    def notify(self, path: str) -> None:
        """Hand a completed work item to the saver.

        Blocks only while the notification queue is full.
        """
        self._notifications.put(path)

    def flush(self) -> int:
        """Persist every buffered record now; returns the number written.

        Raises ProgressPersistError and keeps the records buffered on failure.
        """
        with self._flush_lock:
            with self._buffer_lock:
                batch = list(self._buffer)
            if not batch:
                self._last_save = time.monotonic()
                return 0

            written = self.store.append(batch)
            with self._buffer_lock:
                del self._buffer[: len(batch)]
            self._saved += written
            self._last_save = time.monotonic()
            return written

    def _run(self) -> None:
        """The main loop for the saver thread."""
        while not self._stop_event.is_set():
            try:
                path = self._notifications.get(timeout=self.poll_timeout)
            except queue.Empty:
                pass
            else:
                with self._buffer_lock:
                    self._buffer.append(path)

            if time.monotonic() - self._last_save >= self.interval_seconds:
                self._timed_flush()

        self._drain()
        self._final_flush()

    def _drain(self) -> None:
        while True:
            try:
                path = self._notifications.get_nowait()
            except queue.Empty:
                return
            with self._buffer_lock:
                self._buffer.append(path)

    def _timed_flush(self) -> None:
        try:
            written = self.flush()
        except ProgressPersistError as exc:
            logger.warning("Failed to save progress, will retry: %s", exc)
            self._last_save = time.monotonic()
            return
        except Exception:
            # Records stay buffered; keep the thread alive for the next attempt.
            logger.exception("Unexpected error while saving progress, will retry")
            self._last_save = time.monotonic()
            return
        if written:
            logger.info("[Auto-Save] Saved progress (%d new files).", written)

    def _final_flush(self) -> None:
        try:
            written = self.flush()
        except Exception as exc:
            self._unsaved = self.pending
            logger.error(
                "Final progress save failed; %d record(s) lost: %s", self._unsaved, exc
            )
            return
        self._unsaved = 0
        if written:
            logger.info("Final progress saved (%d new files).", written)
