from __future__ import annotations

import logging
import queue
import threading
from typing import Callable

from hexpipe.channel import ChannelEndpoint
from hexpipe.encoder import HexEncoder
from hexpipe.errors import FileOpenError, FileReadError
from hexpipe.schema import DEFAULT_WORKERS, RunSummary

logger = logging.getLogger(__name__)


class WorkerPool:
    """Fixed set of threads encoding queued files onto one shared channel.

    Every file is reported through ``on_complete`` once its worker is done
    with it, including files that failed to open or read. A channel failure
    stops the pool and is re-raised from :meth:`run`.
    """

    def __init__(
        self,
        channel: ChannelEndpoint,
        encoder: HexEncoder,
        on_complete: Callable[[str], None],
        worker_count: int = DEFAULT_WORKERS,
        shutdown_event: threading.Event | None = None,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.channel = channel
        self.encoder = encoder
        self.on_complete = on_complete
        self.worker_count = worker_count
        self.shutdown_event = shutdown_event or threading.Event()
        self.summary = RunSummary()
        self._lock = threading.Lock()
        self._fatal_error: BaseException | None = None

    def run(self, work_queue: queue.Queue[str]) -> RunSummary:
        """Process ``work_queue`` until it is empty or shutdown is requested."""
        threads = []
        for i in range(self.worker_count):
            thread = threading.Thread(
                target=self._worker, args=(i, work_queue), name=f"HexWorker-{i}"
            )
            thread.start()
            threads.append(thread)
            logger.debug("Started worker %d", i)

        for thread in threads:
            thread.join()

        if self._fatal_error is not None:
            raise self._fatal_error
        return self.summary

    def process_path(self, path: str, worker_logger: logging.Logger) -> None:
        """Encode one file, containing per-file errors, then report it done."""
        try:
            result = self.encoder.encode_file(path, self.channel)
        except FileOpenError as exc:
            # Unreadable files (system files, permission errors) are skipped.
            worker_logger.warning("%s", exc)
            with self._lock:
                self.summary.open_failures += 1
        except FileReadError as exc:
            worker_logger.warning("%s; skipping rest of file", exc)
            with self._lock:
                self.summary.read_failures += 1
                self.summary.absorb(exc.partial)
        else:
            with self._lock:
                self.summary.absorb(result)

        with self._lock:
            self.summary.processed += 1
        self.on_complete(path)

    def _worker(self, worker_id: int, work_queue: queue.Queue[str]) -> None:
        """Worker thread body."""
        worker_logger = logger.getChild(f"worker-{worker_id}")
        worker_logger.debug("Worker %d started", worker_id)

        while not self.shutdown_event.is_set():
            try:
                path = work_queue.get_nowait()
            except queue.Empty:
                break

            try:
                self.process_path(path, worker_logger)
            except Exception as exc:
                worker_logger.error(
                    "Worker %d stopping after fatal error on %s: %s",
                    worker_id,
                    path,
                    exc,
                )
                with self._lock:
                    if self._fatal_error is None:
                        self._fatal_error = exc
                self.shutdown_event.set()
                break
            finally:
                work_queue.task_done()

        worker_logger.debug("Worker %d stopped", worker_id)
