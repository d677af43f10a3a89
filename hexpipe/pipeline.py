"""Startup and shutdown sequencing for a hex pipe run."""

from __future__ import annotations

import logging
import os
import queue
import signal
import threading
import time

from hexpipe.channel import ChannelEndpoint, open_channel
from hexpipe.discover_files import enqueue_work_items, resolve_root
from hexpipe.encoder import HexEncoder
from hexpipe.errors import EnumerationError
from hexpipe.progress_saver import ProgressSaver
from hexpipe.progress_store import ProgressStore
from hexpipe.schema import PipelineSettings, RunSummary
from hexpipe.worker_pool import WorkerPool

logger = logging.getLogger(__name__)

# Shared state
shutdown_event = threading.Event()
_awaiting_connection = threading.Event()


def request_shutdown(reason: str) -> None:
    """Ask workers to stop taking new files; a second request exits at once."""
    if shutdown_event.is_set():
        logger.warning(
            "Additional shutdown request received (%s); forcing termination.", reason
        )
        os._exit(1)

    logger.info("Shutdown requested: %s", reason)
    shutdown_event.set()


def signal_handler(signum, frame):
    """Handle termination signals by initiating a coordinated shutdown."""

    try:
        signal_name = signal.Signals(signum).name
    except ValueError:
        signal_name = str(signum)

    request_shutdown(f"signal {signal_name}")
    if _awaiting_connection.is_set():
        # Nothing to drain yet; abandon the blocking connect.
        raise KeyboardInterrupt


def install_signal_handlers() -> None:
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def run_pipeline(
    settings: PipelineSettings,
    *,
    channel: ChannelEndpoint | None = None,
    show_progress: bool = True,
    stop_event: threading.Event | None = None,
) -> RunSummary:
    """Run one pass over ``settings.root`` and return the run's counters.

    Channel errors propagate after the progress saver has flushed whatever
    completed before the failure.
    """
    stop = stop_event if stop_event is not None else shutdown_event
    start_time = time.time()

    if settings.root is None:
        raise EnumerationError("No root directory configured")
    root = resolve_root(settings.root)

    store = ProgressStore(settings.progress_file)
    resume_set = store.load()

    encoder = HexEncoder(settings.block_size, settings.read_buffer_size)
    saver = ProgressSaver(store, settings.save_interval_seconds)
    endpoint = channel if channel is not None else open_channel(settings.pipe_name)
    summary = RunSummary()

    with endpoint:
        endpoint.create()
        _awaiting_connection.set()
        try:
            endpoint.accept_connection()
        finally:
            _awaiting_connection.clear()

        saver.start()
        try:
            work_queue: queue.Queue[str] = queue.Queue()
            summary.queued, summary.skipped = enqueue_work_items(
                root,
                resume_set,
                work_queue,
                show_progress=show_progress,
                shutdown_event=stop,
            )
            resume_set.clear()

            pool = WorkerPool(
                endpoint,
                encoder,
                saver.notify,
                worker_count=settings.workers,
                shutdown_event=stop,
            )
            logger.info("Starting %d worker(s)", settings.workers)
            pool_summary = pool.run(work_queue)
        finally:
            saver.stop()

    summary.processed = pool_summary.processed
    summary.open_failures = pool_summary.open_failures
    summary.read_failures = pool_summary.read_failures
    summary.bytes_read = pool_summary.bytes_read
    summary.records = pool_summary.records
    summary.interrupted = stop.is_set()
    summary.unsaved = saver.unsaved
    summary.elapsed_seconds = time.time() - start_time

    if summary.unsaved:
        logger.error(
            "%d completed file(s) were not saved to %s and will be redone next run",
            summary.unsaved,
            store.path,
        )
    if summary.interrupted:
        logger.info(
            "Pipeline interrupted after %.1f seconds (%d of %d files processed)",
            summary.elapsed_seconds,
            summary.processed,
            summary.queued,
        )
    else:
        logger.info(
            "Pipeline complete! Processed %d files in %.1f seconds",
            summary.processed,
            summary.elapsed_seconds,
        )
    return summary
