from __future__ import annotations

import logging
import os
import queue
import threading
import time
from collections.abc import Container
from pathlib import Path
from typing import Iterator

from tqdm import tqdm

from hexpipe.errors import EnumerationError

logger = logging.getLogger(__name__)


def _log_walk_error(exc: OSError) -> None:
    logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc)


def resolve_root(root_directory: Path | str) -> Path:
    """Return the absolute scan root, raising EnumerationError when unusable."""
    root = Path(root_directory).expanduser().resolve()
    if not root.is_dir():
        raise EnumerationError(
            f"Root directory does not exist or is not a directory: {root}"
        )
    return root


def _walk_files(root: Path) -> Iterator[str]:
    for dirpath, _dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        for filename in filenames:
            full_path = os.path.join(dirpath, filename)
            if os.path.isfile(full_path):
                yield full_path


def iter_work_items(
    root_directory: Path | str, resume_set: Container[str]
) -> Iterator[str]:
    """Lazily yield absolute paths of regular files not yet in ``resume_set``.

    Order follows the directory-entry order of the underlying storage.
    """
    root = resolve_root(root_directory)
    for path in _walk_files(root):
        if path not in resume_set:
            yield path


def enqueue_work_items(
    root_directory: Path | str,
    resume_set: Container[str],
    work_queue: queue.Queue[str],
    *,
    show_progress: bool = True,
    shutdown_event: threading.Event | None = None,
) -> tuple[int, int]:
    """Walk the tree into ``work_queue`` and return ``(queued, skipped)``.

    Stops early, keeping what was already queued, once ``shutdown_event`` is set.
    """
    root = resolve_root(root_directory)
    logger.info("Scanning files under %s...", root)
    start_time = time.time()

    queued = 0
    skipped = 0
    file_iter: Iterator[str] = _walk_files(root)
    if show_progress:
        file_iter = tqdm(
            file_iter, desc="Scanning files", unit="files", dynamic_ncols=True
        )

    for path in file_iter:
        if shutdown_event is not None and shutdown_event.is_set():
            logger.info("Shutdown requested; stopping scan early")
            break
        if path in resume_set:
            skipped += 1
            continue
        work_queue.put(path)
        queued += 1

    logger.info(
        "Queued %d files. Skipped %d already processed (%.2f seconds).",
        queued,
        skipped,
        time.time() - start_time,
    )
    return queued, skipped
