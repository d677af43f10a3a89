from __future__ import annotations

import os
import queue
import threading
from unittest.mock import patch

import pytest

from hexpipe import discover_files
from hexpipe.errors import EnumerationError


def test_iter_work_items_yields_absolute_regular_files(file_tree):
    root, files = file_tree

    found = set(discover_files.iter_work_items(root, set()))

    assert found == {str(path.resolve()) for path in files}
    assert all(os.path.isabs(path) for path in found)


def test_iter_work_items_excludes_resume_set(file_tree):
    root, files = file_tree
    done = {str((root / "a.bin").resolve()), str((root / "nested" / "b.bin").resolve())}

    found = set(discover_files.iter_work_items(root, done))

    assert found.isdisjoint(done)
    assert len(found) == len(files) - 2


def test_iter_work_items_skips_directories(file_tree):
    root, _ = file_tree
    found = list(discover_files.iter_work_items(root, set()))
    assert not any(os.path.isdir(path) for path in found)


def test_iter_work_items_is_lazy(file_tree):
    root, _ = file_tree
    items = discover_files.iter_work_items(root, set())
    assert next(items)


def test_invalid_root_raises(tmp_path):
    with pytest.raises(EnumerationError):
        list(discover_files.iter_work_items(tmp_path / "missing", set()))

    regular = tmp_path / "file.txt"
    regular.write_text("x")
    with pytest.raises(EnumerationError):
        discover_files.resolve_root(regular)


def test_unlistable_directory_is_skipped(file_tree, caplog):
    root, _ = file_tree
    real_walk = os.walk

    def walk_with_error(top, onerror=None, **kwargs):
        onerror(PermissionError(13, "Permission denied", str(root / "locked")))
        yield from real_walk(top, onerror=onerror, **kwargs)

    with patch.object(discover_files.os, "walk", side_effect=walk_with_error):
        with caplog.at_level("WARNING", logger="hexpipe.discover_files"):
            found = list(discover_files.iter_work_items(root, set()))

    assert len(found) == 4
    assert "Skipping unreadable directory" in caplog.text


def test_enqueue_work_items_counts(file_tree):
    root, _ = file_tree
    done = {str((root / "a.bin").resolve())}
    work_queue: queue.Queue[str] = queue.Queue()

    queued, skipped = discover_files.enqueue_work_items(
        root, done, work_queue, show_progress=False
    )

    assert (queued, skipped) == (3, 1)
    assert work_queue.qsize() == 3


def test_enqueue_stops_on_shutdown(file_tree):
    root, _ = file_tree
    stop = threading.Event()
    stop.set()
    work_queue: queue.Queue[str] = queue.Queue()

    queued, skipped = discover_files.enqueue_work_items(
        root, set(), work_queue, show_progress=False, shutdown_event=stop
    )

    assert (queued, skipped) == (0, 0)
    assert work_queue.empty()
