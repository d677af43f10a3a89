from __future__ import annotations

import os
import sys
import threading

import pytest
from conftest import RecordingChannel

from hexpipe import pipeline
from hexpipe.errors import ChannelWriteError, EnumerationError, ProgressPersistError
from hexpipe.progress_store import ProgressStore
from hexpipe.schema import PipelineSettings


def _settings(root, tmp_path, **overrides) -> PipelineSettings:
    values = {
        "root": root,
        "block_size": 4,
        "read_buffer_size": 10,
        "progress_file": tmp_path / "progress_log.txt",
        "save_interval_seconds": 3600,
    }
    values.update(overrides)
    return PipelineSettings(**values)


def _run(settings, channel=None, stop=None):
    return pipeline.run_pipeline(
        settings,
        channel=channel or RecordingChannel(),
        show_progress=False,
        stop_event=stop or threading.Event(),
    )


def test_full_run_streams_and_records(file_tree, tmp_path):
    root, files = file_tree
    channel = RecordingChannel()

    summary = _run(_settings(root, tmp_path), channel=channel)

    assert summary.queued == len(files)
    assert summary.processed == len(files)
    assert summary.skipped == 0
    assert summary.interrupted is False
    assert channel.released is True

    recorded = ProgressStore(tmp_path / "progress_log.txt").load()
    assert recorded == {str(path.resolve()) for path in files}

    decoded = bytes.fromhex(b"".join(channel.output.splitlines()).decode())
    assert sorted(decoded) == sorted(b"".join(files.values()))


def test_second_run_enumerates_nothing(file_tree, tmp_path):
    root, _ = file_tree
    _run(_settings(root, tmp_path))

    channel = RecordingChannel()
    summary = _run(_settings(root, tmp_path), channel=channel)

    assert summary.queued == 0
    assert summary.skipped == 4
    assert channel.chunks == []


def test_new_files_picked_up_on_resume(file_tree, tmp_path):
    root, _ = file_tree
    _run(_settings(root, tmp_path))
    (root / "late.bin").write_bytes(b"\x0a\x0b")

    channel = RecordingChannel()
    summary = _run(_settings(root, tmp_path), channel=channel)

    assert summary.queued == 1
    assert channel.output == b"0a0b\n"


def test_unreadable_file_marked_complete(file_tree, tmp_path, monkeypatch):
    root, _ = file_tree
    blocked = str((root / "a.bin").resolve())
    real_open = open

    def guarded_open(path, *args, **kwargs):
        if str(path) == blocked:
            raise PermissionError(13, "Permission denied", path)
        return real_open(path, *args, **kwargs)

    monkeypatch.setattr("builtins.open", guarded_open)
    channel = RecordingChannel()
    summary = _run(_settings(root, tmp_path), channel=channel)
    monkeypatch.undo()

    assert summary.open_failures == 1
    assert summary.processed == 4
    assert blocked in ProgressStore(tmp_path / "progress_log.txt").load()
    assert b"00010203" not in channel.output


def test_multiple_workers(file_tree, tmp_path):
    root, files = file_tree
    summary = _run(_settings(root, tmp_path, workers=3))
    assert summary.processed == len(files)


def test_channel_failure_still_flushes_progress(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    for i in range(3):
        (root / f"f{i}.bin").write_bytes(b"\x00" * 4)

    with pytest.raises(ChannelWriteError):
        _run(_settings(root, tmp_path), channel=RecordingChannel(fail_after=1))

    recorded = ProgressStore(tmp_path / "progress_log.txt").load()
    assert len(recorded) == 1


def test_missing_root_fails_before_channel(tmp_path):
    channel = RecordingChannel()
    with pytest.raises(EnumerationError):
        _run(_settings(tmp_path / "missing", tmp_path), channel=channel)
    assert channel.state.value == "created"


def test_no_root_configured(tmp_path):
    with pytest.raises(EnumerationError):
        _run(_settings(None, tmp_path))


def test_interrupted_run_reports_interruption(file_tree, tmp_path):
    root, _ = file_tree
    stop = threading.Event()
    stop.set()

    summary = _run(_settings(root, tmp_path), stop=stop)

    assert summary.interrupted is True
    assert summary.processed == 0


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX file names")
def test_resume_with_unusual_file_names(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    root = root.resolve()
    (root / "a\nb.bin").write_bytes(b"\x01")
    (root / "percent%20.bin").write_bytes(b"\x02")
    (root / "naïve ☃.bin").write_bytes(b"\x03")
    try:
        raw_name = os.path.join(os.fsencode(root), b"caf\xe9.bin")
        with open(raw_name, "wb") as handle:
            handle.write(b"\x04")
    except OSError:
        pytest.skip("file system rejects non-UTF-8 names")

    first = _run(_settings(root, tmp_path))
    assert first.processed == 4

    channel = RecordingChannel()
    second = _run(_settings(root, tmp_path), channel=channel)

    assert second.queued == 0
    assert second.skipped == 4
    assert channel.chunks == []
    recorded = ProgressStore(tmp_path / "progress_log.txt").load()
    assert os.fsdecode(raw_name) in recorded
    assert str(root / "a\nb.bin") in recorded


def test_failed_final_save_is_reported(file_tree, tmp_path, monkeypatch):
    root, files = file_tree

    def refuse(self, records):
        raise ProgressPersistError("read-only file system")

    monkeypatch.setattr(ProgressStore, "append", refuse)
    summary = _run(_settings(root, tmp_path))

    assert summary.processed == len(files)
    assert summary.unsaved == len(files)
    assert not (tmp_path / "progress_log.txt").exists()
