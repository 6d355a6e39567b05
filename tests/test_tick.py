"""Tests for the per-tick orchestrator and the polling loop."""

import dataclasses
import threading
from unittest import mock

import folder_mirror
from folder_mirror import (
    PhaseResult,
    TickReport,
    cleanup_replica,
    run_forever,
    run_tick,
    sync_files,
)

T1 = 1_600_000_000_000_000_000


def test_run_tick_runs_both_phases(config, logger, write_file):
    src, rep = config.roots.source, config.roots.replica
    write_file(src / "a.txt", "alpha", mtime_ns=T1)
    write_file(rep / "stale.txt")
    write_file(rep / "old" / "dir" / "x.txt")

    report = run_tick(config, logger)

    assert report.ok
    assert report.sync.copied == ["a.txt"]
    assert sorted(report.cleanup.deleted) == ["old/dir/x.txt", "stale.txt"]
    assert report.cleanup.removed_dirs == ["old/dir", "old"]
    assert report.events == 5
    assert sorted(p.name for p in rep.iterdir()) == ["a.txt"]


def test_run_tick_isolates_an_aborted_phase(config, logger, write_file, caplog):
    write_file(config.roots.replica / "stale.txt")

    with mock.patch.object(folder_mirror, "sync_files", side_effect=PermissionError("source unreadable")):
        report = run_tick(config, logger)

    assert report.sync.aborted == "source unreadable"
    assert not report.ok
    assert report.cleanup.deleted == ["stale.txt"]
    assert "ERROR: sync phase aborted | source unreadable" in caplog.messages


def test_run_tick_runs_phases_on_separate_threads(config, logger):
    seen = {}

    def record(name):
        def phase(cfg, lg, ignore):
            seen[name] = threading.current_thread().name
            return PhaseResult(phase=name)
        return phase

    with mock.patch.object(folder_mirror, "sync_files", side_effect=record("sync")), mock.patch.object(
        folder_mirror, "cleanup_replica", side_effect=record("cleanup")
    ):
        report = run_tick(config, logger)

    assert report.events == 0
    assert set(seen) == {"sync", "cleanup"}
    assert all(name.startswith("folder-mirror") for name in seen.values())


def test_end_to_end_three_ticks(config, logger, write_file, caplog):
    src, rep = config.roots.source, config.roots.replica
    readme = write_file(src / "docs" / "readme.txt", "hello", mtime_ns=T1)

    # Phase by phase: cleanup may race the freshly created replica directory.
    first = TickReport(sync=sync_files(config, logger), cleanup=cleanup_replica(config, logger))
    assert first.events == 1
    assert (rep / "docs" / "readme.txt").stat().st_mtime_ns == T1
    assert caplog.messages == ["Copied: docs/readme.txt"]

    caplog.clear()
    second = run_tick(config, logger)
    assert second.events == 0
    assert caplog.messages == []

    readme.unlink()
    third = run_tick(config, logger)
    assert third.cleanup.deleted == ["docs/readme.txt"]
    assert third.cleanup.removed_dirs == ["docs"]
    assert caplog.messages == ["Deleted: docs/readme.txt", "Removed empty directory: docs"]
    assert list(rep.iterdir()) == []


def test_run_forever_survives_a_failing_tick(config, logger, caplog):
    stop = threading.Event()
    calls = []

    def fake_tick(cfg, lg):
        calls.append(cfg)
        if len(calls) == 1:
            raise RuntimeError("replica volume vanished")
        stop.set()

    fast = dataclasses.replace(config, interval_sec=0)
    with mock.patch.object(folder_mirror, "run_tick", side_effect=fake_tick):
        run_forever(fast, logger, stop_event=stop)

    assert len(calls) == 2
    assert "ERROR: tick failed | replica volume vanished" in caplog.messages


def test_run_forever_waits_the_interval_between_ticks(config, logger):
    stop = mock.Mock()
    stop.is_set.side_effect = [False, False, True]

    with mock.patch.object(folder_mirror, "run_tick") as tick:
        run_forever(config, logger, stop_event=stop)

    assert tick.call_count == 2
    assert stop.wait.call_args_list == [mock.call(config.interval_sec)] * 2
