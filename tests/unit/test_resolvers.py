from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

import pytest

from apps.api.services.cleanup import CleanupSweeper
from apps.api.services.jobs import JobKind, PlaylistEntry
from apps.api.services.resolvers import (
    CONFLICT,
    INVALID_REQUEST,
    NOT_FOUND,
    SPAWN_FAILED,
    DownloadResolver,
    LiveResolver,
    ScheduleResolver,
    build_worker_args,
)
from py_streamhub.naming import parse_command_flags
from tests._helpers import RecordingLauncher, make_job, write_status

MOMENT = datetime(2025, 5, 17, 12, 54, 33)


def _clock() -> datetime:
    return MOMENT


def _later() -> datetime:
    return datetime(2025, 5, 17, 13, 0, 0)


class RecordCheckingLauncher(RecordingLauncher):
    """Asserts that a job record exists for the output file before launching."""

    def __init__(self, store) -> None:
        super().__init__()
        self.store = store
        self.records_seen = []

    def launch(self, script_path, args):
        output = args[args.index("--outputFile") + 1]
        self.records_seen.append([job.recording_id for job in self.store.list_jobs() if job.output_file == output])
        return super().launch(script_path, args)


def test_download_start_persists_before_launch(store) -> None:
    launcher = RecordCheckingLauncher(store)
    store.write_cached_entry("cache-7", PlaylistEntry(name="Y Movie", url="http://x/y.mp4"))
    resolver = DownloadResolver(store, launcher, worker_script="/opt/download.sh", clock=_clock)

    result = resolver.start("cache-7", "alice")

    assert result.success
    assert re.fullmatch(r"download-\d{6}T\d{6}-y\.mp4", result.recording_id)
    assert launcher.records_seen == [[result.recording_id]]
    job = store.read_job(result.recording_id)
    assert job.kind is JobKind.DOWNLOAD
    assert job.output_file == str(store.work_dir / result.recording_id)
    assert job.final_output_file == str(store.media_dir / "y_movie.mp4")
    assert job.status_file == f"{job.output_file}.status"
    # The job record carries its own copy of the entry.
    assert store.read_cached_entry("cache-7") is None


def test_download_worker_args(store) -> None:
    launcher = RecordingLauncher()
    resolver = DownloadResolver(
        store, launcher, worker_script="/opt/download.sh", base_url="http://api:8000", loglevel="debug", clock=_clock
    )

    result = resolver.start("cache-9", "bob", PlaylistEntry(name="Clip", url="http://x/movie/clip.mkv"))

    assert result.success
    script, args = launcher.calls[0]
    assert script == "/opt/download.sh"
    flags = dict(zip(args[::2], args[1::2]))
    assert flags["--url"] == "http://x/movie/clip.mkv"
    assert flags["--cacheKey"] == "cache-9"
    assert flags["--baseUrl"] == "http://api:8000"
    assert flags["--loglevel"] == "debug"
    assert flags["--format"] == "mkv"
    assert "--duration" not in flags


def test_download_without_entry_is_not_found(store, launcher) -> None:
    result = DownloadResolver(store, launcher).start("cache-missing", "alice")

    assert not result.success
    assert result.code == NOT_FOUND
    assert launcher.calls == []
    assert store.list_jobs() == []


def test_spawn_failure_leaves_record_for_sweeper(store) -> None:
    resolver = LiveResolver(store, RecordingLauncher(fail=True), clock=_clock)

    result = resolver.start("cache-3", "alice", PlaylistEntry(name="News", url="http://tv.example/live/u/p/1290307"))

    assert not result.success
    assert result.code == SPAWN_FAILED
    jobs = store.list_jobs()
    assert [job.cache_key for job in jobs] == ["cache-3"]


def test_live_start_rejects_second_stream_for_same_cache_key(store, launcher) -> None:
    resolver = LiveResolver(store, launcher, clock=_clock)
    entry = PlaylistEntry(name="News", url="http://tv.example/live/u/p/1290307")

    first = resolver.start("cache-3", "alice", entry)
    second = resolver.start("cache-3", "bob", entry)

    assert first.success
    assert first.recording_id == "live-250517T125433-1290307"
    assert not second.success
    assert second.code == CONFLICT
    assert second.recording_id == first.recording_id
    assert len(launcher.calls) == 1
    job = store.read_job(first.recording_id)
    assert job.output_file == job.final_output_file
    assert job.output_file.endswith("live-250517T125433-1290307_hls/playlist.m3u8")


def test_live_stop_recording_uses_output_file(store, launcher) -> None:
    job = make_job(store, "live-250517T125433-77", kind=JobKind.LIVE)
    store.write_job(job)
    resolver = LiveResolver(store, launcher, stop_script="/opt/stop-record.sh")

    result = resolver.stop_recording(job.recording_id)
    missing = resolver.stop_recording("live-000000T000000-0")

    assert result.success
    assert launcher.calls == [("/opt/stop-record.sh", ["--outputFile", job.output_file])]
    assert missing.code == NOT_FOUND


def test_stop_unknown_cache_key(store, launcher) -> None:
    result = DownloadResolver(store, launcher).stop("nope")

    assert not result.success
    assert result.code == NOT_FOUND
    assert launcher.calls == []


def test_record_now_launches_recording(store, launcher, scheduler) -> None:
    resolver = ScheduleResolver(store, launcher, scheduler=scheduler, clock=_clock)
    entry = PlaylistEntry(name="Late Show", url="http://tv.example/live/u/p/64374")

    result = resolver.schedule("cache-5", "alice", 1800, entry=entry, record_now=True)

    assert result.success
    assert result.recording_id == "recording-250517T125433-64374"
    _script, args = launcher.calls[0]
    flags = dict(zip(args[::2], args[1::2]))
    assert flags["--duration"] == "1800"
    assert flags["--outputFile"].endswith("recording-250517T125433-64374.mp4")
    assert scheduler.jobs == {}


def test_deferred_recording_goes_through_scheduler(store, launcher, scheduler) -> None:
    resolver = ScheduleResolver(store, launcher, scheduler=scheduler, worker_script="/opt/my scripts/record.sh", clock=_clock)
    entry = PlaylistEntry(name="O'Brien Tonight", url="http://tv.example/live/u/p/64374")

    result = resolver.schedule("cache-5", "o'brien@example.com", 600, entry=entry, record_now=False, start_time="2025-05-18 02:15")

    assert result.success
    assert result.scheduled_id == "1"
    assert launcher.calls == []
    scheduled = scheduler.jobs["1"]
    assert scheduled.datetime == "2025-05-18 02:15"
    flags = parse_command_flags(scheduled.command)
    assert flags["user"] == "o'brien@example.com"
    assert flags["cacheKey"] == "cache-5"
    assert scheduled.cache_key == "cache-5"
    job = store.read_job(result.recording_id)
    assert job.start_time == "2025-05-18 02:15"
    assert Path(job.final_output_file).name == "o_brien_tonight.mp4"


@pytest.mark.parametrize(
    "duration, record_now, start_time",
    [(0, True, None), (60, False, None)],
)
def test_schedule_validation(store, launcher, scheduler, duration, record_now, start_time) -> None:
    resolver = ScheduleResolver(store, launcher, scheduler=scheduler)
    entry = PlaylistEntry(name="x", url="http://tv.example/live/1")

    result = resolver.schedule("cache-5", "alice", duration, entry=entry, record_now=record_now, start_time=start_time)

    assert result.code == INVALID_REQUEST
    assert store.list_jobs() == []


def test_unschedule_removes_pending_record(store, launcher, scheduler) -> None:
    resolver = ScheduleResolver(store, launcher, scheduler=scheduler, clock=_clock)
    entry = PlaylistEntry(name="Late Show", url="http://tv.example/live/u/p/64374")
    scheduled = resolver.schedule("cache-5", "alice", 600, entry=entry, record_now=False, start_time="now + 1 hour")

    result = resolver.unschedule(scheduled.scheduled_id)
    again = resolver.unschedule(scheduled.scheduled_id)

    assert result.success
    assert result.recording_id == scheduled.recording_id
    assert store.list_jobs() == []
    assert scheduler.jobs == {}
    assert again.code == NOT_FOUND


def test_movie_jobs_have_no_worker(store) -> None:
    job = make_job(store, kind=JobKind.MOVIE)
    with pytest.raises(ValueError):
        build_worker_args(job, base_url="http://api", loglevel="info")


def test_live_restart_after_worker_exit_finalizes_old_stream(store, launcher) -> None:
    sweeper = CleanupSweeper(store, liveness=lambda pid: False)
    resolver = LiveResolver(store, launcher, sweeper=sweeper, clock=_clock)
    entry = PlaylistEntry(name="News", url="http://tv.example/live/u/p/1290307")
    first = resolver.start("cache-3", "alice", entry)
    old = store.read_job(first.recording_id)
    Path(old.output_file).parent.mkdir(parents=True)
    Path(old.output_file).write_text("#EXTM3U\n", encoding="utf-8")
    write_status(old.status_file, "STATUS=live", "PID=900", "STATUS=stopped")

    resolver.clock = _later
    second = resolver.start("cache-3", "bob", entry)

    assert second.success
    assert second.recording_id == "live-250517T130000-1290307"
    assert store.read_info(old.recording_id).status["STATUS"] == ["live", "stopped"]
    assert not Path(old.output_file).parent.exists()
    assert [job.recording_id for job in store.find_jobs_by_cache_key("cache-3")] == [second.recording_id]
    assert len(launcher.calls) == 2


def test_live_stop_finalizes_streams_whose_worker_exited(store, launcher) -> None:
    gone = make_job(store, "live-250517T125433-1", kind=JobKind.LIVE, cache_key="cache-a")
    Path(gone.output_file).parent.mkdir(parents=True)
    Path(gone.output_file).write_text("#EXTM3U\n", encoding="utf-8")
    write_status(gone.status_file, "STATUS=live", "PID=901")
    store.write_job(gone)
    playing = make_job(store, "live-250517T125433-2", kind=JobKind.LIVE, cache_key="cache-b")
    write_status(playing.status_file, "STATUS=live", "PID=900")
    store.write_job(playing)
    sweeper = CleanupSweeper(store, liveness=lambda pid: pid == 900)
    resolver = LiveResolver(store, launcher, sweeper=sweeper, stop_script="/opt/stop-record.sh")

    result = resolver.stop("cache-b")

    assert result.success
    assert launcher.calls == [("/opt/stop-record.sh", ["--outputFile", playing.output_file])]
    assert store.info_exists(gone.recording_id)
    assert [job.recording_id for job in store.list_jobs()] == [playing.recording_id]


@pytest.mark.parametrize("cache_key", ["../jobs/recording-1", "a/b", ".."])
def test_cache_keys_with_path_parts_are_invalid(store, launcher, scheduler, cache_key) -> None:
    entry = PlaylistEntry(name="x", url="http://tv.example/live/1")

    results = [
        DownloadResolver(store, launcher).start(cache_key, "alice", entry),
        LiveResolver(store, launcher).start(cache_key, "alice", entry),
        ScheduleResolver(store, launcher, scheduler=scheduler).schedule(cache_key, "alice", 60, entry=entry),
    ]

    assert [result.code for result in results] == [INVALID_REQUEST] * 3
    assert launcher.calls == []
    assert store.list_jobs() == []


def test_unschedule_removes_the_record_the_command_writes_to(store, launcher, scheduler) -> None:
    entry = PlaylistEntry(name="Late Show", url="http://tv.example/live/u/p/64374")
    deferred = ScheduleResolver(store, launcher, scheduler=scheduler, clock=_clock).schedule(
        "cache-5", "alice", 600, entry=entry, record_now=False, start_time="now + 1 hour"
    )
    running = ScheduleResolver(store, launcher, scheduler=scheduler, clock=_later).schedule(
        "cache-5", "alice", 600, entry=entry, record_now=True
    )
    newest = store.read_job(running.recording_id)
    newest.created_at = "2999-01-01T00:00:00Z"
    store.write_job(newest)

    result = ScheduleResolver(store, launcher, scheduler=scheduler).unschedule(deferred.scheduled_id)

    assert result.recording_id == deferred.recording_id
    assert [job.recording_id for job in store.list_jobs()] == [running.recording_id]
    assert scheduler.jobs == {}
