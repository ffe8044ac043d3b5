from __future__ import annotations

import time
from pathlib import Path

from apps.api.services.cleanup import CleanupSweeper
from apps.api.services.jobs import InfoRecord, JobKind
from tests._helpers import FakeScheduler, age_file, make_job, write_status


def _sweeper(store, *, alive=(), min_age=0, scheduler=None) -> CleanupSweeper:
    alive = set(alive)
    return CleanupSweeper(
        store,
        liveness=lambda pid: pid in alive,
        scheduler=scheduler,
        min_age_seconds=min_age,
        clock=lambda: time.time() + 5,
    )


def test_ghost_job_is_deleted_without_info(store) -> None:
    job = make_job(store, "download-250513T201125-5.mkv", kind=JobKind.DOWNLOAD, cache_key="cache-ghost")
    store.write_job(job)
    store.write_cached_entry("cache-ghost", job.entry)
    (store.work_dir / f"{job.recording_id}_hls").mkdir()

    sweeper = _sweeper(store)
    assert [c.reason for c in sweeper.find_candidates()] == ["ghost"]
    report = sweeper.sweep()

    assert report.deleted == [job.recording_id]
    assert report.finalized == []
    assert not store.job_path(job.recording_id).exists()
    assert not store.info_exists(job.recording_id)
    assert not (store.work_dir / f"{job.recording_id}_hls").exists()
    assert store.read_cached_entry("cache-ghost") is None


def test_zombie_job_is_finalized(store) -> None:
    job = make_job(store, direct=True)
    Path(job.output_file).write_bytes(b"partial")
    write_status(job.status_file, "STATUS=preparing", "PID=123", "STATUS=recording", "CONTENT_LENGTH=7")
    Path(job.log_file).write_text("opening stream\n\nsegment 1 written\n", encoding="utf-8")
    store.write_job(job)

    sweeper = _sweeper(store)
    assert [c.reason for c in sweeper.find_candidates()] == ["zombie"]
    report = sweeper.sweep()

    assert report.finalized == [job.recording_id]
    info = store.read_info(job.recording_id)
    assert info.status == {
        "STATUS": ["preparing", "recording"],
        "PID": ["123"],
        "CONTENT_LENGTH": ["7"],
    }
    assert info.logs == ["opening stream", "segment 1 written"]
    assert (store.media_dir / "the_show.mp4").read_bytes() == b"partial"
    assert store.list_jobs() == []
    assert not Path(job.status_file).exists()
    assert not Path(job.log_file).exists()


def test_unfinalized_job_without_final_media_is_ghost(store) -> None:
    job = make_job(store)
    Path(job.output_file).write_bytes(b"never moved")
    write_status(job.status_file, "STATUS=done")
    path = store.write_job(job)
    age_file(path, 7200)
    sweeper = _sweeper(store, min_age=3600)

    assert [c.reason for c in sweeper.find_candidates()] == ["ghost"]
    report = sweeper.sweep()

    assert report.deleted == [job.recording_id]
    assert not path.exists()
    assert not Path(job.status_file).exists()


def test_running_job_is_left_alone(store) -> None:
    job = make_job(store, direct=True)
    Path(job.output_file).write_bytes(b"partial")
    write_status(job.status_file, "STATUS=recording", "PID=123")
    store.write_job(job)

    report = _sweeper(store, alive={123}).sweep()

    assert report.candidates == 0
    assert store.job_path(job.recording_id).exists()


def test_stopped_job_is_finalized_as_done(store) -> None:
    job = make_job(store, direct=True)
    Path(job.output_file).write_bytes(b"media")
    write_status(job.status_file, "STATUS=recording", "PID=123", "STATUS=stopped")
    store.write_job(job)

    candidates = _sweeper(store, alive={123}).find_candidates()

    assert [c.reason for c in candidates] == ["done"]


def test_young_records_need_force(store) -> None:
    job = make_job(store, direct=True)
    Path(job.output_file).write_bytes(b"live data")
    write_status(job.status_file, "STATUS=recording", "PID=123")
    store.write_job(job)
    sweeper = _sweeper(store, alive={123}, min_age=3600)

    assert sweeper.find_candidates() == []
    report = sweeper.sweep(force=True)

    assert report.finalized == [job.recording_id]
    assert store.info_exists(job.recording_id)
    assert (store.media_dir / "the_show.mp4").exists()


def test_min_age_gate_applies_to_zombies(store) -> None:
    job = make_job(store, direct=True)
    Path(job.output_file).write_bytes(b"partial")
    write_status(job.status_file, "STATUS=recording", "PID=123")
    path = store.write_job(job)
    sweeper = _sweeper(store, min_age=3600)

    assert sweeper.find_candidates() == []
    age_file(path, 7200)
    assert [c.reason for c in sweeper.find_candidates()] == ["zombie"]


def test_already_finalized_is_skipped_unless_forced(store) -> None:
    job = make_job(store)
    final = Path(job.final_output_file)
    final.write_bytes(b"media")
    store.write_job(job)
    write_status(job.status_file, "STATUS=recording", "PID=123")
    store.write_info(InfoRecord(job=job, logs=[], status={"STATUS": ["recording"]}))
    sweeper = _sweeper(store, alive={123})

    assert sweeper.find_candidates() == []
    assert [c.reason for c in sweeper.find_candidates(force=True)] == ["forced"]


def test_scheduled_jobs_are_not_swept(store) -> None:
    scheduler = FakeScheduler()
    job = make_job(store, cache_key="cache-1")
    scheduler.add("now + 1 hour", "Recording", f"bash /opt/record.sh --cacheKey cache-1 --outputFile {job.output_file}")
    store.write_job(job)
    earlier = make_job(store, "recording-250101T000000-8", cache_key="cache-1", final_name="earlier.mp4")
    store.write_job(earlier)

    report = _sweeper(store, scheduler=scheduler).sweep()

    assert report.skipped_scheduled == [job.recording_id]
    assert report.deleted == [earlier.recording_id]
    assert store.job_path(job.recording_id).exists()


def test_has_ended_uses_status_then_pid_then_grace(store) -> None:
    job = make_job(store, "live-250513T201125-1", kind=JobKind.LIVE)
    path = store.write_job(job)
    sweeper = CleanupSweeper(store, liveness=lambda pid: pid == 900, start_grace_seconds=60)

    assert not sweeper.has_ended(job)
    age_file(path, 120)
    assert sweeper.has_ended(job)

    write_status(job.status_file, "STATUS=live", "PID=900")
    assert not sweeper.has_ended(job)
    write_status(job.status_file, "STATUS=live", "PID=901")
    assert sweeper.has_ended(job)
    write_status(job.status_file, "STATUS=live", "PID=900", "STATUS=stopped")
    assert sweeper.has_ended(job)


def test_finalize_ended_skips_age_gate_and_running_jobs(store) -> None:
    ended = make_job(store, "recording-250513T201125-1", cache_key="cache-1")
    Path(ended.output_file).write_bytes(b"media")
    write_status(ended.status_file, "STATUS=recording", "PID=123", "STATUS=done")
    store.write_job(ended)
    running = make_job(store, "recording-250513T201125-2", cache_key="cache-1", final_name="other.mp4")
    write_status(running.status_file, "STATUS=recording", "PID=124")
    store.write_job(running)
    sweeper = _sweeper(store, alive={124}, min_age=3600)

    report = sweeper.finalize_ended(cache_key="cache-1")

    assert report.finalized == [ended.recording_id]
    assert store.info_exists(ended.recording_id)
    assert (store.media_dir / "the_show.mp4").read_bytes() == b"media"
    assert [job.recording_id for job in store.list_jobs()] == [running.recording_id]


def test_finalize_ended_deletes_jobs_that_left_nothing(store) -> None:
    job = make_job(store, "live-250513T201125-3", kind=JobKind.LIVE, cache_key="cache-live")
    write_status(job.status_file, "STATUS=error")
    store.write_job(job)
    store.write_cached_entry("cache-live", job.entry)

    report = _sweeper(store).finalize_ended(kind=JobKind.LIVE)

    assert report.deleted == [job.recording_id]
    assert store.list_jobs() == []
    assert store.read_cached_entry("cache-live") is None


def test_non_object_job_records_do_not_break_the_sweep(store) -> None:
    (store.jobs_dir / "recording-250101T000000-1.json").write_text("[]", encoding="utf-8")
    (store.jobs_dir / "recording-250101T000000-2.json").write_text('"x"', encoding="utf-8")
    job = make_job(store, direct=True)
    Path(job.output_file).write_bytes(b"media")
    write_status(job.status_file, "STATUS=done")
    store.write_job(job)

    report = _sweeper(store).sweep()

    assert report.finalized == [job.recording_id]
    assert store.list_jobs() == []


def test_delete_old_dangling_removes_orphans_only(store) -> None:
    job = make_job(store, cache_key="cache-used")
    store.write_job(job)
    store.write_cached_entry("cache-used", job.entry)
    store.write_cached_entry("cache-orphan", job.entry)
    write_status(job.status_file, "STATUS=recording")
    (store.work_dir / "stale.mp4.log").write_text("old\n", encoding="utf-8")
    (store.work_dir / "recording-250101T000000-1_hls").mkdir()

    finished = make_job(store, "recording-250101T000000-2", final_name="kept.mp4")
    Path(finished.final_output_file).write_bytes(b"media")
    store.write_info(InfoRecord(job=finished, logs=[], status={}))
    orphan = make_job(store, "recording-250101T000000-3", final_name="gone.mp4")
    store.write_info(InfoRecord(job=orphan, logs=[], status={}))

    removed = _sweeper(store).delete_old_dangling()

    assert removed == 5
    assert store.cache_path("cache-used").exists()
    assert not store.cache_path("cache-orphan").exists()
    assert Path(job.status_file).exists()
    assert not (store.work_dir / "stale.mp4.log").exists()
    assert not (store.work_dir / "recording-250101T000000-1_hls").exists()
    assert store.info_exists(finished.recording_id)
    assert Path(f"{finished.final_output_file}.json").exists()
    assert not store.info_exists(orphan.recording_id)
    assert not (store.media_dir / "gone.mp4.json").exists()


def test_delete_old_dangling_respects_age(store) -> None:
    store.write_cached_entry("cache-orphan", make_job(store).entry)
    sweeper = _sweeper(store, min_age=3600)

    assert sweeper.delete_old_dangling() == 0
    assert sweeper.delete_old_dangling(force=True) == 1
