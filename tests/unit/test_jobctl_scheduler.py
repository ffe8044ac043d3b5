from __future__ import annotations

import pytest

from apps.api.services.scheduler import JobScheduler, SchedulerError

JOBCTL = r"""#!/usr/bin/env bash
case "$1" in
  list)
    echo '{"ok": true, "jobs": [{"id": "3", "datetime": "2025-05-18 02:15", "description": "Recording", "command": "bash /opt/record.sh --cacheKey cache-9 --outputFile /w/a.mp4"}]}'
    ;;
  add)
    printf '{"ok": true, "job": {"id": "4", "datetime": "%s", "description": "%s", "command": "true"}}\n' "$2" "$3"
    ;;
  delete)
    echo '{"ok": false, "error": "no such job"}'
    ;;
  *)
    echo 'not json'
    ;;
esac
"""


@pytest.fixture
def jobctl(tmp_path) -> JobScheduler:
    script = tmp_path / "jobctl.sh"
    script.write_text(JOBCTL, encoding="utf-8")
    return JobScheduler(script, timeout=10)


def test_list_parses_cache_keys(jobctl) -> None:
    jobs = jobctl.list()

    assert [job.id for job in jobs] == ["3"]
    assert jobs[0].cache_key == "cache-9"
    assert jobs[0].output_file == "/w/a.mp4"
    assert jobctl.pending_cache_keys() == {"cache-9"}
    assert [job.output_file for job in jobctl.pending_jobs()] == ["/w/a.mp4"]


def test_add_returns_scheduled_job(jobctl) -> None:
    job = jobctl.add("2025-05-19 20:00", "Recording Late Show", "bash /opt/record.sh")

    assert job.id == "4"
    assert job.datetime == "2025-05-19 20:00"
    assert job.description == "Recording Late Show"


def test_errors_raise_scheduler_error(jobctl) -> None:
    with pytest.raises(SchedulerError, match="no such job"):
        jobctl.delete("12")
    with pytest.raises(SchedulerError, match="invalid JSON"):
        jobctl.get("12")


def test_pending_keys_empty_when_jobctl_missing(tmp_path) -> None:
    scheduler = JobScheduler(tmp_path / "missing.sh", timeout=10)

    with pytest.raises(SchedulerError):
        scheduler.list()
    assert scheduler.pending_jobs() == []
    assert scheduler.pending_cache_keys() == set()
