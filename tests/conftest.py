import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("STREAMHUB_DISABLE_STARTUP_TASKS", "1")

from tests._helpers import FakeScheduler, RecordingLauncher  # noqa: E402


@pytest.fixture
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def store(tmp_path):
    from apps.api.services.storage import ArtifactStore

    return ArtifactStore(tmp_path / "data")


@pytest.fixture
def entry():
    from apps.api.services.jobs import PlaylistEntry

    return PlaylistEntry(
        name="The Big Show: Finale!",
        url="http://provider-a.example:8080/movie/alice/s3cret/897760.mkv",
        group_title="Movies",
        tvg_logo="http://img.example/logo.png",
    )


@pytest.fixture
def hub(tmp_path, launcher, scheduler):
    """Service graph on a temp data root, installed as the global hub.

    ``hub.alive_pids`` decides which PIDs the liveness check reports as running.
    """
    from apps.api.services import hub as hub_module
    from apps.api.services import live_watcher
    from apps.api.services.streaming_services import ServiceRegistry, StreamingService

    services = ServiceRegistry(
        [
            StreamingService(
                id="provider-a",
                name="Provider A",
                server="http://provider-a.example:8080",
                username="alice",
                password="s3cret",
                max_concurrent_viewers=2,
            )
        ]
    )
    alive_pids: set = set()
    instance = hub_module.build_hub(
        tmp_path / "data",
        launcher=launcher,
        scheduler=scheduler,
        services=services,
        liveness=lambda pid: pid in alive_pids,
        min_cleanup_age_seconds=0,
    )
    instance.alive_pids = alive_pids  # type: ignore[attr-defined]
    hub_module.set_hub(instance)
    live_watcher.reset_live_watcher()
    yield instance
    live_watcher.reset_live_watcher()
    hub_module.set_hub(None)
