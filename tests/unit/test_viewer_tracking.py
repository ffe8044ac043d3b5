from __future__ import annotations

from apps.api.services.jobs import PlaylistEntry
from apps.api.services.viewers import ConsumerTracker, ViewerTracker


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_viewers_expire_after_timeout() -> None:
    clock = FakeClock()
    viewers = ViewerTracker(timeout=15, clock=clock)
    viewers.track("live-1", "10.0.0.1")
    clock.now += 10
    viewers.track("live-1", "10.0.0.2")

    clock.now += 10
    assert viewers.count("live-1") == 1
    assert viewers.list_active_ids() == ["live-1"]
    assert viewers.idle_ids() == []

    clock.now += 10
    assert viewers.count("live-1") == 0
    assert viewers.idle_ids() == ["live-1"]
    assert viewers.list_active_ids() == []
    assert viewers.tracked_ids() == ["live-1"]


def test_heartbeat_refreshes_viewer() -> None:
    clock = FakeClock()
    viewers = ViewerTracker(timeout=15, clock=clock)
    viewers.track("live-1", "10.0.0.1")
    clock.now += 14
    viewers.track("live-1", "10.0.0.1")
    clock.now += 14

    assert viewers.count("live-1") == 1


def test_unknown_recording_has_no_viewers() -> None:
    viewers = ViewerTracker(timeout=15)
    assert viewers.count("nope") == 0
    viewers.forget("nope")
    assert viewers.tracked_ids() == []


def test_consumers_count_per_service() -> None:
    consumers = ConsumerTracker(clock=FakeClock())
    entry = PlaylistEntry(name="Movie", url="http://provider-a.example/movie/1.mkv")
    consumers.add("player-1", "provider-a", entry)
    consumers.add("player-2", "provider-a")
    consumers.add("player-3", "provider-b")

    assert consumers.count_for_service("provider-a") == 2
    assert consumers.remove("player-1") is True
    assert consumers.remove("player-1") is False
    assert consumers.remove("never-added") is False
    assert consumers.count_for_service("provider-a") == 1
    assert sorted(c.consumer_id for c in consumers.items()) == ["player-2", "player-3"]
