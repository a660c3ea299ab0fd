"""Tests for the data orchestrator.

Tests:
- Write-through when online, queueing when offline
- Remote write failures surface as RemoteWriteError after caching
- Read path: fresh from remote, cached fallback, absent
- Reconnection drains the queue and notifies
- Dashboard loading, default profile creation
- Logout
"""

import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from fitplan.core import DataOrchestrator
from fitplan.errors import RemoteWriteError
from fitplan.types import DEFAULT_PROFILE, ResourceState
from fitplan.utils import profile_key, sessions_key, stats_key, weights_key


class TestProfileWrites:
    def test_online_save_writes_through(self, orchestrator, cache, queue, remote):
        saved = orchestrator.save_profile("u1", {"name": "Alice", "weight": 62})

        assert saved["notifications"] is True
        assert cache.get(profile_key("u1")) == saved
        assert remote.profiles["u1"]["name"] == "Alice"
        assert queue.pending_count() == 0
        assert orchestrator.resource_state("profile", "u1") == ResourceState.FRESH

    def test_offline_save_is_queued(self, orchestrator, cache, queue, monitor, remote):
        monitor.report(False)
        saved = orchestrator.save_profile("u1", {"name": "Alice"})

        assert cache.get(profile_key("u1")) == saved
        assert remote.write_calls == []
        [item] = queue.peek_all()
        assert item.action == "update"
        assert item.collection == "users"
        assert item.payload == {"user_id": "u1", "profile": saved}
        assert orchestrator.resource_state("profile", "u1") == ResourceState.CACHED

    def test_online_failure_raises_after_caching(self, orchestrator, cache, queue, remote):
        remote.fail = True

        with pytest.raises(RemoteWriteError) as exc_info:
            orchestrator.save_profile("u1", {"name": "Alice"})

        assert exc_info.value.collection == "users"
        assert exc_info.value.owner_id == "u1"
        assert cache.get(profile_key("u1"))["name"] == "Alice"
        assert queue.pending_count() == 0

    def test_explicit_notifications_setting_is_kept(self, orchestrator):
        saved = orchestrator.save_profile("u1", {"name": "Alice", "notifications": False})
        assert saved["notifications"] is False

    @pytest.mark.parametrize("owner_id", ["", None])
    def test_owner_required(self, orchestrator, owner_id):
        with pytest.raises(ValueError):
            orchestrator.save_profile(owner_id, {"name": "Alice"})

    def test_empty_profile_rejected(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.save_profile("u1", {})

    def test_update_after_cache_expiry_keeps_stored_fields(self, orchestrator, cache, remote, clock):
        orchestrator.save_profile("u1", {"name": "Alice", "age": 41, "city": "Lyon"})
        clock.advance(49 * 3600)
        assert cache.get(profile_key("u1")) is None

        updated = orchestrator.update_profile("u1", weekly_goal=3)

        assert updated["name"] == "Alice"
        stored = remote.profiles["u1"]
        assert (stored["name"], stored["age"], stored["city"]) == ("Alice", 41, "Lyon")
        assert stored["weekly_goal"] == 3

    def test_update_without_any_profile_starts_from_defaults(self, orchestrator, monitor):
        monitor.report(False)
        updated = orchestrator.update_profile("u1", weekly_goal=3)
        assert updated["name"] == DEFAULT_PROFILE["name"]
        assert updated["weekly_goal"] == 3

    def test_unserializable_profile_is_not_reported_saved(self, orchestrator, cache, queue, monitor):
        monitor.report(False)
        profile = {"name": "Alice", "birthday": datetime(1990, 4, 2, tzinfo=timezone.utc)}

        with pytest.raises(ValueError):
            orchestrator.save_profile("u1", profile)

        assert cache.get(profile_key("u1")) is None
        assert queue.pending_count() == 0

    def test_unserializable_profile_never_reaches_remote(self, orchestrator, remote):
        with pytest.raises(ValueError):
            orchestrator.save_profile("u1", {"name": "Alice", "avatar": object()})
        assert remote.write_calls == []

    def test_update_profile_merges(self, orchestrator, cache):
        orchestrator.save_profile("u1", {"name": "Alice", "weight": 62})
        updated = orchestrator.update_profile("u1", weight=60, city="Lyon")
        assert updated["name"] == "Alice"
        assert updated["weight"] == 60
        assert cache.get(profile_key("u1"))["city"] == "Lyon"

    def test_register_user_offline_queues_create(self, orchestrator, cache, queue, monitor):
        monitor.report(False)
        orchestrator.register_user("u1", {"name": "Alice"})

        assert queue.peek_all()[0].action == "create"
        assert cache.get(stats_key("u1"))["total_sessions"] == 0


class TestActivityWrites:
    def test_add_session_online(self, orchestrator, cache, remote):
        session = orchestrator.add_session(
            "u1", {"activity": "yoga", "duration": 30, "calories": 120}
        )

        assert session["id"]
        assert session["user_id"] == "u1"
        assert session["completed"] is True
        assert remote.sessions[0]["id"] == session["id"]
        assert cache.get(sessions_key("u1"))[0]["id"] == session["id"]
        stats = cache.get(stats_key("u1"))
        assert stats["total_sessions"] == 1
        assert stats["total_calories"] == 120

    def test_add_session_offline_prepends_and_queues(self, orchestrator, cache, queue, monitor):
        monitor.report(False)
        first = orchestrator.add_session("u1", {"activity": "marche", "duration": 20})
        second = orchestrator.add_session("u1", {"activity": "course", "duration": 25})

        cached = cache.get(sessions_key("u1"))
        assert [s["id"] for s in cached] == [second["id"], first["id"]]
        assert [item.collection for item in queue.peek_all()] == ["sessions", "sessions"]
        assert queue.peek_all()[0].payload["id"] == first["id"]

    def test_session_datetime_is_serialized(self, orchestrator, cache):
        when = datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)
        session = orchestrator.add_session("u1", {"activity": "yoga", "date": when})
        assert session["date"] == when.isoformat()

    def test_unserializable_session_is_rejected(self, orchestrator, cache, queue, monitor):
        monitor.report(False)
        started = datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)

        with pytest.raises(ValueError):
            orchestrator.add_session("u1", {"activity": "yoga", "started_at": started})

        assert cache.get(sessions_key("u1")) is None
        assert queue.pending_count() == 0

    def test_online_session_reloads_stats_beyond_cached_history(self, orchestrator, cache, remote):
        for day in range(1, 31):
            remote.sessions.append(
                {
                    "id": f"s{day}",
                    "user_id": "u1",
                    "activity": "marche",
                    "date": f"2024-01-{day:02d}T08:00:00+00:00",
                    "calories": 10,
                    "completed": True,
                }
            )
        assert len(orchestrator.get_sessions("u1").value) == 20
        assert orchestrator.get_stats("u1").value["total_sessions"] == 30

        orchestrator.add_session("u1", {"activity": "yoga", "calories": 50})

        stats = cache.get(stats_key("u1"))
        assert stats["total_sessions"] == 31
        assert stats["total_calories"] == 350

    def test_offline_session_increments_cached_stats(self, orchestrator, cache, monitor):
        cache.set(
            stats_key("u1"),
            {"total_sessions": 30, "total_calories": 300, "total_duration": 900, "streak_days": 4},
        )
        monitor.report(False)

        orchestrator.add_session("u1", {"activity": "yoga", "calories": 50, "duration": 20})

        stats = cache.get(stats_key("u1"))
        assert stats["total_sessions"] == 31
        assert stats["total_calories"] == 350
        assert stats["total_duration"] == 920
        assert stats["streak_days"] == 4

    def test_session_requires_activity(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.add_session("u1", {"duration": 30})

    def test_add_weight_online(self, orchestrator, cache, remote):
        entry = orchestrator.add_weight_entry("u1", 68.2, "après vacances")

        assert remote.weights[0]["id"] == entry["id"]
        assert remote.weights[0]["notes"] == "après vacances"
        assert cache.get(weights_key("u1"))[0]["weight"] == 68.2
        assert cache.get(profile_key("u1")) is None

    def test_add_weight_offline(self, orchestrator, queue, monitor):
        monitor.report(False)
        entry = orchestrator.add_weight_entry("u1", 68.2)

        [item] = queue.peek_all()
        assert (item.action, item.collection) == ("create", "weights")
        assert item.payload == entry

    @pytest.mark.parametrize("weight", [0, -3, "70", True, None])
    def test_invalid_weight(self, orchestrator, weight):
        with pytest.raises(ValueError):
            orchestrator.add_weight_entry("u1", weight)


class TestReadPath:
    def test_fresh_read_overwrites_cache(self, orchestrator, cache, remote):
        cache.set(profile_key("u1"), {"name": "Old"})
        remote.profiles["u1"] = {"name": "New"}

        loaded = orchestrator.get_profile("u1")

        assert loaded.value == {"name": "New"}
        assert loaded.state == ResourceState.FRESH
        assert cache.get(profile_key("u1")) == {"name": "New"}

    def test_remote_failure_falls_back_to_cache(self, orchestrator, cache, remote, caplog):
        cache.set(profile_key("u1"), {"name": "Cached"})
        remote.fail = True

        loaded = orchestrator.get_profile("u1")

        assert loaded.value == {"name": "Cached"}
        assert loaded.state == ResourceState.CACHED
        assert "using cache" in caplog.text

    def test_offline_read_uses_cache(self, orchestrator, cache, monitor, remote):
        monitor.report(False)
        cache.set(sessions_key("u1"), [{"id": "s1"}])
        remote.sessions.append({"id": "s2", "user_id": "u1"})

        loaded = orchestrator.get_sessions("u1")
        assert loaded.value == [{"id": "s1"}]
        assert loaded.state == ResourceState.CACHED

    def test_absent_everywhere(self, orchestrator, monitor):
        monitor.report(False)

        assert orchestrator.get_profile("u1").state == ResourceState.ABSENT
        assert orchestrator.get_profile("u1").value is None
        assert orchestrator.get_sessions("u1").value == []
        assert orchestrator.get_weight_history("u1").value == []
        assert orchestrator.resource_state("weights", "u1") == ResourceState.ABSENT

    def test_weather_is_cached_by_city(self, cache, queue, reconciler, monitor, remote):
        weather = MagicMock()
        weather.current_weather.return_value = {"temp": 18, "condition": "sunny"}
        orchestrator = DataOrchestrator(cache, queue, reconciler, monitor, remote, weather=weather)

        assert orchestrator.get_weather("Lyon").state == ResourceState.FRESH
        monitor.report(False)
        cached = orchestrator.get_weather("LYON")
        assert cached.value == {"temp": 18, "condition": "sunny"}
        assert cached.state == ResourceState.CACHED
        weather.current_weather.assert_called_once_with("Lyon")


class TestReconnect:
    def test_reconnect_drains_and_notifies(self, orchestrator, queue, monitor, remote, notifier):
        monitor.report(False)
        orchestrator.save_profile("u1", {"name": "Alice"})
        orchestrator.add_weight_entry("u1", 70)
        assert orchestrator.pending_sync_count == 2

        monitor.report(True)

        assert orchestrator.pending_sync_count == 0
        assert remote.profiles["u1"]["name"] == "Alice"
        assert len(remote.weights) == 1
        assert notifier.history[-1] == ("Données synchronisées", "2 éléments synchronisés", "success")

    def test_nothing_to_sync_does_not_notify(self, orchestrator, monitor, notifier):
        monitor.report(False)
        monitor.report(True)
        assert notifier.history == []

    def test_closed_orchestrator_ignores_transitions(self, orchestrator, queue, monitor, remote):
        monitor.report(False)
        orchestrator.save_profile("u1", {"name": "Alice"})
        orchestrator.close()

        monitor.report(True)
        assert queue.pending_count() == 1

    def test_status(self, orchestrator, monitor):
        monitor.report(False)
        orchestrator.save_profile("u1", {"name": "Alice"})
        status = orchestrator.status()
        assert status["online"] is False
        assert status["pending"] == 1
        assert status["degraded"] is False
        assert status["storage_mode"] == "sqlite"
        assert status["last_drain"] is None


class TestLoadUserData:
    def test_new_user_online_gets_default_profile(self, orchestrator, remote):
        data = orchestrator.load_user_data("u1")

        assert data.online is True
        assert data.profile.value["name"] == DEFAULT_PROFILE["name"]
        assert data.profile.value["city"] == "Paris"
        assert data.profile.state == ResourceState.FRESH
        assert remote.profiles["u1"]["name"] == DEFAULT_PROFILE["name"]
        assert data.stats.value["total_sessions"] == 0
        assert data.weather.state == ResourceState.ABSENT

    def test_new_user_offline_default_profile_is_queued(self, orchestrator, queue, monitor):
        monitor.report(False)
        data = orchestrator.load_user_data("u1")

        assert data.online is False
        assert data.profile.state == ResourceState.CACHED
        [item] = queue.peek_all()
        assert (item.action, item.collection) == ("create", "users")

    def test_pending_writes_pushed_before_refresh(self, orchestrator, queue, remote):
        remote.profiles["u1"] = {"name": "Remote"}
        queue.enqueue("update", "users", {"user_id": "u1", "profile": {"name": "Local"}})

        data = orchestrator.load_user_data("u1")

        assert data.profile.value["name"] == "Local"
        assert queue.pending_count() == 0

    def test_to_dict(self, orchestrator):
        result = orchestrator.load_user_data("u1").to_dict()
        assert result["user_id"] == "u1"
        assert result["profile"]["state"] == "fresh"


class TestLogout:
    def test_logout_online_syncs_then_clears(self, orchestrator, cache, queue, monitor, remote):
        monitor.report(False)
        orchestrator.save_profile("u1", {"name": "Alice"})
        monitor.report(True)
        orchestrator.add_session("u1", {"activity": "yoga"})

        assert orchestrator.logout() is True
        assert cache.keys() == []
        assert queue.pending_count() == 0
        assert "u1" in remote.profiles

    def test_logout_offline_discards_pending(self, orchestrator, cache, queue, monitor, caplog):
        monitor.report(False)
        orchestrator.save_profile("u1", {"name": "Alice"})

        with caplog.at_level(logging.WARNING):
            orchestrator.logout()

        assert queue.pending_count() == 0
        assert cache.get(profile_key("u1")) is None
        assert "unsynced changes" in caplog.text


class TestOfflineScenario:
    def test_edit_offline_then_reconnect(self, orchestrator, queue, monitor, remote):
        """Profile edit and session while offline, pushed once on reconnect."""
        orchestrator.save_profile("u1", {"name": "Alice"})
        monitor.report(False)

        orchestrator.update_profile("u1", weekly_goal=4)
        session = orchestrator.add_session("u1", {"activity": "vélo", "duration": 45})
        assert remote.profiles["u1"].get("weekly_goal") is None
        assert orchestrator.get_profile("u1").value["weekly_goal"] == 4

        monitor.report(True)

        assert remote.profiles["u1"]["weekly_goal"] == 4
        assert [s["id"] for s in remote.sessions] == [session["id"]]
        assert orchestrator.sync_now() == 0
        assert len(remote.write_calls) == 3

    def test_weight_logged_offline_then_reconnect(self, orchestrator, queue, monitor, remote):
        """One weight entry while offline, pushed exactly once on reconnect."""
        monitor.report(False)
        entry = orchestrator.add_weight_entry("u1", 67.4, "après course")

        assert queue.pending_count() == 1
        assert remote.write_calls == []

        monitor.report(True)

        assert queue.pending_count() == 0
        assert remote.write_calls == [("add_weight_entry", "u1", 67.4, "après course")]
        assert [w["id"] for w in remote.weights] == [entry["id"]]
        assert orchestrator.sync_now() == 0
