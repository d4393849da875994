"""Tests for the resource watcher."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException

from sail_operator.models import EventType
from sail_operator.watch import ResourceWatcher


def istio(generation=1, state=""):
    return {"kind": "Istio", "metadata": {"name": "default", "generation": generation}, "status": {"state": state}}


class TestResourceWatcher:
    """Test cases for ResourceWatcher."""

    @pytest.fixture
    def store(self):
        """Store mock providing a list function."""
        store = MagicMock()
        store.list_function.return_value = (MagicMock(name="list_cluster_custom_object"), ("sailoperator.io", "v1", "istios"))
        return store

    @pytest.fixture
    def watcher(self, store):
        """Watcher over the mock store."""
        return ResourceWatcher(store)

    def test_to_watch_event_tracks_old_object(self, watcher):
        """Test updates carry the previously seen object."""
        added = watcher.to_watch_event("Istio", "ADDED", istio())
        modified = watcher.to_watch_event("Istio", "MODIFIED", istio(state="Healthy"))

        assert added.event_type == EventType.ADDED
        assert added.old_object is None
        assert modified.event_type == EventType.MODIFIED
        assert modified.old_object == istio()
        assert modified.object == istio(state="Healthy")

    def test_delete_forgets_object(self, watcher):
        """Test a deleted object is no longer tracked."""
        watcher.to_watch_event("Istio", "ADDED", istio())
        deleted = watcher.to_watch_event("Istio", "DELETED", istio())
        re_added = watcher.to_watch_event("Istio", "MODIFIED", istio(2))

        assert deleted.old_object is None
        assert re_added.old_object is None

    def test_error_and_bookmark_are_skipped(self, watcher):
        """Test non-object events produce no watch event."""
        assert watcher.to_watch_event("Istio", "ERROR", {"metadata": {}}) is None
        assert watcher.to_watch_event("Istio", "BOOKMARK", istio()) is None

    def test_handler_errors_are_contained(self, watcher):
        """Test a failing handler does not stop the others."""
        received = []
        watcher.register_handler("Istio", MagicMock(side_effect=RuntimeError("boom")))
        watcher.register_handler("Istio", received.append)

        watcher._emit_event(watcher.to_watch_event("Istio", "ADDED", istio()))

        assert len(received) == 1

    def test_watch_restarts_after_expiry(self, watcher, store):
        """Test a 410 Gone restarts the watch and events keep flowing."""
        received = []

        def handle(event):
            received.append(event)
            watcher.stop()

        watcher.register_handler("Istio", handle)
        expired = MagicMock()
        expired.stream.side_effect = ApiException(status=410)
        restarted = MagicMock()
        restarted.stream.return_value = iter([{"type": "ADDED", "raw_object": istio(), "object": istio()}])

        with patch("sail_operator.watch.k8s_watch.Watch", side_effect=[expired, restarted]):
            watcher.watch("Istio", label_selector="managed-by=sail-operator", timeout_seconds=30)

        fn, args = store.list_function.return_value
        restarted.stream.assert_called_once_with(
            fn, *args, label_selector="managed-by=sail-operator", timeout_seconds=30
        )
        assert [e.name for e in received] == ["default"]
        assert watcher._watches == []

    def test_restart_forgets_objects_deleted_meanwhile(self, watcher):
        """Test objects missing from the restarted stream are no longer tracked."""
        gone = {"kind": "Istio", "metadata": {"name": "gone", "generation": 1}}
        watcher.to_watch_event("Istio", "ADDED", gone)
        watcher.to_watch_event("Pod", "ADDED", {"metadata": {"name": "web", "namespace": "apps"}})
        watcher.register_handler("Istio", lambda event: watcher.stop())
        expired = MagicMock()
        expired.stream.side_effect = ApiException(status=410)
        restarted = MagicMock()
        restarted.stream.return_value = iter([{"type": "ADDED", "raw_object": istio(), "object": istio()}])

        with patch("sail_operator.watch.k8s_watch.Watch", side_effect=[expired, restarted]):
            watcher.watch("Istio")

        assert set(watcher._last_seen) == {("Istio", None, "default"), ("Pod", "apps", "web")}
        assert watcher.to_watch_event("Istio", "MODIFIED", gone).old_object is None

    def test_watch_raises_other_errors(self, watcher):
        """Test API errors other than expiry propagate."""
        failing = MagicMock()
        failing.stream.side_effect = ApiException(status=403)

        with patch("sail_operator.watch.k8s_watch.Watch", return_value=failing):
            with pytest.raises(ApiException):
                watcher.watch("Istio")

    def test_stop_stops_active_watches(self, watcher):
        """Test stop() stops every running watch."""
        w = MagicMock()
        watcher._watches.append(w)

        watcher.stop()

        w.stop.assert_called_once()
        watcher.watch("Istio")
