"""Tests for KubernetesResourceStore."""

from unittest.mock import MagicMock, Mock, patch

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from sail_operator.errors import NotFoundError, StoreError
from sail_operator.store import KubernetesResourceStore, new_status_patch


@pytest.fixture
def api_client():
    """Mock API client that serializes model objects to a fixed dict."""
    mock = MagicMock(spec=client.ApiClient)
    mock.sanitize_for_serialization.side_effect = lambda obj: {"serialized": obj.metadata.name}
    return mock


@pytest.fixture
def store(api_client):
    """Store with mocked typed APIs."""
    store = KubernetesResourceStore(api_client=api_client)
    store.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    store.core_v1 = MagicMock(spec=client.CoreV1Api)
    store.apps_v1 = MagicMock(spec=client.AppsV1Api)
    store.admission_v1 = MagicMock(spec=client.AdmissionregistrationV1Api)
    store.autoscaling_v2 = MagicMock(spec=client.AutoscalingV2Api)
    return store


class TestKubernetesResourceStore:
    """Test cases for KubernetesResourceStore."""

    def test_get_custom_resource(self, store):
        """Test custom resources are read through the custom objects API."""
        store.custom_objects.get_cluster_custom_object.return_value = {"metadata": {"name": "default"}}

        result = store.get("Istio", "default")

        store.custom_objects.get_cluster_custom_object.assert_called_once_with(
            "sailoperator.io", "v1", "istios", "default"
        )
        assert result == {"metadata": {"name": "default"}}

    def test_get_deployment_is_serialized(self, store):
        """Test typed objects are converted to dicts."""
        deployment = Mock()
        deployment.metadata.name = "istiod"
        store.apps_v1.read_namespaced_deployment.return_value = deployment

        result = store.get("Deployment", "istiod", "istio-system")

        store.apps_v1.read_namespaced_deployment.assert_called_once_with("istiod", "istio-system")
        assert result == {"serialized": "istiod"}

    def test_get_not_found(self, store):
        """Test a 404 becomes NotFoundError."""
        store.core_v1.read_namespace.side_effect = ApiException(status=404)

        with pytest.raises(NotFoundError):
            store.get("Namespace", "missing")

    def test_get_failure(self, store):
        """Test other API failures become StoreError with the status."""
        store.core_v1.read_namespace.side_effect = ApiException(status=500, reason="Internal")

        with pytest.raises(StoreError) as exc_info:
            store.get("Namespace", "istio-system")
        assert exc_info.value.status == 500

    def test_get_unsupported_kind(self, store):
        """Test unknown kinds are rejected."""
        with pytest.raises(StoreError):
            store.get("ConfigMap", "x", "y")

    def test_list_custom_resources(self, store):
        """Test custom resource lists return their items."""
        store.custom_objects.list_cluster_custom_object.return_value = {
            "items": [{"metadata": {"name": "a"}}, {"metadata": {"name": "b"}}]
        }

        result = store.list("IstioRevision")

        assert [item["metadata"]["name"] for item in result] == ["a", "b"]

    def test_list_pods_all_namespaces(self, store):
        """Test pods are listed across namespaces with the label selector."""
        pod = Mock()
        pod.metadata.name = "pod-1"
        store.core_v1.list_pod_for_all_namespaces.return_value = Mock(items=[pod])

        result = store.list("Pod", label_selector="app=x")

        store.core_v1.list_pod_for_all_namespaces.assert_called_once_with(label_selector="app=x")
        assert result == [{"serialized": "pod-1"}]

    def test_list_function_namespaced(self, store):
        """Test namespaced list calls carry the namespace argument."""
        fn, args = store.list_function("DaemonSet", "istio-cni")
        assert fn == store.apps_v1.list_namespaced_daemon_set
        assert args == ("istio-cni",)

    def test_list_function_service_accounts(self, store):
        """Test ServiceAccounts are listed across all namespaces by default."""
        fn, args = store.list_function("ServiceAccount")
        assert fn == store.core_v1.list_service_account_for_all_namespaces
        assert args == ()

    def test_create(self, store):
        """Test creating a custom resource."""
        obj = {"metadata": {"name": "default-1-2-0"}}
        store.custom_objects.create_cluster_custom_object.return_value = obj

        assert store.create("IstioRevision", obj) == obj
        store.custom_objects.create_cluster_custom_object.assert_called_once_with(
            "sailoperator.io", "v1", "istiorevisions", obj
        )

    def test_create_conflict_is_not_retried(self, store):
        """Test a 409 fails immediately."""
        store.custom_objects.create_cluster_custom_object.side_effect = ApiException(status=409, reason="Conflict")

        with pytest.raises(StoreError) as exc_info:
            store.create("IstioRevision", {"metadata": {"name": "x"}})

        assert exc_info.value.status == 409
        assert store.custom_objects.create_cluster_custom_object.call_count == 1

    def test_update_retries_server_errors(self, store):
        """Test server errors are retried."""
        obj = {"metadata": {"name": "x"}}
        store.custom_objects.replace_cluster_custom_object.side_effect = [
            ApiException(status=503, reason="Unavailable"),
            obj,
        ]

        with patch("time.sleep"):
            assert store.update("IstioRevision", obj) == obj
        assert store.custom_objects.replace_cluster_custom_object.call_count == 2

    def test_create_rejects_builtin_kinds(self, store):
        """Test the operator only writes its own kinds."""
        with pytest.raises(StoreError):
            store.create("Deployment", {"metadata": {"name": "x"}})

    def test_delete_not_found(self, store):
        """Test deleting a missing object raises NotFoundError."""
        store.custom_objects.delete_cluster_custom_object.side_effect = ApiException(status=404)

        with pytest.raises(NotFoundError):
            store.delete("IstioRevision", "gone")

    def test_delete_uses_background_propagation(self, store):
        """Test dependents are removed in the background."""
        store.delete("IstioRevision", "old")

        call_args = store.custom_objects.delete_cluster_custom_object.call_args
        assert call_args.args[:4] == ("sailoperator.io", "v1", "istiorevisions", "old")
        assert call_args.kwargs["body"].propagation_policy == "Background"

    def test_patch_status(self, store):
        """Test the status is replaced with a JSON patch."""
        status = {"state": "Healthy"}
        store.patch_status("Istio", "default", status)

        store.custom_objects.patch_cluster_custom_object_status.assert_called_once_with(
            "sailoperator.io", "v1", "istios", "default", new_status_patch(status)
        )

    def test_new_status_patch(self):
        """Test the status patch document."""
        assert new_status_patch({"a": 1}) == [{"op": "replace", "path": "/status", "value": {"a": 1}}]
