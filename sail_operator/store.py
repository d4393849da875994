"""Resource store: get/list/create/update/delete/status-patch by kind."""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from kubernetes import client, config
from kubernetes.client import (
    AdmissionregistrationV1Api,
    ApiClient,
    AppsV1Api,
    AutoscalingV2Api,
    CoreV1Api,
    CustomObjectsApi,
)
from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .errors import NotFoundError, StoreError
from .models import API_GROUP, API_VERSION, Kind

logger = logging.getLogger(__name__)

# Plural resource names of the operator's own (cluster-scoped) kinds
CUSTOM_RESOURCE_PLURALS = {
    Kind.ISTIO.value: "istios",
    Kind.ISTIO_REVISION.value: "istiorevisions",
    Kind.ISTIO_REVISION_TAG.value: "istiorevisiontags",
    Kind.ISTIO_CNI.value: "istiocnis",
    Kind.ZTUNNEL.value: "ztunnels",
}

# Conflicts and rejected requests will not succeed on retry
_NON_RETRIABLE_STATUSES = (400, 403, 409, 422)


def new_status_patch(status: dict[str, Any]) -> list[dict[str, Any]]:
    """Build the JSON patch that replaces the whole status subresource."""
    return [{"op": "replace", "path": "/status", "value": status}]


def _is_retriable(exc: BaseException) -> bool:
    return isinstance(exc, StoreError) and exc.status not in _NON_RETRIABLE_STATUSES


def _store_error(action: str, kind: str, name: str, exc: ApiException) -> StoreError:
    err = StoreError(f"failed to {action} {kind} {name}: {exc.reason}", cause=exc)
    err.status = exc.status
    return err


class ResourceStore(ABC):
    """Eventually consistent access to cluster objects, as JSON-shaped dicts."""

    @abstractmethod
    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> dict[str, Any]:
        """
        Get an object.

        Raises:
            NotFoundError: If the object does not exist
            StoreError: If the request fails
        """

    @abstractmethod
    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """List objects of a kind, across all namespaces when namespace is None."""

    @abstractmethod
    def create(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        """Create an object and return the stored version."""

    @abstractmethod
    def update(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace an object and return the stored version."""

    @abstractmethod
    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        """Delete an object."""

    @abstractmethod
    def patch_status(self, kind: str, name: str, status: dict[str, Any]) -> None:
        """Replace the status subresource of an object."""


class KubernetesResourceStore(ResourceStore):
    """ResourceStore backed by the Kubernetes API server."""

    def __init__(
        self,
        kubeconfig_path: Optional[str] = None,
        api_client: Optional[ApiClient] = None,
    ):
        """
        Initialize the store.

        Args:
            kubeconfig_path: Path to a kubeconfig file; in-cluster config is
                used when neither this nor api_client is given
            api_client: Preconfigured API client

        Raises:
            ValueError: If the client cannot be configured
        """
        if api_client is None:
            try:
                if kubeconfig_path:
                    config.load_kube_config(config_file=kubeconfig_path)
                else:
                    config.load_incluster_config()
            except Exception as e:
                raise ValueError(f"Failed to initialize cluster connection: {e}") from e
            api_client = ApiClient()

        self.api_client = api_client
        self.custom_objects = CustomObjectsApi(api_client)
        self.core_v1 = CoreV1Api(api_client)
        self.apps_v1 = AppsV1Api(api_client)
        self.admission_v1 = AdmissionregistrationV1Api(api_client)
        self.autoscaling_v2 = AutoscalingV2Api(api_client)

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    def _plural(self, kind: str) -> str:
        try:
            return CUSTOM_RESOURCE_PLURALS[kind]
        except KeyError:
            raise StoreError(f"kind {kind} cannot be written by the operator") from None

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> dict[str, Any]:
        try:
            if kind in CUSTOM_RESOURCE_PLURALS:
                obj = self.custom_objects.get_cluster_custom_object(
                    API_GROUP, API_VERSION, CUSTOM_RESOURCE_PLURALS[kind], name
                )
            elif kind == Kind.NAMESPACE.value:
                obj = self.core_v1.read_namespace(name)
            elif kind == Kind.POD.value:
                obj = self.core_v1.read_namespaced_pod(name, namespace)
            elif kind == Kind.DEPLOYMENT.value:
                obj = self.apps_v1.read_namespaced_deployment(name, namespace)
            elif kind == Kind.DAEMON_SET.value:
                obj = self.apps_v1.read_namespaced_daemon_set(name, namespace)
            elif kind == Kind.MUTATING_WEBHOOK_CONFIGURATION.value:
                obj = self.admission_v1.read_mutating_webhook_configuration(name)
            elif kind == Kind.VALIDATING_WEBHOOK_CONFIGURATION.value:
                obj = self.admission_v1.read_validating_webhook_configuration(name)
            elif kind == Kind.HORIZONTAL_POD_AUTOSCALER.value:
                obj = self.autoscaling_v2.read_namespaced_horizontal_pod_autoscaler(name, namespace)
            elif kind == Kind.SERVICE_ACCOUNT.value:
                obj = self.core_v1.read_namespaced_service_account(name, namespace)
            else:
                raise StoreError(f"unsupported kind {kind}")
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind, name, namespace) from e
            raise _store_error("get", kind, name, e) from e
        return self._to_dict(obj)

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        fn, args = self.list_function(kind, namespace)
        kwargs = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        try:
            result = fn(*args, **kwargs)
        except ApiException as e:
            raise _store_error("list", kind, namespace or "", e) from e

        if isinstance(result, dict):
            items = result.get("items", [])
        else:
            items = result.items or []
        return [self._to_dict(item) for item in items]

    def list_function(
        self, kind: str, namespace: Optional[str] = None
    ) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        """
        Return the list call for a kind, usable with kubernetes.watch.Watch.

        Args:
            kind: Resource kind
            namespace: Namespace, or None for all namespaces

        Returns:
            Tuple of (list function, positional arguments)
        """
        if kind in CUSTOM_RESOURCE_PLURALS:
            return self.custom_objects.list_cluster_custom_object, (
                API_GROUP,
                API_VERSION,
                CUSTOM_RESOURCE_PLURALS[kind],
            )
        if kind == Kind.NAMESPACE.value:
            return self.core_v1.list_namespace, ()
        if kind == Kind.POD.value:
            if namespace:
                return self.core_v1.list_namespaced_pod, (namespace,)
            return self.core_v1.list_pod_for_all_namespaces, ()
        if kind == Kind.DEPLOYMENT.value:
            if namespace:
                return self.apps_v1.list_namespaced_deployment, (namespace,)
            return self.apps_v1.list_deployment_for_all_namespaces, ()
        if kind == Kind.DAEMON_SET.value:
            if namespace:
                return self.apps_v1.list_namespaced_daemon_set, (namespace,)
            return self.apps_v1.list_daemon_set_for_all_namespaces, ()
        if kind == Kind.MUTATING_WEBHOOK_CONFIGURATION.value:
            return self.admission_v1.list_mutating_webhook_configuration, ()
        if kind == Kind.VALIDATING_WEBHOOK_CONFIGURATION.value:
            return self.admission_v1.list_validating_webhook_configuration, ()
        if kind == Kind.HORIZONTAL_POD_AUTOSCALER.value:
            if namespace:
                return self.autoscaling_v2.list_namespaced_horizontal_pod_autoscaler, (namespace,)
            return self.autoscaling_v2.list_horizontal_pod_autoscaler_for_all_namespaces, ()
        if kind == Kind.SERVICE_ACCOUNT.value:
            if namespace:
                return self.core_v1.list_namespaced_service_account, (namespace,)
            return self.core_v1.list_service_account_for_all_namespaces, ()
        raise StoreError(f"unsupported kind {kind}")

    @retry(
        retry=retry_if_exception(_is_retriable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def create(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        name = obj["metadata"]["name"]
        try:
            return self.custom_objects.create_cluster_custom_object(
                API_GROUP, API_VERSION, self._plural(kind), obj
            )
        except ApiException as e:
            raise _store_error("create", kind, name, e) from e

    @retry(
        retry=retry_if_exception(_is_retriable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def update(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        name = obj["metadata"]["name"]
        try:
            return self.custom_objects.replace_cluster_custom_object(
                API_GROUP, API_VERSION, self._plural(kind), name, obj
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind, name) from e
            raise _store_error("update", kind, name, e) from e

    @retry(
        retry=retry_if_exception(_is_retriable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        try:
            self.custom_objects.delete_cluster_custom_object(
                API_GROUP,
                API_VERSION,
                self._plural(kind),
                name,
                body=client.V1DeleteOptions(propagation_policy="Background"),
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind, name) from e
            raise _store_error("delete", kind, name, e) from e

    def patch_status(self, kind: str, name: str, status: dict[str, Any]) -> None:
        # A list body makes the client send application/json-patch+json
        try:
            self.custom_objects.patch_cluster_custom_object_status(
                API_GROUP,
                API_VERSION,
                self._plural(kind),
                name,
                new_status_patch(copy.deepcopy(status)),
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind, name) from e
            raise _store_error("patch status of", kind, name, e) from e
