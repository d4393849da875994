"""Pytest configuration and fixtures for sail operator tests."""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import yaml

from sail_operator.config import ReconcilerConfig
from sail_operator.errors import NotFoundError, StoreError
from sail_operator.helm import Installer, Release
from sail_operator.models import GROUP_VERSION, Kind, OwnerReference
from sail_operator.store import ResourceStore

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

CLUSTER_SCOPED_KINDS = {
    Kind.ISTIO.value,
    Kind.ISTIO_REVISION.value,
    Kind.ISTIO_REVISION_TAG.value,
    Kind.ISTIO_CNI.value,
    Kind.ZTUNNEL.value,
    Kind.NAMESPACE.value,
    Kind.MUTATING_WEBHOOK_CONFIGURATION.value,
    Kind.VALIDATING_WEBHOOK_CONFIGURATION.value,
}


def timestamp(seconds: int) -> str:
    return (BASE_TIME + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%SZ")


class FakeStore(ResourceStore):
    """In-memory store that behaves like the API server for the operator's calls."""

    def __init__(self):
        self.objects: dict[tuple[str, Optional[str], str], dict[str, Any]] = {}
        self.patches: list[tuple[str, str, dict[str, Any]]] = []
        self.created: list[tuple[str, str]] = []
        self.updated: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        # (method, kind) -> exception raised by that call
        self.errors: dict[tuple[str, str], Exception] = {}
        self._counter = 0

    def _fail(self, method: str, kind: str) -> None:
        err = self.errors.get((method, kind))
        if err is not None:
            raise err

    @staticmethod
    def _key(kind: str, name: str, namespace: Optional[str]) -> tuple[str, Optional[str], str]:
        return (kind, None if kind in CLUSTER_SCOPED_KINDS else namespace, name)

    def add(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        """Seed an object, filling in the metadata the API server would assign."""
        obj = copy.deepcopy(obj)
        obj.setdefault("kind", kind)
        metadata = obj.setdefault("metadata", {})
        self._counter += 1
        metadata.setdefault("uid", f"uid-{self._counter:04d}")
        metadata.setdefault("creationTimestamp", timestamp(self._counter))
        metadata.setdefault("generation", 1)
        metadata["resourceVersion"] = str(self._counter)
        self.objects[self._key(kind, metadata["name"], metadata.get("namespace"))] = obj
        return copy.deepcopy(obj)

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> dict[str, Any]:
        self._fail("get", kind)
        try:
            return copy.deepcopy(self.objects[self._key(kind, name, namespace)])
        except KeyError:
            raise NotFoundError(kind, name, namespace) from None

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        self._fail("list", kind)
        return [
            copy.deepcopy(obj)
            for (obj_kind, obj_namespace, _), obj in sorted(self.objects.items(), key=lambda item: str(item[0]))
            if obj_kind == kind and (namespace is None or obj_namespace == namespace)
        ]

    def create(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        self._fail("create", kind)
        metadata = obj.get("metadata") or {}
        if self._key(kind, metadata["name"], metadata.get("namespace")) in self.objects:
            raise StoreError(f"{kind} {metadata['name']} already exists")
        self.created.append((kind, metadata["name"]))
        return self.add(kind, obj)

    def update(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        self._fail("update", kind)
        metadata = obj["metadata"]
        key = self._key(kind, metadata["name"], metadata.get("namespace"))
        if key not in self.objects:
            raise NotFoundError(kind, metadata["name"], metadata.get("namespace"))
        current = self.objects[key]
        updated = copy.deepcopy(obj)
        updated["status"] = copy.deepcopy(current.get("status"))
        if updated.get("spec") != current.get("spec"):
            updated["metadata"]["generation"] = (current["metadata"].get("generation") or 0) + 1
        self._counter += 1
        updated["metadata"]["resourceVersion"] = str(self._counter)
        self.updated.append((kind, metadata["name"]))

        if updated["metadata"].get("deletionTimestamp") and not updated["metadata"].get("finalizers"):
            del self.objects[key]
        else:
            self.objects[key] = updated
        return copy.deepcopy(updated)

    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        self._fail("delete", kind)
        key = self._key(kind, name, namespace)
        if key not in self.objects:
            raise NotFoundError(kind, name, namespace)
        self.deleted.append((kind, name))
        obj = self.objects[key]
        if obj["metadata"].get("finalizers"):
            obj["metadata"]["deletionTimestamp"] = timestamp(self._counter)
        else:
            del self.objects[key]

    def patch_status(self, kind: str, name: str, status: dict[str, Any]) -> None:
        self._fail("patch_status", kind)
        key = self._key(kind, name, None)
        if key not in self.objects:
            raise NotFoundError(kind, name)
        self.objects[key]["status"] = copy.deepcopy(status)
        self.patches.append((kind, name, copy.deepcopy(status)))

    def status_of(self, kind: str, name: str) -> dict[str, Any]:
        return self.objects[self._key(kind, name, None)].get("status") or {}


class FakeInstaller(Installer):
    """Installer that records calls instead of running helm."""

    def __init__(self):
        self.installs: list[dict[str, Any]] = []
        self.uninstalls: list[tuple[str, str]] = []
        self.error: Optional[Exception] = None

    def upgrade_or_install(
        self,
        chart_dir: str,
        values: dict[str, Any],
        namespace: str,
        release_name: str,
        owner_reference: OwnerReference,
    ) -> None:
        if self.error is not None:
            raise self.error
        self.installs.append(
            {
                "chart_dir": chart_dir,
                "values": copy.deepcopy(values),
                "namespace": namespace,
                "release_name": release_name,
                "owner_reference": owner_reference,
            }
        )

    def uninstall(self, release_name: str, namespace: str) -> None:
        self.uninstalls.append((release_name, namespace))

    def list_releases(self) -> list[Release]:
        return [Release(name=i["release_name"], namespace=i["namespace"]) for i in self.installs]


def write_profile(resource_dir, version: str, profile: str, values: dict[str, Any]) -> None:
    profiles_dir = resource_dir / version / "profiles"
    profiles_dir.mkdir(parents=True, exist_ok=True)
    document = {
        "apiVersion": GROUP_VERSION,
        "kind": "Istio",
        "spec": {"values": values},
    }
    (profiles_dir / f"{profile}.yaml").write_text(yaml.safe_dump(document))


@pytest.fixture(name="write_profile")
def write_profile_fixture():
    """Writer of profile files under a resource directory."""
    return write_profile


@pytest.fixture
def fake_store():
    """Empty in-memory resource store."""
    return FakeStore()


@pytest.fixture
def fake_installer():
    """Recording chart installer."""
    return FakeInstaller()


@pytest.fixture
def resource_dir(tmp_path):
    """Resource directory with default profiles for the versions used in tests."""
    root = tmp_path / "resources"
    for version in ("1.2.0", "1.2.3", "v1.24.0"):
        write_profile(root, version, "default", {"pilot": {"autoscaleEnabled": False}})
    write_profile(root, "1.2.0", "ambient", {"profile": "ambient"})
    write_profile(root, "1.2.0", "openshift", {"global": {"platform": "openshift"}})
    return root


@pytest.fixture
def reconciler_config(resource_dir):
    """Reconciler configuration pointing at the test resource directory."""
    return ReconcilerConfig(resource_directory=str(resource_dir), operator_namespace="sail-operator")


@pytest.fixture
def make_istio():
    """Factory for Istio objects."""

    def _make(
        name: str = "default",
        version: str = "1.2.0",
        namespace: str = "istio-system",
        strategy: Optional[str] = None,
        grace_period: Optional[int] = None,
        values: Optional[dict[str, Any]] = None,
        profile: str = "",
    ) -> dict[str, Any]:
        spec: dict[str, Any] = {"version": version, "namespace": namespace}
        if strategy or grace_period is not None:
            spec["updateStrategy"] = {}
            if strategy:
                spec["updateStrategy"]["type"] = strategy
            if grace_period is not None:
                spec["updateStrategy"]["inactiveRevisionDeletionGracePeriodSeconds"] = grace_period
        if values is not None:
            spec["values"] = values
        if profile:
            spec["profile"] = profile
        return {"apiVersion": GROUP_VERSION, "kind": "Istio", "metadata": {"name": name}, "spec": spec}

    return _make


@pytest.fixture
def make_revision():
    """Factory for IstioRevision objects with consistent values."""

    def _make(
        name: str = "default",
        version: str = "1.2.0",
        namespace: str = "istio-system",
        values: Optional[dict[str, Any]] = None,
        revision_type: str = "Local",
        owner: Optional[dict[str, Any]] = None,
        conditions: Optional[list[dict[str, Any]]] = None,
    ) -> dict[str, Any]:
        merged = {
            "revision": "" if name == "default" else name,
            "global": {"istioNamespace": namespace},
        }
        merged.update(values or {})
        obj: dict[str, Any] = {
            "apiVersion": GROUP_VERSION,
            "kind": "IstioRevision",
            "metadata": {"name": name},
            "spec": {"type": revision_type, "version": version, "namespace": namespace, "values": merged},
        }
        if owner is not None:
            obj["metadata"]["ownerReferences"] = [owner]
        if conditions is not None:
            obj["status"] = {"conditions": conditions}
        return obj

    return _make


@pytest.fixture
def make_tag():
    """Factory for IstioRevisionTag objects."""

    def _make(name: str = "default", target_kind: str = "IstioRevision", target_name: str = "default"):
        return {
            "apiVersion": GROUP_VERSION,
            "kind": "IstioRevisionTag",
            "metadata": {"name": name},
            "spec": {"targetRef": {"kind": target_kind, "name": target_name}},
        }

    return _make


@pytest.fixture
def make_namespace():
    """Factory for Namespace objects."""

    def _make(name: str, labels: Optional[dict[str, str]] = None, terminating: bool = False):
        metadata: dict[str, Any] = {"name": name, "labels": labels or {}}
        if terminating:
            metadata["deletionTimestamp"] = timestamp(0)
        return {"apiVersion": "v1", "kind": "Namespace", "metadata": metadata}

    return _make


@pytest.fixture
def make_pod():
    """Factory for Pod objects."""

    def _make(
        name: str,
        namespace: str,
        labels: Optional[dict[str, str]] = None,
        annotations: Optional[dict[str, str]] = None,
        phase: str = "Running",
    ):
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": labels or {},
                "annotations": annotations or {},
            },
            "status": {"phase": phase},
        }

    return _make


@pytest.fixture
def make_deployment():
    """Factory for Deployment objects with replica counts."""

    def _make(name: str, namespace: str, replicas: int = 1, ready_replicas: int = 1):
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": name, "namespace": namespace},
            "status": {"replicas": replicas, "readyReplicas": ready_replicas},
        }

    return _make


@pytest.fixture
def make_daemon_set():
    """Factory for DaemonSet objects with scheduling counts."""

    def _make(name: str, namespace: str, scheduled: int = 1, ready: int = 1):
        return {
            "apiVersion": "apps/v1",
            "kind": "DaemonSet",
            "metadata": {"name": name, "namespace": namespace},
            "status": {"currentNumberScheduled": scheduled, "numberReady": ready},
        }

    return _make
