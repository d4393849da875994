"""Chart installation through the Helm CLI."""

import json
import logging
import os
import subprocess
import sys
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Optional

import yaml
from pydantic import BaseModel

from .constants import MANAGED_BY_LABEL_KEY, MANAGED_BY_LABEL_VALUE
from .errors import InstallerError
from .models import OwnerReference

logger = logging.getLogger(__name__)

ANNOTATION_PRIMARY_RESOURCE = "operator-sdk/primary-resource"
ANNOTATION_PRIMARY_RESOURCE_TYPE = "operator-sdk/primary-resource-type"

POST_RENDERER_COMMAND = "sail-operator-postrender"


class Release(BaseModel):
    """An installed Helm release."""

    name: str
    namespace: str
    chart: str = ""
    status: str = ""


class Installer(ABC):
    """Materializes chart bundles in the cluster."""

    @abstractmethod
    def upgrade_or_install(
        self,
        chart_dir: str,
        values: dict[str, Any],
        namespace: str,
        release_name: str,
        owner_reference: OwnerReference,
    ) -> None:
        """
        Install the chart, or upgrade the release if it already exists.

        Raises:
            InstallerError: If the installation fails
        """

    @abstractmethod
    def uninstall(self, release_name: str, namespace: str) -> None:
        """Uninstall a release; a missing release is not an error."""

    @abstractmethod
    def list_releases(self) -> list[Release]:
        """List releases in all namespaces."""


class HelmPostRenderer:
    """
    Adds ownership metadata to every rendered manifest.

    Objects in the owner's namespace (or all objects, for a cluster-scoped
    owner) get an owner reference. Objects elsewhere cannot reference a
    namespaced owner, so they get primary-resource annotations instead. All
    objects get the managed-by label.
    """

    def __init__(self, owner_reference: OwnerReference, owner_namespace: str = ""):
        self.owner_reference = owner_reference
        self.owner_namespace = owner_namespace

    def run(self, rendered: str) -> str:
        manifests = []
        for manifest in yaml.safe_load_all(rendered):
            if not manifest:
                continue
            self._add_owner_reference(manifest)
            self._add_managed_by_label(manifest)
            manifests.append(manifest)
        return yaml.safe_dump_all(manifests, default_flow_style=False, sort_keys=False)

    def _add_owner_reference(self, manifest: dict[str, Any]) -> None:
        metadata = manifest.setdefault("metadata", {})
        obj_namespace = metadata.get("namespace")
        if not self.owner_namespace or obj_namespace == self.owner_namespace:
            refs = metadata.get("ownerReferences") or []
            refs.append(self.owner_reference.model_dump(by_alias=True, exclude_none=True))
            metadata["ownerReferences"] = refs
        else:
            group = self.owner_reference.api_version.split("/", 1)[0]
            annotations = metadata.get("annotations") or {}
            annotations[ANNOTATION_PRIMARY_RESOURCE_TYPE] = f"{self.owner_reference.kind}.{group}"
            annotations[ANNOTATION_PRIMARY_RESOURCE] = f"{self.owner_namespace}/{self.owner_reference.name}"
            metadata["annotations"] = annotations

    def _add_managed_by_label(self, manifest: dict[str, Any]) -> None:
        metadata = manifest.setdefault("metadata", {})
        labels = metadata.get("labels") or {}
        labels[MANAGED_BY_LABEL_KEY] = MANAGED_BY_LABEL_VALUE
        metadata["labels"] = labels


def postrender_main(argv: Optional[list[str]] = None) -> int:
    """
    Entry point of the sail-operator-postrender command.

    Helm pipes the rendered manifests to stdin and reads the result from
    stdout. The first argument is the owner reference as JSON, the optional
    second one the owner's namespace.
    """
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("usage: sail-operator-postrender OWNER_REFERENCE_JSON [OWNER_NAMESPACE]", file=sys.stderr)
        return 2
    owner = OwnerReference.model_validate(json.loads(args[0]))
    owner_namespace = args[1] if len(args) > 1 else ""
    sys.stdout.write(HelmPostRenderer(owner, owner_namespace).run(sys.stdin.read()))
    return 0


class HelmCliInstaller(Installer):
    """Installer that shells out to the helm binary."""

    def __init__(self, helm_binary: str = "helm", timeout_seconds: int = 300):
        """
        Initialize the installer.

        Args:
            helm_binary: Name or path of the helm executable
            timeout_seconds: Timeout of a single helm invocation
        """
        self.helm_binary = helm_binary
        self.timeout_seconds = timeout_seconds

    def _run(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.helm_binary] + args
        logger.info(f"helm> {' '.join(cmd[:4])}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_seconds)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise InstallerError(f"failed to run helm: {e}", cause=e) from e
        if result.stdout:
            logger.debug(f"helm stdout: {result.stdout[:800]}")
        if result.stderr:
            logger.warning(f"helm stderr: {result.stderr[:800]}")
        if check and result.returncode != 0:
            raise InstallerError(f"helm command failed (rc={result.returncode}): {result.stderr[:500]}")
        return result

    def upgrade_or_install(
        self,
        chart_dir: str,
        values: dict[str, Any],
        namespace: str,
        release_name: str,
        owner_reference: OwnerReference,
    ) -> None:
        owner_json = json.dumps(owner_reference.model_dump(by_alias=True, exclude_none=True))
        fd, values_file = tempfile.mkstemp(prefix=f"{release_name}-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(values, f, default_flow_style=False)
            self._run(
                [
                    "upgrade",
                    "--install",
                    release_name,
                    chart_dir,
                    "--namespace",
                    namespace,
                    "--values",
                    values_file,
                    "--post-renderer",
                    POST_RENDERER_COMMAND,
                    "--post-renderer-args",
                    owner_json,
                ]
            )
        finally:
            os.unlink(values_file)
        logger.info(f"Helm release {namespace}/{release_name} installed from {chart_dir}")

    def uninstall(self, release_name: str, namespace: str) -> None:
        result = self._run(["uninstall", release_name, "--namespace", namespace], check=False)
        if result.returncode == 0:
            logger.info(f"Helm release {namespace}/{release_name} uninstalled")
            return
        if "not found" in result.stderr:
            logger.info(f"Helm release {namespace}/{release_name} not found, skipping uninstall")
            return
        raise InstallerError(f"helm uninstall of {release_name} failed: {result.stderr[:500]}")

    def list_releases(self) -> list[Release]:
        result = self._run(["list", "--all-namespaces", "--output", "json"])
        return [Release.model_validate(item) for item in json.loads(result.stdout or "[]")]
