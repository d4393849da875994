"""Tests for the Helm installer and post-renderer."""

import io
import json
import subprocess
from unittest.mock import Mock, patch

import pytest
import yaml

from sail_operator.errors import InstallerError
from sail_operator.helm import (
    ANNOTATION_PRIMARY_RESOURCE,
    ANNOTATION_PRIMARY_RESOURCE_TYPE,
    HelmCliInstaller,
    HelmPostRenderer,
    postrender_main,
)
from sail_operator.models import OwnerReference

RENDERED = """
apiVersion: apps/v1
kind: Deployment
metadata:
  name: istiod
  namespace: istio-system
---
apiVersion: v1
kind: ServiceAccount
metadata:
  name: istio-reader
  namespace: other
  labels:
    app: reader
---
"""


@pytest.fixture
def owner():
    """Owner reference of an IstioRevision."""
    return OwnerReference(
        api_version="sailoperator.io/v1",
        kind="IstioRevision",
        name="default",
        uid="uid-1",
        controller=True,
        block_owner_deletion=True,
    )


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestHelmPostRenderer:
    """Test cases for HelmPostRenderer."""

    def test_cluster_scoped_owner_adds_owner_references(self, owner):
        """Test every manifest gets the owner reference for a cluster-scoped owner."""
        manifests = list(yaml.safe_load_all(HelmPostRenderer(owner).run(RENDERED)))

        assert len(manifests) == 2
        for manifest in manifests:
            refs = manifest["metadata"]["ownerReferences"]
            assert refs == [
                {
                    "apiVersion": "sailoperator.io/v1",
                    "kind": "IstioRevision",
                    "name": "default",
                    "uid": "uid-1",
                    "controller": True,
                    "blockOwnerDeletion": True,
                }
            ]
            assert manifest["metadata"]["labels"]["managed-by"] == "sail-operator"

    def test_existing_labels_are_kept(self, owner):
        """Test the managed-by label is added next to existing labels."""
        manifests = list(yaml.safe_load_all(HelmPostRenderer(owner).run(RENDERED)))
        assert manifests[1]["metadata"]["labels"] == {"app": "reader", "managed-by": "sail-operator"}

    def test_namespaced_owner_annotates_foreign_objects(self, owner):
        """Test objects outside the owner's namespace get annotations instead."""
        manifests = list(yaml.safe_load_all(HelmPostRenderer(owner, "istio-system").run(RENDERED)))

        assert "ownerReferences" in manifests[0]["metadata"]
        foreign = manifests[1]["metadata"]
        assert "ownerReferences" not in foreign
        assert foreign["annotations"][ANNOTATION_PRIMARY_RESOURCE] == "istio-system/default"
        assert foreign["annotations"][ANNOTATION_PRIMARY_RESOURCE_TYPE] == "IstioRevision.sailoperator.io"

    def test_postrender_main(self, owner):
        """Test the post-renderer command reads stdin and writes stdout."""
        owner_json = json.dumps(owner.model_dump(by_alias=True))
        stdout = io.StringIO()
        with patch("sys.stdin", io.StringIO(RENDERED)), patch("sys.stdout", stdout):
            assert postrender_main([owner_json]) == 0

        manifests = list(yaml.safe_load_all(stdout.getvalue()))
        assert manifests[0]["metadata"]["ownerReferences"][0]["uid"] == "uid-1"

    def test_postrender_main_without_owner(self):
        """Test the command fails without arguments."""
        with patch("sys.stderr", io.StringIO()):
            assert postrender_main([]) == 2


class TestHelmCliInstaller:
    """Test cases for HelmCliInstaller."""

    @patch("sail_operator.helm.subprocess.run")
    def test_upgrade_or_install(self, mock_run, owner):
        """Test the helm upgrade command line and values file."""
        seen_values = {}

        def run(cmd, **kwargs):
            values_file = cmd[cmd.index("--values") + 1]
            with open(values_file) as f:
                seen_values.update(yaml.safe_load(f))
            return completed()

        mock_run.side_effect = run

        HelmCliInstaller().upgrade_or_install(
            "/res/1.2.0/charts/istiod",
            {"revision": "", "global": {"istioNamespace": "istio-system"}},
            "istio-system",
            "default-istiod",
            owner,
        )

        cmd = mock_run.call_args.args[0]
        assert cmd[:5] == ["helm", "upgrade", "--install", "default-istiod", "/res/1.2.0/charts/istiod"]
        assert cmd[cmd.index("--namespace") + 1] == "istio-system"
        assert cmd[cmd.index("--post-renderer") + 1] == "sail-operator-postrender"
        assert json.loads(cmd[cmd.index("--post-renderer-args") + 1])["name"] == "default"
        assert seen_values == {"revision": "", "global": {"istioNamespace": "istio-system"}}
        assert mock_run.call_args.kwargs["timeout"] == 300

    @patch("sail_operator.helm.subprocess.run")
    def test_upgrade_failure(self, mock_run, owner):
        """Test a failing helm command raises InstallerError."""
        mock_run.return_value = completed(returncode=1, stderr="chart not found")

        with pytest.raises(InstallerError, match="chart not found"):
            HelmCliInstaller().upgrade_or_install("/res/x", {}, "ns", "rel", owner)

    @patch("sail_operator.helm.subprocess.run")
    def test_helm_missing(self, mock_run, owner):
        """Test a missing helm binary raises InstallerError."""
        mock_run.side_effect = FileNotFoundError("helm")

        with pytest.raises(InstallerError):
            HelmCliInstaller().upgrade_or_install("/res/x", {}, "ns", "rel", owner)

    @patch("sail_operator.helm.subprocess.run")
    def test_uninstall_missing_release(self, mock_run):
        """Test uninstalling a release that does not exist succeeds."""
        mock_run.return_value = completed(returncode=1, stderr="Error: uninstall: Release not loaded: x: release: not found")

        HelmCliInstaller().uninstall("x", "istio-system")

        assert mock_run.call_args.args[0] == ["helm", "uninstall", "x", "--namespace", "istio-system"]

    @patch("sail_operator.helm.subprocess.run")
    def test_uninstall_failure(self, mock_run):
        """Test other uninstall failures raise."""
        mock_run.return_value = completed(returncode=1, stderr="connection refused")

        with pytest.raises(InstallerError):
            HelmCliInstaller().uninstall("x", "istio-system")

    @patch("sail_operator.helm.subprocess.run")
    def test_list_releases(self, mock_run):
        """Test releases are parsed from helm's JSON output."""
        mock_run.return_value = completed(
            stdout=json.dumps([{"name": "default-istiod", "namespace": "istio-system", "chart": "istiod-1.2.0", "status": "deployed"}])
        )

        releases = HelmCliInstaller().list_releases()

        assert len(releases) == 1
        assert releases[0].name == "default-istiod"
        assert releases[0].status == "deployed"
