"""Tests for prerequisite checks and CA bundle propagation."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from kagent_setup import cluster, utils
from kagent_setup.constants import (
    CLUSTER_REACHABLE_MAX_RETRIES,
    CONTAINERD_RELOAD_GRACE_SECONDS,
    NODE_CA_BUNDLE_PATH,
)
from kagent_setup.errors import PrerequisiteError
from kagent_setup.cluster import check_prerequisites, reconcile_certificates, tls_probe_succeeds

from .fakes import CommandRecorder

BUNDLE = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"
NODES = ["kagent-demo-control-plane", "kagent-demo-worker"]


def _podman(installed: dict[str, str]) -> CommandRecorder:
    """Fake podman where ``installed`` maps node -> bundle currently on it."""
    def _handler(args: list[str]):
        if args[0] == "exec" and args[2] == "cat":
            node = args[1]
            if node in installed:
                return True, installed[node], ""
            return False, "", "No such file or directory"
        return True, "", ""
    return CommandRecorder(_handler)


@pytest.fixture
def bundle(cfg):
    cfg.ca_bundle_path.write_text(BUNDLE)
    return cfg.ca_bundle_path


@pytest.fixture
def untrusted(monkeypatch):
    monkeypatch.setattr(cluster, "tls_probe_succeeds", lambda: False)
    monkeypatch.setattr(cluster, "list_kind_nodes", lambda name: list(NODES))


class TestCheckPrerequisites:
    def _sh(self, missing: set[str]) -> SimpleNamespace:
        return SimpleNamespace(
            which=lambda cmd: None if cmd in missing else f"/usr/bin/{cmd}",
            ErrorReturnCode=type("ErrorReturnCode", (Exception,), {}),
            CommandNotFound=type("CommandNotFound", (Exception,), {}),
        )

    def test_all_present_and_reachable(self, monkeypatch):
        monkeypatch.setattr(utils, "sh", self._sh(set()))
        kubectl = CommandRecorder()
        monkeypatch.setattr(cluster, "run_kubectl", kubectl)

        check_prerequisites()

        assert kubectl.calls == [["cluster-info"]]

    def test_names_first_missing_tool(self, monkeypatch):
        monkeypatch.setattr(utils, "sh", self._sh({"helm", "podman"}))
        kubectl = CommandRecorder()
        monkeypatch.setattr(cluster, "run_kubectl", kubectl)

        with pytest.raises(PrerequisiteError, match="Helm not found"):
            check_prerequisites()
        assert kubectl.calls == []

    def test_unreachable_cluster(self, monkeypatch):
        monkeypatch.setattr(utils, "sh", self._sh(set()))
        monkeypatch.setattr(cluster, "run_kubectl", CommandRecorder(lambda args: (False, "", "refused")))

        with pytest.raises(PrerequisiteError, match="Cannot connect"):
            check_prerequisites()


class TestTlsProbe:
    def test_success(self, monkeypatch):
        kubectl = CommandRecorder()
        monkeypatch.setattr(cluster, "run_kubectl", kubectl)

        assert tls_probe_succeeds()
        run = kubectl.matching("run")[0]
        assert "--rm" in run and "curl" in run

    def test_unschedulable_pod_counts_as_untrusted(self, monkeypatch):
        def _handler(args):
            if args[0] == "run":
                return False, "", "pod cert-test timed out waiting for the condition"
            return True, "", ""
        monkeypatch.setattr(cluster, "run_kubectl", CommandRecorder(_handler))

        assert tls_probe_succeeds() is False


class TestReconcileCertificates:
    def test_unconfigured_bundle_is_noop(self, cfg, monkeypatch, sleeper):
        cfg = cfg.model_copy(update={"ca_bundle_path": None})
        monkeypatch.setattr(cluster, "tls_probe_succeeds", lambda: pytest.fail("probe must not run"))

        assert reconcile_certificates(cfg, force_restart=True, sleep=sleeper) == []

    def test_missing_bundle_file_is_noop(self, cfg, monkeypatch, sleeper):
        monkeypatch.setattr(cluster, "tls_probe_succeeds", lambda: pytest.fail("probe must not run"))

        assert reconcile_certificates(cfg, force_restart=True, sleep=sleeper) == []

    def test_trusted_cluster_skips_nodes(self, cfg, bundle, monkeypatch, sleeper):
        monkeypatch.setattr(cluster, "tls_probe_succeeds", lambda: True)
        monkeypatch.setattr(cluster, "list_kind_nodes", lambda name: pytest.fail("nodes must not be listed"))

        assert reconcile_certificates(cfg, force_restart=True, sleep=sleeper) == []

    def test_identical_bundle_means_zero_copies(self, cfg, bundle, untrusted, monkeypatch, sleeper):
        podman = _podman({node: BUNDLE for node in NODES})
        monkeypatch.setattr(cluster, "run_podman", podman)

        updated = reconcile_certificates(cfg, force_restart=True, sleep=sleeper)

        assert updated == []
        assert podman.matching("cp") == []
        assert not any("update-ca-certificates" in call for call in podman.calls)
        assert sleeper.calls == []

    def test_only_differing_nodes_are_updated(self, cfg, bundle, untrusted, monkeypatch, sleeper):
        podman = _podman({NODES[0]: BUNDLE, NODES[1]: "stale\n"})
        monkeypatch.setattr(cluster, "run_podman", podman)

        updated = reconcile_certificates(cfg, force_restart=False, sleep=sleeper)

        assert updated == [NODES[1]]
        assert podman.matching("cp") == [["cp", str(bundle), f"{NODES[1]}:{NODE_CA_BUNDLE_PATH}"]]
        assert ["exec", NODES[1], "update-ca-certificates"] in podman.calls
        # no reload without --initial
        assert not any("containerd" in call for call in podman.calls)
        assert sleeper.calls == []

    def test_node_without_bundle_is_updated(self, cfg, bundle, untrusted, monkeypatch, sleeper):
        podman = _podman({})
        monkeypatch.setattr(cluster, "run_podman", podman)

        assert reconcile_certificates(cfg, force_restart=False, sleep=sleeper) == NODES

    def test_force_restart_reloads_and_waits_for_api(self, cfg, bundle, untrusted, monkeypatch, sleeper):
        podman = _podman({NODES[0]: "stale\n", NODES[1]: BUNDLE})
        monkeypatch.setattr(cluster, "run_podman", podman)
        answers = iter([False, False, True])
        monkeypatch.setattr(cluster, "cluster_reachable", lambda: next(answers))

        updated = reconcile_certificates(cfg, force_restart=True, sleep=sleeper)

        assert updated == [NODES[0]]
        assert podman.matching("exec", NODES[0], "pkill") == [["exec", NODES[0], "pkill", "-HUP", "containerd"]]
        assert podman.matching("exec", NODES[1], "pkill") == []
        assert sleeper.calls == [CONTAINERD_RELOAD_GRACE_SECONDS, 2, 2]

    def test_unreachable_api_after_reload_is_tolerated(self, cfg, bundle, untrusted, monkeypatch, sleeper):
        monkeypatch.setattr(cluster, "run_podman", _podman({}))
        monkeypatch.setattr(cluster, "cluster_reachable", lambda: False)

        updated = reconcile_certificates(cfg, force_restart=True, sleep=sleeper)

        assert updated == NODES
        assert len(sleeper.calls) == 1 + CLUSTER_REACHABLE_MAX_RETRIES - 1
