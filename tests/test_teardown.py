"""Tests for the confirmation gate and the namespace deletion ladder."""

from __future__ import annotations

import json

import pytest

from kagent_setup import teardown as teardown_mod
from kagent_setup import utils
from kagent_setup.teardown import (
    NamespaceDeletion,
    confirmed,
    delete_namespace,
    teardown,
    wait_for_namespace_gone,
)

from .fakes import CommandRecorder

NAMESPACE_JSON = json.dumps({
    "apiVersion": "v1",
    "kind": "Namespace",
    "metadata": {"name": "kagent"},
    "spec": {"finalizers": ["kubernetes"]},
})


def _cluster(graceful_ok: bool = True, namespace_present: bool = True, gone_after: int = 1) -> CommandRecorder:
    """kubectl fake for teardown; the namespace disappears ``gone_after`` lookups after deletion."""
    state = {"deleted": False, "lookups": 0}

    def _handler(args):
        if args[:2] == ["get", "namespace"] and "-o" not in args:
            if not namespace_present:
                return False, "", "NotFound"
            if not state["deleted"]:
                return True, "NAME     STATUS\nkagent   Active\n", ""
            state["lookups"] += 1
            gone = state["lookups"] >= gone_after
            return (not gone), "", "" if not gone else "NotFound"
        if args[:2] == ["get", "namespace"]:
            return True, NAMESPACE_JSON, ""
        if args[:2] == ["delete", "namespace"]:
            if "--force" in args or graceful_ok:
                state["deleted"] = True
                return True, "", ""
            return False, "", "timed out waiting for the condition"
        return True, "", ""

    return CommandRecorder(_handler)


@pytest.fixture
def use_cluster(monkeypatch):
    def _install(kubectl: CommandRecorder) -> CommandRecorder:
        monkeypatch.setattr(teardown_mod, "run_kubectl", kubectl)
        monkeypatch.setattr(utils, "run_kubectl", kubectl)
        return kubectl

    return _install


@pytest.mark.parametrize("answer", ["y", "Y"])
def test_affirmative_answers(answer):
    assert confirmed(answer)


@pytest.mark.parametrize("answer", ["n", "N", "", None, "yes", "YES", " y", "y ", "yy"])
def test_everything_else_declines(answer):
    assert not confirmed(answer)


@pytest.mark.parametrize("answer", ["n", "", "yes", "YES", " y"])
def test_declined_teardown_issues_no_deletes(cfg, manager, use_cluster, sleeper, monkeypatch, answer):
    kubectl = use_cluster(_cluster())
    monkeypatch.setattr(manager, "stop_all", lambda: pytest.fail("stopped tunnels without confirmation"))

    assert teardown(cfg, manager, ask=lambda question: answer, sleep=sleeper) is False
    assert kubectl.matching("delete") == []
    assert kubectl.matching("replace") == []


class TestDeleteNamespace:
    def test_absent_namespace(self, use_cluster):
        kubectl = use_cluster(_cluster(namespace_present=False))

        assert delete_namespace("kagent") is NamespaceDeletion.ABSENT
        assert kubectl.matching("delete") == []

    def test_graceful_delete(self, use_cluster):
        kubectl = use_cluster(_cluster(graceful_ok=True))

        assert delete_namespace("kagent") is NamespaceDeletion.GRACEFUL
        assert kubectl.matching("delete") == [["delete", "namespace", "kagent", "--timeout=30s"]]
        assert kubectl.matching("replace") == []

    def test_escalates_to_finalizer_strip_then_force(self, use_cluster):
        kubectl = use_cluster(_cluster(graceful_ok=False))

        assert delete_namespace("kagent") is NamespaceDeletion.FORCED

        mutating = [call for call in kubectl.calls if call[0] in ("delete", "replace")]
        assert mutating == [
            ["delete", "namespace", "kagent", "--timeout=30s"],
            ["replace", "--raw", "/api/v1/namespaces/kagent/finalize", "-f", "-"],
            ["delete", "namespace", "kagent", "--force", "--grace-period=0", "--wait=false"],
        ]
        body = json.loads(kubectl.stdins[kubectl.calls.index(mutating[1])])
        assert body["spec"]["finalizers"] == []
        assert body["metadata"]["name"] == "kagent"


class TestWaitForNamespaceGone:
    def test_gone_after_a_few_polls(self, use_cluster, sleeper):
        use_cluster(_cluster(gone_after=3))
        delete_namespace("kagent")

        assert wait_for_namespace_gone("kagent", sleep=sleeper) is True
        assert sleeper.calls == [2, 2]

    def test_budget_exhaustion_is_reported(self, use_cluster, sleeper):
        use_cluster(_cluster(gone_after=1000))
        delete_namespace("kagent")

        assert wait_for_namespace_gone("kagent", sleep=sleeper) is False
        assert len(sleeper.calls) == 29


class TestTeardown:
    def test_confirmed_teardown_order(self, cfg, manager, use_cluster, sleeper, monkeypatch):
        kubectl = use_cluster(_cluster(graceful_ok=False, gone_after=2))
        stops: list[int] = []
        monkeypatch.setattr(manager, "stop_all", lambda: stops.append(len(kubectl.matching("delete"))))

        assert teardown(cfg, manager, ask=lambda question: "y", sleep=sleeper) is True

        deletes = [call[:3] for call in kubectl.matching("delete")]
        assert deletes == [
            ["delete", "application", "kagent"],
            ["delete", "application", "mcp-sqlite-vec"],
            ["delete", "namespace", "kagent"],
            ["delete", "namespace", "kagent"],
            ["delete", "secret", "kagent-openai"],
            ["delete", "secret", "mcp-secrets"],
            ["delete", "appproject", "kagent"],
        ]
        for call in kubectl.matching("delete", "application"):
            assert "--wait=false" in call and "--ignore-not-found=true" in call
        # tunnels stop before the first delete and once more at the end
        assert stops == [0, 7]
        assert sleeper.calls[0] == 3

    def test_namespace_that_never_goes_away_is_not_fatal(self, cfg, manager, use_cluster, sleeper):
        kubectl = use_cluster(_cluster(gone_after=1000))

        assert teardown(cfg, manager, ask=lambda question: "Y", sleep=sleeper) is True
        assert kubectl.matching("delete", "appproject")

    def test_pid_files_are_removed(self, cfg, manager, use_cluster, sleeper, monkeypatch):
        use_cluster(_cluster(namespace_present=False))
        monkeypatch.setattr("kagent_setup.portforward.os.kill", lambda pid, sig: None)
        for forward in manager.forwards.values():
            manager.pid_file(forward).write_text("123\n")

        teardown(cfg, manager, ask=lambda question: "y", sleep=sleeper)

        assert not any(manager.pid_file(fwd).exists() for fwd in manager.forwards.values())
