"""Shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from kagent_setup.config import KagentConfig
from kagent_setup.portforward import PortForwardManager, argocd_forward, kagent_ui_forward

from .fakes import SleepRecorder


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def cfg(tmp_path: Path) -> KagentConfig:
    argocd_dir = tmp_path / "argocd"
    argocd_dir.mkdir()
    return KagentConfig(
        _env_file=None,
        openai_api_key="sk-test",
        kind_cluster_name="kagent-demo",
        ca_bundle_path=tmp_path / "ca-bundle.crt",
        argocd_namespace="argocd",
        kagent_namespace="kagent",
        argocd_dir=argocd_dir,
    )


@pytest.fixture
def manager(tmp_path: Path, sleeper: SleepRecorder, monkeypatch: pytest.MonkeyPatch) -> PortForwardManager:
    monkeypatch.setattr(PortForwardManager, "_sweep", lambda self, forward: None)
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return PortForwardManager([argocd_forward(), kagent_ui_forward()], state_dir=state_dir, sleep=sleeper)
