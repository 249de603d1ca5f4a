"""Tests for .env loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from kagent_setup.config import KagentConfig, SetupOptions, load_config
from kagent_setup.constants import DEFAULT_CA_BUNDLE_PATH, DEFAULT_CLUSTER_NAME
from kagent_setup.errors import ConfigError

_KEYS = ("OPENAI_API_KEY", "KIND_CLUSTER_NAME", "CA_BUNDLE_PATH", "ARGOCD_DIR",
         "ARGOCD_NAMESPACE", "KAGENT_NAMESPACE")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)


def test_missing_env_file_is_config_error(tmp_path: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / ".env")


@pytest.mark.parametrize("line", ["", "OPENAI_API_KEY=", "OPENAI_API_KEY=   "])
def test_unset_credential_is_config_error(tmp_path: Path, line: str):
    env_file = tmp_path / ".env"
    env_file.write_text(f"{line}\nKIND_CLUSTER_NAME=other\n")
    with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
        load_config(env_file)
    assert "OPENAI_API_KEY" not in os.environ


def test_defaults_are_filled_and_exported(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_API_KEY=sk-abc\n")

    cfg = load_config(env_file)

    assert cfg.openai_api_key == "sk-abc"
    assert cfg.kind_cluster_name == DEFAULT_CLUSTER_NAME
    assert cfg.ca_bundle_path == DEFAULT_CA_BUNDLE_PATH
    assert cfg.argocd_namespace == "argocd"
    assert cfg.kagent_namespace == "kagent"
    assert os.environ["OPENAI_API_KEY"] == "sk-abc"
    assert os.environ["KIND_CLUSTER_NAME"] == DEFAULT_CLUSTER_NAME
    assert os.environ["CA_BUNDLE_PATH"] == str(DEFAULT_CA_BUNDLE_PATH)


def test_overrides_from_file(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "OPENAI_API_KEY=sk-abc\n"
        "KIND_CLUSTER_NAME=my-cluster\n"
        f"CA_BUNDLE_PATH={tmp_path / 'corp.crt'}\n"
    )

    cfg = load_config(env_file)

    assert cfg.kind_cluster_name == "my-cluster"
    assert cfg.ca_bundle_path == tmp_path / "corp.crt"


def test_empty_ca_bundle_path_means_not_configured(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_API_KEY=sk-abc\nCA_BUNDLE_PATH=\n")

    cfg = load_config(env_file)

    assert cfg.ca_bundle_path is None
    assert os.environ["CA_BUNDLE_PATH"] == ""


def test_environment_wins_over_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_API_KEY=sk-file\n")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    assert load_config(env_file).openai_api_key == "sk-env"


def test_config_is_immutable(cfg: KagentConfig):
    with pytest.raises(ValidationError):
        cfg.kagent_namespace = "elsewhere"


def test_setup_options_defaults():
    options = SetupOptions()
    assert options.skip_argocd is False
    assert options.initial is False
