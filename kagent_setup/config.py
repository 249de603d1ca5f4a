# /*
# Copyright 2026 The Kagent Setup Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Configuration model, .env loading, and setup flags."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kagent_setup import console, logger
from kagent_setup.constants import (
    DEFAULT_ARGOCD_DIR,
    DEFAULT_ARGOCD_NAMESPACE,
    DEFAULT_CA_BUNDLE_PATH,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_ENV_FILE,
    DEFAULT_KAGENT_NAMESPACE,
    SECRET_KEY_OPENAI,
)
from kagent_setup.errors import ConfigError


# ============================================================================
# Configuration classes
# ============================================================================

class KagentConfig(BaseSettings):
    """Demo configuration, loaded from .env and overridden by the environment.

    Attributes:
        openai_api_key: Credential stored in the workload secrets. Mandatory.
        kind_cluster_name: Name of the Kind cluster whose nodes get the CA bundle.
        ca_bundle_path: Custom CA bundle to propagate, or None when not configured.
        argocd_namespace: Namespace ArgoCD is installed into.
        kagent_namespace: Namespace holding the workload and its secrets.
        argocd_dir: Directory containing the ArgoCD project and application descriptors.
    """

    model_config = SettingsConfigDict(env_file=DEFAULT_ENV_FILE, extra="ignore", frozen=True)

    openai_api_key: str = Field(min_length=1)
    kind_cluster_name: str = DEFAULT_CLUSTER_NAME
    ca_bundle_path: Path | None = DEFAULT_CA_BUNDLE_PATH
    argocd_namespace: str = DEFAULT_ARGOCD_NAMESPACE
    kagent_namespace: str = DEFAULT_KAGENT_NAMESPACE
    argocd_dir: Path = Path(DEFAULT_ARGOCD_DIR)

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def _strip_key(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("ca_bundle_path", mode="before")
    @classmethod
    def _empty_path_is_unset(cls, value):
        if isinstance(value, str):
            return Path(value.strip()).expanduser() if value.strip() else None
        return value

    def export(self) -> None:
        """Export resolved values so child processes inherit them."""
        os.environ[SECRET_KEY_OPENAI] = self.openai_api_key
        os.environ["KIND_CLUSTER_NAME"] = self.kind_cluster_name
        os.environ["CA_BUNDLE_PATH"] = str(self.ca_bundle_path) if self.ca_bundle_path else ""


def load_config(env_file: Path | str = DEFAULT_ENV_FILE) -> KagentConfig:
    """Load and validate configuration from *env_file*, then export it.

    Args:
        env_file: Path to the dotenv file.

    Returns:
        The resolved, immutable configuration.

    Raises:
        ConfigError: If the file is absent or OPENAI_API_KEY is unset or empty.
    """
    env_path = Path(env_file)
    if not env_path.is_file():
        raise ConfigError(f"{env_path} file not found! Create it from .env.template")

    console.print("[blue]ℹ️  Loading configuration from .env file...[/blue]")
    try:
        cfg = KagentConfig(_env_file=env_path)
    except ValidationError as err:
        logger.debug("Config validation failed: %s", err)
        raise ConfigError(f"{SECRET_KEY_OPENAI} is required in {env_path}") from err

    cfg.export()
    console.print("[green]✅ Configuration loaded[/green]")
    return cfg


# ============================================================================
# Setup flags
# ============================================================================

@dataclass(frozen=True)
class SetupOptions:
    """Options for the forward setup pipeline.

    Attributes:
        skip_argocd: Skip the ArgoCD installation step.
        initial: Allow the certificate step to reload containerd on the nodes.
    """

    skip_argocd: bool = False
    initial: bool = False
