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

"""ArgoCD installation and application descriptor deployment."""

from __future__ import annotations

import time
from collections.abc import Callable

from rich.panel import Panel

from kagent_setup import console
from kagent_setup.config import KagentConfig
from kagent_setup.constants import (
    APP_DESCRIPTORS,
    ARGOCD_INSTALL_TIMEOUT_SECONDS,
    ARGOCD_SERVER_DEPLOYMENT,
    PROJECT_DESCRIPTOR,
    PROJECT_INDEX_PAUSE_SECONDS,
    dep_value,
)
from kagent_setup.credentials import namespace_manifest
from kagent_setup.errors import CommandError, InstallTimeoutError
from kagent_setup.utils import apply_manifest, namespace_exists, run_kubectl


# ============================================================================
# ArgoCD
# ============================================================================

def ensure_argocd_installed(cfg: KagentConfig) -> bool:
    """Install ArgoCD unless its namespace already exists.

    Version drift on an existing install is not reconciled.

    Args:
        cfg: Resolved configuration with the ArgoCD namespace.

    Returns:
        True if ArgoCD was installed by this call, False if it was skipped.

    Raises:
        CommandError: If the upstream manifests cannot be applied.
        InstallTimeoutError: If argocd-server is not available in time.
    """
    namespace = cfg.argocd_namespace
    if namespace_exists(namespace):
        console.print("[blue]ℹ️  ArgoCD already installed[/blue]")
        return False

    console.print(Panel.fit("Installing ArgoCD", style="bold blue"))
    apply_manifest(namespace_manifest(namespace))

    manifest_url = dep_value("argocd", "install_manifest")
    ok, _, stderr = run_kubectl(["apply", "-n", namespace, "-f", manifest_url], timeout=300)
    if not ok:
        raise CommandError(f"Failed to apply ArgoCD manifests: {stderr.strip()[:200]}")

    console.print("[blue]ℹ️  Waiting for ArgoCD to be ready...[/blue]")
    timeout = ARGOCD_INSTALL_TIMEOUT_SECONDS
    ok, _, stderr = run_kubectl([
        "wait", "--for=condition=available", f"--timeout={timeout}s",
        f"deployment/{ARGOCD_SERVER_DEPLOYMENT}", "-n", namespace,
    ], timeout=timeout + 10)
    if not ok:
        raise InstallTimeoutError(f"ArgoCD not available after {timeout}s: {stderr.strip()[:200]}")
    console.print("[green]✅ ArgoCD installed[/green]")
    return True


# ============================================================================
# Applications
# ============================================================================

def _apply_descriptor(cfg: KagentConfig, filename: str) -> None:
    path = cfg.argocd_dir / filename
    ok, _, stderr = run_kubectl(["apply", "-f", str(path)])
    if not ok:
        raise CommandError(f"Failed to apply {path}: {stderr.strip()[:200]}")


def deploy_applications(cfg: KagentConfig, sleep: Callable[[float], None] = time.sleep) -> None:
    """Apply the project descriptor, then each application descriptor.

    ArgoCD is given a short pause to index the project before any
    application references it.

    Args:
        cfg: Resolved configuration with the descriptor directory.
        sleep: Sleep function, replaceable in tests.

    Raises:
        CommandError: If a descriptor is rejected. Not retried.
    """
    console.print(Panel.fit("Deploying ArgoCD applications", style="bold blue"))
    _apply_descriptor(cfg, PROJECT_DESCRIPTOR)
    sleep(PROJECT_INDEX_PAUSE_SECONDS)
    for filename in APP_DESCRIPTORS:
        _apply_descriptor(cfg, filename)
    console.print("[green]✅ ArgoCD applications deployed[/green]")
