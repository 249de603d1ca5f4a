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

"""Prerequisite checks and CA bundle propagation to Kind nodes."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

from rich.panel import Panel

from kagent_setup import console, logger
from kagent_setup.config import KagentConfig
from kagent_setup.constants import (
    CERT_PROBE_POD,
    CLUSTER_REACHABLE_MAX_RETRIES,
    CLUSTER_REACHABLE_POLL_INTERVAL_SECONDS,
    CONTAINERD_RELOAD_GRACE_SECONDS,
    NODE_CA_BUNDLE_PATH,
    REQUIRED_COMMANDS,
    dep_value,
)
from kagent_setup.errors import CommandError, PrerequisiteError
from kagent_setup.utils import (
    poll_until,
    require_command,
    run_kind,
    run_kubectl,
    run_podman,
)


# ============================================================================
# Prerequisites
# ============================================================================

def cluster_reachable() -> bool:
    """Return True if ``kubectl cluster-info`` succeeds."""
    ok, _, _ = run_kubectl(["cluster-info"])
    return ok


def check_prerequisites() -> None:
    """Verify every required CLI is installed and the cluster answers.

    Raises:
        PrerequisiteError: Naming the first missing tool, or if the cluster
            cannot be reached.
    """
    console.print(Panel.fit("Checking prerequisites", style="bold blue"))
    for cmd, hint in REQUIRED_COMMANDS:
        require_command(cmd, hint)
    if not cluster_reachable():
        raise PrerequisiteError("Cannot connect to Kubernetes cluster")
    console.print("[green]✅ Prerequisites check passed[/green]")


# ============================================================================
# Certificates
# ============================================================================

def tls_probe_succeeds() -> bool:
    """Run a throwaway curl pod and report whether outbound TLS verifies.

    A pod that cannot be scheduled or pulled counts as a failed probe.
    """
    image = dep_value("tls_probe", "image", default="curlimages/curl")
    url = dep_value("tls_probe", "url")
    connect_timeout = str(dep_value("tls_probe", "connect_timeout", default=3))

    run_kubectl(["delete", "pod", CERT_PROBE_POD, "--ignore-not-found", "--wait=false"])
    ok, _, stderr = run_kubectl([
        "run", CERT_PROBE_POD,
        f"--image={image}",
        "--rm", "-i", "--restart=Never", "--quiet",
        "--", "curl", "-s", "--connect-timeout", connect_timeout, url,
    ], timeout=120)
    if not ok:
        logger.debug("TLS probe failed: %s", stderr.strip())
    return ok


def list_kind_nodes(cluster_name: str) -> list[str]:
    """Enumerate the node containers of a Kind cluster.

    Args:
        cluster_name: Kind cluster name.

    Returns:
        Node container names, in the order kind reports them.

    Raises:
        CommandError: If kind cannot list the nodes.
    """
    ok, stdout, stderr = run_kind(["get", "nodes", "--name", cluster_name])
    if not ok:
        raise CommandError(f"Failed to list Kind nodes for '{cluster_name}': {stderr.strip()[:200]}")
    return [line.strip() for line in stdout.splitlines() if line.strip()]


def node_bundle_matches(node: str, bundle: Path) -> bool:
    """Return True if *node* already holds a byte-identical copy of *bundle*."""
    ok, installed, _ = run_podman(["exec", node, "cat", NODE_CA_BUNDLE_PATH])
    if not ok:
        return False
    return installed == bundle.read_text()


def install_bundle(node: str, bundle: Path) -> None:
    """Copy *bundle* onto *node* and rebuild its certificate store.

    Raises:
        CommandError: If the copy or the store rebuild fails.
    """
    ok, _, stderr = run_podman(["cp", str(bundle), f"{node}:{NODE_CA_BUNDLE_PATH}"])
    if not ok:
        raise CommandError(f"Failed to copy CA bundle to {node}: {stderr.strip()[:200]}")
    ok, _, stderr = run_podman(["exec", node, "update-ca-certificates"])
    if not ok:
        raise CommandError(f"update-ca-certificates failed on {node}: {stderr.strip()[:200]}")


def reload_containerd(node: str) -> None:
    """Send SIGHUP to containerd on *node* so it re-reads the trust store."""
    ok, _, stderr = run_podman(["exec", node, "pkill", "-HUP", "containerd"])
    if not ok:
        console.print(f"[yellow]⚠️  Could not signal containerd on {node}: {stderr.strip()[:200]}[/yellow]")


def reconcile_certificates(
    cfg: KagentConfig,
    force_restart: bool,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """Make every Kind node trust the configured CA bundle.

    Args:
        cfg: Resolved configuration with the bundle path and cluster name.
        force_restart: Reload containerd on updated nodes and wait for the
            API server to come back.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Names of the nodes whose bundle was replaced.
    """
    bundle = cfg.ca_bundle_path
    if bundle is None or not bundle.is_file():
        console.print(f"[blue]ℹ️  CA bundle not found at {bundle or '(not configured)'} - skipping certificate fixes[/blue]")
        console.print("[blue]ℹ️  To configure custom CA certificates, set CA_BUNDLE_PATH in your .env file[/blue]")
        return []

    if tls_probe_succeeds():
        console.print("[blue]ℹ️  TLS certificates are working - skipping certificate fixes[/blue]")
        return []

    console.print(Panel.fit("Applying certificate fixes for Kind cluster", style="bold blue"))
    updated: list[str] = []
    for node in list_kind_nodes(cfg.kind_cluster_name):
        console.print(f"[blue]ℹ️  Processing node: {node}[/blue]")
        if node_bundle_matches(node, bundle):
            console.print(f"[blue]ℹ️  Certificates already up to date on {node}[/blue]")
            continue
        install_bundle(node, bundle)
        updated.append(node)

    if not updated:
        console.print("[green]✅ Certificate fixes not needed - already applied[/green]")
        return updated

    if not force_restart:
        console.print("[blue]ℹ️  Certificates updated but skipping containerd restart (use --initial to force restart)[/blue]")
        console.print("[green]✅ Certificate fixes applied[/green]")
        return updated

    console.print("[blue]ℹ️  Reloading containerd on nodes with updated certificates (--initial setup)...[/blue]")
    for node in updated:
        reload_containerd(node)
    console.print("[blue]ℹ️  Waiting for containerd to be ready...[/blue]")
    sleep(CONTAINERD_RELOAD_GRACE_SECONDS)

    result = poll_until(
        cluster_reachable,
        interval=CLUSTER_REACHABLE_POLL_INTERVAL_SECONDS,
        max_attempts=CLUSTER_REACHABLE_MAX_RETRIES,
        sleep=sleep,
    )
    if result.exhausted:
        console.print("[yellow]⚠️  Cluster API not reachable yet after containerd reload, continuing...[/yellow]")
    console.print("[green]✅ Certificate fixes applied[/green]")
    return updated
