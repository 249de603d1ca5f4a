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

"""Interactive teardown of the Kagent workload.

Removes the applications, the workload namespace, its secrets, the ArgoCD
project, and the port-forwards. ArgoCD itself, the Kind cluster, and the
cached images are left in place.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Callable
from enum import Enum

from rich.panel import Panel
from rich.prompt import Prompt

from kagent_setup import console, logger
from kagent_setup.config import KagentConfig
from kagent_setup.constants import (
    APP_DELETE_SETTLE_SECONDS,
    APPLICATIONS,
    ARGOCD_PROJECT,
    NAMESPACE_DELETE_TIMEOUT,
    NAMESPACE_GONE_MAX_RETRIES,
    NAMESPACE_GONE_POLL_INTERVAL_SECONDS,
    SECRET_MCP,
    SECRET_OPENAI,
)
from kagent_setup.errors import PartialTeardownFailure
from kagent_setup.portforward import PortForwardManager
from kagent_setup.utils import namespace_exists, poll_until, run_kubectl

_AFFIRMATIVE = re.compile(r"^[Yy]$")


class NamespaceDeletion(str, Enum):
    """Which rung of the deletion ladder removed the namespace."""

    ABSENT = "absent"
    GRACEFUL = "graceful"
    FORCED = "forced"


# ============================================================================
# Namespace deletion ladder
# ============================================================================

def delete_namespace_gracefully(namespace: str) -> None:
    """Delete *namespace* and wait for it, bounded by a short timeout.

    Raises:
        PartialTeardownFailure: If the delete did not finish in time.
    """
    ok, _, stderr = run_kubectl(
        ["delete", "namespace", namespace, f"--timeout={NAMESPACE_DELETE_TIMEOUT}"],
        timeout=60,
    )
    if not ok:
        raise PartialTeardownFailure(f"Graceful deletion of namespace {namespace} failed: {stderr.strip()[:200]}")


def strip_finalizers(namespace: str) -> bool:
    """Clear ``spec.finalizers`` through the namespace finalize subresource."""
    ok, stdout, stderr = run_kubectl(["get", "namespace", namespace, "-o", "json"])
    if not ok:
        logger.debug("Cannot read namespace %s: %s", namespace, stderr.strip())
        return False
    try:
        body = json.loads(stdout)
    except json.JSONDecodeError:
        return False
    body.setdefault("spec", {})["finalizers"] = []
    ok, _, stderr = run_kubectl(
        ["replace", "--raw", f"/api/v1/namespaces/{namespace}/finalize", "-f", "-"],
        stdin=json.dumps(body),
    )
    if not ok:
        logger.debug("Finalizer strip on %s failed: %s", namespace, stderr.strip())
    return ok


def force_delete_namespace(namespace: str) -> bool:
    """Delete *namespace* with ``--force --grace-period=0``."""
    ok, _, stderr = run_kubectl(
        ["delete", "namespace", namespace, "--force", "--grace-period=0", "--wait=false"],
        timeout=60,
    )
    if not ok:
        logger.debug("Force delete of %s failed: %s", namespace, stderr.strip())
    return ok


def delete_namespace(namespace: str) -> NamespaceDeletion:
    """Remove *namespace*, escalating from graceful to forced deletion.

    Returns:
        The rung that was used.
    """
    if not namespace_exists(namespace):
        return NamespaceDeletion.ABSENT
    try:
        delete_namespace_gracefully(namespace)
        return NamespaceDeletion.GRACEFUL
    except PartialTeardownFailure as err:
        logger.debug("%s", err)
        console.print("[yellow]⚠️  Graceful deletion failed, forcing removal...[/yellow]")
    strip_finalizers(namespace)
    force_delete_namespace(namespace)
    return NamespaceDeletion.FORCED


def wait_for_namespace_gone(namespace: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    """Poll until *namespace* no longer exists. Returns False on timeout."""
    def _progress(attempt: int) -> None:
        console.print(f"[blue]ℹ️    Waiting for namespace deletion... ({attempt}/{NAMESPACE_GONE_MAX_RETRIES})[/blue]")

    result = poll_until(
        lambda: not namespace_exists(namespace),
        interval=NAMESPACE_GONE_POLL_INTERVAL_SECONDS,
        max_attempts=NAMESPACE_GONE_MAX_RETRIES,
        on_retry=_progress,
        sleep=sleep,
    )
    return result.ready


# ============================================================================
# Inventory and confirmation
# ============================================================================

def _print_lookup(title: str, args: list[str], missing: str, keep: Callable[[str], bool]) -> None:
    console.print(f"  {title}:")
    ok, stdout, _ = run_kubectl(args)
    lines = [line for line in stdout.splitlines() if keep(line)] if ok else []
    if not lines:
        console.print(f"    {missing}")
    for line in lines:
        console.print(f"    {line}", markup=False)


def print_inventory(cfg: KagentConfig) -> None:
    """Show what currently exists and what teardown will remove."""
    console.print()
    console.print("[blue]ℹ️  📊 Current resources:[/blue]")
    _print_lookup(
        "ArgoCD Applications", ["get", "applications", "-n", cfg.argocd_namespace], "None found",
        lambda line: any(app in line for app in APPLICATIONS),
    )
    _print_lookup(
        "Kagent Namespace", ["get", "namespace", cfg.kagent_namespace], "Not found",
        lambda line: not line.startswith("NAME"),
    )
    _print_lookup(
        "ArgoCD Project", ["get", "appproject", ARGOCD_PROJECT, "-n", cfg.argocd_namespace], "Not found",
        lambda line: not line.startswith("NAME"),
    )
    console.print()
    console.print("[yellow]⚠️  This will completely remove ALL Kagent resources and namespaces.[/yellow]")
    console.print("   ✅ Kagent namespace and all resources")
    console.print(f"   ✅ ArgoCD applications ({', '.join(APPLICATIONS)})")
    console.print("   ✅ Kagent ArgoCD project")
    console.print("   ✅ All port-forwards")
    console.print("   🔄 Container images will be kept for faster restart")
    console.print()


def _ask(question: str) -> str:
    return Prompt.ask(question, console=console, default="", show_default=False)


def confirmed(answer: str | None) -> bool:
    """Return True only for a single ``y`` or ``Y``."""
    return bool(answer) and _AFFIRMATIVE.fullmatch(answer) is not None


# ============================================================================
# Public entry point
# ============================================================================

def teardown(
    cfg: KagentConfig,
    manager: PortForwardManager,
    ask: Callable[[str], str] = _ask,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Remove the Kagent workload after interactive confirmation.

    Args:
        cfg: Resolved configuration.
        manager: Port-forward manager owning the tunnels to stop.
        ask: Prompt function returning the operator's answer.
        sleep: Sleep function, replaceable in tests.

    Returns:
        True if teardown ran, False if it was cancelled.
    """
    console.print(Panel.fit("🧹 Starting complete teardown", style="bold blue"))
    print_inventory(cfg)
    if not confirmed(ask("❓ Are you sure you want to proceed? (y/N)")):
        console.print("[blue]ℹ️  Teardown cancelled[/blue]")
        return False

    console.print("[blue]ℹ️  🔄 Killing port-forwards...[/blue]")
    manager.stop_all()
    console.print("[green]✅ Port-forwards killed[/green]")

    console.print("[blue]ℹ️  🗑️  Removing ArgoCD applications...[/blue]")
    for app in APPLICATIONS:
        console.print(f"[blue]ℹ️    Removing application: {app}[/blue]")
        ok, _, stderr = run_kubectl([
            "delete", "application", app, "-n", cfg.argocd_namespace,
            "--wait=false", "--ignore-not-found=true",
        ])
        if not ok:
            console.print(f"[yellow]⚠️  Could not delete application {app}: {stderr.strip()[:200]}[/yellow]")
    sleep(APP_DELETE_SETTLE_SECONDS)

    console.print("[blue]ℹ️  🏗️  Forcefully removing Kagent namespace...[/blue]")
    namespace = cfg.kagent_namespace
    rung = delete_namespace(namespace)
    if rung is NamespaceDeletion.ABSENT:
        console.print("[blue]ℹ️  Kagent namespace already removed[/blue]")
    elif wait_for_namespace_gone(namespace, sleep=sleep):
        console.print("[green]✅ Kagent namespace completely removed[/green]")
    else:
        console.print("[yellow]⚠️  Namespace still exists but continuing...[/yellow]")
        console.print(f"[blue]ℹ️  Inspect leftovers with: kubectl get all -n {namespace}[/blue]")

    console.print("[blue]ℹ️  🔐 Removing secrets and ArgoCD project...[/blue]")
    for secret in (SECRET_OPENAI, SECRET_MCP):
        run_kubectl(["delete", "secret", secret, "-n", namespace, "--ignore-not-found=true"])
    run_kubectl(["delete", "appproject", ARGOCD_PROJECT, "-n", cfg.argocd_namespace, "--ignore-not-found=true"])

    console.print("[blue]ℹ️  🧽 Cleaning up temporary files...[/blue]")
    manager.stop_all()

    _print_teardown_summary()
    return True


def _print_teardown_summary() -> None:
    console.print()
    console.print("[green]✅ 🎉 Complete teardown finished![/green]")
    console.print("=" * 50)
    console.print("✅ Removed:")
    console.print("   - Kagent namespace (completely)")
    console.print("   - All ArgoCD applications")
    console.print("   - Kagent ArgoCD project")
    console.print("   - All port-forwards")
    console.print()
    console.print("🔄 Preserved:")
    console.print("   - Container images in Kind cluster")
    console.print("   - ArgoCD installation")
    console.print("   - Kind cluster")
    console.print()
    console.print("🚀 Next steps:")
    console.print("   - Run 'setup-kagent' to redeploy quickly")
    console.print("   - Images are cached for faster startup")
    console.print("=" * 50)
