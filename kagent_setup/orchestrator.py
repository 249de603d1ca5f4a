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

"""Orchestration functions that compose domain modules into workflows."""

from __future__ import annotations

import time
from collections.abc import Callable

from rich.panel import Panel
from rich.table import Table

from kagent_setup import console
from kagent_setup.cluster import check_prerequisites, reconcile_certificates
from kagent_setup.components import deploy_applications, ensure_argocd_installed
from kagent_setup.config import KagentConfig, SetupOptions
from kagent_setup.constants import (
    ARGOCD_ADMIN_USER,
    UI_READY_MAX_RETRIES,
    UI_READY_POLL_INTERVAL_SECONDS,
    UI_READY_PROGRESS_EVERY,
)
from kagent_setup.credentials import provision_secrets
from kagent_setup.errors import ApplicationNotFoundError
from kagent_setup.portforward import (
    PortForwardManager,
    argocd_forward,
    install_interrupt_handler,
    kagent_ui_forward,
)
from kagent_setup.reconcile import SyncOutcome, argocd_admin_password, settle_applications
from kagent_setup.utils import poll_until, run_kubectl


def build_manager(cfg: KagentConfig | None = None) -> PortForwardManager:
    """Create the manager for the ArgoCD and Kagent UI tunnels."""
    if cfg is None:
        return PortForwardManager([argocd_forward(), kagent_ui_forward()])
    return PortForwardManager([
        argocd_forward(cfg.argocd_namespace),
        kagent_ui_forward(cfg.kagent_namespace),
    ])


# ============================================================================
# Kagent UI
# ============================================================================

def ui_service_ready(cfg: KagentConfig, service: str) -> bool:
    """Return True once *service* exists and has at least one endpoint."""
    ok, _, _ = run_kubectl(["get", "service", service, "-n", cfg.kagent_namespace])
    if not ok:
        return False
    ok, stdout, _ = run_kubectl([
        "get", "endpoints", service, "-n", cfg.kagent_namespace,
        "-o", "jsonpath={.subsets[0].addresses[0].ip}",
    ])
    return ok and bool(stdout.strip())


def setup_ui_forward(
    cfg: KagentConfig,
    manager: PortForwardManager,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Wait for the Kagent UI service, tunnel it, and probe it.

    Every failure here is a warning; setup carries on.

    Returns:
        True if the UI answered through the tunnel.
    """
    console.print(Panel.fit("Setting up port-forwards", style="bold blue"))
    forward = manager["kagent-ui"]
    console.print("[blue]ℹ️  Waiting for Kagent UI to be ready...[/blue]")

    def _progress(attempt: int) -> None:
        if attempt % UI_READY_PROGRESS_EVERY == 0:
            minutes = attempt // UI_READY_PROGRESS_EVERY
            total = UI_READY_MAX_RETRIES // UI_READY_PROGRESS_EVERY
            console.print(f"[blue]ℹ️  Still waiting for Kagent UI... ({minutes}/{total} minutes)[/blue]")

    result = poll_until(
        lambda: ui_service_ready(cfg, forward.service),
        interval=UI_READY_POLL_INTERVAL_SECONDS,
        max_attempts=UI_READY_MAX_RETRIES,
        on_retry=_progress,
        sleep=sleep,
    )
    if result.exhausted:
        console.print("[yellow]⚠️  Kagent UI not ready after 10 minutes[/yellow]")
        console.print(f"[blue]ℹ️  You can try manually: {forward.manual_command}[/blue]")
        return False
    console.print("[green]✅ Kagent UI service is ready![/green]")

    handle = manager.start(forward)
    if handle is None or not handle.alive:
        return False
    if manager.verify(handle):
        console.print(f"[green]✅ Kagent UI accessible at: {forward.url}[/green]")
        return True
    console.print("[blue]ℹ️  Kagent UI port-forward started but service may still be initializing[/blue]")
    console.print(f"[blue]ℹ️  📍 Try accessing {forward.url} in a few minutes[/blue]")
    console.print(f"[blue]ℹ️  📋 Check logs: tail -f {manager.log_file(forward)}[/blue]")
    return False


# ============================================================================
# Summary
# ============================================================================

def show_final_info(
    cfg: KagentConfig,
    manager: PortForwardManager,
    outcomes: dict[str, SyncOutcome],
) -> None:
    """Print services, credentials, application state, and next steps."""
    password = argocd_admin_password(cfg) or "(unavailable)"

    console.print()
    console.print("[green]✅ Setup Complete! 🎉[/green]")

    services = Table(title="🌐 Services", show_header=True, header_style="bold")
    services.add_column("Service")
    services.add_column("URL")
    services.add_column("Tunnel")
    for forward in manager.forwards.values():
        handle = manager.load(forward)
        state = "running" if handle is not None and handle.alive else "not running"
        services.add_row(forward.label, forward.url, state)
    console.print(services)

    console.print("🔐 ArgoCD Credentials:")
    console.print(f"   Username: {ARGOCD_ADMIN_USER}")
    console.print(f"   Password: {password}")
    console.print()

    if outcomes:
        apps = Table(title="📱 Applications", show_header=True, header_style="bold")
        apps.add_column("Application")
        apps.add_column("Outcome")
        for app, outcome in outcomes.items():
            style = "green" if outcome is SyncOutcome.SYNCED else "yellow"
            apps.add_row(app, f"[{style}]{outcome.value}[/{style}]")
        console.print(apps)

    ok, stdout, _ = run_kubectl(["get", "applications", "-n", cfg.argocd_namespace])
    if ok and stdout.strip():
        console.print(stdout.rstrip(), markup=False)
    console.print()

    console.print("📝 Next Steps:")
    console.print("   1. Connect your Git repository in ArgoCD")
    console.print("   2. Update application sources to point to your repo")
    console.print("   3. Configure any additional secrets as needed")
    console.print()
    console.print("💡 Helpful commands:")
    console.print(f"  kubectl get applications -n {cfg.argocd_namespace}")
    console.print(f"  kubectl get all -n {cfg.kagent_namespace}")
    console.print(f"  kubectl get secrets -n {cfg.kagent_namespace}")
    console.print("  argocd app list")


# ============================================================================
# Public API
# ============================================================================

def run_setup(
    cfg: KagentConfig,
    options: SetupOptions,
    manager: PortForwardManager | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, SyncOutcome]:
    """Run the forward pipeline from prerequisite checks to the summary.

    Interrupts stop every tunnel before exiting; a normal return leaves the
    tunnels running for the operator.

    Args:
        cfg: Resolved configuration.
        options: Setup flags.
        manager: Port-forward manager, or None for the default one.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Per-application sync outcomes.

    Raises:
        PrerequisiteError: If a tool is missing or the cluster is unreachable.
        InstallTimeoutError: If ArgoCD does not converge.
        ApplicationNotFoundError: If an application never appears; raised
            after the UI tunnel and summary are handled.
    """
    if manager is None:
        manager = build_manager(cfg)
    install_interrupt_handler(manager)

    check_prerequisites()
    reconcile_certificates(cfg, force_restart=options.initial, sleep=sleep)

    provision_secrets(cfg)
    # ArgoCD must exist before Application CRs can be applied
    if not options.skip_argocd:
        ensure_argocd_installed(cfg)
    deploy_applications(cfg, sleep=sleep)

    outcomes: dict[str, SyncOutcome] = {}
    missing: ApplicationNotFoundError | None = None
    try:
        outcomes = settle_applications(cfg, manager, sleep=sleep)
    except ApplicationNotFoundError as err:
        console.print(f"[red]❌ {err}[/red]")
        missing = err

    setup_ui_forward(cfg, manager, sleep=sleep)
    show_final_info(cfg, manager, outcomes)
    if missing is not None:
        raise missing
    return outcomes
