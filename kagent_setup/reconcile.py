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

"""Waiting for ArgoCD applications to appear, settle, and sync."""

from __future__ import annotations

import base64
import binascii
import json
import time
from collections.abc import Callable, Sequence
from enum import Enum

from rich.panel import Panel

from kagent_setup import console, logger
from kagent_setup.config import KagentConfig
from kagent_setup.constants import (
    APP_OPERATION_MAX_RETRIES,
    APP_OPERATION_POLL_INTERVAL_SECONDS,
    APP_OPERATION_READY_PHASES,
    APP_VISIBLE_MAX_RETRIES,
    APP_VISIBLE_POLL_INTERVAL_SECONDS,
    APP_VISIBLE_PROGRESS_EVERY,
    APPLICATIONS,
    ARGOCD_ADMIN_SECRET,
    ARGOCD_ADMIN_USER,
    ARGOCD_SERVER_DEPLOYMENT,
    ARGOCD_SERVER_READY_TIMEOUT_SECONDS,
    PORT_FORWARD_START_MAX_RETRIES,
    SYNC_INTER_APP_PAUSE_SECONDS,
    SYNC_MAX_RETRIES,
    SYNC_RETRY_WAIT_SECONDS,
    SYNC_TIMEOUT_SECONDS,
)
from kagent_setup.errors import ApplicationNotFoundError, SyncExhausted
from kagent_setup.portforward import PortForwardManager
from kagent_setup.utils import poll_until, run_argocd, run_kubectl


class SyncOutcome(str, Enum):
    """Terminal state of one application after reconciliation."""

    SYNCED = "synced"
    EXHAUSTED = "sync-exhausted"


# ============================================================================
# Visibility
# ============================================================================

def application_exists(cfg: KagentConfig, app: str) -> bool:
    """Return True if the Application object is visible in the control plane."""
    ok, _, _ = run_kubectl(["get", "application", app, "-n", cfg.argocd_namespace])
    return ok


def wait_for_application(
    cfg: KagentConfig,
    app: str,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Poll until *app* exists.

    Returns:
        Number of polls it took.

    Raises:
        ApplicationNotFoundError: If the poll budget is exhausted.
    """
    max_attempts = APP_VISIBLE_MAX_RETRIES

    def _progress(attempt: int) -> None:
        if attempt % APP_VISIBLE_PROGRESS_EVERY == 0:
            console.print(f"[blue]ℹ️  Still waiting for application {app}... ({attempt}/{max_attempts})[/blue]")

    result = poll_until(
        lambda: application_exists(cfg, app),
        interval=APP_VISIBLE_POLL_INTERVAL_SECONDS,
        max_attempts=max_attempts,
        on_retry=_progress,
        sleep=sleep,
    )
    if result.exhausted:
        raise ApplicationNotFoundError(f"Application {app} not found after waiting")
    return result.attempts


# ============================================================================
# Control-plane access
# ============================================================================

def argocd_admin_password(cfg: KagentConfig) -> str | None:
    """Read the initial admin password, or None if it is unavailable."""
    ok, stdout, stderr = run_kubectl([
        "-n", cfg.argocd_namespace, "get", "secret", ARGOCD_ADMIN_SECRET,
        "-o", "jsonpath={.data.password}",
    ])
    if not ok or not stdout.strip():
        logger.debug("Admin secret not readable: %s", stderr.strip())
        return None
    try:
        return base64.b64decode(stdout.strip()).decode()
    except (binascii.Error, UnicodeDecodeError):
        return None


def ensure_argocd_access(cfg: KagentConfig, manager: PortForwardManager) -> bool:
    """Tunnel to argocd-server and log the argocd CLI in.

    Returns:
        True if the CLI is logged in, False if access could not be set up.
    """
    console.print("[blue]ℹ️  Waiting for ArgoCD server to be ready...[/blue]")
    timeout = ARGOCD_SERVER_READY_TIMEOUT_SECONDS
    ok, _, _ = run_kubectl([
        "wait", "--for=condition=available", f"--timeout={timeout}s",
        f"deployment/{ARGOCD_SERVER_DEPLOYMENT}", "-n", cfg.argocd_namespace,
    ], timeout=timeout + 10)
    if not ok:
        console.print("[yellow]⚠️  ArgoCD server not ready, but continuing...[/yellow]")

    forward = manager["argocd"]
    handle = manager.start(forward, attempts=PORT_FORWARD_START_MAX_RETRIES)
    if handle is None or not handle.alive:
        console.print(f"[yellow]⚠️  ArgoCD port-forward failed to start after {PORT_FORWARD_START_MAX_RETRIES} attempts[/yellow]")
        return False

    password = argocd_admin_password(cfg)
    if password is None:
        console.print("[yellow]⚠️  Could not read the ArgoCD admin password[/yellow]")
        return False

    console.print(f"[green]✅ ArgoCD accessible at: {forward.url} ({ARGOCD_ADMIN_USER}/{password})[/green]")
    ok, _, stderr = run_argocd([
        "login", f"localhost:{forward.local_port}",
        "--username", ARGOCD_ADMIN_USER, "--password", password, "--insecure",
    ], timeout=60)
    if not ok:
        console.print(f"[yellow]⚠️  argocd login failed: {stderr.strip()[:200]}[/yellow]")
        return False
    return True


# ============================================================================
# Operation state and sync
# ============================================================================

def operation_phase(app: str) -> str:
    """Return the phase of the app's current operation, "Unknown" if none."""
    ok, stdout, _ = run_argocd(["app", "get", app, "-o", "json"])
    if not ok:
        return "Unknown"
    try:
        status = json.loads(stdout).get("status") or {}
    except (json.JSONDecodeError, AttributeError):
        return "Unknown"
    phase = (status.get("operationState") or {}).get("phase")
    return phase or "Unknown"


def wait_for_operation(app: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    """Wait for any in-flight operation on *app* to settle.

    Returns:
        True if the app settled, False if the budget ran out. Callers proceed
        either way.
    """
    def _settled() -> bool:
        phase = operation_phase(app)
        if phase in APP_OPERATION_READY_PHASES:
            console.print(f"[blue]ℹ️  Application {app} is ready for configuration[/blue]")
            return True
        console.print(f"[blue]ℹ️  Waiting for {app} operation to complete (current: {phase})...[/blue]")
        return False

    result = poll_until(
        _settled,
        interval=APP_OPERATION_POLL_INTERVAL_SECONDS,
        max_attempts=APP_OPERATION_MAX_RETRIES,
        sleep=sleep,
    )
    if result.exhausted:
        console.print(f"[yellow]⚠️  {app} operation still running, proceeding with sync anyway[/yellow]")
    return result.ready


def sync_application(app: str, sleep: Callable[[float], None] = time.sleep) -> int:
    """Trigger ``argocd app sync`` with bounded retries.

    Returns:
        Number of attempts used.

    Raises:
        SyncExhausted: If every attempt failed.
    """
    console.print(f"[blue]ℹ️  Syncing {app} application...[/blue]")

    def _sync_once() -> bool:
        ok, _, stderr = run_argocd(
            ["app", "sync", app, "--timeout", str(SYNC_TIMEOUT_SECONDS)],
            timeout=SYNC_TIMEOUT_SECONDS + 30,
        )
        if not ok:
            logger.debug("argocd app sync %s failed: %s", app, stderr.strip())
        return ok

    def _report_retry(attempt: int) -> None:
        console.print(
            f"[yellow]⚠️  Sync failed for {app}, retrying in {SYNC_RETRY_WAIT_SECONDS} seconds... "
            f"(attempt {attempt}/{SYNC_MAX_RETRIES})[/yellow]"
        )

    result = poll_until(
        _sync_once,
        interval=SYNC_RETRY_WAIT_SECONDS,
        max_attempts=SYNC_MAX_RETRIES,
        on_retry=_report_retry,
        sleep=sleep,
    )
    if result.exhausted:
        raise SyncExhausted(app, result.attempts)
    console.print(f"[green]✅ {app} synced successfully[/green]")
    return result.attempts


# ============================================================================
# Public entry point
# ============================================================================

def settle_applications(
    cfg: KagentConfig,
    manager: PortForwardManager,
    apps: Sequence[str] = APPLICATIONS,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, SyncOutcome]:
    """Drive each application from declared to synced, one at a time.

    One application exhausting its sync retries does not stop the others.

    Args:
        cfg: Resolved configuration.
        manager: Port-forward manager used to reach argocd-server.
        apps: Application names, processed in order.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Mapping of application name to its terminal outcome.

    Raises:
        ApplicationNotFoundError: If an application never appears.
    """
    console.print(Panel.fit("Configuring applications with ArgoCD CLI", style="bold blue"))
    outcomes: dict[str, SyncOutcome] = {}
    access: bool | None = None

    for app in apps:
        wait_for_application(cfg, app, sleep=sleep)

        if access is None:
            access = ensure_argocd_access(cfg, manager)
        if not access:
            console.print(f"[yellow]⚠️  Skipping sync of {app}: ArgoCD API is not reachable[/yellow]")
            console.print(f"[blue]ℹ️  Sync manually later: argocd app sync {app}[/blue]")
            outcomes[app] = SyncOutcome.EXHAUSTED
            continue

        wait_for_operation(app, sleep=sleep)
        try:
            sync_application(app, sleep=sleep)
            outcomes[app] = SyncOutcome.SYNCED
        except SyncExhausted as err:
            console.print(f"[yellow]⚠️  {err}, continuing...[/yellow]")
            outcomes[app] = SyncOutcome.EXHAUSTED

        sleep(SYNC_INTER_APP_PAUSE_SECONDS)

    synced = sum(1 for outcome in outcomes.values() if outcome is SyncOutcome.SYNCED)
    if synced == len(outcomes):
        console.print("[green]✅ Applications configured and synced[/green]")
    else:
        console.print(f"[yellow]⚠️  {synced}/{len(outcomes)} applications synced[/yellow]")
    return outcomes
