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

"""Background kubectl port-forwards tracked through PID files.

A tunnel outlives the invocation that started it. Its PID is written to a
well-known file so a later ``--status`` or ``--teardown`` run can find it.
Normal exit leaves tunnels running; only the interrupt path cleans up.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

import requests
import sh
from rich.panel import Panel

from kagent_setup import console, logger
from kagent_setup.constants import (
    ARGOCD_SERVER_SERVICE,
    DEFAULT_ARGOCD_NAMESPACE,
    DEFAULT_KAGENT_NAMESPACE,
    KAGENT_UI_SERVICE,
    PORT_FORWARD_START_GRACE_SECONDS,
    PORT_FORWARD_START_RETRY_WAIT_SECONDS,
    PORT_FORWARD_SWEEP_PAUSE_SECONDS,
    PROBE_CONNECT_TIMEOUT_SECONDS,
    PROBE_MAX_RETRIES,
    PROBE_PATHS,
    PROBE_POLL_INTERVAL_SECONDS,
    PROBE_READ_TIMEOUT_SECONDS,
    STATE_DIR,
)
from kagent_setup.errors import ProbeExhausted
from kagent_setup.utils import poll_until


# ============================================================================
# Models
# ============================================================================

@dataclass(frozen=True)
class PortForward:
    """A service tunnel exposed on a fixed local port.

    Attributes:
        name: Identifier used for the PID and log file names.
        label: Human-readable service name.
        service: Kubernetes Service name.
        namespace: Namespace of the Service.
        local_port: Port bound on localhost.
        remote_port: Service port inside the cluster.
        scheme: URL scheme used to reach the tunnel.
        keep_log: Write kubectl's output to a log file instead of discarding it.
    """

    name: str
    label: str
    service: str
    namespace: str
    local_port: int
    remote_port: int
    scheme: str = "http"
    keep_log: bool = False

    @property
    def url(self) -> str:
        return f"{self.scheme}://localhost:{self.local_port}"

    @property
    def command(self) -> list[str]:
        return [
            "kubectl", "port-forward", f"svc/{self.service}",
            "-n", self.namespace, f"{self.local_port}:{self.remote_port}",
        ]

    @property
    def manual_command(self) -> str:
        return " ".join(self.command)


def argocd_forward(namespace: str = DEFAULT_ARGOCD_NAMESPACE) -> PortForward:
    return PortForward("argocd", "ArgoCD", ARGOCD_SERVER_SERVICE, namespace, 8080, 443, scheme="https")


def kagent_ui_forward(namespace: str = DEFAULT_KAGENT_NAMESPACE) -> PortForward:
    return PortForward("kagent-ui", "Kagent UI", KAGENT_UI_SERVICE, namespace, 8090, 80, keep_log=True)


def pid_alive(pid: int) -> bool:
    """Return True if a process with *pid* exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@dataclass
class ProcessHandle:
    """A running (or recently running) port-forward process.

    Liveness is probed on every access. When this invocation spawned the
    process the Popen object is kept so an early exit is reaped.
    """

    forward: PortForward
    pid: int
    process: subprocess.Popen | None = field(default=None, repr=False, compare=False)

    @property
    def alive(self) -> bool:
        if self.process is not None:
            return self.process.poll() is None
        return pid_alive(self.pid)


# ============================================================================
# Readiness probe
# ============================================================================

def probe_once(url: str) -> bool:
    """Return True if any candidate health path answers HTTP at *url*."""
    for path in PROBE_PATHS:
        try:
            requests.get(
                f"{url}{path}",
                timeout=(PROBE_CONNECT_TIMEOUT_SECONDS, PROBE_READ_TIMEOUT_SECONDS),
            )
            return True
        except requests.RequestException:
            continue
    return False


# ============================================================================
# Manager
# ============================================================================

class PortForwardManager:
    """Starts, verifies, and stops the known port-forwards.

    Args:
        forwards: Tunnels this manager owns; ``stop_all`` acts on all of them.
        state_dir: Directory holding the PID and log files.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        forwards: Iterable[PortForward],
        state_dir: Path = STATE_DIR,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.forwards = {fwd.name: fwd for fwd in forwards}
        self.state_dir = Path(state_dir)
        self._sleep = sleep

    def __getitem__(self, name: str) -> PortForward:
        return self.forwards[name]

    def pid_file(self, forward: PortForward) -> Path:
        return self.state_dir / f"{forward.name}-port-forward.pid"

    def log_file(self, forward: PortForward) -> Path:
        return self.state_dir / f"{forward.name}-pf.log"

    def load(self, forward: PortForward) -> ProcessHandle | None:
        """Rediscover a tunnel from its PID file, or None if there is none."""
        try:
            pid = int(self.pid_file(forward).read_text().strip())
        except (OSError, ValueError):
            return None
        return ProcessHandle(forward, pid)

    def _launch(self, forward: PortForward) -> ProcessHandle:
        if forward.keep_log:
            output = open(self.log_file(forward), "wb")
        else:
            output = subprocess.DEVNULL
        try:
            process = subprocess.Popen(
                forward.command,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        finally:
            if output is not subprocess.DEVNULL:
                output.close()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.pid_file(forward).write_text(f"{process.pid}\n")
        logger.debug("Started %s (PID %d)", forward.manual_command, process.pid)
        return ProcessHandle(forward, process.pid, process)

    def start(self, forward: PortForward, attempts: int = 1) -> ProcessHandle | None:
        """Replace any existing tunnel on the port with a fresh one.

        A tunnel that dies right after launch is reported with the manual
        command to run; it does not raise.

        Args:
            forward: Tunnel to start.
            attempts: Launch attempts before giving up.

        Returns:
            Handle of the last launched process (possibly dead), or None if
            nothing was launched.
        """
        console.print(f"[blue]ℹ️  Starting {forward.label} port-forward...[/blue]")
        self.stop(forward)
        self._sleep(PORT_FORWARD_SWEEP_PAUSE_SECONDS)

        handle: ProcessHandle | None = None

        def _attempt() -> bool:
            nonlocal handle
            handle = self._launch(forward)
            self._sleep(PORT_FORWARD_START_GRACE_SECONDS)
            return handle.alive

        def _report_retry(attempt: int) -> None:
            console.print(f"[yellow]⚠️  Port-forward attempt {attempt} failed, retrying...[/yellow]")

        result = poll_until(
            _attempt,
            interval=PORT_FORWARD_START_RETRY_WAIT_SECONDS,
            max_attempts=attempts,
            on_retry=_report_retry,
            sleep=self._sleep,
        )
        if result.ready:
            console.print(f"[green]✅ {forward.label} port-forward started (PID: {handle.pid})[/green]")
        else:
            console.print(f"[yellow]⚠️  Failed to start {forward.label} port-forward[/yellow]")
            console.print(f"[blue]ℹ️  You can try manually: {forward.manual_command}[/blue]")
            self.pid_file(forward).unlink(missing_ok=True)
        return handle

    def wait_until_responding(self, forward: PortForward, attempts: int = PROBE_MAX_RETRIES) -> None:
        """Block until the tunnel answers HTTP.

        Raises:
            ProbeExhausted: If no candidate path answered within *attempts*.
        """
        console.print(f"[blue]ℹ️  Testing {forward.label} connectivity...[/blue]")

        def _report_retry(attempt: int) -> None:
            console.print(
                f"[blue]ℹ️  Attempt {attempt}/{attempts} - {forward.label} not responding yet, "
                f"retrying in {PROBE_POLL_INTERVAL_SECONDS} seconds...[/blue]"
            )

        result = poll_until(
            lambda: probe_once(forward.url),
            interval=PROBE_POLL_INTERVAL_SECONDS,
            max_attempts=attempts,
            on_retry=_report_retry,
            sleep=self._sleep,
        )
        if result.exhausted:
            raise ProbeExhausted(forward.url, result.attempts)
        console.print(f"[green]✅ {forward.label} is responding at: {forward.url}[/green]")

    def verify(self, handle: ProcessHandle | None, attempts: int = PROBE_MAX_RETRIES) -> bool:
        """Return True if *handle* is alive and its service answers HTTP.

        Liveness alone is not enough: kubectl may be running before the
        service accepts traffic.
        """
        if handle is None or not handle.alive:
            return False
        forward = handle.forward
        try:
            self.wait_until_responding(forward, attempts)
        except ProbeExhausted:
            console.print(f"[yellow]⚠️  {forward.label} port-forward appears to be running but not responding at: {forward.url}[/yellow]")
            console.print("[blue]ℹ️  This might be normal if the service is still starting up.[/blue]")
            return False
        return True

    def _sweep(self, forward: PortForward) -> None:
        try:
            sh.pkill("-f", f"port-forward.*{forward.local_port}", _ok_code=[0, 1])
        except (sh.ErrorReturnCode, sh.CommandNotFound) as err:
            logger.debug("pkill sweep for port %d failed: %s", forward.local_port, err)

    def stop(self, forward: PortForward) -> None:
        """Terminate a tunnel and forget its state. Safe to call repeatedly.

        Tolerates a missing PID file and an already-dead process. Also sweeps
        any other forwarder bound to the same local port.
        """
        handle = self.load(forward)
        if handle is not None and handle.pid > 0:
            try:
                os.kill(handle.pid, signal.SIGTERM)
                logger.debug("Sent SIGTERM to %s (PID %d)", forward.name, handle.pid)
            except ProcessLookupError:
                pass
            except PermissionError as err:
                logger.warning("Cannot stop PID %d: %s", handle.pid, err)
        self._sweep(forward)
        self.pid_file(forward).unlink(missing_ok=True)
        self.log_file(forward).unlink(missing_ok=True)

    def stop_all(self) -> None:
        """Stop every tunnel this manager knows about."""
        for forward in self.forwards.values():
            self.stop(forward)


# ============================================================================
# Interrupt handling and status
# ============================================================================

def install_interrupt_handler(manager: PortForwardManager) -> Callable:
    """Stop every tunnel and exit 1 on SIGINT or SIGTERM.

    Returns:
        The installed handler.
    """
    def _on_interrupt(signum, frame) -> None:
        console.print("[yellow]⚠️  Script interrupted, cleaning up background processes...[/yellow]")
        manager.stop_all()
        sys.exit(1)

    signal.signal(signal.SIGINT, _on_interrupt)
    signal.signal(signal.SIGTERM, _on_interrupt)
    return _on_interrupt


def show_status(manager: PortForwardManager) -> dict[str, bool]:
    """Print liveness (and UI readiness) of every known tunnel.

    Returns:
        Mapping of tunnel name to liveness.
    """
    console.print(Panel.fit("🔍 Port-Forward Status", style="bold blue"))
    liveness: dict[str, bool] = {}
    for forward in manager.forwards.values():
        handle = manager.load(forward)
        alive = handle is not None and handle.alive
        liveness[forward.name] = alive
        if not alive:
            console.print(f"[red]❌ {forward.label}: Not running[/red]")
            console.print(f"   Start with: {forward.manual_command}")
            continue
        console.print(f"[green]✅ {forward.label}: {forward.url} (PID: {handle.pid})[/green]")
        if forward.scheme == "http":
            if probe_once(forward.url):
                console.print("   Status: Responding ✅")
            else:
                console.print("   Status: Not responding (service may be starting) ⏳")

    console.print()
    console.print("🔧 Manual port-forward commands:")
    for forward in manager.forwards.values():
        console.print(f"  {forward.label + ':':<12}{forward.manual_command}")
    return liveness
