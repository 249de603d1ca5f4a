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

"""Utility functions for external commands, manifests, and polling."""

from __future__ import annotations

import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass

import sh
import yaml
from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_fixed

from kagent_setup import logger
from kagent_setup.errors import CommandError, PrerequisiteError


# ============================================================================
# Command runners
# ============================================================================

def require_command(cmd: str, hint: str | None = None) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.
        hint: Message to report instead of the generic one.

    Raises:
        PrerequisiteError: If the command is not found.
    """
    try:
        found = sh.which(cmd)
    except (sh.ErrorReturnCode, sh.CommandNotFound):
        found = None
    if not found:
        raise PrerequisiteError(hint or f"Required command '{cmd}' not found. Please install it first.")


def run_command(
    binary: str,
    args: list[str],
    timeout: int = 30,
    stdin: str | None = None,
) -> tuple[bool, str, str]:
    """Run a CLI tool via subprocess and return (success, stdout, stderr).

    Uses subprocess instead of sh because callers branch on exit status and
    parse stdout separately from stderr. Never raises on failure.

    Args:
        binary: Executable name (e.g. ``kubectl``).
        args: Arguments passed to the executable.
        timeout: Maximum seconds to wait for the command to complete.
        stdin: Text fed to the command's standard input, if any.

    Returns:
        Tuple of (success, stdout, stderr).
    """
    logger.debug("Running: %s %s", binary, " ".join(args))
    try:
        result = subprocess.run(
            [binary, *args],
            capture_output=True,
            text=True,
            timeout=timeout,
            input=stdin,
        )
        return result.returncode == 0, result.stdout, result.stderr
    except (subprocess.SubprocessError, OSError) as exc:
        return False, "", str(exc)


def run_kubectl(args: list[str], timeout: int = 30, stdin: str | None = None) -> tuple[bool, str, str]:
    """Run ``kubectl`` with *args*; see :func:`run_command`."""
    return run_command("kubectl", args, timeout=timeout, stdin=stdin)


def run_argocd(args: list[str], timeout: int = 30) -> tuple[bool, str, str]:
    """Run the ``argocd`` CLI with *args*; see :func:`run_command`."""
    return run_command("argocd", args, timeout=timeout)


def run_kind(args: list[str], timeout: int = 30) -> tuple[bool, str, str]:
    """Run ``kind`` with *args*; see :func:`run_command`."""
    return run_command("kind", args, timeout=timeout)


def run_podman(args: list[str], timeout: int = 60) -> tuple[bool, str, str]:
    """Run ``podman`` with *args*; see :func:`run_command`."""
    return run_command("podman", args, timeout=timeout)


# ============================================================================
# Manifests
# ============================================================================

def apply_manifest(manifest: dict, namespace: str | None = None) -> None:
    """Apply a single in-memory manifest with ``kubectl apply -f -``.

    ``kubectl apply`` creates the object or replaces its declared fields, so
    reruns never fail with AlreadyExists.

    Args:
        manifest: Kubernetes object as a dictionary.
        namespace: Namespace passed with ``-n``, if any.

    Raises:
        CommandError: If kubectl rejects the manifest.
    """
    args = ["apply", "-f", "-"]
    if namespace:
        args += ["-n", namespace]
    ok, _, stderr = run_kubectl(args, stdin=yaml.safe_dump(manifest, default_flow_style=False))
    if not ok:
        kind = manifest.get("kind", "object")
        name = manifest.get("metadata", {}).get("name", "?")
        raise CommandError(f"Failed to apply {kind}/{name}: {stderr.strip()[:200]}")


def namespace_exists(namespace: str) -> bool:
    """Return True if *namespace* exists in the cluster."""
    ok, _, _ = run_kubectl(["get", "namespace", namespace])
    return ok


# ============================================================================
# Polling
# ============================================================================

@dataclass(frozen=True)
class PollResult:
    """Outcome of :func:`poll_until`.

    Attributes:
        ready: True if the predicate succeeded before the budget ran out.
        attempts: Number of times the predicate was evaluated.
    """

    ready: bool
    attempts: int

    @property
    def exhausted(self) -> bool:
        return not self.ready


def poll_until(
    predicate: Callable[[], bool],
    *,
    interval: float,
    max_attempts: int,
    on_retry: Callable[[int], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PollResult:
    """Evaluate *predicate* until it returns True or the budget is spent.

    Sleeps *interval* seconds between evaluations, never after the last one.

    Args:
        predicate: Condition to wait for.
        interval: Seconds to wait between evaluations.
        max_attempts: Maximum number of evaluations.
        on_retry: Called with the failed attempt number before each sleep.
        sleep: Sleep function, replaceable in tests.

    Returns:
        PollResult describing whether the condition was met and how many
        evaluations it took.
    """
    attempts = 0

    def _attempt() -> bool:
        nonlocal attempts
        attempts += 1
        return bool(predicate())

    def _before_sleep(retry_state) -> None:
        if on_retry is not None:
            on_retry(retry_state.attempt_number)

    retryer = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda ok: not ok),
        before_sleep=_before_sleep,
        retry_error_callback=lambda _state: False,
        sleep=sleep,
    )
    ready = retryer(_attempt)
    return PollResult(ready=ready, attempts=attempts)
