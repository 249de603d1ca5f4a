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

"""
cli.py - Kind + ArgoCD setup for the Kagent demo.

Default behavior runs the full setup: prerequisite checks, CA certificate
fixes, secrets, ArgoCD installation, application deployment and sync, and
port-forwards for ArgoCD (https://localhost:8080) and the Kagent UI
(http://localhost:8090).

Environment Variables (read from .env, overridable from the environment):
    - OPENAI_API_KEY (required)
    - KIND_CLUSTER_NAME (default: kagent-demo)
    - CA_BUNDLE_PATH (default: ~/.certs/ca-bundle.crt)
    - ARGOCD_DIR (default: ./argocd)
    - LOG_LEVEL (default: INFO)

Examples:
    # Full setup
    setup-kagent

    # First run on a fresh cluster, reload containerd after CA changes
    setup-kagent --initial

    # ArgoCD is managed elsewhere
    setup-kagent --skip-argocd

    # Port-forward status / teardown
    setup-kagent --status
    setup-kagent --teardown
"""

from __future__ import annotations

import logging
import os
import sys

import typer

from kagent_setup import console
from kagent_setup.config import SetupOptions, load_config
from kagent_setup.constants import DEFAULT_ENV_FILE
from kagent_setup.orchestrator import build_manager, run_setup
from kagent_setup.portforward import show_status
from kagent_setup.teardown import teardown

app = typer.Typer(help="Kind + ArgoCD setup for the Kagent demo.", add_completion=False)


@app.command()
def main(
    skip_argocd: bool = typer.Option(
        False, "--skip-argocd", help="Skip ArgoCD installation"),
    initial: bool = typer.Option(
        False, "--initial", help="Force containerd restart during certificate fixes"),
    teardown_flag: bool = typer.Option(
        False, "--teardown", help="Remove all Kagent resources"),
    status: bool = typer.Option(
        False, "--status", help="Show port-forward status"),
) -> None:
    """Deploy Kagent to a Kind cluster with ArgoCD.

    Requires a running Kind cluster and a .env file with OPENAI_API_KEY.
    --teardown and --status run on their own and exit.
    """
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        if teardown_flag:
            cfg = load_config(DEFAULT_ENV_FILE)
            teardown(cfg, build_manager(cfg))
            return
        if status:
            show_status(build_manager())
            return

        cfg = load_config(DEFAULT_ENV_FILE)
        options = SetupOptions(skip_argocd=skip_argocd, initial=initial)
        run_setup(cfg, options, build_manager(cfg))
    except Exception as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    app()
