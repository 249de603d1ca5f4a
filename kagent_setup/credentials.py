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

"""Workload namespace and credential secrets."""

from __future__ import annotations

import base64

from rich.panel import Panel

from kagent_setup import console
from kagent_setup.config import KagentConfig
from kagent_setup.constants import SECRET_KEY_OPENAI, SECRET_MCP, SECRET_OPENAI
from kagent_setup.utils import apply_manifest


def namespace_manifest(name: str) -> dict:
    """Build a Namespace manifest."""
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def secret_manifest(name: str, namespace: str, literals: dict[str, str]) -> dict:
    """Build an Opaque Secret manifest from plain-text literals.

    Args:
        name: Secret name.
        namespace: Namespace the secret lives in.
        literals: Key/value pairs, base64-encoded into ``data``.

    Returns:
        Kubernetes Secret resource as a dictionary.
    """
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {"name": name, "namespace": namespace},
        "data": {key: base64.b64encode(value.encode()).decode() for key, value in literals.items()},
    }


def provision_secrets(cfg: KagentConfig) -> None:
    """Ensure the workload namespace and both credential secrets exist.

    Every object goes through ``kubectl apply`` so a rerun replaces rather
    than duplicates. There is no rollback; the next run repairs partial state.

    Args:
        cfg: Resolved configuration with the namespace and credential.

    Raises:
        CommandError: If any object is rejected.
    """
    console.print(Panel.fit("Creating secrets", style="bold blue"))
    namespace = cfg.kagent_namespace
    apply_manifest(namespace_manifest(namespace))

    literals = {SECRET_KEY_OPENAI: cfg.openai_api_key}
    for name in (SECRET_OPENAI, SECRET_MCP):
        console.print(f"[blue]ℹ️  Creating {name} secret in {namespace} namespace...[/blue]")
        apply_manifest(secret_manifest(name, namespace, literals), namespace=namespace)
    console.print("[green]✅ Secrets created successfully[/green]")
