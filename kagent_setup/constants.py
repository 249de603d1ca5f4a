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

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any

import yaml


def load_dependencies() -> dict:
    """Load pinned external references from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = Path(__file__).resolve().parent / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- Required tools, with install hints --
REQUIRED_COMMANDS = (
    ("kubectl", "kubectl not found"),
    ("argocd", "ArgoCD CLI not found. Install with: brew install argocd"),
    ("helm", "Helm not found. Install with: brew install helm"),
    ("kind", "Kind not found"),
    ("podman", "Podman not found"),
)

# -- Config defaults --
DEFAULT_ENV_FILE = ".env"
DEFAULT_CLUSTER_NAME = "kagent-demo"
DEFAULT_CA_BUNDLE_PATH = Path.home() / ".certs" / "ca-bundle.crt"
DEFAULT_ARGOCD_NAMESPACE = "argocd"
DEFAULT_KAGENT_NAMESPACE = "kagent"
DEFAULT_ARGOCD_DIR = "argocd"

# -- ArgoCD objects --
ARGOCD_SERVER_DEPLOYMENT = "argocd-server"
ARGOCD_SERVER_SERVICE = "argocd-server"
ARGOCD_ADMIN_SECRET = "argocd-initial-admin-secret"
ARGOCD_ADMIN_USER = "admin"
ARGOCD_PROJECT = "kagent"
ARGOCD_INSTALL_TIMEOUT_SECONDS = 600
ARGOCD_SERVER_READY_TIMEOUT_SECONDS = 120

# -- Application descriptors, applied in order --
PROJECT_DESCRIPTOR = "kagent-project.yaml"
APP_DESCRIPTORS = ("kagent-simple-app.yaml", "mcp-sqlite-vec-app.yaml")
APPLICATIONS = ("kagent", "mcp-sqlite-vec")
PROJECT_INDEX_PAUSE_SECONDS = 2

# -- Credentials --
SECRET_OPENAI = "kagent-openai"
SECRET_MCP = "mcp-secrets"
SECRET_KEY_OPENAI = "OPENAI_API_KEY"

# -- Kagent UI --
KAGENT_UI_SERVICE = "kagent-ui"

# -- Certificates --
NODE_CA_BUNDLE_PATH = "/usr/local/share/ca-certificates/ca-bundle.crt"
CERT_PROBE_POD = "cert-test"
CONTAINERD_RELOAD_GRACE_SECONDS = 5
CLUSTER_REACHABLE_MAX_RETRIES = 30
CLUSTER_REACHABLE_POLL_INTERVAL_SECONDS = 2

# -- Reconciliation budgets --
APP_VISIBLE_MAX_RETRIES = 60
APP_VISIBLE_POLL_INTERVAL_SECONDS = 5
APP_VISIBLE_PROGRESS_EVERY = 6
APP_OPERATION_MAX_RETRIES = 30
APP_OPERATION_POLL_INTERVAL_SECONDS = 10
APP_OPERATION_READY_PHASES = frozenset({"Succeeded", "Unknown", "null", ""})
SYNC_TIMEOUT_SECONDS = 300
SYNC_MAX_RETRIES = 3
SYNC_RETRY_WAIT_SECONDS = 10
SYNC_INTER_APP_PAUSE_SECONDS = 5

# -- Port-forwards --
STATE_DIR = Path(tempfile.gettempdir())
PORT_FORWARD_START_GRACE_SECONDS = 3
PORT_FORWARD_START_MAX_RETRIES = 3
PORT_FORWARD_START_RETRY_WAIT_SECONDS = 2
PORT_FORWARD_SWEEP_PAUSE_SECONDS = 2
PROBE_PATHS = ("/health", "/api/health", "/", "")
PROBE_MAX_RETRIES = 10
PROBE_POLL_INTERVAL_SECONDS = 2
PROBE_CONNECT_TIMEOUT_SECONDS = 2
PROBE_READ_TIMEOUT_SECONDS = 5
UI_READY_MAX_RETRIES = 120
UI_READY_POLL_INTERVAL_SECONDS = 5
UI_READY_PROGRESS_EVERY = 12

# -- Teardown --
NAMESPACE_DELETE_TIMEOUT = "30s"
NAMESPACE_GONE_MAX_RETRIES = 30
NAMESPACE_GONE_POLL_INTERVAL_SECONDS = 2
APP_DELETE_SETTLE_SECONDS = 3
