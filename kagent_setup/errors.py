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

"""Error taxonomy for the setup and teardown workflows.

Errors raised before any mutation are always fatal. The degraded kinds
(``SyncExhausted``, ``ProbeExhausted``, ``PartialTeardownFailure``) are
raised by the step that detects them and caught one level up, where a
warning with a manual workaround is printed.
"""

from __future__ import annotations


class SetupError(RuntimeError):
    """Base class for every error reported to the operator."""


class ConfigError(SetupError):
    """The .env file is missing or a mandatory key is unset."""


class PrerequisiteError(SetupError):
    """A required CLI tool is missing or the cluster is unreachable."""


class CommandError(SetupError):
    """A required external command exited non-zero."""


class InstallTimeoutError(SetupError):
    """ArgoCD did not become available within its install timeout."""


class ApplicationNotFoundError(SetupError):
    """An ArgoCD Application never appeared in the control plane."""


class SyncExhausted(SetupError):
    """All sync attempts for an application failed."""

    def __init__(self, app: str, attempts: int) -> None:
        super().__init__(f"Failed to sync {app} after {attempts} attempts")
        self.app = app
        self.attempts = attempts


class ProbeExhausted(SetupError):
    """A port-forward stayed alive but never answered HTTP."""

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"{url} did not respond after {attempts} attempts")
        self.url = url
        self.attempts = attempts


class PartialTeardownFailure(SetupError):
    """A graceful delete failed and teardown has to escalate."""
