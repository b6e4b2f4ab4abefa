# Copyright 2025 Multikernel Technologies, Inc.
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

"""
Deployment configuration for hkvm.

A Config value is passed explicitly to every Reconciler and VMProcess; there
is no module-level configuration state.
"""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .models import ConsoleMode


DEFAULT_STATE_DIR = os.path.join("~", ".hkvm", "vms")
DEFAULT_RESOURCES_DIR = os.path.join("~", ".hkvm", "resources")
DEFAULT_STOP_TIMEOUT = 30.0

# Socket value meaning "use Docker Desktop's vpnkit if it is there"
NETWORK_SOCKET_AUTO = "auto"

HYPERKIT_BINARY_NAMES = ("hyperkit", "com.docker.hyperkit")
DOCKER_HYPERKIT_PATH = "/Applications/Docker.app/Contents/Resources/bin/com.docker.hyperkit"
DOCKER_VPNKIT_SOCKET = os.path.join(
    "~", "Library", "Containers", "com.docker.docker", "Data", "vpnkit.eth.sock"
)


@dataclass
class Config:
    """
    Configuration shared by all VMs of one deployment.

    Attributes:
        binary: Path to the hyperkit binary. Empty means search PATH and the
                Docker Desktop bundle.
        network_socket: vpnkit socket path, "auto", or empty for no network
        state_dir: Directory holding one state directory per VM identity
        resources_dir: Directory where the CLI stores resource descriptors
        console: Console mode for new VMs
        stop_timeout: Seconds to wait for a VM to exit after SIGTERM
    """
    binary: str = ""
    network_socket: str = NETWORK_SOCKET_AUTO
    state_dir: str = DEFAULT_STATE_DIR
    resources_dir: str = DEFAULT_RESOURCES_DIR
    console: ConsoleMode = ConsoleMode.FILE
    stop_timeout: float = DEFAULT_STOP_TIMEOUT

    def __post_init__(self):
        if isinstance(self.console, str):
            self.console = ConsoleMode(self.console)

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def resources_path(self) -> Path:
        return Path(self.resources_dir).expanduser()

    def resolve_binary(self) -> Optional[str]:
        """
        Find the hyperkit binary to launch.

        Returns:
            Absolute path, or None if no executable could be found
        """
        if self.binary:
            path = Path(self.binary).expanduser()
            if path.is_file() and os.access(path, os.X_OK):
                return str(path)
            return None

        for name in HYPERKIT_BINARY_NAMES:
            found = shutil.which(name)
            if found:
                return found

        if os.access(DOCKER_HYPERKIT_PATH, os.X_OK):
            return DOCKER_HYPERKIT_PATH
        return None

    def resolve_network_socket(self) -> Optional[str]:
        """
        Resolve the vpnkit socket to attach VMs to.

        Returns:
            Socket path, or None when VMs get no network device
        """
        if not self.network_socket:
            return None
        if self.network_socket == NETWORK_SOCKET_AUTO:
            path = Path(DOCKER_VPNKIT_SOCKET).expanduser()
            return str(path) if path.exists() else None
        return str(Path(self.network_socket).expanduser())
