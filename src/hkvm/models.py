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
Data models for declared and observed hyperkit VM state.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple
from enum import Enum

from .exceptions import ValidationError


class VMState(Enum):
    """Target (and observed) power state of a VM."""
    RUNNING = "running"
    STOPPED = "stopped"


class ConsoleMode(Enum):
    """
    Where hyperkit sends the guest's COM1 console.

    - STDIO: inherit the launching process's stdio
    - FILE: autopty plus a console ring file in the VM state directory
    - LOG: the host system log
    """
    STDIO = "stdio"
    FILE = "file"
    LOG = "log"


@dataclass(frozen=True)
class DiskImage:
    """A raw disk attached to the VM."""
    path: str
    size: int  # bytes


@dataclass(frozen=True)
class Observation:
    """Runtime state reported by the state observer."""
    running: bool
    pid: Optional[int] = None


@dataclass
class VMDescriptor:
    """Declared plus observed state of a single VM."""
    name: str
    kernel: str
    initrd: str
    disk_images: FrozenSet[DiskImage] = frozenset()
    iso_images: Tuple[str, ...] = ()
    cpus: int = 1
    memory: int = 1024  # MB
    identity: Optional[str] = None
    state: Optional[VMState] = None
    command_line: str = ""
    pid: Optional[int] = None
    ip_address: Optional[str] = None

    # Fields that can only change by destroying and recreating the VM
    IMMUTABLE_FIELDS = (
        "name", "cpus", "memory", "identity", "kernel", "initrd",
        "disk_images", "iso_images",
    )
    MUTABLE_FIELDS = ("state", "command_line")

    def __post_init__(self):
        self.disk_images = frozenset(self.disk_images)
        self.iso_images = tuple(self.iso_images)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VMDescriptor":
        """
        Build a descriptor from a manifest or stored record.

        Args:
            data: Mapping using the external field names (``disk_image``,
                  ``iso_images``, ``state``, ...)

        Returns:
            VMDescriptor

        Raises:
            ValidationError: If a required field is missing or malformed, or
                             if ``state`` is not a recognized value
        """
        from .validation import validate_state

        for required in ("name", "kernel", "initrd"):
            if not data.get(required):
                raise ValidationError(
                    f"Missing required field '{required}'", field=required
                )

        disks = []
        for raw in data.get("disk_image") or []:
            if not isinstance(raw, dict) or "path" not in raw or "size" not in raw:
                raise ValidationError(
                    f"disk_image entries need 'path' and 'size', got {raw!r}",
                    field="disk_image", value=raw,
                )
            disks.append(DiskImage(path=str(raw["path"]), size=_as_int("disk_image.size", raw["size"])))

        iso_images = data.get("iso_images") or []
        if isinstance(iso_images, str):
            raise ValidationError(
                "iso_images must be a list of paths", field="iso_images", value=iso_images
            )

        state = data.get("state")
        pid = data.get("pid")

        return cls(
            name=str(data["name"]),
            kernel=str(data["kernel"]),
            initrd=str(data["initrd"]),
            disk_images=frozenset(disks),
            iso_images=tuple(str(p) for p in iso_images),
            cpus=_as_int("cpus", data.get("cpus", 1)),
            memory=_as_int("memory", data.get("memory", 1024)),
            identity=data.get("identity") or None,
            state=validate_state(state) if state not in (None, "") else None,
            command_line=data.get("command_line") or "",
            pid=_as_int("pid", pid) if pid else None,
            ip_address=data.get("ip_address") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the external field names."""
        return {
            "name": self.name,
            "identity": self.identity,
            "cpus": self.cpus,
            "memory": self.memory,
            "kernel": self.kernel,
            "initrd": self.initrd,
            "disk_image": [
                {"path": d.path, "size": d.size}
                for d in sorted(self.disk_images, key=lambda d: d.path)
            ],
            "iso_images": list(self.iso_images),
            "state": self.state.value if self.state else None,
            "command_line": self.command_line,
            "pid": self.pid,
            "ip_address": self.ip_address,
        }


def _as_int(field_name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(
            f"{field_name} must be an integer, got {value!r}", field=field_name, value=value
        )
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{field_name} must be an integer, got {value!r}", field=field_name, value=value
        )
