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
Validation of declared VM descriptions.

All functions here are pure: they inspect a descriptor and either return
normally or raise ValidationError. The reconciler calls them before any
process is touched.
"""

import uuid
from typing import Optional, Union

from .models import VMDescriptor, VMState
from .exceptions import ValidationError


VALID_STATES = frozenset(s.value for s in VMState)


def validate_state(value: Union[str, VMState, None]) -> Optional[VMState]:
    """
    Validate a target power state.

    Args:
        value: "running", "stopped", a VMState, or None (leave as created)

    Returns:
        The matching VMState, or None

    Raises:
        ValidationError: If the value is not a recognized state
    """
    if value is None or isinstance(value, VMState):
        return value
    if isinstance(value, str) and value in VALID_STATES:
        return VMState(value)
    raise ValidationError(
        f"unknown state {value!r}, must be one of {sorted(VALID_STATES)}",
        field="state",
        value=value,
    )


def validate_identity(value: Optional[str]) -> None:
    """Check that a caller-supplied identity is a UUID string."""
    if value is None:
        return
    try:
        uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(
            f"identity {value!r} is not a valid UUID", field="identity", value=value
        )


def validate_descriptor(descriptor: VMDescriptor) -> None:
    """
    Validate a complete VM descriptor.

    Raises:
        ValidationError: On the first invalid field found
    """
    validate_state(descriptor.state)
    validate_identity(descriptor.identity)

    if not descriptor.name:
        raise ValidationError("name must not be empty", field="name")

    for field_name in ("cpus", "memory"):
        value = getattr(descriptor, field_name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(
                f"{field_name} must be a positive integer, got {value!r}",
                field=field_name,
                value=value,
            )

    for field_name in ("kernel", "initrd"):
        if not getattr(descriptor, field_name):
            raise ValidationError(f"{field_name} path must not be empty", field=field_name)

    seen = set()
    for disk in descriptor.disk_images:
        if not disk.path:
            raise ValidationError("disk image path must not be empty", field="disk_image")
        if disk.path in seen:
            raise ValidationError(
                f"disk image path {disk.path!r} is declared more than once",
                field="disk_image",
                value=disk.path,
            )
        if disk.size < 0:
            raise ValidationError(
                f"disk image {disk.path!r} has negative size {disk.size}",
                field="disk_image",
                value=disk.size,
            )
        seen.add(disk.path)

    for iso in descriptor.iso_images:
        if not iso:
            raise ValidationError("ISO image path must not be empty", field="iso_images")

    if not isinstance(descriptor.command_line, str):
        raise ValidationError(
            "command_line must be a string", field="command_line", value=descriptor.command_line
        )
