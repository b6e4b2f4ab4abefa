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
Diffing of previous and desired VM descriptors.

The result is one of three decisions:

- NoChange: nothing declared differs
- InPlaceUpdate(fields): only mutable fields (state, command_line) differ
- Replace(fields): at least one creation-time field differs; the VM has to be
  destroyed and recreated
"""

from dataclasses import dataclass
from typing import FrozenSet, Union

from .models import VMDescriptor, VMState


@dataclass(frozen=True)
class NoChange:
    """Previous and desired declarations are equivalent."""


@dataclass(frozen=True)
class InPlaceUpdate:
    """Only mutable fields changed."""
    fields: FrozenSet[str]


@dataclass(frozen=True)
class Replace:
    """Immutable fields changed."""
    fields: FrozenSet[str]


Decision = Union[NoChange, InPlaceUpdate, Replace]


def changed_immutable_fields(previous: VMDescriptor, desired: VMDescriptor) -> FrozenSet[str]:
    """
    Return the creation-time fields that differ.

    disk_images compare as sets, iso_images as ordered tuples. An unset
    desired identity means "keep the current one".
    """
    changed = set()
    for name in VMDescriptor.IMMUTABLE_FIELDS:
        old = getattr(previous, name)
        new = getattr(desired, name)
        if name == "identity" and new is None:
            continue
        if old != new:
            changed.add(name)
    return frozenset(changed)


def changed_mutable_fields(previous: VMDescriptor, desired: VMDescriptor) -> FrozenSet[str]:
    """
    Return the mutable fields that differ.

    An unset desired state is no change. An unset previous state counts as
    running, since VMs boot on creation unless declared stopped.
    """
    changed = set()
    previous_state = previous.state or VMState.RUNNING
    if desired.state is not None and desired.state != previous_state:
        changed.add("state")
    if desired.command_line != previous.command_line:
        changed.add("command_line")
    return frozenset(changed)


def diff_descriptors(previous: VMDescriptor, desired: VMDescriptor) -> Decision:
    """Classify the change from previous to desired."""
    immutable = changed_immutable_fields(previous, desired)
    if immutable:
        return Replace(fields=immutable)

    mutable = changed_mutable_fields(previous, desired)
    if mutable:
        return InPlaceUpdate(fields=mutable)

    return NoChange()
