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
Exception classes for hkvm validation and VM lifecycle errors.
"""

from typing import Iterable, Optional


class HkvmError(Exception):
    """Base exception for all hkvm errors."""


class ValidationError(HkvmError):
    """Raised when a declared VM description fails validation."""

    def __init__(self, message: str, field: Optional[str] = None, value=None):
        super().__init__(message)
        self.field = field
        self.value = value


class ReplaceRequiredError(ValidationError):
    """Raised when an update touches fields that can only change by replacement."""

    def __init__(self, identity: Optional[str], fields: Iterable[str]):
        self.identity = identity
        self.fields = tuple(sorted(fields))
        super().__init__(
            f"VM {identity}: cannot update {', '.join(self.fields)} in place; "
            "destroy and recreate the VM instead",
            field=self.fields[0] if self.fields else None,
        )


class IdentityError(HkvmError):
    """Raised when a VM identity cannot be generated."""


class ProcessError(HkvmError):
    """Base for failures reported by a VM process handle."""

    action = "control"

    def __init__(self, identity: Optional[str], reason: str):
        super().__init__(f"Failed to {self.action} VM {identity}: {reason}")
        self.identity = identity
        self.reason = reason


class LaunchError(ProcessError):
    """Raised when the hyperkit process cannot be started."""

    action = "start"


class ShutdownError(ProcessError):
    """Raised when the hyperkit process cannot be stopped."""

    action = "stop"


class RemovalError(ProcessError):
    """Raised when on-disk VM state cannot be released."""

    action = "remove state of"


class TeardownError(ProcessError):
    """Raised when destroying a VM does not complete."""

    action = "destroy"


class ResourceNotFoundError(HkvmError):
    """Raised when a VM resource no longer exists."""

    def __init__(self, identity: Optional[str]):
        super().__init__(f"VM {identity} does not exist")
        self.identity = identity


class StoreError(HkvmError):
    """Raised when the resource store cannot be read, written or locked."""
