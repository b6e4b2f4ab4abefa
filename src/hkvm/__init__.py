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
hkvm: Declarative hyperkit VM management

Converges hyperkit virtual machines to declared descriptions: CPU count,
memory, boot kernel and initrd, disks, ISO images, command line and target
power state.
"""

__version__ = "0.1.0"

# Export main components for easy access
from .config import Config
from .reconciler import Reconciler
from .hyperkit import VMProcess
from .observer import StateObserver
from .store import ResourceStore
from .identity import allocate_identity
from .diff import NoChange, InPlaceUpdate, Replace, diff_descriptors
from .validation import validate_descriptor, validate_state
from .models import VMDescriptor, DiskImage, VMState, ConsoleMode, Observation
from .exceptions import (
    HkvmError,
    ValidationError,
    ReplaceRequiredError,
    IdentityError,
    ProcessError,
    LaunchError,
    ShutdownError,
    RemovalError,
    TeardownError,
    ResourceNotFoundError,
    StoreError,
)

__all__ = [
    # Core classes
    'Config',
    'Reconciler',
    'VMProcess',
    'StateObserver',
    'ResourceStore',
    # Models
    'VMDescriptor',
    'DiskImage',
    'VMState',
    'ConsoleMode',
    'Observation',
    # Decisions
    'NoChange',
    'InPlaceUpdate',
    'Replace',
    'diff_descriptors',
    # Functions
    'allocate_identity',
    'validate_descriptor',
    'validate_state',
    # Exceptions
    'HkvmError',
    'ValidationError',
    'ReplaceRequiredError',
    'IdentityError',
    'ProcessError',
    'LaunchError',
    'ShutdownError',
    'RemovalError',
    'TeardownError',
    'ResourceNotFoundError',
    'StoreError',
]
