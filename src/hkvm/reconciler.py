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
Reconciliation of declared VM descriptors against hyperkit processes.

The Reconciler bridges the declarative VMDescriptor with the imperative
VMProcess handle. Every operation is synchronous and runs to completion:

1. Validate: reject bad declarations before touching any process
2. Build: construct a VMProcess from the descriptor and the Config
3. Act: run the action plan (start, stop, remove)
4. Observe: refresh state and pid through the StateObserver

Lifecycle per identity::

    absent --create--> running --update(stopped)--> stopped
                       stopped --update(running)--> running
    running/stopped --destroy--> absent

Changes to creation-time fields are never applied in place: update() raises
ReplaceRequiredError and the caller destroys and recreates the VM.

Example Usage:
==============

```python
from hkvm.config import Config
from hkvm.models import VMDescriptor, DiskImage
from hkvm.reconciler import Reconciler

reconciler = Reconciler(Config(state_dir="/var/lib/hkvm"))
vm = reconciler.create(VMDescriptor(
    name="builder",
    kernel="/images/vmlinuz",
    initrd="/images/initrd.img",
    disk_images={DiskImage("/images/builder.img", 8 * 1024**3)},
    command_line="console=ttyS0",
))
vm = reconciler.read(vm)
```

Callers must serialize operations per identity; the Reconciler holds no locks.
"""

import copy
import logging
from typing import Callable, Optional

from .config import Config
from .diff import InPlaceUpdate, NoChange, Replace, diff_descriptors
from .exceptions import (
    ProcessError,
    ReplaceRequiredError,
    ResourceNotFoundError,
    TeardownError,
)
from .hyperkit import VMProcess
from .identity import allocate_identity
from .models import VMDescriptor, VMState
from .observer import StateObserver
from .validation import validate_descriptor

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Converges hyperkit processes to declared VM descriptors.

    Attributes:
        config: Deployment configuration passed to every handle
        observer: StateObserver used to read runtime state
        handle_factory: Callable(config, descriptor) returning a process handle
    """

    def __init__(
        self,
        config: Config,
        observer: Optional[StateObserver] = None,
        handle_factory: Optional[Callable[[Config, VMDescriptor], VMProcess]] = None,
    ):
        self.config = config
        self.observer = observer or StateObserver()
        self.handle_factory = handle_factory or VMProcess.from_descriptor

    def build_handle(self, descriptor: VMDescriptor):
        """Build a process handle from a descriptor's declared fields."""
        return self.handle_factory(self.config, descriptor)

    def create(self, desired: VMDescriptor) -> VMDescriptor:
        """
        Create and boot a VM.

        The VM is always started once. When the declared state is stopped it
        is stopped again straight after; if that stop fails the process is
        killed and its state removed, so no unrecorded VM is left running.

        Args:
            desired: Declared VM; identity is optional

        Returns:
            New descriptor with identity, pid and observed state filled in.
            The argument is left untouched, so on failure the caller holds
            no identity for a VM that was never created.

        Raises:
            ValidationError: If the declaration is invalid
            IdentityError: If no identity can be generated
            LaunchError: If the VM cannot be started
            ShutdownError: If a VM declared stopped cannot be stopped
        """
        validate_descriptor(desired)

        observed = copy.deepcopy(desired)
        observed.identity = allocate_identity(desired.identity)
        observed.pid = None

        handle = self.build_handle(observed)
        try:
            observed.pid = handle.start(observed.command_line)
        except ProcessError as e:
            logger.error("Creating VM %s (%s) failed: %s", observed.identity, observed.name, e)
            raise
        if observed.state == VMState.STOPPED:
            try:
                handle.stop()
            except ProcessError as e:
                logger.error("Creating VM %s (%s) failed: %s", observed.identity, observed.name, e)
                self._discard(handle)
                raise

        logger.info("Created VM %s (%s)", observed.identity, observed.name)
        return self.read(observed)

    def _discard(self, handle) -> None:
        try:
            handle.remove(force=True)
        except ProcessError as e:
            logger.error("Cleaning up VM %s failed: %s", handle.identity, e)

    def read(self, current: VMDescriptor) -> VMDescriptor:
        """
        Refresh the observed fields of a VM without acting on it.

        Returns:
            Copy of ``current`` with state set from the observed process; pid
            is the live process id while running and None once stopped

        Raises:
            ResourceNotFoundError: If the VM has no identity or its state
                                   no longer exists
        """
        if not current.identity:
            raise ResourceNotFoundError(current.identity)

        handle = self.build_handle(current)
        if not handle.exists():
            raise ResourceNotFoundError(current.identity)

        observation = self.observer.observe(handle)

        observed = copy.deepcopy(current)
        if observation.running:
            observed.state = VMState.RUNNING
            observed.pid = observation.pid
        else:
            observed.state = VMState.STOPPED
            observed.pid = None
        return observed

    def update(self, previous: VMDescriptor, desired: VMDescriptor) -> VMDescriptor:
        """
        Apply changes to mutable fields of an existing VM.

        Args:
            previous: Last recorded descriptor (carries identity and pid)
            desired: New declaration

        Returns:
            Refreshed descriptor

        Raises:
            ValidationError: If the declaration is invalid
            ReplaceRequiredError: If a creation-time field changed
            LaunchError: If a stopped VM cannot be started
            ShutdownError: If a running VM cannot be stopped
        """
        validate_descriptor(desired)

        decision = diff_descriptors(previous, desired)
        if isinstance(decision, Replace):
            raise ReplaceRequiredError(previous.identity, decision.fields)

        observed = copy.deepcopy(desired)
        observed.identity = previous.identity
        observed.pid = previous.pid
        observed.ip_address = previous.ip_address
        if observed.state is None:
            observed.state = previous.state

        if isinstance(decision, NoChange):
            logger.debug("VM %s: no changes", previous.identity)
        elif isinstance(decision, InPlaceUpdate):
            if "state" in decision.fields:
                self._transition(observed, previous.state or VMState.RUNNING, desired.state)
            if "command_line" in decision.fields:
                logger.info("VM %s: command line changed, applies from next start", previous.identity)
        else:
            raise TypeError(f"unexpected diff decision {decision!r}")

        return self.read(observed)

    def _transition(self, observed: VMDescriptor, old: VMState, new: VMState) -> None:
        handle = self.build_handle(observed)
        logger.info("VM %s: %s -> %s", observed.identity, old.value, new.value)

        if new == VMState.RUNNING:
            if self.observer.observe(handle).running:
                logger.info("VM %s is already running, not starting again", observed.identity)
                return
            observed.pid = handle.start(observed.command_line)
        else:
            handle.stop()

    def destroy(self, current: VMDescriptor) -> None:
        """
        Stop a VM and release its state.

        Raises:
            TeardownError: If the VM cannot be stopped or its state cannot
                           be removed; the VM must not be considered deleted
        """
        handle = self.build_handle(current)
        try:
            handle.stop()
            handle.remove(force=True)
        except ProcessError as e:
            raise TeardownError(current.identity, str(e)) from e
        logger.info("Destroyed VM %s (%s)", current.identity, current.name)
