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
Pytest configuration and fixtures for hkvm tests.
"""

import stat
import pytest
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from hkvm.config import Config
from hkvm.exceptions import LaunchError, RemovalError
from hkvm.models import DiskImage, VMDescriptor


GIB = 1024 ** 3


class FakeHypervisor:
    """
    In-memory stand-in for hyperkit processes.

    The reconciler rebuilds a handle for every operation, so process state is
    kept here and shared by all FakeProcess handles.
    """

    def __init__(self):
        self.running = {}    # identity -> pid
        self.known = set()   # identities with on-disk state
        self.calls = []      # (action, identity)
        self.fail_on = {}    # action -> exception to raise
        self.next_pid = 4000

    def factory(self, config, descriptor):
        return FakeProcess(self, descriptor.identity, descriptor.pid)

    def count(self, action, identity=None):
        return sum(
            1 for a, i in self.calls
            if a == action and (identity is None or i == identity)
        )


class FakeProcess:
    """Process handle backed by a FakeHypervisor."""

    def __init__(self, hypervisor, identity, pid=None):
        self.hypervisor = hypervisor
        self.identity = identity
        self.pid = pid

    def _record(self, action):
        self.hypervisor.calls.append((action, self.identity))
        if action in self.hypervisor.fail_on:
            raise self.hypervisor.fail_on[action]

    def start(self, command_line=""):
        self._record("start")
        if self.identity in self.hypervisor.running:
            raise LaunchError(self.identity, "already running")
        self.hypervisor.next_pid += 1
        self.pid = self.hypervisor.next_pid
        self.hypervisor.running[self.identity] = self.pid
        self.hypervisor.known.add(self.identity)
        return self.pid

    def stop(self):
        self._record("stop")
        self.hypervisor.running.pop(self.identity, None)

    def is_running(self):
        return self.identity in self.hypervisor.running

    def current_pid(self):
        return self.hypervisor.running.get(self.identity)

    def exists(self):
        return self.identity in self.hypervisor.known

    def remove(self, force=False):
        self._record("remove")
        if self.is_running() and not force:
            raise RemovalError(self.identity, "still running")
        self.hypervisor.running.pop(self.identity, None)
        self.hypervisor.known.discard(self.identity)


@pytest.fixture
def hypervisor():
    """Shared fake hypervisor."""
    return FakeHypervisor()


@pytest.fixture
def images(tmp_path):
    """Create kernel, initrd and ISO files for testing."""
    image_dir = tmp_path / "images"
    image_dir.mkdir()
    paths = {}
    for name in ("vmlinuz", "initrd.img", "boot.iso", "drivers.iso"):
        path = image_dir / name
        path.write_bytes(b"\0" * 16)
        paths[name] = str(path)
    paths["disk"] = str(image_dir / "d.img")
    return paths


@pytest.fixture
def sample_descriptor(images):
    """Create a sample VM descriptor with state unset."""
    return VMDescriptor(
        name="builder",
        kernel=images["vmlinuz"],
        initrd=images["initrd.img"],
        disk_images={DiskImage(path=images["disk"], size=GIB)},
        iso_images=(images["boot.iso"],),
        cpus=1,
        memory=1024,
    )


def write_script(path: Path, body: str) -> str:
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def fake_hyperkit(tmp_path):
    """Executable that ignores hyperkit arguments and stays alive until signalled."""
    return write_script(tmp_path / "hyperkit", "exec sleep 60")


@pytest.fixture
def stubborn_hyperkit(tmp_path):
    """Executable that ignores SIGTERM."""
    return write_script(
        tmp_path / "hyperkit-stubborn",
        "trap '' TERM\nwhile true; do sleep 0.1; done",
    )


@pytest.fixture
def failing_hyperkit(tmp_path):
    """Executable that exits at once with an error."""
    return write_script(tmp_path / "hyperkit-failing", "echo 'bad arguments' >&2\nexit 3")


@pytest.fixture
def config(tmp_path, fake_hyperkit):
    """Config pointing at the fake hyperkit and temporary directories."""
    return Config(
        binary=fake_hyperkit,
        network_socket="",
        state_dir=str(tmp_path / "vms"),
        resources_dir=str(tmp_path / "resources"),
        stop_timeout=5.0,
    )
