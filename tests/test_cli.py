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
End-to-end tests for the hkvm command line, using a fake hyperkit binary.
"""

import json
import os
import signal

import pytest
from click.testing import CliRunner

from hkvm.cli import main
from hkvm.models import VMState
from hkvm.store import ResourceStore


IDENTITY = "5a3e1c2b-8f4d-4e6a-9b7c-0d1e2f3a4b5c"


class Hkvm:
    """Runs hkvm commands against temporary state and resources directories."""

    def __init__(self, tmp_path, binary):
        self.runner = CliRunner()
        self.state_dir = tmp_path / "vms"
        self.resources_dir = tmp_path / "resources"
        self.binary = binary
        self.store = ResourceStore(self.resources_dir)

    def __call__(self, *args):
        base = [
            "--hyperkit-bin", self.binary,
            "--vpnkit-socket", "",
            "--state-dir", str(self.state_dir),
            "--resources-dir", str(self.resources_dir),
            "--stop-timeout", "5",
        ]
        return self.runner.invoke(main, base + list(args))

    def kill_all(self):
        for pid_file in self.state_dir.glob("*/hyperkit.pid"):
            try:
                pid = int(pid_file.read_text().strip())
                os.kill(pid, signal.SIGKILL)
                os.waitpid(pid, 0)
            except (ProcessLookupError, ChildProcessError, ValueError):
                pass


@pytest.fixture
def hkvm(tmp_path, fake_hyperkit):
    cli = Hkvm(tmp_path, fake_hyperkit)
    yield cli
    cli.kill_all()


@pytest.fixture
def create_args(images):
    return [
        "create", "builder",
        "--kernel", images["vmlinuz"],
        "--initrd", images["initrd.img"],
        "--disk", f"{images['disk']}:64MB",
        "--iso", images["boot.iso"],
        "--cmdline", "console=ttyS0",
        "--uuid", IDENTITY,
    ]


@pytest.fixture
def manifest(tmp_path, images):
    """Write a manifest and return a function that rewrites it."""
    path = tmp_path / "builder.json"
    base = {
        "name": "builder",
        "kernel": images["vmlinuz"],
        "initrd": images["initrd.img"],
        "cpus": 1,
        "memory": 512,
        "disk_image": [{"path": images["disk"], "size": 64 * 1024 ** 2}],
        "iso_images": [images["boot.iso"]],
    }

    def write(**overrides):
        data = dict(base, **overrides)
        path.write_text(json.dumps(data))
        return str(path)

    return write


class TestCreateCommand:

    def test_create(self, hkvm, create_args):
        result = hkvm(*create_args)

        assert result.exit_code == 0, result.output
        assert f"Created VM 'builder' ({IDENTITY})" in result.output
        stored = hkvm.store.load(IDENTITY)
        assert stored.state == VMState.RUNNING
        assert stored.pid
        assert stored.command_line == "console=ttyS0"

    def test_create_generates_identity(self, hkvm, images):
        result = hkvm("create", "builder", "--kernel", images["vmlinuz"], "--initrd", images["initrd.img"])

        assert result.exit_code == 0, result.output
        assert len(hkvm.store.list_identities()) == 1

    def test_create_stopped(self, hkvm, create_args):
        result = hkvm(*create_args, "--state", "stopped")

        assert result.exit_code == 0, result.output
        stored = hkvm.store.load(IDENTITY)
        assert stored.state == VMState.STOPPED
        assert stored.pid is None

    def test_create_unknown_state(self, hkvm, create_args):
        result = hkvm(*create_args, "--state", "paused")

        assert result.exit_code == 2
        assert "paused" in result.output
        assert hkvm.store.list_identities() == []

    def test_create_bad_disk_spec(self, hkvm, create_args):
        result = hkvm(*create_args, "--disk", "nosize.img")

        assert result.exit_code == 2
        assert "PATH:SIZE" in result.output

    def test_create_duplicate_identity(self, hkvm, create_args):
        hkvm(*create_args)

        result = hkvm(*create_args)

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_create_missing_binary(self, hkvm, create_args, tmp_path):
        hkvm.binary = str(tmp_path / "no-hyperkit")

        result = hkvm(*create_args)

        assert result.exit_code == 1
        assert "binary not found" in result.output
        assert hkvm.store.list_identities() == []


class TestShowCommand:

    def test_show_empty(self, hkvm):
        result = hkvm("show")

        assert result.exit_code == 0
        assert "No VMs found" in result.output

    def test_show_json(self, hkvm, create_args):
        hkvm(*create_args)

        result = hkvm("show", IDENTITY, "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["identity"] == IDENTITY
        assert data["state"] == "running"

    def test_show_detects_exit(self, hkvm, create_args):
        """Test a VM killed out of band shows as stopped."""
        hkvm(*create_args)
        hkvm.kill_all()

        result = hkvm("show", IDENTITY, "--verbose")

        assert result.exit_code == 0, result.output
        assert "stopped" in result.output
        assert hkvm.store.load(IDENTITY).state == VMState.STOPPED

    def test_show_unknown(self, hkvm):
        result = hkvm("show", IDENTITY)

        assert result.exit_code == 1
        assert "does not exist" in result.output


class TestUpdateCommand:

    def test_stop_and_start(self, hkvm, create_args):
        hkvm(*create_args)
        first_pid = hkvm.store.load(IDENTITY).pid

        result = hkvm("update", IDENTITY, "--state", "stopped")
        assert result.exit_code == 0, result.output
        assert hkvm.store.load(IDENTITY).state == VMState.STOPPED

        result = hkvm("update", IDENTITY, "--state", "running")
        assert result.exit_code == 0, result.output
        stored = hkvm.store.load(IDENTITY)
        assert stored.state == VMState.RUNNING
        assert stored.pid != first_pid

    def test_update_command_line(self, hkvm, create_args):
        hkvm(*create_args)
        pid = hkvm.store.load(IDENTITY).pid

        result = hkvm("update", IDENTITY, "--cmdline", "quiet")

        assert result.exit_code == 0, result.output
        stored = hkvm.store.load(IDENTITY)
        assert stored.command_line == "quiet"
        assert stored.pid == pid

    def test_update_requires_option(self, hkvm, create_args):
        hkvm(*create_args)

        result = hkvm("update", IDENTITY)

        assert result.exit_code == 2

    def test_update_unknown_state(self, hkvm, create_args):
        hkvm(*create_args)

        result = hkvm("update", IDENTITY, "--state", "hibernating")

        assert result.exit_code == 2
        assert "hibernating" in result.output


class TestDeleteCommand:

    def test_delete(self, hkvm, create_args):
        hkvm(*create_args)
        pid = hkvm.store.load(IDENTITY).pid

        result = hkvm("delete", IDENTITY)

        assert result.exit_code == 0, result.output
        assert hkvm.store.list_identities() == []
        assert not (hkvm.state_dir / IDENTITY).exists()
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    def test_delete_unknown(self, hkvm):
        result = hkvm("delete", IDENTITY)

        assert result.exit_code == 1


class TestApplyCommand:

    def test_apply_creates(self, hkvm, manifest):
        result = hkvm("apply", manifest())

        assert result.exit_code == 0, result.output
        assert "Created VM 'builder'" in result.output
        assert hkvm.store.find_by_name("builder").memory == 512

    def test_apply_unchanged(self, hkvm, manifest):
        hkvm("apply", manifest())

        result = hkvm("apply", manifest())

        assert result.exit_code == 0, result.output
        assert "no changes" in result.output
        assert len(hkvm.store.list_identities()) == 1

    def test_apply_state_change_in_place(self, hkvm, manifest):
        hkvm("apply", manifest())
        identity = hkvm.store.list_identities()[0]

        result = hkvm("apply", manifest(state="stopped"))

        assert result.exit_code == 0, result.output
        assert hkvm.store.list_identities() == [identity]
        assert hkvm.store.load(identity).state == VMState.STOPPED

    def test_apply_replaces_on_cpu_change(self, hkvm, manifest):
        hkvm("apply", manifest())
        old_identity = hkvm.store.list_identities()[0]

        result = hkvm("apply", manifest(cpus=2))

        assert result.exit_code == 0, result.output
        assert "Replaced VM" in result.output
        identities = hkvm.store.list_identities()
        assert len(identities) == 1
        assert identities[0] != old_identity
        assert hkvm.store.load(identities[0]).cpus == 2

    def test_apply_dry_run(self, hkvm, manifest):
        hkvm("apply", manifest())

        result = hkvm("apply", manifest(cpus=2), "--dry-run")

        assert result.exit_code == 0, result.output
        assert "replace (cpus changed)" in result.output
        assert hkvm.store.find_by_name("builder").cpus == 1

    def test_apply_invalid_manifest(self, hkvm, manifest):
        result = hkvm("apply", manifest(state="paused"))

        assert result.exit_code == 2
        assert "paused" in result.output

    def test_apply_named_identity_takes_lock(self, hkvm, manifest, monkeypatch):
        """Test a manifest naming its identity waits for that identity's lock."""
        monkeypatch.setattr(ResourceStore, "LOCK_RETRY_DELAY", 0.01)

        with hkvm.store.lock(IDENTITY):
            result = hkvm("apply", manifest(identity=IDENTITY))

        assert result.exit_code == 1
        assert "Could not lock" in result.output
        assert hkvm.store.list_identities() == []
        assert not (hkvm.state_dir / IDENTITY).exists()

    def test_apply_named_identity(self, hkvm, manifest):
        result = hkvm("apply", manifest(identity=IDENTITY))

        assert result.exit_code == 0, result.output
        assert hkvm.store.list_identities() == [IDENTITY]
        assert not (hkvm.resources_dir / f"{IDENTITY}.lock").exists()
