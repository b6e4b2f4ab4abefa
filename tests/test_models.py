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
Tests for data models.
"""

import pytest

from hkvm.exceptions import ValidationError
from hkvm.models import DiskImage, VMDescriptor, VMState


class TestVMDescriptor:
    """Test VMDescriptor construction and serialization."""

    def test_defaults(self):
        """Test defaults for optional fields."""
        desc = VMDescriptor(name="vm", kernel="/k", initrd="/i")

        assert desc.cpus == 1
        assert desc.memory == 1024
        assert desc.identity is None
        assert desc.state is None
        assert desc.command_line == ""
        assert desc.disk_images == frozenset()
        assert desc.iso_images == ()

    def test_collections_coerced(self):
        """Test disks become a set and ISOs an ordered tuple."""
        desc = VMDescriptor(
            name="vm", kernel="/k", initrd="/i",
            disk_images=[DiskImage("/a.img", 1), DiskImage("/a.img", 1)],
            iso_images=["/b.iso", "/a.iso"],
        )

        assert desc.disk_images == frozenset({DiskImage("/a.img", 1)})
        assert desc.iso_images == ("/b.iso", "/a.iso")

    def test_disk_order_irrelevant_for_equality(self):
        disks = [DiskImage("/a.img", 1), DiskImage("/b.img", 2)]
        first = VMDescriptor(name="vm", kernel="/k", initrd="/i", disk_images=disks)
        second = VMDescriptor(name="vm", kernel="/k", initrd="/i", disk_images=reversed(disks))

        assert first == second

    def test_from_dict(self):
        """Test parsing a manifest mapping."""
        desc = VMDescriptor.from_dict({
            "name": "builder",
            "kernel": "/images/vmlinuz",
            "initrd": "/images/initrd.img",
            "cpus": 2,
            "memory": "2048",
            "disk_image": [{"path": "/images/d.img", "size": 1024}],
            "iso_images": ["/images/boot.iso"],
            "state": "stopped",
            "command_line": "console=ttyS0",
        })

        assert desc.cpus == 2
        assert desc.memory == 2048
        assert desc.disk_images == frozenset({DiskImage("/images/d.img", 1024)})
        assert desc.iso_images == ("/images/boot.iso",)
        assert desc.state == VMState.STOPPED
        assert desc.command_line == "console=ttyS0"

    def test_from_dict_missing_required(self):
        with pytest.raises(ValidationError, match="kernel") as exc_info:
            VMDescriptor.from_dict({"name": "vm", "initrd": "/i"})

        assert exc_info.value.field == "kernel"

    def test_from_dict_unknown_state(self):
        """Test unknown states are rejected, naming the offending value."""
        with pytest.raises(ValidationError, match="paused"):
            VMDescriptor.from_dict({"name": "vm", "kernel": "/k", "initrd": "/i", "state": "paused"})

    def test_from_dict_bad_disk_entry(self):
        with pytest.raises(ValidationError, match="disk_image"):
            VMDescriptor.from_dict({
                "name": "vm", "kernel": "/k", "initrd": "/i",
                "disk_image": [{"path": "/d.img"}],
            })

    def test_from_dict_iso_string_rejected(self):
        with pytest.raises(ValidationError, match="iso_images"):
            VMDescriptor.from_dict({"name": "vm", "kernel": "/k", "initrd": "/i", "iso_images": "/a.iso"})

    def test_from_dict_bool_cpus_rejected(self):
        with pytest.raises(ValidationError, match="cpus"):
            VMDescriptor.from_dict({"name": "vm", "kernel": "/k", "initrd": "/i", "cpus": True})

    def test_to_dict_sorts_disks(self):
        desc = VMDescriptor(
            name="vm", kernel="/k", initrd="/i",
            disk_images={DiskImage("/z.img", 1), DiskImage("/a.img", 2)},
            state=VMState.RUNNING,
            identity="5a3e1c2b-8f4d-4e6a-9b7c-0d1e2f3a4b5c",
            pid=42,
        )

        data = desc.to_dict()

        assert [d["path"] for d in data["disk_image"]] == ["/a.img", "/z.img"]
        assert data["state"] == "running"
        assert data["pid"] == 42
        assert VMDescriptor.from_dict(data) == desc

    def test_to_dict_unset_state(self):
        data = VMDescriptor(name="vm", kernel="/k", initrd="/i").to_dict()

        assert data["state"] is None
        assert VMDescriptor.from_dict(data).state is None
