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
Utility functions shared by the hkvm subcommands.
"""

import logging
from typing import List

import click

from .config import Config
from .models import DiskImage, VMDescriptor


def get_config(ctx: click.Context) -> Config:
    """Return the Config built by the command group, or the defaults."""
    if ctx and ctx.obj and "config" in ctx.obj:
        return ctx.obj["config"]
    return Config()


def setup_logging(debug: bool) -> None:
    """Send library log records to stderr; DEBUG with --debug, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_size_spec(size_spec: str) -> int:
    """
    Parse a size specification string into bytes.

    Supports formats:
    - "2GB" or "2gb"
    - "2048MB" or "2048mb"
    - "2097152KB" or "2097152kb"
    - "2147483648" (raw bytes)

    Args:
        size_spec: Size specification string

    Returns:
        Size in bytes

    Raises:
        ValueError: If specification is invalid
    """
    size_spec = size_spec.strip().upper()

    multipliers = {
        'KB': 1024,
        'MB': 1024 ** 2,
        'GB': 1024 ** 3,
        'TB': 1024 ** 4,
    }

    for unit, multiplier in multipliers.items():
        if size_spec.endswith(unit):
            try:
                value = float(size_spec[:-len(unit)].strip())
                return int(value * multiplier)
            except ValueError:
                raise ValueError(f"Invalid size value '{size_spec}': expected number before {unit}")

    try:
        return int(size_spec)
    except ValueError:
        raise ValueError(f"Invalid size specification '{size_spec}': expected size with unit (GB/MB/KB) or bytes")


def parse_disk_spec(disk_spec: str) -> DiskImage:
    """
    Parse a "PATH:SIZE" disk specification.

    The size is split off at the last colon so paths may contain colons.

    Raises:
        ValueError: If the specification has no size or the size is invalid
    """
    path, sep, size = disk_spec.rpartition(':')
    if not sep or not path:
        raise ValueError(f"Invalid disk specification '{disk_spec}': expected PATH:SIZE")
    return DiskImage(path=path, size=parse_size_spec(size))


def format_size(size: int) -> str:
    for unit, multiplier in (('TB', 1024 ** 4), ('GB', 1024 ** 3), ('MB', 1024 ** 2), ('KB', 1024)):
        if size >= multiplier and size % multiplier == 0:
            return f"{size // multiplier}{unit}"
    return f"{size}B"


def format_descriptor(descriptor: VMDescriptor, verbose: bool = False) -> List[str]:
    """Render a descriptor as lines for terminal output."""
    state = descriptor.state.value if descriptor.state else "unknown"
    lines = [
        f"{descriptor.name} ({descriptor.identity})",
        f"  State:        {state}",
        f"  PID:          {descriptor.pid if descriptor.pid else '-'}",
        f"  CPUs:         {descriptor.cpus}",
        f"  Memory:       {descriptor.memory}MB",
    ]
    if descriptor.ip_address:
        lines.append(f"  IP address:   {descriptor.ip_address}")
    if verbose:
        lines.append(f"  Kernel:       {descriptor.kernel}")
        lines.append(f"  Initrd:       {descriptor.initrd}")
        lines.append(f"  Command line: {descriptor.command_line or '(empty)'}")
        for disk in sorted(descriptor.disk_images, key=lambda d: d.path):
            lines.append(f"  Disk:         {disk.path} ({format_size(disk.size)})")
        for index, iso in enumerate(descriptor.iso_images):
            lines.append(f"  ISO {index}:        {iso}")
    return lines


def echo_descriptor(descriptor: VMDescriptor, verbose: bool = False) -> None:
    for line in format_descriptor(descriptor, verbose=verbose):
        click.echo(line)
