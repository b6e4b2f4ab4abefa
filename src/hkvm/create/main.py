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
Create VM command.

This command declares a new hyperkit VM, boots it, and records the resulting
descriptor in the resource store. A VM declared with --state=stopped is booted
once and stopped again straight away.
"""

import sys
from contextlib import nullcontext
from typing import Optional, Tuple
import click

from ..reconciler import Reconciler
from ..store import ResourceStore
from ..models import VMDescriptor
from ..validation import validate_state
from ..exceptions import (
    ValidationError,
    IdentityError,
    LaunchError,
    ShutdownError,
    StoreError,
)
from ..utils import get_config, parse_disk_spec, echo_descriptor


@click.command(name='create')
@click.pass_context
@click.argument('name', required=True)
@click.option('--kernel', '-k', required=True, help='Path to kernel image file')
@click.option('--initrd', '-i', required=True, help='Path to initrd image file')
@click.option('--cpus', '-c', type=int, default=1, show_default=True, help='Number of vCPUs')
@click.option('--memory', '-m', type=int, default=1024, show_default=True, help='Memory in MB')
@click.option('--disk', '-d', 'disks', multiple=True,
              help='Disk image as PATH:SIZE (e.g., "vm.img:8GB"); repeatable, created if missing')
@click.option('--iso', 'isos', multiple=True, help='ISO image path; repeatable, order is boot order')
@click.option('--cmdline', default='', help='Kernel boot command line')
@click.option('--state', help='Target power state: running (default) or stopped')
@click.option('--uuid', 'identity', help='Use this VM identity instead of generating one')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
def create(
    ctx: click.Context,
    name: str,
    kernel: str,
    initrd: str,
    cpus: int,
    memory: int,
    disks: Tuple[str, ...],
    isos: Tuple[str, ...],
    cmdline: str,
    state: Optional[str],
    identity: Optional[str],
    verbose: bool
):
    """
    Create and boot a new hyperkit VM.

    Examples:

        hkvm create builder --kernel=vmlinuz --initrd=initrd.img \\
                 --disk=builder.img:8GB --cmdline="console=ttyS0"

        hkvm create installer --kernel=vmlinuz --initrd=initrd.img \\
                 --iso=boot.iso --iso=drivers.iso --state=stopped
    """
    try:
        config = get_config(ctx)
        store = ResourceStore(config.resources_dir)

        try:
            disk_images = frozenset(parse_disk_spec(d) for d in disks)
            desired = VMDescriptor(
                name=name,
                kernel=kernel,
                initrd=initrd,
                disk_images=disk_images,
                iso_images=tuple(isos),
                cpus=cpus,
                memory=memory,
                identity=identity,
                state=validate_state(state),
                command_line=cmdline,
            )
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(2)
        except ValidationError as e:
            click.echo(f"Error: Validation failed: {e}", err=True)
            sys.exit(2)

        if identity and identity in store.list_identities():
            click.echo(f"Error: VM {identity} already exists", err=True)
            click.echo(f"Use 'hkvm delete {identity}' first to recreate it", err=True)
            sys.exit(1)

        reconciler = Reconciler(config)

        try:
            with store.lock(identity) if identity else nullcontext():
                observed = reconciler.create(desired)
                store.save(observed)
        except ValidationError as e:
            click.echo(f"Error: Validation failed: {e}", err=True)
            sys.exit(2)
        except IdentityError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except (LaunchError, ShutdownError) as e:
            click.echo(f"Error: {e}", err=True)
            if verbose:
                import traceback
                traceback.print_exc()
            sys.exit(1)
        except StoreError as e:
            click.echo(f"Error: VM was started but could not be recorded: {e}", err=True)
            sys.exit(1)

        click.echo(f"✓ Created VM '{name}' ({observed.identity})")
        if verbose:
            echo_descriptor(observed, verbose=True)

    except KeyboardInterrupt:
        click.echo("\nOperation cancelled", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    create()
