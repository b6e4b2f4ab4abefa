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
Update VM command.

Only the mutable fields of a VM can be updated in place:
  - state:        running / stopped; starts or stops the hyperkit process
  - command line: kernel boot arguments, used from the next start
"""

import copy
import sys
from typing import Optional
import click

from ..reconciler import Reconciler
from ..store import ResourceStore
from ..validation import validate_state
from ..exceptions import (
    ValidationError,
    LaunchError,
    ShutdownError,
    ResourceNotFoundError,
    StoreError,
)
from ..utils import get_config, echo_descriptor


@click.command(name='update')
@click.argument('identity', required=True)
@click.option('--state', help='Target power state: running or stopped')
@click.option('--cmdline', help='New kernel boot command line')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def update(
    ctx: click.Context,
    identity: str,
    state: Optional[str],
    cmdline: Optional[str],
    verbose: bool
):
    """
    Change the power state or command line of an existing VM.

    At least one of --state or --cmdline must be specified.

    Examples:

        # Stop a running VM
        hkvm update 2a1f0c7e-3b0d-4f8e-9a55-1c2d3e4f5a6b --state=stopped

        # Boot it again with a different command line
        hkvm update 2a1f0c7e-3b0d-4f8e-9a55-1c2d3e4f5a6b --state=running \\
                 --cmdline="console=ttyS0 debug"
    """
    try:
        if state is None and cmdline is None:
            click.echo("Error: At least one of --state or --cmdline must be specified", err=True)
            sys.exit(2)

        try:
            target_state = validate_state(state)
        except ValidationError as e:
            click.echo(f"Error: Validation failed: {e}", err=True)
            sys.exit(2)

        config = get_config(ctx)
        store = ResourceStore(config.resources_dir)
        reconciler = Reconciler(config)

        try:
            with store.lock(identity):
                previous = reconciler.read(store.load(identity))

                desired = copy.deepcopy(previous)
                if target_state is not None:
                    desired.state = target_state
                if cmdline is not None:
                    desired.command_line = cmdline

                observed = reconciler.update(previous, desired)
                store.save(observed)
        except ResourceNotFoundError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except ValidationError as e:
            click.echo(f"Error: Validation failed: {e}", err=True)
            sys.exit(2)
        except (LaunchError, ShutdownError) as e:
            click.echo(f"Error: {e}", err=True)
            click.echo(f"Run 'hkvm show {identity}' to refresh the VM state", err=True)
            if verbose:
                import traceback
                traceback.print_exc()
            sys.exit(1)
        except StoreError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        click.echo(f"✓ Updated VM '{observed.name}' ({identity})")
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
    update()
