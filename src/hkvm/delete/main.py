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
Delete VM command.

This command stops the VM, removes its hyperkit state directory, and only
then drops the stored record. If teardown fails the record is kept so the
delete can be retried.
"""

import sys
import click

from ..reconciler import Reconciler
from ..store import ResourceStore
from ..exceptions import TeardownError, ResourceNotFoundError, StoreError
from ..utils import get_config


@click.command(name='delete')
@click.argument('identity', required=True)
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def delete(ctx: click.Context, identity: str, verbose: bool):
    """
    Destroy a VM and release its state.

    Disk images are kept.

    Examples:

        hkvm delete 2a1f0c7e-3b0d-4f8e-9a55-1c2d3e4f5a6b
    """
    try:
        config = get_config(ctx)
        store = ResourceStore(config.resources_dir)
        reconciler = Reconciler(config)

        try:
            with store.lock(identity):
                current = store.load(identity)
                reconciler.destroy(current)
                store.delete(identity)
        except ResourceNotFoundError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except TeardownError as e:
            click.echo(f"Error: {e}", err=True)
            click.echo("The VM record was kept; retry the delete", err=True)
            if verbose:
                import traceback
                traceback.print_exc()
            sys.exit(1)
        except StoreError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        click.echo(f"✓ Deleted VM '{current.name}' ({identity})")

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
    delete()
