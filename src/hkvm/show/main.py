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
Show VM information command.

Each shown VM is refreshed first: the observed power state and pid are read
from the hyperkit process and written back to the resource store.
"""

import json
import sys
from typing import Optional
import click

from ..reconciler import Reconciler
from ..store import ResourceStore
from ..exceptions import ResourceNotFoundError, StoreError
from ..utils import get_config, echo_descriptor


def refresh(reconciler: Reconciler, store: ResourceStore, identity: str):
    """Read one VM through the reconciler and store the refreshed record."""
    with store.lock(identity):
        current = store.load(identity)
        observed = reconciler.read(current)
        store.save(observed)
    return observed


@click.command(name='show')
@click.argument('identity', required=False)
@click.option('--json', 'as_json', is_flag=True, help='Print descriptors as JSON')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def show(ctx: click.Context, identity: Optional[str], as_json: bool, verbose: bool):
    """
    Show one VM, or all stored VMs when no identity is given.

    Examples:

        hkvm show
        hkvm show 2a1f0c7e-3b0d-4f8e-9a55-1c2d3e4f5a6b --verbose
        hkvm show --json
    """
    try:
        config = get_config(ctx)
        store = ResourceStore(config.resources_dir)
        reconciler = Reconciler(config)

        identities = [identity] if identity else store.list_identities()
        if not identities:
            if not as_json:
                click.echo("No VMs found")
            else:
                click.echo("[]")
            return

        results = []
        failed = False
        for vm_id in identities:
            try:
                results.append(refresh(reconciler, store, vm_id))
            except ResourceNotFoundError as e:
                click.echo(f"Error: {e}", err=True)
                failed = True
            except StoreError as e:
                click.echo(f"Error: {e}", err=True)
                failed = True

        if as_json:
            payload = [d.to_dict() for d in results]
            click.echo(json.dumps(payload[0] if identity and payload else payload, indent=2))
        else:
            for index, descriptor in enumerate(results):
                if index:
                    click.echo("")
                echo_descriptor(descriptor, verbose=verbose)

        if failed:
            sys.exit(1)

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
    show()
