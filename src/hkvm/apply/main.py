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
Apply a VM manifest.

The manifest is a JSON object using the resource field names (name, cpus,
memory, identity, kernel, initrd, disk_image, iso_images, state,
command_line). Applying it converges the stored VM to the manifest:

  1. No matching VM (by identity, else by name): create it
  2. Matching VM, creation-time fields unchanged: update it in place
  3. Matching VM, creation-time fields changed: destroy it, then create anew
"""

import json
import sys
from contextlib import nullcontext
from typing import Optional
import click

from ..reconciler import Reconciler
from ..store import ResourceStore
from ..models import VMDescriptor
from ..diff import Replace, InPlaceUpdate, diff_descriptors
from ..exceptions import HkvmError, ResourceNotFoundError, ValidationError
from ..utils import get_config, echo_descriptor


def load_manifest(path: str) -> VMDescriptor:
    """
    Load a manifest file into a descriptor.

    Raises:
        ValidationError: If the file is not a valid VM manifest
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ValidationError(f"Cannot read manifest {path}: {e}") from e
    except ValueError as e:
        raise ValidationError(f"Manifest {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"Manifest {path} must contain a JSON object")

    for computed in ("pid", "ip_address"):
        data.pop(computed, None)
    return VMDescriptor.from_dict(data)


def find_current(store: ResourceStore, desired: VMDescriptor) -> Optional[VMDescriptor]:
    """Find the stored VM a manifest refers to."""
    if desired.identity:
        try:
            return store.load(desired.identity)
        except ResourceNotFoundError:
            return None
    return store.find_by_name(desired.name)


def _lock_new(store: ResourceStore, desired: VMDescriptor):
    """Lock the identity a new VM will get, when the manifest names one."""
    return store.lock(desired.identity) if desired.identity else nullcontext()


def describe_plan(current: Optional[VMDescriptor], desired: VMDescriptor) -> str:
    if current is None:
        return "create"
    decision = diff_descriptors(current, desired)
    if isinstance(decision, Replace):
        return f"replace ({', '.join(sorted(decision.fields))} changed)"
    if isinstance(decision, InPlaceUpdate):
        return f"update ({', '.join(sorted(decision.fields))} changed)"
    return "no changes"


@click.command(name='apply')
@click.argument('manifest', type=click.Path(dir_okay=False))
@click.option('--dry-run', is_flag=True, help='Show the plan without acting on it')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def apply(ctx: click.Context, manifest: str, dry_run: bool, verbose: bool):
    """
    Converge a VM to the declaration in a JSON manifest.

    Examples:

        hkvm apply builder.json
        hkvm apply builder.json --dry-run
    """
    try:
        try:
            desired = load_manifest(manifest)
        except ValidationError as e:
            click.echo(f"Error: Validation failed: {e}", err=True)
            sys.exit(2)

        config = get_config(ctx)
        store = ResourceStore(config.resources_dir)
        reconciler = Reconciler(config)

        try:
            current = find_current(store, desired)
            if current is not None:
                try:
                    current = reconciler.read(current)
                except ResourceNotFoundError:
                    if verbose:
                        click.echo(f"VM {current.identity} is gone, recreating it")
                    store.delete(current.identity)
                    current = None

            plan = describe_plan(current, desired)
            if dry_run:
                click.echo(f"Plan for '{desired.name}': {plan}")
                return
            if verbose:
                click.echo(f"Plan for '{desired.name}': {plan}")

            if current is None:
                with _lock_new(store, desired):
                    observed = reconciler.create(desired)
                    store.save(observed)
                click.echo(f"✓ Created VM '{observed.name}' ({observed.identity})")
            elif isinstance(diff_descriptors(current, desired), Replace):
                with store.lock(current.identity):
                    reconciler.destroy(current)
                    store.delete(current.identity)
                with _lock_new(store, desired):
                    observed = reconciler.create(desired)
                    store.save(observed)
                click.echo(
                    f"✓ Replaced VM '{observed.name}' ({current.identity} -> {observed.identity})"
                )
            else:
                with store.lock(current.identity):
                    observed = reconciler.update(current, desired)
                    store.save(observed)
                click.echo(f"✓ Applied VM '{observed.name}' ({observed.identity}): {plan}")
        except ValidationError as e:
            click.echo(f"Error: Validation failed: {e}", err=True)
            sys.exit(2)
        except HkvmError as e:
            click.echo(f"Error: {e}", err=True)
            if verbose:
                import traceback
                traceback.print_exc()
            sys.exit(1)

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
    apply()
