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
Command-line interface for hkvm.
"""

import click

from . import __version__
from .config import (
    Config,
    DEFAULT_RESOURCES_DIR,
    DEFAULT_STATE_DIR,
    DEFAULT_STOP_TIMEOUT,
    NETWORK_SOCKET_AUTO,
)
from .models import ConsoleMode
from .utils import setup_logging
from .create.main import create
from .apply.main import apply
from .show.main import show
from .update.main import update
from .delete.main import delete


@click.group()
@click.version_option(version=__version__, prog_name="hkvm")
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.option("--hyperkit-bin", envvar="HKVM_HYPERKIT_BIN", default="",
              help="Path to the hyperkit binary (searched on PATH if empty)")
@click.option("--vpnkit-socket", envvar="HKVM_VPNKIT_SOCKET", default=NETWORK_SOCKET_AUTO,
              show_default=True,
              help="vpnkit socket path; 'auto' uses Docker Desktop's, empty disables networking")
@click.option("--state-dir", envvar="HKVM_STATE_DIR", default=DEFAULT_STATE_DIR, show_default=True,
              help="Directory for per-VM hyperkit state")
@click.option("--resources-dir", envvar="HKVM_RESOURCES_DIR", default=DEFAULT_RESOURCES_DIR,
              show_default=True, help="Directory for stored VM descriptors")
@click.option("--console", envvar="HKVM_CONSOLE", default=ConsoleMode.FILE.value, show_default=True,
              type=click.Choice([m.value for m in ConsoleMode]), help="Guest console mode")
@click.option("--stop-timeout", envvar="HKVM_STOP_TIMEOUT", default=DEFAULT_STOP_TIMEOUT,
              type=float, show_default=True, help="Seconds to wait for a VM to shut down")
@click.pass_context
def main(ctx, debug, hyperkit_bin, vpnkit_socket, state_dir, resources_dir, console, stop_timeout):
    """hkvm: declarative lifecycle management for hyperkit VMs."""
    setup_logging(debug)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config"] = Config(
        binary=hyperkit_bin,
        network_socket=vpnkit_socket,
        state_dir=state_dir,
        resources_dir=resources_dir,
        console=ConsoleMode(console),
        stop_timeout=stop_timeout,
    )


# Add subcommands
main.add_command(create)
main.add_command(apply)
main.add_command(show)
main.add_command(update)
main.add_command(delete)


if __name__ == "__main__":
    main()
