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
Process handle for a single hyperkit VM.

VMProcess wraps the imperative side of one VM: it builds the hyperkit argument
vector, spawns and signals the process, and owns the VM's state directory.

State directory layout (``<state_dir>/<identity>/``):
============================================================

- ``hyperkit.pid``: pid of the running hyperkit process
- ``hyperkit.json``: record of the last launch (arguments, command line)
- ``hyperkit.log``: stdout/stderr of the hyperkit process
- ``tty``, ``console-ring``: guest console when the console mode is FILE

The pid file is the record of a running VM: it exists from start until the
process is stopped or killed. A handle can be rebuilt from a descriptor at any
time and will find the same process through it; the pid carried by the
descriptor is never trusted once the state directory exists.
"""

import json
import logging
import os
import shutil
import signal
import subprocess
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .config import Config, DEFAULT_STOP_TIMEOUT
from .models import ConsoleMode, DiskImage, VMDescriptor
from .exceptions import LaunchError, ShutdownError, RemovalError

logger = logging.getLogger(__name__)


# PCI slots 0 and 31 hold the host bridge and LPC, slot 1 the network device
FIRST_DEVICE_SLOT = 2
LAST_DEVICE_SLOT = 30

# hyperkit processes spawned by this interpreter, keyed by pid. Only these are
# ever reaped here; other children belong to their own Popen objects.
_spawned: Dict[int, subprocess.Popen] = {}


class VMProcess:
    """
    Imperative control over one hyperkit process.

    Attributes:
        binary: Resolved path to the hyperkit binary (None if not found)
        network_socket: vpnkit socket path, or None for no network device
        state_dir: Directory containing per-identity state directories
        identity: VM UUID
        pid: Process id of the VM, if known
        stop_timeout: Seconds stop() waits for the process to exit
    """

    PID_FILE = "hyperkit.pid"
    STATE_FILE = "hyperkit.json"
    LOG_FILE = "hyperkit.log"
    CONSOLE_RING = "console-ring"
    TTY_LINK = "tty"

    # A hyperkit that rejects its arguments exits within this window
    LAUNCH_SETTLE_SECONDS = 0.25
    POLL_INTERVAL = 0.1
    KILL_TIMEOUT = 5.0

    def __init__(
        self,
        binary: Optional[str],
        network_socket: Optional[str],
        state_dir,
        identity: Optional[str],
        cpus: int = 1,
        memory: int = 1024,
        kernel: str = "",
        initrd: str = "",
        disk_images: Iterable[DiskImage] = (),
        iso_images: Iterable[str] = (),
        pid: Optional[int] = None,
        console: ConsoleMode = ConsoleMode.FILE,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
    ):
        self.binary = binary
        self.network_socket = network_socket
        self.state_dir = Path(state_dir)
        self.identity = identity
        self.cpus = cpus
        self.memory = memory
        self.kernel = kernel
        self.initrd = initrd
        self.disk_images = frozenset(disk_images)
        self.iso_images = tuple(iso_images)
        self.pid = pid
        self.console = console
        self.stop_timeout = stop_timeout

    @classmethod
    def from_descriptor(cls, config: Config, descriptor: VMDescriptor) -> "VMProcess":
        """Build a handle for the VM a descriptor declares."""
        return cls(
            binary=config.resolve_binary(),
            network_socket=config.resolve_network_socket(),
            state_dir=config.state_path,
            identity=descriptor.identity,
            cpus=descriptor.cpus,
            memory=descriptor.memory,
            kernel=descriptor.kernel,
            initrd=descriptor.initrd,
            disk_images=descriptor.disk_images,
            iso_images=descriptor.iso_images,
            pid=descriptor.pid,
            console=config.console,
            stop_timeout=config.stop_timeout,
        )

    @property
    def vm_dir(self) -> Path:
        return self.state_dir / str(self.identity)

    @property
    def pid_file(self) -> Path:
        return self.vm_dir / self.PID_FILE

    @property
    def log_file(self) -> Path:
        return self.vm_dir / self.LOG_FILE

    def exists(self) -> bool:
        """Check whether state for this identity exists on disk."""
        return bool(self.identity) and self.vm_dir.is_dir()

    def build_args(self, command_line: str = "") -> List[str]:
        """
        Build the hyperkit argument vector.

        Disks are attached in path order; ISOs in declared order, since that
        order decides boot device enumeration.

        Raises:
            LaunchError: If more devices are declared than PCI slots exist
        """
        args = [self.binary or "hyperkit", "-A", "-u"]
        args += ["-F", str(self.pid_file)]
        args += ["-c", str(self.cpus), "-m", f"{self.memory}M"]
        args += ["-s", "0:0,hostbridge", "-s", "31,lpc"]

        if self.network_socket:
            args += ["-s", f"1:0,virtio-vpnkit,path={self.network_socket},uuid={self.identity}"]

        devices = [("virtio-blk", d.path) for d in sorted(self.disk_images, key=lambda d: d.path)]
        devices += [("ahci-cd", iso) for iso in self.iso_images]
        if len(devices) > LAST_DEVICE_SLOT - FIRST_DEVICE_SLOT + 1:
            raise LaunchError(
                self.identity,
                f"{len(devices)} disk and ISO images declared, at most "
                f"{LAST_DEVICE_SLOT - FIRST_DEVICE_SLOT + 1} are supported",
            )
        for slot, (emulation, path) in enumerate(devices, start=FIRST_DEVICE_SLOT):
            args += ["-s", f"{slot}:0,{emulation},{path}"]

        args += ["-U", str(self.identity)]
        args += ["-l", self._console_arg()]
        args += ["-f", f'kexec,{self.kernel},{self.initrd},"{command_line}"']
        return args

    def _console_arg(self) -> str:
        if self.console == ConsoleMode.STDIO:
            return "com1,stdio"
        tty = self.vm_dir / self.TTY_LINK
        if self.console == ConsoleMode.LOG:
            return f"com1,autopty={tty},asl"
        return f"com1,autopty={tty},log={self.vm_dir / self.CONSOLE_RING}"

    def start(self, command_line: str = "") -> int:
        """
        Launch the hyperkit process.

        Args:
            command_line: Kernel boot arguments

        Returns:
            Process id of the new VM

        Raises:
            LaunchError: If the binary is missing, the VM is already running,
                         an image is unreadable, or hyperkit exits at once
        """
        if not self.identity:
            raise LaunchError(self.identity, "no identity assigned")

        if self.is_running():
            raise LaunchError(
                self.identity, f"already running (pid {self.current_pid()})"
            )

        if not self.binary or not os.access(self.binary, os.X_OK):
            raise LaunchError(
                self.identity, f"hyperkit binary not found or not executable: {self.binary or '(none)'}"
            )

        self._check_readable("kernel", self.kernel)
        self._check_readable("initrd", self.initrd)
        for iso in self.iso_images:
            self._check_readable("ISO image", iso)
        self._ensure_disks()

        try:
            self.vm_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LaunchError(self.identity, f"cannot create state directory {self.vm_dir}: {e}") from e

        args = self.build_args(command_line)
        logger.debug("VM %s: launching %s", self.identity, " ".join(args))

        inherit_stdio = self.console == ConsoleMode.STDIO
        try:
            with open(self.log_file, "ab") as log:
                proc = subprocess.Popen(
                    args,
                    stdin=None if inherit_stdio else subprocess.DEVNULL,
                    stdout=None if inherit_stdio else log,
                    stderr=None if inherit_stdio else subprocess.STDOUT,
                    start_new_session=True,
                    close_fds=True,
                )
        except OSError as e:
            raise LaunchError(self.identity, f"cannot execute {self.binary}: {e}") from e

        try:
            proc.wait(timeout=self.LAUNCH_SETTLE_SECONDS)
        except subprocess.TimeoutExpired:
            pass
        else:
            raise LaunchError(
                self.identity,
                f"hyperkit exited with status {proc.returncode}: {self._log_tail()}",
            )

        self.pid = proc.pid
        _spawned[proc.pid] = proc
        self._write_pid_file()
        self._write_state(args, command_line)
        logger.info("Started VM %s (pid %d)", self.identity, self.pid)
        return self.pid

    def stop(self) -> None:
        """
        Ask the VM to shut down and wait for it to exit.

        Stopping a VM that is not running succeeds without doing anything.

        Raises:
            ShutdownError: If the process cannot be signalled or outlives
                           stop_timeout
        """
        if not self.is_running():
            logger.debug("VM %s is not running, nothing to stop", self.identity)
            self._forget_pid()
            return

        pid = self.current_pid()
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("VM %s (pid %d) exited before SIGTERM", self.identity, pid)
            self._forget_pid()
            return
        except PermissionError as e:
            raise ShutdownError(self.identity, f"cannot signal pid {pid}: {e}") from e

        if not self._wait_for_exit(self.stop_timeout):
            raise ShutdownError(
                self.identity,
                f"pid {pid} still running {self.stop_timeout:g}s after SIGTERM",
            )

        self._forget_pid()
        logger.info("Stopped VM %s (pid %d)", self.identity, pid)

    def is_running(self) -> bool:
        """
        Check whether the VM process is alive.

        A process that exited out of band reports False. hyperkit processes
        spawned by this interpreter are reaped so they do not linger as
        zombies.
        """
        pid = self.current_pid()
        if not pid:
            return False

        proc = _spawned.get(pid)
        if proc is not None:
            if proc.poll() is None:
                return True
            del _spawned[pid]
            return False

        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by someone else
            return True
        return True

    def remove(self, force: bool = False) -> None:
        """
        Release the on-disk state of this VM.

        Disk images live at user-supplied paths and are kept.

        Args:
            force: Kill a still-running process instead of refusing

        Raises:
            RemovalError: If the VM is running and force is False, or the
                          state directory cannot be deleted
        """
        if self.is_running():
            if not force:
                raise RemovalError(
                    self.identity, f"process {self.current_pid()} is still running"
                )
            self._kill()

        if not self.exists():
            return

        try:
            shutil.rmtree(self.vm_dir)
        except OSError as e:
            raise RemovalError(self.identity, f"cannot delete {self.vm_dir}: {e}") from e
        logger.info("Removed state of VM %s", self.identity)

    def _kill(self) -> None:
        pid = self.current_pid()
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except PermissionError as e:
            raise RemovalError(self.identity, f"cannot kill pid {pid}: {e}") from e

        if not self._wait_for_exit(self.KILL_TIMEOUT):
            raise RemovalError(self.identity, f"pid {pid} survived SIGKILL")
        self._forget_pid()
        logger.warning("Killed VM %s (pid %d)", self.identity, pid)

    def _wait_for_exit(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not self.is_running():
                return True
            time.sleep(self.POLL_INTERVAL)
        return not self.is_running()

    def current_pid(self) -> Optional[int]:
        """
        Return the pid of the VM process, if one should be running.

        The pid file is authoritative. Once the state directory exists, a
        missing pid file means the VM is stopped and any remembered pid is
        stale. The remembered pid is only used before any state exists.
        """
        pid = self._read_pid_file()
        if pid:
            return pid
        if self.exists():
            return None
        return self.pid

    def _forget_pid(self) -> None:
        self._remove_pid_file()
        self.pid = None

    def _read_pid_file(self) -> Optional[int]:
        if not self.identity:
            return None
        try:
            with open(self.pid_file, "r", encoding="utf-8") as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def _write_pid_file(self) -> None:
        with open(self.pid_file, "w", encoding="utf-8") as f:
            f.write(f"{self.pid}\n")

    def _remove_pid_file(self) -> None:
        try:
            self.pid_file.unlink()
        except FileNotFoundError:
            pass

    def _write_state(self, args: List[str], command_line: str) -> None:
        state = {
            "identity": self.identity,
            "pid": self.pid,
            "cpus": self.cpus,
            "memory": self.memory,
            "kernel": self.kernel,
            "initrd": self.initrd,
            "disk_images": [
                {"path": d.path, "size": d.size}
                for d in sorted(self.disk_images, key=lambda d: d.path)
            ],
            "iso_images": list(self.iso_images),
            "command_line": command_line,
            "arguments": args,
        }
        with open(self.vm_dir / self.STATE_FILE, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)

    def _log_tail(self, lines: int = 5) -> str:
        try:
            with open(self.log_file, "r", encoding="utf-8", errors="replace") as f:
                tail = f.read().strip().splitlines()[-lines:]
        except OSError:
            return "(no output)"
        return " | ".join(tail) if tail else "(no output)"

    def _check_readable(self, what: str, path: str) -> None:
        if not path:
            raise LaunchError(self.identity, f"{what} path is empty")
        resolved = Path(path).expanduser()
        if not resolved.is_file() or not os.access(resolved, os.R_OK):
            raise LaunchError(self.identity, f"{what} '{path}' is missing or unreadable")

    def _ensure_disks(self) -> None:
        """Create missing raw disks as sparse files and grow undersized ones."""
        for disk in self.disk_images:
            path = Path(disk.path).expanduser()
            if path.exists() and not os.access(path, os.R_OK | os.W_OK):
                raise LaunchError(self.identity, f"disk image '{disk.path}' is not readable")
            try:
                if not path.exists():
                    path.parent.mkdir(parents=True, exist_ok=True)
                    with open(path, "wb") as f:
                        f.truncate(disk.size)
                    logger.info("VM %s: created disk image %s (%d bytes)", self.identity, path, disk.size)
                elif path.stat().st_size < disk.size:
                    os.truncate(path, disk.size)
                    logger.info("VM %s: grew disk image %s to %d bytes", self.identity, path, disk.size)
            except OSError as e:
                raise LaunchError(self.identity, f"cannot prepare disk image '{disk.path}': {e}") from e
