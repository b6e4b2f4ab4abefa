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
Resource store used by the hkvm command line.

The reconciler does not persist anything itself. The CLI plays the host role:
it keeps one JSON record per VM identity in the resources directory and
serializes operations on an identity with a lock file next to the record.

Layout:
=======

- ``<resources_dir>/<identity>.json``: last reconciled VMDescriptor
- ``<resources_dir>/<identity>.lock``: present while an operation runs
"""

import json
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from .models import VMDescriptor
from .exceptions import ResourceNotFoundError, StoreError, ValidationError


class ResourceStore:
    """
    JSON file store for VM descriptors, keyed by identity.

    Attributes:
        resources_dir: Directory holding the records and lock files
    """

    LOCK_RETRIES = 10
    LOCK_RETRY_DELAY = 0.1

    def __init__(self, resources_dir):
        self.resources_dir = Path(resources_dir).expanduser()

    def _record_path(self, identity: str) -> Path:
        return self.resources_dir / f"{identity}.json"

    def _lock_path(self, identity: str) -> Path:
        return self.resources_dir / f"{identity}.lock"

    def save(self, descriptor: VMDescriptor) -> None:
        """
        Write a descriptor, replacing any previous record for its identity.

        Raises:
            StoreError: If the descriptor has no identity or cannot be written
        """
        if not descriptor.identity:
            raise StoreError(f"Cannot store VM '{descriptor.name}' without an identity")

        path = self._record_path(descriptor.identity)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.resources_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(descriptor.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}") from e

    def load(self, identity: str) -> VMDescriptor:
        """
        Read the record for an identity.

        Raises:
            ResourceNotFoundError: If no record exists
            StoreError: If the record cannot be read or parsed
        """
        path = self._record_path(identity)
        if not path.exists():
            raise ResourceNotFoundError(identity)

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return VMDescriptor.from_dict(data)
        except (OSError, ValueError, ValidationError) as e:
            raise StoreError(f"Failed to read {path}: {e}") from e

    def delete(self, identity: str) -> None:
        """Remove the record for an identity. Missing records are ignored."""
        path = self._record_path(identity)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreError(f"Failed to delete {path}: {e}") from e

    def list_identities(self) -> List[str]:
        """Return the identities of all stored records, sorted."""
        if not self.resources_dir.exists():
            return []
        return sorted(p.stem for p in self.resources_dir.glob("*.json"))

    def find_by_name(self, name: str) -> Optional[VMDescriptor]:
        """Return the stored descriptor with the given name, if any."""
        for identity in self.list_identities():
            descriptor = self.load(identity)
            if descriptor.name == name:
                return descriptor
        return None

    @contextmanager
    def lock(self, identity: str):
        """
        Hold the per-identity lock for the duration of the block.

        Raises:
            StoreError: If the lock cannot be acquired
        """
        lock_file = self._lock_path(identity)
        lock_acquired = False

        try:
            try:
                self.resources_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(f"Failed to create {self.resources_dir}: {e}") from e

            for _ in range(self.LOCK_RETRIES):
                try:
                    lock_file.touch(exist_ok=False)
                    lock_acquired = True
                    break
                except FileExistsError:
                    time.sleep(self.LOCK_RETRY_DELAY)

            if not lock_acquired:
                raise StoreError(
                    f"Could not lock VM {identity} after {self.LOCK_RETRIES} attempts. "
                    "Another hkvm operation may be in progress."
                )

            yield

        finally:
            if lock_acquired and lock_file.exists():
                lock_file.unlink()
