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
Runtime state observation for VM process handles.
"""

import logging

from .models import Observation

logger = logging.getLogger(__name__)


class StateObserver:
    """
    Queries a VM process handle for its runtime state.

    Process liveness is the only environment-dependent input to the
    reconciler; keeping it here leaves action selection deterministic.
    """

    def observe(self, handle) -> Observation:
        running = handle.is_running()
        pid = handle.current_pid() if running else None
        logger.debug("VM %s observed %s (pid %s)", handle.identity,
                     "running" if running else "stopped", pid)
        return Observation(running=running, pid=pid)
