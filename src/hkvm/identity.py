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
VM identity allocation.
"""

import logging
import uuid
from typing import Optional

from .exceptions import IdentityError
from .validation import validate_identity

logger = logging.getLogger(__name__)


def allocate_identity(supplied: Optional[str] = None) -> str:
    """
    Return the identity a new VM should use.

    Args:
        supplied: Caller-supplied identity; reused unchanged when present

    Returns:
        UUID string

    Raises:
        ValidationError: If the supplied identity is not a UUID
        IdentityError: If a random UUID cannot be generated
    """
    if supplied:
        validate_identity(supplied)
        return supplied

    try:
        identity = str(uuid.uuid4())
    except (OSError, NotImplementedError) as e:
        raise IdentityError(f"failed to generate uuid, {e}") from e

    logger.debug("Generated identity %s", identity)
    return identity
