"""
Utility functions for kvorchestra.

Includes:
- Case conversion (snake_case -> camelCase) for wire field names
- Deep copies of wire payloads
"""

from __future__ import annotations

import copy
import re
from typing import Any


# Pre-compiled regex pattern for better performance
_SNAKE_TO_CAMEL_PATTERN = re.compile(r'_([a-z])')


def to_camel_case(name: str) -> str:
    """
    Convert snake_case to camelCase.

    Used as the alias generator of every wire model, so that
    ``read_consistency`` is sent as ``readConsistency``.

    Examples:
        read_consistency -> readConsistency
        partition_id -> partitionId
        namespace_id -> namespaceId
    """
    def replace_underscore(match):
        return match.group(1).upper()

    return _SNAKE_TO_CAMEL_PATTERN.sub(replace_underscore, name)


def clone(data: Any) -> Any:
    """Deep copy of a wire payload or caller-owned structure."""
    return copy.deepcopy(data)
