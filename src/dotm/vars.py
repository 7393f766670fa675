"""Template variable merging."""

from __future__ import annotations

import copy
from typing import Any, Mapping


def merge_vars(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base``.

    Nested tables merge recursively; any other value in ``overlay`` replaces the
    one in ``base`` wholesale. Neither input is modified.
    """

    result: dict[str, Any] = copy.deepcopy(dict(base))

    for key, overlay_value in overlay.items():
        base_value = result.get(key)
        if isinstance(base_value, Mapping) and isinstance(overlay_value, Mapping):
            result[key] = merge_vars(base_value, overlay_value)
        else:
            result[key] = copy.deepcopy(overlay_value)

    return result
