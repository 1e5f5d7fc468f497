from __future__ import annotations

import copy
from typing import Any, Dict, Mapping


def deep_merge(target: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``patch`` onto a copy of ``target``.

    A key absent from ``patch`` is left alone and an explicit ``None`` stores
    null. Lists replace the stored value wholesale; mappings merge key by key
    when the stored value is also a mapping. Any other value overwrites.
    """
    merged: Dict[str, Any] = {key: copy.deepcopy(value) for key, value in target.items()}
    for key, value in patch.items():
        current = merged.get(key)
        if value is None:
            merged[key] = None
        elif isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged
