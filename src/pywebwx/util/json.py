from __future__ import annotations

import dataclasses
import json
from typing import Any


def _default(obj: Any) -> Any:
    to_wire = getattr(obj, "to_wire", None)
    if callable(to_wire):
        return to_wire()
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    # `dataclasses.is_dataclass()` is true for both instances and dataclass *types*.
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dumps(obj: Any, *, indent: int | None = None) -> str:
    """JSON serialize for persisted blobs (stable key order)."""

    return json.dumps(obj, default=_default, indent=indent, sort_keys=True, ensure_ascii=False)


def dumps_wire(obj: Any) -> str:
    """
    JSON serialize a request body.

    The gateway expects raw UTF-8 text and insertion-ordered keys, so no ASCII
    escaping and no key sorting.
    """

    return json.dumps(obj, default=_default, ensure_ascii=False, separators=(",", ":"))


def loads(data: str | bytes) -> Any:
    return json.loads(data)
