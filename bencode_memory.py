"""
Ownership of decoded values.

Owned byte strings and lists are handed out by an Allocator, which keeps
a ledger of everything still live. `release` walks a decoded value using
its shape and frees each owned node exactly once, children first.
"""
import logging

from bencode_errors import AllocatorRequiredError
from bencode_schema import (
    Any,
    Bytes,
    DynamicList,
    FixedBytes,
    FixedList,
    Integer,
    Optional,
    Record,
)

logger = logging.getLogger(__name__)


class Allocator:
    """Hands out owned containers and tracks which are still live."""

    def __init__(self):
        self._live = {}

    def __len__(self):
        return len(self._live)

    @property
    def live(self) -> int:
        """Number of allocations not yet freed."""
        return len(self._live)

    def _track(self, obj):
        self._live[id(obj)] = obj
        return obj

    def alloc_bytes(self, data) -> bytearray:
        """Copies `data` into a new owned bytearray."""
        return self._track(bytearray(data))

    def alloc_list(self) -> list:
        return self._track([])

    def alloc_dict(self) -> dict:
        return self._track({})

    def owns(self, obj) -> bool:
        return self._live.get(id(obj)) is obj

    def free(self, obj):
        """Releases an allocation. Freeing twice, or freeing a foreign object, is an error."""
        if not self.owns(obj):
            raise ValueError(f"{type(obj).__name__} at {id(obj):#x} is not a live allocation")
        del self._live[id(obj)]
        obj.clear()


def _require(allocator):
    if allocator is None:
        raise AllocatorRequiredError("Value holds owned data but no allocator was given")
    return allocator


def _release_any(owned, value, allocator):
    if isinstance(value, list):
        for item in reversed(value):
            _release_any(owned, item, allocator)
        _require(allocator).free(value)
    elif isinstance(value, dict):
        for item in reversed(list(value.values())):
            _release_any(owned, item, allocator)
        _require(allocator).free(value)
    elif owned and isinstance(value, bytearray):
        _require(allocator).free(value)


def release(shape, value, allocator=None):
    """
    Frees every owned node of a decoded `value`, children before parents.

    Integers, fixed byte strings and borrowed views are left alone.
    """
    if isinstance(shape, (Integer, FixedBytes)):
        return
    if isinstance(shape, Bytes):
        if shape.owned:
            _require(allocator).free(value)
    elif isinstance(shape, FixedList):
        for item in reversed(value):
            release(shape.element, item, allocator)
    elif isinstance(shape, DynamicList):
        for item in reversed(value):
            release(shape.element, item, allocator)
        _require(allocator).free(value)
    elif isinstance(shape, Record):
        for field in reversed(shape.fields):
            release(field.shape, shape.get(value, field), allocator)
    elif isinstance(shape, Optional):
        if value is not None:
            release(shape.inner, value, allocator)
    elif isinstance(shape, Any):
        _release_any(shape.owned, value, allocator)
    else:
        raise TypeError(f"Unknown shape {shape!r}")
