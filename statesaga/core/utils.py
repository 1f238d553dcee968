"""
core/utils.py - Clone, equality and path helpers

Shared by the state manager, the store and the selectors.
Work with nested mappings, sequences and plain attribute objects.
"""

from collections.abc import Mapping
from typing import Any, Callable, Optional
import copy
import inspect


_MISSING = object()


def default_clone(value: Any) -> Any:
    """Deep copy of a state value."""
    return copy.deepcopy(value)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def deep_equal(a: Any, b: Any) -> bool:
    """
    Structural equality for nested state values.

    Mappings compare by key set and values, lists/tuples element-wise,
    objects without a custom __eq__ by their attribute dicts.
    """
    if a is b:
        return True
    if a is None or b is None:
        return False

    if isinstance(a, Mapping) or isinstance(b, Mapping):
        if not (isinstance(a, Mapping) and isinstance(b, Mapping)):
            return False
        if len(a) != len(b):
            return False
        for key in a:
            if key not in b:
                return False
            if not deep_equal(a[key], b[key]):
                return False
        return True

    if _is_sequence(a) or _is_sequence(b):
        if type(a) is not type(b) or len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))

    if (
        type(a) is type(b)
        and type(a).__eq__ is object.__eq__
        and hasattr(a, "__dict__")
    ):
        return deep_equal(vars(a), vars(b))

    try:
        return bool(a == b)
    except (TypeError, ValueError):
        # e.g. array-likes with ambiguous truth values
        return False


def shallow_equal(a: Any, b: Any) -> bool:
    """Fast check: same container shape with identical members."""
    if a is b:
        return True
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if len(a) != len(b):
            return False
        for key, value in a.items():
            if b.get(key, _MISSING) is not value:
                return False
        return True
    if _is_sequence(a) and _is_sequence(b):
        if type(a) is not type(b) or len(a) != len(b):
            return False
        return all(x is y for x, y in zip(a, b))
    return False


def get_nested(obj: Any, path: str, default: Any = None) -> Any:
    """
    Read a dot-notation path (e.g. "user.profile.name").

    Mapping keys, sequence indices and attributes are all accepted.
    Returns default when any segment is missing.
    """
    current = obj
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif _is_sequence(current):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                current = _MISSING
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            return default
    return current


def resolve_equality(equality_fn: Optional[Callable[[Any, Any], bool]]) -> Callable[[Any, Any], bool]:
    return equality_fn if equality_fn is not None else deep_equal


async def maybe_await(value: Any) -> Any:
    """Await value if it is awaitable; sync callables return plain values."""
    if inspect.isawaitable(value):
        return await value
    return value
