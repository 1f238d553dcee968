"""
signals/ - Reactive Signal Graph

Signals, derived signals, the whole-state Store and the selector
handles built on them.
"""

from .graph import (
    Signal,
    Derived,
    signal,
    derived,
    untracked,
    signal_equals,
)

from .store import (
    Store,
    identity_equals,
)

from .selection import (
    StoreSignal,
    Selection,
    select_signal,
)

__all__ = [
    # Graph
    "Signal",
    "Derived",
    "signal",
    "derived",
    "untracked",
    "signal_equals",
    # Store
    "Store",
    "identity_equals",
    # Selection
    "StoreSignal",
    "Selection",
    "select_signal",
]
