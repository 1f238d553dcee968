"""
core/ - State Management

StateManager, its configuration, the mutation-tracking wrapper and the
clone/equality helpers they share.
"""

from .config import (
    ENV_PREFIX,
    StateManagerOptions,
    TrackingOptions,
    is_debug_enabled,
)

from .utils import (
    default_clone,
    deep_equal,
    shallow_equal,
    get_nested,
    maybe_await,
)

from .tracking import (
    TrackedView,
    TrackedDict,
    TrackedList,
    TrackedObject,
    MutationTracker,
    unwrap,
)

from .state_manager import (
    StateManager,
)

__all__ = [
    # Config
    "ENV_PREFIX",
    "StateManagerOptions",
    "TrackingOptions",
    "is_debug_enabled",
    # Utils
    "default_clone",
    "deep_equal",
    "shallow_equal",
    "get_nested",
    "maybe_await",
    # Tracking
    "TrackedView",
    "TrackedDict",
    "TrackedList",
    "TrackedObject",
    "MutationTracker",
    "unwrap",
    # State
    "StateManager",
]
