"""
core/config.py - State manager configuration

Options for StateManager and the mutation-tracking wrapper.
Values can be supplied directly or loaded from STATESAGA_* environment variables.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import os


ENV_PREFIX = "STATESAGA_"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def is_debug_enabled() -> bool:
    """Check the STATESAGA_DEBUG environment flag."""
    return _env_flag("DEBUG", False)


@dataclass
class StateManagerOptions:
    """Configuration for StateManager history and change detection."""

    # History bounds
    max_undo_history: int = 100
    max_snapshots: int = 20
    auto_cleanup: bool = True

    # Clone/equality policy (None = copy.deepcopy / deep_equal)
    clone: Optional[Callable[[Any], Any]] = None
    equality_fn: Optional[Callable[[Any, Any], bool]] = None

    debug: bool = False

    def __post_init__(self):
        if self.max_undo_history < 0:
            raise ValueError(f"max_undo_history must be >= 0, got {self.max_undo_history}")
        # A running transaction always needs its own restore point
        if self.max_snapshots < 1:
            raise ValueError(f"max_snapshots must be >= 1, got {self.max_snapshots}")

    @classmethod
    def from_env(cls) -> "StateManagerOptions":
        """Create options from environment variables."""
        return cls(
            max_undo_history=int(os.getenv(ENV_PREFIX + "MAX_UNDO_HISTORY", "100")),
            max_snapshots=int(os.getenv(ENV_PREFIX + "MAX_SNAPSHOTS", "20")),
            auto_cleanup=_env_flag("AUTO_CLEANUP", True),
            debug=is_debug_enabled(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_undo_history": self.max_undo_history,
            "max_snapshots": self.max_snapshots,
            "auto_cleanup": self.auto_cleanup,
            "custom_clone": self.clone is not None,
            "custom_equality": self.equality_fn is not None,
            "debug": self.debug,
        }


@dataclass
class TrackingOptions:
    """Configuration for the mutation-tracking wrapper."""

    # Wrap nested containers lazily on access
    deep: bool = True

    # Delay before notifying the state manager (0 = immediate)
    debounce_ms: float = 0.0

    # Log every tracked mutation at INFO
    enable_logging: bool = False

    def __post_init__(self):
        if self.debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got {self.debounce_ms}")
