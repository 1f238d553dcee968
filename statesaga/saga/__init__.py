"""
saga/ - Saga Manager

Facade over a StateManager, its event dispatcher and middleware.
"""

from .manager import SagaManager

__all__ = [
    "SagaManager",
]
