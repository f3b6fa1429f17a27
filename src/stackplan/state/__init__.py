"""State snapshot models and persistence."""

from .models import ResourceState, StateSnapshot
from .store import StateStore

__all__ = ["ResourceState", "StateSnapshot", "StateStore"]
