"""Remote control plane capability interface and implementations."""

from .base import ControlPlane, RemoteResult
from .simulated import SimulatedControlPlane

__all__ = ["ControlPlane", "RemoteResult", "SimulatedControlPlane"]
