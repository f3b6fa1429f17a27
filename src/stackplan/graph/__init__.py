"""Dependency graph construction and ordering."""

from .dependency_graph import DeploymentGraph, DependencyEdge, build_graph
from .planner import topological_order

__all__ = ["DeploymentGraph", "DependencyEdge", "build_graph", "topological_order"]
