"""Build the directed deployment graph from declared resources."""

import networkx as nx
from typing import Dict, Iterable, List, Optional, Set
from pydantic import BaseModel, Field
from ..ingest.models import ResourceSpec, OutputSpec
from ..ingest.references import extract_references
from ..utils.errors import UnresolvedReferenceError, ResourceValidationError
from ..utils.logging import get_logger

logger = get_logger("graph.dependency_graph")

EDGE_EXPLICIT = "explicit"
EDGE_REFERENCE = "reference"


class DependencyEdge(BaseModel):
    """from_id must be applied before to_id."""
    from_id: str = Field(..., description="Dependency (applied first)")
    to_id: str = Field(..., description="Dependent (applied after)")
    origins: List[str] = Field(default_factory=list, description="explicit and/or reference")
    fields: List[str] = Field(default_factory=list, description="Property paths carrying the reference")


class DeploymentGraph:
    """Directed dependency graph: nodes=resources, edges point dependency -> dependent."""

    def __init__(self):
        self.graph = nx.DiGraph()
        self._resources: Dict[str, ResourceSpec] = {}
        self._order: List[str] = []
        self.outputs: Dict[str, OutputSpec] = {}

    def add_resource(self, resource: ResourceSpec) -> None:
        """Add a resource node; edges are added by build_graph once all nodes exist."""
        if resource.id in self._resources:
            raise ResourceValidationError(f"Duplicate resource id '{resource.id}'", resource_ids=[resource.id])
        self.graph.add_node(resource.id, rank=len(self._order), resource=resource)
        self._resources[resource.id] = resource
        self._order.append(resource.id)

    def add_dependency(self, from_id: str, to_id: str, origin: str, field: Optional[str] = None) -> None:
        """Record that from_id must be applied before to_id."""
        if self.graph.has_edge(from_id, to_id):
            data = self.graph.edges[from_id, to_id]
        else:
            self.graph.add_edge(from_id, to_id, origins=[], fields=[])
            data = self.graph.edges[from_id, to_id]
            logger.debug(f"Added dependency edge: {from_id} -> {to_id}")
        if origin not in data["origins"]:
            data["origins"].append(origin)
        if field and field not in data["fields"]:
            data["fields"].append(field)

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._resources

    def __len__(self) -> int:
        return len(self._order)

    @property
    def resource_ids(self) -> List[str]:
        """Resource ids in declaration order."""
        return list(self._order)

    def get(self, resource_id: str) -> Optional[ResourceSpec]:
        """Get a resource by id."""
        return self._resources.get(resource_id)

    def resources(self) -> List[ResourceSpec]:
        """All resources in declaration order."""
        return [self._resources[rid] for rid in self._order]

    def edges(self) -> List[DependencyEdge]:
        """All dependency edges, sorted by declaration order of both ends."""
        ordered = sorted(
            self.graph.edges(data=True),
            key=lambda e: (self.graph.nodes[e[1]]["rank"], self.graph.nodes[e[0]]["rank"]),
        )
        return [
            DependencyEdge(from_id=u, to_id=v, origins=list(d["origins"]), fields=list(d["fields"]))
            for u, v, d in ordered
        ]

    def dependencies_of(self, resource_id: str) -> List[str]:
        """Direct dependencies of a resource, in declaration order."""
        if resource_id not in self.graph:
            return []
        return self._by_rank(self.graph.predecessors(resource_id))

    def dependents_of(self, resource_id: str) -> List[str]:
        """Resources that directly depend on the given resource."""
        if resource_id not in self.graph:
            return []
        return self._by_rank(self.graph.successors(resource_id))

    def downstream_of(self, resource_id: str) -> Set[str]:
        """All resources that transitively depend on the given resource."""
        if resource_id not in self.graph:
            return set()
        return set(nx.descendants(self.graph, resource_id))

    def upstream_of(self, resource_id: str) -> Set[str]:
        """All resources the given resource transitively depends on."""
        if resource_id not in self.graph:
            return set()
        return set(nx.ancestors(self.graph, resource_id))

    def reference_fields(self, from_id: str, to_id: str) -> List[str]:
        """Property paths of to_id that reference from_id."""
        if not self.graph.has_edge(from_id, to_id):
            return []
        return list(self.graph.edges[from_id, to_id]["fields"])

    def _by_rank(self, ids: Iterable[str]) -> List[str]:
        return sorted(ids, key=lambda rid: self.graph.nodes[rid]["rank"])


def build_graph(
    resources: List[ResourceSpec],
    outputs: Optional[Dict[str, OutputSpec]] = None
) -> DeploymentGraph:
    """
    Build a DeploymentGraph from resource declarations.

    One edge is produced per (dependency, dependent) pair, whether it comes from
    explicit ``depends_on`` entries or from references in property values.

    Args:
        resources: Declarations in declaration order
        outputs: Optional stack outputs; their references are validated too

    Returns:
        DeploymentGraph (not yet checked for cycles; see planner.topological_order)

    Raises:
        UnresolvedReferenceError: If a reference or dependency names an undeclared resource
        ResourceValidationError: On duplicate ids
    """
    graph = DeploymentGraph()
    for resource in resources:
        graph.add_resource(resource)

    for resource in resources:
        for dep_id in resource.depends_on:
            if dep_id not in graph:
                raise UnresolvedReferenceError(resource.id, "depends_on", dep_id)
            graph.add_dependency(dep_id, resource.id, EDGE_EXPLICIT)

        for ref in extract_references(resource.properties):
            field = f"properties.{ref.path}"
            if ref.resource_id not in graph:
                raise UnresolvedReferenceError(resource.id, field, ref.resource_id)
            graph.add_dependency(ref.resource_id, resource.id, EDGE_REFERENCE, ref.path)

    for name, output in (outputs or {}).items():
        for ref in extract_references(output.value):
            if ref.resource_id not in graph:
                raise UnresolvedReferenceError(f"outputs.{name}", "value", ref.resource_id)
    graph.outputs = dict(outputs or {})

    logger.info(
        f"Built deployment graph with {graph.graph.number_of_nodes()} nodes "
        f"and {graph.graph.number_of_edges()} edges"
    )
    return graph
