"""
Graph-to-DAG Compiler
Turns the editor's nodes and edges into a validated, ordered layer sequence.
"""

import heapq
import keyword
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)

EMPTY_NETWORK = "Network must have at least one layer"
NO_INPUT_LAYER = "Network must have at least one Input layer (a layer with no incoming connections)"
NO_OUTPUT_LAYER = "Network must have at least one Output layer (a layer with no outgoing connections)"
CYCLE_DETECTED = "Network contains cycles - DAG structure required"


def unknown_layer_reference(node_id: str) -> str:
    return f"Connection references unknown layer '{node_id}'"


@dataclass(frozen=True)
class GraphNode:
    id: str
    type: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str


@dataclass(frozen=True)
class LayerObject:
    id: str
    type: str
    params: Dict[str, Any]
    var_name: str


@dataclass
class DAGResult:
    ordered_nodes: List[LayerObject]
    edge_map: Dict[str, List[str]]
    is_valid: bool
    errors: List[str]

    def __post_init__(self):
        self._by_id = {layer.id: layer for layer in self.ordered_nodes}
        self._preds: Dict[str, List[str]] = {layer.id: [] for layer in self.ordered_nodes}
        for source, targets in self.edge_map.items():
            for target in targets:
                if target in self._preds:
                    self._preds[target].append(source)

    def layer(self, node_id: str) -> Optional[LayerObject]:
        return self._by_id.get(node_id)

    def predecessors(self, node_id: str) -> List[LayerObject]:
        return [self._by_id[p] for p in self._preds.get(node_id, []) if p in self._by_id]

    def successors(self, node_id: str) -> List[LayerObject]:
        return [self._by_id[t] for t in self.edge_map.get(node_id, []) if t in self._by_id]

    def sources(self) -> List[LayerObject]:
        return [layer for layer in self.ordered_nodes if not self._preds[layer.id]]

    def sinks(self) -> List[LayerObject]:
        return [layer for layer in self.ordered_nodes if not self.edge_map.get(layer.id)]

    def is_isolated(self, node_id: str) -> bool:
        return not self._preds.get(node_id) and not self.edge_map.get(node_id)

    def is_linear(self) -> bool:
        """True for a valid graph where no layer feeds more than one other."""
        return self.is_valid and all(len(self.edge_map.get(layer.id, [])) <= 1 for layer in self.ordered_nodes)

    def components(self) -> List[List[LayerObject]]:
        """Weakly connected components, each in topological order."""
        label: Dict[str, int] = {}
        groups: List[List[LayerObject]] = []
        for layer in self.ordered_nodes:
            if layer.id in label:
                continue
            index = len(groups)
            label[layer.id] = index
            stack = [layer.id]
            while stack:
                current = stack.pop()
                for neighbor in self.edge_map.get(current, []) + self._preds.get(current, []):
                    if neighbor not in label:
                        label[neighbor] = index
                        stack.append(neighbor)
            groups.append([])
        for layer in self.ordered_nodes:
            groups[label[layer.id]].append(layer)
        return groups


def normalize_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep scalars, drop None, stringify everything else."""
    normalized: Dict[str, Any] = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            normalized[key] = value
        else:
            normalized[key] = str(value)
    return normalized


_NON_IDENTIFIER = re.compile(r"\W")


def _identifier_base(layer_type: str) -> str:
    base = _NON_IDENTIFIER.sub("_", layer_type.lower()) or "layer"
    if base[0].isdigit() or keyword.iskeyword(base):
        base = f"layer_{base}"
    return base


def assign_var_names(types: Sequence[str]) -> List[str]:
    """dense, dense_1, dense_2 ... skipping names already taken."""
    used: Set[str] = set()
    counts: Dict[str, int] = {}
    names = []
    for layer_type in types:
        base = _identifier_base(layer_type)
        n = counts.get(base, 0)
        name = base if n == 0 else f"{base}_{n}"
        while name in used:
            n += 1
            name = f"{base}_{n}"
        counts[base] = n + 1
        used.add(name)
        names.append(name)
    return names


def _build_adjacency(nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> Tuple[Dict[str, List[str]], List[str]]:
    adj: Dict[str, List[str]] = {node.id: [] for node in nodes}
    errors: List[str] = []
    seen: Set[Tuple[str, str]] = set()
    for edge in edges:
        missing = [nid for nid in (edge.source, edge.target) if nid not in adj]
        if missing:
            for nid in missing:
                message = unknown_layer_reference(nid)
                if message not in errors:
                    errors.append(message)
            continue
        if (edge.source, edge.target) in seen:
            continue
        seen.add((edge.source, edge.target))
        adj[edge.source].append(edge.target)
    return adj, errors


def _topological_order(nodes: Sequence[GraphNode], adj: Dict[str, List[str]]) -> List[str]:
    position = {node.id: i for i, node in enumerate(nodes)}
    in_degree = {node.id: 0 for node in nodes}
    for targets in adj.values():
        for target in targets:
            in_degree[target] += 1

    # Ready nodes leave in input order
    ready = [position[nid] for nid, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        current = nodes[heapq.heappop(ready)].id
        order.append(current)
        for neighbor in adj[current]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                heapq.heappush(ready, position[neighbor])
    return order


def _invalid(errors: List[str]) -> DAGResult:
    logger.debug("Graph rejected: %s", "; ".join(errors))
    return DAGResult(ordered_nodes=[], edge_map={}, is_valid=False, errors=errors)


def parse_graph_to_dag(nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> DAGResult:
    if not nodes:
        return _invalid([EMPTY_NETWORK])

    adj, errors = _build_adjacency(nodes, edges)

    has_incoming = {target for targets in adj.values() for target in targets}
    if not any(node.id not in has_incoming for node in nodes):
        errors.append(NO_INPUT_LAYER)
    if not any(not adj[node.id] for node in nodes):
        errors.append(NO_OUTPUT_LAYER)

    order = _topological_order(nodes, adj)
    if len(order) < len(adj):
        errors.append(CYCLE_DETECTED)

    if errors:
        return _invalid(errors)

    by_id = {node.id: node for node in nodes}
    names = assign_var_names([by_id[nid].type for nid in order])
    ordered = [
        LayerObject(id=nid, type=by_id[nid].type, params=normalize_params(by_id[nid].params), var_name=name)
        for nid, name in zip(order, names)
    ]
    return DAGResult(ordered_nodes=ordered, edge_map=adj, is_valid=True, errors=[])


def validate_network_structure(nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> Tuple[bool, List[str]]:
    result = parse_graph_to_dag(nodes, edges)
    return result.is_valid, result.errors


def ordered_layers(nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> List[LayerObject]:
    """Linear-only view kept for older callers; empty for branching graphs."""
    result = parse_graph_to_dag(nodes, edges)
    if not result.is_linear():
        return []
    return result.ordered_nodes
