"""
Runs the compiler stages for one editor payload and shapes the results for the UI.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from layerflow.code_generator import EmissionStyle, GeneratedCode, emit, parse_style, select_style
from layerflow.designer import DAGResult, GraphEdge, GraphNode, parse_graph_to_dag
from layerflow.layers import LayerRegistry, default_registry
from layerflow.shapes import ShapeReport, infer_shapes

logger = logging.getLogger(__name__)

NodeStatus = Dict[str, Any]


@dataclass
class Analysis:
    dag: DAGResult
    report: ShapeReport
    overlay: Dict[str, NodeStatus]
    code: Optional[GeneratedCode] = None
    code_error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.dag.is_valid,
            "errors": list(self.dag.errors),
            "orderedNodes": [
                {"id": layer.id, "type": layer.type, "varName": layer.var_name}
                for layer in self.dag.ordered_nodes
            ],
            "nodeShapes": self.report.node_shapes,
            "shapeErrors": [
                {"nodeId": e.node_id, "message": e.message, "kind": e.kind} for e in self.report.errors
            ],
            "shapeWarnings": [{"nodeId": w.node_id, "message": w.message} for w in self.report.warnings],
            "overlay": self.overlay,
            "code": self.code.source if self.code else None,
            "style": self.code.style.label if self.code else None,
            "codeWarnings": list(self.code.warnings) if self.code else [],
            "codeError": self.code_error,
        }


# --- Payload ---

def _parse_node(raw: Any, index: int) -> GraphNode:
    if not isinstance(raw, dict):
        raise ValueError(f"Node {index} must be an object")
    node_id = raw.get("id")
    if node_id is None or str(node_id) == "":
        raise ValueError(f"Node {index} is missing an id")
    data = raw.get("data") if isinstance(raw.get("data"), dict) else raw
    layer_type = data.get("type") or raw.get("type")
    if not layer_type:
        raise ValueError(f"Node '{node_id}' is missing a layer type")
    params = data.get("params") or {}
    if not isinstance(params, dict):
        raise ValueError(f"Node '{node_id}' params must be an object")
    return GraphNode(id=str(node_id), type=str(layer_type), params=dict(params))


def _parse_edge(raw: Any, index: int) -> GraphEdge:
    if not isinstance(raw, dict):
        raise ValueError(f"Edge {index} must be an object")
    source, target = raw.get("source"), raw.get("target")
    if source is None or target is None:
        raise ValueError(f"Edge {index} needs both source and target")
    return GraphEdge(source=str(source), target=str(target))


def parse_graph_payload(payload: Any) -> Tuple[List[GraphNode], List[GraphEdge]]:
    if not isinstance(payload, dict):
        raise ValueError("Graph payload must be a JSON object with 'nodes' and 'edges'")
    raw_nodes = payload.get("nodes", [])
    raw_edges = payload.get("edges", [])
    if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
        raise ValueError("'nodes' and 'edges' must be lists")
    nodes = [_parse_node(n, i) for i, n in enumerate(raw_nodes)]
    seen = set()
    for node in nodes:
        if node.id in seen:
            raise ValueError(f"Duplicate node id '{node.id}'")
        seen.add(node.id)
    edges = [_parse_edge(e, i) for i, e in enumerate(raw_edges)]
    return nodes, edges


# --- Overlay ---

def build_overlay(nodes: List[GraphNode], report: ShapeReport) -> Dict[str, NodeStatus]:
    """Per-node error and warning flags for the canvas."""
    structural = report.structural_errors
    overlay: Dict[str, NodeStatus] = {}
    for node in nodes:
        status: NodeStatus = {"hasShapeError": False, "hasShapeWarning": False}
        error = structural[0] if structural else report.error_for(node.id)
        if error is not None:
            status.update(hasShapeError=True, shapeErrorMessage=error.message, errorKind=error.kind)
        warnings = report.warnings_for(node.id)
        if warnings:
            status.update(hasShapeWarning=True, shapeWarningMessage="; ".join(warnings))
        overlay[node.id] = status
    return overlay


# --- Pipeline ---

def analyze(payload: Union[Dict[str, Any], Tuple[List[GraphNode], List[GraphEdge]]],
            input_shape: Any = None, registry: Optional[LayerRegistry] = None,
            style: Union[EmissionStyle, str, None] = None) -> Analysis:
    """Compile, infer shapes and emit code for one graph."""
    registry = registry if registry is not None else default_registry()
    if isinstance(payload, tuple):
        nodes, edges = payload
    else:
        nodes, edges = parse_graph_payload(payload)
    if isinstance(style, str):
        style = parse_style(style)

    dag = parse_graph_to_dag(nodes, edges)
    report = infer_shapes(dag, input_shape, registry)
    analysis = Analysis(dag=dag, report=report, overlay=build_overlay(nodes, report))

    if not dag.is_valid:
        analysis.code_error = "; ".join(dag.errors)
        return analysis
    if report.structural_errors:
        analysis.code_error = "; ".join(e.message for e in report.structural_errors)
        return analysis

    chosen = style or select_style(dag, registry)
    try:
        analysis.code = emit(dag, chosen, registry, report.node_shapes)
    except ValueError as exc:
        analysis.code_error = str(exc)
    logger.debug("Analyzed %d layer(s): %d shape error(s), style %s",
                 len(dag.ordered_nodes), len(report.errors), chosen.label)
    return analysis
