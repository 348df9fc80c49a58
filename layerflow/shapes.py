"""
Shape Inference Engine
Propagates tensor shapes through a compiled DAG and collects per-node diagnostics.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from layerflow import config
from layerflow.designer import DAGResult, LayerObject
from layerflow.layers import (LayerRegistry, LayerSpec, Shape, ShapeResult, default_registry,
                              format_shape, multiplier_of, parse_shape)

logger = logging.getLogger(__name__)

# Node id used for errors that belong to the whole graph
GRAPH_ERROR_ID = "__graph__"


@dataclass(frozen=True)
class ShapeError:
    node_id: str
    message: str
    kind: str = "shape"


@dataclass(frozen=True)
class ShapeWarning:
    node_id: str
    message: str


@dataclass
class ShapeReport:
    errors: List[ShapeError] = field(default_factory=list)
    warnings: List[ShapeWarning] = field(default_factory=list)
    node_shapes: Dict[str, Shape] = field(default_factory=dict)

    @property
    def structural_errors(self) -> List[ShapeError]:
        return [e for e in self.errors if e.kind == "structure"]

    def error_for(self, node_id: str) -> Optional[ShapeError]:
        for error in self.errors:
            if error.node_id == node_id:
                return error
        return None

    def warnings_for(self, node_id: str) -> List[str]:
        return [w.message for w in self.warnings if w.node_id == node_id]


class _NodeFailure(Exception):
    pass


def _check_positive(layer_type: str, shape: Shape):
    if any(d <= 0 for d in shape):
        raise _NodeFailure(f"{layer_type} produces a non-positive dimension in output shape {format_shape(shape)}")


def _apply(spec: LayerSpec, layer_type: str, input_shapes: List[Shape], params) -> Tuple[Shape, Optional[str]]:
    check = spec.validate_inputs(input_shapes, params)
    if not check.is_valid:
        raise _NodeFailure(check.error_message or f"{layer_type} rejected its inputs")
    result = spec.compute_shape(input_shapes, params)
    if result is None or result.shape is None:
        if result is not None and result.error:
            raise _NodeFailure(result.error)
        ranks = [len(s) for s in input_shapes]
        raise _NodeFailure(
            f"{layer_type} could not compute an output shape for input ranks {ranks} "
            f"and shapes {[format_shape(s) for s in input_shapes]}")
    shape = list(result.shape)
    _check_positive(layer_type, shape)
    return shape, result.warning


def _input_node_shape(spec: LayerSpec, layer: LayerObject, dag: DAGResult,
                      default: Shape) -> Tuple[Shape, List[str]]:
    warnings = []
    incoming = len(dag.predecessors(layer.id))
    if incoming:
        warnings.append(f"{layer.type} layer ignores its {incoming} incoming connection(s)")
    try:
        result = spec.compute_shape([], layer.params)
    except ValueError as exc:
        result = ShapeResult(None, str(exc))
    if result is not None and result.shape is not None:
        shape = list(result.shape)
        _check_positive(layer.type, shape)
        return shape, warnings + ([result.warning] if result.warning else [])
    problem = result.error if result is not None else f"{layer.type} yielded no shape"
    return list(default), warnings + [f"{problem}; using default input shape {format_shape(default)}"]


def _infer_node(layer: LayerObject, dag: DAGResult, registry: LayerRegistry,
                shapes: Dict[str, Shape], default: Shape) -> Tuple[Shape, List[str]]:
    spec = registry.get(layer.type)
    if spec is not None and spec.is_input:
        return _input_node_shape(spec, layer, dag, default)

    preds = dag.predecessors(layer.id)
    if not preds:
        raise _NodeFailure(f"{layer.type} has no input connections")
    for pred in preds:
        if pred.id not in shapes:
            raise _NodeFailure(
                f"Input shape unavailable for {layer.type}: upstream layer '{pred.var_name}' has no computed shape")
    if spec is None:
        raise _NodeFailure(f"Unknown layer type: {layer.type}")

    warnings: List[str] = []
    count = multiplier_of(layer.params)
    if count > 1 and not spec.supports_multiplier:
        warnings.append(f"{layer.type} does not support repetition; multiplier {count} ignored")
        count = 1

    input_shapes = [shapes[pred.id] for pred in preds]
    shape: Shape = []
    for repetition in range(1, max(count, 1) + 1):
        try:
            shape, warning = _apply(spec, layer.type, input_shapes, layer.params)
        except _NodeFailure as exc:
            if repetition == 1:
                raise
            raise _NodeFailure(f"{layer.type} repetition {repetition} of {count} fails: {exc}")
        if warning and warning not in warnings:
            warnings.append(warning)
        input_shapes = [shape]
    return shape, warnings


def infer_shapes(dag: DAGResult, input_shape: Union[str, Sequence[int], None] = None,
                 registry: Optional[LayerRegistry] = None) -> ShapeReport:
    registry = registry if registry is not None else default_registry()
    if input_shape is None:
        input_shape = config.DEFAULT_INPUT_SHAPE
    report = ShapeReport()

    default = parse_shape(input_shape)
    if default is None or any(d <= 0 for d in default):
        report.errors.append(ShapeError(GRAPH_ERROR_ID, f"Invalid default input shape: {input_shape}", "structure"))
        return report

    if not dag.is_valid:
        report.errors.append(ShapeError(GRAPH_ERROR_ID, "; ".join(dag.errors), "structure"))
        return report

    multi_node = len(dag.ordered_nodes) > 1
    for layer in dag.ordered_nodes:
        if multi_node and dag.is_isolated(layer.id):
            report.warnings.append(
                ShapeWarning(layer.id, f"{layer.type} is not connected to the rest of the network"))
        try:
            shape, warnings = _infer_node(layer, dag, registry, report.node_shapes, default)
        except _NodeFailure as exc:
            report.errors.append(ShapeError(layer.id, str(exc)))
            continue
        except Exception as exc:
            logger.debug("Shape function for %s raised", layer.type, exc_info=True)
            report.errors.append(ShapeError(layer.id, f"Error computing shape for {layer.type}: {exc}"))
            continue
        report.node_shapes[layer.id] = shape
        report.warnings.extend(ShapeWarning(layer.id, message) for message in warnings)

    if report.errors:
        logger.debug("Shape inference found %d error(s)", len(report.errors))
    return report
