"""
Keras Code Generator
Generates Keras model-definition scripts from compiled graphs
"""

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from layerflow import config
from layerflow.designer import DAGResult, LayerObject
from layerflow.layers import (LayerRegistry, Shape, ShapeResult, default_registry, format_shape,
                              input_shape_from_params, parse_shape, shape_literal)

logger = logging.getLogger(__name__)


class EmissionStyle(enum.Enum):
    SEQUENTIAL = "Sequential"
    FUNCTIONAL = "Functional"

    @property
    def label(self) -> str:
        return self.value


class NotALinearPathError(ValueError):
    pass


@dataclass
class GeneratedCode:
    source: str
    style: EmissionStyle
    warnings: List[str] = field(default_factory=list)


COMPILATION_FOOTER = [
    "",
    "# Compile the model",
    "model.compile(",
    "    optimizer='adam',",
    "    loss='categorical_crossentropy',",
    "    metrics=['accuracy']",
    ")",
    "",
    "# Display model summary",
    "model.summary()",
]

_KERAS_CLASS = re.compile(r"\b([A-Z][A-Za-z0-9]*)\(")


def select_style(dag: DAGResult, registry: Optional[LayerRegistry] = None) -> EmissionStyle:
    """Functional for anything that is not a single chain."""
    registry = registry if registry is not None else default_registry()
    if len(dag.sources()) > 1 or len(dag.sinks()) > 1:
        return EmissionStyle.FUNCTIONAL
    if not dag.is_linear():
        return EmissionStyle.FUNCTIONAL
    if any(registry.is_merge(layer.type) for layer in dag.ordered_nodes):
        return EmissionStyle.FUNCTIONAL
    return EmissionStyle.SEQUENTIAL


def _imports(model_class: str, fragments: List[str]) -> List[str]:
    used = sorted({name for fragment in fragments for name in _KERAS_CLASS.findall(fragment)})
    lines = [
        "import tensorflow as tf",
        f"from tensorflow.keras.models import {model_class}",
    ]
    if used:
        lines.append(f"from tensorflow.keras.layers import {', '.join(used)}")
    return lines


def default_input_shape() -> Shape:
    shape = parse_shape(config.DEFAULT_INPUT_SHAPE)
    if shape is None or any(d <= 0 for d in shape):
        raise ValueError(f"Invalid default input shape: {config.DEFAULT_INPUT_SHAPE}")
    return shape


def _input_shape(layer: LayerObject, node_shapes: Optional[Dict[str, Shape]], warnings: List[str]) -> Shape:
    if node_shapes and layer.id in node_shapes:
        return node_shapes[layer.id]
    try:
        result = input_shape_from_params(layer.params)
    except ValueError as exc:
        result = ShapeResult(None, str(exc))
    if result.shape is not None:
        return result.shape
    default = default_input_shape()
    warnings.append(f"{layer.var_name}: {result.error}; using default input shape {format_shape(default)}")
    return default


def _fragment(layer: LayerObject, registry: LayerRegistry, dag: DAGResult,
              node_shapes: Optional[Dict[str, Shape]], warnings: List[str]) -> Optional[str]:
    """Keras constructor call for one layer, or None when it cannot be written."""
    spec = registry.get(layer.type)
    if spec is None:
        warnings.append(f"Unknown layer type: {layer.type}")
        return None
    if spec.is_input:
        incoming = len(dag.predecessors(layer.id))
        if incoming:
            warnings.append(f"{layer.var_name} ({layer.type}) ignores its {incoming} incoming connection(s)")
        return f"Input(shape={shape_literal(_input_shape(layer, node_shapes, warnings))})"
    try:
        return spec.generate_code(layer.params)
    except Exception as exc:
        logger.warning("Could not generate code for %s: %s", layer.type, exc)
        warnings.append(f"Could not generate code for {layer.type}: {exc}")
        return None


# --- Sequential ---

def _sequential_items(fragment: str, count: int) -> List[List[str]]:
    if count >= config.REPEAT_LOOP_THRESHOLD:
        return [[f"# Repeated {count} times", f"*[{fragment} for _ in range({count})]"]]
    return [[fragment] for _ in range(count)]


def generate_sequential(dag: DAGResult, registry: LayerRegistry,
                        node_shapes: Optional[Dict[str, Shape]] = None) -> GeneratedCode:
    if not dag.is_linear():
        raise NotALinearPathError(
            "Sequential code needs a linear path: at least one layer feeds several others. "
            "Use the Functional style for branching networks.")

    warnings: List[str] = []
    fragments: List[str] = []
    items: List[List[str]] = []
    for layer in dag.ordered_nodes:
        noted = len(warnings)
        fragment = _fragment(layer, registry, dag, node_shapes, warnings)
        if fragment is None:
            items.append([f"# {warnings[-1]}"])
            continue
        fragments.append(fragment)
        layer_items = _sequential_items(fragment, registry.repeat_count(layer.type, layer.params))
        layer_items[0] = [f"# Warning: {message}" for message in warnings[noted:]] + layer_items[0]
        items.extend(layer_items)

    body = ["", "# Create the model", "model = Sequential(["]
    last_code = max((i for i, item in enumerate(items) if not item[-1].startswith("#")), default=-1)
    for i, item in enumerate(items):
        *comments, code = item
        body.extend(f"    {line}" for line in comments)
        if code.startswith("#") or i == last_code:
            body.append(f"    {code}")
        else:
            body.append(f"    {code},")
    body.append("])")

    source = "\n".join(_imports("Sequential", fragments) + body + COMPILATION_FOOTER)
    return GeneratedCode(source=source, style=EmissionStyle.SEQUENTIAL, warnings=warnings)


# --- Functional ---

def _functional_lines(layer: LayerObject, fragment: str, inputs: List[str], count: int) -> List[str]:
    var = layer.var_name
    if not inputs:
        return [f"# Warning: {var} has no inputs", f"{var} = {fragment}"]

    first_arg = inputs[0] if len(inputs) == 1 else f"[{', '.join(inputs)}]"
    if count >= config.REPEAT_LOOP_THRESHOLD:
        lines = [f"# Repeated {count} times"]
        if len(inputs) == 1:
            lines += [f"{var} = {inputs[0]}", f"for _ in range({count}):"]
        else:
            lines += [f"{var} = {fragment}({first_arg})", f"for _ in range({count - 1}):"]
        lines.append(f"    {var} = {fragment}({var})")
        return lines

    lines = [f"{var} = {fragment}({first_arg})"]
    lines += [f"{var} = {fragment}({var})" for _ in range(count - 1)]
    return lines


def generate_functional(dag: DAGResult, registry: LayerRegistry,
                        node_shapes: Optional[Dict[str, Shape]] = None) -> GeneratedCode:
    warnings: List[str] = []
    fragments: List[str] = []
    body: List[str] = ["", "# Create the model"]
    bound: Dict[str, str] = {}
    input_vars: List[str] = []

    for layer in dag.ordered_nodes:
        inputs = [pred.var_name for pred in dag.predecessors(layer.id) if pred.id in bound]
        noted = len(warnings)
        fragment = _fragment(layer, registry, dag, node_shapes, warnings)
        if fragment is None:
            body.append(f"# Warning: {warnings[-1]}")
            if inputs:
                # Pass the first input through so downstream layers stay wired
                body.append(f"{layer.var_name} = {inputs[0]}")
                bound[layer.id] = layer.var_name
            continue

        fragments.append(fragment)
        bound[layer.id] = layer.var_name
        if registry.is_input(layer.type):
            body.extend(f"# Warning: {message}" for message in warnings[noted:])
            body.append(f"{layer.var_name} = {fragment}")
            input_vars.append(layer.var_name)
            continue

        if len(inputs) > 1 and not registry.is_merge(layer.type):
            message = (f"{layer.var_name} ({layer.type}) receives {len(inputs)} inputs but is not a merge layer; "
                       f"insert a Merge layer to combine them")
            warnings.append(message)
            body.append(f"# Warning: {message}")
        body.extend(_functional_lines(layer, fragment, inputs, registry.repeat_count(layer.type, layer.params)))

    output_vars = [layer.var_name for layer in dag.sinks() if layer.id in bound]
    inputs_arg = input_vars[0] if len(input_vars) == 1 else f"[{', '.join(input_vars)}]"
    outputs_arg = output_vars[0] if len(output_vars) == 1 else f"[{', '.join(output_vars)}]"
    body += ["", f"model = Model(inputs={inputs_arg}, outputs={outputs_arg})"]

    source = "\n".join(_imports("Model", fragments) + body + COMPILATION_FOOTER)
    return GeneratedCode(source=source, style=EmissionStyle.FUNCTIONAL, warnings=warnings)


def emit(dag: DAGResult, style: EmissionStyle, registry: Optional[LayerRegistry] = None,
         node_shapes: Optional[Dict[str, Shape]] = None) -> GeneratedCode:
    """Generate a Keras script for a valid graph in the requested style."""
    if not dag.is_valid:
        raise ValueError("Cannot generate code for an invalid network: " + "; ".join(dag.errors))
    registry = registry if registry is not None else default_registry()
    if style is EmissionStyle.SEQUENTIAL:
        return generate_sequential(dag, registry, node_shapes)
    return generate_functional(dag, registry, node_shapes)


def parse_style(value: Optional[str]) -> Optional[EmissionStyle]:
    """Map "sequential"/"functional" (any case) to a style; None passes through."""
    if value is None:
        return None
    for style in EmissionStyle:
        if style.value.lower() == str(value).strip().lower():
            return style
    raise ValueError(f"Unknown code style '{value}'. Expected 'Sequential' or 'Functional'")
