"""
Layer Registry
Per-type input validation, shape computation and Keras code fragments.

Shapes are channels-last and exclude the batch axis, e.g. a 28x28 grayscale
image is [28, 28, 1] and a flat vector of 784 features is [784].
"""

import math
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

Shape = List[int]
Params = Mapping[str, Any]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ShapeResult:
    shape: Optional[Shape]
    error: Optional[str] = None
    warning: Optional[str] = None

    def __post_init__(self):
        if (self.shape is None) == (self.error is None):
            raise ValueError("ShapeResult needs exactly one of shape or error")


VALID = ValidationResult(True)

Validator = Callable[[List[Shape], Params], ValidationResult]
ShapeFunction = Callable[[List[Shape], Params], ShapeResult]
CodeFunction = Callable[[Params], str]


@dataclass(frozen=True)
class LayerSpec:
    type: str
    validate_inputs: Validator
    compute_shape: ShapeFunction
    generate_code: CodeFunction
    supports_multiplier: bool = False
    is_input: bool = False
    is_merge: bool = False


class LayerRegistry(Mapping[str, LayerSpec]):
    """Read-only mapping from layer type to its LayerSpec."""

    def __init__(self, specs: Mapping[str, LayerSpec]):
        self._specs = MappingProxyType(dict(specs))

    def __getitem__(self, layer_type: str) -> LayerSpec:
        return self._specs[layer_type]

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def is_input(self, layer_type: str) -> bool:
        spec = self.get(layer_type)
        return spec is not None and spec.is_input

    def is_merge(self, layer_type: str) -> bool:
        spec = self.get(layer_type)
        return spec is not None and spec.is_merge

    def repeat_count(self, layer_type: str, params: Params) -> int:
        """How many times a layer is stacked; 1 unless the type supports repetition."""
        spec = self.get(layer_type)
        if spec is None or not spec.supports_multiplier:
            return 1
        return max(multiplier_of(params), 1)

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": name,
                "supportsMultiplier": spec.supports_multiplier,
                "isInput": spec.is_input,
                "isMerge": spec.is_merge,
            }
            for name, spec in self._specs.items()
        ]


_BUILTIN_LAYERS: Dict[str, LayerSpec] = {}


def register_layer(name: str, validate: Validator, generate: CodeFunction,
                   supports_multiplier: bool = False, is_input: bool = False,
                   is_merge: bool = False):
    def decorator(func: ShapeFunction):
        _BUILTIN_LAYERS[name] = LayerSpec(
            type=name,
            validate_inputs=validate,
            compute_shape=func,
            generate_code=generate,
            supports_multiplier=supports_multiplier,
            is_input=is_input,
            is_merge=is_merge,
        )
        return func
    return decorator


def default_registry() -> LayerRegistry:
    return LayerRegistry(_BUILTIN_LAYERS)


# --- Parameter Parsing ---

def format_shape(shape: Sequence[int]) -> str:
    return "[" + ", ".join(str(d) for d in shape) + "]"


def shape_literal(shape: Sequence[int]) -> str:
    """Python tuple literal for a shape: (784,) or (28, 28, 1)."""
    if len(shape) == 1:
        return f"({shape[0]},)"
    return "(" + ", ".join(str(d) for d in shape) + ")"


def parse_shape(value: Any) -> Optional[Shape]:
    """Parse "(28, 28, 1)", "(784,)" or a list of ints; None if malformed."""
    if isinstance(value, (list, tuple)):
        try:
            return [int(d) for d in value]
        except (TypeError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    cleaned = value.replace("(", "").replace(")", "").replace("[", "").replace("]", "").strip()
    if not cleaned:
        return None
    dims = []
    for part in cleaned.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            dims.append(int(part))
        except ValueError:
            return None
    return dims or None


def parse_pair(value: Any) -> Optional[Tuple[int, int]]:
    """Parse "(3,3)", "3", 3 or [3, 3] into a pair of ints."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value), int(value)
    if isinstance(value, (list, tuple)):
        if len(value) == 2:
            try:
                return int(value[0]), int(value[1])
            except (TypeError, ValueError):
                return None
        return None
    if not isinstance(value, str):
        return None
    parts = [p.strip() for p in value.replace("(", "").replace(")", "").split(",") if p.strip()]
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return None
    if len(numbers) == 1:
        return numbers[0], numbers[0]
    if len(numbers) == 2:
        return numbers[0], numbers[1]
    return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def int_param(params: Params, key: str, default: int) -> int:
    value = params.get(key)
    if _is_blank(value):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for '{key}': {value!r} is not a number")


def float_param(params: Params, key: str, default: float) -> float:
    value = params.get(key)
    if _is_blank(value):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for '{key}': {value!r} is not a number")


def str_param(params: Params, key: str, default: str) -> str:
    value = params.get(key)
    if _is_blank(value):
        return default
    return str(value).strip()


def flag_param(params: Params, key: str) -> bool:
    value = params.get(key)
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def multiplier_of(params: Params) -> int:
    try:
        return int_param(params, "multiplier", 1)
    except ValueError:
        return 1


def _pair_literal(value: Any, default: str) -> str:
    pair = parse_pair(value if not _is_blank(value) else default)
    if pair is None:
        return str(value)
    return f"({pair[0]},{pair[1]})"


# --- Validators ---

def single_input(layer: str, ranks: Optional[Tuple[int, ...]] = None,
                 expected: str = "", hint: str = "") -> Validator:
    def validate(input_shapes: List[Shape], params: Params) -> ValidationResult:
        if len(input_shapes) != 1:
            return ValidationResult(
                False,
                f"{layer} layer expects exactly 1 input, but received {len(input_shapes)} inputs",
            )
        shape = input_shapes[0]
        if ranks is not None and len(shape) not in ranks:
            message = (f"{layer} layer expects {expected}, but received "
                       f"{len(shape)}D input {format_shape(shape)}.")
            if hint:
                message += " " + hint
            return ValidationResult(False, message)
        return VALID
    return validate


def _no_inputs(input_shapes: List[Shape], params: Params) -> ValidationResult:
    return VALID


MERGE_MODES = {
    "concatenate": "Concatenate",
    "add": "Add",
    "subtract": "Subtract",
    "multiply": "Multiply",
    "average": "Average",
    "maximum": "Maximum",
    "minimum": "Minimum",
}


def merge_mode(params: Params) -> str:
    mode = str_param(params, "mode", "concatenate").lower()
    if mode == "concat":
        return "concatenate"
    return mode


def _concat_axis(params: Params, rank: int) -> Tuple[int, int]:
    axis = int_param(params, "axis", -1)
    return axis, axis + rank if axis < 0 else axis


def _validate_merge(input_shapes: List[Shape], params: Params) -> ValidationResult:
    if len(input_shapes) < 2:
        return ValidationResult(
            False, f"Merge layer expects at least 2 inputs, but received {len(input_shapes)} inputs")
    mode = merge_mode(params)
    if mode not in MERGE_MODES:
        return ValidationResult(
            False, f"Unknown merge mode '{mode}'. Expected one of: {', '.join(MERGE_MODES)}")
    if mode == "subtract" and len(input_shapes) != 2:
        return ValidationResult(
            False, f"Merge layer in subtract mode expects exactly 2 inputs, but received {len(input_shapes)} inputs")

    first = input_shapes[0]
    if mode == "concatenate":
        axis, actual = _concat_axis(params, len(first))
        if actual < 0 or actual >= len(first):
            return ValidationResult(
                False, f"Invalid concatenation axis {axis} for {len(first)}D input {format_shape(first)}")
        for shape in input_shapes[1:]:
            if len(shape) != len(first):
                return ValidationResult(
                    False, f"Cannot concatenate shapes with different dimensionalities: "
                           f"{format_shape(first)} and {format_shape(shape)}")
            for j, (a, b) in enumerate(zip(first, shape)):
                if j != actual and a != b:
                    return ValidationResult(
                        False, f"Cannot concatenate shapes {format_shape(first)} and {format_shape(shape)} - "
                               f"dimensions must match except at concatenation axis {actual}")
        return VALID

    for shape in input_shapes[1:]:
        if len(shape) != len(first):
            return ValidationResult(
                False, f"Cannot {mode} shapes with different dimensionalities: "
                       f"{format_shape(first)} and {format_shape(shape)}")
        if list(shape) != list(first):
            return ValidationResult(
                False, f"Cannot {mode} shapes {format_shape(first)} and {format_shape(shape)} - "
                       f"all dimensions must match exactly")
    return VALID


# --- Shape Helpers ---

def _pair_or_error(params: Params, key: str, default: str) -> Tuple[Optional[Tuple[int, int]], Optional[str]]:
    raw = params.get(key)
    pair = parse_pair(default if _is_blank(raw) else raw)
    if pair is None:
        return None, f"Invalid {key} format: {raw}. Expected format like \"(3,3)\" or \"3\""
    if pair[0] <= 0 or pair[1] <= 0:
        return None, f"Invalid {key} {format_shape(pair)}: values must be positive"
    return pair, None


def _padding_or_error(layer: str, params: Params, default: str) -> Tuple[Optional[str], Optional[str]]:
    padding = str_param(params, "padding", default).lower()
    if padding not in ("same", "valid"):
        return None, f"Invalid padding '{padding}' for {layer}. Expected 'same' or 'valid'"
    return padding, None


def _windowed(size: int, window: int, stride: int, padding: str) -> int:
    if padding == "same":
        return math.ceil(size / stride)
    return (size - window) // stride + 1


def _spatial(layer: str, input_shapes: List[Shape], params: Params, out_channels: Optional[int],
             window_key: str, window_default: str, stride_default: Optional[str],
             padding_default: str, transpose: bool = False) -> ShapeResult:
    height, width, channels = input_shapes[0]
    window, error = _pair_or_error(params, window_key, window_default)
    if error:
        return ShapeResult(None, error)
    if stride_default is None:
        # Pooling strides default to the pool size
        stride_default = f"({window[0]},{window[1]})"
    strides, error = _pair_or_error(params, "strides", stride_default)
    if error:
        return ShapeResult(None, error)
    padding, error = _padding_or_error(layer, params, padding_default)
    if error:
        return ShapeResult(None, error)

    if transpose:
        if padding == "same":
            out_h, out_w = height * strides[0], width * strides[1]
        else:
            out_h = (height - 1) * strides[0] + window[0]
            out_w = (width - 1) * strides[1] + window[1]
    else:
        out_h = _windowed(height, window[0], strides[0], padding)
        out_w = _windowed(width, window[1], strides[1], padding)

    if out_h <= 0 or out_w <= 0:
        return ShapeResult(
            None,
            f"{layer} configuration results in invalid output dimensions: {out_h}x{out_w} "
            f"from input {format_shape(input_shapes[0])}. Check {window_key}, strides, and padding parameters.",
        )
    return ShapeResult([out_h, out_w, out_channels if out_channels is not None else channels])


def _activation_suffix(params: Params) -> str:
    activation = str_param(params, "activation", "linear")
    if activation == "linear":
        return ""
    return f", activation='{activation}'"


# --- Input / Output ---

INPUT_TYPES = ("image_grayscale", "image_color", "image_custom", "flat_data",
               "sequence", "sequence_indices", "custom")


def input_shape_from_params(params: Params) -> ShapeResult:
    explicit = params.get("computed_shape") or params.get("shape")
    if not _is_blank(explicit):
        shape = parse_shape(explicit)
        if shape is None:
            return ShapeResult(
                None, f"Invalid shape format: {explicit}. Expected format like \"(784,)\" or \"(28, 28, 1)\"")
        return ShapeResult(shape)

    input_type = str_param(params, "inputType", "image_grayscale")
    height = int_param(params, "height", 28)
    width = int_param(params, "width", 28)
    if input_type == "image_grayscale":
        return ShapeResult([height, width, 1])
    if input_type == "image_color":
        return ShapeResult([height, width, 3])
    if input_type == "image_custom":
        return ShapeResult([height, width, int_param(params, "channels", 1)])
    if input_type == "flat_data":
        return ShapeResult([int_param(params, "flatSize", 784)])
    if input_type == "sequence":
        return ShapeResult([int_param(params, "seqLength", 100), int_param(params, "features", 128)])
    if input_type == "sequence_indices":
        return ShapeResult([int_param(params, "seqIndicesLength", 100)])
    if input_type == "custom":
        custom = params.get("customShape", "(784,)")
        shape = parse_shape(custom)
        if shape is None:
            return ShapeResult(
                None, f"Invalid custom shape format: {custom}. Expected format like \"(784,)\" or \"(28, 28, 1)\"")
        return ShapeResult(shape)
    return ShapeResult(
        None, f"Unknown inputType '{input_type}'. Expected one of: {', '.join(INPUT_TYPES)}")


def _input_code(params: Params) -> str:
    result = input_shape_from_params(params)
    shape = result.shape if result.shape is not None else [784]
    return f"Input(shape={shape_literal(shape)})"


@register_layer("Input", validate=_no_inputs, generate=_input_code, is_input=True)
def input_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return input_shape_from_params(params)


OUTPUT_TYPES = {
    # outputType: (activation, units key or fixed units)
    "multiclass": ("softmax", "numClasses"),
    "binary": ("sigmoid", None),
    "regression": ("linear", "units"),
    "multilabel": ("sigmoid", "units"),
}


def _output_units(params: Params) -> Tuple[int, str]:
    output_type = str_param(params, "outputType", "multiclass")
    if output_type not in OUTPUT_TYPES:
        raise ValueError(f"Unknown outputType '{output_type}'. Expected one of: {', '.join(OUTPUT_TYPES)}")
    activation, key = OUTPUT_TYPES[output_type]
    if key is None:
        return 1, activation
    return int_param(params, key, 10 if key == "numClasses" else 1), activation


def _last_axis_dense(layer: str, shape: Shape, units: int) -> ShapeResult:
    if len(shape) == 2:
        return ShapeResult(
            [shape[0], units],
            warning=f"{layer} layer applied to 2D input {format_shape(shape)} acts on the last axis "
                    f"and keeps the first dimension; add Flatten or GlobalAveragePooling for a flat output",
        )
    return ShapeResult([units])


def _output_code(params: Params) -> str:
    units, activation = _output_units(params)
    return f"Dense({units}, activation='{activation}')"


@register_layer("Output",
                validate=single_input("Output", (1, 2), "flat input (1D or 2D)",
                                      "Add a Flatten layer before Output for multi-dimensional inputs."),
                generate=_output_code)
def output_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    units, _ = _output_units(params)
    return _last_axis_dense("Output", input_shapes[0], units)


# --- Core ---

def _dense_code(params: Params) -> str:
    return f"Dense({int_param(params, 'units', 128)}{_activation_suffix(params)})"


@register_layer("Dense",
                validate=single_input("Dense", (1, 2), "flat input (1D or 2D)",
                                      "Add a Flatten layer before Dense for multi-dimensional inputs."),
                generate=_dense_code, supports_multiplier=True)
def dense_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return _last_axis_dense("Dense", input_shapes[0], int_param(params, "units", 128))


@register_layer("Flatten", validate=single_input("Flatten", None), generate=lambda params: "Flatten()")
def flatten_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    shape = input_shapes[0]
    if not shape:
        return ShapeResult(None, "Flatten layer cannot process 0-dimensional input")
    if len(shape) == 1:
        return ShapeResult(list(shape), warning=f"Input is already 1D {format_shape(shape)}, Flatten layer has no effect")
    return ShapeResult([math.prod(shape)])


@register_layer("Activation", validate=single_input("Activation"),
                generate=lambda params: f"Activation('{str_param(params, 'activation_function', 'relu')}')")
def activation_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return ShapeResult(list(input_shapes[0]))


def _dropout_code(params: Params) -> str:
    return f"Dropout({float_param(params, 'rate', 0.5)})"


@register_layer("Dropout", validate=single_input("Dropout"), generate=_dropout_code)
def dropout_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    rate = float_param(params, "rate", 0.5)
    if not 0 <= rate < 1:
        return ShapeResult(None, f"Dropout rate must be in [0, 1), got {rate}")
    return ShapeResult(list(input_shapes[0]))


@register_layer("BatchNormalization", validate=single_input("BatchNormalization"),
                generate=lambda params: "BatchNormalization()")
def batch_norm_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return ShapeResult(list(input_shapes[0]))


# --- Convolutional ---

_IMAGE_INPUT = "3D input (height, width, channels)"


def _conv_code(name: str, params: Params, strides_default: str) -> str:
    filters = int_param(params, "filters", 32)
    kernel = _pair_literal(params.get("kernel_size"), "(3,3)")
    strides = _pair_literal(params.get("strides"), strides_default)
    padding = str_param(params, "padding", "same")
    code = f"{name}({filters}, kernel_size={kernel}, strides={strides}, padding='{padding}'"
    if name == "SeparableConv2D":
        depth_multiplier = int_param(params, "depth_multiplier", 1)
        if depth_multiplier != 1:
            code += f", depth_multiplier={depth_multiplier}"
    return code + _activation_suffix(params) + ")"


@register_layer("Conv2D",
                validate=single_input("Conv2D", (3,), _IMAGE_INPUT,
                                      "For 1D data use Dense layers; for sequences use Conv1D or LSTM."),
                generate=lambda params: _conv_code("Conv2D", params, "(1,1)"),
                supports_multiplier=True)
def conv2d_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return _spatial("Conv2D", input_shapes, params, int_param(params, "filters", 32),
                    "kernel_size", "(3,3)", "(1,1)", "same")


@register_layer("SeparableConv2D",
                validate=single_input("SeparableConv2D", (3,), _IMAGE_INPUT),
                generate=lambda params: _conv_code("SeparableConv2D", params, "(1,1)"),
                supports_multiplier=True)
def separable_conv2d_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return _spatial("SeparableConv2D", input_shapes, params, int_param(params, "filters", 32),
                    "kernel_size", "(3,3)", "(1,1)", "same")


@register_layer("Conv2DTranspose",
                validate=single_input("Conv2DTranspose", (3,), _IMAGE_INPUT),
                generate=lambda params: _conv_code("Conv2DTranspose", params, "(2,2)"),
                supports_multiplier=True)
def conv2d_transpose_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return _spatial("Conv2DTranspose", input_shapes, params, int_param(params, "filters", 32),
                    "kernel_size", "(3,3)", "(2,2)", "same", transpose=True)


def _conv1d_code(params: Params) -> str:
    filters = int_param(params, "filters", 32)
    kernel = int_param(params, "kernel_size", 3)
    strides = int_param(params, "strides", 1)
    code = f"Conv1D({filters}, kernel_size={kernel}"
    if strides != 1:
        code += f", strides={strides}"
    code += f", padding='{str_param(params, 'padding', 'same')}'"
    return code + _activation_suffix(params) + ")"


@register_layer("Conv1D",
                validate=single_input("Conv1D", (2,), "2D input (sequence_length, features)"),
                generate=_conv1d_code, supports_multiplier=True)
def conv1d_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    length = input_shapes[0][0]
    filters = int_param(params, "filters", 32)
    kernel = int_param(params, "kernel_size", 3)
    strides = int_param(params, "strides", 1)
    if kernel <= 0 or strides <= 0:
        return ShapeResult(None, f"Conv1D kernel_size and strides must be positive, got {kernel} and {strides}")
    padding, error = _padding_or_error("Conv1D", params, "same")
    if error:
        return ShapeResult(None, error)
    out_length = _windowed(length, kernel, strides, padding)
    if out_length <= 0:
        return ShapeResult(
            None, f"Conv1D configuration results in invalid output length {out_length} "
                  f"from input {format_shape(input_shapes[0])}. Check kernel_size, strides, and padding parameters.")
    return ShapeResult([out_length, filters])


# --- Pooling / Resizing ---

def _pool_code(name: str, params: Params) -> str:
    pool = _pair_literal(params.get("pool_size"), "(2,2)")
    strides = params.get("strides")
    stride_part = "" if _is_blank(strides) else f", strides={_pair_literal(strides, pool)}"
    return f"{name}(pool_size={pool}{stride_part}, padding='{str_param(params, 'padding', 'valid')}')"


@register_layer("MaxPool2D", validate=single_input("MaxPool2D", (3,), _IMAGE_INPUT),
                generate=lambda params: _pool_code("MaxPool2D", params))
def maxpool2d_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return _spatial("MaxPool2D", input_shapes, params, None, "pool_size", "(2,2)", None, "valid")


@register_layer("AveragePooling2D", validate=single_input("AveragePooling2D", (3,), _IMAGE_INPUT),
                generate=lambda params: _pool_code("AveragePooling2D", params))
def avgpool2d_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return _spatial("AveragePooling2D", input_shapes, params, None, "pool_size", "(2,2)", None, "valid")


@register_layer("GlobalAveragePooling2D",
                validate=single_input("GlobalAveragePooling2D", (3,), _IMAGE_INPUT),
                generate=lambda params: "GlobalAveragePooling2D()")
def global_avgpool_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return ShapeResult([input_shapes[0][2]])


@register_layer("UpSampling2D", validate=single_input("UpSampling2D", (3,), _IMAGE_INPUT),
                generate=lambda params: f"UpSampling2D(size={_pair_literal(params.get('size'), '(2,2)')})")
def upsampling2d_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    height, width, channels = input_shapes[0]
    size, error = _pair_or_error(params, "size", "(2,2)")
    if error:
        return ShapeResult(None, error)
    return ShapeResult([height * size[0], width * size[1], channels])


@register_layer("ZeroPadding2D", validate=single_input("ZeroPadding2D", (3,), _IMAGE_INPUT),
                generate=lambda params: f"ZeroPadding2D(padding={_pair_literal(params.get('padding'), '(1,1)')})")
def zeropadding2d_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    height, width, channels = input_shapes[0]
    raw = params.get("padding")
    padding = parse_pair("(1,1)" if _is_blank(raw) else raw)
    if padding is None or padding[0] < 0 or padding[1] < 0:
        return ShapeResult(None, f"Invalid padding format: {raw}. Expected format like \"(1,1)\" or \"1\"")
    return ShapeResult([height + 2 * padding[0], width + 2 * padding[1], channels])


_NESTED_CROP = re.compile(r"\(\s*\(\s*(\d+)\s*,\s*(\d+)\s*\)\s*,\s*\(\s*(\d+)\s*,\s*(\d+)\s*\)\s*\)")


def parse_cropping(value: Any) -> Optional[Tuple[int, int, int, int]]:
    """Parse ((top,bottom),(left,right)), (rows,cols) or n into four crops."""
    if _is_blank(value):
        value = "((1,1),(1,1))"
    if isinstance(value, (list, tuple)) and len(value) == 2 and all(isinstance(v, (list, tuple)) for v in value):
        value = f"(({value[0][0]},{value[0][1]}),({value[1][0]},{value[1][1]}))"
    if isinstance(value, str):
        match = _NESTED_CROP.fullmatch(value.strip())
        if match:
            top, bottom, left, right = (int(g) for g in match.groups())
            return top, bottom, left, right
    pair = parse_pair(value)
    if pair is None:
        return None
    return pair[0], pair[0], pair[1], pair[1]


@register_layer("Cropping2D", validate=single_input("Cropping2D", (3,), _IMAGE_INPUT),
                generate=lambda params: f"Cropping2D(cropping={str_param(params, 'cropping', '((1,1),(1,1))')})")
def cropping2d_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    height, width, channels = input_shapes[0]
    crops = parse_cropping(params.get("cropping"))
    if crops is None:
        return ShapeResult(
            None, f"Invalid cropping format: {params.get('cropping')}. "
                  f"Expected \"((top,bottom),(left,right))\", \"(rows,cols)\" or a single number")
    top, bottom, left, right = crops
    out_h, out_w = height - top - bottom, width - left - right
    if out_h <= 0 or out_w <= 0:
        return ShapeResult(
            None, f"Cropping2D removes more than the input holds: {format_shape(input_shapes[0])} "
                  f"cropped by {top}+{bottom} rows and {left}+{right} columns leaves {out_h}x{out_w}")
    return ShapeResult([out_h, out_w, channels])


# --- Sequence ---

def _embedding_code(params: Params) -> str:
    code = f"Embedding({int_param(params, 'input_dim', 10000)}, {int_param(params, 'output_dim', 128)}"
    input_length = int_param(params, "input_length", 0)
    if input_length:
        code += f", input_length={input_length}"
    if flag_param(params, "mask_zero"):
        code += ", mask_zero=True"
    return code + ")"


@register_layer("Embedding",
                validate=single_input("Embedding", (1,), "1D input of token indices (sequence_length,)",
                                      "Use an Input layer with inputType 'sequence_indices'."),
                generate=_embedding_code)
def embedding_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return ShapeResult([input_shapes[0][0], int_param(params, "output_dim", 128)])


_SEQUENCE_INPUT = "2D input (sequence_length, features)"


def _recurrent_code(name: str, params: Params) -> str:
    code = f"{name}({int_param(params, 'units', 50)}"
    activation = str_param(params, "activation", "tanh")
    if activation != "tanh":
        code += f", activation='{activation}'"
    recurrent_activation = str_param(params, "recurrent_activation", "sigmoid")
    if recurrent_activation != "sigmoid":
        code += f", recurrent_activation='{recurrent_activation}'"
    if flag_param(params, "return_sequences"):
        code += ", return_sequences=True"
    dropout = float_param(params, "dropout", 0.0)
    if dropout > 0:
        code += f", dropout={dropout}"
    recurrent_dropout = float_param(params, "recurrent_dropout", 0.0)
    if recurrent_dropout > 0:
        code += f", recurrent_dropout={recurrent_dropout}"
    return code + ")"


def _recurrent_shape(input_shapes: List[Shape], params: Params, units: int) -> ShapeResult:
    if flag_param(params, "return_sequences"):
        return ShapeResult([input_shapes[0][0], units])
    return ShapeResult([units])


@register_layer("LSTM", validate=single_input("LSTM", (2,), _SEQUENCE_INPUT,
                                              "Use Embedding or an Input with inputType 'sequence'."),
                generate=lambda params: _recurrent_code("LSTM", params))
def lstm_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return _recurrent_shape(input_shapes, params, int_param(params, "units", 50))


@register_layer("GRU", validate=single_input("GRU", (2,), _SEQUENCE_INPUT,
                                             "Use Embedding or an Input with inputType 'sequence'."),
                generate=lambda params: _recurrent_code("GRU", params))
def gru_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    return _recurrent_shape(input_shapes, params, int_param(params, "units", 50))


BIDIRECTIONAL_MERGE_MODES = ("concat", "sum", "mul", "ave", "None")


def _bidirectional_code(params: Params) -> str:
    inner = str_param(params, "layer_type", "LSTM")
    wrapped = f"{inner}({int_param(params, 'units', 50)}"
    if flag_param(params, "return_sequences"):
        wrapped += ", return_sequences=True"
    dropout = float_param(params, "dropout", 0.0)
    if dropout > 0:
        wrapped += f", dropout={dropout}"
    wrapped += ")"
    mode = str_param(params, "merge_mode", "concat")
    if mode == "concat":
        return f"Bidirectional({wrapped})"
    if mode == "None":
        return f"Bidirectional({wrapped}, merge_mode=None)"
    return f"Bidirectional({wrapped}, merge_mode='{mode}')"


@register_layer("Bidirectional", validate=single_input("Bidirectional", (2,), _SEQUENCE_INPUT),
                generate=_bidirectional_code)
def bidirectional_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    inner = str_param(params, "layer_type", "LSTM")
    if inner not in ("LSTM", "GRU"):
        return ShapeResult(None, f"Bidirectional layer_type must be 'LSTM' or 'GRU', got '{inner}'")
    mode = str_param(params, "merge_mode", "concat")
    if mode not in BIDIRECTIONAL_MERGE_MODES:
        return ShapeResult(
            None, f"Unknown Bidirectional merge_mode '{mode}'. Expected one of: {', '.join(BIDIRECTIONAL_MERGE_MODES)}")
    units = int_param(params, "units", 50)
    if mode == "None":
        # Forward and backward outputs come back as two tensors
        return ShapeResult(None, "Bidirectional merge_mode None returns two outputs, which cannot be wired as one layer")
    return _recurrent_shape(input_shapes, params, units * 2 if mode == "concat" else units)


# --- Merge ---

def _merge_code(params: Params) -> str:
    mode = merge_mode(params)
    name = MERGE_MODES.get(mode, "Concatenate")
    if name == "Concatenate":
        return f"Concatenate(axis={int_param(params, 'axis', -1)})"
    return f"{name}()"


@register_layer("Merge", validate=_validate_merge, generate=_merge_code, is_merge=True)
def merge_shape(input_shapes: List[Shape], params: Params) -> ShapeResult:
    first = list(input_shapes[0])
    if merge_mode(params) != "concatenate":
        return ShapeResult(first)
    _, actual = _concat_axis(params, len(first))
    first[actual] = sum(shape[actual] for shape in input_shapes)
    return ShapeResult(first)
