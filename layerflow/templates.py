"""
Built-in network templates in the editor payload format.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple


def _node(node_id: str, layer_type: str, **params) -> Dict[str, Any]:
    return {"id": node_id, "data": {"type": layer_type, "params": params}}


def _edges(*pairs: Tuple[str, str]) -> List[Dict[str, str]]:
    return [{"id": f"e-{source}-{target}", "source": source, "target": target} for source, target in pairs]


def _chain(*ids: str) -> List[Tuple[str, str]]:
    return list(zip(ids, ids[1:]))


_TEMPLATES: List[Dict[str, Any]] = [
    {
        "id": "simple-classifier",
        "name": "Simple Classifier",
        "description": "Fully connected classifier for flattened 28x28 images.",
        "nodes": [
            _node("input", "Input", inputType="flat_data", flatSize=784),
            _node("dense1", "Dense", units=128, activation="relu"),
            _node("dropout", "Dropout", rate=0.2),
            _node("dense2", "Dense", units=64, activation="relu"),
            _node("output", "Output", outputType="multiclass", numClasses=10),
        ],
        "edges": _edges(*_chain("input", "dense1", "dropout", "dense2", "output")),
    },
    {
        "id": "basic-cnn",
        "name": "Basic CNN",
        "description": "Two convolution and pooling stages followed by a dense head.",
        "nodes": [
            _node("input", "Input", inputType="image_grayscale", height=28, width=28),
            _node("conv1", "Conv2D", filters=32, kernel_size="(3,3)", padding="same", activation="relu"),
            _node("pool1", "MaxPool2D", pool_size="(2,2)"),
            _node("conv2", "Conv2D", filters=64, kernel_size="(3,3)", padding="same", activation="relu"),
            _node("pool2", "MaxPool2D", pool_size="(2,2)"),
            _node("flatten", "Flatten"),
            _node("dense", "Dense", units=128, activation="relu"),
            _node("dropout", "Dropout", rate=0.5),
            _node("output", "Output", outputType="multiclass", numClasses=10),
        ],
        "edges": _edges(*_chain("input", "conv1", "pool1", "conv2", "pool2", "flatten", "dense", "dropout",
                                "output")),
    },
    {
        "id": "residual-block",
        "name": "Residual Block",
        "description": "A convolution whose output is added back onto its input.",
        "nodes": [
            _node("input", "Input", inputType="image_color", height=32, width=32),
            _node("stem", "Conv2D", filters=32, kernel_size="(3,3)", padding="same", activation="relu"),
            _node("branch", "Conv2D", filters=32, kernel_size="(3,3)", padding="same", activation="relu"),
            _node("add", "Merge", mode="add"),
            _node("gap", "GlobalAveragePooling2D"),
            _node("output", "Output", outputType="multiclass", numClasses=10),
        ],
        "edges": _edges(("input", "stem"), ("stem", "branch"), ("stem", "add"), ("branch", "add"),
                        ("add", "gap"), ("gap", "output")),
    },
    {
        "id": "two-tower",
        "name": "Two Tower",
        "description": "Two feature inputs encoded separately and concatenated.",
        "nodes": [
            _node("user", "Input", inputType="flat_data", flatSize=64),
            _node("item", "Input", inputType="flat_data", flatSize=16),
            _node("user_tower", "Dense", units=32, activation="relu"),
            _node("item_tower", "Dense", units=32, activation="relu"),
            _node("concat", "Merge", mode="concatenate", axis=-1),
            _node("head", "Dense", units=64, activation="relu"),
            _node("output", "Output", outputType="binary"),
        ],
        "edges": _edges(("user", "user_tower"), ("item", "item_tower"), ("user_tower", "concat"),
                        ("item_tower", "concat"), ("concat", "head"), ("head", "output")),
    },
    {
        "id": "text-lstm",
        "name": "Text LSTM",
        "description": "Token embedding followed by stacked LSTMs for binary text classification.",
        "nodes": [
            _node("input", "Input", inputType="sequence_indices", seqIndicesLength=100),
            _node("embedding", "Embedding", input_dim=10000, output_dim=128),
            _node("lstm1", "LSTM", units=64, return_sequences=True),
            _node("lstm2", "LSTM", units=32),
            _node("dense", "Dense", units=64, activation="relu"),
            _node("output", "Output", outputType="binary"),
        ],
        "edges": _edges(*_chain("input", "embedding", "lstm1", "lstm2", "dense", "output")),
    },
]


def list_templates() -> List[Dict[str, Any]]:
    return copy.deepcopy(_TEMPLATES)


def get_template(template_id: str) -> Optional[Dict[str, Any]]:
    for template in _TEMPLATES:
        if template["id"] == template_id:
            return copy.deepcopy(template)
    return None
