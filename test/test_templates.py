import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from layerflow.pipeline import analyze
from layerflow.templates import get_template, list_templates

TEMPLATE_IDS = ["simple-classifier", "basic-cnn", "residual-block", "two-tower", "text-lstm"]


def test_all_templates_listed():
    assert [t["id"] for t in list_templates()] == TEMPLATE_IDS


@pytest.mark.parametrize("template_id", TEMPLATE_IDS)
def test_template_compiles_cleanly(template_id):
    result = analyze(get_template(template_id))
    assert result.dag.is_valid, result.dag.errors
    assert result.report.errors == []
    assert len(result.report.node_shapes) == len(result.dag.ordered_nodes)
    compile(result.code.source, f"<{template_id}>", "exec")


def test_template_shapes():
    cnn = analyze(get_template("basic-cnn")).report.node_shapes
    assert cnn["pool2"] == [7, 7, 64]
    assert cnn["flatten"] == [3136]
    assert cnn["output"] == [10]

    towers = analyze(get_template("two-tower")).report.node_shapes
    assert towers["concat"] == [64]
    assert towers["output"] == [1]


def test_branching_templates_are_functional():
    assert analyze(get_template("residual-block")).code.style.label == "Functional"
    assert analyze(get_template("two-tower")).code.style.label == "Functional"
    assert analyze(get_template("text-lstm")).code.style.label == "Sequential"


def test_templates_are_copies():
    template = get_template("basic-cnn")
    template["nodes"].clear()
    assert get_template("basic-cnn")["nodes"]
    assert get_template("missing") is None
