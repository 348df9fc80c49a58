import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from layerflow.designer import (CYCLE_DETECTED, EMPTY_NETWORK, NO_INPUT_LAYER, NO_OUTPUT_LAYER, GraphEdge,
                                GraphNode, assign_var_names, normalize_params, ordered_layers,
                                parse_graph_to_dag, validate_network_structure)


def chain(*types):
    nodes = [GraphNode(id=f"n{i}", type=t) for i, t in enumerate(types)]
    edges = [GraphEdge(a.id, b.id) for a, b in zip(nodes, nodes[1:])]
    return nodes, edges


def test_empty_network():
    result = parse_graph_to_dag([], [])
    assert not result.is_valid
    assert result.errors == [EMPTY_NETWORK]


def test_linear_chain():
    nodes, edges = chain("Input", "Dense", "Output")
    result = parse_graph_to_dag(nodes, edges)
    assert result.is_valid
    assert result.errors == []
    assert [layer.id for layer in result.ordered_nodes] == ["n0", "n1", "n2"]
    assert result.edge_map == {"n0": ["n1"], "n1": ["n2"], "n2": []}
    assert result.is_linear()


def test_cycle_is_rejected():
    nodes = [GraphNode("a", "Dense"), GraphNode("b", "Dense")]
    edges = [GraphEdge("a", "b"), GraphEdge("b", "a")]
    result = parse_graph_to_dag(nodes, edges)
    assert not result.is_valid
    assert CYCLE_DETECTED in result.errors
    assert NO_INPUT_LAYER in result.errors
    assert NO_OUTPUT_LAYER in result.errors
    assert result.ordered_nodes == []
    assert result.edge_map == {}


def test_cycle_behind_an_input():
    nodes = [GraphNode("in", "Input"), GraphNode("a", "Dense"), GraphNode("b", "Dense"), GraphNode("out", "Output")]
    edges = [GraphEdge("in", "a"), GraphEdge("a", "b"), GraphEdge("b", "a"), GraphEdge("b", "out")]
    result = parse_graph_to_dag(nodes, edges)
    assert not result.is_valid
    assert result.errors == [CYCLE_DETECTED]


def test_unknown_edge_endpoint():
    nodes, edges = chain("Input", "Output")
    edges.append(GraphEdge("n1", "ghost"))
    result = parse_graph_to_dag(nodes, edges)
    assert not result.is_valid
    assert "Connection references unknown layer 'ghost'" in result.errors


def test_duplicate_edges_collapse():
    nodes, edges = chain("Input", "Output")
    result = parse_graph_to_dag(nodes, edges + edges)
    assert result.is_valid
    assert result.edge_map["n0"] == ["n1"]


def test_repeated_types_get_numbered_names():
    nodes, edges = chain("Input", "Dense", "Dense", "Dense", "Output")
    result = parse_graph_to_dag(nodes, edges)
    names = [layer.var_name for layer in result.ordered_nodes if layer.type == "Dense"]
    assert names == ["dense", "dense_1", "dense_2"]


def test_names_skip_collisions():
    assert assign_var_names(["Dense", "dense_1", "Dense"]) == ["dense", "dense_1", "dense_2"]
    assert assign_var_names(["Dense", "Dense", "dense_1"]) == ["dense", "dense_1", "dense_1_1"]


def test_names_are_identifiers():
    names = assign_var_names(["Conv 2D", "3D", "Lambda", "Max-Pool"])
    assert names == ["conv_2d", "layer_3d", "layer_lambda", "max_pool"]
    assert all(name.isidentifier() for name in names)


def test_ready_nodes_follow_input_order():
    nodes = [GraphNode("b", "Input"), GraphNode("a", "Input"), GraphNode("m", "Merge"), GraphNode("o", "Output")]
    edges = [GraphEdge("a", "m"), GraphEdge("b", "m"), GraphEdge("m", "o")]
    result = parse_graph_to_dag(nodes, edges)
    assert [layer.id for layer in result.ordered_nodes] == ["b", "a", "m", "o"]
    assert [layer.var_name for layer in result.ordered_nodes] == ["input", "input_1", "merge", "output"]


def test_predecessors_in_discovery_order():
    nodes = [GraphNode("x", "Input"), GraphNode("y", "Input"), GraphNode("m", "Merge"), GraphNode("o", "Output")]
    edges = [GraphEdge("y", "m"), GraphEdge("x", "m"), GraphEdge("m", "o")]
    result = parse_graph_to_dag(nodes, edges)
    assert [p.id for p in result.predecessors("m")] == ["x", "y"]
    assert [s.id for s in result.sources()] == ["x", "y"]
    assert [s.id for s in result.sinks()] == ["o"]


def test_disconnected_nodes_are_separate_components():
    nodes = [GraphNode("in", "Input"), GraphNode("out", "Output")]
    result = parse_graph_to_dag(nodes, [])
    assert result.is_valid
    assert [s.id for s in result.sources()] == ["in", "out"]
    assert [s.id for s in result.sinks()] == ["in", "out"]
    assert [[layer.id for layer in group] for group in result.components()] == [["in"], ["out"]]
    assert result.is_isolated("in")


def test_branching_graph():
    nodes = [GraphNode("in", "Input"), GraphNode("a", "Dense"), GraphNode("b", "Dense")]
    edges = [GraphEdge("in", "a"), GraphEdge("in", "b")]
    result = parse_graph_to_dag(nodes, edges)
    assert result.is_valid
    assert not result.is_linear()
    assert ordered_layers(nodes, edges) == []
    assert len(result.components()) == 1


def test_ordered_layers_for_a_chain():
    nodes, edges = chain("Input", "Dense", "Output")
    assert [layer.var_name for layer in ordered_layers(nodes, edges)] == ["input", "dense", "output"]


def test_validate_network_structure():
    nodes, edges = chain("Input", "Output")
    assert validate_network_structure(nodes, edges) == (True, [])
    ok, errors = validate_network_structure([], [])
    assert not ok
    assert errors == [EMPTY_NETWORK]


def test_params_are_normalised():
    nodes = [GraphNode("in", "Input", {"flatSize": 10, "label": None, "dims": [1, 2], "on": True})]
    result = parse_graph_to_dag(nodes, [])
    assert result.ordered_nodes[0].params == {"flatSize": 10, "dims": "[1, 2]", "on": True}
    assert normalize_params(None) == {}


def test_compilation_is_deterministic():
    nodes = [GraphNode("in", "Input"), GraphNode("a", "Dense"), GraphNode("b", "Dense"), GraphNode("m", "Merge")]
    edges = [GraphEdge("in", "a"), GraphEdge("in", "b"), GraphEdge("a", "m"), GraphEdge("b", "m")]
    assert parse_graph_to_dag(nodes, edges) == parse_graph_to_dag(nodes, edges)
