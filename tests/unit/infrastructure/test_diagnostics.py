"""
Unit tests for infrastructure/diagnostics.py

Tests the text dump, the polars table view and the node reference finder.
"""
import logging

import polars as pl

from core.command_manager import CommandManager
from core.commands import DeleteNodeCommand, MoveNodeCommand
from infrastructure.diagnostics import (
    EDGE_SCHEMA,
    NODE_SCHEMA,
    NodeReference,
    find_node_references,
    format_graph,
    log_graph,
    summarize_graph,
    table_view,
)


# =============================================================================
# TEXT DUMP TESTS
# =============================================================================

def test_format_graph_lists_nodes_and_edges(ifelse_graph):
    text = format_graph(ifelse_graph)

    assert "Total nodes: 4" in text
    assert "Total edges: 3" in text
    assert "Node 2: id=I, type=ifelse, title=Untitled" in text
    assert "From: I -> To: X" in text
    assert "Type: branch, Label: yes" in text


def test_format_graph_none():
    assert format_graph(None) == "Graph is None"


def test_log_graph(linear_graph, caplog):
    with caplog.at_level(logging.DEBUG, logger="workflow.diagnostics"):
        log_graph(linear_graph)
    assert "=== GRAPH DEBUG INFORMATION ===" in caplog.text


# =============================================================================
# TABLE VIEW TESTS
# =============================================================================

def test_summarize_graph(ifelse_graph):
    summary = summarize_graph(ifelse_graph)

    assert [row["id"] for row in summary["nodes"]] == ["T", "I", "X", "X2"]
    x_row = summary["nodes"][2]
    assert (x_row["in_edges"], x_row["out_edges"]) == (1, 1)
    assert summary["edges"][0]["label"] == ""
    assert summary["edges"][1]["label"] == "yes"


def test_table_view_frames(ifelse_graph):
    """
    Validate the polars views.

    Verifies:
    - One row per node / edge with the declared schema
    - Frames can be filtered like any polars DataFrame
    """
    nodes_df, edges_df = table_view(ifelse_graph)

    assert nodes_df.height == 4
    assert edges_df.height == 3
    assert nodes_df.columns == list(NODE_SCHEMA)
    assert edges_df.columns == list(EDGE_SCHEMA)
    assert nodes_df.schema["y"] == pl.Float64
    assert nodes_df.schema["out_edges"] == pl.Int64

    leaves = nodes_df.filter(pl.col("out_edges") == 0)["id"].to_list()
    assert leaves == ["X2"]
    branches = edges_df.filter(pl.col("type") == "branch")["label"].to_list()
    assert branches == ["yes"]


def test_table_view_empty_graph(fresh_graph):
    nodes_df, edges_df = table_view(fresh_graph)

    assert nodes_df.height == 0
    assert edges_df.height == 0
    assert nodes_df.columns == list(NODE_SCHEMA)


# =============================================================================
# REFERENCE FINDER TESTS
# =============================================================================

def test_find_references_in_graph(linear_graph):
    refs = find_node_references("A", graph=linear_graph, selected_node_id="A")

    sources = [r.source for r in refs]
    assert sources == [
        "selected_node_id",
        "graph",
        "graph.edges[T_to_A_default]",
        "graph.edges[A_to_B_default]",
    ]


def test_find_references_in_flat_steps(sample_steps):
    refs = find_node_references("action-1", flat_steps=sample_steps)

    assert [r.source for r in refs] == [
        "flat_steps[if-1].branchConnections[yes]",
        "flat_steps",
    ]


def test_find_dangling_flat_step_reference(sample_steps):
    """Validate that a connection to a step that does not exist is still reported."""
    refs = find_node_references("missing-step", flat_steps=sample_steps)
    assert [r.source for r in refs] == ["flat_steps[if-1].branchConnections[no]"]


def test_find_references_accepts_flat_step_structs(linear_graph):
    refs = find_node_references("B", flat_steps=linear_graph.to_flat_steps())
    assert "flat_steps[A].outgoingConnections.default" in [r.source for r in refs]


def test_find_references_in_history(linear_graph, registry):
    """Validate that a deleted node is still found on the undo stack."""
    manager = CommandManager()
    manager.execute_command(MoveNodeCommand(linear_graph, "A", (0, 150), (0, 160)))
    manager.execute_command(DeleteNodeCommand(linear_graph, "A", plugin_registry=registry))

    refs = find_node_references("A", graph=linear_graph, command_manager=manager)

    assert [r.source for r in refs] == [
        "command_manager.undo_stack[0]",
        "command_manager.undo_stack[1]",
    ]
    manager.undo()
    refs = find_node_references("A", command_manager=manager)
    assert [r.source for r in refs] == [
        "command_manager.undo_stack[0]",
        "command_manager.redo_stack[0]",
    ]


def test_no_references():
    assert find_node_references("nobody") == []
    assert isinstance(NodeReference(source="x"), NodeReference)
