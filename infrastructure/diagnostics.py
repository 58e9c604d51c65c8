"""
FLOWGRAPH DIAGNOSTICS - Graph State Inspection

Fast diagnosis of "why does the canvas look like that":
- format_graph: full text dump of nodes and edges
- summarize_graph: compact dicts, one row per node/edge
- table_view: the same rows as polars DataFrames
- find_node_references: every place a node id is still referenced
  (graph, flat steps, command history), for chasing ghost nodes

Nothing here is global. Pass in the graph and command manager you want
inspected.

Usage:
    from infrastructure.diagnostics import format_graph, table_view

    logger.debug(format_graph(graph))
    nodes_df, edges_df = table_view(graph)
    print(nodes_df.filter(pl.col("out_edges") == 0))
"""
import json
import logging
from typing import Optional, Dict, Any, List, Tuple

import msgspec
import polars as pl

from core.graph_db import WorkflowGraph


logger = logging.getLogger("workflow.diagnostics")


NODE_SCHEMA = {
    "id": pl.Utf8,
    "type": pl.Utf8,
    "title": pl.Utf8,
    "x": pl.Float64,
    "y": pl.Float64,
    "height": pl.Float64,
    "in_edges": pl.Int64,
    "out_edges": pl.Int64,
}

EDGE_SCHEMA = {
    "id": pl.Utf8,
    "source": pl.Utf8,
    "target": pl.Utf8,
    "type": pl.Utf8,
    "label": pl.Utf8,
}


# =============================================================================
# TEXT DUMP
# =============================================================================

def format_graph(graph: Optional[WorkflowGraph]) -> str:
    """Detailed multi-line representation of the graph."""
    if graph is None:
        return "Graph is None"

    nodes = graph.get_all_nodes()
    edges = graph.get_all_edges()

    lines = ["", "=== GRAPH DEBUG INFORMATION ===", ""]
    lines.append(f"Total nodes: {len(nodes)}")
    lines.append(f"Total edges: {len(edges)}")
    lines.append("")

    lines.append("=== NODES ===")
    for i, node in enumerate(nodes, start=1):
        lines.append(f"Node {i}: id={node.id}, type={node.type}, title={node.title or 'Untitled'}")
        lines.append(f"    position: x={node.position.x:.2f}, y={node.position.y:.2f}")
        lines.append(f"    properties: {json.dumps(node.properties, default=str)}")
        lines.append(
            f"    connections: incoming={len(graph.get_incoming_edges(node.id))}, "
            f"outgoing={len(graph.get_outgoing_edges(node.id))}"
        )
        lines.append("")

    lines.append("=== EDGES ===")
    for i, edge in enumerate(edges, start=1):
        lines.append(f"Edge {i}: id={edge.id}")
        lines.append(f"    From: {edge.source_id} -> To: {edge.target_id}")
        label = f", Label: {edge.label}" if edge.label else ""
        lines.append(f"    Type: {edge.type}{label}")
        lines.append("")

    return "\n".join(lines)


def log_graph(graph: Optional[WorkflowGraph], level: int = logging.DEBUG) -> None:
    logger.log(level, format_graph(graph))


# =============================================================================
# SUMMARIES
# =============================================================================

def summarize_graph(graph: Optional[WorkflowGraph]) -> Dict[str, List[Dict[str, Any]]]:
    """One compact row per node and per edge."""
    if graph is None:
        return {"nodes": [], "edges": []}

    return {
        "nodes": [
            {
                "id": node.id,
                "type": node.type,
                "title": node.title,
                "x": float(node.position.x),
                "y": float(node.position.y),
                "height": float(node.height),
                "in_edges": len(graph.get_incoming_edges(node.id)),
                "out_edges": len(graph.get_outgoing_edges(node.id)),
            }
            for node in graph.get_all_nodes()
        ],
        "edges": [
            {
                "id": edge.id,
                "source": edge.source_id,
                "target": edge.target_id,
                "type": edge.type,
                "label": edge.label or "",
            }
            for edge in graph.get_all_edges()
        ],
    }


def table_view(graph: Optional[WorkflowGraph]) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """
    Nodes and edges as polars DataFrames.

    Empty graphs still produce frames with the full column schema.
    """
    summary = summarize_graph(graph)
    nodes_df = pl.DataFrame(summary["nodes"], schema=NODE_SCHEMA)
    edges_df = pl.DataFrame(summary["edges"], schema=EDGE_SCHEMA)

    logger.debug(f"Graph summary: {nodes_df.height} nodes, {edges_df.height} edges")
    return nodes_df, edges_df


# =============================================================================
# REFERENCE FINDER
# =============================================================================

class NodeReference(msgspec.Struct, frozen=True):
    """One place that still mentions a node id."""
    source: str
    ref: Any = None


def _command_mentions(command: Any, node_id: str) -> bool:
    return node_id in (
        getattr(command, "node_id", None),
        getattr(command, "duplicate_id", None),
    )


def find_node_references(
    node_id: str,
    graph: Optional[WorkflowGraph] = None,
    command_manager: Any = None,
    flat_steps: Optional[List[Any]] = None,
    selected_node_id: Optional[str] = None,
) -> List[NodeReference]:
    """
    Every known place that references `node_id`.

    Sources checked: the selection, the graph (node and edges), a flat
    step list (steps and their connections), and the undo/redo stacks.
    """
    sources: List[NodeReference] = []

    if selected_node_id is not None and selected_node_id == node_id:
        sources.append(NodeReference(source="selected_node_id", ref=selected_node_id))

    if graph is not None:
        node = graph.get_node(node_id)
        if node is not None:
            sources.append(NodeReference(source="graph", ref=node))
        for edge in graph.get_all_edges():
            if node_id in (edge.source_id, edge.target_id):
                sources.append(NodeReference(source=f"graph.edges[{edge.id}]", ref=edge))

    if flat_steps is not None:
        steps = [s if isinstance(s, dict) else msgspec.to_builtins(s) for s in flat_steps]
        for step in steps:
            step_id = step.get("id")
            if step_id == node_id:
                sources.append(NodeReference(source="flat_steps", ref=step))

            default = (step.get("outgoingConnections") or {}).get("default") or {}
            if default.get("targetNodeId") == node_id:
                sources.append(NodeReference(
                    source=f"flat_steps[{step_id}].outgoingConnections.default",
                    ref=default,
                ))

            for branch_id, connection in (step.get("branchConnections") or {}).items():
                if (connection or {}).get("targetNodeId") == node_id:
                    sources.append(NodeReference(
                        source=f"flat_steps[{step_id}].branchConnections[{branch_id}]",
                        ref=connection,
                    ))

    if command_manager is not None:
        for i, command in enumerate(command_manager.undo_stack):
            if _command_mentions(command, node_id):
                sources.append(NodeReference(source=f"command_manager.undo_stack[{i}]", ref=command))
        for i, command in enumerate(command_manager.redo_stack):
            if _command_mentions(command, node_id):
                sources.append(NodeReference(source=f"command_manager.redo_stack[{i}]", ref=command))

    return sources
