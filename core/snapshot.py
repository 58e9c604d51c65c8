"""
FLOWGRAPH SNAPSHOTS - Structural Clone and Restore

Snapshots copy the typed node/edge model field by field. Nothing in a
snapshot shares a mutable object with the live graph, so later edits to
the graph never leak into a snapshot (and the other way round).

Usage:
    snap = take_snapshot(graph)
    ... mutate graph ...
    restore_snapshot(graph, snap)      # graph is back, edge ids included

    data = encode_snapshot(snap)       # JSON bytes for debugging/export
    snap2 = decode_snapshot(data)
"""
from typing import Any, Dict, List, Optional, Tuple
import copy
import logging

import msgspec

from core.schemas import NodeData, EdgeData
from core.graph_db import WorkflowGraph, WorkflowFormatError
from infrastructure.event_bus import EventBus


logger = logging.getLogger("workflow.snapshot")


class GraphSnapshot(msgspec.Struct, kw_only=True):
    """Deep copy of every node and edge, in graph order."""
    nodes: List[NodeData] = msgspec.field(default_factory=list)
    edges: List[EdgeData] = msgspec.field(default_factory=list)

    @property
    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    @property
    def edge_ids(self) -> List[str]:
        return [e.id for e in self.edges]


# =============================================================================
# STRUCTURAL CLONE
# =============================================================================

def clone_node(node: NodeData) -> NodeData:
    """Field-by-field copy of a node; properties are deep-copied."""
    return NodeData(
        id=node.id,
        type=node.type,
        position=node.position.copy(),
        height=node.height,
        title=node.title,
        subtitle=node.subtitle,
        properties=copy.deepcopy(node.properties),
        context_menu_config=copy.deepcopy(node.context_menu_config),
    )


def clone_edge(edge: EdgeData) -> EdgeData:
    return EdgeData(
        id=edge.id,
        source_id=edge.source_id,
        target_id=edge.target_id,
        type=edge.type,
        label=edge.label,
    )


def take_snapshot(graph: WorkflowGraph) -> GraphSnapshot:
    return GraphSnapshot(
        nodes=[clone_node(n) for n in graph.get_all_nodes()],
        edges=[clone_edge(e) for e in graph.get_all_edges()],
    )


def restore_snapshot(graph: WorkflowGraph, snapshot: GraphSnapshot) -> WorkflowGraph:
    """
    Wipe `graph` and repopulate it from `snapshot`.

    The snapshot itself is not consumed; it can be restored again.
    Edges whose endpoints are missing from the snapshot are skipped.
    """
    graph.clear()
    for node in snapshot.nodes:
        graph.add_node(clone_node(node))

    skipped = 0
    for edge in snapshot.edges:
        if graph.add_edge(clone_edge(edge)) is None:
            skipped += 1

    if skipped:
        logger.warning(f"Restore skipped {skipped} edge(s) with missing endpoints")
    logger.debug(f"Restored {graph!r} from snapshot")
    return graph


def clone_graph(graph: WorkflowGraph, event_bus: Optional[EventBus] = None) -> WorkflowGraph:
    """An independent copy of `graph` (no event bus unless given)."""
    return restore_snapshot(WorkflowGraph(event_bus=event_bus), take_snapshot(graph))


# =============================================================================
# COMPARISON
# =============================================================================

def structural_signature(graph: WorkflowGraph) -> Tuple[Dict[str, Any], frozenset]:
    """
    Order-insensitive fingerprint of a graph.

    Two graphs with equal signatures have the same node ids, types,
    positions, heights, titles and properties, and the same edge
    (id, source, target, type, label) set.
    """
    nodes = {
        n.id: msgspec.to_builtins(n)
        for n in graph.get_all_nodes()
    }
    edges = frozenset(
        (e.id, e.source_id, e.target_id, e.type, e.label)
        for e in graph.get_all_edges()
    )
    return nodes, edges


def graphs_equal(a: WorkflowGraph, b: WorkflowGraph) -> bool:
    return structural_signature(a) == structural_signature(b)


# =============================================================================
# SERIALIZATION
# =============================================================================

_snapshot_encoder = msgspec.json.Encoder()
_snapshot_decoder = msgspec.json.Decoder(type=GraphSnapshot)


def encode_snapshot(snapshot: GraphSnapshot) -> bytes:
    return _snapshot_encoder.encode(snapshot)


def decode_snapshot(data: bytes) -> GraphSnapshot:
    """
    Raises:
        WorkflowFormatError: If the bytes are not a valid snapshot
    """
    try:
        return _snapshot_decoder.decode(data)
    except (msgspec.ValidationError, msgspec.DecodeError) as e:
        raise WorkflowFormatError(f"Malformed snapshot: {e}") from e
