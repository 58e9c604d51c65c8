"""
FLOWGRAPH GRAPH STORE - The Workflow Graph

This module owns every step and every connection of a workflow. It bridges
the editor's string ids with rustworkx's integer indices, enabling:
- O(1) node/edge lookup by business id
- Rust-native reachability (descendants, cycle checks)
- Deterministic edge ids, so re-creating a connection is idempotent

Architecture (The Bridge Pattern):
  Python Layer (Commands, BranchTopology)
  - Uses string ids: "trigger-1", "action-2"
  - Calls: graph.connect("trigger-1", "action-2")

  Bridge Layer (This File)
  - _node_map: Dict[str, int]  (node id -> index, insertion ordered)
  - _inv_map:  Dict[int, str]  (index -> node id)
  - _edge_map: Dict[str, int]  (edge id -> edge index, insertion ordered)

  Rust Layer (rustworkx.PyDiGraph, multigraph)
  - Uses integer indices: 0, 1, 2, ...
  - Reachability: rx.descendants()

Missing entities are reported with None/False rather than exceptions: the
command layer treats "not there" as an ordinary outcome. Exceptions are
reserved for malformed input at the flat-format boundary.
"""
import rustworkx as rx
import msgspec
from typing import Dict, List, Optional, Tuple, Any, Iterable, Mapping
import copy
import logging

from core.schemas import (
    NodeData, EdgeData, Position, FlatStep, ConnectionRef, OutgoingConnections,
    NODE_FIELDS, EDGE_FIELDS,
    make_edge_id, convert_flat_steps, encode_flat_steps, decode_flat_steps,
)
from core.ontology import EdgeType, DEFAULT_LAYOUT, is_valid_edge_type
from infrastructure.event_bus import EventBus, EventType, make_event


logger = logging.getLogger("workflow.graph")


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphError(Exception):
    """Base exception for graph operations."""
    pass


class WorkflowFormatError(GraphError):
    """Raised when flat workflow steps or snapshot bytes are malformed."""
    pass


class GraphInvariantError(GraphError):
    """Raised by assert_valid() when a structural invariant is broken."""
    def __init__(self, message: str, violations: Optional[List[Any]] = None):
        self.violations = violations or []
        super().__init__(message)


# =============================================================================
# WORKFLOW GRAPH (The Graph Engine)
# =============================================================================

class WorkflowGraph:
    """
    In-memory workflow graph backed by rustworkx.

    All public methods accept/return string ids; the translation to/from
    integer indices is handled internally.

    Usage:
        graph = WorkflowGraph()

        graph.add_node(NodeData(id="t", type="trigger"))
        graph.add_node(NodeData(id="a", type="action", position=Position(0, 150)))
        graph.connect("t", "a")

        graph.get_default_outgoing_edge("t").target_id  # "a"

    The graph does not enforce "one default edge per source" or branch
    exclusivity; commands keep those invariants and graph_invariants.py
    reports on them.

    Thread Safety:
        NOT thread-safe. Route every mutation through one CommandManager.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        """
        Initialize an empty workflow graph.

        Args:
            event_bus: Optional bus receiving node/edge mutation events.
        """
        # Core storage: Rust-native directed graph. Multigraph so a
        # default edge and a branch edge may join the same pair.
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=True)

        # The Bridge: bidirectional id <-> index mapping
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}

        # Edge tracking: id -> edge index, plus creation order
        self._edge_map: Dict[str, int] = {}
        self._edge_seq: Dict[str, int] = {}
        self._next_seq = 0

        self._event_bus = event_bus

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def node_count(self) -> int:
        """Number of nodes in the graph."""
        return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        """Number of edges in the graph."""
        return self._graph.num_edges()

    @property
    def is_empty(self) -> bool:
        return self.node_count == 0

    @property
    def event_bus(self) -> Optional[EventBus]:
        return self._event_bus

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        if self._event_bus is None:
            return
        try:
            self._event_bus.publish(make_event(event_type, payload, source="graph"))
        except Exception:
            logger.exception(f"Failed to publish {event_type.value}")

    @staticmethod
    def _edge_payload(edge: EdgeData) -> Dict[str, Any]:
        return {
            "edge_id": edge.id,
            "source_id": edge.source_id,
            "target_id": edge.target_id,
            "edge_type": edge.type,
            "label": edge.label,
        }

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================

    def add_node(self, node: NodeData) -> NodeData:
        """
        Add a node to the graph.

        Uniqueness is the caller's responsibility: re-adding an existing id
        replaces the stored payload in place and keeps its edges.

        Returns:
            The stored NodeData (the same object that was passed in)
        """
        node_id = node.id

        if node_id in self._node_map:
            idx = self._node_map[node_id]
            self._graph[idx] = node
            logger.debug(f"Replaced payload of node {node_id}")
            self._publish(EventType.NODE_UPDATED, {
                "node_id": node_id,
                "node_type": node.type,
                "fields": sorted(NODE_FIELDS - {"id"}),
            })
            return node

        idx = self._graph.add_node(node)
        self._node_map[node_id] = idx
        self._inv_map[idx] = node_id

        logger.debug(f"Added node {node_id} ({node.type})")
        self._publish(EventType.NODE_CREATED, {"node_id": node_id, "node_type": node.type})
        return node

    def get_node(self, node_id: str) -> Optional[NodeData]:
        """Retrieve a node by id, or None if it does not exist."""
        idx = self._node_map.get(node_id)
        if idx is None:
            return None
        return self._graph[idx]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_map

    def remove_node(self, node_id: str) -> bool:
        """
        Remove a node and every edge where it is source or target.

        Returns:
            False if the node does not exist
        """
        idx = self._node_map.get(node_id)
        if idx is None:
            return False

        node = self._graph[idx]
        incident = self.get_incoming_edges(node_id) + [
            edge for edge in self.get_outgoing_edges(node_id)
            if edge.target_id != node_id
        ]

        # Bridge maps first; rustworkx drops incident edges with the node
        for edge in incident:
            self._forget_edge(edge.id)

        self._graph.remove_node(idx)
        del self._node_map[node_id]
        del self._inv_map[idx]

        logger.debug(f"Removed node {node_id} with {len(incident)} incident edge(s)")
        for edge in incident:
            self._publish(EventType.EDGE_DELETED, self._edge_payload(edge))
        self._publish(EventType.NODE_DELETED, {"node_id": node_id, "node_type": node.type})
        return True

    def update_node(self, node_id: str, partial: Mapping[str, Any]) -> bool:
        """
        Shallow-merge `partial` into a node.

        Each key replaces the whole field value (`properties` included).
        A `position` may be given as a Position or as {"x": .., "y": ..}.

        Returns:
            False if the node is missing, `partial` tries to change the id,
            or names a field NodeData does not have.
        """
        node = self.get_node(node_id)
        if node is None:
            logger.warning(f"update_node: node {node_id} not found")
            return False

        if "id" in partial and partial["id"] != node_id:
            logger.warning(f"update_node: refusing to change id of {node_id}")
            return False

        unknown = set(partial) - NODE_FIELDS
        if unknown:
            logger.warning(f"update_node: unknown field(s) {sorted(unknown)} for {node_id}")
            return False

        try:
            values = {
                key: self._coerce_node_value(key, value)
                for key, value in partial.items()
                if key != "id"
            }
        except msgspec.ValidationError as e:
            logger.warning(f"update_node: invalid value for {node_id}: {e}")
            return False

        for key, value in values.items():
            setattr(node, key, value)

        self._publish(EventType.NODE_UPDATED, {
            "node_id": node_id,
            "node_type": node.type,
            "fields": sorted(values),
        })
        return True

    @staticmethod
    def _coerce_node_value(key: str, value: Any) -> Any:
        if key == "position" and not isinstance(value, Position):
            return msgspec.convert(value, type=Position)
        return value

    def get_all_nodes(self) -> List[NodeData]:
        """All nodes in insertion order."""
        return [self._graph[idx] for idx in self._node_map.values()]

    def get_node_ids(self) -> List[str]:
        return list(self._node_map)

    def get_nodes_by_type(self, node_type: str) -> List[NodeData]:
        return [n for n in self.get_all_nodes() if n.type == node_type]

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def connect(
        self,
        source_id: str,
        target_id: str,
        type: str = EdgeType.DEFAULT.value,
        label: Optional[str] = None,
    ) -> Optional[EdgeData]:
        """
        Connect two nodes with a deterministic edge id.

        Does not check for an existing default edge on the source and does
        not check for cycles (see would_create_cycle).

        Returns:
            The new edge, the existing edge if this exact connection is
            already present, or None if an endpoint does not exist.
        """
        type = getattr(type, "value", type)
        return self.add_edge(EdgeData(
            id=make_edge_id(source_id, target_id, type, label),
            source_id=source_id,
            target_id=target_id,
            type=type,
            label=label,
        ))

    def add_edge(self, edge: EdgeData) -> Optional[EdgeData]:
        """
        Insert an edge payload as-is, keeping its id.

        Used to restore edges from a snapshot; new connections go through
        connect(), which derives the id.

        Returns:
            The stored edge, the existing edge if one with the same id joins
            the same endpoints with the same type and label, or None if an
            endpoint does not exist or the id belongs to a different edge.
        """
        src_idx = self._node_map.get(edge.source_id)
        tgt_idx = self._node_map.get(edge.target_id)
        if src_idx is None or tgt_idx is None:
            logger.warning(
                f"Cannot connect {edge.source_id} -> {edge.target_id}, endpoint missing"
            )
            return None

        existing = self.get_edge(edge.id)
        if existing is not None:
            if self._connection_key(existing) != self._connection_key(edge):
                logger.warning(f"Edge id {edge.id} already names a different connection")
                return None
            return existing

        self._edge_map[edge.id] = self._graph.add_edge(src_idx, tgt_idx, edge)
        self._edge_seq[edge.id] = self._next_seq
        self._next_seq += 1

        logger.debug(f"Connected {edge.id}")
        self._publish(EventType.EDGE_CREATED, self._edge_payload(edge))
        return edge

    def get_edge(self, edge_id: str) -> Optional[EdgeData]:
        edge_idx = self._edge_map.get(edge_id)
        if edge_idx is None:
            return None
        return self._graph.get_edge_data_by_index(edge_idx)

    def has_edge(self, edge_id: str) -> bool:
        return edge_id in self._edge_map

    def remove_edge(self, edge_id: str) -> bool:
        """Remove an edge by id. False if it does not exist."""
        edge_idx = self._edge_map.get(edge_id)
        if edge_idx is None:
            return False

        edge = self._graph.get_edge_data_by_index(edge_idx)
        self._graph.remove_edge_from_index(edge_idx)
        self._forget_edge(edge_id)

        logger.debug(f"Removed edge {edge_id}")
        self._publish(EventType.EDGE_DELETED, self._edge_payload(edge))
        return True

    def update_edge(self, edge_id: str, partial: Mapping[str, Any]) -> bool:
        """
        Shallow-merge `partial` into an edge.

        The id is re-derived from the merged fields, so an edge whose
        endpoints, type or label change is re-keyed (the new id is
        readable from the same EdgeData object). Changing
        `source_id`/`target_id` re-seats the edge between the new
        endpoints. The edge keeps its position in get_all_edges().

        Returns:
            False if the edge is missing, `partial` names `id` or an unknown
            field, a new endpoint does not exist, the type is not a known
            edge type, a branch edge would lose its label, or another edge
            already has the re-derived id.
        """
        edge = self.get_edge(edge_id)
        if edge is None:
            logger.warning(f"update_edge: edge {edge_id} not found")
            return False

        if "id" in partial:
            logger.warning(f"update_edge: refusing to change id of {edge_id}")
            return False

        unknown = set(partial) - EDGE_FIELDS
        if unknown:
            logger.warning(f"update_edge: unknown field(s) {sorted(unknown)} for {edge_id}")
            return False

        values = {
            key: getattr(value, "value", value) if key == "type" else value
            for key, value in partial.items()
        }
        source_id = values.get("source_id", edge.source_id)
        target_id = values.get("target_id", edge.target_id)
        edge_type = values.get("type", edge.type)
        label = values.get("label", edge.label)

        if source_id not in self._node_map or target_id not in self._node_map:
            logger.warning(f"update_edge: endpoint missing for {edge_id}")
            return False
        if not is_valid_edge_type(edge_type):
            logger.warning(f"update_edge: invalid edge type {edge_type!r} for {edge_id}")
            return False
        if edge_type == EdgeType.BRANCH.value and not label:
            logger.warning(f"update_edge: branch edge {edge_id} needs a label")
            return False

        new_id = make_edge_id(source_id, target_id, edge_type, label)
        if new_id != edge_id and new_id in self._edge_map:
            logger.warning(f"update_edge: {edge_id} would duplicate existing edge {new_id}")
            return False

        for key, value in values.items():
            setattr(edge, key, value)

        if "source_id" in values or "target_id" in values:
            self._graph.remove_edge_from_index(self._edge_map[edge_id])
            self._edge_map[edge_id] = self._graph.add_edge(
                self._node_map[source_id], self._node_map[target_id], edge
            )

        if new_id != edge_id:
            edge.id = new_id
            self._rekey_edge(edge_id, new_id)
            logger.debug(f"Re-keyed edge {edge_id} -> {new_id}")

        payload = self._edge_payload(edge)
        payload["previous_edge_id"] = edge_id
        self._publish(EventType.EDGE_UPDATED, payload)
        return True

    def _rekey_edge(self, old_id: str, new_id: str) -> None:
        # Rebuild so the edge keeps its slot in creation order
        self._edge_map = {
            (new_id if key == old_id else key): idx
            for key, idx in self._edge_map.items()
        }
        self._edge_seq = {
            (new_id if key == old_id else key): seq
            for key, seq in self._edge_seq.items()
        }

    @staticmethod
    def _connection_key(edge: EdgeData) -> Tuple[str, str, str, Optional[str]]:
        return (edge.source_id, edge.target_id, edge.type, edge.label)

    def _forget_edge(self, edge_id: str) -> None:
        self._edge_map.pop(edge_id, None)
        self._edge_seq.pop(edge_id, None)

    def _sorted_edges(self, edges: Iterable[EdgeData]) -> List[EdgeData]:
        return sorted(edges, key=lambda e: self._edge_seq.get(e.id, 0))

    def get_all_edges(self) -> List[EdgeData]:
        """All edges in creation order."""
        return [
            self._graph.get_edge_data_by_index(edge_idx)
            for edge_idx in self._edge_map.values()
        ]

    def get_outgoing_edges(self, node_id: str) -> List[EdgeData]:
        """Edges leaving a node, in creation order."""
        idx = self._node_map.get(node_id)
        if idx is None:
            return []
        return self._sorted_edges(data for _, _, data in self._graph.out_edges(idx))

    def get_incoming_edges(self, node_id: str) -> List[EdgeData]:
        """Edges entering a node, in creation order."""
        idx = self._node_map.get(node_id)
        if idx is None:
            return []
        return self._sorted_edges(data for _, _, data in self._graph.in_edges(idx))

    def get_default_outgoing_edge(self, node_id: str) -> Optional[EdgeData]:
        for edge in self.get_outgoing_edges(node_id):
            if edge.type == EdgeType.DEFAULT.value:
                return edge
        return None

    def get_branch_outgoing_edges(self, node_id: str) -> List[EdgeData]:
        return [
            edge for edge in self.get_outgoing_edges(node_id)
            if edge.type == EdgeType.BRANCH.value
        ]

    def get_branch_edge(self, node_id: str, label: str) -> Optional[EdgeData]:
        """The branch edge leaving `node_id` with the given label, if any."""
        for edge in self.get_branch_outgoing_edges(node_id):
            if edge.label == label:
                return edge
        return None

    # =========================================================================
    # GRAPH TRAVERSAL (Rust-Accelerated)
    # =========================================================================

    def get_descendants(self, node_id: str) -> List[str]:
        """
        Ids of every node reachable forward from `node_id` (excluding it).

        Returned in node insertion order. Empty if the node does not exist.
        """
        idx = self._node_map.get(node_id)
        if idx is None:
            return []
        reachable = rx.descendants(self._graph, idx)
        return [nid for nid, i in self._node_map.items() if i in reachable and nid != node_id]

    def has_path(self, source_id: str, target_id: str) -> bool:
        """True if `target_id` is reachable from `source_id` by one or more edges."""
        src_idx = self._node_map.get(source_id)
        tgt_idx = self._node_map.get(target_id)
        if src_idx is None or tgt_idx is None:
            return False
        return tgt_idx in rx.descendants(self._graph, src_idx)

    def would_create_cycle(self, source_id: str, target_id: str) -> bool:
        """
        True iff adding source -> target would close a cycle.

        A self-connection always would. Otherwise a cycle appears exactly
        when a path already leads from target back to source. Missing nodes
        cannot close a cycle.
        """
        if source_id == target_id:
            return True
        return self.has_path(target_id, source_id)

    def is_dag(self) -> bool:
        return rx.is_directed_acyclic_graph(self._graph)

    def get_cycle_nodes(self) -> List[str]:
        """Ids of nodes that sit on at least one cycle, in insertion order."""
        on_cycle = set()
        for component in rx.strongly_connected_components(self._graph):
            if len(component) > 1:
                on_cycle.update(component)
        for edge in self.get_all_edges():
            if edge.source_id == edge.target_id:
                on_cycle.add(self._node_map[edge.source_id])
        return [nid for nid, idx in self._node_map.items() if idx in on_cycle]

    # =========================================================================
    # VALIDATION HELPERS
    # =========================================================================

    def is_duplicate_edge(
        self,
        source_id: str,
        target_id: str,
        type: str = EdgeType.DEFAULT.value,
        label: Optional[str] = None,
    ) -> bool:
        """True if the same (source, target, type, label) connection exists."""
        type = getattr(type, "value", type)
        for edge in self.get_outgoing_edges(source_id):
            if edge.target_id != target_id or edge.type != type:
                continue
            if (edge.label == label) if label else not edge.label:
                return True
        return False

    def validate_edge(
        self,
        source_id: str,
        target_id: str,
        type: str = EdgeType.DEFAULT.value,
        label: Optional[str] = None,
    ) -> Tuple[bool, List[str]]:
        """
        Check a prospective connection.

        Returns:
            (is_valid, errors)
        """
        type = getattr(type, "value", type)
        errors: List[str] = []

        if source_id not in self._node_map:
            errors.append(f"Source node '{source_id}' does not exist")
        if target_id not in self._node_map:
            errors.append(f"Target node '{target_id}' does not exist")
        if source_id == target_id:
            errors.append("Cannot connect a node to itself")
        if not is_valid_edge_type(type):
            errors.append(f"Invalid edge type: '{type}'")
        if type == EdgeType.BRANCH.value and not label:
            errors.append("Branch edges must have a label")

        return len(errors) == 0, errors

    def verify_index_maps(self) -> Tuple[bool, List[str]]:
        """
        Check that the bridge maps agree with the rustworkx graph.

        Every tracked node id resolves to a live index whose payload has
        that id, and every tracked edge id resolves to a live edge whose
        payload has that id and whose endpoints match its source/target.
        """
        errors: List[str] = []

        live_nodes = set(self._graph.node_indices())
        if len(self._node_map) != len(live_nodes):
            errors.append(f"{len(self._node_map)} tracked nodes, {len(live_nodes)} in graph")
        for node_id, idx in self._node_map.items():
            if idx not in live_nodes:
                errors.append(f"Node {node_id} maps to missing index {idx}")
                continue
            if self._inv_map.get(idx) != node_id:
                errors.append(f"Inverse map disagrees for node {node_id} (index {idx})")
            if self._graph[idx].id != node_id:
                errors.append(f"Node {node_id} stored under payload id {self._graph[idx].id}")

        live_edges = set(self._graph.edge_indices())
        if len(self._edge_map) != len(live_edges):
            errors.append(f"{len(self._edge_map)} tracked edges, {len(live_edges)} in graph")
        if set(self._edge_seq) != set(self._edge_map):
            errors.append("Edge creation order does not cover the tracked edges")
        for edge_id, edge_idx in self._edge_map.items():
            if edge_idx not in live_edges:
                errors.append(f"Edge {edge_id} maps to missing index {edge_idx}")
                continue
            edge = self._graph.get_edge_data_by_index(edge_idx)
            if edge.id != edge_id:
                errors.append(f"Edge {edge_id} stored under payload id {edge.id}")
            src_idx, tgt_idx = self._graph.get_edge_endpoints_by_index(edge_idx)
            seated = (self._inv_map.get(src_idx), self._inv_map.get(tgt_idx))
            if seated != (edge.source_id, edge.target_id):
                errors.append(f"Edge {edge_id} is seated between the wrong nodes")

        return len(errors) == 0, errors

    def safe_connect(
        self,
        source_id: str,
        target_id: str,
        type: str = EdgeType.DEFAULT.value,
        label: Optional[str] = None,
    ) -> Optional[EdgeData]:
        """connect() preceded by validate_edge(); None if validation fails."""
        is_valid, errors = self.validate_edge(source_id, target_id, type, label)
        if not is_valid:
            logger.warning(f"Invalid edge {source_id} -> {target_id}: {errors}")
            return None
        return self.connect(source_id, target_id, type, label)

    def verify_integrity(self) -> Tuple[bool, List[str]]:
        """Check that every edge references existing endpoints."""
        errors: List[str] = []
        for edge in self.get_all_edges():
            if edge.source_id not in self._node_map:
                errors.append(
                    f"Edge {edge.id} references non-existent source node {edge.source_id}"
                )
            if edge.target_id not in self._node_map:
                errors.append(
                    f"Edge {edge.id} references non-existent target node {edge.target_id}"
                )
        return len(errors) == 0, errors

    # =========================================================================
    # BULK OPERATIONS
    # =========================================================================

    def clear(self) -> None:
        """Remove every node and edge."""
        self._graph = rx.PyDiGraph(multigraph=True)
        self._node_map.clear()
        self._inv_map.clear()
        self._edge_map.clear()
        self._edge_seq.clear()
        self._next_seq = 0

        logger.debug("Cleared graph")
        self._publish(EventType.GRAPH_CLEARED, {})

    # =========================================================================
    # FLAT WORKFLOW FORMAT
    # =========================================================================

    @classmethod
    def from_flat_steps(
        cls,
        steps: Iterable[Any],
        event_bus: Optional[EventBus] = None,
    ) -> "WorkflowGraph":
        """
        Hydrate a graph from flat workflow steps.

        Steps may be camelCase dicts or FlatStep structs. Nodes are added
        first, then connections; a connection whose target is not among
        the steps is dropped.

        Raises:
            WorkflowFormatError: If a step is malformed
        """
        try:
            flat_steps = convert_flat_steps(list(steps))
        except (msgspec.ValidationError, TypeError) as e:
            raise WorkflowFormatError(f"Malformed workflow steps: {e}") from e

        graph = cls(event_bus=event_bus)

        for step in flat_steps:
            graph.add_node(NodeData(
                id=step.id,
                type=step.type,
                position=step.position.copy(),
                height=step.height or DEFAULT_LAYOUT.node_height,
                title=step.title,
                subtitle=step.subtitle,
                properties=copy.deepcopy(step.properties or {}),
                context_menu_config=copy.deepcopy(step.context_menu_config),
            ))

        for step in flat_steps:
            default = step.outgoing_connections.default
            if default is not None and default.target_node_id in graph:
                graph.connect(step.id, default.target_node_id, EdgeType.DEFAULT.value)

            for branch_id, ref in step.branch_connections.items():
                if ref.target_node_id in graph:
                    graph.connect(step.id, ref.target_node_id, EdgeType.BRANCH.value, branch_id)

        logger.debug(f"Hydrated {graph!r} from {len(flat_steps)} step(s)")
        return graph

    def to_flat_steps(self) -> List[FlatStep]:
        """Export the graph as flat workflow steps, in node insertion order."""
        steps = []
        for node in self.get_all_nodes():
            default = self.get_default_outgoing_edge(node.id)
            steps.append(FlatStep(
                id=node.id,
                type=node.type,
                position=node.position.copy(),
                height=node.height,
                title=node.title,
                subtitle=node.subtitle,
                properties=copy.deepcopy(node.properties),
                context_menu_config=copy.deepcopy(node.context_menu_config),
                outgoing_connections=OutgoingConnections(
                    default=ConnectionRef(target_node_id=default.target_id) if default else None
                ),
                branch_connections={
                    edge.label: ConnectionRef(target_node_id=edge.target_id)
                    for edge in self.get_branch_outgoing_edges(node.id)
                    if edge.label
                },
            ))
        return steps

    def to_flat_dicts(self) -> List[Dict[str, Any]]:
        """Flat steps as plain camelCase dicts."""
        return msgspec.to_builtins(self.to_flat_steps())

    def to_json(self) -> bytes:
        return encode_flat_steps(self.to_flat_steps())

    @classmethod
    def from_json(cls, data: bytes, event_bus: Optional[EventBus] = None) -> "WorkflowGraph":
        """
        Hydrate a graph from flat steps serialized as JSON.

        Raises:
            WorkflowFormatError: If the bytes are not a valid step list
        """
        try:
            steps = decode_flat_steps(data)
        except (msgspec.ValidationError, msgspec.DecodeError) as e:
            raise WorkflowFormatError(f"Malformed workflow JSON: {e}") from e
        return cls.from_flat_steps(steps, event_bus=event_bus)

    # =========================================================================
    # INTERNAL UTILITIES
    # =========================================================================

    def __len__(self) -> int:
        """Return number of nodes."""
        return self.node_count

    def __contains__(self, node_id: str) -> bool:
        """Check if node exists."""
        return node_id in self._node_map

    def __repr__(self) -> str:
        return f"WorkflowGraph(nodes={self.node_count}, edges={self.edge_count})"
