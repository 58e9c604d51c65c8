"""
FLOWGRAPH COMMANDS - Reversible Graph Mutations

Every edit the editor makes is a Command: an object that holds a reference
to the live graph plus whatever pre-state it needs to put things back.

    cmd = AddNodeCommand(graph, new_node, source_node_id="t")
    cmd.execute()   # mutate
    cmd.undo()      # exact inverse

Contract:
- execute() and undo() return True on success, False otherwise
- missing nodes/edges are an ordinary False, never an exception
- undo() is only meaningful right after a successful execute()
- a command may be executed again after undo() (redo)
"""
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
import copy
import logging

import msgspec

from core.ontology import EdgeType, DEFAULT_LAYOUT, LayoutDefaults
from core.schemas import NodeData, EdgeData, Position, generate_id
from core.graph_db import WorkflowGraph
from core.branch_topology import BranchSelectionStrategy, get_best_branch_id
from core.snapshot import GraphSnapshot, clone_node, clone_edge, take_snapshot, restore_snapshot


logger = logging.getLogger("workflow.commands")


def _as_position(value: Any) -> Position:
    if isinstance(value, Position):
        return value.copy()
    if isinstance(value, (tuple, list)):
        x, y = value
        return Position(x=x, y=y)
    return msgspec.convert(value, type=Position)


# =============================================================================
# BASE
# =============================================================================

class Command:
    """Base class for graph commands."""

    def __init__(self, graph: WorkflowGraph):
        if graph is None:
            raise ValueError("A graph is required")
        self.graph = graph

    @property
    def name(self) -> str:
        return type(self).__name__

    def execute(self) -> bool:
        raise NotImplementedError

    def undo(self) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        """One-line summary for history listings and debugging."""
        return self.name

    def __repr__(self) -> str:
        return f"<{self.describe()}>"


# =============================================================================
# ADD NODE
# =============================================================================

class AddNodeCommand(Command):
    """
    Insert a node, optionally splicing it into an existing connection.

    With a source node, the source's existing edge of the requested kind
    (its default edge, or its branch edge labeled `branch_id`) is replaced
    by source -> new node, and the new node is wired on to the old target.
    Nodes below the insertion point on the affected path shift down by
    `vertical_spacing` (or `layout.vertical_spacing` when a layout is
    given); sibling branches of the source never move.
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        new_node: NodeData,
        source_node_id: Optional[str] = None,
        connection_type: str = EdgeType.DEFAULT.value,
        branch_id: Optional[str] = None,
        plugin_registry: Any = None,
        vertical_spacing: float = DEFAULT_LAYOUT.vertical_spacing,
        branch_strategy: Optional[BranchSelectionStrategy] = None,
        layout: Optional[LayoutDefaults] = None,
    ):
        super().__init__(graph)
        self.new_node = clone_node(new_node)
        self.source_node_id = source_node_id
        self.connection_type = getattr(connection_type, "value", connection_type)
        self.branch_id = branch_id
        self.plugin_registry = plugin_registry
        self.vertical_spacing = layout.vertical_spacing if layout is not None else vertical_spacing
        self.branch_strategy = branch_strategy

        # Pre-state, refreshed on every execute()
        self.moved_nodes: List[Tuple[str, float]] = []
        self.replaced_edge: Optional[EdgeData] = None
        self.created_edges: List[EdgeData] = []

    @property
    def node_id(self) -> str:
        return self.new_node.id

    def describe(self) -> str:
        where = f" after {self.source_node_id}" if self.source_node_id else ""
        if self.connection_type == EdgeType.BRANCH.value:
            where += f" on branch {self.branch_id}"
        return f"AddNode {self.node_id} ({self.new_node.type}){where}"

    def _existing_edge(self) -> Optional[EdgeData]:
        if self.connection_type == EdgeType.BRANCH.value:
            if not self.branch_id:
                return None
            return self.graph.get_branch_edge(self.source_node_id, self.branch_id)
        return self.graph.get_default_outgoing_edge(self.source_node_id)

    def _connects(self) -> bool:
        if self.source_node_id is None or self.source_node_id not in self.graph:
            return False
        if self.connection_type == EdgeType.BRANCH.value and not self.branch_id:
            logger.warning(f"{self.describe()}: branch connection without branch id")
            return False
        return True

    def _nodes_to_shift(self, connects: bool) -> List[Tuple[str, float]]:
        new_y = self.new_node.position.y

        if connects:
            existing = self._existing_edge()
            if existing is None:
                candidates = []
            else:
                old_target = existing.target_id
                candidates = [old_target] + self.graph.get_descendants(old_target)
        else:
            candidates = self.graph.get_node_ids()

        moved = []
        for node_id in candidates:
            if node_id in (self.source_node_id, self.node_id):
                continue
            node = self.graph.get_node(node_id)
            if node is not None and node.position.y >= new_y:
                moved.append((node_id, node.position.y))
        return moved

    def execute(self) -> bool:
        if self.node_id in self.graph:
            logger.warning(f"{self.describe()}: node id already exists")
            return False

        connects = self._connects()
        self.moved_nodes = self._nodes_to_shift(connects)
        self.replaced_edge = None
        self.created_edges = []

        node = self.graph.add_node(clone_node(self.new_node))

        if connects:
            existing = self._existing_edge()
            if existing is not None:
                self.replaced_edge = clone_edge(existing)
                self.graph.remove_edge(existing.id)

            if self.connection_type == EdgeType.BRANCH.value:
                edge = self.graph.connect(
                    self.source_node_id, self.node_id, EdgeType.BRANCH.value, self.branch_id
                )
            else:
                edge = self.graph.connect(self.source_node_id, self.node_id)
            if edge is not None:
                self.created_edges.append(edge)

            old_target = self.graph.get_node(self.replaced_edge.target_id) if self.replaced_edge else None
            if old_target is not None:
                selection = get_best_branch_id(
                    node, old_target, self.plugin_registry, self.graph, self.branch_strategy
                )
                if selection.is_branch_node and selection.branch_id:
                    edge = self.graph.connect(
                        self.node_id, old_target.id, EdgeType.BRANCH.value, selection.branch_id
                    )
                else:
                    edge = self.graph.connect(self.node_id, old_target.id)
                if edge is not None:
                    self.created_edges.append(edge)
        elif self.source_node_id is not None:
            logger.info(f"{self.describe()}: source unavailable, inserted unconnected")

        for node_id, old_y in self.moved_nodes:
            moved = self.graph.get_node(node_id)
            if moved is not None:
                self.graph.update_node(
                    node_id, {"position": Position(x=moved.position.x, y=old_y + self.vertical_spacing)}
                )

        logger.debug(f"{self.describe()}: shifted {len(self.moved_nodes)} node(s)")
        return True

    def undo(self) -> bool:
        if self.node_id not in self.graph:
            return False

        for node_id, old_y in self.moved_nodes:
            moved = self.graph.get_node(node_id)
            if moved is not None:
                self.graph.update_node(node_id, {"position": Position(x=moved.position.x, y=old_y)})

        for edge in self.created_edges:
            self.graph.remove_edge(edge.id)

        if self.replaced_edge is not None:
            self.graph.add_edge(clone_edge(self.replaced_edge))

        self.graph.remove_node(self.node_id)
        return True


# =============================================================================
# MOVE NODE
# =============================================================================

class MoveNodeCommand(Command):
    """Set a node's position; undo puts the old position back."""

    def __init__(self, graph: WorkflowGraph, node_id: str, old_position: Any, new_position: Any):
        super().__init__(graph)
        self.node_id = node_id
        self.old_position = _as_position(old_position)
        self.new_position = _as_position(new_position)

    def describe(self) -> str:
        return (
            f"MoveNode {self.node_id} "
            f"({self.old_position.x}, {self.old_position.y}) -> "
            f"({self.new_position.x}, {self.new_position.y})"
        )

    def execute(self) -> bool:
        return self.graph.update_node(self.node_id, {"position": self.new_position.copy()})

    def undo(self) -> bool:
        return self.graph.update_node(self.node_id, {"position": self.old_position.copy()})


# =============================================================================
# DELETE NODE
# =============================================================================

class DeleteNodeCommand(Command):
    """
    Remove a node and bridge its predecessors to its default successor.

    Each predecessor P of the deleted node is reconnected to the deleted
    node's default target B:
    - an incoming branch edge keeps its branch label
    - an incoming default edge becomes a branch edge only when the best
      branch of P toward B is still free on P, otherwise stays default
    A bridge that would close a cycle or duplicate an existing edge is
    skipped. Without a default successor, predecessors are left open.

    Undo restores the whole pre-delete snapshot.
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        node_id: str,
        plugin_registry: Any = None,
        branch_strategy: Optional[BranchSelectionStrategy] = None,
    ):
        super().__init__(graph)
        self.node_id = node_id
        self.plugin_registry = plugin_registry
        self.branch_strategy = branch_strategy

        self.snapshot: Optional[GraphSnapshot] = None
        self.deleted_node: Optional[NodeData] = None
        self.incoming_edges: List[EdgeData] = []
        self.outgoing_edges: List[EdgeData] = []
        self.bridged_edges: List[EdgeData] = []

    def describe(self) -> str:
        return f"DeleteNode {self.node_id}"

    def execute(self) -> bool:
        node = self.graph.get_node(self.node_id)
        if node is None:
            logger.warning(f"{self.describe()}: node not found")
            return False

        self.snapshot = take_snapshot(self.graph)
        self.deleted_node = clone_node(node)
        self.incoming_edges = [clone_edge(e) for e in self.graph.get_incoming_edges(self.node_id)]
        self.outgoing_edges = [clone_edge(e) for e in self.graph.get_outgoing_edges(self.node_id)]
        self.bridged_edges = []

        default_out = self.graph.get_default_outgoing_edge(self.node_id)
        successor_id = default_out.target_id if default_out else None

        self.graph.remove_node(self.node_id)

        if successor_id is not None and successor_id != self.node_id:
            for incoming in self.incoming_edges:
                if incoming.source_id == self.node_id:
                    continue
                edge = self._bridge(incoming, successor_id)
                if edge is not None:
                    self.bridged_edges.append(edge)

        logger.debug(f"{self.describe()}: bridged {len(self.bridged_edges)} edge(s)")
        return True

    def _bridge(self, incoming: EdgeData, successor_id: str) -> Optional[EdgeData]:
        source_id = incoming.source_id

        if incoming.type == EdgeType.BRANCH.value:
            edge_type, label = EdgeType.BRANCH.value, incoming.label
        else:
            edge_type, label = EdgeType.DEFAULT.value, None
            selection = get_best_branch_id(
                self.graph.get_node(source_id),
                self.graph.get_node(successor_id),
                self.plugin_registry,
                self.graph,
                self.branch_strategy,
            )
            if (
                selection.is_branch_node
                and selection.branch_id
                and self.graph.get_branch_edge(source_id, selection.branch_id) is None
            ):
                edge_type, label = EdgeType.BRANCH.value, selection.branch_id

        if self.graph.would_create_cycle(source_id, successor_id):
            logger.info(f"{self.describe()}: skipped bridge {source_id} -> {successor_id} (cycle)")
            return None
        if self.graph.is_duplicate_edge(source_id, successor_id, edge_type, label):
            return None
        return self.graph.connect(source_id, successor_id, edge_type, label)

    def undo(self) -> bool:
        if self.snapshot is None:
            return False
        restore_snapshot(self.graph, self.snapshot)
        return True


# =============================================================================
# UPDATE NODE / EDGE
# =============================================================================

class UpdateNodeCommand(Command):
    """Shallow-merge field values into a node; undo re-merges the old values."""

    def __init__(self, graph: WorkflowGraph, node_id: str, properties: Mapping[str, Any]):
        super().__init__(graph)
        self.node_id = node_id
        self.new_values: Dict[str, Any] = copy.deepcopy(dict(properties))
        self.old_values: Dict[str, Any] = {}

    def describe(self) -> str:
        return f"UpdateNode {self.node_id} {sorted(self.new_values)}"

    def execute(self) -> bool:
        node = self.graph.get_node(self.node_id)
        if node is None:
            return False

        old_values = {
            key: copy.deepcopy(getattr(node, key))
            for key in self.new_values
            if hasattr(node, key)
        }
        if not self.graph.update_node(self.node_id, copy.deepcopy(self.new_values)):
            return False
        self.old_values = old_values
        return True

    def undo(self) -> bool:
        if self.node_id not in self.graph:
            return False
        return self.graph.update_node(self.node_id, copy.deepcopy(self.old_values))


class UpdateEdgeCommand(Command):
    """
    Shallow-merge field values into an edge; undo re-merges the old values.

    The graph re-keys an edge whose endpoints, type or label change, so the
    command remembers the id the edge currently lives under.
    """

    def __init__(self, graph: WorkflowGraph, edge_id: str, properties: Mapping[str, Any]):
        super().__init__(graph)
        self.edge_id = edge_id
        self.current_edge_id = edge_id
        self.new_values: Dict[str, Any] = copy.deepcopy(dict(properties))
        self.old_values: Dict[str, Any] = {}

    def describe(self) -> str:
        return f"UpdateEdge {self.edge_id} {sorted(self.new_values)}"

    def execute(self) -> bool:
        edge = self.graph.get_edge(self.current_edge_id)
        if edge is None:
            return False

        old_values = {
            key: copy.deepcopy(getattr(edge, key))
            for key in self.new_values
            if hasattr(edge, key)
        }
        if not self.graph.update_edge(self.current_edge_id, copy.deepcopy(self.new_values)):
            return False
        self.old_values = old_values
        self.current_edge_id = edge.id
        return True

    def undo(self) -> bool:
        edge = self.graph.get_edge(self.current_edge_id)
        if edge is None:
            return False
        if not self.graph.update_edge(self.current_edge_id, copy.deepcopy(self.old_values)):
            return False
        self.current_edge_id = edge.id
        return True


class UpdateNodeHeightCommand(Command):
    """Record a node's measured height. The old height is read at construction."""

    def __init__(self, graph: WorkflowGraph, node_id: str, new_height: float):
        super().__init__(graph)
        self.node_id = node_id
        self.new_height = new_height
        node = graph.get_node(node_id)
        self.old_height: Optional[float] = node.height if node is not None else None

    def describe(self) -> str:
        return f"UpdateNodeHeight {self.node_id} {self.old_height} -> {self.new_height}"

    def execute(self) -> bool:
        if self.old_height is None:
            return False
        return self.graph.update_node(self.node_id, {"height": self.new_height})

    def undo(self) -> bool:
        if self.old_height is None:
            return False
        return self.graph.update_node(self.node_id, {"height": self.old_height})


# =============================================================================
# DUPLICATE NODE
# =============================================================================

class DuplicateNodeCommand(Command):
    """
    Copy a node next to the original.

    The copy gets a fresh id, an offset position and a " (Copy)" title
    suffix. Connections are not copied. Redo reuses the same copy id.
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        node_id: str,
        id_factory: Optional[Callable[[], str]] = None,
        offset_x: float = 50.0,
        offset_y: float = 50.0,
    ):
        super().__init__(graph)
        self.node_id = node_id
        self.id_factory = id_factory or generate_id
        self.offset_x = offset_x
        self.offset_y = offset_y
        self.duplicate: Optional[NodeData] = None

    @property
    def duplicate_id(self) -> Optional[str]:
        return self.duplicate.id if self.duplicate is not None else None

    def describe(self) -> str:
        return f"DuplicateNode {self.node_id} -> {self.duplicate_id}"

    def execute(self) -> bool:
        if self.duplicate is None:
            original = self.graph.get_node(self.node_id)
            if original is None:
                return False
            copy_node = clone_node(original)
            copy_node.id = self.id_factory()
            copy_node.position = Position(
                x=original.position.x + self.offset_x,
                y=original.position.y + self.offset_y,
            )
            copy_node.title = f"{original.title or original.type} (Copy)"
            self.duplicate = copy_node

        if self.duplicate.id in self.graph:
            logger.warning(f"{self.describe()}: id already exists")
            return False

        self.graph.add_node(clone_node(self.duplicate))
        return True

    def undo(self) -> bool:
        if self.duplicate is None:
            return False
        return self.graph.remove_node(self.duplicate.id)
