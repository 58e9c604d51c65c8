"""
FLOWGRAPH BRANCH TOPOLOGY - Where Branches Go

Interprets the branches of conditional and split nodes:
- get_node_branches: which named paths a node offers
- get_branch_endpoint: where a branch's "add step" anchor sits on the canvas
- get_best_branch_id: which branch a connection should use when the
  caller did not say (a heuristic, encapsulated as a strategy)

The heuristic guesses user intent from layout. It is not a structural
rule, so it lives behind BranchSelectionStrategy and callers may inject
their own.
"""
from typing import Any, List, Optional
import logging

import msgspec

from core.ontology import NodeType, BranchId, LayoutDefaults, DEFAULT_LAYOUT
from core.schemas import Branch, NodeData, Position


logger = logging.getLogger("workflow.branch_topology")


SPLITFLOW_FALLBACK_BRANCHES = (
    Branch(id=BranchId.PATH1, label="Path 1"),
    Branch(id=BranchId.PATH2, label="Path 2"),
)


class BranchSelection(msgspec.Struct, frozen=True):
    """Outcome of get_best_branch_id."""
    is_branch_node: bool
    branch_id: Optional[str] = None


NOT_A_BRANCH = BranchSelection(is_branch_node=False)


# =============================================================================
# BRANCH DISCOVERY
# =============================================================================

def _as_branch(raw: Any) -> Branch:
    if isinstance(raw, Branch):
        return raw
    if isinstance(raw, dict):
        return Branch(id=str(raw["id"]), label=str(raw.get("label") or ""))
    return Branch(id=str(getattr(raw, "id")), label=str(getattr(raw, "label", "") or ""))


def get_node_branches(node: Optional[NodeData], plugin_registry: Any) -> List[Branch]:
    """
    The branches a node offers, as declared by its node-type plugin.

    Empty when there is no registry, no plugin for the type, or the plugin
    has no get_branches(). A split-flow node whose plugin returns nothing
    falls back to path1/path2.
    """
    if node is None or plugin_registry is None:
        return []

    plugin = plugin_registry.get_node_type(node.type)
    get_branches = getattr(plugin, "get_branches", None)
    if get_branches is None:
        return []

    branches = [_as_branch(b) for b in (get_branches(node.properties) or [])]

    if node.type == NodeType.SPLITFLOW.value and not branches:
        branches = list(SPLITFLOW_FALLBACK_BRANCHES)

    return branches


# =============================================================================
# ENDPOINT GEOMETRY
# =============================================================================

def get_branch_endpoint(
    node: NodeData,
    branch_id: str,
    plugin_registry: Any,
    layout: Optional[LayoutDefaults] = None,
) -> Optional[Position]:
    """
    Canvas anchor of one branch of a node.

    The anchor sits one branch-edge offset below the node's bottom center.
    If/else nodes place "yes" left and "no" right; split-flow nodes spread
    their branches evenly around the center.

    Returns:
        None for a branch id the node does not offer
    """
    layout = layout or DEFAULT_LAYOUT

    start_x = node.position.x + layout.node_width / 2
    start_y = node.position.y + (node.height or layout.node_height)
    end_y = start_y + layout.branch_edge_offset

    if node.type == NodeType.IFELSE.value:
        if branch_id == BranchId.YES:
            return Position(x=start_x - layout.ifelse_branch_offset, y=end_y)
        if branch_id == BranchId.NO:
            return Position(x=start_x + layout.ifelse_branch_offset, y=end_y)
        return None

    if node.type == NodeType.SPLITFLOW.value:
        branches = get_node_branches(node, plugin_registry)
        index = next((i for i, b in enumerate(branches) if b.id == branch_id), -1)
        if index == -1:
            return None

        total = len(branches)
        spacing = layout.two_branch_spacing if total == 2 else layout.multi_branch_spacing
        offset = -(spacing * (total - 1)) / 2 + index * spacing
        return Position(x=start_x + offset, y=end_y)

    return Position(x=start_x, y=end_y)


# =============================================================================
# BEST-BRANCH HEURISTIC
# =============================================================================

class BranchSelectionStrategy:
    """
    Decides which branch of `node` a connection toward `target` should use.

    Subclasses override select(). The base class never picks a branch.
    """

    def select(
        self,
        node: NodeData,
        target: Optional[NodeData],
        plugin_registry: Any,
        graph: Any,
    ) -> BranchSelection:
        return NOT_A_BRANCH


class SpatialBranchStrategy(BranchSelectionStrategy):
    """
    The default heuristic:

    1. If the plugin declares branches: if/else prefers "yes"; split-flow
       picks "path2" when the target sits right of the node, else "path1"
       (first declared branch when there is no target); other types take
       their first declared branch.
    2. Otherwise reuse the label of the node's first existing branch edge.
    3. Otherwise the connection is not a branch.
    """

    def select(self, node, target, plugin_registry, graph) -> BranchSelection:
        if plugin_registry is not None:
            branches = get_node_branches(node, plugin_registry)
            if branches:
                if node.type == NodeType.IFELSE.value:
                    return BranchSelection(is_branch_node=True, branch_id=BranchId.YES)
                if node.type == NodeType.SPLITFLOW.value and target is not None:
                    on_right = target.position.x > node.position.x
                    return BranchSelection(
                        is_branch_node=True,
                        branch_id=BranchId.PATH2 if on_right else BranchId.PATH1,
                    )
                return BranchSelection(is_branch_node=True, branch_id=branches[0].id)

        if graph is not None:
            branch_edges = graph.get_branch_outgoing_edges(node.id)
            if branch_edges:
                return BranchSelection(is_branch_node=True, branch_id=branch_edges[0].label)

        return NOT_A_BRANCH


DEFAULT_BRANCH_STRATEGY = SpatialBranchStrategy()


def get_best_branch_id(
    node: Optional[NodeData],
    target_node: Optional[NodeData],
    plugin_registry: Any,
    graph: Any,
    strategy: Optional[BranchSelectionStrategy] = None,
) -> BranchSelection:
    """Pick the branch a connection from `node` toward `target_node` should use."""
    if node is None:
        return NOT_A_BRANCH
    selection = (strategy or DEFAULT_BRANCH_STRATEGY).select(node, target_node, plugin_registry, graph)
    logger.debug(f"Best branch for {node.id}: {selection}")
    return selection
