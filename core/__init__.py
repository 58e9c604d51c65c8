"""
FLOWGRAPH CORE - Central exports for the workflow engine.

This module provides access to:
- The workflow graph (WorkflowGraph) and its data model
- Node-type plugins and branch topology
- Reversible commands and the undo/redo CommandManager
"""

from core.schemas import NodeData, EdgeData, Position, Branch, FlatStep
from core.graph_db import (
    WorkflowGraph,
    GraphError,
    WorkflowFormatError,
    GraphInvariantError,
)
from core.plugins import PluginRegistry, NodeTypePlugin, create_default_registry
from core.branch_topology import (
    BranchSelection,
    BranchSelectionStrategy,
    SpatialBranchStrategy,
    get_node_branches,
    get_branch_endpoint,
    get_best_branch_id,
)
from core.commands import (
    Command,
    AddNodeCommand,
    MoveNodeCommand,
    DeleteNodeCommand,
    UpdateNodeCommand,
    UpdateEdgeCommand,
    UpdateNodeHeightCommand,
    DuplicateNodeCommand,
)
from core.command_manager import CommandManager, HistoryState

__all__ = [
    # Data model
    "NodeData",
    "EdgeData",
    "Position",
    "Branch",
    "FlatStep",
    # Graph
    "WorkflowGraph",
    "GraphError",
    "WorkflowFormatError",
    "GraphInvariantError",
    # Plugins & branches
    "PluginRegistry",
    "NodeTypePlugin",
    "create_default_registry",
    "BranchSelection",
    "BranchSelectionStrategy",
    "SpatialBranchStrategy",
    "get_node_branches",
    "get_branch_endpoint",
    "get_best_branch_id",
    # Commands
    "Command",
    "AddNodeCommand",
    "MoveNodeCommand",
    "DeleteNodeCommand",
    "UpdateNodeCommand",
    "UpdateEdgeCommand",
    "UpdateNodeHeightCommand",
    "DuplicateNodeCommand",
    "CommandManager",
    "HistoryState",
]
