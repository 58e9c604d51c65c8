"""
FLOWGRAPH ONTOLOGY - The Vocabulary of a Workflow

If schemas.py is the Grammar (how a step or a connection is structured),
ontology.py is the Dictionary (the words a workflow can use).

This module defines:
- Enums: node types, edge types, well-known branch ids
- LayoutDefaults: the geometry constants the layout logic relies on

Node types are open to extension through the plugin registry, so the
NodeType enum only names the built-in vocabulary. Code that receives a
node type must accept any string, not just NodeType members.
"""
from typing import Tuple
from enum import Enum

import msgspec


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeType(str, Enum):
    """Built-in workflow step types."""
    TRIGGER = "trigger"        # Entry point of a workflow
    CONTROL = "control"        # Flow control (delays, waits)
    ACTION = "action"          # Side-effecting step (send email, ...)
    IFELSE = "ifelse"          # Conditional split: "yes" / "no"
    SPLITFLOW = "splitflow"    # N-way split on an attribute


class EdgeType(str, Enum):
    """Types of connections between steps."""
    DEFAULT = "default"        # The single "next step" continuation
    BRANCH = "branch"          # A labeled alternative continuation


class BranchId:
    """Well-known branch identifiers used by the built-in node types."""
    YES = "yes"
    NO = "no"
    PATH1 = "path1"
    PATH2 = "path2"


IFELSE_BRANCH_IDS: Tuple[str, str] = (BranchId.YES, BranchId.NO)

EDGE_TYPE_VALUES = frozenset(et.value for et in EdgeType)


# =============================================================================
# LAYOUT DEFAULTS (Geometry)
# =============================================================================

class LayoutDefaults(msgspec.Struct, kw_only=True, frozen=True):
    """
    Geometry constants for node placement and branch endpoints.

    Coordinates are canvas units. Positive y grows downward, so "shift
    down" always means adding to y.
    """
    node_width: float = 300.0
    node_height: float = 90.0
    branch_edge_offset: float = 40.0       # Gap between node bottom and branch button
    ifelse_branch_offset: float = 65.0     # Horizontal offset of yes/no from center
    two_branch_spacing: float = 130.0      # Split-flow spacing with exactly 2 branches
    multi_branch_spacing: float = 120.0    # Split-flow spacing with 1 or 3+ branches
    vertical_spacing: float = 150.0        # Downstream shift on insert


DEFAULT_LAYOUT = LayoutDefaults()


def is_known_node_type(type_str: str) -> bool:
    """Check if a string names one of the built-in node types."""
    return type_str in {nt.value for nt in NodeType}


def is_valid_edge_type(type_str: str) -> bool:
    """Check if a string is a valid EdgeType value."""
    return type_str in EDGE_TYPE_VALUES
