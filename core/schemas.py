"""
FLOWGRAPH SCHEMAS - The Grammar of a Workflow

If ontology.py is the Dictionary (the words we can use),
schemas.py is the Grammar (how a step and a connection are structured).

This module defines the data structures that flow through the graph:
- Position: canvas coordinates of a step
- NodeData: the payload attached to every graph node
- EdgeData: the payload attached to every graph edge
- Branch: a named outgoing path declared by a node-type plugin
- FlatStep & friends: the external flat workflow format
- Serialization helpers for the flat format

Design Principles:
1. STRICT TYPING: msgspec.Struct, no silent coercion of malformed input
2. KW_ONLY: node and edge payloads are built with keyword arguments
3. IMMUTABLE IDS: node ids never change; edge ids are derived, not random
4. OPAQUE PROPERTIES: the core merges `properties` but never reads into it
"""
import msgspec
from typing import Optional, Dict, Any, List
import uuid

from core.ontology import EdgeType, DEFAULT_LAYOUT


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def generate_id() -> str:
    """Generate a new UUID hex string for node ids."""
    return uuid.uuid4().hex


def make_edge_id(
    source_id: str,
    target_id: str,
    type: str = EdgeType.DEFAULT.value,
    label: Optional[str] = None,
) -> str:
    """
    Build the deterministic id of a connection.

    Re-creating the same logical connection (same endpoints, type and
    label) yields the same id, which keeps undo/redo idempotent.

    Example:
        make_edge_id("a", "b")                      -> "a_to_b_default"
        make_edge_id("if1", "x", "branch", "yes")   -> "if1_to_x_branch_yes"
    """
    edge_id = f"{source_id}_to_{target_id}_{type}"
    if label:
        edge_id += f"_{label}"
    return edge_id


# =============================================================================
# NODE DATA (The Core Graph Payload)
# =============================================================================

class Position(msgspec.Struct):
    """Canvas coordinates. Positive y grows downward."""
    x: float = 0.0
    y: float = 0.0

    def copy(self) -> "Position":
        """Return an independent copy (never alias live drag state)."""
        return Position(x=self.x, y=self.y)


class NodeData(msgspec.Struct, kw_only=True):
    """
    The payload attached to every node in the rustworkx graph.

    Architecture Notes:
    - `id`: business id (string), NOT the rustworkx integer index
    - `type`: node type name; resolved against the plugin registry
    - `properties`: opaque blob owned by the node-type plugin
    """
    # === Identity ===
    id: str
    type: str

    # === Layout ===
    position: Position = msgspec.field(default_factory=Position)
    height: float = DEFAULT_LAYOUT.node_height

    # === Display ===
    title: Optional[str] = None
    subtitle: Optional[str] = None

    # === Plugin-owned data ===
    properties: Dict[str, Any] = msgspec.field(default_factory=dict)

    # === UI hints (carried through, never interpreted) ===
    context_menu_config: Optional[Dict[str, Any]] = None

    @classmethod
    def create(
        cls,
        type: str,
        x: float = 0.0,
        y: float = 0.0,
        **kwargs
    ) -> "NodeData":
        """Factory method to create a new NodeData with optional custom ID."""
        node_id = kwargs.pop("id", None) or generate_id()
        position = kwargs.pop("position", None) or Position(x=x, y=y)
        return cls(id=node_id, type=type, position=position, **kwargs)


NODE_FIELDS = frozenset(NodeData.__struct_fields__)


# =============================================================================
# EDGE DATA (The Graph Relationship Payload)
# =============================================================================

class EdgeData(msgspec.Struct, kw_only=True):
    """
    The payload attached to every edge in the rustworkx graph.

    The source_id and target_id are business ids, not rustworkx indices.
    `label` carries the branch id for branch edges and is None otherwise.
    """
    id: str
    source_id: str
    target_id: str
    type: str = EdgeType.DEFAULT.value
    label: Optional[str] = None

    @property
    def is_branch(self) -> bool:
        return self.type == EdgeType.BRANCH.value

    @classmethod
    def create(
        cls,
        source_id: str,
        target_id: str,
        type: str = EdgeType.DEFAULT.value,
        label: Optional[str] = None,
    ) -> "EdgeData":
        """Factory method that derives the deterministic edge id."""
        return cls(
            id=make_edge_id(source_id, target_id, type, label),
            source_id=source_id,
            target_id=target_id,
            type=type,
            label=label,
        )


EDGE_FIELDS = frozenset(EdgeData.__struct_fields__)


class Branch(msgspec.Struct, frozen=True):
    """A named outgoing path of a branch-capable node (e.g. yes/no)."""
    id: str
    label: str = ""


# =============================================================================
# FLAT WORKFLOW FORMAT (External Persistence Boundary)
# =============================================================================

class ConnectionRef(msgspec.Struct, rename="camel"):
    """Pointer to the step a connection leads to."""
    target_node_id: Optional[str] = None


class OutgoingConnections(msgspec.Struct, rename="camel", omit_defaults=True):
    """The default continuation of a flat step."""
    default: Optional[ConnectionRef] = None


class FlatStep(msgspec.Struct, kw_only=True, rename="camel"):
    """
    One step of the flat workflow representation.

    Wire keys are camelCase (`outgoingConnections`, `branchConnections`,
    `targetNodeId`, ...). Unknown keys are ignored on decode.
    """
    id: str
    type: str
    position: Position = msgspec.field(default_factory=Position)
    height: Optional[float] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None
    context_menu_config: Optional[Dict[str, Any]] = None
    outgoing_connections: OutgoingConnections = msgspec.field(default_factory=OutgoingConnections)
    branch_connections: Dict[str, ConnectionRef] = msgspec.field(default_factory=dict)


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders, reused across the application

_json_encoder = msgspec.json.Encoder()
_step_list_decoder = msgspec.json.Decoder(type=List[FlatStep])


def encode_flat_steps(steps: List[FlatStep]) -> bytes:
    """Serialize flat steps to JSON bytes."""
    return _json_encoder.encode(steps)


def decode_flat_steps(data: bytes) -> List[FlatStep]:
    """
    Deserialize JSON bytes to flat steps.

    Raises:
        msgspec.ValidationError / msgspec.DecodeError on malformed input
    """
    return _step_list_decoder.decode(data)


def convert_flat_steps(steps: List[Any]) -> List[FlatStep]:
    """
    Convert plain dicts (or already-typed FlatStep values) to FlatStep.

    Raises:
        msgspec.ValidationError on malformed input
    """
    return [
        step if isinstance(step, FlatStep) else msgspec.convert(step, type=FlatStep)
        for step in steps
    ]
