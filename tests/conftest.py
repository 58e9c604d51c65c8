"""
Pytest configuration and shared fixtures for the workflow engine test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def make_node(node_id, node_type="action", x=0.0, y=0.0, **kwargs):
    """Build a NodeData with a fixed id (shared by fixtures and tests)."""
    from core.schemas import NodeData, Position
    return NodeData(id=node_id, type=node_type, position=Position(x=x, y=y), **kwargs)


@pytest.fixture
def node_factory():
    """Provide the make_node helper."""
    return make_node


@pytest.fixture
def fresh_graph():
    """Provide an empty WorkflowGraph."""
    from core.graph_db import WorkflowGraph
    return WorkflowGraph()


@pytest.fixture
def registry():
    """Provide a plugin registry with the built-in node types."""
    from core.plugins import create_default_registry
    return create_default_registry()


@pytest.fixture
def event_bus():
    """Provide a fresh EventBus."""
    from infrastructure.event_bus import EventBus
    return EventBus()


@pytest.fixture
def linear_graph(fresh_graph):
    """
    T(trigger)@0 --default--> A(action)@150 --default--> B(action)@300
    """
    fresh_graph.add_node(make_node("T", "trigger", y=0))
    fresh_graph.add_node(make_node("A", "action", y=150))
    fresh_graph.add_node(make_node("B", "action", y=300))
    fresh_graph.connect("T", "A")
    fresh_graph.connect("A", "B")
    return fresh_graph


@pytest.fixture
def ifelse_graph(fresh_graph):
    """
    T --default--> I(ifelse)
    I --branch(yes)--> X --default--> X2
    """
    fresh_graph.add_node(make_node("T", "trigger", y=0))
    fresh_graph.add_node(make_node("I", "ifelse", y=150))
    fresh_graph.add_node(make_node("X", "action", x=-200, y=300))
    fresh_graph.add_node(make_node("X2", "action", x=-200, y=450))
    fresh_graph.connect("T", "I")
    fresh_graph.connect("I", "X", "branch", "yes")
    fresh_graph.connect("X", "X2")
    return fresh_graph


@pytest.fixture
def sample_steps():
    """Flat workflow steps in the external camelCase format."""
    return [
        {
            "id": "trigger-1",
            "type": "trigger",
            "title": "Contact created",
            "position": {"x": 100, "y": 0},
            "height": 90,
            "properties": {"source": "crm"},
            "outgoingConnections": {"default": {"targetNodeId": "if-1"}},
        },
        {
            "id": "if-1",
            "type": "ifelse",
            "title": "Has email?",
            "position": {"x": 100, "y": 150},
            "properties": {"condition": "email != ''"},
            "branchConnections": {
                "yes": {"targetNodeId": "action-1"},
                "no": {"targetNodeId": "missing-step"},
            },
        },
        {
            "id": "action-1",
            "type": "action",
            "title": "Send email",
            "position": {"x": 0, "y": 300},
            "properties": {},
            "outgoingConnections": {},
        },
    ]
