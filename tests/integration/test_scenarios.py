"""
INTEGRATION TESTS - Editing Scenarios and Structural Properties

End-to-end checks of the graph, commands and command manager together:
- Round-trip: execute() then undo() restores the graph exactly
- Acyclicity: would_create_cycle agrees with an independent path search
- Single default edge after any sequence of insertions
- Sibling branches never shift on insert
- Deleting a node leaves no edge pointing at it
- The documented editing scenarios (insert, branch insert, delete, redo)
"""
import random
from collections import deque

import pytest

from core.schemas import NodeData, Position
from core.graph_db import WorkflowGraph
from core.commands import (
    AddNodeCommand,
    MoveNodeCommand,
    DeleteNodeCommand,
    UpdateNodeCommand,
    UpdateEdgeCommand,
    UpdateNodeHeightCommand,
    DuplicateNodeCommand,
)
from core.command_manager import CommandManager
from core.graph_invariants import GraphInvariants, assert_valid
from core.snapshot import clone_graph, graphs_equal
from infrastructure.event_bus import EventBus
from infrastructure.logger import MutationLogger


def _node(node_id, node_type="action", x=0.0, y=0.0, **kwargs):
    return NodeData(id=node_id, type=node_type, position=Position(x=x, y=y), **kwargs)


def _reaches(graph, start, goal):
    """Breadth-first search over the graph's public edge queries."""
    seen = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for edge in graph.get_outgoing_edges(current):
            if edge.target_id == goal:
                return True
            if edge.target_id not in seen:
                seen.add(edge.target_id)
                queue.append(edge.target_id)
    return False


@pytest.fixture
def workflow(registry):
    """
    T --default--> I(ifelse)
    I --yes--> X --default--> X2
    I --no-->  Z
    X2 --default--> END
    """
    graph = WorkflowGraph()
    graph.add_node(_node("T", "trigger", y=0))
    graph.add_node(_node("I", "ifelse", y=150, properties={"condition": "a > 1"}))
    graph.add_node(_node("X", x=-200, y=300))
    graph.add_node(_node("X2", x=-200, y=450))
    graph.add_node(_node("Z", x=200, y=300))
    graph.add_node(_node("END", y=600))
    graph.connect("T", "I")
    graph.connect("I", "X", "branch", "yes")
    graph.connect("I", "Z", "branch", "no")
    graph.connect("X", "X2")
    graph.connect("X2", "END")
    return graph


# =============================================================================
# ROUND-TRIP
# =============================================================================

COMMAND_BUILDERS = {
    "add_after_trigger": lambda g, r: AddNodeCommand(g, _node("N", y=150), "T", plugin_registry=r),
    "add_on_yes": lambda g, r: AddNodeCommand(
        g, _node("N", x=-200, y=300), "I", "branch", "yes", plugin_registry=r
    ),
    "add_ifelse_mid_chain": lambda g, r: AddNodeCommand(
        g, _node("N", "ifelse", x=-200, y=450), "X", plugin_registry=r
    ),
    "add_unconnected": lambda g, r: AddNodeCommand(g, _node("N", y=300)),
    "move": lambda g, r: MoveNodeCommand(g, "X", (-200, 300), (-250, 320)),
    "delete_middle": lambda g, r: DeleteNodeCommand(g, "X", plugin_registry=r),
    "delete_branch_node": lambda g, r: DeleteNodeCommand(g, "I", plugin_registry=r),
    "delete_leaf": lambda g, r: DeleteNodeCommand(g, "END", plugin_registry=r),
    "update_node": lambda g, r: UpdateNodeCommand(g, "I", {"title": "Check", "properties": {"condition": "b"}}),
    "update_edge": lambda g, r: UpdateEdgeCommand(g, "I_to_Z_branch_no", {"target_id": "END"}),
    "update_height": lambda g, r: UpdateNodeHeightCommand(g, "Z", 180),
    "duplicate": lambda g, r: DuplicateNodeCommand(g, "Z", id_factory=lambda: "Z-copy"),
}


@pytest.mark.parametrize("name", sorted(COMMAND_BUILDERS))
def test_execute_then_undo_restores_graph(workflow, registry, name):
    """
    Validate that every command's undo is the exact inverse of its execute.

    Verifies:
    - execute() succeeds on the sample workflow
    - undo() yields the same node ids, positions, properties and edge set
    """
    before = clone_graph(workflow)
    command = COMMAND_BUILDERS[name](workflow, registry)

    assert command.execute() is True
    assert not graphs_equal(workflow, before)
    assert command.undo() is True

    assert graphs_equal(workflow, before)


@pytest.mark.parametrize("name", sorted(COMMAND_BUILDERS))
def test_redo_reproduces_first_execution(workflow, registry, name):
    command = COMMAND_BUILDERS[name](workflow, registry)
    command.execute()
    after = clone_graph(workflow)
    command.undo()

    assert command.execute() is True

    assert graphs_equal(workflow, after)


# =============================================================================
# ACYCLICITY
# =============================================================================

def test_would_create_cycle_matches_path_search(workflow):
    """Validate would_create_cycle(a, b) == (a == b or path b -> a) for all pairs."""
    ids = workflow.get_node_ids()
    for a in ids:
        for b in ids:
            expected = a == b or _reaches(workflow, b, a)
            assert workflow.would_create_cycle(a, b) is expected, (a, b)


def test_has_path_matches_path_search(workflow):
    ids = workflow.get_node_ids()
    for a in ids:
        for b in ids:
            assert workflow.has_path(a, b) is _reaches(workflow, a, b), (a, b)


# =============================================================================
# SINGLE DEFAULT EDGE
# =============================================================================

@pytest.mark.parametrize("seed", range(5))
def test_random_insertions_keep_workflow_well_formed(registry, seed):
    """
    Validate structural invariants across random insertion sequences.

    Verifies:
    - No node ever has two default edges
    - Branch labels stay exclusive and the graph stays a DAG
    - Every insertion is undoable back to the previous graph
    """
    rng = random.Random(seed)
    graph = WorkflowGraph()
    manager = CommandManager()
    manager.execute_command(AddNodeCommand(graph, _node("n0", "trigger")))

    for i in range(1, 30):
        source = graph.get_node(rng.choice(graph.get_node_ids()))
        node_type = rng.choice(["action", "control", "ifelse", "splitflow"])
        new_node = _node(f"n{i}", node_type, x=source.position.x, y=source.position.y + 150)

        if source.type == "ifelse" and rng.random() < 0.7:
            command = AddNodeCommand(
                graph, new_node, source.id, "branch", rng.choice(["yes", "no"]), plugin_registry=registry
            )
        else:
            command = AddNodeCommand(graph, new_node, source.id, plugin_registry=registry)

        before = clone_graph(graph)
        assert manager.execute_command(command) is True
        assert GraphInvariants.validate_single_default_edge(graph) == []
        assert_valid(graph, registry)

        after = clone_graph(graph)
        manager.undo()
        assert graphs_equal(graph, before)
        manager.redo()
        assert graphs_equal(graph, after)

    assert graph.node_count == 30


# =============================================================================
# BRANCH EXCLUSIVITY
# =============================================================================

@pytest.mark.parametrize("y", [300, 200, 450])
def test_insert_on_no_never_shifts_yes_branch(workflow, registry, y):
    """Validate that inserting on "no" leaves nodes reachable only via "yes" in place."""
    yes_only = ["X", "X2", "END"]
    before = {nid: workflow.get_node(nid).position.y for nid in yes_only}

    AddNodeCommand(
        workflow, _node("N", x=200, y=y), "I", "branch", "no", plugin_registry=registry
    ).execute()

    assert {nid: workflow.get_node(nid).position.y for nid in yes_only} == before
    assert workflow.get_branch_edge("I", "no").target_id == "N"
    assert workflow.get_default_outgoing_edge("N").target_id == "Z"


# =============================================================================
# CASCADE ON DELETE
# =============================================================================

@pytest.mark.parametrize("node_id", ["T", "I", "X", "X2", "Z", "END"])
def test_delete_leaves_no_dangling_edges(workflow, registry, node_id):
    DeleteNodeCommand(workflow, node_id, plugin_registry=registry).execute()

    for edge in workflow.get_all_edges():
        assert node_id not in (edge.source_id, edge.target_id)
    assert workflow.verify_integrity() == (True, [])
    assert workflow.is_dag()


@pytest.mark.parametrize("node_id", ["T", "I", "X", "X2", "Z", "END"])
def test_remove_node_leaves_no_dangling_edges(workflow, node_id):
    workflow.remove_node(node_id)
    assert GraphInvariants.validate_index_maps(workflow) == []
    assert all(node_id not in (e.source_id, e.target_id) for e in workflow.get_all_edges())


# =============================================================================
# EDITING SCENARIOS
# =============================================================================

def test_insert_between_trigger_and_action(registry):
    """
    Insert a control step between a trigger and an action.

    Verifies:
    - T -> C -> A replaces T -> A
    - A moves down one vertical spacing (150 -> 300)
    """
    graph = WorkflowGraph()
    graph.add_node(_node("T", "trigger", y=0))
    graph.add_node(_node("A", "action", y=150))
    graph.connect("T", "A")

    command = AddNodeCommand(graph, _node("C", "control", y=150), "T", plugin_registry=registry)
    assert command.execute() is True

    edges = {(e.source_id, e.target_id, e.type) for e in graph.get_all_edges()}
    assert edges == {("T", "C", "default"), ("C", "A", "default")}
    assert graph.get_node("A").position.y == 300
    assert graph.get_node("C").position.y == 150


def test_insert_on_empty_sibling_branch(ifelse_graph, registry):
    """
    Add a step on the "no" branch of an if/else whose "yes" branch is in use.

    Verifies:
    - I --branch(no)--> Y is created
    - X and its descendants do not move
    """
    AddNodeCommand(
        ifelse_graph, _node("Y", x=200, y=300), "I", "branch", "no", plugin_registry=registry
    ).execute()

    edge = ifelse_graph.get_branch_edge("I", "no")
    assert (edge.target_id, edge.type) == ("Y", "branch")
    assert ifelse_graph.get_node("X").position.y == 300
    assert ifelse_graph.get_node("X2").position.y == 450


def test_delete_middle_of_chain_bridges(linear_graph, registry):
    """
    Delete A from T -> A -> B.

    Verifies:
    - T --default--> B is created
    - No edge references A
    """
    DeleteNodeCommand(linear_graph, "A", plugin_registry=registry).execute()

    assert [(e.source_id, e.target_id, e.type) for e in linear_graph.get_all_edges()] == [
        ("T", "B", "default"),
    ]


def test_undo_redo_equals_plain_execution(linear_graph, registry):
    """
    execute(cmd1); execute(cmd2); undo(); redo() == execute(cmd1); execute(cmd2)
    """
    def commands(graph):
        return [
            AddNodeCommand(graph, _node("C", "control", y=150), "T", plugin_registry=registry),
            AddNodeCommand(graph, _node("I", "ifelse", y=300), "C", plugin_registry=registry),
        ]

    reference = clone_graph(linear_graph)
    ref_manager = CommandManager()
    for command in commands(reference):
        ref_manager.execute_command(command)

    manager = CommandManager()
    for command in commands(linear_graph):
        manager.execute_command(command)
    assert manager.undo() is True
    assert manager.redo() is True

    assert graphs_equal(linear_graph, reference)
    assert linear_graph.get_branch_edge("I", "yes").target_id == "A"


def test_full_session_with_mutation_log(registry):
    """Validate a realistic editing session, replayed back to empty."""
    bus = EventBus()
    mutation_log = MutationLogger()
    mutation_log.attach(bus)
    graph = WorkflowGraph(event_bus=bus)
    manager = CommandManager(event_bus=bus)

    steps = [
        AddNodeCommand(graph, _node("T", "trigger")),
        AddNodeCommand(graph, _node("A", y=150), "T", plugin_registry=registry),
        AddNodeCommand(graph, _node("I", "ifelse", y=150), "T", plugin_registry=registry),
        AddNodeCommand(graph, _node("N", x=200, y=300), "I", "branch", "no", plugin_registry=registry),
        DeleteNodeCommand(graph, "A", plugin_registry=registry),
        DuplicateNodeCommand(graph, "N", id_factory=lambda: "N2"),
    ]
    for command in steps:
        assert manager.execute_command(command) is True

    assert graph.get_branch_edge("I", "no").target_id == "N"
    assert graph.get_branch_edge("I", "yes") is None
    assert "N2" in graph

    while manager.can_undo():
        assert manager.undo() is True

    assert graph.is_empty
    assert graph.edge_count == 0
    assert len(manager.history()) == len(steps)
    assert [e["type"] for e in mutation_log.get_node_timeline("A")][0] == "NODE_CREATED"
    assert mutation_log.get_events_by_type("COMMAND_UNDONE")


def test_chained_edge_updates_follow_rekeyed_ids(workflow):
    """
    Validate that successive edge updates address the edge by its current id.

    Verifies:
    - A re-targeted edge is re-keyed and frees its old connection
    - A second update on the new id undoes and redoes cleanly
    - The bridge maps agree with the graph throughout
    """
    before = clone_graph(workflow)
    manager = CommandManager()

    assert manager.execute_command(UpdateEdgeCommand(workflow, "I_to_Z_branch_no", {"target_id": "END"}))
    assert manager.execute_command(UpdateEdgeCommand(workflow, "I_to_END_branch_no", {"label": "maybe"}))
    after = clone_graph(workflow)

    assert workflow.get_branch_edge("I", "maybe").target_id == "END"
    assert workflow.connect("I", "Z", "branch", "no").target_id == "Z"
    assert workflow.remove_edge("I_to_Z_branch_no") is True
    assert GraphInvariants.validate_index_maps(workflow) == []

    assert manager.undo() and manager.undo()
    assert graphs_equal(workflow, before)
    assert GraphInvariants.validate_index_maps(workflow) == []

    assert manager.redo() and manager.redo()
    assert graphs_equal(workflow, after)
