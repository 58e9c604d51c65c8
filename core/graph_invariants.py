"""
FLOWGRAPH GRAPH INVARIANTS - Structural Integrity Report

The graph store accepts any edge between existing nodes; the command
layer is what keeps a workflow well-formed. This module checks, on
demand, that it did.

Invariants Implemented:
1. Single Default Edge: a node has at most one outgoing default edge
2. Branch Exclusivity: at most one branch edge per (source, label)
3. Labeled Branches: every branch edge carries a label
4. No Dangling Edges: every edge references existing endpoints
5. Acyclicity: the workflow is a DAG
6. Index Maps: id -> index bridge maps agree with the stored graph
7. Declared Branches (warning): branch labels match the plugin's branches

Design Philosophy:
- These are STRUCTURAL constraints, not business rules on properties
- Reporting never mutates the graph
- assert_valid() is the only place a violation becomes an exception
"""
from typing import List, Dict, Any
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from core.ontology import EdgeType
from core.graph_db import WorkflowGraph, GraphInvariantError
from core.branch_topology import get_node_branches


# =============================================================================
# INVARIANT RESULTS
# =============================================================================

class InvariantSeverity(Enum):
    """Severity levels for invariant violations."""
    ERROR = "error"      # The workflow is structurally broken
    WARNING = "warning"  # Should be investigated


@dataclass
class InvariantViolation:
    """A specific invariant violation."""
    invariant: str
    severity: InvariantSeverity
    message: str
    nodes_involved: List[str] = field(default_factory=list)
    edges_involved: List[str] = field(default_factory=list)   # Edge ids


@dataclass
class InvariantReport:
    """Complete invariant validation report."""
    valid: bool
    violations: List[InvariantViolation]
    metrics: Dict[str, Any]

    @property
    def errors(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.ERROR]

    @property
    def warnings(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.WARNING]

    def by_invariant(self, name: str) -> List[InvariantViolation]:
        return [v for v in self.violations if v.invariant == name]


# =============================================================================
# GRAPH INVARIANTS
# =============================================================================

class GraphInvariants:
    """
    Structural validators over a WorkflowGraph.

    Each validator returns the violations it found (empty when the
    invariant holds).
    """

    @staticmethod
    def validate_single_default_edge(graph: WorkflowGraph) -> List[InvariantViolation]:
        violations = []
        for node in graph.get_all_nodes():
            defaults = [
                e for e in graph.get_outgoing_edges(node.id)
                if e.type == EdgeType.DEFAULT.value
            ]
            if len(defaults) > 1:
                violations.append(InvariantViolation(
                    invariant="single_default_edge",
                    severity=InvariantSeverity.ERROR,
                    message=f"Node {node.id} has {len(defaults)} default edges",
                    nodes_involved=[node.id],
                    edges_involved=[e.id for e in defaults],
                ))
        return violations

    @staticmethod
    def validate_branch_exclusivity(graph: WorkflowGraph) -> List[InvariantViolation]:
        violations = []
        for node in graph.get_all_nodes():
            branch_edges = graph.get_branch_outgoing_edges(node.id)
            counts = Counter(e.label for e in branch_edges if e.label)
            for label, count in counts.items():
                if count > 1:
                    violations.append(InvariantViolation(
                        invariant="branch_exclusivity",
                        severity=InvariantSeverity.ERROR,
                        message=f"Node {node.id} has {count} edges on branch '{label}'",
                        nodes_involved=[node.id],
                        edges_involved=[e.id for e in branch_edges if e.label == label],
                    ))
        return violations

    @staticmethod
    def validate_branch_labels(graph: WorkflowGraph) -> List[InvariantViolation]:
        unlabeled = [
            e for e in graph.get_all_edges()
            if e.type == EdgeType.BRANCH.value and not e.label
        ]
        if not unlabeled:
            return []
        return [InvariantViolation(
            invariant="branch_labels",
            severity=InvariantSeverity.ERROR,
            message=f"{len(unlabeled)} branch edge(s) without a label",
            edges_involved=[e.id for e in unlabeled],
        )]

    @staticmethod
    def validate_no_dangling_edges(graph: WorkflowGraph) -> List[InvariantViolation]:
        is_valid, errors = graph.verify_integrity()
        return [
            InvariantViolation(
                invariant="no_dangling_edges",
                severity=InvariantSeverity.ERROR,
                message=message,
            )
            for message in errors
        ]

    @staticmethod
    def validate_dag_acyclicity(graph: WorkflowGraph) -> List[InvariantViolation]:
        if graph.is_dag():
            return []
        cycle_nodes = graph.get_cycle_nodes()
        return [InvariantViolation(
            invariant="dag_acyclicity",
            severity=InvariantSeverity.ERROR,
            message=f"Cycle detected involving {len(cycle_nodes)} nodes",
            nodes_involved=cycle_nodes,
        )]

    @staticmethod
    def validate_index_maps(graph: WorkflowGraph) -> List[InvariantViolation]:
        """
        Index Maps: the id -> index bridge agrees with the stored graph.

        Catches a map left stale by a re-keyed or re-seated edge.
        """
        ok, errors = graph.verify_index_maps()
        if ok:
            return []
        return [
            InvariantViolation(
                invariant="index_maps",
                severity=InvariantSeverity.ERROR,
                message=message,
            )
            for message in errors
        ]

    @staticmethod
    def validate_declared_branches(
        graph: WorkflowGraph,
        plugin_registry: Any,
    ) -> List[InvariantViolation]:
        """Branch edge labels that the node's plugin does not declare."""
        violations = []
        for node in graph.get_all_nodes():
            declared = {b.id for b in get_node_branches(node, plugin_registry)}
            if not declared:
                continue
            for edge in graph.get_branch_outgoing_edges(node.id):
                if edge.label and edge.label not in declared:
                    violations.append(InvariantViolation(
                        invariant="declared_branches",
                        severity=InvariantSeverity.WARNING,
                        message=f"Node {node.id} has no branch '{edge.label}'",
                        nodes_involved=[node.id],
                        edges_involved=[edge.id],
                    ))
        return violations

    @staticmethod
    def compute_metrics(graph: WorkflowGraph) -> Dict[str, Any]:
        edges = graph.get_all_edges()
        node_ids = graph.get_node_ids()
        return {
            "node_count": graph.node_count,
            "edge_count": graph.edge_count,
            "default_edges": sum(1 for e in edges if e.type == EdgeType.DEFAULT.value),
            "branch_edges": sum(1 for e in edges if e.type == EdgeType.BRANCH.value),
            "roots": [nid for nid in node_ids if not graph.get_incoming_edges(nid)],
            "leaves": [nid for nid in node_ids if not graph.get_outgoing_edges(nid)],
            "is_dag": graph.is_dag(),
        }

    @staticmethod
    def validate_all(
        graph: WorkflowGraph,
        plugin_registry: Any = None,
    ) -> InvariantReport:
        """Run every validator and collect the results."""
        violations: List[InvariantViolation] = []
        violations.extend(GraphInvariants.validate_single_default_edge(graph))
        violations.extend(GraphInvariants.validate_branch_exclusivity(graph))
        violations.extend(GraphInvariants.validate_branch_labels(graph))
        violations.extend(GraphInvariants.validate_no_dangling_edges(graph))
        violations.extend(GraphInvariants.validate_dag_acyclicity(graph))
        violations.extend(GraphInvariants.validate_index_maps(graph))
        if plugin_registry is not None:
            violations.extend(GraphInvariants.validate_declared_branches(graph, plugin_registry))

        return InvariantReport(
            valid=not any(v.severity == InvariantSeverity.ERROR for v in violations),
            violations=violations,
            metrics=GraphInvariants.compute_metrics(graph),
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def validate_graph(graph: WorkflowGraph, plugin_registry: Any = None) -> InvariantReport:
    """Convenience function for full validation."""
    return GraphInvariants.validate_all(graph, plugin_registry)


def assert_valid(graph: WorkflowGraph, plugin_registry: Any = None) -> InvariantReport:
    """
    Validate and raise on any error-level violation.

    Raises:
        GraphInvariantError: carrying the violations
    """
    report = validate_graph(graph, plugin_registry)
    if not report.valid:
        summary = "; ".join(v.message for v in report.errors)
        raise GraphInvariantError(f"Graph invariants violated: {summary}", report.errors)
    return report
