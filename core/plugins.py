"""
FLOWGRAPH PLUGINS - Node Type Metadata

Node types are not hard-coded into the engine. A plugin registry maps a
node type name to a plugin that knows:
- which branches a node of that type offers (static or from properties)
- the property schema shown in the property panel
- the initial properties of a freshly created node

The engine only reads from the registry. Anything exposing
`get_node_type(type)` works; plugins are duck-typed, and every method is
optional (`get_branches`, `get_property_schema`, `get_initial_properties`).
"""
from typing import Any, Callable, Dict, List, Optional
import copy
import logging

import msgspec

from core.ontology import NodeType, BranchId
from core.schemas import Branch


logger = logging.getLogger("workflow.plugins")


class PropertyDefinition(msgspec.Struct, kw_only=True):
    """One editable property of a node type."""
    id: str
    type: str = "text"
    label: str = ""
    description: str = ""
    default_value: Any = None
    required: bool = False


# =============================================================================
# NODE TYPE PLUGIN
# =============================================================================

class NodeTypePlugin:
    """
    Metadata for one node type.

    Branches are either static (`branches`) or derived from a node's
    properties by `branches_from_properties`.
    """

    def __init__(
        self,
        type: str,
        name: str = "",
        description: str = "",
        branches: Optional[List[Branch]] = None,
        branches_from_properties: Optional[Callable[[Dict[str, Any]], List[Branch]]] = None,
        property_schema: Optional[List[PropertyDefinition]] = None,
        initial_properties: Optional[Dict[str, Any]] = None,
    ):
        if not type:
            raise ValueError("Plugin must have a type")
        self.type = type
        self.name = name or type
        self.description = description
        self.branches = list(branches or [])
        self.branches_from_properties = branches_from_properties
        self.property_schema = list(property_schema or [])
        self.initial_properties = dict(initial_properties or {})

    def get_branches(self, properties: Optional[Dict[str, Any]] = None) -> List[Branch]:
        if self.branches_from_properties is not None and properties is not None:
            return list(self.branches_from_properties(properties))
        return list(self.branches)

    def has_multiple_branches(self, properties: Optional[Dict[str, Any]] = None) -> bool:
        return len(self.get_branches(properties)) > 1

    def get_property_schema(self) -> List[PropertyDefinition]:
        return list(self.property_schema)

    def get_initial_properties(self) -> Dict[str, Any]:
        """A fresh copy of the initial properties for a new node."""
        return copy.deepcopy(self.initial_properties)

    def __repr__(self) -> str:
        return f"NodeTypePlugin(type={self.type!r})"


# =============================================================================
# REGISTRY
# =============================================================================

class PluginRegistry:
    """
    Central lookup of node type plugins.

    Usage:
        registry = PluginRegistry()
        registry.register_node_type(NodeTypePlugin(type="webhook"))
        registry.get_node_type("webhook")
    """

    def __init__(self):
        self._node_types: Dict[str, Any] = {}

    def register_node_type(self, plugin: Any) -> "PluginRegistry":
        """Register (or override) a plugin. Returns self for chaining."""
        plugin_type = getattr(plugin, "type", None)
        if not plugin_type:
            raise ValueError("Plugin must have a type")
        if plugin_type in self._node_types:
            logger.warning(f"Node type '{plugin_type}' is already registered. Overriding.")
        self._node_types[plugin_type] = plugin
        return self

    def register_node_types(self, plugins: List[Any]) -> "PluginRegistry":
        for plugin in plugins:
            self.register_node_type(plugin)
        return self

    def get_node_type(self, type: str) -> Optional[Any]:
        return self._node_types.get(type)

    def get_all_node_types(self) -> List[Any]:
        return list(self._node_types.values())

    def __contains__(self, type: str) -> bool:
        return type in self._node_types

    def __len__(self) -> int:
        return len(self._node_types)


# =============================================================================
# BUILT-IN PLUGINS
# =============================================================================

def split_branch_values(properties: Dict[str, Any]) -> List[Branch]:
    """
    Split-flow branches from the comma-separated `branchValues` property.

    "Fred, Jane" -> [path1 "Fred", path2 "Jane"]. Blank entries are
    skipped. An unset or blank value yields no branches.
    """
    raw = properties.get("branchValues")
    if isinstance(raw, str):
        values = [v.strip() for v in raw.split(",")]
    elif isinstance(raw, (list, tuple)):
        values = [str(v).strip() for v in raw]
    else:
        values = []
    values = [v for v in values if v]
    return [Branch(id=f"path{i}", label=value) for i, value in enumerate(values, start=1)]


def create_builtin_plugins() -> List[NodeTypePlugin]:
    """The plugins for the built-in node types."""
    title = PropertyDefinition(id="title", label="Title", required=True)
    subtitle = PropertyDefinition(id="subtitle", label="Subtitle")

    return [
        NodeTypePlugin(
            type=NodeType.TRIGGER.value,
            name="Trigger",
            description="Starts the workflow",
            property_schema=[title, subtitle],
            initial_properties={"title": "Trigger", "subtitle": "When this happens"},
        ),
        NodeTypePlugin(
            type=NodeType.CONTROL.value,
            name="Control",
            description="Delays or waits before continuing",
            property_schema=[
                title,
                PropertyDefinition(id="delay", type="number", label="Delay", default_value=0),
            ],
            initial_properties={"title": "Wait", "delay": 0},
        ),
        NodeTypePlugin(
            type=NodeType.ACTION.value,
            name="Action",
            description="Performs an operation",
            property_schema=[title, subtitle],
            initial_properties={"title": "Action", "subtitle": "Do something"},
        ),
        NodeTypePlugin(
            type=NodeType.IFELSE.value,
            name="If/Else",
            description="Splits the flow on a condition",
            branches=[Branch(id=BranchId.YES, label="Yes"), Branch(id=BranchId.NO, label="No")],
            property_schema=[
                title,
                PropertyDefinition(id="condition", label="Condition", required=True),
            ],
            initial_properties={"title": "If/Else", "condition": ""},
        ),
        NodeTypePlugin(
            type=NodeType.SPLITFLOW.value,
            name="Split flow",
            description="Splits the flow on an attribute value",
            branches_from_properties=split_branch_values,
            property_schema=[
                title,
                PropertyDefinition(id="splitAttribute", label="Split attribute", required=True),
                PropertyDefinition(
                    id="branchValues",
                    label="Branch Values",
                    description="Comma-separated list of branch values",
                    required=True,
                ),
            ],
            initial_properties={"title": "Split flow", "splitAttribute": "first_name", "branchValues": ""},
        ),
    ]


def create_default_registry() -> PluginRegistry:
    """A registry with every built-in node type registered."""
    return PluginRegistry().register_node_types(create_builtin_plugins())
