"""
Lightweight event bus for decoupled workflow change notifications.

Follows publisher-subscriber pattern so debug tooling can watch the graph
and the command history without the engine knowing who is listening.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Injected, never a process-wide singleton
- Synchronous delivery (the engine is single-threaded)
- Type-safe events via msgspec
- Subscriber failures are logged, never propagated into the engine

Architecture:
    WorkflowGraph / CommandManager -> EventBus -> [MutationLogger, GraphObserver, ...]

Usage:
    bus = EventBus()
    graph = WorkflowGraph(event_bus=bus)
    manager = CommandManager(event_bus=bus)

    def on_node_created(event: GraphEvent):
        print(f"Node created: {event.payload['node_id']}")

    bus.subscribe(EventType.NODE_CREATED, on_node_created)
"""
from typing import Callable, List, Dict, Any, Optional
from enum import Enum
import msgspec
from collections import defaultdict
import logging
import time


logger = logging.getLogger("workflow.event_bus")


class EventType(str, Enum):
    """Types of events published by the graph and the command layer."""
    NODE_CREATED = "node_created"
    NODE_UPDATED = "node_updated"
    NODE_DELETED = "node_deleted"
    EDGE_CREATED = "edge_created"
    EDGE_UPDATED = "edge_updated"
    EDGE_DELETED = "edge_deleted"
    GRAPH_CLEARED = "graph_cleared"
    # Command history events
    COMMAND_EXECUTED = "command_executed"
    COMMAND_UNDONE = "command_undone"
    COMMAND_REDONE = "command_redone"


GRAPH_EVENT_TYPES = (
    EventType.NODE_CREATED,
    EventType.NODE_UPDATED,
    EventType.NODE_DELETED,
    EventType.EDGE_CREATED,
    EventType.EDGE_UPDATED,
    EventType.EDGE_DELETED,
    EventType.GRAPH_CLEARED,
)

COMMAND_EVENT_TYPES = (
    EventType.COMMAND_EXECUTED,
    EventType.COMMAND_UNDONE,
    EventType.COMMAND_REDONE,
)


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    Event emitted when the workflow changes.

    Attributes:
        type: Type of event (NODE_CREATED, COMMAND_EXECUTED, etc.)
        payload: Event-specific data (node_id, edge_id, command name, ...)
        timestamp: Unix timestamp when event occurred
        source: Source of event ("graph", "command_manager")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


def make_event(event_type: EventType, payload: Dict[str, Any], source: str) -> GraphEvent:
    """Build a GraphEvent stamped with the current time."""
    return GraphEvent(
        type=event_type,
        payload=payload,
        timestamp=time.time(),
        source=source,
    )


class EventBus:
    """
    Event bus for workflow change notifications.

    Thread Safety:
        NOT thread-safe. Use external locking if needed for concurrent access.

    Performance:
        - O(1) event publishing
        - O(n) notification per event type (where n = subscriber count)
    """

    def __init__(self):
        """Initialize empty subscriber lists."""
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Callable[[GraphEvent], None]):
        """
        Subscribe to events with a synchronous handler.

        Subscribing the same handler twice is a no-op.

        Example:
            bus.subscribe(EventType.NODE_CREATED, on_node_created)
        """
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed handler to {event_type.value}")

    def subscribe_many(self, event_types, handler: Callable[[GraphEvent], None]):
        """Subscribe one handler to several event types."""
        for event_type in event_types:
            self.subscribe(event_type, handler)

    def publish(self, event: GraphEvent):
        """
        Publish an event to all subscribers.

        Note:
            - Handlers run immediately, in subscription order
            - Exceptions in handlers are logged but don't propagate
        """
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )

        # Copy so a handler may unsubscribe itself
        for handler in list(self._subscribers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in handler for {event.type.value}: {e}",
                    exc_info=True
                )

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """
        Unsubscribe from events.

        Args:
            event_type: Type of event to unsubscribe from
            handler: Handler to remove (must be same instance)
        """
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed handler from {event_type.value}")

    def clear_subscribers(self, event_type: Optional[EventType] = None):
        """
        Clear all subscribers for an event type (or all types).

        Warning:
            This is primarily for testing.
        """
        if event_type is None:
            self._subscribers.clear()
            logger.info("Cleared all event subscribers")
        else:
            self._subscribers[event_type].clear()
            logger.info(f"Cleared subscribers for {event_type.value}")

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """Get count of subscribers for an event type (None = all types)."""
        if event_type is None:
            return sum(len(handlers) for handlers in self._subscribers.values())
        return len(self._subscribers[event_type])


# =============================================================================
# OBSERVER ADAPTER
# =============================================================================

class GraphObserver:
    """
    Callback-style adapter over an EventBus.

    Wraps two plain callables so debug tooling can watch the engine
    without subscribing to every event type by hand:

        observer = GraphObserver(
            on_graph_mutated=lambda e: print(e.type, e.payload),
            on_command_executed=lambda e: print(e.payload["command"]),
        )
        observer.attach(bus)
        ...
        observer.detach()

    `on_command_executed` receives executed, undone and redone events;
    inspect `event.type` to tell them apart.
    """

    def __init__(
        self,
        on_graph_mutated: Optional[Callable[[GraphEvent], None]] = None,
        on_command_executed: Optional[Callable[[GraphEvent], None]] = None,
    ):
        self.on_graph_mutated = on_graph_mutated
        self.on_command_executed = on_command_executed
        self._bus: Optional[EventBus] = None

    def _handle_graph(self, event: GraphEvent) -> None:
        if self.on_graph_mutated is not None:
            self.on_graph_mutated(event)

    def _handle_command(self, event: GraphEvent) -> None:
        if self.on_command_executed is not None:
            self.on_command_executed(event)

    @property
    def attached(self) -> bool:
        return self._bus is not None

    def attach(self, bus: EventBus) -> None:
        """Start receiving events from `bus` (detaches from any previous bus)."""
        if self._bus is not None:
            self.detach()
        bus.subscribe_many(GRAPH_EVENT_TYPES, self._handle_graph)
        bus.subscribe_many(COMMAND_EVENT_TYPES, self._handle_command)
        self._bus = bus

    def detach(self) -> None:
        if self._bus is None:
            return
        for event_type in GRAPH_EVENT_TYPES:
            self._bus.unsubscribe(event_type, self._handle_graph)
        for event_type in COMMAND_EVENT_TYPES:
            self._bus.unsubscribe(event_type, self._handle_command)
        self._bus = None
