"""
FLOWGRAPH MUTATION LOGGER - The Temporal Debugger

Records every graph mutation and command transition with timestamps so a
debugging session can replay what happened to a node.

Architecture:
- MutationLogger: Core logging interface
- EventBuffer: In-memory ring buffer for recent events
- attach(bus): feeds the logger from an EventBus

Usage:
    mutation_log = MutationLogger()
    mutation_log.attach(bus)

    ... run commands ...

    for event in mutation_log.get_node_timeline("node_123"):
        print(event["time"], event["type"])

Design:
- In-memory only: no file or network sinks
- Bounded: the ring buffer drops the oldest events first
- Thread-safe buffer access
"""
import msgspec
from typing import Optional, Dict, List, Any, Callable
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from collections import deque
import logging
import threading

from infrastructure.event_bus import (
    EventBus, EventType, GraphEvent, GRAPH_EVENT_TYPES, COMMAND_EVENT_TYPES,
)


logger = logging.getLogger("workflow.mutation_logger")


# =============================================================================
# EVENT TYPES
# =============================================================================

class MutationType(str, Enum):
    """Types of graph mutations for event tracking."""
    NODE_CREATED = "NODE_CREATED"
    NODE_UPDATED = "NODE_UPDATED"
    NODE_DELETED = "NODE_DELETED"
    EDGE_CREATED = "EDGE_CREATED"
    EDGE_UPDATED = "EDGE_UPDATED"
    EDGE_DELETED = "EDGE_DELETED"
    GRAPH_CLEARED = "GRAPH_CLEARED"
    COMMAND_EXECUTED = "COMMAND_EXECUTED"
    COMMAND_UNDONE = "COMMAND_UNDONE"
    COMMAND_REDONE = "COMMAND_REDONE"


class MutationEvent(msgspec.Struct, kw_only=True):
    """Individual mutation event for temporal debugging."""
    timestamp: str
    sequence: int
    mutation_type: str                  # MutationType value
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    fields: List[str] = msgspec.field(default_factory=list)

    # Source/target for edges
    edge_id: Optional[str] = None
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    edge_type: Optional[str] = None
    label: Optional[str] = None

    # Command history
    command: Optional[str] = None


_EVENT_TO_MUTATION: Dict[EventType, MutationType] = {
    EventType.NODE_CREATED: MutationType.NODE_CREATED,
    EventType.NODE_UPDATED: MutationType.NODE_UPDATED,
    EventType.NODE_DELETED: MutationType.NODE_DELETED,
    EventType.EDGE_CREATED: MutationType.EDGE_CREATED,
    EventType.EDGE_UPDATED: MutationType.EDGE_UPDATED,
    EventType.EDGE_DELETED: MutationType.EDGE_DELETED,
    EventType.GRAPH_CLEARED: MutationType.GRAPH_CLEARED,
    EventType.COMMAND_EXECUTED: MutationType.COMMAND_EXECUTED,
    EventType.COMMAND_UNDONE: MutationType.COMMAND_UNDONE,
    EventType.COMMAND_REDONE: MutationType.COMMAND_REDONE,
}


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LoggerConfig:
    """Configuration for the mutation logger."""
    buffer_size: int = 10000            # In-memory buffer size
    log_commands: bool = True           # Record command history transitions


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent mutation events.

    Provides O(1) append and O(n) query for filtering.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque[MutationEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: MutationEvent) -> None:
        """Add an event to the buffer."""
        with self._lock:
            self._buffer.append(event)

    def get_since(self, timestamp: str) -> List[MutationEvent]:
        """Get all events since a timestamp."""
        with self._lock:
            return [e for e in self._buffer if e.timestamp >= timestamp]

    def get_last(self, n: int) -> List[MutationEvent]:
        """Get the last n events."""
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if len(items) >= n else items

    def get_by_node(self, node_id: str) -> List[MutationEvent]:
        """Get all events touching a node, as the node or an edge endpoint."""
        with self._lock:
            return [
                e for e in self._buffer
                if node_id in (e.node_id, e.source_id, e.target_id)
            ]

    def get_by_type(self, mutation_type: str) -> List[MutationEvent]:
        """Get all events of a specific type."""
        with self._lock:
            return [e for e in self._buffer if e.mutation_type == mutation_type]

    def next_sequence(self) -> int:
        """Get next sequence number."""
        with self._lock:
            self._sequence += 1
            return self._sequence

    def clear(self) -> None:
        """Clear the buffer."""
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

class MutationLogger:
    """
    Main logging interface for graph mutations.

    Usage:
        mutation_log = MutationLogger()

        # Log events directly
        mutation_log.log_node_created("node_123", "action")

        # ... or let the event bus feed it
        mutation_log.attach(bus)

        # Query events
        events = mutation_log.get_events_for_node("node_123")
        recent = mutation_log.get_recent_events(100)
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()
        self._buffer = EventBuffer(self.config.buffer_size)
        self._subscribers: List[Callable[[MutationEvent], None]] = []
        self._bus: Optional[EventBus] = None

    @classmethod
    def from_config(cls, config: Any) -> "MutationLogger":
        """Build a logger from the `mutation_log` section of an EngineConfig."""
        return cls(config.mutation_log.to_logger_config())

    def _now(self) -> str:
        """Get current UTC timestamp."""
        return datetime.now(timezone.utc).isoformat()

    def _emit(self, event: MutationEvent) -> None:
        """Emit an event to the buffer and all subscribers."""
        self._buffer.append(event)

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Mutation subscriber error: {e}", exc_info=True)

    def _record(self, mutation_type: MutationType, **fields) -> MutationEvent:
        event = MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=mutation_type.value,
            **fields,
        )
        self._emit(event)
        return event

    # =========================================================================
    # LOGGING METHODS
    # =========================================================================

    def log_node_created(self, node_id: str, node_type: str) -> MutationEvent:
        """Log a node creation event."""
        return self._record(MutationType.NODE_CREATED, node_id=node_id, node_type=node_type)

    def log_node_updated(
        self,
        node_id: str,
        node_type: str,
        fields: Optional[List[str]] = None,
    ) -> MutationEvent:
        """Log a node update event."""
        return self._record(
            MutationType.NODE_UPDATED,
            node_id=node_id,
            node_type=node_type,
            fields=list(fields or []),
        )

    def log_node_deleted(self, node_id: str, node_type: str) -> MutationEvent:
        """Log a node deletion event."""
        return self._record(MutationType.NODE_DELETED, node_id=node_id, node_type=node_type)

    def log_edge_created(
        self,
        edge_id: str,
        source_id: str,
        target_id: str,
        edge_type: str,
        label: Optional[str] = None,
    ) -> MutationEvent:
        """Log an edge creation event."""
        return self._record(
            MutationType.EDGE_CREATED,
            edge_id=edge_id,
            source_id=source_id,
            target_id=target_id,
            edge_type=edge_type,
            label=label,
        )

    def log_edge_updated(
        self,
        edge_id: str,
        source_id: str,
        target_id: str,
        edge_type: str,
        label: Optional[str] = None,
    ) -> MutationEvent:
        """Log an edge update event."""
        return self._record(
            MutationType.EDGE_UPDATED,
            edge_id=edge_id,
            source_id=source_id,
            target_id=target_id,
            edge_type=edge_type,
            label=label,
        )

    def log_edge_deleted(
        self,
        edge_id: str,
        source_id: str,
        target_id: str,
        edge_type: str,
        label: Optional[str] = None,
    ) -> MutationEvent:
        """Log an edge deletion event."""
        return self._record(
            MutationType.EDGE_DELETED,
            edge_id=edge_id,
            source_id=source_id,
            target_id=target_id,
            edge_type=edge_type,
            label=label,
        )

    def log_graph_cleared(self) -> MutationEvent:
        return self._record(MutationType.GRAPH_CLEARED)

    def log_command(self, mutation_type: MutationType, command: str) -> MutationEvent:
        """Log a command history transition (executed, undone or redone)."""
        return self._record(mutation_type, command=command)

    # =========================================================================
    # EVENT BUS INTEGRATION
    # =========================================================================

    def handle_event(self, event: GraphEvent) -> Optional[MutationEvent]:
        """Translate a GraphEvent into a MutationEvent and record it."""
        mutation_type = _EVENT_TO_MUTATION.get(event.type)
        if mutation_type is None:
            return None

        payload = event.payload
        if event.type in COMMAND_EVENT_TYPES:
            if not self.config.log_commands:
                return None
            return self.log_command(mutation_type, payload.get("command", ""))

        if event.type == EventType.GRAPH_CLEARED:
            return self.log_graph_cleared()

        if "edge_id" in payload:
            return self._record(
                mutation_type,
                edge_id=payload["edge_id"],
                source_id=payload.get("source_id"),
                target_id=payload.get("target_id"),
                edge_type=payload.get("edge_type"),
                label=payload.get("label"),
            )

        return self._record(
            mutation_type,
            node_id=payload.get("node_id"),
            node_type=payload.get("node_type"),
            fields=list(payload.get("fields", [])),
        )

    def attach(self, bus: EventBus) -> None:
        """Subscribe to every graph and command event on `bus`."""
        if self._bus is not None:
            self.detach()
        bus.subscribe_many(GRAPH_EVENT_TYPES, self.handle_event)
        bus.subscribe_many(COMMAND_EVENT_TYPES, self.handle_event)
        self._bus = bus

    def detach(self) -> None:
        if self._bus is None:
            return
        for event_type in GRAPH_EVENT_TYPES + COMMAND_EVENT_TYPES:
            self._bus.unsubscribe(event_type, self.handle_event)
        self._bus = None

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        """Get the n most recent events."""
        return self._buffer.get_last(n)

    def get_events_since(self, timestamp: str) -> List[MutationEvent]:
        """Get all events since a timestamp."""
        return self._buffer.get_since(timestamp)

    def get_events_for_node(self, node_id: str) -> List[MutationEvent]:
        """Get all events for a specific node."""
        return self._buffer.get_by_node(node_id)

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        """Get all events of a specific type."""
        return self._buffer.get_by_type(mutation_type)

    def get_node_timeline(self, node_id: str) -> List[Dict[str, Any]]:
        """
        Get a timeline of mutations for a node.

        Returns a simplified list of mutations for debugging.
        """
        events = self.get_events_for_node(node_id)
        return [
            {
                "time": e.timestamp,
                "type": e.mutation_type,
                "edge_id": e.edge_id,
                "fields": e.fields,
            }
            for e in events
        ]

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        """Subscribe to mutation events."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        """Unsubscribe from mutation events."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)
