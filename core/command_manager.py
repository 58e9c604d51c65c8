"""
FLOWGRAPH COMMAND MANAGER - Undo/Redo Coordinator

The sole mutation gateway of the editor. Callers build a Command, hand it
to execute_command(), and replay history with undo()/redo().

Invariant: the undo stack followed by the reversed redo stack is the full
history, and each successful undo/redo moves exactly one command between
the two stacks. A failed undo/redo leaves both stacks untouched.
"""
from typing import Any, Callable, List, Optional
import logging

import msgspec

from core.commands import Command
from infrastructure.event_bus import EventBus, EventType, make_event


logger = logging.getLogger("workflow.command_manager")


class HistoryState(msgspec.Struct, frozen=True):
    """What listeners receive after every successful history change."""
    can_undo: bool
    can_redo: bool


class CommandManager:
    """
    Undo/redo stacks over Command objects.

    Usage:
        manager = CommandManager()
        manager.add_listener(lambda state: toolbar.update(state.can_undo, state.can_redo))

        manager.execute_command(AddNodeCommand(graph, node, source_node_id="t"))
        manager.undo()
        manager.redo()

    Args:
        event_bus: Optional bus receiving COMMAND_EXECUTED/UNDONE/REDONE
        max_history: Optional bound on the undo stack; the oldest commands
            are dropped first
    """

    def __init__(self, event_bus: Optional[EventBus] = None, max_history: Optional[int] = None):
        self._undo_stack: List[Command] = []
        self._redo_stack: List[Command] = []
        self._listeners: List[Callable[[HistoryState], None]] = []
        self._event_bus = event_bus
        self.max_history = max_history if max_history and max_history > 0 else None

        self.last_executed_command: Optional[Command] = None
        self.last_undone_command: Optional[Command] = None
        self.operation_sequence = 0

    @classmethod
    def from_config(cls, config: Any, event_bus: Optional[EventBus] = None) -> "CommandManager":
        """Build a manager from an EngineConfig; `history.max_history` of 0 means unbounded."""
        return cls(event_bus=event_bus, max_history=config.history.max_history)

    # =========================================================================
    # HISTORY OPERATIONS
    # =========================================================================

    def execute_command(self, command: Command) -> bool:
        """
        Execute a command and push it onto the undo stack.

        On success the redo stack is cleared. A failed command is not
        recorded.
        """
        self.operation_sequence += 1
        command.operation_sequence = self.operation_sequence

        if not command.execute():
            logger.warning(f"Command failed: {command.describe()} (seq {self.operation_sequence})")
            return False

        self._undo_stack.append(command)
        if self.max_history is not None and len(self._undo_stack) > self.max_history:
            dropped = self._undo_stack.pop(0)
            logger.debug(f"History limit reached, dropped {dropped.describe()}")

        self._redo_stack.clear()
        self.last_executed_command = command

        logger.debug(f"Executed {command.describe()} (seq {self.operation_sequence})")
        self._after_change(EventType.COMMAND_EXECUTED, command)
        return True

    def undo(self) -> bool:
        """Undo the most recent command. False if there is none or it fails."""
        if not self._undo_stack:
            return False

        command = self._undo_stack.pop()
        logger.debug(f"Undoing {command.describe()}")

        if not command.undo():
            # Failed undo keeps its place
            self._undo_stack.append(command)
            logger.warning(f"Undo failed: {command.describe()}")
            return False

        self._redo_stack.append(command)
        self.last_undone_command = command
        self._after_change(EventType.COMMAND_UNDONE, command)
        return True

    def redo(self) -> bool:
        """Re-execute the most recently undone command."""
        if not self._redo_stack:
            return False

        command = self._redo_stack.pop()
        logger.debug(f"Redoing {command.describe()}")

        if not command.execute():
            self._redo_stack.append(command)
            logger.warning(f"Redo failed: {command.describe()}")
            return False

        self._undo_stack.append(command)
        self.last_executed_command = command
        self._after_change(EventType.COMMAND_REDONE, command)
        return True

    def can_undo(self) -> bool:
        return len(self._undo_stack) > 0

    def can_redo(self) -> bool:
        return len(self._redo_stack) > 0

    def history(self) -> List[Command]:
        """Full history, oldest first: the undo stack then the reversed redo stack."""
        return self._undo_stack + self._redo_stack[::-1]

    @property
    def undo_stack(self) -> List[Command]:
        return list(self._undo_stack)

    @property
    def redo_stack(self) -> List[Command]:
        return list(self._redo_stack)

    def clear(self) -> None:
        """Forget all history. The graph is not touched."""
        self._undo_stack.clear()
        self._redo_stack.clear()
        self.last_executed_command = None
        self.last_undone_command = None
        self._notify_listeners()

    # =========================================================================
    # LISTENERS & EVENTS
    # =========================================================================

    def add_listener(self, listener: Callable[[HistoryState], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[HistoryState], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def state(self) -> HistoryState:
        return HistoryState(can_undo=self.can_undo(), can_redo=self.can_redo())

    def _notify_listeners(self) -> None:
        state = self.state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"History listener error: {e}", exc_info=True)

    def _after_change(self, event_type: EventType, command: Command) -> None:
        self._notify_listeners()
        if self._event_bus is None:
            return
        try:
            self._event_bus.publish(make_event(
                event_type,
                {
                    "command": command.name,
                    "description": command.describe(),
                    "sequence": getattr(command, "operation_sequence", None),
                    "can_undo": self.can_undo(),
                    "can_redo": self.can_redo(),
                },
                source="command_manager",
            ))
        except Exception:
            logger.exception(f"Failed to publish {event_type.value}")

    def __repr__(self) -> str:
        return f"CommandManager(undo={len(self._undo_stack)}, redo={len(self._redo_stack)})"
