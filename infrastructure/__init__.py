"""
FLOWGRAPH INFRASTRUCTURE - Observability and Configuration

This package contains infrastructure components:
- event_bus: injectable pub/sub for graph and command events
- logger: in-memory mutation log fed by the event bus
- config: TOML-backed engine configuration
- diagnostics: graph dumps and polars table views (import directly)
"""

from infrastructure.event_bus import EventBus, EventType, GraphEvent, GraphObserver
from infrastructure.logger import MutationLogger, MutationEvent, MutationType, LoggerConfig
from infrastructure.config import EngineConfig, load_engine_config, load_toml_config

__all__ = [
    "EventBus",
    "EventType",
    "GraphEvent",
    "GraphObserver",
    "MutationLogger",
    "MutationEvent",
    "MutationType",
    "LoggerConfig",
    "EngineConfig",
    "load_engine_config",
    "load_toml_config",
]
