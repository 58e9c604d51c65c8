"""
FLOWGRAPH CONFIG - Engine Configuration

Layout constants and engine limits are read once from
config/workflow_graph.toml and handed to the components that need them.

Usage:
    from infrastructure.config import load_engine_config

    config = load_engine_config()
    manager = CommandManager.from_config(config, event_bus=bus)
    mutation_log = MutationLogger.from_config(config)
    cmd = AddNodeCommand(graph, node, layout=config.layout)

A missing or broken file never stops the engine: the loader warns and
falls back to the defaults.
"""
import msgspec
from typing import Optional, Dict, Any, Union
from pathlib import Path
import tomllib
import warnings

from core.ontology import LayoutDefaults
from infrastructure.logger import LoggerConfig


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "workflow_graph.toml"

# Layout section of the config file
LayoutConfig = LayoutDefaults


class HistoryConfig(msgspec.Struct, kw_only=True, frozen=True):
    max_history: int = 0                # 0 = unbounded


class MutationLogConfig(msgspec.Struct, kw_only=True, frozen=True):
    buffer_size: int = 10000
    log_commands: bool = True

    def to_logger_config(self) -> LoggerConfig:
        return LoggerConfig(buffer_size=self.buffer_size, log_commands=self.log_commands)


class EngineConfig(msgspec.Struct, kw_only=True, frozen=True):
    """All engine settings, one struct per TOML section."""
    layout: LayoutConfig = msgspec.field(default_factory=LayoutConfig)
    history: HistoryConfig = msgspec.field(default_factory=HistoryConfig)
    mutation_log: MutationLogConfig = msgspec.field(default_factory=MutationLogConfig)


# =============================================================================
# LOADING
# =============================================================================

def load_toml_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load the raw configuration dict from TOML.

    Returns:
        Dict with all configuration sections ({} if the file is unusable)
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        warnings.warn(f"Failed to load config from TOML: {e}")
        return {}


def load_engine_config(
    path: Optional[Union[str, Path]] = None,
    config_dict: Optional[Dict[str, Any]] = None,
) -> EngineConfig:
    """
    Build an EngineConfig from TOML (or an already-loaded dict).

    Unknown sections and keys are ignored. Values of the wrong type make
    the whole config fall back to defaults, with a warning.
    """
    if config_dict is None:
        config_dict = load_toml_config(path)

    try:
        return msgspec.convert(config_dict, type=EngineConfig)
    except msgspec.ValidationError as e:
        warnings.warn(f"Invalid engine config, using defaults: {e}")
        return EngineConfig()
