"""
Unit tests for infrastructure/config.py - TOML-backed engine configuration.
"""
import pytest

from core.command_manager import CommandManager
from core.commands import AddNodeCommand, MoveNodeCommand
from core.ontology import DEFAULT_LAYOUT
from core.schemas import NodeData
from infrastructure.config import (
    DEFAULT_CONFIG_PATH,
    EngineConfig,
    load_engine_config,
    load_toml_config,
)
from infrastructure.logger import LoggerConfig, MutationLogger


def test_shipped_config_matches_defaults():
    """Validate that config/workflow_graph.toml loads and mirrors the built-in defaults."""
    assert DEFAULT_CONFIG_PATH.exists()

    config = load_engine_config()

    assert config.layout == DEFAULT_LAYOUT
    assert config.history.max_history == 0
    assert config.mutation_log.buffer_size == 10000
    assert config.mutation_log.log_commands is True


def test_partial_file_keeps_other_defaults(tmp_path):
    path = tmp_path / "engine.toml"
    path.write_text("[layout]\nvertical_spacing = 200\n\n[history]\nmax_history = 50\n")

    config = load_engine_config(path)

    assert config.layout.vertical_spacing == 200
    assert config.layout.node_width == DEFAULT_LAYOUT.node_width
    assert config.history.max_history == 50
    assert config.mutation_log.buffer_size == 10000


def test_unknown_keys_ignored():
    config = load_engine_config(config_dict={"layout": {"colour": "red"}, "extra": {}})
    assert config == EngineConfig()


def test_missing_file_warns_and_falls_back(tmp_path):
    with pytest.warns(UserWarning, match="Failed to load config"):
        raw = load_toml_config(tmp_path / "missing.toml")
    assert raw == {}

    with pytest.warns(UserWarning):
        config = load_engine_config(tmp_path / "missing.toml")
    assert config == EngineConfig()


def test_broken_toml_warns(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[layout\nnode_width = ")

    with pytest.warns(UserWarning):
        assert load_toml_config(path) == {}


def test_wrong_type_falls_back_to_defaults():
    with pytest.warns(UserWarning, match="Invalid engine config"):
        config = load_engine_config(config_dict={"history": {"max_history": "lots"}})
    assert config.history.max_history == 0


def test_mutation_log_section_builds_logger_config():
    config = load_engine_config(config_dict={"mutation_log": {"buffer_size": 5, "log_commands": False}})

    logger_config = config.mutation_log.to_logger_config()

    assert logger_config == LoggerConfig(buffer_size=5, log_commands=False)


# =============================================================================
# FACTORY TESTS
# =============================================================================

def test_command_manager_from_config_bounds_history(linear_graph):
    """
    Validate that the history section reaches the CommandManager.

    Verifies:
    - max_history bounds the undo stack, oldest dropped first
    - 0 leaves the history unbounded
    """
    config = load_engine_config(config_dict={"history": {"max_history": 2}})
    manager = CommandManager.from_config(config)

    for y in (160, 170, 180):
        manager.execute_command(MoveNodeCommand(linear_graph, "A", (0, y - 10), (0, y)))

    assert manager.max_history == 2
    assert len(manager.history()) == 2
    assert CommandManager.from_config(EngineConfig()).max_history is None


def test_mutation_logger_from_config():
    config = load_engine_config(config_dict={"mutation_log": {"buffer_size": 2, "log_commands": False}})

    mutation_log = MutationLogger.from_config(config)
    for i in range(3):
        mutation_log.log_node_created(f"n{i}", "action")

    assert mutation_log.config == LoggerConfig(buffer_size=2, log_commands=False)
    assert [e.node_id for e in mutation_log.get_recent_events()] == ["n1", "n2"]


def test_layout_section_reaches_add_node(linear_graph):
    """Validate that AddNodeCommand shifts downstream nodes by the configured spacing."""
    config = load_engine_config(config_dict={"layout": {"vertical_spacing": 200}})

    cmd = AddNodeCommand(linear_graph, NodeData(id="N", type="action"), "T", layout=config.layout)

    assert cmd.execute() is True
    assert cmd.vertical_spacing == 200
    assert linear_graph.get_node("A").position.y == 350
