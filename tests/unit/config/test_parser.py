"""Tests for ccfg.config.parser module."""

from pathlib import Path

import pytest
import yaml

from ccfg.config.parser import (
    ConfigError,
    load_json,
    load_registry_file,
    load_settings,
    load_tool_config,
    load_yaml,
)


class TestLoadJson:
    """Tests for load_json function."""

    def test_loads_valid_json(self, temp_dir: Path):
        """Loads valid JSON file."""
        file_path = temp_dir / "test.json"
        file_path.write_text('{"key": "value"}')

        result = load_json(file_path)

        assert result == {"key": "value"}

    def test_raises_for_missing_file(self, temp_dir: Path):
        """Raises ConfigError for missing file."""
        with pytest.raises(ConfigError, match="File not found"):
            load_json(temp_dir / "nonexistent.json")

    def test_raises_for_invalid_json(self, temp_dir: Path):
        """Raises ConfigError for invalid JSON."""
        file_path = temp_dir / "invalid.json"
        file_path.write_text("not valid json {")

        with pytest.raises(ConfigError, match="Invalid JSON") as exc_info:
            load_json(file_path)
        assert exc_info.value.path == file_path

    def test_raises_for_non_object_root(self, temp_dir: Path):
        """A JSON array at the root is rejected."""
        file_path = temp_dir / "list.json"
        file_path.write_text("[1, 2, 3]")

        with pytest.raises(ConfigError, match="must contain an object"):
            load_json(file_path)


class TestLoadYaml:
    """Tests for load_yaml function."""

    def test_loads_valid_yaml(self, temp_dir: Path):
        """Loads valid YAML file."""
        file_path = temp_dir / "test.yaml"
        file_path.write_text(yaml.dump({"key": "value", "items": [1, 2]}))

        assert load_yaml(file_path) == {"key": "value", "items": [1, 2]}

    def test_empty_yaml_is_empty_dict(self, temp_dir: Path):
        """An empty YAML file parses as an empty mapping."""
        file_path = temp_dir / "empty.yaml"
        file_path.write_text("")

        assert load_yaml(file_path) == {}

    def test_raises_for_invalid_yaml(self, temp_dir: Path):
        """Raises ConfigError for invalid YAML."""
        file_path = temp_dir / "invalid.yaml"
        file_path.write_text("key: [unclosed")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_yaml(file_path)

    def test_raises_for_non_mapping(self, temp_dir: Path):
        """A YAML list at the root is rejected."""
        file_path = temp_dir / "list.yaml"
        file_path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_yaml(file_path)


class TestLoadSettings:
    """Tests for load_settings function."""

    def test_missing_file_is_empty(self, temp_dir: Path):
        """A missing settings file is an empty document."""
        assert load_settings(temp_dir / "settings.json") == {}

    def test_empty_file_is_empty(self, temp_dir: Path):
        """A zero-byte settings file is an empty document."""
        file_path = temp_dir / "settings.json"
        file_path.write_text("")

        assert load_settings(file_path) == {}

    def test_loads_existing_document(self, temp_dir: Path):
        """Existing keys are returned untouched."""
        file_path = temp_dir / "settings.json"
        file_path.write_text('{"model": "opus", "enabledPlugins": {"a@b": false}}')

        assert load_settings(file_path) == {"model": "opus", "enabledPlugins": {"a@b": False}}

    def test_invalid_document_raises(self, temp_dir: Path):
        """A corrupt settings file is a ConfigError, not an empty document."""
        file_path = temp_dir / "settings.json"
        file_path.write_text("{broken")

        with pytest.raises(ConfigError):
            load_settings(file_path)


class TestLoadToolConfig:
    """Tests for load_tool_config function."""

    def test_missing_file_gives_defaults(self, temp_dir: Path):
        """Defaults are used when ccfg.yaml does not exist."""
        config = load_tool_config(temp_dir / "ccfg.yaml")

        assert config.backup_keep == 10
        assert config.install_timeout == 60.0
        assert config.claude_command == "claude"
        assert config.backup_dir is None

    def test_relative_paths_resolve_against_config_dir(self, temp_dir: Path):
        """Relative paths are relative to the config file."""
        file_path = temp_dir / "ccfg.yaml"
        file_path.write_text("backup_dir: backups\nregistry_file: extra/plugins.yaml\n")

        config = load_tool_config(file_path)

        assert config.backup_dir == temp_dir / "backups"
        assert config.registry_file == temp_dir / "extra" / "plugins.yaml"

    def test_absolute_paths_kept(self, temp_dir: Path):
        """Absolute paths are used as given."""
        target = temp_dir / "elsewhere"
        file_path = temp_dir / "ccfg.yaml"
        file_path.write_text(f"backup_dir: {target}\n")

        assert load_tool_config(file_path).backup_dir == target

    def test_invalid_values_raise(self, temp_dir: Path):
        """Schema violations are reported as ConfigError."""
        file_path = temp_dir / "ccfg.yaml"
        file_path.write_text("backup_keep: 0\n")

        with pytest.raises(ConfigError, match="Invalid tool config"):
            load_tool_config(file_path)


class TestLoadRegistryFile:
    """Tests for load_registry_file function."""

    def test_loads_table(self, temp_dir: Path):
        """Loads a minimal registry table."""
        file_path = temp_dir / "plugins.yaml"
        file_path.write_text(
            yaml.dump(
                {
                    "marketplaces": {"official": None},
                    "plugins": [
                        {"id": "official/a", "tier": "auto", "category": "general", "marketplace": "official"}
                    ],
                }
            )
        )

        table = load_registry_file(file_path)

        assert [p.id for p in table.plugins] == ["official/a"]

    def test_invalid_table_raises(self, temp_dir: Path):
        """An entry with an unknown marketplace is rejected."""
        file_path = temp_dir / "plugins.yaml"
        file_path.write_text(
            yaml.dump(
                {
                    "marketplaces": {},
                    "plugins": [{"id": "x/a", "tier": "auto", "category": "general", "marketplace": "nope"}],
                }
            )
        )

        with pytest.raises(ConfigError, match="Invalid registry file"):
            load_registry_file(file_path)
