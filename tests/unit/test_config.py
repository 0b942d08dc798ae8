"""Unit tests for configuration management."""

import json
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

import pytest

from fhirval.config import (
    CONFIG_FILE_NAME,
    FhirvalConfig,
    PipelineConfig,
    ReferencePolicy,
    SchemaConfig,
    ValidationMode,
    create_default_config,
    find_config_file,
    load_config,
)


class TestSectionModels:
    """Test individual configuration sections."""

    def test_pipeline_defaults(self):
        """Test default pipeline section."""
        config = PipelineConfig()
        assert config.mode == ValidationMode.STANDARD
        assert config.fhir_version == "R4"
        assert config.schema_version == "4.0.1"

    def test_pipeline_aliases(self):
        """Test camelCase keys populate the pipeline section."""
        config = PipelineConfig(**{"fhirVersion": "R5", "mode": "debug"})
        assert config.fhir_version == "R5"
        assert config.mode == "debug"

    def test_invalid_fhir_version(self):
        """Test unsupported FHIR versions are rejected."""
        with pytest.raises(ValueError, match="fhirVersion must be one of"):
            PipelineConfig(fhirVersion="DSTU2")

    @pytest.mark.parametrize("depth", [0, 33])
    def test_max_depth_bounds(self, depth):
        """Test schema depth outside 1..32 is rejected."""
        with pytest.raises(ValueError):
            SchemaConfig(maxDepth=depth)


class TestFhirvalConfig:
    """Test complete FhirvalConfig model."""

    def test_minimal_config(self):
        """Test all sections have defaults."""
        config = FhirvalConfig()
        assert config.pipeline.mode == ValidationMode.STANDARD
        assert config.schema_.max_depth == 8
        assert config.schema_.definitions_path is None
        assert config.references.policy == ReferencePolicy.IN_BUNDLE_ONLY
        assert config.lint.enabled is True
        assert config.logging.level == "warn"

    def test_config_from_dict(self):
        """Test config creation from dictionary."""
        config_data = {
            "pipeline": {"mode": "full", "fhirVersion": "R4B"},
            "schema": {"maxDepth": 4, "definitionsPath": "defs.json"},
            "references": {"policy": "AllowExternal"},
            "lint": {"enabled": False},
            "logging": {"level": "debug"},
        }

        config = FhirvalConfig(**config_data)
        assert config.pipeline.mode == "full"
        assert config.pipeline.fhir_version == "R4B"
        assert config.schema_.max_depth == 4
        assert config.schema_.definitions_path == "defs.json"
        assert config.references.policy == "AllowExternal"
        assert config.lint.enabled is False
        assert config.logging.level == "debug"

    def test_config_validation_error(self):
        """Test config validation error handling."""
        with pytest.raises(ValueError):
            FhirvalConfig(pipeline={"mode": "exhaustive"})

    def test_config_extra_fields_forbidden(self):
        """Test that extra fields are rejected."""
        with pytest.raises(ValueError):
            FhirvalConfig(invalid_field="should-fail")


class TestConfigFileOperations:
    """Test configuration file loading and discovery."""

    def test_load_config_with_file(self):
        """Test loading config from existing file."""
        with TemporaryDirectory() as temp_dir:
            config_file = Path(temp_dir) / CONFIG_FILE_NAME
            with open(config_file, "w") as f:
                json.dump({"pipeline": {"mode": "debug"}, "references": {"policy": "AllowExternal"}}, f)

            config = load_config(config_file)
            assert config.pipeline.mode == "debug"
            assert config.references.policy == "AllowExternal"

    def test_load_config_file_not_found(self):
        """Test loading config when file doesn't exist."""
        with TemporaryDirectory() as temp_dir:
            config = load_config(Path(temp_dir) / "nonexistent.json")
            # Should return default config
            assert config.pipeline.mode == ValidationMode.STANDARD

    def test_load_config_invalid_json(self):
        """Test loading config with invalid JSON."""
        with TemporaryDirectory() as temp_dir:
            config_file = Path(temp_dir) / CONFIG_FILE_NAME
            config_file.write_text("{invalid json")

            with pytest.raises(ValueError, match="Invalid JSON"):
                load_config(config_file)

    def test_load_config_invalid_structure(self):
        """Test loading config with invalid structure."""
        with TemporaryDirectory() as temp_dir:
            config_file = Path(temp_dir) / CONFIG_FILE_NAME
            config_file.write_text(json.dumps({"invalid": "structure"}))

            with pytest.raises(ValueError, match="Failed to load config"):
                load_config(config_file)

    def test_find_config_file_parent_dir(self):
        """Test finding config file in parent directory."""
        with TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            config_file = temp_path / CONFIG_FILE_NAME
            config_file.touch()

            sub_dir = temp_path / "a" / "b"
            sub_dir.mkdir(parents=True)

            assert find_config_file(sub_dir) == config_file.resolve()

    def test_zero_config_operation(self):
        """Test zero-config operation with defaults."""
        with patch("fhirval.config.find_config_file", return_value=None):
            config = load_config()
            assert config == create_default_config()
