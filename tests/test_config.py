"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from multigsea.config import load_config, load_config_with_overrides
from multigsea.config.schema import ConformConfig, GeneSetDbConfig, MultiGSEAConfig


def test_load_valid_config():
    """Test loading valid default configuration."""
    config = load_config("config/default.yaml")

    assert isinstance(config, MultiGSEAConfig)
    assert config.output_dir == Path("results")
    assert config.duckdb_path == Path("results/genesets.duckdb")
    assert config.genesetdb.geneset_columns == "auto"
    assert config.conform.min_gs_size == 2
    assert config.conform.max_gs_size == 500


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_empty_config_gives_defaults(tmp_path):
    """An empty file means all defaults."""
    config_path = tmp_path / "empty.yaml"
    config_path.write_text("")

    config = load_config(config_path)

    assert config == MultiGSEAConfig()
    assert config.duckdb_path is None
    assert config.conform.max_gs_size is None


def test_explicit_geneset_columns(tmp_path):
    config_path = tmp_path / "columns.yaml"
    config_path.write_text("""
genesetdb:
  geneset_columns:
    - description
    - source
  table_format: pandas
""")

    config = load_config(config_path)

    assert config.genesetdb.geneset_columns == ["description", "source"]
    assert config.genesetdb.table_format == "pandas"


def test_invalid_min_gs_size(tmp_path):
    """Test that min_gs_size < 1 raises ValidationError."""
    config_path = tmp_path / "invalid.yaml"
    config_path.write_text("""
conform:
  min_gs_size: 0
""")

    with pytest.raises(ValidationError) as exc_info:
        load_config(config_path)

    assert "min_gs_size" in str(exc_info.value)


def test_min_above_max_rejected():
    with pytest.raises(ValidationError, match="must be <="):
        ConformConfig(min_gs_size=10, max_gs_size=5)


def test_invalid_table_format():
    with pytest.raises(ValidationError):
        GeneSetDbConfig(table_format="arrow")


def test_config_hash_deterministic():
    """Same config gives the same hash; a changed value changes it."""
    config1 = load_config("config/default.yaml")
    config2 = load_config("config/default.yaml")
    config3 = load_config_with_overrides("config/default.yaml", {"conform.min_gs_size": 5})

    assert config1.config_hash() == config2.config_hash()
    assert config1.config_hash() != config3.config_hash()
    assert len(config1.config_hash()) == 64


def test_overrides_dotted_and_none():
    """Dotted keys address nested fields and None values are skipped."""
    config = load_config_with_overrides(
        None,
        {
            "output_dir": "out",
            "conform.max_gs_size": 50,
            "conform.min_gs_size": None,
        },
    )

    assert config.output_dir == Path("out")
    assert config.conform.max_gs_size == 50
    assert config.conform.min_gs_size == 1


def test_overrides_are_validated():
    with pytest.raises(ValidationError):
        load_config_with_overrides(None, {"conform.min_gs_size": 10, "conform.max_gs_size": 2})
