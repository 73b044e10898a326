"""Pydantic models for GeneSetDb and conform configuration."""

import hashlib
import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class ConformConfig(BaseModel):
    """Gene set size bounds applied when conforming to a feature universe."""

    min_gs_size: int = Field(
        default=1,
        ge=1,
        description="Minimum conformed gene set size for a set to stay active",
    )
    max_gs_size: int | None = Field(
        default=None,
        ge=1,
        description="Maximum conformed gene set size (None = unbounded)",
    )

    @model_validator(mode="after")
    def check_bounds(self) -> "ConformConfig":
        """Reject bounds where min_gs_size exceeds max_gs_size."""
        if self.max_gs_size is not None and self.min_gs_size > self.max_gs_size:
            raise ValueError(
                f"min_gs_size ({self.min_gs_size}) must be <= "
                f"max_gs_size ({self.max_gs_size})"
            )
        return self


class GeneSetDbConfig(BaseModel):
    """Construction options for GeneSetDb objects."""

    default_collection: str = Field(
        default="undefined",
        min_length=1,
        description="Collection name used for flat name -> features input",
    )
    geneset_columns: Literal["auto"] | list[str] | None = Field(
        default="auto",
        description=(
            "Annotation columns promoted to the gene set table: 'auto' detects "
            "columns constant within each set, a list names them, null disables"
        ),
    )
    table_format: Literal["polars", "pandas"] = Field(
        default="polars",
        description="Container type returned by table-valued GeneSetDb methods",
    )


class MultiGSEAConfig(BaseModel):
    """Top-level configuration used by the command line interface."""

    output_dir: Path = Field(
        default=Path("results"),
        description="Directory for gene set tables and GMT exports",
    )
    duckdb_path: Path | None = Field(
        default=None,
        description="DuckDB file for GeneSetDb checkpoints (None disables)",
    )
    genesetdb: GeneSetDbConfig = Field(
        default_factory=GeneSetDbConfig,
        description="GeneSetDb construction options",
    )
    conform: ConformConfig = Field(
        default_factory=ConformConfig,
        description="Conform size bounds",
    )

    def config_hash(self) -> str:
        """
        Compute SHA-256 hash of the configuration.

        Returns a deterministic hash based on all config values,
        useful for tracking which settings produced an output table.
        """
        config_dict = self.model_dump(mode="python")
        config_json = json.dumps(
            config_dict,
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(config_json.encode()).hexdigest()
