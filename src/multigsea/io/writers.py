"""Dual-format TSV+Parquet writer for gene set tables with provenance sidecar."""

from datetime import datetime, timezone
from pathlib import Path

import polars as pl
import yaml

from multigsea import __version__
from multigsea.genesetdb import GeneSetDb


def write_gene_set_table(
    gdb: GeneSetDb,
    output_dir: Path,
    filename_base: str = "genesets",
    config_hash: str | None = None,
) -> dict:
    """
    Write the gene set table of a GeneSetDb to TSV and Parquet formats.

    Produces identical data in both formats for downstream tool compatibility.
    Generates a YAML provenance sidecar with statistics and metadata.

    Args:
        gdb: GeneSetDb whose gene set table is written (all sets, active or not)
        output_dir: Directory to write output files (created if doesn't exist)
        filename_base: Base filename without extension (default: "genesets")
        config_hash: Optional configuration hash recorded in the sidecar

    Returns:
        Dictionary with output file paths:
        {
            "tsv": Path to TSV file,
            "parquet": Path to Parquet file,
            "provenance": Path to YAML provenance sidecar
        }

    Notes:
        - Adds a ``url`` column from the collections' URL functions
        - Sorts by collection ASC, name ASC for deterministic output
        - Provenance YAML includes generated_at, statistics (gene set and
          active counts per collection) and column names
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    df = gdb.gene_sets(active_only=False, as_polars=True)
    urls = gdb.geneset_url(df["collection"].to_list(), df["name"].to_list())
    df = df.with_columns(pl.Series("url", urls, dtype=pl.Utf8)).sort(["collection", "name"])

    tsv_path = output_dir / f"{filename_base}.tsv"
    parquet_path = output_dir / f"{filename_base}.parquet"
    provenance_path = output_dir / f"{filename_base}.provenance.yaml"

    df.write_csv(tsv_path, separator="\t", include_header=True)
    df.write_parquet(parquet_path, compression="snappy", use_pyarrow=True)

    per_collection = (
        df.group_by("collection")
        .agg(pl.len().alias("genesets"), pl.col("active").sum().alias("active"))
        .sort("collection")
    )
    collections = {
        row["collection"]: {"genesets": row["genesets"], "active": row["active"]}
        for row in per_collection.to_dicts()
    }

    provenance = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "multigsea_version": __version__,
        "output_files": [tsv_path.name, parquet_path.name],
        "statistics": {
            "total_genesets": df.height,
            "active_genesets": int(df["active"].sum()),
            "conformed": gdb.is_conformed,
            "collections": collections,
        },
        "column_count": len(df.columns),
        "column_names": df.columns,
    }
    if config_hash is not None:
        provenance["config_hash"] = config_hash

    with open(provenance_path, "w") as f:
        yaml.dump(provenance, f, default_flow_style=False, sort_keys=False)

    return {
        "tsv": tsv_path,
        "parquet": parquet_path,
        "provenance": provenance_path,
    }
