"""Load gene set definitions and feature universes from files."""

from pathlib import Path

import polars as pl
import structlog

from multigsea.config.schema import GeneSetDbConfig
from multigsea.errors import MalformedInputError
from multigsea.genesetdb import GeneSetDb
from multigsea.io.gmt import read_gmt

logger = structlog.get_logger(__name__)

_SEPARATORS = {".tsv": "\t", ".txt": "\t", ".csv": ","}


def read_gene_sets(
    file_path: Path | str,
    config: GeneSetDbConfig | None = None,
    collection: str | None = None,
) -> GeneSetDb:
    """Load a GeneSetDb from a GMT, delimited text or Parquet file.

    Args:
        file_path: ``.gmt`` file, or a ``.tsv``/``.txt``/``.csv``/``.parquet``
            membership table with collection, name and feature_id columns
        config: GeneSetDb construction options (defaults when None)
        collection: Collection name for GMT files and tables without a
            collection column

    Returns:
        GeneSetDb

    Raises:
        FileNotFoundError: If file doesn't exist
        MalformedInputError: If the file type is not supported
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Gene set file not found: {file_path}")
    config = config or GeneSetDbConfig()

    suffix = file_path.suffix.lower()
    if suffix == ".gmt":
        return read_gmt(
            file_path,
            collection=collection,
            as_polars=config.table_format == "polars",
        )
    if suffix == ".parquet":
        frame = pl.read_parquet(file_path)
    elif suffix in _SEPARATORS:
        frame = pl.read_csv(
            file_path,
            separator=_SEPARATORS[suffix],
            has_header=True,
            infer_schema_length=0,
        )
    else:
        raise MalformedInputError("Unsupported gene set file type", details=suffix or file_path.name)

    if collection is not None:
        config = config.model_copy(update={"default_collection": collection})
    logger.info("gene_set_table_loaded", path=str(file_path), n_rows=frame.height)
    return GeneSetDb.from_config(frame, config)


def read_universe(file_path: Path | str, id_column: str = "feature_id") -> list[str]:
    """Load conform target identifiers.

    Delimited files (``.tsv``, ``.csv``) must have a header with
    ``id_column``. Any other file is read as one identifier per line.

    Raises:
        FileNotFoundError: If file doesn't exist
        MalformedInputError: If ``id_column`` is missing from a delimited file
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Universe file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix in (".tsv", ".csv"):
        frame = pl.read_csv(
            file_path,
            separator=_SEPARATORS[suffix],
            has_header=True,
            infer_schema_length=0,
        )
        if id_column not in frame.columns:
            raise MalformedInputError(
                "Universe file has no identifier column", details=id_column
            )
        ids = frame[id_column].drop_nulls().to_list()
    else:
        with open(file_path, "r", encoding="utf-8") as f:
            ids = [line.strip() for line in f if line.strip() and not line.startswith("#")]

    logger.info("universe_loaded", path=str(file_path), n_features=len(ids))
    return ids
