"""GMT (Gene Matrix Transposed) reading and writing.

GMT format: one gene set per tab-separated line,
``<name> <description> <feature1> <feature2> ... <featureN>``.
"""

from pathlib import Path

import polars as pl
import structlog

from multigsea.genesetdb import GeneSetDb, encode_gskey

logger = structlog.get_logger(__name__)


def read_gmt(
    file_path: Path | str,
    collection: str | None = None,
    as_polars: bool = True,
) -> GeneSetDb:
    """
    Load a GMT file into a GeneSetDb.

    Args:
        file_path: Path to GMT file
        collection: Collection name for the gene sets (default: file stem)
        as_polars: Container type for the GeneSetDb's table outputs

    Returns:
        GeneSetDb with one collection. The GMT description is kept as the
        ``description`` gene set column.

    Raises:
        FileNotFoundError: If file doesn't exist
        MalformedInputError: If the file holds no usable gene sets

    Notes:
        - Blank lines and lines starting with '#' are skipped
        - Lines with fewer than 3 fields, or no features, are skipped with a warning
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"GMT file not found: {file_path}")

    if collection is None:
        collection = file_path.stem

    names: list[str] = []
    descriptions: list[str] = []
    features: list[str] = []
    n_sets = 0

    with open(file_path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, start=1):
            line = line.rstrip("\r\n")
            if not line.strip() or line.startswith("#"):
                continue

            parts = line.split("\t")
            if len(parts) < 3:
                logger.warning(
                    "gmt_line_skipped",
                    line=line_num,
                    reason=f"expected at least 3 fields, got {len(parts)}",
                )
                continue

            name = parts[0].strip()
            genes = [g.strip() for g in parts[2:] if g.strip()]
            if not genes:
                logger.warning("gmt_line_skipped", line=line_num, reason=f"gene set '{name}' has no genes")
                continue

            names.extend([name] * len(genes))
            descriptions.extend([parts[1].strip()] * len(genes))
            features.extend(genes)
            n_sets += 1

    logger.info("gmt_loaded", path=str(file_path), collection=collection, n_genesets=n_sets)

    frame = pl.DataFrame(
        {
            "collection": [collection] * len(features),
            "name": names,
            "feature_id": features,
            "description": descriptions,
        },
        schema={
            "collection": pl.Utf8,
            "name": pl.Utf8,
            "feature_id": pl.Utf8,
            "description": pl.Utf8,
        },
    )
    return GeneSetDb(frame, geneset_columns=["description"], as_polars=as_polars)


def write_gmt(
    gdb: GeneSetDb,
    file_path: Path | str,
    active_only: bool | None = None,
) -> Path:
    """
    Write the gene sets of a GeneSetDb to a GMT file.

    Args:
        gdb: GeneSetDb to export
        file_path: Output path (parent directories are created)
        active_only: Only export active sets and their present features
            (default: True for conformed GeneSetDbs)

    Returns:
        Path to the written file

    Notes:
        - Names are written as ``collection;;name`` when the db holds more
          than one collection, since GMT has no collection field
        - The description field is the ``description`` gene set column when
          present, else the gene set URL, else empty
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    table = gdb.gene_sets(active_only=active_only, as_polars=True)
    gene_lists = gdb.to_dict(active_only=active_only)
    multi_collection = len(gdb.collections) > 1

    collections = table["collection"].to_list()
    names = table["name"].to_list()
    if "description" in table.columns:
        descriptions = table["description"].to_list()
    else:
        descriptions = gdb.geneset_url(collections, names)

    n_written = 0
    with open(file_path, "w", encoding="utf-8") as f:
        for collection, name, description in zip(collections, names, descriptions):
            genes = gene_lists.get(encode_gskey(collection, name), [])
            if not genes:
                continue
            label = encode_gskey(collection, name) if multi_collection else name
            f.write("\t".join([label, description or "", *genes]) + "\n")
            n_written += 1

    logger.info("gmt_written", path=str(file_path), n_genesets=n_written)
    return file_path
