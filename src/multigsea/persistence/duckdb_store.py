"""DuckDB-based checkpoint storage for GeneSetDb objects."""

import json
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import duckdb
import polars as pl
import structlog

from multigsea.genesetdb import CollectionMetadataStore, GeneSetDb, GeneSetStore
from multigsea.genesetdb.store import KEY_COLUMNS

if TYPE_CHECKING:
    from multigsea.config.schema import MultiGSEAConfig

logger = structlog.get_logger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class GeneSetDbStore:
    """
    DuckDB-based storage for GeneSetDb checkpoints.

    A GeneSetDb saved under ``name`` is stored as four tables:
    ``{name}_membership``, ``{name}_genesets``, ``{name}_metadata`` and
    ``{name}_universe`` (conform target ids, empty when unconformed).
    Metadata values are stored as JSON; callables such as
    ``url_function`` cannot be persisted and are skipped.
    """

    def __init__(self, db_path: Path):
        """
        Initialize GeneSetDbStore with a DuckDB database.

        Args:
            db_path: Path to DuckDB database file. Parent directories
                     are created automatically.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.conn = duckdb.connect(str(self.db_path))

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS _checkpoints (
                name VARCHAR PRIMARY KEY,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                n_genesets INTEGER,
                conformed BOOLEAN,
                description VARCHAR
            )
        """)

    def save(self, gdb: GeneSetDb, name: str, description: str = "") -> None:
        """
        Save a GeneSetDb, replacing any checkpoint with the same name.

        Args:
            gdb: GeneSetDb to save
            name: Checkpoint name (letters, digits and underscores)
            description: Optional description for checkpoint metadata
        """
        _check_name(name)

        membership = gdb._store.frame
        genesets = gdb._table
        metadata = _metadata_frame(gdb._metadata)
        universe = pl.DataFrame(
            {"feature_id": list(gdb.universe or ())},
            schema={"feature_id": pl.Utf8},
        )

        # DuckDB scans the local polars frame `df` by name
        for suffix, df in (
            ("membership", membership),
            ("genesets", genesets),
            ("metadata", metadata),
            ("universe", universe),
        ):
            self.conn.execute(f"CREATE OR REPLACE TABLE {name}_{suffix} AS SELECT * FROM df")

        self.conn.execute("""
            INSERT OR REPLACE INTO _checkpoints (name, n_genesets, conformed, description, created_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
        """, [name, len(gdb), gdb.is_conformed, description])

        logger.info("geneset_db_saved", name=name, n_genesets=len(gdb), path=str(self.db_path))

    def load(self, name: str, as_polars: bool = True) -> Optional[GeneSetDb]:
        """
        Load a saved GeneSetDb.

        Args:
            name: Checkpoint name
            as_polars: Container type for the restored GeneSetDb

        Returns:
            GeneSetDb, or None if the checkpoint doesn't exist
        """
        _check_name(name)
        if not self.has_checkpoint(name):
            return None

        membership = self.conn.execute(f"SELECT * FROM {name}_membership").pl()
        genesets = self.conn.execute(f"SELECT * FROM {name}_genesets").pl()
        metadata_rows = self.conn.execute(
            f"SELECT collection, variable, value FROM {name}_metadata"
        ).fetchall()
        universe = self.conn.execute(f"SELECT feature_id FROM {name}_universe").fetchall()
        conformed = self.conn.execute(
            "SELECT conformed FROM _checkpoints WHERE name = ?", [name]
        ).fetchone()[0]

        metadata = CollectionMetadataStore(genesets["collection"].unique(maintain_order=True))
        for collection, variable, value in metadata_rows:
            metadata.set(collection, variable, json.loads(value), allow_add=True)

        store = GeneSetStore(membership.sort(KEY_COLUMNS, maintain_order=True))
        gdb = GeneSetDb.from_parts(
            store,
            genesets.sort(KEY_COLUMNS, maintain_order=True),
            metadata,
            universe=[row[0] for row in universe] if conformed else None,
            as_polars=as_polars,
        )
        logger.info("geneset_db_loaded", name=name, n_genesets=len(gdb))
        return gdb

    def has_checkpoint(self, name: str) -> bool:
        """
        Check if a checkpoint exists.

        Args:
            name: Checkpoint name

        Returns:
            True if checkpoint exists, False otherwise
        """
        result = self.conn.execute(
            "SELECT COUNT(*) FROM _checkpoints WHERE name = ?",
            [name]
        ).fetchone()
        return result[0] > 0

    def list_checkpoints(self) -> list[dict]:
        """
        List all checkpoints with metadata.

        Returns:
            List of checkpoint metadata dicts with keys:
            name, created_at, n_genesets, conformed, description
        """
        result = self.conn.execute("""
            SELECT name, created_at, n_genesets, conformed, description
            FROM _checkpoints
            ORDER BY created_at DESC
        """).fetchall()

        return [
            {
                "name": row[0],
                "created_at": row[1],
                "n_genesets": row[2],
                "conformed": row[3],
                "description": row[4],
            }
            for row in result
        ]

    def delete_checkpoint(self, name: str) -> None:
        """
        Delete a checkpoint and its tables.

        Args:
            name: Checkpoint name
        """
        _check_name(name)
        for suffix in ("membership", "genesets", "metadata", "universe"):
            self.conn.execute(f"DROP TABLE IF EXISTS {name}_{suffix}")

        self.conn.execute(
            "DELETE FROM _checkpoints WHERE name = ?",
            [name]
        )

    def close(self) -> None:
        """Close the DuckDB connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes connection."""
        self.close()
        return False

    @classmethod
    def from_config(cls, config: "MultiGSEAConfig") -> "GeneSetDbStore":
        """
        Create GeneSetDbStore from a MultiGSEAConfig.

        Args:
            config: MultiGSEAConfig instance with ``duckdb_path`` set

        Returns:
            GeneSetDbStore instance
        """
        if config.duckdb_path is None:
            raise ValueError("duckdb_path is not set in the configuration")
        return cls(config.duckdb_path)


def _check_name(name: str) -> None:
    if not _NAME_PATTERN.match(name):
        raise ValueError(
            f"Invalid checkpoint name {name!r}: use letters, digits and underscores"
        )


def _metadata_frame(metadata: CollectionMetadataStore) -> pl.DataFrame:
    """JSON-encode persistable metadata values; callables are skipped."""
    rows: list[tuple[str, str, str]] = []
    skipped: list[str] = []
    for collection, variable, value in metadata.items():
        if value is None:
            continue
        encoded = _to_json(value)
        if encoded is None:
            skipped.append(f"{collection}/{variable}")
            continue
        rows.append((collection, variable, encoded))

    if skipped:
        logger.warning("metadata_not_persisted", entries=skipped)

    return pl.DataFrame(
        rows,
        schema={"collection": pl.Utf8, "variable": pl.Utf8, "value": pl.Utf8},
        orient="row",
    )


def _to_json(value: Any) -> str | None:
    if callable(value):
        return None
    try:
        return json.dumps(value)
    except TypeError:
        return None
