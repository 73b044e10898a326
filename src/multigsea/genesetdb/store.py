"""Normalized long-form gene set membership storage.

Every supported input shape (flat table, collection -> name -> features
mapping, name -> features mapping) is funnelled into a single polars
frame with one row per (collection, name, feature_id) triple plus any
extra per-row annotation columns.

Rows are stably sorted by (collection, name) so that each gene set
occupies a contiguous block; an offset index keyed by (collection, name)
gives constant-time set lookups.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import polars as pl
import structlog

from multigsea.errors import MalformedInputError
from multigsea.genesetdb.keys import encode_gskey

try:
    import pandas as pd
    HAS_PANDAS = True
except ImportError:
    HAS_PANDAS = False

logger = structlog.get_logger(__name__)

KEY_COLUMNS = ["collection", "name"]
MEMBER_COLUMNS = ["collection", "name", "feature_id"]

# Per-row position into a conform target; only present on conformed stores
FEATURE_IDX_COLUMN = "feature_idx"

# Gene set table columns owned by GeneSetDb; never promoted from membership
TABLE_COLUMNS = ["collection", "name", "active", "n", "n_conformed"]

DEFAULT_COLLECTION = "undefined"

GeneSetKey = tuple[str, str]


class GeneSetStore:
    """Membership table of (collection, name, feature_id) rows.

    The constructor expects an already normalized frame (key columns
    first, deduplicated, sorted by collection and name). Use
    ``from_frame``, ``from_nested``, ``from_flat`` or ``build_store`` for
    raw input.
    """

    def __init__(self, frame: pl.DataFrame):
        self._frame = frame
        self._index = _build_index(frame)

    # -- constructors -----------------------------------------------------

    @classmethod
    def from_frame(
        cls,
        df: "pl.DataFrame | pd.DataFrame",
        collection: str | None = None,
    ) -> "GeneSetStore":
        """Build a store from a flat membership table.

        Args:
            df: polars or pandas DataFrame with ``collection``, ``name`` and
                ``feature_id`` columns (``featureId`` is accepted as an
                alias). Extra columns are kept as per-row annotation.
            collection: Collection name to use when ``df`` has no
                ``collection`` column

        Returns:
            Normalized GeneSetStore

        Raises:
            MalformedInputError: On missing/null key columns, an empty
                table, or use of the reserved ``feature_idx`` column
        """
        if HAS_PANDAS and isinstance(df, pd.DataFrame):
            df = pl.from_pandas(df)
        if not isinstance(df, pl.DataFrame):
            raise MalformedInputError(
                "Gene set table must be a polars or pandas DataFrame",
                details=type(df).__name__,
            )
        if "collection" not in df.columns and collection is not None:
            df = df.with_columns(pl.lit(collection, dtype=pl.Utf8).alias("collection"))
        return cls(_normalize(df))

    @classmethod
    def from_nested(
        cls,
        gene_sets: Mapping[str, Mapping[str, Iterable[Any]]],
    ) -> "GeneSetStore":
        """Build a store from a collection -> set name -> features mapping."""
        rows: dict[str, list[str]] = {column: [] for column in MEMBER_COLUMNS}
        for collection, sets in gene_sets.items():
            if not isinstance(sets, Mapping):
                raise MalformedInputError(
                    "Expected a mapping of set name -> features for collection",
                    details=str(collection),
                )
            for name, features in sets.items():
                feature_list = _as_feature_list(collection, name, features)
                rows["collection"].extend([str(collection)] * len(feature_list))
                rows["name"].extend([str(name)] * len(feature_list))
                rows["feature_id"].extend(feature_list)

        if not rows["feature_id"]:
            raise MalformedInputError("No gene sets found in input")

        frame = pl.DataFrame(rows, schema={column: pl.Utf8 for column in MEMBER_COLUMNS})
        return cls(_normalize(frame))

    @classmethod
    def from_flat(
        cls,
        gene_sets: Mapping[str, Iterable[Any]],
        collection: str = DEFAULT_COLLECTION,
    ) -> "GeneSetStore":
        """Build a store from a set name -> features mapping in one collection."""
        return cls.from_nested({collection: gene_sets})

    # -- accessors ----------------------------------------------------------

    @property
    def frame(self) -> pl.DataFrame:
        return self._frame

    @property
    def height(self) -> int:
        return self._frame.height

    @property
    def is_conformed(self) -> bool:
        return FEATURE_IDX_COLUMN in self._frame.columns

    def keys(self) -> list[GeneSetKey]:
        """(collection, name) keys in storage order."""
        return list(self._index)

    def has_key(self, collection: str, name: str) -> bool:
        return (collection, name) in self._index

    def gene_set(
        self,
        collection: str,
        name: str,
        active_only: bool = False,
    ) -> pl.DataFrame:
        """Return the annotated membership rows of one gene set.

        With ``active_only`` on a conformed store, only rows whose feature
        was found in the conform target are returned.

        Raises:
            KeyError: If the gene set does not exist
        """
        try:
            offset, length = self._index[(collection, name)]
        except KeyError:
            raise KeyError(
                f"Gene set not found: {encode_gskey(collection, name)}"
            ) from None
        rows = self._frame.slice(offset, length)
        if active_only and self.is_conformed:
            rows = rows.filter(pl.col(FEATURE_IDX_COLUMN).is_not_null())
        return rows

    def feature_ids(
        self,
        collection: str,
        name: str,
        active_only: bool = False,
    ) -> list[str]:
        return self.gene_set(collection, name, active_only)["feature_id"].to_list()

    # -- derivation ---------------------------------------------------------

    def take_sets(self, keys: Iterable[GeneSetKey]) -> "GeneSetStore":
        """Return a store holding only the given gene sets (unknown keys ignored)."""
        spans = sorted(self._index[key] for key in set(keys) if key in self._index)
        rows = [row for offset, length in spans for row in range(offset, offset + length)]
        frame = self._frame.select(pl.all().gather(pl.Series(rows, dtype=pl.Int64)))
        return GeneSetStore(frame)

    def drop_sets(self, keys: Iterable[GeneSetKey]) -> "GeneSetStore":
        dropped = set(keys)
        return self.take_sets(key for key in self._index if key not in dropped)

    def subset_by_features(self, feature_ids: Iterable[Any]) -> "GeneSetStore":
        """Return the gene sets containing at least one of ``feature_ids``.

        This is a set-level filter: matching gene sets keep all of their
        membership rows.
        """
        if isinstance(feature_ids, str):
            feature_ids = [feature_ids]
        wanted = [str(feature) for feature in feature_ids]
        hits = (
            self._frame
            .filter(pl.col("feature_id").is_in(wanted))
            .select(KEY_COLUMNS)
            .unique()
        )
        return self.take_sets(hits.iter_rows())

    def with_feature_idx(self, feature_idx: pl.Series) -> "GeneSetStore":
        """Attach per-row target positions (null when the feature was not found)."""
        frame = self.without_feature_idx().frame.with_columns(
            feature_idx.cast(pl.Int64).alias(FEATURE_IDX_COLUMN)
        )
        return GeneSetStore(frame)

    def without_feature_idx(self) -> "GeneSetStore":
        if not self.is_conformed:
            return self
        return GeneSetStore(self._frame.drop(FEATURE_IDX_COLUMN))

    def drop_columns(self, columns: Sequence[str]) -> "GeneSetStore":
        if not columns:
            return self
        return GeneSetStore(self._frame.drop(columns))

    def concat(self, other: "GeneSetStore") -> "GeneSetStore":
        """Union of two stores' membership rows (conform state is dropped)."""
        frame = pl.concat(
            [self.without_feature_idx().frame, other.without_feature_idx().frame],
            how="diagonal_relaxed",
        )
        return GeneSetStore(_normalize(frame, allow_empty=True))


def build_store(
    gene_sets: Any,
    collection: str | None = None,
) -> GeneSetStore:
    """Dispatch raw gene set input to the matching GeneSetStore constructor.

    Args:
        gene_sets: A DataFrame of membership rows, a mapping of
            collection -> set name -> features, or a mapping of
            set name -> features
        collection: Collection name for flat mappings and for tables
            without a ``collection`` column (default: ``"undefined"``)

    Returns:
        Normalized GeneSetStore

    Raises:
        MalformedInputError: If the input shape is not recognized
    """
    if isinstance(gene_sets, GeneSetStore):
        return gene_sets
    if isinstance(gene_sets, pl.DataFrame) or (
        HAS_PANDAS and isinstance(gene_sets, pd.DataFrame)
    ):
        return GeneSetStore.from_frame(gene_sets, collection=collection)
    if isinstance(gene_sets, Mapping):
        if not gene_sets:
            raise MalformedInputError("No gene sets found in input")
        nested = [isinstance(value, Mapping) for value in gene_sets.values()]
        if all(nested):
            return GeneSetStore.from_nested(gene_sets)
        if any(nested):
            raise MalformedInputError(
                "Cannot mix nested collections and flat gene sets in one mapping"
            )
        return GeneSetStore.from_flat(gene_sets, collection or DEFAULT_COLLECTION)
    raise MalformedInputError(
        "Unsupported gene set input type", details=type(gene_sets).__name__
    )


def promote_geneset_columns(
    frame: pl.DataFrame,
    geneset_columns: str | Sequence[str] | None = "auto",
) -> list[str]:
    """Find annotation columns that are constant within every gene set.

    Args:
        frame: Normalized membership frame
        geneset_columns: ``"auto"`` to promote every extra column whose value
            never varies within a (collection, name) group, an explicit list
            of columns to promote, or None to promote nothing

    Returns:
        Names of the columns to move to the gene set table

    Raises:
        MalformedInputError: If an explicitly requested column is missing,
            reserved, or varies within a gene set
    """
    if geneset_columns is None:
        return []

    extra = [
        column for column in frame.columns
        if column not in MEMBER_COLUMNS and column != FEATURE_IDX_COLUMN
    ]
    explicit = geneset_columns != "auto"
    if explicit:
        candidates = list(geneset_columns)
        missing = [column for column in candidates if column not in extra]
        if missing:
            raise MalformedInputError(
                "Requested gene set columns are not annotation columns",
                details=", ".join(missing),
            )
        reserved = [column for column in candidates if column in TABLE_COLUMNS]
        if reserved:
            raise MalformedInputError(
                "Gene set column names are reserved", details=", ".join(reserved)
            )
    else:
        candidates = [column for column in extra if column not in TABLE_COLUMNS]

    if not candidates or frame.height == 0:
        return []

    constant = (
        frame
        .group_by(KEY_COLUMNS)
        .agg(pl.col(candidates).n_unique() == 1)
        .select(pl.col(candidates).all())
        .row(0)
    )
    promoted = [column for column, flag in zip(candidates, constant) if flag]

    if explicit and len(promoted) < len(candidates):
        varying = [column for column in candidates if column not in promoted]
        raise MalformedInputError(
            "Gene set columns vary within a gene set", details=", ".join(varying)
        )

    if promoted:
        logger.debug("geneset_columns_promoted", columns=promoted)
    return promoted


def derive_geneset_table(frame: pl.DataFrame, promoted: Sequence[str] = ()) -> pl.DataFrame:
    """Build the one-row-per-gene-set table from membership rows.

    Returns a frame with collection, name, active (True), n (member count),
    n_conformed (0) and the promoted annotation columns, in storage order.
    """
    table = (
        frame
        .group_by(KEY_COLUMNS, maintain_order=True)
        .agg(
            pl.len().cast(pl.Int64).alias("n"),
            *[pl.col(column).first() for column in promoted],
        )
        .with_columns(
            pl.lit(True).alias("active"),
            pl.lit(0, dtype=pl.Int64).alias("n_conformed"),
        )
    )
    return table.select(TABLE_COLUMNS + list(promoted))


def _normalize(frame: pl.DataFrame, allow_empty: bool = False) -> pl.DataFrame:
    """Validate, cast, deduplicate and sort raw membership rows."""
    if "feature_id" not in frame.columns and "featureId" in frame.columns:
        frame = frame.rename({"featureId": "feature_id"})

    missing = [column for column in MEMBER_COLUMNS if column not in frame.columns]
    if missing:
        raise MalformedInputError(
            "Gene set table is missing required columns", details=", ".join(missing)
        )
    if FEATURE_IDX_COLUMN in frame.columns:
        raise MalformedInputError(
            f"Column name '{FEATURE_IDX_COLUMN}' is reserved for conformed gene sets"
        )
    if frame.height == 0 and not allow_empty:
        raise MalformedInputError("Gene set table has no rows")

    frame = frame.with_columns([pl.col(column).cast(pl.Utf8) for column in MEMBER_COLUMNS])

    null_counts = frame.select(pl.col(MEMBER_COLUMNS).null_count()).row(0)
    if any(null_counts):
        raise MalformedInputError(
            "Null values in gene set key columns",
            details=", ".join(
                f"{column}={count}"
                for column, count in zip(MEMBER_COLUMNS, null_counts) if count
            ),
        )

    n_rows = frame.height
    frame = frame.unique(subset=MEMBER_COLUMNS, keep="first", maintain_order=True)
    n_dropped = n_rows - frame.height
    if n_dropped:
        logger.warning("duplicate_membership_rows_dropped", n_dropped=n_dropped)

    extra = [column for column in frame.columns if column not in MEMBER_COLUMNS]
    return frame.select(MEMBER_COLUMNS + extra).sort(KEY_COLUMNS, maintain_order=True)


def _build_index(frame: pl.DataFrame) -> dict[GeneSetKey, tuple[int, int]]:
    """Map each (collection, name) to the (offset, length) of its row block."""
    spans = (
        frame
        .select(KEY_COLUMNS)
        .with_row_index("_offset")
        .group_by(KEY_COLUMNS, maintain_order=True)
        .agg(pl.col("_offset").first(), pl.len().alias("_length"))
    )
    return {
        (collection, name): (offset, length)
        for collection, name, offset, length in spans.iter_rows()
    }


def _as_feature_list(collection: Any, name: Any, features: Any) -> list[str]:
    if isinstance(features, (str, bytes)) or not isinstance(features, Iterable):
        raise MalformedInputError(
            "Gene set features must be a sequence of identifiers",
            details=encode_gskey(str(collection), str(name)),
        )
    feature_list = [str(feature) for feature in features if feature is not None]
    if not feature_list:
        raise MalformedInputError(
            "Gene set has no features", details=encode_gskey(str(collection), str(name))
        )
    return feature_list
