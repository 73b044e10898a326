"""GeneSetDb: a collection-aware catalog of gene sets.

A GeneSetDb composes a GeneSetStore (membership rows) with a gene set
table (one row per (collection, name): active, n, n_conformed and
promoted annotation columns) and a CollectionMetadataStore. The two
tables always hold exactly the same (collection, name) keys.

Membership is fixed after construction. ``append``, ``subset``,
``subset_by_features``, ``conform``, ``unconform`` and ``deactivate``
return new GeneSetDb objects; polars frames are immutable so membership
storage is shared, while every derived object receives its own gene set
table and metadata copy.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

import polars as pl
import structlog

from multigsea.config.schema import ConformConfig, GeneSetDbConfig
from multigsea.errors import (
    CollisionError,
    DimensionMismatchError,
    NotConformedError,
)
from multigsea.genesetdb.conform import ConformReport, Conformer
from multigsea.genesetdb.keys import encode_gskey
from multigsea.genesetdb.metadata import CollectionMetadataStore
from multigsea.genesetdb.store import (
    FEATURE_IDX_COLUMN,
    KEY_COLUMNS,
    TABLE_COLUMNS,
    GeneSetKey,
    GeneSetStore,
    build_store,
    derive_geneset_table,
    promote_geneset_columns,
)

try:
    import pandas as pd
    HAS_PANDAS = True
except ImportError:
    HAS_PANDAS = False

logger = structlog.get_logger(__name__)


class GeneSetDb:
    """Gene sets grouped by collection, with conform state and metadata.

    Examples:
        >>> gdb = GeneSetDb({"s1": ["g1", "g2", "g3"], "s2": ["g2", "g4"]},
        ...                 collection="c1")
        >>> gdb.gene_sets()["n"].to_list()
        [3, 2]
        >>> gdbc = gdb.conform(["g1", "g2"], min_gs_size=2)
        >>> gdbc.gene_sets(active_only=False)["active"].to_list()
        [True, False]
    """

    def __init__(
        self,
        gene_sets: Any,
        collection: str | None = None,
        geneset_columns: str | Sequence[str] | None = "auto",
        as_polars: bool = True,
    ):
        """Build a GeneSetDb from raw gene set definitions.

        Args:
            gene_sets: A DataFrame with ``collection``, ``name`` and
                ``feature_id`` columns (plus optional annotation columns), a
                mapping of collection -> set name -> features, or a mapping of
                set name -> features
            collection: Collection name for flat mappings and tables without
                a ``collection`` column (default: ``"undefined"``)
            geneset_columns: Which annotation columns move to the gene set
                table: ``"auto"`` (columns constant within every set), an
                explicit list, or None
            as_polars: Return polars frames from table-valued methods when
                True, pandas frames when False. Each method also accepts an
                ``as_polars`` override.

        Raises:
            MalformedInputError: If the input is missing keys or contains an
                empty gene set
        """
        store = build_store(gene_sets, collection=collection)
        promoted = promote_geneset_columns(store.frame, geneset_columns)
        table = derive_geneset_table(store.frame, promoted)
        store = store.drop_columns(promoted)
        metadata = CollectionMetadataStore(table["collection"].unique(maintain_order=True))

        self._init_parts(store, table, metadata, universe=None, as_polars=as_polars)

        logger.info(
            "geneset_db_built",
            n_genesets=self._table.height,
            n_collections=len(self.collections),
            n_rows=store.height,
            promoted_columns=promoted,
        )

    # -- constructors -------------------------------------------------------

    @classmethod
    def build(cls, gene_sets: Any, **kwargs) -> "GeneSetDb":
        """Build from any supported input; an existing GeneSetDb is copied."""
        if isinstance(gene_sets, GeneSetDb):
            return gene_sets.copy()
        return cls(gene_sets, **kwargs)

    @classmethod
    def from_frame(cls, df: Any, **kwargs) -> "GeneSetDb":
        """Build from a flat membership table (polars or pandas)."""
        return cls(df, **kwargs)

    @classmethod
    def from_dict(cls, gene_sets: Mapping, **kwargs) -> "GeneSetDb":
        """Build from a nested or flat mapping of features."""
        return cls(gene_sets, **kwargs)

    @classmethod
    def from_config(cls, gene_sets: Any, config: GeneSetDbConfig) -> "GeneSetDb":
        """Build using the construction options of a GeneSetDbConfig."""
        return cls(
            gene_sets,
            collection=config.default_collection,
            geneset_columns=config.geneset_columns,
            as_polars=config.table_format == "polars",
        )

    @classmethod
    def from_parts(
        cls,
        store: GeneSetStore,
        table: pl.DataFrame,
        metadata: CollectionMetadataStore,
        universe: Sequence[str | None] | None = None,
        as_polars: bool = True,
    ) -> "GeneSetDb":
        """Assemble a GeneSetDb from already normalized components.

        Used when restoring a saved GeneSetDb; the store and table must
        hold the same keys in the same order.
        """
        store_keys = store.keys()
        table_keys = list(table.select(KEY_COLUMNS).iter_rows())
        if store_keys != table_keys:
            raise ValueError("Membership and gene set table keys do not match")
        gdb = cls.__new__(cls)
        gdb._init_parts(
            store,
            table,
            metadata,
            universe=tuple(universe) if universe is not None else None,
            as_polars=as_polars,
        )
        return gdb

    def _init_parts(self, store, table, metadata, universe, as_polars, conform_report=None):
        self._store = store
        self._table = table
        self._metadata = metadata
        self._universe = universe
        self.as_polars = as_polars
        self.conform_report: ConformReport | None = conform_report
        self._row_of = {
            key: i for i, key in enumerate(table.select(KEY_COLUMNS).iter_rows())
        }

    def _derive(self, **changes) -> "GeneSetDb":
        """New GeneSetDb sharing this one's parts except ``changes``."""
        parts = {
            "store": self._store,
            "table": self._table,
            "metadata": self._metadata.copy(),
            "universe": self._universe,
            "as_polars": self.as_polars,
            "conform_report": self.conform_report,
        }
        parts.update(changes)
        gdb = GeneSetDb.__new__(GeneSetDb)
        gdb._init_parts(**parts)
        return gdb

    def copy(self) -> "GeneSetDb":
        return self._derive()

    # -- basic properties ---------------------------------------------------

    def __len__(self) -> int:
        return self._table.height

    def __contains__(self, key: GeneSetKey) -> bool:
        return key in self._row_of

    def __getitem__(self, selector: Any) -> "GeneSetDb":
        return self.subset(selector)

    def __repr__(self) -> str:
        status = "conformed" if self.is_conformed else "unconformed"
        n_active = self._table["active"].sum()
        return (
            f"GeneSetDb({len(self)} gene sets, {len(self.collections)} collections, "
            f"{status}, {n_active} active)"
        )

    @property
    def collections(self) -> list[str]:
        return self._table["collection"].unique(maintain_order=True).to_list()

    @property
    def is_conformed(self) -> bool:
        return self._universe is not None

    @property
    def universe(self) -> tuple[str | None, ...] | None:
        """Identifiers of the last conform target, in target order."""
        return self._universe

    @property
    def geneset_columns(self) -> list[str]:
        """Annotation columns promoted to the gene set table."""
        return [column for column in self._table.columns if column not in TABLE_COLUMNS]

    def has_gene_set(self, collection: str, name: str) -> bool:
        return (collection, name) in self._row_of

    def has_collection(self, collection: str) -> bool:
        return collection in self.collections

    def is_active(self, collection: str, name: str) -> bool:
        return self._table_row(collection, name)["active"]

    def _table_row(self, collection: str, name: str) -> dict[str, Any]:
        try:
            i = self._row_of[(collection, name)]
        except KeyError:
            raise KeyError(
                f"Gene set not found: {encode_gskey(collection, name)}"
            ) from None
        return self._table.row(i, named=True)

    def _resolve_active_only(self, active_only: bool | None) -> bool:
        return self.is_conformed if active_only is None else active_only

    def _output(self, frame: pl.DataFrame, as_polars: bool | None):
        if as_polars is None:
            as_polars = self.as_polars
        if as_polars:
            return frame
        if not HAS_PANDAS:
            raise ValueError("pandas not available")
        return frame.to_pandas()

    # -- queries ------------------------------------------------------------

    def gene_sets(self, active_only: bool | None = None, as_polars: bool | None = None):
        """Return the gene set table.

        Args:
            active_only: Only return active gene sets. Defaults to True for
                conformed GeneSetDbs and False otherwise.
            as_polars: Override the container type (pandas when False)

        Returns:
            One row per gene set: collection, name, active, n, n_conformed
            and any promoted annotation columns
        """
        table = self._table
        if self._resolve_active_only(active_only):
            table = table.filter(pl.col("active"))
        return self._output(table, as_polars)

    def feature_ids(
        self,
        collection: str | None = None,
        name: str | None = None,
        active_only: bool | None = None,
    ) -> list[str]:
        """Return feature identifiers of a gene set, a collection, or the db.

        With ``collection`` and ``name`` the features of that gene set are
        returned in membership order. On a conformed GeneSetDb with
        ``active_only`` (the default there), inactive sets yield an empty
        list and only features present in the conform target are listed.
        With only ``collection`` (or nothing) the unique features of that
        collection (or of every gene set) are returned.

        Raises:
            KeyError: If the gene set or collection does not exist
        """
        active_only = self._resolve_active_only(active_only)
        if name is not None:
            if collection is None:
                raise ValueError("collection is required when name is given")
            if active_only and self.is_conformed and not self.is_active(collection, name):
                return []
            return self._store.feature_ids(collection, name, active_only=active_only)

        if collection is not None and not self.has_collection(collection):
            raise KeyError(f"Collection not found: {collection}")
        frame = self._member_rows(active_only)
        if collection is not None:
            frame = frame.filter(pl.col("collection") == collection)
        return frame["feature_id"].unique(maintain_order=True).to_list()

    def gene_set(
        self,
        collection: str,
        name: str,
        active_only: bool | None = None,
        as_polars: bool | None = None,
    ):
        """Return the annotated membership rows of one gene set.

        Rows carry every annotation column, including the promoted gene set
        columns. Conformed GeneSetDbs also include ``feature_idx`` (0-based
        position of each feature in the conform target, null when absent).

        Raises:
            KeyError: If the gene set does not exist
        """
        active_only = self._resolve_active_only(active_only)
        rows = self._store.gene_set(collection, name, active_only=active_only)
        if active_only and self.is_conformed and not self.is_active(collection, name):
            rows = rows.clear()
        return self._output(self._with_geneset_columns(rows), as_polars)

    def _with_geneset_columns(self, rows: pl.DataFrame) -> pl.DataFrame:
        """Join the promoted gene set columns back onto membership rows."""
        promoted = self.geneset_columns
        if not promoted:
            return rows
        return rows.join(
            self._table.select(KEY_COLUMNS + promoted),
            on=KEY_COLUMNS,
            how="left",
            maintain_order="left",
        )

    def _active_keys(self) -> list[GeneSetKey]:
        return list(self._table.filter(pl.col("active")).select(KEY_COLUMNS).iter_rows())

    def _member_rows(self, active_only: bool) -> pl.DataFrame:
        """Membership rows, restricted to present features of active sets."""
        if not (active_only and self.is_conformed):
            return self._store.frame
        return (
            self._store
            .take_sets(self._active_keys())
            .frame
            .filter(pl.col(FEATURE_IDX_COLUMN).is_not_null())
        )

    def feature_indices(self) -> dict[str, list[int]]:
        """Per active gene set, the positions of its features in the conform target.

        This is the hand-off to enrichment method adapters: keys are
        ``collection;;name`` and values are 0-based row positions into the
        target the GeneSetDb was conformed to.

        Raises:
            NotConformedError: If the GeneSetDb has not been conformed
        """
        if not self.is_conformed:
            raise NotConformedError(
                "feature_indices() needs a conformed GeneSetDb; call conform() first"
            )
        grouped = (
            self._member_rows(active_only=True)
            .group_by(KEY_COLUMNS, maintain_order=True)
            .agg(pl.col(FEATURE_IDX_COLUMN).unique(maintain_order=True))
        )
        return {
            encode_gskey(collection, name): idx
            for collection, name, idx in grouped.iter_rows()
        }

    def to_frame(self, active_only: bool | None = None, as_polars: bool | None = None):
        """Membership rows joined with the promoted gene set columns.

        The result has the same shape as constructor input, so
        ``GeneSetDb(gdb.to_frame())`` rebuilds an equivalent db.
        """
        frame = self._member_rows(self._resolve_active_only(active_only))
        if FEATURE_IDX_COLUMN in frame.columns:
            frame = frame.drop(FEATURE_IDX_COLUMN)
        return self._output(self._with_geneset_columns(frame), as_polars)

    def to_dict(self, active_only: bool | None = None) -> dict[str, list[str]]:
        """Map ``collection;;name`` keys to feature identifier lists."""
        grouped = (
            self._member_rows(self._resolve_active_only(active_only))
            .group_by(KEY_COLUMNS, maintain_order=True)
            .agg(pl.col("feature_id"))
        )
        return {
            encode_gskey(collection, name): features
            for collection, name, features in grouped.iter_rows()
        }

    # -- derivation ---------------------------------------------------------

    def subset(self, selector: Any) -> "GeneSetDb":
        """Return a GeneSetDb restricted to some gene sets.

        Args:
            selector: One of
                - a boolean sequence/Series as long as ``gene_sets()``.
                  On a conformed db that is the active gene sets, so
                  ``len(db[mask].gene_sets()) == sum(mask)``. A mask as long
                  as ``gene_sets(active_only=False)`` (``len(self)``) is
                  also accepted.
                - a sequence of integer row positions into
                  ``gene_sets(active_only=False)``
                - a polars expression evaluated against that table
                - a callable receiving that table (polars) and returning a
                  boolean mask

        Returns:
            GeneSetDb with the selected gene sets. Conform state and
            metadata of the retained collections are preserved.

        Raises:
            DimensionMismatchError: If a boolean mask has the wrong length
        """
        mask = self._subset_mask(selector)
        table = self._table.filter(mask)
        keys = list(table.select(KEY_COLUMNS).iter_rows())
        store = self._store.take_sets(keys)
        metadata = self._metadata.restricted_to(table["collection"].unique().to_list())
        logger.debug("geneset_db_subset", n_before=len(self), n_after=table.height)
        return self._derive(store=store, table=table, metadata=metadata)

    def _subset_mask(self, selector: Any) -> pl.Series:
        if isinstance(selector, pl.Expr):
            mask = self._table.select(selector.alias("_mask")).to_series()
        elif callable(selector):
            mask = selector(self._table)
        else:
            mask = selector

        if not isinstance(mask, pl.Series):
            mask = pl.Series("_mask", mask)
        if mask.dtype == pl.Null:
            mask = mask.cast(pl.Boolean)

        if mask.dtype.is_integer():
            positions = mask.to_list()
            bad = [i for i in positions if not -len(self) <= i < len(self)]
            if bad:
                raise IndexError(f"Gene set positions out of range: {bad[:5]}")
            chosen = {i % len(self) for i in positions}
            return pl.Series("_mask", [i in chosen for i in range(len(self))], dtype=pl.Boolean)

        if mask.dtype != pl.Boolean:
            raise TypeError(f"Cannot subset a GeneSetDb with a {mask.dtype} selector")
        mask = mask.fill_null(False)
        if mask.len() == len(self):
            return mask

        # a mask over gene_sets() of a conformed db covers only the active rows
        active = self._table["active"].to_list()
        if self.is_conformed and mask.len() == sum(active):
            picks = iter(mask.to_list())
            return pl.Series(
                "_mask", [next(picks) if a else False for a in active], dtype=pl.Boolean
            )
        expected = f"{len(self)}"
        if self.is_conformed:
            expected += f" (or {sum(active)} active)"
        raise DimensionMismatchError(
            "Boolean subset vector must match the number of gene sets",
            details=f"got {mask.len()}, expected {expected}",
        )

    def subset_by_features(self, features: Iterable[str] | str) -> "GeneSetDb":
        """Return the gene sets that contain any of ``features``.

        Matching gene sets keep their complete membership.
        """
        hits = set(self._store.subset_by_features(features).keys())
        mask = [key in hits for key in self._table.select(KEY_COLUMNS).iter_rows()]
        return self.subset(mask)

    def append(self, other: "GeneSetDb", overwrite: bool = False) -> "GeneSetDb":
        """Union of two GeneSetDbs.

        Gene sets present in both with the same features are merged (this
        db's annotation rows are kept). Gene sets present in both with
        different features raise CollisionError unless ``overwrite`` is
        True, in which case ``other``'s definitions replace this db's.

        The result is unconformed. Collection metadata is merged; this db's
        values win for shared entries unless ``overwrite`` is True.

        Raises:
            CollisionError: On conflicting gene set definitions
        """
        if not isinstance(other, GeneSetDb):
            raise TypeError(f"Can only append a GeneSetDb, not {type(other).__name__}")

        shared = [key for key in other._row_of if key in self._row_of]
        conflicts = [
            key for key in shared
            if set(self._store.feature_ids(*key)) != set(other._store.feature_ids(*key))
        ]
        if conflicts and not overwrite:
            raise CollisionError(
                f"{len(conflicts)} gene set(s) are defined differently in both GeneSetDbs",
                details=", ".join(encode_gskey(*key) for key in conflicts[:5]),
            )

        if overwrite:
            left_store, left_table = self._store.drop_sets(shared), self._drop_rows(shared)
            right_store, right_table = other._store, other._table
        else:
            left_store, left_table = self._store, self._table
            right_store, right_table = other._store.drop_sets(shared), other._drop_rows(shared)

        store = left_store.concat(right_store)
        table = (
            pl.concat([left_table, right_table], how="diagonal_relaxed")
            .with_columns(
                pl.lit(True).alias("active"),
                pl.lit(0, dtype=pl.Int64).alias("n_conformed"),
            )
            .sort(KEY_COLUMNS, maintain_order=True)
        )
        store, table = _demote_shared_columns(store, table)
        metadata = self._metadata.merged(other._metadata, overwrite=overwrite)

        logger.info(
            "geneset_db_appended",
            n_left=len(self),
            n_right=len(other),
            n_shared=len(shared),
            n_conflicts=len(conflicts),
            n_result=table.height,
        )
        return self._derive(
            store=store,
            table=table,
            metadata=metadata,
            universe=None,
            conform_report=None,
        )

    def _drop_rows(self, keys: Iterable[GeneSetKey]) -> pl.DataFrame:
        """Gene set table without the rows for ``keys``."""
        dropped = set(keys)
        if not dropped:
            return self._table
        keep = [key not in dropped for key in self._table.select(KEY_COLUMNS).iter_rows()]
        return self._table.filter(pl.Series(keep, dtype=pl.Boolean))

    def conform(
        self,
        target: Any,
        min_gs_size: int | None = None,
        max_gs_size: int | None = None,
        feature_id_map: Mapping[str, str] | pl.DataFrame | None = None,
        id_column: str = "feature_id",
        config: ConformConfig | None = None,
    ) -> "GeneSetDb":
        """Conform gene sets to the feature universe of ``target``.

        Size bounds come from ``config`` (default: min 1, unbounded max);
        explicit ``min_gs_size``/``max_gs_size`` arguments override it.
        See ``Conformer.conform`` for details.
        """
        settings = config.model_dump() if config is not None else {}
        if min_gs_size is not None:
            settings["min_gs_size"] = min_gs_size
        if max_gs_size is not None:
            settings["max_gs_size"] = max_gs_size
        conformer = Conformer.from_config(ConformConfig.model_validate(settings))
        return conformer.conform(
            self, target, feature_id_map=feature_id_map, id_column=id_column
        )

    def unconform(self) -> "GeneSetDb":
        """Drop conform state: every set active again with n_conformed 0."""
        table = self._table.with_columns(
            pl.lit(True).alias("active"),
            pl.lit(0, dtype=pl.Int64).alias("n_conformed"),
        )
        return self._derive(
            store=self._store.without_feature_idx(),
            table=table,
            universe=None,
            conform_report=None,
        )

    def deactivate(self, collection: str, name: str) -> "GeneSetDb":
        """Return a copy with one gene set marked inactive.

        Re-conforming recomputes ``active`` from the size bounds, which
        reverses the deactivation.
        """
        i = self._row_of.get((collection, name))
        if i is None:
            raise KeyError(f"Gene set not found: {encode_gskey(collection, name)}")
        active = self._table["active"].to_list()
        active[i] = False
        table = self._table.with_columns(pl.Series("active", active, dtype=pl.Boolean))
        logger.debug("geneset_deactivated", collection=collection, name=name)
        return self._derive(table=table)

    # -- collection metadata ------------------------------------------------

    def collection_metadata(
        self,
        collection: str | None = None,
        variable: str | None = None,
        as_polars: bool | None = None,
    ):
        """Read collection metadata.

        With both ``collection`` and ``variable`` the stored value is
        returned (None when unset). Otherwise a table of (collection,
        variable, value) rows is returned, optionally filtered.

        Raises:
            UnknownMetadataKeyError: If ``collection`` is not in the db
        """
        if collection is not None and variable is not None:
            return self._metadata.get(collection, variable, strict=True)
        frame = self._metadata.as_frame()
        if collection is not None:
            frame = frame.filter(pl.col("collection") == collection)
        if variable is not None:
            frame = frame.filter(pl.col("variable") == variable)
        return self._output(frame, as_polars)

    def set_collection_metadata(
        self,
        collection: str,
        variable: str,
        value: Any,
        validate: Callable[[Any], Any] | None = None,
        allow_add: bool = False,
    ) -> None:
        """Set a collection metadata value on this GeneSetDb.

        See ``CollectionMetadataStore.set``. Derived GeneSetDbs created
        earlier are not affected.
        """
        self._metadata.set(collection, variable, value, validate=validate, allow_add=allow_add)

    def add_collection_metadata(
        self,
        collection: str,
        variable: str,
        value: Any,
        validate: Callable[[Any], Any] | None = None,
    ) -> None:
        self.set_collection_metadata(
            collection, variable, value, validate=validate, allow_add=True
        )

    def org(self, collection: str) -> str | None:
        return self.collection_metadata(collection, "org")

    def set_org(self, collection: str, org: str) -> None:
        self.set_collection_metadata(collection, "org", org)

    def feature_id_type(self, collection: str) -> str | None:
        return self.collection_metadata(collection, "id_type")

    def set_feature_id_type(self, collection: str, id_type: str) -> None:
        self.set_collection_metadata(collection, "id_type", id_type)

    def url_function(self, collection: str) -> Callable[[str, str], str] | None:
        return self.collection_metadata(collection, "url_function")

    def set_url_function(self, collection: str, url_function: Callable[[str, str], str]) -> None:
        self.set_collection_metadata(collection, "url_function", url_function)

    def geneset_url(
        self,
        collection: str | Sequence[str],
        name: str | Sequence[str],
    ) -> str | None | list[str | None]:
        """URL(s) for gene sets via their collection's ``url_function``.

        Takes a single (collection, name) pair, or two parallel sequences
        for which a list of URLs is returned in input order.
        """
        if isinstance(collection, str) and isinstance(name, str):
            return self._metadata.resolve_url(collection, name)
        return self._metadata.resolve_urls(collection, name)


def _demote_shared_columns(
    store: GeneSetStore,
    table: pl.DataFrame,
) -> tuple[GeneSetStore, pl.DataFrame]:
    """Move columns that are set-level on one side of an append and row-level
    on the other back onto the membership rows.
    """
    shared = [
        column for column in table.columns
        if column not in TABLE_COLUMNS and column in store.frame.columns
    ]
    if not shared:
        return store, table

    frame = (
        store.frame
        .join(
            table.select(KEY_COLUMNS + shared),
            on=KEY_COLUMNS,
            how="left",
            suffix="_geneset",
            maintain_order="left",
        )
        .with_columns([
            pl.coalesce(column, f"{column}_geneset").alias(column) for column in shared
        ])
        .drop([f"{column}_geneset" for column in shared])
    )
    logger.debug("geneset_columns_demoted", columns=shared)
    return GeneSetStore(frame), table.drop(shared)
