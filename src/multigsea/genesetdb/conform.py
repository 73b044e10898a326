"""Conform a GeneSetDb to the feature universe of an experiment.

Each gene set's features are intersected with the identifiers of a
target (expression matrix rows, ranked statistics, ...). The number of
matched features decides whether the set stays active, and the matched
positions are cached on the membership rows so enrichment methods can
index straight into the target.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import polars as pl
import structlog

from multigsea.config.schema import ConformConfig
from multigsea.errors import MalformedInputError
from multigsea.genesetdb.store import FEATURE_IDX_COLUMN, KEY_COLUMNS

try:
    import pandas as pd
    HAS_PANDAS = True
except ImportError:
    HAS_PANDAS = False

if TYPE_CHECKING:
    from multigsea.genesetdb.db import GeneSetDb

logger = structlog.get_logger(__name__)

_TARGET_ID = "_target_id"
_MAP_FROM = "_map_from"


@dataclass
class ConformReport:
    """Summary of a conform operation.

    Attributes:
        n_genesets: Number of gene sets conformed
        n_active: Number of gene sets active after conforming
        universe_size: Number of distinct identifiers in the target
        n_features: Number of membership rows
        n_matched: Number of membership rows found in the target
        n_unmapped: Number of membership rows dropped by the feature ID map
        unmapped_ids: Distinct feature IDs missing from the feature ID map
        match_rate: Fraction of membership rows found in the target (0-1)
    """
    n_genesets: int
    n_active: int
    universe_size: int
    n_features: int
    n_matched: int
    n_unmapped: int = 0
    unmapped_ids: list[str] = field(default_factory=list)
    match_rate: float = 0.0

    def __post_init__(self):
        """Calculate match rate after initialization."""
        if self.n_features > 0:
            self.match_rate = self.n_matched / self.n_features


class Conformer:
    """Intersects gene set membership with a target feature universe."""

    def __init__(self, min_gs_size: int = 1, max_gs_size: int | None = None):
        """Initialize conformer.

        Args:
            min_gs_size: Minimum conformed size for an active gene set (default: 1)
            max_gs_size: Maximum conformed size for an active gene set
                (default: None, unbounded)

        Raises:
            pydantic.ValidationError: If the bounds are invalid
        """
        self.config = ConformConfig(min_gs_size=min_gs_size, max_gs_size=max_gs_size)

    @classmethod
    def from_config(cls, config: ConformConfig) -> "Conformer":
        return cls(min_gs_size=config.min_gs_size, max_gs_size=config.max_gs_size)

    def conform(
        self,
        gdb: "GeneSetDb",
        target: Any,
        feature_id_map: Mapping[str, str] | pl.DataFrame | None = None,
        id_column: str = "feature_id",
    ) -> "GeneSetDb":
        """Conform ``gdb`` to the identifiers of ``target``.

        The result depends only on the original membership, the target and
        the size bounds, so conforming an already conformed GeneSetDb gives
        the same answer as conforming the original.

        Args:
            gdb: GeneSetDb to conform
            target: Target feature identifiers; see ``universe_ids``
            feature_id_map: Optional old -> new identifier map applied to
                membership features before intersecting. Features without a
                mapping are counted as unmapped and never match.
            id_column: Identifier column when ``target`` is a polars DataFrame

        Returns:
            New GeneSetDb with ``active``/``n_conformed`` updated and
            per-row ``feature_idx`` target positions cached. All original
            membership rows are retained.
        """
        universe = universe_ids(target, id_column=id_column)
        membership = gdb._store.without_feature_idx().frame

        targets = (
            pl.DataFrame({_TARGET_ID: universe}, schema={_TARGET_ID: pl.Utf8})
            .with_row_index(FEATURE_IDX_COLUMN)
            .filter(pl.col(_TARGET_ID).is_not_null())
            .unique(subset=_TARGET_ID, keep="first", maintain_order=True)
        )

        n_unmapped = 0
        unmapped_ids: list[str] = []
        if feature_id_map is None:
            lookup = membership.select(pl.col("feature_id").alias(_TARGET_ID))
        else:
            id_map = _as_id_map(feature_id_map)
            lookup = (
                membership
                .select(pl.col("feature_id").alias(_MAP_FROM))
                .join(id_map, on=_MAP_FROM, how="left", maintain_order="left")
            )
            unmapped = lookup.filter(pl.col(_TARGET_ID).is_null())[_MAP_FROM]
            n_unmapped = unmapped.len()
            unmapped_ids = unmapped.unique(maintain_order=True).to_list()
            if n_unmapped:
                logger.warning(
                    "conform_unmapped_features",
                    n_unmapped=n_unmapped,
                    n_unique=len(unmapped_ids),
                    examples=unmapped_ids[:5],
                )

        feature_idx = (
            lookup
            .select(_TARGET_ID)
            .join(targets, on=_TARGET_ID, how="left", maintain_order="left")
            [FEATURE_IDX_COLUMN]
            .cast(pl.Int64)
        )
        store = gdb._store.with_feature_idx(feature_idx)

        counts = (
            store.frame
            .group_by(KEY_COLUMNS, maintain_order=True)
            .agg(pl.col(FEATURE_IDX_COLUMN).drop_nulls().n_unique().alias("_matched"))
        )
        table = (
            gdb._table
            .join(counts, on=KEY_COLUMNS, how="left", maintain_order="left")
            .with_columns(pl.col("_matched").fill_null(0).cast(pl.Int64).alias("n_conformed"))
            .with_columns(self._active_expr().alias("active"))
            .select(gdb._table.columns)
        )

        n_active = table["active"].sum()
        report = ConformReport(
            n_genesets=table.height,
            n_active=n_active,
            universe_size=targets.height,
            n_features=store.height,
            n_matched=feature_idx.is_not_null().sum(),
            n_unmapped=n_unmapped,
            unmapped_ids=unmapped_ids,
        )

        if targets.height == 0:
            logger.warning("conform_empty_universe", n_genesets=table.height)
        logger.info(
            "conform_complete",
            n_genesets=report.n_genesets,
            n_active=report.n_active,
            universe_size=report.universe_size,
            match_rate=round(report.match_rate, 4),
            min_gs_size=self.config.min_gs_size,
            max_gs_size=self.config.max_gs_size,
        )

        return gdb._derive(
            store=store,
            table=table,
            universe=tuple(universe),
            conform_report=report,
        )

    def _active_expr(self) -> pl.Expr:
        active = pl.col("n_conformed") >= self.config.min_gs_size
        if self.config.max_gs_size is not None:
            active = active & (pl.col("n_conformed") <= self.config.max_gs_size)
        return active


def universe_ids(target: Any, id_column: str = "feature_id") -> list[str | None]:
    """Extract ordered feature identifiers from a conform target.

    Supported targets:
    - polars DataFrame: values of ``id_column``
    - polars Series
    - pandas DataFrame or Series: the row index
    - any other iterable of identifiers (list, tuple, set, ...)

    Positions in the returned list are the positions cached as
    ``feature_idx``. Missing identifiers are kept as None so positions stay
    aligned with the target's rows.
    """
    if isinstance(target, pl.DataFrame):
        if id_column not in target.columns:
            raise MalformedInputError(
                "Conform target has no identifier column", details=id_column
            )
        values = target[id_column].to_list()
    elif isinstance(target, pl.Series):
        values = target.to_list()
    elif HAS_PANDAS and isinstance(target, (pd.DataFrame, pd.Series)):
        values = list(target.index)
    elif isinstance(target, str):
        values = [target]
    elif isinstance(target, Iterable):
        values = list(target)
    else:
        raise MalformedInputError(
            "Unsupported conform target type", details=type(target).__name__
        )
    return [None if value is None else str(value) for value in values]


def _as_id_map(feature_id_map: Mapping[str, str] | pl.DataFrame) -> pl.DataFrame:
    """Normalize an old -> new identifier map to a two-column frame."""
    if isinstance(feature_id_map, pl.DataFrame):
        if feature_id_map.width < 2:
            raise MalformedInputError(
                "Feature ID map frame needs (from, to) columns",
                details=f"got {feature_id_map.width} column(s)",
            )
        frame = feature_id_map.select(
            pl.col(feature_id_map.columns[0]).cast(pl.Utf8).alias(_MAP_FROM),
            pl.col(feature_id_map.columns[1]).cast(pl.Utf8).alias(_TARGET_ID),
        )
    elif isinstance(feature_id_map, Mapping):
        frame = pl.DataFrame(
            {
                _MAP_FROM: [str(key) for key in feature_id_map],
                _TARGET_ID: [
                    None if value is None else str(value)
                    for value in feature_id_map.values()
                ],
            },
            schema={_MAP_FROM: pl.Utf8, _TARGET_ID: pl.Utf8},
        )
    else:
        raise MalformedInputError(
            "Unsupported feature ID map type", details=type(feature_id_map).__name__
        )
    return (
        frame
        .filter(pl.col(_MAP_FROM).is_not_null())
        .unique(subset=_MAP_FROM, keep="first", maintain_order=True)
    )
