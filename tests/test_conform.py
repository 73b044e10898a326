"""Tests for conforming a GeneSetDb to a target feature universe."""

import polars as pl
import pytest
from pydantic import ValidationError

from multigsea import Conformer, GeneSetDb, MalformedInputError, NotConformedError
from multigsea.config import ConformConfig
from multigsea.genesetdb import universe_ids


@pytest.fixture
def gdb():
    return GeneSetDb({"s1": ["g1", "g2", "g3"], "s2": ["g2", "g4"]}, collection="c1")


def _column(db, column):
    return db.gene_sets(active_only=False)[column].to_list()


def test_conform_with_min_size(gdb):
    """s1 keeps 2 features and stays active; s2 keeps 1 and is deactivated."""
    conformed = gdb.conform({"g1", "g2"}, min_gs_size=2)

    assert conformed.is_conformed
    assert _column(conformed, "n_conformed") == [2, 1]
    assert _column(conformed, "active") == [True, False]
    assert _column(conformed, "n") == [3, 2]


def test_conform_empty_universe(gdb):
    """Nothing matches, every set is inactive, and no error is raised."""
    conformed = gdb.conform([])

    assert _column(conformed, "n_conformed") == [0, 0]
    assert _column(conformed, "active") == [False, False]
    assert conformed.gene_sets().height == 0
    assert conformed.conform_report.universe_size == 0
    assert conformed.conform_report.match_rate == 0.0


def test_conform_retains_membership(gdb):
    """Non-matching rows are kept; feature_idx is null for them."""
    conformed = gdb.conform(["g2", "g1"])

    rows = conformed.gene_set("c1", "s1", active_only=False)

    assert rows["feature_id"].to_list() == ["g1", "g2", "g3"]
    assert rows["feature_idx"].to_list() == [1, 0, None]
    assert conformed.feature_ids("c1", "s1") == ["g1", "g2"]
    assert conformed.feature_ids("c1", "s1", active_only=False) == ["g1", "g2", "g3"]


def test_conform_is_idempotent(gdb):
    once = gdb.conform(["g1", "g2", "g4"], min_gs_size=2)
    twice = once.conform(["g1", "g2", "g4"], min_gs_size=2)

    assert once.gene_sets(active_only=False).equals(twice.gene_sets(active_only=False))
    assert once.to_frame(active_only=False).equals(twice.to_frame(active_only=False))
    assert once.feature_indices() == twice.feature_indices()


def test_conform_monotonic_in_universe(gdb):
    """Growing the universe never shrinks n_conformed."""
    small = gdb.conform(["g2"])
    large = gdb.conform(["g2", "g3", "g4", "g9"])

    for before, after in zip(_column(small, "n_conformed"), _column(large, "n_conformed")):
        assert before <= after
    assert _column(large, "n_conformed") == [2, 2]


def test_n_conformed_never_exceeds_n(gdb):
    conformed = gdb.conform(["g1", "g2", "g3", "g4", "g5"])

    table = conformed.gene_sets(active_only=False)

    assert (table["n_conformed"] <= table["n"]).all()
    assert _column(conformed, "n_conformed") == _column(conformed, "n")


def test_max_gs_size(gdb):
    conformed = gdb.conform(["g1", "g2", "g3", "g4"], max_gs_size=2)

    assert _column(conformed, "active") == [False, True]


def test_size_bounds_are_inclusive(gdb):
    """s1 has 3 conformed features, s2 has 2."""
    universe = ["g1", "g2", "g3", "g4"]

    assert _column(gdb.conform(universe, min_gs_size=2, max_gs_size=3), "active") == [True, True]
    assert _column(gdb.conform(universe, min_gs_size=3, max_gs_size=3), "active") == [True, False]
    assert _column(gdb.conform(universe, min_gs_size=2, max_gs_size=2), "active") == [False, True]


def test_conform_with_config(gdb):
    config = ConformConfig(min_gs_size=2, max_gs_size=5)

    conformed = gdb.conform(["g1", "g2"], config=config)
    overridden = gdb.conform(["g1", "g2"], config=config, min_gs_size=1)

    assert _column(conformed, "active") == [True, False]
    assert _column(overridden, "active") == [True, True]


def test_invalid_bounds_rejected(gdb):
    with pytest.raises(ValidationError):
        gdb.conform(["g1"], min_gs_size=0)
    with pytest.raises(ValidationError):
        gdb.conform(["g1"], min_gs_size=5, max_gs_size=2)
    with pytest.raises(ValidationError):
        Conformer(min_gs_size=3, max_gs_size=1)


def test_reconform_reverses_deactivation(gdb):
    conformed = gdb.conform(["g1", "g2"]).deactivate("c1", "s1")
    assert _column(conformed, "active") == [False, True]

    assert _column(conformed.conform(["g1", "g2"]), "active") == [True, True]


def test_unconform(gdb):
    unconformed = gdb.conform(["g1"], min_gs_size=2).unconform()

    assert not unconformed.is_conformed
    assert unconformed.universe is None
    assert _column(unconformed, "active") == [True, True]
    assert _column(unconformed, "n_conformed") == [0, 0]
    assert "feature_idx" not in unconformed.gene_set("c1", "s1").columns


def test_inactive_sets_yield_no_features(gdb):
    conformed = gdb.conform(["g1", "g2"], min_gs_size=2)

    assert conformed.feature_ids("c1", "s2") == []
    assert conformed.gene_set("c1", "s2").height == 0
    assert conformed.feature_ids("c1", "s2", active_only=False) == ["g2", "g4"]
    assert conformed.to_dict() == {"c1;;s1": ["g1", "g2"]}


def test_feature_indices(gdb):
    """Active sets map to 0-based positions in the target."""
    target = ["g4", "g3", "g2", "g1"]

    conformed = gdb.conform(target, min_gs_size=2)

    assert conformed.feature_indices() == {"c1;;s1": [3, 2, 1], "c1;;s2": [2, 0]}


def test_feature_indices_requires_conform(gdb):
    with pytest.raises(NotConformedError):
        gdb.feature_indices()


def test_duplicate_target_ids_keep_first_position(gdb):
    conformed = gdb.conform(["g1", "g2", "g1", None, "g4"])

    assert conformed.feature_indices()["c1;;s2"] == [1, 4]
    assert conformed.conform_report.universe_size == 3


def test_feature_id_map(gdb):
    """Mapped identifiers are matched; unmapped ones are counted, not fatal."""
    id_map = {"g1": "ENSG1", "g2": "ENSG2", "g4": "ENSG4"}

    conformed = gdb.conform(["ENSG1", "ENSG2"], feature_id_map=id_map)
    report = conformed.conform_report

    assert _column(conformed, "n_conformed") == [2, 1]
    assert report.n_unmapped == 1
    assert report.unmapped_ids == ["g3"]
    assert report.n_matched == 3
    assert report.n_features == 5
    assert report.match_rate == pytest.approx(0.6)


def test_feature_id_map_frame(gdb):
    id_map = pl.DataFrame({"from": ["g1", "g2"], "to": ["A", "A"]})

    conformed = gdb.conform(["A"], feature_id_map=id_map)

    # g1 and g2 map to the same target, so s1 has one distinct position
    assert _column(conformed, "n_conformed") == [1, 1]
    assert conformed.feature_indices()["c1;;s1"] == [0]


def test_conform_to_polars_frame(gdb):
    target = pl.DataFrame({"gene": ["g4", "g2"], "logFC": [1.0, -1.0]})

    conformed = gdb.conform(target, id_column="gene")

    assert conformed.universe == ("g4", "g2")
    assert conformed.feature_indices()["c1;;s2"] == [1, 0]

    with pytest.raises(MalformedInputError):
        gdb.conform(target)


def test_conform_to_pandas_index(gdb):
    pd = pytest.importorskip("pandas")
    matrix = pd.DataFrame({"sample1": [1.0, 2.0]}, index=["g3", "g1"])

    conformed = gdb.conform(matrix)

    assert conformed.feature_indices() == {"c1;;s1": [1, 0]}


def test_universe_ids():
    assert universe_ids(["a", 1, None]) == ["a", "1", None]
    assert universe_ids(pl.Series(["x", "y"])) == ["x", "y"]
    assert universe_ids("solo") == ["solo"]

    with pytest.raises(MalformedInputError):
        universe_ids(42)


def test_conform_report(gdb):
    conformed = gdb.conform(["g1", "g2"], min_gs_size=2)
    report = conformed.conform_report

    assert report.n_genesets == 2
    assert report.n_active == 1
    assert report.universe_size == 2
    assert report.n_features == 5
    assert report.n_matched == 3
    assert report.n_unmapped == 0


def test_conform_does_not_touch_original(gdb):
    gdb.conform(["g1"], min_gs_size=2)

    assert not gdb.is_conformed
    assert _column(gdb, "active") == [True, True]
