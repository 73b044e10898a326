"""Tests for DuckDB GeneSetDb checkpoint storage."""

import polars as pl
import pytest

from multigsea import GeneSetDb, msigdb_url
from multigsea.config.schema import MultiGSEAConfig
from multigsea.persistence import GeneSetDbStore


@pytest.fixture
def gdb():
    df = pl.DataFrame({
        "collection": ["go", "go", "go", "kegg", "kegg"],
        "name": ["apoptosis", "apoptosis", "cilium", "p53", "p53"],
        "feature_id": ["TP53", "BAX", "IFT88", "TP53", "MDM2"],
        "description": ["cell death", "cell death", "cilia", "p53 pathway", "p53 pathway"],
        "weight": [1.0, 0.5, 0.2, 1.0, 0.7],
    })
    return GeneSetDb(df)


def test_store_creates_database(tmp_path):
    """Test that GeneSetDbStore creates .duckdb file at specified path."""
    db_path = tmp_path / "nested" / "test.duckdb"
    assert not db_path.exists()

    store = GeneSetDbStore(db_path)
    store.close()

    assert db_path.exists()


def test_save_and_load_unconformed(gdb, tmp_path):
    gdb.set_org("go", "human")
    gdb.add_collection_metadata("kegg", "release", 110)

    with GeneSetDbStore(tmp_path / "test.duckdb") as store:
        store.save(gdb, "catalog", description="test catalog")
        loaded = store.load("catalog")

    assert not loaded.is_conformed
    assert loaded.gene_sets().equals(gdb.gene_sets())
    assert loaded.to_frame().equals(gdb.to_frame())
    assert loaded.geneset_columns == ["description"]
    assert loaded.org("go") == "human"
    assert loaded.collection_metadata("kegg", "release") == 110


def test_save_and_load_conformed(gdb, tmp_path):
    conformed = gdb.conform(["MDM2", "TP53", "BAX"], min_gs_size=2)

    with GeneSetDbStore(tmp_path / "test.duckdb") as store:
        store.save(conformed, "conformed")
        loaded = store.load("conformed")

    assert loaded.is_conformed
    assert loaded.universe == ("MDM2", "TP53", "BAX")
    assert loaded.gene_sets(active_only=False).equals(conformed.gene_sets(active_only=False))
    assert loaded.feature_indices() == conformed.feature_indices()


def test_url_function_not_persisted(gdb, tmp_path):
    gdb.set_url_function("go", msigdb_url)

    with GeneSetDbStore(tmp_path / "test.duckdb") as store:
        store.save(gdb, "catalog")
        loaded = store.load("catalog")

    assert loaded.url_function("go") is None
    assert loaded.geneset_url("go", "cilium") is None


def test_load_missing_returns_none(tmp_path):
    with GeneSetDbStore(tmp_path / "test.duckdb") as store:
        assert store.load("nope") is None


def test_load_as_pandas(gdb, tmp_path):
    pd = pytest.importorskip("pandas")

    with GeneSetDbStore(tmp_path / "test.duckdb") as store:
        store.save(gdb, "catalog")
        loaded = store.load("catalog", as_polars=False)

    assert isinstance(loaded.gene_sets(), pd.DataFrame)


def test_checkpoints(gdb, tmp_path):
    """Test has/list/delete of saved checkpoints."""
    with GeneSetDbStore(tmp_path / "test.duckdb") as store:
        assert not store.has_checkpoint("catalog")

        store.save(gdb, "catalog", description="all sets")
        store.save(gdb.conform(["TP53"]), "conformed")

        assert store.has_checkpoint("catalog")
        checkpoints = {row["name"]: row for row in store.list_checkpoints()}
        assert set(checkpoints) == {"catalog", "conformed"}
        assert checkpoints["catalog"]["n_genesets"] == 3
        assert checkpoints["catalog"]["conformed"] is False
        assert checkpoints["catalog"]["description"] == "all sets"
        assert checkpoints["conformed"]["conformed"] is True

        store.delete_checkpoint("catalog")
        assert not store.has_checkpoint("catalog")
        assert store.load("catalog") is None


def test_save_overwrites_checkpoint(gdb, tmp_path):
    with GeneSetDbStore(tmp_path / "test.duckdb") as store:
        store.save(gdb, "catalog")
        store.save(gdb.subset([True, False, False]), "catalog")
        loaded = store.load("catalog")

    assert len(loaded) == 1


def test_persists_across_connections(gdb, tmp_path):
    db_path = tmp_path / "test.duckdb"

    store = GeneSetDbStore(db_path)
    store.save(gdb, "catalog")
    store.close()

    store = GeneSetDbStore(db_path)
    loaded = store.load("catalog")
    store.close()

    assert loaded.to_dict() == gdb.to_dict()


def test_invalid_checkpoint_name(gdb, tmp_path):
    with GeneSetDbStore(tmp_path / "test.duckdb") as store:
        with pytest.raises(ValueError, match="Invalid checkpoint name"):
            store.save(gdb, "drop table; --")


def test_from_config(tmp_path):
    config = MultiGSEAConfig(duckdb_path=tmp_path / "cfg.duckdb")

    store = GeneSetDbStore.from_config(config)
    store.close()

    assert (tmp_path / "cfg.duckdb").exists()

    with pytest.raises(ValueError, match="duckdb_path"):
        GeneSetDbStore.from_config(MultiGSEAConfig())
