"""Tests for GMT I/O, gene set table readers and the TSV/Parquet writer."""

import polars as pl
import pytest
import yaml

from multigsea import GeneSetDb, MalformedInputError, msigdb_url
from multigsea.config import GeneSetDbConfig
from multigsea.io import (
    read_gene_sets,
    read_gmt,
    read_universe,
    write_gene_set_table,
    write_gmt,
)


@pytest.fixture
def gmt_file(tmp_path):
    """Small GMT file with a comment, a blank line and a malformed line."""
    path = tmp_path / "hallmark.gmt"
    path.write_text(
        "# comment\n"
        "HALLMARK_A\thttp://a\tTP53\tBAX\tMDM2\n"
        "\n"
        "HALLMARK_B\tna\tIFT88\tMYO7A\n"
        "BROKEN\tonly-two-fields\n"
        "HALLMARK_C\tdesc\tUSH2A\t\n"
    )
    return path


@pytest.fixture
def gdb():
    return GeneSetDb(
        {
            "h": {"A": ["TP53", "BAX"], "B": ["IFT88"]},
            "c2": {"X": ["MYO7A", "USH2A", "TP53"]},
        }
    )


# ============================================================================
# GMT
# ============================================================================

def test_read_gmt(gmt_file):
    gdb = read_gmt(gmt_file)

    assert gdb.collections == ["hallmark"]
    assert gdb.gene_sets()["name"].to_list() == ["HALLMARK_A", "HALLMARK_B", "HALLMARK_C"]
    assert gdb.gene_sets()["n"].to_list() == [3, 2, 1]
    assert gdb.gene_sets()["description"].to_list() == ["http://a", "na", "desc"]
    assert gdb.feature_ids("hallmark", "HALLMARK_A") == ["TP53", "BAX", "MDM2"]


def test_read_gmt_collection_argument(gmt_file):
    gdb = read_gmt(gmt_file, collection="H")

    assert gdb.collections == ["H"]


def test_read_gmt_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_gmt(tmp_path / "missing.gmt")


def test_read_gmt_without_gene_sets(tmp_path):
    path = tmp_path / "empty.gmt"
    path.write_text("# nothing here\n")

    with pytest.raises(MalformedInputError):
        read_gmt(path)


def test_write_gmt_round_trip(gmt_file, tmp_path):
    gdb = read_gmt(gmt_file)

    out = write_gmt(gdb, tmp_path / "out" / "copy.gmt")
    again = read_gmt(out, collection="hallmark")

    assert out.exists()
    assert again.to_dict() == gdb.to_dict()
    assert again.gene_sets()["description"].to_list() == ["http://a", "na", "desc"]


def test_write_gmt_multi_collection_labels(gdb, tmp_path):
    gdb.set_url_function("h", msigdb_url)

    out = write_gmt(gdb, tmp_path / "all.gmt")
    lines = out.read_text().splitlines()

    assert lines[0] == "c2;;X\t\tMYO7A\tUSH2A\tTP53"
    assert lines[1].startswith(
        "h;;A\thttp://www.broadinstitute.org/gsea/msigdb/cards/A.html\tTP53\tBAX"
    )
    assert len(lines) == 3


def test_write_gmt_active_only(gdb, tmp_path):
    conformed = gdb.conform(["TP53", "BAX", "IFT88"], min_gs_size=2)

    out = write_gmt(conformed, tmp_path / "active.gmt")
    lines = out.read_text().splitlines()

    assert lines == ["h;;A\t\tTP53\tBAX"]


# ============================================================================
# Readers
# ============================================================================

def test_read_gene_sets_tsv(tmp_path):
    path = tmp_path / "sets.tsv"
    path.write_text(
        "collection\tname\tfeature_id\tsource\n"
        "c1\ts1\t001\tgo\n"
        "c1\ts1\t002\tgo\n"
        "c1\ts2\t003\tkegg\n"
    )

    gdb = read_gene_sets(path)

    assert gdb.feature_ids("c1", "s1") == ["001", "002"]
    assert gdb.geneset_columns == ["source"]


def test_read_gene_sets_csv_with_collection_and_config(tmp_path):
    path = tmp_path / "sets.csv"
    path.write_text("name,feature_id,source\ns1,a,x\ns1,b,x\n")
    config = GeneSetDbConfig(geneset_columns=None)

    gdb = read_gene_sets(path, config=config, collection="mine")

    assert gdb.collections == ["mine"]
    assert gdb.geneset_columns == []


def test_read_gene_sets_parquet(gdb, tmp_path):
    path = tmp_path / "sets.parquet"
    gdb.to_frame().write_parquet(path)

    loaded = read_gene_sets(path)

    assert loaded.to_dict() == gdb.to_dict()


def test_read_gene_sets_gmt_and_pandas_config(gmt_file):
    pd = pytest.importorskip("pandas")

    gdb = read_gene_sets(gmt_file, config=GeneSetDbConfig(table_format="pandas"))

    assert isinstance(gdb.gene_sets(), pd.DataFrame)


def test_read_gene_sets_unsupported(tmp_path):
    path = tmp_path / "sets.xlsx"
    path.write_text("")

    with pytest.raises(MalformedInputError, match="Unsupported"):
        read_gene_sets(path)


def test_read_universe_plain_and_table(tmp_path):
    plain = tmp_path / "features.txt"
    plain.write_text("# header comment\nTP53\n\nBAX\n")
    table = tmp_path / "counts.tsv"
    table.write_text("gene_id\tsample1\nTP53\t10\nMDM2\t4\n")

    assert read_universe(plain) == ["TP53", "BAX"]
    assert read_universe(table, id_column="gene_id") == ["TP53", "MDM2"]

    with pytest.raises(MalformedInputError):
        read_universe(table)


# ============================================================================
# Writers
# ============================================================================

def test_write_gene_set_table(gdb, tmp_path):
    gdb.set_url_function("h", msigdb_url)
    conformed = gdb.conform(["TP53", "BAX"], min_gs_size=2)

    paths = write_gene_set_table(conformed, tmp_path / "results", config_hash="abc123")

    assert paths["tsv"].exists()
    assert paths["parquet"].exists()
    assert paths["provenance"].exists()

    tsv = pl.read_csv(paths["tsv"], separator="\t")
    parquet = pl.read_parquet(paths["parquet"])
    assert tsv.height == parquet.height == 3
    assert parquet.columns == ["collection", "name", "active", "n", "n_conformed", "url"]
    assert parquet["active"].to_list() == [False, True, False]
    assert parquet["url"].to_list()[1].endswith("/cards/A.html")
    assert parquet["url"].to_list()[0] is None


def test_provenance_sidecar(gdb, tmp_path):
    paths = write_gene_set_table(gdb, tmp_path, filename_base="catalog")

    with open(paths["provenance"]) as f:
        provenance = yaml.safe_load(f)

    assert paths["tsv"].name == "catalog.tsv"
    assert provenance["statistics"]["total_genesets"] == 3
    assert provenance["statistics"]["conformed"] is False
    assert provenance["statistics"]["collections"] == {
        "c2": {"genesets": 1, "active": 1},
        "h": {"genesets": 2, "active": 2},
    }
    assert "config_hash" not in provenance
    assert provenance["output_files"] == ["catalog.tsv", "catalog.parquet"]
