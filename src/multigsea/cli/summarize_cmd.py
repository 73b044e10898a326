"""Summarize command: describe the collections in a gene set file."""

import logging
import sys
from pathlib import Path

import click
import polars as pl

from multigsea.config.loader import load_config_with_overrides
from multigsea.errors import GeneSetDbError
from multigsea.io import read_gene_sets

logger = logging.getLogger(__name__)


@click.command('summarize')
@click.argument('genesets', type=click.Path(exists=True, path_type=Path))
@click.option(
    '--collection',
    type=str,
    default=None,
    help='Collection name for GMT files or tables without a collection column'
)
@click.pass_context
def summarize(ctx, genesets, collection):
    """Print per-collection gene set counts and size ranges.

    GENESETS is a .gmt file or a .tsv/.csv/.parquet membership table with
    collection, name and feature_id columns.

    Examples:

        multigsea summarize hallmark.gmt

        multigsea summarize custom-sigs.csv --collection custom
    """
    config_path = ctx.obj['config_path']

    try:
        config = load_config_with_overrides(config_path, {})
        gdb = read_gene_sets(genesets, config=config.genesetdb, collection=collection)
    except (GeneSetDbError, FileNotFoundError) as e:
        click.echo(click.style(f"Error loading gene sets: {e}", fg='red'), err=True)
        sys.exit(1)

    table = gdb.gene_sets(active_only=False, as_polars=True)
    summary = (
        table.group_by("collection", maintain_order=True)
        .agg(
            pl.len().alias("genesets"),
            pl.col("n").min().alias("min_size"),
            pl.col("n").median().alias("median_size"),
            pl.col("n").max().alias("max_size"),
        )
    )

    click.echo(click.style(f"Gene sets: {len(gdb)}", bold=True))
    click.echo(f"Features: {len(gdb.feature_ids(active_only=False))}")
    click.echo()
    for row in summary.to_dicts():
        click.echo(click.style(row["collection"], bold=True))
        click.echo(f"  Gene sets: {row['genesets']}")
        click.echo(
            f"  Size: min {row['min_size']}, median {row['median_size']:g}, "
            f"max {row['max_size']}"
        )

    logger.debug(f"Summarized {len(gdb)} gene sets from {genesets}")
