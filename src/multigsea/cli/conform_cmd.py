"""Conform command: restrict gene sets to an experiment's feature universe.

Commands for:
- Loading gene sets (GMT or membership table) and the target feature IDs
- Conforming with configurable gene set size bounds
- Writing the gene set table (TSV + Parquet + provenance) and optional GMT
- Saving the conformed GeneSetDb to DuckDB
"""

import logging
import sys
from pathlib import Path

import click

from multigsea.config.loader import load_config_with_overrides
from multigsea.errors import GeneSetDbError
from multigsea.io import read_gene_sets, read_universe, write_gene_set_table, write_gmt
from multigsea.persistence import GeneSetDbStore

logger = logging.getLogger(__name__)


@click.command('conform')
@click.argument('genesets', type=click.Path(exists=True, path_type=Path))
@click.argument('universe', type=click.Path(exists=True, path_type=Path))
@click.option('--collection', type=str, default=None,
              help='Collection name for GMT files or tables without a collection column')
@click.option('--min-gs-size', type=click.IntRange(min=1), default=None,
              help='Minimum conformed gene set size (overrides config)')
@click.option('--max-gs-size', type=click.IntRange(min=1), default=None,
              help='Maximum conformed gene set size (overrides config)')
@click.option('--id-column', type=str, default='feature_id',
              help='Identifier column in a delimited universe file')
@click.option('--output-dir', type=click.Path(path_type=Path), default=None,
              help='Output directory (overrides config)')
@click.option('--gmt', 'write_gmt_file', is_flag=True,
              help='Also write the active gene sets as GMT')
@click.option('--save-db', type=str, default=None,
              help='Save the conformed GeneSetDb to DuckDB under this name')
@click.pass_context
def conform(ctx, genesets, universe, collection, min_gs_size, max_gs_size,
            id_column, output_dir, write_gmt_file, save_db):
    """Conform gene sets to the features measured in an experiment.

    GENESETS is a .gmt file or a membership table. UNIVERSE lists the
    experiment's feature IDs, one per line, or as the --id-column of a
    .tsv/.csv file.

    Gene sets whose conformed size falls outside the size bounds are
    deactivated but kept in the output table.

    Examples:

        multigsea conform hallmark.gmt features.txt

        multigsea conform sigs.parquet counts.tsv --id-column gene_id --min-gs-size 10

        multigsea --config config/default.yaml conform hallmark.gmt features.txt --save-db hallmark
    """
    config_path = ctx.obj['config_path']

    click.echo(click.style("=== Gene Set Conform ===", bold=True))
    click.echo()

    try:
        click.echo("Loading configuration...")
        config = load_config_with_overrides(config_path, {
            "output_dir": output_dir,
            "conform.min_gs_size": min_gs_size,
            "conform.max_gs_size": max_gs_size,
        })
        click.echo(click.style(f"  Config loaded: {config_path or '(defaults)'}", fg='green'))
        click.echo()

        click.echo("Loading gene sets and universe...")
        gdb = read_gene_sets(genesets, config=config.genesetdb, collection=collection)
        target = read_universe(universe, id_column=id_column)
        click.echo(click.style(
            f"  {len(gdb)} gene sets in {len(gdb.collections)} collection(s), "
            f"{len(target)} target features",
            fg='green'
        ))
        click.echo()

        click.echo("Conforming...")
        conformed = gdb.conform(target, config=config.conform)
        report = conformed.conform_report
        click.echo(click.style("  Conform complete", fg='green'))
        click.echo()

        click.echo("Writing outputs...")
        paths = write_gene_set_table(
            conformed,
            config.output_dir,
            config_hash=config.config_hash(),
        )
        if write_gmt_file:
            paths["gmt"] = write_gmt(conformed, Path(config.output_dir) / "genesets.gmt")
        for kind, path in paths.items():
            click.echo(f"  {kind}: {path}")
        click.echo()

        if save_db:
            with GeneSetDbStore.from_config(config) as store:
                store.save(conformed, save_db, description=f"conformed {genesets.name}")
            click.echo(click.style(f"  Saved to {config.duckdb_path} as '{save_db}'", fg='green'))
            click.echo()

    except (GeneSetDbError, FileNotFoundError, ValueError) as e:
        click.echo(click.style(f"Error: {e}", fg='red'), err=True)
        logger.exception("Conform failed")
        sys.exit(1)

    click.echo(click.style("=== Summary ===", bold=True))
    click.echo(f"Gene sets: {report.n_genesets}")
    click.echo(f"Active gene sets: {report.n_active}")
    click.echo(f"Universe size: {report.universe_size}")
    click.echo(f"Membership match rate: {report.match_rate:.1%}")
    click.echo()
    click.echo(click.style("Conform complete", fg='green'))
