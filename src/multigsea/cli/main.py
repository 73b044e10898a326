"""Main CLI entry point for multigsea.

Provides command group with global options and subcommands for gene set
catalog operations.
"""

import logging
from pathlib import Path

import click

from multigsea import __version__
from multigsea.cli.conform_cmd import conform
from multigsea.cli.summarize_cmd import summarize
from multigsea.config.loader import load_config_with_overrides


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


@click.group()
@click.version_option(__version__, prog_name="multigsea")
@click.option(
    '--config',
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help='Path to configuration YAML file (defaults are used when omitted)'
)
@click.option(
    '--verbose',
    is_flag=True,
    help='Enable verbose logging (DEBUG level)'
)
@click.pass_context
def cli(ctx, config, verbose):
    """multigsea: gene set catalogs for multi-method enrichment analysis.

    Loads gene set collections, conforms them to an experiment's features
    and writes the resulting gene set tables.
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Verbose logging enabled")


@cli.command()
@click.pass_context
def info(ctx):
    """Display version and configuration summary."""
    config_path = ctx.obj['config_path']

    click.echo(f"multigsea v{__version__}")
    click.echo(f"Config: {config_path or '(defaults)'}")
    click.echo()

    try:
        config = load_config_with_overrides(config_path, {})

        config_hash = config.config_hash()
        click.echo(f"Config Hash: {config_hash[:16]}...")
        click.echo()

        click.echo(click.style("GeneSetDb:", bold=True))
        click.echo(f"  Default Collection: {config.genesetdb.default_collection}")
        click.echo(f"  Gene Set Columns:   {config.genesetdb.geneset_columns}")
        click.echo(f"  Table Format:       {config.genesetdb.table_format}")
        click.echo()

        click.echo(click.style("Conform:", bold=True))
        click.echo(f"  Min Gene Set Size: {config.conform.min_gs_size}")
        max_size = config.conform.max_gs_size
        click.echo(f"  Max Gene Set Size: {max_size if max_size is not None else 'unbounded'}")
        click.echo()

        click.echo(click.style("Paths:", bold=True))
        click.echo(f"  Output Directory: {config.output_dir}")
        click.echo(f"  DuckDB Path: {config.duckdb_path or '(disabled)'}")

    except Exception as e:
        click.echo(click.style(f"Error loading config: {e}", fg='red'), err=True)
        ctx.exit(1)


# Register commands
cli.add_command(summarize)
cli.add_command(conform)


if __name__ == '__main__':
    cli()
