"""Gene set file formats and table outputs."""

from multigsea.io.gmt import read_gmt, write_gmt
from multigsea.io.readers import read_gene_sets, read_universe
from multigsea.io.writers import write_gene_set_table

__all__ = [
    "read_gmt",
    "write_gmt",
    "read_gene_sets",
    "read_universe",
    "write_gene_set_table",
]
