"""multigsea: gene set catalogs for multi-method enrichment analysis.

The core is the GeneSetDb, a collection-aware index from gene sets to
feature identifiers that can be conformed to an experiment's features.
"""

__version__ = "0.1.0"

from multigsea.errors import (
    CollisionError,
    DimensionMismatchError,
    GeneSetDbError,
    MalformedInputError,
    NotConformedError,
    UnknownMetadataKeyError,
    ValidationError,
)
from multigsea.genesetdb import (
    CollectionMetadataStore,
    ConformReport,
    Conformer,
    GeneSetDb,
    GeneSetStore,
    encode_gskey,
    msigdb_url,
    split_gskey,
)

__all__ = [
    "__version__",
    "CollisionError",
    "DimensionMismatchError",
    "GeneSetDbError",
    "MalformedInputError",
    "NotConformedError",
    "UnknownMetadataKeyError",
    "ValidationError",
    "CollectionMetadataStore",
    "ConformReport",
    "Conformer",
    "GeneSetDb",
    "GeneSetStore",
    "encode_gskey",
    "msigdb_url",
    "split_gskey",
]
