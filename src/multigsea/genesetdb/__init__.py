"""GeneSetDb data model.

Provides normalized gene set membership storage, per-collection metadata,
the GeneSetDb facade and the conform algorithm.
"""

from multigsea.genesetdb.conform import (
    ConformReport,
    Conformer,
    universe_ids,
)
from multigsea.genesetdb.db import GeneSetDb
from multigsea.genesetdb.keys import encode_gskey, split_gskey
from multigsea.genesetdb.metadata import (
    RESERVED_VARIABLES,
    CollectionMetadataStore,
    msigdb_url,
)
from multigsea.genesetdb.store import (
    DEFAULT_COLLECTION,
    GeneSetStore,
    build_store,
)

__all__ = [
    "ConformReport",
    "Conformer",
    "universe_ids",
    "GeneSetDb",
    "encode_gskey",
    "split_gskey",
    "RESERVED_VARIABLES",
    "CollectionMetadataStore",
    "msigdb_url",
    "DEFAULT_COLLECTION",
    "GeneSetStore",
    "build_store",
]
