"""Persistence layer for GeneSetDb checkpoints."""

from multigsea.persistence.duckdb_store import GeneSetDbStore

__all__ = ["GeneSetDbStore"]
