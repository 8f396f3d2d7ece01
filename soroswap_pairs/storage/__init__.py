"""
SQLite storage for pair state.

- schema: connection setup, pragmas and DDL
- PairStore: transactional insert/sync handlers
"""

from soroswap_pairs.storage.pair_store import Pair, PairStore, validate_new_pair
from soroswap_pairs.storage.schema import PAIRS_TABLE, init_schema, open_database

__all__ = [
    "Pair",
    "PairStore",
    "validate_new_pair",
    "PAIRS_TABLE",
    "init_schema",
    "open_database",
]
