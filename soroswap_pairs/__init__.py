"""
Soroswap pairs consumer.

Persists Soroswap liquidity-pair state into SQLite:
- new_pair events create a pair row (idempotent)
- sync events update the pair's reserves

The host process delivers one event payload at a time through the
Consumer contract (initialize / process / close).
"""

__version__ = "1.0.0"
__author__ = "Soroswap Indexing Team"

from soroswap_pairs.consumer import SaveSoroswapPairsToSQLite, new
from soroswap_pairs.plugin import Consumer, Message, PluginType

__all__ = ["SaveSoroswapPairsToSQLite", "new", "Consumer", "Message", "PluginType"]
