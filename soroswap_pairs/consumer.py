"""
SaveSoroswapPairsToSQLite consumer.

Lifecycle:
1. initialize(config) opens the SQLite store and applies the schema
2. process(message) decodes one event and routes it to its handler
3. close() releases the store

Failed events are raised to the host and never retried here.
"""

from dataclasses import dataclass, asdict
from typing import Any, Mapping, Optional
import structlog

from soroswap_pairs.config import ConsumerConfig
from soroswap_pairs.errors import (
    ConsumerNotInitializedError,
    EventDecodeError,
    EventValidationError,
    PayloadTypeError,
    SoroswapPairsError,
)
from soroswap_pairs.events import NewPairEvent, SyncEvent, decode_event
from soroswap_pairs.plugin import Consumer, Message
from soroswap_pairs.storage.pair_store import PairStore

logger = structlog.get_logger(__name__)

PLUGIN_NAME = "SaveSoroswapPairsToSQLite"
PLUGIN_VERSION = "1.0.0"


@dataclass
class ConsumerStats:
    """Running counts since initialize()."""
    processed: int = 0
    pairs_inserted: int = 0
    duplicate_pairs: int = 0
    reserves_synced: int = 0
    unknown_pair_syncs: int = 0
    rejected: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class SaveSoroswapPairsToSQLite(Consumer):
    """
    Persists Soroswap pair creation and reserve syncs to SQLite.

    Usage:
        consumer = SaveSoroswapPairsToSQLite()
        consumer.initialize({"db_path": "pairs.sqlite"})
        consumer.process(Message(payload=raw_json_bytes))
        consumer.close()
    """

    def __init__(self):
        self._name = PLUGIN_NAME
        self._version = PLUGIN_VERSION
        self.config: Optional[ConsumerConfig] = None
        self.store: Optional[PairStore] = None
        self.stats = ConsumerStats()

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def db_path(self) -> Optional[str]:
        return self.config.db_path if self.config else None

    def initialize(self, config: Optional[Mapping[str, Any]] = None) -> None:
        """
        Open the store.

        Args:
            config: Host options. Recognized keys: db_path,
                    process_timeout, busy_timeout.

        Raises:
            StorageInitError: the store could not be opened or configured
        """
        # Re-initializing replaces the previous store
        self.close()

        self.config = ConsumerConfig.from_mapping(config)
        self.store = PairStore(self.config.db_path, busy_timeout=self.config.busy_timeout)
        self.stats = ConsumerStats()

        logger.info(
            "consumer_initialized",
            plugin=self.name,
            version=self.version,
            db_path=self.config.db_path,
        )

    def process(self, message: Any) -> int:
        """
        Decode one event and apply it.

        Args:
            message: A Message, or a bare payload

        Returns:
            Rows affected by the handler

        Raises:
            ConsumerNotInitializedError: initialize() has not succeeded
            PayloadTypeError, EventDecodeError: malformed payload
            EventValidationError: event is missing required data
            StorageOperationError: transaction failed and was rolled back
        """
        if self.store is None or self.store.closed:
            raise ConsumerNotInitializedError(f"{self.name} is not initialized")

        payload = message.payload if isinstance(message, Message) else message

        try:
            event = decode_event(payload)
            affected = self._dispatch(event)
        except (PayloadTypeError, EventDecodeError, EventValidationError) as e:
            self.stats.rejected += 1
            logger.warning("event_rejected", error=str(e), error_type=type(e).__name__)
            raise
        except SoroswapPairsError:
            self.stats.failed += 1
            raise

        self.stats.processed += 1
        return affected

    def _dispatch(self, event: Any) -> int:
        timeout = self.config.process_timeout

        if isinstance(event, NewPairEvent):
            affected = self.store.insert_pair(event, timeout=timeout)
            if affected:
                self.stats.pairs_inserted += 1
            else:
                self.stats.duplicate_pairs += 1
            return affected

        if isinstance(event, SyncEvent):
            affected = self.store.sync_reserves(event, timeout=timeout)
            if affected:
                self.stats.reserves_synced += 1
            else:
                self.stats.unknown_pair_syncs += 1
            return affected

        raise EventDecodeError(f"no handler for {type(event).__name__}")

    def get_stats(self) -> dict[str, Any]:
        stats = self.stats.to_dict()
        stats["initialized"] = self.store is not None and not self.store.closed
        stats["db_path"] = self.db_path
        return stats

    def close(self) -> None:
        """Close the store. Safe before initialize() and on repeat calls."""
        if self.store is None:
            return
        store, self.store = self.store, None
        store.close()
        logger.info("consumer_closed", plugin=self.name)


def new() -> SaveSoroswapPairsToSQLite:
    """Entry point used by the host to create the plugin."""
    return SaveSoroswapPairsToSQLite()
