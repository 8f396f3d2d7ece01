"""
Plugin contract between the host dispatcher and a consumer.

The host discovers a consumer through this contract only:
- identity (name, version, type)
- initialize(config)
- process(message)
- close()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class PluginType(Enum):
    """Kinds of plugins a host can load."""
    SOURCE = "source"
    PROCESSOR = "processor"
    CONSUMER = "consumer"


@dataclass
class Message:
    """
    A unit of work delivered by the host.

    The payload is opaque to the host; consumers decide what shape
    they accept.
    """
    payload: Any
    metadata: dict[str, Any] = field(default_factory=dict)


class Consumer(ABC):
    """Abstract base class for consumer plugins."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        pass

    @property
    def type(self) -> PluginType:
        return PluginType.CONSUMER

    @abstractmethod
    def initialize(self, config: Mapping[str, Any]) -> None:
        """Acquire resources. Raising here means the consumer never becomes ready."""
        pass

    @abstractmethod
    def process(self, message: Message) -> Any:
        """Handle one message. Errors are raised to the host, never retried here."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release resources. Must be safe to call repeatedly."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
