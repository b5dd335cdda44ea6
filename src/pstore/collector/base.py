"""
Base collector interface.

A collector is anything that can push measurements into a Sink once per
tick. This keeps the CLI and storage layers decoupled from where the
data actually comes from.
"""

from abc import ABC, abstractmethod

from pstore.sink import Sink


class MetricsCollector(ABC):
    """Interface for all metrics sources."""

    @abstractmethod
    def gather(self, sink: Sink) -> int:
        """Run one collection cycle, return how many measurements were emitted."""
        ...

    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this source."""
        ...

    def start(self):
        pass

    def stop(self):
        pass
