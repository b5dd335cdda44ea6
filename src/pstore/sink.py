"""
Sinks accept measurements from a collector.

The collector calls add_fields() once per data point and never looks at
what happens afterwards. Anything that buffers must copy the dicts it is
given, since callers are free to reuse them.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Mapping, TextIO

from pstore.metrics import Measurement

log = logging.getLogger(__name__)


class Sink(ABC):
    """Interface for everything a collector can emit into."""

    @abstractmethod
    def add_fields(
        self,
        measurement: str,
        fields: Mapping[str, Any],
        tags: Mapping[str, str],
        timestamp: datetime,
    ) -> None:
        ...

    def close(self):
        pass


class ListSink(Sink):
    """Keeps measurements in memory. Handy for tests and one-shot runs."""

    def __init__(self):
        self.measurements: List[Measurement] = []

    def add_fields(self, measurement, fields, tags, timestamp):
        self.measurements.append(
            Measurement(
                name=measurement,
                tags=dict(tags),
                fields=dict(fields),
                timestamp=timestamp,
            )
        )

    def __len__(self) -> int:
        return len(self.measurements)

    def clear(self):
        self.measurements.clear()


class JsonLinesSink(Sink):
    """Writes one JSON object per measurement to a text stream."""

    def __init__(self, stream: TextIO):
        self._stream = stream

    def add_fields(self, measurement, fields, tags, timestamp):
        record: Dict[str, Any] = {
            "name": measurement,
            "timestamp": timestamp.isoformat(),
            "tags": dict(tags),
            "fields": dict(fields),
        }
        self._stream.write(json.dumps(record) + "\n")
        self._stream.flush()


class FanoutSink(Sink):
    """Forwards every measurement to several sinks, in order."""

    def __init__(self, *sinks: Sink):
        self._sinks = [s for s in sinks if s is not None]

    def add_fields(self, measurement, fields, tags, timestamp):
        for sink in self._sinks:
            sink.add_fields(measurement, fields, tags, timestamp)

    def close(self):
        for sink in self._sinks:
            sink.close()
