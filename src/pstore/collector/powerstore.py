"""
Collector for a Dell PowerStore appliance.

Each gather() reads appliance capacity (logged only), asks the
metrics/generate endpoint for the space-metrics report of one appliance
and emits one PowerStoreAppliance measurement per row. Rows whose
timestamp isn't RFC3339 are skipped, not treated as a failed cycle.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from pstore.client import PowerStoreClient
from pstore.collector.base import MetricsCollector
from pstore.config import SAMPLE_CONFIG, ConnectionConfig
from pstore.errors import CollectionCancelled, CollectorError, TimestampParseError
from pstore.metrics import build_measurement, decode_appliance_metrics, parse_rfc3339
from pstore.session import SessionManager
from pstore.sink import Sink

log = logging.getLogger(__name__)

METRIC_FIELDS = ("physical_total", "physical_used", "timestamp")


class PowerStoreCollector(MetricsCollector):

    def __init__(
        self,
        config: ConnectionConfig,
        client_factory: Optional[Callable[[ConnectionConfig], PowerStoreClient]] = None,
    ):
        self._config = config
        self._session = SessionManager(config, client_factory=client_factory or PowerStoreClient)
        # Serializes gather() calls if a scheduler ever overlaps them
        self._lock = threading.Lock()

    @property
    def session(self) -> SessionManager:
        return self._session

    def sample_config(self) -> str:
        return SAMPLE_CONFIG

    def description(self) -> str:
        return "Collect Dell EMC PowerStore metrics"

    def name(self) -> str:
        return f"PowerStore {self._config.appliance_id} ({self._config.url})"

    def start(self):
        self._session.start()

    def stop(self):
        self._session.stop()

    def gather(self, sink: Sink) -> int:
        """Run one collection cycle against the active session."""
        with self._lock:
            # Pin this cycle to the session it started on
            scope = self._session.scope
            client = self._session.client
            try:
                return self._gather(client, scope, sink)
            except CollectionCancelled:
                raise
            except CollectorError as exc:
                # A request that died because stop() closed the client
                if scope.is_set():
                    raise CollectionCancelled("session stopped during collection") from exc
                raise

    def _gather(self, client: PowerStoreClient, scope: threading.Event, sink: Sink) -> int:
        cfg = self._config

        self._session.checkpoint(scope)
        capacity = client.get_capacity()
        log.info("Appliance capacity is %d", capacity)

        self._session.checkpoint(scope)
        payload = client.generate_metrics(
            entity=cfg.entity,
            entity_id=cfg.appliance_id,
            interval=cfg.interval,
            select=METRIC_FIELDS,
        )
        self._session.checkpoint(scope)

        records = decode_appliance_metrics(payload)
        if records:
            log.info("Found %d records for %s", len(records), cfg.entity)

        emitted = 0
        for record in records:
            try:
                timestamp = parse_rfc3339(record.timestamp)
            except TimestampParseError as exc:
                log.debug("Skipping record for appliance %s: %s", record.appliance_id, exc)
                continue

            m = build_measurement(record, timestamp)
            sink.add_fields(m.name, m.fields, m.tags, m.timestamp)
            emitted += 1

        return emitted
