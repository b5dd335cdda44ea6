"""pstore - Dell PowerStore space-metrics collector."""

__version__ = "0.3.0"
