"""Time-series datastore for polled network metrics, with a ZeroMQ server and client."""

__version__ = "0.1.0"