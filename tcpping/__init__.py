"""TCP connect-latency pinger."""

__version__ = "0.1.0"
