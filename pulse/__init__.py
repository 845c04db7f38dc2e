"""Activity Pulse: local activity capture, classification and daily summaries."""

__version__ = "0.1.0"
