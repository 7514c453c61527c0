"""Real-time voice chat relay: browser audio in, spoken replies out."""

__version__ = "0.1.0"
