"""OpenWorld: local inference engine keeper and stream decoder."""

__version__ = "0.3.0"
