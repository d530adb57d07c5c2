"""TrendWire: trending-topic clustering and article similarity."""

__version__ = "0.1.0"
