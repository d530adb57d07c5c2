"""Storage backends for articles and clusters."""

from .base import ClusteringStorage
from .memory import InMemoryClusteringStorage
from .sql import SqlClusteringStorage

__all__ = [
    'ClusteringStorage',
    'InMemoryClusteringStorage',
    'SqlClusteringStorage',
]
