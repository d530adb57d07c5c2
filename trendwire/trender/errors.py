"""Error types raised by the clustering engine."""


class ClusteringError(Exception):
    """Base class for clustering engine errors."""


class DimensionMismatch(ClusteringError, ValueError):
    """Two embeddings of different length were compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Embedding dimensions mismatch: {left} vs {right}")


class EmptyClusterError(ClusteringError, ValueError):
    """A cluster or score was requested for an empty member list."""


class LabelProviderError(Exception):
    """Labeling capability failed."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class TransientLabelError(LabelProviderError):
    """Rate limit, server error or transport failure; worth retrying."""


class PermanentLabelError(LabelProviderError):
    """Any other provider failure; not retried."""
