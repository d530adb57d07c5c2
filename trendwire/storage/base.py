"""Storage interface consumed by the cluster lifecycle manager."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from trendwire.trender.models import Article, ArticleCluster, ArticleWithEmbedding, ClusterScope

CLUSTER_FIELDS = (
    'topic', 'summary', 'article_ids', 'article_count', 'sources', 'avg_similarity',
    'latest_timestamp', 'earliest_timestamp', 'relevance_score', 'expires_at',
    'method', 'user_id', 'scope_key',
)


class ClusteringStorage(ABC):
    """
    Persistence port for articles and clusters.

    Implementations surface their own errors; the manager does not catch them.
    """

    @abstractmethod
    async def get_articles_with_embeddings(self, scope: ClusterScope,
                                           lookback_hours: Optional[int] = None) -> List[ArticleWithEmbedding]:
        """Articles in scope that carry an embedding."""

    @abstractmethod
    async def get_recent_articles(self, scope: ClusterScope,
                                  lookback_hours: Optional[int] = None) -> List[Article]:
        """All articles in scope, without embeddings."""

    @abstractmethod
    async def create_cluster(self, data: Dict[str, Any]) -> ArticleCluster:
        """Store a new cluster; `data` holds the CLUSTER_FIELDS."""

    @abstractmethod
    async def update_cluster(self, cluster_id: str, patch: Dict[str, Any]) -> Optional[ArticleCluster]:
        """Apply `patch` (a subset of CLUSTER_FIELDS); None if the cluster is gone."""

    @abstractmethod
    async def delete_cluster(self, cluster_id: str) -> None:
        pass

    @abstractmethod
    async def get_cluster_by_id(self, cluster_id: str) -> Optional[ArticleCluster]:
        pass

    @abstractmethod
    async def get_clusters(self, scope: Optional[ClusterScope] = None,
                           include_expired: bool = False,
                           limit: Optional[int] = None) -> List[ArticleCluster]:
        """Clusters stored for exactly this scope, highest relevance first."""

    @abstractmethod
    async def assign_articles_to_cluster(self, article_ids: Sequence[str], cluster_id: str) -> None:
        """Set the article -> cluster back-reference."""

    @abstractmethod
    async def remove_articles_from_cluster(self, cluster_id: str) -> None:
        """Clear the back-reference for every article pointing at `cluster_id`."""

    @abstractmethod
    async def delete_expired_clusters(self) -> int:
        """Delete clusters past `expires_at`; returns how many were removed."""

    async def get_cluster_settings(self) -> Optional[Dict[str, Any]]:
        """Administrator overrides for clustering parameters, if any."""
        return None


def validate_cluster_data(data: Dict[str, Any]) -> None:
    """Reject unknown fields and inconsistent counts before writing."""
    unknown = set(data) - set(CLUSTER_FIELDS)
    if unknown:
        raise ValueError(f"Unknown cluster fields: {sorted(unknown)}")
    if 'article_ids' in data and 'article_count' in data:
        if data['article_count'] != len(data['article_ids']):
            raise ValueError("article_count does not match article_ids")
