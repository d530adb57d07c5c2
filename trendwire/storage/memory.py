"""In-process storage, used by tests and dry runs."""

import uuid
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Set

from trendwire.core.time import get_current_utc_time, to_utc
from trendwire.storage.base import ClusteringStorage, validate_cluster_data
from trendwire.trender.models import GLOBAL_SCOPE, Article, ArticleCluster, ArticleWithEmbedding, ClusterScope


class InMemoryClusteringStorage(ClusteringStorage):
    """Keeps articles and clusters in dictionaries."""

    def __init__(self, articles: Optional[Sequence[Article]] = None,
                 subscriptions: Optional[Dict[str, Set[str]]] = None,
                 cluster_settings: Optional[Dict[str, Any]] = None):
        self.articles: Dict[str, Article] = {}
        self.subscriptions: Dict[str, Set[str]] = {
            user: set(feeds) for user, feeds in (subscriptions or {}).items()
        }
        self.clusters: Dict[str, ArticleCluster] = {}
        self.article_clusters: Dict[str, str] = {}
        self.cluster_settings = cluster_settings
        for article in articles or []:
            self.add_article(article)

    def add_article(self, article: Article) -> None:
        self.articles[article.id] = article

    def _feeds_for(self, scope: ClusterScope) -> Optional[Set[str]]:
        if scope.feed_ids is not None:
            return set(scope.feed_ids)
        if scope.user_id is not None:
            return self.subscriptions.get(scope.user_id, set())
        return None

    def _in_scope(self, scope: ClusterScope, lookback_hours: Optional[int]) -> List[Article]:
        feeds = self._feeds_for(scope)
        cutoff = None
        if lookback_hours is not None:
            cutoff = get_current_utc_time() - timedelta(hours=lookback_hours)

        selected = []
        for article in self.articles.values():
            if feeds is not None and article.feed_id not in feeds:
                continue
            if cutoff is not None and article.published_at is not None:
                if to_utc(article.published_at) < cutoff:
                    continue
            selected.append(article)
        return selected

    async def get_articles_with_embeddings(self, scope: ClusterScope,
                                           lookback_hours: Optional[int] = None) -> List[ArticleWithEmbedding]:
        return [
            a for a in self._in_scope(scope, lookback_hours)
            if isinstance(a, ArticleWithEmbedding) and a.embedding
        ]

    async def get_recent_articles(self, scope: ClusterScope,
                                  lookback_hours: Optional[int] = None) -> List[Article]:
        return [
            Article(
                id=a.id,
                title=a.title,
                feed_id=a.feed_id,
                feed_name=a.feed_name,
                excerpt=a.excerpt,
                published_at=a.published_at,
                image_url=a.image_url,
            )
            for a in self._in_scope(scope, lookback_hours)
        ]

    async def create_cluster(self, data: Dict[str, Any]) -> ArticleCluster:
        validate_cluster_data(data)
        cluster = ArticleCluster(
            id=uuid.uuid4().hex,
            created_at=get_current_utc_time(),
            **data,
        )
        self.clusters[cluster.id] = cluster
        return cluster

    async def update_cluster(self, cluster_id: str, patch: Dict[str, Any]) -> Optional[ArticleCluster]:
        validate_cluster_data(patch)
        cluster = self.clusters.get(cluster_id)
        if cluster is None:
            return None
        cluster = replace(cluster, **patch)
        self.clusters[cluster_id] = cluster
        return cluster

    async def delete_cluster(self, cluster_id: str) -> None:
        self.clusters.pop(cluster_id, None)
        await self.remove_articles_from_cluster(cluster_id)

    async def get_cluster_by_id(self, cluster_id: str) -> Optional[ArticleCluster]:
        return self.clusters.get(cluster_id)

    async def get_clusters(self, scope: Optional[ClusterScope] = None,
                           include_expired: bool = False,
                           limit: Optional[int] = None) -> List[ArticleCluster]:
        now = get_current_utc_time()
        scope_key = (scope or GLOBAL_SCOPE).cache_key

        clusters = [
            c for c in self.clusters.values()
            if c.scope_key == scope_key and (include_expired or c.expires_at > now)
        ]
        clusters.sort(key=lambda c: c.relevance_score, reverse=True)
        return clusters[:limit] if limit is not None else clusters

    async def assign_articles_to_cluster(self, article_ids: Sequence[str], cluster_id: str) -> None:
        for article_id in article_ids:
            if article_id in self.articles:
                self.article_clusters[article_id] = cluster_id

    async def remove_articles_from_cluster(self, cluster_id: str) -> None:
        for article_id in [a for a, c in self.article_clusters.items() if c == cluster_id]:
            del self.article_clusters[article_id]

    async def delete_expired_clusters(self) -> int:
        now = get_current_utc_time()
        expired = [cid for cid, c in self.clusters.items() if c.expires_at <= now]
        for cluster_id in expired:
            await self.delete_cluster(cluster_id)
        return len(expired)

    async def get_cluster_settings(self) -> Optional[Dict[str, Any]]:
        return self.cluster_settings
