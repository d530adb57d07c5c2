"""Cluster lifecycle orchestration.

Coordinates one generation run:
1. Load the scope's embedded articles and run vector clustering
2. Fall back to keyword / time-window / individual clustering when that yields nothing
3. Label, score and persist each cluster
4. Answer read-side queries (user clusters, single cluster, similar articles)
"""

import time
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from trendwire.core.logging import get_logger
from trendwire.core.settings import ClusterSettings, Settings, get_settings
from trendwire.core.time import get_current_utc_time, sort_timestamp, to_utc
from trendwire.storage.base import ClusteringStorage
from trendwire.trender.cache import SimilarArticlesCache
from trendwire.trender.cluster import form_clusters
from trendwire.trender.fallback import run_fallback_chain
from trendwire.trender.labeling import ClusterLabeler
from trendwire.trender.models import (
    GLOBAL_SCOPE,
    ArticleCluster,
    ClusterCandidate,
    ClusterGenerationResult,
    ClusterScope,
    SimilarArticle,
)
from trendwire.trender.score import average_engagement, relevance_score
from trendwire.trender.similarity import find_similar_articles

logger = get_logger(__name__)

METHOD_VECTOR = "vector"
MIN_VECTOR_ARTICLES = 2
DEFAULT_USER_CLUSTER_LIMIT = 10
SIMILAR_LOOKBACK_HOURS = 168

NO_ARTICLES_MESSAGE = "No articles available for clustering"


class ClusteringServiceManager:
    """
    Runs cluster generation and serves cluster queries for one storage backend.

    The labeler and cache are injected and owned by the caller; `aclose()`
    releases the labeler's network client.
    """

    def __init__(self,
                 storage: ClusteringStorage,
                 labeler: ClusterLabeler,
                 settings: Optional[Settings] = None,
                 cache: Optional[SimilarArticlesCache] = None):
        self.storage = storage
        self.labeler = labeler
        self.settings = settings or get_settings()
        self.cache = cache or SimilarArticlesCache(ttl_seconds=self.settings.similar_cache_ttl_seconds)

    async def _cluster_settings(self) -> ClusterSettings:
        base = ClusterSettings.from_settings(self.settings)
        overrides = await self.storage.get_cluster_settings()
        if overrides:
            logger.info(f"Applying cluster settings overrides: {overrides}")
        return base.with_overrides(overrides)

    async def _build_candidates(self, scope: ClusterScope, lookback_hours: int,
                                cluster_settings: ClusterSettings) -> Tuple[List[ClusterCandidate], str, int]:
        embedded = await self.storage.get_articles_with_embeddings(scope, lookback_hours)
        logger.info(f"Loaded {len(embedded)} articles with embeddings from last {lookback_hours}h")

        if len(embedded) >= MIN_VECTOR_ARTICLES:
            candidates = form_clusters(embedded, cluster_settings)
            if candidates:
                return candidates, METHOD_VECTOR, len(embedded)
            logger.info("Vector clustering produced no clusters, running fallback chain")
        else:
            logger.info("Not enough embedded articles for vector clustering, running fallback chain")

        articles = await self.storage.get_recent_articles(scope, lookback_hours)
        candidates, method = run_fallback_chain(articles, cluster_settings)
        return candidates, method, max(len(articles), len(embedded))

    async def _supersede(self, scope: ClusterScope) -> int:
        previous = await self.storage.get_clusters(scope, include_expired=True)
        for cluster in previous:
            await self.storage.remove_articles_from_cluster(cluster.id)
            await self.storage.delete_cluster(cluster.id)
        if previous:
            logger.info(f"Superseded {len(previous)} previous clusters for scope {scope.cache_key}")
        return len(previous)

    async def _persist_candidate(self, candidate: ClusterCandidate, method: str,
                                 scope: ClusterScope, now) -> ArticleCluster:
        members = candidate.members
        label = await self.labeler.generate_cluster_label(members)

        engagement = average_engagement(members, now)
        sources = sorted(candidate.sources)
        timestamps = [to_utc(m.published_at) for m in members if m.published_at is not None]

        data: Dict[str, Any] = {
            'topic': label.topic,
            'summary': label.summary,
            'article_ids': candidate.article_ids,
            'article_count': len(members),
            'sources': sources,
            'avg_similarity': candidate.avg_similarity,
            'latest_timestamp': max(timestamps) if timestamps else now,
            'earliest_timestamp': min(timestamps) if timestamps else now,
            'relevance_score': relevance_score(len(members), len(sources), engagement),
            'expires_at': now + timedelta(hours=self.settings.cluster_expiration_hours),
            'method': method,
            'user_id': scope.user_id,
            'scope_key': scope.cache_key,
        }

        cluster = await self.storage.create_cluster(data)
        await self.storage.assign_articles_to_cluster(cluster.article_ids, cluster.id)
        return cluster

    async def generate_clusters(self,
                                scope: ClusterScope = GLOBAL_SCOPE,
                                lookback_hours: Optional[int] = None,
                                replace_existing: bool = True) -> ClusterGenerationResult:
        """
        Build, label and store the trending clusters for a scope.

        Args:
            scope: Articles to consider (user subscriptions, explicit feeds, or all)
            lookback_hours: How far back to look; defaults to settings.lookback_hours
            replace_existing: Delete the scope's previous clusters before storing new ones

        Returns:
            ClusterGenerationResult with clusters sorted by relevance, descending

        Raises:
            DimensionMismatch: if the embedded pool mixes vector lengths
            Any storage error, unchanged
        """
        start_time = time.time()
        lookback_hours = lookback_hours or self.settings.lookback_hours
        now = get_current_utc_time()

        logger.info(f"Starting cluster generation: scope={scope.cache_key}, lookback={lookback_hours}h")

        cluster_settings = await self._cluster_settings()
        candidates, method, processed = await self._build_candidates(scope, lookback_hours, cluster_settings)

        if not candidates:
            elapsed = (time.time() - start_time) * 1000
            logger.warning(f"No clusters generated for scope {scope.cache_key}")
            return ClusterGenerationResult(
                clusters=[],
                articles_processed=processed,
                clusters_created=0,
                processing_time_ms=elapsed,
                method=method,
                message=NO_ARTICLES_MESSAGE if processed == 0 else "No clusters could be formed",
            )

        if replace_existing:
            await self._supersede(scope)

        clusters = []
        for candidate in candidates:
            clusters.append(await self._persist_candidate(candidate, method, scope, now))

        clusters.sort(key=lambda c: c.relevance_score, reverse=True)
        elapsed = (time.time() - start_time) * 1000

        logger.info(
            f"Cluster generation completed in {elapsed:.0f}ms: {len(clusters)} clusters "
            f"from {processed} articles (method={method})"
        )

        return ClusterGenerationResult(
            clusters=clusters,
            articles_processed=processed,
            clusters_created=len(clusters),
            processing_time_ms=elapsed,
            method=method,
        )

    async def get_user_clusters(self, scope: ClusterScope = GLOBAL_SCOPE,
                                limit: int = DEFAULT_USER_CLUSTER_LIMIT) -> List[ArticleCluster]:
        """Live clusters for the scope, highest relevance first."""
        clusters = await self.storage.get_clusters(scope, include_expired=False, limit=limit)
        now = get_current_utc_time()
        live = [c for c in clusters if to_utc(c.expires_at) > now]
        live.sort(key=lambda c: c.relevance_score, reverse=True)
        return live[:limit]

    async def get_cluster(self, cluster_id: str) -> Optional[ArticleCluster]:
        cluster = await self.storage.get_cluster_by_id(cluster_id)
        if cluster is None or to_utc(cluster.expires_at) <= get_current_utc_time():
            return None
        return cluster

    async def expire_old_clusters(self) -> int:
        deleted = await self.storage.delete_expired_clusters()
        logger.info(f"Expired {deleted} clusters")
        return deleted

    async def find_similar_articles(self, article_id: str,
                                    scope: ClusterScope = GLOBAL_SCOPE,
                                    feed_ids: Optional[Sequence[str]] = None) -> List[SimilarArticle]:
        """
        Articles in the scope whose embeddings are close to `article_id`'s.

        Returns an empty list when the article is unknown or has no embedding.
        Results are cached per (scope, article) unless a feed filter is given.
        """
        use_cache = feed_ids is None
        if use_cache:
            entry = self.cache.get(scope, article_id)
            if entry is not None:
                logger.debug(f"Similar-articles cache hit for {article_id}")
                return list(entry.similar_articles)

        pool = await self.storage.get_articles_with_embeddings(scope, SIMILAR_LOOKBACK_HOURS)
        source = next((a for a in pool if a.id == article_id), None)
        if source is None:
            logger.debug(f"Article {article_id} not found or has no embedding")
            return []

        pool.sort(key=lambda a: sort_timestamp(a.published_at), reverse=True)
        similar = find_similar_articles(
            source,
            pool,
            threshold=self.settings.similar_articles_threshold,
            max_results=self.settings.max_similar_articles,
            feed_ids=feed_ids,
        )

        if use_cache:
            self.cache.set(scope, article_id, similar)
        return similar

    def invalidate_similar_cache(self, article_id: str) -> int:
        return self.cache.invalidate_article(article_id)

    async def aclose(self) -> None:
        await self.labeler.aclose()
