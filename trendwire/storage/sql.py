"""Async SQLAlchemy implementation of the clustering storage port."""

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, desc, or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from trendwire.core.logging import get_logger
from trendwire.core.models import (
    Article as ArticleRow,
    Cluster as ClusterRow,
    ClusterSettingsOverride,
    Feed,
    Subscription,
)
from trendwire.core.time import get_current_utc_time, to_utc
from trendwire.storage.base import ClusteringStorage, validate_cluster_data
from trendwire.trender.models import GLOBAL_SCOPE, Article, ArticleCluster, ArticleWithEmbedding, ClusterScope

logger = get_logger(__name__)

# domain field -> column
_COLUMN_NAMES = {
    'topic': 'title',
    'summary': 'summary',
    'article_ids': 'article_ids',
    'article_count': 'article_count',
    'sources': 'source_feeds',
    'avg_similarity': 'avg_similarity',
    'latest_timestamp': 'timeframe_end',
    'earliest_timestamp': 'timeframe_start',
    'relevance_score': 'relevance_score',
    'expires_at': 'expires_at',
    'method': 'generation_method',
    'user_id': 'user_id',
    'scope_key': 'scope_key',
}

_TIMESTAMP_FIELDS = ('latest_timestamp', 'earliest_timestamp', 'expires_at')


def _to_columns(data: Dict[str, Any]) -> Dict[str, Any]:
    values = {}
    for field_name, value in data.items():
        if field_name in _TIMESTAMP_FIELDS:
            value = to_utc(value)
        elif field_name in ('article_ids', 'sources'):
            value = list(value)
        values[_COLUMN_NAMES[field_name]] = value
    return values


def _to_cluster(row: ClusterRow) -> ArticleCluster:
    return ArticleCluster(
        id=row.id,
        topic=row.title,
        summary=row.summary or '',
        article_ids=list(row.article_ids or []),
        article_count=row.article_count,
        sources=list(row.source_feeds or []),
        avg_similarity=float(row.avg_similarity or 0.0),
        latest_timestamp=to_utc(row.timeframe_end),
        relevance_score=float(row.relevance_score or 0.0),
        expires_at=to_utc(row.expires_at),
        earliest_timestamp=to_utc(row.timeframe_start),
        method=row.generation_method or 'vector',
        user_id=row.user_id,
        scope_key=row.scope_key,
        created_at=to_utc(row.created_at),
    )


class SqlClusteringStorage(ClusteringStorage):
    """Stores articles and clusters through async SQLAlchemy sessions."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def _article_query(self, scope: ClusterScope, lookback_hours: Optional[int]):
        stmt = (
            select(ArticleRow, Feed.name)
            .join(Feed, Feed.id == ArticleRow.feed_id)
            .order_by(desc(ArticleRow.published_at), ArticleRow.id)
        )

        if scope.feed_ids is not None:
            stmt = stmt.where(ArticleRow.feed_id.in_(list(scope.feed_ids)))
        elif scope.user_id is not None:
            subscribed = select(Subscription.feed_id).where(Subscription.user_id == scope.user_id)
            stmt = stmt.where(ArticleRow.feed_id.in_(subscribed))

        if lookback_hours is not None:
            cutoff = get_current_utc_time() - timedelta(hours=lookback_hours)
            stmt = stmt.where(or_(ArticleRow.published_at.is_(None), ArticleRow.published_at >= cutoff))

        return stmt

    async def get_articles_with_embeddings(self, scope: ClusterScope,
                                           lookback_hours: Optional[int] = None) -> List[ArticleWithEmbedding]:
        stmt = self._article_query(scope, lookback_hours).where(ArticleRow.embedding.is_not(None))

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        articles = [
            ArticleWithEmbedding(
                id=row.id,
                title=row.title,
                feed_id=row.feed_id,
                feed_name=feed_name,
                excerpt=row.excerpt,
                published_at=to_utc(row.published_at),
                image_url=row.image_url,
                embedding=[float(x) for x in row.embedding],
            )
            for row, feed_name in rows
            if row.embedding
        ]
        logger.debug(f"Loaded {len(articles)} articles with embeddings")
        return articles

    async def get_recent_articles(self, scope: ClusterScope,
                                  lookback_hours: Optional[int] = None) -> List[Article]:
        async with self.session_factory() as session:
            result = await session.execute(self._article_query(scope, lookback_hours))
            rows = result.all()

        return [
            Article(
                id=row.id,
                title=row.title,
                feed_id=row.feed_id,
                feed_name=feed_name,
                excerpt=row.excerpt,
                published_at=to_utc(row.published_at),
                image_url=row.image_url,
            )
            for row, feed_name in rows
        ]

    async def create_cluster(self, data: Dict[str, Any]) -> ArticleCluster:
        validate_cluster_data(data)
        row = ClusterRow(
            id=uuid.uuid4().hex,
            created_at=get_current_utc_time(),
            **_to_columns(data),
        )

        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)

        logger.debug(f"Created cluster {row.id}: {row.title}")
        return _to_cluster(row)

    async def update_cluster(self, cluster_id: str, patch: Dict[str, Any]) -> Optional[ArticleCluster]:
        validate_cluster_data(patch)

        async with self.session_factory() as session:
            if patch:
                await session.execute(
                    update(ClusterRow).where(ClusterRow.id == cluster_id).values(**_to_columns(patch))
                )
                await session.commit()
            row = await session.get(ClusterRow, cluster_id)
            return _to_cluster(row) if row is not None else None

    async def delete_cluster(self, cluster_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(ArticleRow).where(ArticleRow.cluster_id == cluster_id).values(cluster_id=None)
            )
            await session.execute(delete(ClusterRow).where(ClusterRow.id == cluster_id))
            await session.commit()

    async def get_cluster_by_id(self, cluster_id: str) -> Optional[ArticleCluster]:
        async with self.session_factory() as session:
            row = await session.get(ClusterRow, cluster_id)
            return _to_cluster(row) if row is not None else None

    async def get_clusters(self, scope: Optional[ClusterScope] = None,
                           include_expired: bool = False,
                           limit: Optional[int] = None) -> List[ArticleCluster]:
        scope_key = (scope or GLOBAL_SCOPE).cache_key

        stmt = (
            select(ClusterRow)
            .where(ClusterRow.scope_key == scope_key)
            .order_by(desc(ClusterRow.relevance_score), ClusterRow.id)
        )
        if not include_expired:
            stmt = stmt.where(ClusterRow.expires_at > get_current_utc_time())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_to_cluster(row) for row in result.scalars().all()]

    async def assign_articles_to_cluster(self, article_ids: Sequence[str], cluster_id: str) -> None:
        if not article_ids:
            return
        async with self.session_factory() as session:
            await session.execute(
                update(ArticleRow)
                .where(ArticleRow.id.in_(list(article_ids)))
                .values(cluster_id=cluster_id)
            )
            await session.commit()

    async def remove_articles_from_cluster(self, cluster_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(ArticleRow).where(ArticleRow.cluster_id == cluster_id).values(cluster_id=None)
            )
            await session.commit()

    async def delete_expired_clusters(self) -> int:
        now = get_current_utc_time()
        expired_ids = select(ClusterRow.id).where(ClusterRow.expires_at <= now)

        async with self.session_factory() as session:
            await session.execute(
                update(ArticleRow).where(ArticleRow.cluster_id.in_(expired_ids)).values(cluster_id=None)
            )
            result = await session.execute(delete(ClusterRow).where(ClusterRow.expires_at <= now))
            await session.commit()

        deleted = result.rowcount or 0
        logger.debug(f"Deleted {deleted} expired clusters")
        return deleted

    async def get_cluster_settings(self) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(select(ClusterSettingsOverride).limit(1))
            row = result.scalar_one_or_none()

        if row is None:
            return None
        return {
            'min_cluster_sources': row.min_cluster_sources,
            'min_cluster_articles': row.min_cluster_articles,
            'cluster_similarity_threshold': row.cluster_similarity_threshold,
        }
