"""Cache for similar-article results.

Entries are keyed by (scope, article) and live for one hour by default.
Redis is used when configured and reachable; otherwise entries stay in
process memory.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import redis

from trendwire.core.logging import get_logger
from trendwire.core.time import get_current_utc_time, to_utc
from trendwire.trender.models import ClusterScope, SimilarArticle

logger = get_logger(__name__)

SIMILARITY_CACHE_TTL_SECONDS = 3600
KEY_PREFIX = "similar_articles"


@dataclass
class CacheEntry:
    article_id: str
    scope_key: str
    similar_articles: List[SimilarArticle]
    created_at: datetime
    expires_at: datetime

    def references(self, article_id: str) -> bool:
        return self.article_id == article_id or any(
            a.article_id == article_id for a in self.similar_articles
        )

    def to_json(self) -> str:
        return json.dumps({
            'article_id': self.article_id,
            'scope_key': self.scope_key,
            'similar_articles': [a.to_dict() for a in self.similar_articles],
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        similar = []
        for item in data['similar_articles']:
            published = item.get('published_at')
            item['published_at'] = to_utc(datetime.fromisoformat(published)) if published else None
            similar.append(SimilarArticle(**item))
        return cls(
            article_id=data['article_id'],
            scope_key=data['scope_key'],
            similar_articles=similar,
            created_at=datetime.fromisoformat(data['created_at']),
            expires_at=datetime.fromisoformat(data['expires_at']),
        )


class SimilarArticlesCache:
    """TTL cache for similar-article lookups."""

    def __init__(self, ttl_seconds: int = SIMILARITY_CACHE_TTL_SECONDS,
                 redis_url: Optional[str] = None):
        self.ttl_seconds = ttl_seconds
        self.redis = None
        self._memory: Dict[str, CacheEntry] = {}

        if redis_url:
            try:
                self.redis = redis.from_url(redis_url, decode_responses=True)
                self.redis.ping()
                logger.info("Connected to Redis for similar-articles cache")
            except redis.RedisError as e:
                logger.warning(f"Redis not available, using in-memory cache: {e}")
                self.redis = None

    def _key(self, scope: ClusterScope, article_id: str) -> str:
        return f"{KEY_PREFIX}:{scope.cache_key}:{article_id}"

    def get(self, scope: ClusterScope, article_id: str) -> Optional[CacheEntry]:
        """Cached entry, or None when absent or expired."""
        key = self._key(scope, article_id)

        if self.redis:
            raw = self.redis.get(key)
            return CacheEntry.from_json(raw) if raw else None

        entry = self._memory.get(key)
        if entry is None:
            return None
        if get_current_utc_time() > entry.expires_at:
            del self._memory[key]
            return None
        return entry

    def set(self, scope: ClusterScope, article_id: str,
            similar_articles: List[SimilarArticle]) -> CacheEntry:
        now = get_current_utc_time()
        entry = CacheEntry(
            article_id=article_id,
            scope_key=scope.cache_key,
            similar_articles=list(similar_articles),
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        key = self._key(scope, article_id)

        if self.redis:
            self.redis.setex(key, self.ttl_seconds, entry.to_json())
        else:
            self._memory[key] = entry
        return entry

    def _entries(self):
        if self.redis:
            for key in self.redis.scan_iter(match=f"{KEY_PREFIX}:*"):
                raw = self.redis.get(key)
                if raw:
                    yield key, CacheEntry.from_json(raw)
        else:
            yield from list(self._memory.items())

    def _delete(self, keys: List[str]) -> int:
        if not keys:
            return 0
        if self.redis:
            return self.redis.delete(*keys)
        for key in keys:
            self._memory.pop(key, None)
        return len(keys)

    def invalidate_article(self, article_id: str) -> int:
        """Drop entries for `article_id` and entries listing it as similar."""
        keys = [key for key, entry in self._entries() if entry.references(article_id)]
        removed = self._delete(keys)
        if removed:
            logger.debug(f"Invalidated {removed} similar-article entries for {article_id}")
        return removed

    def invalidate_scope(self, scope: ClusterScope) -> int:
        """Drop every entry computed for `scope`."""
        keys = [key for key, entry in self._entries() if entry.scope_key == scope.cache_key]
        return self._delete(keys)

    def cleanup_expired(self) -> int:
        """Remove expired in-memory entries; Redis expires keys itself."""
        if self.redis:
            return 0
        now = get_current_utc_time()
        expired = [key for key, entry in self._memory.items() if now > entry.expires_at]
        return self._delete(expired)

    def stats(self) -> Dict[str, Any]:
        entries = [entry for _, entry in self._entries()]
        if not entries:
            return {'total_entries': 0, 'backend': 'redis' if self.redis else 'memory'}

        created = sorted(entry.created_at for entry in entries)
        return {
            'total_entries': len(entries),
            'oldest_entry': created[0].isoformat(),
            'newest_entry': created[-1].isoformat(),
            'backend': 'redis' if self.redis else 'memory',
        }
