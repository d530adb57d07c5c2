"""
Tests for the similar-articles result cache (in-memory backend).
"""

from datetime import timedelta

import pytest

from trendwire.trender.cache import CacheEntry, SimilarArticlesCache
from trendwire.trender.models import ClusterScope, GLOBAL_SCOPE, SimilarArticle
from conftest import NOW


def similar(article_id, score=0.9):
    return SimilarArticle(
        article_id=article_id,
        title=f"Story {article_id}",
        feed_name="Reuters",
        feed_id="reuters",
        similarity_score=score,
        published_at=NOW,
    )


@pytest.fixture
def cache():
    return SimilarArticlesCache(ttl_seconds=3600)


class TestSimilarArticlesCache:

    def test_set_and_get(self, cache):
        cache.set(GLOBAL_SCOPE, "a1", [similar("a2"), similar("a3", 0.8)])

        entry = cache.get(GLOBAL_SCOPE, "a1")
        assert [s.article_id for s in entry.similar_articles] == ["a2", "a3"]
        assert entry.expires_at - entry.created_at == timedelta(seconds=3600)

    def test_scopes_are_isolated(self, cache):
        cache.set(ClusterScope(user_id="u1"), "a1", [similar("a2")])

        assert cache.get(GLOBAL_SCOPE, "a1") is None
        assert cache.get(ClusterScope(user_id="u2"), "a1") is None
        assert cache.get(ClusterScope(user_id="u1"), "a1") is not None

    def test_expired_entry_is_dropped(self, cache):
        entry = cache.set(GLOBAL_SCOPE, "a1", [similar("a2")])
        entry.expires_at = entry.created_at - timedelta(seconds=1)

        assert cache.get(GLOBAL_SCOPE, "a1") is None
        assert cache.stats()['total_entries'] == 0

    def test_invalidate_article(self, cache):
        cache.set(GLOBAL_SCOPE, "a1", [similar("a2")])
        cache.set(GLOBAL_SCOPE, "a3", [similar("a1")])
        cache.set(GLOBAL_SCOPE, "a4", [similar("a5")])

        assert cache.invalidate_article("a1") == 2
        assert cache.get(GLOBAL_SCOPE, "a1") is None
        assert cache.get(GLOBAL_SCOPE, "a3") is None
        assert cache.get(GLOBAL_SCOPE, "a4") is not None

    def test_invalidate_scope(self, cache):
        user_scope = ClusterScope(user_id="u1")
        cache.set(user_scope, "a1", [])
        cache.set(user_scope, "a2", [])
        cache.set(GLOBAL_SCOPE, "a1", [])

        assert cache.invalidate_scope(user_scope) == 2
        assert cache.get(GLOBAL_SCOPE, "a1") is not None

    def test_cleanup_expired(self, cache):
        stale = cache.set(GLOBAL_SCOPE, "a1", [])
        stale.expires_at = stale.created_at - timedelta(seconds=1)
        cache.set(GLOBAL_SCOPE, "a2", [])

        assert cache.cleanup_expired() == 1
        assert cache.stats()['total_entries'] == 1

    def test_stats(self, cache):
        assert cache.stats() == {'total_entries': 0, 'backend': 'memory'}

        cache.set(GLOBAL_SCOPE, "a1", [])
        stats = cache.stats()
        assert stats['total_entries'] == 1
        assert stats['backend'] == 'memory'
        assert 'oldest_entry' in stats

    def test_unreachable_redis_falls_back_to_memory(self):
        cache = SimilarArticlesCache(redis_url="redis://127.0.0.1:1/0")
        assert cache.redis is None

        cache.set(GLOBAL_SCOPE, "a1", [similar("a2")])
        assert cache.get(GLOBAL_SCOPE, "a1") is not None

    def test_entry_json_round_trip(self, cache):
        entry = cache.set(ClusterScope(feed_ids=("f2", "f1")), "a1", [similar("a2")])
        restored = CacheEntry.from_json(entry.to_json())

        assert restored.scope_key == "*|f1,f2"
        assert restored.similar_articles == entry.similar_articles
