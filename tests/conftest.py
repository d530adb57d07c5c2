"""Shared fixtures and article factories for the clustering tests."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from trendwire.core.settings import Settings
from trendwire.trender.models import Article, ArticleWithEmbedding

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_article(article_id: str,
                 title: Optional[str] = None,
                 feed_name: str = "Local Gazette",
                 feed_id: Optional[str] = None,
                 hours_ago: Optional[float] = 1.0,
                 excerpt: Optional[str] = None,
                 now: datetime = NOW) -> Article:
    return Article(
        id=article_id,
        title=title or f"Headline {article_id}",
        feed_id=feed_id or feed_name.lower().replace(' ', '-'),
        feed_name=feed_name,
        excerpt=excerpt,
        published_at=None if hours_ago is None else now - timedelta(hours=hours_ago),
    )


def make_embedded(article_id: str,
                  embedding: List[float],
                  feed_name: str = "Local Gazette",
                  hours_ago: Optional[float] = 1.0,
                  title: Optional[str] = None,
                  feed_id: Optional[str] = None,
                  now: datetime = NOW) -> ArticleWithEmbedding:
    base = make_article(article_id, title=title, feed_name=feed_name, feed_id=feed_id,
                        hours_ago=hours_ago, now=now)
    return ArticleWithEmbedding(
        id=base.id,
        title=base.title,
        feed_id=base.feed_id,
        feed_name=base.feed_name,
        excerpt=base.excerpt,
        published_at=base.published_at,
        embedding=list(embedding),
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    """Settings isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        label_provider="dummy",
        anthropic_api_key=None,
        redis_url=None,
        environment="test",
    )


@pytest.fixture
def story_articles():
    """Five articles: three near-identical from three feeds, two unrelated."""
    return [
        make_embedded("a1", [1.0, 0.02, 0.0, 0.0], feed_name="Reuters", hours_ago=1),
        make_embedded("a2", [0.98, 0.05, 0.01, 0.0], feed_name="BBC News", hours_ago=2),
        make_embedded("a3", [0.99, 0.0, 0.03, 0.0], feed_name="Daily Planet", hours_ago=3),
        make_embedded("b1", [0.0, 1.0, 0.0, 0.0], feed_name="Reuters", hours_ago=4),
        make_embedded("c1", [0.0, 0.0, 0.0, 1.0], feed_name="Daily Planet", hours_ago=5),
    ]
