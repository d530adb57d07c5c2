"""Engagement and relevance scoring for trending clusters.

Engagement is a per-article proxy for importance, additive from three
capped signals:
- Recency: up to 0.5, decaying linearly to 0 over 168 hours
- Source reputation: +0.3 for high-authority outlets
- Title shape: +0.2 for titles between 50 and 120 characters

Relevance ranks clusters within one run:
    relevance = article_count * source_count * (1 + avg_engagement)
"""

from datetime import datetime
from typing import Optional, Sequence

from trendwire.core.time import get_age_hours
from trendwire.trender.errors import EmptyClusterError
from trendwire.trender.models import AnyArticle

# Scoring configuration
RECENCY_WEIGHT = 0.5
RECENCY_WINDOW_HOURS = 168
SOURCE_WEIGHT = 0.3
TITLE_WEIGHT = 0.2
TITLE_MIN_LENGTH = 50
TITLE_MAX_LENGTH = 120

POPULAR_SOURCES = (
    'BBC',
    'CNN',
    'Reuters',
    'Associated Press',
    'The New York Times',
    'The Guardian',
)


def recency_score(published_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Linear decay from RECENCY_WEIGHT to 0 across the recency window."""
    if published_at is None:
        return 0.0
    hours_ago = get_age_hours(published_at, now)
    decayed = RECENCY_WEIGHT - (hours_ago / RECENCY_WINDOW_HOURS) * RECENCY_WEIGHT
    # Future-dated articles count as brand new
    return max(0.0, min(RECENCY_WEIGHT, decayed))


def source_score(feed_name: str) -> float:
    name = (feed_name or '').lower()
    if any(source.lower() in name for source in POPULAR_SOURCES):
        return SOURCE_WEIGHT
    return 0.0


def title_score(title: str) -> float:
    if TITLE_MIN_LENGTH < len(title or '') < TITLE_MAX_LENGTH:
        return TITLE_WEIGHT
    return 0.0


def engagement_score(article: AnyArticle, now: Optional[datetime] = None) -> float:
    """
    Heuristic engagement score for an article, in [0, 1].

    Args:
        article: Article with title, feed_name and published_at
        now: Reference time (defaults to current UTC time)
    """
    score = (
        recency_score(article.published_at, now)
        + source_score(article.feed_name)
        + title_score(article.title)
    )
    return min(1.0, score)


def average_engagement(members: Sequence[AnyArticle], now: Optional[datetime] = None) -> float:
    """Mean engagement of a cluster's members."""
    if not members:
        raise EmptyClusterError("Cannot score an empty cluster")
    return sum(engagement_score(m, now) for m in members) / len(members)


def relevance_score(article_count: int, source_count: int, avg_engagement: float = 0.5) -> float:
    """Cluster ranking score; monotonic in all three inputs."""
    return article_count * source_count * (1 + avg_engagement)
