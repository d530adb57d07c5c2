"""Vector similarity primitives.

Cosine similarity between embeddings and nearest-neighbour search over a
candidate pool. Used directly by the "similar articles" query and by
cluster formation.
"""

from typing import Iterable, List, Optional, Sequence

import numpy as np

from trendwire.core.logging import get_logger
from trendwire.trender.errors import DimensionMismatch
from trendwire.trender.models import ArticleWithEmbedding, SimilarArticle

logger = get_logger(__name__)

SIMILAR_ARTICLES_THRESHOLD = 0.7
MAX_SIMILAR_ARTICLES = 5


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Returns a value in [-1, 1]; 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatch: if the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    if len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0

    similarity = float(np.dot(va, vb)) / magnitude
    # Rounding can push identical vectors a hair past 1
    return max(-1.0, min(1.0, similarity))


def check_dimensions(articles: Iterable[ArticleWithEmbedding]) -> Optional[int]:
    """
    Verify every embedding in the pool has the same length.

    Returns:
        The shared dimensionality, or None for an empty pool

    Raises:
        DimensionMismatch: on the first article whose length differs
    """
    dimension = None
    for article in articles:
        size = len(article.embedding)
        if dimension is None:
            dimension = size
        elif size != dimension:
            logger.error(f"Article {article.id} has a {size}-d embedding, pool is {dimension}-d")
            raise DimensionMismatch(dimension, size)
    return dimension


def find_similar_by_embedding(target: Sequence[float],
                              candidates: Sequence[ArticleWithEmbedding],
                              threshold: float,
                              max_results: int,
                              exclude_ids: Optional[Iterable[str]] = None,
                              feed_ids: Optional[Iterable[str]] = None) -> List[SimilarArticle]:
    """
    Rank candidates by similarity to `target`.

    Args:
        target: Embedding to compare against
        candidates: Pool of articles with embeddings
        threshold: Minimum similarity to keep a candidate
        max_results: Maximum number of results
        exclude_ids: Article ids never returned
        feed_ids: When given, only candidates from these feeds are considered

    Returns:
        Up to `max_results` matches sorted by similarity, ties in candidate order
    """
    excluded = set(exclude_ids or ())
    feed_filter = set(feed_ids) if feed_ids is not None else None

    scored = []
    for article in candidates:
        if article.id in excluded:
            continue
        if feed_filter is not None and article.feed_id not in feed_filter:
            continue

        score = cosine_similarity(target, article.embedding)
        if score >= threshold:
            scored.append((article, score))

    # list.sort is stable, so equal scores keep candidate order
    scored.sort(key=lambda pair: pair[1], reverse=True)

    return [
        SimilarArticle(
            article_id=article.id,
            title=article.title,
            feed_name=article.feed_name,
            feed_id=article.feed_id,
            similarity_score=score,
            published_at=article.published_at,
            image_url=article.image_url,
        )
        for article, score in scored[:max_results]
    ]


def find_similar_articles(source: ArticleWithEmbedding,
                          pool: Sequence[ArticleWithEmbedding],
                          threshold: float = SIMILAR_ARTICLES_THRESHOLD,
                          max_results: int = MAX_SIMILAR_ARTICLES,
                          exclude_ids: Optional[Iterable[str]] = None,
                          feed_ids: Optional[Iterable[str]] = None) -> List[SimilarArticle]:
    """Articles similar to `source`, never including `source` itself."""
    excluded = [source.id, *(exclude_ids or ())]
    return find_similar_by_embedding(
        source.embedding,
        pool,
        threshold=threshold,
        max_results=max_results,
        exclude_ids=excluded,
        feed_ids=feed_ids,
    )
