"""Vector-path cluster formation for trending topics.

Greedy, order-dependent grouping of articles by embedding similarity:
- Candidates are visited newest first
- Each unassigned candidate seeds a group grown from its nearest neighbours
- A prospect joins only if it is similar enough to *every* current member
- Accepted members are never revisited in the same run

The heuristic is deliberately non-optimal; the grouping it produces for a
given input order is the observable behaviour.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from trendwire.core.logging import get_logger
from trendwire.core.settings import ClusterSettings
from trendwire.core.time import sort_timestamp
from trendwire.trender.models import AnyArticle, ArticleWithEmbedding, ClusterCandidate, member_sources
from trendwire.trender.score import average_engagement
from trendwire.trender.similarity import check_dimensions, cosine_similarity

logger = get_logger(__name__)


def meets_composition(members: Sequence[AnyArticle],
                      settings: ClusterSettings,
                      now: Optional[datetime] = None) -> bool:
    """
    Size/source/engagement acceptance rule shared by every clustering path.

    A group needs at least `min_articles` members and either `min_sources`
    distinct feeds or a mean engagement of `min_engagement`, which lets a
    single-source story through when it is engaging enough.
    """
    if len(members) < settings.min_articles:
        return False
    if len(member_sources(members)) >= settings.min_sources:
        return True
    return average_engagement(members, now) >= settings.min_engagement


def newest_first(articles: Sequence[AnyArticle]) -> List[AnyArticle]:
    """Stable newest-first ordering; undated articles sort as the epoch."""
    return sorted(articles, key=lambda a: sort_timestamp(a.published_at), reverse=True)


class PairwiseSimilarity:
    """Memoised cosine similarity keyed by article id pair."""

    def __init__(self):
        self._cache: Dict[Tuple[str, str], float] = {}
        self.computed = 0

    def __call__(self, a: ArticleWithEmbedding, b: ArticleWithEmbedding) -> float:
        key = (a.id, b.id) if a.id <= b.id else (b.id, a.id)
        if key not in self._cache:
            self._cache[key] = cosine_similarity(a.embedding, b.embedding)
            self.computed += 1
        return self._cache[key]


def form_clusters(articles: Sequence[ArticleWithEmbedding],
                  settings: Optional[ClusterSettings] = None,
                  now: Optional[datetime] = None) -> List[ClusterCandidate]:
    """
    Group articles whose embeddings are pairwise similar.

    Args:
        articles: Pool of articles with equal-length embeddings
        settings: Threshold and composition rules (defaults if omitted)
        now: Reference time for engagement scoring

    Returns:
        Accepted cluster candidates in seed order

    Raises:
        DimensionMismatch: if the pool mixes embedding lengths
    """
    settings = settings or ClusterSettings()
    threshold = settings.similarity_threshold

    if not articles:
        return []

    check_dimensions(articles)

    similarity = PairwiseSimilarity()
    ordered = newest_first(articles)
    assigned = set()
    clusters: List[ClusterCandidate] = []

    for seed in ordered:
        if seed.id in assigned:
            continue

        prospects = []
        for other in ordered:
            if other.id == seed.id or other.id in assigned:
                continue
            score = similarity(seed, other)
            if score >= threshold:
                prospects.append((other, score))

        if not prospects:
            continue

        prospects.sort(key=lambda pair: pair[1], reverse=True)

        members: List[ArticleWithEmbedding] = [seed]
        pair_scores: List[float] = []

        for prospect, _ in prospects:
            scores = [similarity(member, prospect) for member in members]
            if all(score >= threshold for score in scores):
                members.append(prospect)
                pair_scores.extend(scores)

        if not meets_composition(members, settings, now):
            logger.debug(f"Rejected group seeded by {seed.id} ({len(members)} members)")
            continue

        assigned.update(m.id for m in members)
        clusters.append(ClusterCandidate(
            members=members,
            avg_similarity=sum(pair_scores) / len(pair_scores),
        ))

    logger.info(
        f"Vector clustering: {len(clusters)} clusters from {len(articles)} articles "
        f"(threshold={threshold}, {similarity.computed} comparisons)"
    )
    return clusters
