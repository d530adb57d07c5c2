"""Fallback clustering chain for articles without usable embeddings.

Stages, tried in order:
1. Keyword clustering: Jaccard overlap of title/excerpt keywords
2. Time-window clustering: multi-source bursts inside fixed windows
3. Individual promotion: the most engaging articles as singleton clusters

The last stage guarantees there is always something to show when any
articles exist at all.
"""

import re
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS

from trendwire.core.logging import get_logger
from trendwire.core.settings import ClusterSettings
from trendwire.core.time import sort_timestamp
from trendwire.trender.cluster import meets_composition
from trendwire.trender.models import AnyArticle, ClusterCandidate, member_sources
from trendwire.trender.score import engagement_score

logger = get_logger(__name__)

# Configuration
MAX_KEYWORDS_PER_ARTICLE = 10
MIN_KEYWORD_LENGTH = 4
KEYWORD_JACCARD_THRESHOLD = 0.2
MIN_KEYWORD_CLUSTERS = 5
TIME_WINDOW_HOURS = 6
TIME_WINDOW_SIMILARITY = 0.8
MAX_TIME_WINDOW_CLUSTERS = 10
MAX_PROMOTED_ARTICLES = 15
PROMOTED_SIMILARITY = 1.0

METHOD_KEYWORD = "keyword"
METHOD_TIME_WINDOW = "time_window"
METHOD_INDIVIDUAL = "individual"
METHOD_NONE = "none"

NEWS_STOP_WORDS = frozenset({
    'says', 'said', 'new', 'also', 'just', 'like', 'report', 'reports',
    'according', 'year', 'years', 'week', 'today', 'yesterday',
})

STOP_WORDS = ENGLISH_STOP_WORDS | NEWS_STOP_WORDS

_TOKEN_RE = re.compile(r"[^\w\s]")


def extract_keywords(text: str, limit: int = MAX_KEYWORDS_PER_ARTICLE) -> List[str]:
    """
    Distinct lowercase keywords of `text` in order of appearance.

    Punctuation is stripped, stop words and tokens shorter than
    MIN_KEYWORD_LENGTH are dropped, and at most `limit` keywords are kept.
    """
    keywords: List[str] = []
    seen: Set[str] = set()

    for token in _TOKEN_RE.sub(' ', (text or '').lower()).split():
        if len(token) < MIN_KEYWORD_LENGTH or token in STOP_WORDS or token in seen:
            continue
        seen.add(token)
        keywords.append(token)
        if len(keywords) >= limit:
            break

    return keywords


def article_keywords(article: AnyArticle) -> Set[str]:
    return set(extract_keywords(f"{article.title} {article.excerpt or ''}"))


def jaccard_similarity(left: Set[str], right: Set[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def cluster_by_keywords(articles: Sequence[AnyArticle],
                        settings: ClusterSettings,
                        now: Optional[datetime] = None) -> List[ClusterCandidate]:
    """
    Greedy keyword clustering.

    Each unprocessed article gathers every other unprocessed article whose
    keyword Jaccard similarity to it exceeds the threshold. Members are only
    compared to the seed, not to each other.
    """
    keywords: Dict[str, Set[str]] = {a.id: article_keywords(a) for a in articles}
    processed: Set[str] = set()
    clusters: List[ClusterCandidate] = []

    for seed in articles:
        if seed.id in processed:
            continue

        members = [seed]
        overlaps = []
        for other in articles:
            if other.id == seed.id or other.id in processed:
                continue
            overlap = jaccard_similarity(keywords[seed.id], keywords[other.id])
            if overlap > KEYWORD_JACCARD_THRESHOLD:
                members.append(other)
                overlaps.append(overlap)
                processed.add(other.id)

        processed.add(seed.id)

        if not overlaps:
            continue

        if meets_composition(members, settings, now):
            clusters.append(ClusterCandidate(
                members=members,
                avg_similarity=sum(overlaps) / len(overlaps),
            ))

    logger.info(f"Keyword clustering: {len(clusters)} clusters from {len(articles)} articles")
    return clusters


def cluster_by_time_windows(articles: Sequence[AnyArticle],
                            window_hours: int = TIME_WINDOW_HOURS) -> List[ClusterCandidate]:
    """
    Bucket dated articles into fixed windows; windows with at least two
    articles from at least two feeds become clusters, largest first.
    """
    window_seconds = window_hours * 3600
    windows: Dict[int, List[AnyArticle]] = defaultdict(list)

    for article in articles:
        if article.published_at is None:
            continue
        key = int(sort_timestamp(article.published_at) // window_seconds)
        windows[key].append(article)

    clusters = []
    for key in sorted(windows):
        members = windows[key]
        if len(members) >= 2 and len(member_sources(members)) >= 2:
            clusters.append(ClusterCandidate(members=members, avg_similarity=TIME_WINDOW_SIMILARITY))

    clusters.sort(key=lambda c: len(c.members), reverse=True)
    clusters = clusters[:MAX_TIME_WINDOW_CLUSTERS]

    logger.info(f"Time-window clustering: {len(clusters)} clusters ({window_hours}h windows)")
    return clusters


def promote_individual_articles(articles: Sequence[AnyArticle],
                                limit: int = MAX_PROMOTED_ARTICLES,
                                now: Optional[datetime] = None) -> List[ClusterCandidate]:
    """The `limit` most engaging articles, each as its own cluster."""
    ranked = sorted(articles, key=lambda a: engagement_score(a, now), reverse=True)
    clusters = [
        ClusterCandidate(members=[article], avg_similarity=PROMOTED_SIMILARITY)
        for article in ranked[:limit]
    ]
    logger.info(f"Promoted {len(clusters)} individual articles as trending")
    return clusters


def run_fallback_chain(articles: Sequence[AnyArticle],
                       settings: Optional[ClusterSettings] = None,
                       now: Optional[datetime] = None) -> Tuple[List[ClusterCandidate], str]:
    """
    Run the fallback stages in order.

    Returns:
        Tuple of (candidates, method) where method names the stage that
        produced them, or "none" when there were no articles
    """
    settings = settings or ClusterSettings()

    if not articles:
        logger.info("Fallback chain: no articles available")
        return [], METHOD_NONE

    clusters = cluster_by_keywords(articles, settings, now)
    method = METHOD_KEYWORD

    if len(clusters) < MIN_KEYWORD_CLUSTERS:
        time_clusters = cluster_by_time_windows(articles)
        if len(time_clusters) > len(clusters):
            logger.info(
                f"Using time-window clusters ({len(time_clusters)}) over keyword clusters ({len(clusters)})"
            )
            clusters = time_clusters
            method = METHOD_TIME_WINDOW

    if not clusters:
        clusters = promote_individual_articles(articles, now=now)
        method = METHOD_INDIVIDUAL

    return clusters, method
