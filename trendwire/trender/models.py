"""Domain types shared by the clustering engine, storage and CLI."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union


@dataclass(frozen=True)
class ClusterScope:
    """Which articles a run covers: a user's subscriptions, explicit feeds, or everything."""
    user_id: Optional[str] = None
    feed_ids: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if self.feed_ids is not None and not isinstance(self.feed_ids, tuple):
            object.__setattr__(self, 'feed_ids', tuple(self.feed_ids))

    @property
    def cache_key(self) -> str:
        feeds = ",".join(sorted(self.feed_ids)) if self.feed_ids else "*"
        return f"{self.user_id or '*'}|{feeds}"


GLOBAL_SCOPE = ClusterScope()


@dataclass
class Article:
    """Article without an embedding (fallback path)."""
    id: str
    title: str
    feed_id: str
    feed_name: str
    excerpt: Optional[str] = None
    published_at: Optional[datetime] = None
    image_url: Optional[str] = None


@dataclass
class ArticleWithEmbedding(Article):
    """Article carrying its embedding vector."""
    embedding: List[float] = field(default_factory=list)


AnyArticle = Union[Article, ArticleWithEmbedding]


@dataclass
class ClusterCandidate:
    """A group accepted by formation or the fallback chain, not yet labeled or stored."""
    members: List[AnyArticle]
    avg_similarity: float
    sources: Set[str] = field(default_factory=set)

    def __post_init__(self):
        if not self.sources:
            self.sources = member_sources(self.members)

    @property
    def representative(self) -> AnyArticle:
        return self.members[0]

    @property
    def article_ids(self) -> List[str]:
        return [m.id for m in self.members]


@dataclass(frozen=True)
class ClusterLabel:
    topic: str
    summary: str


@dataclass
class ArticleCluster:
    """A stored trending cluster."""
    id: str
    topic: str
    summary: str
    article_ids: List[str]
    article_count: int
    sources: List[str]
    avg_similarity: float
    latest_timestamp: datetime
    relevance_score: float
    expires_at: datetime
    earliest_timestamp: Optional[datetime] = None
    method: str = "vector"
    user_id: Optional[str] = None
    scope_key: str = GLOBAL_SCOPE.cache_key
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('latest_timestamp', 'expires_at', 'earliest_timestamp', 'created_at'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class SimilarArticle:
    """Read-only projection returned by similarity search."""
    article_id: str
    title: str
    feed_name: str
    feed_id: str
    similarity_score: float
    published_at: Optional[datetime] = None
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.published_at is not None:
            data['published_at'] = self.published_at.isoformat()
        return data


@dataclass
class ClusterGenerationResult:
    """Outcome of one generation run."""
    clusters: List[ArticleCluster]
    articles_processed: int
    clusters_created: int
    processing_time_ms: float
    method: str
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'clusters': [c.to_dict() for c in self.clusters],
            'articles_processed': self.articles_processed,
            'clusters_created': self.clusters_created,
            'processing_time_ms': self.processing_time_ms,
            'method': self.method,
            'message': self.message,
        }


def member_sources(members: Sequence[AnyArticle]) -> Set[str]:
    """Distinct feed names of `members`."""
    return {m.feed_name for m in members}
