"""Database models for TrendWire."""

from sqlalchemy import (
    String, DateTime, Text, Integer, Float, ForeignKey, JSON, Index
)
from sqlalchemy.orm import mapped_column

from .db import Base


class Feed(Base):
    """News feeds articles are ingested from."""
    __tablename__ = "feeds"

    id = mapped_column(String(64), primary_key=True)
    name = mapped_column(String(200), nullable=False)
    url = mapped_column(String(1000), nullable=True)


class Subscription(Base):
    """Feeds a user follows; defines the user's clustering scope."""
    __tablename__ = "subscriptions"

    user_id = mapped_column(String(64), primary_key=True)
    feed_id = mapped_column(ForeignKey("feeds.id"), primary_key=True)


class Cluster(Base):
    """Trending clusters produced by a generation run."""
    __tablename__ = "clusters"

    id = mapped_column(String(64), primary_key=True)
    user_id = mapped_column(String(64), nullable=True, index=True)  # scope owner, null = global
    scope_key = mapped_column(String(1000), nullable=False, default="*|*")  # ClusterScope.cache_key
    title = mapped_column(String(200), nullable=False)
    summary = mapped_column(Text, nullable=True)
    article_ids = mapped_column(JSON, nullable=False)
    article_count = mapped_column(Integer, default=0, nullable=False)
    source_feeds = mapped_column(JSON, nullable=False)
    avg_similarity = mapped_column(Float, default=0.0)
    relevance_score = mapped_column(Float, default=0.0, index=True)
    generation_method = mapped_column(String(16), default="vector")  # vector|keyword|time_window|individual
    timeframe_start = mapped_column(DateTime(timezone=True), nullable=True)
    timeframe_end = mapped_column(DateTime(timezone=True), nullable=True)
    created_at = mapped_column(DateTime(timezone=True), index=True)
    expires_at = mapped_column(DateTime(timezone=True), index=True, nullable=False)


class Article(Base):
    """Ingested articles, with an optional embedding."""
    __tablename__ = "articles"

    id = mapped_column(String(64), primary_key=True)
    feed_id = mapped_column(ForeignKey("feeds.id"), index=True, nullable=False)
    title = mapped_column(String(800), nullable=False)
    excerpt = mapped_column(Text, nullable=True)
    image_url = mapped_column(String(1500), nullable=True)
    published_at = mapped_column(DateTime(timezone=True), index=True, nullable=True)  # UTC
    embedding = mapped_column(JSON, nullable=True)  # list[float]
    cluster_id = mapped_column(ForeignKey("clusters.id", ondelete="SET NULL"), index=True, nullable=True)


class ClusterSettingsOverride(Base):
    """Administrator overrides for clustering parameters (single row)."""
    __tablename__ = "cluster_settings"

    id = mapped_column(Integer, primary_key=True)
    min_cluster_sources = mapped_column(Integer, nullable=True)
    min_cluster_articles = mapped_column(Integer, nullable=True)
    cluster_similarity_threshold = mapped_column(Float, nullable=True)


Index('idx_clusters_scope_expires', Cluster.scope_key, Cluster.expires_at)
Index('idx_clusters_relevance_desc', Cluster.relevance_score.desc())
Index('idx_articles_feed_published', Article.feed_id, Article.published_at)
