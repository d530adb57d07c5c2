"""Trending topics clustering package.

This package contains modules for:
- Embedding similarity and nearest-neighbour search (similarity.py)
- Engagement and relevance scoring (score.py)
- Vector cluster formation (cluster.py)
- Keyword / time-window / individual fallback clustering (fallback.py)
- Cluster labeling through a language model (labeling.py)
- Similar-articles result cache (cache.py)
- Generation and query orchestration (manager.py)
"""

from .similarity import cosine_similarity, find_similar_by_embedding, find_similar_articles

from .score import engagement_score, relevance_score

from .cluster import form_clusters

from .fallback import run_fallback_chain

from .labeling import (
    ClusterLabeler,
    LabelProvider,
    AnthropicLabelProvider,
    DummyLabelProvider,
    NoLabelProvider,
    LabelProviderFactory,
)

from .models import (
    ClusterScope,
    GLOBAL_SCOPE,
    Article,
    ArticleWithEmbedding,
    ArticleCluster,
    SimilarArticle,
    ClusterGenerationResult,
)

__all__ = [
    # Similarity
    'cosine_similarity',
    'find_similar_by_embedding',
    'find_similar_articles',

    # Scoring
    'engagement_score',
    'relevance_score',

    # Clustering
    'form_clusters',
    'run_fallback_chain',

    # Labeling
    'ClusterLabeler',
    'LabelProvider',
    'AnthropicLabelProvider',
    'DummyLabelProvider',
    'NoLabelProvider',
    'LabelProviderFactory',

    # Models
    'ClusterScope',
    'GLOBAL_SCOPE',
    'Article',
    'ArticleWithEmbedding',
    'ArticleCluster',
    'SimilarArticle',
    'ClusterGenerationResult',
]
