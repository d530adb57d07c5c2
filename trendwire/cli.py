"""Command line entry point for scheduled clustering runs.

    python -m trendwire generate [--user-id U] [--feed-id F ...] [--lookback-hours N]
    python -m trendwire expire
    python -m trendwire init-db
    python -m trendwire similar ARTICLE_ID [--user-id U]

Each command runs once against the configured database and prints a JSON
summary on stdout.
"""

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional

from trendwire.core.db import create_all, create_engine_from_settings, create_session_factory
from trendwire.core.logging import get_logger, setup_logging
from trendwire.core.settings import get_settings
from trendwire.storage.sql import SqlClusteringStorage
from trendwire.trender.cache import SimilarArticlesCache
from trendwire.trender.labeling import ClusterLabeler
from trendwire.trender.manager import ClusteringServiceManager
from trendwire.trender.models import ClusterScope

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='trendwire', description='Trending topic clustering')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    generate = subparsers.add_parser('generate', help='Generate clusters for a scope')
    generate.add_argument('--user-id', type=str, help='Cluster the feeds this user subscribes to')
    generate.add_argument('--feed-id', action='append', dest='feed_ids',
                          help='Restrict to a feed (repeatable)')
    generate.add_argument('--lookback-hours', type=int, help='Article lookback window in hours')
    generate.add_argument('--keep-existing', action='store_true',
                          help='Do not delete the scope\'s previous clusters')

    subparsers.add_parser('expire', help='Delete expired clusters')
    subparsers.add_parser('init-db', help='Create missing tables')

    similar = subparsers.add_parser('similar', help='Find articles similar to one article')
    similar.add_argument('article_id', type=str)
    similar.add_argument('--user-id', type=str, help='Search within this user\'s feeds')

    return parser


def _scope(user_id: Optional[str], feed_ids: Optional[List[str]] = None) -> ClusterScope:
    return ClusterScope(user_id=user_id, feed_ids=tuple(feed_ids) if feed_ids else None)


async def run_command(args: argparse.Namespace) -> Dict[str, Any]:
    """Run one command and return its JSON-serialisable result."""
    settings = get_settings()
    engine = create_engine_from_settings(settings)
    storage = SqlClusteringStorage(create_session_factory(engine))
    manager = ClusteringServiceManager(
        storage,
        ClusterLabeler.from_settings(settings),
        settings=settings,
        cache=SimilarArticlesCache(settings.similar_cache_ttl_seconds, settings.redis_url),
    )

    try:
        if args.command == 'init-db':
            await create_all(engine)
            return {'initialized': True}

        if args.command == 'generate':
            result = await manager.generate_clusters(
                _scope(args.user_id, args.feed_ids),
                lookback_hours=args.lookback_hours,
                replace_existing=not args.keep_existing,
            )
            return result.to_dict()

        if args.command == 'expire':
            return {'deleted': await manager.expire_old_clusters()}

        similar = await manager.find_similar_articles(args.article_id, _scope(args.user_id))
        return {'article_id': args.article_id, 'similar': [s.to_dict() for s in similar]}
    finally:
        await manager.aclose()
        await engine.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging("trendwire", level="DEBUG" if args.verbose else None)

    try:
        output = asyncio.run(run_command(args))
    except Exception as e:
        logger.error(f"Command '{args.command}' failed: {type(e).__name__}: {e}")
        print(json.dumps({'command': args.command, 'error': str(e)}))
        return 1

    print(json.dumps(output, indent=2))
    return 0
