"""
Tests for configuration loading, per-run overrides and logging setup.
"""

import logging
import sys

import pytest
from pydantic import ValidationError

from trendwire.core.logging import get_logging_config, setup_logging
from trendwire.core.settings import ClusterSettings, Settings
from trendwire import cli
from trendwire.cli import build_parser


class TestSettings:

    def test_defaults(self, settings):
        assert settings.cluster_similarity_threshold == 0.4
        assert settings.min_cluster_articles == 1
        assert settings.min_cluster_sources == 1
        assert settings.min_engagement_threshold == 0.2
        assert settings.cluster_expiration_hours == 168
        assert settings.similar_articles_threshold == 0.7
        assert settings.max_similar_articles == 5
        assert settings.similar_cache_ttl_seconds == 3600
        assert settings.label_model == "claude-3-haiku-20240307"
        assert settings.label_max_retries == 3

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("CLUSTER_SIMILARITY_THRESHOLD", "0.55")
        monkeypatch.setenv("LABEL_PROVIDER", "none")
        settings = Settings(_env_file=None)

        assert settings.cluster_similarity_threshold == 0.55
        assert settings.label_provider == "none"

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, cluster_similarity_threshold=1.5)


class TestClusterSettings:

    def test_from_settings(self, settings):
        cluster_settings = ClusterSettings.from_settings(settings)
        assert cluster_settings == ClusterSettings()

    def test_overrides(self):
        base = ClusterSettings()
        overridden = base.with_overrides({
            'min_cluster_sources': 2,
            'cluster_similarity_threshold': 0.6,
            'cluster_time_window_hours': None,
            'unrelated': 'ignored',
        })

        assert overridden.min_sources == 2
        assert overridden.similarity_threshold == 0.6
        assert overridden.min_articles == base.min_articles
        assert overridden.min_engagement == base.min_engagement

    def test_no_overrides(self):
        base = ClusterSettings()
        assert base.with_overrides(None) is base
        assert base.with_overrides({}) is base


class TestLogging:

    def test_console_formatter_in_development(self, settings):
        config = get_logging_config("trendwire", settings)

        assert config["handlers"]["stderr"]["formatter"] == "console"
        assert "[trendwire]" in config["formatters"]["console"]["format"]

    def test_json_formatter_in_production(self, settings):
        settings.environment = "production"
        config = get_logging_config("trendwire", settings)

        assert config["handlers"]["stderr"]["formatter"] == "json"
        assert config["formatters"]["json"]["()"] == "pythonjsonlogger.json.JsonFormatter"
        assert config["formatters"]["json"]["static_fields"] == {"service": "trendwire"}

    def test_level_override(self, settings):
        config = get_logging_config(settings=settings, level="debug")
        assert config["loggers"]["trendwire"]["level"] == "DEBUG"
        assert config["loggers"]["httpx"]["level"] == "WARNING"

    def test_setup_logging_writes_to_stderr(self):
        setup_logging("trendwire")
        handler = logging.getLogger("trendwire").handlers[0]
        assert handler.stream is sys.stderr


class TestCli:

    def test_generate_arguments(self):
        args = build_parser().parse_args([
            "generate", "--user-id", "u1", "--feed-id", "f1", "--feed-id", "f2", "--lookback-hours", "24",
        ])

        assert args.command == "generate"
        assert args.user_id == "u1"
        assert args.feed_ids == ["f1", "f2"]
        assert args.lookback_hours == 24
        assert not args.keep_existing

    def test_similar_arguments(self):
        args = build_parser().parse_args(["similar", "a1"])
        assert args.command == "similar"
        assert args.article_id == "a1"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    @pytest.mark.asyncio
    async def test_run_against_empty_database(self, tmp_path, monkeypatch):
        settings = Settings(
            _env_file=None,
            db_url=f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}",
            label_provider="none",
        )
        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        parser = build_parser()

        assert await cli.run_command(parser.parse_args(["init-db"])) == {'initialized': True}

        output = await cli.run_command(parser.parse_args(["generate"]))
        assert output['clusters'] == []
        assert output['method'] == "none"

        assert await cli.run_command(parser.parse_args(["expire"])) == {'deleted': 0}
