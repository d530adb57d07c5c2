"""
Tests for cluster labeling: providers, retry policy and fallback labels.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from tenacity import wait_none

from trendwire.trender.errors import PermanentLabelError, TransientLabelError
from trendwire.trender.labeling import (
    DEFAULT_SUMMARY,
    DEFAULT_TOPIC,
    MAX_RETRY_ATTEMPTS,
    AnthropicLabelProvider,
    ClusterLabeler,
    DummyLabelProvider,
    LabelProviderFactory,
    NoLabelProvider,
    build_label_prompt,
    fallback_label,
    parse_label_response,
)
from conftest import make_article


@pytest.fixture
def members():
    return [
        make_article("a1", title="Storm hits the coast", feed_name="Reuters",
                     excerpt="A powerful storm made landfall on Tuesday."),
        make_article("a2", title="Coastal storm leaves thousands without power", feed_name="CNN"),
    ]


def flaky_provider(*outcomes):
    provider = DummyLabelProvider()
    provider.generate_label = AsyncMock(side_effect=list(outcomes))
    return provider


class TestParsing:

    def test_parse_valid_response(self):
        label = parse_label_response("TOPIC: Coastal Storm\nSUMMARY: A storm hit the coast.")
        assert label.topic == "Coastal Storm"
        assert label.summary == "A storm hit the coast."

    def test_parse_truncates(self):
        label = parse_label_response(f"TOPIC: {'t' * 150}\nSUMMARY: {'s' * 300}")
        assert len(label.topic) == 100
        assert len(label.summary) == 200

    @pytest.mark.parametrize("text", [
        "",
        "Coastal Storm",
        "TOPIC: Coastal Storm",
        "SUMMARY: only a summary",
        "TOPIC: \nSUMMARY: blank topic",
    ])
    def test_parse_malformed(self, text):
        assert parse_label_response(text) is None

    def test_fallback_label(self, members):
        label = fallback_label(members)
        assert label.topic == "Storm hits the coast"
        assert label.summary == "A powerful storm made landfall on Tuesday."

    def test_fallback_label_without_excerpt(self, members):
        label = fallback_label(members[1:])
        assert label.topic == "Coastal storm leaves thousands without power"
        assert label.summary == DEFAULT_SUMMARY

    def test_fallback_label_empty(self):
        label = fallback_label([])
        assert (label.topic, label.summary) == (DEFAULT_TOPIC, DEFAULT_SUMMARY)

    def test_prompt_caps_members(self):
        many = [make_article(f"a{i}", title=f"Story number {i}") for i in range(15)]
        prompt = build_label_prompt(many)

        assert "[10]" in prompt
        assert "[11]" not in prompt
        assert "TOPIC:" in prompt and "SUMMARY:" in prompt


class TestClusterLabeler:

    @pytest.mark.asyncio
    async def test_retries_rate_limits_then_succeeds(self, members):
        provider = flaky_provider(
            TransientLabelError("rate limited", status_code=429),
            TransientLabelError("rate limited", status_code=429),
            "TOPIC: Coastal Storm\nSUMMARY: A storm hit the coast.",
        )
        labeler = ClusterLabeler(provider, wait=wait_none())

        label = await labeler.generate_cluster_label(members)

        assert label.topic == "Coastal Storm"
        assert provider.generate_label.await_count == 3
        assert provider.generate_label.await_count <= MAX_RETRY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, members):
        provider = flaky_provider(*[TransientLabelError("server error", status_code=503)] * 5)
        labeler = ClusterLabeler(provider, wait=wait_none())

        label = await labeler.generate_cluster_label(members)

        assert label == fallback_label(members)
        assert provider.generate_label.await_count == MAX_RETRY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_attempts_never_exceed_cap(self, members):
        provider = flaky_provider(*[TransientLabelError("server error", status_code=500)] * 10)
        labeler = ClusterLabeler(provider, max_attempts=8, wait=wait_none())

        await labeler.generate_cluster_label(members)

        assert provider.generate_label.await_count == MAX_RETRY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, members):
        provider = flaky_provider(PermanentLabelError("bad request", status_code=400))
        labeler = ClusterLabeler(provider, wait=wait_none())

        label = await labeler.generate_cluster_label(members)

        assert label == fallback_label(members)
        assert provider.generate_label.await_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_falls_back(self, members):
        provider = flaky_provider(RuntimeError("boom"))
        labeler = ClusterLabeler(provider, wait=wait_none())

        assert await labeler.generate_cluster_label(members) == fallback_label(members)

    @pytest.mark.asyncio
    async def test_malformed_reply_falls_back(self, members):
        provider = flaky_provider("I think this is about a storm.")
        labeler = ClusterLabeler(provider, wait=wait_none())

        assert await labeler.generate_cluster_label(members) == fallback_label(members)

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, members):
        async def stuck(_members):
            await asyncio.sleep(5)

        provider = DummyLabelProvider()
        provider.generate_label = AsyncMock(side_effect=stuck)
        labeler = ClusterLabeler(provider, timeout=0.05, wait=wait_none())

        label = await labeler.generate_cluster_label(members)

        assert label == fallback_label(members)
        assert provider.generate_label.await_count == 1

    @pytest.mark.asyncio
    async def test_no_provider_uses_fallback(self, members):
        labeler = ClusterLabeler(NoLabelProvider(), wait=wait_none())
        assert await labeler.generate_cluster_label(members) == fallback_label(members)

    @pytest.mark.asyncio
    async def test_dummy_provider_label(self, members):
        provider = DummyLabelProvider()
        labeler = ClusterLabeler(provider)

        label = await labeler.generate_cluster_label(members)

        assert label.topic == "Storm hits the coast"
        assert label.summary == "2 articles from 2 sources cover this story."
        assert provider.call_count == 1


class TestAnthropicProvider:

    def _provider(self, handler):
        client = httpx.AsyncClient(
            base_url="https://api.anthropic.test",
            transport=httpx.MockTransport(handler),
        )
        return AnthropicLabelProvider(api_key="test-key", client=client)

    @pytest.mark.asyncio
    async def test_success(self, members):
        def handler(request):
            body = json.loads(request.content)
            assert request.url.path == "/v1/messages"
            assert body["model"] == "claude-3-haiku-20240307"
            assert body["max_tokens"] == 200
            return httpx.Response(200, json={
                "content": [{"type": "text", "text": "TOPIC: Storm\nSUMMARY: Coast hit."}]
            })

        provider = self._provider(handler)
        text = await provider.generate_label(members)
        await provider.aclose()

        assert text == "TOPIC: Storm\nSUMMARY: Coast hit."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 529])
    async def test_transient_statuses(self, members, status):
        provider = self._provider(lambda request: httpx.Response(status, json={}))

        with pytest.raises(TransientLabelError) as exc_info:
            await provider.generate_label(members)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self, members):
        provider = self._provider(lambda request: httpx.Response(401, text="unauthorized"))

        with pytest.raises(PermanentLabelError):
            await provider.generate_label(members)

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self, members):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = self._provider(handler)

        with pytest.raises(TransientLabelError):
            await provider.generate_label(members)


class TestProviderFactory:

    def test_missing_api_key_selects_no_provider(self, settings):
        settings.label_provider = "anthropic"
        assert isinstance(LabelProviderFactory.create_provider(settings), NoLabelProvider)

    def test_anthropic_with_key(self, settings):
        settings.label_provider = "anthropic"
        settings.anthropic_api_key = "sk-test"
        provider = LabelProviderFactory.create_provider(settings)

        assert isinstance(provider, AnthropicLabelProvider)
        assert provider.model == settings.label_model

    def test_dummy_and_unknown(self, settings):
        assert isinstance(LabelProviderFactory.create_provider(settings), DummyLabelProvider)

        settings.label_provider = "does-not-exist"
        assert isinstance(LabelProviderFactory.create_provider(settings), NoLabelProvider)

    def test_list_providers(self):
        assert {"anthropic", "dummy", "none"} <= set(LabelProviderFactory.list_providers())

    def test_from_settings(self, settings):
        labeler = ClusterLabeler.from_settings(settings)
        assert isinstance(labeler.provider, DummyLabelProvider)
        assert labeler.max_attempts == settings.label_max_retries
