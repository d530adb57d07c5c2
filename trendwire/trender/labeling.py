"""
Label provider interface and cluster labeling.

Produces a topic title and one-sentence summary for a cluster by asking an
external language model. Providers are swappable behind `LabelProvider`;
`ClusterLabeler` owns retry, timeout and the deterministic fallback label,
so a labeling failure never aborts a generation run.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from trendwire.core.logging import get_logger
from trendwire.core.settings import Settings
from trendwire.trender.errors import LabelProviderError, PermanentLabelError, TransientLabelError
from trendwire.trender.models import AnyArticle, ClusterLabel, member_sources

logger = get_logger(__name__)

MAX_RETRY_ATTEMPTS = 3
MAX_PROMPT_ARTICLES = 10
MAX_TOPIC_LENGTH = 100
MAX_SUMMARY_LENGTH = 200
EXCERPT_PROMPT_LENGTH = 150

DEFAULT_TOPIC = "Trending Topic"
DEFAULT_SUMMARY = "Multiple sources covering this story."

ANTHROPIC_API_VERSION = "2023-06-01"

_TOPIC_RE = re.compile(r"TOPIC:[ \t]*(.+?)(?:\n|$)")
_SUMMARY_RE = re.compile(r"SUMMARY:[ \t]*(.+?)(?:\n|$)")


def build_label_prompt(members: Sequence[AnyArticle]) -> str:
    """Prompt listing up to MAX_PROMPT_ARTICLES members."""
    lines = []
    for i, article in enumerate(members[:MAX_PROMPT_ARTICLES], start=1):
        entry = f'[{i}] "{article.title}" ({article.feed_name})'
        if article.excerpt:
            entry += f"\n   {article.excerpt[:EXCERPT_PROMPT_LENGTH]}..."
        lines.append(entry)

    articles_block = "\n\n".join(lines)
    return (
        "Analyze these related news articles and generate a topic title and summary.\n\n"
        f"Articles:\n{articles_block}\n\n"
        "Generate:\n"
        "1. A concise topic title (3-8 words) that captures the main story\n"
        "2. A one-sentence summary (max 150 characters) explaining what's happening\n\n"
        "Format your response exactly as:\n"
        "TOPIC: [your topic title]\n"
        "SUMMARY: [your summary]\n\n"
        "Be factual and neutral. Focus on what the articles have in common."
    )


def parse_label_response(text: str) -> Optional[ClusterLabel]:
    """Extract TOPIC/SUMMARY lines; None when either is missing or blank."""
    if not text:
        return None

    topic_match = _TOPIC_RE.search(text)
    summary_match = _SUMMARY_RE.search(text)
    if not topic_match or not summary_match:
        return None

    topic = topic_match.group(1).strip()[:MAX_TOPIC_LENGTH]
    summary = summary_match.group(1).strip()[:MAX_SUMMARY_LENGTH]
    if not topic or not summary:
        return None

    return ClusterLabel(topic=topic, summary=summary)


def fallback_label(members: Sequence[AnyArticle]) -> ClusterLabel:
    """Deterministic label built from the first member."""
    if not members:
        return ClusterLabel(topic=DEFAULT_TOPIC, summary=DEFAULT_SUMMARY)

    first = members[0]
    return ClusterLabel(
        topic=(first.title or '')[:MAX_TOPIC_LENGTH] or DEFAULT_TOPIC,
        summary=(first.excerpt or '')[:MAX_SUMMARY_LENGTH] or DEFAULT_SUMMARY,
    )


class LabelProvider(ABC):
    """Abstract base class for label providers."""

    @abstractmethod
    async def generate_label(self, members: Sequence[AnyArticle]) -> str:
        """
        Ask the model to label a cluster.

        Args:
            members: Cluster members (already capped for prompt size)

        Returns:
            Raw model text, expected in TOPIC:/SUMMARY: form

        Raises:
            TransientLabelError: rate limits, server errors, transport failures
            PermanentLabelError: anything else
        """
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Check provider health and availability."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identification name."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        return None


class AnthropicLabelProvider(LabelProvider):
    """Labels clusters through the Anthropic Messages API."""

    def __init__(self,
                 api_key: str,
                 model: str = "claude-3-haiku-20240307",
                 base_url: str = "https://api.anthropic.com",
                 timeout: float = 20.0,
                 max_tokens: int = 200,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._client = client

    @property
    def provider_name(self) -> str:
        return "Anthropic"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": ANTHROPIC_API_VERSION,
                    "content-type": "application/json",
                },
            )
        return self._client

    async def generate_label(self, members: Sequence[AnyArticle]) -> str:
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": build_label_prompt(members)}],
        }

        try:
            response = await self._get_client().post("/v1/messages", json=payload)
        except httpx.TransportError as e:
            raise TransientLabelError(f"Transport error: {type(e).__name__}: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientLabelError(f"Anthropic API error ({status})", status_code=status)
        if status >= 400:
            raise PermanentLabelError(f"Anthropic API error ({status}): {response.text[:200]}",
                                      status_code=status)

        try:
            data = response.json()
        except ValueError as e:
            raise PermanentLabelError("Anthropic API returned invalid JSON") from e

        blocks = data.get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type") == "text")

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "configured",
            "provider": self.provider_name,
            "model": self.model,
            "client_open": self._client is not None and not self._client.is_closed,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class DummyLabelProvider(LabelProvider):
    """
    Deterministic offline provider for development and tests.

    Labels with the first member's title and a source count.
    """

    def __init__(self):
        self.call_count = 0

    @property
    def provider_name(self) -> str:
        return "DummyLabel"

    async def generate_label(self, members: Sequence[AnyArticle]) -> str:
        self.call_count += 1
        first = members[0].title if members else DEFAULT_TOPIC
        sources = len(member_sources(members))
        return (
            f"TOPIC: {first}\n"
            f"SUMMARY: {len(members)} articles from {sources} sources cover this story."
        )

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "provider": self.provider_name,
            "calls_made": self.call_count,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }


class NoLabelProvider(LabelProvider):
    """
    Provider used when no labeling service is configured.

    Every call fails permanently so the fallback label is used.
    """

    @property
    def provider_name(self) -> str:
        return "NoLabel"

    async def generate_label(self, members: Sequence[AnyArticle]) -> str:
        raise PermanentLabelError("No label provider configured")

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "unavailable",
            "provider": self.provider_name,
            "message": "No label provider configured",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }


class LabelProviderFactory:
    """Factory for creating label provider instances."""

    _providers = {
        "anthropic": AnthropicLabelProvider,
        "dummy": DummyLabelProvider,
        "none": NoLabelProvider,
    }

    @classmethod
    def create_provider(cls, settings: Settings) -> LabelProvider:
        """
        Create the provider named by `settings.label_provider`.

        Unknown names and a missing Anthropic API key both yield NoLabelProvider.
        """
        provider_type = (settings.label_provider or "none").lower()

        if provider_type not in cls._providers:
            logger.warning(f"Unknown label provider: {provider_type}, labels will use fallback")
            return NoLabelProvider()

        if provider_type == "anthropic":
            if not settings.anthropic_api_key:
                logger.warning("Anthropic API key not configured - cluster labels unavailable")
                return NoLabelProvider()
            return AnthropicLabelProvider(
                api_key=settings.anthropic_api_key,
                model=settings.label_model,
                base_url=settings.anthropic_base_url,
                timeout=settings.label_timeout_seconds,
            )

        return cls._providers[provider_type]()

    @classmethod
    def register_provider(cls, name: str, provider_class):
        """Register a new provider type."""
        cls._providers[name] = provider_class

    @classmethod
    def list_providers(cls) -> List[str]:
        """List available provider types."""
        return list(cls._providers.keys())


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Label provider error ({error}), retrying in {delay:.1f}s "
        f"(attempt {retry_state.attempt_number}/{MAX_RETRY_ATTEMPTS})"
    )


class ClusterLabeler:
    """Labels clusters with bounded retry, per-call timeout and a fallback."""

    def __init__(self,
                 provider: LabelProvider,
                 max_attempts: int = MAX_RETRY_ATTEMPTS,
                 timeout: float = 20.0,
                 wait=None):
        self.provider = provider
        self.max_attempts = max(1, min(max_attempts, MAX_RETRY_ATTEMPTS))
        self.timeout = timeout
        self.wait = wait if wait is not None else wait_exponential(multiplier=1, min=1, max=4)

    @classmethod
    def from_settings(cls, settings: Settings, provider: Optional[LabelProvider] = None) -> "ClusterLabeler":
        return cls(
            provider or LabelProviderFactory.create_provider(settings),
            max_attempts=settings.label_max_retries,
            timeout=settings.label_timeout_seconds,
        )

    async def _request(self, members: Sequence[AnyArticle]) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(TransientLabelError),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await asyncio.wait_for(
                    self.provider.generate_label(members),
                    timeout=self.timeout,
                )

    async def generate_cluster_label(self, members: Sequence[AnyArticle]) -> ClusterLabel:
        """
        Topic and summary for a cluster; never raises.

        Transient provider errors are retried with exponential backoff; any
        other failure, a timeout, or an unparseable reply yields the
        fallback label.
        """
        fallback = fallback_label(members)
        if not members:
            return fallback

        try:
            text = await self._request(list(members[:MAX_PROMPT_ARTICLES]))
        except asyncio.TimeoutError:
            logger.warning(f"Label request timed out after {self.timeout}s, using fallback label")
            return fallback
        except LabelProviderError as e:
            logger.error(f"Failed to generate cluster label ({self.provider.provider_name}): {e}")
            return fallback
        except Exception as e:
            logger.error(f"Unexpected label provider failure: {type(e).__name__}: {e}")
            return fallback

        label = parse_label_response(text)
        if label is None:
            logger.warning("Could not parse label response, using fallback label")
            return fallback

        return label

    async def aclose(self) -> None:
        await self.provider.aclose()
