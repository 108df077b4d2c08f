"""
Proposal summarization through an OpenAI-compatible chat model.

Without an API key, or when the model call fails, a truncated-description
fallback with ``impact="Unknown"`` is returned instead of an error. Model
output is treated as untrusted: it must parse as a JSON object and both fields
are clamped before they are returned.
"""
import asyncio
import json
import time
from typing import Callable, Dict, Optional, Tuple

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from dao_radar.config import common_settings
from dao_radar.data_models.api_schemas import SummarizeResponse
from dao_radar.exceptions import InvalidInputError
from dao_radar.prompts.summary_prompts import SUMMARY_SYSTEM_PROMPT, get_summary_user_prompt
from dao_radar.utils.logger import logger

MAX_TITLE_CHARS = 500
MAX_DESCRIPTION_CHARS = 10000
MAX_SUMMARY_CHARS = 600
MAX_IMPACT_CHARS = 200
FALLBACK_SUMMARY_CHARS = 200
UNPARSED_SUMMARY_CHARS = 300
UNKNOWN_IMPACT = "Unknown"


def create_summary_model(api_key: str, model: Optional[str] = None, base_url: Optional[str] = None) -> BaseChatModel:
    return ChatOpenAI(
        model=model or common_settings.SUMMARY_MODEL,
        api_key=api_key,
        base_url=base_url or common_settings.SUMMARY_BASE_URL,
        timeout=common_settings.SUMMARY_TIMEOUT_SECONDS,
        max_retries=1,
        temperature=0.3,
        max_tokens=300,
        model_kwargs={"response_format": {"type": "json_object"}},
    )


def fallback_summary(title: str, description: str) -> SummarizeResponse:
    if description:
        summary = description[:FALLBACK_SUMMARY_CHARS]
        if len(description) > FALLBACK_SUMMARY_CHARS:
            summary += "..."
    else:
        summary = title
    return SummarizeResponse(summary=summary, impact=UNKNOWN_IMPACT)


def parse_model_output(content: str, title: str) -> SummarizeResponse:
    """Read ``{summary, impact}`` from model output and clamp both fields."""
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        parsed = None

    if isinstance(parsed, dict):
        summary = parsed.get("summary")
        impact = parsed.get("impact")
        summary = str(summary) if summary else title
        impact = str(impact) if impact else UNKNOWN_IMPACT
    else:
        summary = (content or "")[:UNPARSED_SUMMARY_CHARS] or title
        impact = UNKNOWN_IMPACT

    return SummarizeResponse(summary=summary[:MAX_SUMMARY_CHARS], impact=impact[:MAX_IMPACT_CHARS])


class ProposalSummarizer:
    """
    Summaries memoised per (title, description prefix) for a TTL.

    Expired entries are swept on every store and the cache never holds more
    than ``max_entries``; the oldest entries go first.
    """

    def __init__(
        self,
        model: Optional[BaseChatModel] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        api_key = api_key if api_key is not None else common_settings.GROQ_API_KEY
        if model is None and api_key:
            model = create_summary_model(api_key)
        self.model = model
        self.timeout = timeout or common_settings.SUMMARY_TIMEOUT_SECONDS
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else common_settings.SUMMARY_CACHE_TTL_SECONDS
        self.max_entries = max_entries if max_entries is not None else common_settings.SUMMARY_CACHE_MAX_ENTRIES
        self._clock = clock
        self._cache: Dict[str, Tuple[float, SummarizeResponse]] = {}
        if self.model is None:
            logger.warning("[Summarizer] No API key configured; summaries will use the fallback")

    @property
    def enabled(self) -> bool:
        return self.model is not None

    async def summarize(self, title: Optional[str], description: Optional[str]) -> SummarizeResponse:
        """
        Raises:
            InvalidInputError: If both title and description are empty
        """
        title = (title or "")[:MAX_TITLE_CHARS]
        description = (description or "")[:MAX_DESCRIPTION_CHARS]
        if not title and not description:
            raise InvalidInputError("Title or description required")

        cache_key = f"{title}::{description[:FALLBACK_SUMMARY_CHARS]}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            stored_at, result = cached
            if self._clock() - stored_at < self.ttl_seconds:
                logger.info("[Summarizer] Cache HIT")
                return result
            del self._cache[cache_key]

        if self.model is None:
            return fallback_summary(title, description)

        messages = [SystemMessage(content=SUMMARY_SYSTEM_PROMPT), HumanMessage(content=get_summary_user_prompt(title, description))]
        try:
            response = await asyncio.wait_for(self.model.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Summarizer] Model call timed out after {self.timeout:.0f}s, using fallback")
            return fallback_summary(title, description)
        except Exception as e:
            logger.error(f"[Summarizer] Model call failed, using fallback: {e}")
            return fallback_summary(title, description)

        content = response.content if isinstance(response.content, str) else str(response.content)
        result = parse_model_output(content, title)
        self._store(cache_key, result)
        return result

    def _store(self, cache_key: str, result: SummarizeResponse) -> None:
        now = self._clock()
        self._cache.pop(cache_key, None)
        self._cache[cache_key] = (now, result)
        self._cleanup_expired(now)
        while len(self._cache) > self.max_entries:
            del self._cache[next(iter(self._cache))]

    def _cleanup_expired(self, now: float) -> None:
        expired = [key for key, (stored_at, _) in self._cache.items() if now - stored_at >= self.ttl_seconds]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.info(f"[Summarizer] Cleaned up {len(expired)} expired cache entries")
