"""
AI text service backed by Claude.

The API key must be defined in a .env file in the backend root:

ANTHROPIC_API_KEY=your_real_key_here

Set AI_FIXTURE_MODE=1 to get deterministic canned responses with no
network calls (useful for UI and storage testing without burning tokens).
"""

import hashlib
import json
import logging
import os
from pathlib import Path

from anthropic import Anthropic, APIError
from dotenv import load_dotenv

from errors import EmptyResponseError, HttpError, NoKeyError
from transients import TransientStore

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() not in {"", "0", "false", "no", "off"}


MODEL = os.getenv("CLAUDE_MODEL", "").strip() or "claude-3-5-sonnet-latest"
AI_SCAN_MODE = os.getenv("AI_SCAN_MODE", "full").strip().lower()
AI_CACHE_MINUTES = int(os.getenv("AI_CACHE_MINUTES", "0"))
AI_FIXTURE_MODE = _env_flag("AI_FIXTURE_MODE")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))

# scan mode -> (max_tokens, temperature)
SCAN_MODE_DEFAULTS = {
    "quick": (250, 0.3),
    "full": (700, 0.6),
}

SYSTEM_MESSAGE = (
    "You are a helpful assistant that writes concise, SEO-aware content for websites, "
    "optimized for AI-driven search engines."
)

FIXTURE_MISSING_TOPICS = {
    "missing_topics": [
        {"topic": "Pricing / cost breakdown", "reason": "Users often ask cost-related questions.", "priority": "high"},
        {"topic": "Step-by-step usage", "reason": "Explicit steps improve clarity for assistants.", "priority": "medium"},
        {"topic": "Common mistakes", "reason": "Addresses frequent confusion points.", "priority": "medium"},
        {"topic": "Alternatives & comparisons", "reason": "Helps answer 'vs' queries.", "priority": "low"},
    ],
    "suggested_questions": [
        "What is this used for?",
        "How do I set it up?",
        "How much does it cost?",
    ],
}

FIXTURE_ENTITIES = {
    "entities": [
        {"name": "Content Marketing", "type": "topic", "role": "main", "confidence": 95},
        {"name": "Search Engines", "type": "technology", "role": "supporting", "confidence": 80},
    ]
}

FIXTURE_QA = (
    "Q: What is this page about?\n"
    "A: It explains the topic in a clear, structured way.\n"
    "Q: Who is it for?\n"
    "A: Readers looking for practical guidance and quick answers.\n"
    "Q: What are the key takeaways?\n"
    "A: The main points, steps, and common questions are covered."
)

FIXTURE_SUMMARY = (
    "Fixture Mode: This is a placeholder AI response so you can test the UI, storage, "
    "and workflows without making any API calls."
)


def fixture_for_prompt(prompt: str) -> str:
    """Deterministic response chosen by the shape of the prompt."""
    p = prompt.lower()
    if "missing_topics" in p:
        return json.dumps(FIXTURE_MISSING_TOPICS)
    if '"entities"' in p:
        return json.dumps(FIXTURE_ENTITIES)
    if "format your response exactly like this" in p:
        return FIXTURE_QA
    return FIXTURE_SUMMARY


def _extract_response_text(response: object) -> str:
    content = ""
    for block in getattr(response, "content", []) or []:
        text = getattr(block, "text", None)
        if text:
            content += text
    return content.strip()


class AITextService:
    """`complete(prompt)` against Claude, with fixture mode and an optional prompt cache.

    No retries happen here: one failed call fails that single enrichment.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = MODEL,
        scan_mode: str = AI_SCAN_MODE,
        fixture_mode: bool = AI_FIXTURE_MODE,
        cache: TransientStore | None = None,
        cache_minutes: int = AI_CACHE_MINUTES,
        timeout_seconds: float = AI_TIMEOUT_SECONDS,
        client: Anthropic | None = None,
    ):
        self.api_key = (api_key if api_key is not None else os.getenv("ANTHROPIC_API_KEY", "")).strip()
        self.model = model
        self.scan_mode = scan_mode if scan_mode in SCAN_MODE_DEFAULTS else "full"
        self.fixture_mode = fixture_mode
        self.cache = cache
        self.cache_minutes = max(0, int(cache_minutes))
        self.timeout_seconds = timeout_seconds
        self._client = client

    def is_available(self) -> bool:
        return self.fixture_mode or bool(self.api_key)

    def _get_client(self) -> Anthropic:
        if self._client is None:
            self._client = Anthropic(
                api_key=self.api_key,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        return self._client

    def _cache_key(self, prompt: str) -> str:
        digest = hashlib.md5(f"{self.scan_mode}|{prompt}".encode("utf-8")).hexdigest()
        return f"ai_{digest}"

    def complete(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        system: str = SYSTEM_MESSAGE,
    ) -> str:
        """Return generated text. Raises NoKeyError, HttpError or EmptyResponseError."""
        if self.fixture_mode:
            return fixture_for_prompt(prompt)

        use_cache = self.cache is not None and self.cache_minutes > 0
        if use_cache:
            hit = self.cache.get(self._cache_key(prompt))
            if isinstance(hit, str) and hit:
                return hit

        if not self.api_key:
            raise NoKeyError("Anthropic API key is not configured.")

        default_tokens, default_temperature = SCAN_MODE_DEFAULTS[self.scan_mode]
        try:
            response = self._get_client().messages.create(
                model=self.model,
                max_tokens=max_tokens or default_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
                temperature=default_temperature if temperature is None else temperature,
            )
        except APIError as e:
            logger.warning("AI request failed: %s", e)
            raise HttpError(f"Error calling Claude API: {e}") from e

        text = _extract_response_text(response)
        if not text:
            raise EmptyResponseError("Claude API returned an empty response.")
        if getattr(response, "stop_reason", None) == "max_tokens":
            logger.warning("AI output hit max_tokens for model=%s", self.model)

        if use_cache:
            self.cache.set(self._cache_key(prompt), text, self.cache_minutes * 60)
        return text
