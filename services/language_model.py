# services/language_model.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# This is the only place the engine talks to a language model. It offers
# two calls:
#
#   embed(text)                 → a fixed-length vector of floats
#   complete(system, prompt)    → the model's text answer
#
# MULTI-PROVIDER SUPPORT:
#   1. OpenRouter (preferred when OPENROUTER_API_KEY is set) or OpenAI
#      directly — both through the OpenAI SDK.
#   2. Anthropic — fallback for completions only. Anthropic has no
#      embedding endpoint, so embeddings need provider 1.
#
# Rate limits and overloaded upstreams (429/502/503/529) are retried with
# exponential backoff plus jitter. Everything else is raised straight away;
# the embedding pipeline decides what a failure means (it falls back to
# default values).
#
# With no API key at all the service can still be constructed — it just
# reports `available == False` and every call raises ServiceUnavailableError.
# ============================================================================

import asyncio
import random
from abc import ABC, abstractmethod

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from config.settings import (
    OPENROUTER_API_KEY, OPENROUTER_BASE_URL, OPENAI_API_KEY,
    ANTHROPIC_API_KEY, ANTHROPIC_MODEL, ANALYSIS_MODEL, EMBEDDING_MODEL,
    ANALYSIS_MAX_TOKENS, ANALYSIS_TEMPERATURE, RETRYABLE_STATUS_CODES,
)


class ServiceUnavailableError(RuntimeError):
    """Raised when no provider is configured for the requested call."""


class LanguageModelService(ABC):
    """The narrow interface the engine relies on. Tests provide fakes."""

    @property
    @abstractmethod
    def available(self) -> bool:
        """True if at least one call type can reach a provider."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for `text`."""

    @abstractmethod
    async def complete(self, system_prompt: str, prompt: str,
                       max_tokens: int = ANALYSIS_MAX_TOKENS,
                       temperature: float = ANALYSIS_TEMPERATURE) -> str:
        """Return the model's text completion."""


class OpenAIModelService(LanguageModelService):
    """
    OpenAI-compatible primary provider with an Anthropic completion fallback.

    Constructor arguments default to config/settings.py so the orchestrator
    can simply call OpenAIModelService(); tests pass explicit keys.
    """

    def __init__(self, openrouter_api_key: str = OPENROUTER_API_KEY,
                 openai_api_key: str = OPENAI_API_KEY,
                 anthropic_api_key: str = ANTHROPIC_API_KEY,
                 analysis_model: str = ANALYSIS_MODEL,
                 embedding_model: str = EMBEDDING_MODEL,
                 anthropic_model: str = ANTHROPIC_MODEL):
        self.analysis_model = analysis_model
        self.embedding_model = embedding_model
        self.anthropic_model = anthropic_model

        # Optional callback for retry progress.
        # Signature: on_retry(attempt: int, max_retries: int, delay: float)
        self.on_retry = None

        self.primary_client = None
        self.primary_name = None
        if openrouter_api_key:
            self.primary_client = AsyncOpenAI(base_url=OPENROUTER_BASE_URL, api_key=openrouter_api_key)
            self.primary_name = "OpenRouter"
        elif openai_api_key:
            self.primary_client = AsyncOpenAI(api_key=openai_api_key)
            self.primary_name = "OpenAI"

        self.fallback_client = None
        if anthropic_api_key:
            self.fallback_client = AsyncAnthropic(api_key=anthropic_api_key)

        if self.primary_client:
            print(f"[LLM] Primary provider: {self.primary_name} ({analysis_model}, {embedding_model})")
        if self.fallback_client:
            label = "Fallback" if self.primary_client else "Primary"
            print(f"[LLM] {label} completion provider: Anthropic ({anthropic_model})")
        if not self.primary_client and not self.fallback_client:
            print("[LLM] WARNING: No LLM API key configured. Embeddings and analysis "
                  "will use default values. Set OPENROUTER_API_KEY or OPENAI_API_KEY in .env")

    @property
    def available(self) -> bool:
        return self.primary_client is not None or self.fallback_client is not None

    # ── RETRY LOOP ───────────────────────────────────────────────────

    async def _with_retry(self, provider: str, call):
        """
        Await `call()` with exponential backoff on retryable HTTP statuses.

        `call` is a zero-argument function returning a fresh awaitable each
        time, since an awaited coroutine cannot be awaited again.
        """
        from config.settings import API_MAX_RETRIES, API_RETRY_BASE_DELAY

        for attempt in range(API_MAX_RETRIES):
            try:
                return await call()

            except Exception as e:
                status_code = getattr(e, 'status_code', None)
                is_retryable = status_code in RETRYABLE_STATUS_CODES if status_code else False
                has_retries_left = attempt < API_MAX_RETRIES - 1

                if is_retryable and has_retries_left:
                    base_delay = API_RETRY_BASE_DELAY * (2 ** attempt)
                    jitter = base_delay * 0.25 * (2 * random.random() - 1)
                    delay = base_delay + jitter

                    print(f"   [RETRY] {provider} {status_code} error, waiting {delay:.1f}s "
                          f"(attempt {attempt + 1}/{API_MAX_RETRIES})")

                    if self.on_retry:
                        self.on_retry(attempt + 1, API_MAX_RETRIES, delay)

                    await asyncio.sleep(delay)
                else:
                    raise

        raise RuntimeError(f"{provider} retry loop exited unexpectedly")

    # ── EMBEDDINGS ───────────────────────────────────────────────────

    async def embed(self, text: str) -> list[float]:
        if not self.primary_client:
            raise ServiceUnavailableError(
                "No embedding provider available. Set OPENROUTER_API_KEY or OPENAI_API_KEY in .env"
            )

        response = await self._with_retry(
            self.primary_name,
            lambda: self.primary_client.embeddings.create(
                model=self.embedding_model,
                input=text,
                encoding_format="float",
            ),
        )
        return list(response.data[0].embedding)

    # ── COMPLETIONS ──────────────────────────────────────────────────

    async def _complete_primary(self, system_prompt, prompt, max_tokens, temperature) -> str:
        response = await self._with_retry(
            self.primary_name,
            lambda: self.primary_client.chat.completions.create(
                model=self.analysis_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            ),
        )
        return response.choices[0].message.content or ''

    async def _complete_anthropic(self, system_prompt, prompt, max_tokens, temperature) -> str:
        response = await self._with_retry(
            "Anthropic",
            lambda: self.fallback_client.messages.create(
                model=self.anthropic_model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": prompt}],
            ),
        )
        return ''.join(block.text for block in response.content if hasattr(block, 'text'))

    async def complete(self, system_prompt: str, prompt: str,
                       max_tokens: int = ANALYSIS_MAX_TOKENS,
                       temperature: float = ANALYSIS_TEMPERATURE) -> str:
        """
        Call the completion endpoint with automatic provider fallback.

        Strategy:
          1. If the OpenAI-compatible provider is configured, try it first.
          2. If it fails and Anthropic is configured, fall back.
          3. If only Anthropic is configured, use it directly.
        """
        if self.primary_client:
            try:
                return await self._complete_primary(system_prompt, prompt, max_tokens, temperature)
            except Exception as e:
                if self.fallback_client:
                    print(f"   [FALLBACK] {self.primary_name} failed ({e}). Switching to Anthropic.")
                    return await self._complete_anthropic(system_prompt, prompt, max_tokens, temperature)
                raise

        if self.fallback_client:
            return await self._complete_anthropic(system_prompt, prompt, max_tokens, temperature)

        raise ServiceUnavailableError(
            "No LLM provider available. Set OPENROUTER_API_KEY, OPENAI_API_KEY or ANTHROPIC_API_KEY in .env"
        )
