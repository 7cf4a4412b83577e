# memory/embeddings.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# Turns one email into two things, using the language model service:
#
#   1. An embedding — a list of floats capturing what the email is about,
#      so we can later ask "which emails are most like this one?"
#   2. A structured analysis — topics, one-line summary, sentiment and
#      urgency, parsed from a strict 4-line model answer.
#
# Both calls run at the same time. Either one can fail (no API key,
# timeout, HTTP error, a garbled answer) without stopping the other: the
# failed half is replaced with documented defaults. Only an unexpected
# error while putting the result together raises VectorizationError.
#
# Results are kept in an in-memory vector store (an LRU map keyed by
# email id) that supports cosine-similarity search.
# ============================================================================

import asyncio
import math
import re
from collections import OrderedDict
from typing import Optional

from config.settings import (
    EMBEDDING_DIMENSIONS, VECTOR_STORE_MAX_SIZE, LLM_CALL_TIMEOUT,
    LLM_MAX_CONCURRENCY, SIMILARITY_THRESHOLD, SIMILARITY_LIMIT,
)
from memory.models import ContentAnalysis, EmailContent, EnhancedEmailVector, VectorMetadata
from services.language_model import LanguageModelService


SENTIMENTS = ('positive', 'negative', 'neutral')
URGENCIES = ('high', 'medium', 'low')

ANALYSIS_SYSTEM_PROMPT = (
    "You are an email analysis expert. Provide concise, accurate analysis "
    "in the exact format requested."
)

ANALYSIS_PROMPT_TEMPLATE = """Analyze the following email and provide structured insights.
Format your response exactly as shown, with each element on its own line:

TOPICS: key topics, separated by commas
SUMMARY: one-line summary of the main point
SENTIMENT: exactly one of (positive, negative, neutral)
URGENCY: exactly one of (high, medium, low) based on:
  - high: immediate action needed, time-sensitive
  - medium: needs attention but not immediate
  - low: informational or no action needed

Email Subject: {subject}
Email Body: {body}

Respond with exactly 4 lines, no additional text."""

# Answer lines in order; a line's label ("TOPICS:", "1. TOPICS:") is stripped when present
_LINE_LABELS = ('TOPICS', 'SUMMARY', 'SENTIMENT', 'URGENCY')


class VectorizationError(RuntimeError):
    """Raised when an email could not be turned into a vector record at all."""


class MalformedAnalysisError(ValueError):
    """The model's analysis answer did not follow the 4-line contract."""


# ============================================================================
# PURE HELPERS
# ============================================================================

def cosine_similarity(a: list[float], b: list[float]) -> float:
    """
    Cosine of the angle between two vectors.

    Defined as 0.0 when either vector is all zeros or the lengths differ,
    so a fallback (zero) vector never produces NaN or matches anything.
    """
    if len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot / (norm_a * norm_b)


def _strip_label(line: str, label: str) -> str:
    match = re.match(rf'^\s*(?:\d+\.\s*)?{label}:\s*', line, flags=re.IGNORECASE)
    if not match:
        return line.strip()
    return line[match.end():].strip()


def parse_analysis(text: str) -> ContentAnalysis:
    """
    Parse the strict 4-line analysis answer.

    Raises MalformedAnalysisError unless there are exactly four non-empty
    lines and sentiment/urgency are valid. Labels are optional; the line
    position decides which field a line fills.
    A response is accepted whole or not at all.
    """
    lines = [line for line in (text or '').split('\n') if line.strip()]
    if len(lines) != 4:
        raise MalformedAnalysisError(f"Expected 4 lines, got {len(lines)}")

    topics_raw, summary, sentiment, urgency = (
        _strip_label(line, label) for line, label in zip(lines, _LINE_LABELS)
    )

    sentiment = sentiment.lower()
    urgency = urgency.lower()
    if sentiment not in SENTIMENTS:
        raise MalformedAnalysisError(f"Invalid sentiment value: {sentiment!r}")
    if urgency not in URGENCIES:
        raise MalformedAnalysisError(f"Invalid urgency value: {urgency!r}")

    topics = [t.strip() for t in topics_raw.split(',') if t.strip()]

    return ContentAnalysis(
        topics=topics or ['unspecified'],
        summary=summary or 'No summary available',
        sentiment=sentiment,
        urgency=urgency,
    )


def fallback_analysis(email: EmailContent) -> ContentAnalysis:
    """Defaults used whenever the analysis call can't be trusted."""
    if email.subject:
        return ContentAnalysis(topics=[email.subject.lower()], summary=email.subject,
                               sentiment='neutral', urgency='medium')
    return ContentAnalysis(topics=['unspecified'], summary='Analysis failed',
                           sentiment='neutral', urgency='medium')


# ============================================================================
# THE PIPELINE
# ============================================================================

class EmbeddingPipeline:
    """
    Email → EnhancedEmailVector, plus the vector store and similarity search.

    Args:
        service:         The language model service. None (or a service that
                         reports available == False) means every call uses
                         the defaults without touching the network.
        dimensions:      Length of the zero vector used as the fallback.
        max_vectors:     LRU capacity of the store; None = unbounded.
        timeout:         Seconds allowed per external call.
        max_concurrency: Cap on external calls in flight at once.
    """

    def __init__(self, service: Optional[LanguageModelService] = None,
                 dimensions: int = EMBEDDING_DIMENSIONS,
                 max_vectors: Optional[int] = VECTOR_STORE_MAX_SIZE,
                 timeout: float = LLM_CALL_TIMEOUT,
                 max_concurrency: int = LLM_MAX_CONCURRENCY):
        self.service = service
        self.dimensions = dimensions
        self.max_vectors = max_vectors
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        # One semaphore per event loop; a semaphore can't be shared across loops
        self._limiter: Optional[asyncio.Semaphore] = None
        self._limiter_loop: Optional[asyncio.AbstractEventLoop] = None
        self._vector_store: OrderedDict[str, EnhancedEmailVector] = OrderedDict()

    @property
    def service_available(self) -> bool:
        return self.service is not None and self.service.available

    def zero_vector(self) -> list[float]:
        return [0.0] * self.dimensions

    async def _call(self, make_call):
        """Run one external call under the concurrency cap and the timeout."""
        loop = asyncio.get_running_loop()
        if self._limiter is None or self._limiter_loop is not loop:
            self._limiter = asyncio.Semaphore(self.max_concurrency)
            self._limiter_loop = loop

        async with self._limiter:
            return await asyncio.wait_for(make_call(), timeout=self.timeout)

    # ── EMBEDDING ────────────────────────────────────────────────────

    async def get_embedding(self, text: str) -> list[float]:
        """Embed `text`, or return the zero vector on any failure."""
        if not self.service_available:
            return self.zero_vector()

        try:
            vector = await self._call(lambda: self.service.embed(text))
        except asyncio.TimeoutError:
            print(f"[EMBED] Embedding timed out after {self.timeout}s, using zero vector")
            return self.zero_vector()
        except Exception as e:
            print(f"[EMBED] Error generating embedding: {e}")
            return self.zero_vector()

        if len(vector) != self.dimensions:
            print(f"[EMBED] Expected {self.dimensions} dimensions, got {len(vector)}; using zero vector")
            return self.zero_vector()

        return [float(x) for x in vector]

    # ── ANALYSIS ─────────────────────────────────────────────────────

    async def analyze_content(self, email: EmailContent) -> ContentAnalysis:
        """Ask the model for the 4-line analysis, or fall back to defaults."""
        if not self.service_available:
            return fallback_analysis(email)

        prompt = ANALYSIS_PROMPT_TEMPLATE.format(subject=email.subject, body=email.body)

        try:
            answer = await self._call(lambda: self.service.complete(ANALYSIS_SYSTEM_PROMPT, prompt))
            return parse_analysis(answer)
        except asyncio.TimeoutError:
            print(f"[ANALYZE] Analysis of {email.id} timed out after {self.timeout}s")
        except MalformedAnalysisError as e:
            print(f"[ANALYZE] Malformed analysis for {email.id}: {e}")
        except Exception as e:
            print(f"[ANALYZE] Error analyzing {email.id}: {e}")

        return fallback_analysis(email)

    # ── VECTORIZE ────────────────────────────────────────────────────

    async def vectorize_email(self, email: EmailContent) -> EnhancedEmailVector:
        """
        Embed and analyze one email concurrently, store and return the record.

        Raises:
            VectorizationError: only if building or storing the record fails.
        """
        combined_content = f"{email.subject} {email.body}"

        vector, analysis = await asyncio.gather(
            self.get_embedding(combined_content),
            self.analyze_content(email),
        )

        try:
            enhanced = EnhancedEmailVector(
                email_id=email.id,
                vector=vector,
                metadata=VectorMetadata(
                    participants=[email.sender, *email.to],
                    timestamp=email.timestamp,
                    topics=analysis.topics,
                    summary=analysis.summary,
                    sentiment=analysis.sentiment,
                    urgency=analysis.urgency,
                ),
            )
            self._store(enhanced)
        except Exception as e:
            print(f"[EMBED] Error vectorizing email {email.id}: {e}")
            raise VectorizationError("Failed to vectorize email") from e

        return enhanced

    async def vectorize_batch(self, emails: list[EmailContent]) -> list[EnhancedEmailVector]:
        """Vectorize many emails at once; the semaphore caps service load."""
        return list(await asyncio.gather(*(self.vectorize_email(email) for email in emails)))

    # ── VECTOR STORE ─────────────────────────────────────────────────

    def _store(self, enhanced: EnhancedEmailVector):
        self._vector_store[enhanced.email_id] = enhanced
        self._vector_store.move_to_end(enhanced.email_id)
        if self.max_vectors is not None:
            while len(self._vector_store) > self.max_vectors:
                self._vector_store.popitem(last=False)

    def get_vector(self, email_id: str) -> EnhancedEmailVector | None:
        enhanced = self._vector_store.get(email_id)
        if enhanced is not None:
            self._vector_store.move_to_end(email_id)
        return enhanced

    def vectors(self) -> list[EnhancedEmailVector]:
        return list(self._vector_store.values())

    def find_similar_contexts(self, vector: list[float],
                              threshold: float = SIMILARITY_THRESHOLD,
                              limit: int = SIMILARITY_LIMIT) -> list[EnhancedEmailVector]:
        """Stored records with cosine similarity >= threshold, most similar first."""
        scored = [
            (cosine_similarity(vector, stored.vector), stored)
            for stored in self._vector_store.values()
        ]
        scored = [item for item in scored if item[0] >= threshold]
        scored.sort(key=lambda item: item[0], reverse=True)
        return [stored for _, stored in scored[:limit]]

    def clear_vector_store(self):
        self._vector_store.clear()

    def get_vector_count(self) -> int:
        return len(self._vector_store)
