# memory/context.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# The context manager keeps a layered memory of the email stream, like
# the way people remember things:
#
#   SHORT TERM  (hours) — the emails of the last 24 hours, with an
#                         importance score (urgent emails count 1.5x)
#   MEDIUM TERM (days)  — projects being discussed; a project nobody has
#                         mentioned for 7 days is marked "completed"
#   LONG TERM   (weeks) — behavioural patterns such as "Active on Tue"
#                         or "Communication at 9:00", each with a
#                         confidence that grows with every sighting and
#                         fades with time
#
# It sits on top of the relationship graph and the embedding pipeline:
# update_context() feeds an email to both and then updates its own tiers.
#
# Pattern confidence is stored as of the last sighting and decayed when
# it is read: confidence * exp(-days_since_last_seen / 30). Pruning never
# touches it, so reading twice gives the same answer.
# ============================================================================

import math
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Callable, Optional

from config.settings import (
    SHORT_TERM_RETENTION_HOURS, MEDIUM_TERM_STALENESS_DAYS, PATTERN_DECAY_DAYS,
    PATTERN_CONFIDENCE_STEP, PATTERN_CONFIDENCE_THRESHOLD, URGENT_IMPORTANCE,
    DEFAULT_IMPORTANCE, RELEVANT_CONTEXT_LIMIT,
)
from memory.classifier import Classification, EmailClassifier, HeuristicClassifier
from memory.embeddings import EmbeddingPipeline
from memory.graph import RelationshipGraph
from memory.models import (
    BehaviorPattern, EmailContent, EnhancedEmailVector, ProjectContext,
    RelevantContext, ShortTermEntry,
)

SECONDS_PER_DAY = 24 * 60 * 60

# Index 0 is Sunday, matching the labels the dashboard already shows
WEEKDAY_LABELS = ['Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat']


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def pattern_labels(timestamp: datetime) -> list[str]:
    """The two behavioural labels an email contributes to."""
    weekday = WEEKDAY_LABELS[(timestamp.weekday() + 1) % 7]
    return [
        f"Communication at {timestamp.hour}:00",
        f"Active on {weekday}",
    ]


class ContextManager:
    """
    Three-tier memory over the email stream.

    Args:
        graph:      The relationship graph to register interactions in.
        pipeline:   The embedding pipeline to vectorize emails with.
        classifier: Urgency / project classifier (heuristic by default).
        clock:      Returns "now"; injectable so tests can move time.
    """

    def __init__(self, graph: RelationshipGraph, pipeline: EmbeddingPipeline,
                 classifier: Optional[EmailClassifier] = None,
                 clock: Callable[[], datetime] = None):
        self.graph = graph
        self.pipeline = pipeline
        self.classifier = classifier or HeuristicClassifier()
        self._clock = clock or _utc_now

        self.short_term: dict[str, ShortTermEntry] = {}
        self.medium_term: dict[str, ProjectContext] = {}
        self.long_term: dict[str, BehaviorPattern] = {}

    def now(self) -> datetime:
        return self._clock()

    # ── INGESTION ────────────────────────────────────────────────────

    def record_email(self, email: EmailContent) -> Classification:
        """
        All synchronous bookkeeping for one email: graph, the three tiers,
        then a prune pass. No awaits happen in here, so concurrent
        update_context() calls never interleave halfway through.
        """
        self.graph.add_interaction(email)

        classification = self.classifier.classify(email)

        self.short_term[email.id] = ShortTermEntry(
            content=email,
            timestamp=email.timestamp,
            importance=URGENT_IMPORTANCE if classification.urgent else DEFAULT_IMPORTANCE,
        )

        if classification.project_key:
            self._update_project(classification.project_key, email)

        self._update_patterns(email)
        self.prune_memory()

        return classification

    async def update_context(self, email: EmailContent) -> EnhancedEmailVector:
        """Record the email in every tier, then vectorize it."""
        self.record_email(email)
        return await self.pipeline.vectorize_email(email)

    def _update_project(self, project_key: str, email: EmailContent):
        existing = self.medium_term.get(project_key)
        participants = list(existing.participants) if existing else []
        for address in [email.sender, *email.to]:
            if address not in participants:
                participants.append(address)

        self.medium_term[project_key] = ProjectContext(
            project=project_key,
            participants=participants,
            last_update=email.timestamp,
            status='active',
        )

    def _update_patterns(self, email: EmailContent):
        for label in pattern_labels(email.timestamp):
            existing = self.long_term.get(label)

            if existing is None:
                self.long_term[label] = BehaviorPattern(
                    pattern=label,
                    frequency=1,
                    last_observed=email.timestamp,
                    confidence=min(PATTERN_CONFIDENCE_STEP, 1.0),
                )
                continue

            current = self.effective_confidence(existing, at=email.timestamp)
            existing.frequency += 1
            existing.confidence = min(current + PATTERN_CONFIDENCE_STEP, 1.0)
            existing.last_observed = max(existing.last_observed, email.timestamp)

    # ── DECAY & PRUNING ──────────────────────────────────────────────

    def effective_confidence(self, pattern: BehaviorPattern, at: datetime = None) -> float:
        """Stored confidence decayed by the days since the pattern was last seen."""
        at = at or self.now()
        days = (at - pattern.last_observed).total_seconds() / SECONDS_PER_DAY
        return pattern.confidence * math.exp(-max(days, 0.0) / PATTERN_DECAY_DAYS)

    def prune_memory(self):
        """
        Drop short-term entries older than 24 hours and mark projects idle
        for more than 7 days as completed. Completed projects are kept.
        """
        now = self.now()
        short_cutoff = timedelta(hours=SHORT_TERM_RETENTION_HOURS)
        medium_cutoff = timedelta(days=MEDIUM_TERM_STALENESS_DAYS)

        expired = [
            email_id for email_id, entry in self.short_term.items()
            if now - entry.timestamp > short_cutoff
        ]
        for email_id in expired:
            del self.short_term[email_id]

        for project in self.medium_term.values():
            if now - project.last_update > medium_cutoff:
                project.status = 'completed'

    # ── READ SIDE ────────────────────────────────────────────────────

    def get_patterns(self, min_confidence: float = 0.0) -> list[BehaviorPattern]:
        """Long-term patterns with their decayed confidence, most confident first."""
        now = self.now()
        patterns = []
        for pattern in self.long_term.values():
            confidence = self.effective_confidence(pattern, at=now)
            if confidence >= min_confidence:
                patterns.append(pattern.model_copy(update={'confidence': confidence}))
        patterns.sort(key=lambda p: p.confidence, reverse=True)
        return patterns

    @property
    def memory(self) -> MappingProxyType:
        """Read-only view of the three tiers, keyed the way the wire form is."""
        return MappingProxyType({
            'shortTerm': MappingProxyType(self.short_term),
            'mediumTerm': MappingProxyType(self.medium_term),
            'longTerm': MappingProxyType(self.long_term),
        })

    def get_active_projects(self) -> list[ProjectContext]:
        active = [p for p in self.medium_term.values() if p.status == 'active']
        return sorted(active, key=lambda p: p.last_update, reverse=True)

    def recent_entries(self, limit: int = RELEVANT_CONTEXT_LIMIT) -> list[ShortTermEntry]:
        entries = sorted(self.short_term.values(), key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    async def get_relevant_context(self, query: str = '') -> RelevantContext:
        """
        Snapshot of what matters right now.

        recent_context and relationships don't depend on `query`. When a
        query is given it is embedded and the most similar stored emails
        are returned in similar_contexts (empty if the service is down).
        """
        now = self.now()
        related_patterns = [
            pattern.pattern for pattern in self.long_term.values()
            if self.effective_confidence(pattern, at=now) > PATTERN_CONFIDENCE_THRESHOLD
        ]

        similar = []
        if query and query.strip():
            query_vector = await self.pipeline.get_embedding(query)
            similar = self.pipeline.find_similar_contexts(query_vector)

        return RelevantContext(
            recent_context=[entry.content for entry in self.recent_entries()],
            related_patterns=related_patterns,
            relationships=self.graph.get_most_active_nodes(RELEVANT_CONTEXT_LIMIT),
            similar_contexts=similar,
        )

    def clear(self):
        self.short_term.clear()
        self.medium_term.clear()
        self.long_term.clear()
