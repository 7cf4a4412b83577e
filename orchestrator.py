# orchestrator.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# This is the "manager" of the whole engine. It creates exactly one of
# each component and wires them together:
#
#   LanguageModelService ─┐
#                         ├─ EmbeddingPipeline ─┐
#   RelationshipGraph ────┼─────────────────────┼─ ContextManager
#   EmailClassifier ──────┘                     │
#
# The web server and the MCP server each own one Orchestrator, created
# at startup and passed around — there are no hidden global singletons,
# so tests can build as many isolated engines as they like.
#
# It handles:
#   1. INGEST  — feed a batch of emails through the context manager
#                (which updates the graph, the memory tiers and the
#                vector store)
#   2. INSIGHTS — assemble the records the dashboard renders:
#                top collaborators, contextual insights, topic clusters
#   3. SUMMARY — an AI-written report over a set of emails
#   4. METRICS — mailbox counts (unread, threads, top senders)
#   5. SNAPSHOT — save/load the graph and memory tiers to YAML
# ============================================================================

import asyncio
from collections import Counter
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from config.settings import (
    SNAPSHOT_PATH, SUMMARY_MAX_TOKENS, LLM_CALL_TIMEOUT, PATTERN_CONFIDENCE_THRESHOLD,
    DEFAULT_IMPORTANCE, METRICS_TOP_SENDERS, METRICS_RECENT_EMAILS,
)
from memory.clustering import cluster_topics
from memory.context import ContextManager
from memory.embeddings import EmbeddingPipeline, VectorizationError
from memory.graph import RelationshipGraph, normalize_address
from memory.models import (
    ContextualInsight, DateRange, EmailContent, EmailMetrics, InsightSource,
    InteractionSummary, RecentEmail, RelationshipInsight, RelevantContext, TopicCluster,
)
from memory.snapshot import load_snapshot, save_snapshot
from services.language_model import LanguageModelService, OpenAIModelService

# Pretty terminal output for the server logs
console = Console()

REPORT_SYSTEM_PROMPT = """You are analyzing work emails to provide professional insights.
Analyze the following aspects:
1. Role & Responsibilities
2. Key Projects/Workstreams
3. Communication Patterns
4. Time Allocation
5. Action Items & Next Steps

Structure your response with clear sections and actionable insights."""


def _is_unread(email: EmailContent) -> bool:
    return 'UNREAD' in (email.labels or [])


class Orchestrator:
    """
    The application context: owns the service, graph, pipeline and
    context manager for the lifetime of the process.

    Every collaborator can be passed in (tests do); anything left out is
    built from config/settings.py.
    """

    def __init__(self, service: LanguageModelService = None,
                 graph: RelationshipGraph = None,
                 pipeline: EmbeddingPipeline = None,
                 context: ContextManager = None,
                 classifier=None, clock=None):
        self.service = service if service is not None else OpenAIModelService()
        self.graph = graph or RelationshipGraph(clock=clock)
        self.pipeline = pipeline or EmbeddingPipeline(self.service)
        self.context = context or ContextManager(
            self.graph, self.pipeline, classifier=classifier, clock=clock
        )
        # Every email already counted in the graph and the tiers
        self.ingested_ids: set[str] = set()
        # Counted, but still without a vector; only vectorization is retried
        self.pending_vectors: dict[str, EmailContent] = {}

    # ── INGEST ───────────────────────────────────────────────────────

    async def ingest(self, emails: list[EmailContent], progress_callback=None) -> dict:
        """
        Feed a batch of emails through the context manager.

        Emails are sorted by timestamp first so first/last-seen fields
        follow the calendar, and ids already ingested are skipped. The
        pipeline's semaphore caps how many model calls run at once.

        Ids are claimed before anything is awaited, so two overlapping
        ingests never count the same email twice. An email whose
        vectorization failed stays counted; sending it again only retries
        the vectorization.

        Args:
            emails:            Normalized emails (see tools/email_records.py).
            progress_callback: Optional function(dict) called with progress events.

        Returns:
            dict with received / ingested / retried / skipped / failed counts
            and the resulting graph and store sizes.
        """
        def emit(event):
            if progress_callback:
                progress_callback(event)

        batch = []
        retries = []
        for email in sorted(emails, key=lambda e: e.timestamp):
            if email.id in self.pending_vectors:
                retries.append(self.pending_vectors.pop(email.id))
            elif email.id not in self.ingested_ids:
                self.ingested_ids.add(email.id)
                batch.append(email)

        skipped = len(emails) - len(batch) - len(retries)
        total = len(batch) + len(retries)

        console.print(Panel(
            f"[bold]Ingesting {len(batch)} email(s)[/bold]\n"
            f"   Retrying vectorization: {len(retries)}\n"
            f"   Skipped (already ingested): {skipped}\n"
            f"   Language model: {'available' if self.pipeline.service_available else 'not configured — using defaults'}",
            title="Ingest",
            border_style="blue"
        ))
        emit({"stage": "ingest", "status": "started",
              "message": f"Ingesting {len(batch)} email(s), {skipped} already processed"})

        failed = []
        done = 0

        async def ingest_one(email: EmailContent, record: bool):
            nonlocal done
            if record:
                # Synchronous: graph and tiers are updated before the first await
                self.context.record_email(email)
            try:
                await self.pipeline.vectorize_email(email)
            except VectorizationError as e:
                failed.append(email.id)
                self.pending_vectors[email.id] = email
                console.print(f"   [red]SKIP - {email.id}: {e}[/red]")
            done += 1
            emit({"stage": "ingest", "status": "in_progress",
                  "message": f"Processed {done} of {total}"})

        await asyncio.gather(
            *(ingest_one(email, record=True) for email in batch),
            *(ingest_one(email, record=False) for email in retries),
        )

        result = {
            "received": len(emails),
            "ingested": total - len(failed),
            "retried": len(retries),
            "skipped": skipped,
            "failed": failed,
            "nodes": self.graph.node_count,
            "edges": self.graph.edge_count,
            "vectors": self.pipeline.get_vector_count(),
        }

        if failed:
            console.print(f"[yellow]{len(failed)} email(s) could not be vectorized[/yellow]")
        console.print(f"[green]OK - Graph now has {result['nodes']} nodes, {result['edges']} edges[/green]")
        emit({"stage": "complete", "status": "complete",
              "message": f"Ingested {result['ingested']} email(s)", "stats": result})

        return result

    # ── INSIGHTS ─────────────────────────────────────────────────────

    def _common_topics(self, node_id: str, limit: int = 5) -> list[str]:
        """Most frequent analysis topics across the emails a person took part in."""
        counts = Counter()
        for enhanced in self.pipeline.vectors():
            participants = {normalize_address(p) for p in enhanced.metadata.participants}
            if node_id in participants:
                counts.update(t for t in enhanced.metadata.topics if t != 'unspecified')
        return [topic for topic, _ in counts.most_common(limit)]

    def top_collaborators(self, limit: int = 5) -> list[RelationshipInsight]:
        """The most active people, with their projects and interaction stats."""
        scores = self.graph.activity_scores()
        insights = []

        for node in self.graph.get_most_active_nodes(limit):
            patterns = self.graph.find_relationship_patterns(node.id)
            edges = self.graph.get_node_connections(node.id)

            insights.append(RelationshipInsight(
                person=node.id,
                strength=scores.get(node.id, 0),
                projects=patterns.projects,
                interactions=InteractionSummary(
                    frequency=round(sum(edge.metadata.frequency for edge in edges), 2),
                    last_date=node.metadata.last_seen.isoformat(),
                    common_topics=self._common_topics(node.id),
                ),
            ))

        return insights

    def contextual_insights(self) -> list[ContextualInsight]:
        """
        Action, suggestion and pattern cards:

          action     — recent emails that are urgent (keywords or model urgency)
          suggestion — projects still active in medium-term memory
          pattern    — behavioural patterns above the confidence threshold
        """
        insights = []

        for entry in self.context.recent_entries(limit=len(self.context.short_term)):
            email = entry.content
            enhanced = self.pipeline.get_vector(email.id)
            model_urgency = enhanced.metadata.urgency if enhanced else None

            if entry.importance <= DEFAULT_IMPORTANCE and model_urgency != 'high':
                continue

            insights.append(ContextualInsight(
                type='action',
                content=f"Respond to: {email.subject or '(no subject)'}",
                priority='high',
                context=[enhanced.metadata.summary] if enhanced else [email.subject],
                related_people=[email.sender, *email.to],
                source=InsightSource(email_id=email.id, thread_id=email.thread_id),
            ))

        for project in self.context.get_active_projects():
            insights.append(ContextualInsight(
                type='suggestion',
                content=f"Follow up on {project.project}",
                priority='medium',
                context=[project.project],
                related_people=project.participants,
            ))

        for pattern in self.context.get_patterns(min_confidence=PATTERN_CONFIDENCE_THRESHOLD):
            insights.append(ContextualInsight(
                type='pattern',
                content=pattern.pattern,
                priority='low',
                context=[f"Observed {pattern.frequency} time(s)"],
                source=InsightSource(pattern=pattern.pattern),
                confidence=round(pattern.confidence, 3),
            ))

        return insights

    def topic_labels(self) -> list[str]:
        """Distinct analysis topics across the vector store, first seen first."""
        labels = {}
        for enhanced in self.pipeline.vectors():
            for topic in enhanced.metadata.topics:
                if topic != 'unspecified':
                    labels.setdefault(topic, None)
        return list(labels)

    def topic_clusters(self, labels: list[str] = None) -> TopicCluster:
        if labels is None:
            labels = self.topic_labels()
        return cluster_topics(labels)

    async def relevant_context(self, query: str = '') -> RelevantContext:
        return await self.context.get_relevant_context(query)

    # ── SUMMARY ──────────────────────────────────────────────────────

    async def summarize_emails(self, emails: list[EmailContent] = None) -> str:
        """
        Ask the language model for a professional report over `emails`
        (default: everything still in short-term memory).
        """
        if emails is None:
            emails = [entry.content for entry in self.context.recent_entries(limit=len(self.context.short_term))]

        if not emails:
            return "No emails to summarize."

        if not self.service.available:
            return "AI summary unavailable: no language model is configured."

        combined = "\n\n".join(
            f"From: {email.sender}\nSubject: {email.subject}\n{email.body}" for email in emails
        )

        console.print(f"[bold cyan]Summary[/bold cyan] analyzing {len(emails)} email(s)...")
        try:
            return await asyncio.wait_for(
                self.service.complete(
                    REPORT_SYSTEM_PROMPT,
                    f"Analyze these email communications:\n\n{combined}",
                    max_tokens=SUMMARY_MAX_TOKENS,
                ),
                timeout=LLM_CALL_TIMEOUT,
            )
        except Exception as e:
            console.print(f"[red]Summary failed: {e}[/red]")
            return f"AI summary unavailable: {e}"

    # ── METRICS ──────────────────────────────────────────────────────

    def email_metrics(self, emails: list[EmailContent] = None) -> EmailMetrics:
        """
        Mailbox counts over `emails` (default: everything still in
        short-term memory). An email is unread when it carries the Gmail
        UNREAD label; emails without a thread id count as their own thread.
        """
        if emails is None:
            emails = [entry.content for entry in self.context.short_term.values()]

        newest_first = sorted(emails, key=lambda e: e.timestamp, reverse=True)
        senders = Counter(email.sender for email in emails)

        return EmailMetrics(
            total_emails=len(emails),
            total_unread=sum(1 for email in emails if _is_unread(email)),
            active_threads=len({email.thread_id or email.id for email in emails}),
            date_range=DateRange(
                start=newest_first[-1].timestamp if emails else None,
                end=newest_first[0].timestamp if emails else None,
            ),
            top_senders=senders.most_common(METRICS_TOP_SENDERS),
            recent_emails=[
                RecentEmail(
                    id=email.id,
                    thread_id=email.thread_id,
                    subject=email.subject or 'No Subject',
                    sender=email.sender,
                    date=email.timestamp,
                    is_unread=_is_unread(email),
                )
                for email in newest_first[:METRICS_RECENT_EMAILS]
            ],
        )

    # ── ADMIN ────────────────────────────────────────────────────────

    def stats(self) -> dict:
        return {
            "nodes": self.graph.node_count,
            "edges": self.graph.edge_count,
            "vectors": self.pipeline.get_vector_count(),
            "shortTerm": len(self.context.short_term),
            "mediumTerm": len(self.context.medium_term),
            "activeProjects": len(self.context.get_active_projects()),
            "longTerm": len(self.context.long_term),
            "serviceAvailable": self.pipeline.service_available,
        }

    def reset(self):
        self.graph.clear()
        self.context.clear()
        self.pipeline.clear_vector_store()
        self.ingested_ids.clear()
        self.pending_vectors.clear()
        console.print("[yellow]Engine state cleared[/yellow]")

    def save_snapshot(self, path: Path = SNAPSHOT_PATH) -> Path:
        return save_snapshot(self.graph, self.context, path, ingested_ids=self.ingested_ids)

    def load_snapshot(self, path: Path = SNAPSHOT_PATH) -> bool:
        return load_snapshot(self.graph, self.context, path, ingested_ids=self.ingested_ids)
