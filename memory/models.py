# memory/models.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# Defines the records that flow through the analytics engine: the
# normalized email that comes in, and everything that comes out (vectors,
# graph nodes and edges, memory tiers, insights, topic clusters).
#
# Every record is a pydantic model. In Python we use snake_case names;
# when a record is sent to the UI it is dumped with camelCase names
# ("emailId", "firstSeen", ...) because that is the JSON shape the
# dashboard components read:
#
#     record.model_dump(by_alias=True, mode="json")
# ============================================================================

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


Sentiment = Literal['positive', 'negative', 'neutral']
Urgency = Literal['high', 'medium', 'low']
NodeType = Literal['person', 'topic', 'project', 'thread']
EdgeType = Literal['collaborates', 'manages', 'contributes', 'participates']
ProjectStatus = Literal['active', 'pending', 'completed']
InsightType = Literal['action', 'pattern', 'suggestion']


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so every comparison is between aware values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WireModel(BaseModel):
    """Base for every record: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode='json')


# ── INPUT ──────────────────────────────────────────────────────────────

class EmailContent(WireModel):
    """One normalized email, as produced by tools/email_records.py."""
    id: str
    subject: str = ''
    body: str = ''
    sender: str = Field(alias='from')
    to: list[str] = Field(default_factory=list)
    timestamp: datetime
    thread_id: Optional[str] = None
    labels: Optional[list[str]] = None

    @field_validator('timestamp')
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return ensure_aware(value)


# ── EMBEDDINGS ─────────────────────────────────────────────────────────

class ContentAnalysis(WireModel):
    topics: list[str]
    summary: str
    sentiment: Sentiment = 'neutral'
    urgency: Urgency = 'medium'


class VectorMetadata(WireModel):
    participants: list[str]
    timestamp: datetime
    topics: list[str]
    summary: str
    sentiment: Sentiment
    urgency: Urgency


class EnhancedEmailVector(WireModel):
    email_id: str
    vector: list[float]
    metadata: VectorMetadata


# ── RELATIONSHIP GRAPH ─────────────────────────────────────────────────

class NodeMetadata(WireModel):
    name: str
    email: Optional[str] = None
    first_seen: datetime
    last_seen: datetime
    importance: float = 1
    properties: dict[str, Any] = Field(default_factory=dict)


class GraphNode(WireModel):
    id: str
    type: NodeType = 'person'
    metadata: NodeMetadata


class EdgeMetadata(WireModel):
    first_interaction: datetime
    last_interaction: datetime
    frequency: float = 1
    context: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)


class GraphEdge(WireModel):
    id: str
    source: str
    target: str
    type: EdgeType = 'collaborates'
    strength: int = 1
    metadata: EdgeMetadata


class Collaborator(WireModel):
    node: GraphNode
    strength: int


class RelationshipPatterns(WireModel):
    collaborators: list[Collaborator] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    frequency: dict[str, int] = Field(default_factory=dict)


# ── CONTEXT MEMORY ─────────────────────────────────────────────────────

class ShortTermEntry(WireModel):
    content: EmailContent
    timestamp: datetime
    importance: float


class ProjectContext(WireModel):
    project: str
    participants: list[str] = Field(default_factory=list)
    last_update: datetime
    status: ProjectStatus = 'active'


class BehaviorPattern(WireModel):
    pattern: str
    frequency: int = 0
    last_observed: datetime
    # Confidence as of last_observed; decay is applied when it is read
    confidence: float = 0.0


class RelevantContext(WireModel):
    recent_context: list[EmailContent] = Field(default_factory=list)
    related_patterns: list[str] = Field(default_factory=list)
    relationships: list[GraphNode] = Field(default_factory=list)
    similar_contexts: list[EnhancedEmailVector] = Field(default_factory=list)


# ── TOPIC CLUSTERS ─────────────────────────────────────────────────────

class TopicNode(WireModel):
    id: str
    group: int


class TopicLink(WireModel):
    source: str
    target: str
    value: float


class TopicCluster(WireModel):
    nodes: list[TopicNode] = Field(default_factory=list)
    links: list[TopicLink] = Field(default_factory=list)


# ── INSIGHTS (what the dashboard cards render) ─────────────────────────

class InteractionSummary(WireModel):
    frequency: float
    last_date: str
    common_topics: list[str] = Field(default_factory=list)


class RelationshipInsight(WireModel):
    person: str
    strength: int
    projects: list[str] = Field(default_factory=list)
    interactions: InteractionSummary


class InsightSource(WireModel):
    email_id: Optional[str] = None
    thread_id: Optional[str] = None
    pattern: Optional[str] = None


class ContextualInsight(WireModel):
    type: InsightType
    content: str
    priority: Urgency = 'medium'
    context: list[str] = Field(default_factory=list)
    related_people: list[str] = Field(default_factory=list)
    source: Optional[InsightSource] = None
    confidence: Optional[float] = None


# ── MAILBOX METRICS ────────────────────────────────────────────────────

class DateRange(WireModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class RecentEmail(WireModel):
    id: str
    thread_id: Optional[str] = None
    subject: str
    sender: str = Field(alias='from')
    date: datetime
    is_unread: bool = False


class EmailMetrics(WireModel):
    """Counts over a set of emails; topSenders is a list of [sender, count] pairs."""
    total_emails: int
    total_unread: int
    active_threads: int
    date_range: DateRange
    top_senders: list[tuple[str, int]] = Field(default_factory=list)
    recent_emails: list[RecentEmail] = Field(default_factory=list)
