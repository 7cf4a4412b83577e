# memory/graph.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# This module maintains the relationship graph — a map of who emails whom,
# how often, and about what.
#
#   - Nodes are people, keyed by their normalized (lowercase, trimmed)
#     email address. Adding the same address twice returns the same node.
#   - Edges point from sender to recipient. Every email that names both
#     endpoints bumps the edge's strength by one and appends its subject
#     to the edge's context.
#
# The graph is only ever appended to while emails flow in. The read side
# (patterns, most-active ranking) treats an edge as touching both of its
# endpoints, regardless of direction.
# ============================================================================

from datetime import datetime, timezone
from typing import Callable, Optional

from config.settings import EDGE_CONTEXT_MAX_LENGTH
from memory.models import (
    Collaborator, EdgeMetadata, EmailContent, GraphEdge, GraphNode,
    NodeMetadata, RelationshipPatterns,
)

SECONDS_PER_DAY = 24 * 60 * 60


def normalize_address(address: str) -> str:
    """Lowercase and trim an address so it can be used as a node id."""
    return (address or '').strip().lower()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RelationshipGraph:
    """
    Directed, weighted interaction graph over people.

    One instance is owned by the Orchestrator; tests build their own.
    """

    def __init__(self, clock: Callable[[], datetime] = None,
                 context_max_length: Optional[int] = EDGE_CONTEXT_MAX_LENGTH):
        self._clock = clock or _utc_now
        self._context_max_length = context_max_length
        self.nodes: dict[str, GraphNode] = {}
        self.edges: dict[str, GraphEdge] = {}

    # ── WRITE SIDE ───────────────────────────────────────────────────

    def add_person(self, address: str, name: str = None) -> GraphNode:
        """
        Return the person node for an address, creating it if needed.

        Idempotent: "Alice@X.com " and "alice@x.com" are the same node, and
        an existing node is returned unchanged (the name is not overwritten).
        """
        node_id = normalize_address(address)
        existing = self.nodes.get(node_id)
        if existing is not None:
            return existing

        now = self._clock()
        node = GraphNode(
            id=node_id,
            type='person',
            metadata=NodeMetadata(
                name=name or node_id.split('@')[0],
                email=node_id,
                first_seen=now,
                last_seen=now,
                importance=1,
            ),
        )
        self.nodes[node_id] = node
        return node

    def add_interaction(self, email: EmailContent) -> list[GraphEdge]:
        """
        Register one email: sender and recipients become nodes, and each
        sender→recipient edge is created or strengthened.

        Returns the edges that were touched, in recipient order.
        """
        sender = self.add_person(email.sender)
        recipients = [self.add_person(address) for address in email.to]

        sender.metadata.last_seen = email.timestamp
        for node in recipients:
            node.metadata.last_seen = email.timestamp

        touched = []
        for recipient in recipients:
            edge_id = f"{sender.id}-{recipient.id}"
            edge = self.edges.get(edge_id)

            if edge is None:
                edge = GraphEdge(
                    id=edge_id,
                    source=sender.id,
                    target=recipient.id,
                    type='collaborates',
                    strength=1,
                    metadata=EdgeMetadata(
                        first_interaction=email.timestamp,
                        last_interaction=email.timestamp,
                        frequency=1,
                        context=[email.subject],
                    ),
                )
                self.edges[edge_id] = edge
            else:
                edge.strength += 1
                edge.metadata.last_interaction = email.timestamp
                edge.metadata.frequency = self._calculate_frequency(edge)
                self._append_context(edge, email.subject)

            touched.append(edge)

        return touched

    def _append_context(self, edge: GraphEdge, subject: str):
        context = edge.metadata.context
        context.append(subject)
        # Keep only the most recent subjects
        if self._context_max_length is not None and len(context) > self._context_max_length:
            del context[:len(context) - self._context_max_length]

    @staticmethod
    def _calculate_frequency(edge: GraphEdge) -> float:
        """Interactions per day since the first one, never dividing by less than a day."""
        elapsed = edge.metadata.last_interaction - edge.metadata.first_interaction
        days = elapsed.total_seconds() / SECONDS_PER_DAY
        return edge.strength / max(days, 1)

    # ── READ SIDE ────────────────────────────────────────────────────

    def get_node(self, node_id: str) -> GraphNode | None:
        return self.nodes.get(normalize_address(node_id))

    def get_node_connections(self, node_id: str) -> list[GraphEdge]:
        """All edges with node_id as either endpoint. Unknown id → []."""
        node_id = normalize_address(node_id)
        return [
            edge for edge in self.edges.values()
            if edge.source == node_id or edge.target == node_id
        ]

    def find_relationship_patterns(self, node_id: str) -> RelationshipPatterns:
        """
        Summarize everyone a person is connected to.

        Returns:
            RelationshipPatterns with
              collaborators — the other endpoint of each edge, strongest first
              projects      — every subject line seen on those edges (no repeats)
              frequency     — number of edges per ISO date of last interaction
        """
        node_id = normalize_address(node_id)
        collaborators = []
        projects = {}  # dict keeps first-seen order
        frequency = {}

        for edge in self.get_node_connections(node_id):
            other_id = edge.target if edge.source == node_id else edge.source
            other = self.nodes.get(other_id)
            if other is None:
                continue

            collaborators.append(Collaborator(node=other, strength=edge.strength))

            for subject in edge.metadata.context:
                projects.setdefault(subject, None)

            day = edge.metadata.last_interaction.astimezone(timezone.utc).date().isoformat()
            frequency[day] = frequency.get(day, 0) + 1

        collaborators.sort(key=lambda c: c.strength, reverse=True)

        return RelationshipPatterns(
            collaborators=collaborators,
            projects=list(projects),
            frequency=frequency,
        )

    def activity_scores(self) -> dict[str, int]:
        """Sum of edge strengths touching each node (both endpoint roles)."""
        scores = {}
        for edge in self.edges.values():
            scores[edge.source] = scores.get(edge.source, 0) + edge.strength
            scores[edge.target] = scores.get(edge.target, 0) + edge.strength
        return scores

    def get_most_active_nodes(self, limit: int = 5) -> list[GraphNode]:
        """The `limit` nodes with the highest summed edge strength."""
        ranked = sorted(self.activity_scores().items(), key=lambda item: item[1], reverse=True)
        return [self.nodes[node_id] for node_id, _ in ranked[:limit] if node_id in self.nodes]

    def get_graph(self) -> dict:
        return {
            'nodes': list(self.nodes.values()),
            'edges': list(self.edges.values()),
        }

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def clear(self):
        self.nodes.clear()
        self.edges.clear()
