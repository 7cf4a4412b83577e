# memory/snapshot.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# Saves the relationship graph and the three context-memory tiers to a
# YAML file, and loads them back. Everything else in the engine lives
# only in memory; this lets a second process (the MCP server) answer
# questions about what the web server has already ingested.
#
# The file uses the same camelCase field names as the HTTP API:
#
#   version: 1
#   saved_at: '2026-10-18T09:00:00+00:00'
#   graph:
#     nodes: [...]
#     edges: [...]
#   context:
#     shortTerm: {<email id>: {...}}
#     mediumTerm: {<project key>: {...}}
#     longTerm: {<pattern label>: {...}}
#   ingestedIds: [<email id>, ...]
#
# Embedding vectors are NOT saved — they are large and cheap to rebuild.
# ingestedIds lists every email already counted in the graph, including
# ones that have aged out of short-term memory, so a reloaded engine
# never counts the same email twice.
# ============================================================================

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

import yaml

from memory.context import ContextManager
from memory.graph import RelationshipGraph
from memory.models import (
    BehaviorPattern, GraphEdge, GraphNode, ProjectContext, ShortTermEntry,
)

SNAPSHOT_VERSION = 1


def build_snapshot(graph: RelationshipGraph, context: ContextManager,
                   ingested_ids: Iterable[str] = ()) -> dict:
    """Plain-dict form of the graph and tiers, ready for yaml.safe_dump."""
    known_ids = set(ingested_ids) | set(context.short_term)
    return {
        'version': SNAPSHOT_VERSION,
        'saved_at': datetime.now(timezone.utc).isoformat(),
        'graph': {
            'nodes': [node.to_wire() for node in graph.nodes.values()],
            'edges': [edge.to_wire() for edge in graph.edges.values()],
        },
        'context': {
            'shortTerm': {key: entry.to_wire() for key, entry in context.short_term.items()},
            'mediumTerm': {key: project.to_wire() for key, project in context.medium_term.items()},
            'longTerm': {key: pattern.to_wire() for key, pattern in context.long_term.items()},
        },
        'ingestedIds': sorted(known_ids),
    }


def save_snapshot(graph: RelationshipGraph, context: ContextManager, path: Path,
                  ingested_ids: Iterable[str] = ()) -> Path:
    """Write the snapshot YAML, creating parent folders as needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = build_snapshot(graph, context, ingested_ids)
    path.write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding='utf-8')

    print(f"[SNAPSHOT] Saved {len(graph.nodes)} nodes, {len(graph.edges)} edges to {path}")
    return path


def restore_snapshot(graph: RelationshipGraph, context: ContextManager, data: dict) -> set[str]:
    """
    Replace the graph and tiers with the contents of a snapshot dict.

    Returns the ids of every email the snapshot had already ingested.
    """
    version = data.get('version')
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version!r}")

    graph_data = data.get('graph') or {}
    context_data = data.get('context') or {}

    graph.clear()
    for raw in graph_data.get('nodes') or []:
        node = GraphNode.model_validate(raw)
        graph.nodes[node.id] = node
    for raw in graph_data.get('edges') or []:
        edge = GraphEdge.model_validate(raw)
        # An edge is only valid between known nodes
        if edge.source in graph.nodes and edge.target in graph.nodes:
            graph.edges[edge.id] = edge

    context.clear()
    for key, raw in (context_data.get('shortTerm') or {}).items():
        context.short_term[key] = ShortTermEntry.model_validate(raw)
    for key, raw in (context_data.get('mediumTerm') or {}).items():
        context.medium_term[key] = ProjectContext.model_validate(raw)
    for key, raw in (context_data.get('longTerm') or {}).items():
        context.long_term[key] = BehaviorPattern.model_validate(raw)

    return {str(email_id) for email_id in data.get('ingestedIds') or []} | set(context.short_term)


def load_snapshot(graph: RelationshipGraph, context: ContextManager, path: Path,
                  ingested_ids: Optional[set[str]] = None) -> bool:
    """
    Load a snapshot file into the given graph and context manager.

    When `ingested_ids` is given it is filled with the ids the snapshot
    had already ingested. Returns False (and leaves everything untouched)
    when the file doesn't exist.
    """
    path = Path(path)
    if not path.exists():
        print(f"[SNAPSHOT] No snapshot at {path}, starting empty")
        return False

    data = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
    known_ids = restore_snapshot(graph, context, data)
    if ingested_ids is not None:
        ingested_ids.update(known_ids)

    print(f"[SNAPSHOT] Loaded {len(graph.nodes)} nodes, {len(graph.edges)} edges from {path}")
    return True
