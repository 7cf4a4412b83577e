# mcp_servers/analytics_server.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# This is an MCP server that exposes the relationship graph and context
# memory to any MCP-compatible AI agent. An assistant can ask "who do I
# work with most?" or "what projects are active?" and get the same JSON
# the dashboard gets.
#
# The server reads the snapshot the web server writes (data/snapshot.yaml
# by default) when it starts. It doesn't ingest emails itself, and it
# never calls a language model, so no API key is needed.
#
# Run standalone: python -m mcp_servers.analytics_server
# ============================================================================

# ── IMPORTS ────────────────────────────────────────────────────────────

import sys
import json
import asyncio
import contextlib
from pathlib import Path

# Add project root to Python's import path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env before settings are read
from dotenv import load_dotenv
load_dotenv()

# MCP SDK imports
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from config.settings import SNAPSHOT_PATH
from memory.clustering import cluster_topics
from memory.context import ContextManager
from memory.embeddings import EmbeddingPipeline
from memory.graph import RelationshipGraph
from memory.snapshot import load_snapshot

# Create the MCP server with a descriptive name
server = Server("email-analytics-server")

# The engine state this server answers from. Filled by load_state().
graph = RelationshipGraph()
context = ContextManager(graph, EmbeddingPipeline())


def load_state(path: Path = SNAPSHOT_PATH) -> bool:
    """Replace the in-memory graph and tiers with the snapshot at `path`."""
    # stdout carries the MCP protocol, so log lines go to stderr
    with contextlib.redirect_stdout(sys.stderr):
        return load_snapshot(graph, context, path)


def _text(payload) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2))]


# ── TOOL LISTING ───────────────────────────────────────────────────────

@server.list_tools()
async def list_tools() -> list[Tool]:
    """Advertise the analytics tools to connecting clients."""
    return [
        # Tool 1: Most active people
        Tool(
            name="get_most_active_people",
            description="List the people with the most email interactions (summed edge strength).",
            inputSchema={
                "type": "object",
                "properties": {"limit": {"type": "integer", "default": 5, "minimum": 1}}
            }
        ),

        # Tool 2: One person's relationships
        Tool(
            name="find_relationship_patterns",
            description="Collaborators (strongest first), subjects discussed, and interaction counts per day for one email address.",
            inputSchema={
                "type": "object",
                "properties": {"email": {"type": "string"}},
                "required": ["email"]
            }
        ),

        # Tool 3: What matters now
        Tool(
            name="get_relevant_context",
            description="Recent emails (last 24 hours), confident behavioural patterns and the most active people.",
            inputSchema={"type": "object", "properties": {}}
        ),

        # Tool 4: Active projects
        Tool(
            name="get_active_projects",
            description="Projects discussed in the last 7 days, with their participants.",
            inputSchema={"type": "object", "properties": {}}
        ),

        # Tool 5: Label similarity
        Tool(
            name="cluster_topics",
            description="Link labels (topics, people, organizations) whose names are similar.",
            inputSchema={
                "type": "object",
                "properties": {
                    "labels": {"type": "array", "items": {"type": "string"}},
                    "threshold": {"type": "number", "default": 0.3}
                },
                "required": ["labels"]
            }
        ),

        # Tool 6: Counts
        Tool(
            name="get_graph_stats",
            description="Node, edge and memory-tier counts.",
            inputSchema={"type": "object", "properties": {}}
        ),
    ]


# ── TOOL EXECUTION ─────────────────────────────────────────────────────

@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Route each tool name to the graph or context manager."""

    if name == "get_most_active_people":
        nodes = graph.get_most_active_nodes(arguments.get('limit', 5))
        return _text([node.to_wire() for node in nodes])

    elif name == "find_relationship_patterns":
        return _text(graph.find_relationship_patterns(arguments['email']).to_wire())

    elif name == "get_relevant_context":
        # No query: the snapshot holds no vectors to compare against
        relevant = await context.get_relevant_context()
        return _text(relevant.to_wire())

    elif name == "get_active_projects":
        return _text([project.to_wire() for project in context.get_active_projects()])

    elif name == "cluster_topics":
        clusters = cluster_topics(arguments['labels'], arguments.get('threshold', 0.3))
        return _text(clusters.to_wire())

    elif name == "get_graph_stats":
        return _text({
            "nodes": graph.node_count,
            "edges": graph.edge_count,
            "shortTerm": len(context.short_term),
            "mediumTerm": len(context.medium_term),
            "longTerm": len(context.long_term),
        })

    raise ValueError(f"Unknown tool: {name}")


# ── SERVER STARTUP ─────────────────────────────────────────────────────

async def main():
    """Start the MCP server: load the snapshot, then listen on stdio."""
    load_state()

    # Start listening for MCP messages on stdin/stdout
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())

if __name__ == "__main__":
    asyncio.run(main())
