# web/app.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# This is the web server — the "bridge" between the dashboard and the
# analytics engine. The dashboard's charts (network graph, topic cloud,
# insight cards) call these endpoints and render the JSON they return.
# Every response uses camelCase field names.
#
# ENDPOINTS:
#   POST /api/emails                    → Ingest a batch of email records
#   POST /api/stream/ingest             → Ingest with live progress (SSE)
#   GET  /api/graph                     → Every node and edge
#   GET  /api/graph/active              → The most active people
#   GET  /api/graph/patterns/{node_id}  → Collaborators / projects of one person
#   GET  /api/graph/connections/{id}    → Edges touching one person
#   GET  /api/context                   → Recent emails, patterns, key people
#   GET  /api/context/projects          → Projects still active
#   POST /api/similar                   → Stored emails similar to a vector
#   POST /api/topics/cluster            → Similarity graph over labels
#   GET  /api/insights                  → Top collaborators + insight cards
#   GET  /api/stats                     → Engine counts
#   POST /api/summary                   → AI-written report over emails
#   GET  /api/metrics                   → Mailbox counts over recent emails
#   POST /api/metrics                   → Mailbox counts over posted emails
#   POST /api/snapshot                  → Save the graph and tiers to YAML
#   POST /api/reset                     → Clear everything
# ============================================================================

# ── IMPORTS ────────────────────────────────────────────────────────────
import sys
import json
import asyncio
from pathlib import Path
from contextlib import asynccontextmanager
from typing import Optional

# FastAPI framework imports
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

# Add project root to Python's path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Our project imports
from config.settings import SIMILARITY_THRESHOLD, SIMILARITY_LIMIT, SNAPSHOT_PATH
from orchestrator import Orchestrator
from tools.email_records import InvalidEmailRecord, email_from_dict, parse_gmail_message


# ── GLOBAL STATE ───────────────────────────────────────────────────────
# The one Orchestrator this server owns. Created at startup; tests assign
# their own before making requests.
orchestrator: Optional[Orchestrator] = None


# ── SERVER STARTUP ─────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the Orchestrator and reload the last snapshot (if any).

    Everything before yield = startup, everything after = shutdown.
    The graph and memory tiers are saved again on shutdown so the MCP
    server sees what this process ingested.
    """
    global orchestrator
    if orchestrator is None:
        orchestrator = Orchestrator()
        orchestrator.load_snapshot(SNAPSHOT_PATH)
    print("\n[OK] Email analytics server ready!")
    print("   API docs at http://localhost:8000/docs\n")
    yield
    orchestrator.save_snapshot(SNAPSHOT_PATH)


# Create the FastAPI app
app = FastAPI(
    title="Email Relationship Analytics",
    description="Relationship graph, layered context memory and topic clustering over an email stream",
    lifespan=lifespan
)


# ── REQUEST BODY MODELS ───────────────────────────────────────────────

class EmailsRequest(BaseModel):
    """Raw Gmail messages or flattened email dicts."""
    emails: list[dict]

class SimilarRequest(BaseModel):
    vector: list[float]
    threshold: float = SIMILARITY_THRESHOLD
    limit: int = Field(default=SIMILARITY_LIMIT, ge=1)

class ClusterRequest(BaseModel):
    labels: list[str]

class SummaryRequest(BaseModel):
    """Emails to summarize or count; omitted means everything in short-term memory."""
    emails: Optional[list[dict]] = None


def _normalize(records: list[dict]):
    """
    Turn request records into EmailContent.

    A record with a 'payload' key is a raw Gmail message; anything else
    is treated as a flattened dict. One bad record rejects the request.
    """
    emails = []
    for index, record in enumerate(records):
        try:
            if 'payload' in record:
                emails.append(parse_gmail_message(record))
            else:
                emails.append(email_from_dict(record))
        except InvalidEmailRecord as e:
            raise HTTPException(status_code=422, detail=f"emails[{index}]: {e}")
    return emails


# ============================================================================
# INGEST ENDPOINTS
# ============================================================================

@app.post("/api/emails")
async def ingest_emails(req: EmailsRequest):
    """
    Feed a batch of emails through the engine.

    Returns: {"received": 3, "ingested": 3, "skipped": 0, "failed": [], ...}
    """
    emails = _normalize(req.emails)
    return await orchestrator.ingest(emails)


@app.post("/api/stream/ingest")
async def stream_ingest(req: EmailsRequest):
    """
    Ingest with live progress updates via SSE.

    The browser receives events like:
        data: {"stage": "ingest", "status": "in_progress", "message": "Processed 2 of 5"}
        data: {"stage": "complete", "stats": {...}}

    Ingest runs as a task on the same event loop; its progress callback
    drops events into an asyncio.Queue that the generator drains.
    """
    emails = _normalize(req.emails)
    event_queue: asyncio.Queue = asyncio.Queue()

    async def run_ingest():
        try:
            await orchestrator.ingest(emails, progress_callback=event_queue.put_nowait)
        except Exception as e:
            event_queue.put_nowait({"stage": "error", "status": "error", "message": str(e)})
        finally:
            event_queue.put_nowait(None)  # Sentinel: signals "stream is done"

    async def event_generator():
        task = asyncio.create_task(run_ingest())
        while True:
            try:
                event = await asyncio.wait_for(event_queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                # Keepalive comment so the browser doesn't drop the connection
                yield ": keepalive\n\n"
                continue

            if event is None:
                break

            yield f"data: {json.dumps(event)}\n\n"
        await task

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )


# ============================================================================
# GRAPH ENDPOINTS
# ============================================================================

@app.get("/api/graph")
async def get_graph():
    graph = orchestrator.graph.get_graph()
    return {
        "nodes": [node.to_wire() for node in graph['nodes']],
        "edges": [edge.to_wire() for edge in graph['edges']],
    }


@app.get("/api/graph/active")
async def get_active_nodes(limit: int = 5):
    """The `limit` people with the highest summed edge strength."""
    if limit < 1:
        raise HTTPException(status_code=422, detail="limit must be at least 1")
    nodes = orchestrator.graph.get_most_active_nodes(limit)
    return {"nodes": [node.to_wire() for node in nodes]}


@app.get("/api/graph/patterns/{node_id}")
async def get_relationship_patterns(node_id: str):
    """Collaborators, projects and daily frequency for one person. Unknown id → empty."""
    return orchestrator.graph.find_relationship_patterns(node_id).to_wire()


@app.get("/api/graph/connections/{node_id}")
async def get_connections(node_id: str):
    edges = orchestrator.graph.get_node_connections(node_id)
    return {"edges": [edge.to_wire() for edge in edges]}


# ============================================================================
# CONTEXT ENDPOINTS
# ============================================================================

@app.get("/api/context")
async def get_context(query: str = ""):
    """
    What matters right now. A non-empty ?query= also returns the stored
    emails most similar to it.
    """
    context = await orchestrator.relevant_context(query)
    return context.to_wire()


@app.get("/api/context/projects")
async def get_projects():
    projects = orchestrator.context.get_active_projects()
    return {"projects": [project.to_wire() for project in projects]}


@app.post("/api/similar")
async def find_similar(req: SimilarRequest):
    results = orchestrator.pipeline.find_similar_contexts(req.vector, req.threshold, req.limit)
    return {"results": [result.to_wire() for result in results]}


# ============================================================================
# INSIGHT ENDPOINTS
# ============================================================================

@app.post("/api/topics/cluster")
async def cluster(req: ClusterRequest):
    """
    Similarity graph over the given labels.

    Example: {"labels": ["Acme Corp", "Acme Corporation", "Globex"]}
    → one link between the two Acme labels (value 0.667).
    """
    return orchestrator.topic_clusters(req.labels).to_wire()


@app.get("/api/insights")
async def get_insights(limit: int = 5):
    return {
        "collaborators": [insight.to_wire() for insight in orchestrator.top_collaborators(limit)],
        "insights": [insight.to_wire() for insight in orchestrator.contextual_insights()],
        "topics": orchestrator.topic_clusters().to_wire(),
    }


@app.post("/api/summary")
async def summarize(req: SummaryRequest):
    emails = _normalize(req.emails) if req.emails is not None else None
    summary = await orchestrator.summarize_emails(emails)
    return {"summary": summary}


@app.get("/api/metrics")
async def get_metrics():
    """Mailbox counts over the emails still in short-term memory."""
    return orchestrator.email_metrics().to_wire()


@app.post("/api/metrics")
async def compute_metrics(req: SummaryRequest):
    """Mailbox counts over the posted emails (or short-term memory if omitted)."""
    emails = _normalize(req.emails) if req.emails is not None else None
    return orchestrator.email_metrics(emails).to_wire()


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.get("/api/stats")
async def get_stats():
    return orchestrator.stats()


@app.post("/api/snapshot")
async def snapshot():
    path = orchestrator.save_snapshot(SNAPSHOT_PATH)
    return {"status": "saved", "path": str(path)}


@app.post("/api/reset")
async def reset():
    orchestrator.reset()
    return {"status": "reset"}
