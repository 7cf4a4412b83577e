# config/settings.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# This is the "control panel" for the analytics engine. Every setting that
# might change — API keys, model names, thresholds, retention windows —
# lives here in one place.
#
# Values that depend on the deployment (keys, URLs, limits) are read from
# environment variables. The entry points (main.py and the MCP server)
# load a .env file first, so anything set there shows up here.
# ============================================================================

import os
from pathlib import Path


def _int_or_none(value: str | None, default: int | None) -> int | None:
    """Parse an optional integer env var. "0" or "none" means unbounded."""
    if value is None or value == '':
        return default
    if value.strip().lower() in ('0', 'none', 'unbounded'):
        return None
    return int(value)


# ── FILE PATHS ─────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent

# Where the orchestrator writes its YAML snapshot (graph + context tiers).
# The MCP server reads the same file on startup.
SNAPSHOT_PATH = Path(os.environ.get("SNAPSHOT_PATH", PROJECT_ROOT / "data" / "snapshot.yaml"))


# ── LLM PROVIDER SETTINGS ──────────────────────────────────────────────
# OpenRouter is preferred when configured; otherwise the OpenAI API is used
# directly. Anthropic is only a fallback for chat completions (it has no
# embedding endpoint).

OPENROUTER_API_KEY = os.environ.get("OPENROUTER_API_KEY", "")
OPENROUTER_BASE_URL = os.environ.get("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")

ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.environ.get("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")

# Model used for the structured 4-line content analysis and the report summary
ANALYSIS_MODEL = os.environ.get("ANALYSIS_MODEL", "gpt-4o-mini")

# Model used for email embeddings. The dimension must match the model:
# text-embedding-3-small and text-embedding-ada-002 both produce 1536 floats.
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = int(os.environ.get("EMBEDDING_DIMENSIONS", "1536"))

# Lower temperature keeps the 4-line format consistent
ANALYSIS_TEMPERATURE = 0.3
ANALYSIS_MAX_TOKENS = 500

# Token budget for the "summarize these emails" report
SUMMARY_MAX_TOKENS = 1500


# ── RETRY / TIMEOUT SETTINGS ───────────────────────────────────────────
# Exponential backoff: base, 2x base, 4x base ... with ±25% jitter.

API_MAX_RETRIES = 4
API_RETRY_BASE_DELAY = 1.0

# HTTP statuses worth retrying (rate limited / upstream overloaded)
RETRYABLE_STATUS_CODES = (429, 502, 503, 529)

# Seconds before a single embedding or analysis call counts as unavailable
LLM_CALL_TIMEOUT = float(os.environ.get("LLM_CALL_TIMEOUT", "30"))

# Maximum number of service calls in flight at once across a batch
LLM_MAX_CONCURRENCY = int(os.environ.get("LLM_MAX_CONCURRENCY", "4"))


# ── CAPACITY POLICIES ──────────────────────────────────────────────────

# Vector store is an LRU map; None means unbounded
VECTOR_STORE_MAX_SIZE = _int_or_none(os.environ.get("VECTOR_STORE_MAX_SIZE"), 10000)

# Each edge keeps only the most recent N subject lines; None means unbounded
EDGE_CONTEXT_MAX_LENGTH = _int_or_none(os.environ.get("EDGE_CONTEXT_MAX_LENGTH"), 100)

# Gmail bodies are truncated before analysis
EMAIL_BODY_MAX_CHARS = 1000


# ── SIMILARITY SETTINGS ────────────────────────────────────────────────

# Default cosine threshold / result count for nearest-neighbour lookups
SIMILARITY_THRESHOLD = 0.8
SIMILARITY_LIMIT = 5

# Dice-coefficient threshold for linking two topic labels
TOPIC_SIMILARITY_THRESHOLD = 0.3


# ── CONTEXT MEMORY SETTINGS ────────────────────────────────────────────

SHORT_TERM_RETENTION_HOURS = 24
MEDIUM_TERM_STALENESS_DAYS = 7

# Confidence decays as exp(-days_since_last_observed / PATTERN_DECAY_DAYS)
PATTERN_DECAY_DAYS = 30
PATTERN_CONFIDENCE_STEP = 0.1
PATTERN_CONFIDENCE_THRESHOLD = 0.7

# Importance multiplier for emails containing an urgency keyword
URGENT_IMPORTANCE = 1.5
DEFAULT_IMPORTANCE = 1.0

URGENCY_KEYWORDS = ['urgent', 'asap', 'important', 'priority']

PROJECT_PATTERN = r'\b(?:project|initiative|launch)[\s:-]+([^\n.,]+)'

# How many items the relevance snapshot returns per section
RELEVANT_CONTEXT_LIMIT = 5

# Mailbox metrics: how many senders / recent emails the metrics block lists
METRICS_TOP_SENDERS = 10
METRICS_RECENT_EMAILS = 10
