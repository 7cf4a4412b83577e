# tests/test_config.py
#
# Tests for configuration constants — validates the settings exist
# and have sensible values.

import re

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import (
    API_MAX_RETRIES,
    API_RETRY_BASE_DELAY,
    RETRYABLE_STATUS_CODES,
    EMBEDDING_DIMENSIONS,
    LLM_CALL_TIMEOUT,
    LLM_MAX_CONCURRENCY,
    SHORT_TERM_RETENTION_HOURS,
    MEDIUM_TERM_STALENESS_DAYS,
    PATTERN_CONFIDENCE_STEP,
    PATTERN_CONFIDENCE_THRESHOLD,
    TOPIC_SIMILARITY_THRESHOLD,
    URGENCY_KEYWORDS,
    PROJECT_PATTERN,
    SNAPSHOT_PATH,
)


class TestConfigConstants:
    """Validate configuration values."""

    def test_max_retries_is_positive(self):
        assert API_MAX_RETRIES > 0

    def test_max_retries_is_reasonable(self):
        """More than 10 retries would wait too long with exponential backoff."""
        assert API_MAX_RETRIES <= 10

    def test_retry_base_delay_is_reasonable(self):
        """Base delay should be between 0.1s and 10s."""
        assert 0.1 <= API_RETRY_BASE_DELAY <= 10.0

    def test_max_backoff_time(self):
        """Total worst-case wait should be under 10 minutes."""
        total_wait = sum(
            API_RETRY_BASE_DELAY * (2 ** i) for i in range(API_MAX_RETRIES - 1)
        )
        # Add 25% for max jitter
        assert total_wait * 1.25 < 600

    def test_rate_limit_and_overload_are_retryable(self):
        assert 429 in RETRYABLE_STATUS_CODES
        assert 529 in RETRYABLE_STATUS_CODES
        assert 401 not in RETRYABLE_STATUS_CODES

    def test_embedding_dimensions_positive(self):
        assert EMBEDDING_DIMENSIONS > 0

    def test_timeouts_and_concurrency_positive(self):
        assert LLM_CALL_TIMEOUT > 0
        assert LLM_MAX_CONCURRENCY >= 1

    def test_retention_windows(self):
        assert SHORT_TERM_RETENTION_HOURS == 24
        assert MEDIUM_TERM_STALENESS_DAYS == 7

    def test_confidence_settings_in_range(self):
        assert 0 < PATTERN_CONFIDENCE_STEP <= 1
        assert 0 < PATTERN_CONFIDENCE_THRESHOLD <= 1
        assert 0 <= TOPIC_SIMILARITY_THRESHOLD <= 1

    def test_urgency_keywords_are_lowercase(self):
        """Matching lowercases the email text, so keywords must be lowercase too."""
        assert URGENCY_KEYWORDS
        assert all(keyword == keyword.lower() for keyword in URGENCY_KEYWORDS)

    def test_project_pattern_compiles(self):
        match = re.search(PROJECT_PATTERN, "Kickoff for project Phoenix.", re.IGNORECASE)
        assert match is not None
        assert match.group(1).strip() == "Phoenix"

    def test_snapshot_path_is_yaml(self):
        assert SNAPSHOT_PATH.suffix in ('.yaml', '.yml')
