# tests/test_context.py
#
# Tests for the three-tier context manager (memory/context.py).
# A mutable fake clock lets each test move "now" without sleeping.

import asyncio
import math
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from memory.classifier import HeuristicClassifier
from memory.context import ContextManager, pattern_labels
from memory.embeddings import EmbeddingPipeline
from memory.graph import RelationshipGraph
from memory.models import EmailContent

# A Monday
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


def _email(email_id, subject="Status", body="", sender="alice@x.com", to=None, when=T0):
    return EmailContent(id=email_id, subject=subject, body=body, sender=sender,
                        to=to if to is not None else ["bob@x.com"], timestamp=when)


def _manager(clock=None, service=None):
    clock = clock or FakeClock()
    graph = RelationshipGraph(clock=clock)
    pipeline = EmbeddingPipeline(service=service, dimensions=3)
    return ContextManager(graph, pipeline, clock=clock)


# ============================================================================
# CLASSIFIER
# ============================================================================

class TestHeuristicClassifier:
    """Test urgency keywords and project extraction."""

    def test_urgent_keyword_in_subject(self):
        assert HeuristicClassifier().is_urgent(_email("1", subject="URGENT: server down"))

    def test_urgent_keyword_in_body(self):
        assert HeuristicClassifier().is_urgent(_email("1", body="Please reply asap"))

    def test_not_urgent(self):
        assert not HeuristicClassifier().is_urgent(_email("1", subject="Lunch?"))

    def test_project_from_subject(self):
        email = _email("1", subject="Re: Project Falcon kickoff")
        assert HeuristicClassifier().extract_project_key(email) == "falcon kickoff"

    def test_project_from_body(self):
        email = _email("1", subject="Hi", body="Notes on the launch: Orion. More soon")
        assert HeuristicClassifier().extract_project_key(email) == "orion"

    def test_no_project(self):
        assert HeuristicClassifier().extract_project_key(_email("1", subject="Lunch?")) is None

    def test_custom_keywords(self):
        classifier = HeuristicClassifier(urgency_keywords=["Blocker"])
        assert classifier.is_urgent(_email("1", subject="blocker on deploy"))


# ============================================================================
# SHORT TERM
# ============================================================================

class TestShortTerm:
    """Test the 24-hour short-term tier."""

    def test_entry_recorded_with_importance(self):
        manager = _manager()
        manager.record_email(_email("1", subject="Lunch?"))
        manager.record_email(_email("2", subject="Urgent: contract"))

        assert manager.short_term["1"].importance == 1.0
        assert manager.short_term["2"].importance == 1.5

    def test_retained_at_23h59m(self):
        clock = FakeClock()
        manager = _manager(clock)
        manager.record_email(_email("1"))

        clock.now = T0 + timedelta(hours=23, minutes=59)
        manager.prune_memory()

        assert "1" in manager.short_term

    def test_evicted_at_24h01m(self):
        clock = FakeClock()
        manager = _manager(clock)
        manager.record_email(_email("1"))

        clock.now = T0 + timedelta(hours=24, minutes=1)
        manager.prune_memory()

        assert "1" not in manager.short_term

    def test_recording_prunes(self):
        """Each new email triggers a prune pass."""
        clock = FakeClock()
        manager = _manager(clock)
        manager.record_email(_email("old"))

        clock.now = T0 + timedelta(days=2)
        manager.record_email(_email("new", when=clock.now))

        assert list(manager.short_term) == ["new"]

    def test_recent_entries_newest_first(self):
        clock = FakeClock(T0 + timedelta(hours=3))
        manager = _manager(clock)
        for hour in range(3):
            manager.record_email(_email(f"e{hour}", when=T0 + timedelta(hours=hour)))

        assert [e.content.id for e in manager.recent_entries(limit=2)] == ["e2", "e1"]


# ============================================================================
# MEDIUM TERM
# ============================================================================

class TestMediumTerm:
    """Test project tracking."""

    def test_project_created_active(self):
        manager = _manager()
        manager.record_email(_email("1", subject="Project Falcon", to=["bob@x.com"]))

        project = manager.medium_term["falcon"]
        assert project.status == "active"
        assert project.participants == ["alice@x.com", "bob@x.com"]
        assert project.last_update == T0

    def test_participants_merged_without_duplicates(self):
        manager = _manager()
        manager.record_email(_email("1", subject="Project Falcon", to=["bob@x.com"]))
        manager.record_email(_email("2", subject="Project Falcon", sender="carol@x.com",
                                    to=["alice@x.com"]))

        assert manager.medium_term["falcon"].participants == ["alice@x.com", "bob@x.com", "carol@x.com"]

    def test_completed_after_seven_idle_days(self):
        clock = FakeClock()
        manager = _manager(clock)
        manager.record_email(_email("1", subject="Project Falcon"))

        clock.now = T0 + timedelta(days=7, minutes=1)
        manager.prune_memory()

        assert manager.medium_term["falcon"].status == "completed"
        assert manager.get_active_projects() == []

    def test_still_active_at_seven_days(self):
        clock = FakeClock()
        manager = _manager(clock)
        manager.record_email(_email("1", subject="Project Falcon"))

        clock.now = T0 + timedelta(days=7)
        manager.prune_memory()

        assert manager.medium_term["falcon"].status == "active"


# ============================================================================
# LONG TERM
# ============================================================================

class TestLongTerm:
    """Test behavioural patterns and their confidence."""

    def test_pattern_labels(self):
        assert pattern_labels(T0) == ["Communication at 9:00", "Active on Mon"]

    def test_first_sighting(self):
        manager = _manager()
        manager.record_email(_email("1"))

        pattern = manager.long_term["Active on Mon"]
        assert pattern.frequency == 1
        assert pattern.confidence == pytest.approx(0.1)

    def test_confidence_monotone_and_bounded(self):
        manager = _manager()
        previous = 0.0
        for i in range(15):
            manager.record_email(_email(str(i)))
            confidence = manager.long_term["Communication at 9:00"].confidence
            assert confidence >= previous
            assert confidence <= 1.0
            previous = confidence

        assert previous == pytest.approx(1.0)
        assert manager.long_term["Communication at 9:00"].frequency == 15

    def test_confidence_decays_when_read(self):
        clock = FakeClock()
        manager = _manager(clock)
        manager.record_email(_email("1"))

        clock.now = T0 + timedelta(days=30)
        patterns = {p.pattern: p for p in manager.get_patterns()}

        assert patterns["Active on Mon"].confidence == pytest.approx(0.1 * math.exp(-1))
        # The stored value is untouched
        assert manager.long_term["Active on Mon"].confidence == pytest.approx(0.1)

    def test_min_confidence_filter(self):
        manager = _manager()
        manager.record_email(_email("1"))

        assert manager.get_patterns(min_confidence=0.5) == []

    def test_last_observed_never_moves_back(self):
        clock = FakeClock(T0 + timedelta(days=7))
        manager = _manager(clock)
        manager.record_email(_email("new", when=T0 + timedelta(days=7)))
        manager.record_email(_email("old", when=T0))

        assert manager.long_term["Active on Mon"].last_observed == T0 + timedelta(days=7)


# ============================================================================
# UPDATE & RELEVANCE
# ============================================================================

class TestRelevantContext:
    """Test update_context() and get_relevant_context()."""

    def test_update_context_vectorizes(self):
        manager = _manager()

        enhanced = asyncio.run(manager.update_context(_email("1")))

        assert enhanced.email_id == "1"
        assert manager.pipeline.get_vector("1") is not None
        assert manager.graph.edge_count == 1
        assert "1" in manager.short_term

    def test_relevant_context_sections(self):
        manager = _manager()
        for i in range(10):
            manager.record_email(_email(str(i), when=T0 - timedelta(minutes=10 - i)))

        context = asyncio.run(manager.get_relevant_context())

        # At most five recent emails, newest first
        assert [email.id for email in context.recent_context] == ["9", "8", "7", "6", "5"]
        # Ten sightings at the same hour and weekday → confidence 1.0 > 0.7
        assert "Communication at 8:00" in context.related_patterns
        assert [node.id for node in context.relationships] == ["alice@x.com", "bob@x.com"]
        assert context.similar_contexts == []

    def test_weak_patterns_not_related(self):
        manager = _manager()
        manager.record_email(_email("1"))

        context = asyncio.run(manager.get_relevant_context())

        assert context.related_patterns == []

    def test_query_returns_similar_contexts(self):
        service = MagicMock()
        service.available = True
        service.embed = AsyncMock(return_value=[1.0, 0.0, 0.0])
        service.complete = AsyncMock(side_effect=RuntimeError("no analysis"))
        manager = _manager(service=service)

        asyncio.run(manager.update_context(_email("1")))
        context = asyncio.run(manager.get_relevant_context("budget review"))

        assert [v.email_id for v in context.similar_contexts] == ["1"]

    def test_memory_view_is_read_only(self):
        manager = _manager()
        manager.record_email(_email("1"))

        view = manager.memory
        assert set(view["shortTerm"]) == {"1"}
        with pytest.raises(TypeError):
            view["shortTerm"]["2"] = None

    def test_clear(self):
        manager = _manager()
        manager.record_email(_email("1", subject="Project Falcon"))
        manager.clear()

        assert manager.short_term == {}
        assert manager.medium_term == {}
        assert manager.long_term == {}
