"""Tests for label similarity clustering (memory/clustering.py)."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from memory.clustering import compare_two_strings, cluster_topics


# ============================================================================
# DICE COEFFICIENT
# ============================================================================

class TestCompareTwoStrings:
    """Test compare_two_strings()."""

    def test_identical_strings(self):
        assert compare_two_strings("budget", "budget") == 1.0

    def test_whitespace_ignored(self):
        assert compare_two_strings("Acme Corp", "AcmeCorp") == 1.0

    def test_case_sensitive(self):
        assert compare_two_strings("abc", "ABC") == 0.0

    def test_acme_pair(self):
        """7 shared bigrams out of 7 + 14 → 2/3."""
        assert compare_two_strings("Acme Corp", "Acme Corporation") == pytest.approx(2 / 3)

    def test_symmetric(self):
        assert compare_two_strings("night", "nacht") == compare_two_strings("nacht", "night")

    def test_no_shared_bigrams(self):
        assert compare_two_strings("Acme Corp", "Globex") == 0.0

    def test_single_character(self):
        assert compare_two_strings("a", "ab") == 0.0

    def test_repeated_bigrams_counted_once_each(self):
        """'aaaa' has bigrams aa×3, 'aa' has aa×1 → 2*1 / (3+1) = 0.5."""
        assert compare_two_strings("aaaa", "aa") == pytest.approx(0.5)


# ============================================================================
# CLUSTERING
# ============================================================================

class TestClusterTopics:
    """Test cluster_topics()."""

    def test_threshold_example(self):
        clusters = cluster_topics(["Acme Corp", "Acme Corporation", "Globex"], threshold=0.3)

        assert [node.id for node in clusters.nodes] == ["Acme Corp", "Acme Corporation", "Globex"]
        assert [node.group for node in clusters.nodes] == [0, 1, 2]
        assert len(clusters.links) == 1

        link = clusters.links[0]
        assert link.source == "Acme Corp"
        assert link.target == "Acme Corporation"
        assert link.value == pytest.approx(2 / 3)

    def test_threshold_is_strict(self):
        """A pair scoring exactly the threshold is not linked."""
        clusters = cluster_topics(["aaaa", "aa"], threshold=0.5)
        assert clusters.links == []

    def test_duplicates_kept(self):
        clusters = cluster_topics(["Acme", "Acme"])

        assert len(clusters.nodes) == 2
        assert len(clusters.links) == 1
        assert clusters.links[0].value == 1.0

    def test_empty_input(self):
        clusters = cluster_topics([])
        assert clusters.nodes == []
        assert clusters.links == []

    def test_wire_form(self):
        wire = cluster_topics(["Acme Corp", "Acme Corporation"]).to_wire()

        assert wire["nodes"][0] == {"id": "Acme Corp", "group": 0}
        assert set(wire["links"][0]) == {"source", "target", "value"}
