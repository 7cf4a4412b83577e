# memory/clustering.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# Builds a similarity graph over short text labels (topics, people,
# organizations) so the dashboard can draw related labels close together.
#
#   - One node per input label, in input order. Labels are NOT
#     deduplicated: "Acme" twice gives two nodes (and a 1.0 link).
#   - One link for every pair whose similarity is above the threshold.
#
# Similarity is the Dice coefficient over character bigrams:
#
#     "Acme Corp" vs "Acme Corporation"
#       bigrams: Ac cm me eC Co or rp   (7)
#                Ac cm me eC Co or rp po or ra at ti io on   (14)
#       shared:  7  →  2 * 7 / (7 + 14) = 0.667
#
# This is a similarity graph, not a partition — grouping is left to the
# consumer.
# ============================================================================

import re
from collections import Counter

from config.settings import TOPIC_SIMILARITY_THRESHOLD
from memory.models import TopicCluster, TopicLink, TopicNode


def _bigrams(text: str) -> list[str]:
    return [text[i:i + 2] for i in range(len(text) - 1)]


def compare_two_strings(first: str, second: str) -> float:
    """
    Dice coefficient of two strings' character bigrams, in [0, 1].

    Whitespace is ignored and case matters. Identical strings score 1.0;
    a string with fewer than two characters scores 0.0 against anything
    else.
    """
    first = re.sub(r'\s+', '', first)
    second = re.sub(r'\s+', '', second)

    if first == second:
        return 1.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    first_bigrams = Counter(_bigrams(first))
    intersection = 0
    for bigram in _bigrams(second):
        if first_bigrams[bigram] > 0:
            first_bigrams[bigram] -= 1
            intersection += 1

    return (2.0 * intersection) / (len(first) + len(second) - 2)


def cluster_topics(labels: list[str], threshold: float = TOPIC_SIMILARITY_THRESHOLD) -> TopicCluster:
    """
    Compare every pair (i < j) of labels and link those above `threshold`.

    O(n²) comparisons; the output only depends on the input order.
    """
    nodes = [TopicNode(id=label, group=index) for index, label in enumerate(labels)]
    links = []

    for i in range(len(labels)):
        for j in range(i + 1, len(labels)):
            similarity = compare_two_strings(labels[i], labels[j])
            if similarity > threshold:
                links.append(TopicLink(source=labels[i], target=labels[j], value=similarity))

    return TopicCluster(nodes=nodes, links=links)
