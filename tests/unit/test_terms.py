"""Unit tests for term extraction and Jaccard rule scoring

Tests cover:
- Frequency ordering with first-seen tie-breaking
- Stopword and short-word filtering
- Punctuation stripping and lowercasing
- Max-terms bound
- Jaccard symmetry, range and identity
"""

from __future__ import annotations

from rdevidence.linking.terms import extract_top_terms, jaccard_similarity


def test_most_frequent_terms_first():
    """Test that terms are ranked by frequency"""
    text = "latency latency latency cache cache eviction"
    assert extract_top_terms(text) == ["latency", "cache", "eviction"]


def test_ties_keep_first_seen_order():
    """Test that equal counts keep the order terms first appeared"""
    text = "zebra apple mango apple zebra mango"
    assert extract_top_terms(text) == ["zebra", "apple", "mango"]


def test_short_words_and_stopwords_dropped():
    """Test that words of 3 chars or fewer and stopwords are ignored"""
    text = "The API was slow but should have been done with care"
    assert extract_top_terms(text) == ["slow", "care"]


def test_punctuation_stripped_and_lowercased():
    """Test that punctuation splits words and case is folded"""
    text = "Throughput, THROUGHPUT! throughput-based (cache)."
    assert extract_top_terms(text) == ["throughput", "based", "cache"]


def test_never_more_than_max_terms():
    """Test that output is bounded by max_terms"""
    text = "alpha bravo charlie delta echoes foxtrot golf hotel india juliet"
    assert len(extract_top_terms(text, max_terms=5)) == 5
    assert extract_top_terms(text, max_terms=2) == ["alpha", "bravo"]


def test_terms_are_tokens_of_content():
    """Test that every term is a lowercase token longer than 3 chars"""
    text = "Measured eviction latency during burst traffic with the adaptive cache"
    tokens = text.lower().split()
    for term in extract_top_terms(text):
        assert term in tokens
        assert len(term) > 3
        assert term == term.lower()


def test_empty_text_has_no_terms():
    """Test that empty or missing text yields no terms"""
    assert extract_top_terms("") == []
    assert extract_top_terms(None) == []


def test_jaccard_basic():
    """Test intersection over union"""
    assert jaccard_similarity(["a", "b", "c"], ["b", "c", "d"]) == 0.5


def test_jaccard_symmetric():
    """Test that argument order does not matter"""
    a = ["cache", "latency", "burst"]
    b = ["latency", "eviction"]
    assert jaccard_similarity(a, b) == jaccard_similarity(b, a)


def test_jaccard_identity_and_range():
    """Test that identical non-empty sets score 1 and disjoint sets 0"""
    assert jaccard_similarity(["x", "y"], ["y", "x"]) == 1.0
    assert jaccard_similarity(["x"], ["y"]) == 0.0
    assert 0.0 <= jaccard_similarity(["x", "y"], ["y", "z", "w"]) <= 1.0


def test_jaccard_treats_sequences_as_sets():
    """Test that duplicates do not change the score"""
    assert jaccard_similarity(["a", "a", "b"], ["a", "b", "b"]) == 1.0


def test_jaccard_both_empty_is_zero():
    """Test that two empty term lists score 0"""
    assert jaccard_similarity([], []) == 0.0
