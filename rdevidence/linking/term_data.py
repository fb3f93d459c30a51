"""Static vocabulary for term extraction."""

STOPWORDS: frozenset[str] = frozenset(
    {
        "the", "is", "at", "which", "on", "and", "a", "an", "as", "to", "for", "in", "of",
        "it", "that", "this", "with", "from", "by", "we", "our", "if", "when", "how",
        "what", "can", "will", "should", "could", "would", "has", "have", "are", "was",
        "were", "been", "being", "be", "do", "does", "did", "done", "but", "not", "also",
    }
)

MIN_TERM_LENGTH = 4
