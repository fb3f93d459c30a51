"""Text cleanup for evidence content.

Evidence arrives as notes, forwarded emails and commit messages. Before any
length check, term extraction or prompt building the content is reduced to
its informative body: HTML is stripped, quoted replies and sign-offs are
dropped, and whitespace is collapsed.
"""

from __future__ import annotations

import re
import warnings

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

_QUOTED_LINE = re.compile(r"^>.*$", re.MULTILINE)
_REPLY_HEADER = re.compile(r"On .* wrote:", re.IGNORECASE)
_SIGNATURE_MARKER = re.compile(r"--\s*$", re.MULTILINE)
_SIGN_OFFS = [
    re.compile(r"Sent from .*", re.IGNORECASE),
    re.compile(r"Best regards.*", re.IGNORECASE),
    re.compile(r"\bThanks\b.*", re.IGNORECASE),
    re.compile(r"\bCheers\b.*", re.IGNORECASE),
    re.compile(r"\bRegards\b.*", re.IGNORECASE),
]
_WHITESPACE = re.compile(r"\s+")


def strip_html(text: str) -> str:
    """Remove markup, keeping the text content of every element."""
    if "<" not in text:
        return text
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        soup = BeautifulSoup(text, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return soup.get_text(separator=" ")


def sanitize_content(text: str | None) -> str:
    """Return the informative body of an evidence item as a single line."""
    if not text:
        return ""

    clean = strip_html(text)
    clean = _QUOTED_LINE.sub("", clean)
    clean = _REPLY_HEADER.sub("", clean)
    clean = _SIGNATURE_MARKER.sub("", clean)
    for pattern in _SIGN_OFFS:
        clean = pattern.sub("", clean)
    return _WHITESPACE.sub(" ", clean).strip()


def truncate_at_word(text: str, max_chars: int) -> str:
    """Cut to max_chars, backing up to a word boundary if one is in the last 20%."""
    if len(text) <= max_chars:
        return text

    truncated = text[:max_chars]
    last_space = truncated.rfind(" ")
    if last_space > max_chars * 0.8:
        return truncated[:last_space]
    return truncated


def clean_snippet(text: str | None, max_chars: int) -> str:
    return truncate_at_word(sanitize_content(text), max_chars)


def truncate_words(text: str | None, max_words: int) -> str:
    if not text:
        return ""
    return " ".join(text.split()[:max_words])


_CODE_FENCE_OPEN = re.compile(r"^```(?:json)?", re.IGNORECASE)
_CODE_FENCE_CLOSE = re.compile(r"```$")


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapped around a model response."""
    text = _CODE_FENCE_OPEN.sub("", text.strip())
    return _CODE_FENCE_CLOSE.sub("", text).strip()
