"""
Text preprocessing helpers shared by the quality scorer and the extractor.

Provides:
    - anonymize_text(): replace emails, phone numbers, URLs and greeting
      names with placeholders before text leaves the process
    - split_sentences() / normalize_sentence(): sentence handling used by
      the duplicate-sentence check
    - tokenize_words() / count_words(): token handling used by the
      diversity check and refinement word counts
    - chunk_text(): split long texts at sentence boundaries
    - extract_metadata(): word / sentence / punctuation statistics
    - clean_email_text() / clean_email_batch(): strip quoted replies and
      signatures from Gmail bodies and drop automated mail
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

_URL_RE = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*)"
)
_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE_RE = re.compile(r"(?:\+\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")
_GREETING_NAME_RE = re.compile(r"\b(Dear|Hi|Hello|Hey)\s+[A-Z][a-z]+\b")

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_SENTENCE_CHUNK_RE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")
_WORD_RE = re.compile(r"[a-z0-9']+")

_PUNCTUATION = {
    "commas": ",",
    "periods": ".",
    "exclamations": "!",
    "questions": "?",
    "semicolons": ";",
    "colons": ":",
    "dashes": "-–—",
    "parentheses": "()",
}


def anonymize_text(text: str) -> str:
    """
    Replace PII with placeholders while keeping the writing style intact.

    URLs become ``[URL]``, emails ``[EMAIL]``, phone numbers ``[PHONE]`` and
    names after a greeting (``Hi Sarah``) become ``[NAME]``.
    """
    if not text:
        return ""
    anonymized = _URL_RE.sub("[URL]", text)
    anonymized = _EMAIL_RE.sub("[EMAIL]", anonymized)
    anonymized = _PHONE_RE.sub("[PHONE]", anonymized)
    return _GREETING_NAME_RE.sub(r"\1 [NAME]", anonymized)


def normalize_sentence(sentence: str) -> str:
    """Lower-case and collapse whitespace."""
    return " ".join(sentence.lower().split())


def split_sentences(text: str, min_chars: int = 0) -> List[str]:
    """
    Split on ``.``, ``!`` and ``?`` and return normalized sentences.

    Sentences shorter than ``min_chars`` after normalization are dropped.
    """
    sentences = (normalize_sentence(part) for part in _SENTENCE_SPLIT_RE.split(text or ""))
    return [s for s in sentences if s and len(s) >= min_chars]


def tokenize_words(text: str, min_length: int = 1) -> List[str]:
    """Lower-cased word tokens of at least ``min_length`` characters."""
    return [t for t in _WORD_RE.findall((text or "").lower()) if len(t) >= min_length]


def count_words(text: str) -> int:
    """Whitespace-delimited word count."""
    return len((text or "").split())


def chunk_text(text: str, max_words: int = 2000) -> List[str]:
    """
    Split ``text`` into chunks of at most ``max_words`` words.

    Chunks break at sentence boundaries; a single sentence longer than
    ``max_words`` becomes its own chunk.
    """
    if not text or not text.strip():
        return []
    if max_words < 1:
        raise ValueError(f"max_words must be positive, got {max_words}")

    sentences = _SENTENCE_CHUNK_RE.findall(text) or [text]
    chunks: List[str] = []
    current: List[str] = []
    current_words = 0

    for sentence in sentences:
        words = count_words(sentence)
        if words == 0:
            continue
        if current and current_words + words > max_words:
            chunks.append(" ".join(current))
            current, current_words = [], 0
        current.append(sentence.strip())
        current_words += words

    if current:
        chunks.append(" ".join(current))
    return chunks


@dataclass
class TextMetadata:
    word_count: int = 0
    sentence_count: int = 0
    paragraph_count: int = 0
    avg_sentence_length: int = 0
    punctuation: Dict[str, int] = field(default_factory=dict)


def extract_metadata(text: str) -> TextMetadata:
    """Word, sentence, paragraph and punctuation statistics for ``text``."""
    if not text or not text.strip():
        return TextMetadata(punctuation={name: 0 for name in _PUNCTUATION})

    word_count = count_words(text)
    sentences = [s for s in re.split(r"[.!?]+|\n\s*\n", text) if len(s.strip()) > 10]
    sentence_count = len(sentences) or 1
    paragraphs = [p for p in re.split(r"\n\s*\n", text) if p.strip()]

    return TextMetadata(
        word_count=word_count,
        sentence_count=sentence_count,
        paragraph_count=len(paragraphs) or 1,
        avg_sentence_length=round(word_count / sentence_count),
        punctuation={
            name: sum(text.count(ch) for ch in chars)
            for name, chars in _PUNCTUATION.items()
        },
    )


# =========================================================================
# EMAIL CLEANING
# =========================================================================

MIN_EMAIL_WORDS = 20

_AUTOMATED_SUBJECT_RE = re.compile(
    r"^(?:re|fwd?):|accepted:|out of office|automatic reply"
    r"|delivery status notification|undeliverable|bounce",
    re.IGNORECASE,
)
_QUOTED_LINE_RE = re.compile(r"^>+.*$", re.MULTILINE)
_ON_WROTE_RE = re.compile(r"^On .+ wrote:$", re.MULTILINE)
_HEADER_LINE_RE = re.compile(r"^(?:From|Sent|To|Subject|Date):.+$", re.MULTILINE)
_SEPARATOR_RE = re.compile(r"_{10,}|-{10,}|={10,}")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

_SIGNATURE_DELIMITER_RE = re.compile(r"^--[ \t]*$", re.MULTILINE)
_MOBILE_SIGNATURE_RE = re.compile(
    r"sent from my (?:iphone|ipad|android|mobile device).*", re.IGNORECASE
)
_CLOSING_RES = [
    re.compile(
        r"^(?:best regards|sincerely|cheers|thanks|thank you|regards|best),?[ \t]*$",
        re.IGNORECASE | re.MULTILINE,
    ),
    re.compile(
        r"^(?:kind regards|warm regards|yours truly|respectfully),?[ \t]*$",
        re.IGNORECASE | re.MULTILINE,
    ),
]
_DISCLAIMER_RE = re.compile(r"^(?:confidential|this email).*$", re.IGNORECASE | re.MULTILINE)

# A closing phrase only starts the signature in the last 30% of the body.
_CLOSING_TAIL_FRACTION = 0.7


def is_automated_email(subject: str) -> bool:
    """Replies, forwards, calendar answers, auto-replies and bounces."""
    return bool(subject) and _AUTOMATED_SUBJECT_RE.search(subject) is not None


def remove_quoted_text(body: str) -> str:
    """
    Drop text the author did not write in this message.

    Removes ``>`` quoted lines, everything from an ``On ... wrote:`` line
    onwards, forwarded header lines and long separator rules.
    """
    if not body:
        return ""
    cleaned = _QUOTED_LINE_RE.sub("", body)
    match = _ON_WROTE_RE.search(cleaned)
    if match:
        cleaned = cleaned[: match.start()]
    cleaned = _HEADER_LINE_RE.sub("", cleaned)
    cleaned = _SEPARATOR_RE.sub("", cleaned)
    return _BLANK_RUN_RE.sub("\n\n", cleaned).strip()


def remove_signature(body: str) -> str:
    """Cut the signature block, mobile footers and confidentiality notices."""
    if not body:
        return ""
    cleaned = body
    match = _SIGNATURE_DELIMITER_RE.search(cleaned)
    if match:
        cleaned = cleaned[: match.start()]
    cleaned = _MOBILE_SIGNATURE_RE.sub("", cleaned)

    for pattern in _CLOSING_RES:
        match = pattern.search(cleaned)
        if match and match.start() > len(cleaned) * _CLOSING_TAIL_FRACTION:
            cleaned = cleaned[: match.start()]

    cleaned = _DISCLAIMER_RE.sub("", cleaned)
    return _BLANK_RUN_RE.sub("\n\n", cleaned).strip()


def clean_email_text(body: str) -> str:
    """Quoted-text removal followed by signature removal."""
    return remove_signature(remove_quoted_text(body))


def has_enough_content(text: str, min_words: int = MIN_EMAIL_WORDS) -> bool:
    """False for blank or punctuation-only text and text under ``min_words``."""
    stripped = (text or "").strip()
    if not re.search(r"\w", stripped):
        return False
    return count_words(stripped) >= min_words


@dataclass
class EmailCleaningStats:
    total: int = 0
    filtered_by_subject: int = 0
    filtered_by_content: int = 0
    valid: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "filteredBySubject": self.filtered_by_subject,
            "filteredByContent": self.filtered_by_content,
            "valid": self.valid,
        }


def clean_email_batch(
    emails: Sequence[Dict[str, Any]], min_words: int = MIN_EMAIL_WORDS
) -> Tuple[List[str], EmailCleaningStats]:
    """
    Clean raw Gmail messages down to the author's own writing.

    Args:
        emails: Objects with ``subject`` and ``body`` keys.
        min_words: Cleaned bodies below this are dropped.

    Returns:
        The cleaned bodies in input order, and counts of what was dropped.
    """
    stats = EmailCleaningStats(total=len(emails))
    bodies: List[str] = []
    for email in emails:
        if is_automated_email(str(email.get("subject") or "")):
            stats.filtered_by_subject += 1
            continue
        cleaned = clean_email_text(str(email.get("body") or ""))
        if not has_enough_content(cleaned, min_words):
            stats.filtered_by_content += 1
            continue
        bodies.append(cleaned)
        stats.valid += 1
    return bodies, stats


__all__ = [
    "MIN_EMAIL_WORDS",
    "is_automated_email",
    "remove_quoted_text",
    "remove_signature",
    "clean_email_text",
    "has_enough_content",
    "EmailCleaningStats",
    "clean_email_batch",
    "anonymize_text",
    "normalize_sentence",
    "split_sentences",
    "tokenize_words",
    "count_words",
    "chunk_text",
    "TextMetadata",
    "extract_metadata",
]
