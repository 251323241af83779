"""Relevance chunking for oversized source documents.

Reduces a document to a bounded excerpt weighted toward grant-relevant
paragraphs so the extraction step stays within its size budget.

Scoring, per paragraph:
    +10 per occurrence of each vocabulary term (case-insensitive substring)
    +15 per currency amount or date-like match
    +5  once if the paragraph is list-structured (bullet, dash, ordinal)

Fragments are returned in descending score order (ties keep document order)
and callers join them with ``SECTION_BREAK`` so consumers can see the seams.
"""

import re

RELEVANCE_VOCABULARY = (
    "eligibility", "eligible", "requirements", "criteria",
    "deadline", "due date", "application", "apply",
    "funding", "amount", "budget", "award",
    "evaluation", "selection", "review",
    "documents", "required", "submission",
    "contact", "email", "phone",
    "program goals", "objectives", "outcomes",
)

KEYWORD_WEIGHT = 10
AMOUNT_OR_DATE_WEIGHT = 15
LIST_BONUS = 5

# A rejected paragraph must score above this to be kept as a truncated prefix
MATERIALITY_THRESHOLD = 20
MIN_FRAGMENTS = 3
TRUNCATION_BUFFER = 100
MIN_TRUNCATED_CHARS = 200
DUPLICATE_CHECK_CHARS = 100

TRUNCATION_MARKER = "... [TRUNCATED]"
SECTION_BREAK = "\n\n--- SECTION BREAK ---\n\n"

PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
AMOUNT_OR_DATE = re.compile(
    r"[$€£]\s?\d[\d,]*(?:\.\d+)?"
    r"|\b\d{1,2}/\d{1,2}/\d{4}\b"
    r"|\b\d{4}-\d{2}-\d{2}\b"
    r"|\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.? \d{1,2}(?:st|nd|rd|th)?\b",
    re.IGNORECASE,
)
LIST_ITEM = re.compile(r"^\s*(?:[•\-*–]|\d+[.)])\s", re.MULTILINE)


def split_paragraphs(content: str) -> list[str]:
    return [p for p in PARAGRAPH_SPLIT.split(content) if p.strip()]


def score_paragraph(paragraph: str) -> int:
    lowered = paragraph.lower()
    score = sum(lowered.count(term) * KEYWORD_WEIGHT for term in RELEVANCE_VOCABULARY)
    score += len(AMOUNT_OR_DATE.findall(paragraph)) * AMOUNT_OR_DATE_WEIGHT
    if LIST_ITEM.search(paragraph):
        score += LIST_BONUS
    return score


def chunk_content(content: str, max_size: int) -> list[str]:
    """Select the most relevant paragraphs of ``content`` within ``max_size`` characters.

    Every fragment after the first is charged for the ``SECTION_BREAK`` it
    will be joined with, so the joined excerpt never exceeds ``max_size`` plus
    two truncation markers. Documents with little or no matching
    vocabulary still yield their opening text as a fallback fragment.

    Args:
        content: Full document text.
        max_size: Character budget, must be positive.

    Returns:
        Fragments ordered by descending relevance; a fallback prefix of the
        document, when added, comes first.
    """
    if max_size <= 0:
        raise ValueError("max_size must be positive")

    scored = [(score_paragraph(p), p) for p in split_paragraphs(content)]
    # sorted() is stable, so equal scores keep document order
    ranked = sorted(scored, key=lambda item: item[0], reverse=True)

    selected: list[str] = []
    used = 0
    rejection_seen = False

    for score, paragraph in ranked:
        separator = len(SECTION_BREAK) if selected else 0
        if used + separator + len(paragraph) <= max_size:
            selected.append(paragraph)
            used += separator + len(paragraph)
            continue

        if rejection_seen:
            continue
        rejection_seen = True

        if score > MATERIALITY_THRESHOLD and len(selected) < MIN_FRAGMENTS:
            room = max_size - used - separator - TRUNCATION_BUFFER
            if room > MIN_TRUNCATED_CHARS:
                selected.append(paragraph[:room] + TRUNCATION_MARKER)
                used += separator + room
                break

    if len(selected) < MIN_FRAGMENTS:
        remaining = max_size - used - (len(SECTION_BREAK) if selected else 0)
        prefix = content[:remaining] if remaining > 0 else ""
        if prefix:
            opening = prefix[:DUPLICATE_CHECK_CHARS]
            if not any(opening in fragment for fragment in selected):
                marker = TRUNCATION_MARKER if len(prefix) < len(content) else ""
                selected.insert(0, prefix + marker)

    return selected


def prepare_for_extraction(content: str, max_size: int) -> tuple[str, dict]:
    """Return ``content`` unchanged when it fits, else its joined relevance excerpt.

    The second element describes what happened, for job metadata.
    """
    if len(content) <= max_size:
        return content, {"chunked": False, "original_chars": len(content), "processed_chars": len(content)}

    sections = chunk_content(content, max_size)
    processed = SECTION_BREAK.join(sections)
    return processed, {
        "chunked": True,
        "original_chars": len(content),
        "processed_chars": len(processed),
        "sections": len(sections),
    }
