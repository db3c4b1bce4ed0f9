"""Sentence boundary segmentation for assembled assistant text.

Segmentation always runs over the full text seen so far rather than
incrementally. Since the text only ever grows by appending, every boundary
found once is found again on the next pass, so earlier sentences keep their
positions and only the last one can still change.
"""

from __future__ import annotations

import re

# Sentence-ending punctuation, optionally followed by closing quotes or
# brackets, then whitespace. Newlines always end a sentence.
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])(?P<closers>[\"'”’)\]]*)\s+|\n+")

# Tokens whose trailing period does not end a sentence.
_ABBREVIATIONS = frozenset(
    {
        "mr", "mrs", "ms", "dr", "prof", "sr", "jr", "st",
        "vs", "e.g", "i.e", "cf", "approx", "fig", "inc", "ltd", "corp", "co",
    }
)


def _ends_with_abbreviation(text: str) -> bool:
    words = text.rsplit(None, 1)
    if not words:
        return False
    word = words[-1].lstrip("\"'“‘([")
    if not word.endswith("."):
        return False
    stem = word[:-1]
    # Single capital letters are initials, as in "J. Smith".
    return stem.lower() in _ABBREVIATIONS or (len(stem) == 1 and stem.isupper())


def segment_sentences(text: str) -> list[str]:
    """Split ``text`` into an ordered list of stripped, non-empty sentences."""

    if not text:
        return []

    sentences: list[str] = []
    start = 0
    for match in _SENTENCE_BREAK.finditer(text):
        if (
            not match.group("closers")
            and "\n" not in match.group()
            and _ends_with_abbreviation(text[start : match.start()])
        ):
            continue
        # Closing quotes/brackets belong to the sentence they close.
        end = match.end("closers") if match.group("closers") else match.start()
        piece = text[start:end].strip()
        if piece:
            sentences.append(piece)
        start = match.end()

    tail = text[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


__all__ = ["segment_sentences"]
