"""Rule-based sentiment of a brand mention.

The sentence holding the brand's first mention is scored against two
keyword lists (1 point per keyword present) and two sets of brand-anchored
phrases such as "choose {brand}" or "{brand} lacks" (2 points each). A
negated recommendation ("not recommend", "never the best") makes the mention
negative outright. Otherwise the larger side wins and a tie is neutral.

No model is called; the same text always gets the same label.
"""

from __future__ import annotations

import re
from functools import lru_cache

from app.analysis.types import SentimentLabel

CONTEXT_RADIUS = 50

_POSITIVE_TERMS = (
    "recommend", "excellent", "best", "great", "outstanding", "superior",
    "top", "leading", "preferred", "ideal", "perfect", "amazing",
    "love", "fantastic", "wonderful", "impressive", "innovative",
    "should use", "highly rated", "popular choice", "go-to solution",
)

_NEGATIVE_TERMS = (
    "avoid", "terrible", "bad", "poor", "worst", "disappointing",
    "problematic", "issues", "concerns", "limitations", "drawbacks",
    "outdated", "deprecated", "discontinued", "not recommend",
    "stay away", "skip", "pass on",
)

_POSITIVE_PHRASES = (
    "{b} is excellent", "{b} offers", "{b} provides", "choose {b}",
    "use {b}", "try {b}", "{b} stands out", "{b} excels",
)

_NEGATIVE_PHRASES = (
    "avoid {b}", "{b} is bad", "{b} has issues", "problems with {b}",
    "{b} lacks", "not {b}", "instead of {b}",
)

_NEGATION = re.compile(r"(?:\bnot|n't|\bnever|\bno)\s+\w*\s*(?:recommend|suggest|good|great|excellent|best)", re.IGNORECASE)

# A sentence ends at . ! or ? followed by whitespace or the end of text, so
# domains like acme.com stay inside their sentence
_SENTENCE_END = re.compile(r"[.!?]+(?=\s|$)")


def _term_pattern(term: str) -> re.Pattern[str]:
    body = r"\s+".join(re.escape(part) for part in term.split())
    return re.compile(r"(?<!\w)" + body + r"(?!\w)", re.IGNORECASE)


_POSITIVE_PATTERNS = tuple(_term_pattern(t) for t in _POSITIVE_TERMS)
_NEGATIVE_PATTERNS = tuple(_term_pattern(t) for t in _NEGATIVE_TERMS)


@lru_cache(maxsize=1024)
def _phrase_patterns(brand: str) -> tuple[tuple[re.Pattern[str], ...], tuple[re.Pattern[str], ...]]:
    positive = tuple(_term_pattern(p.format(b=brand)) for p in _POSITIVE_PHRASES)
    negative = tuple(_term_pattern(p.format(b=brand)) for p in _NEGATIVE_PHRASES)
    return positive, negative


def mention_context(text: str, start: int, end: int, radius: int = CONTEXT_RADIUS) -> str:
    """Up to *radius* characters either side of ``text[start:end]``, whitespace-trimmed."""
    return text[max(0, start - radius):min(len(text), end + radius)].strip()


def sentence_at(text: str, offset: int) -> str:
    """The sentence of *text* that contains *offset*."""
    start = 0
    for match in _SENTENCE_END.finditer(text):
        if match.end() > offset:
            return text[start:match.start()].strip()
        start = match.end()
    return text[start:].strip()


def score_sentiment(text: str, brand: str) -> tuple[int, int]:
    """(positive, negative) points for *brand* in *text*."""
    positive_phrases, negative_phrases = _phrase_patterns(" ".join(brand.split()).lower())
    positive = sum(1 for p in _POSITIVE_PATTERNS if p.search(text))
    positive += sum(2 for p in positive_phrases if p.search(text))
    negative = sum(1 for p in _NEGATIVE_PATTERNS if p.search(text))
    negative += sum(2 for p in negative_phrases if p.search(text))
    return positive, negative


def classify_sentiment(text: str, brand: str) -> SentimentLabel:
    if _NEGATION.search(text):
        return SentimentLabel.NEGATIVE
    positive, negative = score_sentiment(text, brand)
    if positive > negative:
        return SentimentLabel.POSITIVE
    if negative > positive:
        return SentimentLabel.NEGATIVE
    return SentimentLabel.NEUTRAL


def mention_sentiment(text: str, brand: str, offset: int, context: str) -> SentimentLabel:
    """Label the mention of *brand* at *offset*, scoring its sentence or else *context*."""
    sentence = sentence_at(text, offset)
    return classify_sentiment(sentence or context, brand)
