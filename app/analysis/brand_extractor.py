"""Literal gazetteer matching for brand and competitor mentions.

Each entry is matched case-insensitively as a whole string. Longer entries
are matched first and claim their spans, so "Google Analytics" is not also
counted as "Google". Text inside URLs is never a mention. Entries that never
match are left out entirely. Each mention carries the text around its first
occurrence and a rule-based sentiment label (see ``app.analysis.sentiment``).
"""

from __future__ import annotations

import logging
import re

from app.analysis.gazetteer import Gazetteer, GazetteerEntry
from app.analysis.sentiment import mention_context, mention_sentiment
from app.analysis.types import BrandMention

logger = logging.getLogger(__name__)

_URL_SPAN_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)


def _overlaps(start: int, end: int, claimed: list[tuple[int, int]]) -> bool:
    return any(start < c_end and c_start < end for c_start, c_end in claimed)


def _match_order(entry: GazetteerEntry) -> tuple[int, str]:
    return (-len(entry.normalized), entry.normalized)


def extract_brands(text: str, gazetteer: Gazetteer) -> tuple[list[BrandMention], list[BrandMention]]:
    """Find gazetteer entries in *text*.

    Returns:
        ``(org_mentions, competitor_mentions)``, each ordered by first
        occurrence then normalized name.
    """
    if not text or not gazetteer.entries:
        return [], []

    org_names = gazetteer.org_names
    length = len(text)
    claimed: list[tuple[int, int]] = [m.span() for m in _URL_SPAN_PATTERN.finditer(text)]
    found: list[BrandMention] = []

    for entry in sorted(gazetteer.entries, key=_match_order):
        count = 0
        first = -1
        first_end = -1
        for match in entry.pattern.finditer(text):
            start, end = match.span()
            if _overlaps(start, end, claimed):
                continue
            claimed.append((start, end))
            count += 1
            if first < 0 or start < first:
                first, first_end = start, end
        if count == 0:
            continue
        context = mention_context(text, first, first_end)
        found.append(
            BrandMention(
                name=entry.name,
                normalized=entry.normalized,
                mentions=count,
                first_pos_ratio=round(first / length, 4),
                first_offset=first,
                is_org_brand=entry.normalized in org_names,
                context=context,
                sentiment=mention_sentiment(text, entry.normalized, first, context),
            )
        )

    found.sort(key=lambda m: (m.first_offset, m.normalized))
    org = [m for m in found if m.is_org_brand]
    competitors = [m for m in found if not m.is_org_brand]
    logger.debug("Brand extraction: %d org mention(s), %d competitor(s)", len(org), len(competitors))
    return org, competitors
