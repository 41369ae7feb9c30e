"""Citation extraction from LLM responses.

Sources are consumed in strict priority order so the same reference is
never counted twice; the first source to capture a URL wins:

  1. Markdown links: [title](url)   (keeps the title)
  2. Numbered references: [n] url, [^n]: url, n. url
  3. Bare URLs, trailing punctuation stripped
  4. Native citations returned by the provider API (e.g. Perplexity)
  5. Bare [n] markers that no URL resolves, recorded as ``ref`` citations

Output is capped (20 by default) and fully deterministic.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

from app.analysis.types import Citation, CitationSource, CitationType

logger = logging.getLogger(__name__)

MAX_CITATIONS = 20

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_URL_BODY = r"https?://[^\s<>\"'\])]+"

_MD_LINK_PATTERN = re.compile(r"\[([^\]\n]+)\]\((https?://[^\s)]+)\)")

# "[3] https://..." / "[^3]: https://..." anywhere, "3. https://..." at line start
_NUMBERED_REF_PATTERN = re.compile(
    r"(?:\[\^?(\d{1,3})\]:?|^[ \t]*(\d{1,3})[.)])[ \t]+(" + _URL_BODY + ")",
    re.MULTILINE,
)

_BARE_URL_PATTERN = re.compile(_URL_BODY)

# [3] not followed by "(" (that would be a markdown link)
_REF_MARKER_PATTERN = re.compile(r"\[\^?(\d{1,3})\](?!\()")

_TRAILING_PUNCT = ".,;:!?'\"*_"


def _clean_url(url: str) -> str:
    return url.strip().rstrip(_TRAILING_PUNCT)


def extract_domain(url: str) -> str:
    """Host of *url*, lower-cased, with a leading ``www.`` removed."""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def _dedup_key(url: str) -> str:
    """Scheme and host are case-insensitive; a trailing slash is not significant."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url.rstrip("/")
    rest = url[len(parts.scheme) + 3 + len(parts.netloc) :]
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}{rest}".rstrip("/")


class _Collector:
    """Accumulates citations in priority order, deduplicated, up to a cap."""

    def __init__(self, limit: int):
        self.limit = limit
        self.citations: list[Citation] = []
        self._seen: set[str] = set()

    @property
    def full(self) -> bool:
        return len(self.citations) >= self.limit

    def add_url(self, url: str, source: CitationSource, *, title: str | None = None, ref: int | None = None) -> None:
        url = _clean_url(url)
        if not url or self.full:
            return
        key = _dedup_key(url)
        if key in self._seen:
            return
        self._seen.add(key)
        self.citations.append(
            Citation(
                type=CitationType.URL,
                value=url,
                source=source,
                title=title or None,
                domain=extract_domain(url),
                ref_number=ref,
            )
        )

    def add_ref(self, number: int) -> None:
        key = f"[{number}]"
        if self.full or key in self._seen:
            return
        self._seen.add(key)
        self.citations.append(
            Citation(type=CitationType.REF, value=key, source=CitationSource.REFERENCE, ref_number=number)
        )


def extract_citations(
    text: str,
    native_urls: list[str] | None = None,
    *,
    limit: int = MAX_CITATIONS,
) -> list[Citation]:
    """Extract citations from *text* (plus provider-native URLs).

    Args:
        text: Raw response text.
        native_urls: URLs the provider API returned alongside the answer.
        limit: Maximum number of citations kept.

    Returns:
        Citations in priority order, then order of appearance.
    """
    if not text and not native_urls:
        return []

    out = _Collector(limit)
    text = text or ""

    for match in _MD_LINK_PATTERN.finditer(text):
        out.add_url(match.group(2), CitationSource.MARKDOWN, title=match.group(1).strip())

    resolved_refs: set[int] = set()
    for match in _NUMBERED_REF_PATTERN.finditer(text):
        number = int(match.group(1) or match.group(2))
        resolved_refs.add(number)
        out.add_url(match.group(3), CitationSource.NUMBERED, ref=number)

    for match in _BARE_URL_PATTERN.finditer(text):
        out.add_url(match.group(0), CitationSource.BARE)

    for url in native_urls or []:
        if isinstance(url, str):
            out.add_url(url, CitationSource.NATIVE)

    for match in _REF_MARKER_PATTERN.finditer(text):
        number = int(match.group(1))
        if number not in resolved_refs:
            out.add_ref(number)

    if out.full:
        logger.debug("Citation cap reached (%d), remaining references dropped", limit)
    return out.citations

