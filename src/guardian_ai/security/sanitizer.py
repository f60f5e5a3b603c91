"""Redaction of markup and suspicious code blocks."""

from __future__ import annotations

import re

from guardian_ai.security.catalog import PatternCatalog

REMOVED_HTML = "[removed html]"
REMOVED_CODE_BLOCK = "[code block removed - suspicious content]"

_FENCE = "```"
# An opening or closing tag, comment or doctype. "a < b" is not a tag.
_TAG = re.compile(r"</?[a-z!][^<>]{0,512}>", re.IGNORECASE)


class Sanitizer:
    """Strip HTML-like tags and fenced code blocks that carry a signature.

    Code blocks that match no signature are kept verbatim, tags included.
    ``sanitize`` is total and idempotent. Placeholders contain no ``<``,
    ``>`` or backticks, so each pass strictly reduces the number of tags and
    fences left to consider, and repeating passes until nothing changes
    always terminates.
    """

    def __init__(self, catalog: PatternCatalog) -> None:
        self._catalog = catalog

    def sanitize(self, text: object) -> str:
        if not isinstance(text, str):
            return ""
        while True:
            cleaned = self._remove_code_blocks(self._remove_tags(text))
            if cleaned == text:
                return cleaned
            text = cleaned

    def _kept_blocks(self, text: str) -> list[tuple[int, int]]:
        """Spans of closed fenced blocks, fences included, that match nothing."""
        spans = []
        start = text.find(_FENCE)
        while start != -1:
            end = text.find(_FENCE, start + len(_FENCE))
            if end == -1:
                break
            if not self._catalog.match(text[start + len(_FENCE) : end]).local_ids:
                spans.append((start, end + len(_FENCE)))
            start = text.find(_FENCE, end + len(_FENCE))
        return spans

    def _remove_tags(self, text: str) -> str:
        kept = self._kept_blocks(text) if _FENCE in text else []

        def replace(match: re.Match[str]) -> str:
            if any(start <= match.start() and match.end() <= end for start, end in kept):
                return match.group(0)
            return REMOVED_HTML

        return _TAG.sub(replace, text)

    def _remove_code_blocks(self, text: str) -> str:
        if _FENCE not in text:
            return text
        parts = text.split(_FENCE)
        out = [parts[0]]
        # Odd indices are block bodies; the last one is only a block if closed.
        for i in range(1, len(parts) - 1, 2):
            body = parts[i]
            if self._catalog.match(body).local_ids:
                out.append(REMOVED_CODE_BLOCK)
            else:
                out.append(f"{_FENCE}{body}{_FENCE}")
            out.append(parts[i + 1])
        if len(parts) % 2 == 0:
            out.append(_FENCE + parts[-1])
        return "".join(out)
