"""Compiled, immutable signature catalog.

Matching cost is bounded two ways:

* input longer than ``max_input_chars`` is truncated before anything else
  runs, and
* every pattern is checked by :func:`check_linear` at construction. Only
  bounded repeats are allowed and a repeated group may not contain another
  repeat, so each start position does a constant amount of work and a
  search is linear in the input length.

A catalog that fails either check never gets built.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from guardian_ai.logging import get_logger
from guardian_ai.security.models import Category, PatternCompilationError, Signature
from guardian_ai.security.signatures import (
    HARDENING_SIGNATURES,
    PRIMARY_SIGNATURES,
    SignatureSpec,
    bounded,
)

log = get_logger("guardian_ai.security.catalog")

DEFAULT_MAX_INPUT_CHARS = 8192
MAX_REPEAT = 256

INVISIBLE_CHARS = re.compile("[\u200b-\u200f\u2028-\u202f\u2060-\u206f\ufeff]")
_CONTROL = re.compile("[\x00-\x08\x0b-\x1f\x7f]")
_WHITESPACE_RUN = re.compile(r"\s+")
_BRACE_REPEAT = re.compile(r"\{(\d+)(,(\d*))?\}")


def normalize_text(text: str) -> str:
    """Canonical form used for matching.

    NFKC-folds compatibility characters, drops zero-width/bidi characters
    and C0 controls, and collapses whitespace runs to one space.
    """
    text = unicodedata.normalize("NFKC", text)
    text = INVISIBLE_CHARS.sub("", text)
    text = _CONTROL.sub("", text)
    return _WHITESPACE_RUN.sub(" ", text)


def check_linear(pattern: str) -> None:
    """Raise :class:`PatternCompilationError` unless *pattern* is linear-time.

    Rejected: ``*``, ``+``, open-ended ``{m,}``, repeats above
    :data:`MAX_REPEAT`, and any repeat other than ``?`` applied to a group
    that itself contains a repeat.
    """
    stack = [False]  # per open group: contains a repeat
    closed_group: bool | None = None  # inner flag of a group that just closed
    i, n = 0, len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "\\":
            i += 2
            closed_group = None
        elif ch == "[":
            i = _skip_class(pattern, i)
            closed_group = None
        elif ch == "(":
            stack.append(False)
            i = _skip_group_prefix(pattern, i + 1)
            closed_group = None
        elif ch == ")":
            if len(stack) == 1:
                raise PatternCompilationError(f"unbalanced ')' in {pattern!r}")
            closed_group = stack.pop()
            stack[-1] = stack[-1] or closed_group
            i += 1
        elif ch in "*+":
            raise PatternCompilationError(f"unbounded repeat {ch!r} in {pattern!r}")
        elif ch == "?":
            stack[-1] = True
            closed_group = None
            i += 1
        elif ch == "{" and (m := _BRACE_REPEAT.match(pattern, i)):
            low, comma, high = m.group(1), m.group(2), m.group(3)
            if comma and not high:
                raise PatternCompilationError(f"open-ended repeat in {pattern!r}")
            upper = int(high) if comma else int(low)
            if upper > MAX_REPEAT:
                raise PatternCompilationError(f"repeat bound {upper} too large in {pattern!r}")
            if closed_group and upper > 1:
                raise PatternCompilationError(f"nested repeat in {pattern!r}")
            stack[-1] = True
            closed_group = None
            i = m.end()
            if pattern.startswith("?", i):  # lazy
                i += 1
        else:
            closed_group = None
            i += 1
    if len(stack) != 1:
        raise PatternCompilationError(f"unbalanced '(' in {pattern!r}")


def _skip_class(pattern: str, i: int) -> int:
    j = i + 1
    if pattern.startswith("^", j):
        j += 1
    if pattern.startswith("]", j):
        j += 1
    while j < len(pattern) and pattern[j] != "]":
        j += 2 if pattern[j] == "\\" else 1
    if j >= len(pattern):
        raise PatternCompilationError(f"unterminated character class in {pattern!r}")
    return j + 1


def _skip_group_prefix(pattern: str, i: int) -> int:
    if not pattern.startswith("?", i):
        return i
    i += 1
    if pattern[i : i + 1] in (":", "=", "!"):
        return i + 1
    if pattern[i : i + 2] in ("<=", "<!"):
        return i + 2
    if pattern.startswith("P<", i):
        return pattern.index(">", i) + 1
    # inline flags, e.g. (?i) or (?i:...)
    while i < len(pattern) and pattern[i] not in ":)":
        i += 1
    return i + 1 if pattern.startswith(":", i) else i


@dataclass(frozen=True)
class CatalogMatch:
    """Signatures that matched one message."""

    ids: frozenset[str]
    local_ids: frozenset[str]
    probe_ids: frozenset[str]
    categories: frozenset[Category]
    extraction_score: int
    truncated: bool = False

    @property
    def local_match_count(self) -> int:
        return len(self.local_ids)


class PatternCatalog:
    """Immutable set of compiled signatures.

    Build once at startup and pass to every component that matches text.
    """

    def __init__(
        self,
        signatures: Iterable[Signature],
        *,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
    ) -> None:
        if max_input_chars < 1:
            raise PatternCompilationError("max_input_chars must be at least 1")
        by_id: dict[str, Signature] = {}
        for sig in signatures:
            if sig.id in by_id:
                raise PatternCompilationError(f"duplicate signature id {sig.id!r}")
            check_linear(sig.matcher.pattern)
            by_id[sig.id] = sig
        if not by_id:
            raise PatternCompilationError("catalog has no signatures")
        self._signatures: tuple[Signature, ...] = tuple(by_id.values())
        self._by_id = by_id
        self._max_input_chars = max_input_chars

    @classmethod
    def from_specs(
        cls,
        specs: Iterable[SignatureSpec],
        *,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
    ) -> PatternCatalog:
        """Compile ``(id, category, pattern, label[, probe])`` tuples."""
        signatures = []
        for spec in specs:
            sig_id, category, pattern, label = spec[:4]
            probe = bool(spec[4]) if len(spec) > 4 else False
            source = bounded(pattern)
            try:
                matcher = re.compile(source, re.IGNORECASE)
            except re.error as e:
                raise PatternCompilationError(f"signature {sig_id!r} does not compile: {e}") from e
            signatures.append(
                Signature(
                    id=sig_id,
                    category=Category(category),
                    matcher=matcher,
                    label=label,
                    probe=probe,
                )
            )
        catalog = cls(signatures, max_input_chars=max_input_chars)
        log.debug("pattern_catalog_built", signatures=len(catalog))
        return catalog

    @property
    def max_input_chars(self) -> int:
        return self._max_input_chars

    def __len__(self) -> int:
        return len(self._signatures)

    def __iter__(self) -> Iterator[Signature]:
        return iter(self._signatures)

    def __contains__(self, sig_id: object) -> bool:
        return sig_id in self._by_id

    def get(self, sig_id: str) -> Signature | None:
        return self._by_id.get(sig_id)

    def categories_of(self, ids: Iterable[str]) -> frozenset[Category]:
        return frozenset(self._by_id[i].category for i in ids if i in self._by_id)

    def prepare(self, text: str) -> tuple[str, bool]:
        """Truncate to the length ceiling, then normalise."""
        truncated = len(text) > self._max_input_chars
        if truncated:
            text = text[: self._max_input_chars]
        return normalize_text(text), truncated

    def match(self, text: str) -> CatalogMatch:
        """Run every signature over the whole (bounded) message."""
        if not isinstance(text, str) or not text:
            return CatalogMatch(frozenset(), frozenset(), frozenset(), frozenset(), 0)

        prepared, truncated = self.prepare(text)
        local: set[str] = set()
        probes: set[str] = set()
        categories: set[Category] = set()
        extraction = 0
        for sig in self._signatures:
            if sig.matcher.search(prepared) is None:
                continue
            (probes if sig.probe else local).add(sig.id)
            categories.add(sig.category)
            if sig.category is Category.EXTRACTION:
                extraction += 1

        return CatalogMatch(
            ids=frozenset(local | probes),
            local_ids=frozenset(local),
            probe_ids=frozenset(probes),
            categories=frozenset(categories),
            extraction_score=extraction,
            truncated=truncated,
        )

    def match_all(self, text: str) -> frozenset[str]:
        """Return the ids of every signature matching *text*."""
        return self.match(text).ids


def default_catalog(*, max_input_chars: int = DEFAULT_MAX_INPUT_CHARS) -> PatternCatalog:
    """The primary (local) catalog."""
    return PatternCatalog.from_specs(PRIMARY_SIGNATURES, max_input_chars=max_input_chars)


def hardening_catalog(*, max_input_chars: int = DEFAULT_MAX_INPUT_CHARS) -> PatternCatalog:
    """The broader catalog behind :class:`~guardian_ai.security.oracle.HardeningOracle`."""
    return PatternCatalog.from_specs(HARDENING_SIGNATURES, max_input_chars=max_input_chars)
