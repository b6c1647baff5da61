"""
Matcher — One Ranking Rule for Records and Lines

Reconciliation (which store item does this extracted task belong to?) and
write-back (which line of the file holds this item?) both go through the
same ordered rule:

    EXACT       same (line, source type) and related titles
    TITLE       same source type, normalized-title containment within the
                first ``prefix_len`` characters
    COORDINATE  same (line, source type), unrelated title (a retitled line)
    NONE

A coordinate alone ranks below a title match: after a line is inserted
above a task, the recorded line holds a different task of the same kind.

Ties are broken by the smallest line distance, then by candidate order
(callers pass candidates sorted by id, so the lowest id wins).

Public API:
    normalize_title(text) -> str
    TitleMatcher(prefix_len).best(candidates, line=, source_type=, title=)
    TitleMatcher(prefix_len).assign(targets, candidates) -> {target.key: Match}
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple

TITLE_PREFIX_LEN = 30

_MARKUP_RE = re.compile(r"[*_`~]")
_SPACE_RE = re.compile(r"\s+")


def normalize_title(text: Optional[str]) -> str:
    """Lowercase, drop inline markup characters and collapse whitespace."""
    if not text:
        return ""
    return _SPACE_RE.sub(" ", _MARKUP_RE.sub("", text)).strip().lower()


class MatchKind(IntEnum):
    NONE = 0
    COORDINATE = 1
    TITLE = 2
    EXACT = 3


@dataclass(frozen=True)
class Candidate:
    """Something that can be matched: a store item or a document line."""
    key: Any
    line: Optional[int]
    source_type: Optional[str]
    title: str


@dataclass(frozen=True)
class Match:
    kind: MatchKind
    candidate: Candidate
    distance: int


def _distance(a: Optional[int], b: Optional[int]) -> int:
    if a is None or b is None:
        return 1 << 30
    return abs(a - b)


class TitleMatcher:
    """Ranks candidates against a target coordinate and title."""

    def __init__(self, prefix_len: int = TITLE_PREFIX_LEN):
        if prefix_len < 1:
            raise ValueError("prefix_len must be >= 1")
        self.prefix_len = prefix_len

    def title_key(self, title: Optional[str]) -> str:
        return normalize_title(title)[: self.prefix_len]

    def contains(self, title: Optional[str], text: Optional[str]) -> bool:
        """True when the title's normalized prefix occurs in ``text``."""
        key = self.title_key(title)
        return bool(key) and key in normalize_title(text)

    def related(self, a: Optional[str], b: Optional[str]) -> bool:
        return self.contains(a, b) or self.contains(b, a)

    def classify(
        self,
        candidate: Candidate,
        *,
        line: Optional[int],
        source_type: Optional[str],
        title: str,
    ) -> MatchKind:
        if source_type is not None and candidate.source_type not in (None, source_type):
            return MatchKind.NONE
        same_title = self.related(title, candidate.title)
        if line is not None and candidate.line == line:
            return MatchKind.EXACT if same_title else MatchKind.COORDINATE
        if same_title:
            return MatchKind.TITLE
        return MatchKind.NONE

    def best(
        self,
        candidates: Sequence[Candidate],
        *,
        line: Optional[int],
        source_type: Optional[str],
        title: str,
    ) -> Optional[Match]:
        """Highest-ranked candidate for one target, or None."""
        ranked: List[Tuple[int, int, int, Match]] = []
        for order, cand in enumerate(candidates):
            kind = self.classify(cand, line=line, source_type=source_type, title=title)
            if kind == MatchKind.NONE:
                continue
            dist = _distance(line, cand.line)
            ranked.append((-int(kind), dist, order, Match(kind, cand, dist)))
        if not ranked:
            return None
        ranked.sort(key=lambda r: r[:3])
        return ranked[0][3]

    def assign(
        self,
        targets: Sequence[Candidate],
        candidates: Sequence[Candidate],
    ) -> Dict[Any, Match]:
        """One-to-one assignment of targets to candidates.

        Pairs are claimed greedily in rank order, so a strong match is never
        stolen by a weaker one that happens to come earlier in the document.
        """
        pairs: List[Tuple[int, int, int, int, Match, Candidate]] = []
        for t_order, target in enumerate(targets):
            for c_order, cand in enumerate(candidates):
                kind = self.classify(
                    cand, line=target.line, source_type=target.source_type,
                    title=target.title,
                )
                if kind == MatchKind.NONE:
                    continue
                dist = _distance(target.line, cand.line)
                pairs.append((-int(kind), dist, c_order, t_order,
                              Match(kind, cand, dist), target))
        pairs.sort(key=lambda p: p[:4])

        result: Dict[Any, Match] = {}
        claimed = set()
        for _, _, c_order, _, match, target in pairs:
            if target.key in result or c_order in claimed:
                continue
            result[target.key] = match
            claimed.add(c_order)
        return result
