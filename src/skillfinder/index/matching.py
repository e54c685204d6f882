"""Fuzzy term alignment used by the lexical engine.

A query is split into whitespace separated terms which must all be found, in
order, inside a haystack string. Each term is located by exact substring search
first and by ``rapidfuzz`` partial alignment otherwise, so small typos still
match. The resulting :class:`FuzzyMatch` records how many query characters were
aligned, how many extra characters had to be inserted to make the alignment
work, and the character ranges of every aligned term.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from rapidfuzz import fuzz

DEFAULT_SCORE_CUTOFF = 80.0
DEFAULT_INSERTION_PENALTY = 0.02
MAX_ANCHORS = 32


@dataclass(slots=True)
class FuzzyMatch:
    index: int
    matched_chars: int = 0
    intra_insertions: int = 0
    inter_insertions: int = 0
    ranges: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def insertions(self) -> int:
        return self.intra_insertions + self.inter_insertions


def split_terms(query: str) -> List[str]:
    return query.lower().split()


class FuzzyMatcher:
    """Align query terms against strings and turn alignments into scores."""

    def __init__(
        self,
        *,
        score_cutoff: float = DEFAULT_SCORE_CUTOFF,
        insertion_penalty: float = DEFAULT_INSERTION_PENALTY,
    ) -> None:
        self.score_cutoff = score_cutoff
        self.insertion_penalty = insertion_penalty

    def _align_term(self, term: str, text: str, offset: int) -> Optional[Tuple[int, int, int]]:
        position = text.find(term, offset)
        if position >= 0:
            return position, position + len(term), len(term)

        window = text[offset:]
        if not window:
            return None
        alignment = fuzz.partial_ratio_alignment(term, window, score_cutoff=self.score_cutoff)
        if alignment is None:
            return None

        start = offset + alignment.dest_start
        end = offset + alignment.dest_end
        span = end - start
        # Indel similarity is 2*LCS / (len_a + len_b); recover the LCS length.
        matched = round((len(term) + span) * alignment.score / 200.0)
        return start, end, max(0, min(matched, len(term), span))

    def _contiguous(self, position: int, terms: Sequence[str], index: int) -> FuzzyMatch:
        result = FuzzyMatch(index=index)
        start = position
        for term in terms:
            result.matched_chars += len(term)
            result.ranges.append((start, start + len(term)))
            start += len(term) + 1
        return result

    def _align_from(
        self, haystack: str, terms: Sequence[str], offset: int, index: int
    ) -> Optional[FuzzyMatch]:
        result = FuzzyMatch(index=index)
        previous_end: Optional[int] = None
        for term in terms:
            aligned = self._align_term(term, haystack, offset)
            if aligned is None:
                return None
            start, end, matched = aligned
            result.matched_chars += matched
            result.intra_insertions += (end - start) - matched
            if previous_end is not None:
                # One separator between consecutive terms is free.
                result.inter_insertions += max(0, start - previous_end - 1)
            result.ranges.append((start, end))
            previous_end = end
            offset = end
        return result

    def _anchors(self, term: str, haystack: str) -> List[int]:
        anchors = [0]
        position = haystack.find(term)
        while position >= 0 and len(anchors) < MAX_ANCHORS:
            if position != anchors[-1]:
                anchors.append(position)
            position = haystack.find(term, position + 1)
        return anchors

    def match(self, text: str, terms: Sequence[str], index: int = 0) -> Optional[FuzzyMatch]:
        """Align all ``terms`` in order inside ``text``; None when any term is missing.

        A query found verbatim in ``text`` aligns with no insertions. Otherwise
        each occurrence of the first term is tried as a starting point and the
        best scoring alignment wins, earliest first on ties.
        """
        if not terms or not text:
            return None
        haystack = text.lower()
        position = haystack.find(" ".join(terms))
        if position >= 0:
            return self._contiguous(position, terms, index)

        query_length = sum(len(term) for term in terms)
        best: Optional[FuzzyMatch] = None
        best_score = -1.0
        for anchor in self._anchors(terms[0], haystack):
            candidate = self._align_from(haystack, terms, anchor, index)
            if candidate is None:
                continue
            score = self.score(candidate, query_length)
            if score > best_score:
                best, best_score = candidate, score
        return best

    def filter(self, haystack: Sequence[str], query: str) -> List[FuzzyMatch]:
        """Match ``query`` against every entry, best alignment first."""
        terms = split_terms(query)
        if not terms or not haystack:
            return []
        query_length = sum(len(term) for term in terms)
        matches: List[FuzzyMatch] = []
        for index, text in enumerate(haystack):
            match = self.match(text, terms, index)
            if match is not None:
                matches.append(match)
        matches.sort(key=lambda match: (-self.score(match, query_length), match.index))
        return matches

    def score(self, match: FuzzyMatch, query_length: int) -> float:
        """``min(1, matched/query_length)`` minus a penalty per inserted character, in [0, 1]."""
        if query_length <= 0:
            return 0.0
        quality = min(1.0, match.matched_chars / query_length)
        return max(0.0, min(1.0, quality - self.insertion_penalty * match.insertions))
