# psilite/models/iteration.py
from __future__ import annotations

import logging
import re
from typing import AbstractSet, Any, Dict, Iterator, List, Optional

from psilite.formats.blast_text import BlastTextParser, RecordParser, SummaryLine, parse_summary
from psilite.models.hit import Hit
from psilite.models.round_store import RoundSegment

logger = logging.getLogger(__name__)

__all__ = ["Iteration", "HEADER_KEYS"]

HEADER_KEYS = (
    "round",
    "converged",
    "hits_listed",
    "alignments",
    "best_bits",
    "best_evalue",
    "lambda",
    "kappa",
    "entropy",
)

_RE_KARLIN_HEAD = re.compile(r"^Lambda\s+K\s+H")
_RE_FLOATS = re.compile(r"^\s*([\d.eE+-]+)\s+([\d.eE+-]+)\s+([\d.eE+-]+)")


class Iteration:
    """
    Read-only view over one round of an iterated search report.

    `carried` is the set of hit names seen in all strictly-earlier rounds;
    it decides which of this round's hits are old and which are new.

    Example:
        >>> it = report.round(3)
        >>> for hit in it:
        ...     if hit.name in it.new_hit_ids():
        ...         print(hit.name, hit.bits)
    """

    def __init__(
        self,
        segment: RoundSegment,
        carried: AbstractSet[str] = frozenset(),
        parser: Optional[RecordParser] = None,
    ) -> None:
        self._segment = segment
        self._carried = frozenset(carried)
        self._parser = parser or BlastTextParser()
        self._ids: Optional[List[str]] = None
        self._old: Optional[List[str]] = None
        self._new: Optional[List[str]] = None
        self._header: Optional[Dict[str, Any]] = None
        self._cursor: Optional[Iterator[Hit]] = None

    def __repr__(self) -> str:
        return f"Iteration(round={self.number}, carried={len(self._carried)})"

    @property
    def number(self) -> int:
        return self._segment.number

    @property
    def carried(self) -> frozenset:
        return self._carried

    def lines(self) -> List[str]:
        return self._segment.lines()

    # ---------- Round metadata ----------

    def summary(self) -> List[SummaryLine]:
        return parse_summary(self._segment.lines())

    def header(self) -> Dict[str, Any]:
        """
        Round-level metadata. Keys are always present (see HEADER_KEYS);
        values the round does not report are None.
        """
        if self._header is None:
            self._header = self._read_header()
        return dict(self._header)

    def _read_header(self) -> Dict[str, Any]:
        head: Dict[str, Any] = dict.fromkeys(HEADER_KEYS)
        head["round"] = self.number
        lines = self._segment.lines()

        converged = False
        alignments = 0
        saw_summary = False
        karlin = None
        want_karlin = False
        for ln in lines:
            if ln.startswith(">"):
                alignments += 1
            elif ln.startswith("CONVERGED!"):
                converged = True
            elif ln.startswith("Sequences producing significant alignments"):
                saw_summary = True
            elif _RE_KARLIN_HEAD.match(ln):
                want_karlin = True
                continue
            elif want_karlin:
                m = _RE_FLOATS.match(ln)
                if m:
                    try:
                        karlin = tuple(float(x) for x in m.groups())
                    except ValueError:
                        karlin = None
            want_karlin = False

        head["converged"] = converged
        head["alignments"] = alignments

        rows = parse_summary(lines) if saw_summary else []
        if saw_summary:
            head["hits_listed"] = len(rows)
        if rows:
            head["best_bits"] = max(r.bits for r in rows)
            head["best_evalue"] = min(r.evalue for r in rows)
        if karlin is not None:
            # last block wins: gapped parameters follow the ungapped ones
            head["lambda"], head["kappa"], head["entropy"] = karlin
        return head

    # ---------- Hits ----------

    def hits(self) -> Iterator[Hit]:
        """Fresh lazy traversal of this round's hits, parsed from the segment start."""
        return self._parser.parse(self._segment.lines())

    def __iter__(self) -> Iterator[Hit]:
        return self.hits()

    def next_hit(self) -> Optional[Hit]:
        """Stream through one shared traversal; None once exhausted. `rewind()` restarts it."""
        if self._cursor is None:
            self._cursor = self.hits()
        return next(self._cursor, None)

    def rewind(self) -> None:
        self._cursor = None

    def hit_ids(self) -> List[str]:
        """Distinct hit names in first-seen order."""
        if self._ids is None:
            self._ids = list(dict.fromkeys(h.name for h in self.hits()))
        return list(self._ids)

    # ---------- Classification ----------

    def _classify(self) -> None:
        ids = self.hit_ids()
        self._old = [i for i in ids if i in self._carried]
        self._new = [i for i in ids if i not in self._carried]
        logger.debug("round %d: %d old, %d new hit(s)", self.number, len(self._old), len(self._new))

    def old_hit_ids(self) -> List[str]:
        """Hits already seen in an earlier round."""
        if self._old is None:
            self._classify()
        return list(self._old)

    def new_hit_ids(self) -> List[str]:
        """Hits seen for the first time in this round."""
        if self._new is None:
            self._classify()
        return list(self._new)

    def carried_forward(self) -> frozenset:
        """Carried set for the next round: earlier hits plus this round's."""
        return self._carried.union(self.new_hit_ids())
