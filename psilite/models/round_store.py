# psilite/models/round_store.py
from __future__ import annotations

import itertools
import logging
import re
import tempfile
import threading
from typing import IO, Dict, Iterable, Iterator, List, Optional

from psilite.errors import MalformedReportError, OutOfRangeError

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_SPOOL_MAX_SIZE",
    "RoundSegment",
    "RoundStore",
    "preprocess",
    "round_marker",
]

# Segments stay in memory up to this many characters, then roll over to an
# anonymous temporary file.
DEFAULT_SPOOL_MAX_SIZE = 1 << 20

_RE_ROUND = re.compile(r"^Results from round\s+(\d+)")
# Footer lines that close a complete report
_RE_FOOTER = re.compile(r"^(?:\s+Database:|Lambda\s|Parameters|Effective search space)")


def round_marker(line: str) -> Optional[int]:
    """Round number of a `Results from round <N>` line, else None."""
    m = _RE_ROUND.match(line)
    return int(m.group(1)) if m else None


class RoundSegment:
    """
    Raw text of one round, spooled to a buffer owned by the RoundStore.

    Write-once: the splitter appends lines while the round is open; after
    `seal()` the content is read-only and can be re-read any number of times.
    """

    __slots__ = ("number", "n_lines", "_handle", "_lock", "_sealed")

    def __init__(self, number: int, spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE,
                 lock: Optional[threading.Lock] = None) -> None:
        if number < 1:
            raise ValueError("round numbers are 1-based")
        self.number = number
        self.n_lines = 0
        self._handle: Optional[IO[str]] = tempfile.SpooledTemporaryFile(
            max_size=spool_max_size, mode="w+t", encoding="utf-8", newline="",
        )
        self._lock = lock or threading.Lock()
        self._sealed = False

    def __repr__(self) -> str:
        state = "closed" if self.closed else ("sealed" if self._sealed else "open")
        return f"RoundSegment(number={self.number}, n_lines={self.n_lines}, {state})"

    @property
    def closed(self) -> bool:
        return self._handle is None

    def append(self, line: str) -> None:
        if self._sealed:
            raise ValueError(f"round {self.number} segment is sealed")
        if self._handle is None:
            raise ValueError(f"round {self.number} segment is closed")
        self._handle.write(line)
        self.n_lines += 1

    def seal(self) -> None:
        if self._handle is not None:
            self._handle.flush()
        self._sealed = True

    def text(self) -> str:
        if self._handle is None:
            raise ValueError(f"round {self.number} segment is closed")
        with self._lock:
            self._handle.seek(0)
            return self._handle.read()

    def lines(self) -> List[str]:
        """Copy of the segment content, one entry per line (newlines kept)."""
        parts = self.text().split("\n")
        out = [p + "\n" for p in parts[:-1]]
        if parts[-1]:
            out.append(parts[-1])
        return out

    def __iter__(self) -> Iterator[str]:
        return iter(self.lines())

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class RoundStore:
    """
    Random-access mapping round number -> RoundSegment.

    Holds exactly rounds 1..total_rounds (none for an empty report). Frozen
    once `preprocess` returns; `close()` releases every segment buffer.
    """

    def __init__(self, segments: Iterable[RoundSegment] = (), *, truncated: bool = False) -> None:
        self._segments: Dict[int, RoundSegment] = {}
        for seg in segments:
            self._segments[seg.number] = seg
        expected = list(range(1, len(self._segments) + 1))
        if sorted(self._segments) != expected:
            raise ValueError(f"round numbers must be contiguous from 1, got {sorted(self._segments)}")
        self.truncated = truncated

    @property
    def total_rounds(self) -> int:
        return len(self._segments)

    def count(self) -> int:
        return self.total_rounds

    def get(self, round_number: int) -> RoundSegment:
        seg = self._segments.get(round_number)
        if seg is None:
            raise OutOfRangeError(round_number, self.total_rounds)
        return seg

    def __getitem__(self, round_number: int) -> RoundSegment:
        return self.get(round_number)

    def __len__(self) -> int:
        return self.total_rounds

    def __contains__(self, round_number: object) -> bool:
        return round_number in self._segments

    def __iter__(self) -> Iterator[RoundSegment]:
        for n in range(1, self.total_rounds + 1):
            yield self._segments[n]

    def close(self) -> None:
        for seg in self._segments.values():
            seg.close()


# -------------------------
# Splitter
# -------------------------

def preprocess(
    lines: Iterable[str],
    resume_line: Optional[str] = None,
    *,
    spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE,
) -> RoundStore:
    """
    Split the rest of a report into per-round segments in one forward pass.

    `resume_line` is the line at which header parsing stopped (a round marker
    or the first '>' record); it is written to round 1 ahead of `lines`.
    With neither a resume line nor any remaining content the store is empty.

    Round markers must count up 1, 2, 3, ...; anything else raises
    MalformedReportError after releasing the segments written so far.
    """
    segments: List[RoundSegment] = []
    current: Optional[RoundSegment] = None
    explicit = False  # current segment was opened by a round marker
    saw_footer = False
    lock = threading.Lock()

    def _open(number: int) -> RoundSegment:
        seg = RoundSegment(number, spool_max_size, lock)
        segments.append(seg)
        return seg

    # `lines` belongs to the caller and stays open if the pass fails
    head = [resume_line] if resume_line is not None else []

    try:
        for ln in itertools.chain(head, lines):
            n = round_marker(ln)
            if n is not None:
                prev = current.number if current is not None else 0
                if n == 1 and prev == 1 and not explicit:
                    # implicit round 1 content reaching its own marker
                    explicit = True
                elif n != prev + 1:
                    raise MalformedReportError(
                        f"round marker 'Results from round {n}' follows round {prev}; expected round {prev + 1}"
                    )
                else:
                    if current is not None:
                        current.seal()
                    current = _open(n)
                    explicit = True
                saw_footer = False
            elif current is None:
                if not ln.strip():
                    # blank lines before any content belong to no round
                    continue
                current = _open(1)
            elif _RE_FOOTER.match(ln):
                saw_footer = True
            current.append(ln)
    except BaseException:
        for seg in segments:
            seg.close()
        raise

    if current is not None:
        current.seal()
    truncated = current is not None and not saw_footer
    if truncated:
        logger.warning("report ended inside round %d without a footer; keeping partial content", current.number)
    store = RoundStore(segments, truncated=truncated)
    logger.debug("split report into %d round(s)", store.total_rounds)
    return store
