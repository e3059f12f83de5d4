# psilite/formats/psiblast.py
"""
Iterated (PSI-BLAST / PHI-BLAST) pairwise text reports.

A report is read once, front to back. The header is parsed on first use, then
the remainder is split into one spooled segment per "Results from round N"
block so that any round can be opened later, in any order:

    with PsiBlastReport("search.psiblast") as report:
        last = report.round(report.number_of_iterations())
        for hit in last:
            if hit.name in last.new_hit_ids():
                ...

Old/new hit classification for round N depends on every earlier round; the
report folds it forward from round 1 and caches each round's result.
"""
from __future__ import annotations

import logging
import re
import threading
import weakref
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from psilite.errors import MalformedHeaderError, OutOfRangeError
from psilite.formats.blast_text import RecordParser
from psilite.models.iteration import Iteration
from psilite.models.round_store import DEFAULT_SPOOL_MAX_SIZE, RoundStore, preprocess, round_marker
from psilite.utils.lines import Source, as_lines, is_path

logger = logging.getLogger(__name__)

__all__ = [
    "ReportMetadata",
    "HeaderResult",
    "parse_header",
    "PsiBlastReport",
]

# -------------------------
# Header
# -------------------------

@dataclass(frozen=True)
class ReportMetadata:
    query: Optional[str] = None
    query_length: Optional[int] = None
    database: Optional[str] = None
    pattern: Optional[str] = None                       # PHI-BLAST only
    pattern_positions: Tuple[int, ...] = field(default_factory=tuple)


class HeaderResult(NamedTuple):
    metadata: ReportMetadata
    resume_line: Optional[str]
    is_empty: bool


_RE_QUERY = re.compile(r"^Query=\s*(.*)$")
_RE_DATABASE = re.compile(r"^Database:\s+(.+?)\s*$")
_RE_PATTERN_LINE = re.compile(r"^\s*pattern\s")
_RE_PATTERN = re.compile(r"^\s*pattern\s+(\S+).*?position\s+(\d+)\b")
_RE_LEN_LETTERS = re.compile(r"\(\s*([^\s()]+)\s+letters?\s*\)\s*$")
_RE_LEN_PLUS = re.compile(r"^\s*Length\s*=\s*(\S+)")
_RE_EMPTY = re.compile(r"^(?:Parameters|\s+Database:)")


def _parse_length(text: str) -> int:
    try:
        value = int(text.replace(",", ""))
    except ValueError:
        raise MalformedHeaderError(f"query length {text!r} is not an integer") from None
    if value < 0:
        raise MalformedHeaderError(f"query length {value} is negative")
    return value


def _length_or_none(text: str) -> Optional[int]:
    try:
        return _parse_length(text)
    except MalformedHeaderError as exc:
        logger.warning("%s; query length left unknown", exc)
        return None


def _parse_pattern(line: str) -> Tuple[str, int]:
    m = _RE_PATTERN.match(line)
    if not m:
        raise MalformedHeaderError(f"unparsable pattern line: {line.strip()!r}")
    return m.group(1), int(m.group(2))


def parse_header(lines: Iterator[str]) -> HeaderResult:
    """
    Consume header lines up to the first round marker or '>' record.

    The line that ended the header is returned as `resume_line` so the round
    splitter can start from it. Reaching a `Parameters` / footer
    `  Database:` line, or the end of the stream, before any hits means the
    report is empty. Unparsable length or pattern fields are logged and left
    as None.
    """
    query: Optional[str] = None
    length: Optional[int] = None
    database: Optional[str] = None
    pattern: Optional[str] = None
    positions: List[int] = []

    def _done(resume: Optional[str], empty: bool) -> HeaderResult:
        meta = ReportMetadata(query, length, database, pattern, tuple(positions))
        logger.debug("header parsed: %r (empty=%s)", meta, empty)
        return HeaderResult(meta, resume, empty)

    for ln in lines:
        m = _RE_QUERY.match(ln)
        if m:
            parts = [m.group(1)]
            length_text = None
            boundary = None
            for cont in lines:
                if not cont.strip():
                    break
                if cont.startswith(">") or round_marker(cont) is not None:
                    boundary = cont
                    break
                mlen = _RE_LEN_PLUS.match(cont)
                if mlen:
                    # BLAST+ prints "Length=N" on its own line
                    length_text = mlen.group(1)
                    continue
                parts.append(cont)
            text = re.sub(r"\s+", " ", " ".join(parts)).strip()
            if text.startswith(">"):
                text = text[1:].lstrip()
            mlet = _RE_LEN_LETTERS.search(text)
            if mlet:
                length_text = mlet.group(1)
                text = text[:mlet.start()].rstrip()
            query = text or None
            if length_text is not None:
                length = _length_or_none(length_text)
            if boundary is not None:
                return _done(boundary, False)
            continue

        m = _RE_DATABASE.match(ln)
        if m:
            database = m.group(1)
            continue

        m = _RE_LEN_PLUS.match(ln)
        if m and query is not None and length is None:
            # BLAST+ separates "Length=N" from the query by a blank line
            length = _length_or_none(m.group(1))
            continue

        if _RE_PATTERN_LINE.match(ln):
            try:
                pat, pos = _parse_pattern(ln)
            except MalformedHeaderError as exc:
                logger.warning("%s; pattern left unchanged", exc)
            else:
                pattern = pat
                positions.append(pos)
            continue

        if ln.startswith(">") or round_marker(ln) is not None:
            return _done(ln, False)

        if _RE_EMPTY.match(ln):
            return _done(None, True)

    return _done(None, True)


# -------------------------
# Report facade
# -------------------------

class PsiBlastReport:
    """
    Lazy, random-access reader for a multi-round PSI-BLAST text report.

    `source` may be a path, a text block, a file-like object (stdin, a pipe)
    or a sequence of lines. It is consumed exactly once. A path opened here is
    closed once the report is split or the report is closed; caller-supplied
    handles are left open unless `owns_source=True`.
    """

    def __init__(
        self,
        source: Source,
        *,
        parser: Optional[RecordParser] = None,
        spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE,
        owns_source: bool = False,
    ) -> None:
        self._lines: Iterator[str] = as_lines(source)
        # handles to close once the stream is spent: a file we opened, or one handed over
        self._to_close: List[object] = []
        if is_path(source):
            self._to_close.append(self._lines)
        elif owns_source and hasattr(source, "close"):
            self._to_close.append(source)
        self._parser = parser
        self._spool_max_size = spool_max_size
        self._lock = threading.RLock()

        self._header: Optional[HeaderResult] = None
        self._store: Optional[RoundStore] = None
        self._split_error: Optional[BaseException] = None
        self._store_box: List[Optional[RoundStore]] = [None]
        self._rounds: Dict[int, Iteration] = {}
        self._closed = False

        self._finalizer = weakref.finalize(self, PsiBlastReport._release, self._to_close, self._store_box)

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("split" if self._store is not None else "pending")
        return f"PsiBlastReport({state})"

    # ---------- Resources ----------

    @staticmethod
    def _release(to_close: List[object], store_box: List[Optional[RoundStore]]) -> None:
        PsiBlastReport._release_source(to_close)
        if store_box[0] is not None:
            store_box[0].close()

    @staticmethod
    def _release_source(to_close: List[object]) -> None:
        while to_close:
            to_close.pop().close()  # type: ignore[attr-defined]

    def close(self) -> None:
        """Release the source and every round buffer. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._rounds.clear()
            self._finalizer()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "PsiBlastReport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed report")

    # ---------- Lazy stages ----------

    def _ensure_header(self) -> HeaderResult:
        with self._lock:
            self._check_open()
            if self._header is None:
                self._header = parse_header(self._lines)
            return self._header

    def _ensure_store(self) -> RoundStore:
        with self._lock:
            header = self._ensure_header()
            if self._split_error is not None:
                # a failed split is final
                raise self._split_error
            if self._store is None:
                if header.is_empty:
                    store = RoundStore()
                else:
                    try:
                        store = preprocess(self._lines, header.resume_line, spool_max_size=self._spool_max_size)
                    except Exception as exc:
                        self._split_error = exc
                        self._release_source(self._to_close)
                        raise
                self._store = store
                self._store_box[0] = store
                # the stream is spent
                self._release_source(self._to_close)
            return self._store

    # ---------- Metadata ----------

    def metadata(self) -> ReportMetadata:
        return self._ensure_header().metadata

    @property
    def query(self) -> Optional[str]:
        return self.metadata().query

    @property
    def query_length(self) -> Optional[int]:
        return self.metadata().query_length

    @property
    def database(self) -> Optional[str]:
        return self.metadata().database

    @property
    def pattern(self) -> Optional[str]:
        return self.metadata().pattern

    @property
    def query_pattern_locations(self) -> List[int]:
        return list(self.metadata().pattern_positions)

    @property
    def is_empty(self) -> bool:
        return self._ensure_header().is_empty

    @property
    def truncated(self) -> bool:
        return self._ensure_store().truncated

    # ---------- Rounds ----------

    def number_of_iterations(self) -> int:
        return self._ensure_store().count()

    def round(self, n: int) -> Iteration:
        """
        Round `n` (1-based) with old/new hits classified against rounds 1..n-1.

        Raises OutOfRangeError when n is outside [1, number_of_iterations()].
        """
        with self._lock:
            store = self._ensure_store()
            if not 1 <= n <= store.count():
                raise OutOfRangeError(n, store.count())
            cached = self._rounds.get(n)
            if cached is not None:
                return cached
            carried: frozenset = frozenset()
            for k in range(1, n + 1):
                it = self._rounds.get(k)
                if it is None:
                    it = Iteration(store.get(k), carried, self._parser)
                    self._rounds[k] = it
                if k < n:
                    carried = it.carried_forward()
            return self._rounds[n]

    def last_round(self) -> Iteration:
        return self.round(self.number_of_iterations())

    def rounds(self) -> Iterator[Iteration]:
        for n in range(1, self.number_of_iterations() + 1):
            yield self.round(n)

    def __iter__(self) -> Iterator[Iteration]:
        return self.rounds()
