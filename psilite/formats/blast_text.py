# psilite/formats/blast_text.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Protocol

from psilite.models.hit import HSP, Hit
from psilite.utils.lines import Source, as_lines

__all__ = [
    "RecordParser",
    "BlastTextParser",
    "SummaryLine",
    "parse_summary",
    "parse_evalue",
    "decode",
]

# -------------------------
# Parser protocol
# -------------------------

class RecordParser(Protocol):
    def parse(self, lines: Iterable[str]) -> Iterator[Hit]: ...


# -------------------------
# Line patterns
# -------------------------

_RE_LENGTH = re.compile(r"^\s*Length\s*=\s*([\d,]+)")
_RE_SCORE = re.compile(r"^\s*Score\s*=\s*([\d.eE+-]+)\s+bits\s*\((\d+)\)")
_RE_EXPECT = re.compile(r"Expect(?:\(\d+\))?\s*=\s*([^\s,]+)")
_RE_IDENT = re.compile(r"Identities\s*=\s*(\d+)/(\d+)")
_RE_POSIT = re.compile(r"Positives\s*=\s*(\d+)/(\d+)")
_RE_GAPS = re.compile(r"Gaps\s*=\s*(\d+)/(\d+)")
_RE_STRAND = re.compile(r"^\s*Strand\s*=\s*(.+?)\s*$")
_RE_FRAME = re.compile(r"^\s*Frame\s*=\s*(.+?)\s*$")
# legacy "Query: 1   MKV 3" and BLAST+ "Query  1    MKV  3"
_RE_QUERY = re.compile(r"^Query:?\s+(\d+)\s*(\S+)\s+(\d+)\s*$")
_RE_SBJCT = re.compile(r"^Sbjct:?\s+(\d+)\s*(\S+)\s+(\d+)\s*$")
# end of the alignment section of a round
_RE_STOP = re.compile(
    r"^(?:\s+Database:|Lambda|Parameters|Results from round|CONVERGED!|Searching|"
    r"\s*Significant alignments for pattern|Effective search space)"
)

_RE_SUMMARY_START = re.compile(r"^Sequences producing significant alignments")
_RE_SUMMARY_OLD = re.compile(r"^Sequences used in model and found again")
_RE_SUMMARY_NEW = re.compile(r"^Sequences not found previously or not previously below threshold")
_RE_SUMMARY_ROW = re.compile(r"^(\S+)\s*(.*?)\s+(\d[\d.eE+-]*)\s+(\S+)\s*$")


def parse_evalue(text: str) -> float:
    """BLAST prints 'e-100' for 1e-100; trailing commas are tolerated."""
    s = text.strip().rstrip(",")
    if s[:1] in ("e", "E"):
        s = "1" + s
    return float(s)


# -------------------------
# Summary table
# -------------------------

@dataclass(frozen=True)
class SummaryLine:
    name: str
    description: str
    bits: float
    evalue: float
    # 'old' / 'new' under PSI-BLAST's round sub-headings, None otherwise
    section: Optional[str] = None


def parse_summary(lines: Iterable[str]) -> List[SummaryLine]:
    """
    Rows of the "Sequences producing significant alignments" table.
    Rows whose score columns do not parse are skipped.
    """
    rows: List[SummaryLine] = []
    inside = False
    section: Optional[str] = None
    for ln in lines:
        s = ln.rstrip("\n")
        if not inside:
            if _RE_SUMMARY_START.match(s):
                inside = True
            continue
        if s.startswith(">") or _RE_STOP.match(s):
            break
        if _RE_SUMMARY_OLD.match(s):
            section = "old"
            continue
        if _RE_SUMMARY_NEW.match(s):
            section = "new"
            continue
        if not s.strip():
            continue
        m = _RE_SUMMARY_ROW.match(s)
        if not m:
            continue
        try:
            bits = float(m.group(3))
            evalue = parse_evalue(m.group(4))
        except ValueError:
            continue
        rows.append(SummaryLine(m.group(1), m.group(2), bits, evalue, section))
    return rows


# -------------------------
# Alignment records
# -------------------------

class BlastTextParser:
    """
    Parser for '>' records of BLAST pairwise text output (legacy blastall /
    blastpgp and BLAST+ -outfmt 0).

    Everything outside the alignment section (summary table, round markers,
    footer statistics) is skipped, so a whole report or a single round segment
    can be fed in. Numbers that do not parse raise ValueError.
    """

    def parse(self, lines: Iterable[str]) -> Iterator[Hit]:
        hit: Optional[Hit] = None
        hsp: Optional[HSP] = None
        in_defline = False
        midline_at: Optional[tuple[int, int]] = None

        for ln in lines:
            s = ln.rstrip("\n")

            if midline_at is not None:
                # the row right after a Query row is the midline, even when blank
                off, width = midline_at
                if hsp is not None:
                    hsp.midline += s[off:off + width].ljust(width)
                midline_at = None
                continue

            if s.startswith(">"):
                if hit is not None:
                    yield hit
                name, _, desc = s[1:].strip().partition(" ")
                hit = Hit(name=name, description=desc.strip())
                hsp = None
                in_defline = True
                continue

            if hit is None:
                continue

            if _RE_STOP.match(s):
                yield hit
                hit, hsp, in_defline = None, None, False
                continue

            m = _RE_LENGTH.match(s)
            if m:
                hit.length = int(m.group(1).replace(",", ""))
                in_defline = False
                continue

            if in_defline:
                if s.strip():
                    hit.description = f"{hit.description} {s.strip()}".strip()
                    continue
                in_defline = False
                continue

            m = _RE_SCORE.match(s)
            if m:
                hsp = HSP(bits=float(m.group(1)), score=int(m.group(2)))
                e = _RE_EXPECT.search(s)
                if e:
                    hsp.evalue = parse_evalue(e.group(1))
                hit.hsps.append(hsp)
                continue

            if hsp is None:
                continue

            if "Identities" in s:
                m = _RE_IDENT.search(s)
                if m:
                    hsp.identities = int(m.group(1))
                    hsp.align_len = int(m.group(2))
                m = _RE_POSIT.search(s)
                if m:
                    hsp.positives = int(m.group(1))
                m = _RE_GAPS.search(s)
                if m:
                    hsp.gaps = int(m.group(1))
                continue

            m = _RE_STRAND.match(s)
            if m:
                hsp.meta["strand"] = m.group(1)
                continue
            m = _RE_FRAME.match(s)
            if m:
                hsp.meta["frame"] = m.group(1)
                continue

            m = _RE_QUERY.match(s)
            if m:
                start, seq, end = int(m.group(1)), m.group(2), int(m.group(3))
                if hsp.query_start is None:
                    hsp.query_start = start
                hsp.query_end = end
                hsp.query_seq += seq
                midline_at = (m.start(2), len(seq))
                continue

            m = _RE_SBJCT.match(s)
            if m:
                start, seq, end = int(m.group(1)), m.group(2), int(m.group(3))
                if hsp.subject_start is None:
                    hsp.subject_start = start
                hsp.subject_end = end
                hsp.subject_seq += seq
                continue

        if hit is not None:
            yield hit


# -------------------------
# Public API
# -------------------------

def decode(source: Source, *, parser: Optional[RecordParser] = None) -> Iterator[Hit]:
    """
    Stream-decode the '>' records of a BLAST pairwise text report into Hit objects.
    """
    return (parser or BlastTextParser()).parse(as_lines(source))
