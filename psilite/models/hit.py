from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional


@dataclass(slots=True)
class HSP:
    """
    One high-scoring segment pair of a BLAST pairwise text report.

    Conventions:
      - Coordinates are 1-based, fully-closed [start, end] as printed in the
        `Query:` / `Sbjct:` rows. A minus-strand subject (blastn/tblastx) has
        subject_start > subject_end; no normalization is applied.
      - Aligned strings keep BLAST's gap character '-'. The midline is padded
        with spaces to the length of the query row.
    """

    bits: float
    score: Optional[int] = None
    evalue: Optional[float] = None

    identities: Optional[int] = None
    positives: Optional[int] = None
    gaps: Optional[int] = None
    align_len: Optional[int] = None

    query_start: Optional[int] = None
    query_end: Optional[int] = None
    subject_start: Optional[int] = None
    subject_end: Optional[int] = None

    query_seq: str = ""
    midline: str = ""
    subject_seq: str = ""

    # Format-specific extras (Frame, Strand, Method, ...)
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.query_start is not None and self.query_start < 1:
            raise ValueError("Coordinates are 1-based; query_start must be ≥ 1.")
        if self.subject_start is not None and self.subject_start < 1:
            raise ValueError("Coordinates are 1-based; subject_start must be ≥ 1.")

    @property
    def percent_identity(self) -> Optional[float]:
        if self.identities is None or not self.align_len:
            return None
        return self.identities * 100.0 / self.align_len

    def has_aligned_strings(self) -> bool:
        return bool(self.query_seq) and len(self.query_seq) == len(self.subject_seq)


@dataclass(slots=True)
class Hit:
    """
    A database sequence reported in one round ("Sbjct" in BLAST parlance).

    `name` is the first whitespace-delimited token of the '>' line and is the
    identifier used for old/new classification across rounds.
    """

    name: str
    description: str = ""
    length: Optional[int] = None
    hsps: List[HSP] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    def meta_update(self, mapping: Mapping[str, Any]) -> None:
        self.meta.update(mapping)

    @property
    def best_hsp(self) -> Optional[HSP]:
        if not self.hsps:
            return None
        return max(self.hsps, key=lambda h: h.bits)

    @property
    def bits(self) -> Optional[float]:
        best = self.best_hsp
        return best.bits if best is not None else None

    @property
    def evalue(self) -> Optional[float]:
        vals = [h.evalue for h in self.hsps if h.evalue is not None]
        return min(vals) if vals else None

    def __iter__(self):
        return iter(self.hsps)
