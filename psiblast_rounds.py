#!/usr/bin/env python3
"""
Summarize the rounds of a PSI-BLAST text report and list old/new hits.

Example:
  ./psiblast_rounds.py search.psiblast --last --new-only
  psiblast -query q.fa -db swissprot -num_iterations 5 | ./psiblast_rounds.py -

Output (TSV, one row per hit):
  round  status  hit  bits  evalue
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional, TextIO

from psilite.errors import PsiBlastError
from psilite.formats.psiblast import PsiBlastReport
from psilite.models.iteration import Iteration


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Split a PSI-BLAST report into rounds and classify hits as old or new.")
    p.add_argument("report", help="PSI-BLAST pairwise text report ('-' for stdin).")
    sel = p.add_mutually_exclusive_group()
    sel.add_argument("--round", type=int, default=None, help="Only report this round (1-based).")
    sel.add_argument("--last", action="store_true", help="Only report the last round.")
    p.add_argument("--new-only", action="store_true", help="Only list hits first seen in the selected round(s).")
    p.add_argument("--header", action="store_true", help="Print per-round statistics instead of hits.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr.")
    return p.parse_args(argv)


def _fmt(x: Optional[float]) -> str:
    return "" if x is None else f"{x:g}"


def write_round(it: Iteration, out: TextIO, *, new_only: bool = False) -> int:
    new = set(it.new_hit_ids())
    seen = set()
    rows = 0
    for hit in it.hits():
        if hit.name in seen:
            continue
        seen.add(hit.name)
        status = "new" if hit.name in new else "old"
        if new_only and status == "old":
            continue
        out.write("\t".join([str(it.number), status, hit.name, _fmt(hit.bits), _fmt(hit.evalue)]) + "\n")
        rows += 1
    return rows


def write_header(it: Iteration, out: TextIO) -> None:
    head = it.header()
    out.write("\t".join(f"{k}={'' if v is None else v}" for k, v in head.items()) + "\n")


def main(argv: Optional[List[str]] = None, out: Optional[TextIO] = None) -> int:
    args = parse_args(argv)
    out = out or sys.stdout
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    source = sys.stdin if args.report == "-" else args.report
    if source is not sys.stdin:
        if not os.path.isfile(args.report):
            print(f"[error] report '{args.report}' does not exist.", file=sys.stderr)
            return 2

    try:
        with PsiBlastReport(source) as report:
            meta = report.metadata()
            total = report.number_of_iterations()
            print(f"[info] query={meta.query} length={meta.query_length} database={meta.database}", file=sys.stderr)
            print(f"[info] rounds={total}", file=sys.stderr)
            if total == 0:
                print("[warn] report has no hits.", file=sys.stderr)
                return 0
            if report.truncated:
                print("[warn] report ended before its footer; last round may be incomplete.", file=sys.stderr)

            if args.round is not None:
                selected = [report.round(args.round)]
            elif args.last:
                selected = [report.last_round()]
            else:
                selected = list(report.rounds())

            for it in selected:
                if args.header:
                    write_header(it, out)
                else:
                    write_round(it, out, new_only=args.new_only)
    except PsiBlastError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
