# psilite/runners/psiblast.py
from __future__ import annotations
import logging
import os
import shlex
import shutil
import subprocess
import tempfile
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from psilite.formats.psiblast import PsiBlastReport
from psilite.models.round_store import DEFAULT_SPOOL_MAX_SIZE

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PsiblastOptions:
    # Required
    query_fasta: str
    db_path: str                          # protein BLAST DB prefix (e.g., 'swissprot')

    # Iteration control
    num_iterations: int = 3
    evalue: float = 10.0
    inclusion_ethresh: float = 0.002      # hits below this enter the next round's model

    # Reporting
    num_descriptions: int = 500
    num_alignments: int = 250
    threads: int = 1

    # Matrix handling
    matrix: Optional[str] = "BLOSUM62"
    blastmat_dir: Optional[str] = None    # set BLASTMAT to this directory if provided

    # PHI-BLAST pattern file (enables pattern-hit-initiated search)
    phi_pattern: Optional[str] = None

    # Anything else to pass straight through
    extra_args: Sequence[str] = field(default_factory=tuple)

    # Executable name (override if needed)
    exe: str = "psiblast"

    # Pre-flight validation toggle
    validate_inputs: bool = True

    def build_cmd(self) -> List[str]:
        cmd: List[str] = [self.exe, "-db", self.db_path, "-query", self.query_fasta]

        def _add(flag: str, val: Optional[object] = None):
            if val is not None:
                cmd.extend([flag, str(val)])

        _add("-num_iterations", self.num_iterations)
        _add("-evalue", self.evalue)
        _add("-inclusion_ethresh", self.inclusion_ethresh)
        _add("-num_descriptions", self.num_descriptions)
        _add("-num_alignments", self.num_alignments)
        _add("-num_threads", self.threads)
        _add("-matrix", self.matrix)
        _add("-phi_pattern", self.phi_pattern)
        # pairwise text; the only layout that carries round markers
        cmd.extend(["-outfmt", "0"])

        if self.extra_args:
            cmd.extend(list(self.extra_args))

        return cmd

    def build_env(self) -> dict:
        env = os.environ.copy()
        if self.blastmat_dir:
            env["BLASTMAT"] = self.blastmat_dir
        return env


# ---------------------------
# Pre-flight validation
# ---------------------------

def _require_file(path: Optional[str], what: str) -> None:
    if not (path and os.path.isfile(path)):
        raise FileNotFoundError(f"{what} not found: {path!r}")

def _validate_db_prefix(prefix: str) -> None:
    """
    Require core protein BLAST DB files: prefix.phr, prefix.pin, prefix.psq.
    Multi-volume databases use an alias file (prefix.pal) instead.
    """
    if os.path.isfile(prefix + ".pal"):
        return
    core = [prefix + ext for ext in (".phr", ".pin", ".psq")]
    missing = [p for p in core if not os.path.isfile(p)]
    if missing:
        raise FileNotFoundError(
            f"Required BLAST DB index files missing for prefix {prefix}.\n"
            f"Run: makeblastdb -dbtype prot -in {prefix}\n"
            f"Expected at least: {', '.join(os.path.basename(c) for c in core)}"
        )

def _validate_inputs(opts: PsiblastOptions) -> None:
    if not shutil.which(opts.exe):
        raise FileNotFoundError(
            f"Executable {opts.exe!r} not found on PATH. "
            "Install BLAST+ or pass an absolute path in PsiblastOptions.exe."
        )
    _require_file(opts.query_fasta, "Query FASTA")
    _validate_db_prefix(opts.db_path)
    if opts.phi_pattern:
        _require_file(opts.phi_pattern, "PHI-BLAST pattern file")


# ---------------------------
# Runner
# ---------------------------

def run_psiblast(opts: PsiblastOptions, *, spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE) -> PsiBlastReport:
    """
    Run psiblast to completion and return a report over its captured output.

    stdout is spooled (memory first, then an anonymous temp file); the
    returned report owns that buffer and releases it on close().
    """
    if opts.validate_inputs:
        _validate_inputs(opts)

    cmd = opts.build_cmd()
    logger.debug("running %s", shlex.join(cmd))

    # ring buffer of recent stderr lines for nice error messages
    stderr_tail: deque[str] = deque(maxlen=200)

    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=opts.build_env(),
        bufsize=1,   # line-buffered
    )

    assert proc.stdout is not None
    assert proc.stderr is not None

    def _stderr_worker(stream, tail: deque[str]):
        try:
            for line in stream:
                tail.append(line.rstrip("\n"))
        finally:
            stream.close()

    t_err = threading.Thread(target=_stderr_worker, args=(proc.stderr, stderr_tail), daemon=True)
    t_err.start()

    spool = tempfile.SpooledTemporaryFile(max_size=spool_max_size, mode="w+t", encoding="utf-8", newline="")
    try:
        with proc.stdout:
            shutil.copyfileobj(proc.stdout, spool)
        rc = proc.wait()
        t_err.join(timeout=2.0)
        if rc != 0:
            tail = "\n".join(stderr_tail)
            raise RuntimeError(
                f"psiblast exited with code {rc}.\n"
                f"Command: {shlex.join(cmd)}\n"
                f"stderr (last {len(stderr_tail)} lines):\n{tail or '<empty>'}"
            )
        spool.seek(0)
    except BaseException:
        spool.close()
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        raise

    return PsiBlastReport(spool, owns_source=True, spool_max_size=spool_max_size)


# Convenience wrapper
def search(query_fasta: str, db_path: str, **kwargs) -> PsiBlastReport:
    return run_psiblast(PsiblastOptions(query_fasta=query_fasta, db_path=db_path, **kwargs))
