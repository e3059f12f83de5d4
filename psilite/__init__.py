# psilite/__init__.py
from .errors import PsiBlastError, MalformedHeaderError, MalformedReportError, OutOfRangeError
from .models.hit import Hit, HSP
from .models.iteration import Iteration
from .models.round_store import RoundSegment, RoundStore
from .formats.psiblast import PsiBlastReport, ReportMetadata

# Convenience re-exports for direct functional use (optional)
from .formats.blast_text import decode as decode_hits
from .formats.psiblast import parse_header
from .models.round_store import preprocess
