# psilite/utils/lines.py
from __future__ import annotations

import io
import os
from typing import Iterator, Sequence, TextIO, Union

Source = Union[str, "os.PathLike[str]", TextIO, Sequence[str]]

__all__ = ["Source", "as_lines", "is_path"]


def is_path(source: object) -> bool:
    if isinstance(source, os.PathLike):
        return True
    return (
        isinstance(source, str)
        and "\n" not in source
        and os.path.exists(source)
        and os.path.isfile(source)
    )


def _looks_like_path(text: str) -> bool:
    # a single token with no line break is never a report body
    return bool(text) and not any(ch.isspace() for ch in text)


def _file_lines(path) -> Iterator[str]:
    # closed when the generator is exhausted or closed
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        for ln in fh:
            yield ln


def as_lines(source: Source) -> Iterator[str]:
    """
    Forward-only line iterator over:
      - a path (str or PathLike naming an existing file),
      - a text block (str; a lone token is taken as a missing path),
      - a file-like (TextIO),
      - or a sequence of lines (newlines added where missing).
    """
    if is_path(source):
        return _file_lines(source)
    if isinstance(source, str):
        if _looks_like_path(source):
            raise FileNotFoundError(f"report file '{source}' does not exist")
        return iter(io.StringIO(source))
    if hasattr(source, "read"):
        return iter(source)  # type: ignore[arg-type]
    if isinstance(source, (list, tuple)):
        return (ln if ln.endswith("\n") else ln + "\n" for ln in source)
    raise TypeError(f"Unsupported source type {type(source).__name__!r}; expected path, text, file-like or lines")
