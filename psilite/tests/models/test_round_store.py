import io
import logging
import pytest

from psilite.errors import MalformedReportError, OutOfRangeError
from psilite.models.round_store import RoundSegment, RoundStore, preprocess, round_marker

FOOTER = ["  Database: tiny.fa\n", "Lambda     K      H\n", "   0.318    0.134    0.401\n"]


def _lines(*rounds):
    out = []
    for i, body in enumerate(rounds, start=1):
        out.append(f"Results from round {i}\n")
        out.extend(body)
    return out + FOOTER


def test_round_marker():
    assert round_marker("Results from round 12\n") == 12
    assert round_marker("Results from round  3") == 3
    assert round_marker(" Results from round 3") is None
    assert round_marker("results from round 3") is None


def test_split_explicit_markers():
    src = _lines([">a\n"], [">b\n", ">c\n"], [">d\n"])
    store = preprocess(iter(src[1:]), resume_line=src[0])
    assert store.count() == 3
    assert store.get(1).lines() == ["Results from round 1\n", ">a\n"]
    assert store.get(2).lines() == ["Results from round 2\n", ">b\n", ">c\n"]
    assert store.get(3).lines()[:2] == ["Results from round 3\n", ">d\n"]
    assert store.get(3).lines()[-1] == FOOTER[-1]
    assert not store.truncated


def test_random_order_access():
    src = _lines([">a\n"], [">b\n"], [">c\n"])
    store = preprocess(src)
    assert store.get(3).lines()[1] == ">c\n"
    assert store.get(1).lines()[1] == ">a\n"
    assert store.get(3).text() == store.get(3).text()
    assert [seg.number for seg in store] == [1, 2, 3]
    assert 2 in store and 4 not in store
    assert len(store) == 3


def test_implicit_round_one():
    store = preprocess([">a\n", "  Length = 3\n"] + FOOTER)
    assert store.count() == 1
    assert store.get(1).lines()[0] == ">a\n"


def test_implicit_content_then_first_marker_is_one_round():
    store = preprocess(iter([">a\n", "Results from round 1\n", ">b\n"] + FOOTER))
    assert store.count() == 1
    assert store.get(1).lines()[:3] == [">a\n", "Results from round 1\n", ">b\n"]


def test_implicit_content_then_round_two():
    store = preprocess(iter([">a\n", "Results from round 2\n", ">b\n"] + FOOTER))
    assert store.count() == 2
    assert store.get(1).lines() == [">a\n"]


def test_empty_input_gives_empty_store():
    store = preprocess(iter([]))
    assert store.count() == 0
    with pytest.raises(OutOfRangeError):
        store.get(1)


@pytest.mark.parametrize("markers", [(1, 3), (1, 2, 2), (2,), (1, 2, 1)])
def test_out_of_sequence_markers(markers):
    src = [f"Results from round {n}\n" for n in markers]
    with pytest.raises(MalformedReportError):
        preprocess(iter(src))


def test_failed_split_releases_segments(monkeypatch):
    made = []
    orig_init = RoundSegment.__init__

    def _spy(self, *a, **kw):
        orig_init(self, *a, **kw)
        made.append(self)

    monkeypatch.setattr(RoundSegment, "__init__", _spy)
    with pytest.raises(MalformedReportError):
        preprocess(iter(["Results from round 1\n", ">a\n", "Results from round 4\n"]))
    assert made and all(seg.closed for seg in made)


def test_truncated_flag(caplog):
    with caplog.at_level(logging.WARNING):
        store = preprocess(iter(["Results from round 1\n", ">a\n", "Results from round 2\n", ">b\n"]))
    assert store.count() == 2
    assert store.truncated
    assert store.get(2).lines() == ["Results from round 2\n", ">b\n"]
    assert "round 2" in caplog.text


def test_out_of_range_message():
    store = preprocess(iter(_lines([">a\n"])))
    with pytest.raises(OutOfRangeError, match="rounds 1..1"):
        store.get(0)
    with pytest.raises(OutOfRangeError):
        store[2]


def test_segment_is_write_once():
    seg = RoundSegment(1)
    seg.append("x\n")
    seg.seal()
    with pytest.raises(ValueError):
        seg.append("y\n")
    assert seg.lines() == ["x\n"]
    seg.close()
    assert seg.closed
    with pytest.raises(ValueError):
        seg.text()


def test_segment_keeps_missing_final_newline():
    seg = RoundSegment(1)
    seg.append("a\n")
    seg.append("tail")
    seg.seal()
    assert seg.lines() == ["a\n", "tail"]
    assert seg.n_lines == 2


def test_store_close_releases_all():
    store = preprocess(iter(_lines([">a\n"], [">b\n"])))
    segs = list(store)
    store.close()
    assert all(s.closed for s in segs)


def test_store_requires_contiguous_rounds():
    with pytest.raises(ValueError):
        RoundStore([RoundSegment(1), RoundSegment(3)])


def test_failed_split_leaves_input_open():
    stream = io.StringIO(">a\nResults from round 3\n>b\n")
    with pytest.raises(MalformedReportError):
        preprocess(iter(stream), resume_line="Results from round 1\n")
    assert not stream.closed
