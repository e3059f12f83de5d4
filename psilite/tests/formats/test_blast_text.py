import io
import textwrap
import pytest

from psilite.formats.blast_text import BlastTextParser, SummaryLine, decode, parse_evalue, parse_summary

# ------------------------ helpers ------------------------

def _legacy_block_text():
    # Two subjects, the second with two HSPs; Searching/footer lines close the section.
    return textwrap.dedent("""
        >sp|P00002|PROB_HUMAN Protein kinase B
                  Length = 410

         Score = 95.1 bits (235), Expect = 3e-20
         Identities = 40/118 (33%), Positives = 60/118 (50%), Gaps = 4/118 (3%)

        Query: 3   VLAAGIVG-LLAQ 14
                   VLA GIVG LLA+
        Sbjct: 40  VLAEGIVGQLLAE 52

        Query: 15  KLMN 18
                   KL+N
        Sbjct: 53  KLLN 56

         Score = 30.0 bits (66), Expect(2) = 0.5
         Identities = 5/10 (50%), Positives = 7/10 (70%)

        Query: 20  KLMNPQRSTV 29
                   KL+N Q+ T+
        Sbjct: 200 KLLNAQKATI 209

        >sp|P00005|PROE_RAT Protein kinase E, long
                  description wrapped
                  Length = 1,024

         Score =  180 bits (456), Expect = e-46
         Identities = 90/100 (90%), Positives = 95/100 (95%)

        Query: 1   MKVLAAGIVG 10
                   MKVLA GIVG
        Sbjct: 5   MKVLAEGIVG 14

        Searching..................................................done
        Query: 1   XXXX 4
    """).lstrip("\n")


def _blast_plus_block_text():
    return textwrap.dedent("""
        >XP_0001.1 hypothetical protein [Danio rerio]
        Length=212

         Score = 48.5 bits (114),  Expect = 2e-07, Method: Composition-based stats.
         Identities = 25/60 (42%), Positives = 35/60 (58%), Gaps = 3/60 (5%)

        Query  12   LAAGIVGLLL  21
                    LA G+VGLL
        Sbjct  88   LAEGVVGLLI  97

        Lambda      K        H        a         alpha
    """).lstrip("\n")


# ------------------------ tests: records ------------------------

def test_decode_legacy_records():
    hits = list(decode(_legacy_block_text()))
    assert [h.name for h in hits] == ["sp|P00002|PROB_HUMAN", "sp|P00005|PROE_RAT"]

    b = hits[0]
    assert b.description == "Protein kinase B"
    assert b.length == 410
    assert len(b.hsps) == 2
    h1 = b.hsps[0]
    assert h1.bits == 95.1 and h1.score == 235
    assert h1.evalue == pytest.approx(3e-20)
    assert (h1.identities, h1.align_len, h1.positives, h1.gaps) == (40, 118, 60, 4)
    # continuation rows are joined
    assert h1.query_start == 3 and h1.query_end == 18
    assert h1.subject_start == 40 and h1.subject_end == 56
    assert h1.query_seq == "VLAAGIVG-LLAQKLMN"
    assert h1.subject_seq == "VLAEGIVGQLLAEKLLN"
    assert h1.midline == "VLA GIVG LLA+KL+N"
    assert h1.has_aligned_strings()

    h2 = b.hsps[1]
    assert h2.evalue == 0.5
    assert h2.subject_start == 200
    assert b.best_hsp is h1
    assert b.bits == 95.1
    assert b.evalue == pytest.approx(3e-20)


def test_decode_wrapped_description_and_short_evalue():
    e = list(decode(_legacy_block_text()))[1]
    assert e.description == "Protein kinase E, long description wrapped"
    assert e.length == 1024
    assert e.hsps[0].evalue == pytest.approx(1e-46)
    assert e.hsps[0].percent_identity == pytest.approx(90.0)


def test_decode_stops_at_section_end():
    e = list(decode(_legacy_block_text()))[-1]
    assert len(e.hsps) == 1
    assert e.hsps[0].query_seq == "MKVLAAGIVG"


def test_decode_blast_plus_layout():
    hits = list(decode(_blast_plus_block_text()))
    assert len(hits) == 1
    h = hits[0]
    assert h.name == "XP_0001.1"
    assert h.length == 212
    hsp = h.hsps[0]
    assert hsp.bits == 48.5
    assert hsp.evalue == pytest.approx(2e-07)
    assert hsp.query_seq == "LAAGIVGLLL"
    assert hsp.midline == "LA G+VGLL "
    assert (hsp.subject_start, hsp.subject_end) == (88, 97)


def test_decode_from_filelike_and_lines():
    text = _blast_plus_block_text()
    a = [h.name for h in decode(io.StringIO(text))]
    b = [h.name for h in decode(text.splitlines())]
    assert a == b == ["XP_0001.1"]


def test_parser_is_restartable():
    lines = _legacy_block_text().splitlines(keepends=True)
    p = BlastTextParser()
    first = [h.name for h in p.parse(lines)]
    second = [h.name for h in p.parse(lines)]
    assert first == second


def test_bad_score_raises():
    text = ">x desc\n  Length = 10\n\n Score = 12 bits (30), Expect = abc\n"
    with pytest.raises(ValueError):
        list(decode(text))


def test_custom_parser_is_used():
    class Names:
        def parse(self, lines):
            from psilite.models.hit import Hit
            for ln in lines:
                if ln.startswith("#"):
                    yield Hit(name=ln[1:].strip())

    assert [h.name for h in decode("#a\n#b\n", parser=Names())] == ["a", "b"]


# ------------------------ tests: summary table ------------------------

def test_parse_summary_sections(three_round_report):
    text = three_round_report.read_text()
    round2 = text[text.index("Results from round 2"):text.index("Results from round 3")]
    rows = parse_summary(round2.splitlines())
    assert rows == [
        SummaryLine("sp|P00001|PROA_HUMAN", "Protein kinase A", 215.0, 2e-57, "old"),
        SummaryLine("sp|P00003|PROC_MOUSE", "Protein kinase C", 60.0, 1e-09, "new"),
    ]


def test_parse_summary_plain():
    text = textwrap.dedent("""
        Sequences producing significant alignments:                      (bits) Value

        gi|1|ref|NP_1| first protein                                      250   1e-65
        gi|2|ref|NP_2|                                                     33   0.15

        >gi|1|ref|NP_1| first protein
    """)
    rows = parse_summary(text.splitlines())
    assert [(r.name, r.description, r.bits, r.evalue, r.section) for r in rows] == [
        ("gi|1|ref|NP_1|", "first protein", 250.0, 1e-65, None),
        ("gi|2|ref|NP_2|", "", 33.0, 0.15, None),
    ]


def test_parse_evalue():
    assert parse_evalue("e-100") == pytest.approx(1e-100)
    assert parse_evalue("0.002,") == 0.002
    with pytest.raises(ValueError):
        parse_evalue("n/a")
