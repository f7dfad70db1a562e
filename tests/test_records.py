import pytest

from gapcheck.records import (
    END_OF_STREAM,
    GapCandidate,
    Layout,
    RecordParser,
    Selection,
    Skip,
    SkipKind,
    split_fields,
)


def gap6_line(gap, digits, prime, comment="CFC RP.Brent 1980  21.27"):
    return f"{gap:6d}  {comment}".ljust(32) + f"{digits:7d} " + prime


def gap9_line(gap, digits, prime, comment="C?P Jacobsen 2018  30.01"):
    return f"{gap:9d}  {comment}".ljust(37) + f"{digits:9d} " + prime


def parse(*lines, **kwargs):
    return list(RecordParser(list(lines), **kwargs))


def test_free_form_records():
    first, second = parse("     2  3", "     4  3")
    assert isinstance(first, GapCandidate)
    assert (first.gap, first.p1, first.p1_digit_count) == (2, 3, 1)
    assert first.layout is Layout.FREE
    assert (second.gap, second.p1) == (4, 3)


def test_gap6_layout():
    (rec,) = parse(gap6_line(618, 13, "4165633395149"))
    assert rec.layout is Layout.GAP6
    assert rec.p1 == 4165633395149
    assert rec.p2 == 4165633395149 + 618
    assert rec.fingerprint == 3395149


def test_gap9_layout():
    (rec,) = parse(gap9_line(1550, 18, "183613753347870466"))
    assert rec.layout is Layout.GAP9
    assert rec.gap == 1550
    assert rec.p1 == 183613753347870466


def test_continuation_lines():
    lines = [gap6_line(618, 13, "41656\\"), " " * 40 + "33395149", "     2  3"]
    first, second = parse(*lines)
    assert first.p1 == 4165633395149
    assert first.raw_line.count("\n") == 1
    assert (second.gap, second.p1) == (2, 3)


def test_marked_line_followed_by_next_record():
    first, second = parse(gap6_line(618, 13, "4165633395149_"),
                          gap6_line(618, 13, "4165633395149"))
    assert isinstance(first, GapCandidate) and isinstance(second, GapCandidate)
    assert first.p1 == second.p1 == 4165633395149
    assert first.raw_line.count("\n") == 0


def test_formula_prime():
    (rec,) = parse("    34  1e3+327")
    assert rec.p1 == 1327
    assert rec.p1_digit_count == 4


def test_blank_and_comment_lines_are_ignored():
    assert parse("", "# header", "   gap  prime", "     2  3")[0].p1 == 3


def test_gap_one():
    (rec,) = parse("     1  2")
    assert (rec.gap, rec.p1) == (1, 2)


def test_odd_gap_is_invalid():
    (skip,) = parse("     7  23")
    assert skip.kind is SkipKind.INVALID
    assert skip.counted and skip.reported
    assert skip.message == "G odd and G != 1"


def test_zero_gap_is_not_a_record():
    (skip,) = parse("     0  23")
    assert skip.kind is SkipKind.NOT_A_RECORD
    assert not skip.counted


def test_digit_count_mismatch():
    (skip,) = parse(gap6_line(618, 12, "4165633395149"))
    assert skip.kind is SkipKind.INVALID
    assert skip.message == "Conflicting digit counts (stated=12 actual=13)"


def test_ellipsed_prime_skipped_silently():
    (skip,) = parse("  1132  1693182318746371..  ")
    assert skip.kind is SkipKind.ELLIPSIS
    assert not skip.reported


def test_unparseable_prime():
    (skip,) = parse("    10  2^^3")
    assert skip.kind is SkipKind.PARSE_ERROR
    assert skip.reported and not skip.counted
    assert skip.message == "Unable to parse P1."


@pytest.mark.parametrize("expr", ["+".join(["1"] * 5000), "-" * 5000 + "1"])
def test_deeply_nested_formula_is_a_parse_error(expr):
    (skip,) = parse("    10  " + expr)
    assert skip.kind is SkipKind.PARSE_ERROR
    assert skip.message == "Unable to parse P1."


def test_p1_below_two():
    (skip,) = parse("     2  1")
    assert skip.kind is SkipKind.OUT_OF_RANGE
    assert not skip.counted


def test_gap_ceiling():
    (skip,) = parse("1000000000  3")
    assert skip.kind is SkipKind.OUT_OF_RANGE


def test_gap_selection():
    items = parse("     2  3", "     4  7", "     6  23", "     8  89",
                  selection=Selection(min_gap=4, max_gap=6))
    kinds = [i.kind if isinstance(i, Skip) else i.gap for i in items]
    assert kinds == [SkipKind.FILTERED, 4, 6, SkipKind.BEYOND_MAX_GAP]


def test_selection_applies_before_odd_gap_check():
    (skip,) = parse("     7  23", selection=Selection(min_gap=10))
    assert skip.kind is SkipKind.FILTERED
    assert not skip.counted
    (skip,) = parse("     7  23", selection=Selection(min_gap=2, max_gap=4))
    assert skip.kind is SkipKind.BEYOND_MAX_GAP


def test_max_gap_zero_means_single_gap():
    sel = Selection(min_gap=34, max_gap=0)
    assert (sel.min_gap, sel.max_gap) == (34, 34)


def test_digit_selection():
    items = parse(gap6_line(618, 13, "4165633395149"), "    34  1327",
                  selection=Selection(min_digits=14))
    assert [i.kind for i in items] == [SkipKind.FILTERED, SkipKind.FILTERED]
    items = parse(gap6_line(618, 13, "4165633395149"), "    34  1327",
                  selection=Selection(max_digits=5))
    assert items[0].kind is SkipKind.FILTERED
    assert items[1].p1 == 1327


def test_end_of_stream():
    parser = RecordParser(["     2  3"])
    assert isinstance(parser.parse_next(), GapCandidate)
    assert parser.parse_next() is END_OF_STREAM
    assert parser.parse_next() is END_OF_STREAM


@pytest.mark.parametrize("line", ["", "gap prime", "   ", "abc  123"])
def test_split_fields_rejects_non_records(line):
    assert split_fields(line) is None


def test_display_abbreviates_long_primes():
    p1 = 10 ** 120 + 1
    rec = GapCandidate(gap=2, p1=p1, p1_digit_count=121, raw_line="", p1_text="10^120+1")
    assert rec.display(20) == "10^120+1"
    assert GapCandidate(2, p1, 121, "").display(20).endswith("..(121D)..")
