from datetime import timedelta

import petl as etl
import pytest

from lazytab import (
    OperationError,
    SchemaError,
    Table,
    inner_join,
    left_join,
    right_join,
    rolling_join_backward,
    rolling_join_forward,
)


def _write_csv(path, text: str) -> None:
    path.write_text(text, encoding="utf-8")


def _read_csv(path):
    tbl = etl.fromcsv(str(path))
    return list(etl.header(tbl)), sorted(tuple(r) for r in etl.data(tbl))


@pytest.fixture
def ab(tmp_path):
    a = tmp_path / "a.csv"
    b = tmp_path / "b.csv"
    _write_csv(a, "id,v\n1,a\n2,b\n3,c\n")
    _write_csv(b, "id,w\n1,x\n1,y\n4,z\n")
    return Table(a), Table(b)


def test_inner_join(ab, tmp_path):
    """Inner join keeps matching pairs only."""
    a, b = ab
    out = tmp_path / "out.csv"
    j = inner_join(a, b, "id", "id")
    assert j.col_names() == ["1_id", "1_v", "2_id", "2_w"]

    report = j.compute(out)
    assert _read_csv(out) == (
        ["1_id", "1_v", "2_id", "2_w"],
        [("1", "a", "1", "x"), ("1", "a", "1", "y")],
    )
    assert report.rows_written == 2


def test_left_join_keeps_every_left_row(ab, tmp_path):
    """Left join pads left rows without a match."""
    a, b = ab
    out = tmp_path / "out.csv"
    left_join(a, b, ["id"], ["id"], col_prefix=("l", "r")).compute(out, num_workers=2)

    header, rows = _read_csv(out)
    assert header == ["l_id", "l_v", "r_id", "r_w"]
    assert rows == [
        ("1", "a", "1", "x"),
        ("1", "a", "1", "y"),
        ("2", "b", "", ""),
        ("3", "c", "", ""),
    ]


def test_right_join_is_left_join_swapped(ab, tmp_path):
    """Right join is a left join with the sides swapped."""
    a, b = ab
    out = tmp_path / "out.csv"
    j = right_join(a, b, "id", "id")
    assert j.col_names() == ["2_id", "2_w", "1_id", "1_v"]

    j.compute(out)
    _, rows = _read_csv(out)
    assert rows == [("1", "x", "1", "a"), ("1", "y", "1", "a"), ("4", "z", "", "")]


def test_join_select_order(ab, tmp_path):
    """Joined output follows the select order."""
    a, b = ab
    out = tmp_path / "out.csv"
    inner_join(a, b, "id", "id").compute(out, select=["2_w", "1_v"])
    assert _read_csv(out) == (["2_w", "1_v"], [("x", "a"), ("y", "a")])


def test_build_side_choice_keeps_output_order(tmp_path):
    """The inner-join build side never changes the output."""
    small = tmp_path / "small.csv"
    big = tmp_path / "big.csv"
    _write_csv(small, "id,s\n1,s1\n")
    _write_csv(big, "id,b\n" + "".join(f"{i},b{i}\n" for i in range(1, 50)))

    j1 = inner_join(Table(small), Table(big), "id", "id")
    j2 = inner_join(Table(big), Table(small), "id", "id")
    assert j1.plan().join.build_is_a
    assert not j2.plan().join.build_is_a

    out1 = tmp_path / "o1.csv"
    out2 = tmp_path / "o2.csv"
    j1.compute(out1)
    j2.compute(out2)
    assert _read_csv(out1) == (["1_id", "1_s", "2_id", "2_b"], [("1", "s1", "1", "b1")])
    assert _read_csv(out2) == (["1_id", "1_b", "2_id", "2_s"], [("1", "b1", "1", "s1")])


def test_null_keys_never_match(tmp_path):
    """Null keys never match, even each other."""
    a = tmp_path / "a.csv"
    b = tmp_path / "b.csv"
    _write_csv(a, "id,v\n,blank\n1,one\n")
    _write_csv(b, "id,w\n,nothing\n1,uno\n")
    ta = Table(a).set_type("id", "int")
    tb = Table(b).set_type("id", "int")
    out = tmp_path / "out.csv"
    left_join(ta, tb, "id", "id").compute(out)

    _, rows = _read_csv(out)
    assert rows == [("", "blank", "", ""), ("1", "one", "1", "uno")]


def test_join_key_collation(tmp_path):
    """Collation functions apply to join keys."""
    a = tmp_path / "a.csv"
    b = tmp_path / "b.csv"
    _write_csv(a, "name\nAda\n")
    _write_csv(b, "name\nada\n")
    out = tmp_path / "out.csv"
    inner_join(Table(a), Table(b), [(str.lower, "name")], [(str.lower, "name")]).compute(out)
    assert _read_csv(out)[1] == [("Ada", "ada")]


@pytest.fixture
def ticks(tmp_path):
    a = tmp_path / "trades.csv"
    b = tmp_path / "quotes.csv"
    _write_csv(a, "k,t\ng,1\ng,5\ng,10\n")
    _write_csv(b, "k,t2,val\ng,2,p\ng,6,q\ng,30,r\n")
    return Table(a).set_type("t", "int"), Table(b).set_type("t2", "int")


def test_asof_forward_respects_limit(ticks, tmp_path):
    """Forward as-of join honours limit."""
    a, b = ticks
    out = tmp_path / "out.csv"
    rolling_join_forward(a, b, "k", "k", "t", "t2", limit=3).compute(out)

    header, rows = _read_csv(out)
    assert header == ["1_k", "1_t", "2_k", "2_t2", "2_val"]
    assert sorted(rows, key=lambda r: int(r[1])) == [
        ("g", "1", "g", "2", "p"),
        ("g", "5", "g", "6", "q"),
        ("g", "10", "", "", ""),
    ]
    for r in rows:
        if r[3]:
            assert 0 <= int(r[3]) - int(r[1]) <= 3


def test_asof_forward_drop_unmatched(ticks, tmp_path):
    """drop_unmatched omits rows without a match."""
    a, b = ticks
    out = tmp_path / "out.csv"
    report = rolling_join_forward(a, b, "k", "k", "t", "t2", limit=3, drop_unmatched=True).compute(out)
    assert report.rows_written == 2


def test_asof_backward(ticks, tmp_path):
    """Backward as-of join takes the nearest earlier row."""
    a, b = ticks
    out = tmp_path / "out.csv"
    rolling_join_backward(a, b, "k", "k", "t", "t2").compute(out, select=["1_t", "2_val"])
    _, rows = _read_csv(out)
    assert sorted(rows, key=lambda r: int(r[0])) == [("1", ""), ("5", "p"), ("10", "q")]


def test_asof_preview(ticks):
    """preview() works on an as-of join."""
    a, b = ticks
    rows = rolling_join_forward(a, b, "k", "k", "t", "t2").preview()
    assert {r["1_t"]: r["2_t2"] for r in rows} == {1: 2, 5: 6, 10: 30}


def test_join_rejects_non_tables(ab):
    """Joining a non-table raises E_JOIN_INPUT."""
    a, _ = ab
    with pytest.raises(SchemaError) as ex:
        inner_join(a, "b.csv", "id", "id")
    assert getattr(ex.value, "code", None) == "E_JOIN_INPUT"


def test_join_key_counts_must_match(ab):
    """Both sides need the same number of keys."""
    a, b = ab
    with pytest.raises(SchemaError) as ex:
        inner_join(a, b, ["id", "v"], ["id"])
    assert getattr(ex.value, "code", None) == "E_JOIN_KEY_COUNT"


def test_join_prefix_needs_two_entries(ab):
    """col_prefix needs exactly two entries."""
    a, b = ab
    with pytest.raises(SchemaError) as ex:
        left_join(a, b, "id", "id", col_prefix=("only",))
    assert getattr(ex.value, "code", None) == "E_JOIN_PREFIX"


def test_join_unknown_key(ab):
    """Unknown join keys raise E_UNKNOWN_COL."""
    a, b = ab
    with pytest.raises(SchemaError) as ex:
        inner_join(a, b, "nope", "id")
    assert getattr(ex.value, "code", None) == "E_UNKNOWN_COL"


def test_join_rejects_aggregated_tables(ab):
    """Grouped tables cannot be joined directly."""
    a, b = ab
    a.group_by("id")
    with pytest.raises(SchemaError) as ex:
        inner_join(a, b, "id", "id")
    assert getattr(ex.value, "code", None) == "E_JOIN_AGGREGATE"


def test_rolling_keys_must_be_comparable(tmp_path):
    """Rolling columns of different types are rejected."""
    a = tmp_path / "a.csv"
    b = tmp_path / "b.csv"
    _write_csv(a, "k,t\ng,1\n")
    _write_csv(b, "k,t\ng,2\n")
    with pytest.raises(SchemaError) as ex:
        rolling_join_forward(Table(a), Table(b).set_type("t", "int"), "k", "k", "t", "t")
    assert getattr(ex.value, "code", None) == "E_JOIN_ROLL_TYPE"


def test_rolling_join_unknown_roll(ticks):
    """Unknown rolling columns raise E_JOIN_ROLL."""
    a, b = ticks
    with pytest.raises(SchemaError) as ex:
        rolling_join_backward(a, b, "k", "k", "t", "missing")
    assert getattr(ex.value, "code", None) == "E_JOIN_ROLL"


def test_join_failing_in_preview(ab):
    """A key function failing on the sample raises E_PREVIEW."""
    a, b = ab

    def broken(key):
        raise KeyError(key)

    with pytest.raises(OperationError) as ex:
        inner_join(a, b, [(broken, "id")], ["id"])
    assert getattr(ex.value, "code", None) == "E_PREVIEW"


def test_rolling_limit_must_match_roll_type(tmp_path):
    """A numeric limit on date rolling columns raises E_JOIN_LIMIT."""
    a = tmp_path / "a.csv"
    b = tmp_path / "b.csv"
    _write_csv(a, "k,t\ng,2024-01-01\n")
    _write_csv(b, "k,t\ng,2024-01-02\n")
    ta = Table(a).set_type("t", "date")
    tb = Table(b).set_type("t", "date")
    with pytest.raises(SchemaError) as ex:
        rolling_join_forward(ta, tb, "k", "k", "t", "t", limit=3)
    assert getattr(ex.value, "code", None) == "E_JOIN_LIMIT"


def test_rolling_limit_accepts_timedelta_for_dates(tmp_path):
    """A timedelta limit bounds matches between date columns."""
    a = tmp_path / "a.csv"
    b = tmp_path / "b.csv"
    _write_csv(a, "k,t\ng,2024-01-01\ng,2024-01-10\n")
    _write_csv(b, "k,t\ng,2024-01-02\ng,2024-01-20\n")
    ta = Table(a).set_type("t", "date")
    tb = Table(b).set_type("t", "date")
    out = tmp_path / "out.csv"
    rolling_join_forward(ta, tb, "k", "k", "t", "t", limit=timedelta(days=3)).compute(out)

    _, rows = _read_csv(out)
    assert rows == [("g", "2024-01-01", "g", "2024-01-02"), ("g", "2024-01-10", "", "")]


def _late_mismatch(tmp_path):
    # the first 10 rows of a never reach the join index, so the preview passes
    a = tmp_path / "a.csv"
    b = tmp_path / "b.csv"
    lines = [f"n,{i}" for i in range(10)] + ["g,late"]
    _write_csv(a, "k,t\n" + "\n".join(lines) + "\n")
    _write_csv(b, "k,t\ng,2\n")
    ta = Table(a).set_parser("t", lambda v: int(v) if v.isdigit() else v)
    tb = Table(b).set_type("t", "int")
    return rolling_join_forward(ta, tb, "k", "k", "t", "t")


def test_join_stage_failure_is_reported(tmp_path):
    """A failure while probing the join index is reported, not raised."""
    out = tmp_path / "out.csv"
    report = _late_mismatch(tmp_path).compute(out, raise_on_error=False)

    assert not report.success
    assert [f.stage for f in report.failures] == ["join"]
    assert "TypeError" in report.failures[0].error
    assert report.rows_written == 10


def test_join_stage_failure_raises(tmp_path):
    """With raise_on_error a join failure raises E_EXECUTION with its cause."""
    with pytest.raises(OperationError) as ex:
        _late_mismatch(tmp_path).compute(tmp_path / "out.csv", raise_on_error=True)
    assert getattr(ex.value, "code", None) == "E_EXECUTION"
    assert "original error" in ex.value.message
    assert isinstance(ex.value.cause, TypeError)
