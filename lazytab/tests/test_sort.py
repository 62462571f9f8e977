import os
import random
from functools import cmp_to_key

import petl as etl
import pytest

from lazytab import ExternalSortComparator, OperationError, SchemaError, Table, external_sort
from lazytab.models.catalog import ColumnCatalog


def _write_csv(path, text: str) -> None:
    path.write_text(text, encoding="utf-8")


def _random_rows(n, seed):
    rng = random.Random(seed)
    rows = []
    for _ in range(n):
        dept = rng.choice(["X", "Y", "Z", None])
        salary = rng.choice([None, rng.randint(0, 50)])
        rows.append([dept, salary, rng.random()])
    return rows


@pytest.mark.parametrize("seed", [1, 2, 3])
@pytest.mark.parametrize("chunk_size", [1, 7, 1000])
def test_external_sort_matches_in_memory_sort(tmp_path, seed, chunk_size):
    """External sort agrees with sorted() and removes its runs."""
    cat = ColumnCatalog(["dept", "salary", "noise"])
    cmp = ExternalSortComparator(cat, ["+", "dept", "-", "salary"])
    rows = _random_rows(200, seed)

    out = list(external_sort(iter(rows), cmp.compare, chunk_size=chunk_size, tempdir=str(tmp_path)))
    expected = sorted(rows, key=cmp_to_key(cmp.compare))

    assert len(out) == len(rows)
    assert [(r[0], r[1]) for r in out] == [(r[0], r[1]) for r in expected]
    assert os.listdir(tmp_path) == []


def test_none_sorts_first():
    """Blank values sort first."""
    cat = ColumnCatalog(["v"])
    cmp = ExternalSortComparator(cat, ["+", "v"])
    assert [r[0] for r in external_sort([[3], [None], [1]], cmp)] == [None, 1, 3]


@pytest.mark.parametrize(
    "order",
    [[], ["+"], ["*", "v"], ["+", "v", "-"], "v", [1, "v"], ["+", 3]],
)
def test_malformed_order_lists(order):
    """Malformed order lists raise E_SORT_ORDER."""
    cat = ColumnCatalog(["v"])
    with pytest.raises(SchemaError) as ex:
        ExternalSortComparator(cat, order)
    assert getattr(ex.value, "code", None) == "E_SORT_ORDER"


def test_sort_unknown_column():
    """Sorting on a deleted column fails."""
    cat = ColumnCatalog(["v"])
    cat.del_col("v")
    with pytest.raises(SchemaError) as ex:
        ExternalSortComparator(cat, ["+", "v"])
    assert getattr(ex.value, "code", None) == "E_SORT_UNKNOWN_COL"


def test_table_sort_writes_formatted_rows(tmp_path):
    """Table.sort writes formatted rows in order."""
    src = tmp_path / "employees.csv"
    _write_csv(
        src,
        "Employee,Department,Salary\n"
        "A,X,100\n"
        "B,X,900\n"
        "C,Y,50\n"
        "D,X,95\n",
    )
    out = tmp_path / "sorted.csv"
    spill = tmp_path / "spill"
    spill.mkdir()

    t = Table(src).set_type("Salary", "int")
    report = t.sort(["+", "Department", "-", "Salary"], out, chunk_size=2, tempdir=str(spill))

    assert report.rows_written == 4
    assert [tuple(r) for r in etl.fromcsv(str(out))] == [
        ("Employee", "Department", "Salary"),
        ("B", "X", "900"),
        ("A", "X", "100"),
        ("D", "X", "95"),
        ("C", "Y", "50"),
    ]
    assert os.listdir(spill) == []


def test_table_sort_rejects_aggregates(tmp_path):
    """Grouped tables cannot be sorted directly."""
    src = tmp_path / "t.csv"
    _write_csv(src, "a,b\n1,2\n")
    t = Table(src).group_by("a")
    with pytest.raises(SchemaError) as ex:
        t.sort(["+", "a"], tmp_path / "out.csv")
    assert getattr(ex.value, "code", None) == "E_SORT_AGGREGATE"


def test_table_sort_incomparable_values(tmp_path):
    """Mixed value types raise E_SORT with the TypeError as cause."""
    src = tmp_path / "t.csv"
    _write_csv(src, "a\n1\nx\n")
    t = Table(src).set_parser("a", lambda v: int(v) if v.isdigit() else v)
    with pytest.raises(OperationError) as ex:
        t.sort(["+", "a"], tmp_path / "out.csv")
    assert getattr(ex.value, "code", None) == "E_SORT"
    assert isinstance(ex.value.cause, TypeError)
