import os

import petl as etl
import pytest
import yaml

import lazytab
from lazytab import LocalBackend, OperationError, SchemaError, Table, inner_join
from lazytab.spill import SpillPartitions


def _write_rows(path, n, bad_at=None):
    lines = ["id,value"]
    for i in range(n):
        lines.append(f"{i},{'oops' if i == bad_at else i * 10}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _read(path):
    return [tuple(r) for r in etl.data(etl.fromcsv(str(path)))]


@pytest.mark.parametrize("workers", [1, 4])
def test_preserve_order(tmp_path, workers):
    """Output follows input order for any worker count."""
    src = _write_rows(tmp_path / "in.csv", 50)
    out = tmp_path / "out.csv"
    t = Table(src, batch_size=3).set_type("value", "int").operate(lambda v: v + 1, "value")
    report = t.compute(out, num_workers=workers)

    assert report.rows_written == 50
    assert _read(out) == [(str(i), str(i * 10 + 1)) for i in range(50)]


def test_completion_order_keeps_every_row(tmp_path):
    """Unordered output still writes every row once."""
    src = _write_rows(tmp_path / "in.csv", 40)
    out = tmp_path / "out.csv"
    Table(src, batch_size=4).compute(out, num_workers=3, preserve_order=False)
    assert sorted(_read(out)) == sorted((str(i), str(i * 10)) for i in range(40))


def test_row_failures_are_reported(tmp_path):
    """Failing rows land in the report and the rest are written."""
    src = _write_rows(tmp_path / "in.csv", 25, bad_at=15)
    out = tmp_path / "out.csv"
    t = Table(src).set_type("value", "int")
    report = lazytab.compute(t, out, num_workers=2)

    assert not report.success
    assert report.rows_written == 24
    assert [(f.stage, f.row_id) for f in report.failures] == [("rows", 15)]
    assert "ValueError" in report.failures[0].error


def test_raise_on_error(tmp_path):
    """raise_on_error turns the first failure into E_EXECUTION."""
    src = _write_rows(tmp_path / "in.csv", 25, bad_at=15)
    t = Table(src).set_type("value", "int")
    with pytest.raises(OperationError) as ex:
        t.compute(tmp_path / "out.csv", raise_on_error=True)
    assert getattr(ex.value, "code", None) == "E_EXECUTION"
    assert "original error" in ex.value.message
    assert isinstance(ex.value.cause, ValueError)


def test_select_and_exclude(tmp_path):
    """compute honours select and exclude."""
    src = _write_rows(tmp_path / "in.csv", 3)
    t = Table(src)
    t.compute(tmp_path / "sel.csv", select=["value", "id"])
    t.compute(tmp_path / "exc.csv", exclude="value")
    assert _read(tmp_path / "sel.csv") == [("0", "0"), ("10", "1"), ("20", "2")]
    assert _read(tmp_path / "exc.csv") == [("0",), ("1",), ("2",)]


def test_compute_validates_options(tmp_path):
    """Bad compute options fail before anything is read."""
    src = _write_rows(tmp_path / "in.csv", 3)
    with pytest.raises(SchemaError) as ex:
        Table(src).compute(tmp_path / "out.csv", num_workers=9)
    assert getattr(ex.value, "code", None) == "E_OPTIONS_WORKERS"
    assert not (tmp_path / "out.csv").exists()


def test_compute_rejects_other_objects(tmp_path):
    """compute only takes tables and joined tables."""
    with pytest.raises(SchemaError) as ex:
        lazytab.compute("in.csv", tmp_path / "out.csv")
    assert getattr(ex.value, "code", None) == "E_COMPUTE_INPUT"


def test_custom_backend_partitions(tmp_path):
    """A backend with few partitions gives the same join result."""
    a = _write_rows(tmp_path / "a.csv", 30)
    b = _write_rows(tmp_path / "b.csv", 30)
    out = tmp_path / "out.csv"
    spill = tmp_path / "spill"
    spill.mkdir()
    backend = LocalBackend(num_workers=2, num_partitions=3, tempdir=str(spill))
    report = inner_join(Table(a), Table(b), "id", "id").compute(out, backend=backend)

    assert report.rows_written == 30
    assert sorted(_read(out), key=lambda r: int(r[0]))[0] == ("0", "0", "0", "0")
    assert os.listdir(spill) == []


def test_join_explain(tmp_path):
    """explain() on a join describes both sides."""
    a = _write_rows(tmp_path / "a.csv", 3)
    b = _write_rows(tmp_path / "b.csv", 3)
    doc = yaml.safe_load(inner_join(Table(a), Table(b), "id", "id").explain(select=["2_value"]))
    assert doc["kind"] == "join"
    assert doc["join"]["write_index"] == [0]
    assert doc["join"]["a"]["carry"] == []


def test_spill_partitions_round_trip(tmp_path):
    """Spilled records come back from their bucket."""
    with SpillPartitions(4, tempdir=str(tmp_path)) as parts:
        for i in range(20):
            parts.add(i % 5, ("row", i))
        parts.flush()
        seen = sorted(r for b in range(parts.num_buckets) for r in parts.bucket(b))
        assert seen == [("row", i) for i in range(20)]
        assert sum(parts.counts) == 20
    assert os.listdir(tmp_path) == []
