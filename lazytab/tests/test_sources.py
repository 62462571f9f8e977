import pytest

from lazytab import OperationError, SchemaError
from lazytab.models.sources import Source


def _write_csv(path, text: str) -> None:
    path.write_text(text, encoding="utf-8")


def test_source_missing_file_fails_fast(tmp_path):
    """A missing file raises E_SOURCE_NOT_FOUND."""
    with pytest.raises(OperationError) as ex:
        Source(str(tmp_path / "missing.csv"))
    assert getattr(ex.value, "code", None) == "E_SOURCE_NOT_FOUND"
    assert "not found" in str(ex.value).lower()


def test_source_rejects_non_path():
    """Non-path sources raise E_SOURCE_URI_TYPE."""
    with pytest.raises(SchemaError) as ex:
        Source(42)  # type: ignore[arg-type]
    assert getattr(ex.value, "code", None) == "E_SOURCE_URI_TYPE"


def test_source_needs_delimited_extension_or_delimiter(tmp_path):
    """Unknown extensions need an explicit delimiter."""
    p = tmp_path / "data.dat"
    _write_csv(p, "a|b\n1|2\n")
    with pytest.raises(SchemaError) as ex:
        Source(str(p))
    assert getattr(ex.value, "code", None) == "E_SOURCE_TYPE_INFER"

    s = Source(str(p), options={"delimiter": "|"})
    assert s.columns() == ["a", "b"]
    assert list(s.rows()) == [("1", "2")]


def test_source_accepts_pathlib_paths(tmp_path):
    """pathlib paths are accepted."""
    p = tmp_path / "data.csv"
    _write_csv(p, "a\n1\n")
    s = Source(p)
    assert s.uri == str(p)
    assert s.columns() == ["a"]


def test_source_table_wraps_file_deleted_after_open(tmp_path):
    """A file removed after opening fails on read."""
    p = tmp_path / "gone.csv"
    _write_csv(p, "a\n1\n")
    s = Source(str(p))
    p.unlink()
    with pytest.raises(OperationError) as ex:
        s.table()
    assert getattr(ex.value, "code", None) == "E_SOURCE_NOT_FOUND"


def test_rows_head_and_sample(tmp_path):
    """head and sample read only the first rows."""
    p = tmp_path / "data.csv"
    _write_csv(p, "a,b\n1,2\n3,4\n5,6\n")
    s = Source(str(p))
    assert s.head(2) == [("a", "b"), ("1", "2")]
    assert s.sample(2) == [("1", "2"), ("3", "4")]
    assert len(list(s.rows())) == 3
    assert s.file_size() == p.stat().st_size


def test_empty_file_has_no_columns(tmp_path):
    """An empty file has no columns."""
    p = tmp_path / "empty.csv"
    _write_csv(p, "")
    assert Source(str(p)).columns() == []


def test_peek_schema_wraps_errors(tmp_path, monkeypatch):
    """Schema inference errors are wrapped."""
    p = tmp_path / "data.csv"
    _write_csv(p, "a\n1\n")

    class Broken:
        def __init__(self, *args, **kwargs):
            raise RuntimeError("no inference today")

    monkeypatch.setattr("lazytab.models.sources.Resource", Broken)
    with pytest.raises(OperationError) as ex:
        Source(str(p)).peek_schema()
    assert getattr(ex.value, "code", None) == "E_SCHEMA_INFER"
    assert isinstance(ex.value.cause, RuntimeError)
