from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import petl as etl

from lazytab.aggregates import aggregate_label, resolve_aggregate
from lazytab.config import DEFAULT_BATCH_SIZE, ComputeOptions, check_batch_size
from lazytab.errors import LazyTabError, OperationError, SchemaError
from lazytab.models.aggregate import GroupAggregateIndexer
from lazytab.models.catalog import ColumnCatalog
from lazytab.models.plan import Plan
from lazytab.models.preview import error_predetect, preview as _preview
from lazytab.models.program import build_row_program
from lazytab.models.report import ExecutionReport
from lazytab.models.rows import GroupKey, RowPipelineDescriptor
from lazytab.models.sinks import Sink
from lazytab.models.sort import DEFAULT_CHUNK_SIZE, ExternalSortComparator, external_sort
from lazytab.models.sources import Source
from lazytab.util import _as_list, _key_specs

logger = logging.getLogger(__name__)


class Table:
    """A lazily evaluated CSV table.

    Builder methods record work in the column catalog and the row pipeline and
    return the table itself, so calls chain. After every builder call the
    whole pipeline is dry-run on the first rows of the file; if that fails the
    call is undone and an OperationError is raised.

    Nothing is read beyond the preview sample until compute() or sort().
    """

    def __init__(
        self,
        path: Any,
        *,
        have_header: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.source = Source(path, have_header=have_header, options=dict(options or {}))
        self.batch_size = check_batch_size(batch_size)
        self.catalog = ColumnCatalog(self.source.columns())
        self.rows = RowPipelineDescriptor()
        logger.debug("opened %s with columns %s", self.source.uri, self.catalog.get_col_names())

    @property
    def path(self) -> str:
        return self.source.uri

    def _guarded(self, msg: str, change: Callable[[], Any]) -> "Table":
        saved = self.catalog.clone(), self.rows.clone()
        try:
            change()
            error_predetect(self, msg)
        except Exception:
            self.catalog, self.rows = saved
            raise
        return self

    # ---------- column operations ----------
    def operate(self, func: Callable[..., Any], cols: Any, new_col: Optional[str] = None) -> "Table":
        """Apply ``func`` to ``cols``.

        With one column and no ``new_col`` the column is replaced in place;
        otherwise ``func(*values)`` becomes the new column ``new_col``.
        """
        return self._guarded(
            "this function cannot be appended into the operations",
            lambda: self.catalog.operate(func, cols, new_col),
        )

    def set_type(self, col: str, type_tag: str) -> "Table":
        """Parse ``col`` as ``int``, ``double``, ``string`` or ``date[:fmt]``."""
        return self._guarded(
            f"cannot set type {type_tag!r} on column {col!r}",
            lambda: self.catalog.set_type(type_tag, col),
        )

    def set_parser(self, col: str, parser: Callable[[Any], Any]) -> "Table":
        return self._guarded(
            f"cannot set parser on column {col!r}",
            lambda: self.catalog.set_parser(parser, col),
        )

    def set_formatter(self, col: str, formatter: Callable[[Any], Any]) -> "Table":
        return self._guarded(
            f"cannot set formatter on column {col!r}",
            lambda: self.catalog.set_formatter(formatter, col),
        )

    # ---------- row operations ----------
    def filter(self, cols: Any, predicate: Callable[..., Any]) -> "Table":
        """Keep the rows where ``predicate(*values of cols)`` is truthy."""

        def change() -> None:
            if not callable(predicate):
                raise SchemaError(
                    "E_FILTER_FUNC",
                    "filter expects a callable predicate.",
                    hint="Example: table.filter('Salary', lambda s: s <= 800)",
                )
            slots = self.catalog.resolve(cols)
            self.rows.add_filter(tuple(slots), predicate, len(self.catalog.pipeline))

        return self._guarded("this filter cannot be appended into the operations", change)

    def group_by(self, keys: Any) -> "Table":
        """Group by one or more columns; a key may be a ``(collation_fn, column)`` pair."""

        def change() -> None:
            specs = _key_specs(keys, what="group-by")
            slots = self.catalog.resolve([n for _, n in specs])
            self.rows.set_groupby([GroupKey(s, c) for (c, _), s in zip(specs, slots)])

        return self._guarded("invalid group-by keys", change)

    def aggregate(self, func: Any, cols: Any, new_names: Optional[Sequence[str]] = None) -> "Table":
        """Aggregate each of ``cols`` with ``func``.

        ``func`` is a callable over the list of values of a group, or the name
        of a built-in aggregate (min, max, sum, avg, mean, count, first, last).
        Results are named ``new_names`` or ``"{func}({col})"`` by default.
        """

        def change() -> None:
            fn = resolve_aggregate(func)
            names = _as_list(cols)
            slots = self.catalog.resolve(names)
            if new_names is None:
                label = aggregate_label(func)
                out = [f"{label}({n})" for n in names]
            else:
                out = _as_list(new_names)
            if len(out) != len(slots):
                raise SchemaError(
                    "E_AGGREGATE_NAMES",
                    f"Got {len(out)} new name(s) for {len(slots)} aggregated column(s).",
                )
            taken = set(self.catalog.get_col_names()) | set(self.rows.aggregate_names())
            clash = [n for n in out if not isinstance(n, str) or not n or n in taken]
            if clash or len(set(out)) != len(out):
                raise SchemaError(
                    "E_AGGREGATE_NAMES",
                    f"Aggregate names must be fresh, unique strings: {out}.",
                    hint="Pass new_names=[...] with names not used by any column.",
                )
            for s, n in zip(slots, out):
                self.rows.add_aggregate(fn, s, n)

        return self._guarded("this aggregation cannot be appended", change)

    # ---------- layout ----------
    def delete_col(self, cols: Any) -> "Table":
        return self._guarded("cannot delete the column(s)", lambda: self.catalog.del_col(cols))

    def select_col(self, cols: Any) -> "Table":
        """Keep only ``cols``; every other column is deleted."""

        def change() -> None:
            keep = set(self.catalog.resolve(cols))
            drop = [self.catalog.slots[s].name for s in self.catalog.get_col_index() if s not in keep]
            if drop:
                self.catalog.del_col(drop)

        return self._guarded("cannot select the column(s)", change)

    def reorder_col(self, names: Sequence[str]) -> "Table":
        return self._guarded("cannot reorder the columns", lambda: self.catalog.reorder_col(names))

    def rename_col(self, names: Sequence[str]) -> "Table":
        return self._guarded("cannot rename the columns", lambda: self.catalog.rename_col(names))

    # ---------- inspection ----------
    def col_names(self) -> List[str]:
        if self.rows.is_grouped or self.rows.is_aggregate:
            return GroupAggregateIndexer(self.catalog, self.rows).col_names()
        return self.catalog.get_col_names()

    def col_index(self) -> List[int]:
        return self.catalog.get_col_index()

    def col_types(self) -> Dict[str, str]:
        return self.catalog.col_types()

    def head(self, n: int = 5) -> List[Tuple[Any, ...]]:
        """The first ``n`` raw lines of the file (header line included)."""
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise SchemaError("E_HEAD_ARGS", f"head expects a non-negative integer, got {n!r}.")
        return self.source.head(n)

    def preview(self, sample_size: int = 10, return_size: int = 10, formatted: bool = False) -> List[Dict[str, Any]]:
        return _preview(self, sample_size, return_size, formatted)

    def print_table(self, sample_size: int = 10, return_size: int = 10, formatted: bool = True) -> None:
        rows = self.preview(sample_size, return_size, formatted)
        names = self.col_names()
        view = etl.wrap([names] + [[r.get(n) for n in names] for r in rows])
        print(etl.look(view, limit=return_size))

    def infer_types(self, sample_rows: int = 200) -> Dict[str, str]:
        """Suggest a type tag for every live column read straight from the file."""
        suggested = self.source.peek_schema(sample_rows=sample_rows)
        header = self.source.columns()
        cat = self.catalog
        return {
            cat.slots[s].name: suggested.get(header[s], "string")
            for s in cat.get_col_index()
            if s < cat.source_width
        }

    # ---------- evaluation ----------
    def plan(self, options: Optional[ComputeOptions] = None, *, formatted: bool = True) -> Plan:
        """Freeze the current pipeline into a Plan for the backend."""
        options = options or ComputeOptions()
        select = options.resolve_select(self.col_names())

        if self.rows.is_grouped or self.rows.is_aggregate:
            group = GroupAggregateIndexer(self.catalog, self.rows).plan(select)
            if not formatted:
                group = replace(group, formatters={})
            return Plan(
                kind="aggregate",
                names=group.names,
                options=options,
                batch_size=self.batch_size,
                source=self.source,
                program=build_row_program(self.catalog, self.rows, include_formatters=False),
                group=group,
            )

        if select is None:
            slots = self.catalog.get_col_index()
        else:
            ki = self.catalog.key_index()
            missing = [s for s in select if s not in ki]
            if missing:
                raise SchemaError(
                    "E_SELECT_UNKNOWN",
                    f"Selected column(s) {missing} do not exist.",
                    hint="Existing columns: " + ", ".join(self.catalog.get_col_names()),
                )
            slots = [ki[s] for s in select]
        if not slots:
            raise SchemaError("E_SELECT_EMPTY", "Must select at least 1 column.")
        return Plan(
            kind="rows",
            names=tuple(self.catalog.slots[s].name for s in slots),
            options=options,
            batch_size=self.batch_size,
            source=self.source,
            program=build_row_program(self.catalog, self.rows, include_formatters=formatted),
            output_slots=tuple(slots),
        )

    def explain(self, **options: Any) -> str:
        """YAML description of the plan compute(**options) would run."""
        return self.plan(ComputeOptions(**options)).to_yaml()

    def sort(
        self,
        order: Sequence[Any],
        output: Any,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        tempdir: Optional[str] = None,
    ) -> ExecutionReport:
        """Sort the table by ``order`` (e.g. ``["+", "Dept", "-", "Salary"]``) into ``output``."""
        if self.rows.is_grouped or self.rows.is_aggregate:
            raise SchemaError(
                "E_SORT_AGGREGATE",
                "Cannot sort a table with group-by/aggregate specs.",
                hint="Compute the aggregate to a file first, then sort that file.",
            )
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
            raise SchemaError("E_SORT_CHUNK", f"chunk_size must be a positive integer, got {chunk_size!r}.")
        comparator = ExternalSortComparator(self.catalog, order)
        sink = Sink(output)
        program = build_row_program(self.catalog, self.rows, include_formatters=False)
        live = self.catalog.get_col_index()
        fmts = self.catalog.formatters()

        def parsed():
            for values in self.source.rows():
                row = program.run(values)
                if row is not None:
                    yield row

        def formatted(rows):
            for row in rows:
                yield tuple(fmts[s](row[s]) if s in fmts else row[s] for s in live)

        logger.info("sorting %s by %s", self.source.uri, comparator.order)
        try:
            sorted_rows = external_sort(parsed(), comparator.compare, chunk_size=chunk_size, tempdir=tempdir)
            written = sink.write(self.catalog.get_col_names(), formatted(sorted_rows))
        except LazyTabError:
            raise
        except Exception as e:
            raise OperationError(
                "E_SORT",
                f"sort failed (original error: {type(e).__name__}: {e})",
                hint="Check the operations and that the sort columns hold mutually comparable values.",
            ) from e
        logger.info("sorted %d rows into %s", written, sink.uri)
        return ExecutionReport(output=sink.uri, rows_written=written)

    def compute(self, output: Any, **options: Any) -> ExecutionReport:
        from lazytab.execution import compute

        return compute(self, output, **options)

    def __str__(self) -> str:
        return f"Table({self.source.uri}: {self.col_names()})"
