from __future__ import annotations

import heapq
import logging
from functools import cmp_to_key
from itertools import islice
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from lazytab.errors import SchemaError
from lazytab.models.catalog import ColumnCatalog
from lazytab.spill import read_run, remove_files, write_run

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100_000


def _compare_values(x: Any, y: Any) -> int:
    # None sorts before any value
    if x is None or y is None:
        return (x is not None) - (y is not None)
    if x < y:
        return -1
    if y < x:
        return 1
    return 0


class ExternalSortComparator:
    """Total order over pipeline rows from an order list like ``["+", "Dept", "-", "Salary"]``.

    Each direction marker is followed by a column name. Values are compared
    after parsing, so the declared column types decide the comparison.
    """

    def __init__(self, catalog: ColumnCatalog, order: Sequence[Any]):
        self.order = list(order) if isinstance(order, (list, tuple)) else order
        self.keys: Tuple[Tuple[int, int], ...] = self._parse(catalog, self.order)

    @staticmethod
    def _parse(catalog: ColumnCatalog, order: Any) -> Tuple[Tuple[int, int], ...]:
        bad = SchemaError(
            "E_SORT_ORDER",
            f"The order list is not in the correct format: {order!r}.",
            hint="Alternate a direction and a column name, e.g. ['+', 'Department', '-', 'Salary'].",
        )
        if not isinstance(order, list) or not order or len(order) % 2:
            raise bad
        ki = catalog.key_index()
        keys = []
        for sign, name in zip(order[::2], order[1::2]):
            if sign not in ("+", "-") or not isinstance(name, str):
                raise bad
            if name not in ki:
                raise SchemaError(
                    "E_SORT_UNKNOWN_COL",
                    f"Sort column {name!r} does not exist.",
                    hint="Existing columns: " + ", ".join(catalog.get_col_names()),
                )
            keys.append((1 if sign == "+" else -1, ki[name]))
        return tuple(keys)

    def compare(self, a: Sequence[Any], b: Sequence[Any]) -> int:
        for sign, slot in self.keys:
            c = _compare_values(a[slot], b[slot])
            if c:
                return sign * c
        return 0

    __call__ = compare


def external_sort(
    rows: Iterable[Any],
    compare: Callable[[Any, Any], int],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    tempdir: Optional[str] = None,
) -> Iterator[Any]:
    """Sort an arbitrarily long row stream with bounded memory.

    Rows are cut into ``chunk_size`` runs, each run is sorted in memory and
    spilled to a temporary file, then the runs are k-way merged. Ties may come
    out in any order. Input that fits in one chunk never touches disk.
    """
    if chunk_size <= 0:
        raise SchemaError("E_SORT_CHUNK", f"chunk_size must be positive, got {chunk_size!r}.")
    key = cmp_to_key(compare)
    it = iter(rows)
    runs: List[str] = []
    try:
        while True:
            chunk = list(islice(it, chunk_size))
            if not chunk:
                break
            chunk.sort(key=key)
            if not runs and len(chunk) < chunk_size:
                # everything fit in memory
                yield from chunk
                return
            runs.append(write_run(chunk, tempdir=tempdir))
        logger.debug("external sort merging %d runs", len(runs))
        yield from heapq.merge(*[read_run(p) for p in runs], key=key)
    finally:
        remove_files(runs)
