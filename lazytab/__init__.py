from typing import Any, Dict, Optional

from lazytab.config import DEFAULT_BATCH_SIZE, ComputeOptions
from lazytab.errors import LazyTabError, OperationError, SchemaError
from lazytab.execution import LocalBackend, compute
from lazytab.models.join import (
    JoinedTable,
    inner_join,
    left_join,
    right_join,
    rolling_join_backward,
    rolling_join_forward,
)
from lazytab.models.plan import Plan
from lazytab.models.reader import SequenceReader, resume_rows
from lazytab.models.report import ExecutionReport, RowFailure
from lazytab.models.sort import ExternalSortComparator, external_sort
from lazytab.models.table import Table


def table(
    path: Any,
    *,
    have_header: bool = True,
    batch_size: int = DEFAULT_BATCH_SIZE,
    options: Optional[Dict[str, Any]] = None,
) -> Table:
    """Open a CSV file as a lazy table."""
    return Table(path, have_header=have_header, batch_size=batch_size, options=options)


__all__ = [
    "ComputeOptions",
    "ExecutionReport",
    "ExternalSortComparator",
    "JoinedTable",
    "LazyTabError",
    "LocalBackend",
    "OperationError",
    "Plan",
    "RowFailure",
    "SchemaError",
    "SequenceReader",
    "Table",
    "compute",
    "external_sort",
    "inner_join",
    "left_join",
    "resume_rows",
    "right_join",
    "rolling_join_backward",
    "rolling_join_forward",
    "table",
]
