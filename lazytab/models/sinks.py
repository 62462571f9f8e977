from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, Sequence

import petl as etl

from lazytab.errors import OperationError, SchemaError
from lazytab.util import _as_path_str, _infer_type_from_uri


class _RowsView:
    """A one-shot petl table: header row first, then the streamed data rows."""

    def __init__(self, header: Sequence[str], rows: Iterable[Sequence[Any]]):
        self.header = tuple(header)
        self.rows = rows
        self.count = 0

    def __iter__(self) -> Iterator[Sequence[Any]]:
        yield self.header
        for r in self.rows:
            self.count += 1
            yield r


@dataclass(frozen=True)
class Sink:
    """CSV output file; the header row is written before any data row."""

    uri: str
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        uri = _as_path_str(self.uri, code="E_SINK_URI_TYPE", what="Output path")
        object.__setattr__(self, "uri", uri)
        if _infer_type_from_uri(uri) is None and not self.options.get("delimiter"):
            raise SchemaError(
                "E_SINK_TYPE_INFER",
                f"Could not infer a delimited file type from uri='{uri}'.",
                hint="Write to a .csv/.tsv/.txt file, or pass options={'delimiter': ','}.",
            )

        # Fail fast: ensure the output directory exists and is writable before running the pipeline.
        parent = os.path.dirname(uri) or "."
        if not os.path.isdir(parent):
            raise OperationError(
                "E_SINK_DIR_NOT_FOUND",
                f"Output directory does not exist: '{parent}'.",
                hint="Create the directory or choose a different output path.",
            )
        if not os.access(parent, os.W_OK):
            raise OperationError(
                "E_SINK_NOT_WRITABLE",
                f"Output directory is not writable: '{parent}'.",
                hint="Check permissions or choose a different output location.",
            )

    def write(self, header: Sequence[str], rows: Iterable[Sequence[Any]]) -> int:
        """Stream ``rows`` to the file under ``header``; returns the number of data rows."""
        view = _RowsView(header, rows)
        try:
            etl.tocsv(etl.wrap(view), self.uri, **self.options)
        except PermissionError as e:
            raise OperationError(
                "E_SINK_NOT_WRITABLE",
                f"Cannot write to '{self.uri}'.",
                hint="Check permissions or choose a different output location.",
            ) from e
        except OSError as e:
            raise OperationError(
                "E_SINK_WRITE",
                f"Could not write sink '{self.uri}': {type(e).__name__}: {e}",
                hint="Check file permissions and Sink options (delimiter/encoding).",
            ) from e
        return view.count

    def __str__(self) -> str:
        return f'Sink("{self.uri}")'
