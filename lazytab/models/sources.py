from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Dict, Iterator, List, Optional, Tuple

import petl as etl
from frictionless import Detector, Resource

from lazytab.coltypes import tag_from_frictionless
from lazytab.errors import OperationError, SchemaError
from lazytab.util import _as_path_str, _check_duplicate_names, _generate_col_names, _infer_type_from_uri

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Source:
    """A delimited text file read lazily through petl.

    ``options`` are passed to ``petl.fromcsv`` (delimiter, encoding, ...).
    Without a header row, columns are named ``Col_1 .. Col_n``.
    """

    uri: str
    have_header: bool = True
    options: Dict[str, Any] = field(default_factory=dict)

    _columns: Optional[Tuple[str, ...]] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        uri = _as_path_str(self.uri, code="E_SOURCE_URI_TYPE", what="Source uri")
        object.__setattr__(self, "uri", uri)

        if _infer_type_from_uri(uri) is None and not self.options.get("delimiter"):
            raise SchemaError(
                "E_SOURCE_TYPE_INFER",
                f"Could not infer a delimited file type from uri='{uri}'.",
                hint="Use a .csv/.tsv/.txt file, or pass options={'delimiter': ','}.",
            )
        if not isinstance(self.have_header, bool):
            raise SchemaError("E_SOURCE_HEADER", "have_header must be a boolean.")
        if not os.path.isfile(uri):
            raise OperationError(
                "E_SOURCE_NOT_FOUND",
                f"Source file not found: '{uri}'.",
                hint="Check the path, or the working directory the pipeline runs from.",
            )

    # ---------- PETL table (lazy) ----------
    def table(self):
        """Return the PETL table; reading happens on iteration."""
        if not os.path.isfile(self.uri):
            raise OperationError(
                "E_SOURCE_NOT_FOUND",
                f"Source file not found: '{self.uri}'.",
                hint="The file was moved or deleted after the table was opened.",
            )
        return etl.fromcsv(self.uri, **self.options)

    def columns(self) -> List[str]:
        if self._columns is None:
            try:
                first = list(etl.header(self.table()))
            except StopIteration:
                first = []
            except OSError as e:
                raise OperationError(
                    "E_SOURCE_READ",
                    f"Could not read header of '{self.uri}': {e}",
                    hint="Check file permissions and CSV options (delimiter/encoding).",
                ) from e
            names = list(first) if self.have_header else _generate_col_names(len(first))
            object.__setattr__(self, "_columns", tuple(_check_duplicate_names(names)))
        return list(self._columns)

    def rows(self) -> Iterator[Tuple[Any, ...]]:
        """Data rows as tuples, header excluded."""
        it = iter(self.table())
        if self.have_header:
            next(it, None)
        for row in it:
            yield tuple(row)

    def head(self, n: int) -> List[Tuple[Any, ...]]:
        """First ``n`` raw rows of the file, header row included when present."""
        # petl yields the first line as the header row, so the raw lines are just a slice
        return [tuple(r) for r in islice(iter(self.table()), n)]

    def sample(self, n: int) -> List[Tuple[Any, ...]]:
        return list(islice(self.rows(), n))

    def file_size(self) -> int:
        return os.path.getsize(self.uri)

    # --- peek to see the schema ---
    def peek_schema(self, *, sample_rows: int = 200) -> Dict[str, str]:
        """Suggest a type tag per column from a bounded frictionless inference."""
        try:
            detector = Detector(sample_size=sample_rows)
            resource = Resource(path=self.uri, detector=detector)
            resource.infer()
            desc = resource.to_descriptor()
        except Exception as e:
            raise OperationError(
                "E_SCHEMA_INFER",
                f"Schema inference failed for '{self.uri}': {e}",
                hint="Declare the types yourself with set_type(column, type).",
            ) from e
        fields = (desc.get("schema") or {}).get("fields") or []
        inferred = [tag_from_frictionless(f.get("type")) for f in fields if isinstance(f, dict)]
        names = self.columns()
        return {n: inferred[i] if i < len(inferred) else "string" for i, n in enumerate(names)}

    def __str__(self) -> str:
        return f'Source("{self.uri}")  header={self.have_header}'
