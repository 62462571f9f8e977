from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from lazytab.errors import SchemaError

MAX_WORKERS = 8
DEFAULT_BATCH_SIZE = 300


def _names_tuple(value: Any, *, what: str) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) and v for v in value):
        raise SchemaError(
            "E_OPTIONS_COLUMNS",
            f"{what} must be a column name or a list of column names.",
            hint=f"Example: {what}=['Employee', 'Salary']",
        )
    return tuple(value)


def check_batch_size(batch_size: Any) -> int:
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise SchemaError(
            "E_OPTIONS_BATCH_SIZE",
            f"batch_size must be a positive integer, got {batch_size!r}.",
            hint=f"The default is {DEFAULT_BATCH_SIZE}.",
        )
    return batch_size


@dataclass(frozen=True)
class ComputeOptions:
    """Per-evaluation settings, validated up front.

    ``select`` and ``exclude`` are mutually exclusive.
    """

    num_workers: int = 1
    raise_on_error: bool = False
    preserve_order: bool = True
    select: Optional[Tuple[str, ...]] = None
    exclude: Optional[Tuple[str, ...]] = None
    tempdir: Optional[str] = None

    def __post_init__(self) -> None:
        nw = self.num_workers
        if isinstance(nw, bool) or not isinstance(nw, int) or nw < 1:
            raise SchemaError(
                "E_OPTIONS_WORKERS",
                f"Number of workers should be a positive integer, got {nw!r}.",
            )
        if nw > MAX_WORKERS:
            raise SchemaError(
                "E_OPTIONS_WORKERS",
                f"Max number of worker nodes is {MAX_WORKERS}, got {nw}.",
                hint=f"Use num_workers between 1 and {MAX_WORKERS}.",
            )
        for name in ("raise_on_error", "preserve_order"):
            if not isinstance(getattr(self, name), bool):
                raise SchemaError("E_OPTIONS_FLAG", f"{name} must be a boolean.")
        object.__setattr__(self, "select", _names_tuple(self.select, what="select"))
        object.__setattr__(self, "exclude", _names_tuple(self.exclude, what="exclude"))
        if self.select is not None and self.exclude is not None:
            raise SchemaError(
                "E_OPTIONS_SELECT_EXCLUDE",
                "Can only specify either select or exclude, not both.",
                hint="Use select=[...] to keep columns, or exclude=[...] to drop them.",
            )
        if self.select is not None and not self.select:
            raise SchemaError("E_SELECT_EMPTY", "Must select at least 1 column.")

    def resolve_select(self, names: Sequence[str]) -> Optional[List[str]]:
        """Turn select/exclude into an explicit column list, or None for all columns."""
        if self.select is not None:
            return list(self.select)
        if self.exclude is not None:
            kept = [n for n in names if n not in self.exclude]
            if not kept:
                raise SchemaError("E_SELECT_EMPTY", "Must select at least 1 column.",
                                  hint="exclude removed every column.")
            return kept
        return None
