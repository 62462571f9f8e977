from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from lazytab.coltypes import ColumnType, raw_type, resolve_type
from lazytab.errors import SchemaError
from lazytab.models.operations import OperationPipeline
from lazytab.util import _as_list, _check_duplicate_names

logger = logging.getLogger(__name__)


@dataclass
class ColumnSlot:
    """Metadata for one physical column position.

    Slots are never removed or renumbered; deletion only sets ``deleted``.
    ``source`` is False for columns produced by operate(..., new_col).
    """

    name: str
    type_tag: str = "string"
    parser: Optional[Callable[[Any], Any]] = None
    deleted: bool = False
    source: bool = True


class ColumnCatalog:
    """Per-table registry of column names, types, parsers, formatters and tombstones.

    Physical slots are append-only: slot ``i`` of a source column is field ``i``
    of a CSV row, derived columns get the next free slot. The logical order is a
    separate list of slot ids that reorder_col rewrites. Every derived listing
    (get_col_index, get_col_names, key_index) skips tombstoned slots and is
    cached until the next mutation.
    """

    def __init__(self, names: Sequence[str]):
        names = _check_duplicate_names(list(names))
        self.slots: List[ColumnSlot] = [ColumnSlot(n) for n in names]
        self.order: List[int] = list(range(len(names)))
        self.source_width = len(names)
        self.pipeline = OperationPipeline()
        self._live_cache: Optional[List[int]] = None

    # ---------- derived views ----------
    def _invalidate(self) -> None:
        self._live_cache = None

    def get_col_index(self) -> List[int]:
        """Slot ids of the non-deleted columns, in current logical order."""
        if self._live_cache is None:
            self._live_cache = [s for s in self.order if not self.slots[s].deleted]
        return list(self._live_cache)

    def get_col_names(self) -> List[str]:
        return [self.slots[s].name for s in self.get_col_index()]

    def key_index(self) -> Dict[str, int]:
        """Map live column name -> slot id."""
        return {self.slots[s].name: s for s in self.get_col_index()}

    def col_types(self) -> Dict[str, str]:
        return {self.slots[s].name: self.slots[s].type_tag for s in self.get_col_index()}

    def formatters(self) -> Dict[int, Callable[[Any], Any]]:
        return self.pipeline.formatters()

    def parsers(self) -> Tuple[Optional[Callable[[Any], Any]], ...]:
        return tuple(self.slots[i].parser for i in range(self.source_width))

    @property
    def width(self) -> int:
        return len(self.slots)

    def is_live(self, slot: int) -> bool:
        return 0 <= slot < len(self.slots) and not self.slots[slot].deleted

    def slot_of(self, name: Any) -> int:
        ki = self.key_index()
        if not isinstance(name, str) or name not in ki:
            raise SchemaError(
                "E_UNKNOWN_COL",
                f"Column {name!r} does not exist.",
                hint="Existing columns: " + ", ".join(self.get_col_names()),
            )
        return ki[name]

    def resolve(self, names: Any) -> List[int]:
        names = _as_list(names)
        ki = self.key_index()
        missing = [n for n in names if not isinstance(n, str) or n not in ki]
        if missing:
            raise SchemaError(
                "E_UNKNOWN_COL",
                f"Input includes non-existent column name(s): {missing}.",
                hint="Existing columns: " + ", ".join(self.get_col_names()),
            )
        return [ki[n] for n in names]

    # ---------- types ----------
    def _set_column_type(self, ctype: ColumnType, slot: int) -> None:
        if not self.slots[slot].source:
            raise SchemaError(
                "E_TYPE_DERIVED",
                f"Column {self.slots[slot].name!r} is produced by an operation and is not parsed from the file.",
                hint="Convert its value inside the operation that produces it.",
            )
        self.slots[slot].type_tag = ctype.tag
        self.slots[slot].parser = ctype.parse

    def set_type(self, type_tag: str, col: str) -> None:
        ctype = resolve_type(type_tag)
        slot = self.slot_of(col)
        self._set_column_type(ctype, slot)
        self.pipeline.set_formatter(slot, ctype.format)
        logger.debug("set_type %s -> %s (slot %d)", col, ctype.tag, slot)

    def set_parser(self, parser: Callable[[Any], Any], col: str) -> None:
        ctype = raw_type(parser)
        slot = self.slot_of(col)
        self._set_column_type(ctype, slot)
        self.pipeline.drop_formatter(slot)

    def set_formatter(self, formatter: Callable[[Any], Any], col: str) -> None:
        if not callable(formatter):
            raise SchemaError("E_FORMATTER_TYPE", "A formatter must be callable.")
        self.pipeline.set_formatter(self.slot_of(col), formatter)

    # ---------- operations ----------
    def operate(self, func: Callable[..., Any], cols: Any, new_col: Optional[str] = None) -> int:
        """Append ``func`` over ``cols`` to the operation pipeline.

        Without ``new_col`` the single input column is replaced in place.
        With ``new_col`` a fresh column slot is appended. Returns the output slot.
        """
        if not callable(func):
            raise SchemaError(
                "E_OPERATE_FUNC",
                "operate expects a callable.",
                hint="Example: table.operate(lambda s: s * 2, 'Salary')",
            )
        inputs = self.resolve(cols)
        if new_col is None:
            if len(inputs) != 1:
                raise SchemaError(
                    "E_OPERATE_INPLACE",
                    "An in-place operation takes exactly one column.",
                    hint="To combine several columns, give a new column name: operate(fn, ['a', 'b'], 'c').",
                )
            output = inputs[0]
        else:
            if not isinstance(new_col, str) or not new_col:
                raise SchemaError("E_OPERATE_NEW_COL", "New column should be a non-empty string.")
            if new_col in self.key_index():
                raise SchemaError(
                    "E_OPERATE_NEW_COL",
                    f"New column {new_col!r} already exists.",
                    hint="Pick a fresh name, or omit it to replace the column in place.",
                )
            self.slots.append(ColumnSlot(new_col, type_tag="raw", source=False))
            output = len(self.slots) - 1
            self.order.append(output)
            self._invalidate()
        self.pipeline.append(func, tuple(inputs), output)
        logger.debug("operate %s%s -> slot %d", getattr(func, "__name__", func), inputs, output)
        return output

    # ---------- layout ----------
    def del_col(self, cols: Any) -> None:
        slots = self.resolve(cols)
        for s in slots:
            self.slots[s].deleted = True
        self._invalidate()

    def reorder_col(self, names: Sequence[str]) -> None:
        names = list(names)
        live = self.get_col_names()
        if len(names) != len(live) or set(names) != set(live):
            raise SchemaError(
                "E_REORDER_COLS",
                "The new column order must list every existing column exactly once.",
                hint="Existing columns: " + ", ".join(live),
            )
        ki = self.key_index()
        tombstones = [s for s in self.order if self.slots[s].deleted]
        self.order = [ki[n] for n in names] + tombstones
        self._invalidate()

    def rename_col(self, names: Sequence[str]) -> None:
        names = list(names)
        live = self.get_col_index()
        if len(names) != len(live):
            raise SchemaError(
                "E_RENAME_COUNT",
                f"Number of new column names ({len(names)}) not equal to number of existing columns ({len(live)}).",
                hint="Existing columns: " + ", ".join(self.get_col_names()),
            )
        if not all(isinstance(n, str) and n for n in names):
            raise SchemaError("E_RENAME_NAMES", "New column names must be non-empty strings.")
        _check_duplicate_names(names)
        for s, n in zip(live, names):
            self.slots[s].name = n
        self._invalidate()

    def clone(self) -> "ColumnCatalog":
        """Independent copy used to roll a table back after a failed builder call."""
        other = copy.copy(self)
        other.slots = [replace(s) for s in self.slots]
        other.order = list(self.order)
        other.pipeline = self.pipeline.clone()
        other._live_cache = None
        return other

    def __repr__(self) -> str:
        return f"ColumnCatalog({self.get_col_names()!r})"
