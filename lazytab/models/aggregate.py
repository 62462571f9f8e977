from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from lazytab.errors import SchemaError
from lazytab.models.catalog import ColumnCatalog
from lazytab.models.rows import RowPipelineDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupAggregatePlan:
    """Index algebra for one group-by/aggregate evaluation.

    Rows entering the group stage are cut down to ``index`` (sorted source
    slots). ``key_positions`` and each aggregate's position refer to that
    reduced row. A finished group produces ``keys ++ aggregate results`` and
    ``write_index`` picks the output columns from it in ``select`` order.
    """

    index: Tuple[int, ...]
    key_positions: Tuple[int, ...]
    collations: Tuple[Optional[Callable[[Any], Any]], ...]
    aggregates: Tuple[Tuple[Callable[[List[Any]], Any], int], ...]
    write_index: Tuple[int, ...]
    names: Tuple[str, ...]
    formatters: Dict[int, Callable[[Any], Any]] = field(default_factory=dict)

    @property
    def whole_table(self) -> bool:
        return not self.key_positions

    def describe(self) -> Dict[str, Any]:
        return {
            "index": list(self.index),
            "key_positions": list(self.key_positions),
            "aggregates": [[getattr(f, "__name__", str(f)), p] for f, p in self.aggregates],
            "write_index": list(self.write_index),
            "names": list(self.names),
            "formatted_positions": sorted(self.formatters),
        }


class GroupAggregateIndexer:
    """Computes the post-aggregate schema and the column remap for the group stage."""

    def __init__(self, catalog: ColumnCatalog, rows: RowPipelineDescriptor):
        self.catalog = catalog
        self.rows = rows

    def key_names(self) -> List[str]:
        return [self.catalog.slots[k.slot].name for k in self.rows.groupby_keys]

    def col_names(self) -> List[str]:
        """The virtual output schema: group-by keys in order, then aggregate names."""
        return self.key_names() + self.rows.aggregate_names()

    def _select_positions(self, select: Optional[Sequence[str]]) -> List[int]:
        names = self.col_names()
        if select is None:
            return list(range(len(names)))
        positions = []
        missing = []
        for s in select:
            if s in names:
                positions.append(names.index(s))
            else:
                missing.append(s)
        if missing:
            raise SchemaError(
                "E_SELECT_UNKNOWN",
                f"Selected column(s) {missing} are not produced by the group-by/aggregate.",
                hint="Available columns: " + ", ".join(names),
            )
        return positions

    def plan(self, select: Optional[Sequence[str]] = None) -> GroupAggregatePlan:
        keys = self.rows.groupby_keys
        aggs = self.rows.aggregates
        if not aggs and not keys:
            raise SchemaError(
                "E_AGGREGATE_EMPTY",
                "There is no group-by or aggregate to plan.",
                hint="Call aggregate(...) before computing an aggregate result.",
            )
        nkeys = len(keys)
        positions = self._select_positions(select)
        if not positions:
            raise SchemaError("E_SELECT_EMPTY", "Must select at least 1 column.")

        dead_keys = [self.catalog.slots[k.slot].name for k in keys if not self.catalog.is_live(k.slot)]
        if dead_keys:
            raise SchemaError(
                "E_GROUPBY_DELETED",
                f"Group-by key(s) {dead_keys} were deleted after group_by was declared.",
                hint="Group by columns that remain in the table.",
            )

        # aggregates actually needed, in first-selected order
        data_index: List[int] = []
        for p in positions:
            if p >= nkeys and (p - nkeys) not in data_index:
                data_index.append(p - nkeys)
        selected = [aggs[i] for i in data_index]
        dead_sources = [a.new_name for a in selected if not self.catalog.is_live(a.source)]
        if dead_sources:
            raise SchemaError(
                "E_AGGREGATE_DELETED",
                f"Aggregate(s) {dead_sources} read from a column deleted after aggregate was declared.",
                hint="Aggregate columns that remain in the table.",
            )

        index = sorted(set([k.slot for k in keys] + [a.source for a in selected]))
        remap = {slot: pos for pos, slot in enumerate(index)}
        key_positions = tuple(remap[k.slot] for k in keys)
        aggregates = tuple((a.func, remap[a.source]) for a in selected)
        write_index = tuple(p if p < nkeys else nkeys + data_index.index(p - nkeys) for p in positions)
        names = self.col_names()
        formatters = {remap[slot]: fmt for slot, fmt in self.catalog.formatters().items() if slot in remap}

        logger.debug("group plan index=%s keys=%s write=%s", index, key_positions, write_index)
        return GroupAggregatePlan(
            index=tuple(index),
            key_positions=key_positions,
            collations=tuple(k.collation for k in keys),
            aggregates=aggregates,
            write_index=write_index,
            names=tuple(names[p] for p in positions),
            formatters=formatters,
        )
