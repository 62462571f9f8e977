from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from lazytab.util import _func_name


@dataclass(frozen=True)
class RowFilter:
    """Keep a row when ``predicate(*row[columns])`` is truthy.

    ``position`` is the number of operations that had been appended when the
    filter was declared; the filter runs right after those operations.
    """

    columns: Tuple[int, ...]
    predicate: Callable[..., Any]
    position: int = 0

    def __str__(self) -> str:
        return f"filter {_func_name(self.predicate)}{list(self.columns)} @ {self.position}"


@dataclass(frozen=True)
class GroupKey:
    slot: int
    collation: Optional[Callable[[Any], Any]] = None


@dataclass(frozen=True)
class AggregateSpec:
    func: Callable[[List[Any]], Any]
    source: int
    new_name: str


@dataclass
class RowPipelineDescriptor:
    """Filters, group-by keys and aggregate specs attached to a table."""

    filters: List[RowFilter] = field(default_factory=list)
    groupby_keys: List[GroupKey] = field(default_factory=list)
    aggregates: List[AggregateSpec] = field(default_factory=list)

    def add_filter(self, columns: Tuple[int, ...], predicate: Callable[..., Any], position: int) -> RowFilter:
        f = RowFilter(tuple(columns), predicate, position)
        self.filters.append(f)
        return f

    def set_groupby(self, keys: List[GroupKey]) -> None:
        # a new group-by replaces the previous one
        self.groupby_keys = list(keys)

    def add_aggregate(self, func: Callable[[List[Any]], Any], source: int, new_name: str) -> AggregateSpec:
        spec = AggregateSpec(func, source, new_name)
        self.aggregates.append(spec)
        return spec

    def clone(self) -> "RowPipelineDescriptor":
        return RowPipelineDescriptor(list(self.filters), list(self.groupby_keys), list(self.aggregates))

    def aggregate_names(self) -> List[str]:
        return [a.new_name for a in self.aggregates]

    @property
    def is_aggregate(self) -> bool:
        return bool(self.aggregates)

    @property
    def is_grouped(self) -> bool:
        return bool(self.groupby_keys)
