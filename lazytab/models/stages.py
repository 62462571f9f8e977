"""Per-stage row logic shared by the preview dry run and the execution backend."""
from __future__ import annotations

from bisect import bisect_left, bisect_right
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from lazytab.models.aggregate import GroupAggregatePlan

if TYPE_CHECKING:  # pragma: no cover
    from lazytab.models.join import JoinPlan, JoinSide

JoinRecord = Tuple[Tuple[Any, ...], Any, Tuple[Any, ...]]


# ---------- group / aggregate ----------
def group_record(plan: GroupAggregatePlan, row: Sequence[Any]) -> Tuple[Tuple[Any, ...], Tuple[Any, ...]]:
    """Cut a pipeline row down to the carried columns and compute its group key."""
    carried = tuple(row[s] for s in plan.index)
    key = tuple(
        c(carried[p]) if c is not None else carried[p]
        for p, c in zip(plan.key_positions, plan.collations)
    )
    return key, carried


class GroupAccumulator:
    """Collects the values each aggregate needs, per group, in first-seen group order."""

    def __init__(self, plan: GroupAggregatePlan):
        self.plan = plan
        self._groups: Dict[Tuple[Any, ...], List[List[Any]]] = {}

    def add(self, key: Tuple[Any, ...], carried: Tuple[Any, ...]) -> None:
        columns = self._groups.get(key)
        if columns is None:
            columns = self._groups[key] = [[] for _ in self.plan.aggregates]
        for values, (_, pos) in zip(columns, self.plan.aggregates):
            values.append(carried[pos])

    def __len__(self) -> int:
        return len(self._groups)

    def _key_values(self, key: Tuple[Any, ...]) -> List[Any]:
        out = []
        for value, pos, collation in zip(key, self.plan.key_positions, self.plan.collations):
            fmt = self.plan.formatters.get(pos)
            out.append(fmt(value) if fmt is not None and collation is None else value)
        return out

    def groups(self) -> List[Tuple[Tuple[Any, ...], List[List[Any]]]]:
        # a whole-table aggregate over no rows still produces one row
        if self.plan.whole_table and not self._groups:
            self._groups[()] = [[] for _ in self.plan.aggregates]
        return list(self._groups.items())

    def finish(self, key: Tuple[Any, ...], columns: List[List[Any]]) -> Tuple[Any, ...]:
        plan = self.plan
        full = self._key_values(key) + [func(vals) for (func, _), vals in zip(plan.aggregates, columns)]
        return tuple(full[i] for i in plan.write_index)

    def results(self) -> Iterator[Tuple[Any, ...]]:
        for key, columns in self.groups():
            yield self.finish(key, columns)


# ---------- join ----------
def _has_null(key: Tuple[Any, ...]) -> bool:
    return any(k is None for k in key)


class JoinIndex:
    """In-memory index over (one partition of) the build side of a join."""

    def __init__(self, plan: JoinPlan):
        self.plan = plan
        self.asof = plan.kind.startswith("asof")
        self._rows: Dict[Tuple[Any, ...], List[Tuple[Any, ...]]] = {}
        self._rolls: Dict[Tuple[Any, ...], List[Any]] = {}

    def add(self, record: JoinRecord) -> None:
        key, roll, values = record
        if _has_null(key):
            return
        if self.asof:
            if roll is None:
                return
            self._rows.setdefault(key, []).append((roll, values))
        else:
            self._rows.setdefault(key, []).append(values)

    def seal(self) -> "JoinIndex":
        if self.asof:
            for key, entries in self._rows.items():
                entries.sort(key=lambda e: e[0])
                self._rolls[key] = [e[0] for e in entries]
        return self

    def _nearest(self, key: Tuple[Any, ...], roll: Any) -> Optional[Tuple[Any, ...]]:
        rolls = self._rolls.get(key)
        if not rolls or roll is None:
            return None
        if self.plan.kind == "asof_forward":
            i = bisect_left(rolls, roll)
        else:
            i = bisect_right(rolls, roll) - 1
        if i < 0 or i >= len(rolls):
            return None
        build_roll, values = self._rows[key][i]
        if not self.plan.within_limit(roll, build_roll):
            return None
        return values

    def probe(self, record: JoinRecord) -> Iterator[Tuple[Any, ...]]:
        plan = self.plan
        key, roll, values = record
        if self.asof:
            match = None if _has_null(key) else self._nearest(key, roll)
            if match is not None:
                yield plan.assemble(values, match)
            elif plan.pads_unmatched:
                yield plan.assemble(values, None)
            return
        matches = () if _has_null(key) else self._rows.get(key, ())
        for m in matches:
            yield plan.assemble(values, m)
        if not matches and plan.pads_unmatched:
            yield plan.assemble(values, None)


def side_records(side: JoinSide, rows: Iterable[Sequence[Any]]) -> Iterator[JoinRecord]:
    """Run a side's pipeline over raw rows and yield its join records."""
    for values in rows:
        row = side.program.run(values)
        if row is not None:
            yield side.record(row)
