from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from lazytab.config import ComputeOptions
from lazytab.errors import SchemaError
from lazytab.models.plan import Plan
from lazytab.models.preview import error_predetect, preview as _preview
from lazytab.models.program import RowProgram, build_row_program
from lazytab.models.sort import _compare_values
from lazytab.models.sources import Source
from lazytab.models.table import Table
from lazytab.util import _key_specs

logger = logging.getLogger(__name__)

JOIN_KINDS = ("inner", "left", "right", "asof_forward", "asof_backward")


@dataclass(frozen=True)
class JoinSide:
    """What the backend needs from one input of a join."""

    source: Source
    program: RowProgram
    key_slots: Tuple[int, ...]
    collations: Tuple[Optional[Callable[[Any], Any]], ...]
    carry: Tuple[int, ...]
    formatters: Tuple[Optional[Callable[[Any], Any]], ...]
    roll: Optional[int] = None
    batch_size: int = 300

    def key(self, row: Sequence[Any]) -> Tuple[Any, ...]:
        return tuple(c(row[s]) if c is not None else row[s] for s, c in zip(self.key_slots, self.collations))

    def project(self, row: Sequence[Any]) -> Tuple[Any, ...]:
        return tuple(f(row[s]) if f is not None else row[s] for s, f in zip(self.carry, self.formatters))

    def record(self, row: Sequence[Any]) -> Tuple[Tuple[Any, ...], Any, Tuple[Any, ...]]:
        """``(key, roll value, projected output values)`` for one pipeline row."""
        return self.key(row), (row[self.roll] if self.roll is not None else None), self.project(row)


@dataclass(frozen=True)
class JoinPlan:
    """Frozen join description.

    ``a`` and ``b`` are the sides in output order. For inner joins the smaller
    file is the build side (``build_is_a``); that choice never changes which
    columns or rows come out. ``write_index`` maps the concatenated
    a-then-b carried values onto the requested output order.
    """

    kind: str
    a: JoinSide
    b: JoinSide
    build_is_a: bool
    limit: Any
    drop_unmatched: bool
    write_index: Tuple[int, ...]
    names: Tuple[str, ...]

    @property
    def probe(self) -> JoinSide:
        return self.b if self.build_is_a else self.a

    @property
    def build(self) -> JoinSide:
        return self.a if self.build_is_a else self.b

    @property
    def pads_unmatched(self) -> bool:
        if self.kind == "left":
            return True
        if self.kind.startswith("asof"):
            return not self.drop_unmatched
        return False

    def assemble(self, probe_vals: Optional[Tuple[Any, ...]], build_vals: Optional[Tuple[Any, ...]]) -> Tuple[Any, ...]:
        if build_vals is None:
            build_vals = (None,) * len(self.build.carry)
        if self.build_is_a:
            combined = build_vals + probe_vals
        else:
            combined = probe_vals + build_vals
        return tuple(combined[i] for i in self.write_index)

    def within_limit(self, probe_roll: Any, build_roll: Any) -> bool:
        if self.limit is None:
            return True
        gap = build_roll - probe_roll if self.kind == "asof_forward" else probe_roll - build_roll
        return gap <= self.limit

    def describe(self) -> Dict[str, Any]:
        def side(s: JoinSide) -> Dict[str, Any]:
            return {
                "source": s.source.uri,
                "keys": list(s.key_slots),
                "carry": list(s.carry),
                "roll": s.roll,
                "steps": s.program.describe(),
            }

        return {
            "kind": self.kind,
            "build_side": "a" if self.build_is_a else "b",
            "limit": self.limit if not isinstance(self.limit, timedelta) else str(self.limit),
            "drop_unmatched": self.drop_unmatched,
            "write_index": list(self.write_index),
            "a": side(self.a),
            "b": side(self.b),
        }


class JoinPlanner:
    """Validates a join between two tables and computes its schema and index remap."""

    def __init__(
        self,
        a: Any,
        b: Any,
        a_keys: Any,
        b_keys: Any,
        *,
        kind: str = "inner",
        a_roll: Optional[str] = None,
        b_roll: Optional[str] = None,
        limit: Any = None,
        col_prefix: Sequence[str] = ("1", "2"),
        drop_unmatched: bool = False,
    ):
        if not (isinstance(a, Table) and isinstance(b, Table)):
            raise SchemaError(
                "E_JOIN_INPUT",
                "First two arguments should be lazytab tables.",
                hint="Open both inputs with lazytab.table('file.csv').",
            )
        if kind not in JOIN_KINDS:
            raise SchemaError("E_JOIN_KIND", f"Unknown join kind {kind!r}.", hint="Kinds: " + ", ".join(JOIN_KINDS))
        for t in (a, b):
            if t.rows.is_aggregate or t.rows.is_grouped:
                raise SchemaError(
                    "E_JOIN_AGGREGATE",
                    f"Table '{t.source.uri}' has group-by/aggregate specs and cannot be joined directly.",
                    hint="Compute the aggregate to a file first, then join that file.",
                )
        a_specs = _key_specs(a_keys, what="join")
        b_specs = _key_specs(b_keys, what="join")
        if len(a_specs) != len(b_specs):
            raise SchemaError(
                "E_JOIN_KEY_COUNT",
                "The length of left keys and right keys should be equal.",
                hint=f"Got {len(a_specs)} left key(s) and {len(b_specs)} right key(s).",
            )
        prefix = list(col_prefix) if isinstance(col_prefix, (list, tuple)) else None
        if prefix is None or len(prefix) != 2 or not all(isinstance(p, str) and p for p in prefix):
            raise SchemaError(
                "E_JOIN_PREFIX",
                "The length of col_prefix should be equal to 2.",
                hint="Example: col_prefix=('left', 'right')",
            )
        if prefix[0] == prefix[1]:
            raise SchemaError("E_JOIN_PREFIX", "The two column prefixes must differ.")

        self.a_key_slots = list(zip([c for c, _ in a_specs], a.catalog.resolve([n for _, n in a_specs])))
        self.b_key_slots = list(zip([c for c, _ in b_specs], b.catalog.resolve([n for _, n in b_specs])))

        self.a_roll = self.b_roll = None
        if kind.startswith("asof"):
            if not (isinstance(a_roll, str) and isinstance(b_roll, str)):
                raise SchemaError("E_JOIN_ROLL", "Rolling keys should be strings.")
            ai, bi = a.catalog.key_index(), b.catalog.key_index()
            if a_roll not in ai or b_roll not in bi:
                raise SchemaError(
                    "E_JOIN_ROLL",
                    "Rolling keys include non-existent column name(s).",
                    hint=f"Left columns: {a.col_names()}; right columns: {b.col_names()}",
                )
            self.a_roll, self.b_roll = ai[a_roll], bi[b_roll]
            self._check_limit(limit)
            self._check_roll_comparable(a, b, a_roll, b_roll, limit)
        elif limit is not None:
            raise SchemaError("E_JOIN_LIMIT", "limit only applies to rolling (as-of) joins.")

        self.a = a
        self.b = b
        self.kind = kind
        self.limit = limit
        self.prefix = prefix
        self.drop_unmatched = drop_unmatched

    @staticmethod
    def _check_limit(limit: Any) -> None:
        if limit is None or isinstance(limit, timedelta):
            return
        if isinstance(limit, bool) or not isinstance(limit, (int, float)) or limit < 0:
            raise SchemaError(
                "E_JOIN_LIMIT",
                f"limit must be a non-negative number or timedelta, got {limit!r}.",
            )

    @staticmethod
    def _check_roll_comparable(a: Table, b: Table, a_roll: str, b_roll: str, limit: Any = None) -> None:
        a_vals = [r[a_roll] for r in a.preview(formatted=False) if r.get(a_roll) is not None]
        b_vals = [r[b_roll] for r in b.preview(formatted=False) if r.get(b_roll) is not None]
        if not a_vals or not b_vals:
            return
        x, y = a_vals[0], b_vals[0]
        try:
            _compare_values(x, y)
        except TypeError as e:
            raise SchemaError(
                "E_JOIN_ROLL_TYPE",
                f"Rolling keys are not comparable: {type(x).__name__} vs {type(y).__name__}.",
                hint="Give both rolling columns the same type with set_type(...).",
            ) from e
        if limit is None:
            return
        # the limit is compared with the gap between two rolling values
        try:
            _ = (y - x) <= limit
        except TypeError as e:
            raise SchemaError(
                "E_JOIN_LIMIT",
                f"limit {limit!r} cannot be compared with the gap between rolling values "
                f"({type(y).__name__} - {type(x).__name__}).",
                hint="Use a number for numeric rolling columns and a datetime.timedelta for dates.",
            ) from e

    def col_names(self) -> List[str]:
        pa, pb = self.prefix
        return [f"{pa}_{n}" for n in self.a.col_names()] + [f"{pb}_{n}" for n in self.b.col_names()]

    def _positions(self, select: Optional[Sequence[str]]) -> List[int]:
        names = self.col_names()
        if select is None:
            return list(range(len(names)))
        missing = [s for s in select if s not in names]
        if missing:
            raise SchemaError(
                "E_SELECT_UNKNOWN",
                f"Selected column(s) {missing} do not exist in the joined table.",
                hint="Available columns: " + ", ".join(names),
            )
        return [names.index(s) for s in select]

    def _side(self, t: Table, keys: List[Tuple[Any, int]], carry: List[int], roll: Optional[int]) -> JoinSide:
        fmts = t.catalog.formatters()
        return JoinSide(
            source=t.source,
            program=build_row_program(t.catalog, t.rows, include_formatters=False),
            key_slots=tuple(s for _, s in keys),
            collations=tuple(c for c, _ in keys),
            carry=tuple(carry),
            formatters=tuple(fmts.get(s) for s in carry),
            roll=roll,
            batch_size=t.batch_size,
        )

    def plan(self, select: Optional[Sequence[str]] = None, *, formatted: bool = True) -> JoinPlan:
        positions = self._positions(select)
        if not positions:
            raise SchemaError("E_SELECT_EMPTY", "Must select at least 1 column.")
        for t, slots in ((self.a, self.a_key_slots), (self.b, self.b_key_slots)):
            dead = [s for _, s in slots if not t.catalog.is_live(s)]
            if dead:
                raise SchemaError(
                    "E_JOIN_KEY_DELETED",
                    f"Join key column(s) of '{t.source.uri}' were deleted after the join was declared.",
                )
        na = len(self.a.col_names())
        a_index = sorted({p for p in positions if p < na})
        b_index = sorted({p - na for p in positions if p >= na})
        concat = a_index + [na + q for q in b_index]
        write_index = tuple(concat.index(p) for p in positions)

        a_live = self.a.catalog.get_col_index()
        b_live = self.b.catalog.get_col_index()
        a_side = self._side(self.a, self.a_key_slots, [a_live[p] for p in a_index], self.a_roll)
        b_side = self._side(self.b, self.b_key_slots, [b_live[q] for q in b_index], self.b_roll)
        if not formatted:
            a_side = _without_formatters(a_side)
            b_side = _without_formatters(b_side)

        # inner joins materialize the smaller file; left-style joins always build b
        build_is_a = False
        if self.kind == "inner":
            build_is_a = self.a.source.file_size() <= self.b.source.file_size()

        names = self.col_names()
        logger.debug("join plan kind=%s build=%s write=%s", self.kind, "a" if build_is_a else "b", write_index)
        return JoinPlan(
            kind=self.kind if self.kind != "right" else "left",
            a=a_side,
            b=b_side,
            build_is_a=build_is_a,
            limit=self.limit,
            drop_unmatched=self.drop_unmatched,
            write_index=write_index,
            names=tuple(names[p] for p in positions),
        )


def _without_formatters(side: JoinSide) -> JoinSide:
    return JoinSide(
        source=side.source,
        program=side.program,
        key_slots=side.key_slots,
        collations=side.collations,
        carry=side.carry,
        formatters=(None,) * len(side.carry),
        roll=side.roll,
        batch_size=side.batch_size,
    )


class JoinedTable:
    """The lazy result of joining two tables."""

    def __init__(self, planner: JoinPlanner):
        self.planner = planner

    @property
    def kind(self) -> str:
        return self.planner.kind

    def col_names(self) -> List[str]:
        return self.planner.col_names()

    def plan(self, options: Optional[ComputeOptions] = None, *, formatted: bool = True) -> Plan:
        options = options or ComputeOptions()
        select = options.resolve_select(self.col_names())
        jplan = self.planner.plan(select, formatted=formatted)
        return Plan(
            kind="join",
            names=jplan.names,
            options=options,
            batch_size=min(self.planner.a.batch_size, self.planner.b.batch_size),
            join=jplan,
        )

    def preview(self, sample_size: int = 10, return_size: int = 10, formatted: bool = False) -> List[Dict[str, Any]]:
        return _preview(self, sample_size, return_size, formatted)

    def explain(self, **options: Any) -> str:
        return self.plan(ComputeOptions(**options)).to_yaml()

    def compute(self, output: Any, **options: Any):
        from lazytab.execution import compute

        return compute(self, output, **options)

    def __str__(self) -> str:
        p = self.planner
        return f"JoinedTable({p.kind}: {p.a.source.uri} x {p.b.source.uri})"


def _joined(planner: JoinPlanner) -> JoinedTable:
    jt = JoinedTable(planner)
    error_predetect(jt, f"invalid arguments passed to {planner.kind} join")
    return jt


def inner_join(a: Table, b: Table, a_keys: Any, b_keys: Any, *, col_prefix: Sequence[str] = ("1", "2")) -> JoinedTable:
    return _joined(JoinPlanner(a, b, a_keys, b_keys, kind="inner", col_prefix=col_prefix))


def left_join(a: Table, b: Table, a_keys: Any, b_keys: Any, *, col_prefix: Sequence[str] = ("1", "2")) -> JoinedTable:
    return _joined(JoinPlanner(a, b, a_keys, b_keys, kind="left", col_prefix=col_prefix))


def right_join(a: Table, b: Table, a_keys: Any, b_keys: Any, *, col_prefix: Sequence[str] = ("1", "2")) -> JoinedTable:
    """Keep every row of ``b``; the result is a left join with sides and prefixes swapped."""
    swapped = list(col_prefix)[::-1] if isinstance(col_prefix, (list, tuple)) else col_prefix
    return _joined(JoinPlanner(b, a, b_keys, a_keys, kind="right", col_prefix=swapped))


def rolling_join_forward(
    a: Table,
    b: Table,
    a_keys: Any,
    b_keys: Any,
    a_roll: str,
    b_roll: str,
    *,
    col_prefix: Sequence[str] = ("1", "2"),
    limit: Any = None,
    drop_unmatched: bool = False,
) -> JoinedTable:
    """Match each row of ``a`` to the nearest ``b`` row with ``b_roll >= a_roll``."""
    return _joined(JoinPlanner(
        a, b, a_keys, b_keys,
        kind="asof_forward", a_roll=a_roll, b_roll=b_roll, limit=limit,
        col_prefix=col_prefix, drop_unmatched=drop_unmatched,
    ))


def rolling_join_backward(
    a: Table,
    b: Table,
    a_keys: Any,
    b_keys: Any,
    a_roll: str,
    b_roll: str,
    *,
    col_prefix: Sequence[str] = ("1", "2"),
    limit: Any = None,
    drop_unmatched: bool = False,
) -> JoinedTable:
    """Match each row of ``a`` to the nearest ``b`` row with ``b_roll <= a_roll``."""
    return _joined(JoinPlanner(
        a, b, a_keys, b_keys,
        kind="asof_backward", a_roll=a_roll, b_roll=b_roll, limit=limit,
        col_prefix=col_prefix, drop_unmatched=drop_unmatched,
    ))
