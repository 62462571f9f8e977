"""Built-in aggregate functions.

An aggregate receives the list of (parsed) values of one column within a group
and returns a single value. ``None`` values are skipped by the numeric helpers.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Union

from lazytab.errors import SchemaError


def _present(values: List[Any]) -> List[Any]:
    return [v for v in values if v is not None]


def agg_min(values: List[Any]) -> Any:
    vals = _present(values)
    return min(vals) if vals else None


def agg_max(values: List[Any]) -> Any:
    vals = _present(values)
    return max(vals) if vals else None


def agg_sum(values: List[Any]) -> Any:
    vals = _present(values)
    return sum(vals) if vals else None


def agg_avg(values: List[Any]) -> Any:
    vals = _present(values)
    return sum(vals) / len(vals) if vals else None


def agg_count(values: List[Any]) -> int:
    return len(_present(values))


def agg_first(values: List[Any]) -> Any:
    return values[0] if values else None


def agg_last(values: List[Any]) -> Any:
    return values[-1] if values else None


AGGREGATE_REGISTRY: Dict[str, Callable[[List[Any]], Any]] = {
    "min": agg_min,
    "max": agg_max,
    "sum": agg_sum,
    "avg": agg_avg,
    "mean": agg_avg,
    "count": agg_count,
    "first": agg_first,
    "last": agg_last,
}


def resolve_aggregate(func: Union[str, Callable[[List[Any]], Any]]) -> Callable[[List[Any]], Any]:
    if callable(func):
        return func
    if isinstance(func, str) and func in AGGREGATE_REGISTRY:
        return AGGREGATE_REGISTRY[func]
    raise SchemaError(
        "E_AGGREGATE_FUNC",
        f"Unknown aggregate function {func!r}.",
        hint="Use a callable taking a list of values, or one of: " + ", ".join(sorted(AGGREGATE_REGISTRY)) + ".",
    )


def aggregate_label(func: Union[str, Callable[..., Any]]) -> str:
    if isinstance(func, str):
        return func
    name = getattr(func, "__name__", None) or type(func).__name__
    return name[4:] if name.startswith("agg_") else name
