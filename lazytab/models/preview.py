from __future__ import annotations

import logging
from itertools import islice
from typing import Any, Dict, Iterator, List, Tuple

from lazytab.errors import LazyTabError, OperationError, SchemaError
from lazytab.models.plan import Plan
from lazytab.models.stages import GroupAccumulator, JoinIndex, group_record, side_records

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10
DEFAULT_RETURN_SIZE = 10


def run_sample(plan: Plan, sample_size: int) -> Iterator[Tuple[Any, ...]]:
    """Evaluate ``plan`` over the first ``sample_size`` rows of each input, in memory."""
    if plan.kind == "join":
        jp = plan.join
        index = JoinIndex(jp)
        for rec in side_records(jp.build, jp.build.source.sample(sample_size)):
            index.add(rec)
        index.seal()
        for rec in side_records(jp.probe, jp.probe.source.sample(sample_size)):
            yield from index.probe(rec)
        return

    rows = (plan.program.run(v) for v in plan.source.sample(sample_size))
    if plan.kind == "aggregate":
        acc = GroupAccumulator(plan.group)
        for row in rows:
            if row is not None:
                acc.add(*group_record(plan.group, row))
        yield from acc.results()
        return

    for row in rows:
        if row is not None:
            yield plan.project(row)


def preview(
    obj: Any,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    return_size: int = DEFAULT_RETURN_SIZE,
    formatted: bool = False,
) -> List[Dict[str, Any]]:
    """Run the whole current pipeline on a bounded sample, without the backend.

    ``obj`` is a Table or JoinedTable. Returns up to ``return_size`` rows as
    ``{column: value}`` dicts.
    """
    for name, v in (("sample_size", sample_size), ("return_size", return_size)):
        if isinstance(v, bool) or not isinstance(v, int) or v < 0:
            raise SchemaError(
                "E_PREVIEW_ARGS",
                f"Arguments passed to preview must be non-negative integers ({name}={v!r}).",
            )
    plan = obj.plan(formatted=formatted)
    return [dict(zip(plan.names, r)) for r in islice(run_sample(plan, sample_size), return_size)]


def error_predetect(obj: Any, msg: str) -> None:
    """Dry-run ``obj`` and turn any failure into an OperationError mentioning ``msg``."""
    try:
        preview(obj)
    except LazyTabError as e:
        raise OperationError(
            "E_PREVIEW",
            f"{msg} (original error: {e.message})",
            hint=e.hint,
        ) from e
    except Exception as e:
        logger.debug("preview failed: %r", e)
        raise OperationError(
            "E_PREVIEW",
            f"{msg} (original error: {type(e).__name__}: {e})",
            hint="The dry run on the first rows failed; check the function and the column types it receives.",
        ) from e
