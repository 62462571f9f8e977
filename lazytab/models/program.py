from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from lazytab.models.catalog import ColumnCatalog
from lazytab.models.operations import Operation
from lazytab.models.rows import RowFilter, RowPipelineDescriptor

Step = Union[Operation, RowFilter]


@dataclass(frozen=True)
class RowProgram:
    """The frozen per-row operator list of one table.

    ``run`` parses the source fields, then executes operations and filters in
    declaration order. It returns the full slot vector, or None when a filter
    rejected the row.
    """

    parsers: Tuple[Optional[Callable[[Any], Any]], ...]
    width: int
    steps: Tuple[Step, ...]

    def run(self, values: Sequence[Any]) -> Optional[List[Any]]:
        n = len(self.parsers)
        row = list(values[:n])
        if len(row) < n:
            row.extend([None] * (n - len(row)))
        for i, parse in enumerate(self.parsers):
            if parse is not None:
                row[i] = parse(row[i])
        row.extend([None] * (self.width - n))
        for step in self.steps:
            if isinstance(step, RowFilter):
                if not step.predicate(*[row[c] for c in step.columns]):
                    return None
            else:
                row[step.output] = step.func(*[row[i] for i in step.inputs])
        return row

    def describe(self) -> List[str]:
        parsed = [i for i, p in enumerate(self.parsers) if p is not None]
        out = [f"parse {parsed}"] if parsed else []
        return out + [str(s) for s in self.steps]


def build_row_program(
    catalog: ColumnCatalog,
    rows: RowPipelineDescriptor,
    *,
    include_formatters: bool,
) -> RowProgram:
    """Interleave filters with the operations they were declared between.

    A filter declared after ``p`` operations runs right after operation ``p``.
    Formatters, when included, come after every operation and filter.
    """
    ops = catalog.pipeline.finalize(include_formatters=include_formatters)
    user_ops = [o for o in ops if not o.formatter]
    fmt_ops = [o for o in ops if o.formatter]
    by_pos: Dict[int, List[RowFilter]] = {}
    for f in rows.filters:
        by_pos.setdefault(min(f.position, len(user_ops)), []).append(f)

    steps: List[Step] = []
    for i in range(len(user_ops) + 1):
        steps.extend(by_pos.get(i, []))
        if i < len(user_ops):
            steps.append(user_ops[i])
    steps.extend(fmt_ops)
    return RowProgram(parsers=catalog.parsers(), width=catalog.width, steps=tuple(steps))
