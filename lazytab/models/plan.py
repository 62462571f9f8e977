from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple, Union

import yaml

from lazytab.config import ComputeOptions
from lazytab.models.aggregate import GroupAggregatePlan
from lazytab.models.program import RowProgram
from lazytab.models.sources import Source

if TYPE_CHECKING:  # pragma: no cover
    from lazytab.models.join import JoinPlan


@dataclass(frozen=True)
class Plan:
    """Everything the execution backend needs for one evaluation.

    kind == "rows":      ``program`` then pick ``output_slots``.
    kind == "aggregate": ``program`` then the group stage described by ``group``.
    kind == "join":      both sides are described by ``join``.
    """

    kind: str
    names: Tuple[str, ...]
    options: ComputeOptions
    batch_size: int
    source: Optional[Source] = None
    program: Optional[RowProgram] = None
    output_slots: Tuple[int, ...] = ()
    group: Optional[GroupAggregatePlan] = None
    join: Optional["JoinPlan"] = None

    def project(self, row: Any) -> Tuple[Any, ...]:
        return tuple(row[s] for s in self.output_slots)

    def describe(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "kind": self.kind,
            "columns": list(self.names),
            "options": {
                "num_workers": self.options.num_workers,
                "batch_size": self.batch_size,
                "raise_on_error": self.options.raise_on_error,
                "preserve_order": self.options.preserve_order,
            },
        }
        if self.source is not None:
            d["source"] = self.source.uri
        if self.program is not None:
            d["steps"] = self.program.describe()
        if self.output_slots:
            d["output_slots"] = list(self.output_slots)
        if self.group is not None:
            d["group"] = self.group.describe()
        if self.join is not None:
            d["join"] = self.join.describe()
        return d

    def to_yaml(self, path: Optional[Union[str, Path]] = None) -> str:
        """Dump describe() as YAML. If `path` is provided, also write the file."""
        text = yaml.safe_dump(self.describe(), sort_keys=False)
        if path is not None:
            Path(path).write_text(text, encoding="utf-8")
        return text

    def __str__(self) -> str:
        return f"Plan(kind={self.kind}, columns={list(self.names)})"
