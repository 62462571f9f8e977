from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class RowFailure:
    """A row the backend could not process; ``row_id`` is its read sequence id."""

    stage: str
    row_id: Optional[int]
    error: str


@dataclass
class ExecutionReport:
    output: str
    rows_written: int = 0
    failures: List[RowFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def __str__(self) -> str:
        status = "success" if self.success else f"{len(self.failures)} failed row(s)"
        return f"ExecutionReport({self.output}: {self.rows_written} rows, {status})"
