from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from lazytab.util import _func_name


@dataclass(frozen=True)
class Operation:
    """One column transform: ``row[output] = func(*row[inputs])``."""

    func: Callable[..., Any]
    inputs: Tuple[int, ...]
    output: int
    name: str = ""
    formatter: bool = False

    def __str__(self) -> str:
        kind = "format" if self.formatter else "operate"
        return f"{kind} {self.name or _func_name(self.func)}{list(self.inputs)} -> {self.output}"


@dataclass
class OperationPipeline:
    """Ordered column transforms plus the formatters deferred until finalize().

    Phase 1 accumulates user operations and type formatters separately.
    Phase 2 (finalize) appends the formatters after every user operation, so
    formatting is always the last thing applied to a column.
    """

    operations: List[Operation] = field(default_factory=list)
    _formatters: Dict[int, Callable[[Any], Any]] = field(default_factory=dict)

    def append(self, func: Callable[..., Any], inputs: Tuple[int, ...], output: int) -> Operation:
        op = Operation(func, tuple(inputs), output, name=_func_name(func))
        self.operations.append(op)
        return op

    def set_formatter(self, slot: int, formatter: Callable[[Any], Any]) -> None:
        # re-insert so the most recent set_type decides the formatter order
        self._formatters.pop(slot, None)
        self._formatters[slot] = formatter

    def drop_formatter(self, slot: int) -> None:
        self._formatters.pop(slot, None)

    def formatters(self) -> Dict[int, Callable[[Any], Any]]:
        return dict(self._formatters)

    def clone(self) -> "OperationPipeline":
        return OperationPipeline(list(self.operations), dict(self._formatters))

    def __len__(self) -> int:
        return len(self.operations)

    def finalize(self, *, include_formatters: bool = True) -> Tuple[Operation, ...]:
        ops = list(self.operations)
        if include_formatters:
            for slot, fmt in self._formatters.items():
                ops.append(Operation(fmt, (slot,), slot, name=_func_name(fmt), formatter=True))
        return tuple(ops)
