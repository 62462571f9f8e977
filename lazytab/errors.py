from __future__ import annotations

from typing import Optional


class LazyTabError(Exception):
    """Base of every error lazytab raises on purpose.

    ``code`` is a stable identifier such as ``E_UNKNOWN_COL`` that callers and
    tests can match on; ``hint`` says what to change. Catch SchemaError for a
    malformed table definition and OperationError for a run that failed.
    """

    def __init__(self, code: str, message: str, *, hint: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.hint:
            return base + f"\nHint: {self.hint}"
        return base


class SchemaError(LazyTabError):
    """Raised while building a plan: unknown columns, malformed arguments, bad options."""


class OperationError(LazyTabError):
    """Raised when an operator cannot be appended, or a preview/evaluation run fails.

    The originating exception is chained with ``raise ... from`` and exposed as ``cause``.
    """

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__
