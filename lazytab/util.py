from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from lazytab.errors import SchemaError

def _as_path_str(p: Any, *, code: str, what: str) -> str:
    """Coerce a str/PathLike to a string path or raise a SchemaError."""
    if isinstance(p, os.PathLike):
        p = os.fspath(p)
    if not isinstance(p, str) or not p:
        raise SchemaError(
            code,
            f"{what} must be a non-empty string or path, got {type(p).__name__}.",
            hint="Example: 'data/people.csv' or pathlib.Path('data/people.csv')",
        )
    return p


def _infer_type_from_uri(uri: str) -> Optional[str]:
    ext = Path(uri).suffix.lower()
    if ext in (".csv", ".txt", ".tsv"):
        return "csv"
    return None


def _as_list(x: Any) -> List[Any]:
    if isinstance(x, (list, tuple)):
        return list(x)
    return [x]


def _generate_col_names(count: int) -> List[str]:
    return [f"Col_{i}" for i in range(1, count + 1)]


def _check_duplicate_names(names: Sequence[str]) -> List[str]:
    seen = set()
    dups = []
    for n in names:
        if n in seen and n not in dups:
            dups.append(n)
        seen.add(n)
    if dups:
        raise SchemaError(
            "E_DUPLICATE_COL",
            f"Duplicate column name(s): {dups}.",
            hint="Rename the columns in the file, or read it with have_header=False and rename_col(...).",
        )
    return list(names)


def _key_specs(keys: Any, *, what: str) -> List[Tuple[Optional[Any], str]]:
    """Normalize group/join key specs into ``(collation, name)`` pairs.

    Accepted forms: ``"col"``, ``["a", "b"]``, ``(fn, "col")``, ``[(fn, "a"), "b"]``.
    """
    if isinstance(keys, str):
        return [(None, keys)]
    if isinstance(keys, tuple) and len(keys) == 2 and callable(keys[0]) and isinstance(keys[1], str):
        return [(keys[0], keys[1])]
    if not isinstance(keys, (list, tuple)) or not keys:
        raise SchemaError(
            "E_KEY_FORMAT",
            f"The {what} keys format is not correct.",
            hint="Use a column name, a list of names, or (function, name) pairs.",
        )
    out: List[Tuple[Optional[Any], str]] = []
    for k in keys:
        if isinstance(k, str):
            out.append((None, k))
        elif isinstance(k, (list, tuple)) and len(k) == 2 and callable(k[0]) and isinstance(k[1], str):
            out.append((k[0], k[1]))
        else:
            raise SchemaError(
                "E_KEY_FORMAT",
                f"The {what} keys format is not correct: {k!r}.",
                hint="Use a column name, a list of names, or (function, name) pairs.",
            )
    return out


def _func_name(func: Any) -> str:
    return getattr(func, "__name__", None) or type(func).__name__
