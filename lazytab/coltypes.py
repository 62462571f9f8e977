from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from lazytab.errors import SchemaError

Parser = Callable[[Any], Any]
Formatter = Callable[[Any], Any]

DEFAULT_DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class ColumnType:
    """A supported column type: a tag plus the parse/format pair applied to its values."""

    tag: str
    parse: Parser
    format: Formatter


def _blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and v.strip() == "")


def _to_int(v: Any) -> Any:
    if _blank(v):
        return None
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    if isinstance(v, str):
        s = v.strip()
        try:
            return int(s)
        except ValueError:
            f = float(s)
            if not f.is_integer():
                raise ValueError(f"Cannot coerce value {v!r} to int.")
            return int(f)
    raise ValueError(f"Cannot coerce value {v!r} to int.")


def _to_double(v: Any) -> Any:
    if _blank(v):
        return None
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return float(v)
    if isinstance(v, str):
        return float(v.strip())
    raise ValueError(f"Cannot coerce value {v!r} to double.")


def _to_string(v: Any) -> Any:
    if v is None:
        return None
    return str(v)


def _format_plain(v: Any) -> Any:
    if v is None:
        return ""
    return str(v)


def _date_parser(fmt: str) -> Parser:
    def parse(v: Any) -> Any:
        if _blank(v):
            return None
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, date):
            return v
        return datetime.strptime(str(v).strip(), fmt).date()

    return parse


def _date_formatter(fmt: str) -> Formatter:
    def fmt_value(v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (date, datetime)):
            return v.strftime(fmt)
        return str(v)

    return fmt_value


def _identity(v: Any) -> Any:
    return v


def resolve_type(type_tag: str) -> ColumnType:
    """Look up a type tag. ``date`` accepts a strftime suffix, e.g. ``date:%d/%m/%Y``."""
    if not isinstance(type_tag, str) or not type_tag:
        raise SchemaError(
            "E_TYPE_TAG",
            f"Type must be a non-empty string, got {type_tag!r}.",
            hint="Supported types: " + ", ".join(SUPPORTED_TYPES) + ".",
        )
    base, _, suffix = type_tag.partition(":")
    if base == "int":
        return ColumnType("int", _to_int, _format_plain)
    if base == "double":
        return ColumnType("double", _to_double, _format_plain)
    if base == "string":
        return ColumnType("string", _to_string, _format_plain)
    if base == "date":
        fmt = suffix or DEFAULT_DATE_FORMAT
        return ColumnType(type_tag if suffix else "date", _date_parser(fmt), _date_formatter(fmt))
    if base == "raw":
        return ColumnType("raw", _identity, _identity)
    raise SchemaError(
        "E_TYPE_UNKNOWN",
        f"Unknown column type {type_tag!r}.",
        hint=(
            "Supported types: " + ", ".join(SUPPORTED_TYPES) + ". "
            "For anything else pass your own function with set_parser(column, fn)."
        ),
    )


def raw_type(parser: Parser) -> ColumnType:
    """Wrap a user-supplied parser; values are written back as-is."""
    if not callable(parser):
        raise SchemaError(
            "E_PARSER_TYPE",
            "A parser must be callable.",
            hint="Example: table.set_parser('Salary', float)",
        )
    return ColumnType("raw", parser, _identity)


SUPPORTED_TYPES = ("int", "double", "string", "date", "raw")

# frictionless field types -> our tags
FRICTIONLESS_TYPE_MAP: Dict[str, str] = {
    "integer": "int",
    "number": "double",
    "string": "string",
    "date": "date",
}


def tag_from_frictionless(ftype: Optional[str]) -> str:
    return FRICTIONLESS_TYPE_MAP.get(ftype or "", "string")
