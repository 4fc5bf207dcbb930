"""Compile metadata filter predicates into parameterized SQL.

A predicate maps metadata keys to a scalar (equality) or a list (membership).
Keys are AND-ed. There is no OR, negation or range support.

    {"lang": "en", "tag": ["a", "b"]} with qualifier "e" compiles to

        json_extract(e.metadata, ?) = ? AND json_extract(e.metadata, ?) IN (?, ?)

    binding ('$."lang"', 'en', '$."tag"', 'a', 'b').

Keys and values are always bound parameters; only the validated qualifier is
interpolated into the SQL text.
"""

from collections.abc import Mapping
from typing import Any, NamedTuple

from hybrid_store.exceptions import FilterError
from hybrid_store.vectorstore.schema import validate_identifier

TRUE_EXPRESSION = "1=1"

_SCALAR_TYPES = (str, int, float, bool)


class CompiledFilter(NamedTuple):
    """A boolean SQL expression and the parameters it binds, in order."""

    sql: str
    params: tuple[Any, ...]


def compile_filter(
    predicate: Mapping[str, Any] | None,
    qualifier: str | None = None,
) -> CompiledFilter:
    """Compile a metadata predicate against the ``metadata`` JSON column.

    Args:
        predicate: Key to scalar or list of scalars. ``None`` or empty matches all.
        qualifier: Optional table name or alias that owns the ``metadata`` column.

    Returns:
        CompiledFilter whose ``sql`` is never empty.

    Raises:
        FilterError: If a key or value has an unsupported shape.
    """
    if not predicate:
        return CompiledFilter(TRUE_EXPRESSION, ())

    column = "metadata"
    if qualifier:
        column = f"{validate_identifier(qualifier)}.metadata"

    clauses: list[str] = []
    params: list[Any] = []

    for key, value in predicate.items():
        path = _json_path(key)

        if isinstance(value, (list, tuple)):
            if not value:
                raise FilterError(
                    f"Filter list for '{key}' is empty",
                    details={"key": key},
                )
            placeholders = ", ".join("?" for _ in value)
            clauses.append(f"json_extract({column}, ?) IN ({placeholders})")
            params.append(path)
            params.extend(_bind_scalar(key, item) for item in value)
        else:
            clauses.append(f"json_extract({column}, ?) = ?")
            params.append(path)
            params.append(_bind_scalar(key, value))

    return CompiledFilter(" AND ".join(clauses), tuple(params))


def _json_path(key: Any) -> str:
    if not isinstance(key, str) or not key:
        raise FilterError(
            "Filter keys must be non-empty strings",
            details={"key": repr(key)},
        )
    if '"' in key:
        raise FilterError(
            "Filter keys may not contain double quotes",
            details={"key": key},
        )
    return f'$."{key}"'


def _bind_scalar(key: str, value: Any) -> Any:
    """Convert a filter value into the form json_extract returns for it."""
    if not isinstance(value, _SCALAR_TYPES):
        raise FilterError(
            f"Unsupported filter value for '{key}': {type(value).__name__}",
            details={"key": key, "type": type(value).__name__},
        )
    # json_extract yields 1/0 for JSON true/false
    if isinstance(value, bool):
        return int(value)
    return value
